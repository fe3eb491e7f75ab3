"""
Event emission contract between Kubedeck and the UI layer.

Every result, error and stream item leaves Kubedeck through an EventSink as a
``(channel, payload)`` pair. The Emitter builds the payloads so that every
producer uses the same envelope shapes:

- ``app::command_result`` / ``app::error``: ``{"command": ..., "data": ...}``
- ``app::metrics``: ``{"message": <MetricSample JSON>, "metadata": <pod>}``
- ``dashboard::logs`` / ``dashboard::shell``: ``{"message": <text>, "metadata": <pod>}``
- ``app::event``: ``{"event": <signal name>, "data": ""}``
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

from .config import log_exception
from .constants import (
    CHANNEL_COMMAND_RESULT, CHANNEL_ERROR, CHANNEL_EVENT, CHANNEL_LOGS,
    CHANNEL_METRICS, CHANNEL_SHELL,
)
from .models import LogLine, MetricSample, ResultEnvelope, StreamPayload

log = logging.getLogger('kubedeck')


class EventSink(ABC):
    """Receiver of every event Kubedeck produces. Implementations must be safe to call from any task."""

    @abstractmethod
    def emit(self, channel: str, payload: Dict[str, Any]) -> None:
        ...


class Emitter:
    """
    Builds envelopes and hands them to an EventSink.

    A failing sink is logged and never propagates into the worker that
    produced the event.

    Example:
        ```python
        emitter = Emitter(sink)
        emitter.command_result("get_resource", json.dumps(pods))
        emitter.error("apply_resource", "Resource body must be a mapping")
        ```
    """

    def __init__(self, sink: EventSink):
        self.sink = sink

    def _emit(self, channel: str, payload: Dict[str, Any]) -> None:
        try:
            self.sink.emit(channel, payload)
        except Exception as e:
            log_exception(f"[emit] Failed to deliver event on {channel}", e)

    def command_result(self, command: str, data: str) -> None:
        self._emit(CHANNEL_COMMAND_RESULT, ResultEnvelope(command=command, data=data).to_dict())

    def error(self, command: str, text: str) -> None:
        log.warning(f"[error] {command}: {text}")
        self._emit(CHANNEL_ERROR, ResultEnvelope(command=command, data=text).to_dict())

    def metric(self, sample: MetricSample) -> None:
        payload = StreamPayload(message=json.dumps(sample.to_dict()), metadata=sample.pod)
        self._emit(CHANNEL_METRICS, payload.to_dict())

    def log_line(self, line: LogLine) -> None:
        self._emit(CHANNEL_LOGS, StreamPayload(message=line.line, metadata=line.pod).to_dict())

    def shell_output(self, pod: str, text: str) -> None:
        self._emit(CHANNEL_SHELL, StreamPayload(message=text, metadata=pod).to_dict())

    def signal(self, name: str) -> None:
        self._emit(CHANNEL_EVENT, {'event': name, 'data': ''})


class CollectingSink(EventSink):
    """In-memory sink recording every event in order, for embedding and tests."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def emit(self, channel: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append((channel, dict(payload)))

    def on(self, channel: str) -> List[Dict[str, Any]]:
        """Payloads emitted on ``channel``, oldest first."""
        with self._lock:
            return [p for c, p in self.events if c == channel]
