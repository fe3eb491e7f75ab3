"""
Data models for Kubedeck.

This module defines the data structures exchanged between the command
dispatcher, the resource and streaming layers, and the UI event sink.

Key Models:
- ClusterContext: Which kubeconfig context a call targets
- CommandEnvelope: An inbound command name plus its argument map
- ResultEnvelope: The reply to one command, echoing the command name
- StreamPayload: Payload of the metrics, logs and shell channels
- MetricSample: One CPU/memory reading for one pod
- LogLine: One line read from a pod's log stream
- ClusterInfo: A kubeconfig context as reported to the UI
- NamespaceInfo: A namespace entry as reported to the UI
- OperationResult: Outcome of a mutating resource operation

All models use dataclasses. Envelopes that cross the UI boundary expose
``to_dict`` so they can be serialized with ``json.dumps``.

Example:
    ```python
    envelope = CommandEnvelope.from_json('{"command": "get_resource", "args": {"ns": "default", "kind": "pod"}}')
    result = ResultEnvelope(command=envelope.command, data="[]")
    ```
"""

import json
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class ClusterContext:
    """
    Identifies the cluster and credentials a call targets.

    A context is immutable; switching clusters replaces the whole object, so a
    stream that captured a context at start keeps talking to that cluster.

    Attributes:
        name: kubeconfig context name ("" means the kubeconfig's current context)
        kubeconfig: Path to the kubeconfig file (None uses the default lookup rules)

    Example:
        ```python
        ctx = ClusterContext(name="staging", kubeconfig="/home/me/.kube/config")
        ```
    """
    name: str = ""
    kubeconfig: Optional[str] = None


@dataclass(frozen=True)
class CommandEnvelope:
    """
    An inbound command: a command name plus a string-to-string argument map.

    The argument map is wrapped in a read-only mapping so the envelope stays
    immutable after creation.

    Attributes:
        command: Command name (e.g. "get_resource", "tail_logs_for_pod")
        args: Argument map (e.g. {"ns": "default", "kind": "pod"})
    """
    command: str
    args: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        frozen = MappingProxyType({str(k): ("" if v is None else str(v)) for k, v in dict(self.args).items()})
        object.__setattr__(self, 'args', frozen)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CommandEnvelope":
        command = raw.get('command')
        if not isinstance(command, str) or not command:
            raise ValueError("Command envelope requires a non-empty 'command' string")
        args = raw.get('args') or {}
        if not isinstance(args, Mapping):
            raise ValueError("Command envelope 'args' must be an object")
        return cls(command=command, args=args)

    @classmethod
    def from_json(cls, text: str) -> "CommandEnvelope":
        return cls.from_dict(json.loads(text))


@dataclass
class ResultEnvelope:
    """
    The reply to a command.

    ``command`` always echoes the originating command so the UI can correlate
    replies that arrive out of order. ``data`` carries a serialized payload, or
    the error text when the envelope travels on the error channel.
    """
    command: str
    data: str = ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class StreamPayload:
    """Payload of the metrics, logs and shell channels: a message plus its pod name."""
    message: str
    metadata: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class MetricSample:
    """
    One CPU/memory reading for one pod.

    Attributes:
        pod: Pod name
        cpu: CPU usage as reported by the metrics API (e.g. "1250000n")
        memory: Memory usage as reported by the metrics API (e.g. "25Mi")
        ts: Sample time in epoch milliseconds
    """
    pod: str
    cpu: str
    memory: str
    ts: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LogLine:
    """One line read from a pod's log stream."""
    pod: str
    line: str


@dataclass
class ClusterInfo:
    """A kubeconfig context as reported to the UI."""
    name: str
    current: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NamespaceInfo:
    """A namespace entry; ``creation_ts`` is None for configured namespaces."""
    name: str
    creation_ts: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OperationResult:
    """Outcome of a create, edit, delete or restart call."""
    ok: bool
    message: str = ""
