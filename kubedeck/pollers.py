"""
Stream bodies for metrics, logs and shell sessions.

Every poller follows the same shape: set up, then loop over produce, emit,
check the handle, wait for the next input; finally log how it ended. A
poller never retries: a transport or API error ends the stream with one
error envelope tagged with the command that started it.

Key Functions:
- stream_pod_metrics: Sample one pod every interval until stopped
- stream_deployment_metrics: Sample every pod of a deployment every interval
- collect_deployment_metrics: One sample per pod, no loop
- tail_pod_logs: Follow a pod's log from its current end
- fetch_pod_logs: Emit the last lines of a pod's log once
- relay_shell: Bridge an interactive exec session
"""

import asyncio
import logging
from typing import Any, Dict, List

from .constants import LOG_FETCH_LINES, LOG_TAIL_LINES, SHELL_POLL_TIMEOUT_SECONDS, DEFAULT_SHELL_COMMAND
from .events import Emitter
from .exceptions import MetricsUnavailableError
from .kube import ClusterClient, describe_api_error, run_blocking
from .metrics_processing import pod_metrics_to_sample
from .models import LogLine, MetricSample
from .pod_processing import pod_name
from .registry import StreamHandle, StreamState

log = logging.getLogger('kubedeck')

_EOF = object()


async def stream_pod_metrics(
    kube: ClusterClient,
    emitter: Emitter,
    handle: StreamHandle,
    namespace: str,
    pod: str,
    interval: float,
    command: str,
) -> None:
    """
    Emit one MetricSample for ``pod`` every ``interval`` seconds until the handle is signalled.

    A pod without metrics fails the stream.
    """
    log.info(f"[metrics] streaming pod={namespace}/{pod} every {interval}s")
    handle.mark(StreamState.RUNNING)
    try:
        while not handle.is_set():
            raw = await run_blocking(kube.pod_metrics, namespace, pod)
            if handle.is_set():
                break
            emitter.metric(pod_metrics_to_sample(raw, pod))
            if handle.is_set():
                break
            await asyncio.sleep(interval)
    except Exception as e:
        handle.mark(StreamState.FAILED)
        emitter.error(command, f"Metrics stream for pod '{pod}' failed: {describe_api_error(e)}")
        return
    handle.mark(StreamState.CANCELLED)
    log.debug(f"[metrics] stream for pod={pod} done reason={handle.reason}")


async def collect_deployment_metrics(kube: ClusterClient, namespace: str, pods: List[Dict[str, Any]]) -> List[MetricSample]:
    """One sample per pod; pods the metrics server does not know (yet) are skipped."""
    samples = []
    for pod in pods:
        name = pod_name(pod)
        raw = await run_blocking(kube.pod_metrics, namespace, name)
        try:
            samples.append(pod_metrics_to_sample(raw, name))
        except MetricsUnavailableError as e:
            log.debug(f"[metrics] skipping pod={name}: {e}")
    return samples


async def stream_deployment_metrics(
    kube: ClusterClient,
    emitter: Emitter,
    handle: StreamHandle,
    namespace: str,
    deployment: str,
    pods: List[Dict[str, Any]],
    interval: float,
    command: str,
) -> None:
    """
    Emit one MetricSample per pod of a deployment every ``interval`` seconds.

    ``pods`` is resolved once by the caller; pods created after the stream
    started are not picked up.
    """
    log.info(f"[metrics] streaming deployment={namespace}/{deployment} pods={len(pods)} every {interval}s")
    handle.mark(StreamState.RUNNING)
    try:
        while not handle.is_set():
            samples = await collect_deployment_metrics(kube, namespace, pods)
            if handle.is_set():
                break
            for sample in samples:
                emitter.metric(sample)
            if handle.is_set():
                break
            await asyncio.sleep(interval)
    except Exception as e:
        handle.mark(StreamState.FAILED)
        emitter.error(command, f"Metrics stream for deployment '{deployment}' failed: {describe_api_error(e)}")
        return
    handle.mark(StreamState.CANCELLED)
    log.debug(f"[metrics] stream for deployment={deployment} done reason={handle.reason}")


async def tail_pod_logs(
    kube: ClusterClient,
    emitter: Emitter,
    handle: StreamHandle,
    namespace: str,
    pod: str,
    command: str,
) -> None:
    """
    Follow a pod's log starting near its current end.

    The handle is checked after every received line and before that line is
    emitted, so a stop drops the pending line. A stop cannot interrupt the
    wait for the next line; releasing the handle (registry shutdown) closes
    the log stream, which does.
    """
    log.info(f"[logs] tailing pod={namespace}/{pod}")
    lines = None
    try:
        lines = await run_blocking(kube.log_lines, namespace, pod, True, LOG_TAIL_LINES)
        handle.add_closer(lines.close)
        handle.mark(StreamState.RUNNING)
        while True:
            line = await run_blocking(next, lines, _EOF)
            if handle.is_set():
                handle.mark(StreamState.CANCELLED)
                break
            if line is _EOF:
                handle.mark(StreamState.COMPLETED)
                break
            emitter.log_line(LogLine(pod=pod, line=line))
    except Exception as e:
        if handle.is_set():
            # A released read fails once its socket is shut down.
            handle.mark(StreamState.CANCELLED)
        else:
            handle.mark(StreamState.FAILED)
            emitter.error(command, f"Log stream for pod '{pod}' failed: {describe_api_error(e)}")
    finally:
        if lines is not None:
            lines.close()
    log.debug(f"[logs] tail for pod={pod} finished state={handle.state.value}")


def _read_log(kube: ClusterClient, namespace: str, pod: str, tail_lines: int) -> List[str]:
    with kube.log_lines(namespace, pod, False, tail_lines) as lines:
        return list(lines)


async def fetch_pod_logs(kube: ClusterClient, emitter: Emitter, namespace: str, pod: str, command: str) -> int:
    """Emit up to the last 100 lines of a pod's log; returns the number of lines emitted."""
    log.info(f"[logs] fetching pod={namespace}/{pod}")
    try:
        lines = await run_blocking(_read_log, kube, namespace, pod, LOG_FETCH_LINES)
    except Exception as e:
        emitter.error(command, f"Failed to fetch logs for pod '{pod}': {describe_api_error(e)}")
        return 0
    for line in lines:
        emitter.log_line(LogLine(pod=pod, line=line))
    return len(lines)


async def relay_shell(
    kube: ClusterClient,
    emitter: Emitter,
    handle: StreamHandle,
    namespace: str,
    pod: str,
    command: str,
    shell: str = DEFAULT_SHELL_COMMAND,
) -> None:
    """Forward the handle's inbox to the remote shell and emit its output until stopped or closed."""
    log.info(f"[shell] opening {shell} in pod={namespace}/{pod}")
    ws = None
    try:
        ws = await run_blocking(kube.open_shell, namespace, pod, shell)
        handle.mark(StreamState.RUNNING)
        while not handle.is_set() and ws.is_open():
            for text in handle.drain():
                await run_blocking(ws.write_stdin, text)
            await run_blocking(ws.update, timeout=SHELL_POLL_TIMEOUT_SECONDS)
            out = ""
            if ws.peek_stdout():
                out += ws.read_stdout()
            if ws.peek_stderr():
                out += ws.read_stderr()
            if out and not handle.is_set():
                emitter.shell_output(pod, out)
        handle.mark(StreamState.CANCELLED if handle.is_set() else StreamState.COMPLETED)
    except Exception as e:
        handle.mark(StreamState.FAILED)
        emitter.error(command, f"Shell session in pod '{pod}' failed: {describe_api_error(e)}")
    finally:
        if ws is not None:
            ws.close()
    log.info(f"[shell] session in pod={pod} closed state={handle.state.value}")
