"""
Shared pytest fixtures for Kubedeck tests.

This module provides common fixtures including:
- sink / emitter: a CollectingSink and an Emitter bound to it
- FakeClusterClient: In-memory stand-in for ClusterClient with canned objects
- wait_for: Poll an async condition with a deadline
"""

import asyncio
import copy
import queue
import threading
import time
from typing import Any, Dict, List, Optional

import pytest
from kubernetes.client import ApiException

from kubedeck.events import CollectingSink, Emitter
from kubedeck.kinds import KIND_SPECS, ResourceKind
from kubedeck.models import ClusterContext


# =============================================================================
# Cluster fakes
# =============================================================================

def make_obj(name: str, namespace: Optional[str] = "default", labels: Optional[Dict[str, str]] = None,
             uid: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """Build a serialized object in the API's JSON shape."""
    meta = {'name': name, 'uid': uid or f"uid-{name}", 'labels': labels or {}}
    if namespace is not None:
        meta['namespace'] = namespace
    obj = {'metadata': meta}
    obj.update(extra)
    return obj


def make_pod_metrics(name: str, cpu: str = "1250000n", memory: str = "25Mi") -> Dict[str, Any]:
    return {
        'metadata': {'name': name, 'namespace': 'default'},
        'containers': [{'name': 'main', 'usage': {'cpu': cpu, 'memory': memory}}],
    }


class FakeShell:
    """Mimics the websocket client returned by kubernetes.stream with tty=True."""

    def __init__(self):
        self.stdin: List[str] = []
        self.closed = False
        self._out: List[str] = []
        self._lock = threading.Lock()

    def is_open(self) -> bool:
        return not self.closed

    def write_stdin(self, text: str) -> None:
        with self._lock:
            self.stdin.append(text)
            self._out.append(f"$ {text}")

    def update(self, timeout: float = 0) -> None:
        time.sleep(0.01)

    def peek_stdout(self) -> bool:
        with self._lock:
            return bool(self._out)

    def read_stdout(self) -> str:
        with self._lock:
            out, self._out = ''.join(self._out), []
            return out

    def peek_stderr(self) -> bool:
        return False

    def read_stderr(self) -> str:
        return ""

    def close(self) -> None:
        self.closed = True


class FakeLogStream:
    """Mimics kube.LogStream over a line queue; None in the queue ends the stream."""

    def __init__(self, source: "queue.Queue[Optional[str]]", timeout: float = 5.0):
        self.closed = False
        self._source = source
        self._timeout = timeout

    def __iter__(self):
        return self

    def __next__(self) -> str:
        deadline = time.monotonic() + self._timeout
        while not self.closed and time.monotonic() < deadline:
            try:
                line = self._source.get(timeout=0.01)
            except queue.Empty:
                continue
            if line is None:
                break
            return line
        self.closed = True
        raise StopIteration

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self) -> None:
        self.closed = True


class FakeClusterClient:
    """
    In-memory ClusterClient with the same method names and return shapes.

    ``failures`` maps a method name (or ``list:<kind>``) to the exception that
    call raises. Follow-mode log lines are fed through ``push_log``; every
    opened log stream is kept in ``streams``.
    """

    def __init__(self, context: Optional[ClusterContext] = None):
        self.context = context or ClusterContext()
        self.objects: Dict[ResourceKind, List[Dict[str, Any]]] = {k: [] for k in ResourceKind}
        self.metrics: Dict[str, Dict[str, Any]] = {}
        self.node_metric_items: List[Dict[str, Any]] = []
        self.logs: Dict[str, List[str]] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.shells: List[FakeShell] = []
        self.streams: List[FakeLogStream] = []
        self._follow: Dict[str, "queue.Queue[Optional[str]]"] = {}
        self._lock = threading.Lock()

    def add(self, kind: ResourceKind, *objs: Dict[str, Any]) -> None:
        self.objects[kind].extend(objs)

    def _record(self, name: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    def count(self, name: str) -> int:
        with self._lock:
            return sum(1 for c in self.calls if c[0] == name)

    def _find(self, kind: ResourceKind, name: str, namespace: Optional[str]) -> Dict[str, Any]:
        for obj in self.objects[kind]:
            meta = obj['metadata']
            if meta['name'] == name and (not KIND_SPECS[kind].namespaced or meta.get('namespace') == (namespace or 'default')):
                return obj
        raise ApiException(status=404, reason="Not Found")

    def list(self, kind: ResourceKind, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        self._record('list', kind, namespace)
        if f"list:{kind.value}" in self.failures:
            raise self.failures[f"list:{kind.value}"]
        items = self.objects[kind]
        if namespace and KIND_SPECS[kind].namespaced:
            items = [o for o in items if o['metadata'].get('namespace') == namespace]
        return copy.deepcopy(items)

    def read(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        self._record('read', kind, name, namespace)
        return copy.deepcopy(self._find(kind, name, namespace))

    def create(self, body: Dict[str, Any], namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        self._record('create', body, namespace)
        return [copy.deepcopy(body)]

    def patch(self, kind: ResourceKind, name: str, namespace: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        self._record('patch', kind, name, namespace, body)
        obj = self._find(kind, name, namespace)
        obj.update({k: v for k, v in body.items() if k != 'metadata'})
        return copy.deepcopy(obj)

    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        self._record('delete', kind, name, namespace)
        obj = self._find(kind, name, namespace)
        self.objects[kind].remove(obj)
        return {'status': 'Success'}

    def list_pods(self, namespace: str, label_selector: str) -> List[Dict[str, Any]]:
        self._record('list_pods', namespace, label_selector)
        key, value = label_selector.split('=', 1)
        return [copy.deepcopy(p) for p in self.objects[ResourceKind.POD]
                if p['metadata'].get('namespace') == namespace and p['metadata']['labels'].get(key) == value]

    def restart_deployment(self, namespace: str, name: str) -> Dict[str, Any]:
        self._record('restart_deployment', namespace, name)
        return copy.deepcopy(self._find(ResourceKind.DEPLOYMENT, name, namespace))

    def pod_metrics(self, namespace: str, pod: str) -> Optional[Dict[str, Any]]:
        self._record('pod_metrics', namespace, pod)
        return copy.deepcopy(self.metrics.get(pod))

    def pod_metrics_list(self, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        self._record('pod_metrics_list', namespace)
        return copy.deepcopy(list(self.metrics.values()))

    def node_metrics(self) -> List[Dict[str, Any]]:
        self._record('node_metrics')
        return copy.deepcopy(self.node_metric_items)

    def push_log(self, pod: str, line: Optional[str]) -> None:
        """Feed one line (None ends the stream) to a follow-mode reader of ``pod``."""
        self._follow_queue(pod).put(line)

    def _follow_queue(self, pod: str) -> "queue.Queue[Optional[str]]":
        with self._lock:
            return self._follow.setdefault(pod, queue.Queue())

    def log_lines(self, namespace: str, pod: str, follow: bool, tail_lines: int) -> FakeLogStream:
        self._record('log_lines', namespace, pod, follow, tail_lines)
        if follow:
            stream = FakeLogStream(self._follow_queue(pod))
        else:
            canned: "queue.Queue[Optional[str]]" = queue.Queue()
            for line in self.logs.get(pod, [])[-tail_lines:] + [None]:
                canned.put(line)
            stream = FakeLogStream(canned)
        self.streams.append(stream)
        return stream

    def open_shell(self, namespace: str, pod: str, command: str) -> FakeShell:
        self._record('open_shell', namespace, pod, command)
        shell = FakeShell()
        self.shells.append(shell)
        return shell

    def release(self) -> None:
        """End every follow-mode reader so no executor thread stays blocked."""
        with self._lock:
            queues = list(self._follow.values())
        for q in queues:
            q.put(None)
        for stream in list(self.streams):
            stream.close()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def emitter(sink):
    return Emitter(sink)


@pytest.fixture
def kube():
    fake = FakeClusterClient()
    yield fake
    fake.release()


@pytest.fixture
def wait_for():
    """Return an async helper that polls ``predicate`` until true or the timeout elapses."""
    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return predicate()
    return _wait
