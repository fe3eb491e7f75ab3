"""
Kubernetes client and API interactions for Kubedeck.

This module provides the interface between Kubedeck and the Kubernetes API.
Every method of ClusterClient is blocking; async callers hop onto the default
executor through run_blocking so the event loop never waits on the network.

Key Components:
- ClusterClient: API clients for one cluster context, created lazily
- ClientPool: One ClusterClient per context, shared by all commands
- LogStream: Pod log lines, closable from any thread
- run_blocking: Run a blocking client call in the default executor
- list_contexts: Enumerate the contexts of a kubeconfig file

Objects returned by ClusterClient are plain dictionaries in the API's JSON
shape (camelCase keys), produced with ``ApiClient.sanitize_for_serialization``.

Example:
    ```python
    kube = ClusterClient(ClusterContext(name="staging"))
    pods = await run_blocking(kube.list, ResourceKind.POD, "default")
    ```
"""

from __future__ import annotations
import asyncio
import functools
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client, config, utils
from kubernetes.client import ApiException
from kubernetes.stream import stream

from .constants import METRICS_API_GROUP, METRICS_API_VERSION, RESTARTED_AT_ANNOTATION
from .exceptions import ClusterUnavailableError
from .kinds import KIND_SPECS, ResourceKind
from .models import ClusterContext, ClusterInfo

log = logging.getLogger('kubedeck')

_API_CLASSES: Dict[str, Callable[[client.ApiClient], Any]] = {
    'core': client.CoreV1Api,
    'apps': client.AppsV1Api,
    'batch': client.BatchV1Api,
    'custom': client.CustomObjectsApi,
}


async def run_blocking(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking callable in the default executor and await its result."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))


def _load_api_client(context: ClusterContext) -> client.ApiClient:
    try:
        if context.kubeconfig or context.name:
            return config.new_client_from_config(config_file=context.kubeconfig, context=context.name or None)
        try:
            return config.new_client_from_config()
        except config.ConfigException:
            cfg = client.Configuration()
            config.load_incluster_config(client_configuration=cfg)
            return client.ApiClient(cfg)
    except Exception as e:
        raise ClusterUnavailableError(f"Failed to load cluster context '{context.name}': {e}") from e


def describe_api_error(exc: Exception) -> str:
    """Render an exception as error text for the UI, with status and reason for API errors."""
    if isinstance(exc, ApiException):
        return f"{exc.status} {exc.reason}: {exc.body or ''}".strip()
    return str(exc) or exc.__class__.__name__


class LogStream:
    """
    Decoded lines of a pod log response.

    In follow mode iteration blocks until the pod writes a line. ``close`` may
    be called from any thread: it shuts the response's socket down, so a read
    blocked in another thread returns instead of waiting for the pod. The
    response is also closed once iteration is exhausted.
    """

    def __init__(self, resp: Any):
        self._resp = resp
        self._raw = iter(resp)
        self._lock = threading.Lock()
        self.closed = False

    def __iter__(self) -> "LogStream":
        return self

    def __next__(self) -> str:
        try:
            raw = next(self._raw)
        except StopIteration:
            self.close()
            raise
        return raw.decode('utf-8', 'replace').rstrip('\r\n')

    def __enter__(self) -> "LogStream":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
        self._resp.shutdown()
        self._resp.close()


class ClusterClient:
    """
    Kubernetes API clients for a single cluster context.

    The underlying ApiClient is created on first use, so constructing a
    ClusterClient never touches the network or the kubeconfig. A context that
    cannot be loaded surfaces as ClusterUnavailableError on the first call.

    Attributes:
        context: The context this client was built for
    """

    def __init__(self, context: ClusterContext):
        self.context = context
        self._api_client: Optional[client.ApiClient] = None
        self._apis: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def api_client(self) -> client.ApiClient:
        with self._lock:
            if self._api_client is None:
                self._api_client = _load_api_client(self.context)
                log.info(f"[kube] connected context='{self.context.name or '(current)'}'")
            return self._api_client

    def api(self, group: str) -> Any:
        if group not in self._apis:
            self._apis[group] = _API_CLASSES[group](self.api_client)
        return self._apis[group]

    def serialize(self, obj: Any) -> Any:
        return self.api_client.sanitize_for_serialization(obj)

    def list(self, kind: ResourceKind, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """List every object of a kind; an empty namespace lists namespaced kinds across all namespaces."""
        spec = KIND_SPECS[kind]
        api = self.api(spec.api)
        if not spec.namespaced:
            result = getattr(api, spec.method('list'))()
        elif namespace:
            result = getattr(api, spec.method('list'))(namespace=namespace)
        else:
            result = getattr(api, f"list_{spec.resource}_for_all_namespaces")()
        return self.serialize(result.items) or []

    def read(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        spec = KIND_SPECS[kind]
        api = self.api(spec.api)
        if spec.namespaced:
            return self.serialize(getattr(api, spec.method('read'))(name=name, namespace=namespace or "default"))
        return self.serialize(getattr(api, spec.method('read'))(name=name))

    def create(self, body: Dict[str, Any], namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        created = utils.create_from_dict(self.api_client, body, namespace=namespace or "default")
        return self.serialize(created) or []

    def patch(self, kind: ResourceKind, name: str, namespace: Optional[str], body: Dict[str, Any]) -> Dict[str, Any]:
        spec = KIND_SPECS[kind]
        api = self.api(spec.api)
        if spec.namespaced:
            return self.serialize(getattr(api, spec.method('patch'))(name=name, namespace=namespace or "default", body=body))
        return self.serialize(getattr(api, spec.method('patch'))(name=name, body=body))

    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        spec = KIND_SPECS[kind]
        api = self.api(spec.api)
        if spec.namespaced:
            return self.serialize(getattr(api, spec.method('delete'))(name=name, namespace=namespace or "default"))
        return self.serialize(getattr(api, spec.method('delete'))(name=name))

    def list_pods(self, namespace: str, label_selector: str) -> List[Dict[str, Any]]:
        result = self.api('core').list_namespaced_pod(namespace=namespace, label_selector=label_selector)
        return self.serialize(result.items) or []

    def restart_deployment(self, namespace: str, name: str) -> Dict[str, Any]:
        """Trigger a rollout the way ``kubectl rollout restart`` does."""
        stamp = datetime.now(timezone.utc).isoformat()
        body = {'spec': {'template': {'metadata': {'annotations': {RESTARTED_AT_ANNOTATION: stamp}}}}}
        return self.serialize(self.api('apps').patch_namespaced_deployment(name=name, namespace=namespace, body=body))

    def pod_metrics(self, namespace: str, pod: str) -> Optional[Dict[str, Any]]:
        """Current usage of a pod from the metrics server, or None when the pod has no metrics."""
        try:
            return self.api('custom').get_namespaced_custom_object(
                METRICS_API_GROUP, METRICS_API_VERSION, namespace, 'pods', pod)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def pod_metrics_list(self, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        custom = self.api('custom')
        if namespace:
            data = custom.list_namespaced_custom_object(METRICS_API_GROUP, METRICS_API_VERSION, namespace, 'pods')
        else:
            data = custom.list_cluster_custom_object(METRICS_API_GROUP, METRICS_API_VERSION, 'pods')
        return data.get('items', [])

    def node_metrics(self) -> List[Dict[str, Any]]:
        data = self.api('custom').list_cluster_custom_object(METRICS_API_GROUP, METRICS_API_VERSION, 'nodes')
        return data.get('items', [])

    def log_lines(self, namespace: str, pod: str, follow: bool, tail_lines: int) -> LogStream:
        """Open a pod's log; with ``follow`` the stream stays open for new lines."""
        resp = self.api('core').read_namespaced_pod_log(
            name=pod, namespace=namespace, follow=follow, tail_lines=tail_lines, _preload_content=False)
        return LogStream(resp)

    def open_shell(self, namespace: str, pod: str, command: str) -> Any:
        """Open an interactive exec session; returns the websocket client of kubernetes.stream."""
        return stream(
            self.api('core').connect_get_namespaced_pod_exec, pod, namespace,
            command=[command], stderr=True, stdin=True, stdout=True, tty=True,
            _preload_content=False)

    def close(self) -> None:
        with self._lock:
            if self._api_client is not None:
                self._api_client.close()
                self._api_client = None
                self._apis.clear()


class ClientPool:
    """Hands out one ClusterClient per context so connections are reused across commands."""

    def __init__(self):
        self._clients: Dict[ClusterContext, ClusterClient] = {}
        self._lock = threading.Lock()

    def get(self, context: ClusterContext) -> ClusterClient:
        with self._lock:
            kube = self._clients.get(context)
            if kube is None:
                kube = self._clients[context] = ClusterClient(context)
            return kube

    def close(self) -> None:
        with self._lock:
            for kube in self._clients.values():
                kube.close()
            self._clients.clear()


def list_contexts(kubeconfig: Optional[str], current: Optional[str] = None) -> List[ClusterInfo]:
    """
    Enumerate the contexts of a kubeconfig file.

    ``current`` overrides the kubeconfig's own current-context when deciding
    which entry is flagged as current. An unreadable kubeconfig yields an
    empty list.
    """
    try:
        contexts, active = config.list_kube_config_contexts(config_file=kubeconfig)
    except (config.ConfigException, OSError) as e:
        log.warning(f"[kube] No kubeconfig contexts found: {e}")
        return []
    selected = current or (active or {}).get('name')
    return [ClusterInfo(name=c['name'], current=c['name'] == selected) for c in contexts or []]
