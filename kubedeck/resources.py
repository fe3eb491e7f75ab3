"""
Resource dispatch: one-shot fetches and mutations against the cluster API.

A fetch resolves a kind to a plan of list calls. Most kinds plan a single
list; composite kinds plan more and every step emits its own envelope under
the same command name:

- node: the node list, then the node metrics list
- configmap: the ConfigMap list, then the Secret list

A failing step reports an error envelope and does not stop its siblings.
Envelope data is the JSON list object ``{"kind": "<Kind>List", "items": [...]}``.

Mutations (create, edit, delete, restart) take raw YAML or JSON bodies and
report exactly one envelope each: the success message on the command result
channel, or the failure text on the error channel.

Key Components:
- FETCH_PLAN: kind -> ordered list steps
- pods_for_deployment: Pods selected by a deployment's matchLabels
- ResourceDispatcher: Fetch and mutation operations bound to an Emitter
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml

from .events import Emitter
from .exceptions import ResourceBodyError, UnknownResourceKindError
from .kinds import KIND_SPECS, ResourceKind
from .kube import ClusterClient, describe_api_error, run_blocking
from .models import NamespaceInfo, OperationResult
from .pod_processing import merge_unique, pod_env_view, pod_name

log = logging.getLogger('kubedeck')


@dataclass(frozen=True)
class FetchStep:
    """One list call of a fetch plan; ``list_kind`` names the list in the envelope."""
    list_kind: str
    fetch: Callable[[ClusterClient, Optional[str]], List[Dict[str, Any]]]


def _lister(kind: ResourceKind) -> FetchStep:
    return FetchStep(f"{KIND_SPECS[kind].title}List", lambda kube, ns: kube.list(kind, ns))


_NODE_METRICS = FetchStep("NodeMetricsList", lambda kube, ns: kube.node_metrics())

FETCH_PLAN: Dict[ResourceKind, Tuple[FetchStep, ...]] = {kind: (_lister(kind),) for kind in ResourceKind}
FETCH_PLAN[ResourceKind.NODE] = (_lister(ResourceKind.NODE), _NODE_METRICS)
FETCH_PLAN[ResourceKind.CONFIGMAP] = (_lister(ResourceKind.CONFIGMAP), _lister(ResourceKind.SECRET))


def _as_kind(kind: Union[str, ResourceKind]) -> ResourceKind:
    return kind if isinstance(kind, ResourceKind) else ResourceKind.parse(kind)


def parse_body(text: str) -> Dict[str, Any]:
    """
    Parse a YAML or JSON resource body.

    Raises:
        ResourceBodyError: If the text is not a mapping with apiVersion, kind and metadata.name
    """
    if not text or not text.strip():
        raise ResourceBodyError("Resource body is empty")
    try:
        body = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ResourceBodyError(f"Resource body is not valid YAML/JSON: {e}") from e
    if not isinstance(body, dict):
        raise ResourceBodyError("Resource body must be a mapping")
    for key in ('apiVersion', 'kind'):
        if not body.get(key):
            raise ResourceBodyError(f"Resource body is missing '{key}'")
    if not (body.get('metadata') or {}).get('name'):
        raise ResourceBodyError("Resource body is missing 'metadata.name'")
    return body


def pods_for_deployment(kube: ClusterClient, namespace: str, deployment: str) -> List[Dict[str, Any]]:
    """
    Pods matching any one of a deployment's matchLabels pairs.

    Each ``key=value`` pair is listed on its own and the results are merged
    (de-duplicated by uid), so a pod carrying only one of the labels is
    included. This is wider than the API's own selector, which requires all
    labels to match.
    """
    d = kube.read(ResourceKind.DEPLOYMENT, deployment, namespace)
    match_labels = (((d.get('spec') or {}).get('selector') or {}).get('matchLabels')) or {}
    log.debug(f"[deploy] {namespace}/{deployment} selector={match_labels}")
    groups = []
    for key, value in match_labels.items():
        pods = kube.list_pods(namespace, f"{key}={value}")
        log.debug(f"[deploy] {key}={value} matched {len(pods)} pod(s)")
        groups.append(pods)
    return merge_unique(groups)


def _metrics_key(obj: Dict[str, Any]) -> Tuple[Optional[str], str]:
    return (obj.get('metadata') or {}).get('namespace'), pod_name(obj)


def _attach_usage(items: List[Dict[str, Any]], metrics: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # Pod names repeat across namespaces; nodes carry no namespace on either side.
    by_key = {_metrics_key(m): m for m in metrics}
    for item in items:
        m = by_key.get(_metrics_key(item))
        if m is None:
            item['usage'] = None
        elif 'containers' in m:
            item['usage'] = {c.get('name'): c.get('usage') for c in m['containers']}
        else:
            item['usage'] = m.get('usage')
    return items


class ResourceDispatcher:
    """
    Fetch and mutation operations that report through an Emitter.

    Attributes:
        emitter: Where envelopes go
        namespaces: Fixed namespace list reported instead of listing namespaces
    """

    def __init__(self, emitter: Emitter, namespaces: Optional[List[str]] = None):
        self.emitter = emitter
        self.namespaces = list(namespaces or [])

    async def fetch(self, kube: ClusterClient, namespace: Optional[str], kind: Union[str, ResourceKind], command: str) -> int:
        """Run the fetch plan of a kind; returns the number of result envelopes emitted."""
        try:
            rk = _as_kind(kind)
        except UnknownResourceKindError as e:
            self.emitter.error(command, str(e))
            return 0
        emitted = 0
        for step in FETCH_PLAN[rk]:
            try:
                items = await run_blocking(step.fetch, kube, namespace)
            except Exception as e:
                self.emitter.error(command, f"Failed to list {step.list_kind}: {describe_api_error(e)}")
                continue
            log.debug(f"[fetch] {command} {step.list_kind} items={len(items)}")
            self.emitter.command_result(command, json.dumps({'kind': step.list_kind, 'items': items}))
            emitted += 1
        return emitted

    async def fetch_with_metrics(self, kube: ClusterClient, namespace: Optional[str], kind: Union[str, ResourceKind], command: str) -> int:
        """Like fetch for pods and nodes, but each item carries a ``usage`` field from the metrics API."""
        try:
            rk = _as_kind(kind)
        except UnknownResourceKindError as e:
            self.emitter.error(command, str(e))
            return 0
        if rk not in (ResourceKind.POD, ResourceKind.NODE):
            return await self.fetch(kube, namespace, rk, command)
        step = _lister(rk)
        try:
            items = await run_blocking(step.fetch, kube, namespace)
        except Exception as e:
            self.emitter.error(command, f"Failed to list {step.list_kind}: {describe_api_error(e)}")
            return 0
        try:
            if rk is ResourceKind.POD:
                metrics = await run_blocking(kube.pod_metrics_list, namespace)
            else:
                metrics = await run_blocking(kube.node_metrics)
        except Exception as e:
            log.warning(f"[fetch] metrics unavailable for {step.list_kind}: {describe_api_error(e)}")
            metrics = []
        self.emitter.command_result(command, json.dumps({'kind': step.list_kind, 'items': _attach_usage(items, metrics)}))
        return 1

    async def get_all_namespaces(self, kube: ClusterClient, command: str) -> None:
        if self.namespaces:
            data = [NamespaceInfo(name=n).to_dict() for n in self.namespaces]
            self.emitter.command_result(command, json.dumps(data))
            return
        try:
            items = await run_blocking(kube.list, ResourceKind.NAMESPACE)
        except Exception as e:
            self.emitter.error(command, f"Failed to list namespaces: {describe_api_error(e)}")
            return
        data = [NamespaceInfo(name=pod_name(ns)).to_dict() for ns in items]
        self.emitter.command_result(command, json.dumps(data))

    def _report(self, command: str, result: OperationResult) -> OperationResult:
        if result.ok:
            self.emitter.command_result(command, result.message)
        else:
            self.emitter.error(command, result.message)
        return result

    async def apply_create(self, kube: ClusterClient, body_text: str, kind: Optional[str], namespace: Optional[str]) -> OperationResult:
        try:
            body = parse_body(body_text)
            if kind and _as_kind(kind) is not _as_kind(body['kind']):
                raise ResourceBodyError(f"Resource body is a {body['kind']}, expected {kind}")
            created = await run_blocking(kube.create, body, namespace)
        except Exception as e:
            return OperationResult(False, f"Failed to create resource: {describe_api_error(e)}")
        names = ', '.join(f"{body['kind']}/{pod_name(obj)}" for obj in created) or f"{body['kind']}/{body['metadata']['name']}"
        log.info(f"[apply] created {names}")
        return OperationResult(True, f"Created {names}")

    async def create_resource(self, kube: ClusterClient, body_text: str, kind: Optional[str], namespace: Optional[str], command: str) -> OperationResult:
        return self._report(command, await self.apply_create(kube, body_text, kind, namespace))

    async def apply_delete(self, kube: ClusterClient, namespace: Optional[str], name: str, kind: str) -> OperationResult:
        try:
            rk = _as_kind(kind)
            await run_blocking(kube.delete, rk, name, namespace)
        except Exception as e:
            return OperationResult(False, f"Failed to delete {kind} '{name}': {describe_api_error(e)}")
        log.info(f"[delete] {rk.value}/{name} ns={namespace or '-'}")
        return OperationResult(True, f"Deleted {rk.value}/{name}")

    async def delete_resource(self, kube: ClusterClient, namespace: Optional[str], name: str, kind: str, command: str) -> OperationResult:
        return self._report(command, await self.apply_delete(kube, namespace, name, kind))

    async def apply_edit(self, kube: ClusterClient, namespace: Optional[str], body_text: str, name: str, kind: str) -> OperationResult:
        try:
            rk = _as_kind(kind)
            body = parse_body(body_text)
            await run_blocking(kube.patch, rk, name, namespace, body)
        except Exception as e:
            return OperationResult(False, f"Failed to edit {kind} '{name}': {describe_api_error(e)}")
        log.info(f"[edit] {rk.value}/{name} ns={namespace or '-'}")
        return OperationResult(True, "Success")

    async def restart_deployment(self, kube: ClusterClient, namespace: str, deployment: str, command: str) -> OperationResult:
        try:
            await run_blocking(kube.restart_deployment, namespace, deployment)
        except Exception as e:
            log.error(f"[restart] Failed to restart: {deployment}")
            return self._report(command, OperationResult(False, describe_api_error(e)))
        return self._report(command, OperationResult(True, "success"))

    async def get_resource_definition(self, kube: ClusterClient, namespace: Optional[str], name: str, kind: str) -> str:
        """The live object as YAML, without server-managed field bookkeeping."""
        obj = await run_blocking(kube.read, _as_kind(kind), name, namespace)
        (obj.get('metadata') or {}).pop('managedFields', None)
        return yaml.safe_dump(obj, sort_keys=False)

    async def get_deployment(self, kube: ClusterClient, namespace: str, deployment: str) -> Dict[str, Any]:
        return await run_blocking(kube.read, ResourceKind.DEPLOYMENT, deployment, namespace)

    async def get_pods_for_deployment(self, kube: ClusterClient, namespace: str, deployment: str) -> List[Dict[str, Any]]:
        return await run_blocking(pods_for_deployment, kube, namespace, deployment)

    async def get_environment_variables(self, kube: ClusterClient, namespace: str, pod: str, command: str) -> None:
        try:
            obj = await run_blocking(kube.read, ResourceKind.POD, pod, namespace)
        except Exception as e:
            self.emitter.error(command, f"Failed to read pod '{pod}': {describe_api_error(e)}")
            return
        self.emitter.command_result(command, json.dumps(pod_env_view(obj)))
