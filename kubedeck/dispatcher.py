"""
Command dispatch for Kubedeck.

The UI sends commands as ``{"command": name, "args": {...}}``. Two entry
points exist:

- ``submit``: fire-and-forget. One-shot commands run as their own asyncio
  task and report through the event sink; stream commands start or stop
  streams in the task registry before ``submit`` returns, so a stop that
  follows a start is never lost.
- ``execute_sync``: request/response. The command's ResultEnvelope is
  returned to the caller; failures are additionally reported on the error
  channel and leave ``data`` empty.

The cluster context is read once per command, when it is dispatched. A
context switch never changes the cluster of a running stream.
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from .config import Settings, log_exception
from .constants import SIGNAL_CLUSTER_FOUND, SIGNAL_NO_CLUSTER_FOUND
from .events import Emitter, EventSink
from .exceptions import MissingArgumentError, UnknownCommandError
from .kinds import ResourceKind
from .kube import ClientPool, ClusterClient, describe_api_error, list_contexts, run_blocking
from .models import ClusterContext, ClusterInfo, CommandEnvelope, ResultEnvelope
from .pollers import (
    collect_deployment_metrics, fetch_pod_logs, relay_shell, stream_deployment_metrics,
    stream_pod_metrics, tail_pod_logs,
)
from .registry import AppState, StreamCategory, StreamHandle, StreamState
from .resources import ResourceDispatcher
from .templates import get_template
from .validation import optional_arg, require_arg

log = logging.getLogger('kubedeck')

# Async, one-shot
GET_ALL_NS = "get_all_ns"
GET_DEPLOYMENTS = "get_deployments"
GET_RESOURCE = "get_resource"
GET_RESOURCE_WITH_METRICS = "get_resource_with_metrics"
CREATE_RESOURCE = "apply_resource"
DELETE_RESOURCE = "delete_resource"
RESTART_DEPLOYMENTS = "restart_deployments"
GET_PODS_FOR_DEPLOYMENT_ASYNC = "get_pods_for_deployment_async"
GET_METRICS_FOR_DEPLOYMENT = "get_metrics_for_deployment"
GET_LOGS_FOR_POD = "get_logs_for_pod"
GET_ENVIRONMENT_VARIABLES_FOR_POD = "get_environment_variables_for_pod"
APP_START = "app_start"

# Async, streams
TAIL_LOGS_FOR_POD = "tail_logs_for_pod"
OPEN_SHELL = "open_shell"
SEND_TO_SHELL = "send_to_shell"
STREAM_METRICS_FOR_POD = "stream_metrics_for_pod"
STREAM_METRICS_FOR_DEPLOYMENT = "stream_metrics_for_deployment"
STOP_LIVE_TAIL = "stop_live_tail"
STOP_ALL_METRICS_STREAMS = "stop_all_metrics_streams"
STOP_SHELL = "stop_shell"

# Sync
GET_PODS_FOR_DEPLOYMENT = "get_pods_for_deployment"
GET_DEPLOYMENT = "get_deployment"
GET_RESOURCE_DEFINITION = "get_resource_definition"
EDIT_RESOURCE = "edit_resource"
GET_RESOURCE_TEMPLATE = "get_resource_template"
GET_ALL_CLUSTER_CONTEXTS = "get_all_cluster_contexts"
SET_CURRENT_CLUSTER_CONTEXT = "set_current_cluster_context"
GET_CURRENT_CLUSTER_CONTEXT = "get_current_cluster_context"

OneShot = Callable[[ClusterClient, CommandEnvelope], Awaitable[None]]
StreamCommand = Callable[[ClusterClient, CommandEnvelope], Optional[StreamHandle]]
SyncCommand = Callable[[ClusterClient, CommandEnvelope], Awaitable[str]]


class CommandDispatcher:
    """
    Routes command envelopes to resource operations and streams.

    Attributes:
        state: Shared context and task registry
        settings: Runtime settings (metrics interval, kubeconfig, namespaces)
        emitter: Envelope builder bound to the event sink
        resources: One-shot resource operations
    """

    def __init__(
        self,
        state: AppState,
        sink: EventSink,
        settings: Optional[Settings] = None,
        client_factory: Optional[Callable[[ClusterContext], ClusterClient]] = None,
    ):
        self.state = state
        self.settings = settings or Settings()
        self.emitter = Emitter(sink)
        self.resources = ResourceDispatcher(self.emitter, self.settings.namespaces)
        self._pool: Optional[ClientPool] = None
        if client_factory is None:
            self._pool = ClientPool()
            client_factory = self._pool.get
        self.client_factory = client_factory
        self._tasks: Set[asyncio.Task] = set()

        self._one_shot: Dict[str, OneShot] = {
            GET_ALL_NS: self._get_all_ns,
            GET_DEPLOYMENTS: self._get_deployments,
            GET_RESOURCE: self._get_resource,
            GET_RESOURCE_WITH_METRICS: self._get_resource_with_metrics,
            CREATE_RESOURCE: self._create_resource,
            DELETE_RESOURCE: self._delete_resource,
            RESTART_DEPLOYMENTS: self._restart_deployment,
            GET_PODS_FOR_DEPLOYMENT_ASYNC: self._get_pods_for_deployment_async,
            GET_METRICS_FOR_DEPLOYMENT: self._get_metrics_for_deployment,
            GET_LOGS_FOR_POD: self._get_logs_for_pod,
            GET_ENVIRONMENT_VARIABLES_FOR_POD: self._get_environment_variables,
            APP_START: self._app_start,
        }
        self._streams: Dict[str, StreamCommand] = {
            TAIL_LOGS_FOR_POD: self._tail_logs,
            OPEN_SHELL: self._open_shell,
            SEND_TO_SHELL: self._send_to_shell,
            STREAM_METRICS_FOR_POD: self._stream_pod_metrics,
            STREAM_METRICS_FOR_DEPLOYMENT: self._stream_deployment_metrics,
            STOP_LIVE_TAIL: self._stop_logs,
            STOP_ALL_METRICS_STREAMS: self._stop_metrics,
            STOP_SHELL: self._stop_shell,
        }
        self._sync: Dict[str, SyncCommand] = {
            GET_PODS_FOR_DEPLOYMENT: self._sync_pods_for_deployment,
            GET_DEPLOYMENT: self._sync_deployment,
            GET_RESOURCE_DEFINITION: self._sync_resource_definition,
            EDIT_RESOURCE: self._sync_edit_resource,
            GET_RESOURCE_TEMPLATE: self._sync_resource_template,
            GET_ALL_CLUSTER_CONTEXTS: self._sync_all_contexts,
            SET_CURRENT_CLUSTER_CONTEXT: self._sync_set_context,
            GET_CURRENT_CLUSTER_CONTEXT: self._sync_current_context,
        }

    # -- entry points -----------------------------------------------------

    def submit(self, envelope: CommandEnvelope) -> Optional[asyncio.Task]:
        """
        Dispatch a command without waiting for it. Must be called from the event loop.

        Returns the task running the command (the stream task for stream
        starts), or None for stop/send commands and rejected commands.
        """
        command = envelope.command
        kube = self.client_factory(self.state.context)
        log.debug(f"[dispatch] {command} args={dict(envelope.args)} context='{kube.context.name}'")

        stream_command = self._streams.get(command)
        if stream_command is not None:
            try:
                handle = stream_command(kube, envelope)
            except MissingArgumentError as e:
                self.emitter.error(command, str(e))
                return None
            return handle.task if handle is not None else None

        handler = self._one_shot.get(command)
        if handler is None:
            self._reject(UnknownCommandError(command))
            return None
        loop = asyncio.get_event_loop()
        task = loop.create_task(self._guard(handler, kube, envelope))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _reject(self, err: UnknownCommandError) -> None:
        log.error(f"[dispatch] Failed to find command '{err.command}'")
        self.emitter.error(err.command, str(err))

    async def _guard(self, handler: OneShot, kube: ClusterClient, envelope: CommandEnvelope) -> None:
        try:
            await handler(kube, envelope)
        except MissingArgumentError as e:
            self.emitter.error(envelope.command, str(e))
        except Exception as e:
            log_exception(f"[dispatch] {envelope.command} failed", e)
            self.emitter.error(envelope.command, describe_api_error(e))

    async def execute_sync(self, envelope: CommandEnvelope) -> ResultEnvelope:
        """Run a request/response command and return its envelope."""
        command = envelope.command
        result = ResultEnvelope(command=command)
        handler = self._sync.get(command)
        if handler is None:
            self._reject(UnknownCommandError(command))
            return result
        kube = self.client_factory(self.state.context)
        try:
            result.data = await handler(kube, envelope)
        except Exception as e:
            log_exception(f"[dispatch] {command} failed", e)
            self.emitter.error(command, describe_api_error(e))
        return result

    async def shutdown(self) -> None:
        await self.state.registry.shutdown()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._pool is not None:
            self._pool.close()

    # -- one-shot commands ------------------------------------------------

    async def _get_all_ns(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        await self.resources.get_all_namespaces(kube, env.command)

    async def _get_deployments(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        ns = require_arg(env.args, 'ns', env.command)
        await self.resources.fetch(kube, ns, ResourceKind.DEPLOYMENT, env.command)

    async def _get_resource(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        kind = require_arg(env.args, 'kind', env.command)
        await self.resources.fetch(kube, optional_arg(env.args, 'ns'), kind, env.command)

    async def _get_resource_with_metrics(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        kind = require_arg(env.args, 'kind', env.command)
        await self.resources.fetch_with_metrics(kube, optional_arg(env.args, 'ns'), kind, env.command)

    async def _create_resource(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        body = require_arg(env.args, 'resource', env.command)
        await self.resources.create_resource(
            kube, body, optional_arg(env.args, 'kind'), optional_arg(env.args, 'ns'), env.command)

    async def _delete_resource(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        name = require_arg(env.args, 'name', env.command)
        kind = require_arg(env.args, 'kind', env.command)
        await self.resources.delete_resource(kube, optional_arg(env.args, 'ns'), name, kind, env.command)

    async def _restart_deployment(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        ns = require_arg(env.args, 'ns', env.command)
        deployment = require_arg(env.args, 'deployment', env.command)
        await self.resources.restart_deployment(kube, ns, deployment, env.command)

    async def _get_pods_for_deployment_async(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        ns = require_arg(env.args, 'ns', env.command)
        deployment = require_arg(env.args, 'deployment', env.command)
        pods = await self.resources.get_pods_for_deployment(kube, ns, deployment)
        self.emitter.command_result(env.command, json.dumps(pods))

    async def _get_metrics_for_deployment(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        ns = require_arg(env.args, 'ns', env.command)
        deployment = require_arg(env.args, 'deployment', env.command)
        log.info(f"[metrics] Fetching metrics for deployment={ns}/{deployment}")
        pods = await self.resources.get_pods_for_deployment(kube, ns, deployment)
        samples = await collect_deployment_metrics(kube, ns, pods)
        self.emitter.command_result(env.command, json.dumps([s.to_dict() for s in samples]))

    async def _get_logs_for_pod(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        ns = require_arg(env.args, 'ns', env.command)
        pod = require_arg(env.args, 'pod', env.command)
        await fetch_pod_logs(kube, self.emitter, ns, pod, env.command)

    async def _get_environment_variables(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        ns = require_arg(env.args, 'ns', env.command)
        pod = require_arg(env.args, 'pod', env.command)
        await self.resources.get_environment_variables(kube, ns, pod, env.command)

    async def _app_start(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        log.debug("[dispatch] App started")
        clusters = await run_blocking(list_contexts, self.state.context.kubeconfig)
        if clusters:
            log.debug(f"[dispatch] {len(clusters)} cluster context(s) found")
            self.emitter.signal(SIGNAL_CLUSTER_FOUND)
        else:
            self.emitter.signal(SIGNAL_NO_CLUSTER_FOUND)

    # -- stream commands --------------------------------------------------

    def _tail_logs(self, kube: ClusterClient, env: CommandEnvelope) -> StreamHandle:
        ns = require_arg(env.args, 'ns', env.command)
        pod = require_arg(env.args, 'pod', env.command)
        return self.state.registry.start(
            StreamCategory.LOGS,
            lambda handle: tail_pod_logs(kube, self.emitter, handle, ns, pod, env.command),
            label=pod,
        )

    def _open_shell(self, kube: ClusterClient, env: CommandEnvelope) -> StreamHandle:
        ns = require_arg(env.args, 'ns', env.command)
        pod = require_arg(env.args, 'pod', env.command)
        return self.state.registry.start(
            StreamCategory.SHELL,
            lambda handle: relay_shell(kube, self.emitter, handle, ns, pod, env.command),
            label=pod,
        )

    def _send_to_shell(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        text = require_arg(env.args, 'command', env.command)
        if self.state.registry.send_to_shell(text) == 0:
            self.emitter.error(env.command, "No open shell session")

    def _stream_pod_metrics(self, kube: ClusterClient, env: CommandEnvelope) -> StreamHandle:
        ns = require_arg(env.args, 'ns', env.command)
        pod = require_arg(env.args, 'pod', env.command)
        interval = self.settings.metrics_interval
        return self.state.registry.start(
            StreamCategory.METRICS,
            lambda handle: stream_pod_metrics(kube, self.emitter, handle, ns, pod, interval, env.command),
            label=pod,
        )

    def _stream_deployment_metrics(self, kube: ClusterClient, env: CommandEnvelope) -> StreamHandle:
        ns = require_arg(env.args, 'ns', env.command)
        deployment = require_arg(env.args, 'deployment', env.command)
        interval = self.settings.metrics_interval

        async def worker(handle: StreamHandle) -> None:
            try:
                pods = await self.resources.get_pods_for_deployment(kube, ns, deployment)
            except Exception as e:
                handle.mark(StreamState.FAILED)
                self.emitter.error(env.command, f"Failed to resolve pods of deployment '{deployment}': {describe_api_error(e)}")
                return
            await stream_deployment_metrics(kube, self.emitter, handle, ns, deployment, pods, interval, env.command)

        return self.state.registry.start(StreamCategory.METRICS, worker, label=deployment)

    def _stop_logs(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        self.state.registry.stop_all_logs()

    def _stop_metrics(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        self.state.registry.stop_all_metrics()

    def _stop_shell(self, kube: ClusterClient, env: CommandEnvelope) -> None:
        self.state.registry.stop(StreamCategory.SHELL)

    # -- sync commands ----------------------------------------------------

    async def _sync_pods_for_deployment(self, kube: ClusterClient, env: CommandEnvelope) -> str:
        ns = require_arg(env.args, 'ns', env.command)
        deployment = require_arg(env.args, 'deployment', env.command)
        return json.dumps(await self.resources.get_pods_for_deployment(kube, ns, deployment))

    async def _sync_deployment(self, kube: ClusterClient, env: CommandEnvelope) -> str:
        ns = require_arg(env.args, 'ns', env.command)
        deployment = require_arg(env.args, 'deployment', env.command)
        return json.dumps(await self.resources.get_deployment(kube, ns, deployment))

    async def _sync_resource_definition(self, kube: ClusterClient, env: CommandEnvelope) -> str:
        name = require_arg(env.args, 'name', env.command)
        kind = require_arg(env.args, 'kind', env.command)
        return await self.resources.get_resource_definition(kube, optional_arg(env.args, 'ns'), name, kind)

    async def _sync_edit_resource(self, kube: ClusterClient, env: CommandEnvelope) -> str:
        name = require_arg(env.args, 'name', env.command)
        kind = require_arg(env.args, 'kind', env.command)
        body = require_arg(env.args, 'resource', env.command)
        result = await self.resources.apply_edit(kube, optional_arg(env.args, 'ns'), body, name, kind)
        if not result.ok:
            self.emitter.error(env.command, result.message)
            return ""
        return result.message

    async def _sync_resource_template(self, kube: ClusterClient, env: CommandEnvelope) -> str:
        return get_template(require_arg(env.args, 'kind', env.command))

    async def _sync_all_contexts(self, kube: ClusterClient, env: CommandEnvelope) -> str:
        context = self.state.context
        clusters = await run_blocking(list_contexts, context.kubeconfig, context.name or None)
        return json.dumps([c.to_dict() for c in clusters])

    async def _sync_set_context(self, kube: ClusterClient, env: CommandEnvelope) -> str:
        name = require_arg(env.args, 'cluster', env.command)
        self.state.set_context(name)
        return ""

    async def _sync_current_context(self, kube: ClusterClient, env: CommandEnvelope) -> str:
        context = self.state.context
        if context.name:
            return json.dumps(ClusterInfo(name=context.name, current=True).to_dict())
        clusters = await run_blocking(list_contexts, context.kubeconfig)
        current = next((c for c in clusters if c.current), ClusterInfo(name="", current=False))
        return json.dumps(current.to_dict())
