"""
FastAPI server and WebSocket transport for Kubedeck.

This module connects the UI to the command dispatcher. Commands arrive over
the WebSocket or the HTTP API; every event the core emits is broadcast to all
connected WebSocket clients as ``{"event": <channel>, "payload": {...}}``.

Key Components:
- Hub: EventSink that queues events and broadcasts them in emission order
- create_app: Build the FastAPI app around a dispatcher
- run_server: Main server startup and configuration

Routes:
- ``GET /``: status (version, current context, live streams)
- ``WS /ws``: inbound command envelopes, outbound events
- ``POST /api/command``: dispatch without waiting
- ``POST /api/command/sync``: dispatch and return the ResultEnvelope

Example:
    ```python
    await run_server(Settings(port=8765, context="staging"))
    ```
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from . import __version__
from .config import Settings, log_exception
from .dispatcher import CommandDispatcher
from .events import EventSink
from .kube import ClusterClient
from .models import ClusterContext, CommandEnvelope
from .registry import AppState, StreamCategory

log = logging.getLogger('kubedeck')


class Hub(EventSink):
    """
    Central fan-out of events to WebSocket clients.

    ``emit`` only enqueues, so producers never wait on a slow client. A single
    pump task sends queued events in order; clients that fail a send are
    dropped.

    Attributes:
        clients: Set of connected WebSocket clients
    """

    def __init__(self):
        self.clients: Set[WebSocket] = set()
        self._outbox: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pump: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._loop = asyncio.get_event_loop()
        self._outbox = asyncio.Queue()
        self._pump = self._loop.create_task(self._run())

    async def stop(self) -> None:
        if self._pump is not None:
            self._pump.cancel()
            await asyncio.gather(self._pump, return_exceptions=True)
            self._pump = None

    def emit(self, channel: str, payload: Dict[str, Any]) -> None:
        if self._loop is None or self._outbox is None:
            log.debug(f"[hub] not started, dropping event on {channel}")
            return
        msg = {'event': channel, 'payload': payload}
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._outbox.put_nowait(msg)
        else:
            self._loop.call_soon_threadsafe(self._outbox.put_nowait, msg)

    async def _run(self) -> None:
        while True:
            msg = await self._outbox.get()
            await self.broadcast(msg)

    async def broadcast(self, msg: Dict[str, Any]) -> None:
        """Broadcast message to all connected WebSocket clients."""
        if not self.clients:
            return

        dead = []
        try:
            txt = json.dumps(msg, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            log_exception("[broadcast] Failed to serialize message", e)
            return

        for ws in list(self.clients):
            try:
                await ws.send_text(txt)
            except Exception as e:
                log_exception("[broadcast] Failed to send to client", e)
                dead.append(ws)

        for d in dead:
            self.clients.discard(d)


def create_app(
    settings: Optional[Settings] = None,
    client_factory: Optional[Callable[[ClusterContext], ClusterClient]] = None,
) -> FastAPI:
    """Build the FastAPI app; ``client_factory`` replaces the real cluster clients (tests)."""
    settings = settings or Settings()
    hub = Hub()
    state = AppState(ClusterContext(name=settings.context or "", kubeconfig=settings.kubeconfig))
    dispatcher = CommandDispatcher(state, hub, settings=settings, client_factory=client_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub.start()
        log.info(f"[server] ready context='{state.context.name or '(current)'}'")
        try:
            yield
        finally:
            await dispatcher.shutdown()
            await hub.stop()
            log.info("[server] stopped")

    app = FastAPI(title="kubedeck", version=__version__, lifespan=lifespan)
    app.state.hub = hub
    app.state.dispatcher = dispatcher

    def _envelope(payload: Dict[str, Any]) -> CommandEnvelope:
        try:
            return CommandEnvelope.from_dict(payload)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/")
    async def index():
        return {
            'name': 'kubedeck',
            'version': __version__,
            'context': state.context.name,
            'streams': {c.value: len(state.registry.active(c)) for c in StreamCategory},
        }

    @app.post('/api/command', status_code=202)
    async def post_command(payload: Dict[str, Any]):
        envelope = _envelope(payload)
        dispatcher.submit(envelope)
        return {'ok': True, 'command': envelope.command}

    @app.post('/api/command/sync')
    async def post_sync_command(payload: Dict[str, Any]):
        result = await dispatcher.execute_sync(_envelope(payload))
        return result.to_dict()

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        log.info("[ws] client connected")
        hub.clients.add(ws)
        try:
            while True:
                raw = await ws.receive_text()
                try:
                    envelope = CommandEnvelope.from_json(raw)
                except ValueError as e:
                    log.warning(f"[ws] Invalid command received: {e}")
                    continue
                dispatcher.submit(envelope)
        except WebSocketDisconnect:
            log.info("[ws] client disconnected")
        except Exception as e:
            log_exception("[ws] WebSocket error", e)
        finally:
            hub.clients.discard(ws)

    return app


async def run_server(settings: Settings) -> None:
    """Run the Kubedeck server until interrupted."""
    import uvicorn
    app = create_app(settings)
    config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level=settings.uvicorn_log_level)
    server = uvicorn.Server(config)
    await server.serve()
