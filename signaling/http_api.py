from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .call_coordinator import CallCoordinator
from .gateway import ConnectionGateway

logger = logging.getLogger(__name__)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class SignalingApi:
    """FastAPI application exposing the signaling socket and read-only status."""

    def __init__(
        self,
        coordinator: CallCoordinator,
        gateway: ConnectionGateway,
        *,
        static_root: Optional[Path] = None,
        cors_origins: Sequence[str] = ("*",),
    ) -> None:
        self._coordinator = coordinator
        self._gateway = gateway
        self._app = FastAPI(title="Call signaling relay")
        self._app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cors_origins),
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

        @self._app.get("/api/health")
        async def health() -> dict:
            return {
                "status": "ok",
                "connectedUsers": await self._coordinator.user_count(),
                "connections": self._gateway.connection_count,
                "timestamp": _utc_timestamp(),
            }

        @self._app.get("/api/users")
        async def users() -> list:
            return [record.to_dict() for record in await self._coordinator.snapshot()]

        @self._app.get("/api/state")
        async def state() -> dict:
            snapshot = await self._coordinator.snapshot()
            return {
                "users": [record.to_dict() for record in snapshot],
                "connectedUsers": len(snapshot),
                "connections": self._gateway.connection_count,
                "connectionStats": self._gateway.connection_stats(),
                "events": await self._coordinator.recent_events(limit=100),
                "timestamp": _utc_timestamp(),
            }

        @self._app.websocket("/ws")
        async def signaling_socket(websocket: WebSocket) -> None:
            await self._gateway.serve(websocket, self._coordinator)

        # Mounted last so the API and socket routes take precedence.
        if static_root is not None:
            if static_root.is_dir():
                self._app.mount("/", StaticFiles(directory=static_root, html=True), name="static")
            else:
                logger.warning("Static client assets not found at %s", static_root)

    @property
    def app(self) -> FastAPI:
        return self._app


class SignalingServer:
    """Background task helper for running the signaling app under uvicorn."""

    def __init__(
        self,
        coordinator: CallCoordinator,
        gateway: ConnectionGateway,
        *,
        host: str,
        port: int,
        static_root: Optional[Path] = None,
        cors_origins: Sequence[str] = ("*",),
        ws_ping_interval: Optional[float] = 20.0,
        ws_ping_timeout: Optional[float] = 20.0,
    ) -> None:
        self._api = SignalingApi(
            coordinator,
            gateway,
            static_root=static_root,
            cors_origins=cors_origins,
        )
        self._gateway = gateway
        self._host = host
        self._port = port
        self._ws_ping_interval = ws_ping_interval
        self._ws_ping_timeout = ws_ping_timeout
        self._server: Optional[object] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def app(self) -> FastAPI:
        return self._api.app

    async def start(self) -> None:
        import uvicorn

        if self._server is not None:
            return
        config = uvicorn.Config(
            self._api.app,
            host=self._host,
            port=self._port,
            log_level="info",
            ws_ping_interval=self._ws_ping_interval,
            ws_ping_timeout=self._ws_ping_timeout,
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve())
        logger.info("Signaling server running on http://%s:%s (socket at /ws)", self._host, self._port)

    async def stop(self) -> None:
        if self._server is None:
            return
        assert self._task is not None
        await self._gateway.close_all()
        self._server.should_exit = True
        await self._task
        self._server = None
        self._task = None
