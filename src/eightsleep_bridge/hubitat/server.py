"""HTTP control surface for hubs that poll instead of speaking MQTT (Hubitat).

Routes::

    GET /status                          both sides
    GET /{left|right}/status             one side
    PUT /{left|right}/on
    PUT /{left|right}/off
    PUT /{left|right}/temperature?level=N

Errors come back as ``{"detail": "<text>"}`` with a matching status code.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from eightsleep_bridge.adapters.base import Action, Adapter, AdapterConfig, Command, parse_integer
from eightsleep_bridge.const import (
    EIGHTSLEEP_HUBITAT_HOST,
    EIGHTSLEEP_HUBITAT_PORT,
    HTTP_SHUTDOWN_TIMEOUT,
    HTTP_START_GRACE,
    LEVEL_MAX,
    LEVEL_MIN,
)
from eightsleep_bridge.correlation import correlation_context
from eightsleep_bridge.exceptions import AdapterStartError
from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.models import DeviceState, Side, UserState
from eightsleep_bridge.state.manager import StateManager

logger = get_logger(__name__)

HUB_SERVER_TASK_NAME = "HubServer_SERVE"


class SideStatus(BaseModel):
    on: bool
    level: int
    bed_temperature: float

    @classmethod
    def from_user(cls, user: UserState) -> SideStatus:
        return cls(on=user.is_on(), level=user.target_level, bed_temperature=user.bed_temperature)


class DeviceStatus(BaseModel):
    id: str
    left: SideStatus | None = None
    right: SideStatus | None = None


class MutationResult(BaseModel):
    status: str = "ok"
    level: int | None = None


def parse_level(raw: str | None) -> int:
    """Validate the ``level`` query parameter, raising 400 with a readable reason."""
    if raw is None or raw == "":
        raise HTTPException(status_code=400, detail="level parameter required")
    level = parse_integer(raw)
    if level is None:
        raise HTTPException(status_code=400, detail="invalid level: must be an integer")
    if not LEVEL_MIN <= level <= LEVEL_MAX:
        raise HTTPException(
            status_code=400,
            detail=f"invalid level: must be between {LEVEL_MIN} and {LEVEL_MAX}",
        )
    return level


async def _http_error(_request: Request, exc: Exception) -> Response:
    assert isinstance(exc, StarletteHTTPException)
    detail = "method not allowed" if exc.status_code == 405 else exc.detail
    return JSONResponse({"detail": detail}, status_code=exc.status_code, headers=exc.headers)


class HubServer(Adapter):
    """Hubitat bridge: a FastAPI app served by uvicorn in a background task."""

    lp: str = "hubitat:"

    def __init__(
        self,
        manager: StateManager,
        config: AdapterConfig,
        host: str = EIGHTSLEEP_HUBITAT_HOST,
        port: int = EIGHTSLEEP_HUBITAT_PORT,
    ) -> None:
        super().__init__(manager, config)
        self.host = host
        self.port = port
        self.app = self._build_app()
        self.uvi_server: uvicorn.Server | None = None
        self.serve_task: asyncio.Task[None] | None = None

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="Eight Sleep Hubitat bridge", docs_url=None, redoc_url=None, openapi_url=None)
        app.add_exception_handler(StarletteHTTPException, _http_error)

        @app.middleware("http")
        async def _correlate(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
            with correlation_context():
                return await call_next(request)

        app.add_api_route("/status", self.status, methods=["GET"], response_model_exclude_none=True)
        app.add_api_route("/healthcheck", self.health_check, methods=["GET"])
        for side in Side:
            app.add_api_route(
                f"/{side}/status",
                self._side_route(self.side_status, side),
                methods=["GET"],
                response_model=SideStatus,
            )
            app.add_api_route(
                f"/{side}/on",
                self._side_route(self.turn_on, side),
                methods=["PUT"],
                response_model=MutationResult,
                response_model_exclude_none=True,
            )
            app.add_api_route(
                f"/{side}/off",
                self._side_route(self.turn_off, side),
                methods=["PUT"],
                response_model=MutationResult,
                response_model_exclude_none=True,
            )
            app.add_api_route(f"/{side}/temperature", self._temperature_route(side), methods=["PUT"])
        return app

    @staticmethod
    def _side_route(handler: Callable[[Side], Awaitable[BaseModel]], side: Side) -> Callable[[], Awaitable[BaseModel]]:
        async def endpoint():
            return await handler(side)

        endpoint.__name__ = f"{handler.__name__}_{side}"
        return endpoint

    def _temperature_route(self, side: Side) -> Callable[[str | None], Awaitable[MutationResult]]:
        async def endpoint(level: str | None = None) -> MutationResult:
            return await self.set_temperature(side, parse_level(level))

        endpoint.__name__ = f"set_temperature_{side}"
        return endpoint

    async def health_check(self) -> dict[str, str]:
        return {"status": "ok"}

    async def status(self) -> DeviceStatus:
        state = await self._get_state()
        return DeviceStatus(
            id=state.id,
            left=SideStatus.from_user(state.left_user) if state.left_user else None,
            right=SideStatus.from_user(state.right_user) if state.right_user else None,
        )

    async def side_status(self, side: Side) -> SideStatus:
        state = await self._get_state()
        user = state.get_side(side)
        if user is None:
            raise HTTPException(status_code=404, detail=f"no user assigned to {side} side")
        return SideStatus.from_user(user)

    async def turn_on(self, side: Side) -> MutationResult:
        await self._run(Command(action=Action.ON, side=side), "turn on")
        return MutationResult()

    async def turn_off(self, side: Side) -> MutationResult:
        await self._run(Command(action=Action.OFF, side=side), "turn off")
        return MutationResult()

    async def set_temperature(self, side: Side, level: int) -> MutationResult:
        await self._run(Command(action=Action.SET_TEMPERATURE, side=side, temperature=level), "set temperature")
        return MutationResult(level=level)

    async def _get_state(self) -> DeviceState:
        try:
            return await self.manager.get_state()
        except Exception as e:
            logger.warning("%s failed to get state: %s", f"{self.lp}status:", e)
            raise HTTPException(status_code=500, detail=f"failed to get state: {e}") from e

    async def _run(self, cmd: Command, what: str) -> None:
        lp = f"{self.lp}command:"
        try:
            await self.handle_command(cmd)
        except Exception as e:
            logger.warning("%s failed to %s on %s side: %s", lp, what, cmd.side, e)
            raise HTTPException(status_code=500, detail=f"failed to {what}: {e}") from e
        logger.info("%s %s on %s side", lp, what, cmd.side)

    async def _serve(self) -> None:
        lp = f"{self.lp}serve:"
        assert self.uvi_server is not None
        try:
            await self.uvi_server.serve()
        except SystemExit as e:
            # uvicorn exits the process when it cannot bind
            msg = f"HTTP server on {self.host}:{self.port} exited during startup"
            raise AdapterStartError(msg) from e
        except asyncio.CancelledError:
            logger.info("%s HTTP server cancelled", lp)
            raise
        else:
            logger.info("%s HTTP server stopped", lp)

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        if self.serve_task is not None and not self.serve_task.done():
            logger.debug("%s already running", lp)
            return
        logger.info("%s starting HTTP server on %s:%s", lp, self.host, self.port)
        self.uvi_server = uvicorn.Server(
            config=uvicorn.Config(
                self.app,
                host=self.host,
                port=self.port,
                log_config={
                    "version": 1,
                    "disable_existing_loggers": False,
                },
                log_level="info",
            )
        )
        self.serve_task = asyncio.create_task(self._serve(), name=HUB_SERVER_TASK_NAME)
        await asyncio.sleep(HTTP_START_GRACE)
        if self.serve_task.done():
            task, self.serve_task = self.serve_task, None
            self.uvi_server = None
            exc = None if task.cancelled() else task.exception()
            if isinstance(exc, AdapterStartError):
                raise exc
            msg = f"HTTP server on {self.host}:{self.port} stopped during startup"
            raise AdapterStartError(msg) from exc

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        if self.serve_task is None or self.uvi_server is None:
            return
        task, self.serve_task = self.serve_task, None
        logger.info("%s stopping HTTP server...", lp)
        self.uvi_server.should_exit = True
        try:
            async with asyncio.timeout(HTTP_SHUTDOWN_TIMEOUT):
                _ = await asyncio.gather(task, return_exceptions=True)
        except TimeoutError:
            logger.warning("%s graceful shutdown timed out after %ss, forcing", lp, HTTP_SHUTDOWN_TIMEOUT)
            self.uvi_server.force_exit = True
            _ = task.cancel()
            _ = await asyncio.gather(task, return_exceptions=True)
        finally:
            self.uvi_server = None
