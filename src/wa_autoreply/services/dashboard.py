"""FastAPI dashboard: status and control endpoints for one bot instance."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Iterator

import segno
import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request

from wa_autoreply import __version__
from wa_autoreply.config import DashboardConfig
from wa_autoreply.core.context import BotContext
from wa_autoreply.core.types import SessionState
from wa_autoreply.log import get_logger
from wa_autoreply.services.base import Service

logger = get_logger(__name__)

router = APIRouter()


def _bot(request: Request) -> BotContext:
    return request.app.state.bot


def render_qr_data_url(payload: str) -> str:
    """PNG data URL for a pairing payload."""
    qr = segno.make_qr(payload, error="m")
    return qr.png_data_uri(scale=6, border=2)


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    bot = _bot(request)
    services = await bot.services.health_check_all() if bot.services is not None else {}
    return {
        "status": "ok" if all(services.values()) else "degraded",
        "version": __version__,
        "state": str(bot.controller.state),
        "services": services,
    }


@router.get("/status")
async def status(request: Request) -> dict[str, Any]:
    bot = _bot(request)
    controller = bot.controller
    return {
        "state": str(controller.state),
        "connected": controller.state is SessionState.READY,
        "autoReply": bot.switch.enabled,
        "retry": {"attempts": controller.retry_attempts, "max": controller.max_retries},
        "historyContacts": bot.store.contact_count,
        "historyMessages": bot.store.message_count,
        "qrAvailable": controller.pending_qr is not None,
        "pairingCode": controller.pairing_code,
        "lastError": controller.session.last_error,
        "completion": {
            "enabled": bot.completion_enabled,
            "backend": bot.config.completion.backend,
            "model": bot.config.completion.model,
        },
        "stats": bot.stats.to_dict(),
    }


@router.post("/toggle")
async def toggle(request: Request) -> dict[str, Any]:
    enabled = _bot(request).switch.toggle()
    return {
        "autoReply": enabled,
        "message": "Auto-reply enabled" if enabled else "Auto-reply disabled",
    }


@router.post("/reset-auth")
async def reset_auth(request: Request) -> dict[str, Any]:
    controller = _bot(request).controller
    await controller.reset_authentication()
    return {
        "message": "Authentication reset, waiting for a new QR code",
        "state": str(controller.state),
    }


@router.post("/restart-client")
async def restart_client(request: Request) -> dict[str, Any]:
    controller = _bot(request).controller
    await controller.restart_client()
    return {"message": "Client restarting", "state": str(controller.state)}


@router.get("/qr-image")
async def qr_image(request: Request) -> dict[str, str]:
    payload = _bot(request).controller.pending_qr
    if payload is None:
        raise HTTPException(status_code=404, detail="No QR code available")
    try:
        data_url = render_qr_data_url(payload)
    except Exception as e:
        logger.error("qr_render_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to render QR code") from e
    return {"dataUrl": data_url}


@router.post("/save-history")
async def save_history(request: Request) -> dict[str, Any]:
    store = _bot(request).store
    if not store.persist():
        raise HTTPException(status_code=500, detail="Failed to save chat history")
    return {"message": f"Chat history saved for {store.contact_count} contacts"}


@router.post("/clear-history")
async def clear_history(request: Request) -> dict[str, Any]:
    bot = _bot(request)
    bot.store.clear()
    bot.stats.reset_responses()
    return {"message": "All chat history cleared"}


def create_dashboard(bot: BotContext) -> FastAPI:
    app = FastAPI(title="wa-autoreply", version=__version__)
    app.state.bot = bot
    app.include_router(router)
    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class DashboardService(Service):
    """Serves the dashboard on the bot's event loop."""

    service_name = "dashboard"

    def __init__(self, config: DashboardConfig, bot: BotContext):
        self._config = config
        self._app = create_dashboard(bot)
        self._server = _EmbeddedServer(
            uvicorn.Config(
                self._app,
                host=config.host,
                port=config.port,
                log_level="warning",
                access_log=False,
            )
        )
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._server.serve())
        logger.info("dashboard_started", url=f"http://{self._config.host}:{self._config.port}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            self._task.cancel()
        self._task = None
        logger.info("dashboard_stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
