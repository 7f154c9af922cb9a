"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

import io
import sys

import segno

from wa_autoreply.ai.client import CompletionClient, create_completion_client
from wa_autoreply.ai.handler import MessageHandler
from wa_autoreply.config import AppConfig
from wa_autoreply.core.context import BotContext
from wa_autoreply.core.controller import SessionController
from wa_autoreply.core.machine import MachineSettings, Session
from wa_autoreply.core.retry import RetryPolicy
from wa_autoreply.core.stats import MessageStats
from wa_autoreply.core.switch import AutoReplySwitch
from wa_autoreply.core.types import SessionState
from wa_autoreply.log import get_logger
from wa_autoreply.messenger.base import ClientFactory
from wa_autoreply.services.dashboard import DashboardService
from wa_autoreply.services.scheduler import HistoryScheduler
from wa_autoreply.services.service_manager import ServiceManager
from wa_autoreply.storage.credentials import CredentialStore
from wa_autoreply.storage.history import ConversationStore

logger = get_logger(__name__)


def machine_settings(config: AppConfig) -> MachineSettings:
    return MachineSettings(
        retry=RetryPolicy(
            max_attempts=config.session.max_retries,
            interval=config.session.retry_interval,
        ),
        qr_timeout=config.session.qr_timeout,
        init_timeout=config.session.init_timeout,
        use_phone_number=config.whatsapp.use_phone_number and bool(config.whatsapp.phone_number),
        pairing_delay=config.whatsapp.pairing_delay,
    )


def _print_qr(previous: Session, current: Session) -> None:
    """Show each new QR in the terminal as well as on the dashboard."""
    if current.state is not SessionState.QR_READY or current.qr == previous.qr or not current.qr:
        return
    buffer = io.StringIO()
    segno.make_qr(current.qr, error="m").terminal(out=buffer, compact=True)
    print(buffer.getvalue(), file=sys.stderr)
    logger.info("qr_code_ready", hint="Open WhatsApp > Linked Devices > Link a Device")


class AutoReplyApp:
    """Top-level application orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        client_factory: ClientFactory | None = None,
        completion: CompletionClient | None = None,
    ):
        self.config = config
        self.store = ConversationStore(config.history.file, config.history.max_messages)
        self.credentials = CredentialStore(config.whatsapp.auth_dir)
        self.scheduler = HistoryScheduler(self.store, config.history.save_interval)
        self.completion = completion if completion is not None else create_completion_client(config.completion)
        self.switch = AutoReplySwitch(config.reply.enabled)
        self.stats = MessageStats()

        if client_factory is None:
            from wa_autoreply.messenger.whatsapp import make_client_factory

            client_factory = make_client_factory(config.whatsapp)

        self.controller = SessionController(
            client_factory=client_factory,
            settings=machine_settings(config),
            store=self.store,
            credentials=self.credentials,
            persistence=self.scheduler,
            phone_number=config.whatsapp.phone_number,
        )
        self.handler = MessageHandler(
            transport=self.controller,
            store=self.store,
            completion=self.completion,
            switch=self.switch,
            reply_config=config.reply,
            completion_config=config.completion,
            stats=self.stats,
        )
        self.controller.on_message(self.handler.handle)
        if not config.whatsapp.use_phone_number:
            self.controller.add_observer(_print_qr)

        self.context = BotContext(
            config=config,
            controller=self.controller,
            store=self.store,
            switch=self.switch,
            stats=self.stats,
            completion_enabled=self.completion is not None,
        )

        self.services = ServiceManager()
        self.context.services = self.services
        self.services.register(self.scheduler)
        if config.dashboard.enabled:
            self.services.register(DashboardService(config.dashboard, self.context))

    async def start(self) -> None:
        """Initialize and start all components."""
        self.credentials.ensure()
        await self.services.start_all()
        await self.controller.create()
        logger.info(
            "wa_autoreply_started",
            completion=self.completion.model_name if self.completion else "disabled",
            auth="phone_number" if self.config.whatsapp.use_phone_number else "qr",
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.controller.shutdown()
        await self.services.stop_all()
        if self.completion is not None:
            try:
                await self.completion.close()
            except Exception as e:
                logger.error("completion_close_error", error=str(e))
        logger.info("wa_autoreply_stopped")
