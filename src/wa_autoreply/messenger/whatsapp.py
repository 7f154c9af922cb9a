"""WhatsApp client using neonize (whatsmeow bindings, asyncio flavour)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from neonize.aioze.client import NewAClient
from neonize.aioze.events import (
    ConnectedEv,
    ConnectFailureEv,
    DisconnectedEv,
    LoggedOutEv,
    MessageEv,
    PairStatusEv,
)
from neonize.utils import build_jid
from neonize.utils.enum import ChatPresence, ChatPresenceMedia

from wa_autoreply.config import WhatsAppConfig
from wa_autoreply.core.types import Presence
from wa_autoreply.log import get_logger
from wa_autoreply.messenger.base import ClientListener, MessagingClient
from wa_autoreply.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

SESSION_DB_NAME = "session.sqlite3"
USER_SERVER = "s.whatsapp.net"
GROUP_SERVER = "g.us"
BROADCAST_SERVER = "broadcast"

_PRESENCE_MAP = {
    Presence.COMPOSING: ChatPresence.CHAT_PRESENCE_COMPOSING,
    Presence.AVAILABLE: ChatPresence.CHAT_PRESENCE_PAUSED,
}


def jid_to_str(jid: Any) -> str:
    """Render a JID without its device part (the normalized contact id)."""
    return f"{jid.User}@{jid.Server}"


def str_to_jid(address: str) -> Any:
    user, _, server = address.partition("@")
    return build_jid(user, server or USER_SERVER)


def extract_text(message: Any) -> str:
    """Plain or extended text body of a message, empty for media/other types."""
    body = message.Message
    if body.conversation:
        return body.conversation
    if body.HasField("extendedTextMessage"):
        return body.extendedTextMessage.text or ""
    return ""


class WhatsAppClient(MessagingClient):
    """One neonize session, translated into listener events."""

    def __init__(self, listener: ClientListener, config: WhatsAppConfig):
        super().__init__(listener)
        self._config = config
        db_path = Path(config.auth_dir) / SESSION_DB_NAME
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._client = NewAClient(str(db_path))
        self._authenticated = False
        self._destroyed = False
        self._register_handlers()

    def _register_handlers(self) -> None:
        client = self._client

        @client.qr
        async def _on_qr(_: NewAClient, data_qr: bytes) -> None:
            payload = data_qr.decode("utf-8") if isinstance(data_qr, bytes) else str(data_qr)
            self._listener.on_qr(payload)

        @client.event(PairStatusEv)
        async def _on_pair(_: NewAClient, event: PairStatusEv) -> None:
            if event.Error:
                self._listener.on_auth_failure(event.Error)
                return
            self._authenticated = True
            self._listener.on_authenticated()

        @client.event(ConnectedEv)
        async def _on_connected(_: NewAClient, __: ConnectedEv) -> None:
            # Restored sessions connect without a pairing step.
            if not self._authenticated:
                self._authenticated = True
                self._listener.on_authenticated()
            self._listener.on_ready()

        @client.event(LoggedOutEv)
        async def _on_logged_out(_: NewAClient, event: LoggedOutEv) -> None:
            self._listener.on_auth_failure(f"logged out (reason={event.Reason})")

        @client.event(ConnectFailureEv)
        async def _on_connect_failure(_: NewAClient, event: ConnectFailureEv) -> None:
            self._listener.on_error(RuntimeError(f"connect failure: {event.Reason} {event.Message}"))

        @client.event(DisconnectedEv)
        async def _on_disconnected(_: NewAClient, __: DisconnectedEv) -> None:
            if not self._destroyed:
                self._listener.on_disconnected("connection closed")

        @client.event(MessageEv)
        async def _on_message(_: NewAClient, event: MessageEv) -> None:
            await self._on_whatsapp_message(event)

    @property
    def is_registered(self) -> bool:
        return bool(self._client.is_logged_in)

    async def initialize(self) -> None:
        logger.info("whatsapp_connecting", auth_dir=self._config.auth_dir)
        await self._client.connect()

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        await self._client.disconnect()
        logger.info("whatsapp_client_destroyed")

    async def send_message(self, message: OutgoingMessage) -> None:
        await self._client.send_message(str_to_jid(message.chat_id), message.text)

    async def send_presence(self, state: Presence, chat_id: str) -> None:
        await self._client.send_chat_presence(
            str_to_jid(chat_id),
            _PRESENCE_MAP[state],
            ChatPresenceMedia.CHAT_PRESENCE_MEDIA_TEXT,
        )

    async def request_pairing_code(self, phone_number: str) -> str:
        digits = "".join(ch for ch in phone_number if ch.isdigit())
        return await self._client.PairPhone(
            digits, show_push_notification=True, client_display_name=self._config.device_name
        )

    async def _on_whatsapp_message(self, event: Any) -> None:
        source = event.Info.MessageSource
        chat = source.Chat
        incoming = IncomingMessage(
            chat_id=jid_to_str(chat),
            contact_id=jid_to_str(chat),
            text=extract_text(event),
            from_self=bool(source.IsFromMe),
            is_broadcast=chat.Server == BROADCAST_SERVER,
            is_group=bool(source.IsGroup) or chat.Server == GROUP_SERVER,
            sender_name=event.Info.Pushname,
        )
        try:
            await self._dispatch_message(incoming)
        except Exception as e:
            logger.error("whatsapp_handler_error", error=str(e), chat_id=incoming.chat_id)


def make_client_factory(config: WhatsAppConfig):
    """Bind *config* into a factory usable by the session controller."""

    def factory(listener: ClientListener) -> WhatsAppClient:
        return WhatsAppClient(listener, config)

    return factory
