"""Message handler: filters incoming messages, resolves a reply, sends it."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from wa_autoreply.ai.client import CompletionClient, UpstreamError
from wa_autoreply.ai.keywords import match_keyword
from wa_autoreply.config import CompletionConfig, ReplyConfig
from wa_autoreply.core.stats import MessageStats
from wa_autoreply.core.switch import AutoReplySwitch
from wa_autoreply.core.types import Presence, Role
from wa_autoreply.log import get_logger
from wa_autoreply.messenger.models import IncomingMessage, OutgoingMessage
from wa_autoreply.storage.history import ConversationStore

logger = get_logger(__name__)

DEFAULT_CONTACT_SERVER = "s.whatsapp.net"


class ReplySource(StrEnum):
    KEYWORD = "keyword"
    COMPLETION = "completion"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class Reply:
    text: str
    source: ReplySource


class MessageTransport(Protocol):
    async def send_message(self, message: OutgoingMessage) -> None: ...

    async def send_presence(self, state: Presence, chat_id: str) -> None: ...


def normalize_contact(address: str) -> str:
    """Accept bare phone numbers in config as well as full addresses."""
    address = address.strip()
    if "@" in address:
        return address
    digits = "".join(ch for ch in address if ch.isdigit())
    return f"{digits}@{DEFAULT_CONTACT_SERVER}"


class MessageHandler:
    """Handles the full flow: message -> filters -> keyword/completion -> history -> send."""

    def __init__(
        self,
        transport: MessageTransport,
        store: ConversationStore,
        completion: CompletionClient | None,
        switch: AutoReplySwitch,
        reply_config: ReplyConfig,
        completion_config: CompletionConfig,
        stats: MessageStats | None = None,
    ):
        self._transport = transport
        self._store = store
        self._completion = completion
        self._switch = switch
        self._config = reply_config
        self._completion_config = completion_config
        self._stats = stats or MessageStats()
        self._excluded = frozenset(normalize_contact(n) for n in reply_config.exclude_numbers)

    @property
    def stats(self) -> MessageStats:
        return self._stats

    def skip_reason(self, message: IncomingMessage) -> str | None:
        """Why *message* gets no reply, or None if it should be answered."""
        if not message.text or not message.text.strip():
            return "empty"
        if message.from_self:
            return "from_self"
        if message.is_broadcast:
            return "broadcast"
        if message.is_group and not self._config.reply_to_groups:
            return "group"
        if message.contact_id in self._excluded:
            return "excluded"
        if not self._switch.enabled:
            return "auto_reply_disabled"
        return None

    async def resolve_reply(self, message: IncomingMessage) -> Reply:
        """Keyword table first, then the completion service, then the fallback text."""
        text = message.text.strip()

        keyword_reply = match_keyword(text, self._config.keywords)
        if keyword_reply is not None:
            self._stats.keyword_responses += 1
            return Reply(keyword_reply, ReplySource.KEYWORD)

        if self._completion is None:
            self._stats.fallback_responses += 1
            return Reply(self._config.fallback_message, ReplySource.FALLBACK)

        history = self._store.history(message.contact_id)
        try:
            generated = await self._completion.complete(
                self._completion_config.system_prompt, history, text
            )
        except UpstreamError as e:
            logger.warning(
                "completion_failed",
                contact_id=message.contact_id,
                status_code=e.status_code,
                error=str(e),
            )
            self._stats.fallback_responses += 1
            return Reply(self._config.fallback_message, ReplySource.FALLBACK)

        # Both turns are recorded together, only once the reply exists.
        self._store.append(message.contact_id, Role.USER, text)
        self._store.append(message.contact_id, Role.ASSISTANT, generated)
        self._stats.ai_responses += 1
        return Reply(generated, ReplySource.COMPLETION)

    def _accepts(self, message: IncomingMessage) -> bool:
        reason = self.skip_reason(message)
        if reason is not None:
            logger.debug("message_skipped", chat_id=message.chat_id, reason=reason)
        return reason is None

    async def decide(self, message: IncomingMessage) -> Reply | None:
        """Return the reply for *message*, or None when it must be ignored."""
        if not self._accepts(message):
            return None
        return await self.resolve_reply(message)

    async def handle(self, message: IncomingMessage) -> Reply | None:
        """Process an incoming message end-to-end. Never raises for delivery errors."""
        if not self._accepts(message):
            return None

        self._stats.received += 1
        logger.info(
            "message_received",
            chat_id=message.chat_id,
            history_size=len(self._store.history(message.contact_id)),
            text=message.text[:200],
        )

        delay = self._config.delay_seconds
        if delay > 0:
            await self._presence(Presence.COMPOSING, message.chat_id)
            if not await self._switch.wait(delay):
                logger.info("reply_cancelled", chat_id=message.chat_id, reason="auto_reply_disabled")
                await self._presence(Presence.AVAILABLE, message.chat_id)
                return None

        reply = await self.resolve_reply(message)

        try:
            await self._transport.send_message(OutgoingMessage(chat_id=message.chat_id, text=reply.text))
        except Exception as e:
            self._stats.send_failures += 1
            logger.error("reply_send_failed", chat_id=message.chat_id, error=str(e))
            return None

        self._stats.sent += 1
        logger.info(
            "reply_sent",
            chat_id=message.chat_id,
            source=str(reply.source),
            text=reply.text[:200],
        )
        await self._presence(Presence.AVAILABLE, message.chat_id)
        return reply

    async def _presence(self, state: Presence, chat_id: str) -> None:
        try:
            await self._transport.send_presence(state, chat_id)
        except Exception as e:
            logger.warning("presence_update_failed", chat_id=chat_id, state=str(state), error=str(e))
