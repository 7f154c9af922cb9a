"""Abstract messaging client interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Protocol

from wa_autoreply.core.types import Presence
from wa_autoreply.messenger.models import IncomingMessage, OutgoingMessage


class ClientListener(Protocol):
    """Receiver of connection-lifecycle events emitted by a client."""

    def on_qr(self, payload: str) -> None: ...

    def on_authenticated(self) -> None: ...

    def on_ready(self) -> None: ...

    def on_disconnected(self, reason: str) -> None: ...

    def on_auth_failure(self, reason: str) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


class MessagingClient(ABC):
    """Base class for messaging platform clients.

    A client is an event source (lifecycle events go to the bound
    :class:`ClientListener`, messages to the ``on_message`` callback) and a
    command sink. One instance lives for one connection attempt; after
    :meth:`destroy` a fresh instance is created.
    """

    def __init__(self, listener: ClientListener):
        self._listener = listener
        self._message_callback: Callable[[IncomingMessage], Awaitable[None]] | None = None

    @abstractmethod
    async def initialize(self) -> None:
        """Open the session. Lifecycle progress is reported through the listener."""
        ...

    @abstractmethod
    async def destroy(self) -> None:
        """Tear down the connection. Must be safe to call more than once."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None:
        ...

    @abstractmethod
    async def send_presence(self, state: Presence, chat_id: str) -> None:
        """Publish a chat presence (typing / available) to *chat_id*."""
        ...

    @abstractmethod
    async def request_pairing_code(self, phone_number: str) -> str:
        """Ask for a phone-number pairing code instead of a QR scan."""
        ...

    @property
    @abstractmethod
    def is_registered(self) -> bool:
        """Whether the stored credentials already belong to a paired device."""
        ...

    def on_message(self, callback: Callable[[IncomingMessage], Awaitable[None]]) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    async def _dispatch_message(self, message: IncomingMessage) -> None:
        if self._message_callback is not None:
            await self._message_callback(message)


ClientFactory = Callable[[ClientListener], MessagingClient]
