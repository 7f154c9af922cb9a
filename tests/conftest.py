"""Shared test fixtures for wa-autoreply."""

import asyncio

import pytest

from wa_autoreply.ai.client import CompletionClient, UpstreamError
from wa_autoreply.config import CompletionConfig, ReplyConfig
from wa_autoreply.core.controller import SessionController
from wa_autoreply.core.machine import MachineSettings
from wa_autoreply.core.retry import RetryPolicy
from wa_autoreply.core.types import Presence
from wa_autoreply.messenger.base import ClientListener, MessagingClient
from wa_autoreply.messenger.models import IncomingMessage, OutgoingMessage
from wa_autoreply.storage.credentials import CredentialStore
from wa_autoreply.storage.history import ConversationStore


async def settle(rounds: int = 20) -> None:
    """Let spawned dispatch tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClient(MessagingClient):
    """In-memory messaging client; tests drive it through ``listener``."""

    def __init__(self, listener: ClientListener, init_error: Exception | None = None):
        super().__init__(listener)
        self.listener = listener
        self.init_error = init_error
        self.initialized = False
        self.destroyed = False
        self.registered = False
        self.sent: list[OutgoingMessage] = []
        self.presence: list[tuple[Presence, str]] = []
        self.pairing_requests: list[str] = []

    async def initialize(self) -> None:
        self.initialized = True
        if self.init_error is not None:
            raise self.init_error

    async def destroy(self) -> None:
        self.destroyed = True

    async def send_message(self, message: OutgoingMessage) -> None:
        self.sent.append(message)

    async def send_presence(self, state: Presence, chat_id: str) -> None:
        self.presence.append((state, chat_id))

    async def request_pairing_code(self, phone_number: str) -> str:
        self.pairing_requests.append(phone_number)
        return "ABCD-1234"

    @property
    def is_registered(self) -> bool:
        return self.registered

    async def deliver(self, message: IncomingMessage) -> None:
        await self._dispatch_message(message)


class FakeClientFactory:
    def __init__(self) -> None:
        self.clients: list[FakeClient] = []
        self.init_error: Exception | None = None

    def __call__(self, listener: ClientListener) -> FakeClient:
        client = FakeClient(listener, init_error=self.init_error)
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeClient:
        return self.clients[-1]


class FakePersistence:
    def __init__(self) -> None:
        self.scheduled = 0

    def schedule_persistence(self) -> None:
        self.scheduled += 1


class FakeCompletion(CompletionClient):
    def __init__(self, reply: str = "generated reply", fail: bool = False):
        super().__init__(CompletionConfig(api_key="test-key"))
        self.reply = reply
        self.fail = fail
        self.calls: list[tuple[str, list[dict[str, str]], str]] = []

    async def complete(self, system_prompt, history, user_message):
        self.calls.append((system_prompt, list(history), user_message))
        if self.fail:
            raise UpstreamError("upstream down", status_code=503)
        return self.reply


class FakeTransport:
    def __init__(self, fail_send: bool = False, fail_presence: bool = False):
        self.fail_send = fail_send
        self.fail_presence = fail_presence
        self.sent: list[OutgoingMessage] = []
        self.presence: list[tuple[Presence, str]] = []

    async def send_message(self, message: OutgoingMessage) -> None:
        if self.fail_send:
            raise ConnectionError("socket closed")
        self.sent.append(message)

    async def send_presence(self, state: Presence, chat_id: str) -> None:
        if self.fail_presence:
            raise ConnectionError("presence rejected")
        self.presence.append((state, chat_id))


def make_message(text: str = "hello", contact: str = "15551234567@s.whatsapp.net", **kwargs) -> IncomingMessage:
    return IncomingMessage(chat_id=contact, contact_id=contact, text=text, **kwargs)


@pytest.fixture
def store(tmp_path):
    return ConversationStore(tmp_path / "history.json", max_messages=10)


@pytest.fixture
def credentials(tmp_path):
    creds = CredentialStore(tmp_path / "auth")
    creds.ensure()
    (creds.auth_dir / "session.sqlite3").write_text("keys", encoding="utf-8")
    return creds


@pytest.fixture
def settings():
    return MachineSettings(
        retry=RetryPolicy(max_attempts=3, interval=0.02),
        qr_timeout=0.05,
        init_timeout=5.0,
    )


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def persistence():
    return FakePersistence()


@pytest.fixture
def controller(client_factory, settings, store, credentials, persistence):
    return SessionController(
        client_factory=client_factory,
        settings=settings,
        store=store,
        credentials=credentials,
        persistence=persistence,
    )


@pytest.fixture
def reply_config():
    return ReplyConfig(
        delay_seconds=0,
        keywords={"urgent": "Marked urgent.", "thank": "You're welcome!", "hello": "Hi!"},
        fallback_message="Away right now.",
    )
