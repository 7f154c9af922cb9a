"""Tests for the session controller runtime."""

import asyncio

import pytest

from tests.conftest import FakeClientFactory, FakePersistence, make_message, settle
from wa_autoreply.core.controller import SessionController
from wa_autoreply.core.machine import BACKOFF_TIMER, INIT_TIMER, QR_TIMER, MachineSettings
from wa_autoreply.core.retry import RetryPolicy
from wa_autoreply.core.types import Role, SessionState
from wa_autoreply.messenger.models import OutgoingMessage


@pytest.mark.asyncio
async def test_create_twice_makes_one_client(controller, client_factory):
    await controller.create()
    await controller.create()

    assert controller.state is SessionState.CONNECTING
    assert controller.clients_created == 1
    assert len(client_factory.clients) == 1
    await controller.shutdown()


@pytest.mark.asyncio
async def test_concurrent_create_makes_one_client(controller, client_factory):
    await asyncio.gather(controller.create(), controller.create(), controller.create())

    assert len(client_factory.clients) == 1
    await controller.shutdown()


@pytest.mark.asyncio
async def test_pairing_flow_reaches_ready(controller, client_factory, persistence, store):
    store.append("c1", Role.USER, "hi")
    store.persist()

    await controller.create()
    await settle()
    client = client_factory.latest
    assert client.initialized

    client.listener.on_qr("qr-1")
    await settle()
    assert controller.state is SessionState.QR_READY
    assert controller.pending_qr == "qr-1"
    assert QR_TIMER in controller.active_timers()
    assert INIT_TIMER not in controller.active_timers()

    client.listener.on_authenticated()
    await settle()
    assert controller.state is SessionState.AUTHENTICATED
    assert controller.pending_qr is None

    client.listener.on_ready()
    await settle()
    assert controller.state is SessionState.READY
    assert controller.active_timers() == []
    assert persistence.scheduled == 1
    assert store.history("c1") == [{"role": "user", "content": "hi"}]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_qr_expiry_clears_pending_qr(controller, client_factory):
    await controller.create()
    client_factory.latest.listener.on_qr("qr-1")
    await settle()
    assert controller.pending_qr == "qr-1"

    await asyncio.sleep(0.1)
    await settle()

    assert controller.pending_qr is None
    assert controller.state is SessionState.CONNECTING
    assert INIT_TIMER in controller.active_timers()
    await controller.shutdown()


@pytest.mark.asyncio
async def test_observer_sees_every_transition(controller, client_factory):
    seen = []
    controller.add_observer(lambda prev, cur: seen.append((prev.state, cur.state)))

    await controller.create()
    client_factory.latest.listener.on_qr("qr-1")
    await settle()

    assert seen == [
        (SessionState.DISCONNECTED, SessionState.CONNECTING),
        (SessionState.CONNECTING, SessionState.QR_READY),
    ]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_repeated_failures_end_in_failed_then_reset_recovers(controller, client_factory, credentials):
    client_factory.init_error = RuntimeError("browser crashed")

    await controller.create()
    await asyncio.sleep(0.4)
    await settle()

    assert controller.state is SessionState.FAILED
    assert controller.retry_attempts == controller.max_retries == 3
    assert controller.clients_created == 3
    assert controller.session.last_error == "initialize failed: browser crashed"
    assert BACKOFF_TIMER not in controller.active_timers()

    await asyncio.sleep(0.1)
    await settle()
    assert controller.clients_created == 3

    seen = []
    controller.add_observer(lambda prev, cur: seen.append((prev.state, cur.state)))
    client_factory.init_error = None

    await controller.reset_authentication()

    assert seen == [
        (SessionState.FAILED, SessionState.DISCONNECTED),
        (SessionState.DISCONNECTED, SessionState.CONNECTING),
    ]
    assert controller.state is SessionState.CONNECTING
    assert controller.retry_attempts == 0
    assert controller.clients_created == 4
    assert not credentials.auth_dir.exists()
    await controller.shutdown()


@pytest.mark.asyncio
async def test_client_error_retries_after_backoff(controller, client_factory):
    await controller.create()
    first = client_factory.latest

    first.listener.on_error(RuntimeError("socket closed"))
    await settle()
    assert controller.state is SessionState.DISCONNECTED
    assert controller.retry_attempts == 1
    assert first.destroyed
    assert controller.client is None

    await asyncio.sleep(0.06)
    await settle()
    assert controller.state is SessionState.CONNECTING
    assert controller.clients_created == 2
    await controller.shutdown()


@pytest.mark.asyncio
async def test_events_from_destroyed_client_are_ignored(controller, client_factory):
    await controller.create()
    old = client_factory.latest

    await controller.restart_client()
    assert old.destroyed
    assert controller.clients_created == 2

    old.listener.on_ready()
    old.listener.on_qr("stale-qr")
    await settle()

    assert controller.state is SessionState.CONNECTING
    assert controller.pending_qr is None
    await controller.shutdown()


@pytest.mark.asyncio
async def test_restart_cancels_pending_backoff(controller, client_factory, credentials):
    await controller.create()
    client_factory.latest.listener.on_error(RuntimeError("boom"))
    await settle()
    assert BACKOFF_TIMER in controller.active_timers()

    await controller.restart_client()
    assert BACKOFF_TIMER not in controller.active_timers()
    assert controller.retry_attempts == 0

    await asyncio.sleep(0.06)
    await settle()
    assert controller.clients_created == 2
    assert credentials.has_credentials()
    await controller.shutdown()


@pytest.mark.asyncio
async def test_restart_from_ready_keeps_unsaved_history(controller, client_factory, store):
    await controller.create()
    client_factory.latest.listener.on_ready()
    await settle()
    store.append("c1", Role.USER, "unsaved turn")

    await controller.restart_client()
    client_factory.latest.listener.on_ready()
    await settle()

    assert controller.state is SessionState.READY
    assert store.history("c1") == [{"role": "user", "content": "unsaved turn"}]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_timer_fired_before_restart_does_not_touch_new_client(client_factory, store, credentials):
    settings = MachineSettings(retry=RetryPolicy(max_attempts=3, interval=10.0), init_timeout=0.03)
    controller = SessionController(client_factory, settings, store, credentials)
    await controller.create()

    # The restart queues on the lock first; the init timer fires and queues behind it.
    async with controller._lock:
        restart = asyncio.create_task(controller.restart_client())
        await asyncio.sleep(0.06)
    await restart
    await settle()

    assert controller.state is SessionState.CONNECTING
    assert controller.retry_attempts == 0
    assert controller.session.last_error is None
    assert controller.clients_created == 2
    assert not client_factory.latest.destroyed
    await controller.shutdown()


@pytest.mark.asyncio
async def test_init_timeout_fails_the_attempt(client_factory, store, credentials):
    settings = MachineSettings(retry=RetryPolicy(max_attempts=3, interval=10.0), init_timeout=0.03)
    controller = SessionController(client_factory, settings, store, credentials)

    await controller.create()
    await asyncio.sleep(0.08)
    await settle()

    assert controller.state is SessionState.DISCONNECTED
    assert controller.session.last_error == "initialization timed out"
    assert client_factory.latest.destroyed
    await controller.shutdown()


@pytest.mark.asyncio
async def test_auth_failure_wipes_credentials_then_reconnects(controller, client_factory, credentials):
    await controller.create()
    client_factory.latest.listener.on_auth_failure("session revoked")
    await settle()

    assert controller.state is SessionState.AUTH_FAILED
    assert credentials.has_credentials()

    await asyncio.sleep(0.06)
    await settle()

    assert controller.state is SessionState.CONNECTING
    assert not credentials.has_credentials()
    assert controller.clients_created == 2
    await controller.shutdown()


@pytest.mark.asyncio
async def test_disconnect_from_ready_persists_history(controller, client_factory, store):
    await controller.create()
    client_factory.latest.listener.on_ready()
    await settle()
    store.append("c1", Role.USER, "hello")

    client_factory.latest.listener.on_disconnected("connection lost")
    await settle()

    assert controller.state is SessionState.DISCONNECTED
    assert store.path.exists()
    await controller.shutdown()


@pytest.mark.asyncio
async def test_send_without_client_raises(controller):
    with pytest.raises(RuntimeError):
        await controller.send_message(OutgoingMessage(chat_id="c1", text="hi"))


@pytest.mark.asyncio
async def test_send_goes_through_current_client(controller, client_factory):
    await controller.create()

    await controller.send_message(OutgoingMessage(chat_id="c1", text="hi"))

    assert client_factory.latest.sent == [OutgoingMessage(chat_id="c1", text="hi")]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_messages_routed_to_callback_across_clients(controller, client_factory):
    received = []

    async def on_message(message):
        received.append(message.text)

    controller.on_message(on_message)
    await controller.create()
    await client_factory.latest.deliver(make_message("first"))
    await controller.restart_client()
    await client_factory.latest.deliver(make_message("second"))

    assert received == ["first", "second"]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_shutdown_destroys_client_and_flushes_history(controller, client_factory, store):
    await controller.create()
    store.append("c1", Role.USER, "hi")

    await controller.shutdown()

    assert client_factory.latest.destroyed
    assert store.path.exists()
    assert controller.active_timers() == []

    await controller.create()
    assert controller.clients_created == 1


@pytest.mark.asyncio
async def test_pairing_code_requested_for_phone_login(store, credentials):
    factory = FakeClientFactory()
    settings = MachineSettings(
        retry=RetryPolicy(max_attempts=3, interval=10.0),
        use_phone_number=True,
        pairing_delay=0.01,
    )
    controller = SessionController(
        factory, settings, store, credentials, persistence=FakePersistence(), phone_number="+15551234567"
    )

    await controller.create()
    await asyncio.sleep(0.05)
    await settle()

    assert factory.latest.pairing_requests == ["+15551234567"]
    assert controller.pairing_code == "ABCD-1234"
    await controller.shutdown()
