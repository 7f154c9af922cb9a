"""Tests for the message handler reply pipeline."""

import asyncio

import pytest

from tests.conftest import FakeCompletion, FakeTransport, make_message
from wa_autoreply.ai.handler import MessageHandler, ReplySource, normalize_contact
from wa_autoreply.config import CompletionConfig, ReplyConfig
from wa_autoreply.core.switch import AutoReplySwitch
from wa_autoreply.core.types import Presence, Role

CONTACT = "15551234567@s.whatsapp.net"


def make_handler(store, reply_config, completion=None, transport=None, switch=None):
    return MessageHandler(
        transport=transport or FakeTransport(),
        store=store,
        completion=completion,
        switch=switch or AutoReplySwitch(True),
        reply_config=reply_config,
        completion_config=CompletionConfig(api_key="test-key", system_prompt="Be brief."),
    )


def test_normalize_contact():
    assert normalize_contact("+1 (555) 123-4567") == "15551234567@s.whatsapp.net"
    assert normalize_contact("123@g.us") == "123@g.us"


@pytest.mark.asyncio
async def test_own_message_is_ignored(store, reply_config):
    completion = FakeCompletion()
    transport = FakeTransport()
    handler = make_handler(store, reply_config, completion, transport)

    result = await handler.handle(make_message("tell me a joke", from_self=True))

    assert result is None
    assert transport.sent == []
    assert completion.calls == []
    assert store.contact_count == 0
    assert handler.stats.received == 0


@pytest.mark.asyncio
async def test_decide_applies_the_same_filters(store, reply_config):
    completion = FakeCompletion()
    handler = make_handler(store, reply_config, completion)

    assert await handler.decide(make_message("tell me a joke", is_broadcast=True)) is None
    assert completion.calls == []

    reply = await handler.decide(make_message("tell me a joke"))
    assert reply.source is ReplySource.COMPLETION


@pytest.mark.parametrize(
    ("kwargs", "reason"),
    [
        ({"text": "   "}, "empty"),
        ({"from_self": True}, "from_self"),
        ({"is_broadcast": True}, "broadcast"),
        ({"is_group": True}, "group"),
    ],
)
def test_skip_reasons(store, reply_config, kwargs, reason):
    handler = make_handler(store, reply_config)
    fields = {"text": "hi", **kwargs}
    assert handler.skip_reason(make_message(**fields)) == reason


def test_group_allowed_when_configured(store):
    handler = make_handler(store, ReplyConfig(reply_to_groups=True))
    assert handler.skip_reason(make_message("hi", is_group=True)) is None


def test_excluded_number_is_skipped(store):
    handler = make_handler(store, ReplyConfig(exclude_numbers=["+1 555 123 4567"]))
    assert handler.skip_reason(make_message("hi", contact=CONTACT)) == "excluded"
    assert handler.skip_reason(make_message("hi", contact="447700900000@s.whatsapp.net")) is None


def test_disabled_switch_skips(store, reply_config):
    handler = make_handler(store, reply_config, switch=AutoReplySwitch(False))
    assert handler.skip_reason(make_message("hi")) == "auto_reply_disabled"


@pytest.mark.asyncio
async def test_first_keyword_in_table_order_wins(store):
    completion = FakeCompletion()
    config = ReplyConfig(keywords={"urgent": "Marked urgent.", "thank": "You're welcome!"})
    handler = make_handler(store, config, completion)

    reply = await handler.decide(make_message("this is urgent, thanks"))

    assert reply.text == "Marked urgent."
    assert reply.source is ReplySource.KEYWORD
    assert completion.calls == []


@pytest.mark.asyncio
async def test_keyword_order_follows_configuration(store):
    config = ReplyConfig(keywords={"thank": "You're welcome!", "urgent": "Marked urgent."})
    handler = make_handler(store, config)

    reply = await handler.decide(make_message("this is urgent, thanks"))

    assert reply.text == "You're welcome!"


@pytest.mark.asyncio
async def test_keyword_reply_skips_completion_and_history(store):
    completion = FakeCompletion()
    transport = FakeTransport()
    handler = make_handler(store, ReplyConfig(delay_seconds=0, keywords={"hello": "Hi!"}), completion, transport)

    reply = await handler.handle(make_message("HELLO there"))

    assert reply.text == "Hi!"
    assert [m.text for m in transport.sent] == ["Hi!"]
    assert completion.calls == []
    assert store.history(CONTACT) == []
    assert handler.stats.keyword_responses == 1


@pytest.mark.asyncio
async def test_completion_reply_records_both_turns(store, reply_config):
    store.append(CONTACT, Role.USER, "earlier question")
    store.append(CONTACT, Role.ASSISTANT, "earlier answer")
    completion = FakeCompletion(reply="Why did the chicken cross the road?")
    handler = make_handler(store, reply_config, completion)

    reply = await handler.handle(make_message("tell me a joke"))

    assert reply.source is ReplySource.COMPLETION
    system_prompt, history, user_message = completion.calls[0]
    assert system_prompt == "Be brief."
    assert history == [
        {"role": "user", "content": "earlier question"},
        {"role": "assistant", "content": "earlier answer"},
    ]
    assert user_message == "tell me a joke"
    assert store.history(CONTACT)[-2:] == [
        {"role": "user", "content": "tell me a joke"},
        {"role": "assistant", "content": "Why did the chicken cross the road?"},
    ]
    assert handler.stats.ai_responses == 1


@pytest.mark.asyncio
async def test_completion_failure_sends_fallback_without_history(store, reply_config):
    completion = FakeCompletion(fail=True)
    transport = FakeTransport()
    handler = make_handler(store, reply_config, completion, transport)

    reply = await handler.handle(make_message("tell me a joke"))

    assert reply.text == "Away right now."
    assert reply.source is ReplySource.FALLBACK
    assert [m.text for m in transport.sent] == ["Away right now."]
    assert store.history(CONTACT) == []
    assert handler.stats.fallback_responses == 1


@pytest.mark.asyncio
async def test_fallback_without_completion_client(store, reply_config):
    handler = make_handler(store, reply_config, completion=None)

    reply = await handler.decide(make_message("what's the plan for tomorrow"))

    assert reply.source is ReplySource.FALLBACK
    assert store.contact_count == 0


@pytest.mark.asyncio
async def test_typing_presence_around_delayed_reply(store):
    transport = FakeTransport()
    handler = make_handler(store, ReplyConfig(delay_seconds=0.01, keywords={"hi": "Hey"}), transport=transport)

    await handler.handle(make_message("hi"))

    assert transport.presence == [(Presence.COMPOSING, CONTACT), (Presence.AVAILABLE, CONTACT)]
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_toggle_off_during_delay_cancels_reply(store):
    switch = AutoReplySwitch(True)
    transport = FakeTransport()
    completion = FakeCompletion()
    handler = make_handler(
        store, ReplyConfig(delay_seconds=5), completion, transport, switch=switch
    )

    pending = asyncio.create_task(handler.handle(make_message("tell me a joke")))
    await asyncio.sleep(0.01)
    switch.set(False)
    result = await asyncio.wait_for(pending, timeout=1)

    assert result is None
    assert transport.sent == []
    assert completion.calls == []
    assert transport.presence[-1] == (Presence.AVAILABLE, CONTACT)


@pytest.mark.asyncio
async def test_send_failure_is_contained(store, reply_config):
    completion = FakeCompletion()
    handler = make_handler(store, reply_config, completion, FakeTransport(fail_send=True))

    result = await handler.handle(make_message("tell me a joke"))

    assert result is None
    assert handler.stats.send_failures == 1
    assert handler.stats.sent == 0


@pytest.mark.asyncio
async def test_presence_failure_does_not_block_reply(store):
    transport = FakeTransport(fail_presence=True)
    handler = make_handler(store, ReplyConfig(delay_seconds=0.01, keywords={"hi": "Hey"}), transport=transport)

    reply = await handler.handle(make_message("hi"))

    assert reply.text == "Hey"
    assert [m.text for m in transport.sent] == ["Hey"]
