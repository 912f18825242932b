"""Tests for the conversational assistant."""

import asyncio

import pytest

from oncoassist.services.chat_service import (
    WELCOME_MESSAGE,
    ConversationalAssistant,
    SessionState,
)
from oncoassist.services.errors import SessionBusyError, SessionNotFoundError, TransportError
from tests.conftest import FakeInferenceClient


def test_new_session_starts_with_welcome():
    assistant = ConversationalAssistant(FakeInferenceClient())
    session = assistant.create_session()
    assert [(t.text, t.is_user) for t in session.transcript] == [(WELCOME_MESSAGE, False)]
    assert session.state is SessionState.IDLE
    assert assistant.get_session(session.session_id) is session


def test_unknown_session():
    assistant = ConversationalAssistant(FakeInferenceClient())
    with pytest.raises(SessionNotFoundError):
        assistant.get_session("nope")


async def test_turn_appends_user_and_reply():
    client = FakeInferenceClient(["Stage IIIA NSCLC is usually treated with chemoradiation."])
    assistant = ConversationalAssistant(client)
    session = assistant.create_session()

    reply = await assistant.send_chat_turn(session, "How is stage IIIA NSCLC treated?")

    assert reply.startswith("Stage IIIA")
    assert [t.is_user for t in session.transcript] == [False, True, False]
    assert session.transcript[-1].text == reply
    assert session.state is SessionState.IDLE


async def test_prior_transcript_sent_as_context():
    client = FakeInferenceClient(["first", "second"])
    assistant = ConversationalAssistant(client)
    session = assistant.create_session()

    await assistant.send_chat_turn(session, "one")
    await assistant.send_chat_turn(session, "two")

    message, history = client.chat_calls[1]
    assert message == "two"
    assert [t.text for t in history] == [WELCOME_MESSAGE, "one", "first"]


async def test_failure_keeps_user_turn_and_returns_to_idle():
    client = FakeInferenceClient([TransportError("down")])
    assistant = ConversationalAssistant(client)
    session = assistant.create_session()

    with pytest.raises(TransportError):
        await assistant.send_chat_turn(session, "hello?")

    assert [(t.text, t.is_user) for t in session.transcript][-1] == ("hello?", True)
    assert len(session.transcript) == 2
    assert session.state is SessionState.IDLE


async def test_second_submission_while_awaiting_rejected():
    release = asyncio.Event()

    class SlowClient(FakeInferenceClient):
        async def chat(self, message, history=(), config=None, *, preamble=None, timeout=None):
            await release.wait()
            return "done"

    assistant = ConversationalAssistant(SlowClient())
    session = assistant.create_session()

    pending = asyncio.create_task(assistant.send_chat_turn(session, "first"))
    await asyncio.sleep(0)
    assert session.state is SessionState.AWAITING_RESPONSE

    with pytest.raises(SessionBusyError):
        await assistant.send_chat_turn(session, "second")

    release.set()
    assert await pending == "done"
    assert [t.text for t in session.transcript] == [WELCOME_MESSAGE, "first", "done"]


def test_close_session_discards_transcript():
    assistant = ConversationalAssistant(FakeInferenceClient())
    session = assistant.create_session()

    assistant.close_session(session.session_id)

    with pytest.raises(SessionNotFoundError):
        assistant.get_session(session.session_id)
    with pytest.raises(SessionNotFoundError):
        assistant.close_session(session.session_id)


def test_close_busy_session_rejected():
    assistant = ConversationalAssistant(FakeInferenceClient())
    session = assistant.create_session()
    session.state = SessionState.AWAITING_RESPONSE

    with pytest.raises(SessionBusyError):
        assistant.close_session(session.session_id)
    assert assistant.get_session(session.session_id) is session


def test_registry_cap_evicts_oldest_idle():
    assistant = ConversationalAssistant(FakeInferenceClient(), max_sessions=2)
    first = assistant.create_session()
    second = assistant.create_session()
    third = assistant.create_session()

    with pytest.raises(SessionNotFoundError):
        assistant.get_session(first.session_id)
    assert assistant.get_session(second.session_id) is second
    assert assistant.get_session(third.session_id) is third


def test_registry_cap_keeps_session_awaiting_reply():
    assistant = ConversationalAssistant(FakeInferenceClient(), max_sessions=2)
    busy = assistant.create_session()
    busy.state = SessionState.AWAITING_RESPONSE
    idle = assistant.create_session()

    newest = assistant.create_session()

    assert assistant.get_session(busy.session_id) is busy
    assert assistant.get_session(newest.session_id) is newest
    with pytest.raises(SessionNotFoundError):
        assistant.get_session(idle.session_id)


def test_many_sessions_stay_within_cap():
    assistant = ConversationalAssistant(FakeInferenceClient(), max_sessions=5)
    for _ in range(50):
        assistant.create_session()
    assert len(assistant._sessions) == 5
