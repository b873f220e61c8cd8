import asyncio

from apsai.gemini import GatewayError
from apsai.session import CHAT_ERROR_NOTICE, ConversationSession, SessionState


class ScriptedGateway:
    def __init__(self, fragments, *, delays=None, fail_after=None):
        self.fragments = list(fragments)
        self.delays = list(delays or [])
        self.fail_after = fail_after
        self.calls = []

    async def stream_chat(self, history, new_message, thinking_mode=False):
        self.calls.append(
            {
                "history": [(t.role, t.text) for t in history],
                "new_message": new_message,
                "thinking_mode": thinking_mode,
            }
        )
        for index, fragment in enumerate(self.fragments):
            if self.fail_after is not None and index == self.fail_after:
                raise GatewayError("chat_stream_failed: connection reset")
            if index < len(self.delays):
                await asyncio.sleep(self.delays[index])
            yield fragment
        if self.fail_after is not None and self.fail_after >= len(self.fragments):
            raise GatewayError("chat_stream_failed: truncated stream")


class GatedGateway:
    def __init__(self):
        self.release = None
        self.calls = 0

    async def stream_chat(self, history, new_message, thinking_mode=False):
        self.calls += 1
        await self.release.wait()
        yield "done"


def test_submit_appends_user_then_empty_placeholder():
    session = ConversationSession(ScriptedGateway([]))
    session.input = "  What is the max PCA dose?  "

    reply = asyncio.run(session.submit())

    messages = session.messages
    assert len(messages) == 2
    assert messages[0].role == "user"
    assert messages[0].text == "What is the max PCA dose?"
    assert messages[0].sealed
    assert messages[1] == reply
    assert reply.role == "model"
    assert reply.text == ""
    assert reply.sealed
    assert session.input == ""
    assert session.state is SessionState.IDLE


def test_fragments_concatenate_in_production_order():
    fragments = ["Consider ", "a fascia ", "iliaca ", "block."]
    gateway = ScriptedGateway(fragments, delays=[0.02, 0.0, 0.01, 0.0])
    session = ConversationSession(gateway)

    reply = asyncio.run(session.submit("Hip fracture analgesia?"))

    assert reply.text == "Consider a fascia iliaca block."
    assert not session.errored


def test_failure_mid_stream_replaces_partial_text_with_notice():
    gateway = ScriptedGateway(["partial ", "answer "], fail_after=1)
    session = ConversationSession(gateway)

    reply = asyncio.run(session.submit("hello"))

    assert reply.text == CHAT_ERROR_NOTICE
    assert reply.sealed
    assert session.errored
    assert session.state is SessionState.IDLE


def test_failure_after_all_fragments_still_yields_only_notice():
    gateway = ScriptedGateway(["complete ", "looking ", "reply"], fail_after=3)
    session = ConversationSession(gateway)

    reply = asyncio.run(session.submit("hello"))

    assert reply.text == CHAT_ERROR_NOTICE


def test_failure_before_first_fragment_uses_notice():
    class BrokenGateway:
        def stream_chat(self, history, new_message, thinking_mode=False):
            raise GatewayError("gemini_api_key_missing")

    session = ConversationSession(BrokenGateway())

    reply = asyncio.run(session.submit("hello"))

    assert reply.text == CHAT_ERROR_NOTICE
    assert session.errored


def test_blank_input_is_rejected_without_state_change():
    gateway = ScriptedGateway(["unused"])
    session = ConversationSession(gateway)
    session.input = "   \n\t "

    assert asyncio.run(session.submit()) is None
    assert session.messages == ()
    assert gateway.calls == []
    assert session.input == "   \n\t "


def test_resubmission_while_streaming_is_rejected():
    gateway = GatedGateway()
    session = ConversationSession(gateway)

    async def scenario():
        gateway.release = asyncio.Event()
        first = asyncio.create_task(session.submit("first question"))
        await asyncio.sleep(0)
        assert session.is_loading
        assert not session.can_submit("second question")

        second = await session.submit("second question")
        count_during = len(session.messages)

        gateway.release.set()
        reply = await first
        return second, count_during, reply

    second, count_during, reply = asyncio.run(scenario())

    assert second is None
    assert count_during == 2
    assert gateway.calls == 1
    assert reply.text == "done"
    assert len(session.messages) == 2


def test_history_includes_prior_turns_and_new_user_message_but_not_placeholder():
    gateway = ScriptedGateway(["first reply"])
    session = ConversationSession(gateway)

    asyncio.run(session.submit("first question"))
    gateway.fragments = ["second reply"]
    asyncio.run(session.submit("second question"))

    last_call = gateway.calls[-1]
    assert last_call["new_message"] == "second question"
    assert last_call["history"] == [
        ("user", "first question"),
        ("model", "first reply"),
        ("user", "second question"),
    ]


def test_thinking_mode_is_captured_per_submission():
    gateway = GatedGateway()
    session = ConversationSession(gateway)
    session.toggle_thinking_mode()

    async def scenario():
        gateway.release = asyncio.Event()
        task = asyncio.create_task(session.submit("complex question"))
        await asyncio.sleep(0)
        session.toggle_thinking_mode()
        gateway.release.set()
        return await task

    reply = asyncio.run(scenario())

    assert reply.thinking is True
    assert session.messages[0].thinking is True
    assert session.thinking_mode is False


def test_thinking_mode_selects_gateway_variant():
    gateway = ScriptedGateway(["ok"])
    session = ConversationSession(gateway)

    asyncio.run(session.submit("plain"))
    session.toggle_thinking_mode()
    asyncio.run(session.submit("deep"))

    assert [c["thinking_mode"] for c in gateway.calls] == [False, True]


def test_message_ids_are_unique_and_increasing():
    session = ConversationSession(ScriptedGateway(["a"]))

    asyncio.run(session.submit("one"))
    asyncio.run(session.submit("two"))

    ids = [int(m.id) for m in session.messages]
    assert ids == sorted(ids)
    assert len(set(ids)) == 4


def test_emit_receives_chat_events_in_order():
    events = []

    async def emit(event_name, payload):
        events.append((event_name, payload))

    session = ConversationSession(ScriptedGateway(["Hel", "lo"]), emit=emit)
    asyncio.run(session.submit("hi"))

    names = [name for name, _ in events]
    assert names == ["chat.user", "chat.started", "chat.delta", "chat.delta", "chat.completed"]
    assert [p["text"] for name, p in events if name == "chat.delta"] == ["Hel", "lo"]
    assert events[-1][1]["message"]["text"] == "Hello"


def test_emit_reports_error_event_on_failure():
    events = []

    async def emit(event_name, payload):
        events.append(event_name)

    session = ConversationSession(ScriptedGateway(["x"], fail_after=0), emit=emit)
    asyncio.run(session.submit("hi"))

    assert events[-1] == "chat.error"
    assert "chat.completed" not in events


def test_reserve_claims_session_synchronously():
    gateway = ScriptedGateway(["reply"])
    session = ConversationSession(gateway)

    placeholder = session.reserve("first")

    assert placeholder.role == "model"
    assert placeholder.text == ""
    assert session.state is SessionState.AWAITING_RESPONSE
    assert session.reserve("second") is None
    assert len(session.messages) == 2

    reply = asyncio.run(session.stream_reply())

    assert reply.text == "reply"
    assert session.state is SessionState.IDLE
    assert gateway.calls[0]["new_message"] == "first"


def test_stream_reply_without_reservation_does_nothing():
    gateway = ScriptedGateway(["unused"])
    session = ConversationSession(gateway)

    assert asyncio.run(session.stream_reply()) is None
    assert gateway.calls == []


def test_sealed_messages_cannot_be_changed_from_outside():
    session = ConversationSession(ScriptedGateway(["original"]))
    reply = asyncio.run(session.submit("hello"))

    reply.text = "tampered"
    session.messages[0].text = "tampered"
    session.messages[1].text = "tampered"

    assert [m.text for m in session.messages] == ["hello", "original"]
