"""
Tests for the message store, session flags and event fan-out.
"""

import asyncio

import pytest

from voice_triage.conversation import (
    Author,
    EventBus,
    MessageRemoved,
    MessageStore,
    MessageUpserted,
    OutputModality,
    SessionContext,
    StateChanged,
)
from voice_triage.conversation.schemas import ConversationState


class TestMessageStore:
    """Tests for MessageStore."""

    def test_partial_user_transcript_is_updated_in_place(self) -> None:
        store = MessageStore()
        first = store.upsert_user_partial("I have a")
        second = store.upsert_user_partial("I have a headache")

        assert first.id == second.id
        assert len(store) == 1
        assert store.messages[0].content == "I have a headache"
        assert store.messages[0].is_partial is True

    def test_finalize_user_flips_partial_once(self) -> None:
        store = MessageStore()
        partial = store.upsert_user_partial("I have a")
        final = store.finalize_user("I have a headache")

        assert final.id == partial.id
        assert final.is_partial is False
        assert final.content == "I have a headache"
        assert store.pending(Author.USER) is None

    def test_finalize_user_without_partial_appends(self) -> None:
        store = MessageStore()
        final = store.finalize_user("Hello")

        assert len(store) == 1
        assert final.is_partial is False

    def test_next_utterance_creates_new_message(self) -> None:
        store = MessageStore()
        store.finalize_user("first")
        store.upsert_user_partial("sec")

        assert len(store) == 2
        assert [m.is_partial for m in store.messages] == [False, True]

    def test_assistant_deltas_accumulate(self) -> None:
        store = MessageStore()
        store.begin_assistant()
        for delta in ["Hel", "lo ", "there"]:
            store.append_assistant_delta(delta)

        pending = store.pending(Author.ASSISTANT)
        assert pending is not None
        assert pending.content == "Hello there"

        final = store.finalize_assistant()
        assert final is not None
        assert final.content == "Hello there"
        assert final.is_partial is False

    def test_finalize_assistant_can_replace_content(self) -> None:
        store = MessageStore()
        store.begin_assistant()
        store.append_assistant_delta("Bye [TRIAGE_COMPLETE]")

        final = store.finalize_assistant("Bye")
        assert final is not None
        assert final.content == "Bye"

    def test_delta_without_pending_message_is_not_lost(self) -> None:
        store = MessageStore()
        message = store.append_assistant_delta("orphan")

        assert message.content == "orphan"
        assert message.is_partial is True
        assert len(store) == 1

    def test_begin_assistant_reuses_stray_pending(self) -> None:
        store = MessageStore()
        stray = store.begin_assistant()
        store.append_assistant_delta("stale text")

        again = store.begin_assistant()
        assert again.id == stray.id
        assert again.content == ""
        assert len([m for m in store.messages if m.is_assistant]) == 1

    def test_discard_removes_only_partials(self) -> None:
        store = MessageStore()
        store.finalize_user("kept")
        store.upsert_user_partial("dropped")
        store.begin_assistant()

        assert store.discard_user_partial() is not None
        assert store.discard_assistant_partial() is not None
        assert store.discard_user_partial() is None
        assert [m.content for m in store.messages] == ["kept"]

    def test_history_for_completion_filters(self) -> None:
        store = MessageStore()
        store.append(Author.USER, "hi")
        store.append(Author.SYSTEM, "Error receiving AI response")
        store.append(Author.ASSISTANT, "   ")
        store.append(Author.ASSISTANT, "hello")
        store.upsert_user_partial("still talking")

        history = store.history_for_completion()
        assert [(m.author, m.content) for m in history] == [
            (Author.USER, "hi"),
            (Author.ASSISTANT, "hello"),
        ]

    def test_messages_returns_copy(self) -> None:
        store = MessageStore()
        store.append(Author.USER, "hi")
        store.messages.clear()
        assert len(store) == 1


class TestSessionContext:
    """Tests for SessionContext flags."""

    def test_modality_is_fixed_by_first_interaction(self) -> None:
        ctx = SessionContext()
        assert ctx.output_modality == OutputModality.UNDECIDED

        assert ctx.fix_modality(OutputModality.TEXT) == OutputModality.TEXT
        assert ctx.fix_modality(OutputModality.VOICE) == OutputModality.TEXT
        assert ctx.uses_voice_output is False

    def test_fix_modality_rejects_undecided(self) -> None:
        with pytest.raises(ValueError):
            SessionContext().fix_modality(OutputModality.UNDECIDED)

    def test_triage_complete_is_monotonic(self) -> None:
        ctx = SessionContext()
        assert ctx.mark_triage_complete() is True
        assert ctx.mark_triage_complete() is False
        assert ctx.triage_complete is True

    def test_system_prompt_default_and_update(self) -> None:
        ctx = SessionContext()
        assert ctx.system_prompt == "You are a helpful AI assistant."
        ctx.system_prompt = "You are a triage nurse."
        assert ctx.system_prompt == "You are a triage nurse."


class TestEventBus:
    """Tests for EventBus listeners and channels."""

    def test_listener_receives_snapshots(self) -> None:
        bus = EventBus()
        store = MessageStore()
        seen: list = []
        bus.subscribe(seen.append)

        message = store.upsert_user_partial("a")
        bus.message_upserted(message)
        store.upsert_user_partial("ab")

        assert isinstance(seen[0], MessageUpserted)
        assert seen[0].message.content == "a"

    def test_failing_listener_does_not_break_others(self) -> None:
        bus = EventBus()
        seen: list = []

        def _boom(event) -> None:
            raise RuntimeError("listener bug")

        bus.subscribe(_boom)
        bus.subscribe(seen.append)
        bus.state_changed(ConversationState.LISTENING, ConversationState.IDLE)

        assert len(seen) == 1
        assert isinstance(seen[0], StateChanged)

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        seen: list = []
        unsubscribe = bus.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        bus.raw_transcript("hello")
        assert seen == []

    def test_channel_yields_events_until_closed(self) -> None:
        async def _run() -> list:
            bus = EventBus()
            channel = bus.channel()
            store = MessageStore()
            message = store.append(Author.USER, "hi")
            bus.message_upserted(message)
            bus.message_removed(message)
            bus.close()
            return [event async for event in channel]

        events = asyncio.run(_run())
        assert [type(e) for e in events] == [MessageUpserted, MessageRemoved]
