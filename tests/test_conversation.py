"""Tests for core/conversation.py — transcript persistence and assistant sessions."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.api_client import NetworkError
from core.conversation import (
    AssistantSession,
    PlaybackPosition,
    SessionState,
    TranscriptStore,
)
from core.models import ChatMessage, Role
from core.storage import KeyValueStore


# ── Fixtures ───────────────────────────────────────────────────────────────────


@pytest.fixture
def kv(tmp_path) -> KeyValueStore:
    return KeyValueStore(tmp_path / "conversations.db")


@pytest.fixture
def transcripts(kv) -> TranscriptStore:
    return TranscriptStore(kv)


@pytest.fixture
def api():
    api = MagicMock()
    api.ask_assistant = AsyncMock(return_value="Tech stocks rallied today.")
    return api


def make_session(api, transcripts, fetch_id="fetch-42", **kwargs) -> AssistantSession:
    return AssistantSession(fetch_id, api, transcripts, **kwargs)


class FakePlayer:
    def __init__(self):
        self.stopped = 0

    def stop(self):
        self.stopped += 1


# ── TranscriptStore ────────────────────────────────────────────────────────────


class TestTranscriptStore:
    def test_key_format(self):
        assert TranscriptStore.key_for("fetch-42") == "AIConversation_fetch-42"

    def test_missing_is_empty(self, transcripts):
        assert transcripts.load("nothing") == []

    def test_saves_versioned_envelope(self, transcripts, kv):
        transcripts.save("a", [ChatMessage(role=Role.USER, content="hi")])

        stored = json.loads(kv.get("AIConversation_a"))

        assert stored["version"] == 1
        assert stored["messages"][0]["role"] == "user"

    def test_reload_preserves_order_and_ids(self, transcripts):
        messages = [
            ChatMessage(role=Role.USER, content="one"),
            ChatMessage(role=Role.ASSISTANT, content="two"),
            ChatMessage(role=Role.USER, content="three"),
        ]
        transcripts.save("a", messages)

        loaded = transcripts.load("a")

        assert [m.content for m in loaded] == ["one", "two", "three"]
        assert [m.id for m in loaded] == [m.id for m in messages]

    def test_reads_legacy_bare_list(self, transcripts, kv):
        kv.set(
            "AIConversation_old",
            json.dumps([
                {"id": "x", "role": "user", "content": "hi", "timestamp": "2025-01-01T10:00:00"}
            ]).encode(),
        )
        assert transcripts.load("old")[0].content == "hi"

    @pytest.mark.parametrize("garbage", [b"\xff\xfe\x00", b"{not json", b'{"messages": [{"role": "robot"}]}'])
    def test_malformed_is_empty(self, transcripts, kv, garbage):
        kv.set("AIConversation_bad", garbage)
        assert transcripts.load("bad") == []

    def test_fetches_are_isolated(self, transcripts):
        transcripts.save("A", [ChatMessage(role=Role.USER, content="only in A")])
        assert transcripts.load("B") == []
        assert transcripts.fetch_ids() == ["A"]


# ── PlaybackPosition ───────────────────────────────────────────────────────────


class TestPlaybackPosition:
    def test_labels(self):
        pos = PlaybackPosition(current_time=75, duration=300)
        assert (pos.progress_percent, pos.current_label, pos.total_label) == (25, "1:15", "5:00")

    def test_unknown_duration(self):
        pos = PlaybackPosition(current_time=10, duration=0)
        assert pos.progress_percent == 0


# ── AssistantSession ───────────────────────────────────────────────────────────


class TestOpen:
    async def test_open_empty(self, api, transcripts):
        session = make_session(api, transcripts)
        assert await session.open() == []
        assert session.state == SessionState.AWAITING_INPUT

    async def test_open_malformed_history_is_empty(self, api, transcripts, kv):
        kv.set("AIConversation_fetch-42", b"\x00garbage")
        session = make_session(api, transcripts)

        assert await session.open() == []

    async def test_reopen_restores_history(self, api, transcripts):
        first = make_session(api, transcripts)
        await first.send("What happened in tech today?")
        await first.close()

        second = make_session(api, transcripts)
        messages = await second.open()

        assert [m.role for m in messages] == [Role.USER, Role.ASSISTANT]

    async def test_open_after_close_rejected(self, api, transcripts):
        session = make_session(api, transcripts)
        await session.open()
        await session.close()
        with pytest.raises(RuntimeError):
            await session.open()


class TestSend:
    async def test_round_trip(self, api, transcripts):
        session = make_session(
            api, transcripts, playback=lambda: PlaybackPosition(90, 360)
        )
        await session.open()

        reply = await session.send("What happened in tech today?")

        kwargs = api.ask_assistant.await_args.kwargs
        assert kwargs["fetch_id"] == "fetch-42"
        assert kwargs["message"] == "What happened in tech today?"
        assert kwargs["conversation_history"] == []
        assert (kwargs["audio_progress"], kwargs["current_time"], kwargs["total_duration"]) == (
            25, "1:30", "6:00",
        )
        assert reply.content == "Tech stocks rallied today."
        assert [(m.role, m.content) for m in session.messages] == [
            (Role.USER, "What happened in tech today?"),
            (Role.ASSISTANT, "Tech stocks rallied today."),
        ]
        stored = transcripts.load("fetch-42")
        assert [m.id for m in stored] == [m.id for m in session.messages]
        assert session.state == SessionState.AWAITING_INPUT

    async def test_history_excludes_current_turn(self, api, transcripts):
        session = make_session(api, transcripts)
        await session.send("first")
        await session.send("second")

        history = api.ask_assistant.await_args.kwargs["conversation_history"]

        assert history == [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "Tech stocks rallied today."},
        ]

    async def test_history_window_trims_old_turns(self, api, transcripts):
        session = make_session(api, transcripts, history_window=1)
        await session.send("first")
        await session.send("second")

        history = api.ask_assistant.await_args.kwargs["conversation_history"]

        assert history == [{"role": "assistant", "content": "Tech stocks rallied today."}]

    @pytest.mark.parametrize("blank", ["", "   ", "\n\t"])
    async def test_blank_rejected_before_network(self, api, transcripts, blank):
        session = make_session(api, transcripts)
        await session.open()

        with pytest.raises(ValueError, match="empty"):
            await session.send(blank)

        api.ask_assistant.assert_not_awaited()
        assert session.messages == []

    async def test_uses_and_clears_draft(self, api, transcripts):
        session = make_session(api, transcripts)
        session.draft = "  from the text field  "

        await session.send()

        assert session.draft == ""
        assert session.messages[0].content == "from the text field"

    async def test_failure_keeps_user_turn_unpersisted(self, api, transcripts):
        api.ask_assistant.side_effect = NetworkError("offline")
        session = make_session(api, transcripts)
        await session.open()

        assert await session.send("anyone there?") is None

        assert [m.role for m in session.messages] == [Role.USER]
        assert "offline" in session.error
        assert session.state == SessionState.AWAITING_INPUT
        assert transcripts.load("fetch-42") == []

    async def test_unanswered_turn_persisted_on_close(self, api, transcripts):
        api.ask_assistant.side_effect = NetworkError("offline")
        session = make_session(api, transcripts)
        await session.send("anyone there?")

        await session.close()

        assert [m.content for m in transcripts.load("fetch-42")] == ["anyone there?"]

    async def test_persisted_length_tracks_exchanges(self, api, transcripts):
        session = make_session(api, transcripts)
        for question in ("a", "b", "c"):
            await session.send(question)

        stored = transcripts.load("fetch-42")

        assert len(stored) == 6
        assert [m.role for m in stored] == [Role.USER, Role.ASSISTANT] * 3

    async def test_error_cleared_on_next_send(self, api, transcripts):
        api.ask_assistant.side_effect = [NetworkError("offline"), "back online"]
        session = make_session(api, transcripts)
        await session.send("one")

        await session.send("two")

        assert session.error is None
        assert [m.content for m in session.messages] == ["one", "two", "back online"]


class TestClose:
    async def test_cancels_in_flight_request(self, api, transcripts):
        started = asyncio.Event()

        async def slow(**kwargs):
            started.set()
            await asyncio.sleep(10)
            return "too late"

        api.ask_assistant.side_effect = slow
        session = make_session(api, transcripts)
        await session.open()

        pending = asyncio.create_task(session.send("question"))
        await started.wait()
        await session.close()

        assert await pending is None
        assert [m.role for m in session.messages] == [Role.USER]
        assert [m.content for m in transcripts.load("fetch-42")] == ["question"]

    async def test_releases_resources_once(self, api, transcripts):
        player, recorder = FakePlayer(), FakePlayer()
        session = make_session(api, transcripts)
        await session.open()
        session.attach_resource(player)
        session.attach_resource(recorder)

        await session.close()
        await session.close()

        assert (player.stopped, recorder.stopped) == (1, 1)
        assert session.state == SessionState.CLOSED

    async def test_close_without_open_keeps_saved_history(self, api, transcripts):
        transcripts.save("fetch-42", [ChatMessage(role=Role.USER, content="keep me")])
        session = make_session(api, transcripts)

        await session.close()

        assert [m.content for m in transcripts.load("fetch-42")] == ["keep me"]

    async def test_send_after_close_rejected(self, api, transcripts):
        session = make_session(api, transcripts)
        await session.open()
        await session.close()

        with pytest.raises(RuntimeError):
            await session.send("hello?")

    async def test_subscribers_notified(self, api, transcripts):
        states = []
        session = make_session(api, transcripts)
        session.subscribe(lambda snap: states.append(snap.state))

        await session.send("hi")
        await session.close()

        assert states == [
            SessionState.AWAITING_INPUT,
            SessionState.PROCESSING,
            SessionState.AWAITING_INPUT,
            SessionState.CLOSED,
        ]
