"""Assistant conversations scoped to a single fetch.

A session holds the ordered message list for one fetch id, appends to it
strictly at the tail, persists it locally after every answered turn and
on close, and reloads it verbatim the next time the same fetch is opened.

Lifecycle::

    EMPTY ──open()──▶ AWAITING_INPUT ──send()──▶ PROCESSING
                            ▲                        │
                            └────────────────────────┘
    any state ──close()──▶ CLOSED
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from pydantic import ValidationError

from core.api_client import ApiClient, ApiError
from core.events import Observable
from core.models import ChatMessage, Role, Transcript
from core.storage import KeyValueStore
from core.timefmt import format_clock, progress_percent

logger = logging.getLogger(__name__)

KEY_PREFIX = "AIConversation_"


# ── Persistence ────────────────────────────────────────────────────────────────


class TranscriptStore:
    """Reads and writes conversation transcripts keyed by fetch id."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    @staticmethod
    def key_for(fetch_id: str) -> str:
        return f"{KEY_PREFIX}{fetch_id}"

    def load(self, fetch_id: str) -> list[ChatMessage]:
        """Return the stored messages, or an empty list if none are usable.

        Both the versioned envelope and a bare JSON list of messages are
        accepted.
        """
        raw = self.kv.get(self.key_for(fetch_id))
        if raw is None:
            logger.info("No saved conversation for fetch %s", fetch_id)
            return []
        try:
            data = json.loads(raw)
            if isinstance(data, list):
                data = {"messages": data}
            transcript = Transcript.model_validate(data)
        except (ValueError, ValidationError) as exc:
            logger.warning("Discarding unreadable conversation for fetch %s: %s", fetch_id, exc)
            return []
        logger.info(
            "Loaded conversation for fetch %s (%d messages)",
            fetch_id, len(transcript.messages),
        )
        return transcript.messages

    def save(self, fetch_id: str, messages: list[ChatMessage]) -> None:
        transcript = Transcript(messages=list(messages))
        self.kv.set(self.key_for(fetch_id), transcript.model_dump_json().encode("utf-8"))
        logger.info("Saved conversation for fetch %s (%d messages)", fetch_id, len(messages))

    def delete(self, fetch_id: str) -> bool:
        return self.kv.delete(self.key_for(fetch_id))

    def fetch_ids(self) -> list[str]:
        return [key[len(KEY_PREFIX):] for key in self.kv.keys(KEY_PREFIX)]


# ── Playback context ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PlaybackPosition:
    """Where the listener is in the fetch's audio, in seconds."""

    current_time: float = 0.0
    duration: float = 0.0

    @property
    def progress_percent(self) -> int:
        return progress_percent(self.current_time, self.duration)

    @property
    def current_label(self) -> str:
        return format_clock(self.current_time)

    @property
    def total_label(self) -> str:
        return format_clock(self.duration)


class Releasable(Protocol):
    """Audio/recording resource owned by a session (voice input, playback)."""

    def stop(self) -> None: ...


# ── Session ────────────────────────────────────────────────────────────────────


class SessionState(str, Enum):
    EMPTY = "empty"
    AWAITING_INPUT = "awaiting_input"
    PROCESSING = "processing"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionSnapshot:
    fetch_id: str
    state: SessionState
    messages: tuple[ChatMessage, ...]
    draft: str
    error: Optional[str]

    def to_dict(self) -> dict:
        return {
            "fetchId": self.fetch_id,
            "state": self.state.value,
            "messages": [m.model_dump(mode="json") for m in self.messages],
            "draft": self.draft,
            "error": self.error,
        }


class AssistantSession(Observable):
    """One assistant conversation about one fetch.

    Args:
        fetch_id: Identifier of the fetch being discussed.
        api: Backend client used for ``ask_assistant``.
        transcripts: Local persistence for the message list.
        playback: Callable returning the current audio position; read at
            send time so the assistant knows what the user just heard.
        history_window: Trailing number of prior turns sent with each
            question; ``0`` sends the whole history.
    """

    def __init__(
        self,
        fetch_id: str,
        api: ApiClient,
        transcripts: TranscriptStore,
        playback: Optional[Callable[[], PlaybackPosition]] = None,
        history_window: int = 0,
    ) -> None:
        super().__init__()
        self.fetch_id = fetch_id
        self.api = api
        self.transcripts = transcripts
        self.playback = playback or PlaybackPosition
        self.history_window = max(history_window, 0)

        self.messages: list[ChatMessage] = []
        self.state = SessionState.EMPTY
        self.draft = ""
        self.error: Optional[str] = None

        self._request: Optional[asyncio.Task] = None
        self._resources: list[Releasable] = []

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            fetch_id=self.fetch_id,
            state=self.state,
            messages=tuple(self.messages),
            draft=self.draft,
            error=self.error,
        )

    @property
    def is_open(self) -> bool:
        return self.state in (SessionState.AWAITING_INPUT, SessionState.PROCESSING)

    async def open(self) -> list[ChatMessage]:
        """Load any saved history for this fetch and start accepting input."""
        if self.state == SessionState.CLOSED:
            raise RuntimeError(f"Session for fetch {self.fetch_id} is closed")
        if self.is_open:
            return self.messages
        try:
            self.messages = await asyncio.to_thread(self.transcripts.load, self.fetch_id)
        except Exception:
            logger.exception("Could not read conversation for fetch %s", self.fetch_id)
            self.messages = []
        self.state = SessionState.AWAITING_INPUT
        self._emit()
        return self.messages

    def attach_resource(self, resource: Releasable) -> None:
        """Register an audio/recording resource to release on close."""
        self._resources.append(resource)

    def _history(self) -> list[dict[str, str]]:
        prior = self.messages[:-1]
        if self.history_window:
            prior = prior[-self.history_window:]
        return [m.to_history_entry() for m in prior]

    async def send(self, text: Optional[str] = None) -> Optional[ChatMessage]:
        """Send a question and wait for the assistant's answer.

        Args:
            text: The question; defaults to the current ``draft``.

        Returns:
            The assistant's reply, or None if the request failed (the
            reason is stored in ``error``) or the session closed meanwhile.

        Raises:
            ValueError: If the message is empty or whitespace.
            RuntimeError: If the session is not accepting input.
        """
        message = (self.draft if text is None else text).strip()
        if not message:
            raise ValueError("Message must not be empty.")
        if self.state == SessionState.EMPTY:
            await self.open()
        if self.state != SessionState.AWAITING_INPUT:
            raise RuntimeError(
                f"Session for fetch {self.fetch_id} cannot send while {self.state.value}"
            )

        self.messages.append(ChatMessage(role=Role.USER, content=message))
        self.draft = ""
        self.error = None
        self.state = SessionState.PROCESSING
        self._emit()

        position = self.playback()
        self._request = asyncio.ensure_future(
            self.api.ask_assistant(
                fetch_id=self.fetch_id,
                message=message,
                conversation_history=self._history(),
                audio_progress=position.progress_percent,
                current_time=position.current_label,
                total_duration=position.total_label,
            )
        )
        try:
            reply_text = await self._request
        except asyncio.CancelledError:
            if self.state == SessionState.CLOSED:
                logger.info("Dropped in-flight assistant request for closed fetch %s", self.fetch_id)
                return None
            raise
        except ApiError as exc:
            logger.warning("Assistant request failed for fetch %s: %s", self.fetch_id, exc)
            self.error = f"Failed to get response: {exc}"
            self.state = SessionState.AWAITING_INPUT
            self._emit()
            return None
        finally:
            self._request = None

        if self.state == SessionState.CLOSED:
            return None

        reply = ChatMessage(role=Role.ASSISTANT, content=reply_text)
        self.messages.append(reply)
        self.state = SessionState.AWAITING_INPUT
        await self._persist()
        self._emit()
        return reply

    async def _persist(self) -> None:
        try:
            await asyncio.to_thread(self.transcripts.save, self.fetch_id, list(self.messages))
        except Exception:
            logger.exception("Failed to save conversation for fetch %s", self.fetch_id)

    async def close(self) -> None:
        """Persist the conversation, cancel any request and release resources.

        Safe to call more than once.
        """
        already_closed = self.state == SessionState.CLOSED
        # Never opened: nothing was loaded, so writing would wipe saved history.
        never_opened = self.state == SessionState.EMPTY
        self.state = SessionState.CLOSED

        request, self._request = self._request, None
        if request is not None and not request.done():
            request.cancel()

        resources, self._resources = self._resources, []
        for resource in resources:
            try:
                resource.stop()
            except Exception:
                logger.exception("Failed to release %r for fetch %s", resource, self.fetch_id)

        if already_closed:
            return
        if not never_opened:
            await self._persist()
        self._emit()
