"""Schedule reconciliation for the user's single "daily fetch" record.

The backend keeps exactly one scheduled-summary record per user. This
module holds the locally edited copy of it (time, enabled flag, topic
sets), pushes every edit back as a full-record replacement, and decides
what to trust when the server answers:

- A load adopts the server's topics unless the server has none while the
  user already picked some locally.
- A save only adopts the echoed topics when they are exactly what was
  sent; anything else keeps the local selection.
- A schedule with no topics at all is never written.

Every remote failure is logged and leaves local state untouched.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import time
from typing import Any, Optional

from core.api_client import ApiClient, ApiError, DuplicateScheduleError
from core.debounce import Debouncer
from core.events import Observable
from core.models import (
    ALL_DAYS,
    DEFAULT_SCHEDULE_NAME,
    DEFAULT_SCHEDULE_TIME,
    ScheduledSummary,
)
from core.timefmt import format_hhmm, parse_hhmm, round_to_ten_minutes
from core.topics import DEFAULT_TOPIC, normalize_topic

logger = logging.getLogger(__name__)

_SAVE_KEY = "scheduled-summary"


@dataclass(frozen=True)
class ScheduleSnapshot:
    """Point-in-time view of the reconciler's state."""

    time: time
    enabled: bool
    topics: frozenset[str]
    custom_topics: frozenset[str]
    is_loading: bool
    record: Optional[ScheduledSummary] = None
    last_error: Optional[str] = None
    saving: bool = field(default=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": format_hhmm(self.time),
            "enabled": self.enabled,
            "topics": sorted(self.topics),
            "customTopics": sorted(self.custom_topics),
            "isLoading": self.is_loading,
            "saving": self.saving,
            "lastError": self.last_error,
            "record": self.record.to_wire() if self.record else None,
        }


class ScheduleReconciler(Observable):
    """Owns the local copy of the schedule and keeps the server in sync.

    Args:
        api: Backend client.
        timezone: IANA timezone name sent with every update.
        debounce_seconds: Quiet window used to coalesce rapid edits into
            one save. ``0`` saves on every edit.
    """

    def __init__(
        self,
        api: ApiClient,
        timezone: str = "UTC",
        debounce_seconds: float = 0.0,
    ) -> None:
        super().__init__()
        self.api = api
        self.timezone = timezone

        self.scheduled_time: time = round_to_ten_minutes(DEFAULT_SCHEDULE_TIME)
        self.scheduled_enabled: bool = False
        self.scheduled_topics: set[str] = set()
        self.scheduled_custom_topics: set[str] = set()

        self.is_loading = False
        #: Last record confirmed by the server; None until one is known.
        self.record: Optional[ScheduledSummary] = None
        self.last_error: Optional[str] = None
        #: Defaults are seeded only on the first empty load.
        self._seeded = False

        self._lock = asyncio.Lock()
        self._debouncer = Debouncer(debounce_seconds)

    def snapshot(self) -> ScheduleSnapshot:
        return ScheduleSnapshot(
            time=self.scheduled_time,
            enabled=self.scheduled_enabled,
            topics=frozenset(self.scheduled_topics),
            custom_topics=frozenset(self.scheduled_custom_topics),
            is_loading=self.is_loading,
            record=self.record,
            last_error=self.last_error,
            saving=self._debouncer.pending(_SAVE_KEY) or self._lock.locked(),
        )

    def _topic_union(self) -> set[str]:
        return self.scheduled_topics | self.scheduled_custom_topics

    # ── Load ───────────────────────────────────────────────────────────────

    async def load(self) -> bool:
        """Fetch the server's schedule and fold it into local state.

        Waits for an in-flight save so the fetched record is never older
        than what was just written.

        Returns:
            True if the server answered, False on a transport/server error.
        """
        async with self._lock:
            return await self._refresh()

    async def _refresh(self) -> bool:
        self.is_loading = True
        self._emit()
        try:
            summaries = await self.api.get_scheduled_summaries()
        except ApiError:
            logger.exception("Failed to load scheduled summary")
            return False
        else:
            self._adopt(summaries)
            return True
        finally:
            self.is_loading = False
            self._emit()

    def _adopt(self, summaries: list[ScheduledSummary]) -> None:
        if not summaries:
            self.record = None
            if self._seeded:
                logger.info("Still no scheduled summary on server; keeping local edits")
                return
            self._seeded = True
            self.scheduled_time = round_to_ten_minutes(DEFAULT_SCHEDULE_TIME)
            self.scheduled_enabled = False
            if not self._topic_union():
                self.scheduled_topics = {DEFAULT_TOPIC}
            logger.info("No scheduled summary on server; seeded defaults")
            return

        if len(summaries) > 1:
            logger.warning(
                "Server returned %d scheduled summaries; using the first (id=%s)",
                len(summaries), summaries[0].id,
            )
        record = summaries[0]
        self.record = record

        try:
            self.scheduled_time = round_to_ten_minutes(parse_hhmm(record.time))
        except ValueError:
            logger.warning("Ignoring unparseable schedule time %r", record.time)
        self.scheduled_enabled = record.is_enabled

        server_topics = set(record.topics)
        server_custom = set(record.custom_topics)
        if not (server_topics or server_custom) and self._topic_union():
            logger.info("Server schedule has no topics; keeping local selection")
        else:
            self.scheduled_topics = server_topics
            self.scheduled_custom_topics = server_custom

        logger.info(
            "Loaded scheduled summary id=%s time=%s enabled=%s topics=%d custom=%d",
            record.id, format_hhmm(self.scheduled_time), self.scheduled_enabled,
            len(self.scheduled_topics), len(self.scheduled_custom_topics),
        )

    async def ensure_loaded(self) -> None:
        if self.record is None:
            await self.load()

    # ── Edits ──────────────────────────────────────────────────────────────

    async def set_time(self, value: time) -> None:
        await self.ensure_loaded()
        self.scheduled_time = round_to_ten_minutes(value)
        self._emit()
        await self._request_save()

    async def set_enabled(self, enabled: bool) -> None:
        await self.ensure_loaded()
        self.scheduled_enabled = bool(enabled)
        self._emit()
        await self._request_save()

    async def set_topics(self, topics: Iterable[str]) -> None:
        """Replace the canonical topic selection."""
        await self.ensure_loaded()
        before = self._topic_union()
        self.scheduled_topics = {normalize_topic(t) for t in topics if t and t.strip()}
        self._emit()
        await self._topics_changed(before)

    async def set_custom_topics(self, topics: Iterable[str]) -> None:
        """Replace the custom topic selection (case is preserved)."""
        await self.ensure_loaded()
        before = self._topic_union()
        self.scheduled_custom_topics = {t.strip() for t in topics if t and t.strip()}
        self._emit()
        await self._topics_changed(before)

    async def toggle_topic(self, topic: str) -> None:
        await self.set_topics(self.scheduled_topics ^ {normalize_topic(topic)})

    async def toggle_custom_topic(self, topic: str) -> None:
        await self.set_custom_topics(self.scheduled_custom_topics ^ {topic.strip()})

    async def _topics_changed(self, before: set[str]) -> None:
        if self.is_loading:
            logger.debug("Topic change during load; not saving")
            return
        if not before and not self._topic_union():
            logger.debug("Topic selection still empty; not saving")
            return
        await self._request_save()

    async def _request_save(self) -> None:
        await self._debouncer.submit(_SAVE_KEY, self.save)

    async def flush(self) -> None:
        """Wait for any pending debounced save to complete."""
        await self._debouncer.flush(_SAVE_KEY)

    def cancel_pending(self) -> None:
        self._debouncer.cancel_all()

    # ── Save ───────────────────────────────────────────────────────────────

    async def save(self) -> Optional[ScheduledSummary]:
        """Push the local state to the server as a full-record replacement.

        Returns:
            The server's echo, or None if nothing was written.
        """
        async with self._lock:
            self.scheduled_time = round_to_ten_minutes(self.scheduled_time)
            topics = set(self.scheduled_topics)
            custom_topics = set(self.scheduled_custom_topics)
            if not topics and not custom_topics:
                logger.debug("Schedule has no topics; skipping save")
                return None

            target = self.record
            if target is None:
                try:
                    summaries = await self.api.get_scheduled_summaries()
                except ApiError:
                    logger.exception("Could not resolve scheduled summary before save")
                    return None
                if not summaries:
                    logger.error("No scheduled summary exists on the server; save aborted")
                    return None
                target = self.record = summaries[0]

            outgoing = target.model_copy(update={
                "name": DEFAULT_SCHEDULE_NAME,
                "time": format_hhmm(self.scheduled_time),
                "topics": sorted(topics),
                "custom_topics": sorted(custom_topics),
                "days": list(ALL_DAYS),
                "is_enabled": self.scheduled_enabled,
            })

            try:
                echo = await self.api.update_scheduled_summary(outgoing, timezone=self.timezone)
            except ApiError as exc:
                logger.warning("Saving scheduled summary failed: %s; resynchronising", exc)
                self.last_error = str(exc)
                await self._refresh()
                return None

            self.record = echo
            self.last_error = None
            # An edit made while the update was in flight is newer than the echo.
            if set(echo.topics) == topics and self.scheduled_topics == topics:
                self.scheduled_topics = set(echo.topics)
            else:
                logger.warning(
                    "Echoed topics %s for sent %s (local now %s); keeping local selection",
                    sorted(echo.topics), sorted(topics), sorted(self.scheduled_topics),
                )
            if (
                set(echo.custom_topics) == custom_topics
                and self.scheduled_custom_topics == custom_topics
            ):
                self.scheduled_custom_topics = set(echo.custom_topics)
            else:
                logger.warning(
                    "Echoed custom topics %s for sent %s (local now %s); keeping local selection",
                    sorted(echo.custom_topics), sorted(custom_topics),
                    sorted(self.scheduled_custom_topics),
                )

            logger.info(
                "Saved scheduled summary id=%s time=%s enabled=%s",
                echo.id, outgoing.time, outgoing.is_enabled,
            )
        self._emit()
        return echo

    # ── Explicit creation / manual run ─────────────────────────────────────

    async def create(self) -> ScheduledSummary:
        """Create the schedule record from local state.

        Unlike ``save`` this is not fail-soft: it is the single path that
        brings a record into existence and refuses to make a second one.

        Raises:
            DuplicateScheduleError: If the server already holds a record.
            ValueError: If no topic is selected.
            ApiError: On transport or server failures.
        """
        async with self._lock:
            if not self._topic_union():
                raise ValueError("Select at least one topic for your scheduled fetch.")
            existing = await self.api.get_scheduled_summaries()
            if existing:
                raise DuplicateScheduleError(
                    f"A scheduled summary already exists (id={existing[0].id})"
                )
            draft = ScheduledSummary(
                name=DEFAULT_SCHEDULE_NAME,
                time=format_hhmm(round_to_ten_minutes(self.scheduled_time)),
                topics=sorted(self.scheduled_topics),
                custom_topics=sorted(self.scheduled_custom_topics),
                days=list(ALL_DAYS),
                is_enabled=self.scheduled_enabled,
            )
            created = await self.api.create_scheduled_summary(draft, timezone=self.timezone)
            self.record = created
            logger.info("Created scheduled summary id=%s", created.id)
        self._emit()
        return created

    async def run_now(self) -> Optional[dict[str, Any]]:
        """Ask the backend to execute the schedule immediately."""
        try:
            result = await self.api.trigger_scheduled_summaries()
        except ApiError as exc:
            logger.exception("Manual schedule run failed")
            self.last_error = str(exc)
            self._emit()
            return None
        logger.info("Triggered scheduled summaries manually")
        return result
