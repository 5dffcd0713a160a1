"""Async HTTP client for the Fetch backend.

Only the endpoints the client-side core talks to are wrapped here:

- scheduled summaries (list / create / update / delete / manual trigger)
- the per-fetch conversational assistant

Every failure is raised as a subclass of ``ApiError`` so callers can
degrade with a single ``except ApiError`` at their boundary.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from core.models import AssistantReply, ScheduledSummary

logger = logging.getLogger(__name__)


# ── Errors ─────────────────────────────────────────────────────────────────────


class ApiError(Exception):
    """Base class for every failure talking to the backend."""


class NetworkError(ApiError):
    """The request never produced an HTTP response."""

    def __init__(self, message: str, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


class ServerError(ApiError):
    """The backend answered with an unexpected status code."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(f"Server error: {message}")
        self.message = message
        self.status_code = status_code


class DecodingError(ApiError):
    """The backend answered, but not with the expected JSON shape."""


class DuplicateScheduleError(ApiError):
    """A second scheduled-summary record would exist after a create."""


# ── Client ─────────────────────────────────────────────────────────────────────

_SCHEDULES = "/api/scheduled-summaries"


class ApiClient:
    """Thin async wrapper around the backend REST API.

    The underlying ``httpx.AsyncClient`` is created eagerly and must be
    released with ``aclose()`` (or by using the client as an async
    context manager).
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json", "User-Agent": "FetchClient/1.0"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings) -> "ApiClient":
        return cls(
            base_url=settings.api_base_url,
            token=settings.api_token,
            timeout=settings.request_timeout,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Transport ──────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        expected: tuple[int, ...] = (200,),
        fallback_error: str = "Request failed",
        json: Any = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (or None)."""
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise NetworkError("Request timed out. The server may be busy.", timeout=True) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Cannot reach the server: {exc}") from exc

        if response.status_code not in expected:
            raise ServerError(_error_message(response, fallback_error), response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise DecodingError(f"{method} {path} returned invalid JSON") from exc

    # ── Scheduled summaries ────────────────────────────────────────────────

    async def get_scheduled_summaries(self) -> list[ScheduledSummary]:
        """Return the user's scheduled summaries (expected 0 or 1 element)."""
        data = await self._request(
            "GET", _SCHEDULES, fallback_error="Failed to fetch scheduled summaries"
        )
        if not isinstance(data, dict):
            raise DecodingError("Scheduled summaries response is not an object")
        try:
            return [
                ScheduledSummary.model_validate(item)
                for item in data.get("scheduledSummaries") or []
            ]
        except ValidationError as exc:
            raise DecodingError(f"Malformed scheduled summary: {exc}") from exc

    async def create_scheduled_summary(
        self, summary: ScheduledSummary, timezone: Optional[str] = None
    ) -> ScheduledSummary:
        """Create the schedule record; the server assigns ``id``/``createdAt``."""
        data = await self._request(
            "POST",
            _SCHEDULES,
            expected=(200, 201),
            fallback_error="Failed to create scheduled summary",
            json=_with_timezone(summary, timezone),
        )
        return _parse_summary(data)

    async def update_scheduled_summary(
        self, summary: ScheduledSummary, timezone: Optional[str] = None
    ) -> ScheduledSummary:
        """Replace the full record and return the server's echo."""
        data = await self._request(
            "PUT",
            f"{_SCHEDULES}/{summary.id}",
            fallback_error="Failed to update scheduled summary",
            json=_with_timezone(summary, timezone),
        )
        return _parse_summary(data)

    async def delete_scheduled_summary(self, summary_id: str) -> None:
        await self._request(
            "DELETE",
            f"{_SCHEDULES}/{summary_id}",
            fallback_error="Failed to delete scheduled summary",
        )
        logger.info("Deleted scheduled summary id=%s", summary_id)

    async def trigger_scheduled_summaries(self) -> dict[str, Any]:
        """Ask the backend to run the schedule now (manual execution)."""
        data = await self._request(
            "POST",
            f"{_SCHEDULES}/execute",
            fallback_error="Failed to trigger scheduled summaries",
        )
        return data if isinstance(data, dict) else {}

    # ── Assistant ──────────────────────────────────────────────────────────

    async def ask_assistant(
        self,
        fetch_id: str,
        message: str,
        conversation_history: list[dict[str, str]],
        audio_progress: int,
        current_time: str,
        total_duration: str,
    ) -> str:
        """Ask the assistant a question about one fetch and return its text."""
        payload = {
            "message": message,
            "conversationHistory": conversation_history,
            "audioProgress": audio_progress,
            "currentTime": current_time,
            "totalDuration": total_duration,
        }
        data = await self._request(
            "POST",
            f"/api/fetches/{fetch_id}/assistant",
            fallback_error="Failed to get assistant response",
            json=payload,
        )
        try:
            return AssistantReply.model_validate(data).response
        except ValidationError as exc:
            raise DecodingError(f"Malformed assistant reply: {exc}") from exc


# ── Helpers ────────────────────────────────────────────────────────────────────


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Extract ``{"error": ...}`` from an error body, else *fallback*."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return fallback


def _with_timezone(summary: ScheduledSummary, timezone: Optional[str]) -> dict:
    payload = summary.to_wire()
    if timezone:
        payload["timezone"] = timezone
    return payload


def _parse_summary(data: Any) -> ScheduledSummary:
    try:
        return ScheduledSummary.model_validate(data)
    except ValidationError as exc:
        raise DecodingError(f"Malformed scheduled summary: {exc}") from exc
