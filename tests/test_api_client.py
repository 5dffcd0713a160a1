"""Tests for core/api_client.py — request shapes and error mapping (respx-mocked)."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from core.api_client import (
    ApiClient,
    DecodingError,
    NetworkError,
    ServerError,
)
from core.models import ALL_DAYS, ScheduledSummary

BASE_URL = "https://api.test"


def record_json(**overrides) -> dict:
    data = {
        "id": "1700000000000",
        "name": "Daily Fetch",
        "time": "08:00",
        "topics": ["general"],
        "customTopics": [],
        "days": ALL_DAYS,
        "wordCount": 200,
        "isEnabled": False,
        "createdAt": "2025-01-01T00:00:00.000Z",
        "lastRun": None,
    }
    data.update(overrides)
    return data


@pytest.fixture
async def client():
    async with ApiClient(BASE_URL, token="secret", timeout=5.0) as api:
        yield api


@pytest.fixture
def mock_api():
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        yield router


class TestScheduledSummaries:
    async def test_get_parses_list(self, client, mock_api):
        mock_api.get("/api/scheduled-summaries").respond(
            200, json={"scheduledSummaries": [record_json(customTopics=["Formula 1"])]}
        )

        summaries = await client.get_scheduled_summaries()

        assert len(summaries) == 1
        assert summaries[0].custom_topics == ["Formula 1"]
        assert summaries[0].created_at == "2025-01-01T00:00:00.000Z"

    async def test_get_sends_bearer_token(self, client, mock_api):
        route = mock_api.get("/api/scheduled-summaries").respond(
            200, json={"scheduledSummaries": []}
        )

        await client.get_scheduled_summaries()

        assert route.calls.last.request.headers["Authorization"] == "Bearer secret"

    async def test_get_empty_list(self, client, mock_api):
        mock_api.get("/api/scheduled-summaries").respond(200, json={"scheduledSummaries": []})
        assert await client.get_scheduled_summaries() == []

    async def test_update_sends_full_record_with_timezone(self, client, mock_api):
        route = mock_api.put("/api/scheduled-summaries/abc").respond(
            200, json=record_json(id="abc", topics=["science"])
        )
        summary = ScheduledSummary(id="abc", topics=["science"], is_enabled=True)

        echo = await client.update_scheduled_summary(summary, timezone="Europe/London")

        sent = json.loads(route.calls.last.request.content)
        assert sent["timezone"] == "Europe/London"
        assert sent["isEnabled"] is True
        assert sent["customTopics"] == []
        assert sent["days"] == ALL_DAYS
        assert echo.topics == ["science"]

    async def test_create_accepts_201(self, client, mock_api):
        mock_api.post("/api/scheduled-summaries").respond(201, json=record_json(id="new"))
        created = await client.create_scheduled_summary(ScheduledSummary(topics=["general"]))
        assert created.id == "new"

    async def test_delete(self, client, mock_api):
        route = mock_api.delete("/api/scheduled-summaries/abc").respond(
            200, json={"message": "Scheduled fetch deleted successfully"}
        )
        await client.delete_scheduled_summary("abc")
        assert route.called

    async def test_trigger_returns_body(self, client, mock_api):
        mock_api.post("/api/scheduled-summaries/execute").respond(200, json={"executed": 1})
        assert await client.trigger_scheduled_summaries() == {"executed": 1}


class TestAssistant:
    async def test_payload_and_reply(self, client, mock_api):
        route = mock_api.post("/api/fetches/fetch-42/assistant").respond(
            200, json={"response": "Markets rallied."}
        )

        reply = await client.ask_assistant(
            fetch_id="fetch-42",
            message="What happened?",
            conversation_history=[{"role": "user", "content": "hi"}],
            audio_progress=25,
            current_time="1:00",
            total_duration="4:00",
        )

        assert reply == "Markets rallied."
        sent = json.loads(route.calls.last.request.content)
        assert sent == {
            "message": "What happened?",
            "conversationHistory": [{"role": "user", "content": "hi"}],
            "audioProgress": 25,
            "currentTime": "1:00",
            "totalDuration": "4:00",
        }

    async def test_missing_response_field_is_decoding_error(self, client, mock_api):
        mock_api.post("/api/fetches/f/assistant").respond(200, json={"answer": "x"})
        with pytest.raises(DecodingError):
            await client.ask_assistant("f", "q", [], 0, "0:00", "0:00")


class TestErrors:
    async def test_server_error_uses_error_field(self, client, mock_api):
        mock_api.get("/api/scheduled-summaries").respond(
            500, json={"error": "Failed to get scheduled summaries"}
        )
        with pytest.raises(ServerError) as info:
            await client.get_scheduled_summaries()
        assert info.value.status_code == 500
        assert info.value.message == "Failed to get scheduled summaries"

    async def test_server_error_without_json_uses_fallback(self, client, mock_api):
        mock_api.put("/api/scheduled-summaries/x").respond(502, text="Bad gateway")
        with pytest.raises(ServerError, match="Failed to update scheduled summary"):
            await client.update_scheduled_summary(ScheduledSummary(id="x", topics=["a"]))

    async def test_invalid_json_is_decoding_error(self, client, mock_api):
        mock_api.get("/api/scheduled-summaries").respond(200, text="<html>")
        with pytest.raises(DecodingError):
            await client.get_scheduled_summaries()

    async def test_timeout_is_network_error(self, client, mock_api):
        mock_api.get("/api/scheduled-summaries").mock(
            side_effect=httpx.ReadTimeout("slow")
        )
        with pytest.raises(NetworkError) as info:
            await client.get_scheduled_summaries()
        assert info.value.timeout is True

    async def test_connect_error_is_network_error(self, client, mock_api):
        mock_api.get("/api/scheduled-summaries").mock(
            side_effect=httpx.ConnectError("refused")
        )
        with pytest.raises(NetworkError) as info:
            await client.get_scheduled_summaries()
        assert info.value.timeout is False
