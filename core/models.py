"""
Pydantic models shared across the Fetch client core.

Wire models use the backend's camelCase keys through aliases; Python code
uses snake_case attribute names.
"""

from __future__ import annotations

import uuid
from datetime import datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

#: The reconciler always schedules every day of the week.
ALL_DAYS: list[str] = [
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
]
DEFAULT_SCHEDULE_NAME = "Daily Fetch"
DEFAULT_SCHEDULE_TIME = time(8, 0)
DEFAULT_WORD_COUNT = 200

#: Envelope version written by TranscriptStore.
TRANSCRIPT_VERSION = 1


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ScheduledSummary(_CamelModel):
    """The user's single "daily fetch" schedule record."""

    id: str = ""
    name: str = DEFAULT_SCHEDULE_NAME
    time: str = "08:00"
    topics: list[str] = Field(default_factory=list)
    custom_topics: list[str] = Field(default_factory=list, alias="customTopics")
    days: list[str] = Field(default_factory=lambda: list(ALL_DAYS))
    word_count: int = Field(default=DEFAULT_WORD_COUNT, alias="wordCount")
    is_enabled: bool = Field(default=False, alias="isEnabled")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    last_run: Optional[str] = Field(default=None, alias="lastRun")

    def to_wire(self) -> dict:
        """Serialise with camelCase keys, as the backend expects."""
        return self.model_dump(by_alias=True)


class Role(str, Enum):
    """Author of a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """A single turn in an assistant conversation."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)

    def to_history_entry(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class Transcript(BaseModel):
    """Versioned on-disk envelope for a conversation."""

    version: int = TRANSCRIPT_VERSION
    messages: list[ChatMessage] = Field(default_factory=list)


class AssistantReply(BaseModel):
    """Response body of the fetch assistant endpoint."""

    response: str
