"""
Fetch client core package.

Modules
───────
models        — Pydantic data models (ScheduledSummary, ChatMessage, Transcript)
api_client    — async httpx client for the backend + ApiError hierarchy
schedule      — ScheduleReconciler: load/save/echo reconciliation of the daily fetch
conversation  — AssistantSession + TranscriptStore: per-fetch assistant chat
storage       — SQLite-backed key-value store for local state
timefmt       — 10-minute rounding, HH:mm and M:SS helpers
topics        — canonical topics and custom-topic validation
debounce      — per-key coalescing of rapid async calls
events        — Observable mixin for state snapshots
runtime       — background asyncio loop for synchronous callers
"""
