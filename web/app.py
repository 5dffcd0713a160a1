"""
Flask control surface for the Fetch client services.

Exposes the schedule reconciler and per-fetch assistant sessions as JSON
commands so a local UI (or a script) can drive them.

Routes
──────
GET    /api/schedule                       Current schedule snapshot
POST   /api/schedule/load                  Reload from the server
PATCH  /api/schedule                       Edit time / enabled / topics / customTopics
POST   /api/schedule/run                   Run the schedule now
GET    /api/assistant/<fetch_id>           Open a session and return its snapshot
POST   /api/assistant/<fetch_id>/messages  Ask a question
DELETE /api/assistant/<fetch_id>           Close (and persist) a session
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request

# Allow running as `python web/app.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.settings import Settings
from core.api_client import ApiClient
from core.conversation import AssistantSession, PlaybackPosition, TranscriptStore
from core.runtime import LoopThread
from core.schedule import ScheduleReconciler
from core.storage import KeyValueStore
from core.timefmt import parse_hhmm
from core.topics import validate_custom_topic_list, validate_topic_list

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    api: Optional[ApiClient] = None,
    store: Optional[KeyValueStore] = None,
) -> Flask:
    """Build the Flask app and the services it drives."""
    settings = settings or Settings()
    runtime = LoopThread()
    owns_api = api is None
    api = api or ApiClient.from_settings(settings)
    transcripts = TranscriptStore(store or KeyValueStore(settings.db_path))
    reconciler = ScheduleReconciler(
        api,
        timezone=settings.timezone,
        debounce_seconds=settings.save_debounce_seconds,
    )
    sessions: dict[str, AssistantSession] = {}
    positions: dict[str, PlaybackPosition] = {}

    def shutdown() -> None:
        """Close open sessions, the HTTP client and the background loop."""
        if not runtime.loop.is_running():
            return
        reconciler.cancel_pending()
        for session in list(sessions.values()):
            runtime.run(session.close())
        sessions.clear()
        if owns_api:
            runtime.run(api.aclose())
        runtime.stop()

    app = Flask(__name__)
    app.config.update(
        runtime=runtime, reconciler=reconciler, sessions=sessions, api=api,
        shutdown=shutdown,
    )
    atexit.register(shutdown)

    def bad_request(message: str):
        return jsonify({"error": message}), 400

    # ── Schedule ───────────────────────────────────────────────────────────

    @app.route("/api/schedule")
    def get_schedule():
        return jsonify(reconciler.snapshot().to_dict())

    @app.route("/api/schedule/load", methods=["POST"])
    def load_schedule():
        ok = runtime.run(reconciler.load())
        body = reconciler.snapshot().to_dict()
        return jsonify(body), (200 if ok else 502)

    @app.route("/api/schedule", methods=["PATCH"])
    def edit_schedule():
        """Apply one or more edits; each triggers its own save."""
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return bad_request("Request body must be a JSON object.")
        try:
            new_time = parse_hhmm(body["time"]) if "time" in body else None
            if "enabled" in body and not isinstance(body["enabled"], bool):
                raise TypeError("enabled must be true or false.")
            topics = validate_topic_list(body["topics"]) if "topics" in body else None
            custom = (
                validate_custom_topic_list(body["customTopics"])
                if "customTopics" in body else None
            )
        except (TypeError, ValueError) as exc:
            return bad_request(str(exc))

        if new_time is not None:
            runtime.run(reconciler.set_time(new_time))
        if "enabled" in body:
            runtime.run(reconciler.set_enabled(body["enabled"]))
        if topics is not None:
            runtime.run(reconciler.set_topics(topics))
        if custom is not None:
            runtime.run(reconciler.set_custom_topics(custom))
        return jsonify(reconciler.snapshot().to_dict())

    @app.route("/api/schedule/run", methods=["POST"])
    def run_schedule():
        result = runtime.run(reconciler.run_now())
        if result is None:
            return jsonify({"error": reconciler.last_error or "Run failed"}), 502
        return jsonify(result)

    # ── Assistant ──────────────────────────────────────────────────────────

    def session_for(fetch_id: str) -> AssistantSession:
        session = sessions.get(fetch_id)
        if session is None:
            session = AssistantSession(
                fetch_id,
                api,
                transcripts,
                playback=lambda: positions.get(fetch_id, PlaybackPosition()),
                history_window=settings.assistant_history_window,
            )
            sessions[fetch_id] = session
        if not session.is_open:
            runtime.run(session.open())
        return session

    @app.route("/api/assistant/<fetch_id>")
    def open_session(fetch_id: str):
        return jsonify(session_for(fetch_id).snapshot().to_dict())

    @app.route("/api/assistant/<fetch_id>/messages", methods=["POST"])
    def send_message(fetch_id: str):
        body = request.get_json(silent=True) or {}
        try:
            positions[fetch_id] = PlaybackPosition(
                current_time=float(body.get("currentTime", 0) or 0),
                duration=float(body.get("duration", 0) or 0),
            )
        except (TypeError, ValueError):
            return bad_request("currentTime and duration must be numbers.")

        session = session_for(fetch_id)
        try:
            reply = runtime.run(session.send(str(body.get("message", ""))))
        except ValueError as exc:
            return bad_request(str(exc))
        except RuntimeError as exc:
            return jsonify({"error": str(exc)}), 409

        status = 200 if reply is not None else 502
        return jsonify(session.snapshot().to_dict()), status

    @app.route("/api/assistant/<fetch_id>", methods=["DELETE"])
    def close_session(fetch_id: str):
        session = sessions.pop(fetch_id, None)
        positions.pop(fetch_id, None)
        if session is None:
            return jsonify({"error": "Not found"}), 404
        runtime.run(session.close())
        return jsonify({"closed": fetch_id})

    return app


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    settings = Settings()
    settings.validate()
    app = create_app(settings)
    app.run(debug=settings.debug, port=settings.port, threaded=True, use_reloader=False)
