"""
JSONL event log for approval sessions.

One file per workflow run, <logs_dir>/run-<run_id>.jsonl, appended to by
the session. Each line is one session event:

    {"timestamp": "...Z", "level": "info", "event_type": "poll",
     "run_id": "42", "issue_number": 7, "data": {...}}

issue_number is present once the tracking issue exists. Event types written
by the session: session_start, issue_created, issue_create_failed,
transition, poll, poll_discarded, poll_failed, close_failed, terminal.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventLogger:
    """Appends session events for one workflow run to a JSONL file."""

    def __init__(self, run_id: int | str, logs_dir: Path) -> None:
        self.run_id = str(run_id)
        self.path = Path(logs_dir) / f"run-{self.run_id}.jsonl"

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = "info",
        issue_number: Optional[int] = None,
    ) -> None:
        """
        Append one event.

        Args:
            event_type: Session event name, e.g. "poll" or "terminal".
            data: Event payload; must be JSON serializable or str()-able.
            level: debug, info, warn or error.
            issue_number: Tracking issue, once created.
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "event_type": event_type,
            "run_id": self.run_id,
        }
        if issue_number is not None:
            entry["issue_number"] = issue_number
        entry["data"] = data or {}

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
