"""
Review history stored in a YAML or JSON file.

Accepted layouts:
- a list of review mappings
- a mapping with a "reviews" list and an optional top-level "user_id"
  applied to reviews that do not carry one

Timestamps without a UTC offset are read as UTC.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from rehearse.domain.errors import RehearseError
from rehearse.domain.models import ReviewEvent
from rehearse.domain.ports import ReviewHistorySource

logger = logging.getLogger(__name__)


class HistoryFileError(RehearseError, ValueError):
    """The history file is missing, unparsable or has malformed reviews."""


def _normalize(value: Any) -> Any:
    # yaml.safe_load turns ISO timestamps into datetimes already
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return value


def parse_history(data: Any, default_user: str | None = None) -> list[ReviewEvent]:
    if isinstance(data, dict):
        default_user = data.get("user_id", default_user)
        rows = data.get("reviews", [])
    else:
        rows = data
    if not isinstance(rows, list):
        raise HistoryFileError("Review history must be a list of reviews")

    events = []
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            raise HistoryFileError(f"Review #{i} is not a mapping")
        row = {k: _normalize(v) for k, v in row.items()}
        if default_user and not row.get("user_id"):
            row["user_id"] = default_user
        try:
            event = ReviewEvent.from_dict(row)
        except (KeyError, ValueError, TypeError) as e:
            raise HistoryFileError(f"Review #{i} is malformed: {e}") from e
        if event.reviewed_at is None:
            raise HistoryFileError(f"Review #{i} has no reviewed_at")
        if event.reviewed_at.tzinfo is None:
            event = replace(event, reviewed_at=event.reviewed_at.replace(tzinfo=timezone.utc))
        events.append(event)
    events.sort(key=lambda e: (e.reviewed_at, e.sequence))
    return events


def load_history(path: Path, default_user: str | None = None) -> list[ReviewEvent]:
    """Load and validate a review history file (YAML or JSON)."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise HistoryFileError(f"Cannot read {path}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise HistoryFileError(f"Cannot parse {path}: {e}") from e
    if data is None:
        return []
    events = parse_history(data, default_user)
    logger.debug(f"Loaded {len(events)} reviews from {path}")
    return events


def dump_history(events: list[ReviewEvent], path: Path) -> None:
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump({"reviews": [e.to_dict() for e in events]}, f, sort_keys=False)


class ReviewHistoryFile(ReviewHistorySource):
    """Read-only ReviewHistorySource backed by a history file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._events: list[ReviewEvent] | None = None

    def _load(self) -> list[ReviewEvent]:
        if self._events is None:
            self._events = load_history(self.path)
        return self._events

    async def get_review_history(self, user_id: str, limit: int) -> list[ReviewEvent]:
        mine = [e for e in self._load() if e.user_id == user_id]
        return mine[-limit:] if limit > 0 else []

    async def count_reviews(self, user_id: str) -> int:
        return sum(1 for e in self._load() if e.user_id == user_id)
