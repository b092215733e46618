"""Gameweek status detection and helpers.

Status is derived on every call from the latest bootstrap ``events`` snapshot;
nothing here is stored or mutated.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MIN_GAMEWEEK = 1
MAX_GAMEWEEK = 38


class GameweekStatus(str, Enum):
    """Lifecycle of a gameweek as seen from the FPL calendar."""

    COMPLETED = "COMPLETED"
    LIVE = "LIVE"
    UPCOMING = "UPCOMING"
    UNKNOWN = "UNKNOWN"


class InvalidGameweekError(ValueError):
    """Raised when a gameweek is not an integer in 1..38."""


def validate_gameweek(value: Any) -> int:
    """Return value as a gameweek number or raise InvalidGameweekError."""
    # bool is an int subclass; True is not gameweek 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidGameweekError(f"Gameweek must be an integer, got {value!r}")
    if not MIN_GAMEWEEK <= value <= MAX_GAMEWEEK:
        raise InvalidGameweekError(
            f"Gameweek must be between {MIN_GAMEWEEK} and {MAX_GAMEWEEK}, got {value}"
        )
    return value


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an FPL ISO timestamp ("2025-08-15T17:30:00Z")."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def classify_event(event: dict[str, Any] | None, now: datetime) -> GameweekStatus:
    """Classify a single bootstrap event."""
    if not event:
        return GameweekStatus.UNKNOWN

    if event.get("finished"):
        return GameweekStatus.COMPLETED

    deadline = parse_timestamp(event.get("deadline_time"))
    if deadline is None:
        return GameweekStatus.UNKNOWN
    if deadline <= now:
        return GameweekStatus.LIVE
    return GameweekStatus.UPCOMING


def _utc_now() -> datetime:
    return datetime.now(UTC)


class GameweekOracle:
    """Answers lifecycle questions about gameweeks from the latest events list."""

    def __init__(
        self,
        events: Callable[[], list[dict[str, Any]] | None],
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Args:
            events: Returns the current bootstrap events, or None if not loaded
            clock: Returns the current time (timezone-aware)
        """
        self._events = events
        self._clock = clock

    def get_event(self, gameweek: int) -> dict[str, Any] | None:
        """Return the bootstrap event for a gameweek, or None."""
        events = self._events()
        if not events:
            return None
        return next((e for e in events if e.get("id") == gameweek), None)

    def status(self, gameweek: int) -> GameweekStatus:
        """Classify a gameweek as COMPLETED / LIVE / UPCOMING / UNKNOWN."""
        events = self._events()
        if events is None:
            logger.error("Cannot determine GW status: bootstrap data not loaded")
            return GameweekStatus.UNKNOWN

        event = next((e for e in events if e.get("id") == gameweek), None)
        if event is None:
            logger.error(f"Gameweek {gameweek} not found in bootstrap data")
            return GameweekStatus.UNKNOWN

        return classify_event(event, self._clock())

    def is_completed(self, gameweek: int) -> bool:
        return self.status(gameweek) is GameweekStatus.COMPLETED

    def latest_finished(self) -> int:
        """Latest finished gameweek number (defaults to 1)."""
        events = self._events()
        if events is None:
            logger.error("Cannot get finished GW: bootstrap data not loaded")
            return MIN_GAMEWEEK

        finished = [e["id"] for e in events if e.get("finished") and e.get("id")]
        return max(finished) if finished else MIN_GAMEWEEK

    def current(self) -> int | None:
        """Gameweek marked is_current, falling back to is_next between gameweeks."""
        events = self._events() or []
        for flag in ("is_current", "is_next"):
            event = next((e for e in events if e.get(flag)), None)
            if event is not None:
                return event.get("id")
        return None

    def next(self) -> int | None:
        """Next upcoming gameweek, or None if the season has ended."""
        events = self._events() or []
        event = next((e for e in events if e.get("is_next")), None)
        return event.get("id") if event else None

    def time_until_deadline(self, gameweek: int) -> timedelta | None:
        """Time until the gameweek deadline (negative once it has passed)."""
        event = self.get_event(gameweek)
        if event is None:
            return None
        deadline = parse_timestamp(event.get("deadline_time"))
        if deadline is None:
            return None
        return deadline - self._clock()

    def time_since_data_checked(self, gameweek: int) -> timedelta | None:
        """Time since FPL marked the gameweek's stats as checked, if known."""
        event = self.get_event(gameweek)
        if event is None:
            return None
        checked = parse_timestamp(event.get("data_checked_time"))
        if checked is None:
            return None
        return self._clock() - checked

    def log_status(self) -> None:
        """Log a one-shot summary of the gameweek calendar."""
        current = self.current()
        if current is None:
            logger.info("Gameweek status: bootstrap data not loaded")
            return

        logger.info(
            f"Gameweek status: current GW{current} ({self.status(current).value}), "
            f"latest finished GW{self.latest_finished()}"
        )
        upcoming = self.next()
        if upcoming is not None:
            remaining = self.time_until_deadline(upcoming)
            if remaining is not None and remaining > timedelta(0):
                hours, rest = divmod(int(remaining.total_seconds()), 3600)
                logger.info(f"Next GW{upcoming} deadline in {hours}h {rest // 60}m")
