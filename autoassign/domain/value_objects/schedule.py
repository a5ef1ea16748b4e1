"""Availability windows: weekly time ranges evaluated in an agent's timezone."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

ALL_WEEKDAYS = frozenset(range(7))


@dataclass(frozen=True)
class AvailabilityWindow:
    """A daily [start, end) window on the given weekdays (0 = Monday).

    A window whose end is earlier than its start wraps past midnight: the
    part after midnight belongs to the following weekday.
    """

    start: time
    end: time
    weekdays: frozenset[int] = field(default=ALL_WEEKDAYS)

    def contains(self, local: datetime) -> bool:
        moment = local.time().replace(tzinfo=None)
        weekday = local.weekday()
        if self.start <= self.end:
            return weekday in self.weekdays and self.start <= moment < self.end
        if moment >= self.start:
            return weekday in self.weekdays
        if moment < self.end:
            return (weekday - 1) % 7 in self.weekdays
        return False

    @classmethod
    def parse(cls, raw: str) -> "AvailabilityWindow":
        """Parse ``"09:00-17:00"`` or ``"0,1,2,3,4@09:00-17:00"``."""
        weekdays = ALL_WEEKDAYS
        text = raw.strip()
        if "@" in text:
            days, text = text.split("@", 1)
            weekdays = frozenset(int(d) for d in days.split(",") if d.strip())
            if not weekdays <= ALL_WEEKDAYS:
                raise ValueError(f"Weekdays must be 0..6: {raw!r}")
        start_raw, end_raw = text.split("-", 1)
        return cls(
            start=time.fromisoformat(start_raw.strip()),
            end=time.fromisoformat(end_raw.strip()),
            weekdays=weekdays,
        )

    def render(self) -> str:
        days = ",".join(str(d) for d in sorted(self.weekdays))
        span = f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"
        return span if self.weekdays == ALL_WEEKDAYS else f"{days}@{span}"


def resolve_zone(name: str | None) -> ZoneInfo | timezone:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def is_within_schedule(
    windows: tuple[AvailabilityWindow, ...],
    tz_name: str | None,
    moment: datetime,
) -> bool:
    """An empty schedule means "always available"."""
    if not windows:
        return True
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(resolve_zone(tz_name))
    return any(w.contains(local) for w in windows)
