"""Hijri calendar walk from a fixed anchor, with month caching and calibration."""

from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime, timedelta, timezone
from functools import partial
from threading import Lock
from typing import Callable, Dict, Iterator, Optional, Tuple

from .locators import EphemerisProvider
from .models import (
    AnchorEpoch,
    HijriDateParts,
    HijriMonthDescriptor,
    HijriMonthRange,
    MoonSnapshot,
    ObserverLocation,
    month_name,
)
from .visibility import evaluate_crescent, resolve_month_length

__all__ = [
    "CALIBRATION_LIMIT",
    "DEFAULT_ANCHOR",
    "DEFAULT_OBSERVER",
    "HijriCalendar",
    "MonthCache",
    "PreAnchorDate",
    "clamp_calibration",
]

LOGGER = logging.getLogger(__name__)

# 1 Muharram 1445 AH.
DEFAULT_ANCHOR = AnchorEpoch(gregorian=date(2023, 7, 19), year=1445)
# Abuja: the national moon-sighting reference point, not the user's own location.
DEFAULT_OBSERVER = ObserverLocation(latitude=9.0765, longitude=7.3986, tz_offset_hours=1.0)

CALIBRATION_LIMIT = 3

MonthKey = Tuple[int, int, Tuple[float, float]]


class PreAnchorDate(ValueError):
    """Raised when a query precedes the calendar's anchor epoch."""


def clamp_calibration(requested: int) -> int:
    if isinstance(requested, bool) or not isinstance(requested, int):
        raise TypeError(f"calibration must be a whole number of days, got {requested!r}")
    return max(-CALIBRATION_LIMIT, min(CALIBRATION_LIMIT, requested))


class MonthCache:
    """Resolved months keyed by ``(year, month, location_key)``, kept apart per anchor.

    Calendars built on different anchors may share one cache without seeing
    each other's months.
    """

    def __init__(self) -> None:
        self._entries: Dict[AnchorEpoch, Dict[MonthKey, HijriMonthDescriptor]] = {}
        self._lock = Lock()

    def get(
        self, anchor: AnchorEpoch, year: int, month: int, location_key: Tuple[float, float]
    ) -> Optional[HijriMonthDescriptor]:
        with self._lock:
            return self._entries.get(anchor, {}).get((year, month, location_key))

    def put(
        self, anchor: AnchorEpoch, descriptor: HijriMonthDescriptor, location_key: Tuple[float, float]
    ) -> None:
        with self._lock:
            months = self._entries.setdefault(anchor, {})
            months[(descriptor.year, descriptor.month, location_key)] = descriptor

    def clear(self, anchor: Optional[AnchorEpoch] = None) -> None:
        """Drop the months of *anchor*, or of every anchor when it is omitted."""

        with self._lock:
            if anchor is None:
                self._entries.clear()
            else:
                self._entries.pop(anchor, None)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(months) for months in self._entries.values())


class HijriCalendar:
    """Gregorian/Hijri conversion by walking month by month from an anchor epoch.

    Every month's length comes from *month_length*, a callable taking the
    month's first Gregorian day; by default that is the crescent-visibility
    resolver for *observer* over *ephemeris*. The calibration offset shifts
    query inputs by whole days and is always clamped to +/-3.
    """

    def __init__(
        self,
        ephemeris: Optional[EphemerisProvider] = None,
        anchor: AnchorEpoch = DEFAULT_ANCHOR,
        observer: ObserverLocation = DEFAULT_OBSERVER,
        calibration: int = 0,
        month_length: Optional[Callable[[date], int]] = None,
        cache: Optional[MonthCache] = None,
    ) -> None:
        if month_length is None:
            if ephemeris is None:
                raise ValueError("an ephemeris provider or a month_length resolver is required")
            month_length = partial(resolve_month_length, observer=observer, ephemeris=ephemeris)
        self.ephemeris = ephemeris
        self.anchor = anchor
        self.observer = observer
        self._month_length = month_length
        self.cache = cache if cache is not None else MonthCache()
        self.set_calibration(calibration)

    @property
    def calibration(self) -> int:
        return self._calibration

    def set_calibration(self, requested: int) -> int:
        """Store *requested* clamped to the allowed range and return the effective offset."""

        self._calibration = clamp_calibration(requested)
        LOGGER.info(
            json.dumps(
                {"event": "calibration_set", "requested": requested, "effective": self._calibration}
            )
        )
        return self._calibration

    def _resolve(self, year: int, month: int, start: date) -> HijriMonthDescriptor:
        key = self.observer.location_key
        cached = self.cache.get(self.anchor, year, month, key)
        if cached is not None:
            return cached
        length = self._month_length(start)
        if length not in (29, 30):
            raise ValueError(f"month length must be 29 or 30, got {length}")
        descriptor = HijriMonthDescriptor(
            year=year,
            month=month,
            length=length,
            start_date=start,
            end_date=start + timedelta(days=length - 1),
        )
        self.cache.put(self.anchor, descriptor, key)
        LOGGER.debug(
            json.dumps(
                {
                    "event": "month_resolved",
                    "year": year,
                    "month": month,
                    "start": start.isoformat(),
                    "length": length,
                }
            )
        )
        return descriptor

    def months(self) -> Iterator[HijriMonthDescriptor]:
        """Yield consecutive months starting with the anchor month. Never ends."""

        year, month, start = self.anchor.year, self.anchor.month, self.anchor.gregorian
        while True:
            descriptor = self._resolve(year, month, start)
            yield descriptor
            start = descriptor.next_start
            month += 1
            if month > 12:
                month = 1
                year += 1

    def _local_date(self, target: date) -> date:
        if isinstance(target, datetime):
            if target.tzinfo is None:
                return target.date()
            return target.astimezone(timezone(self.observer.utc_offset)).date()
        return target

    def to_hijri(self, target: date) -> HijriDateParts:
        """Return the Hijri date containing *target* (a date or datetime)."""

        effective = self._local_date(target) + timedelta(days=self._calibration)
        if effective < self.anchor.gregorian:
            raise PreAnchorDate(
                f"{effective.isoformat()} precedes the anchor {self.anchor.gregorian.isoformat()}"
            )
        descriptor = next(d for d in self.months() if d.next_start > effective)
        return HijriDateParts(
            day=(effective - descriptor.start_date).days + 1,
            month=descriptor.month,
            year=descriptor.year,
            month_name=month_name(descriptor.month),
        )

    def today(self, now: Optional[datetime] = None) -> HijriDateParts:
        return self.to_hijri(now if now is not None else datetime.now(UTC))

    def _find_month(self, year: int, month: int) -> HijriMonthDescriptor:
        month_name(month)
        if (year, month) < (self.anchor.year, self.anchor.month):
            raise PreAnchorDate(
                f"{year}-{month:02d} AH precedes the anchor month {self.anchor.year}-01 AH"
            )
        return next(d for d in self.months() if (d.year, d.month) == (year, month))

    def month_descriptor(self, year: int, month: int) -> HijriMonthDescriptor:
        """Bounds of Hijri *month* of *year*, in the calibrated Gregorian frame."""

        descriptor = self._find_month(year, month)
        if not self._calibration:
            return descriptor
        shift = timedelta(days=-self._calibration)
        return descriptor.model_copy(
            update={
                "start_date": descriptor.start_date + shift,
                "end_date": descriptor.end_date + shift,
            }
        )

    def month_range(self, year: int, month: int) -> HijriMonthRange:
        """Every Gregorian day of Hijri *month* of *year*.

        With a calibration offset the days are those whose calibrated lookup
        falls in the month, so ``to_hijri(days[i]).day == i + 1`` always holds.
        """

        descriptor = self.month_descriptor(year, month)
        days = [descriptor.start_date + timedelta(days=i) for i in range(descriptor.length)]
        return HijriMonthRange(
            year=descriptor.year,
            month=descriptor.month,
            length=descriptor.length,
            start_date=descriptor.start_date,
            end_date=descriptor.end_date,
            month_name=month_name(descriptor.month),
            days=days,
        )

    def snapshot(self, day: date) -> MoonSnapshot:
        """Crescent evaluation at sunset of *day*, uncalibrated."""

        if self.ephemeris is None:
            raise ValueError("snapshot requires an ephemeris provider")
        return evaluate_crescent(self._local_date(day), self.observer, self.ephemeris)
