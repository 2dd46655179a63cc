"""Sunset and conjunction locators built on the ephemeris provider."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Protocol, TypeVar

from .astro import SUNSET_ALTITUDE_DEG
from .models import Equatorial, Horizontal, MoonQuarter, ObserverLocation

__all__ = [
    "CONJUNCTION_FALLBACK_OFFSET",
    "CONJUNCTION_SEED_OFFSET",
    "EphemerisProvider",
    "MissingEphemerisEvent",
    "NoConjunctionFound",
    "SEARCH_STEP",
    "local_midnight",
    "locate_conjunction",
    "locate_sunset",
    "search_last_before",
]

LOGGER = logging.getLogger(__name__)

# One synodic month (~29.53 d) plus margin, so the seed always precedes the last conjunction.
CONJUNCTION_SEED_OFFSET = timedelta(days=35)
CONJUNCTION_FALLBACK_OFFSET = timedelta(days=4)
# Advance past each found event so the next search cannot return it again.
SEARCH_STEP = timedelta(hours=1)


class MissingEphemerisEvent(LookupError):
    """Raised when no sunset occurs within the search window."""


class NoConjunctionFound(LookupError):
    """Raised when neither the primary nor the fallback search yields a new moon."""


class EphemerisProvider(Protocol):
    def search_rise_set(
        self,
        body: str,
        observer: ObserverLocation,
        direction: int,
        start: datetime,
        window: timedelta = ...,
        altitude_deg: float = ...,
    ) -> Optional[datetime]: ...

    def search_moon_quarter(self, seed: datetime) -> MoonQuarter: ...

    def equator(self, body: str, dt: datetime, observer: ObserverLocation) -> Equatorial: ...

    def horizon(
        self,
        dt: datetime,
        observer: ObserverLocation,
        ra_deg: float,
        dec_deg: float,
        refraction: bool = ...,
    ) -> Horizontal: ...


E = TypeVar("E")


def search_last_before(
    next_event: Callable[[datetime], E],
    event_time: Callable[[E], datetime],
    accept: Callable[[E], bool],
    bound: datetime,
    seed_offset: timedelta,
    step: timedelta = SEARCH_STEP,
) -> Optional[E]:
    """Return the last event accepted by *accept* that occurs strictly before *bound*.

    The search starts at ``bound - seed_offset`` and repeatedly asks
    *next_event* for the event following the seed, moving the seed to *step*
    past each result. It stops at the first event at or after *bound*.
    """

    best: Optional[E] = None
    seed = bound - seed_offset
    while seed <= bound:
        event = next_event(seed)
        found = event_time(event)
        if found >= bound:
            break
        if accept(event):
            best = event
        seed = found + step
    return best


def local_midnight(day: date, observer: ObserverLocation) -> datetime:
    """UTC instant of the start of *day* in the observer's fixed-offset local time."""

    tz = timezone(observer.utc_offset)
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def locate_sunset(day: date, observer: ObserverLocation, ephemeris: EphemerisProvider) -> datetime:
    """Return the first sunset in the 24 hours after local midnight of *day*."""

    start = local_midnight(day, observer)
    sunset = ephemeris.search_rise_set(
        "SUN", observer, -1, start, timedelta(days=1), SUNSET_ALTITUDE_DEG
    )
    if sunset is None:
        raise MissingEphemerisEvent(
            f"No sunset within 24h of {start.isoformat()} at "
            f"({observer.latitude}, {observer.longitude})"
        )
    return sunset


def locate_conjunction(bound: datetime, ephemeris: EphemerisProvider) -> datetime:
    """Return the most recent new moon strictly before *bound*."""

    found = search_last_before(
        ephemeris.search_moon_quarter,
        lambda event: event.time,
        lambda event: event.is_new_moon,
        bound,
        CONJUNCTION_SEED_OFFSET,
    )
    if found is not None:
        return found.time

    LOGGER.warning(
        json.dumps({"event": "conjunction_fallback", "bound": bound.isoformat()})
    )
    event = ephemeris.search_moon_quarter(bound - CONJUNCTION_FALLBACK_OFFSET)
    if event.is_new_moon and event.time < bound:
        return event.time
    raise NoConjunctionFound(f"No conjunction found before {bound.isoformat()}")
