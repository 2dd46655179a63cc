"""Hijri calendar driven by astronomical crescent visibility."""

from .astro import EphemerisError, SpiceEphemeris, load_ephemeris
from .calendar import (
    DEFAULT_ANCHOR,
    DEFAULT_OBSERVER,
    HijriCalendar,
    MonthCache,
    PreAnchorDate,
    clamp_calibration,
)
from .locators import MissingEphemerisEvent, NoConjunctionFound
from .models import (
    AnchorEpoch,
    HijriDateParts,
    HijriMonthDescriptor,
    HijriMonthRange,
    MoonSnapshot,
    ObserverLocation,
)

__all__ = [
    "AnchorEpoch",
    "DEFAULT_ANCHOR",
    "DEFAULT_OBSERVER",
    "EphemerisError",
    "HijriCalendar",
    "HijriDateParts",
    "HijriMonthDescriptor",
    "HijriMonthRange",
    "MissingEphemerisEvent",
    "MonthCache",
    "MoonSnapshot",
    "NoConjunctionFound",
    "ObserverLocation",
    "PreAnchorDate",
    "SpiceEphemeris",
    "clamp_calibration",
    "load_ephemeris",
]
