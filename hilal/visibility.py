"""Crescent visibility on the 29th day and the resulting month length."""

from __future__ import annotations

import json
import logging
from datetime import date, timedelta
from typing import Optional

from .locators import (
    EphemerisProvider,
    MissingEphemerisEvent,
    NoConjunctionFound,
    locate_conjunction,
    locate_sunset,
)
from .models import MoonSnapshot, ObserverLocation

__all__ = [
    "MIN_MOON_AGE_HOURS",
    "crescent_visible",
    "evaluate_crescent",
    "resolve_month_length",
]

LOGGER = logging.getLogger(__name__)

# Committee criterion: a younger moon is never considered sighted.
MIN_MOON_AGE_HOURS = 18.0


def crescent_visible(moon_age_hours: float, altitude_deg: Optional[float]) -> bool:
    """Age gate first; an old-enough moon must still be above the horizon at sunset."""

    if moon_age_hours < MIN_MOON_AGE_HOURS:
        return False
    return altitude_deg is not None and altitude_deg > 0.0


def evaluate_crescent(
    day29: date, observer: ObserverLocation, ephemeris: EphemerisProvider
) -> MoonSnapshot:
    """Evaluate the crescent at sunset of *day29*.

    Missing sunsets and conjunctions are logged and reported as not visible,
    which makes the month 30 days long.
    """

    try:
        sunset = locate_sunset(day29, observer, ephemeris)
    except MissingEphemerisEvent as exc:
        LOGGER.warning(
            json.dumps({"event": "sunset_missing", "day": day29.isoformat(), "error": str(exc)})
        )
        return MoonSnapshot(moon_age_hours=0.0, is_visible=False)

    try:
        conjunction = locate_conjunction(sunset, ephemeris)
    except NoConjunctionFound as exc:
        LOGGER.warning(
            json.dumps(
                {"event": "conjunction_missing", "sunset": sunset.isoformat(), "error": str(exc)}
            )
        )
        return MoonSnapshot(moon_age_hours=0.0, is_visible=False, sunset_time=sunset)

    moon_age_hours = (sunset - conjunction).total_seconds() / 3600.0
    altitude: Optional[float] = None
    if moon_age_hours >= MIN_MOON_AGE_HOURS:
        position = ephemeris.equator("MOON", sunset, observer)
        altitude = ephemeris.horizon(
            sunset, observer, position.ra_deg, position.dec_deg
        ).altitude_deg

    snapshot = MoonSnapshot(
        moon_age_hours=moon_age_hours,
        is_visible=crescent_visible(moon_age_hours, altitude),
        sunset_time=sunset,
        conjunction_time=conjunction,
        moon_altitude_deg=altitude,
    )
    LOGGER.debug(
        json.dumps(
            {
                "event": "crescent_evaluated",
                "day": day29.isoformat(),
                "moon_age_hours": round(moon_age_hours, 3),
                "altitude_deg": None if altitude is None else round(altitude, 3),
                "visible": snapshot.is_visible,
            }
        )
    )
    return snapshot


def resolve_month_length(
    month_start: date, observer: ObserverLocation, ephemeris: EphemerisProvider
) -> int:
    """29 if the crescent is seen after sunset on day 29, otherwise 30."""

    snapshot = evaluate_crescent(month_start + timedelta(days=28), observer, ephemeris)
    return 29 if snapshot.is_visible else 30
