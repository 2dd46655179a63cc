from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

import hilal.astro as astro
from hilal.astro import SUNSET_ALTITUDE_DEG, EphemerisError, SpiceEphemeris
from hilal.calendar import DEFAULT_ANCHOR, DEFAULT_OBSERVER, HijriCalendar
from hilal.locators import MissingEphemerisEvent, locate_conjunction, locate_sunset
from hilal.models import ObserverLocation
from hilal.visibility import MIN_MOON_AGE_HOURS, evaluate_crescent

UTC = timezone.utc
SVALBARD = ObserverLocation(latitude=78.2232, longitude=15.6469)


def _close_to(actual: datetime, expected: datetime, minutes: float) -> bool:
    return abs((actual - expected).total_seconds()) <= minutes * 60.0


def test_abuja_sunset(ephemeris: SpiceEphemeris):
    sunset = locate_sunset(date(2023, 8, 16), DEFAULT_OBSERVER, ephemeris)
    assert datetime(2023, 8, 16, 17, 0, tzinfo=UTC) <= sunset <= datetime(2023, 8, 16, 18, 30, tzinfo=UTC)


def test_sun_sits_on_the_sunset_horizon(ephemeris: SpiceEphemeris):
    sunset = locate_sunset(date(2023, 8, 16), DEFAULT_OBSERVER, ephemeris)
    position = ephemeris.equator("SUN", sunset, DEFAULT_OBSERVER)
    horizontal = ephemeris.horizon(
        sunset, DEFAULT_OBSERVER, position.ra_deg, position.dec_deg, refraction=False
    )
    assert horizontal.altitude_deg == pytest.approx(SUNSET_ALTITUDE_DEG, abs=0.01)
    assert 270.0 <= horizontal.azimuth_deg <= 300.0


def test_sunrise_precedes_sunset(ephemeris: SpiceEphemeris):
    start = datetime(2023, 8, 15, 23, 0, tzinfo=UTC)
    sunrise = ephemeris.search_rise_set("SUN", DEFAULT_OBSERVER, 1, start)
    sunset = ephemeris.search_rise_set("SUN", DEFAULT_OBSERVER, -1, start)
    assert sunrise is not None and sunset is not None
    assert timedelta(hours=11) <= sunset - sunrise <= timedelta(hours=13, minutes=30)


def test_polar_day_has_no_sunset(ephemeris: SpiceEphemeris):
    with pytest.raises(MissingEphemerisEvent):
        locate_sunset(date(2023, 6, 21), SVALBARD, ephemeris)
    snapshot = evaluate_crescent(date(2023, 6, 21), SVALBARD, ephemeris)
    assert snapshot.is_visible is False
    assert snapshot.sunset_time is None


def test_rise_set_direction_is_validated(ephemeris: SpiceEphemeris):
    with pytest.raises(ValueError):
        ephemeris.search_rise_set("SUN", DEFAULT_OBSERVER, 0, datetime(2023, 8, 16, tzinfo=UTC))


def test_naive_datetimes_are_rejected(ephemeris: SpiceEphemeris):
    with pytest.raises(ValueError):
        ephemeris.moon_phase_angle(datetime(2023, 8, 16, 12, 0))


@pytest.mark.parametrize(
    ("bound", "expected"),
    [
        # New moons of 2023-07-17 18:32 UTC and 2024-04-08 18:21 UTC.
        (datetime(2023, 7, 20, 18, 0, tzinfo=UTC), datetime(2023, 7, 17, 18, 32, tzinfo=UTC)),
        (datetime(2024, 4, 9, 18, 0, tzinfo=UTC), datetime(2024, 4, 8, 18, 21, tzinfo=UTC)),
    ],
)
def test_conjunction_matches_published_new_moon(ephemeris: SpiceEphemeris, bound, expected):
    assert _close_to(locate_conjunction(bound, ephemeris), expected, minutes=20)


def test_quarter_search_returns_next_phase(ephemeris: SpiceEphemeris):
    seed = datetime(2023, 7, 17, 20, 0, tzinfo=UTC)
    event = ephemeris.search_moon_quarter(seed)
    assert event.quarter == 1
    assert datetime(2023, 7, 24, tzinfo=UTC) < event.time < datetime(2023, 7, 27, tzinfo=UTC)
    assert ephemeris.moon_phase_angle(event.time) == pytest.approx(90.0, abs=0.01)
    following = ephemeris.search_moon_quarter(event.time + timedelta(hours=1))
    assert following.quarter == 2
    assert following.time > event.time


def test_three_day_old_moon_is_above_horizon(ephemeris: SpiceEphemeris):
    snapshot = evaluate_crescent(date(2023, 7, 20), DEFAULT_OBSERVER, ephemeris)
    assert snapshot.moon_age_hours > 48.0
    assert snapshot.moon_altitude_deg is not None and snapshot.moon_altitude_deg > 5.0
    assert snapshot.is_visible is True


def test_anchor_scenario_is_internally_consistent(ephemeris: SpiceEphemeris):
    calendar = HijriCalendar(ephemeris)
    first = calendar.to_hijri(DEFAULT_ANCHOR.gregorian)
    assert (first.day, first.month, first.year) == (1, 1, 1445)

    muharram = calendar.month_range(1445, 1)
    snapshot = calendar.snapshot(DEFAULT_ANCHOR.gregorian + timedelta(days=28))
    assert muharram.length == (29 if snapshot.is_visible else 30)
    # The 2023-08-16 conjunction falls only hours before sunset in Abuja.
    assert snapshot.moon_age_hours < MIN_MOON_AGE_HOURS

    day_30 = calendar.to_hijri(DEFAULT_ANCHOR.gregorian + timedelta(days=29))
    if muharram.length == 30:
        assert (day_30.month, day_30.day) == (1, 30)
    else:
        assert (day_30.month, day_30.day) == (2, 1)


def test_round_trip_against_ephemeris(ephemeris: SpiceEphemeris):
    calendar = HijriCalendar(ephemeris)
    safar = calendar.month_range(1445, 2)
    assert safar.start_date == calendar.month_range(1445, 1).end_date + timedelta(days=1)
    for index, day in enumerate(safar.days):
        parts = calendar.to_hijri(day)
        assert (parts.year, parts.month, parts.day) == (1445, 2, index + 1)


def test_provider_requires_loaded_kernels(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(astro, "_LOADED_FILES", None)
    with pytest.raises(EphemerisError):
        SpiceEphemeris()


def test_load_ephemeris_rejects_missing_directory(
    monkeypatch: pytest.MonkeyPatch, tmp_path
):
    monkeypatch.setattr(astro, "_LOADED_FILES", None)
    with pytest.raises(EphemerisError):
        astro.load_ephemeris(str(tmp_path / "missing"))
    with pytest.raises(EphemerisError):
        astro.load_ephemeris(str(tmp_path))
