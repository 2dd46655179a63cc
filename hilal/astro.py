"""SPICE-backed ephemeris provider: Sun/Moon positions, rise/set and lunar phases."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Callable, List, Optional, Tuple

import erfa
import numpy as np
import spiceypy as spice
from spiceypy.utils.exceptions import SpiceyError

from .models import Equatorial, Horizontal, MoonQuarter, ObserverLocation

__all__ = [
    "EphemerisError",
    "SpiceEphemeris",
    "SUNSET_ALTITUDE_DEG",
    "load_ephemeris",
]

LOGGER = logging.getLogger(__name__)

# Geometric altitude of the Sun's centre at official sunset: refraction plus semidiameter.
SUNSET_ALTITUDE_DEG = -0.833

EARTH_EQUATORIAL_RADIUS_KM = 6378.137  # WGS84 equatorial radius in kilometers.
EARTH_FLATTENING = 1.0 / 298.257223563  # WGS84 flattening.

MEAN_ELONGATION_RATE_DEG_PER_DAY = 360.0 / 29.530588853
RISE_SET_SAMPLE_STEP = timedelta(minutes=5)

_LOADED_FILES: Optional[List[str]] = None
_LOAD_LOCK = Lock()


class EphemerisError(RuntimeError):
    """Raised when ephemeris loading or computation fails."""


@dataclass(frozen=True)
class _TimeScales:
    """Container for time-scale representations of a UTC instant."""

    ut1: Tuple[float, float]
    tt: Tuple[float, float]
    et: float


@dataclass(frozen=True)
class _Site:
    """Observer position (km) and local east/north/up unit vectors, all in ITRF."""

    itrf: np.ndarray
    east: np.ndarray
    north: np.ndarray
    up: np.ndarray


def load_ephemeris(bsp_dir: str) -> List[str]:
    """Load all SPK kernels from *bsp_dir* using :mod:`spiceypy`.

    Parameters
    ----------
    bsp_dir:
        Directory containing one or more ``.bsp`` files, or a single ``.bsp`` file.

    Returns
    -------
    list[str]
        Sorted list of loaded kernel file names.

    Raises
    ------
    EphemerisError
        If the path is missing or contains no ``.bsp`` files.
    """

    global _LOADED_FILES

    if _LOADED_FILES is not None:
        return _LOADED_FILES

    path = Path(bsp_dir).expanduser()
    if path.is_file() and path.suffix.lower() == ".bsp":
        candidates = [path]
    elif path.is_dir():
        candidates = sorted(
            file for file in path.iterdir() if file.is_file() and file.suffix.lower() == ".bsp"
        )
    else:
        raise EphemerisError(f"Ephemeris path not found: {path}")

    with _LOAD_LOCK:
        if _LOADED_FILES is not None:
            return _LOADED_FILES

        if not candidates:
            raise EphemerisError(f"No .bsp ephemeris files found in directory: {path}")

        loaded: List[str] = []
        for bsp_file in candidates:
            try:
                spice.furnsh(str(bsp_file))
            except SpiceyError as exc:
                spice.kclear()
                raise EphemerisError(
                    f"Failed to load ephemeris file '{bsp_file}': {exc}"
                ) from exc
            loaded.append(bsp_file.name)

        _LOADED_FILES = loaded
        LOGGER.info(json.dumps({"event": "ephemeris_loaded", "files": loaded}))
        return loaded


def _datetime_to_timescales(dt: datetime) -> _TimeScales:
    """Convert a timezone-aware UTC datetime into multiple time scales."""

    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware (UTC)")
    dt_utc = dt.astimezone(UTC)
    utc1, utc2 = erfa.dtf2d(
        "UTC",
        dt_utc.year,
        dt_utc.month,
        dt_utc.day,
        dt_utc.hour,
        dt_utc.minute,
        dt_utc.second + dt_utc.microsecond / 1_000_000,
    )
    tai1, tai2 = erfa.utctai(utc1, utc2)
    tt1, tt2 = erfa.taitt(tai1, tai2)
    ut11, ut12 = erfa.utcut1(utc1, utc2, 0.0)
    et = (tt1 - erfa.DJ00) * erfa.DAYSEC + tt2 * erfa.DAYSEC
    return _TimeScales(ut1=(ut11, ut12), tt=(tt1, tt2), et=et)


def _celestial_to_terrestrial(times: _TimeScales) -> np.ndarray:
    return np.array(erfa.c2t06a(*times.tt, *times.ut1, 0.0, 0.0), dtype=float)


def _site(observer: ObserverLocation) -> _Site:
    """Return the observer's ITRF position (elevation 0) and its local ENU frame."""

    lat = math.radians(observer.latitude)
    lon = math.radians(observer.longitude)
    vector = np.array(
        spice.georec(lon, lat, 0.0, EARTH_EQUATORIAL_RADIUS_KM, EARTH_FLATTENING),
        dtype=float,
    )
    sin_lat, cos_lat = math.sin(lat), math.cos(lat)
    sin_lon, cos_lon = math.sin(lon), math.cos(lon)
    return _Site(
        itrf=vector,
        east=np.array([-sin_lon, cos_lon, 0.0]),
        north=np.array([-sin_lat * cos_lon, -sin_lat * sin_lon, cos_lat]),
        up=np.array([cos_lat * cos_lon, cos_lat * sin_lon, sin_lat]),
    )


def _refraction_degrees(altitude_deg: float, pressure_hpa: float = 1013.25,
                        temperature_c: float = 10.0) -> float:
    """Saemundsson refraction for a true altitude; zero well below the horizon."""

    if altitude_deg < -1.0:
        return 0.0
    alt = max(-1.0, min(90.0, altitude_deg))
    r_arcmin = (1.02 / math.tan(math.radians(alt + 10.3 / (alt + 5.11)))) * (
        pressure_hpa / 1010.0
    ) * (283.0 / (273.0 + temperature_c))
    return r_arcmin / 60.0


def _wrap180(angle_deg: float) -> float:
    return (angle_deg + 180.0) % 360.0 - 180.0


def _bisect(
    func: Callable[[datetime], float],
    low_dt: datetime,
    high_dt: datetime,
    max_iterations: int = 40,
) -> datetime:
    """Refine a sign change of *func* between *low_dt* and *high_dt* to one second."""

    low_val = func(low_dt)
    high_val = func(high_dt)
    if low_val == 0:
        return low_dt
    if high_val == 0:
        return high_dt
    for _ in range(max_iterations):
        mid_dt = low_dt + (high_dt - low_dt) / 2
        mid_val = func(mid_dt)
        if mid_val == 0 or (high_dt - low_dt) <= timedelta(seconds=1):
            return mid_dt
        if low_val * mid_val < 0:
            high_dt, high_val = mid_dt, mid_val
        else:
            low_dt, low_val = mid_dt, mid_val
    return low_dt + (high_dt - low_dt) / 2


class SpiceEphemeris:
    """Ephemeris provider over the kernels loaded with :func:`load_ephemeris`.

    All instants are timezone-aware UTC datetimes. Bodies are SPICE names
    (``"SUN"``, ``"MOON"``).
    """

    def __init__(self) -> None:
        if _LOADED_FILES is None:
            raise EphemerisError("Ephemeris kernels have not been loaded")
        self.files = list(_LOADED_FILES)

    def _apparent_vector(self, body: str, times: _TimeScales) -> np.ndarray:
        """Geocentric apparent position of *body* in J2000 (km)."""

        try:
            vector, _ = spice.spkpos(body, times.et, "J2000", "LT+S", "EARTH")
        except SpiceyError as exc:
            raise EphemerisError(f"No ephemeris data for {body}: {exc}") from exc
        return np.array(vector, dtype=float)

    def _altitude_degrees(self, body: str, dt: datetime, site: _Site) -> float:
        """Geometric altitude of *body* above the observer's horizon."""

        times = _datetime_to_timescales(dt)
        rotation = _celestial_to_terrestrial(times)
        topocentric = rotation @ self._apparent_vector(body, times) - site.itrf
        norm = np.linalg.norm(topocentric)
        if norm == 0:
            raise EphemerisError("Degenerate topocentric vector encountered")
        return math.degrees(
            math.asin(float(np.clip(np.dot(topocentric / norm, site.up), -1.0, 1.0)))
        )

    def search_rise_set(
        self,
        body: str,
        observer: ObserverLocation,
        direction: int,
        start: datetime,
        window: timedelta = timedelta(days=1),
        altitude_deg: float = SUNSET_ALTITUDE_DEG,
    ) -> Optional[datetime]:
        """Return the first rising (``+1``) or setting (``-1``) of *body* in the window.

        The altitude is sampled every five minutes against *altitude_deg* and the
        first crossing in the requested direction is bisected to one second.
        ``None`` means the body never crossed the threshold that way.
        """

        if direction not in (1, -1):
            raise ValueError("direction must be +1 (rise) or -1 (set)")
        site = _site(observer)

        def offset(dt: datetime) -> float:
            return self._altitude_degrees(body, dt, site) - altitude_deg

        end = start + window
        previous_dt = start
        previous_val = offset(start)
        while previous_dt < end:
            current_dt = min(previous_dt + RISE_SET_SAMPLE_STEP, end)
            current_val = offset(current_dt)
            rising = previous_val < 0 <= current_val
            setting = previous_val >= 0 > current_val
            if (direction == 1 and rising) or (direction == -1 and setting):
                return _bisect(offset, previous_dt, current_dt)
            previous_dt, previous_val = current_dt, current_val
        return None

    def moon_phase_angle(self, dt: datetime) -> float:
        """Apparent ecliptic elongation of the Moon from the Sun in [0, 360)."""

        times = _datetime_to_timescales(dt)
        rotation = np.array(erfa.ecm06(*times.tt), dtype=float)
        sun = rotation @ self._apparent_vector("SUN", times)
        moon = rotation @ self._apparent_vector("MOON", times)
        elongation = math.atan2(moon[1], moon[0]) - math.atan2(sun[1], sun[0])
        return math.degrees(elongation) % 360.0

    def search_moon_quarter(self, seed: datetime) -> MoonQuarter:
        """Return the next new/first-quarter/full/last-quarter event after *seed*."""

        phase = self.moon_phase_angle(seed)
        quarter = int(phase // 90.0) + 1
        target = quarter * 90.0

        def offset(dt: datetime) -> float:
            return _wrap180(self.moon_phase_angle(dt) - target)

        estimate = seed + timedelta(days=(target - phase) / MEAN_ELONGATION_RATE_DEG_PER_DAY)
        high = estimate + timedelta(days=2)
        for _ in range(10):
            if offset(high) > 0:
                break
            high += timedelta(days=1)
        else:
            raise EphemerisError(f"Lunar phase search did not converge after {seed.isoformat()}")
        return MoonQuarter(quarter=quarter % 4, time=_bisect(offset, seed, high))

    def equator(self, body: str, dt: datetime, observer: ObserverLocation) -> Equatorial:
        """Apparent topocentric right ascension and declination of *body*."""

        times = _datetime_to_timescales(dt)
        rotation = _celestial_to_terrestrial(times)
        site_gcrs = rotation.T @ _site(observer).itrf
        topocentric = self._apparent_vector(body, times) - site_gcrs
        ra, dec = erfa.c2s(topocentric)
        return Equatorial(
            ra_deg=math.degrees(erfa.anp(ra)),
            dec_deg=math.degrees(dec),
            distance_km=float(np.linalg.norm(topocentric)),
        )

    def horizon(
        self,
        dt: datetime,
        observer: ObserverLocation,
        ra_deg: float,
        dec_deg: float,
        refraction: bool = True,
    ) -> Horizontal:
        """Convert topocentric RA/Dec at *dt* into altitude and azimuth (0=N, 90=E)."""

        times = _datetime_to_timescales(dt)
        rotation = _celestial_to_terrestrial(times)
        site = _site(observer)
        direction = rotation @ np.array(
            erfa.s2c(math.radians(ra_deg), math.radians(dec_deg)), dtype=float
        )
        altitude = math.degrees(
            math.asin(float(np.clip(np.dot(direction, site.up), -1.0, 1.0)))
        )
        azimuth = math.degrees(
            math.atan2(float(np.dot(direction, site.east)), float(np.dot(direction, site.north)))
        ) % 360.0
        if refraction:
            altitude += _refraction_degrees(altitude)
        return Horizontal(altitude_deg=altitude, azimuth_deg=azimuth)
