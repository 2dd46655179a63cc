from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable

import erfa
import numpy as np
import pytest
import spiceypy as spice

import hilal.astro as astro

AU_KM = 149597870.700
STEP_HOURS = 2
KERNEL_START = datetime(2023, 5, 1, tzinfo=timezone.utc)
KERNEL_END = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _datetime_to_tt(dt: datetime) -> tuple[float, float]:
    utc1, utc2 = erfa.dtf2d(
        "UTC",
        dt.year,
        dt.month,
        dt.day,
        dt.hour,
        dt.minute,
        dt.second + dt.microsecond / 1_000_000,
    )
    tai1, tai2 = erfa.utctai(utc1, utc2)
    return erfa.taitt(tai1, tai2)


def _datetime_to_et(dt: datetime) -> float:
    tt1, tt2 = _datetime_to_tt(dt)
    return (tt1 - erfa.DJ00) * erfa.DAYSEC + tt2 * erfa.DAYSEC


def _to_state(pv) -> np.ndarray:
    pos_km = np.array(pv["p"]) * AU_KM
    vel_km_s = np.array(pv["v"]) * (AU_KM / erfa.DAYSEC)
    return np.concatenate([pos_km, vel_km_s])


def _body_states(dt: datetime) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Sun and Moon relative to the Earth, Earth relative to the barycentre."""

    tt1, tt2 = _datetime_to_tt(dt)
    pvh, pvb = erfa.epv00(tt1, tt2)
    sun_state = -_to_state(pvh)
    earth_state = _to_state(pvb)
    moon_state = _to_state(erfa.moon98(tt1, tt2))
    return sun_state, moon_state, earth_state


def _generate_test_kernel(output: Path) -> None:
    if output.exists():
        return
    step = timedelta(hours=STEP_HOURS)
    sun_states: list[np.ndarray] = []
    moon_states: list[np.ndarray] = []
    earth_states: list[np.ndarray] = []
    ets: list[float] = []
    current = KERNEL_START
    while current <= KERNEL_END:
        sun_state, moon_state, earth_state = _body_states(current)
        sun_states.append(sun_state)
        moon_states.append(moon_state)
        earth_states.append(earth_state)
        ets.append(_datetime_to_et(current))
        current += step
    step_seconds = ets[1] - ets[0]
    handle = spice.spkopn(str(output), "HILALTEST", 0)
    try:
        for body, center, segid, states in (
            (10, 399, "SUNTEST", sun_states),
            (301, 399, "MOONTEST", moon_states),
            (399, 0, "EARTHTEST", earth_states),
        ):
            spice.spkw08(
                handle,
                body,
                center,
                "J2000",
                ets[0],
                ets[-1],
                segid,
                7,
                len(ets),
                np.array(states, dtype=float),
                ets[0],
                step_seconds,
            )
    finally:
        spice.spkcls(handle)


@pytest.fixture(scope="session")
def kernel_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    directory = tmp_path_factory.mktemp("kernels")
    _generate_test_kernel(directory / "sun_moon_2023.bsp")
    return directory


@pytest.fixture(scope="session")
def configure_ephemeris(kernel_dir: Path) -> Iterable[None]:
    spice.kclear()
    astro._LOADED_FILES = None  # type: ignore[attr-defined]
    astro.load_ephemeris(str(kernel_dir))
    yield
    spice.kclear()
    astro._LOADED_FILES = None  # type: ignore[attr-defined]


@pytest.fixture(scope="session")
def ephemeris(configure_ephemeris: None) -> astro.SpiceEphemeris:
    return astro.SpiceEphemeris()
