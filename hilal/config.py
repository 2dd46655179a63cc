"""Runtime settings read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date
from typing import Callable, Mapping, Optional, TypeVar

from pydantic import ValidationError

from .calendar import DEFAULT_ANCHOR, DEFAULT_OBSERVER, clamp_calibration
from .models import AnchorEpoch, ObserverLocation

T = TypeVar("T")


@dataclass(frozen=True)
class Settings:
    anchor: AnchorEpoch
    observer: ObserverLocation
    calibration: int
    log_level: str


def _read(env: Mapping[str, str], name: str, parse: Callable[[str], T], default: T) -> T:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return parse(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from exc


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``HILAL_*`` variables, defaulting to Abuja / 1445 AH."""

    env = os.environ if environ is None else environ
    try:
        anchor = AnchorEpoch(
            gregorian=_read(env, "HILAL_ANCHOR_DATE", date.fromisoformat, DEFAULT_ANCHOR.gregorian),
            year=_read(env, "HILAL_ANCHOR_YEAR", int, DEFAULT_ANCHOR.year),
        )
        observer = ObserverLocation(
            latitude=_read(env, "HILAL_OBSERVER_LAT", float, DEFAULT_OBSERVER.latitude),
            longitude=_read(env, "HILAL_OBSERVER_LON", float, DEFAULT_OBSERVER.longitude),
            tz_offset_hours=_read(
                env, "HILAL_OBSERVER_TZ", float, DEFAULT_OBSERVER.tz_offset_hours
            ),
        )
    except ValidationError as exc:
        raise ValueError(f"Invalid HILAL_* configuration: {exc}") from exc

    return Settings(
        anchor=anchor,
        observer=observer,
        calibration=clamp_calibration(_read(env, "HILAL_CALIBRATION", int, 0)),
        log_level=_read(env, "HILAL_LOG_LEVEL", str.upper, "INFO"),
    )
