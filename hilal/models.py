"""Pydantic models shared across the calendar layers."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

HIJRI_MONTH_NAMES: Tuple[str, ...] = (
    "Muharram",
    "Safar",
    "Rabi' Al-Awwal",
    "Rabi' Al-Thani",
    "Jumada Al-Awwal",
    "Jumada Al-Thani",
    "Rajab",
    "Sha'ban",
    "Ramadan",
    "Shawwal",
    "Dhu Al-Qi'dah",
    "Dhu Al-Hijjah",
)


def month_name(month: int) -> str:
    if not 1 <= month <= 12:
        raise ValueError(f"Hijri month must be within 1..12, got {month}")
    return HIJRI_MONTH_NAMES[month - 1]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ObserverLocation(_Frozen):
    """Reference point for every sunset and altitude computation."""

    latitude: float = Field(..., ge=-90.0, le=90.0, description="Latitude in degrees")
    longitude: float = Field(
        ..., ge=-180.0, le=180.0, description="Longitude in degrees (east-positive)"
    )
    tz_offset_hours: Optional[float] = Field(
        None,
        ge=-12.0,
        le=14.0,
        description="Fixed UTC offset defining local midnight; defaults to round(lon/15)",
    )

    @property
    def utc_offset(self) -> timedelta:
        hours = self.tz_offset_hours
        if hours is None:
            hours = round(self.longitude / 15.0)
        return timedelta(hours=hours)

    @property
    def location_key(self) -> Tuple[float, float]:
        return (round(self.latitude, 4), round(self.longitude, 4))


class AnchorEpoch(_Frozen):
    """Known-correct Gregorian date of 1 Muharram of ``year``."""

    gregorian: date
    year: int = Field(..., ge=1)
    month: Literal[1] = 1
    day: Literal[1] = 1


class MoonQuarter(_Frozen):
    """A lunar phase event: 0 new moon, 1 first quarter, 2 full moon, 3 last quarter."""

    quarter: int = Field(..., ge=0, le=3)
    time: datetime

    @property
    def is_new_moon(self) -> bool:
        return self.quarter == 0


class Equatorial(_Frozen):
    ra_deg: float
    dec_deg: float
    distance_km: float


class Horizontal(_Frozen):
    altitude_deg: float
    azimuth_deg: float


class MoonSnapshot(_Frozen):
    """Outcome of one crescent-visibility evaluation."""

    moon_age_hours: float
    is_visible: bool
    sunset_time: Optional[datetime] = None
    conjunction_time: Optional[datetime] = None
    moon_altitude_deg: Optional[float] = Field(
        None, description="Apparent altitude at sunset; absent when the age gate failed"
    )


class HijriMonthDescriptor(_Frozen):
    year: int
    month: int = Field(..., ge=1, le=12)
    length: Literal[29, 30]
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_span(self) -> "HijriMonthDescriptor":
        if (self.end_date - self.start_date).days != self.length - 1:
            raise ValueError("end_date must be start_date + length - 1")
        return self

    @property
    def next_start(self) -> date:
        return self.start_date + timedelta(days=self.length)

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class HijriMonthRange(HijriMonthDescriptor):
    """A Hijri month materialized as its Gregorian days."""

    month_name: str
    days: List[date]

    @field_validator("days")
    @classmethod
    def _non_empty(cls, value: List[date]) -> List[date]:
        if not value:
            raise ValueError("days must not be empty")
        return value


class HijriDateParts(_Frozen):
    day: int = Field(..., ge=1, le=30)
    month: int = Field(..., ge=1, le=12)
    year: int
    month_name: str
