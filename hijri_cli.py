"""Command-line access to the crescent-visibility Hijri calendar."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import UTC, date, datetime
from typing import List, Optional

from pydantic import BaseModel

from hilal.astro import EphemerisError, SpiceEphemeris, load_ephemeris
from hilal.calendar import HijriCalendar, PreAnchorDate
from hilal.config import Settings, load_settings
from hilal.ephemeris import EphemerisAcquisitionError, resolve_ephemeris_source

LOGGER = logging.getLogger("hijri-cli")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hilal",
        description="Hijri dates from astronomical crescent visibility",
    )
    parser.add_argument(
        "--calibration",
        type=int,
        default=None,
        help="day offset applied to query dates, clamped to [-3, 3] (default: HILAL_CALIBRATION)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    date_cmd = sub.add_parser("date", help="Hijri date for a Gregorian date")
    date_cmd.add_argument("date", nargs="?", type=_parse_date, default=None, help="YYYY-MM-DD (default: today)")

    month_cmd = sub.add_parser("month", help="Gregorian days of a Hijri month")
    month_cmd.add_argument("year", type=int)
    month_cmd.add_argument("month", type=int, choices=range(1, 13), metavar="MONTH")

    moon_cmd = sub.add_parser("moon", help="crescent evaluation at sunset of a date")
    moon_cmd.add_argument("date", nargs="?", type=_parse_date, default=None, help="YYYY-MM-DD (default: today)")
    return parser


def _emit(payload: BaseModel) -> None:
    print(json.dumps(payload.model_dump(mode="json"), indent=2))


def build_calendar(settings: Settings, calibration: Optional[int] = None) -> HijriCalendar:
    source_path = resolve_ephemeris_source()
    load_ephemeris(str(source_path))
    return HijriCalendar(
        SpiceEphemeris(),
        anchor=settings.anchor,
        observer=settings.observer,
        calibration=settings.calibration if calibration is None else calibration,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except ValueError as exc:
        print(f"hilal: {exc}", file=sys.stderr)
        return 2
    logging.basicConfig(level=settings.log_level, format="%(message)s")

    start_time = time.perf_counter()
    try:
        calendar = build_calendar(settings, args.calibration)
        if args.command == "date":
            result = calendar.to_hijri(args.date) if args.date else calendar.today()
            event = "hijri_query"
        elif args.command == "month":
            result = calendar.month_range(args.year, args.month)
            event = "month_query"
        else:
            day = args.date or datetime.now(UTC).date()
            result = calendar.snapshot(day)
            event = "moon_query"
    except PreAnchorDate as exc:
        LOGGER.error(json.dumps({"event": "error", "code": "pre_anchor_date", "message": str(exc)}))
        return 2
    except (EphemerisError, EphemerisAcquisitionError) as exc:
        LOGGER.error(json.dumps({"event": "error", "code": "ephemeris_error", "message": str(exc)}))
        return 1

    duration_ms = (time.perf_counter() - start_time) * 1000.0
    LOGGER.info(
        json.dumps(
            {
                "event": event,
                "calibration": calendar.calibration,
                "duration_ms": round(duration_ms, 3),
            }
        )
    )
    _emit(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
