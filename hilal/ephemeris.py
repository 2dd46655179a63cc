"""Locating, and if needed downloading, the JPL kernel behind the ephemeris provider."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_EPHEMERIS_URL = (
    "https://naif.jpl.nasa.gov/pub/naif/generic_kernels/spk/planets/de442.bsp"
)
DEFAULT_EPHEMERIS_FILENAME = "de442.bsp"
DEFAULT_CACHE_DIR = Path.home() / ".hilal" / "kernels"


class EphemerisAcquisitionError(RuntimeError):
    """Raised when the default ephemeris cannot be acquired."""


def _download_file(url: str, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    LOGGER.info(
        json.dumps(
            {"event": "ephemeris_downloading", "url": url, "destination": str(destination)}
        )
    )
    try:
        with httpx.stream("GET", url, timeout=httpx.Timeout(120.0, connect=30.0)) as response:
            response.raise_for_status()
            total = int(response.headers.get("Content-Length", "0")) or None
            received = 0
            with destination.open("wb") as handle:
                for chunk in response.iter_bytes(chunk_size=1 << 20):
                    handle.write(chunk)
                    received += len(chunk)
    except (httpx.HTTPError, OSError) as exc:
        if destination.exists():
            destination.unlink()
        raise EphemerisAcquisitionError(f"Failed to download ephemeris from {url}: {exc}") from exc
    LOGGER.info(
        json.dumps(
            {
                "event": "ephemeris_downloaded",
                "url": url,
                "destination": str(destination),
                "bytes": received,
                "total": total,
            }
        )
    )


def _ensure_ephemeris(path: Path, url: str) -> Path:
    """Ensure *path* references an existing BSP file or a directory containing one."""

    if path.is_file():
        if path.suffix.lower() != ".bsp":
            raise EphemerisAcquisitionError(f"Ephemeris file must have .bsp extension: {path}")
        return path
    if path.is_dir():
        if not any(path.glob("*.bsp")):
            _download_file(url, path / DEFAULT_EPHEMERIS_FILENAME)
        return path
    if path.exists():
        raise EphemerisAcquisitionError(f"Ephemeris path is not a file or directory: {path}")

    if path.suffix.lower() == ".bsp":
        _download_file(url, path)
        return path
    _download_file(url, path / DEFAULT_EPHEMERIS_FILENAME)
    return path


def resolve_ephemeris_source(
    environ: Optional[Mapping[str, str]] = None,
    url: str = DEFAULT_EPHEMERIS_URL,
) -> Path:
    """Return a path to a usable ephemeris kernel, downloading it if necessary.

    ``DE_BSP`` points at a kernel file or a kernel directory; otherwise the
    kernel is cached under ``DE_BSP_CACHE_DIR`` (default ``~/.hilal/kernels``).
    """

    env = os.environ if environ is None else environ
    override = env.get("DE_BSP")
    if override:
        return _ensure_ephemeris(Path(override).expanduser(), url)

    cache_root = Path(env.get("DE_BSP_CACHE_DIR", str(DEFAULT_CACHE_DIR))).expanduser()
    return _ensure_ephemeris(cache_root / DEFAULT_EPHEMERIS_FILENAME, url)
