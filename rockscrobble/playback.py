"""
Rockbox playback.log parsing.

Each line is ``<timestamp>:<elapsed_ms>:<total_ms>:<path>``. The player
writes its own clock reading into the timestamp field, so it is shifted from
local wall-clock time to a real UTC instant here.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .errors import IoError

log = logging.getLogger(__name__)

PLAYBACK_LOG_PARTS = 4
INTEGER_FIELD = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class PlaybackSample:
    timestamp: int  # UTC seconds
    elapsed_ms: int
    total_ms: int
    path: str


def localize_timestamp(raw: int, tz: Optional[dt.tzinfo] = None) -> int:
    """
    Read ``raw`` as a UTC instant, take its wall-clock fields and re-read them
    in ``tz`` (host local time when None). Returns UTC epoch seconds.

    Ambiguous wall times (DST fall-back) resolve to the earliest instant.
    Nonexistent ones (DST spring-forward) return ``raw`` unchanged.
    """
    try:
        wall = dt.datetime.fromtimestamp(raw, tz=dt.timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return raw

    instants = []
    for fold in (0, 1):
        candidate = wall.replace(fold=fold)
        try:
            if tz is None:
                instant = int(candidate.astimezone().timestamp())
                back = dt.datetime.fromtimestamp(instant)
            else:
                instant = int(candidate.replace(tzinfo=tz).timestamp())
                back = dt.datetime.fromtimestamp(instant, tz=tz).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            continue
        # A wall time that doesn't survive the round trip never happened locally.
        if back == wall:
            instants.append(instant)

    if not instants:
        return raw
    return min(instants)


def parse_playback_line(line: str, tz: Optional[dt.tzinfo] = None) -> Optional[PlaybackSample]:
    cleaned = line.strip()
    if not cleaned or cleaned.startswith("#"):
        return None
    parts = cleaned.split(":", PLAYBACK_LOG_PARTS - 1)
    if len(parts) != PLAYBACK_LOG_PARTS:
        return None
    if not all(INTEGER_FIELD.fullmatch(field) for field in parts[:3]):
        return None
    timestamp, elapsed_ms, total_ms = (int(field) for field in parts[:3])
    return PlaybackSample(
        timestamp=localize_timestamp(timestamp, tz),
        elapsed_ms=elapsed_ms,
        total_ms=total_ms,
        path=parts[3],
    )


def parse_playback_lines(lines: Iterable[str], tz: Optional[dt.tzinfo] = None) -> List[PlaybackSample]:
    """Malformed lines are noise and are dropped without a word."""
    samples: List[PlaybackSample] = []
    for line in lines:
        sample = parse_playback_line(line, tz)
        if sample is not None:
            samples.append(sample)
    return samples


def parse_playback_log(path: Union[str, Path], tz: Optional[dt.tzinfo] = None) -> List[PlaybackSample]:
    path = Path(path)
    try:
        # Only "\n" ends a line; other separators can appear inside a path.
        with path.open("r", encoding="utf-8", newline="") as fh:
            raw = fh.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise IoError(f"Failed reading playback log {path}: {exc}") from exc
    samples = parse_playback_lines(raw.split("\n"), tz)
    log.debug("Parsed %d playback entries from %s", len(samples), path)
    return samples


def truncate_playback_log(path: Union[str, Path]) -> None:
    try:
        Path(path).write_text("", encoding="utf-8")
    except OSError as exc:
        raise IoError(f"Failed truncating playback log {path}: {exc}") from exc
