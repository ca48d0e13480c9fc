"""Deciding which plays count, and joining them with tag cache metadata."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Tuple

from .playback import PlaybackSample
from .tagcache import TrackMetadata

log = logging.getLogger(__name__)

MIN_TRACK_SECONDS = 30
MAX_THRESHOLD_MS = 240_000


@dataclass(frozen=True)
class ScrobbleRecord:
    artist: str
    title: str
    album: Optional[str]
    timestamp: int
    duration: int  # seconds, never negative


class MetadataSource(Protocol):
    def lookup(self, path: str) -> Optional[TrackMetadata]: ...


def is_scrobble_eligible(sample: PlaybackSample) -> bool:
    """
    Last.fm rule: the track must be at least 30s long and have played for
    half its length or 4 minutes, whichever comes first.
    """
    if sample.total_ms <= 0:
        return False
    if sample.total_ms // 1000 < MIN_TRACK_SECONDS:
        return False
    threshold_ms = min(sample.total_ms // 2, MAX_THRESHOLD_MS)
    return sample.elapsed_ms >= threshold_ms


def build_scrobble_records(
    samples: Iterable[PlaybackSample],
    tagcache: MetadataSource,
) -> Tuple[List[ScrobbleRecord], List[str]]:
    """
    Returns (records, missing paths), both in input order. Tag cache errors
    propagate; a path without metadata only lands in ``missing``.
    """
    records: List[ScrobbleRecord] = []
    missing: List[str] = []
    for sample in samples:
        if not is_scrobble_eligible(sample):
            continue
        info = tagcache.lookup(sample.path)
        if info is None:
            missing.append(sample.path)
            continue
        records.append(ScrobbleRecord(
            artist=info.artist,
            title=info.title,
            album=info.album,
            timestamp=sample.timestamp,
            duration=max(info.duration_seconds, 0),
        ))
    log.debug("Built %d scrobbles, %d paths without metadata", len(records), len(missing))
    return records, missing


def dedupe_records(records: Iterable[ScrobbleRecord]) -> List[ScrobbleRecord]:
    """Drop repeats of (artist, title, timestamp), keeping the first."""
    seen = set()
    unique: List[ScrobbleRecord] = []
    for record in records:
        key = (record.artist, record.title, record.timestamp)
        if key not in seen:
            seen.add(key)
            unique.append(record)
    return unique
