"""Shared fixtures: synthetic tag cache directories and a fake HTTP session."""

import json
import struct

import pytest

from rockscrobble.tagcache import TAG_ALBUM, TAG_ARTIST, TAG_COUNT, TAG_FILENAME, TAG_LENGTH, TAG_TITLE, TAGCACHE_MAGIC


def _entry(endian, value, idx_id, pad_to=4):
    data = value.encode("utf-8") + b"\0"
    data += b"\0" * (-len(data) % pad_to)
    return struct.pack(endian + "II", len(data), idx_id) + data


def write_tagcache(directory, tracks, endian="<"):
    """
    Write database_idx.tcd plus the artist/album/title/filename side files.

    ``tracks`` is a list of dicts with path, artist, title and optionally
    album and length_ms. Empty strings are stored as "no value".
    """
    side = {TAG_ARTIST: b"", TAG_ALBUM: b"", TAG_TITLE: b"", TAG_FILENAME: b""}
    counts = dict.fromkeys(side, 0)
    rows = []
    for row_id, track in enumerate(tracks):
        row = [0] * (TAG_COUNT + 1)
        for tag, key in ((TAG_ARTIST, "artist"), (TAG_ALBUM, "album"), (TAG_TITLE, "title"), (TAG_FILENAME, "path")):
            value = track.get(key) or ""
            if not value:
                continue
            row[tag] = 12 + len(side[tag])
            side[tag] += _entry(endian, value, row_id)
            counts[tag] += 1
        row[TAG_LENGTH] = track.get("length_ms", 0)
        rows.append(row)

    for tag, body in side.items():
        header = struct.pack(endian + "III", TAGCACHE_MAGIC, len(body), counts[tag])
        (directory / f"database_{tag}.tcd").write_bytes(header + body)

    master = b"".join(struct.pack(endian + f"{TAG_COUNT + 1}i", *row) for row in rows)
    header = struct.pack(endian + "IIIIII", TAGCACHE_MAGIC, len(master), len(rows), 1, 1, 0)
    (directory / "database_idx.tcd").write_bytes(header + master)
    return directory


SAMPLE_TRACKS = [
    {"path": "/Music/Nirvana/Nevermind/01 Smells Like Teen Spirit.flac",
     "artist": "Nirvana", "title": "Smells Like Teen Spirit", "album": "Nevermind", "length_ms": 301920},
    {"path": "/Music/Björk/Post/02 Hyperballad.mp3",
     "artist": "Björk", "title": "Hyperballad", "album": "Post", "length_ms": 321000},
    {"path": "/Music/Unknown/track01.mp3",
     "artist": "", "title": "Untitled", "album": "Demo", "length_ms": 120000},
    {"path": "/Music/Loose/single.ogg",
     "artist": "Someone", "title": "Single", "length_ms": 200499},
]


@pytest.fixture
def make_tagcache(tmp_path):
    def _make(tracks=SAMPLE_TRACKS, endian="<"):
        return write_tagcache(tmp_path, tracks, endian)
    return _make


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.status_code = status_code
        self.text = payload if isinstance(payload, str) else json.dumps(payload)


class FakeSession:
    """Records POSTed forms and answers from a queue of payloads."""

    def __init__(self, *payloads):
        self.payloads = list(payloads)
        self.calls = []

    def post(self, url, data=None, timeout=None):
        self.calls.append({"url": url, "data": dict(data), "timeout": timeout})
        payload = self.payloads.pop(0)
        if isinstance(payload, Exception):
            raise payload
        return FakeResponse(payload)


@pytest.fixture
def session_ok():
    return {"session": {"name": "alice", "key": "SESSIONKEY", "subscriber": 0}}


@pytest.fixture
def fake_session():
    return FakeSession
