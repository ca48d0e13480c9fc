"""
Reader for the Rockbox tag cache (database_idx.tcd + database_<tag>.tcd).

The master index is an array of fixed-size rows of signed 32-bit fields.
Some fields are seek offsets into per-tag side files, where each value is
stored as an 8-byte sub-header (length, reverse index id) followed by a
NUL-terminated string. The filename side file doubles as the reverse index
from file path to master row.

Files are written in the player's native byte order, so the byte order is
detected from the master magic once and reused for every later read.
"""

from __future__ import annotations

import enum
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Optional, Tuple, Union

from .errors import FormatError, IoError

log = logging.getLogger(__name__)

TAGCACHE_MAGIC = 0x54434810

TAG_ARTIST = 0
TAG_ALBUM = 1
TAG_TITLE = 3
TAG_FILENAME = 4
TAG_LENGTH = 14

TAG_COUNT = 23

MASTER_HEADER_SIZE = 24
TAGFILE_HEADER_SIZE = 12
TAGFILE_ENTRY_HEADER_SIZE = 8
ROW_SIZE = (TAG_COUNT + 1) * 4

DEFAULT_DB_NAME = "database"


class Endian(enum.Enum):
    """Byte order of a tag cache, as a struct format prefix."""

    LITTLE = "<"
    BIG = ">"

    @classmethod
    def detect(cls, magic: bytes) -> Optional["Endian"]:
        if len(magic) < 4:
            return None
        for endian in (cls.LITTLE, cls.BIG):
            if endian.unpack_u32(magic[:4]) == TAGCACHE_MAGIC:
                return endian
        return None

    def unpack_u32(self, data: bytes) -> int:
        return struct.unpack(self.value + "I", data)[0]

    def unpack_entry_header(self, data: bytes) -> Tuple[int, int]:
        """(string length, reverse index id) of a side-file sub-entry."""
        return struct.unpack(self.value + "II", data)

    def unpack_tagfile_header(self, data: bytes) -> Tuple[int, int, int]:
        """(magic, data size, entry count)."""
        return struct.unpack(self.value + "III", data)

    def unpack_row(self, data: bytes) -> Tuple[int, ...]:
        return struct.unpack(f"{self.value}{TAG_COUNT + 1}i", data)


@dataclass(frozen=True)
class TrackMetadata:
    artist: str
    title: str
    album: Optional[str]
    duration_seconds: int


def _decode_tag(data: bytes) -> str:
    # Strings are NUL-terminated and may be padded with more NULs.
    return data.split(b"\0", 1)[0].decode("utf-8", errors="replace")


class TagCache:
    """Path-keyed metadata lookups over one tag cache directory.

    Use as a context manager so every file handle is closed exactly once:

        with TagCache(".rockbox") as cache:
            info = cache.lookup("/Music/a.flac")
    """

    def __init__(self, directory: Union[str, Path], name: str = DEFAULT_DB_NAME):
        self.directory = Path(directory)
        self.name = name
        self.master_path = self.directory / f"{name}_idx.tcd"
        self._path_index: Optional[Dict[str, int]] = None
        self._tag_files: Dict[int, BinaryIO] = {}
        self._master: Optional[BinaryIO] = None
        self._closed = False

        try:
            self._master = self.master_path.open("rb")
        except FileNotFoundError as exc:
            raise FormatError(f"Missing tagcache file: {self.master_path}") from exc
        except OSError as exc:
            raise IoError(f"Failed opening tagcache {self.master_path}: {exc}") from exc

        try:
            magic = self._master.read(4)
        except OSError as exc:
            self.close()
            raise IoError(f"Failed reading tagcache header {self.master_path}: {exc}") from exc

        endian = Endian.detect(magic)
        if endian is None:
            self.close()
            raise FormatError(f"Unrecognized tagcache magic in {self.master_path}")
        self.endian = endian
        log.debug("Opened %s (%s endian)", self.master_path, endian.name.lower())

    @classmethod
    def open(cls, directory: Union[str, Path], name: str = DEFAULT_DB_NAME) -> "TagCache":
        return cls(directory, name)

    def __enter__(self) -> "TagCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        handles = list(self._tag_files.values())
        self._tag_files.clear()
        if self._master is not None:
            handles.append(self._master)
            self._master = None
        for handle in handles:
            handle.close()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    # ---------------------------
    # File handles
    # ---------------------------

    def tag_path(self, tag: int) -> Path:
        return self.directory / f"{self.name}_{tag}.tcd"

    def _tag_file(self, tag: int) -> BinaryIO:
        handle = self._tag_files.get(tag)
        if handle is None:
            path = self.tag_path(tag)
            try:
                handle = path.open("rb")
            except OSError as exc:
                raise IoError(f"Failed opening tagcache {path}: {exc}") from exc
            self._tag_files[tag] = handle
        return handle

    def _ensure_open(self) -> None:
        if self._closed:
            raise IoError(f"Tagcache {self.directory} is closed")

    # ---------------------------
    # Reverse index
    # ---------------------------

    def _load_path_index(self) -> Dict[str, int]:
        if self._path_index is not None:
            return self._path_index

        handle = self._tag_file(TAG_FILENAME)
        handle.seek(0)
        header = handle.read(TAGFILE_HEADER_SIZE)
        if len(header) != TAGFILE_HEADER_SIZE:
            raise FormatError(f"Short header in {self.tag_path(TAG_FILENAME)}")
        magic, _data_size, entry_count = self.endian.unpack_tagfile_header(header)
        if magic != TAGCACHE_MAGIC:
            raise FormatError(f"Tagcache filename index has invalid header: {self.tag_path(TAG_FILENAME)}")

        index: Dict[str, int] = {}
        for _ in range(entry_count):
            entry = handle.read(TAGFILE_ENTRY_HEADER_SIZE)
            if len(entry) != TAGFILE_ENTRY_HEADER_SIZE:
                break
            length, idx_id = self.endian.unpack_entry_header(entry)
            if length == 0:
                continue
            data = handle.read(length)
            if len(data) != length:
                raise FormatError(f"Truncated filename entry in {self.tag_path(TAG_FILENAME)}")
            index[_decode_tag(data)] = idx_id

        log.debug("Loaded %d paths from the tagcache filename index", len(index))
        self._path_index = index
        return index

    def find_row_id(self, path: str) -> Optional[int]:
        """Master row for ``path``, or None if the player never indexed it."""
        self._ensure_open()
        try:
            return self._load_path_index().get(path)
        except OSError as exc:
            raise IoError(f"Failed reading tagcache in {self.directory}: {exc}") from exc

    # ---------------------------
    # Rows and strings
    # ---------------------------

    def read_row(self, idx_id: int) -> Tuple[int, ...]:
        self._ensure_open()
        if idx_id < 0:
            raise FormatError(f"Invalid tagcache index id {idx_id}")
        assert self._master is not None
        try:
            self._master.seek(MASTER_HEADER_SIZE + idx_id * ROW_SIZE)
            raw = self._master.read(ROW_SIZE)
        except OSError as exc:
            raise IoError(f"Failed reading tagcache {self.master_path}: {exc}") from exc
        if len(raw) != ROW_SIZE:
            raise FormatError(f"Short read for index entry {idx_id}")
        return self.endian.unpack_row(raw)

    def read_tag_string(self, tag: int, seek: int) -> Optional[str]:
        self._ensure_open()
        if seek <= 0:
            return None
        handle = self._tag_file(tag)
        try:
            handle.seek(seek)
            entry = handle.read(TAGFILE_ENTRY_HEADER_SIZE)
            if len(entry) != TAGFILE_ENTRY_HEADER_SIZE:
                return None
            length, _idx_id = self.endian.unpack_entry_header(entry)
            if length == 0:
                return None
            data = handle.read(length)
        except OSError as exc:
            raise IoError(f"Failed reading tagcache {self.tag_path(tag)}: {exc}") from exc
        if len(data) != length:
            raise FormatError(f"Truncated string at offset {seek} in {self.tag_path(tag)}")
        return _decode_tag(data)

    def lookup(self, path: str) -> Optional[TrackMetadata]:
        idx_id = self.find_row_id(path)
        if idx_id is None:
            return None

        row = self.read_row(idx_id)
        artist = self.read_tag_string(TAG_ARTIST, row[TAG_ARTIST]) or ""
        title = self.read_tag_string(TAG_TITLE, row[TAG_TITLE]) or ""
        album = self.read_tag_string(TAG_ALBUM, row[TAG_ALBUM])
        if not artist or not title:
            log.debug("Row %d for %s has no artist or title", idx_id, path)
            return None

        return TrackMetadata(
            artist=artist,
            title=title,
            album=album or None,
            duration_seconds=max(row[TAG_LENGTH], 0) // 1000,
        )
