"""Unit tests for playback.log parsing."""

import calendar
import datetime as dt

import pytest

from rockscrobble.errors import IoError
from rockscrobble.playback import (
    PlaybackSample,
    localize_timestamp,
    parse_playback_line,
    parse_playback_lines,
    parse_playback_log,
    truncate_playback_log,
)

zoneinfo = pytest.importorskip("zoneinfo")
UTC = dt.timezone.utc


def wall(*fields):
    return calendar.timegm(dt.datetime(*fields).timetuple())


@pytest.fixture
def new_york():
    try:
        return zoneinfo.ZoneInfo("America/New_York")
    except zoneinfo.ZoneInfoNotFoundError:
        pytest.skip("no tz database")


class TestLocalizeTimestamp:
    def test_utc_is_identity(self):
        assert localize_timestamp(1_700_000_000, UTC) == 1_700_000_000

    def test_fixed_offset(self):
        plus_two = dt.timezone(dt.timedelta(hours=2))
        assert localize_timestamp(1_700_000_000, plus_two) == 1_700_000_000 - 7200

    def test_summer_time(self, new_york):
        assert localize_timestamp(wall(2024, 7, 1, 12, 0), new_york) == wall(2024, 7, 1, 16, 0)

    def test_ambiguous_picks_earliest(self, new_york):
        # 01:30 happens twice on 2024-11-03; the EDT reading comes first.
        assert localize_timestamp(wall(2024, 11, 3, 1, 30), new_york) == wall(2024, 11, 3, 5, 30)

    def test_nonexistent_keeps_raw(self, new_york):
        raw = wall(2024, 3, 10, 2, 30)
        assert localize_timestamp(raw, new_york) == raw

    def test_out_of_range_keeps_raw(self):
        assert localize_timestamp(10 ** 18, UTC) == 10 ** 18

    def test_host_local_time(self):
        # Whatever the host zone is, the result is a whole-hour-ish shift of raw.
        raw = 1_700_000_000
        assert abs(localize_timestamp(raw) - raw) <= 14 * 3600


class TestParseLine:
    def test_valid(self):
        assert parse_playback_line("1700000000:180000:240000:/Music/a.mp3", UTC) == PlaybackSample(
            timestamp=1_700_000_000, elapsed_ms=180_000, total_ms=240_000, path="/Music/a.mp3",
        )

    def test_path_may_contain_colons(self):
        sample = parse_playback_line("1:2:3:/<HDD0>/Music/Live: Part 2.mp3", UTC)
        assert sample.path == "/<HDD0>/Music/Live: Part 2.mp3"

    @pytest.mark.parametrize("line", [
        "",
        "   ",
        "# comment",
        "1700000000:180000:240000",
        "abc:180000:240000:/a.mp3",
        "1700000000:x:240000:/a.mp3",
        "1700000000:180000:1.5:/a.mp3",
        "1_700_000_000:180000:240000:/a.mp3",
        "1700000000: 180000 :240000:/a.mp3",
        "1700000000:١٢:240000:/a.mp3",
    ])
    def test_noise_is_skipped(self, line):
        assert parse_playback_line(line, UTC) is None

    def test_surrounding_whitespace(self):
        assert parse_playback_line("  5:6:7:/b.flac \r", UTC).path == "/b.flac"


class TestParseLog:
    def test_lines(self):
        samples = parse_playback_lines([
            "# Rockbox playback log",
            "100:1:2:/a.mp3",
            "garbage",
            "200:3:4:/b.mp3",
        ], UTC)
        assert [s.path for s in samples] == ["/a.mp3", "/b.mp3"]
        assert [s.timestamp for s in samples] == [100, 200]

    def test_file(self, tmp_path):
        path = tmp_path / "playback.log"
        path.write_text("# header\n1700000000:200000:300000:/Music/BjÃ¶rk.mp3\n\n", encoding="utf-8")
        samples = parse_playback_log(path, UTC)
        assert len(samples) == 1
        assert samples[0].path == "/Music/BjÃ¶rk.mp3"

    def test_only_newline_ends_a_line(self, tmp_path):
        path = tmp_path / "playback.log"
        path.write_text("100:1:2:/Music/a\x0cb\u2028c.mp3\r\n200:3:4:/b.mp3\n", encoding="utf-8")
        samples = parse_playback_log(path, UTC)
        assert [s.path for s in samples] == ["/Music/a\x0cb\u2028c.mp3", "/b.mp3"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(IoError):
            parse_playback_log(tmp_path / "playback.log")

    def test_truncate(self, tmp_path):
        path = tmp_path / "playback.log"
        path.write_text("1:2:3:/a.mp3\n", encoding="utf-8")
        truncate_playback_log(path)
        assert path.read_text(encoding="utf-8") == ""
