"""
Tests for ffmpeg diagnostic parsing.
"""

import pytest

from conftest import probe_output
from media_relay_backend.diagnostics import format_timestamp, parse_duration, parse_metadata_tags


class TestParseDuration:
    def test_inline(self):
        assert parse_duration("... Duration: 00:02:03.50 ...") == 123.5

    def test_full_probe_output(self):
        assert parse_duration(probe_output("01:00:01.25")) == 3601.25

    def test_without_fraction(self):
        assert parse_duration("Duration: 00:00:10, start: 0") == 10.0

    def test_first_match_wins(self):
        text = "Duration: 00:00:05.00\nDuration: 00:10:00.00"
        assert parse_duration(text) == 5.0

    @pytest.mark.parametrize("text", ["", "no duration here", "Duration: N/A, bitrate: N/A", None])
    def test_absent(self, text):
        assert parse_duration(text) is None


class TestParseMetadataTags:
    def test_container_tags_win_over_stream_tags(self):
        tags = parse_metadata_tags(probe_output(title="Morning Show", handler_name="Container"))
        assert tags["title"] == "Morning Show"
        assert tags["handler_name"] == "Container"
        assert tags["major_brand"] == "isom"

    def test_values_may_contain_colons(self):
        tags = parse_metadata_tags(probe_output(description="Part 2: the sequel"))
        assert tags["description"] == "Part 2: the sequel"

    def test_lines_outside_metadata_blocks_are_ignored(self):
        tags = parse_metadata_tags("encoder : nope\n  Duration: 00:00:01.00\n")
        assert tags == {}


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "00:00:00.000"), (123.5, "00:02:03.500"), (3601.25, "01:00:01.250"), (-4, "00:00:00.000")],
)
def test_format_timestamp(seconds, expected):
    assert format_timestamp(seconds) == expected
