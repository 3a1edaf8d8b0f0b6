"""Tests for wrapping and the progress percentage."""

import pytest

from bookrat import percent, wrap_content

TWENTY_WORDS = " ".join(["word"] * 20)
TWENTY_LINES = "\n".join(["line"] * 20)


class TestWrapContent:

    def test_wraps_at_width(self):
        lines = wrap_content(TWENTY_WORDS, 10)
        assert len(lines) == 10
        assert all(line == "word word" for line in lines)

    def test_blank_lines_take_one_row(self):
        assert wrap_content("a\n\nb", 10) == ["a", "", "b"]

    def test_indent_survives(self):
        assert wrap_content("    Second", 40) == ["    Second"]

    def test_long_words_are_not_broken(self):
        assert wrap_content("abcdefghijkl", 5) == ["abcdefghijkl"]


class TestPercent:

    @pytest.mark.parametrize("offset", [0, 1, 5, 500])
    def test_content_that_fits_is_always_complete(self, offset):
        assert percent("short text", 40, 10, offset) == 100
        assert percent(TWENTY_LINES, 40, 20, offset) == 100

    @pytest.mark.parametrize("offset,expected", [
        (0, 0),
        (3, 30),
        (5, 50),
        (10, 100),
        (30, 100),
    ])
    def test_proportional_to_offset(self, offset, expected):
        # 20 rows in a 10 row viewport leave 10 rows of scroll
        assert percent(TWENTY_LINES, 40, 10, offset) == expected

    def test_depends_on_width(self):
        assert percent(TWENTY_WORDS, 10, 5, 2) == 40
        assert percent(TWENTY_WORDS, 200, 5, 2) == 100

    @pytest.mark.parametrize("rows,offset,expected", [
        (18, 1, 13),   # 12.5
        (18, 3, 38),   # 37.5
        (210, 1, 1),   # 0.5
    ])
    def test_halves_round_up(self, rows, offset, expected):
        content = "\n".join(["line"] * rows)
        assert percent(content, 40, 10, offset) == expected
