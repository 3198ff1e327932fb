"""Tests for category colors."""

import pytest

from tickr.color import PALETTE, is_valid_color, normalize_color, random_color
from tickr.errors import InvalidColor, ValidationError


class TestNormalizeColor:

    @pytest.mark.parametrize("value,expected", [
        ("FFAA00", "FFAA00"),
        ("#FFAA00", "FFAA00"),
        ("#ffaa00", "FFAA00"),
        (" 12ab9f ", "12AB9F"),
    ])
    def test_valid(self, value, expected):
        assert normalize_color(value) == expected

    @pytest.mark.parametrize("value", ["#FFF", "GGGGGG", "##FFAA00", "FFAA001", "", None])
    def test_invalid(self, value):
        with pytest.raises(InvalidColor):
            normalize_color(value)
        assert not is_valid_color(value)

    def test_invalid_color_is_validation_error(self):
        """Test callers catching ValidationError also see bad colors."""
        with pytest.raises(ValidationError):
            normalize_color("red")


def test_random_color_from_palette():
    for _ in range(20):
        color = random_color()
        assert color in PALETTE
        assert normalize_color(color) == color
