"""Category color helpers."""

import random
import re

from .errors import InvalidColor

# Stored without the leading '#'
PALETTE = [
    "FF5733", "33FF57", "3357FF", "F333FF", "33FFF5", "F5FF33", "FF33A8",
    "A833FF", "33FFA8", "FFA833", "FF3380", "8033FF", "33FF80", "FF8033",
]

_HEX_RE = re.compile(r'^#?([0-9a-fA-F]{6})$')


def normalize_color(value: str) -> str:
    """Return the canonical form of a hex color ("#ffaa00" -> "FFAA00").

    Raises InvalidColor for anything that is not six hex digits with an
    optional leading '#'.
    """
    if value is None:
        raise InvalidColor("Color is required")
    match = _HEX_RE.match(value.strip())
    if not match:
        raise InvalidColor(f"Invalid color {value!r}: expected a 6-digit hex value like #RRGGBB")
    return match.group(1).upper()


def is_valid_color(value: str) -> bool:
    try:
        normalize_color(value)
    except InvalidColor:
        return False
    return True


def random_color() -> str:
    """Pick a color from the default palette."""
    return random.choice(PALETTE)
