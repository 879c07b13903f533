"""clipplan.common — shared utilities.

Contains: path variable resolution, color parsing, font loading, clip map
lookup, and epsilon-tolerant float comparisons.
"""

import re
from pathlib import Path

from PIL import ImageFont

from .errors import InputError


# ── Font paths ─────────────────────────────────────────────────────
# Inter preferred, DejaVu Sans as fallback.

FONT_PATHS = [
    Path.home() / ".local/share/fonts/Inter.ttc",
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
]

# Differences smaller than this are treated as equal when comparing
# accumulated durations.
EPSILON = 1e-12


# ── Color utilities ────────────────────────────────────────────────

NAMED_COLORS = {
    "black": (0, 0, 0),
    "white": (255, 255, 255),
    "red": (255, 0, 0),
    "green": (0, 128, 0),
    "blue": (0, 0, 255),
    "yellow": (255, 255, 0),
    "gray": (128, 128, 128),
}


def parse_hex_color(hex_str: str) -> tuple[int, int, int]:
    """Convert '#RRGGBB' or 'RRGGBB' string to (R, G, B) tuple."""
    hex_str = hex_str.lstrip("#")
    return (int(hex_str[0:2], 16), int(hex_str[2:4], 16), int(hex_str[4:6], 16))


def resolve_color(value: str) -> tuple[int, int, int]:
    """Resolve a color name ('white') or inline '#RRGGBB' to an RGB tuple."""
    if value in NAMED_COLORS:
        return NAMED_COLORS[value]
    if value.startswith("#") or (
        len(value) == 6
        and all(c in "0123456789abcdefABCDEF" for c in value)
    ):
        return parse_hex_color(value)
    raise InputError(f"Unknown color: '{value}'. Not a color name and not a hex value.")


# ── Path utilities ─────────────────────────────────────────────────

def resolve_path_vars(text: str, paths: dict[str, str]) -> str:
    """Replace ${name} variables in a string using the paths dict."""
    def _replace(match):
        key = match.group(1)
        if key not in paths:
            raise InputError(f"Unknown path variable: ${{{key}}}")
        return paths[key]
    return re.sub(r"\$\{(\w+)\}", _replace, text)


# ── Font loading ───────────────────────────────────────────────────

def load_font(
    size: int, family: str | None = None,
) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load a font file at the given size.

    An explicit family (path to a ttf/otf file) is tried first, then Inter
    and DejaVu Sans.
    """
    candidates = [Path(family)] if family else []
    candidates.extend(FONT_PATHS)
    for font_path in candidates:
        if font_path.exists():
            try:
                return ImageFont.truetype(str(font_path), size=size, index=0)
            except (OSError, IndexError):
                continue
    # Last resort: Pillow default bitmap font.
    return ImageFont.load_default()


# ── Clip lookup ────────────────────────────────────────────────────

def get_or_throw(clip_map: dict, clip_id: str):
    """Look up clip_id in any per-clip map, raising InputError when absent."""
    try:
        return clip_map[clip_id]
    except KeyError:
        raise InputError(f"Clip {clip_id} does not exist.") from None


# ── Float comparison ───────────────────────────────────────────────
# Each comparison also holds when a and b are within EPSILON, so durations
# built from long chains of additions do not flip skip decisions.

def gt(a: float, b: float) -> bool:
    diff = a - b
    return diff > 0 or abs(diff) < EPSILON


def gte(a: float, b: float) -> bool:
    diff = a - b
    return diff >= 0 or abs(diff) < EPSILON


def lte(a: float, b: float) -> bool:
    diff = b - a
    return diff >= 0 or abs(diff) < EPSILON
