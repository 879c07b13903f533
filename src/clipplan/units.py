"""Percentage and pixel literals.

Layout, crop, and zoompan values are strings such as "50%" or "120px".
parse_unit() dispatches a value to the handler for its unit so each caller
decides what a percentage is relative to.
"""

import re
from typing import Callable

from .errors import InputError


PERCENTAGE_RE = re.compile(r"^(-?\d+(?:\.\d+)?)%$")
PIXELS_RE = re.compile(r"^(-?\d+(?:\.\d+)?)px$")


class InvalidUnit(InputError):
    """A defined value is neither a percentage nor a pixel literal."""


def parse_percentage(percentage: str) -> float:
    """Parse '50%' into the fraction 0.5."""
    match = PERCENTAGE_RE.match(percentage) if isinstance(percentage, str) else None
    if match is None:
        raise InvalidUnit(f'Invalid percentage "{percentage}"')
    return float(match.group(1)) / 100


def parse_pixels(pixels: str) -> float:
    """Parse '120px' into 120.0."""
    match = PIXELS_RE.match(pixels) if isinstance(pixels, str) else None
    if match is None:
        raise InvalidUnit(f'Invalid pixels value "{pixels}"')
    return float(match.group(1))


def parse_unit(
    value: str | None,
    percentage: Callable[[float], object] | None = None,
    pixels: Callable[[float], object] | None = None,
    undefined: Callable[[], object] | None = None,
):
    """Resolve a unit literal through the handler matching its unit.

    Args:
        value: "N%", "Npx", or None / "" for an omitted value.
        percentage: Called with the fraction (50% -> 0.5). Identity if omitted.
        pixels: Called with the pixel count. Identity if omitted.
        undefined: Called with no arguments when value is omitted.

    Returns:
        Whatever the selected handler returns.

    Raises:
        InputError: value omitted and no undefined handler was given.
        InvalidUnit: value is defined but matches neither grammar.
    """
    if value is None or value == "":
        if undefined is None:
            raise InputError("Value must be defined")
        return undefined()

    if isinstance(value, str):
        if PERCENTAGE_RE.match(value):
            fraction = parse_percentage(value)
            return percentage(fraction) if percentage else fraction
        if PIXELS_RE.match(value):
            count = parse_pixels(value)
            return pixels(count) if pixels else count

    raise InvalidUnit(f'Value "{value}" is neither a percentage or pixels')


def is_percentage(value) -> bool:
    return isinstance(value, str) and PERCENTAGE_RE.match(value) is not None
