"""Tests for clipplan.common utilities."""

import pytest

from clipplan.common import (
    gt,
    gte,
    get_or_throw,
    load_font,
    lte,
    parse_hex_color,
    resolve_color,
    resolve_path_vars,
)
from clipplan.errors import InputError


class TestParseHexColor:
    def test_with_hash(self):
        assert parse_hex_color("#e04c77") == (224, 76, 119)

    def test_without_hash(self):
        assert parse_hex_color("1A1A1A") == (26, 26, 26)


class TestResolveColor:
    def test_named(self):
        assert resolve_color("white") == (255, 255, 255)

    def test_inline_hex(self):
        assert resolve_color("#50DC78") == (80, 220, 120)

    def test_unknown_raises(self):
        with pytest.raises(InputError, match="Unknown color"):
            resolve_color("nonexistent")


class TestResolvePathVars:
    def test_single_var(self):
        result = resolve_path_vars("${videos}/intro.mp4", {"videos": "/data/vids"})
        assert result == "/data/vids/intro.mp4"

    def test_no_vars(self):
        assert resolve_path_vars("/plain/path", {}) == "/plain/path"

    def test_unknown_var_raises(self):
        with pytest.raises(InputError, match="Unknown path variable"):
            resolve_path_vars("${missing}/x", {})


class TestLoadFont:
    def test_returns_font_object(self):
        assert load_font(size=24) is not None

    def test_missing_family_falls_back(self):
        assert load_font(size=24, family="/nonexistent/font.ttf") is not None


class TestGetOrThrow:
    def test_present(self):
        assert get_or_throw({"A": 1}, "A") == 1

    def test_missing_raises_input_error(self):
        with pytest.raises(InputError, match="Clip B does not exist"):
            get_or_throw({"A": 1}, "B")


class TestFloatComparators:
    def test_gt_strict(self):
        assert gt(2.0, 1.0)
        assert not gt(1.0, 2.0)

    def test_gt_within_epsilon_counts(self):
        assert gt(0.1 + 0.2, 0.3)
        assert gt(0.3, 0.1 + 0.2)

    def test_gte(self):
        assert gte(1.0, 1.0)
        assert gte(1.0 - 1e-14, 1.0)
        assert not gte(0.9, 1.0)

    def test_lte(self):
        assert lte(1.0, 1.0)
        assert lte(1.0 + 1e-14, 1.0)
        assert not lte(1.1, 1.0)
