"""Tests for clipplan.plan — compiling templates into a RenderPlan."""

import json
import math

import pytest

from clipplan.errors import InputError
from clipplan.geometry import Size
from clipplan.plan import (
    RenderPlan,
    SamplePreviewMode,
    VideoMode,
    compile_plan,
)
from clipplan.probe import ProbeInfo, image_info
from clipplan.template import parse_template


def _video(width=1920, height=1080, duration=10.0, framerate=30.0, has_audio=True):
    return ProbeInfo(
        width=width, height=height, framerate=framerate, duration=duration,
        aspect_ratio=width / height, has_audio=has_audio, kind="video",
    )


def _audio(duration=8.0):
    return ProbeInfo(
        width=0, height=0, framerate=0, duration=duration,
        aspect_ratio=math.nan, has_audio=True, kind="audio",
    )


def _plan(tmp_path, raw, probes):
    return compile_plan(parse_template(raw, tmp_path), probes)


class TestRenderModes:
    def test_preview_default_instant(self):
        assert SamplePreviewMode().at is None

    def test_modes_are_distinct(self):
        assert VideoMode() != SamplePreviewMode()
        assert SamplePreviewMode(at=2.0) == SamplePreviewMode(at=2.0)


class TestCompilePlan:
    def test_single_clip(self, tmp_path):
        plan = _plan(tmp_path, {"clips": [{"id": "A", "file": "a.mp4"}]}, {"A": _video()})
        assert isinstance(plan, RenderPlan)
        assert plan.background_size == (1920, 1080)
        assert plan.background_color == "black"
        assert plan.total_duration == 10
        assert plan.preview == 0
        (clip,) = plan.clips
        assert clip.clip_id == "A"
        assert clip.kind == "video"
        assert clip.start_at == 0
        assert clip.duration == 10
        assert clip.framerate == 30
        assert clip.geometry.scale == Size(1920, 1080)
        assert clip.zoompan == ()
        assert clip.volume == 1.0
        assert not clip.retime

    def test_overlay_image_and_audio(self, tmp_path):
        raw = {
            "clips": [
                {"id": "A", "file": "a.mp4", "volume": "50%"},
                {
                    "id": "I", "file": "i.png", "duration": "00:00:04",
                    "layout": {"width": "25%"},
                    "transition": {"fade_in": "00:00:01"},
                },
                {"id": "M", "file": "m.mp3"},
            ],
            "timeline": {"00:00:00": [["A"], ["M"]], "00:00:02": [["I"]]},
            "preview": "00:00:03",
        }
        plan = _plan(tmp_path, raw, {"A": _video(), "I": image_info(200, 100), "M": _audio()})
        clips = {c.clip_id: c for c in plan.clips}

        assert plan.preview == 3
        assert clips["A"].volume == 0.5
        assert clips["I"].start_at == 2
        assert clips["I"].duration == 4
        assert clips["I"].fade_in == 1
        assert clips["I"].fade_out == 0
        assert clips["I"].geometry.scale == Size(480, 240)
        assert clips["M"].geometry is None
        assert clips["M"].kind == "audio"

    def test_paint_order_follows_z_index(self, tmp_path):
        raw = {
            "clips": [{"id": "A", "file": "a.mp4"}, {"id": "B", "file": "b.mp4"}],
            "timeline": {"00:00:00": [
                {"clips": ["A"], "z_index": 3},
                {"clips": ["B"], "z_index": 0},
            ]},
        }
        plan = _plan(tmp_path, raw, {"A": _video(), "B": _video()})
        assert [c.clip_id for c in plan.clips] == ["B", "A"]

    def test_framerate_override(self, tmp_path):
        raw = {"clips": [{"id": "A", "file": "a.mp4", "framerate": {"fps": 60, "smooth": True}}]}
        (clip,) = _plan(tmp_path, raw, {"A": _video()}).clips
        assert clip.framerate == 60
        assert clip.retime
        assert clip.smooth

    def test_zoompan_attached(self, tmp_path):
        raw = {"clips": [{
            "id": "A", "file": "a.mp4",
            "crop": {"right": "50%"},
            "zoompan": {"00:00:02": {"x": "50%"}},
        }]}
        (clip,) = _plan(tmp_path, raw, {"A": _video(200, 100, framerate=10.0)}).clips
        (segment,) = clip.zoompan
        assert segment.dest_x == 100

    def test_missing_probe_raises(self, tmp_path):
        raw = {"clips": [{"id": "A", "file": "a.mp4"}, {"id": "B", "file": "b.mp4"}]}
        with pytest.raises(InputError, match="Clip B does not exist"):
            _plan(tmp_path, raw, {"A": _video()})

    def test_explicit_background_size(self, tmp_path):
        template = parse_template({"clips": [{"id": "A", "file": "a.mp4"}]}, tmp_path)
        plan = compile_plan(template, {"A": _video()}, background_size=(640, 360))
        assert plan.background_size == (640, 360)
        assert plan.clips[0].geometry.scale == Size(1920, 1080)


class TestToDict:
    def test_shape(self, tmp_path):
        raw = {"clips": [
            {"id": "A", "file": "a.mp4"},
            {"id": "M", "file": "m.mp3"},
        ]}
        data = _plan(tmp_path, raw, {"A": _video(), "M": _audio()}).to_dict()
        assert data["total_duration"] == 10
        assert data["background"] == {"width": 1920, "height": 1080, "color": "black"}
        a, m = data["clips"]
        assert a["geometry"] == {"x": 0, "y": 0, "scale": {"width": 1920, "height": 1080}}
        assert "geometry" not in m
        assert "zoompan" not in a

    def test_zoompan_expressions(self, tmp_path):
        raw = {"clips": [{
            "id": "A", "file": "a.mp4",
            "crop": {"right": "50%"},
            "zoompan": {"00:00:02": {"x": "50%"}},
        }]}
        data = _plan(tmp_path, raw, {"A": _video(200, 100, framerate=10.0)}).to_dict()
        (segment,) = data["clips"][0]["zoompan"]
        assert segment["x_expression"] == "(n - 0.0)*5.0+0.0"
        assert "y_expression" not in segment
        assert "dest_y" not in segment

    def test_json_serializable(self, tmp_path):
        raw = {"clips": [
            {"id": "A", "file": "a.mp4", "rotate": 90, "crop": {"top": "10%"}},
            {"id": "I", "file": "i.png"},
        ]}
        plan = _plan(tmp_path, raw, {"A": _video(), "I": image_info(200, 100)})
        decoded = json.loads(json.dumps(plan.to_dict()))
        assert decoded["clips"][0]["geometry"]["rotate"]["degrees"] == 90
