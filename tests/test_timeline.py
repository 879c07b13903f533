"""Tests for timeline compiler -- start times, trims, PAD, and fit."""

import math

import pytest

from clipplan.errors import InputError
from clipplan.probe import ProbeInfo, image_info
from clipplan.template import parse_template
from clipplan.timeline import compute_timeline


def _video(duration):
    return ProbeInfo(
        width=1920, height=1080, framerate=30.0, duration=duration,
        aspect_ratio=16 / 9, has_audio=True, kind="video",
    )


def _timeline(tmp_path, clips, timeline=None, probes=None):
    raw = {"clips": clips}
    if timeline is not None:
        raw["timeline"] = timeline
    template = parse_template(raw, tmp_path)
    return compute_timeline(template, probes or {})


def _by_id(result):
    return {e.clip_id: e for e in result.entries}


class TestSingleClip:
    def test_starts_at_zero_with_probe_duration(self, tmp_path):
        result = _timeline(tmp_path, [{"id": "A", "file": "a.mp4"}], probes={"A": _video(7.5)})
        (entry,) = result.entries
        assert entry.start_at == 0
        assert entry.duration == 7.5
        assert entry.trim_start == 0
        assert entry.speed == 1
        assert result.total_duration == 7.5

    def test_start_offset(self, tmp_path):
        result = _timeline(
            tmp_path, [{"id": "A", "file": "a.mp4"}],
            timeline={"00:00:02": [["A"]]}, probes={"A": _video(10)},
        )
        assert result.entries[0].start_at == 2
        assert result.total_duration == 12


class TestTrim:
    def test_start_and_end(self, tmp_path):
        clips = [{"id": "A", "file": "a.mp4", "trim": {"start": "00:00:02", "end": "00:00:01"}}]
        entry = _timeline(tmp_path, clips, probes={"A": _video(10)}).entries[0]
        assert entry.duration == 7
        assert entry.trim_start == 2

    def test_stop_is_absolute_source_time(self, tmp_path):
        clips = [{"id": "A", "file": "a.mp4", "trim": {"start": "00:00:02", "stop": "00:00:06"}}]
        entry = _timeline(tmp_path, clips, probes={"A": _video(10)}).entries[0]
        assert entry.duration == 4

    def test_stop_at_output(self, tmp_path):
        clips = [
            {"id": "A", "file": "a.mp4"},
            {"id": "B", "file": "b.mp4", "trim": {"stop_at_output": "00:00:09"}},
        ]
        result = _timeline(
            tmp_path, clips, timeline={"00:00:00": [["A", "B"]]},
            probes={"A": _video(5), "B": _video(10)},
        )
        b = _by_id(result)["B"]
        assert b.start_at == 5
        assert b.duration == 4

    def test_over_trim_raises(self, tmp_path):
        clips = [{"id": "A", "file": "a.mp4", "trim": {"start": "00:00:08", "end": "00:00:05"}}]
        with pytest.raises(InputError, match="Clip A was trimmed"):
            _timeline(tmp_path, clips, probes={"A": _video(10)})

    def test_speed_scales_duration(self, tmp_path):
        clips = [{"id": "A", "file": "a.mp4", "speed": "200%"}]
        entry = _timeline(tmp_path, clips, probes={"A": _video(10)}).entries[0]
        assert entry.duration == 5
        assert entry.speed == 2


class TestManualDuration:
    def test_shorter_duration_used(self, tmp_path):
        clips = [{"id": "A", "file": "a.mp4", "duration": "00:00:03"}]
        entry = _timeline(tmp_path, clips, probes={"A": _video(10)}).entries[0]
        assert entry.duration == 3

    def test_longer_than_trimmed_raises(self, tmp_path):
        clips = [{"id": "A", "file": "a.mp4", "trim": {"start": "00:00:08"}, "duration": "00:00:05"}]
        with pytest.raises(InputError, match="Clip A: duration"):
            _timeline(tmp_path, clips, probes={"A": _video(10)})

    def test_image_with_duration(self, tmp_path):
        clips = [{"id": "I", "file": "i.png", "duration": "00:00:04"}]
        result = _timeline(tmp_path, clips, probes={"I": image_info(200, 100)})
        assert result.entries[0].duration == 4
        assert result.total_duration == 4


class TestPad:
    def test_pad_pushes_last_clip_to_end(self, tmp_path):
        clips = [
            {"id": "X", "file": "x.mp4"},
            {"id": "A", "file": "a.mp4"},
            {"id": "B", "file": "b.mp4"},
        ]
        result = _timeline(
            tmp_path, clips,
            timeline={"00:00:00": [["X"], ["A", "PAD", "B"]]},
            probes={"X": _video(20), "A": _video(5), "B": _video(4)},
        )
        entries = _by_id(result)
        assert result.total_duration == 20
        assert entries["A"].start_at == 0
        assert entries["B"].start_at == 20 - 4

    def test_pad_on_longest_layer_adds_nothing(self, tmp_path):
        clips = [{"id": "A", "file": "a.mp4"}, {"id": "B", "file": "b.mp4"}]
        result = _timeline(
            tmp_path, clips,
            timeline={"00:00:00": [["A", "PAD", "B"]]},
            probes={"A": _video(5), "B": _video(4)},
        )
        assert result.total_duration == 9
        assert _by_id(result)["B"].start_at == 5


class TestFit:
    def test_all_fit_uses_shortest_layer(self, tmp_path):
        clips = [
            {"id": "A", "file": "a.mp4", "trim": {"end": "fit"}},
            {"id": "B", "file": "b.mp4", "trim": {"end": "fit"}},
        ]
        result = _timeline(tmp_path, clips, probes={"A": _video(10), "B": _video(6)})
        assert result.total_duration == 6
        assert _by_id(result)["A"].duration == 6
        assert _by_id(result)["B"].duration == 6

    def test_end_fit_trims_to_longest_other_layer(self, tmp_path):
        clips = [
            {"id": "A", "file": "a.mp4"},
            {"id": "B", "file": "b.mp4", "trim": {"end": "fit"}},
        ]
        result = _timeline(tmp_path, clips, probes={"A": _video(10), "B": _video(20)})
        assert result.total_duration == 10
        b = _by_id(result)["B"]
        assert b.duration == 10
        assert b.trim_start == 0

    def test_start_fit_trims_the_beginning(self, tmp_path):
        clips = [
            {"id": "A", "file": "a.mp4"},
            {"id": "B", "file": "b.mp4", "trim": {"start": "fit"}},
        ]
        result = _timeline(tmp_path, clips, probes={"A": _video(10), "B": _video(20)})
        b = _by_id(result)["B"]
        assert b.duration == 10
        assert b.trim_start == 10

    def test_start_fit_with_speed_trims_source_time(self, tmp_path):
        clips = [
            {"id": "A", "file": "a.mp4"},
            {"id": "B", "file": "b.mp4", "trim": {"start": "fit"}, "speed": "200%"},
        ]
        result = _timeline(tmp_path, clips, probes={"A": _video(5), "B": _video(20)})
        b = _by_id(result)["B"]
        assert b.duration == 5
        assert b.trim_start == 10

    def test_both_fit_only_trims_end(self, tmp_path):
        clips = [
            {"id": "A", "file": "a.mp4"},
            {"id": "B", "file": "b.mp4", "trim": {"start": "fit", "end": "fit"}},
        ]
        result = _timeline(
            tmp_path, clips,
            timeline={"00:00:00": [["A"], ["B"]]},
            probes={"A": _video(10), "B": _video(20)},
        )
        b = _by_id(result)["B"]
        assert b.duration == 10
        assert b.trim_start == 0

    def test_fit_clip_skipped_without_room(self, tmp_path):
        clips = [
            {"id": "A", "file": "a.mp4"},
            {"id": "C", "file": "c.mp4"},
            {"id": "B", "file": "b.mp4", "trim": {"end": "fit"}},
        ]
        result = _timeline(
            tmp_path, clips,
            timeline={"00:00:00": [["A"], ["C", "B"]]},
            probes={"A": _video(10), "C": _video(10), "B": _video(20)},
        )
        assert "B" not in _by_id(result)


class TestImages:
    def test_image_fills_to_total(self, tmp_path):
        clips = [{"id": "A", "file": "a.mp4"}, {"id": "I", "file": "i.png"}]
        result = _timeline(tmp_path, clips, probes={"A": _video(10), "I": image_info(200, 100)})
        assert _by_id(result)["I"].duration == 10

    def test_images_only_without_duration_raise(self, tmp_path):
        clips = [{"id": "I", "file": "i.png"}]
        with pytest.raises(InputError, match="cannot be zero"):
            _timeline(tmp_path, clips, probes={"I": image_info(200, 100)})


class TestOrdering:
    def test_entries_sorted_by_z_index(self, tmp_path):
        clips = [{"id": "A", "file": "a.mp4"}, {"id": "B", "file": "b.mp4"}]
        result = _timeline(
            tmp_path, clips,
            timeline={"00:00:00": [{"clips": ["A"], "z_index": 5}, {"clips": ["B"], "z_index": 1}]},
            probes={"A": _video(10), "B": _video(10)},
        )
        assert [e.clip_id for e in result.entries] == ["B", "A"]

    def test_unknown_clip_raises(self, tmp_path):
        with pytest.raises(InputError, match="Clip ghost does not exist"):
            _timeline(
                tmp_path, [{"id": "A", "file": "a.mp4"}],
                timeline={"00:00:00": [["A", "ghost"]]}, probes={"A": _video(10)},
            )

    def test_total_duration_finite(self, tmp_path):
        result = _timeline(tmp_path, [{"id": "A", "file": "a.mp4"}], probes={"A": _video(3)})
        assert math.isfinite(result.total_duration)
