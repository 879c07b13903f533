"""Resolved render plan.

compile_plan() runs the geometry, timeline, and zoompan compilers in order
and joins their output into one RenderPlan per render pass. The plan is
plain data; emitters for full videos and single-frame previews both read it
without recomputing anything.
"""

import dataclasses
from dataclasses import dataclass

from .common import get_or_throw
from .duration import parse_duration
from .geometry import ComputedGeometry, compute_background_size, compute_geometry
from .timeline import compute_timeline
from .units import parse_percentage
from .zoompan import ZoompanSegment, compute_zoompans, framerate_for


# ── Render modes ──────────────────────────────────────────────────


@dataclass(frozen=True)
class VideoMode:
    """Render the whole timeline to a video file."""


@dataclass(frozen=True)
class SamplePreviewMode:
    """Render a single frame at `at` seconds (template preview if None)."""
    at: float | None = None


RenderMode = VideoMode | SamplePreviewMode


# ── Plan records ──────────────────────────────────────────────────


@dataclass(frozen=True)
class ClipPlan:
    clip_id: str
    file: str
    kind: str
    start_at: float
    duration: float
    trim_start: float
    speed: float
    z_index: int
    framerate: float
    has_audio: bool
    geometry: ComputedGeometry | None = None
    zoompan: tuple[ZoompanSegment, ...] = ()
    retime: bool = False  # framerate set on the clip
    smooth: bool = False
    volume: float = 1.0
    fade_in: float = 0.0
    fade_out: float = 0.0


@dataclass(frozen=True)
class RenderPlan:
    background_size: tuple[int, int]
    background_color: str
    total_duration: float
    preview: float
    clips: tuple[ClipPlan, ...]  # paint order

    def to_dict(self) -> dict:
        """JSON-ready form: per clip timing, geometry, and zoompan segments."""
        return {
            "total_duration": self.total_duration,
            "background": {
                "width": self.background_size[0],
                "height": self.background_size[1],
                "color": self.background_color,
            },
            "preview": self.preview,
            "clips": [_clip_dict(c) for c in self.clips],
        }


def _drop_none(obj):
    if isinstance(obj, dict):
        return {k: _drop_none(v) for k, v in obj.items() if v is not None}
    if isinstance(obj, list):
        return [_drop_none(v) for v in obj]
    return obj


def _clip_dict(clip: ClipPlan) -> dict:
    data = {
        "clip_id": clip.clip_id,
        "file": clip.file,
        "start_at": clip.start_at,
        "duration": clip.duration,
        "trim_start": clip.trim_start,
        "speed": clip.speed,
        "z_index": clip.z_index,
    }
    if clip.geometry is not None:
        data["geometry"] = _drop_none(dataclasses.asdict(clip.geometry))
    if clip.zoompan:
        data["zoompan"] = [
            _drop_none({
                "start_at": s.start_at,
                "end_at": s.end_at,
                "start_x": s.start_x,
                "start_y": s.start_y,
                "start_zoom": s.start_zoom,
                "dest_x": s.dest_x,
                "dest_y": s.dest_y,
                "dest_zoom": s.dest_zoom,
                "x_expression": s.x_expression,
                "y_expression": s.y_expression,
            })
            for s in clip.zoompan
        ]
    return data


# ── Compilation ───────────────────────────────────────────────────


def compile_plan(template, probe_map: dict, background_size: tuple[int, int] | None = None) -> RenderPlan:
    """Resolve geometry, timeline, and zoompan into a RenderPlan.

    Args:
        template: Parsed Template whose text clips were already replaced by
            image clips (see textassets.replace_text_clips).
        probe_map: {clip_id: ProbeInfo} for every clip.
        background_size: Canvas size; computed from the template if None.

    Raises:
        InputError: Any geometry, timeline, or zoompan validation failure.
    """
    if background_size is None:
        background_size = compute_background_size(template, probe_map)

    geometry_map = compute_geometry(template, background_size, probe_map)
    timeline = compute_timeline(template, probe_map)

    framerates = {}
    for clip in template.clips:
        info = get_or_throw(probe_map, clip.id)
        framerates[clip.id] = framerate_for(clip, info)
    zoompan_map = compute_zoompans(template, geometry_map, framerates)

    clips = []
    for entry in timeline.entries:
        clip = get_or_throw(template.clip_map, entry.clip_id)
        info = get_or_throw(probe_map, entry.clip_id)
        transition = clip.transition
        clips.append(ClipPlan(
            clip_id=entry.clip_id,
            file=clip.file,
            kind=info.kind,
            start_at=entry.start_at,
            duration=entry.duration,
            trim_start=entry.trim_start,
            speed=entry.speed,
            z_index=entry.z_index,
            framerate=framerates[clip.id],
            has_audio=info.has_audio,
            geometry=geometry_map.get(clip.id),
            zoompan=zoompan_map.get(clip.id, ()),
            retime=clip.framerate is not None,
            smooth=bool(clip.framerate and clip.framerate.get("smooth")),
            volume=parse_percentage(clip.volume) if clip.volume else 1.0,
            fade_in=parse_duration(transition["fade_in"], template) if transition.get("fade_in") else 0.0,
            fade_out=parse_duration(transition["fade_out"], template) if transition.get("fade_out") else 0.0,
        ))

    return RenderPlan(
        background_size=background_size,
        background_color=template.size.background_color,
        total_duration=timeline.total_duration,
        preview=parse_duration(template.preview, template),
        clips=tuple(clips),
    )
