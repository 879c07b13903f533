"""Zoompan interpolator.

Keyframes become segments between consecutive keyframe timestamps. Within a
segment each moving axis follows a frame-indexed linear formula

    offset(n) = (n - frames_before_segment) * step + start_offset

which the video emitter renders as an ffmpeg expression and the preview
emitter evaluates directly at one instant.

Pan offsets move the crop window inside the pre-crop frame, so a clip needs a
crop to be panned. Offsets are measured from the frame origin and start at 0;
the crop's own x/y holds until the first segment that pans that axis. x/y
keyframe values are deltas from the previous position; zoom values are
absolute.
"""

from dataclasses import dataclass

from .duration import parse_duration
from .errors import InputError
from .units import parse_percentage, parse_unit


@dataclass(frozen=True)
class LinearFormula:
    frame_offset: float
    step: float
    start: float

    def evaluate(self, n: float) -> float:
        return (n - self.frame_offset) * self.step + self.start

    def to_expression(self) -> str:
        return f"(n - {self.frame_offset!r})*{self.step!r}+{self.start!r}"


@dataclass(frozen=True)
class ZoompanSegment:
    start_at: float
    end_at: float
    start_x: float
    start_y: float
    start_zoom: float
    dest_x: float | None = None
    dest_y: float | None = None
    dest_zoom: float | None = None
    x_formula: LinearFormula | None = None
    y_formula: LinearFormula | None = None

    @property
    def x_expression(self) -> str | None:
        return self.x_formula.to_expression() if self.x_formula else None

    @property
    def y_expression(self) -> str | None:
        return self.y_formula.to_expression() if self.y_formula else None


def _formula(start_at: float, end_at: float, framerate: float, start: float, dest: float):
    n_frames = (end_at - start_at) * framerate
    frames_before = start_at * framerate
    if n_frames == 0:
        return LinearFormula(frames_before, 0.0, dest)
    return LinearFormula(frames_before, (dest - start) / n_frames, start)


def compute_zoompan(clip, geometry, framerate: float, template=None) -> tuple[ZoompanSegment, ...]:
    """Build the zoompan segments for one clip.

    Args:
        clip: Template clip carrying `zoompan` keyframes.
        geometry: The clip's ComputedGeometry; its crop is the pan window.
        framerate: Frames per second the clip is rendered at.
        template: Context for keyframe timestamps that use references.

    Raises:
        InputError: Pan without a crop, a negative keyframe time, or a pan
            destination outside [0, frame - crop] on its axis.
    """
    if not clip.zoompan:
        return ()

    timed = sorted(
        ((parse_duration(kf.keyframe, template), kf) for kf in clip.zoompan),
        key=lambda pair: pair[0],
    )
    crop = geometry.crop
    frame = geometry.frame

    prev_t = 0.0
    x = y = 0.0
    zoom = 1.0
    segments = []
    for t, kf in timed:
        if t < 0:
            raise InputError(f"Clip {clip.id}: zoompan keyframe {kf.keyframe} is negative")
        fields = {}
        next_x, next_y, next_zoom = x, y, zoom

        for axis, value, frame_dim, crop_dim in (
            ("x", kf.x, frame.width, crop.width if crop else None),
            ("y", kf.y, frame.height, crop.height if crop else None),
        ):
            if value is None:
                continue
            if crop is None:
                raise InputError(
                    f"Clip {clip.id}: zoompan panning cannot be used without cropping the clip"
                )
            start = x if axis == "x" else y
            dest = start + parse_unit(value, percentage=lambda p, d=frame_dim: p * d)
            bound = frame_dim - crop_dim
            if dest < 0 or dest > bound:
                raise InputError(
                    f"Clip {clip.id}: zoompan {axis} pan at {kf.keyframe} must be between "
                    f"0 and {bound}, got {dest}"
                )
            fields[f"dest_{axis}"] = dest
            fields[f"{axis}_formula"] = _formula(prev_t, t, framerate, start, dest)
            if axis == "x":
                next_x = dest
            else:
                next_y = dest

        if kf.zoom is not None:
            next_zoom = parse_percentage(kf.zoom)
            if next_zoom <= 0:
                raise InputError(f"Clip {clip.id}: zoompan zoom must be positive, got {kf.zoom}")
            fields["dest_zoom"] = next_zoom

        segments.append(ZoompanSegment(
            start_at=prev_t,
            end_at=t,
            start_x=x,
            start_y=y,
            start_zoom=zoom,
            **fields,
        ))
        prev_t, x, y, zoom = t, next_x, next_y, next_zoom

    segments.sort(key=lambda s: s.start_at)
    return tuple(segments)


def compute_zoompans(template, geometry_map: dict, framerates: dict) -> dict:
    """compute_zoompan() for every clip with geometry: {clip_id: segments}."""
    return {
        clip.id: compute_zoompan(clip, geometry_map[clip.id], framerates[clip.id], template)
        for clip in template.clips
        if clip.id in geometry_map
    }


# ── Evaluation ────────────────────────────────────────────────────


def evaluate_offset(segments, axis: str, t: float, framerate: float, base: float) -> float:
    """Value of the piecewise pan offset on `axis` at time t (seconds).

    Until the first segment that moves `axis` the offset is `base` (the crop
    offset). Inside a segment it follows that segment's formula, or holds the
    segment's start value when the axis does not move in it; at a shared
    boundary the later segment wins. After the last segment it holds the final
    position.
    """
    moving = [s for s in segments if getattr(s, f"{axis}_formula") is not None]
    if not moving or t < moving[0].start_at:
        return base

    active = None
    for segment in segments:
        if segment.start_at <= t <= segment.end_at:
            active = segment
    if active is not None:
        formula = getattr(active, f"{axis}_formula")
        if formula is None:
            return getattr(active, f"start_{axis}")
        return formula.evaluate(t * framerate)

    last = None
    for segment in segments:
        if segment.start_at <= t:
            last = segment
    dest = getattr(last, f"dest_{axis}")
    return dest if dest is not None else getattr(last, f"start_{axis}")


def framerate_for(clip, info) -> float:
    """Effective framerate: clip.framerate.fps if set, else the probed rate."""
    if clip.framerate and clip.framerate.get("fps"):
        return float(clip.framerate["fps"])
    return float(info.framerate)
