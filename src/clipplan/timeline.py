"""Timeline compiler — start time, duration, and trim for every clip.

The timeline maps a start offset to a list of layers; each layer is an
ordered list of clip ids and PAD tokens that play back to back.

Two passes:
  1. Measure every layer's natural length to get the total output duration.
     Clips trimmed with 'fit' are left out of the measurement unless every
     clip in the timeline is fit-trimmed; in that case the shortest layer
     wins instead of the longest.
  2. Walk each layer again, now knowing the total, resolving PAD and fit
     trims against it.

Durations on a TimelineEntry are output seconds (after speed); trim_start is
in source seconds.
"""

import math
from dataclasses import dataclass

from .common import get_or_throw, gt, gte, lte
from .duration import parse_duration
from .errors import InputError
from .template import PAD, validate_trim
from .units import parse_percentage


@dataclass(frozen=True)
class TimelineEntry:
    clip_id: str
    start_at: float
    duration: float
    trim_start: float
    speed: float
    z_index: int

    @property
    def end_at(self) -> float:
        return self.start_at + self.duration


@dataclass(frozen=True)
class Timeline:
    entries: tuple[TimelineEntry, ...]
    total_duration: float


# ── Per-clip durations ────────────────────────────────────────────


def _clip_speed(clip) -> float:
    return parse_percentage(clip.speed) if clip.speed else 1.0


def _resolve_clip(template, clip, info, position: float):
    """Output duration and source trim_start of a clip placed at `position`.

    Fit trims are not applied here. Duration is None for a clip with no
    natural length (image or text) and no manual duration.
    """
    trim = clip.trim
    validate_trim(clip.id, trim)
    speed = _clip_speed(clip)
    source_duration = info.duration if info is not None else math.nan

    trim_start = 0.0
    start = trim.get("start")
    if start is not None and start != "fit":
        trim_start = parse_duration(start, template)

    manual = None
    if clip.duration is not None:
        manual = parse_duration(clip.duration, template)

    if trim.get("stop_at_output") is not None:
        duration = parse_duration(trim["stop_at_output"], template) - position
    elif math.isnan(source_duration):
        duration = manual
    else:
        source = source_duration - trim_start
        end = trim.get("end")
        if end is not None and end != "fit":
            source -= parse_duration(end, template)
        if trim.get("stop") is not None:
            source = parse_duration(trim["stop"], template) - trim_start
        duration = source / speed

    if duration is None:
        return None, trim_start, speed

    if duration < 0:
        raise InputError(
            f"Clip {clip.id} was trimmed {-duration} seconds more than its total duration"
        )
    if manual is not None:
        if not math.isnan(source_duration) and not lte(manual, duration):
            raise InputError(
                f"Clip {clip.id}: duration {manual} is longer than the {duration} seconds "
                f"left after trimming"
            )
        duration = manual
    return duration, trim_start, speed


# ── Compiler ──────────────────────────────────────────────────────


def compute_timeline(template, probe_map: dict) -> Timeline:
    """Resolve every timeline layer into start/duration/trim entries.

    Args:
        template: Parsed Template.
        probe_map: {clip_id: ProbeInfo}. Clips missing from the map are
            treated as having no natural duration.

    Returns:
        Timeline with entries ordered by z_index (paint order) and the total
        output duration.

    Raises:
        InputError: Unknown clip ids, conflicting or excessive trims, a manual
            duration longer than the trimmed clip, or a total duration that is
            zero, negative, or not finite.
    """
    starts = [(parse_duration(start, template), layers) for start, layers in template.timeline.items()]

    all_fit = all(
        get_or_throw(template.clip_map, clip_id).is_fit
        for _, layers in starts
        for layer in layers
        for clip_id in layer.clips
        if clip_id != PAD
    )

    def layer_duration(position: float, clip_ids: tuple, index: int) -> float:
        total = 0.0
        for clip_id in clip_ids[index:]:
            if clip_id == PAD:
                continue
            clip = get_or_throw(template.clip_map, clip_id)
            duration, _, _ = _resolve_clip(template, clip, probe_map.get(clip_id), position + total)
            if duration is None:
                continue
            if clip.is_fit and not all_fit:
                continue
            total += duration
        return total

    # Pass 1
    ends = [
        start + layer_duration(start, layer.clips, 0)
        for start, layers in starts
        for layer in layers
    ]
    total_duration = min(ends, default=0.0) if all_fit else max(ends, default=0.0)
    if not total_duration > 0 or not math.isfinite(total_duration):
        raise InputError(
            "Output duration cannot be zero. If all clips are text or image clips, "
            "at least one must specify a duration."
        )

    # Pass 2
    entries = []
    for start, layers in starts:
        for layer in layers:
            position = start
            for index, clip_id in enumerate(layer.clips):
                if clip_id == PAD:
                    remaining = layer_duration(position, layer.clips, index + 1)
                    until = total_duration - (position + remaining)
                    if gt(until, 0):
                        position += until
                    continue

                clip = get_or_throw(template.clip_map, clip_id)
                duration, trim_start, speed = _resolve_clip(
                    template, clip, probe_map.get(clip_id), position,
                )
                if duration is None:
                    duration = total_duration - position
                    if lte(duration, 0):
                        continue

                trim = clip.trim
                if trim.get("start") == "fit" or trim.get("end") == "fit":
                    remaining = layer_duration(position, layer.clips, index + 1)
                    over = position + duration + remaining - total_duration
                    if gte(over, duration):
                        continue
                    if gt(over, 0):
                        duration -= over
                        if trim.get("end") != "fit":
                            trim_start += over * speed

                entries.append(TimelineEntry(
                    clip_id=clip_id,
                    start_at=position,
                    duration=duration,
                    trim_start=trim_start,
                    speed=speed,
                    z_index=layer.z_index,
                ))
                position += duration

    entries.sort(key=lambda e: e.z_index)
    return Timeline(entries=tuple(entries), total_duration=total_duration)
