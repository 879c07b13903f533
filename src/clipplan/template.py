"""Template loader.

Parses YAML templates, resolves ${path} variables, assigns default clip ids,
fills in size/timeline/preview defaults, and validates every clip into an
immutable Clip record.

Template shape:
  size:      {width, height, relative_to, background_color}
  clips:     [{id, file | text, layout, crop, rotate, trim, duration, speed,
               volume, framerate, transition, zoompan, font}]
  timeline:  {timestamp: [[clip_id | PAD, ...] | {clips: [...], z_index: N}]}
  keypoints: {name: timestamp}
  preview:   timestamp
  paths:     {name: directory}   (for ${name} in file values)
"""

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .common import resolve_color, resolve_path_vars
from .errors import InputError
from .units import parse_unit


# ── Valid keys and defaults ───────────────────────────────────────

PAD = "PAD"

VALID_CLIP_KEYS = {
    "id", "file", "text", "layout", "crop", "rotate", "trim", "duration",
    "speed", "volume", "framerate", "transition", "zoompan", "font",
}

VALID_TRIM_KEYS = {"start", "end", "stop", "stop_at_output"}

VALID_CROP_KEYS = {"left", "right", "top", "bottom"}

VALID_LAYOUT_KEYS = {"x", "y", "width", "height", "relative_to"}

VALID_ZOOMPAN_KEYS = {"x", "y", "zoom"}

DEFAULT_FONT = {
    "size": 12,
    "color": "white",
    "outline_color": "black",
    "outline_size": 0,
    "background_radius": 4.3,
    "padding": 12,
}

DEFAULT_PREVIEW = "00:00:00"


# ── Records ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Keyframe:
    """One zoompan target: deltas x/y and absolute zoom at `keyframe`."""
    keyframe: str | float
    x: str | None = None
    y: str | None = None
    zoom: str | None = None


@dataclass(frozen=True)
class Clip:
    id: str
    kind: str  # "media" | "text"
    file: str | None = None
    text: str | None = None
    layout: dict = field(default_factory=dict)
    crop: dict = field(default_factory=dict)
    rotate: float | None = None
    trim: dict = field(default_factory=dict)
    duration: str | float | None = None
    speed: str | None = None
    volume: str | None = None
    framerate: dict | None = None
    transition: dict = field(default_factory=dict)
    zoompan: tuple[Keyframe, ...] = ()
    font: dict | None = None

    @property
    def is_media(self) -> bool:
        return self.kind == "media"

    @property
    def is_fit(self) -> bool:
        return self.trim.get("start") == "fit" or self.trim.get("end") == "fit"


@dataclass(frozen=True)
class SizeSpec:
    width: str = "100%"
    height: str = "100%"
    relative_to: str | None = None
    background_color: str = "black"


@dataclass(frozen=True)
class Layer:
    clips: tuple[str, ...]
    z_index: int


@dataclass(frozen=True)
class Template:
    clips: tuple[Clip, ...]
    size: SizeSpec
    timeline: dict  # start timestamp -> list[Layer]
    preview: str | float = DEFAULT_PREVIEW
    keypoints: dict = field(default_factory=dict)
    cwd: Path = Path(".")
    clip_map: dict = field(default_factory=dict, repr=False, compare=False)

    def replace_clips(self, clips) -> "Template":
        """Copy of this template with a new clip list (ids unchanged)."""
        clips = tuple(clips)
        return dataclasses.replace(
            self, clips=clips, clip_map={c.id: c for c in clips},
        )


# ── Loading ───────────────────────────────────────────────────────


def load_template(template_path: str | Path) -> Template:
    """Load, validate, and normalize a YAML template file.

    Processing pipeline:
      1. Parse YAML.
      2. Resolve ${path} variables in clip `file` values and font families.
      3. Validate and normalize via parse_template(), resolving relative
         files against the template's directory.

    Raises:
        InputError: Malformed template.
        FileNotFoundError: Missing template file.
    """
    template_path = Path(template_path)
    with open(template_path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise InputError(f"{template_path}: template must be a mapping")

    paths = raw.get("paths", {}) or {}
    for clip in raw.get("clips") or []:
        if not isinstance(clip, dict):
            continue
        if isinstance(clip.get("file"), str):
            clip["file"] = resolve_path_vars(clip["file"], paths)
        font = clip.get("font")
        if isinstance(font, dict) and isinstance(font.get("family"), str):
            font["family"] = resolve_path_vars(font["family"], paths)

    return parse_template(raw, template_path.resolve().parent)


def parse_template(raw: dict, cwd: str | Path) -> Template:
    """Validate a raw template mapping into a Template.

    Args:
        raw: Mapping as produced by yaml.safe_load.
        cwd: Directory that relative clip files are resolved against.

    Raises:
        InputError: No clips, duplicate ids, bad clip fields, conflicting trim
            fields, a text clip as size.relative_to, or percentage sizes with
            no media clip to be relative to.
    """
    cwd = Path(cwd)
    raw_clips = raw.get("clips")
    if not isinstance(raw_clips, list) or not raw_clips:
        raise InputError('template "clips" must have at least one clip present.')

    clips = []
    seen = set()
    for i, raw_clip in enumerate(raw_clips):
        clip = _parse_clip(raw_clip, i, cwd)
        if clip.id in seen:
            raise InputError(f"Clip id {clip.id} is defined more than once.")
        seen.add(clip.id)
        clips.append(clip)

    size = _parse_size(raw.get("size"), clips)
    timeline = _parse_timeline(raw.get("timeline"), clips)

    keypoints = raw.get("keypoints") or {}
    if not isinstance(keypoints, dict):
        raise InputError("'keypoints' must be a mapping of name -> timestamp")

    return Template(
        clips=tuple(clips),
        size=size,
        timeline=timeline,
        preview=raw.get("preview") or DEFAULT_PREVIEW,
        keypoints=dict(keypoints),
        cwd=cwd,
        clip_map={c.id: c for c in clips},
    )


# ── Clip validation ───────────────────────────────────────────────


def validate_trim(clip_id: str, trim: dict) -> None:
    """Reject trim fields that cannot be combined."""
    exclusive = [k for k in ("end", "stop", "stop_at_output") if trim.get(k) is not None]
    if len(exclusive) > 1:
        raise InputError(
            f"Clip {clip_id}: trim 'end', 'stop', and 'stop_at_output' are mutually "
            f"exclusive, got {exclusive}"
        )
    for key in ("stop", "stop_at_output"):
        if trim.get(key) == "fit":
            raise InputError(f"Clip {clip_id}: trim.{key} cannot be 'fit'")


def _check_keys(obj, valid: set, prefix: str) -> dict:
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise InputError(f"{prefix}: must be a mapping")
    unknown = set(obj) - valid
    if unknown:
        raise InputError(
            f"{prefix}: unknown field(s) {sorted(unknown)}. Valid: {sorted(valid)}"
        )
    return dict(obj)


def _parse_clip(raw_clip, index: int, cwd: Path) -> Clip:
    if not isinstance(raw_clip, dict):
        raise InputError(f"Clip {index}: must be a mapping")
    clip_id = str(raw_clip.get("id") or f"CLIP_{index}")
    prefix = f"Clip {clip_id}"
    _check_keys(raw_clip, VALID_CLIP_KEYS, prefix)

    has_file = raw_clip.get("file") is not None
    has_text = raw_clip.get("text") is not None
    if has_file == has_text:
        raise InputError(f"{prefix}: exactly one of 'file' or 'text' is required")

    trim = _check_keys(raw_clip.get("trim"), VALID_TRIM_KEYS, f"{prefix} trim")
    validate_trim(clip_id, trim)
    if trim.get("stop") is not None and raw_clip.get("duration") is not None:
        raise InputError(f"{prefix}: cannot provide both trim.stop and duration")

    layout = _check_keys(raw_clip.get("layout"), VALID_LAYOUT_KEYS, f"{prefix} layout")
    crop = _check_keys(raw_clip.get("crop"), VALID_CROP_KEYS, f"{prefix} crop")
    transition = _check_keys(
        raw_clip.get("transition"), {"fade_in", "fade_out"}, f"{prefix} transition"
    )

    rotate = raw_clip.get("rotate")
    if rotate is not None and (isinstance(rotate, bool) or not isinstance(rotate, (int, float))):
        raise InputError(f"{prefix}: rotate must be a number of degrees, got {rotate!r}")

    for key in ("speed", "volume"):
        value = raw_clip.get(key)
        if value is not None:
            fraction = parse_unit(value, pixels=_reject_pixels(prefix, key))
            if key == "speed" and fraction <= 0:
                raise InputError(f"{prefix}: speed must be greater than 0%, got {value!r}")

    framerate = raw_clip.get("framerate")
    if framerate is not None:
        framerate = _check_keys(framerate, {"fps", "smooth"}, f"{prefix} framerate")
        fps = framerate.get("fps")
        if isinstance(fps, bool) or not isinstance(fps, (int, float)) or fps <= 0:
            raise InputError(f"{prefix}: framerate.fps must be a positive number, got {fps!r}")

    font = None
    if has_text:
        font = {**DEFAULT_FONT, **_check_keys(raw_clip.get("font"), _FONT_KEYS, f"{prefix} font")}
        for key in ("color", "outline_color", "background_color"):
            if font.get(key) is not None:
                resolve_color(font[key])

    file = None
    if has_file:
        file = str((cwd / str(raw_clip["file"])).resolve())

    return Clip(
        id=clip_id,
        kind="media" if has_file else "text",
        file=file,
        text=str(raw_clip["text"]) if has_text else None,
        layout=layout,
        crop=crop,
        rotate=rotate,
        trim=trim,
        duration=raw_clip.get("duration"),
        speed=raw_clip.get("speed"),
        volume=raw_clip.get("volume"),
        framerate=framerate,
        transition=transition,
        zoompan=_parse_zoompan(raw_clip.get("zoompan"), prefix),
        font=font,
    )


_FONT_KEYS = set(DEFAULT_FONT) | {"family", "line_spacing", "background_color"}


def _reject_pixels(prefix: str, key: str):
    def _handler(_value):
        raise InputError(f"{prefix}: {key} must be a percentage")
    return _handler


def _parse_zoompan(raw, prefix: str) -> tuple[Keyframe, ...]:
    if raw is None:
        return ()
    if isinstance(raw, dict):
        items = [{"keyframe": k, **(v or {})} for k, v in raw.items()]
    elif isinstance(raw, list):
        items = raw
    else:
        raise InputError(f"{prefix}: zoompan must be a list or a mapping")

    keyframes = []
    for j, item in enumerate(items):
        if not isinstance(item, dict) or item.get("keyframe") is None:
            raise InputError(f"{prefix}: zoompan {j} missing 'keyframe'")
        values = _check_keys(
            {k: v for k, v in item.items() if k != "keyframe"},
            VALID_ZOOMPAN_KEYS,
            f"{prefix} zoompan {j}",
        )
        keyframes.append(Keyframe(keyframe=item["keyframe"], **values))
    return tuple(keyframes)


# ── Size / timeline defaults ──────────────────────────────────────


def _parse_size(raw, clips: list[Clip]) -> SizeSpec:
    raw = _check_keys(raw, {"width", "height", "relative_to", "background_color"}, "size")
    first_media = next((c for c in clips if c.is_media), None)
    relative_to = raw.get("relative_to")

    if relative_to is not None:
        target = next((c for c in clips if c.id == relative_to), None)
        if target is None:
            raise InputError(f"size.relative_to: Clip {relative_to} does not exist.")
        if not target.is_media:
            raise InputError("Cannot specify a text clip as a relative size source")
    else:
        relative_to = first_media.id if first_media else None

    size = SizeSpec(
        width=raw.get("width") or "100%",
        height=raw.get("height") or "100%",
        relative_to=relative_to,
        background_color=raw.get("background_color") or "black",
    )
    resolve_color(size.background_color)

    is_relative = {"percentage": lambda p: True, "pixels": lambda p: False}
    if relative_to is None and (
        parse_unit(size.width, **is_relative) or parse_unit(size.height, **is_relative)
    ):
        raise InputError(
            "If all clips are text clips, a size must be specified using pixel units."
        )
    return size


def _parse_timeline(raw, clips: list[Clip]) -> dict:
    if raw is None:
        return {DEFAULT_PREVIEW: [Layer((c.id,), i) for i, c in enumerate(clips)]}
    if not isinstance(raw, dict) or not raw:
        raise InputError("'timeline' must be a non-empty mapping of timestamp -> layers")

    timeline = {}
    for start, layers in raw.items():
        if not isinstance(layers, list):
            raise InputError(f"timeline {start}: must be a list of layers")
        parsed = []
        for i, layer in enumerate(layers):
            if isinstance(layer, dict):
                _check_keys(layer, {"clips", "z_index"}, f"timeline {start} layer {i}")
                ids = layer.get("clips")
                z_index = layer.get("z_index", i)
            else:
                ids = layer
                z_index = i
            if not isinstance(ids, list):
                raise InputError(f"timeline {start} layer {i}: must be a list of clip ids")
            if isinstance(z_index, bool) or not isinstance(z_index, int):
                raise InputError(
                    f"timeline {start} layer {i}: z_index must be an integer, got {z_index!r}"
                )
            parsed.append(Layer(tuple(str(c) for c in ids), z_index))
        timeline[start] = parsed
    return timeline


# ── Path validation ───────────────────────────────────────────────


def validate_paths(template: Template) -> None:
    """Check that every media clip's file exists on disk.

    Reports all missing files at once.

    Raises:
        FileNotFoundError: Lists all missing files.
    """
    missing = [c.file for c in template.clips if c.is_media and not Path(c.file).exists()]
    if missing:
        msg = f"Missing {len(missing)} file(s):\n"
        for p in missing:
            msg += f"  - {p}\n"
        raise FileNotFoundError(msg)
