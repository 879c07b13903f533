"""Geometry compiler — canvas size and per-clip scale, rotation, crop, position.

All numbers are resolved against the probed natural sizes and the background
size, so the emitter receives plain integers instead of expressions. Sizes are
floored as soon as they are computed: ffmpeg floors scale dimensions too, and
a crop computed from an unfloored size can overflow the scaled frame.
"""

import math
from dataclasses import dataclass

from .common import get_or_throw
from .errors import InputError
from .units import parse_unit


X_ALIGNMENTS = {"left", "right", "center"}
Y_ALIGNMENTS = {"top", "bottom", "center"}


# ── Records ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Size:
    width: int
    height: int


@dataclass(frozen=True)
class Rotation:
    degrees: float
    width: int
    height: int


@dataclass(frozen=True)
class Crop:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class ComputedGeometry:
    """Resolved placement of one visual clip.

    ffmpeg applies scale, then rotate, then crop. For a rotated clip the crop
    rectangle (and any zoompan offset) is therefore relative to
    rotate.width x rotate.height, not to scale.
    """
    x: int
    y: int
    scale: Size
    rotate: Rotation | None = None
    crop: Crop | None = None

    @property
    def frame(self) -> Size:
        """The rectangle a crop is taken from: rotated box if rotated, else scale."""
        if self.rotate is not None:
            return Size(self.rotate.width, self.rotate.height)
        return self.scale

    @property
    def width(self) -> int:
        return self.crop.width if self.crop else self.frame.width

    @property
    def height(self) -> int:
        return self.crop.height if self.crop else self.frame.height


# ── Rotation ──────────────────────────────────────────────────────


def compute_rotated_size(size: tuple[int, int], degrees: float | None) -> tuple[int, int]:
    """Bounding box of a (width, height) rectangle rotated about its center."""
    if not degrees:
        return size
    width, height = size
    radians = math.radians(degrees)
    sin, cos = abs(math.sin(radians)), abs(math.cos(radians))
    return (
        math.floor(width * cos + height * sin),
        math.floor(width * sin + height * cos),
    )


# ── Background ────────────────────────────────────────────────────


def compute_background_size(template, probe_map: dict) -> tuple[int, int]:
    """Resolve the output canvas size.

    Percentages are of size.relative_to's rotation-adjusted natural size;
    pixel values are taken as-is. Each axis is resolved independently.

    Raises:
        InputError: relative_to is missing, not probed, or an audio file.
    """
    size = template.size

    def reference() -> tuple[int, int]:
        if size.relative_to is None:
            raise InputError("size must be specified using pixel units")
        info = get_or_throw(probe_map, size.relative_to)
        if info.kind == "audio":
            raise InputError(
                f"size.relative_to: Clip {size.relative_to} is an audio file and has no size"
            )
        clip = get_or_throw(template.clip_map, size.relative_to)
        return compute_rotated_size((info.width, info.height), clip.rotate)

    width = parse_unit(
        size.width,
        percentage=lambda p: math.floor(p * reference()[0]),
        pixels=math.floor,
    )
    height = parse_unit(
        size.height,
        percentage=lambda p: math.floor(p * reference()[1]),
        pixels=math.floor,
    )
    if width <= 0 or height <= 0:
        raise InputError(f"Background size must be positive, got {width}x{height}")
    return width, height


# ── Per-clip geometry ─────────────────────────────────────────────


def compute_geometry(
    template,
    background_size: tuple[int, int],
    probe_map: dict,
) -> dict[str, ComputedGeometry]:
    """Compute geometry for every visual clip, in template order.

    Audio-only clips get no entry.

    Raises:
        InputError: unknown layout.relative_to, bad alignment, negative size,
            or a crop rectangle that leaves the pre-crop frame.
    """
    geometry_map = {}
    for clip in template.clips:
        info = get_or_throw(probe_map, clip.id)
        if info.kind == "audio":
            continue
        geometry_map[clip.id] = _clip_geometry(clip, info, background_size, geometry_map)
    return geometry_map


def _clip_geometry(clip, info, background_size, computed) -> ComputedGeometry:
    layout = clip.layout
    ref_width, ref_height = background_size
    relative_to = layout.get("relative_to")
    if relative_to is not None:
        if relative_to not in computed:
            raise InputError(
                f"Clip {clip.id}: layout.relative_to '{relative_to}' must name a "
                f"clip listed earlier in the template"
            )
        ref_width = computed[relative_to].width
        ref_height = computed[relative_to].height

    # 1. scale
    input_width = parse_unit(
        layout.get("width"), percentage=lambda p: p * ref_width, undefined=lambda: None,
    )
    input_height = parse_unit(
        layout.get("height"), percentage=lambda p: p * ref_height, undefined=lambda: None,
    )
    if input_width is not None:
        width = input_width
    elif input_height is not None:
        width = input_height * info.aspect_ratio
    else:
        width = info.width
    if input_height is not None:
        height = input_height
    elif input_width is not None:
        height = input_width / info.aspect_ratio
    else:
        height = info.height

    width, height = math.floor(width), math.floor(height)
    if width < 0 or height < 0:
        raise InputError(f"Clip {clip.id}: scaled size {width}x{height} is negative")
    scale = Size(width, height)

    # 2. rotation, after scaling
    rotate = None
    if clip.rotate:
        width, height = compute_rotated_size((width, height), clip.rotate)
        rotate = Rotation(clip.rotate, width, height)

    # 3. crop
    crop = None
    if any(clip.crop.get(edge) for edge in ("left", "right", "top", "bottom")):
        crop = _compute_crop(clip, width, height)
        width, height = crop.width, crop.height

    # 4. position
    bg_width, bg_height = background_size
    x = _resolve_position(
        clip.id, "x", layout.get("x"), X_ALIGNMENTS, "left", bg_width, ref_width, width,
    )
    y = _resolve_position(
        clip.id, "y", layout.get("y"), Y_ALIGNMENTS, "top", bg_height, ref_height, height,
    )
    return ComputedGeometry(x=x, y=y, scale=scale, rotate=rotate, crop=crop)


def _compute_crop(clip, frame_width: int, frame_height: int) -> Crop:
    """Shrink the frame by each crop edge: right, bottom, then left, top."""
    edges = clip.crop

    def amount(edge: str, relative: int) -> int:
        value = edges.get(edge)
        if not value:
            return 0
        return math.floor(parse_unit(value, percentage=lambda p: p * relative))

    x, y = 0, 0
    width, height = frame_width, frame_height

    width -= amount("right", frame_width)
    height -= amount("bottom", frame_height)
    left = amount("left", frame_width)
    x = left
    width -= left
    top = amount("top", frame_height)
    y = top
    height -= top

    if x < 0 or width <= 0 or x + width > frame_width:
        raise InputError(
            f"Clip {clip.id}: crop x {x} + width {width} must fit within "
            f"0 and the scaled width {frame_width}"
        )
    if y < 0 or height <= 0 or y + height > frame_height:
        raise InputError(
            f"Clip {clip.id}: crop y {y} + height {height} must fit within "
            f"0 and the scaled height {frame_height}"
        )
    return Crop(x=x, y=y, width=width, height=height)


def _resolve_position(
    clip_id: str,
    axis: str,
    spec,
    alignments: set,
    default_align: str,
    background_dim: int,
    reference_dim: float,
    content_dim: int,
) -> int:
    """Resolve layout.x / layout.y to an integer pixel offset on the canvas."""
    offset_spec = None
    align = default_align
    if isinstance(spec, dict):
        unknown = set(spec) - {"offset", "align"}
        if unknown:
            raise InputError(f"Clip {clip_id}: layout.{axis} unknown field(s) {sorted(unknown)}")
        offset_spec = spec.get("offset")
        align = spec.get("align") or default_align
    elif isinstance(spec, str) and spec in alignments:
        align = spec
    elif spec is not None:
        offset_spec = spec

    if align not in alignments:
        raise InputError(
            f"Clip {clip_id}: invalid layout.{axis} align '{align}'. Valid: {sorted(alignments)}"
        )

    offset = parse_unit(
        offset_spec,
        percentage=lambda p: p * reference_dim,
        undefined=lambda: 0,
    )
    if align in ("right", "bottom"):
        position = background_dim - content_dim + offset
    elif align == "center":
        position = background_dim / 2 - content_dim / 2 + offset
    else:
        position = offset
    return math.floor(position)
