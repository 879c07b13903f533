"""Text clip rasterisation.

Text clips are drawn to transparent PNGs before geometry and timeline are
computed, then treated as ordinary image clips from there on.
"""

import dataclasses
import math
from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw

from .common import load_font, resolve_color
from .probe import ProbeInfo, image_info
from .units import parse_unit


TEXT_ASSET_DIR = "text_assets"


# ── Layout ───────────────────────────────────────────────────────


def wrap_text(text: str, font, max_width: float | None) -> str:
    """Greedy word wrap so no line is wider than max_width pixels."""
    if not max_width:
        return text
    draw = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    wrapped = []
    for paragraph in text.split("\n"):
        line = ""
        for word in paragraph.split(" "):
            candidate = f"{line} {word}" if line else word
            bbox = draw.textbbox((0, 0), candidate, font=font)
            if line and bbox[2] - bbox[0] > max_width:
                wrapped.append(line)
                line = word
            else:
                line = candidate
        wrapped.append(line)
    return "\n".join(wrapped)


# ── Rendering ────────────────────────────────────────────────────


def render_text_image(text: str, font: dict, width: int | None = None) -> np.ndarray:
    """Render text on a transparent (or filled, rounded) background.

    Args:
        text: Text, may contain newlines.
        font: Font mapping (size, color, outline_color, outline_size, family,
            line_spacing, background_color, background_radius, padding).
        width: Fixed patch width. Text is wrapped to fit inside the padding.

    Returns:
        numpy array of shape (h, w, 4), dtype uint8 (RGBA).
    """
    pil_font = load_font(int(font["size"]), font.get("family"))
    padding = int(font.get("padding") or 0)
    outline = int(font.get("outline_size") or 0)
    spacing = font.get("line_spacing") or 4

    if width is not None:
        text = wrap_text(text, pil_font, width - 2 * padding)

    draw_tmp = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    bbox = draw_tmp.multiline_textbbox(
        (0, 0), text, font=pil_font, spacing=spacing, stroke_width=outline,
    )
    text_w = bbox[2] - bbox[0]
    text_h = bbox[3] - bbox[1]

    patch_w = width if width is not None else text_w + 2 * padding
    patch_h = text_h + 2 * padding
    img = Image.new("RGBA", (max(1, patch_w), max(1, patch_h)), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)

    if font.get("background_color"):
        draw.rounded_rectangle(
            [(0, 0), (img.width - 1, img.height - 1)],
            radius=font.get("background_radius") or 0,
            fill=(*resolve_color(font["background_color"]), 255),
        )

    draw.multiline_text(
        (padding - bbox[0], padding - bbox[1]),
        text,
        fill=(*resolve_color(font["color"]), 255),
        font=pil_font,
        spacing=spacing,
        stroke_width=outline,
        stroke_fill=(*resolve_color(font["outline_color"]), 255),
    )
    return np.array(img)


# ── Template substitution ────────────────────────────────────────


def replace_text_clips(
    template,
    background_size: tuple[int, int],
    output_folder: str | Path,
    quiet: bool = False,
) -> tuple[object, dict[str, ProbeInfo]]:
    """Render every text clip to a PNG and swap it for an image clip.

    A percentage layout.width on a text clip is taken of the background width.

    Returns:
        (template with text clips converted, {clip_id: ProbeInfo} for them).
    """
    asset_dir = Path(output_folder) / TEXT_ASSET_DIR
    clips = []
    infos = {}
    for clip in template.clips:
        if clip.is_media:
            clips.append(clip)
            continue

        width = parse_unit(
            clip.layout.get("width"),
            percentage=lambda p: p * background_size[0],
            undefined=lambda: None,
        )
        if width is not None:
            width = math.floor(width)
        patch = render_text_image(clip.text, clip.font, width)

        asset_dir.mkdir(parents=True, exist_ok=True)
        path = asset_dir / f"{clip.id}.png"
        Image.fromarray(patch).save(path)
        if not quiet:
            print(f"  TEXT   {clip.id} -> {path}", flush=True)

        height, patch_w = patch.shape[:2]
        infos[clip.id] = image_info(patch_w, height)
        clips.append(dataclasses.replace(clip, kind="media", file=str(path.resolve())))

    return template.replace_clips(clips), infos
