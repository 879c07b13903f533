"""ffmpeg command emitter.

Turns a RenderPlan into an ffmpeg argv with one filter_complex graph:

  color source (canvas) ─┬─ overlay ─ overlay ─ ... ─▶ [vout]
  [0:v] setpts,scale,... ┘          │
  [1:v] setpts,scale,crop,... ──────┘

Full renders time-gate each clip with setpts offsets and evaluate pan
offsets per frame via crop expressions. Sample previews keep only the clips
visible at the preview instant, seek each input to that instant, and resolve
pan offsets to numbers.
"""

import math
import shlex
import subprocess
from pathlib import Path

import imageio_ffmpeg

from .common import lte, resolve_color
from .errors import CommandError, InputError
from .plan import ClipPlan, RenderPlan, SamplePreviewMode, VideoMode
from .zoompan import evaluate_offset

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()

DEFAULT_OUTPUT_FRAMERATE = 60


def _num(value: float) -> str:
    """Compact decimal for ffmpeg arguments (3.0 -> '3', 0.1 -> '0.1')."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _ffmpeg_color(name: str) -> str:
    r, g, b = resolve_color(name)
    return f"0x{r:02x}{g:02x}{b:02x}"


# ── Audio tempo ───────────────────────────────────────────────────


def compute_tempo(speed: float) -> list[str]:
    """atempo filters whose product is `speed`, each within [0.5, 2].

    Returns an empty list for normal speed.
    """
    if math.isclose(speed, 1.0):
        return []
    count = 1
    while not 0.5 <= speed ** (1 / count) <= 2:
        count += 1
    return [f"atempo={_num(speed ** (1 / count))}"] * count


# ── Per-clip filters ──────────────────────────────────────────────


def _crop_offset_expression(clip: ClipPlan, axis: str, base: int) -> str:
    """Piecewise crop offset over frame number n for a full render."""
    moving = [
        i for i, s in enumerate(clip.zoompan) if getattr(s, f"{axis}_formula") is not None
    ]
    if not moving:
        return str(base)

    # The crop offset holds until the first segment that pans this axis.
    segments = clip.zoompan[moving[0]:]
    fps = clip.framerate
    last = segments[-1]
    final = getattr(last, f"dest_{axis}")
    if final is None:
        final = getattr(last, f"start_{axis}")
    expr = _num(final)
    for segment in reversed(segments):
        formula = getattr(segment, f"{axis}_formula")
        value = formula.to_expression() if formula else _num(getattr(segment, f"start_{axis}"))
        expr = f"if(lt(n,{_num(segment.end_at * fps)}),{value},{expr})"
    return f"if(lt(n,{_num(segments[0].start_at * fps)}),{base},{expr})"


def _geometry_filters(clip: ClipPlan, preview_at: float | None) -> list[str]:
    geometry = clip.geometry
    filters = [f"scale={geometry.scale.width}:{geometry.scale.height}"]
    if geometry.rotate is not None:
        rotate = geometry.rotate
        filters.append(
            f"rotate={_num(rotate.degrees)}*PI/180:fillcolor=black@0"
            f":out_w={rotate.width}:out_h={rotate.height}"
        )
    if geometry.crop is not None:
        crop = geometry.crop
        if preview_at is None:
            x = _crop_offset_expression(clip, "x", crop.x)
            y = _crop_offset_expression(clip, "y", crop.y)
        else:
            local = preview_at - clip.start_at
            x = _num(math.floor(evaluate_offset(clip.zoompan, "x", local, clip.framerate, crop.x)))
            y = _num(math.floor(evaluate_offset(clip.zoompan, "y", local, clip.framerate, crop.y)))
        filters.append(f"crop=w={crop.width}:h={crop.height}:x='{x}':y='{y}'")
    return filters


def _video_chain(clip: ClipPlan) -> list[str]:
    pts = f"setpts={_num(1 / clip.speed)}*PTS-STARTPTS"
    if clip.start_at:
        pts += f"+{_num(clip.start_at)}/TB"
    filters = [pts]
    if clip.retime:
        fps = _num(clip.framerate)
        if clip.smooth:
            filters.append(
                f"minterpolate=fps={fps}:mi_mode=mci:mc_mode=aobmc:me_mode=bidir:vsbmc=1"
            )
        else:
            filters.append(f"fps={fps}")
    if clip.fade_in or clip.fade_out:
        filters.append("format=yuva420p")
    filters.extend(_geometry_filters(clip, None))
    if clip.fade_in:
        filters.append(f"fade=t=in:st={_num(clip.start_at)}:d={_num(clip.fade_in)}:alpha=1")
    if clip.fade_out:
        start = clip.start_at + clip.duration - clip.fade_out
        filters.append(f"fade=t=out:st={_num(start)}:d={_num(clip.fade_out)}:alpha=1")
    return filters


def _audio_chain(clip: ClipPlan) -> list[str]:
    filters = ["asetpts=PTS-STARTPTS", f"volume={_num(clip.volume)}"]
    filters.extend(compute_tempo(clip.speed))
    if clip.fade_in:
        filters.append(f"afade=t=in:st=0:d={_num(clip.fade_in)}")
    if clip.fade_out:
        filters.append(
            f"afade=t=out:st={_num(clip.duration - clip.fade_out)}:d={_num(clip.fade_out)}"
        )
    delay = round(clip.start_at * 1000)
    filters.append(f"adelay={delay}:all=1")
    return filters


def _input_args(clip: ClipPlan, preview_at: float | None) -> list[str]:
    if clip.kind == "image":
        if preview_at is not None:
            return ["-i", clip.file]
        return [
            "-loop", "1",
            "-framerate", _num(clip.framerate),
            "-t", _num(clip.duration),
            "-i", clip.file,
        ]
    if preview_at is not None:
        seek = clip.trim_start + (preview_at - clip.start_at) * clip.speed
        return ["-ss", _num(seek), "-i", clip.file]
    return [
        "-ss", _num(clip.trim_start),
        "-t", _num(clip.duration * clip.speed),
        "-i", clip.file,
    ]


# ── Command ───────────────────────────────────────────────────────


def build_command(
    plan: RenderPlan,
    mode,
    output_path: str | Path,
    codec: str = "libx264",
    loglevel: str = "error",
) -> list[str]:
    """Build the ffmpeg argv for a plan.

    Args:
        plan: Compiled RenderPlan.
        mode: VideoMode() or SamplePreviewMode(at).
        output_path: Video file (VideoMode) or image file (preview).
        codec: Video codec for full renders.
        loglevel: ffmpeg -loglevel value.

    Raises:
        InputError: Preview instant outside [0, total_duration].
    """
    if isinstance(mode, SamplePreviewMode):
        at = plan.preview if mode.at is None else mode.at
        if at < 0 or not lte(at, plan.total_duration):
            raise InputError(
                f"Preview time {at} must be between 0 and the output duration "
                f"{plan.total_duration}"
            )
        clips = [
            c for c in plan.clips
            if c.geometry is not None and c.start_at <= at <= c.start_at + c.duration
        ]
    elif isinstance(mode, VideoMode):
        at = None
        clips = list(plan.clips)
    else:
        raise TypeError(f"Unknown render mode: {mode!r}")

    width, height = plan.background_size
    base = f"color=c={_ffmpeg_color(plan.background_color)}:s={width}x{height}"
    if at is None:
        base += f":d={_num(plan.total_duration)}"

    inputs = []
    chains = [f"{base}[base]"]
    overlays = []
    audio_links = []
    last = "[base]"
    framerates = []
    for index, clip in enumerate(clips):
        inputs.extend(_input_args(clip, at))
        if clip.geometry is not None:
            if at is None:
                filters = _video_chain(clip)
            else:
                filters = ["setpts=PTS-STARTPTS", *_geometry_filters(clip, at)]
            chains.append(f"[{index}:v]{','.join(filters)}[v{index}]")
            overlays.append(
                f"{last}[v{index}]overlay=x={clip.geometry.x}:y={clip.geometry.y}"
                f":eof_action=pass[o{index}]"
            )
            last = f"[o{index}]"
            framerates.append(clip.framerate)
        if at is None and clip.has_audio:
            chains.append(f"[{index}:a]{','.join(_audio_chain(clip))}[a{index}]")
            audio_links.append(f"[a{index}]")

    graph = chains + overlays
    argv = [_FFMPEG, "-y", "-loglevel", loglevel, *inputs]

    if at is not None:
        return argv + [
            "-filter_complex", ";".join(graph),
            "-map", last,
            "-vframes", "1",
            str(output_path),
        ]

    audio_map = []
    if len(audio_links) == 1:
        audio_map = ["-map", audio_links[0]]
    elif audio_links:
        graph.append(f"{''.join(audio_links)}amix=inputs={len(audio_links)}:duration=longest[aout]")
        audio_map = ["-map", "[aout]"]

    output_rate = max(framerates, default=DEFAULT_OUTPUT_FRAMERATE)
    return argv + [
        "-filter_complex", ";".join(graph),
        "-map", last,
        *audio_map,
        "-r", _num(output_rate),
        "-t", _num(plan.total_duration),
        "-c:v", codec, "-pix_fmt", "yuv420p",
        *(["-c:a", "aac"] if audio_map else []),
        str(output_path),
    ]


# ── Execution ─────────────────────────────────────────────────────


def write_command_script(argv: list[str], path: str | Path) -> None:
    """Save argv as an executable shell script, one argument per line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    body = " \\\n  ".join(shlex.quote(str(arg)) for arg in argv)
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(0o755)


def run_ffmpeg(argv: list[str]) -> None:
    """Run an ffmpeg argv to completion.

    Raises:
        CommandError: ffmpeg exited non-zero; carries its stderr.
    """
    try:
        subprocess.run(argv, check=True, capture_output=True)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode(errors="replace").strip()
        raise CommandError(f"ffmpeg exited with status {e.returncode}:\n{stderr}") from e
