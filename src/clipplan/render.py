"""Render orchestration.

One render pass: load template -> probe -> background size -> text assets ->
compile plan -> build ffmpeg command -> run. Every pass rebuilds the plan from
scratch; only the probe cache in the RenderContext survives between passes.
"""

import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .duration import format_duration
from .ffmpeg_cmd import build_command, run_ffmpeg, write_command_script
from .geometry import compute_background_size
from .plan import RenderPlan, SamplePreviewMode, compile_plan
from .probe import ProbeCache, probe_clips
from .template import load_template, validate_paths
from .textassets import replace_text_clips


VIDEO_FILENAME = "output.mp4"
PREVIEW_FILENAME = "preview.jpg"
COMMAND_FILENAME = "ffmpeg.sh"


@dataclass
class RenderContext:
    output_folder: Path
    cache: ProbeCache = field(default_factory=ProbeCache)
    workers: int = 4
    quiet: bool = False
    save_command: bool = False

    def log(self, message: str) -> None:
        if not self.quiet:
            print(message, flush=True)


@dataclass(frozen=True)
class RenderResult:
    plan: RenderPlan
    command: list[str]
    output_path: Path


def default_output_folder(template_path: str | Path) -> Path:
    """<template dir>/clipplan-projects/<template name>."""
    template_path = Path(template_path)
    return template_path.parent / "clipplan-projects" / template_path.stem


def output_path_for(mode, output_folder: str | Path) -> Path:
    name = PREVIEW_FILENAME if isinstance(mode, SamplePreviewMode) else VIDEO_FILENAME
    return Path(output_folder) / name


def render_template(
    template_path: str | Path,
    mode,
    context: RenderContext,
    execute: bool = True,
) -> RenderResult:
    """Compile a template and (optionally) render it with ffmpeg.

    Args:
        template_path: YAML template file.
        mode: VideoMode() or SamplePreviewMode(at).
        context: Output folder, probe cache, worker count, verbosity.
        execute: If False, stop after building the command.

    Raises:
        InputError: Invalid template (ProbeError for unreadable sources).
        FileNotFoundError: A media file referenced by the template is missing.
        CommandError: ffmpeg failed.
    """
    started = time.time()
    output_folder = Path(context.output_folder)
    output_folder.mkdir(parents=True, exist_ok=True)

    template = load_template(template_path)
    validate_paths(template)
    probe_map = probe_clips(
        template.clips, context.cache, workers=context.workers, quiet=context.quiet,
    )
    background_size = compute_background_size(template, probe_map)
    template, text_infos = replace_text_clips(
        template, background_size, output_folder, quiet=context.quiet,
    )
    probe_map.update(text_infos)

    plan = compile_plan(template, probe_map, background_size)
    output_path = output_path_for(mode, output_folder)
    command = build_command(plan, mode, output_path)

    if context.save_command:
        script = output_folder / COMMAND_FILENAME
        write_command_script(command, script)
        context.log(f"  SAVED  {script}")

    if execute:
        context.log(
            f"  RENDER {output_path.name}  {len(plan.clips)} clips, "
            f"{format_duration(plan.total_duration)} output"
        )
        run_ffmpeg(command)
        elapsed = time.time() - started
        context.log(f"  DONE   {output_path} ({elapsed:.1f}s wall)")

    return RenderResult(plan=plan, command=command, output_path=output_path)


# ── Watch mode ────────────────────────────────────────────────────


class RenderCoalescer:
    """Runs one render at a time; requests during a render become one rerun.

    request() renders immediately when idle. A request that arrives while a
    render is running only sets a flag, and the running caller renders once
    more when it finishes, however many requests arrived in between.
    """

    def __init__(self, render_fn: Callable[[], object]):
        self._render_fn = render_fn
        self._lock = threading.Lock()
        self._running = False
        self._pending = False

    @property
    def running(self) -> bool:
        return self._running

    def request(self) -> bool:
        """Render now, or mark a follow-up render.

        Returns:
            True if this call did the rendering, False if it was coalesced
            into the render already in progress.
        """
        with self._lock:
            if self._running:
                self._pending = True
                return False
            self._running = True

        try:
            while True:
                self._render_fn()
                with self._lock:
                    if not self._pending:
                        self._running = False
                        return True
                    self._pending = False
        except BaseException:
            with self._lock:
                self._running = False
                self._pending = False
            raise


def _mtimes(paths) -> dict[Path, float | None]:
    result = {}
    for path in paths:
        try:
            result[path] = os.stat(path).st_mtime
        except FileNotFoundError:
            result[path] = None
    return result


def watch(
    paths,
    on_change: Callable[[], object],
    interval: float = 0.5,
    stop: threading.Event | None = None,
) -> None:
    """Poll `paths` and call on_change in a background thread after each change.

    Runs until `stop` is set (forever if None). Pair on_change with a
    RenderCoalescer so overlapping changes collapse into one rerender.
    """
    paths = [Path(p) for p in paths]
    stop = stop or threading.Event()
    last = _mtimes(paths)
    while not stop.wait(interval):
        current = _mtimes(paths)
        if current != last:
            last = current
            threading.Thread(target=on_change, daemon=True).start()
