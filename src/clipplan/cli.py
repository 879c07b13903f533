"""CLI for rendering — compile a YAML template and run ffmpeg.

Usage:
    clipplan render template.yaml
    clipplan render template.yaml --preview --at 00:00:04
    clipplan render template.yaml --preview --watch
    clipplan render template.yaml --dry-run --save-command
"""

import argparse
import shlex
import threading
from pathlib import Path

from .duration import parse_duration
from .errors import InputError
from .plan import SamplePreviewMode, VideoMode
from .render import (
    RenderCoalescer,
    RenderContext,
    default_output_folder,
    render_template,
    watch,
)
from .template import load_template


def _watched_paths(template_path: Path) -> list[Path]:
    """The template plus every media file it references."""
    paths = [template_path]
    try:
        template = load_template(template_path)
    except InputError:
        return paths
    paths.extend(Path(c.file) for c in template.clips if c.is_media)
    return paths


def _render_once(template_path, mode, context, dry_run: bool):
    result = render_template(template_path, mode, context, execute=not dry_run)
    if dry_run:
        print(shlex.join(result.command))
    return result


def run_watch(template_path: Path, mode, context, dry_run: bool = False,
              interval: float = 0.5, stop: threading.Event | None = None) -> None:
    """Render now and again after every change; template errors do not stop the watcher."""

    def render():
        try:
            _render_once(template_path, mode, context, dry_run)
        except (InputError, FileNotFoundError) as e:
            print(f"  ERROR  {e}", flush=True)

    coalescer = RenderCoalescer(render)
    coalescer.request()
    context.log(f"  WATCH  {template_path}")
    watch(_watched_paths(template_path), coalescer.request, interval=interval, stop=stop)


# ── CLI entry point ───────────────────────────────────────────────


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="clipplan render",
        description="Render a YAML video template with ffmpeg.",
    )
    parser.add_argument("template", help="Path to YAML template file")
    parser.add_argument(
        "--output-folder", default=None,
        help="Directory for output.mp4 / preview.jpg (default: "
             "<template dir>/clipplan-projects/<template name>)",
    )
    parser.add_argument(
        "--preview", action="store_true",
        help="Render a single frame at the template's preview time",
    )
    parser.add_argument(
        "--at", default=None,
        help="Preview time, overrides the template's preview (implies --preview)",
    )
    parser.add_argument(
        "--watch", action="store_true",
        help="Re-render whenever the template or a source file changes",
    )
    parser.add_argument(
        "--workers", type=int, default=4,
        help="Parallel probe workers (default: 4)",
    )
    parser.add_argument(
        "--save-command", action="store_true",
        help="Write the ffmpeg command to ffmpeg.sh in the output folder",
    )
    parser.add_argument(
        "--quiet", action="store_true",
        help="Suppress status output",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Print the ffmpeg command instead of running it",
    )
    parsed = parser.parse_args(args)

    template_path = Path(parsed.template)
    if not template_path.exists():
        parser.error(f"template not found: {template_path}")

    try:
        if parsed.at is not None:
            mode = SamplePreviewMode(at=parse_duration(parsed.at))
        elif parsed.preview:
            mode = SamplePreviewMode()
        else:
            mode = VideoMode()
    except InputError as e:
        parser.error(f"--at: {e}")

    context = RenderContext(
        output_folder=Path(parsed.output_folder or default_output_folder(template_path)),
        workers=parsed.workers,
        quiet=parsed.quiet,
        save_command=parsed.save_command,
    )

    if parsed.watch:
        try:
            run_watch(template_path, mode, context, dry_run=parsed.dry_run)
        except KeyboardInterrupt:
            pass
        return

    try:
        _render_once(template_path, mode, context, parsed.dry_run)
    except (InputError, FileNotFoundError) as e:
        parser.exit(1, f"error: {e}\n")


if __name__ == "__main__":
    main()
