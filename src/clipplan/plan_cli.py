"""CLI for plan inspection — compile a template and print the resolved plan.

Probes sources and rasterises text clips, but never invokes ffmpeg.

Usage:
    clipplan plan template.yaml
    clipplan plan template.yaml --output plan.json
"""

import argparse
import json
import sys
from pathlib import Path

from .errors import InputError
from .plan import VideoMode
from .render import RenderContext, default_output_folder, render_template


def build_plan(template_path: str | Path, output_folder: str | Path, workers: int = 4):
    """Load, probe, and compile a template into a RenderPlan.

    Runs the same pass as `clipplan render`, stopping before ffmpeg.
    """
    context = RenderContext(output_folder=Path(output_folder), workers=workers, quiet=True)
    return render_template(template_path, VideoMode(), context, execute=False).plan


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="clipplan plan",
        description="Compile a YAML video template and write the resolved plan as JSON.",
    )
    parser.add_argument("template", help="Path to YAML template file")
    parser.add_argument(
        "--output", default=None,
        help="JSON output path (default: stdout)",
    )
    parser.add_argument(
        "--output-folder", default=None,
        help="Directory for rasterised text assets",
    )
    parser.add_argument(
        "--workers", type=int, default=4,
        help="Parallel probe workers (default: 4)",
    )
    parsed = parser.parse_args(args)

    template_path = Path(parsed.template)
    if not template_path.exists():
        parser.error(f"template not found: {template_path}")

    output_folder = Path(parsed.output_folder or default_output_folder(template_path))
    try:
        plan = build_plan(template_path, output_folder, workers=parsed.workers)
    except (InputError, FileNotFoundError) as e:
        parser.exit(1, f"error: {e}\n")

    text = json.dumps(plan.to_dict(), indent=2)
    if parsed.output:
        Path(parsed.output).parent.mkdir(parents=True, exist_ok=True)
        Path(parsed.output).write_text(text + "\n")
        print(f"Plan written: {parsed.output} ({len(plan.clips)} clips, "
              f"{plan.total_duration:.1f}s)")
    else:
        sys.stdout.write(text + "\n")


if __name__ == "__main__":
    main()
