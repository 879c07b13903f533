"""Subcommand dispatcher for clipplan.

Usage:
    clipplan render template.yaml [--preview] [--watch] ...
    clipplan plan   template.yaml [--output plan.json]
"""

import argparse
import sys


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="clipplan",
        description="Compile declarative video templates into ffmpeg renders.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Register subcommands. Each delegates to its own module's main().
    subparsers.add_parser("render", help="Render a template to video or a preview frame")
    subparsers.add_parser("plan", help="Print the resolved plan as JSON")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    if parsed.command == "render":
        from .cli import main as render_main
        render_main(remaining)
    elif parsed.command == "plan":
        from .plan_cli import main as plan_main
        plan_main(remaining)


if __name__ == "__main__":
    main()
