from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="assembler", add_help=True)
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Build the archives an assembly descriptor describes")
    build.add_argument("--descriptor", required=True, help="Assembly descriptor (YAML)")
    build.add_argument("--config", default=None, help="Assembler config file (YAML)")
    build.add_argument("--project", default=None, help="Project definition (YAML)")
    build.add_argument("--repository", default=None, help="Artifact repository definition (YAML)")
    build.add_argument(
        "--format",
        dest="formats",
        action="append",
        default=[],
        help="Archive format; repeatable (default: descriptor formats)",
    )
    build.add_argument(
        "-D",
        dest="properties",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Command-line property for ${...} expressions",
    )

    sub.add_parser("list-handlers", help="List container descriptor handlers")
    sub.add_parser("list-phases", help="List assembly phases in execution order")
    sub.add_parser("list-formats", help="List supported archive formats")

    return parser


def _run_build(args: argparse.Namespace) -> int:
    from .app.build import BuildRequest, run_build
    from .framework.errors import AssemblyError

    request = BuildRequest(
        descriptor_path=args.descriptor,
        config_path=args.config,
        project_path=args.project,
        repository_path=args.repository,
        formats=tuple(args.formats),
        properties=tuple(args.properties),
    )
    try:
        built = run_build(request)
    except AssemblyError as exc:
        logger.error("Assembly failed: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1

    for path in built:
        print(path)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    if args.command == "build":
        return _run_build(args)

    if args.command == "list-handlers":
        from .handlers import available_handlers

        for name in available_handlers():
            print(name)
        return 0

    if args.command == "list-phases":
        from .phases.registry import default_phase_registry

        for entry in default_phase_registry().describe():
            doc = entry.get("doc") or ""
            print(f"{entry['order']}\t{entry['phase_id']}\t{doc}")
        return 0

    if args.command == "list-formats":
        from .archive.writers import SUPPORTED_FORMATS

        for name in SUPPORTED_FORMATS:
            print(name)
        return 0

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
