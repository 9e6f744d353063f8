"""
Command-line access to a chart memory file.

Reads go through the query service; the only writes (completion and due
date changes) go through the chart engine.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from stc_kernel.config import Kernel, build_kernel, load_settings
from stc_kernel.errors import ChartKernelError, NotFoundError


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def cmd_list(kernel: Kernel, args: argparse.Namespace) -> None:
    _print_json([c.model_dump(mode="json") for c in kernel.query.list_charts()])


def cmd_show(kernel: Kernel, args: argparse.Namespace) -> None:
    details = kernel.query.chart_details(args.chart_id)
    if details is None:
        raise NotFoundError(f"Chart with ID {args.chart_id} not found")
    _print_json({
        "entities": [e.to_record() for e in details.entities],
        "relations": [r.to_record() for r in details.relations],
    })


def cmd_progress(kernel: Kernel, args: argparse.Namespace) -> None:
    _print_json(kernel.engine.progress(args.chart_id).model_dump(mode="json"))


def cmd_complete(kernel: Kernel, args: argparse.Namespace) -> None:
    kernel.engine.mark_complete(args.name)
    print(f"Marked {args.name} complete")


def cmd_set_date(kernel: Kernel, args: argparse.Namespace) -> None:
    stored = kernel.engine.update_due_date(args.chart_id, args.date)
    print(f"Due date of {args.chart_id} set to {stored}")


def cmd_stats(kernel: Kernel, args: argparse.Namespace) -> None:
    _print_json(kernel.query.stats(kernel.engine.now()).model_dump(mode="json"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stc-kernel", description="Structural tension chart memory"
    )
    parser.add_argument("--memory-path", help="Path to the memory JSONL file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List charts by level and due date")

    show = subparsers.add_parser("show", help="Show a chart's entities and relations")
    show.add_argument("chart_id")

    progress = subparsers.add_parser("progress", help="Show a chart's progress")
    progress.add_argument("chart_id")

    complete = subparsers.add_parser("complete", help="Mark an action step complete")
    complete.add_argument("name", help="Action step or desired outcome entity name")

    set_date = subparsers.add_parser("set-date", help="Change a chart's due date")
    set_date.add_argument("chart_id")
    set_date.add_argument("date", help="ISO-8601 date or datetime")

    subparsers.add_parser("stats", help="Whole-memory statistics")
    return parser


COMMANDS = {
    "list": cmd_list,
    "show": cmd_show,
    "progress": cmd_progress,
    "complete": cmd_complete,
    "set-date": cmd_set_date,
    "stats": cmd_stats,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {"memory_path": args.memory_path} if args.memory_path else {}
    settings = load_settings(**overrides)
    logging.basicConfig(
        stream=sys.stderr,
        level=settings.log_level.upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        COMMANDS[args.command](build_kernel(settings), args)
    except ChartKernelError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
