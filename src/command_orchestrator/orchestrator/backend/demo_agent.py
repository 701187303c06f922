"""Deterministic local command used for integration tests and smoke runs.

Prints a few log lines around exactly one JSON record, the way real wrapped
commands do. Failure modes are selected with flags.
"""

from __future__ import annotations

import argparse
import json
import sys
import time


def main(argv: list[str] | None = None) -> int:
    """Run demo behavior for one symbolic command."""

    parser = argparse.ArgumentParser(prog="demo-agent", add_help=False)
    parser.add_argument("command")
    parser.add_argument("--help", dest="show_help", action="store_true")
    parser.add_argument("--exit", dest="exit_code", type=int, default=0)
    parser.add_argument("--sleep", dest="sleep_seconds", type=float, default=0.0)
    parser.add_argument("--stderr", dest="stderr_text", default="bad flag")
    parser.add_argument("--no-record", action="store_true")
    parser.add_argument("--force", action="store_true")
    args, rest = parser.parse_known_args(argv)

    if args.show_help:
        print(f"usage: demo-agent {args.command} [--force] [options]")
        print(f"  {args.command}: deterministic demo command")
        _emit_record({"status": "success", "command": args.command, "help": True})
        return 0

    if args.sleep_seconds > 0:
        time.sleep(args.sleep_seconds)

    if args.exit_code != 0:
        print(args.stderr_text, file=sys.stderr)
        return args.exit_code

    print(f"[info] running {args.command}")
    if not args.no_record:
        _emit_record(
            {
                "status": "success",
                "command": args.command,
                "args": rest,
                "forced": args.force,
            },
        )
    print(f"[info] {args.command} finished")
    return 0


def _emit_record(payload: dict[str, object]) -> None:
    print(json.dumps(payload, ensure_ascii=False, sort_keys=True))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
