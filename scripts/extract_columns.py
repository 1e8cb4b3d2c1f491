"""Print the column list a ``CREATE TABLE`` statement would provision."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Iterable

from shared.ddl import DDLParseError, columns_payload, extract_columns


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Extract the ordered (name, type) column list from a CREATE TABLE "
            "statement, as sent to create_datasource_tables."
        )
    )
    parser.add_argument(
        "source",
        nargs="?",
        default="-",
        help="Path to a file containing the statement, or '-' to read stdin (default).",
    )
    parser.add_argument(
        "--indent",
        type=int,
        default=2,
        help="JSON indentation width (default: 2).",
    )
    return parser


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(None if argv is None else list(argv))

    try:
        sql = _read_source(args.source)
    except OSError as exc:
        print(f"Unable to read {args.source}: {exc}", file=sys.stderr)
        return 1

    try:
        columns = extract_columns(sql)
    except DDLParseError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    print(json.dumps(columns_payload(columns), indent=args.indent or None))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
