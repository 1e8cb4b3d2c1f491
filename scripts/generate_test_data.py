"""Generate a synthetic policy CSV for exercising the upload pipeline.

The output matches a data source declared as::

    CREATE TABLE DS_POLICIES (
        policy_number VARCHAR(20),
        insured_name VARCHAR(200),
        premium_amount DECIMAL(18,2),
        effective_date DATE,
        status VARCHAR(10)
    )

Rows are written in chunks so that very large files never sit in memory.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Iterable, Iterator

import pandas as pd
from faker import Faker

COLUMNS: tuple[str, ...] = (
    "policy_number",
    "insured_name",
    "premium_amount",
    "effective_date",
    "status",
)
STATUSES: tuple[str, ...] = ("ACTIVE", "PENDING", "EXPIRED")
DEFAULT_ROWS = 100_000
DEFAULT_CHUNK_SIZE = 10_000


def generate_rows(
    count: int, *, faker: Faker, start: int = 0
) -> Iterator[dict[str, Any]]:
    """Yield ``count`` policy rows numbered from ``start + 1``."""

    for index in range(start, start + count):
        yield {
            "policy_number": f"POL{index + 1:08d}",
            "insured_name": faker.name(),
            "premium_amount": float(
                faker.pydecimal(min_value=1000, max_value=100000, right_digits=2)
            ),
            "effective_date": faker.past_date().isoformat(),
            "status": faker.random_element(STATUSES),
        }


def write_csv(
    path: Path,
    rows: int,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    seed: int | None = None,
) -> int:
    """Write ``rows`` synthetic policies to ``path`` and return the row count."""

    faker = Faker()
    if seed is not None:
        Faker.seed(seed)

    path.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    header = True
    path.write_text("", encoding="utf-8")
    while written < rows:
        size = min(chunk_size, rows - written)
        frame = pd.DataFrame(
            list(generate_rows(size, faker=faker, start=written)), columns=COLUMNS
        )
        frame.to_csv(path, mode="a", header=header, index=False)
        header = False
        written += size
        print(f"Generated {written} rows...")
    return written


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "output",
        nargs="?",
        default="test-data-large.csv",
        help="Destination CSV path (default: test-data-large.csv).",
    )
    parser.add_argument("--rows", type=int, default=DEFAULT_ROWS)
    parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    parser.add_argument(
        "--seed", type=int, default=None, help="Seed Faker for reproducible output."
    )
    return parser


def main(argv: Iterable[str] | None = None) -> int:
    args = _build_parser().parse_args(None if argv is None else list(argv))
    if args.rows < 0 or args.chunk_size < 1:
        print("--rows must be >= 0 and --chunk-size >= 1")
        return 2
    written = write_csv(
        Path(args.output), args.rows, chunk_size=args.chunk_size, seed=args.seed
    )
    print(f"Done! Generated {written} rows.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
