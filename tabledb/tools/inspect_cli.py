"""
Inspection CLI for tabledb stores.

Commands:
- tables: List tables with record counts
- dump: Print all records of a table as JSON
- get: Look up a record by id in any table
- compact: Fold the commit log into the snapshot file

Usage:
    tabledb-inspect --data-dir /var/lib/tabledb/trading tables
    tabledb-inspect --data-dir /var/lib/tabledb/trading dump actors
    tabledb-inspect get k3v9q0x1ab
    tabledb-inspect compact

Invariants:
    - Output JSON is deterministic (sorted keys)
    - Any tabledb error exits non-zero
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace

import json_log_formatter

from ..config import StoreConfig
from ..database import Database, open_database
from ..errors import TableDbError

logger = logging.getLogger(__name__)


def setup_logging(config: StoreConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Store configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class InspectCLI:
    """Renders store contents for the command line.

    Example:
        >>> cli = InspectCLI(db)
        >>> print(cli.tables())
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def tables(self) -> str:
        lines = []
        for name in self.db.tables():
            schema = self.db.schema(name)
            tagged = f" ({len(schema.fields)} tagged fields)" if schema else ""
            lines.append(f"{name}\t{len(self.db.read(name))}{tagged}")
        return "\n".join(lines) if lines else "No tables defined"

    def dump(self, table: str) -> str:
        return json.dumps(self.db.read(table), indent=2, sort_keys=True)

    def get(self, record_id: str) -> str | None:
        found = self.db.id(record_id)
        if found is None:
            return None
        return json.dumps(
            {"table": found.table, "id": record_id, "record": found.record},
            indent=2,
            sort_keys=True,
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tabledb-inspect",
        description="Inspect a tabledb store",
    )
    parser.add_argument(
        "--data-dir",
        help="Store directory (default: TABLEDB_DATA_DIR or ./data)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("tables", help="List tables with record counts")

    dump_parser = subparsers.add_parser("dump", help="Print a table as JSON")
    dump_parser.add_argument("table", help="Table name")

    get_parser = subparsers.add_parser("get", help="Look up a record by id")
    get_parser.add_argument("id", help="Record id")

    subparsers.add_parser("compact", help="Fold the commit log into the snapshot")
    return parser


async def _run(args: argparse.Namespace, config: StoreConfig) -> int:
    async with await open_database(args.data_dir, config) as db:
        cli = InspectCLI(db)

        if args.command == "tables":
            print(cli.tables())
        elif args.command == "dump":
            print(cli.dump(args.table))
        elif args.command == "get":
            output = cli.get(args.id)
            if output is None:
                print(f"No record with id '{args.id}'", file=sys.stderr)
                return 1
            print(output)
        elif args.command == "compact":
            await db.compact()
            print(f"Compacted {db.stats['records']} record(s)")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = StoreConfig.from_env()
    except ValueError as e:
        # Logging is configured from the same environment
        print(f"error: invalid configuration: {e}", file=sys.stderr)
        return 1
    if args.data_dir:
        config = replace(config, storage=replace(config.storage, data_dir=args.data_dir))
    setup_logging(config)

    try:
        return asyncio.run(_run(args, config))
    except TableDbError as e:
        logger.error(e.message, extra={"code": e.code, **e.details})
        print(f"error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
