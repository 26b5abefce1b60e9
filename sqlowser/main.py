import argparse
import logging
import sys
from typing import Sequence

from sqlowser.config import build_app_config
from sqlowser.errors import DatabaseConnectionError, SqlowserError
from sqlowser.export import ExportFormat, export_source
from sqlowser.logging_setup import setup_logging
from sqlowser.pagination import SqlSource, Source, TableSource
from sqlowser.sqlite_driver import open_gateway
from sqlowser.tui import SqliteBrowserApp


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sqlowser",
        description="Browse and edit a SQLite database in the terminal.",
        epilog="Use 'sqlowser export --help' to export a table or query.",
    )
    parser.add_argument("database")
    parser.add_argument("--read-write", action="store_true")
    parser.add_argument("--page-size", type=int, default=100)
    parser.add_argument("--timeout", type=float, default=30.0)
    parser.add_argument("--show-internal", action="store_true")
    parser.add_argument("--log-file")
    parser.add_argument("--log-level", default="INFO")
    return parser


def _build_export_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sqlowser export")
    parser.add_argument("--db", required=True)
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--table")
    target.add_argument("--query")
    parser.add_argument(
        "--format",
        choices=[export_format.value for export_format in ExportFormat],
        default=ExportFormat.CSV.value,
    )
    parser.add_argument("--out", required=True)
    return parser


def _run_export(args: argparse.Namespace) -> int:
    try:
        gateway = open_gateway(args.db)
    except DatabaseConnectionError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    try:
        source: Source
        if args.table:
            tables = {table.name: table for table in gateway.list_tables(include_internal=True)}
            if args.table not in tables:
                print(f"Error: table not found: {args.table}", file=sys.stderr)
                return 1
            source = TableSource(tables[args.table])
        else:
            source = SqlSource(args.query)
        count = export_source(gateway, source, ExportFormat.parse(args.format), args.out)
    except SqlowserError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    finally:
        gateway.close()
    print(f"Exported {count} rows to {args.out}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    arguments = list(sys.argv[1:] if argv is None else argv)
    if arguments and arguments[0] == "export":
        return _run_export(_build_export_parser().parse_args(arguments[1:]))

    parser = _build_parser()
    args = parser.parse_args(arguments)
    try:
        config = build_app_config(
            args.database,
            read_write=args.read_write,
            page_size=args.page_size,
            query_timeout_seconds=args.timeout,
            show_internal_tables=args.show_internal,
            log_path=args.log_file,
            log_level=args.log_level,
        )
    except ValueError as error:
        parser.error(str(error))

    setup_logging(config.log_level, config.log_path)
    try:
        gateway = open_gateway(config.database_path, read_write=config.read_write)
    except DatabaseConnectionError as error:
        logger.error("Startup failed: %s", error)
        print(f"Error: {error}", file=sys.stderr)
        return 1

    app = SqliteBrowserApp(gateway, config)
    try:
        app.run()
    finally:
        app.controller.shutdown()
        gateway.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
