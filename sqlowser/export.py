import base64
import csv
from enum import Enum
import io
import json
import logging
from pathlib import Path
from typing import Sequence

from sqlowser.errors import ExportError
from sqlowser.pagination import Source, TableSource, build_filter_clause
from sqlowser.sqlite_driver import BlobPreview, ConnectionGateway, RowWindow, quote_identifier


logger = logging.getLogger(__name__)


class ExportFormat(Enum):
    CSV = "csv"
    JSON = "json"

    @classmethod
    def parse(cls, value: str) -> "ExportFormat":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported export format: {value} (use csv or json)") from None


def _csv_cell(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<BLOB {len(bytes(value))} bytes>"
    return str(value)


def _json_value(value: object) -> object:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, BlobPreview):
        # Only the preview is held in memory for paged windows.
        return str(value)
    return value


def format_rows(
    columns: Sequence[str],
    rows: Sequence[Sequence[object]],
    export_format: ExportFormat,
) -> bytes:
    if export_format is ExportFormat.CSV:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(columns)
        for row in rows:
            writer.writerow([_csv_cell(value) for value in row])
        return buffer.getvalue().encode("utf-8")
    records = [
        {column: _json_value(value) for column, value in zip(columns, row)}
        for row in rows
    ]
    return (json.dumps(records, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def format_window(window: RowWindow, export_format: ExportFormat) -> bytes:
    return format_rows(window.columns, window.rows, export_format)


def source_query(source: Source, filter_text: str = "") -> tuple[str, tuple[object, ...]]:
    if isinstance(source, TableSource):
        where_sql, params = build_filter_clause(source.table, filter_text)
        where = f" WHERE {where_sql}" if where_sql else ""
        return f"SELECT * FROM {quote_identifier(source.table.name)}{where}", params
    return source.sql, ()


def export_source(
    gateway: ConnectionGateway,
    source: Source,
    export_format: ExportFormat,
    path: str | Path,
    filter_text: str = "",
) -> int:
    """Re-runs `source` without pagination and writes every row to `path`."""
    sql, params = source_query(source, filter_text)
    columns, rows = gateway.iter_rows(sql, params)
    target = Path(path).expanduser()
    try:
        target.write_bytes(format_rows(columns, rows, export_format))
    except OSError as error:
        raise ExportError(f"Failed to write {target}: {error.strerror or error}") from error
    logger.info("Exported %s rows to %s", len(rows), target)
    return len(rows)
