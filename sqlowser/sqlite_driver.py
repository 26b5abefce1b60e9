from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
import logging
from pathlib import Path
import re
import sqlite3
import threading
import time
from typing import Iterator, Sequence

from sqlowser.errors import DatabaseConnectionError, PolicyError, QueryError


logger = logging.getLogger(__name__)

BLOB_PREVIEW_BYTES = 16
ROWID_COLUMN = "__sqlowser_rowid__"

_SQL_NOISE_RE = re.compile(
    r"'(?:[^']|'')*'"
    r'|"(?:[^"]|"")*"'
    r"|`[^`]*`"
    r"|\[[^\]]*\]"
    r"|--[^\n]*"
    r"|/\*.*?(?:\*/|$)",
    re.DOTALL,
)
_WORD_RE = re.compile(r"[A-Za-z_]+")
_TOKEN_RE = re.compile(r"[A-Za-z_]+|[()]")
_TERMINATOR_CHARS = " \t\r\n;"
_INTEGER_TEXT_RE = re.compile(r"^[+-]?\d+$")
_REAL_TEXT_RE = re.compile(r"^[+-]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?$")

_MUTATING_KEYWORDS = frozenset(
    {
        "INSERT",
        "UPDATE",
        "DELETE",
        "REPLACE",
        "UPSERT",
        "CREATE",
        "DROP",
        "ALTER",
        "ATTACH",
        "DETACH",
        "VACUUM",
        "REINDEX",
        "ANALYZE",
        "BEGIN",
        "COMMIT",
        "END",
        "ROLLBACK",
        "SAVEPOINT",
        "RELEASE",
    }
)
_DML_KEYWORDS = frozenset({"INSERT", "UPDATE", "DELETE", "REPLACE"})
_WITH_BODY_KEYWORDS = _DML_KEYWORDS | {"SELECT", "VALUES"}
_WRAPPABLE_KEYWORDS = frozenset({"SELECT", "WITH", "VALUES"})


class ColumnType(Enum):
    INTEGER = "integer"
    REAL = "real"
    TEXT = "text"
    BLOB = "blob"
    NULL_AFFINITY = "null"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    declared_type: str
    type_tag: ColumnType
    nullable: bool = True
    default: str | None = None
    # 1-based position inside the primary key, 0 when not part of it.
    primary_key: int = 0


@dataclass(frozen=True)
class ForeignKeyEdge:
    source_table: str
    source_column: str
    target_table: str
    target_column: str | None
    on_update: str = "NO ACTION"
    on_delete: str = "NO ACTION"

    @property
    def label(self) -> str:
        return (
            f"{self.source_table}.{self.source_column} -> "
            f"{self.target_table}.{self.target_column or '?'}"
        )


@dataclass(frozen=True)
class IndexDescriptor:
    name: str
    unique: bool
    columns: tuple[str, ...]
    sql: str | None = None


@dataclass(frozen=True)
class TableDescriptor:
    name: str
    columns: tuple[ColumnDescriptor, ...]
    primary_keys: frozenset[str] = frozenset()
    foreign_keys: tuple[ForeignKeyEdge, ...] = ()
    indexes: tuple[IndexDescriptor, ...] = ()
    row_count: int | None = None
    sql: str | None = None
    without_rowid: bool = False

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    @property
    def text_columns(self) -> tuple[str, ...]:
        return tuple(
            column.name for column in self.columns if column.type_tag is ColumnType.TEXT
        )

    @property
    def ordered_primary_keys(self) -> tuple[str, ...]:
        key_columns = [column for column in self.columns if column.primary_key]
        key_columns.sort(key=lambda column: column.primary_key)
        return tuple(column.name for column in key_columns)

    def column(self, name: str) -> ColumnDescriptor | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


@dataclass(frozen=True)
class BlobPreview:
    length: int
    preview: bytes

    def __str__(self) -> str:
        return f"<BLOB {self.length} bytes>"


RowValue = int | float | str | BlobPreview | None


@dataclass(frozen=True)
class RowWindow:
    columns: tuple[str, ...]
    rows: tuple[tuple[RowValue, ...], ...]
    offset: int
    page_size: int
    has_more: bool
    total_rows: int | None = None
    total_is_exact: bool = False
    row_ids: tuple[int, ...] | None = None
    exec_ms: int = 0
    affected_rows: int | None = None

    @property
    def page_index(self) -> int:
        return self.offset // self.page_size

    @property
    def last_page(self) -> int | None:
        if self.total_rows is None or not self.total_is_exact:
            return None
        return max(0, (self.total_rows - 1) // self.page_size)


def empty_window(page_size: int, offset: int = 0) -> RowWindow:
    return RowWindow(
        columns=(),
        rows=(),
        offset=offset,
        page_size=page_size,
        has_more=False,
    )


def classify_declared_type(declared_type: str) -> ColumnType:
    normalized = declared_type.strip().upper()
    if not normalized:
        return ColumnType.NULL_AFFINITY
    if "INT" in normalized:
        return ColumnType.INTEGER
    if any(token in normalized for token in ("CHAR", "CLOB", "TEXT")):
        return ColumnType.TEXT
    if "BLOB" in normalized:
        return ColumnType.BLOB
    if any(token in normalized for token in ("REAL", "FLOA", "DOUB")):
        return ColumnType.REAL
    return ColumnType.UNKNOWN


def to_row_value(value: object) -> RowValue:
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        return BlobPreview(length=len(raw), preview=raw[:BLOB_PREVIEW_BYTES])
    return value  # type: ignore[return-value]


def format_value(value: RowValue, max_length: int | None = None) -> str:
    if value is None:
        text = "NULL"
    elif isinstance(value, float):
        text = f"{value:.0f}" if value.is_integer() else f"{value:.6f}".rstrip("0")
    else:
        text = str(value)
    if max_length is None or len(text) <= max_length:
        return text
    return text[: max(0, max_length - 3)] + "..."


def coerce_edit_value(text: str) -> int | float | str | None:
    """Infers the SQLite value for text typed into a cell editor."""
    stripped = text.strip()
    if not stripped or stripped.upper() == "NULL":
        return None
    if _INTEGER_TEXT_RE.match(stripped):
        return int(stripped)
    if _REAL_TEXT_RE.match(stripped):
        return float(stripped)
    return text


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _statement_words(sql: str) -> list[str]:
    return [word.upper() for word in _WORD_RE.findall(_SQL_NOISE_RE.sub(" ", sql))]


def first_keyword(sql: str) -> str:
    words = _statement_words(sql)
    return words[0] if words else ""


def is_mutating_statement(sql: str) -> bool:
    words = _statement_words(sql)
    if not words:
        return False
    first = words[0]
    if first in _MUTATING_KEYWORDS:
        return True
    if first == "PRAGMA":
        return "=" in _SQL_NOISE_RE.sub(" ", sql)
    if first == "WITH":
        return _with_body_keyword(sql) in _DML_KEYWORDS
    return False


def _with_body_keyword(sql: str) -> str:
    """First statement keyword outside the parentheses of a WITH clause.

    CTE bodies and column lists are all parenthesised, so the statement
    that uses them is the first SELECT/VALUES/DML word at depth 0.
    """
    depth = 0
    for token in _TOKEN_RE.findall(_SQL_NOISE_RE.sub(" ", sql)):
        if token == "(":
            depth += 1
        elif token == ")":
            depth = max(0, depth - 1)
        elif depth == 0 and token.upper() in _WITH_BODY_KEYWORDS:
            return token.upper()
    return ""


def _truncate_query(sql: str) -> str:
    flattened = " ".join(sql.split())
    if len(flattened) > 100:
        return flattened[:97] + "..."
    return flattened


def describe_sqlite_error(error: Exception, sql: str) -> str:
    message = str(error)
    detail = message.partition(": ")[2] or message
    if "no such table" in message:
        text = f"Unknown table: {detail}. Hint: press Tab to browse tables"
    elif "no such column" in message:
        text = f"Unknown column: {detail}. Hint: press s to view the table schema"
    elif "database is locked" in message:
        text = "Database is locked; another process is using it. Try again in a moment"
    elif "interrupted" in message:
        text = "Query cancelled"
    elif "readonly" in message or "read-only" in message:
        text = "Database is opened read-only. Use --read-write to enable editing"
    elif isinstance(error, sqlite3.IntegrityError):
        text = f"Constraint violation: {message}"
    else:
        text = f"SQL error: {message}"
    return f"{text} [query: {_truncate_query(sql)}]"


def _strip_terminators(sql: str) -> str:
    """Drops trailing `;`, whitespace and comments, keeping literals intact."""
    body = sql.strip()
    code_end = 0
    position = 0
    for match in _SQL_NOISE_RE.finditer(body):
        code = body[position : match.start()].rstrip(_TERMINATOR_CHARS)
        if code.strip(_TERMINATOR_CHARS):
            code_end = position + len(code)
        if not match.group().startswith(("--", "/*")):
            code_end = match.end()
        position = match.end()
    code = body[position:].rstrip(_TERMINATOR_CHARS)
    if code.strip(_TERMINATOR_CHARS):
        code_end = position + len(code)
    return body[:code_end]


def _fetch_window(cursor: sqlite3.Cursor, offset: int, count: int) -> list[tuple]:
    skipped = 0
    while skipped < offset:
        batch = cursor.fetchmany(min(500, offset - skipped))
        if not batch:
            return []
        skipped += len(batch)
    return cursor.fetchmany(count)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class ConnectionGateway:
    """Sole owner of the sqlite3 connection.

    Statements are serialised behind a lock so only one runs at a time;
    `cancel_in_flight` may be called from any thread and interrupts the
    statement currently executing, if there is one.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        *,
        read_write: bool,
        path: str = "",
    ) -> None:
        self._connection = connection
        self._read_write = read_write
        self._path = path
        self._lock = threading.Lock()
        self._running = False

    @property
    def read_write(self) -> bool:
        return self._read_write

    @property
    def path(self) -> str:
        return self._path

    @contextmanager
    def _statement(self, sql: str) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cursor = self._connection.cursor()
            self._running = True
            try:
                yield cursor
            except (sqlite3.Error, sqlite3.Warning) as error:
                raise QueryError(describe_sqlite_error(error, sql)) from error
            finally:
                self._running = False
                cursor.close()

    def cancel_in_flight(self) -> bool:
        if not self._running:
            return False
        logger.debug("Interrupting running statement")
        self._connection.interrupt()
        return True

    def close(self) -> None:
        self._connection.close()

    def list_tables(self, include_internal: bool = False) -> list[TableDescriptor]:
        query = "SELECT name, sql FROM sqlite_master WHERE type = 'table' ORDER BY name"
        with self._statement(query) as cursor:
            cursor.execute(query)
            entries = cursor.fetchall()
            tables = [
                self._describe_table(cursor, name, sql)
                for name, sql in entries
                if include_internal or not name.startswith("sqlite_")
            ]
        return _resolve_implicit_targets(tables)

    def _describe_table(
        self,
        cursor: sqlite3.Cursor,
        table_name: str,
        table_sql: str | None,
    ) -> TableDescriptor:
        quoted = quote_identifier(table_name)
        cursor.execute(f"PRAGMA table_info({quoted})")
        columns = tuple(
            ColumnDescriptor(
                name=row[1],
                declared_type=row[2] or "",
                type_tag=classify_declared_type(row[2] or ""),
                nullable=not row[3],
                default=row[4],
                primary_key=row[5],
            )
            for row in cursor.fetchall()
        )
        cursor.execute(f"PRAGMA foreign_key_list({quoted})")
        foreign_keys = tuple(
            ForeignKeyEdge(
                source_table=table_name,
                source_column=row[3],
                target_table=row[2],
                target_column=row[4],
                on_update=row[5],
                on_delete=row[6],
            )
            for row in cursor.fetchall()
        )
        indexes = self._describe_indexes(cursor, quoted)
        try:
            cursor.execute(f"SELECT COUNT(*) FROM {quoted}")
            row_count: int | None = cursor.fetchone()[0]
        except sqlite3.Error as error:
            logger.warning("Could not count rows of %s: %s", table_name, error)
            row_count = None
        normalized_sql = " ".join((table_sql or "").upper().split())
        return TableDescriptor(
            name=table_name,
            columns=columns,
            primary_keys=frozenset(column.name for column in columns if column.primary_key),
            foreign_keys=foreign_keys,
            indexes=indexes,
            row_count=row_count,
            sql=table_sql,
            without_rowid="WITHOUT ROWID" in normalized_sql,
        )

    def _describe_indexes(
        self,
        cursor: sqlite3.Cursor,
        quoted_table: str,
    ) -> tuple[IndexDescriptor, ...]:
        cursor.execute(f"PRAGMA index_list({quoted_table})")
        index_rows = cursor.fetchall()
        indexes: list[IndexDescriptor] = []
        for index_row in sorted(index_rows, key=lambda row: row[1]):
            index_name = index_row[1]
            cursor.execute(f"PRAGMA index_info({quote_identifier(index_name)})")
            index_columns = tuple(row[2] for row in cursor.fetchall() if row[2] is not None)
            cursor.execute(
                "SELECT sql FROM sqlite_master WHERE type = 'index' AND name = ?",
                (index_name,),
            )
            sql_row = cursor.fetchone()
            indexes.append(
                IndexDescriptor(
                    name=index_name,
                    unique=bool(index_row[2]),
                    columns=index_columns,
                    sql=sql_row[0] if sql_row else None,
                )
            )
        return tuple(indexes)

    def execute_query(
        self,
        sql: str,
        params: Sequence[object] = (),
        limit: int = 100,
        offset: int = 0,
    ) -> RowWindow:
        if is_mutating_statement(sql):
            if not self._read_write:
                raise PolicyError(
                    "Database is opened read-only. Use --read-write to run mutating statements"
                )
            raise QueryError("Statement does not return rows; run it as a statement")
        body = _strip_terminators(sql)
        if not body:
            raise QueryError("Query is empty")
        limit = max(1, limit)
        offset = max(0, offset)
        started = time.perf_counter()
        with self._statement(sql) as cursor:
            if first_keyword(body) in _WRAPPABLE_KEYWORDS:
                cursor.execute(
                    f"SELECT * FROM (\n{body}\n) LIMIT ? OFFSET ?",
                    (*params, limit + 1, offset),
                )
                records = cursor.fetchall()
            else:
                cursor.execute(body, tuple(params))
                records = _fetch_window(cursor, offset, limit + 1)
            columns = tuple(description[0] for description in cursor.description or ())
        has_more = len(records) > limit
        rows = tuple(
            tuple(to_row_value(value) for value in record) for record in records[:limit]
        )
        return RowWindow(
            columns=columns,
            rows=rows,
            offset=offset,
            page_size=limit,
            has_more=has_more,
            total_rows=offset + len(rows) + (1 if has_more else 0),
            total_is_exact=not has_more and (bool(rows) or offset == 0),
            exec_ms=_elapsed_ms(started),
        )

    def fetch_table_window(
        self,
        table: TableDescriptor,
        where_sql: str = "",
        params: Sequence[object] = (),
        limit: int = 100,
        offset: int = 0,
    ) -> RowWindow:
        limit = max(1, limit)
        offset = max(0, offset)
        quoted = quote_identifier(table.name)
        where = f" WHERE {where_sql}" if where_sql else ""
        select_list = (
            "*" if table.without_rowid else f"rowid AS {quote_identifier(ROWID_COLUMN)}, *"
        )
        query = f"SELECT {select_list} FROM {quoted}{where} LIMIT ? OFFSET ?"
        started = time.perf_counter()
        with self._statement(query) as cursor:
            cursor.execute(query, (*params, limit + 1, offset))
            records = cursor.fetchall()
            columns = [description[0] for description in cursor.description]
            cursor.execute(f"SELECT COUNT(*) FROM {quoted}{where}", tuple(params))
            total_rows = cursor.fetchone()[0]
        records = records[: limit + 1]
        row_ids: tuple[int, ...] | None = None
        if not table.without_rowid:
            columns = columns[1:]
            row_ids = tuple(record[0] for record in records[:limit])
            records = [record[1:] for record in records]
        rows = tuple(
            tuple(to_row_value(value) for value in record) for record in records[:limit]
        )
        return RowWindow(
            columns=tuple(columns),
            rows=rows,
            offset=offset,
            page_size=limit,
            has_more=len(records) > limit,
            total_rows=total_rows,
            total_is_exact=True,
            row_ids=row_ids,
            exec_ms=_elapsed_ms(started),
        )

    def execute_statement(self, sql: str, params: Sequence[object] = ()) -> int:
        if not self._read_write:
            raise PolicyError(
                "Database is opened read-only. Use --read-write to enable editing"
            )
        logger.debug("Executing statement: %s", _truncate_query(sql))
        with self._statement(sql) as cursor:
            try:
                cursor.execute(sql, tuple(params))
            except sqlite3.Error:
                if self._connection.in_transaction:
                    self._connection.rollback()
                raise
            affected = cursor.rowcount
            self._connection.commit()
        return max(affected, 0)

    def update_cell(
        self,
        table: TableDescriptor,
        column_name: str,
        value: object,
        *,
        row_id: int | None = None,
        key_values: dict[str, object] | None = None,
    ) -> int:
        if table.column(column_name) is None:
            raise QueryError(f"Unknown column: {column_name}")
        assignment = (
            f"UPDATE {quote_identifier(table.name)} SET {quote_identifier(column_name)} = ?"
        )
        if row_id is not None:
            sql = f"{assignment} WHERE rowid = ?"
            params: tuple[object, ...] = (value, row_id)
        elif key_values:
            conditions = " AND ".join(
                f"{quote_identifier(name)} IS ?" for name in key_values
            )
            sql = f"{assignment} WHERE {conditions}"
            params = (value, *key_values.values())
        else:
            raise QueryError(
                f"Row in {table.name} cannot be identified: no rowid or primary key"
            )
        affected = self.execute_statement(sql, params)
        if affected == 0:
            raise QueryError("Row no longer exists; refresh and try again")
        return affected

    def iter_rows(
        self,
        sql: str,
        params: Sequence[object] = (),
    ) -> tuple[list[str], list[tuple]]:
        """Runs a read query without pagination, returning raw values."""
        if is_mutating_statement(sql):
            raise PolicyError("Only read queries can be exported")
        body = _strip_terminators(sql)
        with self._statement(sql) as cursor:
            cursor.execute(body, tuple(params))
            rows = cursor.fetchall()
            columns = [description[0] for description in cursor.description or ()]
        return columns, rows


def _resolve_implicit_targets(tables: list[TableDescriptor]) -> list[TableDescriptor]:
    """Fills in parent columns omitted from REFERENCES clauses."""
    by_name = {table.name: table for table in tables}
    resolved: list[TableDescriptor] = []
    for table in tables:
        edges: list[ForeignKeyEdge] = []
        for edge in table.foreign_keys:
            target = by_name.get(edge.target_table)
            if edge.target_column is None and target is not None:
                key_columns = target.ordered_primary_keys
                if len(key_columns) == 1:
                    edge = replace(edge, target_column=key_columns[0])
            edges.append(edge)
        resolved.append(replace(table, foreign_keys=tuple(edges)))
    return resolved


def open_gateway(
    database_path: str | Path,
    *,
    read_write: bool = False,
    busy_timeout_seconds: float = 5.0,
) -> ConnectionGateway:
    path = Path(database_path).expanduser()
    if not path.is_file():
        raise DatabaseConnectionError(f"Database file not found: {path}")
    mode = "rw" if read_write else "ro"
    uri = f"{path.resolve().as_uri()}?mode={mode}"
    try:
        connection = sqlite3.connect(
            uri,
            uri=True,
            timeout=busy_timeout_seconds,
            check_same_thread=False,
        )
    except sqlite3.Error as error:
        raise DatabaseConnectionError(f"Failed to open database: {path} ({error})") from error
    try:
        connection.execute("PRAGMA foreign_keys = ON")
        connection.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
    except sqlite3.Error as error:
        connection.close()
        raise DatabaseConnectionError(f"Invalid SQLite file: {path} ({error})") from error
    logger.info("Opened %s (%s)", path, "read-write" if read_write else "read-only")
    return ConnectionGateway(connection, read_write=read_write, path=str(path))
