from concurrent.futures import Executor, Future
from pathlib import Path
import sqlite3
import sys
from typing import Callable, Iterator

if True:
    PROJECT_ROOT = Path(__file__).resolve().parents[1]
    if str(PROJECT_ROOT) not in sys.path:
        sys.path.insert(0, str(PROJECT_ROOT))

    import pytest

    from sqlowser.session import SessionController
    from sqlowser.sqlite_driver import (
        ColumnDescriptor,
        ConnectionGateway,
        ForeignKeyEdge,
        TableDescriptor,
        classify_declared_type,
        open_gateway,
    )
    from sqlowser.worker import BackgroundWorker


LONG_TEXT_VALUE = (
    "This is a deliberately long cell value used to validate column truncation "
    "behavior in the rows view while preserving the full value in the cell detail "
    "screen."
)
BLOB_VALUE = b"\x00\x01\x02\x03"
EVENT_COUNT = 125


def _seed_database(path: Path) -> None:
    connection = sqlite3.connect(path)
    try:
        connection.executescript(
            """
            CREATE TABLE users (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT,
                bio TEXT,
                avatar BLOB
            );
            CREATE TABLE orders (
                id INTEGER PRIMARY KEY,
                user_id INTEGER NOT NULL REFERENCES users (id),
                total REAL,
                note TEXT
            );
            CREATE INDEX idx_orders_user ON orders (user_id);
            CREATE TABLE events (
                id INTEGER PRIMARY KEY,
                label TEXT NOT NULL
            );
            CREATE TABLE settings (
                key TEXT PRIMARY KEY,
                value TEXT
            ) WITHOUT ROWID;
            CREATE TABLE staff (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                manager_id INTEGER REFERENCES staff (id)
            );
            """
        )
        connection.executemany(
            "INSERT INTO users (id, name, email, bio, avatar) VALUES (?, ?, ?, ?, ?)",
            [
                (1, "alice", "alice@example.com", LONG_TEXT_VALUE, BLOB_VALUE),
                (2, "bob", None, "short", None),
                (3, "carol", "carol@example.com", None, None),
            ],
        )
        connection.executemany(
            "INSERT INTO orders (id, user_id, total, note) VALUES (?, ?, ?, ?)",
            [(1, 1, 9.5, "first"), (2, 1, 20.0, None), (3, 2, 3.25, "gift")],
        )
        connection.executemany(
            "INSERT INTO events (id, label) VALUES (?, ?)",
            [(index, f"event {index:03d}") for index in range(1, EVENT_COUNT + 1)],
        )
        connection.executemany(
            "INSERT INTO settings (key, value) VALUES (?, ?)",
            [("theme", "dark"), ("lang", "en")],
        )
        connection.executemany(
            "INSERT INTO staff (id, name, manager_id) VALUES (?, ?, ?)",
            [(1, "boss", None), (2, "worker", 1)],
        )
        connection.commit()
    finally:
        connection.close()


class ImmediateExecutor(Executor):
    """Runs submitted work on the calling thread."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as error:
            future.set_exception(error)
        return future


class ManualExecutor(Executor):
    """Queues submitted work until the test runs it."""

    def __init__(self) -> None:
        self.tasks: list[tuple[Future, Callable, tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        self.tasks.append((future, fn, args, kwargs))
        return future

    def run_next(self) -> None:
        future, fn, args, kwargs = self.tasks.pop(0)
        self._run(future, fn, args, kwargs)

    def run_last(self) -> None:
        future, fn, args, kwargs = self.tasks.pop()
        self._run(future, fn, args, kwargs)

    def run_all(self) -> None:
        while self.tasks:
            self.run_next()

    @staticmethod
    def _run(future: Future, fn: Callable, args: tuple, kwargs: dict) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as error:
            future.set_exception(error)


def make_table(
    name: str,
    columns: list[tuple[str, str]],
    primary_keys: tuple[str, ...] = (),
    foreign_keys: tuple[tuple[str, str, str | None], ...] = (),
) -> TableDescriptor:
    """Builds a descriptor without a database, for graph and layout tests."""
    return TableDescriptor(
        name=name,
        columns=tuple(
            ColumnDescriptor(
                name=column_name,
                declared_type=declared_type,
                type_tag=classify_declared_type(declared_type),
                primary_key=primary_keys.index(column_name) + 1
                if column_name in primary_keys
                else 0,
            )
            for column_name, declared_type in columns
        ),
        primary_keys=frozenset(primary_keys),
        foreign_keys=tuple(
            ForeignKeyEdge(
                source_table=name,
                source_column=source_column,
                target_table=target_table,
                target_column=target_column,
            )
            for source_column, target_table, target_column in foreign_keys
        ),
    )


def settle(controller: SessionController, rounds: int = 10) -> None:
    """Applies worker results until nothing new arrives."""
    for _ in range(rounds):
        if not controller.process_results():
            return


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "fixture.db"
    _seed_database(path)
    return path


@pytest.fixture()
def gateway(db_path: Path) -> Iterator[ConnectionGateway]:
    gateway = open_gateway(db_path)
    yield gateway
    gateway.close()


@pytest.fixture()
def rw_gateway(db_path: Path) -> Iterator[ConnectionGateway]:
    gateway = open_gateway(db_path, read_write=True)
    yield gateway
    gateway.close()


@pytest.fixture()
def immediate_executor() -> ImmediateExecutor:
    return ImmediateExecutor()


@pytest.fixture()
def manual_executor() -> ManualExecutor:
    return ManualExecutor()


@pytest.fixture()
def make_controller(immediate_executor: ImmediateExecutor):
    def factory(gateway: ConnectionGateway, page_size: int = 50) -> SessionController:
        worker = BackgroundWorker(gateway, executor=immediate_executor)
        controller = SessionController(gateway, page_size=page_size, worker=worker)
        controller.start()
        settle(controller)
        return controller

    return factory

