"""
The database side of the shell. The session engine needs only three things
from a database: run a statement that returns rows, run a statement for
effect, and close the connection. The Backend protocol captures just that,
so that the engine can be exercised against an in-memory fake.
SQLAlchemyBackend is the real implementation.
"""

import threading
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Callable, Iterable, Iterator, Protocol, Self, TypeVar
from typing import Sequence as Seq

import sqlalchemy
from sqlalchemy.engine import Connection, CursorResult, Engine

from pgshell.config import ConnectionConfig
from pgshell.errors import BackendError

TIMEOUT_MESSAGE = "canceling statement due to statement timeout"
PING_SQL = "SELECT 1"
# Raw SQL goes to the driver untouched. Without this, a "%" in a statement
# is taken as a parameter marker by some drivers.
NO_PARAMETERS = {"no_parameters": True}

T = TypeVar("T")


class ValueKind(StrEnum):
    """
    The coarse type of a value in a result row. It determines how the value
    is formatted for display.
    """

    NULL = "null"
    TEXT = "text"
    INTEGER = "integer"
    FLOATING = "floating"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    BINARY = "binary"
    OTHER = "other"


def value_kind(value: Any) -> ValueKind:
    """
    Classify a value returned by the database driver.
    """
    match value:
        case None:
            return ValueKind.NULL
        # bool has to come before int, since bool is a subclass of int.
        case bool():
            return ValueKind.BOOLEAN
        case int():
            return ValueKind.INTEGER
        case float():
            return ValueKind.FLOATING
        case str():
            return ValueKind.TEXT
        case datetime():
            return ValueKind.TIMESTAMP
        case bytes() | bytearray() | memoryview():
            return ValueKind.BINARY
        case _:
            return ValueKind.OTHER


@dataclass
class ResultSet:
    """
    The result of a query: the column names, in order, and the rows. Each
    row is a sequence of values in column order. `rows` may be a one-shot
    iterator.
    """

    columns: list[str]
    rows: Iterable[Seq[Any]]


class Backend(Protocol):
    """
    What the shell needs from a database connection. Timeouts are in
    seconds. Every failure, including a timeout, is a BackendError.
    """

    def query(self, sql: str, timeout: float, limit: int = 0) -> ResultSet:
        """
        Run a statement that returns rows. With a positive `limit`, at most
        limit + 1 rows are collected; the extra row tells the caller that
        the result was cut.
        """

    def execute(self, sql: str, timeout: float) -> int:
        """Run a statement for effect, returning the affected row count."""

    def close(self) -> None:
        """Release the connection."""


Connector = Callable[[ConnectionConfig], Backend]


def describe_error(e: BaseException) -> str:
    """
    Reduce a SQLAlchemy (or driver) exception to a one-line message. The
    DBAPI exception is preferred, because SQLAlchemy's wrapper appends the
    statement and a documentation link.
    """
    orig = getattr(e, "orig", None) or e
    lines = [line for line in str(orig).strip().splitlines() if line.strip()]
    if len(lines) == 0:
        return type(orig).__name__

    return lines[0].strip()


@contextmanager
def deadline(
    seconds: float, cancel: Callable[[], Any] | None
) -> Iterator[threading.Event]:
    """
    Call `cancel` if the body of the with statement is still running after
    `seconds`. Yields an Event that's set if the deadline passed. With no
    cancel function, or a non-positive timeout, there's no deadline.
    """
    expired = threading.Event()
    if (cancel is None) or (seconds <= 0):
        yield expired
        return

    def expire() -> None:
        expired.set()
        # The statement may finish between the timer firing and the
        # cancel, in which case some drivers complain. Nothing to do.
        # pylint: disable=broad-except
        with suppress(Exception):
            cancel()

    timer = threading.Timer(seconds, expire)
    timer.daemon = True
    timer.start()
    try:
        yield expired
    finally:
        timer.cancel()


class SQLAlchemyBackend:
    """
    A Backend on top of a SQLAlchemy engine. The backend holds a single
    connection for its lifetime, so that a transaction opened with BEGIN
    spans the statements that follow it. The engine is expected to be in
    autocommit mode.
    """

    def __init__(self: Self, engine: Engine) -> None:
        self._engine = engine
        self._connection: Connection | None = None

    @property
    def engine(self: Self) -> Engine:
        """
        The underlying SQLAlchemy engine.
        """
        return self._engine

    def server_version(self: Self) -> str | None:
        """
        The server version, as reported by the dialect after connecting, or
        None if not known.
        """
        info = self._engine.dialect.server_version_info
        if info is None:
            return None

        return ".".join(str(part) for part in info)

    def ping(self: Self, timeout: float) -> None:
        """
        Make sure the database is reachable.

        :raises: BackendError if it isn't
        """
        self._run(PING_SQL, timeout, lambda _: None)

    def query(
        self: Self, sql: str, timeout: float, limit: int = 0
    ) -> ResultSet:
        def collect(result: CursorResult) -> ResultSet:
            # "ANALYZE", for instance, looks like a query but returns nothing.
            if not result.returns_rows:
                return ResultSet(columns=[], rows=[])

            columns = list(result.keys())
            if limit > 0:
                rows = result.fetchmany(limit + 1)
            else:
                rows = result.fetchall()

            # Discard whatever the cursor still holds.
            result.close()
            return ResultSet(columns=columns, rows=[tuple(row) for row in rows])

        return self._run(sql, timeout, collect)

    def execute(self: Self, sql: str, timeout: float) -> int:
        # Drivers report -1 for statements with no meaningful count.
        return self._run(sql, timeout, lambda result: max(result.rowcount, 0))

    def close(self: Self) -> None:
        if self._connection is not None:
            with suppress(sqlalchemy.exc.SQLAlchemyError):
                self._connection.close()
            self._connection = None

        self._engine.dispose()

    def _connect(self: Self) -> Connection:
        if self._connection is None:
            self._connection = self._engine.connect()
        elif self._connection.invalidated:
            # Lost mid-statement, e.g. to Ctrl-C. Let it reconnect.
            self._connection.rollback()

        return self._connection

    def _run(
        self: Self,
        sql: str,
        timeout: float,
        collect: Callable[[CursorResult], T],
    ) -> T:
        """
        Run a statement under a deadline, and collect whatever is needed
        from the result before the deadline is lifted.
        """
        connection: Connection | None = None
        expired: threading.Event | None = None
        try:
            connection = self._connect()
            dbapi_connection = connection.connection.dbapi_connection
            # psycopg2 connections have cancel(); sqlite3 connections have
            # interrupt().
            cancel = getattr(dbapi_connection, "cancel", None) or getattr(
                dbapi_connection, "interrupt", None
            )
            with deadline(timeout, cancel) as expired:
                result = connection.exec_driver_sql(
                    sql, execution_options=NO_PARAMETERS
                )
                return collect(result)

        except sqlalchemy.exc.SQLAlchemyError as e:
            if (connection is not None) and connection.invalidated:
                # The connection was lost. Clear the invalid state so the
                # next statement can reconnect.
                connection.rollback()

            if (expired is not None) and expired.is_set():
                raise BackendError(TIMEOUT_MESSAGE) from e

            raise BackendError(describe_error(e)) from e


def connect(config: ConnectionConfig, echo: bool = False) -> SQLAlchemyBackend:
    """
    Create a backend for a configuration, and make sure the database is
    reachable.

    :param config: the connection configuration
    :param echo: whether SQLAlchemy should log the SQL it runs

    :raises: BackendError if the connection can't be established
    """
    try:
        engine = sqlalchemy.create_engine(
            config.sqlalchemy_url(), **config.engine_options(echo=echo)
        )
    except sqlalchemy.exc.SQLAlchemyError as e:
        raise BackendError(describe_error(e)) from e
    except ImportError as e:
        raise BackendError(f"Database driver is not installed: {e}") from e

    backend = SQLAlchemyBackend(engine)
    try:
        backend.ping(config.connect_timeout)
    except BackendError:
        backend.close()
        raise

    return backend
