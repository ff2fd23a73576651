import threading

import pytest
from sqlalchemy.exc import OperationalError

from pgshell.backend import (
    TIMEOUT_MESSAGE,
    SQLAlchemyBackend,
    connect,
    deadline,
    describe_error,
)
from pgshell.config import ConnectionConfig
from pgshell.errors import BackendError


@pytest.fixture
def sqlite_config(tmp_path):
    return ConnectionConfig(url=f"sqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
def sqlite_backend(sqlite_config):
    backend = connect(sqlite_config)
    yield backend
    backend.close()


def test_connect_returns_sqlalchemy_backend(sqlite_backend):
    assert isinstance(sqlite_backend, SQLAlchemyBackend)
    assert sqlite_backend.engine.dialect.name == "sqlite"


def test_execute_and_query(sqlite_backend):
    assert sqlite_backend.execute("CREATE TABLE t (id INTEGER, name TEXT)", 5) == 0
    assert (
        sqlite_backend.execute("INSERT INTO t VALUES (1, 'a'), (2, NULL)", 5) == 2
    )

    result = sqlite_backend.query("SELECT id, name FROM t ORDER BY id", 5)
    assert result.columns == ["id", "name"]
    assert list(result.rows) == [(1, "a"), (2, None)]


def test_percent_sign_is_not_a_parameter(sqlite_backend):
    result = sqlite_backend.query("SELECT 'a%s' AS v", 5)
    assert list(result.rows) == [("a%s",)]


def test_query_without_rows(sqlite_backend):
    sqlite_backend.execute("CREATE TABLE t (id INTEGER)", 5)
    result = sqlite_backend.query("ANALYZE t", 5)
    assert result.columns == []
    assert list(result.rows) == []


def test_error_is_one_line(sqlite_backend):
    with pytest.raises(BackendError) as info:
        sqlite_backend.query("SELECT * FROM nope", 5)
    assert str(info.value) == "no such table: nope"


def test_backend_usable_after_error(sqlite_backend):
    with pytest.raises(BackendError):
        sqlite_backend.execute("INSERT INTO nope VALUES (1)", 5)
    assert list(sqlite_backend.query("SELECT 1", 5).rows) == [(1,)]


def test_transaction_spans_statements(sqlite_backend):
    sqlite_backend.execute("CREATE TABLE t (id INTEGER)", 5)
    sqlite_backend.execute("BEGIN", 5)
    sqlite_backend.execute("INSERT INTO t VALUES (1)", 5)
    sqlite_backend.execute("ROLLBACK", 5)
    assert list(sqlite_backend.query("SELECT count(*) FROM t", 5).rows) == [(0,)]

    sqlite_backend.execute("BEGIN", 5)
    sqlite_backend.execute("INSERT INTO t VALUES (1)", 5)
    sqlite_backend.execute("COMMIT", 5)
    assert list(sqlite_backend.query("SELECT count(*) FROM t", 5).rows) == [(1,)]


def test_statements_autocommit(sqlite_config):
    first = connect(sqlite_config)
    first.execute("CREATE TABLE t (id INTEGER)", 5)
    first.execute("INSERT INTO t VALUES (1)", 5)

    second = connect(sqlite_config)
    try:
        assert list(second.query("SELECT id FROM t", 5).rows) == [(1,)]
    finally:
        first.close()
        second.close()


def test_connect_failure(tmp_path):
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'missing' / 'x.db'}")
    with pytest.raises(BackendError):
        connect(config)


def test_connect_missing_driver():
    config = ConnectionConfig(url="postgresql+nosuchdriver://localhost/db")
    with pytest.raises(BackendError):
        connect(config)


def test_server_version(sqlite_backend):
    assert sqlite_backend.server_version()


def test_close_is_repeatable(sqlite_config):
    backend = connect(sqlite_config)
    backend.close()
    backend.close()


def test_deadline_cancels_when_expired():
    cancelled = threading.Event()
    with deadline(0.01, cancelled.set) as expired:
        assert cancelled.wait(timeout=5)
    assert expired.is_set()


def test_deadline_not_reached():
    cancelled = threading.Event()
    with deadline(5, cancelled.set) as expired:
        pass
    assert not expired.is_set()
    assert not cancelled.is_set()


@pytest.mark.parametrize("seconds,cancel", [(0, lambda: None), (5, None)])
def test_no_deadline(seconds, cancel):
    with deadline(seconds, cancel) as expired:
        pass
    assert not expired.is_set()


def test_timeout_message(sqlite_backend):
    # A recursive query that runs until interrupted.
    sql = (
        "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) "
        "SELECT count(*) FROM c"
    )
    with pytest.raises(BackendError, match=TIMEOUT_MESSAGE):
        sqlite_backend.query(sql, 0.2)


def test_describe_error():
    e = OperationalError(
        "SELECT * FROM nope", {}, Exception("no such table: nope\nHINT: check it")
    )
    assert describe_error(e) == "no such table: nope"
    assert describe_error(ValueError("")) == "ValueError"


def test_query_stops_collecting_past_limit(sqlite_backend):
    # Without the limit this would run until the deadline.
    sql = (
        "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) "
        "SELECT x FROM c"
    )
    result = sqlite_backend.query(sql, 5, limit=5)
    assert result.columns == ["x"]
    assert result.rows == [(1,), (2,), (3,), (4,), (5,), (6,)]


def test_query_limit_larger_than_result(sqlite_backend):
    result = sqlite_backend.query("SELECT 1 UNION ALL SELECT 2", 5, limit=5)
    assert result.rows == [(1,), (2,)]
    assert list(sqlite_backend.query("SELECT 3", 5).rows) == [(3,)]


def test_reconnects_after_lost_connection(sqlite_backend):
    assert list(sqlite_backend.query("SELECT 1", 5).rows) == [(1,)]
    sqlite_backend._connection.invalidate()
    assert list(sqlite_backend.query("SELECT 2", 5).rows) == [(2,)]
