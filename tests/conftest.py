import io

import pytest

from pgshell.backend import ResultSet
from pgshell.config import ConnectionConfig
from pgshell.errors import BackendError
from pgshell.meta import Dispatcher
from pgshell.render import ResultRenderer
from pgshell.router import StatementRouter
from pgshell.state import SessionState


class FakeBackend:
    """
    An in-memory Backend. Statements are matched exactly (after stripping
    white space); anything without a canned answer returns an empty result
    or 0 rows affected.
    """

    def __init__(
        self,
        results: dict[str, ResultSet] | None = None,
        affected: dict[str, int] | None = None,
        failures: dict[str, str] | None = None,
    ):
        self.results = results or {}
        self.affected = affected or {}
        self.failures = failures or {}
        self.calls: list[tuple[str, str, float]] = []
        self.limits: list[int] = []
        self.closed = False

    def _check(self, sql: str) -> None:
        if (message := self.failures.get(sql.strip())) is not None:
            raise BackendError(message)

    def query(self, sql: str, timeout: float, limit: int = 0) -> ResultSet:
        self.calls.append(("query", sql, timeout))
        self.limits.append(limit)
        self._check(sql)
        result = self.results.get(sql.strip(), ResultSet(columns=[], rows=[]))
        rows = list(result.rows)
        if limit > 0:
            rows = rows[: limit + 1]
        return ResultSet(columns=list(result.columns), rows=rows)

    def execute(self, sql: str, timeout: float) -> int:
        self.calls.append(("execute", sql, timeout))
        self._check(sql)
        return self.affected.get(sql.strip(), 0)

    def close(self) -> None:
        self.closed = True

    @property
    def statements(self) -> list[str]:
        return [sql for _, sql, _ in self.calls]


class FakeConnector:
    """
    A Connector that hands out FakeBackends, or fails for the databases
    listed in `unreachable`.
    """

    def __init__(self, unreachable: set[str] | None = None):
        self.unreachable = unreachable or set()
        self.configs: list[ConnectionConfig] = []
        self.backends: list[FakeBackend] = []

    def __call__(self, config: ConnectionConfig) -> FakeBackend:
        self.configs.append(config)
        if config.database_name in self.unreachable:
            raise BackendError(
                f'database "{config.database_name}" does not exist'
            )

        backend = FakeBackend()
        self.backends.append(backend)
        return backend


@pytest.fixture
def out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def config() -> ConnectionConfig:
    return ConnectionConfig(
        host="db.example.com", port=5433, username="alice", database="testdb"
    )


@pytest.fixture
def state() -> SessionState:
    return SessionState(current_database="testdb")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def renderer(out: io.StringIO) -> ResultRenderer:
    return ResultRenderer(out)


@pytest.fixture
def router(
    state: SessionState,
    backend: FakeBackend,
    renderer: ResultRenderer,
    out: io.StringIO,
) -> StatementRouter:
    return StatementRouter(state, backend, renderer, out)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector(unreachable={"nosuchdb"})


@pytest.fixture
def dispatcher(
    state: SessionState,
    router: StatementRouter,
    config: ConnectionConfig,
    connector: FakeConnector,
    out: io.StringIO,
) -> Dispatcher:
    return Dispatcher(state, router, config, connector, out)


def output_lines(out: io.StringIO) -> list[str]:
    return out.getvalue().split("\n")
