"""
Running SQL statements. The router decides whether a statement returns rows
or is run for effect, handles the transaction control statements, and
enforces a time limit on every statement.
"""

import re
from enum import StrEnum
from time import perf_counter
from typing import Self, TextIO

from pgshell.backend import Backend
from pgshell.errors import BackendError
from pgshell.reader import STATEMENT_TERMINATOR
from pgshell.render import ResultRenderer, error
from pgshell.state import SessionState

STATEMENT_TIMEOUT = 60.0
TRANSACTION_TIMEOUT = 30.0
QUERY_KEYWORDS = frozenset(
    {"SELECT", "SHOW", "WITH", "TABLE", "VALUES", "EXPLAIN", "ANALYZE"}
)
COMMAND_TAGS = frozenset({"INSERT", "UPDATE", "DELETE", "CREATE", "DROP", "ALTER"})
GENERIC_COMMAND_TAG = "COMMAND"
LEADING_KEYWORD = re.compile(r"^\s*([A-Za-z_]+)")


class StatementKind(StrEnum):
    """
    How a statement is run.
    """

    QUERY = "query"
    COMMAND = "command"


class TransactionKeyword(StrEnum):
    """
    The transaction control statements the shell tracks. Matched against
    the whole (trimmed, unterminated) statement, case-blind.
    """

    BEGIN = "BEGIN"
    START_TRANSACTION = "START TRANSACTION"
    COMMIT = "COMMIT"
    ROLLBACK = "ROLLBACK"

    @property
    def tag(self: Self) -> str:
        """
        The acknowledgment displayed when the statement succeeds.
        """
        match self:
            case TransactionKeyword.START_TRANSACTION:
                return TransactionKeyword.BEGIN.value
            case _:
                return self.value

    @property
    def opens_transaction(self: Self) -> bool:
        """
        Whether the session is in a transaction after this statement.
        """
        return self in (
            TransactionKeyword.BEGIN,
            TransactionKeyword.START_TRANSACTION,
        )


def strip_statement(sql: str) -> str:
    """
    Remove surrounding white space and one trailing ";".
    """
    sql = sql.strip()
    if sql.endswith(STATEMENT_TERMINATOR):
        sql = sql[: -len(STATEMENT_TERMINATOR)]

    return sql.strip()


def leading_keyword(sql: str) -> str:
    """
    The first word of a statement, upper-cased, or "" if there isn't one.
    """
    if (m := LEADING_KEYWORD.match(sql)) is None:
        return ""

    return m.group(1).upper()


def classify(sql: str) -> StatementKind:
    """
    Decide whether a statement returns rows (QUERY) or is run for effect
    (COMMAND), based on its first word.
    """
    if leading_keyword(sql) in QUERY_KEYWORDS:
        return StatementKind.QUERY

    return StatementKind.COMMAND


def command_tag(sql: str) -> str:
    """
    The tag displayed, with the affected row count, after a command.
    """
    keyword = leading_keyword(sql)
    if keyword in COMMAND_TAGS:
        return keyword

    return GENERIC_COMMAND_TAG


def transaction_keyword(sql: str) -> TransactionKeyword | None:
    """
    If the (stripped) statement is one of the transaction control
    statements, return it.
    """
    try:
        return TransactionKeyword(sql.strip().upper())
    except ValueError:
        return None


class StatementRouter:
    """
    Runs SQL statements against the current backend and displays the
    outcome. The dispatcher replaces `backend` when the session switches
    databases.
    """

    def __init__(
        self: Self,
        state: SessionState,
        backend: Backend,
        renderer: ResultRenderer,
        out: TextIO,
    ) -> None:
        self.state = state
        self.backend = backend
        self.renderer = renderer
        self.out = out

    def run(self: Self, sql: str) -> bool:
        """
        Run a SQL statement and display the outcome. A failure is displayed
        and otherwise ignored.

        :param sql: the statement, with or without its terminating ";"

        :returns: True if it ran successfully (or was empty). False if it
            failed (and an error was reported).
        """
        started = perf_counter()
        sql = strip_statement(sql)
        if sql == "":
            return True

        try:
            match transaction_keyword(sql):
                case None:
                    pass
                case keyword:
                    self._run_transaction_control(keyword, started)
                    return True

            match classify(sql):
                case StatementKind.QUERY:
                    self._run_query(sql, started)
                case StatementKind.COMMAND:
                    self._run_command(sql, started)

            return True

        except BackendError as e:
            error(str(e), self.out)
            print(file=self.out)
            return False

    def _timing_start(self: Self, started: float) -> float | None:
        return started if self.state.timing_enabled else None

    def _run_transaction_control(
        self: Self, keyword: TransactionKeyword, started: float
    ) -> None:
        self.backend.execute(keyword.value, TRANSACTION_TIMEOUT)
        # Only after the server has accepted the statement.
        self.state.in_transaction = keyword.opens_transaction
        print(keyword.tag, file=self.out)
        if self.state.timing_enabled:
            self.renderer.timing(started)

    def _run_query(self: Self, sql: str, started: float) -> None:
        result = self.backend.query(
            sql, STATEMENT_TIMEOUT, limit=self.state.max_display_rows
        )
        self.renderer.render(
            result,
            expanded=self.state.expanded_mode,
            max_rows=self.state.max_display_rows,
            started=self._timing_start(started),
        )

    def _run_command(self: Self, sql: str, started: float) -> None:
        affected = self.backend.execute(sql, STATEMENT_TIMEOUT)
        print(f"{command_tag(sql)} {affected:d}", file=self.out)
        if self.state.timing_enabled:
            self.renderer.timing(started)
        print(file=self.out)
