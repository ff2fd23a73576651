"""
Meta-commands: the backslash commands (and the "exit", "quit" and "help"
keywords) that control the session instead of going to the database as SQL.

The commands live in a static catalog, CATALOG. Each entry names the tokens
that invoke it, whether it takes an argument, its help text and a handler.
The Dispatcher looks the first token of a statement up in the catalog and
calls the handler. The catalog also drives the help display and readline
completion.
"""

# pylint: disable=too-few-public-methods

import re
from dataclasses import dataclass
from enum import Enum, StrEnum
from functools import partial
from pathlib import Path
from typing import Callable, Self, TextIO
from typing import Sequence as Seq

from pgshell.backend import Connector
from pgshell.config import ConnectionConfig
from pgshell.errors import BackendError
from pgshell.reader import META_COMMAND_PREFIX, StatementReader, StreamLineSource
from pgshell.render import error
from pgshell.router import StatementRouter, TransactionKeyword
from pgshell.state import SessionState

DESCRIBE_TIMEOUT = 30.0
DEFAULT_SCHEMA = "public"
DIGITS = re.compile(r"^\d+$")
USAGE_WIDTH = 24

LIST_DATABASES_SQL = (
    'SELECT datname AS "Name", '
    'pg_catalog.pg_get_userbyid(datdba) AS "Owner", '
    'pg_catalog.pg_encoding_to_char(encoding) AS "Encoding" '
    "FROM pg_catalog.pg_database ORDER BY datname"
)
LIST_TABLES_SQL = (
    'SELECT schemaname AS "Schema", tablename AS "Name", '
    'tableowner AS "Owner" FROM pg_catalog.pg_tables '
    "WHERE schemaname NOT IN ('pg_catalog', 'information_schema') "
    "ORDER BY schemaname, tablename"
)
LIST_DEFAULT_SCHEMA_TABLES_SQL = (
    "SELECT tablename FROM pg_catalog.pg_tables "
    f"WHERE schemaname = '{DEFAULT_SCHEMA}' ORDER BY tablename"
)
LIST_SCHEMAS_SQL = (
    'SELECT nspname AS "Name", '
    'pg_catalog.pg_get_userbyid(nspowner) AS "Owner" '
    "FROM pg_catalog.pg_namespace "
    "WHERE nspname !~ '^pg_' AND nspname <> 'information_schema' "
    "ORDER BY nspname"
)
LIST_VIEWS_SQL = (
    'SELECT schemaname AS "Schema", viewname AS "Name", '
    'viewowner AS "Owner" FROM pg_catalog.pg_views '
    "WHERE schemaname NOT IN ('pg_catalog', 'information_schema') "
    "ORDER BY schemaname, viewname"
)
LIST_INDEXES_SQL = (
    'SELECT schemaname AS "Schema", indexname AS "Name", '
    'tablename AS "Table" FROM pg_catalog.pg_indexes '
    "WHERE schemaname NOT IN ('pg_catalog', 'information_schema') "
    "ORDER BY schemaname, indexname"
)
LIST_SEQUENCES_SQL = (
    'SELECT schemaname AS "Schema", sequencename AS "Name", '
    'sequenceowner AS "Owner" FROM pg_catalog.pg_sequences '
    "WHERE schemaname NOT IN ('pg_catalog', 'information_schema') "
    "ORDER BY schemaname, sequencename"
)
LIST_FUNCTIONS_SQL = (
    'SELECT n.nspname AS "Schema", p.proname AS "Name", '
    'pg_catalog.pg_get_function_result(p.oid) AS "Result data type" '
    "FROM pg_catalog.pg_proc p "
    "LEFT JOIN pg_catalog.pg_namespace n ON n.oid = p.pronamespace "
    "WHERE n.nspname NOT IN ('pg_catalog', 'information_schema') "
    "ORDER BY n.nspname, p.proname"
)
LIST_ROLES_SQL = (
    'SELECT rolname AS "Role name", rolsuper AS "Superuser", '
    'rolinherit AS "Inherit", rolcreaterole AS "Create role", '
    'rolcreatedb AS "Create DB" FROM pg_catalog.pg_roles ORDER BY rolname'
)
DESCRIBE_TABLE_SQL = """\
SELECT a.attname AS "Column",
       pg_catalog.format_type(a.atttypid, a.atttypmod) AS "Type",
       CASE WHEN a.attnotnull THEN 'not null' ELSE '' END AS "Modifiers"
FROM pg_catalog.pg_attribute a
WHERE a.attrelid = (
    SELECT c.oid FROM pg_catalog.pg_class c
    LEFT JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relname = '{table}' AND n.nspname = '{schema}'
) AND a.attnum > 0 AND NOT a.attisdropped
ORDER BY a.attnum"""

SQL_HELP_TOPICS = (
    "SELECT, INSERT, UPDATE, DELETE",
    "CREATE TABLE, DROP TABLE, ALTER TABLE",
    "CREATE INDEX, DROP INDEX",
    "BEGIN, COMMIT, ROLLBACK",
)


class Outcome(Enum):
    """
    What the dispatcher did with a statement.
    """

    NOT_META = "not a meta-command"
    HANDLED = "handled"
    TERMINATE = "terminate"


class Argument(Enum):
    """
    Whether a meta-command takes an argument.
    """

    NONE = "none"
    OPTIONAL = "optional"
    REQUIRED = "required"


class Section(StrEnum):
    """
    Help sections, in display order.
    """

    GENERAL = "General"
    CONNECTION = "Connection"
    INFORMATIONAL = "Informational"
    FORMATTING = "Formatting"
    INPUT = "Input/Output"
    QUERY_BUFFER = "Query Buffer"


Handler = Callable[["Dispatcher", str | None], Outcome]


@dataclass(frozen=True)
class MetaCommand:
    """
    A catalog entry. Backslash tokens match exactly (case matters); keyword
    tokens match case-blind, and only when they're the whole statement.
    """

    commands: Seq[str]
    usage: str
    help: str
    section: Section
    handler: Handler
    argument: Argument = Argument.NONE

    @property
    def name(self: Self) -> str:
        """
        The primary token, used in messages.
        """
        return self.commands[0]


def parse_switch(value: str) -> bool | None:
    """
    Parse an "on"/"off" style argument. Returns None if it's neither.
    """
    match value.lower():
        case "on" | "true" | "yes" | "1":
            return True
        case "off" | "false" | "no" | "0":
            return False
        case _:
            return None


def table_identifier(name: str) -> str:
    """
    Turn a table name, as typed, into the name stored in the catalog: a
    double-quoted name is used as-is; anything else is folded to lower case.
    """
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return name[1:-1].replace('""', '"')

    return name.lower()


def sql_literal(text: str) -> str:
    """
    Escape a string for use inside a single-quoted SQL literal.
    """
    return text.replace("'", "''")


def _show_help(d: "Dispatcher", _: str | None) -> Outcome:
    print(help_text(), file=d.out)
    return Outcome.HANDLED


def _terminate(_d: "Dispatcher", _: str | None) -> Outcome:
    return Outcome.TERMINATE


def _show_sql_help(d: "Dispatcher", topic: str | None) -> Outcome:
    if topic is None:
        print("Available help:", file=d.out)
        for line in SQL_HELP_TOPICS:
            print(f"  {line}", file=d.out)
        print(
            f"Use {META_COMMAND_PREFIX}h <command> for help on a specific "
            "command\n",
            file=d.out,
        )
    else:
        print(f"No detailed help available for: {topic}", file=d.out)
        print("Please refer to the PostgreSQL documentation.\n", file=d.out)

    return Outcome.HANDLED


def _run_query(sql: str, d: "Dispatcher", _: str | None) -> Outcome:
    d.router.run(sql)
    return Outcome.HANDLED


def query_handler(sql: str) -> Handler:
    """
    A handler that runs a fixed query, just as if the user had typed it.
    """
    return partial(_run_query, sql)


def _connect(d: "Dispatcher", database: str | None) -> Outcome:
    assert database is not None
    d.switch_database(database.split()[0])
    return Outcome.HANDLED


def _describe(d: "Dispatcher", table: str | None) -> Outcome:
    if table is None:
        d.router.run(LIST_DEFAULT_SCHEMA_TABLES_SQL)
    else:
        d.describe_table(table)

    return Outcome.HANDLED


def _toggle(attr: str, label: str, d: "Dispatcher", value: str | None) -> Outcome:
    if value is None:
        setting = not getattr(d.state, attr)
    elif (setting := parse_switch(value)) is None:
        error(f'unrecognized value "{value}": Boolean expected', d.out)
        return Outcome.HANDLED

    setattr(d.state, attr, setting)
    print(f"{label} is {'on' if setting else 'off'}.", file=d.out)
    return Outcome.HANDLED


def _conninfo(d: "Dispatcher", _: str | None) -> Outcome:
    config = d.config
    message = (
        f'You are connected to database "{d.state.current_database}" as user '
        f'"{config.user_name}" on host "{config.host_name}"'
    )
    if config.port_number is not None:
        message = f'{message} at port "{config.port_number}"'

    print(f"{message}.", file=d.out)
    return Outcome.HANDLED


def _limit(d: "Dispatcher", value: str | None) -> Outcome:
    match value:
        case None:
            print(
                f"Limit is currently {d.state.max_display_rows:,}.", file=d.out
            )
        case s if DIGITS.match(s) is not None:
            d.state.max_display_rows = int(s)
        case _:
            error(
                f"{META_COMMAND_PREFIX}limit takes a non-negative integer",
                d.out,
            )

    return Outcome.HANDLED


def _include(d: "Dispatcher", path: str | None) -> Outcome:
    assert path is not None
    return d.run_file(Path(path))


CATALOG: Seq[MetaCommand] = (
    MetaCommand(
        commands=("\\?", "help"),
        usage="\\?, help",
        help="show this help",
        section=Section.GENERAL,
        handler=_show_help,
    ),
    MetaCommand(
        commands=("\\q", "exit", "quit"),
        usage="\\q, exit, quit",
        help="quit",
        section=Section.GENERAL,
        handler=_terminate,
    ),
    MetaCommand(
        commands=("\\c", "\\connect"),
        usage="\\c[onnect] DBNAME",
        help="connect to another database",
        section=Section.CONNECTION,
        handler=_connect,
        argument=Argument.REQUIRED,
    ),
    MetaCommand(
        commands=("\\conninfo",),
        usage="\\conninfo",
        help="display information about the connection",
        section=Section.CONNECTION,
        handler=_conninfo,
    ),
    MetaCommand(
        commands=("\\d",),
        usage="\\d [NAME]",
        help="describe a table, or list the tables",
        section=Section.INFORMATIONAL,
        handler=_describe,
        argument=Argument.OPTIONAL,
    ),
    MetaCommand(
        commands=("\\dt", "\\dt+"),
        usage="\\dt[+]",
        help="list tables",
        section=Section.INFORMATIONAL,
        handler=query_handler(LIST_TABLES_SQL),
    ),
    MetaCommand(
        commands=("\\dv", "\\dv+"),
        usage="\\dv[+]",
        help="list views",
        section=Section.INFORMATIONAL,
        handler=query_handler(LIST_VIEWS_SQL),
    ),
    MetaCommand(
        commands=("\\di", "\\di+"),
        usage="\\di[+]",
        help="list indexes",
        section=Section.INFORMATIONAL,
        handler=query_handler(LIST_INDEXES_SQL),
    ),
    MetaCommand(
        commands=("\\ds", "\\ds+"),
        usage="\\ds[+]",
        help="list sequences",
        section=Section.INFORMATIONAL,
        handler=query_handler(LIST_SEQUENCES_SQL),
    ),
    MetaCommand(
        commands=("\\df", "\\df+"),
        usage="\\df[+]",
        help="list functions",
        section=Section.INFORMATIONAL,
        handler=query_handler(LIST_FUNCTIONS_SQL),
    ),
    MetaCommand(
        commands=("\\dn", "\\dn+"),
        usage="\\dn[+]",
        help="list schemas",
        section=Section.INFORMATIONAL,
        handler=query_handler(LIST_SCHEMAS_SQL),
    ),
    MetaCommand(
        commands=("\\du", "\\du+"),
        usage="\\du[+]",
        help="list roles",
        section=Section.INFORMATIONAL,
        handler=query_handler(LIST_ROLES_SQL),
    ),
    MetaCommand(
        commands=("\\l", "\\list"),
        usage="\\l[ist]",
        help="list databases",
        section=Section.INFORMATIONAL,
        handler=query_handler(LIST_DATABASES_SQL),
    ),
    MetaCommand(
        commands=("\\x",),
        usage="\\x [on|off]",
        help="toggle expanded output",
        section=Section.FORMATTING,
        handler=partial(_toggle, "expanded_mode", "Expanded display"),
        argument=Argument.OPTIONAL,
    ),
    MetaCommand(
        commands=("\\timing",),
        usage="\\timing [on|off]",
        help="toggle timing of commands",
        section=Section.FORMATTING,
        handler=partial(_toggle, "timing_enabled", "Timing"),
        argument=Argument.OPTIONAL,
    ),
    MetaCommand(
        commands=("\\limit",),
        usage="\\limit [N]",
        help="show or set the maximum rows displayed (0 = all)",
        section=Section.FORMATTING,
        handler=_limit,
        argument=Argument.OPTIONAL,
    ),
    MetaCommand(
        commands=("\\i",),
        usage="\\i FILE",
        help="execute commands from a file",
        section=Section.INPUT,
        handler=_include,
        argument=Argument.REQUIRED,
    ),
    MetaCommand(
        commands=("\\h",),
        usage="\\h [NAME]",
        help="help on syntax of SQL commands",
        section=Section.QUERY_BUFFER,
        handler=_show_sql_help,
        argument=Argument.OPTIONAL,
    ),
)

# Backslash commands, by exact token.
COMMANDS: dict[str, MetaCommand] = {
    token: entry
    for entry in CATALOG
    for token in entry.commands
    if token.startswith(META_COMMAND_PREFIX)
}

# Shortcut keywords, by lower-cased token.
KEYWORDS: dict[str, MetaCommand] = {
    token.lower(): entry
    for entry in CATALOG
    for token in entry.commands
    if not token.startswith(META_COMMAND_PREFIX)
}


def find_command(unit: str) -> tuple[MetaCommand, str | None] | None:
    """
    Look a statement up in the catalog.

    :returns: the matching entry and the argument (None if there isn't one),
        or None if the statement isn't a meta-command
    """
    match unit.strip().split(maxsplit=1):
        case []:
            return None
        case [token]:
            argument = None
        case [token, rest]:
            argument = rest.strip()

    if (entry := COMMANDS.get(token)) is not None:
        return (entry, argument)

    if argument is None and (entry := KEYWORDS.get(token.lower())) is not None:
        return (entry, None)

    return None


def help_text() -> str:
    """
    The help display, generated from the catalog.
    """
    lines: list[str] = []
    for section in Section:
        entries = [entry for entry in CATALOG if entry.section == section]
        if len(entries) == 0:
            continue

        lines.append(section.value)
        for entry in entries:
            lines.append(f"  {entry.usage.ljust(USAGE_WIDTH)}{entry.help}")
        lines.append("")

    lines.append("Transaction")
    lines.append(
        f"  {TransactionKeyword.BEGIN.value.ljust(USAGE_WIDTH)}start a transaction"
    )
    lines.append(
        f"  {TransactionKeyword.COMMIT.value.ljust(USAGE_WIDTH)}"
        "commit the current transaction"
    )
    lines.append(
        f"  {TransactionKeyword.ROLLBACK.value.ljust(USAGE_WIDTH)}"
        "roll back the current transaction"
    )
    lines.append("")
    lines.append(
        'Anything else is interpreted as SQL. SQL statements must end with a ";",'
    )
    lines.append("and may span multiple lines.")
    return "\n".join(lines)


class Dispatcher:
    """
    Recognizes and runs meta-commands. Anything that isn't a meta-command is
    left for the caller to run as SQL (see execute()).
    """

    def __init__(
        self: Self,
        state: SessionState,
        router: StatementRouter,
        config: ConnectionConfig,
        connector: Connector,
        out: TextIO,
    ) -> None:
        """
        :param state: the session state
        :param router: runs SQL; its backend is replaced on a database switch
        :param config: the configuration of the current connection
        :param connector: makes a new backend from a configuration
        :param out: where output goes
        """
        self.state = state
        self.router = router
        self.config = config
        self.connector = connector
        self.out = out
        # Files being run by \i, to catch a file that includes itself.
        self._running_files: set[Path] = set()

    def dispatch(self: Self, unit: str) -> Outcome:
        """
        Run a statement if it's a meta-command.

        :returns: Outcome.NOT_META if it isn't a meta-command;
            Outcome.TERMINATE if the session should end
        """
        match find_command(unit):
            case None:
                return Outcome.NOT_META
            case (entry, argument):
                pass

        match (entry.argument, argument):
            case (Argument.REQUIRED, None):
                error(f"{entry.name}: missing required argument", self.out)
                return Outcome.HANDLED
            case (Argument.NONE, str(extra)):
                print(f'{entry.name}: extra argument "{extra}" ignored', file=self.out)
                argument = None
            case _:
                pass

        return entry.handler(self, argument)

    def execute(self: Self, unit: str) -> Outcome:
        """
        Run a statement: as a meta-command if it is one, otherwise as SQL.
        """
        outcome = self.dispatch(unit)
        if outcome is Outcome.NOT_META:
            self.router.run(unit)

        return outcome

    def switch_database(self: Self, database: str) -> None:
        """
        Connect to another database. The current connection is closed only
        once the new one is known to work; on failure, nothing changes.
        """
        config = self.config.with_database(database)
        try:
            backend = self.connector(config)
        except BackendError as e:
            error(f'unable to connect to database "{database}": {e}', self.out)
            return

        self.router.backend.close()
        self.router.backend = backend
        self.config = config
        self.state.current_database = database
        # Any open transaction went away with the old connection.
        self.state.in_transaction = False
        print(
            f'You are now connected to database "{database}" as user '
            f'"{config.user_name}".',
            file=self.out,
        )

    def describe_table(self: Self, name: str) -> None:
        """
        Display the columns of a table in the default schema.
        """
        table = table_identifier(name)
        sql = DESCRIBE_TABLE_SQL.format(
            table=sql_literal(table), schema=DEFAULT_SCHEMA
        )
        try:
            result = self.router.backend.query(sql, DESCRIBE_TIMEOUT)
        except BackendError as e:
            error(str(e), self.out)
            print(file=self.out)
            return

        rows = list(result.rows)
        if len(rows) == 0:
            print(f'Did not find any relation named "{name}".', file=self.out)
            return

        result.rows = rows
        self.router.renderer.render_describe(table, result)

    def run_file(self: Self, path: Path) -> Outcome:
        """
        Run the statements in a file, one at a time, as if they'd been typed.
        Errors in individual statements don't stop the file. A file can't
        include itself, directly or through other files.

        :returns: Outcome.TERMINATE if the file asked to quit
        """
        path = path.expanduser()
        resolved = path.resolve()
        if resolved in self._running_files:
            error(f'"{path}": recursive {META_COMMAND_PREFIX}i', self.out)
            return Outcome.HANDLED

        try:
            f = path.open(mode="r", encoding="utf-8")
        except OSError as e:
            error(f'"{path}": {e.strerror}', self.out)
            return Outcome.HANDLED

        self._running_files.add(resolved)
        try:
            with f:
                reader = StatementReader(StreamLineSource(f))
                while True:
                    try:
                        unit = reader.read_statement("", "")
                    except EOFError:
                        break

                    if unit == "":
                        continue

                    if self.execute(unit) is Outcome.TERMINATE:
                        return Outcome.TERMINATE
        finally:
            self._running_files.discard(resolved)

        if reader.unterminated is not None:
            error(
                f'"{path}": File ended with an incomplete SQL statement.',
                self.out,
            )

        return Outcome.HANDLED
