"""
The session loop: read a statement, run it as a meta-command or as SQL,
display the outcome, repeat.
"""

import sys
from typing import Self, TextIO

from pgshell.backend import Backend, Connector, connect
from pgshell.config import ConnectionConfig
from pgshell.meta import Dispatcher, Outcome
from pgshell.reader import LineSource, StatementReader
from pgshell.render import ResultRenderer
from pgshell.router import StatementRouter
from pgshell.state import DEFAULT_MAX_DISPLAY_ROWS, SessionState, make_prompt


class Shell:
    """
    One interactive session against one backend at a time. Everything the
    session reads and writes goes through `source` and `out`, so the whole
    thing can be driven from a test.
    """

    # pylint: disable=too-many-arguments,too-many-positional-arguments
    def __init__(
        self: Self,
        config: ConnectionConfig,
        backend: Backend,
        source: LineSource,
        out: TextIO | None = None,
        connector: Connector = connect,
        max_display_rows: int = DEFAULT_MAX_DISPLAY_ROWS,
    ) -> None:
        """
        :param config: the configuration `backend` was created from
        :param backend: the connected backend. The shell owns it from here on.
        :param source: where input lines come from
        :param out: where output goes. Defaults to standard output.
        :param connector: makes new backends, for switching databases
        :param max_display_rows: the initial cap on displayed rows
        """
        if out is None:
            out = sys.stdout
        self.out = out
        self.state = SessionState(
            current_database=config.database_name,
            max_display_rows=max_display_rows,
        )
        self.renderer = ResultRenderer(out)
        self.router = StatementRouter(self.state, backend, self.renderer, out)
        self.dispatcher = Dispatcher(
            self.state, self.router, config, connector, out
        )
        self.reader = StatementReader(source)

    def prompt(self: Self, continuation: bool = False) -> str:
        """
        The prompt for the current state.
        """
        return make_prompt(self.state, continuation)

    def process(self: Self, unit: str) -> Outcome:
        """
        Run one statement.
        """
        return self.dispatcher.execute(unit)

    def run(self: Self) -> None:
        """
        Read and process statements until told to quit or the input ends.
        """
        while True:
            try:
                unit = self.reader.read_statement(
                    self.prompt(), self.prompt(continuation=True)
                )
                if unit == "":
                    continue

                if self.process(unit) is Outcome.TERMINATE:
                    break
            except EOFError:
                # Ctrl-D, or the end of piped input.
                print(file=self.out)
                break
            except KeyboardInterrupt:
                # Ctrl-C throws away the statement being typed, or abandons
                # the one running.
                print(file=self.out)
                continue

    def close(self: Self) -> None:
        """
        Close the current backend.
        """
        self.router.backend.close()
