"""
Reading input. A LineSource produces one line at a time; StatementReader
groups those lines into complete statements.
"""

from typing import Protocol, Self, TextIO

from termcolor import colored

META_COMMAND_PREFIX = "\\"
STATEMENT_TERMINATOR = ";"
SHORTCUT_KEYWORDS = frozenset({"exit", "quit", "help"})


class LineSource(Protocol):
    """
    Something that produces lines of input. read_line() returns a line
    without its line terminator, and raises EOFError at the end of the
    input. set_prompt() is advisory; non-interactive sources ignore it.
    """

    def set_prompt(self, prompt: str) -> None:
        """Set the prompt for the next read_line() call."""

    def read_line(self) -> str:
        """Read one line."""


class StreamLineSource:
    """
    Reads lines from a text stream, such as a script file or a non-terminal
    standard input. No prompt is displayed.
    """

    def __init__(self: Self, stream: TextIO) -> None:
        self._stream = stream

    def set_prompt(self: Self, prompt: str) -> None:
        pass

    def read_line(self: Self) -> str:
        line = self._stream.readline()
        if line == "":
            raise EOFError()

        return line.rstrip("\r\n")


class ReadlineLineSource:
    """
    Reads lines from the terminal with input(), which uses the readline
    library (and its history and bindings), if it's been loaded.
    """

    def __init__(self: Self, color: bool = True) -> None:
        self._prompt = ""
        self._color = color

    def set_prompt(self: Self, prompt: str) -> None:
        self._prompt = prompt

    def read_line(self: Self) -> str:
        prompt = self._prompt
        if self._color:
            prompt = colored(prompt, "cyan", attrs=["bold"])

        return input(prompt)


def is_meta_command(line: str) -> bool:
    """
    Whether a (trimmed) line starts with the meta-command prefix.
    """
    return line.startswith(META_COMMAND_PREFIX)


def is_shortcut_keyword(line: str) -> bool:
    """
    Whether a (trimmed) line is one of the shortcut keywords. Case-blind.
    """
    return line.lower() in SHORTCUT_KEYWORDS


class StatementReader:
    """
    Groups input lines into statements. A statement is one of:

    - a meta-command: a line starting with a backslash. Meta-commands are
      never continued onto a second line.
    - a shortcut keyword ("exit", "quit", "help"), alone on a line.
    - SQL, which may span multiple lines and ends with a line whose last
      non-blank character is ";". The lines are joined with newlines.

    Meta-commands and shortcut keywords are only recognized at the start of
    a statement. Once SQL accumulation has begun, a line that starts with a
    backslash is just more SQL, and doesn't end the statement even if it ends
    in ";".
    """

    def __init__(self: Self, source: LineSource) -> None:
        self._source = source
        self._lines: list[str] = []
        # The partial statement discarded when the input ran out, if any.
        self.unterminated: str | None = None

    @property
    def continuing(self: Self) -> bool:
        """
        True while a multi-line SQL statement is partially read.
        """
        return len(self._lines) > 0

    def read_statement(self: Self, prompt: str, continuation_prompt: str) -> str:
        """
        Read one statement.

        :param prompt: the prompt for the first line
        :param continuation_prompt: the prompt for subsequent lines of a
            multi-line SQL statement

        :returns: the statement, or "" if the first line was blank (the
            caller should just prompt again)

        :raises: EOFError at the end of the input. A partially read statement
            is discarded.
        :raises: KeyboardInterrupt on Ctrl-C. A partially read statement is
            discarded.
        """
        self._lines = []
        self.unterminated = None
        self._source.set_prompt(prompt)
        try:
            while True:
                try:
                    line = self._source.read_line()
                except EOFError:
                    if self.continuing:
                        self.unterminated = "\n".join(self._lines)
                    raise

                trimmed = line.strip()

                if not self.continuing:
                    if trimmed == "":
                        return ""

                    if is_meta_command(trimmed) or is_shortcut_keyword(trimmed):
                        return trimmed

                self._lines.append(line)
                # A backslash line inside a statement is SQL text, and never
                # ends the statement.
                if is_meta_command(trimmed):
                    continue

                if trimmed.endswith(STATEMENT_TERMINATOR):
                    return "\n".join(self._lines)

                self._source.set_prompt(continuation_prompt)
        finally:
            self._lines = []
