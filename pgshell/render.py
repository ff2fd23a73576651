"""
Displaying results: query results as a table or as expanded records, the
fixed-layout table description, timing lines and error messages.
"""

from itertools import islice
from time import perf_counter
from typing import Any, Iterable, Self, TextIO
from typing import Sequence as Seq

from termcolor import colored

from pgshell.backend import ResultSet, ValueKind, value_kind

MIN_COLUMN_WIDTH = 4
MAX_COLUMN_WIDTH = 50
ELLIPSIS = "..."
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
RECORD_HEADER_WIDTH = 50
DESCRIBE_HEADERS = ("Column", "Type", "Modifiers")
DESCRIBE_COLUMN_WIDTHS = (10, 20, 15)


def is_terminal(out: TextIO) -> bool:
    """
    Whether a stream is attached to a terminal (and, so, gets color).
    """
    isatty = getattr(out, "isatty", None)
    return bool(isatty and isatty())


def error(msg: str, out: TextIO) -> None:
    """
    Print error messages in a consistent way.
    """
    label = colored("ERROR:", "red", no_color=not is_terminal(out))
    print(f"{label} {msg}", file=out)


def format_value(value: Any) -> str:
    """
    Format a single result value for display.
    """
    match value_kind(value):
        case ValueKind.NULL:
            return ""
        case ValueKind.BINARY:
            return bytes(value).decode("utf-8", errors="replace")
        case ValueKind.TIMESTAMP:
            return value.strftime(TIMESTAMP_FORMAT)
        case ValueKind.BOOLEAN:
            return "t" if value else "f"
        case _:
            return str(value)


def truncate(text: str, width: int = MAX_COLUMN_WIDTH) -> str:
    """
    Cut a string down to `width` characters, marking the cut with an
    ellipsis.
    """
    if len(text) <= width:
        return text

    return text[: width - len(ELLIPSIS)] + ELLIPSIS


def row_count_summary(count: int) -> str:
    """
    The "(n rows)" footer.
    """
    suffix = "" if count == 1 else "s"
    return f"({count:d} row{suffix})"


def record_header(number: int) -> str:
    """
    The header line of a record in expanded mode.
    """
    return f"-[ RECORD {number:d} ]".ljust(RECORD_HEADER_WIDTH, "-")


def take_rows(rows: Iterable[Seq[Any]], limit: int) -> tuple[list[Seq[Any]], bool]:
    """
    Collect at most `limit` rows (0 means all of them).

    :returns: the collected rows, and whether there were more
    """
    iterator = iter(rows)
    if limit <= 0:
        return list(iterator), False

    taken = list(islice(iterator, limit))
    more = next(iterator, None) is not None
    return taken, more


class ResultRenderer:
    """
    Writes results to an output stream.
    """

    def __init__(self: Self, out: TextIO) -> None:
        self.out = out

    def render(
        self: Self,
        result: ResultSet,
        expanded: bool,
        max_rows: int,
        started: float | None = None,
    ) -> None:
        """
        Display a query result.

        :param result: the result to display
        :param expanded: True for one block per record, False for a table
        :param max_rows: display at most this many rows; 0 for all of them
        :param started: the perf_counter() value when the statement started,
            to display the elapsed time, or None not to
        """
        rows, more = take_rows(result.rows, max_rows)
        if expanded:
            self.render_expanded(result.columns, rows)
        else:
            self.render_table(result.columns, rows)

        if more:
            print(
                f"(display limited to {max_rows:d} rows; more rows available)",
                file=self.out,
            )

        if started is not None:
            self.timing(started)

        print(file=self.out)

    def render_table(self: Self, columns: list[str], rows: list[Seq[Any]]) -> None:
        """
        Display rows as a table, with a header and a row count.
        """
        # ANALYZE, for instance, returns no columns at all.
        if len(columns) == 0:
            print(row_count_summary(len(rows)), file=self.out)
            return

        labels = [truncate(col) for col in columns]
        widths = [
            min(max(len(label), MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH)
            for label in labels
        ]

        # Format everything first, since the column widths depend on the
        # data.
        lines: list[list[str]] = []
        for row in rows:
            fields: list[str] = []
            for i, value in enumerate(row):
                text = format_value(value)
                if len(text) > widths[i]:
                    if len(text) > MAX_COLUMN_WIDTH:
                        text = truncate(text)
                    widths[i] = len(text)
                fields.append(text)

            lines.append(fields)

        def make_output_line(fields: list[str]) -> str:
            padded = [field.ljust(widths[i]) for i, field in enumerate(fields)]
            return " " + " | ".join(padded)

        print(make_output_line(labels), file=self.out)
        print("+".join("-" * (width + 2) for width in widths), file=self.out)
        for fields in lines:
            print(make_output_line(fields), file=self.out)

        print(row_count_summary(len(rows)), file=self.out)

    def render_expanded(
        self: Self, columns: list[str], rows: list[Seq[Any]]
    ) -> None:
        """
        Display each row as a block of "label | value" lines. Values aren't
        truncated.
        """
        label_width = max((len(col) for col in columns), default=0)
        for number, row in enumerate(rows, start=1):
            print(record_header(number), file=self.out)
            for col, value in zip(columns, row):
                print(
                    f"{col.ljust(label_width)} | {format_value(value)}",
                    file=self.out,
                )

        if len(rows) == 0:
            print(row_count_summary(0), file=self.out)

    def render_describe(self: Self, table_name: str, result: ResultSet) -> None:
        """
        Display a table description: a fixed-width report of column name,
        type and modifiers. The widths don't depend on the data.
        """

        def separator() -> str:
            return "+" + "+".join("-" * (w + 2) for w in DESCRIBE_COLUMN_WIDTHS) + "+"

        def make_output_line(fields: Seq[str]) -> str:
            padded = [
                field.ljust(width)
                for field, width in zip(fields, DESCRIBE_COLUMN_WIDTHS)
            ]
            return "| " + " | ".join(padded) + " |"

        print(f'Table "{table_name}"', file=self.out)
        print(separator(), file=self.out)
        print(make_output_line(DESCRIBE_HEADERS), file=self.out)
        print(separator(), file=self.out)
        for row in result.rows:
            print(
                make_output_line([format_value(value) for value in row]),
                file=self.out,
            )
        print(separator(), file=self.out)
        print(file=self.out)

    def timing(self: Self, started: float) -> None:
        """
        Display the time elapsed since `started` (a perf_counter() value).
        """
        elapsed = (perf_counter() - started) * 1000
        print(f"Time: {elapsed:.3f} ms", file=self.out)
