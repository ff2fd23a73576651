import io
from datetime import date, datetime
from decimal import Decimal

import pytest

from pgshell.backend import ResultSet, ValueKind, value_kind
from pgshell.render import (
    ResultRenderer,
    error,
    format_value,
    record_header,
    row_count_summary,
    take_rows,
)

from conftest import output_lines


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, ""),
        (True, "t"),
        (False, "f"),
        (42, "42"),
        (1.5, "1.5"),
        (Decimal("3.10"), "3.10"),
        ("text", "text"),
        (b"raw bytes", "raw bytes"),
        (memoryview(b"view"), "view"),
        (datetime(2024, 5, 6, 7, 8, 9, 123456), "2024-05-06 07:08:09"),
        (date(2024, 5, 6), "2024-05-06"),
    ],
)
def test_format_value(value, expected):
    assert format_value(value) == expected


@pytest.mark.parametrize(
    "value,kind",
    [
        (None, ValueKind.NULL),
        (False, ValueKind.BOOLEAN),
        (7, ValueKind.INTEGER),
        (7.5, ValueKind.FLOATING),
        ("x", ValueKind.TEXT),
        (datetime(2020, 1, 1), ValueKind.TIMESTAMP),
        (bytearray(b"x"), ValueKind.BINARY),
        (Decimal("1"), ValueKind.OTHER),
    ],
)
def test_value_kind(value, kind):
    assert value_kind(value) == kind


@pytest.mark.parametrize(
    "count,expected", [(0, "(0 rows)"), (1, "(1 row)"), (2, "(2 rows)"), (10, "(10 rows)")]
)
def test_row_count_summary(count, expected):
    assert row_count_summary(count) == expected


def test_record_header_padded_to_fifty():
    header = record_header(1)
    assert header.startswith("-[ RECORD 1 ]-")
    assert len(header) == 50
    assert set(header[len("-[ RECORD 1 ]"):]) == {"-"}


def test_take_rows():
    assert take_rows(iter([(1,), (2,), (3,)]), 2) == ([(1,), (2,)], True)
    assert take_rows([(1,), (2,)], 2) == ([(1,), (2,)], False)
    assert take_rows([(1,), (2,), (3,)], 0) == ([(1,), (2,), (3,)], False)


def test_table_layout(out, renderer):
    result = ResultSet(columns=["id", "name"], rows=[(1, "ab"), (2, None)])
    renderer.render(result, expanded=False, max_rows=1000)

    assert output_lines(out) == [
        " id   | name",
        "------+------",
        " 1    | ab  ",
        " 2    |     ",
        "(2 rows)",
        "",
        "",
    ]


def test_table_column_grows_with_data(out, renderer):
    result = ResultSet(columns=["id"], rows=[("a longer value",)])
    renderer.render(result, expanded=False, max_rows=1000)

    lines = output_lines(out)
    assert lines[0] == " " + "id".ljust(len("a longer value"))
    assert lines[1] == "-" * (len("a longer value") + 2)
    assert lines[2] == " a longer value"
    assert lines[3] == "(1 row)"


def test_table_truncates_long_values(out, renderer):
    result = ResultSet(columns=["v"], rows=[("x" * 60,), ("short",)])
    renderer.render(result, expanded=False, max_rows=1000)

    lines = output_lines(out)
    assert lines[1] == "-" * 52
    assert lines[2] == " " + "x" * 47 + "..."
    assert lines[3] == " " + "short".ljust(50)


def test_table_multiple_columns_separator(out, renderer):
    result = ResultSet(columns=["a", "bbbbbb"], rows=[])
    renderer.render(result, expanded=False, max_rows=1000)

    lines = output_lines(out)
    assert lines[0] == " a    | bbbbbb"
    assert lines[1] == "------+--------"
    assert lines[2] == "(0 rows)"


def test_row_cap_with_notice(out, renderer):
    result = ResultSet(columns=["n"], rows=iter([(i,) for i in range(5)]))
    renderer.render(result, expanded=False, max_rows=3)

    lines = output_lines(out)
    assert lines[2:5] == [" 0   ", " 1   ", " 2   "]
    assert lines[5] == "(3 rows)"
    assert lines[6] == "(display limited to 3 rows; more rows available)"


def test_no_notice_when_result_fits_cap(out, renderer):
    result = ResultSet(columns=["n"], rows=[(1,), (2,)])
    renderer.render(result, expanded=False, max_rows=2)
    assert "more rows available" not in out.getvalue()


def test_timing_line(out, renderer):
    result = ResultSet(columns=["n"], rows=[(1,)])
    renderer.render(result, expanded=False, max_rows=10, started=0.0)

    lines = output_lines(out)
    assert lines[3] == "(1 row)"
    assert lines[4].startswith("Time: ")
    assert lines[4].endswith(" ms")
    assert lines[5] == ""


def test_expanded_layout(out, renderer):
    result = ResultSet(
        columns=["id", "name"], rows=[(1, "ab"), (2, None)]
    )
    renderer.render(result, expanded=True, max_rows=1000)

    assert output_lines(out) == [
        record_header(1),
        "id   | 1",
        "name | ab",
        record_header(2),
        "id   | 2",
        "name | ",
        "",
        "",
    ]


def test_expanded_does_not_truncate(out, renderer):
    result = ResultSet(columns=["v"], rows=[("y" * 80,)])
    renderer.render(result, expanded=True, max_rows=1000)
    assert f"v | {'y' * 80}" in output_lines(out)


def test_expanded_zero_rows(out, renderer):
    renderer.render(ResultSet(columns=["v"], rows=[]), expanded=True, max_rows=10)
    assert output_lines(out) == ["(0 rows)", "", ""]


def test_describe_layout(out, renderer):
    result = ResultSet(
        columns=["Column", "Type", "Modifiers"],
        rows=[("id", "integer", "not null"), ("name", "text", "")],
    )
    renderer.render_describe("users", result)

    separator = "+------------+----------------------+-----------------+"
    assert output_lines(out) == [
        'Table "users"',
        separator,
        "| Column     | Type                 | Modifiers       |",
        separator,
        "| id         | integer              | not null        |",
        "| name       | text                 |                 |",
        separator,
        "",
        "",
    ]


def test_error_not_colored_off_terminal():
    stream = io.StringIO()
    error("relation does not exist", stream)
    assert stream.getvalue() == "ERROR: relation does not exist\n"


def test_table_without_columns_prints_only_summary(out, renderer):
    renderer.render(ResultSet(columns=[], rows=[]), expanded=False, max_rows=10)
    assert output_lines(out) == ["(0 rows)", "", ""]
