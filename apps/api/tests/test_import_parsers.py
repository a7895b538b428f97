"""Tests for import file parsers."""

from __future__ import annotations

from io import BytesIO

import pytest
from openpyxl import Workbook

from crm.imports.errors import ParseError, UnsupportedFormat
from crm.imports.parsers import (
    CSVParser,
    ImportFormat,
    detect_file_format,
    parse_file,
    parse_text,
)


def make_xlsx(rows: list[list]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestFormatDetection:
    """Test file format detection."""

    def test_detect_csv(self):
        assert detect_file_format(b"a,b\n1,2", "students.csv") == ImportFormat.CSV

    def test_detect_xlsx(self):
        assert detect_file_format(b"PK\x03\x04", "students.XLSX") == ImportFormat.XLSX

    def test_detect_xls(self):
        assert detect_file_format(b"", "legacy.xls") == ImportFormat.XLS

    def test_extensionless_zip_is_xlsx(self):
        assert detect_file_format(b"PK\x03\x04rest", "upload") == ImportFormat.XLSX

    def test_unknown_extension(self):
        assert detect_file_format(b"{}", "students.json") == ImportFormat.UNKNOWN


class TestCSVParsing:
    """Test CSV parsing."""

    def test_parse_basic_csv(self):
        content = b"Name,Email\nAda,ada@x.com\nBob,bob@x.com\n"
        table = parse_file(content, "students.csv")

        assert table.headers == ["Name", "Email"]
        assert table.total_rows == 2
        assert table.rows[0] == {"Name": "Ada", "Email": "ada@x.com"}
        assert table.format == ImportFormat.CSV

    def test_cells_are_trimmed_strings(self):
        content = b" Name , Phone \n  Ada  , 0123 \n"
        table = parse_file(content, "students.csv")

        assert table.headers == ["Name", "Phone"]
        # Leading zeros survive because nothing is coerced to a number
        assert table.rows == [{"Name": "Ada", "Phone": "0123"}]

    def test_blank_rows_are_dropped(self):
        content = b"Name,Email\nAda,ada@x.com\n,\n\nBob,\n"
        table = parse_file(content, "students.csv")

        assert [r["Name"] for r in table.rows] == ["Ada", "Bob"]

    def test_quoted_fields(self):
        content = b'Name,Tags\n"Lovelace, Ada","vip;alumni"\n'
        table = parse_file(content, "students.csv")

        assert table.rows[0]["Name"] == "Lovelace, Ada"

    def test_bom_is_stripped(self):
        content = "\ufeffName,Email\nAda,ada@x.com\n".encode("utf-8")
        table = parse_file(content, "students.csv")

        assert table.headers[0] == "Name"

    def test_duplicate_headers_last_wins(self):
        content = b"Name,Phone,Phone\nAda,111,222\n"
        table = parse_file(content, "students.csv")

        assert table.headers == ["Name", "Phone", "Phone"]
        assert table.distinct_headers == ["Name", "Phone"]
        assert table.rows[0]["Phone"] == "222"

    def test_columns_without_header_are_dropped(self):
        content = b"Name,,Email\nAda,junk,ada@x.com\n"
        table = parse_file(content, "students.csv")

        assert table.headers == ["Name", "Email"]
        assert table.rows[0] == {"Name": "Ada", "Email": "ada@x.com"}

    def test_empty_file(self):
        table = parse_file(b"", "students.csv")

        assert table.headers == []
        assert table.total_rows == 0

    def test_header_only(self):
        table = parse_file(b"Name,Email\n", "students.csv")

        assert table.headers == ["Name", "Email"]
        assert table.total_rows == 0

    def test_malformed_csv_raises_parse_error(self):
        content = b"Name,Email\nAda,ada@x.com\nBob,bob@x.com,extra,cells\n"
        with pytest.raises(ParseError) as exc_info:
            parse_file(content, "students.csv")

        assert exc_info.value.error_code == "parse_error"
        assert exc_info.value.status_code == 400

    def test_unsupported_format(self):
        with pytest.raises(UnsupportedFormat):
            parse_file(b"Name\nAda\n", "students.txt")


class TestExcelParsing:
    """Test XLSX parsing."""

    def test_parse_xlsx(self):
        content = make_xlsx(
            [
                ["Full Name", "Email", "Mobile"],
                ["Ada Lovelace", "ada@x.com", "0171 000 000"],
                [None, None, None],
                ["Bob", None, "555"],
            ]
        )
        table = parse_file(content, "students.xlsx")

        assert table.format == ImportFormat.XLSX
        assert table.headers == ["Full Name", "Email", "Mobile"]
        assert table.total_rows == 2
        assert table.rows[1] == {"Full Name": "Bob", "Email": "", "Mobile": "555"}

    def test_corrupt_workbook(self):
        with pytest.raises(ParseError):
            parse_file(b"PK\x03\x04not really a workbook", "students.xlsx")


class TestPastedText:
    """Test bulk-paste parsing."""

    def test_tab_separated(self):
        table = parse_text("Name\tEmail\nAda\tada@x.com\n")

        assert table.format == ImportFormat.TEXT
        assert table.rows == [{"Name": "Ada", "Email": "ada@x.com"}]

    def test_comma_separated(self):
        table = parse_text("Name,Email\nAda,ada@x.com")

        assert table.headers == ["Name", "Email"]
        assert table.total_rows == 1

    def test_custom_separator_parser(self):
        table = CSVParser(sep=";").parse(BytesIO(b"Name;Email\nAda;ada@x.com\n"))

        assert table.rows[0]["Email"] == "ada@x.com"
