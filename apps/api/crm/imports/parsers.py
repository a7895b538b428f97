"""File parsers for student import formats using pandas."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO, StringIO
from typing import IO, Optional

import pandas as pd

from crm.imports.errors import ParseError, UnsupportedFormat

# Local file header of a ZIP archive, which is what an XLSX workbook is
ZIP_SIGNATURE = b"PK\x03\x04"


class ImportFormat(str, Enum):
    """Supported import formats."""

    CSV = "csv"
    XLSX = "xlsx"
    XLS = "xls"
    TEXT = "text"
    UNKNOWN = "unknown"


@dataclass
class ParsedTable:
    """Header row plus data rows, every cell a trimmed string.

    `headers` keeps the header cells as given, duplicates included. Each row
    maps header to cell; when a header repeats, the right-most cell wins.
    """

    headers: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)
    format: ImportFormat = ImportFormat.CSV

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def distinct_headers(self) -> list[str]:
        return list(dict.fromkeys(self.headers))


def _clean_cell(value) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def _frame_to_table(frame: pd.DataFrame, format_type: ImportFormat) -> ParsedTable:
    """Split a header-less frame into headers and non-blank record rows."""
    if frame.empty:
        return ParsedTable(headers=[], rows=[], format=format_type)

    raw_headers = [_clean_cell(v) for v in frame.iloc[0].tolist()]
    # Columns without a header cannot be mapped, drop them
    keep = [i for i, h in enumerate(raw_headers) if h]
    headers = [raw_headers[i] for i in keep]

    rows: list[dict[str, str]] = []
    for values in frame.iloc[1:].itertuples(index=False, name=None):
        cells = [_clean_cell(values[i]) if i < len(values) else "" for i in keep]
        if not any(cells):
            continue
        rows.append(dict(zip(headers, cells)))

    return ParsedTable(headers=headers, rows=rows, format=format_type)


class FileParser(ABC):
    """Abstract base class for tabular parsers."""

    format: ImportFormat

    @abstractmethod
    def read_frame(self, source: IO) -> pd.DataFrame:
        """Read the raw sheet without header inference."""

    def parse(self, source: IO) -> ParsedTable:
        try:
            frame = self.read_frame(source)
        except pd.errors.EmptyDataError:
            return ParsedTable(headers=[], rows=[], format=self.format)
        except pd.errors.ParserError as e:
            raise ParseError(str(e).strip()) from e
        return _frame_to_table(frame, self.format)


class CSVParser(FileParser):
    """Delimited text parser, comma-separated unless told otherwise."""

    format = ImportFormat.CSV

    def __init__(self, sep: str = ","):
        self.sep = sep

    def read_frame(self, source: IO) -> pd.DataFrame:
        options = {}
        if isinstance(source, BytesIO):
            # Strip a UTF-8 BOM so the first header compares cleanly
            options = {"encoding": "utf-8-sig", "encoding_errors": "replace"}
        return pd.read_csv(
            source,
            sep=self.sep,
            header=None,
            dtype=str,  # Keep everything as string for import
            na_values=[],
            keep_default_na=False,
            skip_blank_lines=True,
            **options,
        )


class ExcelParser(FileParser):
    """Excel workbook parser; only the first sheet is read."""

    format = ImportFormat.XLSX

    def __init__(self, engine: Optional[str] = None):
        self.engine = engine

    def read_frame(self, source: IO) -> pd.DataFrame:
        try:
            return pd.read_excel(
                source,
                sheet_name=0,
                header=None,
                dtype=str,
                na_values=[],
                keep_default_na=False,
                engine=self.engine,
            )
        except (pd.errors.EmptyDataError, pd.errors.ParserError):
            raise
        except Exception as e:
            # openpyxl/xlrd raise their own types for corrupt workbooks
            raise ParseError(f"invalid Excel workbook ({e})") from e


def detect_file_format(file_content: bytes, filename: str) -> ImportFormat:
    """Detect file format from the filename extension.

    Extension-less uploads that start with the ZIP signature are taken to be
    XLSX workbooks.
    """
    extension = os.path.splitext((filename or "").lower())[1]
    if extension == ".csv":
        return ImportFormat.CSV
    if extension == ".xlsx":
        return ImportFormat.XLSX
    if extension == ".xls":
        return ImportFormat.XLS
    if not extension and file_content.startswith(ZIP_SIGNATURE):
        return ImportFormat.XLSX
    return ImportFormat.UNKNOWN


def get_parser(format_type: ImportFormat) -> FileParser:
    """Get appropriate parser for format."""
    parsers = {
        ImportFormat.CSV: CSVParser(),
        ImportFormat.XLSX: ExcelParser(engine="openpyxl"),
        ImportFormat.XLS: ExcelParser(engine="xlrd"),
    }
    if format_type not in parsers:
        raise ValueError(f"No parser for format: {format_type}")
    return parsers[format_type]


def parse_file(file_content: bytes, filename: str) -> ParsedTable:
    """Parse an uploaded CSV or Excel file.

    Args:
        file_content: Raw upload bytes
        filename: Original filename, used to pick the format

    Returns:
        ParsedTable with trimmed headers and non-blank rows

    Raises:
        UnsupportedFormat: Extension is not .csv, .xlsx or .xls
        ParseError: Content is malformed for the detected format
    """
    format_type = detect_file_format(file_content, filename)
    if format_type == ImportFormat.UNKNOWN:
        raise UnsupportedFormat(filename)

    return get_parser(format_type).parse(BytesIO(file_content))


def parse_text(text: str) -> ParsedTable:
    """Parse pasted delimited text.

    Tab-separated when the first line contains a tab, comma-separated
    otherwise.
    """
    first_line = text.lstrip("\r\n").split("\n", 1)[0]
    sep = "\t" if "\t" in first_line else ","

    table = CSVParser(sep=sep).parse(StringIO(text))
    table.format = ImportFormat.TEXT
    return table
