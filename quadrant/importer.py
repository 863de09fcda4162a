from __future__ import annotations

import logging
import re
from pathlib import Path

import openpyxl

from quadrant.priority import normalize_priority
from quadrant.types import InitiativeFields

log = logging.getLogger(__name__)

_LINE_SPLIT_RE = re.compile(r"\r?\n")

# Positional defaults for short rows
_DEFAULT_TEAM = "General"
_DEFAULT_TEXT = "N/A"
_DEFAULT_NAME = "Untitled initiative"


class CsvImportError(ValueError):
    """Uploaded content cannot be turned into initiatives."""


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _col(row: list[str] | tuple, idx: int) -> str:
    """Column value or empty string when the row is too short."""
    return _s(row[idx]) if idx < len(row) else ""


def detect_delimiter(header: str) -> str:
    """Semicolon if the header line contains one, comma otherwise."""
    return ";" if ";" in header else ","


def parse_csv_line(line: str, delimiter: str) -> list[str]:
    """Split one line into trimmed fields, honouring double-quoted sections.

    Inside quotes the delimiter is literal text and ``""`` is an escaped quote.
    """
    values: list[str] = []
    current: list[str] = []
    inside_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if inside_quotes and line[i + 1:i + 2] == '"':
                current.append('"')
                i += 1
            else:
                inside_quotes = not inside_quotes
        elif char == delimiter and not inside_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1
    values.append("".join(current).strip())
    return values


def row_to_fields(row: list[str] | tuple) -> InitiativeFields:
    """Map positional columns 0..5 to initiative fields with fallbacks."""
    name = _col(row, 5)
    return InitiativeFields(
        team=_col(row, 0) or _DEFAULT_TEAM,
        metric=_col(row, 1) or _DEFAULT_TEXT,
        objective=_col(row, 2) or _DEFAULT_TEXT,
        key_result=_col(row, 3) or _DEFAULT_TEXT,
        priority=normalize_priority(_col(row, 4)),
        name=name or _DEFAULT_NAME,
        # Description mirrors the name column; kept as observed in the source sheets
        description=name,
    )


def parse_csv_text(text: str) -> list[InitiativeFields]:
    """Parse uploaded CSV text (header + data rows) into initiative field-sets.

    The delimiter is sniffed from the header only. Raises ``CsvImportError``
    when there is no data row.
    """
    text = text.removeprefix("\ufeff")
    lines = [line for line in _LINE_SPLIT_RE.split(text) if line.strip()]
    if len(lines) < 2:
        raise CsvImportError("The file looks empty or has no header row")
    delimiter = detect_delimiter(lines[0])
    rows = [row_to_fields(parse_csv_line(line, delimiter)) for line in lines[1:]]
    log.info("Parsed %d initiatives (delimiter %r)", len(rows), delimiter)
    return rows


def parse_xlsx(file_path: str | Path) -> list[InitiativeFields]:
    """Parse the first worksheet of a spreadsheet with the same column layout."""
    wb = openpyxl.load_workbook(Path(file_path), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows = [
            row for row in ws.iter_rows(min_row=2, values_only=True)
            if row and any(_s(cell) for cell in row)
        ]
    finally:
        wb.close()
    if not rows:
        raise CsvImportError("The spreadsheet has no data rows")
    out = [row_to_fields(row) for row in rows]
    log.info("Parsed %d initiatives from %s", len(out), Path(file_path).name)
    return out
