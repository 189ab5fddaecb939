"""
Tolerant delimited-text parser and its inverse.

Purely lexical: no header semantics. Malformed quoting never raises; an
unmatched quote simply leaves the parser in quoted mode for the rest of
the input.
"""

from typing import Iterable, List, Sequence

Row = List[str]


class _CellBuffer:
    """Accumulates one cell, remembering which part came from inside quotes."""

    __slots__ = ("chars", "first_quoted", "last_quoted")

    def __init__(self):
        self.chars: List[str] = []
        self.first_quoted = -1
        self.last_quoted = -1

    def append(self, char: str, quoted: bool) -> None:
        if quoted:
            if self.first_quoted < 0:
                self.first_quoted = len(self.chars)
            self.last_quoted = len(self.chars)
        self.chars.append(char)

    def mark_quoted_empty(self) -> None:
        # ``""`` with nothing inside still counts as quoted content
        if self.first_quoted < 0:
            self.first_quoted = len(self.chars)
            self.last_quoted = len(self.chars) - 1

    def is_empty(self) -> bool:
        return not self.chars and self.first_quoted < 0

    def flush(self) -> str:
        text = "".join(self.chars)
        if self.first_quoted < 0:
            value = text.strip()
        else:
            # Only whitespace outside the quoted span is insignificant
            head = text[:self.first_quoted].lstrip()
            body = text[self.first_quoted:self.last_quoted + 1]
            tail = text[self.last_quoted + 1:].rstrip()
            value = head + body + tail
        self.chars = []
        self.first_quoted = -1
        self.last_quoted = -1
        return value


def parse(text: str, delimiter: str = ",") -> List[Row]:
    """
    Split delimited text into rows of cells.

    - ``"`` toggles quoted mode; ``""`` inside quotes is a literal quote
    - delimiters and newlines inside quotes are content
    - cells are trimmed of surrounding (unquoted) whitespace
    - trailing all-empty rows are dropped, a trailing partial row is kept
    """
    rows: List[Row] = []
    row: Row = []
    cell = _CellBuffer()
    in_quotes = False
    i = 0
    length = len(text or "")

    while i < length:
        char = text[i]

        if char == '"':
            if in_quotes and i + 1 < length and text[i + 1] == '"':
                cell.append('"', quoted=True)
                i += 2
                continue
            if in_quotes:
                cell.mark_quoted_empty()
            in_quotes = not in_quotes
        elif in_quotes:
            cell.append(char, quoted=True)
        elif char == delimiter:
            row.append(cell.flush())
        elif char == "\n" or char == "\r":
            if char == "\r" and i + 1 < length and text[i + 1] == "\n":
                i += 1
            row.append(cell.flush())
            rows.append(row)
            row = []
        else:
            cell.append(char, quoted=False)
        i += 1

    if row or not cell.is_empty():
        row.append(cell.flush())
        rows.append(row)

    while rows and all(not value for value in rows[-1]):
        rows.pop()

    return rows


def _needs_quoting(value: str, delimiter: str) -> bool:
    return (
        delimiter in value
        or '"' in value
        or "\n" in value
        or "\r" in value
        or value != value.strip()
    )


def quote_cell(value, delimiter: str = ",") -> str:
    text = "" if value is None else str(value)
    if _needs_quoting(text, delimiter):
        return '"' + text.replace('"', '""') + '"'
    return text


def serialize(rows: Iterable[Sequence], delimiter: str = ",") -> str:
    """Inverse of :func:`parse`: re-quotes cells that would not survive as-is."""
    lines = []
    for row in rows:
        cells = list(row)
        if len(cells) == 1 and (cells[0] is None or str(cells[0]) == ""):
            lines.append('""')
            continue
        lines.append(delimiter.join(quote_cell(value, delimiter) for value in cells))
    return "\n".join(lines)
