from __future__ import annotations

from pathlib import Path

"""Tabular CSV decoder.

Single pass character scan (RFC 4180 style):
- fields are separated by ',' outside quotes
- '"' toggles quoting; '""' inside quotes is a literal quote
- '\\r\\n', '\\r' and '\\n' outside quotes end a row
- rows whose cells are all blank after strip() are dropped
- a leading byte-order mark is ignored

An unterminated quote swallows the rest of the input into the current field.
That is a known limitation, not an error.
"""

__all__ = [
    "decode",
    "read_csv_text",
]

BOM = "\ufeff"


def _is_blank(row: list[str]) -> bool:
    return all(cell.strip() == "" for cell in row)


def decode(text: str) -> list[list[str]]:
    """Decode CSV text into rows of cell strings, input column order preserved."""
    if text.startswith(BOM):
        text = text[1:]
    rows: list[list[str]] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if ch == '"':
            if in_quotes and i + 1 < n and text[i + 1] == '"':
                field.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
            i += 1
            continue

        if in_quotes:
            field.append(ch)
            i += 1
            continue

        if ch == ",":
            row.append("".join(field))
            field = []
        elif ch == "\n" or ch == "\r":
            if ch == "\r" and i + 1 < n and text[i + 1] == "\n":
                i += 1
            row.append("".join(field))
            if not _is_blank(row):
                rows.append(row)
            row = []
            field = []
        else:
            field.append(ch)
        i += 1

    row.append("".join(field))
    if not _is_blank(row):
        rows.append(row)
    return rows


def read_csv_text(path: Path) -> str:
    """Read a CSV file as UTF-8, dropping a leading byte-order mark (our own exports carry one)."""
    return path.read_text(encoding="utf-8-sig")
