"""
Protocol tokenizer.

A Showdown log is newline-separated; each line is pipe-delimited with a
leading pipe, e.g. ``|switch|p1a: Amoonguss|Amoonguss, L50, F|100/100``.
Field 0 of a tokenized line is always the line-kind token.
"""

from replaylink.core.constants import FIELD_DELIMITER, LineKind


def split_log_lines(raw_log: str | None) -> list[str]:
    """Split a raw log into lines, stripping trailing whitespace and dropping empty lines."""
    if not raw_log:
        return []
    lines = (line.rstrip() for line in raw_log.split("\n"))
    return [line for line in lines if line]


def split_fields(line: str) -> list[str]:
    """
    Split one protocol line on the field delimiter.

    A leading empty field (line starts with the delimiter) is dropped so that
    field 0 is the kind token. Never raises; garbage in gives e.g. ``[""]``.
    """
    parts = line.split(FIELD_DELIMITER)
    if len(parts) > 1 and parts[0] == "":
        parts.pop(0)
    return parts


def line_kind(fields: list[str]) -> str:
    """Kind token of a tokenized line, ``unknown`` when blank."""
    token = fields[0].strip() if fields else ""
    return token or LineKind.UNKNOWN.value


def field_at(fields: list[str], index: int) -> str | None:
    """Positional field access that tolerates short lines."""
    if index < len(fields):
        return fields[index]
    return None
