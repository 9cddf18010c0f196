"""Tab-separated report decoding with double-quote field escaping."""

from __future__ import annotations

from .errors import DecodeError

_QUOTE = '"'
_TAB = "\t"
_NEWLINE = "\n"


def _split_line(line: str) -> list[str]:
    """Split one line into trimmed fields.

    A double quote toggles quoted mode, in which tabs are literal. A quote left open closes at
    the end of the line. The quote characters themselves are dropped.
    """

    fields: list[str] = []
    current: list[str] = []
    in_quotes = False

    for char in line:
        if char == _QUOTE:
            in_quotes = not in_quotes
        elif char == _TAB and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)

    fields.append("".join(current).strip())
    return fields


def _split_records(text: str) -> list[list[str]]:
    return [_split_line(line) for line in text.split(_NEWLINE) if line.strip()]


def decode_report(text: str) -> list[dict[str, str]]:
    """Decode report text into one ``header -> value`` mapping per data row.

    Short rows are padded with empty strings; values beyond the header width are ignored.
    Raises ``DecodeError`` when the text holds no header line at all.
    """

    records = _split_records(text)
    if not records:
        raise DecodeError("Report payload is empty; no header row found")

    headers = records[0]
    rows: list[dict[str, str]] = []
    for values in records[1:]:
        rows.append(
            {header: values[index] if index < len(values) else "" for index, header in enumerate(headers)}
        )
    return rows


def decode_payload(payload: bytes, *, encoding: str = "utf-8-sig") -> list[dict[str, str]]:
    """Decode raw document bytes and parse them with ``decode_report``."""

    try:
        text = payload.decode(encoding)
    except (UnicodeDecodeError, LookupError) as exc:
        raise DecodeError(f"Report payload is not readable as {encoding}: {exc}") from exc
    return decode_report(text)
