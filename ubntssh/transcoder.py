"""Convert ``mca-status`` output into a JSON array holding one object.

The report mixes separators. Its first line is ``key=value`` pairs joined by
commas and the remaining lines are one pair each, terminated by ``\\r\\n``,
``\\n`` or a bare ``\\r``. One known field carries a literal ``", "``
inside its value; the first occurrence is rewritten to ``--`` before
tokenizing so the comma is not read as a separator.

Output keeps the historical framing ``[{"key":"value",...}]``. The leading
``[{`` is emitted even when the input does not start with ``key=``; that
framing has only been checked against airOS status samples.
"""

import json
from typing import List, Optional, Tuple

from ubntssh.errors import ParseOverflowError

StatusRecord = List[Tuple[str, str]]

EMBEDDED_SEPARATOR = ", "
SEPARATOR_SUBSTITUTE = "--"
FIELD_SEPARATORS = (",", "\n", "\r")


def substitute_separator(text: str) -> str:
    return text.replace(EMBEDDED_SEPARATOR, SEPARATOR_SUBSTITUTE, 1)


def tokenize(text: str) -> List[str]:
    """Split the report into raw fields.

    ``\\r\\n`` and ``\\n\\r`` count as a single separator. Empty fields are
    dropped.
    """
    fields: List[str] = []
    current: List[str] = []
    previous = ""
    for char in text:
        if char in FIELD_SEPARATORS:
            if not (char == "\r" and previous == "\n") and not (char == "\n" and previous == "\r"):
                fields.append("".join(current))
                current = []
            previous = char
            continue
        current.append(char)
        previous = char
    fields.append("".join(current))
    return [field for field in fields if field]


def parse_status(text: str) -> StatusRecord:
    record: StatusRecord = []
    for field in tokenize(substitute_separator(text or "")):
        key, _, value = field.partition("=")
        record.append((key, value))
    return record


def serialize_status(record: StatusRecord) -> str:
    pairs = ",".join(
        f"{json.dumps(key, ensure_ascii=False)}:{json.dumps(value, ensure_ascii=False)}"
        for key, value in record
    )
    return "[{" + pairs + "}]"


def status_to_json(text: str, max_chars: Optional[int] = None) -> str:
    """Transcode a status report.

    The result grows with the input. Pass ``max_chars`` to enforce a fixed
    capacity (``config.LEGACY_STATUS_BUFFER`` is the old fixed buffer);
    longer results raise :class:`ParseOverflowError`.
    """
    encoded = serialize_status(parse_status(text))
    if max_chars is not None and len(encoded) > max_chars:
        raise ParseOverflowError(f"status output of {len(encoded)} chars exceeds capacity of {max_chars}")
    return encoded
