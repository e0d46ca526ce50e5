"""Sequential human-facing codes (bill and invoice numbers).

A stream's next code is derived from the *latest* record of the stream, in
creation order, never from the maximum ever issued. Numbers left behind by
deleted records are therefore skipped or reused rather than backfilled.
Callers run inside :func:`stockbook.core_logic.transaction`, whose writer lock
keeps two creators from reading the same latest record.
"""

from __future__ import annotations

import re
from typing import Optional

from . import core_logic, data_manager, log
from .constants import SHEET_COLUMNS, IdentifierStream


def format_identifier(stream: IdentifierStream, number: int) -> str:
    return f"{stream.prefix}{number:0{stream.width}d}"


def next_identifier(latest: Optional[str], stream: IdentifierStream) -> str:
    """Increment the numeric suffix of ``latest`` within ``stream``.

    Starts at 1 when ``latest`` is empty or does not follow the stream pattern.

    >>> next_identifier("INV-0000041", IdentifierStream.INVOICE)
    'INV-0000042'
    >>> next_identifier(None, IdentifierStream.SALES_BILL)
    'BILL0001'
    """

    number = 1
    if latest:
        match = re.fullmatch(stream.pattern, latest.strip())
        if match:
            number = int(match.group(1)) + 1
    return format_identifier(stream, number)


def latest_identifier(context: core_logic.RuntimeContext, stream: IdentifierStream) -> Optional[str]:
    """Return the code carried by the most recently created record of a stream."""

    record = data_manager.last_record(context.workbook, stream.sheet)
    if record is None:
        return None
    column = SHEET_COLUMNS[stream.sheet.value].index(stream.column)
    return data_manager.serialize_record(record)[column] or None


def next_id(context: core_logic.RuntimeContext, stream: IdentifierStream) -> str:
    """Return the next code for ``stream`` based on its latest record."""

    with context._lock:
        latest = latest_identifier(context, stream)
        code = next_identifier(latest, stream)
    log.debug("Next %s identifier after %r is %s", stream.name, latest, code)
    return code
