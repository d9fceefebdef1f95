"""
Parser for the HUB "Data Usage Timeline" export

The export is usually a whitespace-aligned text table:

    Day          Gigabytes
    2025-01-01   1,234.5
    2025-01-02   88

Only lines shaped like `<ISO date><whitespace><number>` are data. Everything else
(headers, totals, blank padding) is skipped without being reported.
"""
import math
import re
from datetime import date
from typing import List

from hub_offload.parser.types import AggregateRecord, ParseResult

DATE_LINE_RE = re.compile(
    r"^\s*(\d{4}-\d{2}-\d{2})\s+(\d[\d,]*(?:\.\d+)?(?:[eE][+-]?\d+)?)\s*$"
)


def parse_offload_csv(text: str) -> ParseResult[AggregateRecord]:
    """
    Parse raw export text into daily aggregate records

    Args:
        text: Export content (CRLF or LF line endings)

    Returns:
        ParseResult with AggregateRecords in source order. `errors` is always
        empty: non-matching lines are dropped silently.
    """
    records: List[AggregateRecord] = []
    examined = 0

    if not text:
        return ParseResult(data=(), errors=(), total_rows=0)

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        examined += 1

        match = DATE_LINE_RE.match(line)
        if not match:
            continue

        try:
            day = date.fromisoformat(match.group(1))
        except ValueError:
            continue  # 2025-02-30 and friends

        gigabytes = float(match.group(2).replace(",", ""))
        if not math.isfinite(gigabytes):
            continue

        records.append(AggregateRecord(day=day, gigabytes=gigabytes))

    return ParseResult(data=tuple(records), errors=(), total_rows=examined)
