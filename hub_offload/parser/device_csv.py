"""
Parser for the HUB "NASID Daily" device export

Expected shape (the portal prepends an unnamed index column):

    ,Transaction Date,NAS-ID,Total Sessions,Count of Users,Rejects,Total GBs
    0,2025-10-25,bcb92300ae0c,"1,204",311,2,18.532

A missing header aborts the whole parse with SchemaError. A bad data row is
recorded as a RowError and skipped; the rest of the batch is still parsed.
"""
import logging
import math
import re
from datetime import date, datetime
from typing import Dict, List, Optional

from hub_offload.core.exceptions import SchemaError
from hub_offload.parser.types import DeviceRecord, ParseResult, RowError

logger = logging.getLogger(__name__)

TRANSACTION_DATE = "Transaction Date"
NAS_ID = "NAS-ID"
TOTAL_SESSIONS = "Total Sessions"
COUNT_OF_USERS = "Count of Users"
REJECTS = "Rejects"
TOTAL_GBS = "Total GBs"

EXPECTED_HEADERS = (
    TRANSACTION_DATE,
    NAS_ID,
    TOTAL_SESSIONS,
    COUNT_OF_USERS,
    REJECTS,
    TOTAL_GBS,
)

DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y")

# Matches Numeric(16, 6) on device_offload_daily.total_gbs
GIGABYTE_SCALE = 6

_INTEGER_RE = re.compile(r"^\d{1,3}(?:,\d{3})+$|^\d+$")
_DECIMAL_RE = re.compile(r"^(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?$|^\.\d+$")


def split_csv_line(line: str) -> List[str]:
    """Split on commas, except commas inside double quotes. Quotes are dropped."""
    fields = []
    current = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)

    fields.append("".join(current).strip())
    return fields


def parse_device_csv(text: str) -> ParseResult[DeviceRecord]:
    """
    Parse device export text into DeviceRecords

    Args:
        text: Export content (CRLF or LF line endings)

    Returns:
        ParseResult with valid rows in source order and one RowError per bad row

    Raises:
        SchemaError: empty input, no data lines, or any expected header missing
    """
    if not text or not text.strip():
        raise SchemaError("CSV text is empty")

    lines = text.splitlines()

    header_index = next(i for i, line in enumerate(lines) if line.strip())
    columns = _resolve_columns(split_csv_line(lines[header_index].strip()))

    data: List[DeviceRecord] = []
    errors: List[RowError] = []
    total_rows = 0

    for index in range(header_index + 1, len(lines)):
        line = lines[index].strip()
        if not line:
            continue
        total_rows += 1
        line_number = index + 1

        try:
            data.append(_parse_row(split_csv_line(line), columns))
        except ValueError as e:
            errors.append(RowError(line=line_number, content=line, error=str(e)))

    if total_rows == 0:
        raise SchemaError("CSV must have at least a header and one data row")

    if errors:
        logger.warning(f"⚠️  {len(errors)} of {total_rows} device rows failed validation")

    return ParseResult(data=tuple(data), errors=tuple(errors), total_rows=total_rows)


def _resolve_columns(header_fields: List[str]) -> Dict[str, int]:
    """Map each expected header to its column position; unnamed columns are ignored"""
    positions = {}
    for position, name in enumerate(header_fields):
        if name and name not in positions:
            positions[name] = position

    missing = [h for h in EXPECTED_HEADERS if h not in positions]
    if missing:
        raise SchemaError(
            f"Missing expected headers: {', '.join(missing)}",
            missing_headers=missing,
        )

    return {h: positions[h] for h in EXPECTED_HEADERS}


def _parse_row(fields: List[str], columns: Dict[str, int]) -> DeviceRecord:
    def cell(name: str) -> str:
        position = columns[name]
        return fields[position] if position < len(fields) else ""

    nas_id = cell(NAS_ID)
    if not nas_id:
        raise ValueError(f"Missing {NAS_ID}")

    return DeviceRecord(
        transaction_date=parse_transaction_date(cell(TRANSACTION_DATE)),
        nas_id=nas_id,
        total_sessions=_non_negative_int(TOTAL_SESSIONS, cell(TOTAL_SESSIONS)),
        count_of_users=_non_negative_int(COUNT_OF_USERS, cell(COUNT_OF_USERS)),
        rejects=_non_negative_int(REJECTS, cell(REJECTS)),
        total_gbs=_non_negative_decimal(TOTAL_GBS, cell(TOTAL_GBS)),
    )


def parse_transaction_date(value: str) -> date:
    """Parse a calendar date in one of the portal's formats"""
    if not value:
        raise ValueError("Date is required")

    parsed: Optional[date] = None
    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(value.strip(), fmt).date()
            break
        except ValueError:
            continue

    if parsed is None:
        raise ValueError(f"Invalid date format: {value}")
    return parsed


def _non_negative_int(column: str, value: str) -> int:
    if not _INTEGER_RE.match(value):
        raise ValueError(f"Invalid {column}: {value}")
    return int(value.replace(",", ""))


def _non_negative_decimal(column: str, value: str) -> float:
    if not _DECIMAL_RE.match(value):
        raise ValueError(f"Invalid {column}: {value}")
    number = float(value.replace(",", ""))
    if not math.isfinite(number):
        raise ValueError(f"Invalid {column}: {value}")
    return round(number, GIGABYTE_SCALE)
