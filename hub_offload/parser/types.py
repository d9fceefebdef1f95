"""
Typed records produced by the export parsers
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Generic, Tuple, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class AggregateRecord:
    """One calendar day's total offload volume across all devices"""
    day: date
    gigabytes: float


@dataclass(frozen=True)
class DeviceRecord:
    """One calendar day's offload statistics for a single NAS ID"""
    transaction_date: date
    nas_id: str
    total_sessions: int
    count_of_users: int
    rejects: int
    total_gbs: float

    @property
    def key(self) -> Tuple[date, str]:
        return (self.transaction_date, self.nas_id)


@dataclass(frozen=True)
class RowError:
    """A data row that failed validation. Collected, never raised."""
    line: int  # 1-based line number in the source text
    content: str
    error: str

    def to_dict(self) -> dict:
        return {"line": self.line, "content": self.content, "error": self.error}


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """
    Outcome of a successful parse

    A schema failure never produces a ParseResult (SchemaError is raised instead),
    so an instance always means the batch was read; `errors` lists the rows that
    were dropped along the way.
    """
    data: Tuple[T, ...] = field(default_factory=tuple)
    errors: Tuple[RowError, ...] = field(default_factory=tuple)
    total_rows: int = 0

    @property
    def valid_rows(self) -> int:
        return len(self.data)

    @property
    def error_rows(self) -> int:
        return len(self.errors)

    @property
    def is_partial(self) -> bool:
        """Some rows made it, some did not"""
        return bool(self.data) and bool(self.errors)
