"""
Error taxonomy for the offload pipeline

Fatal errors abort a run; the audit log still receives one failed entry.
Row-level problems are never raised, they travel as values in ParseResult /
ReconciliationResult.
"""
from typing import Iterable, List, Optional, Sequence


class OffloadError(Exception):
    """Base class for every pipeline failure"""


class AuthenticationError(OffloadError):
    """Sign-in step failed. Never retried to avoid locking the account."""


class NavigationError(OffloadError):
    """A UI step could not be completed after exhausting every locator strategy"""

    def __init__(self, step: str, attempts: Sequence = (), message: Optional[str] = None):
        self.step = step
        self.attempts = list(attempts)
        if message is None:
            tried = "; ".join(
                f"{attempt.name}: {attempt.error or 'no effect'}" for attempt in self.attempts
            )
            message = f"Could not complete '{step}'"
            if tried:
                message += f" (tried {tried})"
        super().__init__(message)


class ExportTimeoutError(OffloadError):
    """The export response was never observed within the bounded wait"""

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(
            f"No valid file detected (timeout waiting {timeout_ms}ms for download response)"
        )


class SchemaError(OffloadError):
    """Export does not have the expected shape; the whole parse is aborted"""

    def __init__(self, message: str, missing_headers: Iterable[str] = ()):
        self.missing_headers: List[str] = list(missing_headers)
        super().__init__(message)


class EmptyExportError(OffloadError):
    """Export parsed cleanly but produced no usable rows"""


class PersistenceError(OffloadError):
    """Store read or write failed"""


class PipelineInputError(OffloadError, ValueError):
    """Invalid pipeline invocation (NAS ID / date range)"""
