"""Typed outcomes of store operations."""
from enum import Enum
from dataclasses import dataclass
from typing import Any, Callable, Optional


class Status(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    RETRY_EXHAUSTED = "retry_exhausted"
    DECRYPT_MISMATCH = "decrypt_mismatch"
    DESERIALIZE_FAILED = "deserialize_failed"
    IO_ERROR = "io_error"
    CAPABILITY_FAILED = "capability_failed"


@dataclass(frozen=True)
class Result:
    """Outcome of a single store operation.

    ``value`` carries the loaded object (or the saved key) when ``status``
    is ``Status.OK``; ``error`` carries the last exception seen, if any.
    """

    status: Status
    key: Optional[str] = None
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status is Status.OK

    @property
    def is_fault(self) -> bool:
        """True for outcomes that deserve a diagnostic (not OK, not absent)."""
        return self.status not in (Status.OK, Status.NOT_FOUND)

    def unwrap(self, default: Any = None) -> Any:
        return self.value if self.ok else default


ErrorHook = Callable[[Result], None]
