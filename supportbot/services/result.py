from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

NOT_FOUND = "not_found"
INVALID_STATUS = "invalid_status"

# HTTP status the admin API answers with for each failure code
HTTP_STATUS = {NOT_FOUND: 404, INVALID_STATUS: 409}


@dataclass
class Result(Generic[T]):
    """Outcome of an admin operation on queue entries.

    Expected failures (unknown id, illegal status change) come back as a
    failed result with a machine-readable ``error_code``; anything else raises.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str, code: str = "unknown") -> "Result[T]":
        return cls(ok=False, error=error, error_code=code)

    @classmethod
    def not_found(cls, kind: str, item_id) -> "Result[T]":
        return cls.failure(f"{kind} {item_id} not found", NOT_FOUND)

    @classmethod
    def invalid_status(cls, kind: str, current: str, requested: str) -> "Result[T]":
        return cls.failure(f"Cannot move {kind} from {current} to {requested}", INVALID_STATUS)

    @property
    def http_status(self) -> int:
        if self.ok:
            return 200
        return HTTP_STATUS.get(self.error_code, 400)
