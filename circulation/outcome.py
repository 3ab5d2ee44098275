from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from circulation.errors import CirculationError

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a caller-facing operation: either a value or a typed error."""

    ok: bool
    value: Optional[T] = None
    error: Optional[CirculationError] = None

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: CirculationError) -> "Outcome":
        return cls(ok=False, error=error)

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None

    def unwrap(self) -> T:
        """Return the value, re-raising the error of a failed outcome."""
        if not self.ok:
            raise self.error
        return self.value
