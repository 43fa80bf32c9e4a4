"""
Runtime result types produced by the executor and the plan runner.

These are plain dataclasses: they are created by our own code, never parsed
from planner output, so they carry no validation beyond __post_init__ checks.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from .config import get_settings
from .errors import ErrorKind


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration shared by every operation of a plan.

    The delay before attempt ``n + 1`` is ``base_delay_ms * 2 ** (n - 1)``,
    optionally capped by ``max_delay_ms``.
    """
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: Optional[int] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")

    def delay_ms(self, attempt: int) -> int:
        """Backoff after the given failed attempt (1-indexed)."""
        delay = self.base_delay_ms * (2 ** (attempt - 1))
        if self.max_delay_ms is not None:
            delay = min(delay, self.max_delay_ms)
        return delay

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        cfg = get_settings()
        return cls(
            max_attempts=cfg.RETRY_MAX_ATTEMPTS,
            base_delay_ms=cfg.RETRY_BASE_DELAY_MS,
            max_delay_ms=cfg.RETRY_MAX_DELAY_MS or None,
        )


@dataclass(frozen=True)
class CallSuccess:
    data: Any
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class CallFailure:
    message: str
    kind: ErrorKind
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return False


CallOutcome = Union[CallSuccess, CallFailure]


@dataclass(frozen=True)
class ErrorSummary:
    operation_id: str
    reason: str
    message: str
    kind: ErrorKind

    def as_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "reason": self.reason,
            "message": self.message,
            "kind": self.kind.value,
        }


@dataclass
class PlanResult:
    """Ordered mapping operation id -> outcome, plus the failure summary.

    Insertion order follows the plan, not completion order.
    """
    outcomes: Dict[str, CallOutcome] = field(default_factory=dict)
    errors: List[ErrorSummary] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.outcomes)

    def __getitem__(self, operation_id: str) -> CallOutcome:
        return self.outcomes[operation_id]

    def __contains__(self, operation_id: object) -> bool:
        return operation_id in self.outcomes

    def __iter__(self) -> Iterator[str]:
        return iter(self.outcomes)

    def items(self):
        return self.outcomes.items()

    @property
    def has_failures(self) -> bool:
        return bool(self.errors)

    @property
    def all_failed(self) -> bool:
        return bool(self.outcomes) and len(self.errors) == len(self.outcomes)

    def successful_data(self) -> Dict[str, Any]:
        return {op: o.data for op, o in self.outcomes.items() if isinstance(o, CallSuccess)}

    def to_payload(self) -> Dict[str, Any]:
        """Data handed to downstream generators.

        Failed operations are kept as ``{"error", "success": False, "kind"}``
        entries so a generator can describe partial results honestly.
        """
        payload: Dict[str, Any] = {}
        for op, outcome in self.outcomes.items():
            if isinstance(outcome, CallSuccess):
                payload[op] = outcome.data
            else:
                payload[op] = {"error": outcome.message, "success": False, "kind": outcome.kind.value}
        return payload
