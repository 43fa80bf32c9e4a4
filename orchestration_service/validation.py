"""
Pre-execution validation of CallSpecs.

A spec that fails here is never sent upstream; the executor turns the
ValidationRejected into a fatal outcome with a single attempt.
"""

import re
from typing import Any, Iterable, Optional

from .catalog import OperationRegistry
from .config import get_settings
from .errors import UnknownOperation, ValidationRejected
from .schemas import CallSpec

# Patterns rejected in any string parameter value, at any nesting depth.
# Plain DevExpress criteria ("[Status] == 'Open' AND [Qty] >= 1") must pass.
INJECTION_PATTERNS = [
    ("script tag", re.compile(r"<\s*script\b", re.IGNORECASE)),
    ("javascript url", re.compile(r"javascript\s*:", re.IGNORECASE)),
    ("stacked sql statement",
     re.compile(r";\s*(?:drop|delete|insert|update|alter|truncate|create|exec)\b", re.IGNORECASE)),
    ("sql union", re.compile(r"\bunion\s+(?:all\s+)?select\b", re.IGNORECASE)),
    ("sql ddl", re.compile(r"\b(?:drop|truncate|alter)\s+table\b", re.IGNORECASE)),
    ("sql comment", re.compile(r"--|/\*")),
    ("path traversal", re.compile(r"\.\.[/\\]")),
    ("prompt injection",
     re.compile(r"ignore\s+(?:all\s+)?(?:the\s+)?(?:previous|prior|above)\s+instructions", re.IGNORECASE)),
    ("prompt injection", re.compile(r"disregard\s+(?:all\s+)?(?:the\s+)?(?:previous|prior|above)\s+instructions",
                                    re.IGNORECASE)),
    ("prompt injection", re.compile(r"\bsystem\s+prompt\b", re.IGNORECASE)),
]

PAGINATION_KEYS = ("skip", "take")


def find_injection(value: Any) -> Optional[str]:
    """Return the name of the first blocked pattern found in ``value``."""
    if isinstance(value, str):
        for name, pattern in INJECTION_PATTERNS:
            if pattern.search(value):
                return name
        return None
    if isinstance(value, dict):
        for k, v in value.items():
            hit = find_injection(k) or find_injection(v)
            if hit:
                return hit
        return None
    if isinstance(value, (list, tuple)):
        for v in value:
            hit = find_injection(v)
            if hit:
                return hit
    return None


class CallValidator:
    def __init__(self, registry: OperationRegistry, max_take: Optional[int] = None):
        self.registry = registry
        self.max_take = int(max_take or get_settings().PAGINATION_MAX_TAKE)

    def _check_required(self, spec: CallSpec, required: Iterable[str]) -> None:
        missing = [p for p in required if spec.parameters.get(p) in (None, "")]
        if missing:
            raise ValidationRejected(spec.operation_id, f"missing required parameter(s): {', '.join(missing)}")

    def _check_pagination(self, spec: CallSpec) -> None:
        params = spec.parameters
        for key in PAGINATION_KEYS:
            if key not in params or params[key] is None:
                continue
            value = params[key]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationRejected(spec.operation_id, f"'{key}' must be an integer")
        skip = params.get("skip")
        if skip is not None and skip < 0:
            raise ValidationRejected(spec.operation_id, "'skip' must be >= 0")
        take = params.get("take")
        if take is not None and not 1 <= take <= self.max_take:
            raise ValidationRejected(spec.operation_id, f"'take' must be between 1 and {self.max_take}")

    def validate(self, spec: CallSpec) -> None:
        """Raise ValidationRejected when the CallSpec must not be executed."""
        handler = self.registry.get(spec.operation_id)
        if handler is None:
            raise UnknownOperation(spec.operation_id)
        if handler.definition.requires_confirmation and not spec.confirmed:
            raise ValidationRejected(spec.operation_id, "operation requires user confirmation")
        self._check_required(spec, handler.definition.required)
        self._check_pagination(spec)
        hit = find_injection(spec.parameters)
        if hit:
            raise ValidationRejected(spec.operation_id, f"parameter rejected by security policy ({hit})")
