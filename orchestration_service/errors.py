"""
Error types for the orchestration core.

Upstream failures are classified at the executor boundary:
- ErrorKind.RETRIABLE: transient (network, timeout, rate limit), worth another attempt
- ErrorKind.FATAL: non-transient (validation, auth, unknown operation, security policy)

Per-operation failures are turned into CallFailure values by the executor and
never escape a plan. RequestFailed is the only exception a caller of the
orchestrator sees, and only for request-level problems (malformed planner
output, generator failure).

The UI merge engine is total and raises nothing.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of a failed upstream call."""
    RETRIABLE = "retriable"
    FATAL = "fatal"


class OrchestrationError(Exception):
    """Base exception for the orchestration service."""
    pass


class UpstreamError(OrchestrationError):
    """
    Error returned by (or while reaching) the upstream ERP system.

    Attributes:
        message: human readable message, used by the classifier
        code: transport code such as ECONNRESET / ETIMEDOUT, if any
        status: HTTP status, if a response was received
    """

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class ValidationRejected(OrchestrationError):
    """A CallSpec failed pre-execution validation; never sent upstream."""

    def __init__(self, operation_id: str, reason: str):
        super().__init__(f"validation failed for '{operation_id}': {reason}")
        self.operation_id = operation_id
        self.reason = reason


class UnknownOperation(ValidationRejected):
    """The operation id is not present in the registry."""

    def __init__(self, operation_id: str):
        super().__init__(operation_id, f"unknown operation '{operation_id}'")


class RequestFailed(OrchestrationError):
    """Request-level failure; the whole request is aborted."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
