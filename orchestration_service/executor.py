import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .catalog import OperationRegistry
from .classifier import classify_with_rule
from .config import get_settings
from .errors import ErrorKind, UnknownOperation, ValidationRejected
from .metrics import upstream_attempts_total, upstream_retries_total
from .outcomes import CallFailure, CallOutcome, CallSuccess, RetryPolicy
from .schemas import CallSpec
from .validation import CallValidator

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


def describe_error(exc: BaseException) -> str:
    text = getattr(exc, "message", None) or str(exc)
    return text if text else exc.__class__.__name__


class ResilientCallExecutor:
    """Executes one CallSpec with validation, per-attempt timeout and bounded retry.

    Never raises for an operation failure; the result is always a CallOutcome.
    Cancellation of the surrounding task propagates unchanged.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        validator: Optional[CallValidator] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleeper = asyncio.sleep,
        timeout_s: Optional[float] = None,
    ):
        self.registry = registry
        self.validator = validator or CallValidator(registry)
        self.policy = policy or RetryPolicy.from_settings()
        self._sleep = sleep
        self.timeout_s = timeout_s if timeout_s is not None else get_settings().UPSTREAM_TIMEOUT_SECONDS

    async def _invoke_once(self, spec: CallSpec):
        handler = self.registry.get(spec.operation_id)
        if handler is None:
            raise UnknownOperation(spec.operation_id)
        coro = handler.invoke(dict(spec.parameters))
        if self.timeout_s:
            return await asyncio.wait_for(coro, timeout=self.timeout_s)
        return await coro

    async def execute(self, spec: CallSpec, policy: Optional[RetryPolicy] = None) -> CallOutcome:
        policy = policy or self.policy
        op = spec.operation_id

        try:
            self.validator.validate(spec)
        except ValidationRejected as e:
            logger.warning("rejected '%s' before execution: %s", op, e.reason)
            upstream_attempts_total.labels(operation=op, result="rejected").inc()
            return CallFailure(message=describe_error(e), kind=ErrorKind.FATAL, attempts=1)

        attempt = 0
        while True:
            attempt += 1
            try:
                data = await self._invoke_once(spec)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                rule, kind = classify_with_rule(exc)
                message = describe_error(exc)
                upstream_attempts_total.labels(operation=op, result=kind.value).inc()
                logger.warning("'%s' failed on attempt %d/%d (%s via %s rule): %s",
                               op, attempt, policy.max_attempts, kind.value, rule, message)
                if kind == ErrorKind.FATAL or attempt >= policy.max_attempts:
                    return CallFailure(message=message, kind=kind, attempts=attempt)
                delay_ms = policy.delay_ms(attempt)
                upstream_retries_total.labels(operation=op).inc()
                logger.debug("retrying '%s' in %dms (attempt %d/%d)", op, delay_ms, attempt + 1, policy.max_attempts)
                await self._sleep(delay_ms / 1000.0)
                continue
            upstream_attempts_total.labels(operation=op, result="success").inc()
            return CallSuccess(data=data, attempts=attempt)
