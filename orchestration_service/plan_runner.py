import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence

from .config import get_settings
from .executor import ResilientCallExecutor
from .metrics import plan_calls_total, plan_duration_seconds, plan_inflight
from .outcomes import CallFailure, CallOutcome, ErrorSummary, PlanResult, RetryPolicy
from .schemas import CallSpec

logger = logging.getLogger(__name__)


def slot_keys(plan: Sequence[CallSpec]) -> List[str]:
    """One result key per CallSpec, in plan order.

    A repeated operation id gets a ``#2``, ``#3`` ... suffix so every spec keeps
    its own slot.
    """
    seen: Dict[str, int] = {}
    keys: List[str] = []
    for spec in plan:
        n = seen.get(spec.operation_id, 0) + 1
        seen[spec.operation_id] = n
        keys.append(spec.operation_id if n == 1 else f"{spec.operation_id}#{n}")
    return keys


class CallPlanRunner:
    def __init__(self, executor: ResilientCallExecutor, max_concurrency: Optional[int] = None):
        self.executor = executor
        self.max_concurrency = int(max_concurrency or get_settings().PLAN_MAX_CONCURRENCY)

    async def run(self, plan: Sequence[CallSpec], policy: Optional[RetryPolicy] = None) -> PlanResult:
        """Execute every CallSpec and return one outcome per spec.

        Operations in one plan are independent and run concurrently, bounded
        by ``max_concurrency``. A failing operation never aborts the plan.
        """
        plan = list(plan)
        if not plan:
            return PlanResult()

        semaphore = asyncio.Semaphore(self.max_concurrency)
        started = time.monotonic()

        async def _run_one(spec: CallSpec) -> CallOutcome:
            async with semaphore:
                plan_inflight.inc()
                try:
                    return await self.executor.execute(spec, policy)
                finally:
                    plan_inflight.dec()

        # cancellation propagates: a cancelled request discards partial results
        outcomes = await asyncio.gather(*(_run_one(spec) for spec in plan))

        result = PlanResult()
        for key, spec, outcome in zip(slot_keys(plan), plan, outcomes):
            result.outcomes[key] = outcome
            if isinstance(outcome, CallFailure):
                result.errors.append(ErrorSummary(
                    operation_id=key,
                    reason=spec.reason,
                    message=outcome.message,
                    kind=outcome.kind,
                ))
                plan_calls_total.labels(result="failure").inc()
            else:
                plan_calls_total.labels(result="success").inc()

        plan_duration_seconds.observe(time.monotonic() - started)
        self._log_summary(result)
        return result

    @staticmethod
    def _log_summary(result: PlanResult) -> None:
        if not result.errors:
            logger.info("plan completed: %d operation(s), no failures", len(result))
            return
        logger.warning("plan completed with %d/%d failure(s)", len(result.errors), len(result))
        for err in result.errors:
            logger.warning("  failed: operation_id=%s reason=%r message=%r kind=%s",
                           err.operation_id, err.reason, err.message, err.kind.value)
