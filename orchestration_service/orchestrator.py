"""
Request pipeline: planner decision -> call plan -> presentation -> merged UI.

Collaborators are constructed once (``build_orchestrator``) and injected, so
tests can swap any of them for fakes. One ``process`` call handles one request
to completion; a cancelled request cancels its in-flight upstream calls and
discards partial results.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from .cache import ResponseCache
from .catalog import OperationRegistry
from .config import get_settings
from .errors import RequestFailed
from .executor import ResilientCallExecutor
from .generation_client import GenerationClient, LLMFormGenerator, LLMUIGenerator
from .metrics import orchestration_requests_total
from .outcomes import PlanResult
from .plan_runner import CallPlanRunner
from .router import Artifact, PresentationRouter
from .schemas import PlannerDecision, PresentationMode
from .ui_merge import MergeIntent
from .upstream_client import UpstreamClient
from .validation import CallValidator

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationResponse:
    ok: bool
    artifact: Optional[Artifact] = None
    error: Optional[str] = None
    # document the caller should store as the next turn's base
    ui_document: Optional[str] = None
    plan_result: Optional[PlanResult] = None


class Orchestrator:
    def __init__(self, runner: CallPlanRunner, router: PresentationRouter, max_calls: Optional[int] = None,
                 registry: Optional[OperationRegistry] = None, cache: Optional[ResponseCache] = None,
                 resources: Optional[list] = None):
        self.runner = runner
        self.router = router
        self.max_calls = int(max_calls or get_settings().PLAN_MAX_CALLS)
        self.registry = registry
        self.cache = cache
        self._resources = list(resources or [])

    def parse_decision(self, raw: Union[PlannerDecision, Dict[str, Any], str]) -> PlannerDecision:
        if isinstance(raw, PlannerDecision):
            decision = raw
        else:
            try:
                if isinstance(raw, str):
                    decision = PlannerDecision.model_validate_json(raw)
                else:
                    decision = PlannerDecision.model_validate(raw)
            except ValidationError as e:
                raise RequestFailed(f"malformed planner decision: {e.error_count()} error(s)", cause=e) from e
        if len(decision.api_calls) > self.max_calls:
            raise RequestFailed(f"call plan has {len(decision.api_calls)} operations, limit is {self.max_calls}")
        return decision

    async def process(self, raw_decision: Union[PlannerDecision, Dict[str, Any], str],
                      previous_ui: Optional[str] = None, user_prompt: str = "",
                      intent: Optional[MergeIntent] = None) -> OrchestrationResponse:
        """Run one request. Never raises for request-level failures; cancellation propagates."""
        mode = "unknown"
        try:
            decision = self.parse_decision(raw_decision)
            mode = decision.mode.value
            plan_result = await self.runner.run(decision.api_calls)
            artifact = await self.router.route(decision.presentation(), plan_result, previous_ui=previous_ui,
                                               user_prompt=user_prompt, intent=intent)
        except asyncio.CancelledError:
            orchestration_requests_total.labels(mode=mode, result="cancelled").inc()
            raise
        except RequestFailed as e:
            logger.exception("request failed: %s", e.message)
            orchestration_requests_total.labels(mode=mode, result="failed").inc()
            return OrchestrationResponse(ok=False, error=e.message, ui_document=previous_ui)

        orchestration_requests_total.labels(
            mode=mode, result="partial" if plan_result.has_failures else "ok"
        ).inc()
        ui_document = artifact.content if artifact.mode == PresentationMode.UI else previous_ui
        return OrchestrationResponse(ok=True, artifact=artifact, ui_document=ui_document, plan_result=plan_result)

    async def close(self) -> None:
        for res in reversed(self._resources):
            try:
                await res.close()
            except Exception:
                logger.exception("error closing %s", type(res).__name__)
        self._resources = []


def build_orchestrator(registry: Optional[OperationRegistry] = None) -> Orchestrator:
    """Wire the production collaborators from settings."""
    cfg = get_settings()
    cache = ResponseCache() if cfg.CACHE_ENABLED else None
    client = UpstreamClient(cache=cache)
    registry = registry or OperationRegistry.from_catalog(client)
    executor = ResilientCallExecutor(registry, CallValidator(registry))
    runner = CallPlanRunner(executor)
    generation = GenerationClient()
    router = PresentationRouter(LLMUIGenerator(generation), LLMFormGenerator(generation))
    resources = [r for r in (cache, client, generation) if r is not None]
    return Orchestrator(runner, router, registry=registry, cache=cache, resources=resources)
