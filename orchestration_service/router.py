import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import RequestFailed
from .generation_client import FormGenerator, UIGenerator
from .intent import detect_merge_intent
from .outcomes import PlanResult
from .schemas import FormSpec, PresentationDecision, PresentationMode, UiSpec
from .ui_merge import MergeIntent, MergeStrategy, UIMergeEngine

logger = logging.getLogger(__name__)


@dataclass
class Artifact:
    """What a request produces for the caller.

    For UI mode ``content`` is the merged document, which the caller stores as
    the base for the next turn.
    """
    mode: PresentationMode
    content: str
    data: Dict[str, Any] = field(default_factory=dict)
    intent: Optional[MergeIntent] = None
    merge_strategy: Optional[MergeStrategy] = None


def strip_empty_strings(value: Any) -> Any:
    """Drop empty-string values from nested mappings; lists keep their shape."""
    if isinstance(value, dict):
        return {k: strip_empty_strings(v) for k, v in value.items() if v != ""}
    if isinstance(value, list):
        return [strip_empty_strings(v) for v in value]
    return value


class PresentationRouter:
    def __init__(self, ui_generator: UIGenerator, form_generator: FormGenerator,
                 merge_engine: Optional[UIMergeEngine] = None):
        self.ui_generator = ui_generator
        self.form_generator = form_generator
        self.merge_engine = merge_engine or UIMergeEngine()

    async def route(self, decision: PresentationDecision, plan_result: PlanResult,
                    previous_ui: Optional[str] = None, user_prompt: str = "",
                    intent: Optional[MergeIntent] = None) -> Artifact:
        if decision.mode == PresentationMode.TEXT:
            return Artifact(mode=decision.mode, content=str(decision.payload or ""), data=plan_result.to_payload())
        if decision.mode == PresentationMode.FORM:
            return await self._route_form(decision.payload, plan_result)
        return await self._route_ui(decision.payload, plan_result, previous_ui, user_prompt, intent)

    async def _route_form(self, spec: FormSpec, plan_result: PlanResult) -> Artifact:
        prefill = strip_empty_strings(spec.prefill_data)
        clean_spec = spec.model_copy(update={"prefill_data": prefill})
        data = {"prefill": prefill, "records": strip_empty_strings(plan_result.successful_data())}
        try:
            content = await self.form_generator.generate(clean_spec, data)
        except Exception as e:
            raise RequestFailed(f"form generation failed: {e}", cause=e) from e
        return Artifact(mode=PresentationMode.FORM, content=content, data=data)

    async def _route_ui(self, spec: UiSpec, plan_result: PlanResult, previous_ui: Optional[str],
                        user_prompt: str, intent: Optional[MergeIntent]) -> Artifact:
        data = plan_result.to_payload()
        try:
            fragment = await self.ui_generator.generate(spec, data, previous_ui)
        except Exception as e:
            raise RequestFailed(f"ui generation failed: {e}", cause=e) from e
        has_base = bool(previous_ui and previous_ui.strip())
        if not has_base:
            intent = MergeIntent.NEW
        elif intent is None:
            intent = detect_merge_intent(user_prompt, has_base)
        merged = self.merge_engine.merge(previous_ui, fragment, intent)
        return Artifact(mode=PresentationMode.UI, content=merged.document, data=data, intent=intent,
                        merge_strategy=merged.strategy)
