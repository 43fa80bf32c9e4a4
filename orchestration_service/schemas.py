from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


class PresentationMode(str, Enum):
    TEXT = "text"
    UI = "ui"
    FORM = "form"


class CallSpec(BaseModel):
    """One named upstream operation requested by the planner."""
    operation_id: str = Field(..., min_length=1, validation_alias=AliasChoices("operation_id", "operationId", "apiId"))
    reason: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)
    expected_data: Optional[str] = Field(None, validation_alias=AliasChoices("expected_data", "expectedData"))
    # set by the caller after the user approves a write
    confirmed: bool = False

    model_config = {
        "frozen": True,
        "populate_by_name": True,
    }

    @field_validator("operation_id", mode="before")
    @classmethod
    def strip_operation_id(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("parameters", mode="before")
    @classmethod
    def coerce_parameters(cls, v):
        if v is None:
            return {}
        return v


class SortSpec(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class UiSpec(BaseModel):
    """What to show, not how to show it."""
    type: Literal["table", "chart", "cards", "timeline", "metrics", "mixed"] = "mixed"
    data_description: str = Field("", validation_alias=AliasChoices("data_description", "dataDescription"))
    highlights: List[str] = Field(default_factory=list)
    chart_type: Optional[Literal["bar", "line", "pie", "area", "scatter"]] = Field(
        None, validation_alias=AliasChoices("chart_type", "chartType")
    )
    group_by: Optional[str] = Field(None, validation_alias=AliasChoices("group_by", "groupBy"))
    sort_by: Optional[SortSpec] = Field(None, validation_alias=AliasChoices("sort_by", "sortBy"))
    filters: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @field_validator("highlights", "filters", mode="before")
    @classmethod
    def none_to_empty(cls, v, info):
        if v is None:
            return [] if info.field_name == "highlights" else {}
        return v


class FormSpec(BaseModel):
    """Form needed to collect input for a write operation."""
    action_type: str = Field(..., min_length=1, validation_alias=AliasChoices("action_type", "actionType"))
    title: str = ""
    description: str = ""
    prefill_data: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("prefill_data", "prefillData"))
    field_hints: Dict[str, str] = Field(default_factory=dict, validation_alias=AliasChoices("field_hints", "fieldHints"))
    hidden_fields: List[str] = Field(default_factory=list, validation_alias=AliasChoices("hidden_fields", "hiddenFields"))

    model_config = {"populate_by_name": True}

    @field_validator("prefill_data", "field_hints", mode="before")
    @classmethod
    def none_to_dict(cls, v):
        return {} if v is None else v

    @field_validator("hidden_fields", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return [] if v is None else v


class PlannerError(BaseModel):
    type: Literal["clarification_needed", "insufficient_data", "operation_failed"]
    message: str
    clarification_question: Optional[str] = Field(
        None, validation_alias=AliasChoices("clarification_question", "clarificationQuestion")
    )
    suggestions: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class PresentationDecision:
    mode: PresentationMode
    payload: Union[str, UiSpec, FormSpec]


class PlannerDecision(BaseModel):
    """Structured decision produced by the planning model for one request."""
    mode: PresentationMode = Field(..., validation_alias=AliasChoices("mode", "responseFormat", "response_format"))
    text_response: str = Field("", validation_alias=AliasChoices("text_response", "textResponse"))
    api_calls: List[CallSpec] = Field(default_factory=list, validation_alias=AliasChoices("api_calls", "apiCalls"))
    ui_spec: Optional[UiSpec] = Field(None, validation_alias=AliasChoices("ui_spec", "uiSpec"))
    form_spec: Optional[FormSpec] = Field(None, validation_alias=AliasChoices("form_spec", "formSpec"))
    layout_intent: Literal["full", "extended", "preview", "hidden"] = Field(
        "preview", validation_alias=AliasChoices("layout_intent", "layoutIntent")
    )
    thinking: Optional[str] = None
    error: Optional[PlannerError] = None
    suggest_ui: bool = Field(False, validation_alias=AliasChoices("suggest_ui", "suggestUI"))

    model_config = {"populate_by_name": True}

    @field_validator("api_calls", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return [] if v is None else v

    @field_validator("text_response", mode="before")
    @classmethod
    def none_to_str(cls, v):
        return "" if v is None else v

    @model_validator(mode="after")
    def payload_matches_mode(self):
        if self.mode == PresentationMode.UI and self.ui_spec is None:
            raise ValueError("ui mode requires ui_spec")
        if self.mode == PresentationMode.FORM and self.form_spec is None:
            raise ValueError("form mode requires form_spec")
        return self

    def presentation(self) -> PresentationDecision:
        if self.mode == PresentationMode.UI:
            return PresentationDecision(mode=self.mode, payload=self.ui_spec)
        if self.mode == PresentationMode.FORM:
            return PresentationDecision(mode=self.mode, payload=self.form_spec)
        return PresentationDecision(mode=self.mode, payload=self.text_response)


__all__ = [
    "PresentationMode",
    "CallSpec",
    "SortSpec",
    "UiSpec",
    "FormSpec",
    "PlannerError",
    "PresentationDecision",
    "PlannerDecision",
]
