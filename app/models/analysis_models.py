from typing import Annotated
from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import BeforeValidator
from pydantic import ConfigDict
from pydantic import Field
from pydantic.alias_generators import to_camel

NOT_SPECIFIED = "Not specified"
DEFAULT_CONFIDENCE = 0.5


def _clamp_confidence(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return min(1.0, max(0.0, number))


def _as_text(value: Any) -> str:
    if value is None:
        return NOT_SPECIFIED
    return value if isinstance(value, str) else str(value)


def _as_text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item if isinstance(item, str) else str(item) for item in value if item is not None]


def _only_mappings(value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _as_optional_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


Confidence = Annotated[float | None, BeforeValidator(_clamp_confidence)]
Text = Annotated[str, BeforeValidator(_as_text)]
TextList = Annotated[list[str], BeforeValidator(_as_text_list)]
Records = BeforeValidator(_only_mappings)


class _AnalysisModel(BaseModel):
    # The model replies in camelCase; Python code reads snake_case. Records are frozen
    # once built; list fields are plain lists, so treat them as read-only.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)


class MandatoryRequirement(_AnalysisModel):
    requirement: Text = NOT_SPECIFIED
    compliance_mapping: Text = NOT_SPECIFIED
    confidence: Confidence = None


class DesiredRequirement(_AnalysisModel):
    requirement: Text = NOT_SPECIFIED
    weight_score: Text = NOT_SPECIFIED
    confidence: Confidence = None


class OptionalRequirement(_AnalysisModel):
    requirement: Text = NOT_SPECIFIED
    confidence: Confidence = None


class HiddenRequirement(_AnalysisModel):
    requirement: Text = NOT_SPECIFIED
    evidence: Text = NOT_SPECIFIED
    confidence: Confidence = None


class CriticalRequirementsMatrix(_AnalysisModel):
    mandatory: Annotated[list[MandatoryRequirement], Records] = Field(default_factory=list)
    desired: Annotated[list[DesiredRequirement], Records] = Field(default_factory=list)
    optional: Annotated[list[OptionalRequirement], Records] = Field(default_factory=list)
    hidden: Annotated[list[HiddenRequirement], Records] = Field(default_factory=list)


class EvaluationCriterion(_AnalysisModel):
    criterion: Text = NOT_SPECIFIED
    weight: Text = NOT_SPECIFIED
    priority: Text = NOT_SPECIFIED
    confidence: Confidence = None


class RiskFactor(_AnalysisModel):
    factor: Text = NOT_SPECIFIED
    severity: Text = NOT_SPECIFIED
    confidence: Confidence = None


class EvaluationCriteria(_AnalysisModel):
    scoring_methodology: Text = NOT_SPECIFIED
    criteria: Annotated[list[EvaluationCriterion], Records] = Field(default_factory=list)
    budget_indicators: Text = NOT_SPECIFIED
    risk_factors: Annotated[list[RiskFactor], Records] = Field(default_factory=list)


class StrategicIntelligence(_AnalysisModel):
    incumbent_advantages: Text = NOT_SPECIFIED
    political_landscape: Text = NOT_SPECIFIED
    timeline_pressures: Text = NOT_SPECIFIED
    competitive_opportunities: Text = NOT_SPECIFIED
    confidence: Confidence = DEFAULT_CONFIDENCE


class WinThemes(_AnalysisModel):
    primary_value_drivers: TextList = Field(default_factory=list)
    pain_points: TextList = Field(default_factory=list)
    key_differentiators: TextList = Field(default_factory=list)
    required_proof_points: TextList = Field(default_factory=list)
    confidence: Confidence = DEFAULT_CONFIDENCE


class RedFlag(_AnalysisModel):
    flag: Text = NOT_SPECIFIED
    severity: Text = NOT_SPECIFIED
    impact: Text = NOT_SPECIFIED
    confidence: Confidence = None


class Deadline(_AnalysisModel):
    task: Text = NOT_SPECIFIED
    date: Text = NOT_SPECIFIED
    days_remaining: Annotated[int | None, BeforeValidator(_as_optional_int)] = None
    urgency: Text = NOT_SPECIFIED


class Stakeholder(_AnalysisModel):
    name: Text = NOT_SPECIFIED
    role: Text = NOT_SPECIFIED
    department: Text = NOT_SPECIFIED
    influence: Text = NOT_SPECIFIED
    priorities: TextList = Field(default_factory=list)


class AnalysisResult(_AnalysisModel):
    """Structured RFP analysis. Every field is present; back-filled paths are listed in ``defaulted_fields``."""

    critical_requirements_matrix: CriticalRequirementsMatrix = Field(default_factory=CriticalRequirementsMatrix)
    evaluation_criteria: EvaluationCriteria = Field(default_factory=EvaluationCriteria)
    strategic_intelligence: StrategicIntelligence = Field(default_factory=StrategicIntelligence)
    win_themes: WinThemes = Field(default_factory=WinThemes)
    red_flags: Annotated[list[RedFlag], Records] = Field(default_factory=list)
    deadlines: Annotated[list[Deadline], Records] = Field(default_factory=list)
    stakeholders: Annotated[list[Stakeholder], Records] = Field(default_factory=list)
    defaulted_fields: list[str] = Field(default_factory=list)


class AnalysisProgress(BaseModel):
    status: Literal["idle", "analyzing", "completed", "error"]
    progress: int = Field(ge=0, le=100)
    current_step: str | None = None
    error: str | None = None


class DocumentValidation(BaseModel):
    is_valid: bool
    error: str | None = None
