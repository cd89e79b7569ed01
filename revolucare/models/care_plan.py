"""Care plan, version history and generated option models."""
import hashlib
import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .confidence import ConfidenceScore
from .enums import GoalStatus, InterventionStatus, PlanStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


Measure = Annotated[str, Field(min_length=5, max_length=200)]


# ---------------------------------------------------------------------------
# Persisted entities
# ---------------------------------------------------------------------------

class CarePlanGoal(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    description: str
    target_date: Optional[datetime] = None
    status: GoalStatus = GoalStatus.PENDING
    measures: List[str] = Field(default_factory=list)


class CarePlanIntervention(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    description: str
    frequency: str
    duration: str
    responsible_party: str
    status: InterventionStatus = InterventionStatus.PENDING


class CarePlan(BaseModel):
    """The durable, versioned, approvable care plan."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    client_id: str
    created_by_id: str
    title: str
    description: str
    status: PlanStatus = PlanStatus.DRAFT
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    version: int = Field(default=1, ge=1)
    previous_version_id: Optional[str] = None
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    goals: List[CarePlanGoal] = Field(default_factory=list)
    interventions: List[CarePlanIntervention] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class CarePlanVersion(BaseModel):
    """Append-only record of one content-changing update."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    care_plan_id: str
    version: int
    changes: Dict[str, Any] = Field(default_factory=dict)
    created_by_id: str
    created_at: datetime = Field(default_factory=_utcnow)


class CarePlanHistory(BaseModel):
    care_plan_id: str
    current_version: int
    versions: List[CarePlanVersion] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class GoalInput(BaseModel):
    """Goal as supplied by a caller. ``id`` targets an existing goal on update."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    description: str = Field(..., min_length=10, max_length=500)
    target_date: Optional[datetime] = None
    status: GoalStatus = GoalStatus.PENDING
    measures: List[Measure] = Field(..., min_length=1)


class InterventionInput(BaseModel):
    """Intervention as supplied by a caller. ``id`` targets an existing intervention on update."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    description: str = Field(..., min_length=10, max_length=500)
    frequency: str = Field(..., min_length=1, max_length=100)
    duration: str = Field(..., min_length=1, max_length=100)
    responsible_party: str = Field(..., min_length=1, max_length=100)
    status: InterventionStatus = InterventionStatus.PENDING


class CreateCarePlanRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    client_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    goals: List[GoalInput] = Field(..., min_length=1)
    interventions: List[InterventionInput] = Field(..., min_length=1)
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)


class UpdateCarePlanRequest(BaseModel):
    """Partial update. Omitted fields are left unchanged."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=1000)
    status: Optional[PlanStatus] = None
    goals: Optional[List[GoalInput]] = Field(default=None, min_length=1)
    interventions: Optional[List[InterventionInput]] = Field(default=None, min_length=1)
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)


class ApproveCarePlanRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    approval_notes: Optional[str] = Field(default=None, max_length=500)


class CarePlanFilter(BaseModel):
    client_id: Optional[str] = None
    created_by_id: Optional[str] = None
    status: Optional[PlanStatus] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)

    def fingerprint(self) -> str:
        """Stable hash of the filter, used in list cache keys."""
        payload = json.dumps(self.model_dump(mode="json", exclude={"client_id"}), sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class CarePlanPage(BaseModel):
    items: List[CarePlan] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10


# ---------------------------------------------------------------------------
# Generated options
# ---------------------------------------------------------------------------

class OptionGoal(BaseModel):
    description: str
    measures: List[str] = Field(default_factory=list)
    target_days: Optional[int] = None


class OptionIntervention(BaseModel):
    description: str
    frequency: str = "as needed"
    duration: str = "ongoing"
    responsible_party: str = "care team"


class CarePlanOption(BaseModel):
    """An AI-generated, not-yet-persisted candidate care plan."""
    strategy: str
    title: str
    description: str
    confidence_score: ConfidenceScore
    goals: List[OptionGoal] = Field(default_factory=list)
    interventions: List[OptionIntervention] = Field(default_factory=list)
    expected_outcomes: List[str] = Field(default_factory=list)


class ExcludedDocument(BaseModel):
    document_id: str
    reason: str


class AnalysisMetadata(BaseModel):
    documents_used: List[str] = Field(default_factory=list)
    documents_excluded: List[ExcludedDocument] = Field(default_factory=list)
    strategies: List[str] = Field(default_factory=list)
    failed_strategies: Dict[str, str] = Field(default_factory=dict)
    fact_count: int = 0
    processing_time_ms: int = 0
    generated_at: datetime = Field(default_factory=_utcnow)


class CarePlanOptionsResponse(BaseModel):
    client_id: str
    options: List[CarePlanOption] = Field(default_factory=list)
    analysis_metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)
