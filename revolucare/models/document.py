"""Document and document analysis models."""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from .confidence import ConfidenceScore, ConfidenceSignal
from .enums import AnalysisPriority, AnalysisStatus, AnalysisType, DocumentStatus, DocumentType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    """Immutable reference to uploaded content."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str = Field(..., description="User who owns the document")
    name: str = Field(..., description="Original file name")
    type: DocumentType = Field(default=DocumentType.OTHER)
    mime_type: str = Field(..., description="Content type")
    size: int = Field(default=0, ge=0)
    storage_ref: Optional[str] = Field(default=None, description="Blob storage key")
    status: DocumentStatus = Field(default=DocumentStatus.UPLOADING)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class DocumentFilter(BaseModel):
    """Filter for listing documents."""
    owner_id: Optional[str] = None
    type: Optional[DocumentType] = None
    status: Optional[DocumentStatus] = None
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Analysis results: one variant per analysis type, discriminated by ``kind``
# ---------------------------------------------------------------------------

class ExtractedFact(BaseModel):
    """A single structured fact pulled from a document."""
    name: str = Field(..., min_length=1)
    detail: Optional[str] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    source_document_id: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: Any) -> float:
        # Models sometimes answer in percent
        if value is None:
            return 0.5
        value = float(value)
        if value > 1.0:
            value = value / 100.0
        return min(max(value, 0.0), 1.0)


FACT_CATEGORIES = ("diagnoses", "medications", "allergies", "functional_status", "preferences")


class MedicalExtractionResult(BaseModel):
    kind: Literal["medical_extraction"] = "medical_extraction"
    diagnoses: List[ExtractedFact] = Field(default_factory=list)
    medications: List[ExtractedFact] = Field(default_factory=list)
    allergies: List[ExtractedFact] = Field(default_factory=list)
    functional_status: List[ExtractedFact] = Field(default_factory=list)
    preferences: List[ExtractedFact] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)

    def facts_by_category(self) -> Dict[str, List[ExtractedFact]]:
        return {category: list(getattr(self, category)) for category in FACT_CATEGORIES}

    def has_facts(self) -> bool:
        return any(getattr(self, category) for category in FACT_CATEGORIES)


class TextExtractionResult(BaseModel):
    kind: Literal["text_extraction"] = "text_extraction"
    text: str = ""
    language: Optional[str] = None
    page_count: Optional[int] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class FormField(BaseModel):
    value: Any = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class FormRecognitionResult(BaseModel):
    kind: Literal["form_recognition"] = "form_recognition"
    fields: Dict[str, FormField] = Field(default_factory=dict)
    extra: Dict[str, Any] = Field(default_factory=dict)


class IdentityVerificationResult(BaseModel):
    kind: Literal["identity_verification"] = "identity_verification"
    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    document_number: Optional[str] = None
    verified: bool = False
    extra: Dict[str, Any] = Field(default_factory=dict)


class AnalysisFailure(BaseModel):
    """Error payload stored in ``results`` of a failed analysis."""
    kind: Literal["error"] = "error"
    message: str
    error_type: str = "UpstreamServiceError"
    retryable: bool = False


AnalysisResults = Annotated[
    Union[
        MedicalExtractionResult,
        TextExtractionResult,
        FormRecognitionResult,
        IdentityVerificationResult,
        AnalysisFailure,
    ],
    Field(discriminator="kind"),
]

analysis_results_adapter = TypeAdapter(AnalysisResults)


class DocumentAnalysis(BaseModel):
    """One analysis attempt against one document."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    document_id: str
    analysis_type: AnalysisType
    status: AnalysisStatus = Field(default=AnalysisStatus.PENDING)
    priority: AnalysisPriority = Field(default=AnalysisPriority.NORMAL)
    results: Optional[AnalysisResults] = None
    confidence: Optional[ConfidenceScore] = None
    processing_time_ms: Optional[int] = None
    model_type: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None


class DocumentAnalysisHandle(BaseModel):
    """Returned by ``analyze`` before the extraction has finished."""
    analysis_id: str
    document_id: str
    analysis_type: AnalysisType
    status: AnalysisStatus
    created_at: datetime


class ExtractionOutput(BaseModel):
    """What an extraction capability hands back to the orchestrator."""
    model_config = {"arbitrary_types_allowed": True}

    results: AnalysisResults
    confidence_signals: List[ConfidenceSignal] = Field(default_factory=list)
    processing_time_ms: int = 0
    model_type: Optional[str] = None
