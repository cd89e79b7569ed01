"""Data models for the Revolucare care planning core."""
from .enums import (
    DocumentType,
    DocumentStatus,
    AnalysisType,
    AnalysisStatus,
    AnalysisPriority,
    ConfidenceLevel,
    PlanStatus,
    GoalStatus,
    InterventionStatus,
    UserRole,
    CarePlanEventType,
    TaskCategory,
    LLMProvider,
)
from .confidence import ConfidenceScore, ConfidenceSignal, level_for
from .document import (
    Document,
    DocumentFilter,
    ExtractedFact,
    MedicalExtractionResult,
    TextExtractionResult,
    FormField,
    FormRecognitionResult,
    IdentityVerificationResult,
    AnalysisFailure,
    AnalysisResults,
    DocumentAnalysis,
    DocumentAnalysisHandle,
    ExtractionOutput,
)
from .care_plan import (
    CarePlan,
    CarePlanGoal,
    CarePlanIntervention,
    CarePlanVersion,
    CarePlanHistory,
    GoalInput,
    InterventionInput,
    CreateCarePlanRequest,
    UpdateCarePlanRequest,
    ApproveCarePlanRequest,
    CarePlanFilter,
    CarePlanPage,
    OptionGoal,
    OptionIntervention,
    CarePlanOption,
    ExcludedDocument,
    AnalysisMetadata,
    CarePlanOptionsResponse,
)

__all__ = [
    # Enums
    "DocumentType",
    "DocumentStatus",
    "AnalysisType",
    "AnalysisStatus",
    "AnalysisPriority",
    "ConfidenceLevel",
    "PlanStatus",
    "GoalStatus",
    "InterventionStatus",
    "UserRole",
    "CarePlanEventType",
    "TaskCategory",
    "LLMProvider",
    # Confidence
    "ConfidenceScore",
    "ConfidenceSignal",
    "level_for",
    # Documents
    "Document",
    "DocumentFilter",
    "ExtractedFact",
    "MedicalExtractionResult",
    "TextExtractionResult",
    "FormField",
    "FormRecognitionResult",
    "IdentityVerificationResult",
    "AnalysisFailure",
    "AnalysisResults",
    "DocumentAnalysis",
    "DocumentAnalysisHandle",
    "ExtractionOutput",
    # Care plans
    "CarePlan",
    "CarePlanGoal",
    "CarePlanIntervention",
    "CarePlanVersion",
    "CarePlanHistory",
    "GoalInput",
    "InterventionInput",
    "CreateCarePlanRequest",
    "UpdateCarePlanRequest",
    "ApproveCarePlanRequest",
    "CarePlanFilter",
    "CarePlanPage",
    # Options
    "OptionGoal",
    "OptionIntervention",
    "CarePlanOption",
    "ExcludedDocument",
    "AnalysisMetadata",
    "CarePlanOptionsResponse",
]
