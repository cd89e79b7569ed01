"""Enumeration types for the Revolucare care planning core."""
from enum import Enum


class DocumentType(str, Enum):
    """Kinds of documents a client or provider can upload."""
    MEDICAL_RECORD = "medical_record"
    ASSESSMENT = "assessment"
    CARE_PLAN = "care_plan"
    SERVICES_PLAN = "services_plan"
    PRESCRIPTION = "prescription"
    INSURANCE = "insurance"
    CONSENT_FORM = "consent_form"
    IDENTIFICATION = "identification"
    PROVIDER_CREDENTIAL = "provider_credential"
    OTHER = "other"


class DocumentStatus(str, Enum):
    """Upload lifecycle of a document."""
    UPLOADING = "uploading"
    PROCESSING = "processing"
    AVAILABLE = "available"
    ERROR = "error"


class AnalysisType(str, Enum):
    """Extraction capabilities that can run against a document."""
    MEDICAL_EXTRACTION = "medical_extraction"
    TEXT_EXTRACTION = "text_extraction"
    FORM_RECOGNITION = "form_recognition"
    IDENTITY_VERIFICATION = "identity_verification"


class AnalysisStatus(str, Enum):
    """Status of one analysis attempt."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"  # Terminal
    FAILED = "failed"  # Terminal

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.COMPLETED, AnalysisStatus.FAILED)


class AnalysisPriority(str, Enum):
    """Scheduling hint passed through to the job queue."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ConfidenceLevel(str, Enum):
    """Qualitative band for a confidence score."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class PlanStatus(str, Enum):
    """Care plan lifecycle."""
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"  # Terminal
    REJECTED = "REJECTED"  # Terminal
    DISCONTINUED = "DISCONTINUED"  # Terminal

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.COMPLETED, PlanStatus.REJECTED, PlanStatus.DISCONTINUED)


class GoalStatus(str, Enum):
    """Progress of a care plan goal."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ACHIEVED = "achieved"
    DISCONTINUED = "discontinued"


class InterventionStatus(str, Enum):
    """Progress of a care plan intervention."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    DISCONTINUED = "discontinued"


class UserRole(str, Enum):
    """Roles recognized by the care plan access rule."""
    ADMINISTRATOR = "administrator"
    CASE_MANAGER = "case_manager"
    PROVIDER = "provider"
    CLIENT = "client"


class CarePlanEventType(str, Enum):
    """Domain events published after care plan mutations."""
    CARE_PLAN_CREATED = "care_plan_created"
    CARE_PLAN_UPDATED = "care_plan_updated"
    CARE_PLAN_APPROVED = "care_plan_approved"
    CARE_PLAN_STATUS_CHANGED = "care_plan_status_changed"


class TaskCategory(str, Enum):
    """Categories of LLM tasks for model routing."""
    MEDICAL_EXTRACTION = "medical_extraction"  # Claude primary
    TEXT_EXTRACTION = "text_extraction"  # Gemini primary
    FORM_RECOGNITION = "form_recognition"  # Gemini primary
    IDENTITY_VERIFICATION = "identity_verification"  # Gemini primary
    CARE_PLAN_GENERATION = "care_plan_generation"  # Claude primary


class LLMProvider(str, Enum):
    """LLM providers."""
    CLAUDE = "claude"
    GEMINI = "gemini"
    AZURE_OPENAI = "azure_openai"
