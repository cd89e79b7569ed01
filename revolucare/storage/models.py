"""SQLAlchemy ORM models for database tables."""
from datetime import datetime, timezone


def _utcnow():
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)

from sqlalchemy import Column, String, Integer, Float, DateTime, Text, ForeignKey, JSON, Index, UniqueConstraint
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


class DocumentModel(Base):
    """Database model for uploaded documents."""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(36), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False, default="other")
    mime_type = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False, default=0)
    storage_ref = Column(String(512), nullable=True)
    status = Column(String(20), nullable=False, default="uploading")
    metadata_json = Column(JSON, nullable=True, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index('ix_documents_owner_id', 'owner_id'),
        Index('ix_documents_status', 'status'),
    )

    analyses = relationship("DocumentAnalysisModel", back_populates="document", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "type": self.type,
            "mime_type": self.mime_type,
            "size": self.size,
            "storage_ref": self.storage_ref,
            "status": self.status,
            "metadata": self.metadata_json or {},
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class DocumentAnalysisModel(Base):
    """Database model for document analysis attempts."""
    __tablename__ = "document_analyses"

    id = Column(String(36), primary_key=True)
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False)
    analysis_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    priority = Column(String(10), nullable=False, default="normal")

    # Set to "<document_id>:<analysis_type>" while pending/processing, NULL once terminal.
    # The unique constraint admits at most one in-flight analysis per pair.
    active_key = Column(String(100), nullable=True)

    results = Column(JSON, nullable=True)
    confidence = Column(JSON, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    model_type = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('active_key', name='uq_document_analyses_active_key'),
        Index('ix_document_analyses_document_type', 'document_id', 'analysis_type'),
    )

    document = relationship("DocumentModel", back_populates="analyses")

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "document_id": self.document_id,
            "analysis_type": self.analysis_type,
            "status": self.status,
            "priority": self.priority,
            "results": self.results,
            "confidence": self.confidence,
            "processing_time_ms": self.processing_time_ms,
            "model_type": self.model_type,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }


class CarePlanModel(Base):
    """Database model for care plans."""
    __tablename__ = "care_plans"

    id = Column(String(36), primary_key=True)
    client_id = Column(String(36), nullable=False)
    created_by_id = Column(String(36), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="DRAFT")
    confidence_score = Column(Float, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    previous_version_id = Column(String(36), nullable=True)

    # Approval
    approved_by_id = Column(String(36), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approval_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index('ix_care_plans_client_id', 'client_id'),
        Index('ix_care_plans_status', 'status'),
    )

    goals = relationship(
        "CarePlanGoalModel", back_populates="care_plan",
        cascade="all, delete-orphan", order_by="CarePlanGoalModel.position",
    )
    interventions = relationship(
        "CarePlanInterventionModel", back_populates="care_plan",
        cascade="all, delete-orphan", order_by="CarePlanInterventionModel.position",
    )
    versions = relationship(
        "CarePlanVersionModel", back_populates="care_plan",
        cascade="all, delete-orphan", order_by="CarePlanVersionModel.version",
    )

    def to_dict(self) -> dict:
        """Convert to dictionary (children must be loaded)."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "created_by_id": self.created_by_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "confidence_score": self.confidence_score,
            "version": self.version,
            "previous_version_id": self.previous_version_id,
            "approved_by_id": self.approved_by_id,
            "approved_at": self.approved_at,
            "approval_notes": self.approval_notes,
            "goals": [g.to_dict() for g in self.goals],
            "interventions": [i.to_dict() for i in self.interventions],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class CarePlanGoalModel(Base):
    """Database model for care plan goals."""
    __tablename__ = "care_plan_goals"

    id = Column(String(36), primary_key=True)
    care_plan_id = Column(String(36), ForeignKey("care_plans.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=False)
    target_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    measures = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index('ix_care_plan_goals_care_plan_id', 'care_plan_id'),
    )

    care_plan = relationship("CarePlanModel", back_populates="goals")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "target_date": self.target_date,
            "status": self.status,
            "measures": list(self.measures or []),
        }


class CarePlanInterventionModel(Base):
    """Database model for care plan interventions."""
    __tablename__ = "care_plan_interventions"

    id = Column(String(36), primary_key=True)
    care_plan_id = Column(String(36), ForeignKey("care_plans.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=False)
    frequency = Column(String(100), nullable=False)
    duration = Column(String(100), nullable=False)
    responsible_party = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="pending")

    __table_args__ = (
        Index('ix_care_plan_interventions_care_plan_id', 'care_plan_id'),
    )

    care_plan = relationship("CarePlanModel", back_populates="interventions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "frequency": self.frequency,
            "duration": self.duration,
            "responsible_party": self.responsible_party,
            "status": self.status,
        }


class CarePlanVersionModel(Base):
    """Append-only change record for care plans."""
    __tablename__ = "care_plan_versions"

    id = Column(String(36), primary_key=True)
    care_plan_id = Column(String(36), ForeignKey("care_plans.id"), nullable=False)
    version = Column(Integer, nullable=False)
    changes = Column(JSON, nullable=False, default=dict)
    created_by_id = Column(String(36), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint('care_plan_id', 'version', name='uq_care_plan_versions_plan_version'),
        Index('ix_care_plan_versions_care_plan_id', 'care_plan_id'),
    )

    care_plan = relationship("CarePlanModel", back_populates="versions")

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "care_plan_id": self.care_plan_id,
            "version": self.version,
            "changes": self.changes or {},
            "created_by_id": self.created_by_id,
            "created_at": self.created_at,
        }
