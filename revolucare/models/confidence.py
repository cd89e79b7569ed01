"""Confidence score and the raw signals it is derived from."""
from dataclasses import dataclass
from typing import List

from pydantic import BaseModel, Field

from .enums import ConfidenceLevel

HIGH_THRESHOLD = 80.0
MEDIUM_THRESHOLD = 60.0


def level_for(score: float) -> ConfidenceLevel:
    """Map a 0-100 score to its qualitative level."""
    if score >= HIGH_THRESHOLD:
        return ConfidenceLevel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


class ConfidenceScore(BaseModel):
    """Normalized trust in an AI-derived result."""
    score: float = Field(..., ge=0.0, le=100.0, description="Aggregate score 0-100")
    level: ConfidenceLevel = Field(..., description="Qualitative band")
    factors: List[str] = Field(default_factory=list, max_length=3, description="Top contributing factors")

    @classmethod
    def from_score(cls, score: float, factors: List[str] = None) -> "ConfidenceScore":
        return cls(score=score, level=level_for(score), factors=list(factors or [])[:3])


@dataclass(frozen=True)
class ConfidenceSignal:
    """
    One partial confidence input.

    ``value`` is either a probability in [0, 1] or a percentage in (1, 100].
    ``weight`` is used when the scoring model has no weight for ``name``.
    """
    name: str
    value: float
    weight: float = 1.0
