"""Extraction capabilities with canned outputs."""
import asyncio
from typing import Any, Dict, List, Optional, Union

from revolucare.models.confidence import ConfidenceSignal
from revolucare.models.document import (
    Document,
    ExtractedFact,
    ExtractionOutput,
    MedicalExtractionResult,
)
from revolucare.models.enums import AnalysisType
from revolucare.reasoning.extraction import ExtractionCapability

Outcome = Union[ExtractionOutput, BaseException]


def medical_output(
    diagnoses: Optional[List[tuple]] = None,
    medications: Optional[List[tuple]] = None,
    allergies: Optional[List[tuple]] = None,
    functional_status: Optional[List[tuple]] = None,
    preferences: Optional[List[tuple]] = None,
    model_confidence: float = 0.9,
) -> ExtractionOutput:
    """Build a medical extraction output from (name, confidence) pairs."""

    def _facts(items):
        return [ExtractedFact(name=name, confidence=conf) for name, conf in (items or [])]

    results = MedicalExtractionResult(
        diagnoses=_facts(diagnoses),
        medications=_facts(medications),
        allergies=_facts(allergies),
        functional_status=_facts(functional_status),
        preferences=_facts(preferences),
    )
    return ExtractionOutput(
        results=results,
        confidence_signals=[ConfidenceSignal("model_confidence", model_confidence)],
        processing_time_ms=5,
        model_type="fake-medical",
    )


class FakeExtractionCapability(ExtractionCapability):
    """
    Returns the outcome scripted for a document id, else ``default``.

    When ``gate`` is set, every call waits on it before returning.
    """

    def __init__(
        self,
        outcomes: Optional[Dict[str, Outcome]] = None,
        default: Optional[Outcome] = None,
        delay: float = 0.0,
        gate: Optional[asyncio.Event] = None,
    ):
        self.outcomes = dict(outcomes or {})
        self.default = default if default is not None else medical_output(diagnoses=[("Hypertension", 0.9)])
        self.delay = delay
        self.gate = gate
        self.calls: List[Dict[str, Any]] = []

    async def extract(
        self,
        document: Document,
        analysis_type: AnalysisType,
        options: Optional[Dict[str, Any]] = None,
    ) -> ExtractionOutput:
        self.calls.append({"document_id": document.id, "analysis_type": analysis_type, "options": options})
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.get(document.id, self.default)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome.model_copy(deep=True)
