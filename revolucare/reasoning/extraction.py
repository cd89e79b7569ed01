"""Extraction capabilities: turn one stored document into typed analysis results."""
import base64
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from revolucare.models.confidence import ConfidenceSignal
from revolucare.models.document import (
    FACT_CATEGORIES,
    Document,
    ExtractionOutput,
    FormRecognitionResult,
    IdentityVerificationResult,
    MedicalExtractionResult,
    TextExtractionResult,
)
from revolucare.models.enums import AnalysisType, TaskCategory
from revolucare.exceptions import UpstreamServiceError
from revolucare.reasoning.llm_gateway import LLMGateway, LLMGatewayError
from revolucare.reasoning.prompt_loader import PromptLoader
from revolucare.storage.blob_storage import BlobStorage
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)

ANALYSIS_TASK_CATEGORIES: Dict[AnalysisType, TaskCategory] = {
    AnalysisType.MEDICAL_EXTRACTION: TaskCategory.MEDICAL_EXTRACTION,
    AnalysisType.TEXT_EXTRACTION: TaskCategory.TEXT_EXTRACTION,
    AnalysisType.FORM_RECOGNITION: TaskCategory.FORM_RECOGNITION,
    AnalysisType.IDENTITY_VERIFICATION: TaskCategory.IDENTITY_VERIFICATION,
}

SYSTEM_PROMPT_PATH = "system/clinical_extraction.txt"
MAX_CONTENT_CHARS = 100_000

# Keys the gateway and providers add to every response
_RESPONSE_META_KEYS = ("_usage", "provider", "task_category")
_IDENTITY_FIELDS = ("full_name", "date_of_birth", "document_number")


class ExtractionCapability(ABC):
    """One AI capability that can analyze documents."""

    @abstractmethod
    async def extract(
        self,
        document: Document,
        analysis_type: AnalysisType,
        options: Optional[Dict[str, Any]] = None,
    ) -> ExtractionOutput:
        """
        Run the capability against a document.

        Raises:
            UpstreamServiceError: If the capability or its storage fails
        """


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _as_fact_list(items: Any) -> List[Dict[str, Any]]:
    """Accept facts as objects or bare strings."""
    if not items:
        return []
    if isinstance(items, (str, dict)):
        items = [items]
    facts = []
    for item in items:
        if isinstance(item, str):
            if item.strip():
                facts.append({"name": item.strip()})
        elif isinstance(item, dict) and item.get("name"):
            facts.append(item)
    return facts


class LLMExtractionCapability(ExtractionCapability):
    """
    Extraction backed by the LLM gateway.

    The analysis type selects the prompt (``extraction/<type>.txt``) and the
    gateway task category, which in turn selects the provider chain.
    """

    def __init__(
        self,
        gateway: LLMGateway,
        prompt_loader: PromptLoader,
        blob_storage: BlobStorage,
        temperature: float = 0.0,
    ):
        self.gateway = gateway
        self.prompt_loader = prompt_loader
        self.blob_storage = blob_storage
        self.temperature = temperature

    async def _load_content(self, document: Document) -> str:
        if not document.storage_ref:
            raise UpstreamServiceError(
                f"Document {document.id} has no stored content",
                code="storage_error",
                retryable=False,
            )
        data = await self.blob_storage.download(document.storage_ref)
        if document.mime_type.startswith("text/"):
            text = data.decode("utf-8", errors="replace")
        else:
            text = f"(base64-encoded {document.mime_type})\n" + base64.b64encode(data).decode("ascii")
        if len(text) > MAX_CONTENT_CHARS:
            logger.warning(
                "Document content truncated for extraction",
                document_id=document.id,
                original_chars=len(text),
            )
            text = text[:MAX_CONTENT_CHARS]
        return text

    async def extract(
        self,
        document: Document,
        analysis_type: AnalysisType,
        options: Optional[Dict[str, Any]] = None,
    ) -> ExtractionOutput:
        options = options or {}
        start = time.monotonic()
        content = await self._load_content(document)

        prompt = self.prompt_loader.load(
            f"extraction/{analysis_type.value}.txt",
            {
                "document_name": document.name,
                "document_type": document.type.value,
                "content": content,
            },
        )
        system_prompt = self.prompt_loader.load(SYSTEM_PROMPT_PATH)

        try:
            response = await self.gateway.generate(
                task_category=ANALYSIS_TASK_CATEGORIES[analysis_type],
                prompt=prompt,
                system_prompt=system_prompt,
                temperature=float(options.get("temperature", self.temperature)),
                response_format="json",
            )
        except LLMGatewayError as e:
            raise UpstreamServiceError(
                f"{analysis_type.value} failed for document {document.id}: {e}"
            ) from e

        try:
            output = self.parse_response(document, analysis_type, response)
        except PydanticValidationError as e:
            raise UpstreamServiceError(
                f"Malformed {analysis_type.value} response: {e.error_count()} invalid field(s)",
                code="malformed_response",
            ) from e

        output.processing_time_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Extraction complete",
            document_id=document.id,
            analysis_type=analysis_type.value,
            provider=output.model_type,
            processing_time_ms=output.processing_time_ms,
        )
        return output

    def parse_response(
        self,
        document: Document,
        analysis_type: AnalysisType,
        response: Dict[str, Any],
    ) -> ExtractionOutput:
        """Convert a raw JSON response into typed results plus confidence signals."""
        payload = {k: v for k, v in response.items() if k not in _RESPONSE_META_KEYS}
        provider = response.get("provider")

        signals: List[ConfidenceSignal] = []
        overall = payload.pop("overall_confidence", payload.pop("confidence", None))
        if overall is not None:
            signals.append(ConfidenceSignal("model_confidence", float(overall)))
        quality = payload.pop("document_quality", None)
        if quality is not None:
            signals.append(ConfidenceSignal("document_quality", float(quality)))

        if analysis_type == AnalysisType.MEDICAL_EXTRACTION:
            data = {c: _as_fact_list(payload.pop(c, None)) for c in FACT_CATEGORIES}
            for facts in data.values():
                for fact in facts:
                    fact.setdefault("source_document_id", document.id)
            results = MedicalExtractionResult(**data, extra=payload)
            facts = [f for group in results.facts_by_category().values() for f in group]
            extraction = _mean([f.confidence for f in facts])
            coverage = sum(1 for c in FACT_CATEGORIES if getattr(results, c)) / len(FACT_CATEGORIES)

        elif analysis_type == AnalysisType.TEXT_EXTRACTION:
            results = TextExtractionResult(
                text=payload.pop("text", "") or "",
                language=payload.pop("language", None),
                page_count=payload.pop("page_count", None),
                extra=payload,
            )
            extraction = None
            coverage = 1.0 if results.text.strip() else 0.0

        elif analysis_type == AnalysisType.FORM_RECOGNITION:
            raw_fields = payload.pop("fields", None) or {}
            fields = {
                name: value if isinstance(value, dict) else {"value": value}
                for name, value in raw_fields.items()
            }
            results = FormRecognitionResult(fields=fields, extra=payload)
            extraction = _mean([f.confidence for f in results.fields.values()])
            filled = [f for f in results.fields.values() if f.value not in (None, "")]
            coverage = len(filled) / len(results.fields) if results.fields else 0.0

        else:
            results = IdentityVerificationResult(
                full_name=payload.pop("full_name", None),
                date_of_birth=payload.pop("date_of_birth", None),
                document_number=payload.pop("document_number", None),
                verified=bool(payload.pop("verified", False)),
                extra=payload,
            )
            extraction = None
            coverage = sum(1 for f in _IDENTITY_FIELDS if getattr(results, f)) / len(_IDENTITY_FIELDS)

        if extraction is not None:
            signals.append(ConfidenceSignal("extraction_confidence", extraction))
        signals.append(ConfidenceSignal("field_coverage", coverage))

        return ExtractionOutput(results=results, confidence_signals=signals, model_type=provider)
