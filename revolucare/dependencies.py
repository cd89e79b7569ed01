"""Service container: builds the component graph from settings."""
from dataclasses import dataclass
from typing import Any, Optional

from revolucare.cache import (
    CARE_PLAN_NAMESPACE,
    CARE_PLAN_OPTIONS_NAMESPACE,
    CLIENT_CARE_PLANS_NAMESPACE,
    DOCUMENT_ANALYSIS_NAMESPACE,
    Cache,
    KeyedCache,
    MemoryCache,
    RedisCache,
)
from revolucare.config.settings import Settings, get_settings
from revolucare.config.logging_config import get_logger, setup_logging
from revolucare.models.care_plan import CarePlan, CarePlanOptionsResponse, CarePlanPage
from revolucare.models.document import DocumentAnalysis
from revolucare.models.enums import AnalysisType
from revolucare.orchestrator.document_analysis import DocumentAnalysisOrchestrator
from revolucare.orchestrator.option_generator import CarePlanOptionGenerator
from revolucare.reasoning.confidence_model import ConfidenceModel
from revolucare.reasoning.extraction import LLMExtractionCapability
from revolucare.reasoning.langfuse_integration import create_langfuse_client, shutdown_langfuse
from revolucare.reasoning.llm_gateway import LLMGateway
from revolucare.reasoning.prompt_loader import PromptLoader
from revolucare.services.care_plan_service import CarePlanService
from revolucare.services.document_service import DocumentService
from revolucare.services.notification_service import (
    EventPublisher,
    InMemoryEventPublisher,
    NotificationService,
    RedisEventPublisher,
)
from revolucare.storage.blob_storage import BlobStorage, LocalBlobStorage
from revolucare.storage.database import Database

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """
    Every long-lived component, wired once per process.

    Entry points (API app, job worker, tests) build one container and
    pass its services around; nothing here is a module-level singleton.
    """
    settings: Settings
    database: Database
    cache: Cache
    publisher: EventPublisher
    blob_storage: BlobStorage
    gateway: LLMGateway
    prompt_loader: PromptLoader
    confidence_model: ConfidenceModel
    orchestrator: DocumentAnalysisOrchestrator
    option_generator: CarePlanOptionGenerator
    care_plans: CarePlanService
    documents: DocumentService
    notifications: NotificationService
    langfuse_client: Optional[Any] = None

    @classmethod
    def from_environment(cls) -> "ServiceContainer":
        """Configure logging and build the container from environment settings."""
        settings = get_settings()
        setup_logging(log_level=settings.log_level, json_logs=settings.log_json)
        return cls.from_settings(settings)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        gateway: Optional[LLMGateway] = None,
        cache: Optional[Cache] = None,
        publisher: Optional[EventPublisher] = None,
    ) -> "ServiceContainer":
        """
        Build the component graph.

        Args:
            settings: Application settings
            gateway: Pre-built LLM gateway (tests inject one with fake clients)
            cache: Cache backend; defaults to Redis when configured, else in-memory
            publisher: Event publisher; defaults to Redis when configured, else in-memory
        """
        database = Database(settings.database_url, echo=settings.database_echo)

        if cache is None:
            cache = RedisCache.from_url(settings.redis_url) if settings.redis_url else MemoryCache()
        if publisher is None:
            publisher = (
                RedisEventPublisher.from_url(settings.redis_url)
                if settings.redis_url
                else InMemoryEventPublisher()
            )
        notifications = NotificationService(publisher, channel=settings.care_plan_events_channel)

        blob_storage = LocalBlobStorage(
            root=settings.blob_storage_path,
            signing_secret=settings.blob_signing_secret,
            base_url=settings.blob_base_url,
        )

        langfuse_client = create_langfuse_client(settings)
        prompt_loader = PromptLoader(settings.prompts_dir, langfuse_client=langfuse_client)
        gateway = gateway or LLMGateway(settings)
        confidence_model = ConfidenceModel()

        analysis_cache = KeyedCache(
            cache, DOCUMENT_ANALYSIS_NAMESPACE, DocumentAnalysis, settings.analysis_cache_ttl_seconds
        )
        extraction = LLMExtractionCapability(gateway, prompt_loader, blob_storage)
        orchestrator = DocumentAnalysisOrchestrator(
            database=database,
            capabilities={analysis_type: extraction for analysis_type in AnalysisType},
            confidence_model=confidence_model,
            analysis_cache=analysis_cache,
            analysis_timeout=settings.analysis_timeout_seconds,
        )
        option_generator = CarePlanOptionGenerator(
            database=database,
            orchestrator=orchestrator,
            gateway=gateway,
            prompt_loader=prompt_loader,
            confidence_model=confidence_model,
            options_cache=KeyedCache(
                cache, CARE_PLAN_OPTIONS_NAMESPACE, CarePlanOptionsResponse, settings.options_cache_ttl_seconds
            ),
            option_count=settings.care_plan_option_count,
            analysis_timeout=settings.analysis_timeout_seconds,
            default_deadline=settings.generation_deadline_seconds,
        )
        care_plans = CarePlanService(
            database=database,
            plan_cache=KeyedCache(cache, CARE_PLAN_NAMESPACE, CarePlan, settings.care_plan_cache_ttl_seconds),
            list_cache=KeyedCache(
                cache, CLIENT_CARE_PLANS_NAMESPACE, CarePlanPage, settings.care_plan_cache_ttl_seconds
            ),
            notifications=notifications,
        )
        documents = DocumentService(
            database=database,
            blob_storage=blob_storage,
            analysis_cache=analysis_cache,
            max_upload_size_bytes=settings.max_upload_size_bytes,
            signed_url_ttl_seconds=settings.signed_url_ttl_seconds,
        )

        logger.info(
            "Service container built",
            environment=settings.environment,
            cache=type(cache).__name__,
            publisher=type(publisher).__name__,
        )
        return cls(
            settings=settings,
            database=database,
            cache=cache,
            publisher=publisher,
            blob_storage=blob_storage,
            gateway=gateway,
            prompt_loader=prompt_loader,
            confidence_model=confidence_model,
            orchestrator=orchestrator,
            option_generator=option_generator,
            care_plans=care_plans,
            documents=documents,
            notifications=notifications,
            langfuse_client=langfuse_client,
        )

    async def startup(self) -> None:
        """Initialize the schema and warn about missing provider keys."""
        if not self.settings.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY not set - Claude routes will fall back")
        if not self.settings.gemini_api_key:
            logger.warning("GEMINI_API_KEY not set - Gemini routes will fall back")
        if not self.settings.azure_openai_api_key:
            logger.warning("AZURE_OPENAI_API_KEY not set - no fallback provider available")
        await self.database.create_all()

    async def shutdown(self) -> None:
        """Let in-flight analyses finish, then release connections."""
        await self.orchestrator.drain()
        for closer, name in ((self.cache.close, "cache"), (self.publisher.close, "publisher")):
            try:
                await closer()
            except Exception as e:
                logger.warning("Failed to close component", component=name, error=str(e))
        shutdown_langfuse(self.langfuse_client)
        await self.database.dispose()
        logger.info("Service container shut down")
