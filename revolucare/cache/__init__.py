"""Cache coherence layer."""
from .backends import Cache, RedisCache, MemoryCache
from .keyed_cache import KeyedCache

# Key namespaces
CARE_PLAN_NAMESPACE = "care-plan"
CLIENT_CARE_PLANS_NAMESPACE = "client-care-plans"
CARE_PLAN_OPTIONS_NAMESPACE = "care-plan-options"
DOCUMENT_ANALYSIS_NAMESPACE = "document-analysis"

__all__ = [
    "Cache",
    "RedisCache",
    "MemoryCache",
    "KeyedCache",
    "CARE_PLAN_NAMESPACE",
    "CLIENT_CARE_PLANS_NAMESPACE",
    "CARE_PLAN_OPTIONS_NAMESPACE",
    "DOCUMENT_ANALYSIS_NAMESPACE",
]
