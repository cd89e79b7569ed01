"""Configuration: settings, logging and request context."""
from .settings import Settings, get_settings
from .logging_config import setup_logging, get_logger
from .request_context import correlation_id_var, get_correlation_id, ensure_correlation_id

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    "correlation_id_var",
    "get_correlation_id",
    "ensure_correlation_id",
]
