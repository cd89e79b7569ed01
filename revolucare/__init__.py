"""Revolucare care planning core: document analysis, care plan options, versioning and approval."""

__version__ = "0.1.0"
