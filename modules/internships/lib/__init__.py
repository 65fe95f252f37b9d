# modules/internships/lib/__init__.py
from __future__ import annotations

# Re-export the pieces callers reach for most
from .config import IngestionSettings, SourceConfig, ValidationSettings
from .db import PostingStore
from .errors import ConfigurationError, PipelineError
from .ingest import run_ingestion
from .validation import run_validation

__all__ = [
    "ConfigurationError",
    "IngestionSettings",
    "PipelineError",
    "PostingStore",
    "SourceConfig",
    "ValidationSettings",
    "run_ingestion",
    "run_validation",
]
