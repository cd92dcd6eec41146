"""revamp: capture a site, regenerate it accessibly, and compare axe-core scores."""

from .errors import (
    AuditEngineError,
    AuditTimeoutError,
    BuildError,
    GenerationError,
    NavigationError,
    RevampError,
)
from .models import AuditResult, ContentDirectory, PipelineOutcome, PipelineStage

__version__ = "0.1.0"
__all__ = [
    "AuditEngineError",
    "AuditResult",
    "AuditTimeoutError",
    "BuildError",
    "ContentDirectory",
    "GenerationError",
    "NavigationError",
    "PipelineOutcome",
    "PipelineStage",
    "RevampError",
]
