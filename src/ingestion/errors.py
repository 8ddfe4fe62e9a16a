"""
Ingestion error taxonomy.

Fetcher retries, detection fall-through and per-item defaulting are absorbed
where they happen; only whole-payload failures escape, and the pipeline
surfaces them to callers as IngestionFailure.
"""
from enum import Enum
from typing import List, Optional, Tuple


class IngestionStage(str, Enum):
    """Pipeline stages, in execution order."""
    FETCHING = "fetching"
    DETECTING = "detecting"
    PARSING = "parsing"
    DONE = "done"


class IngestionError(Exception):
    """Base exception for ingestion errors."""
    pass


class InvalidSourceUrl(IngestionError):
    """Raised when a source URL is empty or not absolute."""
    pass


class NetworkFailure(IngestionError):
    """Raised when every proxy attempt for a URL is exhausted."""

    def __init__(self, source_url: str, attempts: Optional[List[Tuple[str, str]]] = None):
        self.source_url = source_url
        self.attempts = attempts or []
        tried = ", ".join(f"{proxy}: {error}" for proxy, error in self.attempts) or "no proxy available"
        super().__init__(f"All proxy attempts failed for {source_url} ({tried})")


class DetectionFailure(IngestionError):
    """Raised when no format matches a payload (empty or whitespace text)."""
    pass


class ParseFailure(IngestionError):
    """Raised when the chosen parser rejects a payload structurally."""
    pass


class IngestionFailure(IngestionError):
    """Structured failure reported to the caller for one source URL."""

    def __init__(self, stage: IngestionStage, cause: BaseException, source_url: str):
        self.stage = stage
        self.cause = cause
        self.source_url = source_url
        super().__init__(f"Ingestion of {source_url} failed while {stage.value}: {cause}")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'stage': self.stage.value,
            'cause': str(self.cause),
            'cause_type': type(self.cause).__name__,
            'source_url': self.source_url,
        }
