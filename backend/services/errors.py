"""Error taxonomy for the orchestration pipeline.

Every collaborator failure is mapped onto exactly one of these kinds before it
crosses the HTTP boundary. Each error carries a structured ``ErrorDetail`` with
the pipeline stage that failed, so callers can diagnose without the logs.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ErrorDetail:
    """Structured error information returned to API callers."""
    code: str
    message: str
    stage: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class OrchestratorError(Exception):
    """Base class for all errors surfaced by the orchestrator."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error = ErrorDetail(
            code=self.code,
            message=message,
            stage=stage,
            details=details or {}
        )
        super().__init__(message)

    @property
    def stage(self) -> Optional[str]:
        return self.error.stage

    def with_stage(self, stage: str) -> "OrchestratorError":
        """Tag the error with a stage if the raiser did not know it."""
        if self.error.stage is None:
            self.error.stage = stage
        return self


class InvalidRequest(OrchestratorError):
    """Client input is missing or malformed."""
    code = "INVALID_REQUEST"
    status_code = 400


class NoResults(OrchestratorError):
    """Retrieval returned no passages for the query."""
    code = "NO_RESULTS"
    status_code = 404


class SessionNotFound(OrchestratorError):
    """No conversation history exists for the session id."""
    code = "SESSION_NOT_FOUND"
    status_code = 404


class RetrievalUnavailable(OrchestratorError):
    """The search service failed, timed out or returned a malformed payload."""
    code = "RETRIEVAL_UNAVAILABLE"
    status_code = 502


class GenerationUnavailable(OrchestratorError):
    """The text-generation service failed, timed out or returned a malformed payload."""
    code = "GENERATION_UNAVAILABLE"
    status_code = 502


class StoreUnavailable(OrchestratorError):
    """The key-value backend failed or timed out."""
    code = "STORE_UNAVAILABLE"
    status_code = 502
