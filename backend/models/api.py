"""API request and response models."""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    """Request body for POST /query.

    Fields are optional at the schema level so that missing values are
    reported as 400 INVALID_REQUEST by the orchestrator rather than 422.
    """
    session_id: Optional[str] = Field(None, description="Session the turn pair is recorded in")
    query: Optional[str] = Field(None, description="User question")
    n_results: Optional[int] = Field(None, description="Maximum number of passages to retrieve")


class ErrorBody(BaseModel):
    """Structured error payload."""
    code: str
    message: str
    stage: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class QueryResponse(BaseModel):
    """Response for POST /query."""
    query: str
    answer: str
    source: str
    error: Optional[ErrorBody] = Field(
        None, description="Present when the answer could not be saved to history"
    )


class SessionRequest(BaseModel):
    """Request body for DELETE /session."""
    session_id: Optional[str] = None


class SessionCreatedResponse(BaseModel):
    session_id: str


class TurnModel(BaseModel):
    role: str
    text: str


class HistoryResponse(BaseModel):
    """Response for GET /history."""
    session_id: str
    history: List[TurnModel]


class MessageResponse(BaseModel):
    message: str
