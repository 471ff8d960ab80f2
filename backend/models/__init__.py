"""Data models for the News RAG Orchestrator."""
from .passage import Passage
from .session import Role, Turn
from .api import (
    QueryRequest,
    QueryResponse,
    ErrorBody,
    SessionRequest,
    SessionCreatedResponse,
    TurnModel,
    HistoryResponse,
    MessageResponse,
)

__all__ = [
    "Passage",
    "Role",
    "Turn",
    "QueryRequest",
    "QueryResponse",
    "ErrorBody",
    "SessionRequest",
    "SessionCreatedResponse",
    "TurnModel",
    "HistoryResponse",
    "MessageResponse",
]
