"""Services for the News RAG Orchestrator."""
from .errors import (
    ErrorDetail,
    OrchestratorError,
    InvalidRequest,
    NoResults,
    SessionNotFound,
    RetrievalUnavailable,
    GenerationUnavailable,
    StoreUnavailable,
)
from .retriever_client import RetrieverClient
from .generation_client import GenerationClient, NO_ANSWER
from .session_store import SessionStore, InMemoryKeyValueBackend, SupabaseKeyValueBackend
from .orchestrator import RAGOrchestrator, QueryResult, Stage

__all__ = ['ErrorDetail', 'OrchestratorError', 'InvalidRequest', 'NoResults', 'SessionNotFound', 'RetrievalUnavailable', 'GenerationUnavailable', 'StoreUnavailable', 'RetrieverClient', 'GenerationClient', 'NO_ANSWER', 'SessionStore', 'InMemoryKeyValueBackend', 'SupabaseKeyValueBackend', 'RAGOrchestrator', 'QueryResult', 'Stage']
