"""Main entry point for the News RAG Orchestrator API."""
import logging
from typing import Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import PORT, LOG_LEVEL, LOG_FORMAT, CORS_ORIGINS, SESSION_BACKEND
from logger import setup_logging
from models.api import (
    QueryRequest,
    QueryResponse,
    ErrorBody,
    SessionRequest,
    SessionCreatedResponse,
    TurnModel,
    HistoryResponse,
    MessageResponse,
)
from services.errors import OrchestratorError, ErrorDetail, SessionNotFound
from services.generation_client import GenerationClient
from services.orchestrator import RAGOrchestrator
from services.retriever_client import RetrieverClient
from services.session_store import (
    SessionStore,
    InMemoryKeyValueBackend,
    SupabaseKeyValueBackend,
)

# Initialize logging
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="News RAG Orchestrator",
    description="Retrieval-augmented news assistant with per-session chat history",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

# Initialized on startup
orchestrator: RAGOrchestrator = None


def build_orchestrator(session_backend: str = SESSION_BACKEND) -> RAGOrchestrator:
    """Wire the collaborators from configuration."""
    if session_backend == "memory":
        backend = InMemoryKeyValueBackend()
    elif session_backend == "supabase":
        backend = SupabaseKeyValueBackend()
    else:
        raise ValueError(f"Unknown SESSION_BACKEND: {session_backend!r}")

    return RAGOrchestrator(
        retriever=RetrieverClient(),
        generator=GenerationClient(),
        session_store=SessionStore(backend)
    )


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global orchestrator

    setup_logging(LOG_LEVEL, LOG_FORMAT)
    logger.info("Initializing News RAG Orchestrator services...")

    try:
        orchestrator = build_orchestrator()
        await orchestrator.session_store.connect()
        logger.info(f"All services initialized successfully (session backend: {SESSION_BACKEND})")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Close outbound connections."""
    if orchestrator is not None:
        await orchestrator.close()
        logger.info("Services shut down")


def _error_body(error: ErrorDetail) -> dict:
    return {"error": ErrorBody(**vars(error)).model_dump()}


@app.exception_handler(OrchestratorError)
async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
    """Render taxonomy errors as structured JSON."""
    logger.info(
        f"{request.method} {request.url.path} -> {exc.status_code} {exc.error.code}",
        extra={"stage": exc.error.stage, "error_code": exc.error.code}
    )
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.error))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400), like missing fields."""
    error = ErrorDetail(
        code="INVALID_REQUEST",
        message="Request body is malformed",
        stage="validating",
        details={"fields": [".".join(str(p) for p in err["loc"]) for err in exc.errors()]}
    )
    return JSONResponse(status_code=400, content=_error_body(error))


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "News RAG Orchestrator API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "news-rag-orchestrator",
        "version": "1.0.0"
    }


@app.post("/query", response_model=QueryResponse, response_model_exclude_none=True)
async def query_endpoint(request: QueryRequest):
    """
    Answer a question from retrieved news passages and record the exchange.

    Pipeline: validate → retrieve → assemble prompt → generate → persist.

    Returns:
        QueryResponse with query, answer and the top passage's source URL.
        If the answer could not be saved to the session history it is still
        returned, with an ``error`` field (404 when the session is unknown).

    Raises:
        OrchestratorError: Mapped to 400/404/502 by the exception handler
    """
    try:
        result = await orchestrator.query(
            session_id=request.session_id,
            query=request.query,
            top_k=request.n_results
        )
    except OrchestratorError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error processing query: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    response = QueryResponse(query=result.query, answer=result.answer, source=result.source)
    if result.persistence_error is None:
        return response

    # Unknown session is a caller error; a store outage keeps the 200
    status_code = 404 if isinstance(result.persistence_error, SessionNotFound) else 200
    response.error = ErrorBody(**vars(result.persistence_error.error))
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(exclude_none=True)
    )


@app.post("/session", response_model=SessionCreatedResponse)
async def create_session_endpoint() -> SessionCreatedResponse:
    """Start a new conversation session."""
    session_id = await orchestrator.create_session()
    return SessionCreatedResponse(session_id=session_id)


@app.get("/history", response_model=HistoryResponse)
async def history_endpoint(session_id: Optional[str] = None) -> HistoryResponse:
    """Return the conversation history of a session."""
    turns = await orchestrator.get_history(session_id)
    return HistoryResponse(
        session_id=session_id,
        history=[TurnModel(**turn.to_dict()) for turn in turns]
    )


@app.delete("/session", response_model=MessageResponse)
async def delete_session_endpoint(request: Optional[SessionRequest] = None) -> MessageResponse:
    """Clear a session's conversation history."""
    await orchestrator.clear_session(request.session_id if request else None)
    return MessageResponse(message="Session cleared successfully.")


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting News RAG Orchestrator API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
