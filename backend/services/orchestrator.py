"""Query orchestration: retrieval, prompt assembly, generation and history."""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, List, Optional, Type

from models.passage import Passage
from models.session import Turn
from services import prompt_assembler
from services.errors import (
    OrchestratorError,
    InvalidRequest,
    NoResults,
    SessionNotFound,
    RetrievalUnavailable,
    GenerationUnavailable,
    StoreUnavailable,
)
from services.generation_client import GenerationClient
from services.retriever_client import RetrieverClient
from services.session_store import SessionStore
from config import (
    DEFAULT_TOP_K,
    PROMPT_TEMPLATE_VERSION,
    ALLOW_EMPTY_CONTEXT,
    RETRIEVAL_TIMEOUT_SECONDS,
    GENERATION_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """States a query passes through, in order."""
    VALIDATING = "validating"
    RETRIEVING = "retrieving"
    ASSEMBLING = "assembling"
    GENERATING = "generating"
    PERSISTING = "persisting"
    RESPONDING = "responding"


@dataclass
class QueryResult:
    """Outcome of a query.

    ``persistence_error`` is set when the answer was produced but could not be
    recorded in the session history.
    """
    query: str
    answer: str
    source: str
    persistence_error: Optional[OrchestratorError] = None


class RAGOrchestrator:
    """Sequence retrieval, prompt assembly, generation and persistence for a query."""

    def __init__(
        self,
        retriever: RetrieverClient,
        generator: GenerationClient,
        session_store: SessionStore,
        default_top_k: int = DEFAULT_TOP_K,
        template_version: str = PROMPT_TEMPLATE_VERSION,
        allow_empty_context: bool = ALLOW_EMPTY_CONTEXT,
        retrieval_timeout: float = RETRIEVAL_TIMEOUT_SECONDS,
        generation_timeout: float = GENERATION_TIMEOUT_SECONDS
    ):
        """
        Args:
            retriever: Client for the search service
            generator: Client for the generation service
            session_store: Store holding conversation history
            default_top_k: Passages requested when the caller gives none
            template_version: Prompt template to assemble with
            allow_empty_context: Generate even when retrieval finds nothing
            retrieval_timeout: Upper bound in seconds for the retrieval stage
            generation_timeout: Upper bound in seconds for the generation stage
        """
        self.retriever = retriever
        self.generator = generator
        self.session_store = session_store
        self.default_top_k = default_top_k
        self.template_version = template_version
        self.allow_empty_context = allow_empty_context
        self.retrieval_timeout = retrieval_timeout
        self.generation_timeout = generation_timeout

    async def query(
        self,
        session_id: Optional[str],
        query: Optional[str],
        top_k: Optional[int] = None
    ) -> QueryResult:
        """
        Answer a question and record the exchange in the session history.

        Args:
            session_id: Session the turn pair is appended to
            query: User question
            top_k: Maximum passages to use (defaults to default_top_k)

        Returns:
            QueryResult with the answer and the top passage's URL

        Raises:
            InvalidRequest: Missing session_id/query or bad top_k
            NoResults: Retrieval found nothing
            RetrievalUnavailable: Search service failed or timed out
            GenerationUnavailable: Generation service failed or timed out
        """
        start_time = time.time()

        # Validating
        session_id, query, top_k = self._validate(session_id, query, top_k)
        log_context = {"session_id": session_id}
        logger.info(f"Processing query: {query[:100]}...", extra=log_context)

        # Retrieving
        passages = await self._run_stage(
            Stage.RETRIEVING,
            self.retriever.retrieve(query, top_k),
            self.retrieval_timeout,
            RetrievalUnavailable
        )
        if not passages and not self.allow_empty_context:
            logger.info("No passages retrieved, skipping generation", extra=log_context)
            raise NoResults("No relevant results found.", stage=Stage.RETRIEVING.value)

        # Assembling
        passages = list(passages)[:top_k]
        prompt = prompt_assembler.assemble(query, passages, self.template_version)
        logger.debug(
            f"Assembled prompt from {len(passages)} passages "
            f"(template={self.template_version})",
            extra={**log_context, "passages": len(passages)}
        )

        # Generating
        answer = await self._run_stage(
            Stage.GENERATING,
            self.generator.generate(prompt),
            self.generation_timeout,
            GenerationUnavailable
        )

        # Persisting
        persistence_error = None
        try:
            await self.session_store.append(session_id, query, answer)
        except (SessionNotFound, StoreUnavailable) as e:
            persistence_error = e.with_stage(Stage.PERSISTING.value)
            logger.warning(
                f"Answer not saved to history: {e.error.message}",
                extra={**log_context, "stage": Stage.PERSISTING.value, "error_code": e.error.code}
            )

        # Responding
        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Query processed in {latency_ms}ms",
            extra={**log_context, "latency_ms": latency_ms}
        )
        return QueryResult(
            query=query,
            answer=answer,
            source=self._top_source(passages),
            persistence_error=persistence_error
        )

    async def create_session(self) -> str:
        """Create a new, empty session and return its id."""
        return await self.session_store.create()

    async def get_history(self, session_id: Optional[str]) -> List[Turn]:
        """Return the session's turns in order."""
        session_id = self._require_session_id(session_id)
        return await self.session_store.fetch(session_id)

    async def clear_session(self, session_id: Optional[str]) -> None:
        """
        Delete a session's history.

        Raises:
            SessionNotFound: If the session did not exist
        """
        session_id = self._require_session_id(session_id)
        if not await self.session_store.clear(session_id):
            raise SessionNotFound("Session not found or already cleared.")

    async def close(self) -> None:
        """Release the collaborators' connections."""
        await self.retriever.close()
        await self.generator.close()
        await self.session_store.close()

    def _validate(self, session_id: Any, query: Any, top_k: Any):
        stage = Stage.VALIDATING.value
        missing = [
            name for name, value in (("session_id", session_id), ("query", query))
            if not isinstance(value, str) or not value.strip()
        ]
        if missing:
            raise InvalidRequest(
                "Both session_id and query are required",
                stage=stage,
                details={"missing": missing}
            )

        if top_k is None:
            top_k = self.default_top_k
        elif isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
            raise InvalidRequest(
                "n_results must be a positive integer",
                stage=stage,
                details={"n_results": top_k}
            )
        return session_id, query, top_k

    @staticmethod
    def _require_session_id(session_id: Any) -> str:
        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidRequest(
                "session_id is required",
                stage=Stage.VALIDATING.value,
                details={"missing": ["session_id"]}
            )
        return session_id

    @staticmethod
    async def _run_stage(
        stage: Stage,
        operation: Awaitable,
        timeout: float,
        error_type: Type[OrchestratorError]
    ):
        """Await a collaborator call, mapping every failure onto error_type."""
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except error_type as e:
            raise e.with_stage(stage.value)
        except asyncio.TimeoutError as e:
            logger.error(f"Stage {stage.value} timed out after {timeout}s", extra={"stage": stage.value})
            raise error_type(
                f"Stage {stage.value} timed out after {timeout}s",
                stage=stage.value,
                details={"timeout_seconds": timeout}
            ) from e
        except Exception as e:
            logger.error(
                f"Stage {stage.value} failed: {e}",
                exc_info=True,
                extra={"stage": stage.value}
            )
            raise error_type(
                f"Stage {stage.value} failed",
                stage=stage.value,
                details={"error_type": type(e).__name__}
            ) from e

    @staticmethod
    def _top_source(passages: List[Passage]) -> str:
        return passages[0].url if passages else ""
