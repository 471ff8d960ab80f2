"""Client for the external vector-search service."""
import time
import logging
from typing import List, Optional
import httpx

from models.passage import Passage
from services.errors import RetrievalUnavailable
from config import RETRIEVAL_API_URL, RETRIEVAL_TIMEOUT_SECONDS, DEFAULT_TOP_K

logger = logging.getLogger(__name__)

STAGE = "retrieving"


class RetrieverClient:
    """Fetch ranked passages for a query from the search service."""

    def __init__(
        self,
        base_url: str = RETRIEVAL_API_URL,
        timeout: float = RETRIEVAL_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the retriever client.

        Args:
            base_url: Root URL of the search service (``/query`` is appended)
            timeout: Request timeout in seconds
            http_client: Optional shared AsyncClient; one is created if omitted
        """
        if not base_url:
            raise ValueError("RETRIEVAL_API_URL must be provided or set in environment")

        self.api_url = f"{base_url.rstrip('/')}/query"
        self.timeout = timeout
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info(f"Initialized RetrieverClient with endpoint: {self.api_url}")

    async def retrieve(self, query: str, top_k: int = DEFAULT_TOP_K) -> List[Passage]:
        """
        Retrieve passages ordered by descending relevance.

        The backend's ordering is kept as-is. An empty list is a valid
        outcome meaning nothing relevant was found.

        Args:
            query: User question
            top_k: Number of passages to request (n_results)

        Returns:
            List of passages, possibly empty

        Raises:
            ValueError: If query is empty or top_k < 1
            RetrievalUnavailable: On timeout, transport error, non-2xx status
                or a malformed payload
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        if top_k < 1:
            raise ValueError("top_k must be at least 1")

        start_time = time.time()
        try:
            response = await self.http_client.post(
                self.api_url,
                json={"query": query, "n_results": top_k},
                timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            logger.error(f"Retrieval timed out after {self.timeout}s")
            raise RetrievalUnavailable(
                f"Search service timed out after {self.timeout}s",
                stage=STAGE,
                details={"error_type": type(e).__name__}
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Retrieval network error: {e}")
            raise RetrievalUnavailable(
                "Search service is unreachable",
                stage=STAGE,
                details={"error_type": type(e).__name__}
            ) from e

        latency_ms = int((time.time() - start_time) * 1000)

        if not response.is_success:
            logger.error(
                f"Retrieval failed with status {response.status_code} in {latency_ms}ms"
            )
            raise RetrievalUnavailable(
                f"Search service returned status {response.status_code}",
                stage=STAGE,
                details={"status_code": response.status_code}
            )

        passages = self._parse_passages(response)
        logger.info(f"Retrieved {len(passages)} passages in {latency_ms}ms")
        return passages

    def _parse_passages(self, response: httpx.Response) -> List[Passage]:
        try:
            payload = response.json()
        except ValueError as e:
            raise RetrievalUnavailable(
                "Search service returned a non-JSON body",
                stage=STAGE
            ) from e

        if not isinstance(payload, dict):
            raise RetrievalUnavailable(
                "Search service returned an unexpected payload",
                stage=STAGE
            )

        results = payload.get("results")
        if results is None:
            return []
        if not isinstance(results, list):
            raise RetrievalUnavailable(
                "Search service 'results' is not a list",
                stage=STAGE
            )

        try:
            return [Passage.from_dict(item) for item in results]
        except (KeyError, TypeError, AttributeError) as e:
            raise RetrievalUnavailable(
                "Search service returned a result without text",
                stage=STAGE,
                details={"error_type": type(e).__name__}
            ) from e

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self.http_client.aclose()
