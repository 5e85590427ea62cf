"""Vector retrieval and embedding interfaces.

The vector index is only consumed through `search`; the embedder turns query
text into a vector. Query text is pre-truncated to the embedding service's
safe length, which is smaller than any context budget.
"""

from typing import List, Optional, Protocol, Sequence

from openai import AsyncOpenAI, APIConnectionError, APITimeoutError, RateLimitError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..config import get_settings
from ..log import get_logger
from ..schemas.retrieval import SearchHit

logger = get_logger("retrieval")

# type_filter values used across the engine
CHUNK = "chunk"
CONTENT_LIBRARY = "content_library"
PAST_PROJECT = "past_project"


class VectorIndex(Protocol):
    async def search(
        self,
        namespace: str,
        query_vector: Sequence[float],
        top_k: int,
        type_filter: str,
        id_filter: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        ...


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


def build_search_query(text: str, max_chars: Optional[int] = None) -> str:
    """
    Leading slice of the text, capped to the embedding budget.
    The beginning of a solicitation carries scope, requirements and evaluation
    criteria; terms and conditions sit at the end.
    """
    if not text or not text.strip():
        return ""
    max_chars = max_chars or get_settings().EMBED_MAX_CHARS
    return text[:max_chars].strip()


class OpenAIEmbedder:
    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        settings = get_settings()
        self.client = client or AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        self.model = model or settings.EMBEDDING_MODEL

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=8),
        retry=retry_if_exception_type((APIConnectionError, APITimeoutError, RateLimitError)),
        reraise=True,
    )
    async def embed(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(model=self.model, input=build_search_query(text))
        return list(response.data[0].embedding)
