import asyncio
import hashlib
import math
import re

from async_lru import alru_cache
from google import genai
from google.genai import types
from loguru import logger

from recengine.core.config import settings
from recengine.core.errors import EmbeddingUnavailable

_TOKEN_RE = re.compile(r"[a-z0-9]+")

_TASK_TYPES = {
    "document": "RETRIEVAL_DOCUMENT",
    "query": "RETRIEVAL_QUERY",
}


def hashed_embedding(text: str, dimension: int) -> list[float]:
    """Deterministic bag-of-words vector: each token hashes to a signed bucket, then L2-normalized."""
    vector = [0.0] * dimension
    for token in _TOKEN_RE.findall((text or "").lower()):
        digest = hashlib.md5(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "big") % dimension
        vector[index] += 1.0 if digest[4] & 1 else -1.0
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector
    return [v / norm for v in vector]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class EmbeddingService:
    """
    Text embeddings from the Gemini API with a local fallback.

    ``embed`` never raises for provider problems: a missing key, a provider error,
    a timeout or a vector of the wrong size all produce the hashed bag-of-words
    vector instead.
    """

    def __init__(self, model: str | None = None, dimension: int | None = None, client=None):
        self.model = model or settings.EMBEDDING_MODEL
        self.dimension = dimension or settings.EMBEDDING_DIMENSION
        self.timeout = settings.EMBEDDING_TIMEOUT_SECONDS
        self.client = client
        if self.client is None:
            if api_key := settings.GEMINI_API_KEY:
                try:
                    self.client = genai.Client(api_key=api_key)
                except Exception as e:
                    logger.warning(f"Failed to initialize Gemini client: {e}")
            else:
                logger.warning("GEMINI_API_KEY not set. Using local hashed embeddings.")

    def _embed_remote_sync(self, text: str, kind: str) -> list[float]:
        if not self.client:
            raise EmbeddingUnavailable("Embedding provider is not configured")
        try:
            response = self.client.models.embed_content(
                model=self.model,
                contents=text,
                config=types.EmbedContentConfig(
                    task_type=_TASK_TYPES.get(kind, "SEMANTIC_SIMILARITY"),
                    output_dimensionality=self.dimension,
                ),
            )
            values = list(response.embeddings[0].values or [])
        except Exception as e:
            raise EmbeddingUnavailable(f"Embedding provider error: {e}") from e
        if len(values) != self.dimension:
            raise EmbeddingUnavailable(f"Expected {self.dimension} dimensions, got {len(values)}")
        return values

    @alru_cache(maxsize=2048, ttl=3600)
    async def _embed_remote(self, text: str, kind: str) -> tuple[float, ...]:
        """Async wrapper to avoid blocking the event loop during network calls."""
        loop = asyncio.get_running_loop()
        try:
            values = await asyncio.wait_for(
                loop.run_in_executor(None, lambda: self._embed_remote_sync(text, kind)), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingUnavailable(f"Embedding provider timed out after {self.timeout}s") from e
        return tuple(values)

    async def provider_embed(self, text: str, kind: str = "document") -> list[float] | None:
        """Provider vector, or None when the provider is not configured or unavailable."""
        if not self.client:
            return None
        try:
            return list(await self._embed_remote(text, kind))
        except EmbeddingUnavailable as e:
            logger.warning(f"{e}")
            return None

    async def embed(self, text: str, kind: str = "document") -> list[float]:
        vector = await self.provider_embed(text, kind)
        if vector is None:
            return hashed_embedding(text, self.dimension)
        return vector
