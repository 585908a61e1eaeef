import asyncio
import logging
from abc import ABC, abstractmethod

import httpx

from docindex.config import Settings, settings
from docindex.errors import EmbeddingProviderError

logger = logging.getLogger("docindex.indexer.embeddings")


class EmbeddingProvider(ABC):
    """Turns texts into fixed-length vectors, one per input, in input order."""

    name: str  # must be set by subclass

    @abstractmethod
    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]: ...

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""
        embeddings = await self.generate_embeddings([text])
        return embeddings[0]

    async def close(self) -> None:
        return None


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Remote provider for any OpenAI-compatible /embeddings endpoint."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "text-embedding-3-small",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ValueError("An API key is required for the remote embedding provider")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            resp = await self._client.post(
                f"{self.base_url}/embeddings",
                headers=self._headers,
                json={"model": self.model, "input": texts},
            )
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(f"Embedding request failed: {e}") from e

        if resp.status_code != 200:
            raise EmbeddingProviderError(
                f"Embedding API error: {resp.status_code} {resp.reason_phrase}"
            )

        data = resp.json().get("data") or []
        if len(data) != len(texts):
            raise EmbeddingProviderError(
                f"Embedding API returned {len(data)} vectors for {len(texts)} inputs"
            )
        data = sorted(data, key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in data]

    async def close(self) -> None:
        await self._client.aclose()


# Lazy-loaded sentence-transformer models (heavy resource, load once per name)
_models: dict = {}


def _get_embedding_model(model_name: str):
    """Lazy load a sentence-transformer model."""
    if model_name not in _models:
        logger.info("Loading embedding model: %s", model_name)
        from sentence_transformers import SentenceTransformer

        _models[model_name] = SentenceTransformer(model_name)
        logger.info("Embedding model loaded successfully")
    return _models[model_name]


class LocalEmbeddingProvider(EmbeddingProvider):
    """Free-tier provider: a local sentence-transformers model, no API key."""

    name = "local"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, texts)

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = _get_embedding_model(self.model_name)
        embeddings = model.encode(texts, show_progress_bar=False, normalize_embeddings=True)
        return embeddings.tolist()


def get_embedding_provider(config: Settings = settings) -> EmbeddingProvider:
    """Pick the provider once: remote when an API key is configured, else local."""
    if config.openai_api_key:
        logger.info("Using remote embedding provider (%s)", config.openai_embedding_model)
        return OpenAIEmbeddingProvider(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            model=config.openai_embedding_model,
            timeout=config.embedding_request_timeout,
        )
    logger.info("No embedding API key configured, using local model %s", config.local_embedding_model)
    return LocalEmbeddingProvider(config.local_embedding_model)
