"""Embedding and coherence collaborators used by the scorer."""
import json
import math
import re
from typing import Any, Dict, List, Optional, Protocol

from ..config import ModelConfig, ServerConfig, Settings
from ..utils.logging import get_logger
from .client import ModelClient

logger = get_logger(__name__)

Vector = List[float]


class Embedder(Protocol):
    async def embed(self, text: str) -> Optional[Vector]:
        ...

    async def embed_many(self, texts: List[str]) -> Optional[List[Vector]]:
        ...


class CoherenceChecker(Protocol):
    async def check_coherence(self, text: str) -> float:
        ...


def normalize(vector: Vector) -> Vector:
    """Scale a vector to unit length."""
    norm = math.sqrt(sum(x * x for x in vector))
    if norm == 0:
        return vector
    return [x / norm for x in vector]


class NullEmbedder:
    """Used when no embedding endpoint is configured."""

    async def embed(self, text: str) -> Optional[Vector]:
        return None

    async def embed_many(self, texts: List[str]) -> Optional[List[Vector]]:
        return None


class HttpEmbedder:
    """Embeddings from an OpenAI-compatible endpoint, L2-normalised."""

    def __init__(self, client: ModelClient, model_config: ModelConfig, api_key: str):
        self.client = client
        self.model_config = model_config
        self.api_key = api_key

    async def embed(self, text: str) -> Optional[Vector]:
        vectors = await self.embed_many([text])
        return vectors[0] if vectors else None

    async def embed_many(self, texts: List[str]) -> Optional[List[Vector]]:
        texts = [t for t in texts if t and t.strip()]
        if not texts:
            return None
        result = await self.client.embed(
            self.model_config, texts, self.api_key, call_id="embeddings"
        )
        if not result.get("success"):
            return None
        vectors = result["embeddings"]
        if len(vectors) != len(texts):
            logger.warning("embedding_count_mismatch", expected=len(texts), got=len(vectors))
            return None
        return [normalize(v) for v in vectors]


class HeuristicCoherenceChecker:
    """Coherence from sentence count and average sentence length."""

    def __init__(self, min_words: int = 8, max_words: int = 30):
        self.min_words = min_words
        self.max_words = max_words

    async def check_coherence(self, text: str) -> float:
        return self.score(text)

    def score(self, text: str) -> float:
        sentences = [s for s in re.split(r"[.!?]+", text or "") if s.strip()]
        if not sentences:
            return 0.0
        count_score = min(1.0, len(sentences) / 3)
        avg_words = sum(len(s.split()) for s in sentences) / len(sentences)
        if avg_words < self.min_words:
            length_score = avg_words / self.min_words
        elif avg_words > self.max_words:
            length_score = max(0.0, 1 - (avg_words - self.max_words) / self.max_words)
        else:
            length_score = 1.0
        return count_score * 0.5 + length_score * 0.5


_RATING_SCHEMA = {
    "type": "json_schema",
    "json_schema": {
        "name": "coherence_rating",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {"rating": {"type": "number", "minimum": 1, "maximum": 5}},
            "required": ["rating"],
            "additionalProperties": False,
        },
    },
}


class LLMCoherenceChecker:
    """Asks a chat model for a 1-5 coherence rating.

    Any failure (transport, status, malformed JSON, out-of-range rating)
    falls back to the heuristic checker.
    """

    def __init__(
        self,
        client: ModelClient,
        model_config: ModelConfig,
        api_key: str,
        prompt: Dict[str, Any],
        fallback: Optional[HeuristicCoherenceChecker] = None,
    ):
        self.client = client
        self.model_config = model_config
        self.api_key = api_key
        self.prompt = prompt
        self.fallback = fallback or HeuristicCoherenceChecker()

    async def check_coherence(self, text: str) -> float:
        if not text:
            return self.fallback.score(text)

        messages = []
        if self.prompt.get("system"):
            messages.append({"role": "system", "content": self.prompt["system"]})
        messages.append({
            "role": "user",
            "content": self.prompt.get("user_template", "{text}").format(text=text),
        })

        result = await self.client.call_model(
            self.model_config,
            messages,
            self.api_key,
            call_id="coherence",
            response_format=_RATING_SCHEMA,
        )
        if not result.get("success"):
            logger.warning("coherence_check_failed", error=result.get("error"))
            return self.fallback.score(text)

        rating = parse_rating(result.get("content", ""))
        if rating is None:
            logger.warning("coherence_rating_invalid", content=result.get("content", "")[:100])
            return self.fallback.score(text)

        logger.debug("coherence_rated", rating=rating)
        return (rating - 1) / 4


def parse_rating(content: str) -> Optional[float]:
    """Extract a 1-5 rating from a JSON reply."""
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    rating = data.get("rating")
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        return None
    if not 1 <= rating <= 5:
        return None
    return float(rating)


def build_embedder(client: ModelClient, settings: Settings, config: ServerConfig) -> Embedder:
    model_config = config.models.get("embedder")
    if model_config is None or not (model_config.api_url and model_config.model and settings.embedding_api_key):
        logger.info("embedder_disabled")
        return NullEmbedder()
    logger.info("embedder_enabled", model=model_config.model)
    return HttpEmbedder(client, model_config, settings.embedding_api_key)


def build_coherence_checker(
    client: ModelClient,
    settings: Settings,
    config: ServerConfig,
    prompts: Dict[str, Any],
) -> CoherenceChecker:
    model_config = config.models.get("coherence_checker")
    if model_config is None or not (
        settings.coherence_api_key and model_config.model and model_config.api_url
    ):
        logger.info("coherence_checker_heuristic")
        return HeuristicCoherenceChecker()
    logger.info("coherence_checker_llm", model=model_config.model)
    return LLMCoherenceChecker(
        client,
        model_config,
        settings.coherence_api_key,
        prompts.get("coherence") or {},
    )
