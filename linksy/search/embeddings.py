"""
Linksy Embedding Generation

Centralized module for OpenAI embedding API calls and need embedding text
construction. No other module calls the embedding API.

Functions:
    build_need_embedding_text — Build embeddable text from a need record
    embed_texts               — Batch-embed a list of texts (indexing jobs)
    embed_query               — Embed one search query, returning token usage

Rules:
    - Never embed needs one at a time in a loop, always batch
    - Never log embedding vectors, only metadata
    - No DB access in this module; callers resolve DB data before calling
    - Raise errors immediately; retry logic lives in the Celery task and
      the search router decides how failures surface
"""

import time
from typing import Any

import structlog
from openai import AsyncOpenAI

from linksy.config import settings

logger = structlog.get_logger(__name__)


def build_need_embedding_text(need: dict[str, Any]) -> str:
    """
    Build the text string to embed for a need.

    The name is followed by each synonym, joined with ". ", so that
    "Rent Assistance" with synonyms ["rent help", "eviction"] becomes
    "Rent Assistance. rent help. eviction".
    """
    parts = [need["name"]]
    parts.extend(s for s in (need.get("synonyms") or []) if s)
    return ". ".join(parts)


def embed_texts(texts: list[str], client) -> list[list[float]]:
    """
    Embed a list of texts using the OpenAI embedding API with batching.

    Splits texts into batches of settings.EMBEDDING_BATCH_SIZE and makes
    one API call per batch.

    Args:
        texts: List of strings to embed.
        client: An openai.OpenAI client instance.

    Returns:
        List of embedding vectors, same length and order as input texts.

    Raises:
        openai.APIError and subclasses on API failure; the caller handles retries.
    """
    if not texts:
        return []

    batch_size = settings.EMBEDDING_BATCH_SIZE
    all_embeddings: list[list[float]] = []
    total_tokens = 0
    start_time = time.time()

    for i in range(0, len(texts), batch_size):
        batch = texts[i : i + batch_size]

        response = client.embeddings.create(
            input=batch,
            model=settings.EMBEDDING_MODEL,
        )

        # API returns items sorted by index
        all_embeddings.extend(item.embedding for item in response.data)

        if response.usage:
            total_tokens += response.usage.total_tokens

    logger.info(
        "embeddings_generated",
        text_count=len(texts),
        batch_count=(len(texts) + batch_size - 1) // batch_size,
        total_tokens=total_tokens,
        elapsed_seconds=round(time.time() - start_time, 3),
    )

    return all_embeddings


async def embed_query(text: str, client: AsyncOpenAI) -> tuple[list[float], int]:
    """
    Embed a single search query.

    Args:
        text: The trimmed query text.
        client: An openai.AsyncOpenAI client instance.

    Returns:
        ``(vector, tokens_used)``; ``tokens_used`` is 0 when the API omits usage.
    """
    start_time = time.time()
    response = await client.embeddings.create(
        input=text,
        model=settings.EMBEDDING_MODEL,
    )
    tokens = response.usage.total_tokens if response.usage else 0

    logger.info(
        "query_embedded",
        model=settings.EMBEDDING_MODEL,
        tokens=tokens,
        elapsed_seconds=round(time.time() - start_time, 3),
    )
    return response.data[0].embedding, tokens
