"""OpenAI embeddings generation with validation.

This is the engine's Embedding Provider: questions, cluster centroids and
document passages all live in the same vector space, so every caller goes
through here and gets vectors of exactly ``EMBEDDING_DIM`` floats.
"""

import asyncio

from openai import OpenAI

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    """Get OpenAI client instance."""
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def embed_texts(texts: list[str]) -> list[list[float]]:
    """
    Generate embeddings for a list of texts using OpenAI.

    Texts are sent in batches of ``EMBEDDING_BATCH_SIZE``; output order
    matches input order.

    Args:
        texts: List of text strings to embed

    Returns:
        List of embedding vectors (each vector is list of floats)

    Raises:
        ValueError: If embedding dimension doesn't match expected EMBEDDING_DIM
        Exception: If OpenAI API call fails
    """
    if not texts:
        return []

    settings = get_settings()
    client = _get_client()
    batch_size = max(1, settings.EMBEDDING_BATCH_SIZE)

    try:
        embeddings: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start:start + batch_size]
            response = client.embeddings.create(
                model=settings.EMBEDDING_MODEL,
                input=batch,
                dimensions=settings.EMBEDDING_DIM,
            )

            for i, embedding_obj in enumerate(response.data):
                embedding = embedding_obj.embedding

                if len(embedding) != settings.EMBEDDING_DIM:
                    raise ValueError(
                        f"Embedding dimension mismatch for text {start + i}: "
                        f"expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
                    )

                embeddings.append(embedding)

        logger.info(
            f"Generated {len(embeddings)} embeddings using {settings.EMBEDDING_MODEL}",
            extra={"extra_data": {"model": settings.EMBEDDING_MODEL, "count": len(embeddings)}},
        )

        return embeddings

    except Exception as e:
        logger.error(f"Failed to generate embeddings: {e}")
        raise


def embed_text(text: str) -> list[float]:
    """Embed a single text."""
    return embed_texts([text])[0]


async def embed_texts_async(texts: list[str]) -> list[list[float]]:
    """Async wrapper around embed_texts using thread pool."""
    return await asyncio.to_thread(embed_texts, texts)


async def embed_text_async(text: str) -> list[float]:
    """Async wrapper around embed_text using thread pool."""
    return await asyncio.to_thread(embed_text, text)
