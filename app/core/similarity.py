"""
Vector math shared by retrieval and clustering.

Embeddings arrive from Supabase either as lists of floats or as the pgvector
text form ``"[0.1,0.2,...]"``; ``to_vector`` normalizes both.

Usage:
    from app.core.similarity import cosine_similarity, running_mean

    sim = cosine_similarity(question_embedding, cluster["centroid"])
    centroid = running_mean(cluster["centroid"], question_embedding, cluster["question_count"])
"""

import json
from typing import Any, Sequence

import numpy as np

# Two similarities closer than this are treated as equal (tie-break territory)
SIMILARITY_TOLERANCE = 1e-9


def to_vector(value: Any) -> list[float]:
    """Parse an embedding as stored by Supabase/pgvector into a list of floats."""
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return [float(x) for x in value]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity between two vectors; 0.0 for empty or zero vectors."""
    if len(a) == 0 or len(b) == 0:
        return 0.0
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimension mismatch: {va.shape[0]} vs {vb.shape[0]}")
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def running_mean(centroid: Sequence[float], embedding: Sequence[float], count: int) -> list[float]:
    """
    Fold one embedding into a mean of ``count`` vectors.

    centroid' = (centroid * count + embedding) / (count + 1)
    """
    if count < 0:
        raise ValueError("count must be >= 0")
    c = np.asarray(centroid, dtype=float)
    e = np.asarray(embedding, dtype=float)
    if count == 0:
        return e.tolist()
    if c.shape != e.shape:
        raise ValueError(f"Vector dimension mismatch: {c.shape[0]} vs {e.shape[0]}")
    return ((c * count + e) / (count + 1)).tolist()


def mean_vector(embeddings: Sequence[Sequence[float]]) -> list[float]:
    """Arithmetic mean of a non-empty set of vectors."""
    if not embeddings:
        raise ValueError("mean_vector requires at least one embedding")
    return np.mean(np.asarray(embeddings, dtype=float), axis=0).tolist()
