"""Local hash embeddings.

A deterministic, model-free text embedding: tokens are hashed into a
fixed number of buckets with a position-decayed weight and the result is
L2-normalized. Coarse topical grouping is all retrieval needs at course
scale, and nothing here depends on an external model or network.
"""
import math
import re
from typing import Iterable, Optional

import numpy as np

from coursemind import config

TOKEN_PATTERN = re.compile(r"\w+")


def tokenize(text: str) -> list[str]:
    """Lowercase text and split it into word tokens."""
    if not text:
        return []
    return TOKEN_PATTERN.findall(text.lower())


def token_hash(token: str) -> int:
    """Polynomial string hash wrapped to a signed 32-bit integer."""
    h = 0
    for ch in token:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def _resolve_dim(dim: Optional[int]) -> int:
    dim = config.EMBEDDING_DIM if dim is None else dim
    if dim <= 0:
        raise ValueError(f"Embedding dimension must be positive, got {dim}")
    return dim


def embed(text: str, dim: Optional[int] = None) -> np.ndarray:
    """Embed text into a unit vector of length ``dim``.

    Args:
        text: Text to embed
        dim: Vector dimension (default from config)

    Returns:
        float32 array; all zeros when the text has no word tokens
    """
    dim = _resolve_dim(dim)
    vector = np.zeros(dim, dtype=np.float64)

    for i, token in enumerate(tokenize(text)):
        weight = 1.0 / (1.0 + math.log1p(i))
        vector[abs(token_hash(token)) % dim] += weight

    magnitude = float(np.sqrt(np.dot(vector, vector)))
    if magnitude == 0.0:
        return np.zeros(dim, dtype=np.float32)

    return (vector / magnitude).astype(np.float32)


def embed_batch(texts: Iterable[str], dim: Optional[int] = None) -> np.ndarray:
    """Embed several texts; returns an array of shape (n, dim)."""
    dim = _resolve_dim(dim)
    vectors = [embed(text, dim) for text in texts]
    if not vectors:
        return np.zeros((0, dim), dtype=np.float32)
    return np.vstack(vectors)
