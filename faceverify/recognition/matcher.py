"""Embedding distances and best-pair search across two descriptor sets."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from faceverify.types import Descriptor, l2_normalize

LOGGER = logging.getLogger("faceverify.recognition.matcher")

# Worst-case values reported when no pair could be compared
SENTINEL_EUCLIDEAN = 1.0
SENTINEL_L2 = 2.0
SENTINEL_COSINE = 0.0


def _check_shapes(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape != b.shape:
        raise ValueError("Embedding shapes do not match")


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    _check_shapes(a, b)
    return float(np.linalg.norm(a - b))


def l2_normalized_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance after unit-normalizing each embedding."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    _check_shapes(a, b)
    return float(np.linalg.norm(l2_normalize(a) - l2_normalize(b)))


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    _check_shapes(a, b)
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


@dataclass(frozen=True)
class MatchResult:
    euclidean: float
    l2_normalized: float
    cosine: float
    selfie_index: Optional[int] = None
    document_index: Optional[int] = None

    @property
    def found(self) -> bool:
        return self.selfie_index is not None


def find_best_match(
    selfie: Sequence[Descriptor],
    document: Sequence[Descriptor],
    margin: float = 0.9,
) -> MatchResult:
    """Pick the pair with the smallest raw Euclidean distance, gated by confidence.

    A pair is adopted only when its confidence-adjusted distance beats
    ``best / margin`` and its raw distance beats ``best``. The raw-distance
    condition dominates, so the confidence gate rarely changes the outcome.
    """
    best_euclidean = math.inf
    best_l2 = math.inf
    best_cosine = -1.0
    best_pair = (None, None)

    for i, d1 in enumerate(selfie):
        for j, d2 in enumerate(document):
            euclidean = euclidean_distance(d1.embedding, d2.embedding)
            l2 = l2_normalized_distance(d1.embedding, d2.embedding)
            cosine = cosine_similarity(d1.embedding, d2.embedding)

            confidence = (d1.detection_confidence + d2.detection_confidence) / 2.0
            adjusted = euclidean / confidence if confidence > 0 else math.inf

            if adjusted < best_euclidean / margin and euclidean < best_euclidean:
                best_euclidean = euclidean
                best_l2 = l2
                best_cosine = cosine
                best_pair = (i, j)

    if best_pair[0] is None:
        LOGGER.debug("No descriptor pair qualified; returning sentinel distances")
        return MatchResult(SENTINEL_EUCLIDEAN, SENTINEL_L2, SENTINEL_COSINE)

    LOGGER.debug(
        "Best pair selfie[%d] document[%d]: euclidean=%.4f l2=%.4f cosine=%.4f",
        best_pair[0],
        best_pair[1],
        best_euclidean,
        best_l2,
        best_cosine,
    )
    return MatchResult(best_euclidean, best_l2, best_cosine, best_pair[0], best_pair[1])
