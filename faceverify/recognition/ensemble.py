"""Ensemble of margin-based face matching scorers.

Four scorers inspired by the FaceNet triplet, ArcFace, CosFace and SphereFace
losses each turn one embedding pair into a 0-100 similarity and a vote. The
ensemble weights the similarities, counts votes, and picks an adaptive
threshold from the agreement between scorers.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import numpy as np

from faceverify.types import Confidence, l2_normalize

LOGGER = logging.getLogger("faceverify.recognition.ensemble")


def _sigmoid_similarity(logit: float) -> float:
    return 100.0 / (1.0 + math.exp(-logit / 10.0))


def _unit_cosine(a: np.ndarray, b: np.ndarray) -> float:
    a = l2_normalize(np.asarray(a, dtype=np.float64))
    b = l2_normalize(np.asarray(b, dtype=np.float64))
    return float(np.dot(a, b))


@dataclass(frozen=True)
class AlgorithmResult:
    similarity: float
    matched: bool
    confidence: Confidence
    cosine: Optional[float] = None
    distance: Optional[float] = None
    angle: Optional[float] = None

    @property
    def score(self) -> int:
        return int(round(self.similarity))

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "score": self.score,
            "matched": self.matched,
            "confidence": self.confidence.value,
        }
        for key in ("cosine", "distance", "angle"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


class TripletScorer:
    def __init__(self, margin: float = 0.2, decay: float = 2.5) -> None:
        self.margin = margin
        self.decay = decay

    def compare(self, a: np.ndarray, b: np.ndarray) -> AlgorithmResult:
        distance = float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))
        similarity = math.exp(-distance * self.decay) * 100.0
        if distance < 0.30:
            confidence = Confidence.HIGH
        elif distance < 0.50:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW
        return AlgorithmResult(similarity, distance < self.margin * 2, confidence, distance=distance)


class ArcFaceScorer:
    """Additive angular margin."""

    def __init__(self, scale: float = 64.0, margin: float = 0.5) -> None:
        self.scale = scale
        self.margin = margin

    def compare(self, a: np.ndarray, b: np.ndarray) -> AlgorithmResult:
        cosine = max(-1.0, min(1.0, _unit_cosine(a, b)))
        angle = math.acos(cosine)
        logit = self.scale * math.cos(angle + self.margin)
        if cosine > 0.85:
            confidence = Confidence.HIGH
        elif cosine > 0.70:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW
        return AlgorithmResult(
            _sigmoid_similarity(logit),
            cosine > math.cos(self.margin * 1.5),
            confidence,
            cosine=cosine,
            angle=math.degrees(angle),
        )


class CosFaceScorer:
    """Additive cosine margin."""

    def __init__(self, scale: float = 64.0, margin: float = 0.35) -> None:
        self.scale = scale
        self.margin = margin

    def compare(self, a: np.ndarray, b: np.ndarray) -> AlgorithmResult:
        cosine = _unit_cosine(a, b)
        logit = self.scale * (cosine - self.margin)
        if cosine > 0.90:
            confidence = Confidence.HIGH
        elif cosine > 0.75:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW
        return AlgorithmResult(_sigmoid_similarity(logit), cosine > 0.5 + self.margin, confidence, cosine=cosine)


class SphereFaceScorer:
    """Multiplicative angular margin."""

    def __init__(self, scale: float = 64.0, margin: float = 1.35) -> None:
        self.scale = scale
        self.margin = margin

    def compare(self, a: np.ndarray, b: np.ndarray) -> AlgorithmResult:
        cosine = _unit_cosine(a, b)
        angle = math.acos(max(-1.0, min(1.0, cosine)))
        logit = self.scale * math.cos(angle * self.margin)
        if cosine > 0.85:
            confidence = Confidence.HIGH
        elif cosine > 0.70:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW
        return AlgorithmResult(
            _sigmoid_similarity(logit),
            cosine > math.cos(math.pi / 4 * self.margin),
            confidence,
            cosine=cosine,
        )


@dataclass
class EnsembleStats:
    weighted_score: float
    votes: int
    variance: float
    std_dev: float
    threshold: float

    @property
    def agreement_count(self) -> int:
        return self.votes

    def to_dict(self) -> Dict[str, float]:
        return {
            "weighted_score": round(self.weighted_score),
            "votes": self.votes,
            "variance": round(self.variance),
            "std_dev": round(self.std_dev),
            "threshold": self.threshold,
            "agreement_count": self.votes,
        }


@dataclass
class EnsembleResult:
    passed: bool
    score: float
    confidence: Confidence
    agreement_count: int
    algorithms: Dict[str, AlgorithmResult] = field(default_factory=dict)
    stats: Optional[EnsembleStats] = None

    @property
    def algorithm_scores(self) -> Dict[str, float]:
        return {name: float(result.score) for name, result in self.algorithms.items()}

    def to_dict(self) -> Dict[str, object]:
        return {
            "passed": self.passed,
            "score": self.score,
            "confidence": self.confidence.value,
            "agreement_count": self.agreement_count,
            "algorithms": {name: result.to_dict() for name, result in self.algorithms.items()},
            "stats": self.stats.to_dict() if self.stats else None,
        }


class EnsembleScorer(Protocol):
    def compare_detailed(self, embedding_a: np.ndarray, embedding_b: np.ndarray) -> EnsembleResult: ...


DEFAULT_WEIGHTS: Dict[str, float] = {"triplet": 0.20, "arcface": 0.40, "cosface": 0.25, "sphereface": 0.15}


def weights_for_quality(quality: float) -> Dict[str, float]:
    """Lean harder on ArcFace as average image quality drops."""
    if quality < 40:
        return {"triplet": 0.15, "arcface": 0.55, "cosface": 0.20, "sphereface": 0.10}
    if quality < 70:
        return {"triplet": 0.18, "arcface": 0.45, "cosface": 0.25, "sphereface": 0.12}
    return dict(DEFAULT_WEIGHTS)


class EnsembleFaceVerifier:
    """Default ensemble scorer combining the four margin-based algorithms."""

    def __init__(self, weights: Optional[Dict[str, float]] = None) -> None:
        self.scorers = {
            "triplet": TripletScorer(0.2, 2.5),
            "arcface": ArcFaceScorer(64.0, 0.5),
            "cosface": CosFaceScorer(64.0, 0.35),
            "sphereface": SphereFaceScorer(64.0, 1.35),
        }
        self.weights = dict(weights or DEFAULT_WEIGHTS)
        missing = set(self.scorers) - set(self.weights)
        if missing:
            raise ValueError(f"Missing ensemble weights for {sorted(missing)}")

    def for_quality(self, quality: float) -> "EnsembleFaceVerifier":
        """A new scorer weighted for the given average image quality."""
        weights = weights_for_quality(quality)
        LOGGER.debug("Ensemble weights for quality %.1f: %s", quality, weights)
        return EnsembleFaceVerifier(weights)

    def compare_detailed(self, embedding_a: np.ndarray, embedding_b: np.ndarray) -> EnsembleResult:
        a = np.asarray(embedding_a, dtype=np.float64).reshape(-1)
        b = np.asarray(embedding_b, dtype=np.float64).reshape(-1)
        if a.shape != b.shape:
            raise ValueError("Embedding shapes do not match")

        results = {name: scorer.compare(a, b) for name, scorer in self.scorers.items()}
        weighted = sum(results[name].similarity * self.weights[name] for name in results)
        votes = sum(1 for result in results.values() if result.matched)
        similarities = [result.similarity for result in results.values()]
        # Spread is measured around the weighted score, not the plain mean
        variance = sum((s - weighted) ** 2 for s in similarities) / len(similarities)
        std_dev = math.sqrt(variance)

        if std_dev < 8 and weighted > 75 and votes >= 3:
            confidence = Confidence.HIGH
            threshold = 70.0
        elif std_dev < 15 and weighted > 60 and votes >= 2:
            confidence = Confidence.MEDIUM
            threshold = 60.0
        else:
            confidence = Confidence.LOW
            threshold = 50.0

        passed = weighted >= threshold and votes >= 2 and confidence != Confidence.LOW
        LOGGER.debug(
            "Ensemble scores=%s weighted=%.2f votes=%d/4 variance=%.2f threshold=%.0f",
            {name: round(r.similarity, 2) for name, r in results.items()},
            weighted,
            votes,
            variance,
            threshold,
        )
        return EnsembleResult(
            passed=passed,
            score=float(math.floor(weighted + 0.5)),
            confidence=confidence,
            agreement_count=votes,
            algorithms=results,
            stats=EnsembleStats(weighted, votes, variance, std_dev, threshold),
        )
