"""Fuses matcher distances, metric scores and the ensemble into one verdict."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from faceverify.config import DecisionPolicy
from faceverify.metrics.battery import MetricScores
from faceverify.recognition.ensemble import EnsembleResult
from faceverify.recognition.matcher import MatchResult
from faceverify.types import Confidence

LOGGER = logging.getLogger("faceverify.fusion")

# exp() overflows a double just above 709
_MAX_EXPONENT = 700.0


def distance_to_similarity(distance: float, midpoint: float = 0.40, steepness: float = 18.0) -> float:
    """Logistic map of an embedding distance onto [0, 100]; larger distance, lower score."""
    exponent = steepness * (distance - midpoint)
    if exponent > _MAX_EXPONENT:
        return 0.0
    if exponent < -_MAX_EXPONENT:
        return 100.0
    similarity = 100.0 / (1.0 + math.exp(exponent))
    return max(0.0, min(100.0, similarity))


class DecisionState(str, Enum):
    PENDING = "pending"
    SCORED = "scored"
    PASSED = "passed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class FusedScores:
    euclidean_score: float
    cosine_score: float
    landmark_score: float
    structural_score: float
    texture_score: float
    histogram_score: float
    original_score: float
    ensemble_score: float
    final_score: float
    ensemble_passed: bool = False
    agreement_count: int = 0


@dataclass(frozen=True)
class Verdict:
    passed: bool
    confidence: Confidence
    similarity: int
    required_score: float
    overridden: bool = False


class FusionDecision:
    """Single-use state machine: ``score`` once, then ``decide`` once."""

    def __init__(self, policy: Optional[DecisionPolicy] = None) -> None:
        self.policy = policy or DecisionPolicy()
        self.state = DecisionState.PENDING
        self.scores: Optional[FusedScores] = None
        self.verdict: Optional[Verdict] = None

    def score(
        self,
        match: MatchResult,
        metrics: MetricScores,
        ensemble: Optional[EnsembleResult] = None,
    ) -> FusedScores:
        if self.state is not DecisionState.PENDING:
            raise RuntimeError(f"score() called in state {self.state.value}")
        policy = self.policy

        euclidean_score = distance_to_similarity(
            match.euclidean, policy.euclidean_midpoint, policy.euclidean_steepness
        )
        cosine_score = max(0.0, match.cosine) * 100.0
        landmark_score = metrics.landmark * 100.0
        structural_score = metrics.structural * 100.0
        texture_score = metrics.texture * 100.0
        histogram_score = metrics.histogram * 100.0

        original = (
            euclidean_score * policy.euclidean_weight
            + cosine_score * policy.cosine_weight
            + landmark_score * policy.landmark_weight
            + structural_score * policy.structural_weight
            + texture_score * policy.texture_weight
            + histogram_score * policy.histogram_weight
        )
        ensemble_score = float(ensemble.score) if ensemble is not None else 0.0
        final = original * policy.original_weight + ensemble_score * policy.ensemble_weight

        self.scores = FusedScores(
            euclidean_score=euclidean_score,
            cosine_score=cosine_score,
            landmark_score=landmark_score,
            structural_score=structural_score,
            texture_score=texture_score,
            histogram_score=histogram_score,
            original_score=original,
            ensemble_score=ensemble_score,
            final_score=final,
            ensemble_passed=bool(ensemble.passed) if ensemble is not None else False,
            agreement_count=int(ensemble.agreement_count) if ensemble is not None else 0,
        )
        self.state = DecisionState.SCORED
        LOGGER.debug(
            "Fused scores: euclidean=%.1f cosine=%.1f original=%.1f ensemble=%.1f final=%.1f",
            euclidean_score,
            cosine_score,
            original,
            ensemble_score,
            final,
        )
        return self.scores

    def decide(self) -> Verdict:
        if self.state is not DecisionState.SCORED or self.scores is None:
            raise RuntimeError(f"decide() called in state {self.state.value}")
        policy = self.policy
        scores = self.scores
        final = scores.final_score

        if final >= policy.pass_threshold:
            passed = True
            if final >= policy.high_threshold:
                confidence = Confidence.HIGH
            elif final >= policy.medium_threshold:
                confidence = Confidence.MEDIUM
            else:
                confidence = Confidence.LOW
        else:
            passed = False
            confidence = Confidence.LOW

        overridden = False
        if policy.override_enabled and (
            scores.ensemble_passed or scores.agreement_count >= policy.override_min_agreement
        ):
            overridden = not passed
            passed = True
            # Agreement sets the tier outright, so two votes can lower a High score to Medium
            if scores.agreement_count >= policy.high_agreement:
                confidence = Confidence.HIGH
            elif scores.agreement_count >= policy.medium_agreement:
                confidence = Confidence.MEDIUM

        self.verdict = Verdict(
            passed=passed,
            confidence=confidence,
            similarity=int(math.floor(final + 0.5)),
            required_score=policy.pass_threshold,
            overridden=overridden,
        )
        self.state = DecisionState.PASSED if passed else DecisionState.REJECTED
        return self.verdict
