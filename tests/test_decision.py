from dataclasses import dataclass

import pytest

from faceverify.config import DecisionPolicy
from faceverify.fusion.decision import DecisionState, FusionDecision, distance_to_similarity
from faceverify.metrics.battery import MetricScores
from faceverify.recognition.matcher import MatchResult
from faceverify.types import Confidence


@dataclass
class _StaticEnsemble:
    score: float = 0.0
    passed: bool = False
    agreement_count: int = 0


def _decide(match=None, metrics=None, ensemble=None, policy=None):
    decision = FusionDecision(policy)
    decision.score(match or MatchResult(1.0, 2.0, 0.0), metrics or MetricScores(), ensemble)
    return decision, decision.decide()


def _ensemble_only_policy() -> DecisionPolicy:
    # Zero out every input but the ensemble so final == ensemble score
    return DecisionPolicy(
        euclidean_weight=0.0,
        cosine_weight=0.0,
        landmark_weight=0.0,
        structural_weight=0.0,
        texture_weight=0.0,
        histogram_weight=0.0,
        original_weight=0.0,
        ensemble_weight=1.0,
    )


def test_distance_to_similarity_midpoint_and_bounds():
    assert distance_to_similarity(0.40) == pytest.approx(50.0)
    assert distance_to_similarity(-1e6) == 100.0
    assert distance_to_similarity(1e6) == 0.0


def test_distance_to_similarity_is_monotone():
    distances = [i / 50.0 for i in range(0, 101)]
    scores = [distance_to_similarity(d) for d in distances]
    assert all(a >= b for a, b in zip(scores, scores[1:]))
    assert all(0.0 <= s <= 100.0 for s in scores)


def test_distance_025_scores_above_90():
    assert distance_to_similarity(0.25) == pytest.approx(93.7, abs=0.1)


def test_boundary_twenty_passes_and_just_below_rejects():
    policy = _ensemble_only_policy()
    decision, verdict = _decide(ensemble=_StaticEnsemble(score=20.0), policy=policy)
    assert verdict.passed
    assert verdict.confidence is Confidence.LOW
    assert decision.state is DecisionState.PASSED

    decision, verdict = _decide(ensemble=_StaticEnsemble(score=19.999), policy=policy)
    assert not verdict.passed
    assert verdict.confidence is Confidence.LOW
    assert decision.state is DecisionState.REJECTED


def test_tiers_follow_final_score():
    policy = _ensemble_only_policy()
    assert _decide(ensemble=_StaticEnsemble(score=80.0), policy=policy)[1].confidence is Confidence.HIGH
    assert _decide(ensemble=_StaticEnsemble(score=50.0), policy=policy)[1].confidence is Confidence.MEDIUM
    assert _decide(ensemble=_StaticEnsemble(score=49.9), policy=policy)[1].confidence is Confidence.LOW


def test_single_vote_overrides_rejection():
    policy = _ensemble_only_policy()
    _, verdict = _decide(ensemble=_StaticEnsemble(score=10.0, agreement_count=1), policy=policy)
    assert verdict.passed
    assert verdict.overridden
    assert verdict.confidence is Confidence.LOW


def test_agreement_sets_confidence_outright():
    policy = _ensemble_only_policy()
    _, verdict = _decide(ensemble=_StaticEnsemble(score=10.0, agreement_count=3), policy=policy)
    assert verdict.passed and verdict.confidence is Confidence.HIGH
    _, verdict = _decide(ensemble=_StaticEnsemble(score=90.0, agreement_count=2), policy=policy)
    assert verdict.confidence is Confidence.MEDIUM
    assert not verdict.overridden


def test_override_can_be_disabled():
    policy = _ensemble_only_policy()
    policy.override_enabled = False
    _, verdict = _decide(ensemble=_StaticEnsemble(score=10.0, passed=True, agreement_count=4), policy=policy)
    assert not verdict.passed


def test_missing_ensemble_contributes_zero_and_no_override():
    decision, verdict = _decide(
        match=MatchResult(0.0, 0.0, 1.0, 0, 0),
        metrics=MetricScores(1.0, 1.0, 1.0, 1.0),
        ensemble=None,
    )
    assert decision.scores.ensemble_score == 0.0
    assert decision.scores.original_score == pytest.approx(99.97, abs=0.05)
    assert decision.scores.final_score == pytest.approx(0.45 * decision.scores.original_score)
    assert verdict.passed and not verdict.overridden


def test_strong_match_scenario():
    match = MatchResult(euclidean=0.25, l2_normalized=0.3, cosine=0.95, selfie_index=0, document_index=0)
    metrics = MetricScores(landmark=0.8, structural=0.8, texture=0.8, histogram=0.8)
    ensemble = _StaticEnsemble(score=90.0, passed=True, agreement_count=3)
    decision, verdict = _decide(match=match, metrics=metrics, ensemble=ensemble)
    assert decision.scores.cosine_score == pytest.approx(95.0)
    assert verdict.passed
    assert verdict.confidence in (Confidence.HIGH, Confidence.MEDIUM)
    assert verdict.similarity == round(decision.scores.final_score)


def test_negative_cosine_is_floored():
    decision, _ = _decide(match=MatchResult(1.5, 1.5, -0.4, 0, 0))
    assert decision.scores.cosine_score == 0.0


def test_out_of_order_calls_raise():
    decision = FusionDecision()
    with pytest.raises(RuntimeError):
        decision.decide()
    decision.score(MatchResult(1.0, 2.0, 0.0), MetricScores())
    with pytest.raises(RuntimeError):
        decision.score(MatchResult(1.0, 2.0, 0.0), MetricScores())
    decision.decide()
    with pytest.raises(RuntimeError):
        decision.decide()
