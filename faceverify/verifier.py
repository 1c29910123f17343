"""Selfie-vs-document comparison orchestration."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from faceverify.config import VerifierConfig
from faceverify.detectors.base import EmbeddingExtractor, FaceDetector
from faceverify.detectors.multipass import MultiPassDetector
from faceverify.errors import ModelsNotLoaded, raise_if_cancelled
from faceverify.fusion.decision import FusionDecision
from faceverify.io_utils import ImageSource, load_image
from faceverify.metrics.battery import MetricBattery
from faceverify.preprocess.enhance import preprocess_document, preprocess_selfie, upscale
from faceverify.quality.analyzer import analyze_image_quality, enforce_quality_floors
from faceverify.recognition.descriptors import DescriptorExtractor
from faceverify.recognition.ensemble import EnsembleFaceVerifier, EnsembleResult, EnsembleScorer
from faceverify.recognition.matcher import find_best_match
from faceverify.types import (
    ComparisonMetrics,
    ComparisonResult,
    Descriptor,
    FaceDetection,
    ImageQuality,
    QualityScores,
)

LOGGER = logging.getLogger("faceverify.verifier")

T = TypeVar("T")


def best_descriptor(descriptors: Sequence[Descriptor]) -> Descriptor:
    """Highest detection confidence; on ties the later descriptor wins."""
    best = descriptors[0]
    for descriptor in descriptors[1:]:
        best = best if best.detection_confidence > descriptor.detection_confidence else descriptor
    return best


class FaceVerifier:
    """Decides whether a selfie and a document photo show the same person."""

    def __init__(
        self,
        detector: FaceDetector,
        embedder: EmbeddingExtractor,
        ensemble: Optional[EnsembleScorer] = None,
        config: Optional[VerifierConfig] = None,
        quality_analyzer: Callable[[np.ndarray], ImageQuality] = analyze_image_quality,
        metric_battery: Optional[MetricBattery] = None,
    ) -> None:
        self.config = config or VerifierConfig()
        self.detector = detector
        self.embedder = embedder
        self.ensemble = ensemble if ensemble is not None else EnsembleFaceVerifier()
        self.quality_analyzer = quality_analyzer
        self.metric_battery = metric_battery or MetricBattery()
        detection = self.config.detection
        self.multipass = MultiPassDetector(
            detector,
            ladder=detection.ladder,
            precise_accept=detection.precise_accept,
            fast_accept=detection.fast_accept,
        )
        self.descriptor_extractor = DescriptorExtractor(
            detector, embedder, self.config.descriptors, detection
        )

    @classmethod
    def from_config(cls, config: Optional[VerifierConfig] = None) -> "FaceVerifier":
        """Build a verifier backed by InsightFace detection and ArcFace embeddings."""
        from faceverify.detectors.face_insight import InsightFaceDetector
        from faceverify.recognition.embed_arcface import ArcFaceEmbedder

        cfg = config or VerifierConfig()
        detector = InsightFaceDetector(
            precise_model=cfg.precise_model,
            fast_model=cfg.fast_model,
            providers=cfg.providers,
        )
        embedder = ArcFaceEmbedder(model_path=cfg.recognition_model, providers=cfg.providers)
        return cls(detector, embedder, config=cfg)

    def _check_ready(self) -> None:
        if not getattr(self.detector, "ready", False):
            raise ModelsNotLoaded("detector")
        if not getattr(self.embedder, "ready", False):
            raise ModelsNotLoaded("embedder")

    @staticmethod
    def _run_pair(
        pool: Optional[ThreadPoolExecutor],
        func: Callable[..., T],
        selfie_args: Tuple,
        document_args: Tuple,
    ) -> Tuple[T, T]:
        if pool is None:
            return func(*selfie_args), func(*document_args)
        selfie_future = pool.submit(func, *selfie_args)
        document_future = pool.submit(func, *document_args)
        try:
            return selfie_future.result(), document_future.result()
        finally:
            document_future.cancel()

    def compare_faces(
        self,
        selfie: ImageSource,
        document: ImageSource,
        cancel_event: Optional[threading.Event] = None,
    ) -> ComparisonResult:
        self._check_ready()
        selfie_image = load_image(selfie)
        document_image = load_image(document)

        threads = max(1, int(self.config.threads))
        if threads == 1:
            return self._compare(selfie_image, document_image, cancel_event, None)
        with ThreadPoolExecutor(max_workers=threads, thread_name_prefix="faceverify") as pool:
            return self._compare(selfie_image, document_image, cancel_event, pool)

    def _compare(
        self,
        selfie_image: np.ndarray,
        document_image: np.ndarray,
        cancel_event: Optional[threading.Event],
        pool: Optional[ThreadPoolExecutor],
    ) -> ComparisonResult:
        cfg = self.config

        raise_if_cancelled(cancel_event, "quality analysis")
        selfie_quality, document_quality = self._run_pair(
            pool, self.quality_analyzer, (selfie_image,), (document_image,)
        )
        LOGGER.info(
            "Quality selfie=%.1f document=%.1f",
            selfie_quality.overall_quality,
            document_quality.overall_quality,
        )
        enforce_quality_floors(selfie_quality, document_quality, cfg.quality)

        raise_if_cancelled(cancel_event, "preprocessing")
        processed_selfie, processed_document = self._run_pair(
            pool,
            lambda image, fn: fn(image, cfg.preprocess),
            (selfie_image, preprocess_selfie),
            (document_image, preprocess_document),
        )
        processed_document = upscale(
            processed_document, cfg.preprocess.document_upscale, cfg.preprocess.max_upscale_dim
        )

        selfie_detection, document_detection = self._run_pair(
            pool,
            self.multipass.detect,
            (processed_selfie, "selfie", cancel_event),
            (processed_document, "document", cancel_event),
        )

        selfie_descriptors, document_descriptors = self._run_pair(
            pool,
            self._describe,
            (processed_selfie, selfie_detection, "selfie", cancel_event),
            (processed_document, document_detection, "document", cancel_event),
        )

        match = find_best_match(selfie_descriptors, document_descriptors, cfg.matcher.confidence_margin)

        avg_quality = (selfie_quality.overall_quality + document_quality.overall_quality) / 2.0
        ensemble_result = self._run_ensemble(selfie_descriptors, document_descriptors, avg_quality, cancel_event)

        metric_scores = self.metric_battery.compute(
            processed_selfie, processed_document, selfie_detection, document_detection, pool=pool
        )

        decision = FusionDecision(cfg.policy)
        fused = decision.score(match, metric_scores, ensemble_result)
        verdict = decision.decide()

        metrics = ComparisonMetrics(
            euclidean_score=fused.euclidean_score,
            cosine_score=fused.cosine_score,
            landmark_score=fused.landmark_score,
            structural_score=fused.structural_score,
            texture_score=fused.texture_score,
            histogram_score=fused.histogram_score,
            euclidean_distance=match.euclidean,
            l2_distance=match.l2_normalized,
            cosine_similarity=match.cosine,
            cosine_distance=1.0 - match.cosine,
            ensemble_score=fused.ensemble_score if ensemble_result is not None else None,
            algorithm_scores=dict(getattr(ensemble_result, "algorithm_scores", {}) or {}),
        )
        result = ComparisonResult(
            similarity=verdict.similarity,
            confidence=verdict.confidence,
            passed=verdict.passed,
            metrics=metrics,
            quality=QualityScores(
                selfie_quality.overall_quality,
                document_quality.overall_quality,
                selfie_report=selfie_quality,
                document_report=document_quality,
            ),
            distance=match.euclidean,
            required_score=verdict.required_score,
            original_score=fused.original_score,
            final_score=fused.final_score,
            ensemble=ensemble_result,
            selfie_descriptors=len(selfie_descriptors),
            document_descriptors=len(document_descriptors),
        )
        LOGGER.info(
            "Comparison finished: similarity=%d confidence=%s passed=%s "
            "(original=%.1f ensemble=%.1f final=%.1f overridden=%s)",
            result.similarity,
            result.confidence.value,
            result.passed,
            fused.original_score,
            fused.ensemble_score,
            fused.final_score,
            verdict.overridden,
        )
        return result

    def _describe(
        self,
        image: np.ndarray,
        detection: FaceDetection,
        label: str,
        cancel_event: Optional[threading.Event],
    ) -> List[Descriptor]:
        descriptors = self.descriptor_extractor.extract(image, detection, label, cancel_event)
        if descriptors:
            return descriptors
        LOGGER.info("No crop descriptor accepted for %s; using the primary detection", label)
        fallback = self.descriptor_extractor.fallback(image, detection, label, cancel_event)
        if fallback is None:
            LOGGER.warning(
                "No usable descriptor for %s; verdict degraded to landmark and image metrics "
                "(no embedding match, no ensemble override)",
                label,
            )
            return []
        return [fallback]

    def _run_ensemble(
        self,
        selfie_descriptors: Sequence[Descriptor],
        document_descriptors: Sequence[Descriptor],
        avg_quality: float,
        cancel_event: Optional[threading.Event],
    ) -> Optional[EnsembleResult]:
        if not selfie_descriptors or not document_descriptors:
            LOGGER.warning("Skipping ensemble: an image has no descriptors")
            return None
        scorer = self.ensemble
        if hasattr(scorer, "for_quality"):
            scorer = scorer.for_quality(avg_quality)
        raise_if_cancelled(cancel_event, "ensemble scoring")
        return scorer.compare_detailed(
            best_descriptor(selfie_descriptors).embedding,
            best_descriptor(document_descriptors).embedding,
        )
