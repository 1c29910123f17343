"""Builds a set of identity descriptors per image from several crop variants."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

import cv2
import numpy as np

from faceverify.alignment.aligner import (
    calculate_eye_angle,
    extract_aligned_face,
    eye_rotation_center,
    eye_rotation_matrix,
    rotate_detection,
    rotate_to_align_eyes,
)
from faceverify.config import DescriptorConfig, DetectionConfig
from faceverify.detectors.base import DetectorConfig, DetectorVariant, EmbeddingExtractor, FaceDetector
from faceverify.errors import raise_if_cancelled
from faceverify.types import Descriptor, FaceDetection

LOGGER = logging.getLogger("faceverify.recognition.descriptors")

# Failures that only shrink the descriptor set
_CROP_FAILURES = (ValueError, RuntimeError, cv2.error)


class DescriptorExtractor:
    """Runs the embedding extractor over original, eye-aligned and padded crops."""

    def __init__(
        self,
        detector: FaceDetector,
        embedder: EmbeddingExtractor,
        config: Optional[DescriptorConfig] = None,
        detection_config: Optional[DetectionConfig] = None,
    ) -> None:
        self.detector = detector
        self.embedder = embedder
        self.config = config or DescriptorConfig()
        self.detection_config = detection_config or DetectionConfig()

    def extract(
        self,
        image: np.ndarray,
        detection: FaceDetection,
        label: str = "image",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Descriptor]:
        cfg = self.config
        descriptors: List[Descriptor] = []

        def attempt(source: str, build: Callable[[], Optional[Descriptor]]) -> None:
            try:
                descriptor = build()
            except _CROP_FAILURES as exc:
                LOGGER.debug("Dropped %s descriptor for %s: %s", source, label, exc)
                return
            if descriptor is not None:
                descriptors.append(descriptor)

        attempt(
            "original",
            lambda: self._redetect_and_describe(
                image, "original", cfg.original_min_confidence, label, cancel_event
            ),
        )
        attempt(
            "aligned",
            lambda: self._redetect_and_describe(
                self._eye_aligned_crop(image, detection, label, cancel_event),
                "aligned",
                cfg.aligned_min_confidence,
                label,
                cancel_event,
            ),
        )
        for padding in cfg.paddings:
            source = f"padding_{padding:.2f}"
            attempt(
                source,
                lambda padding=padding, source=source: self._redetect_and_describe(
                    self._padded_crop(image, detection, padding, label, cancel_event),
                    source,
                    cfg.padding_min_confidence,
                    label,
                    cancel_event,
                ),
            )

        LOGGER.debug("Extracted %d descriptors for %s: %s", len(descriptors), label, [d.source for d in descriptors])
        return descriptors

    def fallback(
        self,
        image: np.ndarray,
        detection: FaceDetection,
        label: str = "image",
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[Descriptor]:
        """Descriptor straight from the primary detection, used when the set is empty."""
        raise_if_cancelled(cancel_event, f"fallback description of {label}")
        try:
            embedding, confidence = self.embedder.describe(image, detection)
        except _CROP_FAILURES as exc:
            LOGGER.warning("Fallback descriptor for %s failed: %s", label, exc)
            return None
        return Descriptor(np.asarray(embedding, dtype=np.float32).reshape(-1), float(confidence), "fallback")

    def _redetect_and_describe(
        self,
        image: np.ndarray,
        source: str,
        min_confidence: float,
        label: str,
        cancel_event: Optional[threading.Event],
    ) -> Optional[Descriptor]:
        raise_if_cancelled(cancel_event, f"{source} re-detection on {label}")
        found = self.detector.detect(
            image,
            DetectorConfig(
                min_confidence=self.detection_config.descriptor_redetect_confidence,
                variant=DetectorVariant.PRECISE,
            ),
        )
        if found is None or found.score <= min_confidence:
            LOGGER.debug(
                "%s crop of %s rejected (score=%s, required > %.2f)",
                source,
                label,
                None if found is None else f"{found.score:.3f}",
                min_confidence,
            )
            return None
        raise_if_cancelled(cancel_event, f"{source} description of {label}")
        embedding, confidence = self.embedder.describe(image, found)
        return Descriptor(np.asarray(embedding, dtype=np.float32).reshape(-1), float(confidence), source)

    def _eye_aligned_crop(
        self,
        image: np.ndarray,
        detection: FaceDetection,
        label: str,
        cancel_event: Optional[threading.Event],
    ) -> np.ndarray:
        working_image, working_detection = image, detection
        angle = calculate_eye_angle(detection.landmarks)
        if abs(angle) > self.config.eye_angle_threshold:
            center = eye_rotation_center(detection.landmarks)
            rotated = rotate_to_align_eyes(image, angle, center)
            if rotated is not image:
                working_image = rotated
                working_detection = rotate_detection(detection, eye_rotation_matrix(angle, center))
        return self._padded_crop(
            working_image, working_detection, self.config.aligned_padding, label, cancel_event
        )

    def _padded_crop(
        self,
        image: np.ndarray,
        detection: FaceDetection,
        padding: float,
        label: str,
        cancel_event: Optional[threading.Event],
    ) -> np.ndarray:
        raise_if_cancelled(cancel_event, f"crop re-detection on {label}")
        return extract_aligned_face(
            image,
            detection,
            padding=padding,
            output_size=self.config.output_size,
            detector=self.detector,
            redetect_confidence=self.detection_config.crop_redetect_confidence,
        )
