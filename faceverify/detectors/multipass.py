"""Detector retry ladder from strict to permissive operating points."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Sequence

import numpy as np

from faceverify.config import DEFAULT_LADDER, DetectorRung
from faceverify.detectors.base import DetectorConfig, DetectorVariant, FaceDetector
from faceverify.errors import NoFaceDetected, raise_if_cancelled
from faceverify.types import FaceDetection

LOGGER = logging.getLogger("faceverify.detectors.multipass")


class MultiPassDetector:
    """Walks the rung ladder, trying the precise variant before the fast one."""

    def __init__(
        self,
        detector: FaceDetector,
        ladder: Sequence[DetectorRung] = DEFAULT_LADDER,
        precise_accept: float = 0.5,
        fast_accept: float = 0.4,
    ) -> None:
        if not ladder:
            raise ValueError("ladder must contain at least one rung")
        self.detector = detector
        self.ladder = tuple(ladder)
        self.precise_accept = precise_accept
        self.fast_accept = fast_accept

    def detect(
        self,
        image: np.ndarray,
        label: str = "image",
        cancel_event: Optional[threading.Event] = None,
    ) -> FaceDetection:
        for rung in self.ladder:
            attempts = (
                (DetectorVariant.PRECISE, self.precise_accept),
                (DetectorVariant.FAST, self.fast_accept),
            )
            for variant, floor in attempts:
                raise_if_cancelled(cancel_event, f"{variant.value} detection on {label}")
                config = DetectorConfig(
                    min_confidence=rung.min_confidence,
                    input_size=rung.input_size,
                    variant=variant,
                )
                detection = self.detector.detect(image, config)
                if detection is not None and detection.score > floor:
                    LOGGER.info(
                        "%s detection succeeded on %s (min_conf=%.2f size=%d score=%.3f)",
                        variant.value,
                        label,
                        rung.min_confidence,
                        rung.input_size,
                        detection.score,
                    )
                    return detection
                LOGGER.debug(
                    "%s rung min_conf=%.2f size=%d found no acceptable face on %s (score=%s)",
                    variant.value,
                    rung.min_confidence,
                    rung.input_size,
                    label,
                    None if detection is None else f"{detection.score:.3f}",
                )
        LOGGER.info("No face detected on %s after %d rungs", label, len(self.ladder))
        raise NoFaceDetected(label)
