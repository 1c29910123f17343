"""Collaborator protocols for face detection and embedding extraction."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Tuple

import numpy as np

from faceverify.types import FaceDetection


class DetectorVariant(str, Enum):
    PRECISE = "precise"
    FAST = "fast"


@dataclass(frozen=True)
class DetectorConfig:
    min_confidence: float
    input_size: int = 416
    variant: DetectorVariant = DetectorVariant.PRECISE


class FaceDetector(Protocol):
    """Returns at most one face (the most confident) with 68 landmarks."""

    @property
    def ready(self) -> bool: ...

    def detect(self, image: np.ndarray, config: DetectorConfig) -> Optional[FaceDetection]: ...


class EmbeddingExtractor(Protocol):
    """Computes an identity embedding for a detected face."""

    @property
    def ready(self) -> bool: ...

    def describe(self, image: np.ndarray, detection: FaceDetection) -> Tuple[np.ndarray, float]: ...
