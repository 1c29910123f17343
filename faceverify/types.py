"""Common dataclasses and type aliases used across the faceverify package."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

# Bounding box order: x1, y1, x2, y2 (pixel coordinates)
BBox = Tuple[float, float, float, float]
Point = Tuple[float, float]

LANDMARK_COUNT = 68

# iBUG 68-point topology
LANDMARK_REGIONS: Dict[str, slice] = {
    "jaw": slice(0, 17),
    "left_eyebrow": slice(17, 22),
    "right_eyebrow": slice(22, 27),
    "nose": slice(27, 36),
    "left_eye": slice(36, 42),
    "right_eye": slice(42, 48),
    "mouth": slice(48, 68),
}


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class LandmarkSet:
    """Immutable 68-point landmark set in image coordinates."""

    points: np.ndarray

    def __post_init__(self) -> None:
        pts = np.array(self.points, dtype=np.float64).reshape(-1, 2)
        if pts.shape[0] != LANDMARK_COUNT:
            raise ValueError(f"Expected {LANDMARK_COUNT} landmarks, got {pts.shape[0]}")
        pts.setflags(write=False)
        object.__setattr__(self, "points", pts)

    def __len__(self) -> int:
        return self.points.shape[0]

    def region(self, name: str) -> np.ndarray:
        return self.points[LANDMARK_REGIONS[name]]

    @property
    def jaw(self) -> np.ndarray:
        return self.region("jaw")

    @property
    def left_eyebrow(self) -> np.ndarray:
        return self.region("left_eyebrow")

    @property
    def right_eyebrow(self) -> np.ndarray:
        return self.region("right_eyebrow")

    @property
    def nose(self) -> np.ndarray:
        return self.region("nose")

    @property
    def left_eye(self) -> np.ndarray:
        return self.region("left_eye")

    @property
    def right_eye(self) -> np.ndarray:
        return self.region("right_eye")

    @property
    def mouth(self) -> np.ndarray:
        return self.region("mouth")

    def bounds(self) -> BBox:
        x1, y1 = self.points.min(axis=0)
        x2, y2 = self.points.max(axis=0)
        return float(x1), float(y1), float(x2), float(y2)

    def remapped(self, origin: Point, scale: Tuple[float, float]) -> "LandmarkSet":
        """Shift by -origin then scale per axis (crop-space remap)."""
        offset = np.asarray(origin, dtype=np.float64)
        factors = np.asarray(scale, dtype=np.float64)
        return LandmarkSet((self.points - offset) * factors)

    def transformed(self, matrix: np.ndarray) -> "LandmarkSet":
        """Apply a 2x3 affine matrix to every point."""
        return LandmarkSet(apply_affine(matrix, self.points))


@dataclass(frozen=True)
class FaceDetection:
    """Single face returned by a detector call."""

    bbox: BBox
    score: float
    landmarks: LandmarkSet

    @property
    def width(self) -> float:
        return float(self.bbox[2] - self.bbox[0])

    @property
    def height(self) -> float:
        return float(self.bbox[3] - self.bbox[1])

    def as_xywh(self) -> Tuple[float, float, float, float]:
        x1, y1, x2, y2 = self.bbox
        return x1, y1, x2 - x1, y2 - y1


@dataclass(frozen=True)
class Descriptor:
    """Identity embedding extracted from one crop variant."""

    embedding: np.ndarray
    detection_confidence: float
    source: str = "original"


@dataclass
class ImageQuality:
    brightness: float
    contrast: float
    sharpness: float
    overall_quality: float
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brightness": self.brightness,
            "contrast": self.contrast,
            "sharpness": self.sharpness,
            "overall_quality": self.overall_quality,
            "issues": list(self.issues),
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True)
class QualityScores:
    selfie: float
    document: float
    selfie_report: Optional[ImageQuality] = None
    document_report: Optional[ImageQuality] = None

    def reports(self) -> Dict[str, Dict[str, Any]]:
        """Per-image quality breakdown (issues and suggestions included)."""
        payload: Dict[str, Dict[str, Any]] = {}
        if self.selfie_report is not None:
            payload["selfie"] = self.selfie_report.to_dict()
        if self.document_report is not None:
            payload["document"] = self.document_report.to_dict()
        return payload


@dataclass(frozen=True)
class ComparisonMetrics:
    """Named scores in [0, 100] plus the raw distances behind them."""

    euclidean_score: float
    cosine_score: float
    landmark_score: float
    structural_score: float
    texture_score: float
    histogram_score: float
    euclidean_distance: float
    l2_distance: float
    cosine_similarity: float
    cosine_distance: float
    ensemble_score: Optional[float] = None
    algorithm_scores: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "euclidean_score": self.euclidean_score,
            "cosine_score": self.cosine_score,
            "landmark_score": self.landmark_score,
            "structural_score": self.structural_score,
            "texture_score": self.texture_score,
            "histogram_score": self.histogram_score,
            "euclidean_distance": self.euclidean_distance,
            "l2_distance": self.l2_distance,
            "cosine_similarity": self.cosine_similarity,
            "cosine_distance": self.cosine_distance,
            "ensemble_score": self.ensemble_score,
        }
        for name, score in self.algorithm_scores.items():
            payload[f"{name}_score"] = score
        return payload


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of a single selfie-vs-document comparison."""

    similarity: int
    confidence: Confidence
    passed: bool
    metrics: ComparisonMetrics
    quality: QualityScores
    distance: float
    required_score: float
    original_score: float
    final_score: float
    ensemble: Optional[Any] = None
    selfie_descriptors: int = 0
    document_descriptors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "similarity": self.similarity,
            "confidence": self.confidence.value,
            "passed": self.passed,
            "distance": self.distance,
            "required_score": self.required_score,
            "original_score": self.original_score,
            "final_score": self.final_score,
            "selfie_quality": round(self.quality.selfie),
            "document_quality": round(self.quality.document),
            "selfie_descriptors": self.selfie_descriptors,
            "document_descriptors": self.document_descriptors,
            "metrics": self.metrics.to_dict(),
        }
        reports = self.quality.reports()
        if reports:
            payload["quality"] = reports
        if self.ensemble is not None and hasattr(self.ensemble, "to_dict"):
            payload["ensemble"] = self.ensemble.to_dict()
        return payload


def l2_normalize(vec: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """L2-normalize the input vector."""
    norm = np.linalg.norm(vec)
    if norm < eps:
        return vec
    return vec / norm


def apply_affine(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Map (N, 2) points through a 2x3 affine matrix."""
    mat = np.asarray(matrix, dtype=np.float64).reshape(2, 3)
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    return pts @ mat[:, :2].T + mat[:, 2]


def luminance(image: np.ndarray) -> np.ndarray:
    """Float luminance (0.299R + 0.587G + 0.114B) of a BGR or grayscale image."""
    data = np.asarray(image, dtype=np.float64)
    if data.ndim == 2:
        return data
    blue, green, red = data[..., 0], data[..., 1], data[..., 2]
    return 0.299 * red + 0.587 * green + 0.114 * blue
