"""Synthetic faces and stub collaborators shared by the test modules."""

from __future__ import annotations

import math
from typing import List, Optional, Tuple

import numpy as np

from faceverify.detectors.base import DetectorConfig
from faceverify.types import FaceDetection, LandmarkSet


def _ellipse(cx: float, cy: float, rx: float, ry: float, angles: List[float]) -> List[Tuple[float, float]]:
    return [(cx + rx * math.cos(a), cy - ry * math.sin(a)) for a in angles]


def unit_face_points() -> np.ndarray:
    """68 iBUG-ordered landmarks for a frontal face in unit image coordinates."""
    # jaw 0-16: a U from the left temple down to the chin and back up
    points: List[Tuple[float, float]] = [
        (0.5 - 0.3 * math.cos(math.pi * k / 16.0), 0.45 + 0.45 * math.sin(math.pi * k / 16.0)) for k in range(17)
    ]
    # eyebrows 17-26
    points += [(0.28 + 0.04 * k, 0.33 - 0.01 * min(k, 4 - k)) for k in range(5)]
    points += [(0.56 + 0.04 * k, 0.33 - 0.01 * min(k, 4 - k)) for k in range(5)]
    # nose bridge 27-30 then nostrils 31-35
    points += [(0.5, 0.42 + 0.05 * k) for k in range(4)]
    points += [(0.44 + 0.03 * k, 0.62 + 0.01 * min(k, 4 - k)) for k in range(5)]
    # eyes 36-47: outer corner, upper lid, inner corner, lower lid
    eye_angles = [math.pi, 2 * math.pi / 3, math.pi / 3, 0.0, -math.pi / 3, -2 * math.pi / 3]
    points += _ellipse(0.38, 0.42, 0.06, 0.025, eye_angles)
    points += _ellipse(0.62, 0.42, 0.06, 0.025, eye_angles)
    # outer lip 48-59 from the left corner over the top, inner lip 60-67
    outer = [math.pi - k * math.pi / 6.0 for k in range(7)] + [-(k * math.pi / 6.0) for k in range(1, 6)]
    points += _ellipse(0.5, 0.75, 0.1, 0.04, outer)
    inner = [math.pi - k * math.pi / 4.0 for k in range(5)] + [-(k * math.pi / 4.0) for k in range(1, 4)]
    points += _ellipse(0.5, 0.75, 0.07, 0.02, inner)
    return np.asarray(points, dtype=np.float64)


def face_landmarks(width: float, height: float, angle: float = 0.0) -> LandmarkSet:
    """Unit face scaled to an image, optionally rolled by ``angle`` radians about the center."""
    pts = unit_face_points() * np.array([width, height])
    if angle:
        center = np.array([width / 2.0, height / 2.0])
        rot = np.array([[math.cos(angle), -math.sin(angle)], [math.sin(angle), math.cos(angle)]])
        pts = (pts - center) @ rot.T + center
    return LandmarkSet(pts)


def face_detection(width: float, height: float, score: float = 0.95, angle: float = 0.0) -> FaceDetection:
    landmarks = face_landmarks(width, height, angle)
    x1, y1, x2, y2 = landmarks.bounds()
    return FaceDetection(bbox=(x1, y1 - 0.05 * height, x2, y2), score=score, landmarks=landmarks)


def noise_image(height: int = 160, width: int = 160, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


class _FakeDetector:
    """Finds the unit face in whatever image it is given."""

    def __init__(self, score: Optional[float] = 0.95, ready: bool = True, angle: float = 0.0) -> None:
        self.score = score
        self.ready = ready
        self.angle = angle
        self.calls: List[DetectorConfig] = []

    def detect(self, image: np.ndarray, config: DetectorConfig) -> Optional[FaceDetection]:
        self.calls.append(config)
        if self.score is None or self.score < config.min_confidence:
            return None
        height, width = image.shape[:2]
        return face_detection(width, height, self.score, self.angle)


class _ScriptedDetector:
    """Returns scores from a fixed script, one per call."""

    def __init__(self, scores: List[Optional[float]]) -> None:
        self.scores = list(scores)
        self.ready = True
        self.calls: List[DetectorConfig] = []

    def detect(self, image: np.ndarray, config: DetectorConfig) -> Optional[FaceDetection]:
        self.calls.append(config)
        score = self.scores.pop(0) if self.scores else None
        if score is None:
            return None
        height, width = image.shape[:2]
        return face_detection(width, height, score)


class _StaticEmbedder:
    """Same embedding for every face."""

    def __init__(self, embedding: Optional[np.ndarray] = None, ready: bool = True) -> None:
        self.embedding = embedding if embedding is not None else np.linspace(-1.0, 1.0, 128, dtype=np.float32)
        self.ready = ready
        self.calls = 0

    def describe(self, image: np.ndarray, detection: FaceDetection) -> Tuple[np.ndarray, float]:
        self.calls += 1
        return self.embedding.copy(), detection.score
