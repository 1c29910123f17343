"""Embedding-free similarity measures computed from landmarks and face crops.

Every metric returns a value in [0, 1] and falls back to ``NEUTRAL_SCORE``
when its crop or arithmetic fails, so a comparison never aborts here.
"""

from __future__ import annotations

import functools
import logging
import math
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import cv2
import numpy as np

from faceverify.alignment.aligner import padded_crop
from faceverify.types import FaceDetection, LandmarkSet, luminance

LOGGER = logging.getLogger("faceverify.metrics")

NEUTRAL_SCORE = 0.5

# Nose bridge, nose bottom and both eyes
CRITICAL_LANDMARKS = frozenset(range(27, 48))
CRITICAL_WEIGHT = 2.0

TEXTURE_SIZE = 64
TEXTURE_PADDING = 0.05
HISTOGRAM_SIZE = 100
HISTOGRAM_PADDING = 0.1
GRADIENT_BLOCK = 8

_METRIC_FAILURES = (ValueError, IndexError, ZeroDivisionError, FloatingPointError, cv2.error)


def _fail_closed(func: Callable[..., float]) -> Callable[..., float]:
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> float:
        try:
            with np.errstate(divide="raise", invalid="raise"):
                value = float(func(*args, **kwargs))
        except _METRIC_FAILURES as exc:
            LOGGER.warning("%s failed (%s); using neutral score", func.__name__, exc)
            return NEUTRAL_SCORE
        if not math.isfinite(value):
            LOGGER.warning("%s produced %s; using neutral score", func.__name__, value)
            return NEUTRAL_SCORE
        return value

    return wrapper


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _normalized_points(landmarks: LandmarkSet) -> np.ndarray:
    x1, y1, x2, y2 = landmarks.bounds()
    width, height = x2 - x1, y2 - y1
    if width <= 0 or height <= 0:
        raise ValueError("Landmark set has zero extent")
    center = np.array([(x1 + x2) / 2.0, (y1 + y2) / 2.0])
    return (landmarks.points - center) / np.array([width, height])


@_fail_closed
def landmark_similarity(first: LandmarkSet, second: LandmarkSet) -> float:
    """Weighted mean displacement between box-normalized landmark sets."""
    if len(first) != len(second):
        return 0.0
    distances = np.linalg.norm(_normalized_points(first) - _normalized_points(second), axis=1)
    weights = np.array([CRITICAL_WEIGHT if i in CRITICAL_LANDMARKS else 1.0 for i in range(len(first))])
    avg_distance = float((distances * weights).sum() / weights.sum())
    return _clamp01(1.0 - avg_distance * 5.0)


def facial_ratios(landmarks: LandmarkSet) -> Dict[str, float]:
    """Facial proportions relative to the interocular distance."""
    jaw = landmarks.jaw
    nose = landmarks.nose
    mouth = landmarks.mouth
    left_eye = landmarks.left_eye
    right_eye = landmarks.right_eye
    left_center = left_eye.mean(axis=0)
    right_center = right_eye.mean(axis=0)

    interocular = float(np.linalg.norm(right_center - left_center))
    if interocular <= 0:
        raise ValueError("Eye centers coincide")

    brow_y = (landmarks.left_eyebrow[2][1] + landmarks.right_eyebrow[2][1]) / 2.0
    eye_y = (left_center[1] + right_center[1]) / 2.0
    measures = {
        "face_width": abs(jaw[-1][0] - jaw[0][0]),
        "face_height": abs(jaw[8][1] - brow_y),
        "nose_width": abs(nose[-1][0] - nose[0][0]),
        "nose_length": abs(nose[6][1] - nose[0][1]),
        "mouth_width": abs(mouth[6][0] - mouth[0][0]),
        "eye_nose": abs(nose[3][1] - eye_y),
        "nose_mouth": abs(mouth[3][1] - nose[6][1]),
        "left_eye": abs(left_eye[3][0] - left_eye[0][0]),
        "right_eye": abs(right_eye[3][0] - right_eye[0][0]),
        "philtrum": abs(mouth[3][1] - nose[6][1]),
        "chin": abs(jaw[8][1] - mouth[9][1]),
    }
    return {name: float(value) / interocular for name, value in measures.items()}


@_fail_closed
def structural_similarity(first: LandmarkSet, second: LandmarkSet) -> float:
    ratios_a = facial_ratios(first)
    ratios_b = facial_ratios(second)
    avg_diff = sum(abs(ratios_a[key] - ratios_b[key]) for key in ratios_a) / len(ratios_a)
    raw = _clamp01(1.0 - avg_diff * 1.5)
    # Selfie-vs-document pairs always differ somewhat; valid faces start at 0.5
    return 0.5 + raw * 0.5


def landmark_crop(image: np.ndarray, landmarks: LandmarkSet, padding: float, size: int) -> np.ndarray:
    """Square grayscale patch around the landmark bounds, as float luminance."""
    crop, _ = padded_crop(image, landmarks.bounds(), padding)
    resized = cv2.resize(crop, (size, size), interpolation=cv2.INTER_LINEAR)
    return luminance(resized)


def lbp_histogram(gray: np.ndarray) -> np.ndarray:
    """256-bin histogram of 8-neighbour local binary patterns, normalized."""
    center = gray[1:-1, 1:-1]
    h, w = gray.shape
    offsets = ((-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1))
    codes = np.zeros(center.shape, dtype=np.int64)
    for bit, (dy, dx) in enumerate(offsets):
        neighbour = gray[1 + dy : h - 1 + dy, 1 + dx : w - 1 + dx]
        codes |= (neighbour >= center).astype(np.int64) << bit
    hist = np.bincount(codes.ravel(), minlength=256).astype(np.float64)
    return hist / float(center.size)


def gradient_blocks(gray: np.ndarray, block: int = GRADIENT_BLOCK) -> np.ndarray:
    """Summed gradient magnitude per block, scaled by ``block² · 255``."""
    h, w = gray.shape
    magnitude = np.zeros_like(gray, dtype=np.float64)
    gx = gray[1:-1, 2:] - gray[1:-1, :-2]
    gy = gray[2:, 1:-1] - gray[:-2, 1:-1]
    magnitude[1:-1, 1:-1] = np.sqrt(gx**2 + gy**2)
    rows, cols = h // block, w // block
    sums = magnitude[: rows * block, : cols * block].reshape(rows, block, cols, block).sum(axis=(1, 3))
    return sums.ravel() / (block * block * 255.0)


def texture_features(image: np.ndarray, landmarks: LandmarkSet) -> np.ndarray:
    gray = landmark_crop(image, landmarks, TEXTURE_PADDING, TEXTURE_SIZE)
    return np.concatenate([lbp_histogram(gray), gradient_blocks(gray)])


def chi_square(first: np.ndarray, second: np.ndarray) -> float:
    total = first + second
    mask = total > 0
    return float((((first - second) ** 2)[mask] / total[mask]).sum())


@_fail_closed
def texture_similarity(
    first_image: np.ndarray,
    first: LandmarkSet,
    second_image: np.ndarray,
    second: LandmarkSet,
) -> float:
    features_a = texture_features(first_image, first)
    features_b = texture_features(second_image, second)
    if features_a.shape != features_b.shape:
        return NEUTRAL_SCORE
    raw = math.exp(-chi_square(features_a, features_b) / 2.0)
    return 0.5 + raw * 0.5


def gray_histogram(image: np.ndarray, landmarks: LandmarkSet) -> np.ndarray:
    gray = landmark_crop(image, landmarks, HISTOGRAM_PADDING, HISTOGRAM_SIZE)
    bins = np.clip(np.rint(gray), 0, 255).astype(np.int64)
    return np.bincount(bins.ravel(), minlength=256).astype(np.float64) / float(bins.size)


@_fail_closed
def histogram_similarity(
    first_image: np.ndarray,
    first: LandmarkSet,
    second_image: np.ndarray,
    second: LandmarkSet,
) -> float:
    """Bhattacharyya coefficient of the two grayscale face histograms."""
    coefficient = float(np.sqrt(gray_histogram(first_image, first) * gray_histogram(second_image, second)).sum())
    return min(1.0, coefficient)


@dataclass(frozen=True)
class MetricScores:
    landmark: float = NEUTRAL_SCORE
    structural: float = NEUTRAL_SCORE
    texture: float = NEUTRAL_SCORE
    histogram: float = NEUTRAL_SCORE

    def to_dict(self) -> Dict[str, float]:
        return {
            "landmark": self.landmark,
            "structural": self.structural,
            "texture": self.texture,
            "histogram": self.histogram,
        }


class MetricBattery:
    """Runs the four metrics over the two primary detections.

    With an executor the two image metrics (texture, histogram) run on it while
    the landmark metrics run on the calling thread.
    """

    def compute(
        self,
        selfie_image: np.ndarray,
        document_image: np.ndarray,
        selfie_detection: FaceDetection,
        document_detection: FaceDetection,
        pool: Optional[Executor] = None,
    ) -> MetricScores:
        selfie_lm = selfie_detection.landmarks
        document_lm = document_detection.landmarks
        image_args = (selfie_image, selfie_lm, document_image, document_lm)
        if pool is None:
            texture = texture_similarity(*image_args)
            histogram = histogram_similarity(*image_args)
        else:
            texture_future = pool.submit(texture_similarity, *image_args)
            histogram_future = pool.submit(histogram_similarity, *image_args)
            texture, histogram = texture_future.result(), histogram_future.result()
        scores = MetricScores(
            landmark=landmark_similarity(selfie_lm, document_lm),
            structural=structural_similarity(selfie_lm, document_lm),
            texture=texture,
            histogram=histogram,
        )
        LOGGER.debug("Metric scores: %s", scores.to_dict())
        return scores
