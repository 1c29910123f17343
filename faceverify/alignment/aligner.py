"""Landmark-driven face alignment.

Faces are mapped onto the ArcFace five-point reference with a least-squares
similarity transform (rotation, uniform scale, translation). Rendering
failures never propagate: the warp hands back its input image instead.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from faceverify.detectors.base import DetectorConfig, DetectorVariant, FaceDetector
from faceverify.types import BBox, FaceDetection, LandmarkSet, Point, apply_affine

LOGGER = logging.getLogger("faceverify.alignment")

# ArcFace reference points for a 112x112 crop: eyes, nose tip, mouth corners
ARCFACE_REFERENCE_112 = np.array(
    [
        [38.2946, 51.6963],
        [73.5318, 51.5014],
        [56.0252, 71.7366],
        [41.5493, 92.3655],
        [70.7299, 92.2041],
    ],
    dtype=np.float64,
)

_EPS = 1e-9


@dataclass(frozen=True)
class SimilarityTransform:
    scale: float
    rotation: float
    matrix: np.ndarray

    def __post_init__(self) -> None:
        mat = np.array(self.matrix, dtype=np.float64).reshape(2, 3)
        mat.setflags(write=False)
        object.__setattr__(self, "matrix", mat)

    @property
    def determinant(self) -> float:
        (a, b, _), (d, e, _) = self.matrix
        return float(a * e - b * d)

    def apply(self, points: np.ndarray) -> np.ndarray:
        return apply_affine(self.matrix, points)

    def inverse(self) -> np.ndarray:
        """Analytic inverse of the 2x3 matrix."""
        (a, b, c), (d, e, f) = self.matrix
        det = a * e - b * d
        if abs(det) < _EPS:
            raise ValueError("Similarity transform is not invertible")
        return np.array(
            [
                [e / det, -b / det, (b * f - c * e) / det],
                [-d / det, a / det, (c * d - a * f) / det],
            ],
            dtype=np.float64,
        )


def reference_points(output_size: int = 224) -> np.ndarray:
    """Reference five points for a square crop of ``output_size`` pixels."""
    return ARCFACE_REFERENCE_112 * (float(output_size) / 112.0)


def get_5_key(landmarks: LandmarkSet) -> np.ndarray:
    """Eye centroids, nose tip and mouth corners as a (5, 2) array."""
    mouth = landmarks.mouth
    return np.vstack(
        [
            landmarks.left_eye.mean(axis=0),
            landmarks.right_eye.mean(axis=0),
            landmarks.nose[3],
            mouth[0],
            mouth[6],
        ]
    )


def similarity_transform(src: np.ndarray, dst: np.ndarray) -> SimilarityTransform:
    """Closed-form Procrustes fit mapping ``src`` points onto ``dst``."""
    src_pts = np.asarray(src, dtype=np.float64).reshape(-1, 2)
    dst_pts = np.asarray(dst, dtype=np.float64).reshape(-1, 2)
    if src_pts.shape != dst_pts.shape or src_pts.shape[0] < 2:
        raise ValueError("src and dst must hold the same number (>= 2) of points")

    src_center = src_pts.mean(axis=0)
    dst_center = dst_pts.mean(axis=0)
    s = src_pts - src_center
    d = dst_pts - dst_center

    src_var = float((s**2).sum())
    a = float((d[:, 0] * s[:, 0] + d[:, 1] * s[:, 1]).sum())
    b = float((d[:, 1] * s[:, 0] - d[:, 0] * s[:, 1]).sum())
    norm = math.hypot(a, b)
    if src_var < _EPS or norm < _EPS:
        raise ValueError("Degenerate landmark configuration")

    scale = norm / src_var
    cos_angle = a / norm
    sin_angle = b / norm
    tx = dst_center[0] - scale * (cos_angle * src_center[0] - sin_angle * src_center[1])
    ty = dst_center[1] - scale * (sin_angle * src_center[0] + cos_angle * src_center[1])
    matrix = np.array(
        [
            [scale * cos_angle, -scale * sin_angle, tx],
            [scale * sin_angle, scale * cos_angle, ty],
        ]
    )
    return SimilarityTransform(scale=scale, rotation=math.atan2(sin_angle, cos_angle), matrix=matrix)


def warp(image: np.ndarray, transform: SimilarityTransform, output_size: int = 224) -> np.ndarray:
    """Resample ``image`` into an ``output_size`` square through ``transform``."""
    try:
        inverse = transform.inverse()
    except ValueError as exc:
        LOGGER.warning("Skipping warp: %s", exc)
        return image
    size = max(1, int(output_size))
    try:
        return cv2.warpAffine(
            image,
            inverse,
            (size, size),
            flags=cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )
    except cv2.error as exc:
        LOGGER.warning("warpAffine failed (%s); returning unwarped image", exc)
        return image


def align_face(image: np.ndarray, landmarks: LandmarkSet, output_size: int = 224) -> np.ndarray:
    """Warp the face so its five key points land on the reference pose."""
    try:
        transform = similarity_transform(get_5_key(landmarks), reference_points(output_size))
    except ValueError as exc:
        LOGGER.debug("Alignment fell back to resize: %s", exc)
        return _resize_image(image, (output_size, output_size))
    return warp(image, transform, output_size)


def padded_crop(image: np.ndarray, bbox: BBox, padding: float) -> Tuple[np.ndarray, Point]:
    """Crop ``bbox`` grown by ``padding`` of its size on each side, clamped to the image."""
    img_h, img_w = image.shape[:2]
    x1, y1, x2, y2 = bbox
    pad_x = (x2 - x1) * padding
    pad_y = (y2 - y1) * padding
    x = max(0.0, x1 - pad_x)
    y = max(0.0, y1 - pad_y)
    width = min(img_w - x, (x2 - x1) + 2 * pad_x)
    height = min(img_h - y, (y2 - y1) + 2 * pad_y)

    left, top = int(math.floor(x)), int(math.floor(y))
    right = min(img_w, int(math.ceil(x + width)))
    bottom = min(img_h, int(math.ceil(y + height)))
    if right <= left or bottom <= top:
        raise ValueError(f"Empty crop for bbox {bbox} with padding {padding}")
    return image[top:bottom, left:right], (float(left), float(top))


def extract_aligned_face(
    image: np.ndarray,
    detection: FaceDetection,
    padding: float = 0.2,
    output_size: int = 224,
    detector: Optional[FaceDetector] = None,
    redetect_confidence: float = 0.3,
) -> np.ndarray:
    """Padded crop, re-detection on the crop, then five-point alignment."""
    crop, origin = padded_crop(image, detection.bbox, padding)
    crop_h, crop_w = crop.shape[:2]
    resized = _resize_image(crop, (output_size, output_size))
    if detector is None:
        landmarks = detection.landmarks.remapped(origin, (output_size / crop_w, output_size / crop_h))
        return align_face(resized, landmarks, output_size)

    fresh = detector.detect(
        resized,
        DetectorConfig(min_confidence=redetect_confidence, variant=DetectorVariant.PRECISE),
    )
    if fresh is None:
        LOGGER.debug("Re-detection on padded crop (padding=%.2f) failed; keeping unaligned crop", padding)
        return resized
    return align_face(resized, fresh.landmarks, output_size)


def calculate_eye_angle(landmarks: LandmarkSet) -> float:
    """Roll angle (radians) of the line joining the eye centroids."""
    left = landmarks.left_eye.mean(axis=0)
    right = landmarks.right_eye.mean(axis=0)
    return math.atan2(right[1] - left[1], right[0] - left[0])


def eye_rotation_center(landmarks: LandmarkSet) -> Point:
    """Midpoint between the outer eye corners (landmarks 36 and 45)."""
    center = (landmarks.left_eye[0] + landmarks.right_eye[3]) / 2.0
    return float(center[0]), float(center[1])


def eye_rotation_matrix(angle: float, center: Point) -> np.ndarray:
    return cv2.getRotationMatrix2D((float(center[0]), float(center[1])), math.degrees(angle), 1.0)


def rotate_to_align_eyes(image: np.ndarray, angle: float, center: Point) -> np.ndarray:
    """Rotate the whole image about ``center`` so the eyes become level."""
    height, width = image.shape[:2]
    try:
        return cv2.warpAffine(image, eye_rotation_matrix(angle, center), (width, height))
    except cv2.error as exc:
        LOGGER.warning("Eye rotation failed (%s); keeping original image", exc)
        return image


def rotate_detection(detection: FaceDetection, matrix: np.ndarray) -> FaceDetection:
    """Move a detection into a rotated image's coordinates (box keeps its size)."""
    x1, y1, x2, y2 = detection.bbox
    half_w, half_h = (x2 - x1) / 2.0, (y2 - y1) / 2.0
    cx, cy = apply_affine(matrix, np.array([[(x1 + x2) / 2.0, (y1 + y2) / 2.0]]))[0]
    return FaceDetection(
        bbox=(float(cx - half_w), float(cy - half_h), float(cx + half_w), float(cy + half_h)),
        score=detection.score,
        landmarks=detection.landmarks.transformed(matrix),
    )


def _resize_image(image: np.ndarray, target_size: Tuple[int, int]) -> np.ndarray:
    width, height = [max(1, int(v)) for v in target_size]
    src_h, src_w = image.shape[:2]
    if src_h == height and src_w == width:
        return image.copy()
    return cv2.resize(image, (width, height), interpolation=cv2.INTER_LINEAR)
