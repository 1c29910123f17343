"""Raw image quality heuristics and the early quality gate."""

from __future__ import annotations

import logging

import numpy as np

from faceverify.config import QualityConfig
from faceverify.errors import QualityTooLow
from faceverify.types import ImageQuality, luminance

LOGGER = logging.getLogger("faceverify.quality")

DARK_LEVEL = 50
BRIGHT_LEVEL = 200


def neutral_quality() -> ImageQuality:
    return ImageQuality(brightness=0.5, contrast=0.5, sharpness=0.5, overall_quality=50.0)


def analyze_image_quality(image: np.ndarray) -> ImageQuality:
    """Score brightness, contrast and sharpness of a BGR image into [0, 100]."""
    if image is None or image.size == 0 or image.ndim < 2:
        return neutral_quality()

    luma = luminance(image)
    pixel_count = float(luma.size)
    avg_brightness = float(luma.mean()) / 255.0
    dark_ratio = float(np.count_nonzero(luma < DARK_LEVEL)) / pixel_count
    bright_ratio = float(np.count_nonzero(luma > BRIGHT_LEVEL)) / pixel_count

    issues = []
    suggestions = []
    if avg_brightness < 0.3:
        issues.append("image too dark")
        suggestions.append("increase the ambient lighting")
    elif avg_brightness > 0.7:
        issues.append("image too bright")
        suggestions.append("reduce direct lighting")
    if dark_ratio > 0.3 or bright_ratio > 0.3:
        issues.append("uneven lighting")
        suggestions.append("use even, diffuse lighting")

    contrast = min(float(luma.std()) / 80.0, 1.0)
    sharpness = _laplacian_sharpness(image, pixel_count)
    if sharpness < 0.3:
        issues.append("image is blurry")
        suggestions.append("hold the device steady")

    brightness_score = 1.0 - abs(avg_brightness - 0.5) * 2.0
    overall = brightness_score * 30.0 + contrast * 35.0 + sharpness * 35.0
    return ImageQuality(
        brightness=avg_brightness,
        contrast=contrast,
        sharpness=sharpness,
        overall_quality=float(np.clip(overall, 0.0, 100.0)),
        issues=issues,
        suggestions=suggestions,
    )


def _laplacian_sharpness(image: np.ndarray, pixel_count: float) -> float:
    # Red channel only (index 2 in BGR)
    channel = image[..., 2] if image.ndim == 3 else image
    data = channel.astype(np.float64)
    if data.shape[0] < 3 or data.shape[1] < 3:
        return 0.0
    center = data[1:-1, 1:-1]
    laplacian = np.abs(
        4.0 * center - data[1:-1, :-2] - data[1:-1, 2:] - data[:-2, 1:-1] - data[2:, 1:-1]
    )
    return min(float(laplacian.sum()) / (pixel_count * 50.0), 1.0)


def enforce_quality_floors(selfie: ImageQuality, document: ImageQuality, config: QualityConfig) -> None:
    """Raise QualityTooLow for the first image under its floor."""
    if selfie.overall_quality < config.selfie_floor:
        LOGGER.info("Selfie quality %.1f below floor %.1f", selfie.overall_quality, config.selfie_floor)
        raise QualityTooLow(
            "selfie", selfie.overall_quality, config.selfie_floor, selfie.issues, selfie.suggestions
        )
    if document.overall_quality < config.document_floor:
        LOGGER.info("Document quality %.1f below floor %.1f", document.overall_quality, config.document_floor)
        raise QualityTooLow(
            "document", document.overall_quality, config.document_floor, document.issues, document.suggestions
        )
