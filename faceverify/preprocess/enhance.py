"""Exposure, contrast and resolution normalization applied before detection.

All filters take and return BGR ``uint8`` images and never modify their input.
A filter that hits an OpenCV error hands back its input unchanged.
"""

from __future__ import annotations

import functools
import logging
import math
from typing import Callable, Optional

import cv2
import numpy as np

from faceverify.config import PreprocessConfig
from faceverify.types import luminance

LOGGER = logging.getLogger("faceverify.preprocess")

ILLUMINATION_TARGET = 130.0


def _fail_closed(func: Callable[..., np.ndarray]) -> Callable[..., np.ndarray]:
    @functools.wraps(func)
    def wrapper(image: np.ndarray, *args, **kwargs) -> np.ndarray:
        try:
            return func(image, *args, **kwargs)
        except cv2.error as exc:
            LOGGER.warning("%s failed (%s); keeping input image", func.__name__, exc)
            return image.copy()

    return wrapper


def _to_uint8(data: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(data), 0, 255).astype(np.uint8)


def _scale_channels(image: np.ndarray, factor: np.ndarray) -> np.ndarray:
    data = image.astype(np.float64)
    if data.ndim == 3:
        factor = factor[..., None]
    return _to_uint8(data * factor)


@_fail_closed
def adaptive_histogram_equalization(image: np.ndarray, clip_limit: float = 2.0) -> np.ndarray:
    """Clipped global histogram equalization driven by luminance."""
    gray = np.clip(np.rint(luminance(image)), 0, 255).astype(np.int64)
    total = gray.size
    if total == 0:
        return image.copy()
    hist = np.bincount(gray.ravel(), minlength=256).astype(np.float64)

    clip_threshold = (clip_limit * total) / 256.0
    clipped = float(np.clip(hist - clip_threshold, 0.0, None).sum())
    hist = np.minimum(hist, clip_threshold) + clipped / 256.0

    cdf = np.cumsum(hist)
    positive = cdf[cdf > 0]
    cdf_min = float(positive[0]) if positive.size else 0.0
    cdf_max = float(cdf[-1])
    if cdf_max <= cdf_min:
        return image.copy()

    equalized = np.rint((cdf[gray] - cdf_min) / (cdf_max - cdf_min) * 255.0)
    ratio = np.where(gray > 0, equalized / np.maximum(gray, 1), 1.0)
    ratio = np.clip(ratio, 0.5, 2.0)
    return _scale_channels(image, ratio)


@_fail_closed
def normalize_illumination(image: np.ndarray, target: float = ILLUMINATION_TARGET) -> np.ndarray:
    """Scale brightness so the central (likely face) region approaches ``target``."""
    height, width = image.shape[:2]
    region = luminance(image)[
        int(height * 0.2) : int(height * 0.8),
        int(width * 0.25) : int(width * 0.75),
    ]
    if region.size == 0:
        return image.copy()
    avg = float(region.mean())
    factor = target / avg if avg > 0 else math.inf
    factor = min(1.8, max(0.6, factor))
    return _scale_channels(image, np.full(image.shape[:2], factor))


@_fail_closed
def enhance_contrast(image: np.ndarray, factor: float = 1.2) -> np.ndarray:
    """Stretch each channel around its own mean."""
    data = image.astype(np.float64)
    means = data.reshape(-1, data.shape[-1]).mean(axis=0) if data.ndim == 3 else data.mean()
    return _to_uint8(means + (data - means) * factor)


@_fail_closed
def bilateral_filter(image: np.ndarray, sigma_space: float = 3.0, sigma_color: float = 30.0) -> np.ndarray:
    """Edge-preserving noise reduction."""
    diameter = 2 * int(math.ceil(sigma_space * 2)) + 1
    return cv2.bilateralFilter(image, diameter, float(sigma_color), float(sigma_space))


@_fail_closed
def remove_glare(image: np.ndarray) -> np.ndarray:
    """Dim specular highlights typical of laminated document photos."""
    data = image.astype(np.float64)
    if data.ndim != 3:
        return image.copy()
    high = data.max(axis=2)
    low = data.min(axis=2)
    strong = (high > 230) & ((high - low) < 30)
    mild = ~strong & (high > 245)

    factor = np.ones_like(high)
    factor[strong] = 180.0 / high[strong]
    factor[mild] = 230.0 / high[mild]
    return _scale_channels(image, factor)


@_fail_closed
def sharpen(image: np.ndarray, amount: float = 0.5) -> np.ndarray:
    """3x3 sharpening kernel; border pixels are left untouched."""
    kernel = np.array(
        [[0.0, -1.0, 0.0], [-1.0, 5.0 + amount, -1.0], [0.0, -1.0, 0.0]],
        dtype=np.float32,
    )
    if image.shape[0] < 3 or image.shape[1] < 3:
        return image.copy()
    filtered = cv2.filter2D(image.astype(np.float32), -1, kernel)
    result = image.copy()
    result[1:-1, 1:-1] = _to_uint8(filtered[1:-1, 1:-1])
    return result


@_fail_closed
def upscale(image: np.ndarray, scale: float = 2.0, max_dim: int = 2000) -> np.ndarray:
    """Resize by ``scale`` keeping aspect ratio, longest side capped at ``max_dim``."""
    height, width = image.shape[:2]
    longest = max(height, width)
    if longest == 0:
        return image.copy()
    factor = scale
    if longest * factor > max_dim:
        factor = max_dim / float(longest)
    new_size = (max(1, int(round(width * factor))), max(1, int(round(height * factor))))
    if new_size == (width, height):
        return image.copy()
    interpolation = cv2.INTER_CUBIC if factor > 1.0 else cv2.INTER_AREA
    return cv2.resize(image, new_size, interpolation=interpolation)


def preprocess_selfie(image: np.ndarray, config: Optional[PreprocessConfig] = None) -> np.ndarray:
    cfg = config or PreprocessConfig()
    processed = adaptive_histogram_equalization(image, cfg.selfie_clip_limit)
    processed = normalize_illumination(processed)
    return enhance_contrast(processed, cfg.selfie_contrast)


def preprocess_document(image: np.ndarray, config: Optional[PreprocessConfig] = None) -> np.ndarray:
    """Heavier pipeline for printed/laminated document photos."""
    cfg = config or PreprocessConfig()
    processed = remove_glare(image)
    processed = bilateral_filter(processed, cfg.bilateral_sigma_space, cfg.bilateral_sigma_color)
    processed = adaptive_histogram_equalization(processed, cfg.document_clip_limit)
    processed = normalize_illumination(processed)
    processed = enhance_contrast(processed, cfg.document_contrast)
    return sharpen(processed, cfg.sharpen_amount)
