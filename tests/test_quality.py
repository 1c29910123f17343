import numpy as np
import pytest

from faceverify.config import QualityConfig
from faceverify.errors import QualityTooLow
from faceverify.quality.analyzer import analyze_image_quality, enforce_quality_floors, neutral_quality
from faceverify.types import ImageQuality

from fakes import noise_image


def _quality(overall: float) -> ImageQuality:
    return ImageQuality(brightness=0.5, contrast=0.5, sharpness=0.5, overall_quality=overall)


def test_flat_dark_image_scores_low_with_issues():
    image = np.full((64, 64, 3), 10, dtype=np.uint8)
    quality = analyze_image_quality(image)
    assert quality.contrast == 0.0
    assert quality.sharpness == 0.0
    assert "image too dark" in quality.issues
    assert "image is blurry" in quality.issues
    assert quality.overall_quality < 10


def test_noise_image_scores_high():
    quality = analyze_image_quality(noise_image())
    assert quality.sharpness == 1.0
    assert quality.overall_quality > 80
    assert quality.issues == []


def test_empty_image_gets_neutral_quality():
    quality = analyze_image_quality(np.zeros((0, 0, 3), dtype=np.uint8))
    assert quality == neutral_quality()
    assert quality.overall_quality == 50.0


def test_quality_floor_names_failing_image():
    config = QualityConfig()
    with pytest.raises(QualityTooLow) as excinfo:
        enforce_quality_floors(_quality(80), _quality(9.9), config)
    assert excinfo.value.image == "document"

    with pytest.raises(QualityTooLow) as excinfo:
        enforce_quality_floors(_quality(5), _quality(80), config)
    assert excinfo.value.image == "selfie"


def test_quality_floor_boundaries_pass():
    enforce_quality_floors(_quality(15), _quality(10), QualityConfig())


def test_quality_error_carries_issues_and_suggestions():
    dark = analyze_image_quality(np.full((64, 64, 3), 10, dtype=np.uint8))
    with pytest.raises(QualityTooLow) as excinfo:
        enforce_quality_floors(dark, _quality(80), QualityConfig())
    assert excinfo.value.issues == dark.issues
    assert excinfo.value.suggestions == dark.suggestions
    assert "image too dark" in str(excinfo.value)
