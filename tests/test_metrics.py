import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from faceverify.metrics.battery import (
    NEUTRAL_SCORE,
    MetricBattery,
    chi_square,
    facial_ratios,
    gradient_blocks,
    histogram_similarity,
    landmark_similarity,
    lbp_histogram,
    structural_similarity,
    texture_similarity,
)
from faceverify.types import LandmarkSet

from fakes import face_detection, face_landmarks, noise_image, unit_face_points


def test_identical_landmarks_score_one():
    landmarks = face_landmarks(200, 200)
    assert landmark_similarity(landmarks, landmarks) == pytest.approx(1.0)
    assert structural_similarity(landmarks, landmarks) == pytest.approx(1.0)


def test_landmark_similarity_ignores_position_and_scale():
    small = face_landmarks(100, 100)
    shifted = LandmarkSet(face_landmarks(300, 300).points + 25.0)
    assert landmark_similarity(small, shifted) == pytest.approx(1.0)


def test_distorted_landmarks_score_lower_and_symmetric():
    base = face_landmarks(200, 200)
    points = base.points.copy()
    points[48:68, 0] += np.linspace(-8, 8, 20)
    points[30, 1] += 6.0
    distorted = LandmarkSet(points)
    forward = landmark_similarity(base, distorted)
    assert forward < 1.0
    assert forward == pytest.approx(landmark_similarity(distorted, base))
    assert structural_similarity(base, distorted) == pytest.approx(structural_similarity(distorted, base))


def test_structural_floor_is_half():
    base = face_landmarks(200, 200)
    stretched = LandmarkSet(base.points * np.array([1.0, 4.0]))
    assert structural_similarity(base, stretched) == pytest.approx(0.5)


def test_degenerate_landmarks_fail_closed():
    flat = LandmarkSet(np.zeros((68, 2)))
    base = face_landmarks(200, 200)
    assert landmark_similarity(flat, base) == NEUTRAL_SCORE
    assert structural_similarity(flat, base) == NEUTRAL_SCORE


def test_facial_ratios_has_eleven_measures():
    ratios = facial_ratios(face_landmarks(200, 200))
    assert len(ratios) == 11
    assert ratios["philtrum"] == pytest.approx(ratios["nose_mouth"])


def test_lbp_histogram_normalized():
    gray = noise_image(64, 64)[..., 0].astype(np.float64)
    hist = lbp_histogram(gray)
    assert hist.shape == (256,)
    assert hist.sum() == pytest.approx(1.0)
    # a flat patch sets every neighbour bit
    flat = lbp_histogram(np.full((64, 64), 7.0))
    assert flat[255] == pytest.approx(1.0)


def test_gradient_blocks_shape_and_flat_zero():
    assert gradient_blocks(np.full((64, 64), 100.0)).shape == (64,)
    assert np.all(gradient_blocks(np.full((64, 64), 100.0)) == 0)


def test_chi_square_skips_empty_bins():
    a = np.array([0.5, 0.5, 0.0])
    assert chi_square(a, a) == 0.0
    assert chi_square(a, np.array([1.0, 0.0, 0.0])) == pytest.approx(0.25 / 1.5 + 0.25 / 0.5)


def test_same_crop_texture_and_histogram_are_maximal():
    image = noise_image(200, 200)
    landmarks = face_landmarks(200, 200)
    assert texture_similarity(image, landmarks, image, landmarks) == pytest.approx(1.0)
    assert histogram_similarity(image, landmarks, image, landmarks) == pytest.approx(1.0)


def test_image_metrics_symmetric():
    a, b = noise_image(200, 200, seed=1), noise_image(180, 220, seed=2)
    la, lb = face_landmarks(200, 200), face_landmarks(220, 180)
    assert texture_similarity(a, la, b, lb) == pytest.approx(texture_similarity(b, lb, a, la))
    assert histogram_similarity(a, la, b, lb) == pytest.approx(histogram_similarity(b, lb, a, la))
    assert 0.5 <= texture_similarity(a, la, b, lb) <= 1.0


def test_crop_outside_image_fails_closed():
    image = noise_image(50, 50)
    far_away = LandmarkSet(unit_face_points() * 100 + 500)
    assert texture_similarity(image, far_away, image, far_away) == NEUTRAL_SCORE
    assert histogram_similarity(image, far_away, image, far_away) == NEUTRAL_SCORE


def test_battery_compute():
    image = noise_image(200, 200)
    detection = face_detection(200, 200)
    scores = MetricBattery().compute(image, image, detection, detection)
    assert scores.landmark == pytest.approx(1.0)
    assert scores.structural == pytest.approx(1.0)
    assert scores.texture == pytest.approx(1.0)
    assert math.isclose(scores.histogram, 1.0, rel_tol=1e-9)


class _RecordingPool(ThreadPoolExecutor):
    def __init__(self) -> None:
        super().__init__(max_workers=2)
        self.submitted = []

    def submit(self, fn, *args, **kwargs):
        self.submitted.append(fn.__name__)
        return super().submit(fn, *args, **kwargs)


def test_battery_runs_image_metrics_on_pool():
    a, b = noise_image(200, 200, seed=1), noise_image(180, 220, seed=2)
    da, db = face_detection(200, 200), face_detection(220, 180)
    sequential = MetricBattery().compute(a, b, da, db)
    with _RecordingPool() as pool:
        pooled = MetricBattery().compute(a, b, da, db, pool=pool)
    assert sorted(pool.submitted) == ["histogram_similarity", "texture_similarity"]
    assert pooled == sequential
