import math

import cv2
import numpy as np
import pytest

from faceverify.alignment.aligner import (
    ARCFACE_REFERENCE_112,
    SimilarityTransform,
    align_face,
    calculate_eye_angle,
    extract_aligned_face,
    eye_rotation_center,
    eye_rotation_matrix,
    get_5_key,
    padded_crop,
    reference_points,
    rotate_detection,
    similarity_transform,
    warp,
)

from fakes import _FakeDetector, face_detection, face_landmarks, noise_image


def _rotate_scale(points: np.ndarray, angle: float, scale: float, shift=(0.0, 0.0)) -> np.ndarray:
    rot = np.array([[math.cos(angle), -math.sin(angle)], [math.sin(angle), math.cos(angle)]])
    return scale * points @ rot.T + np.asarray(shift)


def test_reference_points_scale_with_output_size():
    np.testing.assert_allclose(reference_points(224), ARCFACE_REFERENCE_112 * 2.0)
    np.testing.assert_allclose(reference_points(112), ARCFACE_REFERENCE_112)


def test_get_5_key_order():
    landmarks = face_landmarks(100, 100)
    key = get_5_key(landmarks)
    assert key.shape == (5, 2)
    assert key[0][0] < key[1][0]  # left eye before right eye
    np.testing.assert_allclose(key[2], landmarks.points[30])
    np.testing.assert_allclose(key[3], landmarks.points[48])
    np.testing.assert_allclose(key[4], landmarks.points[54])


@pytest.mark.parametrize("angle", [0.0, math.radians(15), math.radians(-10)])
@pytest.mark.parametrize("scale", [0.9, 1.0, 1.1])
def test_similarity_transform_recovers_rotation_and_scale(angle, scale):
    src = get_5_key(face_landmarks(200, 200))
    dst = _rotate_scale(src, angle, scale, shift=(12.0, -7.0))
    transform = similarity_transform(src, dst)
    assert abs(transform.determinant) > 0
    assert transform.scale == pytest.approx(scale)
    assert transform.rotation == pytest.approx(angle, abs=1e-9)
    np.testing.assert_allclose(transform.apply(src), dst, atol=1e-9)


def test_similarity_transform_maps_face_onto_reference():
    src = get_5_key(face_landmarks(300, 300))
    transform = similarity_transform(src, reference_points(224))
    assert abs(transform.determinant) > 0
    # Five points cannot match exactly, but the fit lands close to the template
    residual = np.linalg.norm(transform.apply(src) - reference_points(224), axis=1)
    assert residual.max() < 30.0


def test_similarity_transform_rejects_degenerate_points():
    same = np.ones((5, 2))
    with pytest.raises(ValueError):
        similarity_transform(same, reference_points(112))


def test_inverse_undoes_transform():
    src = get_5_key(face_landmarks(200, 200))
    transform = similarity_transform(src, _rotate_scale(src, 0.3, 1.2))
    inverse = SimilarityTransform(1.0 / transform.scale, -transform.rotation, transform.inverse())
    np.testing.assert_allclose(inverse.apply(transform.apply(src)), src, atol=1e-9)


def test_warp_with_singular_transform_returns_input():
    image = noise_image(32, 32)
    singular = SimilarityTransform(0.0, 0.0, np.zeros((2, 3)))
    assert warp(image, singular, 112) is image


def test_align_face_output_shape():
    image = noise_image(200, 200)
    aligned = align_face(image, face_landmarks(200, 200), 224)
    assert aligned.shape == (224, 224, 3)


def test_padded_crop_is_clamped_to_image():
    image = noise_image(100, 100)
    crop, origin = padded_crop(image, (-10.0, 20.0, 60.0, 130.0), 0.2)
    assert origin[0] == 0.0
    assert crop.shape[0] <= 100 and crop.shape[1] <= 100
    with pytest.raises(ValueError):
        padded_crop(image, (150.0, 150.0, 160.0, 160.0), 0.1)


def test_extract_aligned_face_redetects_on_crop():
    image = noise_image(240, 240)
    detector = _FakeDetector()
    out = extract_aligned_face(image, face_detection(240, 240), 0.15, 224, detector, 0.3)
    assert out.shape == (224, 224, 3)
    assert len(detector.calls) == 1
    assert detector.calls[0].min_confidence == 0.3


def test_extract_aligned_face_keeps_plain_crop_when_redetection_fails():
    image = noise_image(240, 240)
    detection = face_detection(240, 240, angle=0.3)
    out = extract_aligned_face(image, detection, 0.3, 112, _FakeDetector(score=None))
    crop, _ = padded_crop(image, detection.bbox, 0.3)
    expected = cv2.resize(crop, (112, 112), interpolation=cv2.INTER_LINEAR)
    assert out.shape == (112, 112, 3)
    np.testing.assert_array_equal(out, expected)


def test_eye_angle_and_rotation_levels_the_eyes():
    angle = math.radians(12)
    landmarks = face_landmarks(200, 200, angle=angle)
    measured = calculate_eye_angle(landmarks)
    assert measured == pytest.approx(angle, abs=1e-9)

    center = eye_rotation_center(landmarks)
    matrix = eye_rotation_matrix(measured, center)
    detection = face_detection(200, 200, angle=angle)
    rotated = rotate_detection(detection, matrix)
    assert calculate_eye_angle(rotated.landmarks) == pytest.approx(0.0, abs=1e-9)
    assert rotated.width == pytest.approx(detection.width)
