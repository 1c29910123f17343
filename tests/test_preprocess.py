import numpy as np

from faceverify.config import PreprocessConfig
from faceverify.preprocess.enhance import (
    adaptive_histogram_equalization,
    enhance_contrast,
    normalize_illumination,
    preprocess_document,
    preprocess_selfie,
    remove_glare,
    sharpen,
    upscale,
)
from faceverify.types import luminance

from fakes import noise_image


def test_illumination_pulls_dark_image_up_within_clamp():
    image = np.full((50, 50, 3), 50, dtype=np.uint8)
    out = normalize_illumination(image)
    # 130 / 50 = 2.6 is clamped to 1.8
    assert int(out[25, 25, 0]) == 90


def test_illumination_leaves_target_brightness_alone():
    image = np.full((40, 40, 3), 130, dtype=np.uint8)
    np.testing.assert_array_equal(normalize_illumination(image), image)


def test_contrast_stretches_around_mean():
    image = np.zeros((2, 2, 3), dtype=np.uint8)
    image[0, 0] = 100
    image[1, 1] = 200
    out = enhance_contrast(image, factor=1.5)
    assert out[1, 1, 0] > 200
    assert out[0, 1, 0] == 0


def test_glare_dims_washed_out_pixels():
    image = np.full((4, 4, 3), 240, dtype=np.uint8)
    image[0, 0] = (120, 90, 60)
    out = remove_glare(image)
    assert int(out[1, 1, 0]) == 180
    np.testing.assert_array_equal(out[0, 0], image[0, 0])


def test_sharpen_keeps_border_pixels():
    image = noise_image(20, 20)
    out = sharpen(image, 0.3)
    np.testing.assert_array_equal(out[0], image[0])
    np.testing.assert_array_equal(out[:, -1], image[:, -1])
    assert out.shape == image.shape


def test_upscale_preserves_aspect_and_caps_longest_side():
    image = np.zeros((300, 600, 3), dtype=np.uint8)
    out = upscale(image, 3.5, 2000)
    assert out.shape[:2] == (1000, 2000)

    small = np.zeros((100, 50, 3), dtype=np.uint8)
    assert upscale(small, 3.5, 2000).shape[:2] == (350, 175)


def test_equalization_spreads_low_contrast_image():
    image = np.zeros((32, 32, 3), dtype=np.uint8)
    image[:, :16] = 100
    image[:, 16:] = 110
    out = adaptive_histogram_equalization(image, 2.0)
    spread_in = luminance(image).max() - luminance(image).min()
    spread_out = luminance(out).max() - luminance(out).min()
    assert spread_out > spread_in


def test_pipelines_do_not_modify_input():
    image = noise_image(48, 48, seed=3)
    original = image.copy()
    config = PreprocessConfig()
    selfie = preprocess_selfie(image, config)
    document = preprocess_document(image, config)
    np.testing.assert_array_equal(image, original)
    assert selfie.shape == image.shape and selfie.dtype == np.uint8
    assert document.shape == image.shape and document.dtype == np.uint8
