"""Tests for synthetic test images and noise models."""

import numpy as np
import pytest

from image_recovery.synthetic import (
    add_correlated_noise,
    add_gaussian_noise,
    make_block_image,
    make_circle_image,
    make_gradient_image,
    make_rgb_test_image,
)


class TestImages:
    def test_block(self):
        image = make_block_image((16, 20))

        assert image.shape == (16, 20)
        assert set(np.unique(image)) == {0.2, 0.8}
        assert image[8, 10] == 0.8
        assert image[0, 0] == 0.2

    def test_circle(self):
        image = make_circle_image((33, 33))

        assert image.shape == (33, 33)
        assert image[16, 16] > 0.99
        assert image[0, 0] < 0.01

    def test_gradient(self):
        image = make_gradient_image((8, 8))

        assert image[0, 0] == 0.0
        assert image[-1, -1] == pytest.approx(1.0)
        assert np.all(np.diff(image, axis=1) > 0)

    def test_rgb(self):
        image = make_rgb_test_image((24, 32))

        assert image.shape == (24, 32, 3)
        assert image.min() >= 0.0
        assert image.max() <= 1.0


class TestNoise:
    def test_gaussian_reproducible(self):
        clean = make_block_image((16, 16))

        a = add_gaussian_noise(clean, 0.1, rng=np.random.default_rng(3))
        b = add_gaussian_noise(clean, 0.1, rng=np.random.default_rng(3))

        np.testing.assert_array_equal(a, b)

    def test_gaussian_level_and_clip(self):
        clean = np.full((128, 128), 0.5)

        noisy = add_gaussian_noise(clean, 0.05, rng=np.random.default_rng(0), clip=False)
        assert np.std(noisy - clean) == pytest.approx(0.05, rel=0.05)

        clipped = add_gaussian_noise(clean, 1.0, rng=np.random.default_rng(0))
        assert clipped.min() >= 0.0
        assert clipped.max() <= 1.0

    def test_correlated_noise_statistics(self):
        clean = np.full((256, 256, 3), 0.5)

        noisy = add_correlated_noise(
            clean, sigma=0.05, correlation=0.8, rng=np.random.default_rng(0), clip=False
        )
        noise = (noisy - clean).reshape(-1, 3)
        corr = np.corrcoef(noise, rowvar=False)

        assert np.std(noise, axis=0) == pytest.approx([0.05] * 3, rel=0.05)
        assert corr[0, 1] == pytest.approx(0.8, abs=0.03)
        assert corr[1, 2] == pytest.approx(0.8, abs=0.03)

    def test_correlated_noise_validation(self):
        with pytest.raises(ValueError):
            add_correlated_noise(np.zeros((4, 4)))
        with pytest.raises(ValueError):
            add_correlated_noise(np.zeros((4, 4, 3)), correlation=1.5)
