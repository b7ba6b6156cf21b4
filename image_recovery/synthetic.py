"""
Synthetic test images and noise models for exercising the denoisers.

All images are float64 NumPy arrays with values in [0, 1]; grayscale images
have shape (H, W) and colour images (H, W, 3), matching the pixel-buffer
layout accepted by ``ImageArray.from_pixels``.
"""

from typing import Optional, Tuple

import numpy as np

__all__ = [
    "make_block_image",
    "make_circle_image",
    "make_gradient_image",
    "make_rgb_test_image",
    "add_gaussian_noise",
    "add_correlated_noise",
]


def make_block_image(shape=(64, 64), low=0.2, high=0.8):
    """
    Central square with sharp edges on a flat background.
    Piecewise constant, so TV denoising should restore it almost exactly.
    """
    image = np.full(shape, low, dtype=np.float64)
    h, w = shape
    image[h // 4 : 3 * h // 4, w // 4 : 3 * w // 4] = high
    return image


def make_circle_image(shape=(64, 64), center=None, radius=None):
    """
    Soft-edged disk (sigmoid of the distance to the centre).
    """
    h, w = shape
    if center is None:
        center = (h // 2, w // 2)
    if radius is None:
        radius = min(h, w) / 4

    yy, xx = np.meshgrid(np.arange(h), np.arange(w), indexing="ij")
    dist = np.sqrt((xx - center[1]) ** 2 + (yy - center[0]) ** 2)

    return 1.0 / (1.0 + np.exp(dist - radius))


def make_gradient_image(shape=(64, 64)):
    """
    Smooth diagonal ramp from 0 to 1.
    """
    h, w = shape
    yy, xx = np.meshgrid(
        np.linspace(0.0, 1.0, h), np.linspace(0.0, 1.0, w), indexing="ij"
    )
    return 0.5 * (xx + yy)


def make_rgb_test_image(shape: Tuple[int, int] = (64, 64)) -> np.ndarray:
    """Colour image whose channels share edges but differ in contrast.

    Red holds the block, green the disk and blue the ramp blended with the
    block, so every channel has structure and some edges are common to all.

    Returns:
        Array of shape (H, W, 3) with values in [0, 1].
    """
    block = make_block_image(shape)
    circle = make_circle_image(shape)
    ramp = make_gradient_image(shape)
    return np.stack([block, 0.2 + 0.6 * circle, 0.5 * (ramp + block)], axis=-1)


def add_gaussian_noise(
    image: np.ndarray,
    sigma: float = 0.05,
    rng: Optional[np.random.Generator] = None,
    clip: bool = True,
) -> np.ndarray:
    """Add independent white Gaussian noise.

    Args:
        image: Noise-free image with values in [0, 1].
        sigma: Standard deviation of the noise.
        rng: NumPy random generator. If None, uses default.
        clip: Clamp the result to [0, 1]. Default True.

    Returns:
        Noisy image of the same shape.

    Example:
        >>> rng = np.random.default_rng(0)
        >>> noisy = add_gaussian_noise(make_block_image(), sigma=0.1, rng=rng)
    """
    if rng is None:
        rng = np.random.default_rng()

    noisy = image + sigma * rng.standard_normal(image.shape)
    if clip:
        noisy = np.clip(noisy, 0.0, 1.0)
    return noisy


def add_correlated_noise(
    image: np.ndarray,
    sigma: float = 0.05,
    correlation: float = 0.8,
    rng: Optional[np.random.Generator] = None,
    clip: bool = True,
) -> np.ndarray:
    """Add Gaussian noise correlated across the channels of a colour image.

    Each pixel receives a shared component plus an independent component per
    channel, so the per-channel noise has standard deviation ``sigma`` and
    pairwise correlation ``correlation``.

    Args:
        image: Noise-free image of shape (H, W, C) with values in [0, 1].
        sigma: Per-channel noise standard deviation.
        correlation: Inter-channel correlation coefficient in [0, 1].
        rng: NumPy random generator. If None, uses default.
        clip: Clamp the result to [0, 1]. Default True.

    Returns:
        Noisy image of the same shape.
    """
    if image.ndim != 3:
        raise ValueError(f"expected an (H, W, C) image, got shape {image.shape}")
    if not 0.0 <= correlation <= 1.0:
        raise ValueError(f"correlation must be in [0, 1], got {correlation}")
    if rng is None:
        rng = np.random.default_rng()

    h, w, c = image.shape
    shared = rng.standard_normal((h, w, 1))
    own = rng.standard_normal((h, w, c))
    noise = sigma * (np.sqrt(correlation) * shared + np.sqrt(1.0 - correlation) * own)

    noisy = image + noise
    if clip:
        noisy = np.clip(noisy, 0.0, 1.0)
    return noisy
