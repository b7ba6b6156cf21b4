"""image_recovery - Total variation denoising for grayscale and colour images.

Restores noisy images by solving the ROF model with the accelerated
Chambolle-Pock primal-dual algorithm. Colour channels can be regularised
independently or jointly (vectorial TV), which preserves edges shared by all
channels and reduces colour fringing.

The library is organized into:

- **differentiable / image_array**: Matrix and ImageArray containers with
  gradient, divergence and dual-projection operations
- **solvers**: ``denoise``, ``denoise_multichannel`` and
  ``denoise_each_channel``
- **synthetic**: Test images and noise models

Example:
    >>> import numpy as np
    >>> from image_recovery import ImageArray, denoise_multichannel
    >>> from image_recovery.synthetic import make_rgb_test_image, add_gaussian_noise
    >>>
    >>> rng = np.random.default_rng(0)
    >>> clean = make_rgb_test_image((64, 64))
    >>> noisy = ImageArray.from_pixels(add_gaussian_noise(clean, 0.1, rng))
    >>>
    >>> result = denoise_multichannel(noisy, lambda_=10.0, max_iter=300)
    >>> restored = result.restored.to_pixels()

Reference:
    Chambolle, A. and Pock, T. "A First-Order Primal-Dual Algorithm for
    Convex Problems with Applications to Imaging." Journal of Mathematical
    Imaging and Vision 40.1 (2011): 120-145.
"""

__version__ = "0.1.0"

# =============================================================================
# Errors and configuration
# =============================================================================
from .base import (
    ImageRecoveryError,
    DimensionMismatchError,
    DegenerateInputError,
    InvalidParameterError,
    SolverParameters,
    SolverState,
    DenoiseResult,
)

# =============================================================================
# Arrays
# =============================================================================
from .differentiable import DifferentiableArray, Matrix
from .image_array import Channel, ColorModel, ImageArray

# =============================================================================
# Solvers
# =============================================================================
from .solvers import denoise, denoise_multichannel, denoise_each_channel

__all__ = [
    # Errors
    "ImageRecoveryError",
    "DimensionMismatchError",
    "DegenerateInputError",
    "InvalidParameterError",
    # Configuration and results
    "SolverParameters",
    "SolverState",
    "DenoiseResult",
    # Arrays
    "DifferentiableArray",
    "Matrix",
    "Channel",
    "ColorModel",
    "ImageArray",
    # Solvers
    "denoise",
    "denoise_multichannel",
    "denoise_each_channel",
]
