"""Multi-channel image container used by the solvers.

An ``ImageArray`` is an ordered, fixed-length sequence of ``Matrix`` channels
that all share one spatial shape. It implements ``DifferentiableArray`` by
treating the channels as parallel, independent matrices for arithmetic,
gradient, divergence and norm, and offers two projection policies:

    - independent: each channel's gradient vector is projected on its own
    - joint: all channels' gradient vectors at a pixel are stacked into one
      2C-vector and projected together (vectorial / colour-coupled TV)

Pixel buffers are NumPy arrays of shape (H, W) or (H, W, C). Integer samples
are normalised to [0, 1] by the dtype maximum on the way in and re-quantised
with clamping on the way out.
"""

from enum import Enum
from numbers import Real
from typing import Iterator, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from . import operators
from .base import DimensionMismatchError, InvalidParameterError
from .differentiable import DTYPE, DifferentiableArray, Matrix

__all__ = ["Channel", "ColorModel", "ImageArray"]


class Channel(Enum):
    """Semantic label of an image channel."""

    LUMA = "luma"
    RED = "red"
    GREEN = "green"
    BLUE = "blue"


class ColorModel(Enum):
    """Supported colour models and their channel order."""

    LUMA = (Channel.LUMA,)
    RGB = (Channel.RED, Channel.GREEN, Channel.BLUE)

    @property
    def channels(self) -> Tuple[Channel, ...]:
        return self.value

    @property
    def num_channels(self) -> int:
        return len(self.value)

    @classmethod
    def for_channel_count(cls, count: int) -> "ColorModel":
        for model in cls:
            if model.num_channels == count:
                return model
        raise DimensionMismatchError(
            f"unsupported channel count {count}; expected 1 (luma) or 3 (rgb)"
        )


class ImageArray(DifferentiableArray):
    """Immutable stack of equally shaped channel matrices.

    Args:
        channels: One Matrix (or 2D array-like) per channel.
        color_model: Colour model of the channels. Inferred from the channel
            count when omitted.

    Raises:
        DimensionMismatchError: If the channels differ in shape or their count
            does not fit the colour model.

    Example:
        >>> noisy = np.random.default_rng(0).integers(0, 256, (32, 32, 3), dtype=np.uint8)
        >>> image = ImageArray.from_pixels(noisy)
        >>> image.color_model.name, image.shape
        ('RGB', (32, 32))
        >>> image.to_pixels().shape
        (32, 32, 3)
    """

    __slots__ = ("_channels", "_color_model")

    def __init__(
        self,
        channels: Sequence[Union[Matrix, np.ndarray, torch.Tensor]],
        color_model: Optional[ColorModel] = None,
    ) -> None:
        matrices = tuple(c if isinstance(c, Matrix) else Matrix(c) for c in channels)

        if color_model is None:
            color_model = ColorModel.for_channel_count(len(matrices))
        elif len(matrices) != color_model.num_channels:
            raise DimensionMismatchError(
                f"{color_model.name} requires {color_model.num_channels} channel(s), "
                f"got {len(matrices)}"
            )

        shapes = {m.shape for m in matrices}
        if len(shapes) != 1:
            raise DimensionMismatchError(
                f"all channels must share one shape, got {sorted(shapes)}"
            )

        self._channels = matrices
        self._color_model = color_model

    @classmethod
    def _wrap(cls, channels: Tuple[Matrix, ...], color_model: ColorModel) -> "ImageArray":
        """Build from already validated channels."""
        obj = cls.__new__(cls)
        obj._channels = channels
        obj._color_model = color_model
        return obj

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------

    @classmethod
    def from_pixels(cls, buffer: np.ndarray) -> "ImageArray":
        """Create from a decoded pixel buffer.

        Args:
            buffer: Array of shape (H, W) or (H, W, 1) for luma, (H, W, 3) for
                RGB. Integer samples are divided by the dtype maximum (255 for
                uint8, 65535 for uint16); float samples are taken as already
                normalised.

        Returns:
            ImageArray with samples in [0, 1] for integer input.
        """
        buffer = np.asarray(buffer)
        if buffer.ndim == 2:
            buffer = buffer[:, :, np.newaxis]
        if buffer.ndim != 3:
            raise DimensionMismatchError(
                f"pixel buffer must have shape (H, W) or (H, W, C), got {buffer.shape}"
            )

        if np.issubdtype(buffer.dtype, np.integer):
            samples = buffer.astype(np.float64) / np.iinfo(buffer.dtype).max
        elif np.issubdtype(buffer.dtype, np.floating):
            samples = buffer.astype(np.float64)
        else:
            raise InvalidParameterError(f"unsupported pixel dtype {buffer.dtype}")

        model = ColorModel.for_channel_count(samples.shape[2])
        return cls._wrap(
            tuple(Matrix(samples[:, :, c]) for c in range(model.num_channels)), model
        )

    def to_pixels(self, dtype=np.uint8) -> np.ndarray:
        """Re-quantise to a pixel buffer.

        Samples are clamped to [0, 1] and scaled to the integer range of
        ``dtype``. Luma images return shape (H, W), RGB images (H, W, 3).
        """
        dtype = np.dtype(dtype)
        if not np.issubdtype(dtype, np.integer):
            raise InvalidParameterError(f"pixel dtype must be an integer type, got {dtype}")
        max_value = np.iinfo(dtype).max

        samples = np.clip(self.to_tensor().numpy(), 0.0, 1.0)
        pixels = np.rint(samples * max_value).astype(dtype)
        pixels = np.moveaxis(pixels, 0, -1)
        if self._color_model is ColorModel.LUMA:
            return pixels[:, :, 0]
        return pixels

    @classmethod
    def from_tensor(
        cls, tensor: torch.Tensor, color_model: Optional[ColorModel] = None
    ) -> "ImageArray":
        """Create from a (C, H, W) tensor of real samples."""
        if tensor.ndim != 3:
            raise DimensionMismatchError(
                f"expected a (C, H, W) tensor, got shape {tuple(tensor.shape)}"
            )
        return cls([Matrix(tensor[c]) for c in range(tensor.shape[0])], color_model)

    def to_tensor(self) -> torch.Tensor:
        """Return an independent (C, H, W) float64 copy of the samples."""
        return torch.stack([m.to_tensor() for m in self._channels])

    def into_luma(self) -> "ImageArray":
        """Collapse to a single luma channel (mean over channels)."""
        if self._color_model is ColorModel.LUMA:
            return self.clone()
        mean = Matrix._wrap(torch.mean(self.to_tensor(), dim=0))
        return ImageArray._wrap((mean,), ColorModel.LUMA)

    def into_rgb(self) -> "ImageArray":
        """Expand to RGB, replicating the luma channel if needed."""
        if self._color_model is ColorModel.RGB:
            return self.clone()
        luma = self._channels[0]
        return ImageArray._wrap((luma.clone(), luma.clone(), luma.clone()), ColorModel.RGB)

    # -------------------------------------------------------------------------
    # Container
    # -------------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return self._channels[0].shape

    @property
    def color_model(self) -> ColorModel:
        return self._color_model

    @property
    def num_channels(self) -> int:
        return len(self._channels)

    @property
    def channels(self) -> Tuple[Matrix, ...]:
        return self._channels

    def channel(self, label: Channel) -> Matrix:
        """Return the Matrix holding ``label``."""
        try:
            index = self._color_model.channels.index(label)
        except ValueError:
            raise DimensionMismatchError(
                f"{self._color_model.name} image has no {label.name} channel"
            ) from None
        return self._channels[index]

    def __iter__(self) -> Iterator[Matrix]:
        return iter(self._channels)

    def __len__(self) -> int:
        return len(self._channels)

    def clone(self) -> "ImageArray":
        return ImageArray._wrap(tuple(m.clone() for m in self._channels), self._color_model)

    def sum(self) -> float:
        return sum(m.sum() for m in self._channels)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ImageArray):
            return NotImplemented
        return self._color_model is other._color_model and self._channels == other._channels

    __hash__ = None

    def __repr__(self) -> str:
        return f"ImageArray(color_model={self._color_model.name}, shape={self.shape})"

    # -------------------------------------------------------------------------
    # Arithmetic
    # -------------------------------------------------------------------------

    def _check_compatible(self, other: "ImageArray") -> None:
        if not isinstance(other, ImageArray):
            raise TypeError(f"expected ImageArray, got {type(other).__name__}")
        if self.num_channels != other.num_channels or self.shape != other.shape:
            raise DimensionMismatchError(
                f"shape mismatch: {self.num_channels}x{self.shape} vs "
                f"{other.num_channels}x{other.shape}"
            )

    def __add__(self, other: "ImageArray") -> "ImageArray":
        self._check_compatible(other)
        return ImageArray._wrap(
            tuple(a + b for a, b in zip(self._channels, other._channels)), self._color_model
        )

    def __sub__(self, other: "ImageArray") -> "ImageArray":
        self._check_compatible(other)
        return ImageArray._wrap(
            tuple(a - b for a, b in zip(self._channels, other._channels)), self._color_model
        )

    def __mul__(self, scalar: float) -> "ImageArray":
        if not isinstance(scalar, Real):
            return NotImplemented
        return ImageArray._wrap(tuple(m * scalar for m in self._channels), self._color_model)

    # -------------------------------------------------------------------------
    # DifferentiableArray
    # -------------------------------------------------------------------------

    def gradient(self) -> torch.Tensor:
        """Gradient field of shape (C, 2, rows, cols)."""
        return torch.stack([m.gradient() for m in self._channels])

    def divergence(self, field: torch.Tensor) -> "ImageArray":
        expected = (self.num_channels, 2, *self.shape)
        if tuple(field.shape) != expected:
            raise DimensionMismatchError(
                f"expected field of shape {expected}, got {tuple(field.shape)}"
            )
        return ImageArray._wrap(
            tuple(m.divergence(field[c]) for c, m in enumerate(self._channels)),
            self._color_model,
        )

    def project_unit_ball(self, field: torch.Tensor, joint: bool = False) -> torch.Tensor:
        """Project the dual field, coupling channels only when ``joint``.

        Independent: each channel's 2-vector per pixel is projected alone.
        Joint: the 2C-vector of all channels at a pixel is projected together,
        so every channel is scaled by the same factor.
        """
        if joint:
            return operators.project_unit_ball(field, joint_dims=2)
        return torch.stack(
            [m.project_unit_ball(field[c]) for c, m in enumerate(self._channels)]
        )

    def norm(self) -> float:
        return float(np.sqrt(sum(m.norm() ** 2 for m in self._channels)))

    def inner(self, other: "ImageArray") -> float:
        self._check_compatible(other)
        return sum(a.inner(b) for a, b in zip(self._channels, other._channels))

    def zeros_field(self) -> torch.Tensor:
        return torch.zeros((self.num_channels, 2, *self.shape), dtype=DTYPE)

    # -------------------------------------------------------------------------
    # Solvers
    # -------------------------------------------------------------------------

    def denoise(self, *args, **kwargs):
        """Shortcut for ``solvers.denoise(self, ...)``; returns the restored image."""
        from .solvers import denoise

        return denoise(self, *args, **kwargs).restored

    def denoise_multichannel(self, *args, **kwargs):
        """Shortcut for ``solvers.denoise_multichannel(self, ...)``."""
        from .solvers import denoise_multichannel

        return denoise_multichannel(self, *args, **kwargs).restored
