"""The differentiable-array capability and its single-channel implementation.

The primal-dual solver is written once against ``DifferentiableArray``:
element-wise arithmetic, a discrete gradient into a vector field, its negative
adjoint (divergence), the L2 norm and a per-pixel projection of vector fields
onto the unit ball. ``Matrix`` provides it for a single 2D channel;
``ImageArray`` provides it for a stack of channels.

Vector fields (gradients and dual variables) are plain float64 tensors with
the component axis just before the spatial dimensions, see ``operators``.
"""

from abc import ABC, abstractmethod
from numbers import Real
from typing import Tuple, TypeVar

import numpy as np
import torch

from . import operators
from .base import DimensionMismatchError

__all__ = ["DifferentiableArray", "Matrix", "DTYPE"]

DTYPE = torch.float64

T = TypeVar("T", bound="DifferentiableArray")


class DifferentiableArray(ABC):
    """Abstract capability required by the primal-dual solver.

    Implementations are immutable: every operation returns a new array.
    Binary arithmetic between two arrays requires identical shapes and raises
    DimensionMismatchError otherwise.
    """

    @property
    @abstractmethod
    def shape(self) -> Tuple[int, int]:
        """Spatial shape (rows, cols)."""

    @abstractmethod
    def gradient(self) -> torch.Tensor:
        """Forward-difference gradient as a vector field."""

    @abstractmethod
    def divergence(self: T, field: torch.Tensor) -> T:
        """Negative adjoint of ``gradient`` applied to a compatible field."""

    @abstractmethod
    def project_unit_ball(self, field: torch.Tensor, joint: bool = False) -> torch.Tensor:
        """Project each pixel's vector of ``field`` onto the unit ball.

        Args:
            field: Vector field shaped like ``self.gradient()``.
            joint: Couple all channels of a pixel into a single vector.
        """

    @abstractmethod
    def norm(self) -> float:
        """Euclidean norm over all elements."""

    @abstractmethod
    def inner(self: T, other: T) -> float:
        """Euclidean inner product with a same-shaped array."""

    @abstractmethod
    def __add__(self: T, other: T) -> T: ...

    @abstractmethod
    def __sub__(self: T, other: T) -> T: ...

    @abstractmethod
    def __mul__(self: T, scalar: float) -> T: ...

    def __rmul__(self: T, scalar: float) -> T:
        return self.__mul__(scalar)

    def __truediv__(self: T, scalar: float) -> T:
        if not isinstance(scalar, Real):
            return NotImplemented
        return self.__mul__(1.0 / scalar)

    def __neg__(self: T) -> T:
        return self.__mul__(-1.0)

    def zeros_field(self) -> torch.Tensor:
        """Zero vector field with the shape of ``self.gradient()``."""
        return torch.zeros_like(self.gradient())


class Matrix(DifferentiableArray):
    """A single channel: a rows x cols grid of float64 samples.

    The data is copied on construction and never mutated afterwards.

    Example:
        >>> m = Matrix(np.arange(12.0).reshape(3, 4))
        >>> m.shape
        (3, 4)
        >>> (m - m).norm()
        0.0
    """

    __slots__ = ("_data",)

    def __init__(self, data) -> None:
        if torch.is_tensor(data):
            tensor = data
        else:
            tensor = torch.from_numpy(np.array(data, dtype=np.float64))
        if tensor.ndim != 2:
            raise DimensionMismatchError(
                f"Matrix requires 2D data, got shape {tuple(tensor.shape)}"
            )
        if tensor.numel() == 0:
            raise DimensionMismatchError("Matrix cannot be empty")
        self._data = tensor.detach().to(dtype=DTYPE, device="cpu").clone()

    @classmethod
    def _wrap(cls, tensor: torch.Tensor) -> "Matrix":
        """Adopt a freshly computed tensor without copying it."""
        obj = cls.__new__(cls)
        obj._data = tensor
        return obj

    @classmethod
    def zeros(cls, shape: Tuple[int, int]) -> "Matrix":
        return cls._wrap(torch.zeros(shape, dtype=DTYPE))

    @property
    def shape(self) -> Tuple[int, int]:
        return (int(self._data.shape[0]), int(self._data.shape[1]))

    def to_tensor(self) -> torch.Tensor:
        """Return an independent copy of the samples as a (rows, cols) tensor."""
        return self._data.clone()

    def to_numpy(self) -> np.ndarray:
        return self._data.numpy().copy()

    def clone(self) -> "Matrix":
        return Matrix._wrap(self._data.clone())

    def sum(self) -> float:
        return float(torch.sum(self._data))

    def _check_same_shape(self, other: "Matrix") -> None:
        if not isinstance(other, Matrix):
            raise TypeError(f"expected Matrix, got {type(other).__name__}")
        if self.shape != other.shape:
            raise DimensionMismatchError(
                f"shape mismatch: {self.shape} vs {other.shape}"
            )

    # -------------------------------------------------------------------------
    # Arithmetic
    # -------------------------------------------------------------------------

    def __add__(self, other: "Matrix") -> "Matrix":
        self._check_same_shape(other)
        return Matrix._wrap(self._data + other._data)

    def __sub__(self, other: "Matrix") -> "Matrix":
        self._check_same_shape(other)
        return Matrix._wrap(self._data - other._data)

    def __mul__(self, scalar: float) -> "Matrix":
        if not isinstance(scalar, Real):
            return NotImplemented
        return Matrix._wrap(self._data * float(scalar))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and bool(torch.equal(self._data, other._data))

    __hash__ = None

    def __repr__(self) -> str:
        return f"Matrix(shape={self.shape})"

    # -------------------------------------------------------------------------
    # DifferentiableArray
    # -------------------------------------------------------------------------

    def gradient(self) -> torch.Tensor:
        """Gradient field of shape (2, rows, cols)."""
        return operators.gradient(self._data)

    def divergence(self, field: torch.Tensor) -> "Matrix":
        if tuple(field.shape) != (2, *self.shape):
            raise DimensionMismatchError(
                f"expected field of shape {(2, *self.shape)}, got {tuple(field.shape)}"
            )
        return Matrix._wrap(operators.divergence(field))

    def project_unit_ball(self, field: torch.Tensor, joint: bool = False) -> torch.Tensor:
        # A single channel has nothing to couple: joint and independent coincide.
        return operators.project_unit_ball(field, joint_dims=1)

    def norm(self) -> float:
        return operators.norm(self._data)

    def inner(self, other: "Matrix") -> float:
        self._check_same_shape(other)
        return operators.inner_product(self._data, other._data)
