"""Discrete gradient, divergence and dual projection for 2D images.

All operators act on the two trailing (spatial) dimensions of a torch tensor,
so a single matrix of shape (H, W) and a channel stack of shape (C, H, W) are
handled by the same code.

Gradient fields are stacked along a new component axis placed just before the
spatial dimensions: a (..., H, W) array has a (..., 2, H, W) gradient whose
component 0 is the horizontal (column) difference and component 1 the vertical
(row) difference.

Boundary handling is Neumann: the forward difference at the last row/column is
zero. ``divergence`` is the exact negative adjoint of ``gradient``:

    <gradient(x), p> = -<x, divergence(p)>

which the primal-dual iteration requires for its convergence guarantee.

Reference:
    Chambolle, A. (2004). "An Algorithm for Total Variation Minimization and
    Applications". Journal of Mathematical Imaging and Vision 20: 89-97.
"""

import torch

from .base import DegenerateInputError, DimensionMismatchError

__all__ = [
    "check_spatial_shape",
    "forward_diff",
    "forward_diff_adjoint",
    "gradient",
    "divergence",
    "inner_product",
    "norm",
    "project_unit_ball",
]

# Spatial axes, counted from the end: columns (x) first, then rows (y).
_SPATIAL_DIMS = (-1, -2)


def check_spatial_shape(x: torch.Tensor) -> None:
    """Raise DegenerateInputError unless both spatial sides are at least 2."""
    if x.ndim < 2:
        raise DegenerateInputError(
            f"expected at least 2 dimensions, got shape {tuple(x.shape)}"
        )
    rows, cols = x.shape[-2], x.shape[-1]
    if rows < 2 or cols < 2:
        raise DegenerateInputError(
            f"gradient is undefined for a {rows}x{cols} image; "
            "both spatial dimensions must be >= 2"
        )


# =============================================================================
# Finite Differences (Neumann Boundary)
# =============================================================================


def forward_diff(x: torch.Tensor, dim: int) -> torch.Tensor:
    """Forward difference: D[i] = x[i+1] - x[i], and D[n-1] = 0."""
    n = x.shape[dim]
    interior = x.narrow(dim, 1, n - 1) - x.narrow(dim, 0, n - 1)
    return torch.cat([interior, torch.zeros_like(x.narrow(dim, 0, 1))], dim=dim)


def forward_diff_adjoint(p: torch.Tensor, dim: int) -> torch.Tensor:
    """Adjoint of ``forward_diff``: the negated backward difference.

    With p[-1] = p[n-1] = 0 implied by the boundary condition:
        D^T p[i] = p[i-1] - p[i]
    """
    n = p.shape[dim]
    first = -p.narrow(dim, 0, 1)
    interior = p.narrow(dim, 0, n - 2) - p.narrow(dim, 1, n - 2)
    last = p.narrow(dim, n - 2, 1)
    return torch.cat([first, interior, last], dim=dim)


def gradient(x: torch.Tensor) -> torch.Tensor:
    """Discrete gradient of the trailing two dimensions.

    Args:
        x: Tensor of shape (..., H, W) with H, W >= 2.

    Returns:
        Tensor of shape (..., 2, H, W): (horizontal, vertical) differences.

    Raises:
        DegenerateInputError: If H or W is smaller than 2.
    """
    check_spatial_shape(x)
    return torch.stack([forward_diff(x, dim) for dim in _SPATIAL_DIMS], dim=-3)


def divergence(p: torch.Tensor) -> torch.Tensor:
    """Discrete divergence, the negative adjoint of ``gradient``.

    Args:
        p: Vector field of shape (..., 2, H, W).

    Returns:
        Tensor of shape (..., H, W).

    Raises:
        DimensionMismatchError: If the component axis does not have length 2.
        DegenerateInputError: If H or W is smaller than 2.
    """
    if p.ndim < 3 or p.shape[-3] != 2:
        raise DimensionMismatchError(
            f"expected a vector field of shape (..., 2, H, W), got {tuple(p.shape)}"
        )
    check_spatial_shape(p)
    # div = -(Dx^T p_x + Dy^T p_y)
    total = forward_diff_adjoint(p.select(-3, 0), _SPATIAL_DIMS[0])
    total = total + forward_diff_adjoint(p.select(-3, 1), _SPATIAL_DIMS[1])
    return -total


# =============================================================================
# Norms and Projection
# =============================================================================


def inner_product(a: torch.Tensor, b: torch.Tensor) -> float:
    """Euclidean inner product over all elements."""
    if a.shape != b.shape:
        raise DimensionMismatchError(
            f"shape mismatch: {tuple(a.shape)} vs {tuple(b.shape)}"
        )
    return float(torch.sum(a * b))


def norm(x: torch.Tensor) -> float:
    """Euclidean (L2) norm over all elements."""
    return float(torch.sqrt(torch.sum(x * x)))


def project_unit_ball(p: torch.Tensor, joint_dims: int = 1) -> torch.Tensor:
    """Project a vector field onto the unit ball at each pixel.

    The per-pixel vector is formed from the ``joint_dims`` axes immediately
    preceding the spatial dimensions. With a (2, H, W) field and
    ``joint_dims=1`` each 2-vector is projected on its own. With a
    (C, 2, H, W) field, ``joint_dims=1`` projects every channel independently
    while ``joint_dims=2`` stacks all channels into one 2C-vector per pixel
    (vectorial TV, Bredies 2014).

    Vectors with magnitude <= 1 are returned unchanged:
        P(p) = p / max(1, |p|)

    Args:
        p: Vector field of shape (..., 2, H, W).
        joint_dims: Number of leading axes (counting back from the component
            axis) coupled into each pixel's vector.

    Returns:
        Projected field, same shape as ``p``.
    """
    if joint_dims < 1 or joint_dims > p.ndim - 2:
        raise DimensionMismatchError(
            f"cannot couple {joint_dims} axes of a field with shape {tuple(p.shape)}"
        )
    dims = tuple(range(-3, -3 - joint_dims, -1))
    magnitude = torch.sqrt(torch.sum(p * p, dim=dims, keepdim=True))
    return p / torch.clamp(magnitude, min=1.0)
