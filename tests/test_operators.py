"""Tests for the discrete gradient, divergence and dual projection.

Uses the dot-product test to verify that divergence is the negative adjoint
of the gradient:
    ⟨grad(x), p⟩ = -⟨x, div(p)⟩

For random x and p both inner products should agree up to floating-point
precision.
"""

import numpy as np
import pytest
import torch

from image_recovery import DegenerateInputError, DimensionMismatchError, ImageArray, Matrix
from image_recovery.operators import (
    divergence,
    forward_diff,
    forward_diff_adjoint,
    gradient,
    inner_product,
    project_unit_ball,
)


def dot_product_test(
    forward,
    adjoint,
    x_shape: tuple,
    y_shape: tuple,
    rtol: float = 1e-9,
) -> tuple:
    """Verify ⟨A(x), y⟩ = ⟨x, A^T(y)⟩ for random float64 x and y.

    Returns:
        Tuple of (lhs, rhs, relative_error)
    """
    torch.manual_seed(42)
    x = torch.randn(x_shape, dtype=torch.float64)
    y = torch.randn(y_shape, dtype=torch.float64)

    lhs = torch.sum(forward(x) * y).item()
    rhs = torch.sum(x * adjoint(y)).item()

    rel_error = abs(lhs - rhs) / (0.5 * (abs(lhs) + abs(rhs)) + 1e-12)

    assert rel_error < rtol, (
        f"Dot-product test failed: ⟨Ax, y⟩ = {lhs:.12e}, ⟨x, A^T y⟩ = {rhs:.12e}, "
        f"relative error = {rel_error:.2e} (tolerance = {rtol:.2e})"
    )

    return lhs, rhs, rel_error


class TestForwardDifference:
    """Tests for forward_diff and its adjoint."""

    def test_last_difference_is_zero(self):
        x = torch.randn(5, 6, dtype=torch.float64)

        dx = forward_diff(x, dim=-1)
        dy = forward_diff(x, dim=-2)

        assert torch.all(dx[:, -1] == 0)
        assert torch.all(dy[-1, :] == 0)
        assert torch.allclose(dx[:, :-1], x[:, 1:] - x[:, :-1])
        assert torch.allclose(dy[:-1, :], x[1:, :] - x[:-1, :])

    def test_adjoint_each_dim(self):
        for dim in (-1, -2):
            lhs, rhs, err = dot_product_test(
                lambda x, d=dim: forward_diff(x, d),
                lambda y, d=dim: forward_diff_adjoint(y, d),
                (8, 9),
                (8, 9),
            )
            print(f"Forward diff dim{dim}: ⟨Dx, y⟩={lhs:.10e}, ⟨x, D^T y⟩={rhs:.10e}, err={err:.2e}")

    def test_adjoint_smallest_size(self):
        """Two samples along the differenced axis leave no interior."""
        dot_product_test(
            lambda x: forward_diff(x, -1),
            lambda y: forward_diff_adjoint(y, -1),
            (3, 2),
            (3, 2),
        )


class TestGradientDivergence:
    """Tests for gradient and divergence on raw tensors."""

    def test_gradient_shape(self):
        x = torch.zeros(7, 9, dtype=torch.float64)
        assert gradient(x).shape == (2, 7, 9)

        stack = torch.zeros(3, 7, 9, dtype=torch.float64)
        assert gradient(stack).shape == (3, 2, 7, 9)

    def test_gradient_of_constant_is_zero(self):
        x = torch.full((6, 6), 0.3, dtype=torch.float64)
        assert torch.all(gradient(x) == 0)

    def test_gradient_components(self):
        """Component 0 differences columns, component 1 differences rows."""
        rows, cols = 4, 5
        ramp = torch.arange(cols, dtype=torch.float64).expand(rows, cols)

        g = gradient(ramp)

        assert torch.all(g[0, :, :-1] == 1.0)
        assert torch.all(g[0, :, -1] == 0.0)
        assert torch.all(g[1] == 0.0)

    def test_divergence_is_negative_adjoint_2d(self):
        lhs, rhs, err = dot_product_test(
            gradient,
            lambda p: -divergence(p),
            (7, 9),
            (2, 7, 9),
        )
        print(f"Gradient 2D: ⟨∇x, p⟩={lhs:.10e}, -⟨x, div p⟩={rhs:.10e}, err={err:.2e}")

    def test_divergence_is_negative_adjoint_stack(self):
        lhs, rhs, err = dot_product_test(
            gradient,
            lambda p: -divergence(p),
            (3, 16, 12),
            (3, 2, 16, 12),
        )
        print(f"Gradient stack: ⟨∇x, p⟩={lhs:.10e}, -⟨x, div p⟩={rhs:.10e}, err={err:.2e}")

    def test_divergence_is_negative_adjoint_2x2(self):
        dot_product_test(gradient, lambda p: -divergence(p), (2, 2), (2, 2, 2))

    @pytest.mark.parametrize("shape", [(1, 5), (5, 1), (1, 1), (5,)])
    def test_degenerate_gradient(self, shape):
        with pytest.raises(DegenerateInputError):
            gradient(torch.zeros(shape, dtype=torch.float64))

    def test_divergence_requires_two_components(self):
        with pytest.raises(DimensionMismatchError):
            divergence(torch.zeros(3, 4, 4, dtype=torch.float64))

    def test_inner_product_shape_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            inner_product(torch.zeros(3, 3), torch.zeros(4, 4))


class TestArrayAdjointness:
    """The adjoint relation through the Matrix and ImageArray interfaces."""

    def test_matrix(self):
        rng = np.random.default_rng(0)
        m = Matrix(rng.standard_normal((10, 13)))
        p = torch.from_numpy(rng.standard_normal((2, 10, 13)))

        lhs = inner_product(m.gradient(), p)
        rhs = -m.inner(m.divergence(p))

        assert lhs == pytest.approx(rhs, rel=1e-9)

    def test_image_array(self):
        rng = np.random.default_rng(1)
        image = ImageArray.from_pixels(rng.standard_normal((9, 11, 3)))
        p = torch.from_numpy(rng.standard_normal((3, 2, 9, 11)))

        lhs = inner_product(image.gradient(), p)
        rhs = -image.inner(image.divergence(p))

        assert lhs == pytest.approx(rhs, rel=1e-9)
        print(f"ImageArray: ⟨∇x, p⟩={lhs:.10e}, -⟨x, div p⟩={rhs:.10e}")

    def test_matrix_divergence_shape_mismatch(self):
        m = Matrix.zeros((4, 4))
        with pytest.raises(DimensionMismatchError):
            m.divergence(torch.zeros(2, 5, 5, dtype=torch.float64))

    def test_image_array_divergence_shape_mismatch(self):
        image = ImageArray([np.zeros((4, 4))] * 3)
        with pytest.raises(DimensionMismatchError):
            image.divergence(torch.zeros(1, 2, 4, 4, dtype=torch.float64))


class TestProjection:
    """Tests for project_unit_ball."""

    def test_result_within_unit_ball(self):
        torch.manual_seed(0)
        p = 5.0 * torch.randn(2, 16, 16, dtype=torch.float64)

        projected = project_unit_ball(p)
        magnitude = torch.sqrt(torch.sum(projected**2, dim=0))

        assert torch.all(magnitude <= 1.0 + 1e-12)

    def test_idempotent(self):
        torch.manual_seed(1)
        p = 3.0 * torch.randn(3, 2, 8, 8, dtype=torch.float64)

        for joint_dims in (1, 2):
            once = project_unit_ball(p, joint_dims=joint_dims)
            twice = project_unit_ball(once, joint_dims=joint_dims)
            assert torch.allclose(once, twice, rtol=0, atol=1e-12)

    def test_inside_ball_unchanged(self):
        torch.manual_seed(2)
        # Components below 0.5 keep every 2-vector shorter than 1
        p = 0.5 * torch.rand(2, 8, 8, dtype=torch.float64)

        assert torch.equal(project_unit_ball(p), p)

    def test_independent_versus_joint(self):
        p = torch.ones(3, 2, 2, 2, dtype=torch.float64)

        independent = project_unit_ball(p, joint_dims=1)
        joint = project_unit_ball(p, joint_dims=2)

        # Each channel's (1, 1) has length sqrt(2); all six components sqrt(6)
        assert torch.allclose(independent, torch.full_like(p, 1.0 / np.sqrt(2.0)))
        assert torch.allclose(joint, torch.full_like(p, 1.0 / np.sqrt(6.0)))

    def test_joint_uses_common_scale(self):
        p = torch.zeros(2, 2, 1, 1, dtype=torch.float64)
        p[0, 0] = 3.0
        p[1, 1] = 4.0

        joint = project_unit_ball(p, joint_dims=2)

        assert joint[0, 0].item() == pytest.approx(0.6)
        assert joint[1, 1].item() == pytest.approx(0.8)

    @pytest.mark.parametrize("joint_dims", [0, 2])
    def test_invalid_joint_dims(self, joint_dims):
        with pytest.raises(DimensionMismatchError):
            project_unit_ball(torch.zeros(2, 3, 3, dtype=torch.float64), joint_dims=joint_dims)

    def test_image_array_policies(self):
        image = ImageArray([np.zeros((2, 2))] * 3)
        p = torch.ones(3, 2, 2, 2, dtype=torch.float64)

        independent = image.project_unit_ball(p, joint=False)
        joint = image.project_unit_ball(p, joint=True)

        assert torch.allclose(independent, project_unit_ball(p, joint_dims=1))
        assert torch.allclose(joint, project_unit_ball(p, joint_dims=2))
