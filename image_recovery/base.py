"""Base types for the total-variation denoising solvers.

Holds the error taxonomy, the validated solver configuration and the result
container returned by every solver entry point.
"""

import math
import numbers
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List

__all__ = [
    "ImageRecoveryError",
    "DimensionMismatchError",
    "DegenerateInputError",
    "InvalidParameterError",
    "SolverParameters",
    "SolverState",
    "DenoiseResult",
    "GRADIENT_NORM_SQ",
]

# Upper bound of ||grad||^2 for 2D forward differences (Chambolle 2004).
GRADIENT_NORM_SQ = 8.0


# =============================================================================
# Errors
# =============================================================================


class ImageRecoveryError(ValueError):
    """Base class for all errors raised by image_recovery."""


class DimensionMismatchError(ImageRecoveryError):
    """Arrays or channels do not share the required shape or channel count."""


class DegenerateInputError(ImageRecoveryError):
    """A spatial dimension is smaller than 2, so the gradient is undefined."""


class InvalidParameterError(ImageRecoveryError):
    """A solver parameter is out of its admissible range."""


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class SolverParameters:
    """Immutable parameters of the accelerated primal-dual solver.

    Attributes:
        lambda_: Weight of the fidelity term (lambda/2)*||x - f||^2. Towards
            zero the output becomes flat, towards infinity it approaches the
            input.
        tau: Initial primal step size.
        sigma: Initial dual step size. Convergence is guaranteed for
            tau * sigma * 8 <= 1 (8 bounds the squared gradient norm).
        gamma: Acceleration rate exploiting strong convexity of the fidelity
            term. Chambolle & Pock (2011) use 0.35 * lambda_.
        max_iter: Iteration cap.
        convergence_threshold: The solver stops once
            ||x_{n+1} - x_n|| / ||x_n|| drops below this value.

    Example:
        >>> params = SolverParameters.from_lambda(0.026, max_iter=300)
        >>> round(params.tau * params.sigma * 8, 12)
        1.0
    """

    lambda_: float
    tau: float
    sigma: float
    gamma: float
    max_iter: int = 500
    convergence_threshold: float = 1e-10

    def __post_init__(self) -> None:
        """Validate solver parameters."""
        for name in ("lambda_", "tau", "sigma", "gamma", "convergence_threshold"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise InvalidParameterError(
                    f"{name} must be a real number, got {value!r}"
                )
            if not math.isfinite(value) or value <= 0:
                raise InvalidParameterError(
                    f"{name} must be positive and finite, got {value}"
                )
        max_iter = self.max_iter
        if isinstance(max_iter, bool) or not isinstance(max_iter, numbers.Integral):
            raise InvalidParameterError(
                f"max_iter must be an integer, got {self.max_iter!r}"
            )
        if self.max_iter <= 0:
            raise InvalidParameterError(f"max_iter must be positive, got {self.max_iter}")

        # Caller responsibility: warn rather than refuse to run.
        if self.tau * self.sigma * GRADIENT_NORM_SQ > 1.0 + 1e-12:
            warnings.warn(
                f"tau * sigma * {GRADIENT_NORM_SQ:g} = "
                f"{self.tau * self.sigma * GRADIENT_NORM_SQ:.4g} > 1; "
                "the primal-dual iteration may diverge",
                RuntimeWarning,
                stacklevel=3,
            )

    @classmethod
    def from_lambda(
        cls,
        lambda_: float,
        max_iter: int = 500,
        convergence_threshold: float = 1e-10,
    ) -> "SolverParameters":
        """Build parameters with the conventional step sizes for ``lambda_``.

        Uses tau = 1/sqrt(2), sigma = 1/(8*tau) and gamma = 0.35*lambda_, so
        that tau * sigma * 8 == 1.
        """
        tau = 1.0 / math.sqrt(2.0)
        sigma = 1.0 / (GRADIENT_NORM_SQ * tau)
        return cls(
            lambda_=lambda_,
            tau=tau,
            sigma=sigma,
            gamma=0.35 * lambda_,
            max_iter=max_iter,
            convergence_threshold=convergence_threshold,
        )


# =============================================================================
# Results
# =============================================================================


class SolverState(Enum):
    """Lifecycle states of a solver run."""

    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED_BY_THRESHOLD = "converged_by_threshold"
    STOPPED_BY_ITERATION_CAP = "stopped_by_iteration_cap"


@dataclass
class DenoiseResult:
    """Result from a denoising solver.

    Both terminal states are successful outcomes; ``state`` only tells them
    apart.

    Attributes:
        restored: The denoised array (same type and shape as the input).
        iterations: Number of iterations performed.
        loss_history: Relative change ||x_{n+1} - x_n|| / ||x_n|| per iteration.
        converged: Whether the convergence threshold was met.
        state: Terminal state of the run.
        metadata: Algorithm-specific metadata.
    """

    restored: Any
    iterations: int
    loss_history: List[float] = field(default_factory=list)
    converged: bool = False
    state: SolverState = SolverState.INITIALIZING
    metadata: dict = field(default_factory=dict)
