"""Cost function interface, robust losses and residual block evaluation."""

from __future__ import annotations

import math
import sys
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

import numpy as np

_MIN_DOUBLE = sys.float_info.min


class CostFunction(ABC):
    """A residual function of one or more parameter blocks."""

    def __init__(self, num_residuals: int = 0, parameter_block_sizes: Sequence[int] = ()):
        self.num_residuals = int(num_residuals)
        self.parameter_block_sizes = [int(s) for s in parameter_block_sizes]

    @abstractmethod
    def evaluate(
        self, parameters: Sequence[np.ndarray], compute_jacobians: bool = True
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        """Return residuals and, if asked, one row-major jacobian per block."""


class LossFunction(ABC):
    """Robust loss rho(s) of the squared residual norm s."""

    @abstractmethod
    def evaluate(self, sq_norm: float) -> Tuple[float, float, float]:
        """Return rho(s), rho'(s) and rho''(s)."""


class HuberLoss(LossFunction):
    def __init__(self, a: float):
        self.a = float(a)
        self.b = self.a * self.a

    def evaluate(self, sq_norm: float) -> Tuple[float, float, float]:
        s = float(sq_norm)
        if s > self.b:
            r = math.sqrt(s)
            rho1 = max(_MIN_DOUBLE, self.a / r)
            return 2.0 * self.a * r - self.b, rho1, -rho1 / (2.0 * s)
        return s, 1.0, 0.0


class CauchyLoss(LossFunction):
    def __init__(self, a: float):
        self.b = float(a) * float(a)
        self.c = 1.0 / self.b

    def evaluate(self, sq_norm: float) -> Tuple[float, float, float]:
        total = 1.0 + float(sq_norm) * self.c
        inv = 1.0 / total
        return self.b * math.log(total), max(_MIN_DOUBLE, inv), -self.c * inv * inv


class ResidualBlockInfo:
    """A cost function bound to parameter blocks, some of which are to be marginalized."""

    def __init__(
        self,
        cost_function: CostFunction,
        loss_function: Optional[LossFunction],
        parameter_blocks: Sequence[np.ndarray],
        marg_para_index: Sequence[int],
    ):
        self.cost_function = cost_function
        self.loss_function = loss_function
        self.parameter_blocks = list(parameter_blocks)
        self.marginalization_parameters_index = [int(i) for i in marg_para_index]
        self.jacobians: List[np.ndarray] = []
        self.residuals = np.zeros(0)

    @property
    def parameter_block_sizes(self) -> List[int]:
        return list(self.cost_function.parameter_block_sizes)

    def evaluate(self) -> None:
        """Evaluate residuals and jacobians, applying the robust loss correction."""
        n = self.cost_function.num_residuals
        residuals, jacobians = self.cost_function.evaluate(self.parameter_blocks, True)
        residuals = np.asarray(residuals, dtype=float).reshape(n)
        jacobians = [
            np.asarray(j, dtype=float).reshape(n, size)
            for j, size in zip(jacobians, self.cost_function.parameter_block_sizes)
        ]

        if self.loss_function is not None:
            sq_norm = float(residuals @ residuals)
            _, rho1, rho2 = self.loss_function.evaluate(sq_norm)
            sqrt_rho1 = math.sqrt(rho1)

            if sq_norm == 0.0 or rho2 <= 0.0:
                residual_scaling = sqrt_rho1
                alpha_sq_norm = 0.0
            else:
                d = 1.0 + 2.0 * sq_norm * rho2 / rho1
                alpha = 1.0 - math.sqrt(d)
                residual_scaling = sqrt_rho1 / (1.0 - alpha)
                alpha_sq_norm = alpha / sq_norm

            jacobians = [
                sqrt_rho1 * (j - alpha_sq_norm * np.outer(residuals, residuals @ j))
                for j in jacobians
            ]
            residuals = residuals * residual_scaling

        self.residuals = residuals
        self.jacobians = jacobians