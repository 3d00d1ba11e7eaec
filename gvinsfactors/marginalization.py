"""Schur-complement marginalization and the prior factor it produces."""

from __future__ import annotations

from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from gvinsfactors.geometry import PoseParameterization, Quaternion
from gvinsfactors.residual_block import CostFunction, ResidualBlockInfo

POSE_GLOBAL_SIZE = PoseParameterization.global_size
POSE_LOCAL_SIZE = PoseParameterization.local_size


def _positive_inverse(values: np.ndarray, eps: float) -> np.ndarray:
    keep = values > eps
    out = np.zeros_like(values)
    np.divide(1.0, values, out=out, where=keep)
    return out


class MarginalizationInfo:
    """Collects residual blocks and marginalizes a set of parameter blocks out of them.

    Parameter blocks are numpy arrays; ``update_parameters_ids`` maps the ``id()`` of
    each array to a stable block key. Blocks to marginalize are ordered first in the
    linear system, remained blocks after them.
    """

    EPS = 1e-8

    def __init__(self) -> None:
        self._parameters_ids: Dict[int, Hashable] = {}
        self._block_size: Dict[Hashable, int] = {}
        self._block_index: Dict[Hashable, int] = {}
        self._block_data: Dict[Hashable, np.ndarray] = {}
        self._factors: List[ResidualBlockInfo] = []

        self._h0 = np.zeros((0, 0))
        self._b0 = np.zeros(0)
        self._hp = np.zeros((0, 0))
        self._bp = np.zeros(0)

        self.marginalized_size = 0
        self.remained_size = 0
        self._total_size = 0

        self.remained_block_size: List[int] = []
        self.remained_block_index: List[int] = []
        self.remained_block_data: List[np.ndarray] = []

        self.linearized_jacobians = np.zeros((0, 0))
        self.linearized_residuals = np.zeros(0)

        self.is_valid = True

    @staticmethod
    def local_size(size: int) -> int:
        return POSE_LOCAL_SIZE if size == POSE_GLOBAL_SIZE else size

    @staticmethod
    def global_size(size: int) -> int:
        return POSE_GLOBAL_SIZE if size == POSE_LOCAL_SIZE else size

    def _key(self, block) -> Hashable:
        try:
            return self._parameters_ids[id(block)]
        except KeyError:
            raise KeyError("parameter block has no registered id") from None

    def add_residual_block_info(self, block: ResidualBlockInfo) -> None:
        self._factors.append(block)

        for parameter, size in zip(block.parameter_blocks, block.parameter_block_sizes):
            self._block_size[self._key(parameter)] = size

        # Marginalized blocks enter the index table first so they are ordered in front.
        for index in block.marginalization_parameters_index:
            self._block_index[self._key(block.parameter_blocks[index])] = 0

    def update_parameters_ids(self, parameters_ids: Mapping[int, Hashable]) -> None:
        """Set the mapping from ``id()`` of each parameter array to its block key."""
        self._parameters_ids = dict(parameters_ids)

    def marginalize(self) -> bool:
        """Marginalize; return False (and become invalid) if nothing is to be marginalized."""
        if not self._update_parameter_blocks_index():
            self.is_valid = False
            self._factors.clear()
            return False

        self._pre_marginalization()
        self._construct_equation()
        self._schur_elimination()
        self._linearization()
        self._factors.clear()
        return True

    def get_parameter_blocks(self, address: Mapping[Hashable, np.ndarray]) -> List[np.ndarray]:
        """Record the remained blocks and return the current arrays for them from ``address``."""
        self.remained_block_data = []
        self.remained_block_index = []
        self.remained_block_size = []
        remained = []

        for key, index in self._block_index.items():
            if index >= self.marginalized_size:
                self.remained_block_data.append(self._block_data[key])
                self.remained_block_size.append(self._block_size[key])
                self.remained_block_index.append(index)
                remained.append(address[key])

        return remained

    def _update_parameter_blocks_index(self) -> bool:
        index = 0
        for key in self._block_index:
            self._block_index[key] = index
            index += self.local_size(self._block_size[key])
        self.marginalized_size = index

        for key, size in self._block_size.items():
            if key not in self._block_index:
                self._block_index[key] = index
                index += self.local_size(size)
        self.remained_size = index - self.marginalized_size
        self._total_size = index

        return self.marginalized_size > 0

    def _pre_marginalization(self) -> None:
        for factor in self._factors:
            factor.evaluate()
            for parameter, size in zip(factor.parameter_blocks, factor.parameter_block_sizes):
                key = self._key(parameter)
                if key not in self._block_data:
                    data = np.array(parameter, dtype=float).reshape(-1)[:size].copy()
                    self._block_data[key] = data

    def _construct_equation(self) -> None:
        h = np.zeros((self._total_size, self._total_size))
        b = np.zeros(self._total_size)

        for factor in self._factors:
            placed = []
            for parameter, jacobian in zip(factor.parameter_blocks, factor.jacobians):
                key = self._key(parameter)
                start = self._block_index[key]
                size = self.local_size(self._block_size[key])
                placed.append((start, size, jacobian[:, :size]))

            for i, (row0, rows, jac_i) in enumerate(placed):
                for offset, (col0, cols, jac_j) in enumerate(placed[i:]):
                    h[row0:row0 + rows, col0:col0 + cols] += jac_i.T @ jac_j
                    if offset:
                        h[col0:col0 + cols, row0:row0 + rows] = h[row0:row0 + rows, col0:col0 + cols].T
                b[row0:row0 + rows] -= jac_i.T @ factor.residuals

        self._h0 = h
        self._b0 = b

    def _schur_elimination(self) -> None:
        m = self.marginalized_size
        h = self._h0
        hmm = 0.5 * (h[:m, :m] + h[:m, :m].T)
        hmr = h[:m, m:]
        hrm = h[m:, :m]
        hrr = h[m:, m:]
        bmm = self._b0[:m]
        brr = self._b0[m:]

        values, vectors = np.linalg.eigh(hmm)
        hmm_inv = vectors @ np.diag(_positive_inverse(values, self.EPS)) @ vectors.T

        self._hp = hrr - hrm @ hmm_inv @ hmr
        self._bp = brr - hrm @ hmm_inv @ bmm

    def _linearization(self) -> None:
        values, vectors = np.linalg.eigh(self._hp)
        s = np.where(values > self.EPS, values, 0.0)
        s_inv = _positive_inverse(values, self.EPS)

        self.linearized_jacobians = np.diag(np.sqrt(s)) @ vectors.T
        self.linearized_residuals = np.diag(np.sqrt(s_inv)) @ vectors.T @ -self._bp


class MarginalizationFactor(CostFunction):
    """Linearized prior on the remained parameter blocks of a marginalization."""

    def __init__(self, marg_info: MarginalizationInfo):
        super().__init__(marg_info.remained_size, marg_info.remained_block_size)
        self.marg_info = marg_info

    def evaluate(
        self, parameters: Sequence[np.ndarray], compute_jacobians: bool = True
    ) -> Tuple[np.ndarray, Optional[List[np.ndarray]]]:
        info = self.marg_info
        marginalized_size = info.marginalized_size
        remained_size = info.remained_size

        dx = np.zeros(remained_size)
        blocks = zip(parameters, info.remained_block_size, info.remained_block_index, info.remained_block_data)
        for parameter, size, start, x0 in blocks:
            index = start - marginalized_size
            x = np.asarray(parameter, dtype=float).reshape(-1)[:size]

            if size == POSE_GLOBAL_SIZE:
                dq = Quaternion(x0[6], x0[3], x0[4], x0[5]).inverse() * Quaternion(x[6], x[3], x[4], x[5])
                dx[index:index + 3] = x[:3] - x0[:3]
                sign = -2.0 if dq.w < 0 else 2.0
                dx[index + 3:index + 6] = sign * dq.vec()
            else:
                dx[index:index + size] = x - x0

        residuals = info.linearized_residuals + info.linearized_jacobians @ dx
        if not compute_jacobians:
            return residuals, None

        jacobians = []
        for size, start in zip(info.remained_block_size, info.remained_block_index):
            index = start - marginalized_size
            local = info.local_size(size)
            jacobian = np.zeros((remained_size, size))
            jacobian[:, :local] = info.linearized_jacobians[:, index:index + local]
            jacobians.append(jacobian)

        return residuals, jacobians