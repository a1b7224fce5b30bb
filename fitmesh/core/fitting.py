"""Surface-fitting penalty ``w * sum_{i in mask} |x_i - t_i|^2``."""
from __future__ import annotations

import numpy as np
from scipy import sparse

from .errors import SetupError


class FitWeight:
    """Mutable, non-negative fitting weight shared by reference.

    The adaptive controller owns the handle and changes ``value`` between
    solves; every ``FittingTerm`` holding it sees the change immediately.
    """

    def __init__(self, value: float):
        self._value = 0.0
        self.value = value

    @property
    def value(self) -> float:
        return self._value

    @value.setter
    def value(self, v: float) -> None:
        v = float(v)
        if not v >= 0.0:
            raise SetupError(f'fitting weight must be non-negative, got {v}')
        self._value = v

    def __float__(self):
        return self._value

    def __repr__(self):
        return f'FitWeight({self._value:g})'


class FittingTerm:
    """Penalty pulling masked nodes toward frozen targets.

    ``mask`` is ``(N,)`` bool, ``targets`` ``(N, dim)``; coordinate vectors
    are flat and node-major. Unmasked dofs contribute nothing to energy,
    gradient or Hessian.
    """

    def __init__(self, mask: np.ndarray, targets: np.ndarray, weight: FitWeight):
        mask = np.asarray(mask, dtype=bool)
        targets = np.asarray(targets, dtype=np.float64)
        if targets.ndim != 2 or targets.shape[0] != mask.shape[0]:
            raise SetupError('targets must be (N, dim) with one row per mask entry')
        self.mask = mask
        self.targets = targets
        self.weight = weight
        self.dim = targets.shape[1]
        self.n_dofs = targets.size
        self._dof_mask = np.repeat(mask, self.dim)
        self._t = targets.reshape(-1)

    @property
    def n_fit_nodes(self) -> int:
        return int(self.mask.sum())

    def residual(self, x) -> np.ndarray:
        """``x - t`` on masked dofs, zero elsewhere."""
        r = np.asarray(x, dtype=np.float64) - self._t
        r[~self._dof_mask] = 0.0
        return r

    def energy(self, x) -> float:
        r = self.residual(x)
        return self.weight.value * float(r @ r)

    def gradient(self, x) -> np.ndarray:
        return 2.0 * self.weight.value * self.residual(x)

    def hessian(self, x=None) -> sparse.csr_matrix:
        diag = np.where(self._dof_mask, 2.0 * self.weight.value, 0.0)
        return sparse.diags(diag, format='csr')

    def errors(self, x) -> np.ndarray:
        """Distance to target for each masked node, in mask order."""
        X = np.asarray(x, dtype=np.float64).reshape(-1, self.dim)
        return np.linalg.norm(X[self.mask] - self.targets[self.mask], axis=1)

    def max_error(self, x) -> float:
        err = self.errors(x)
        return float(err.max()) if err.size else 0.0


__all__ = ['FitWeight', 'FittingTerm']
