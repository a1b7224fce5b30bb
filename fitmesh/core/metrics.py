"""Shape-quality metrics on the target-normalised Jacobian ``T = A W^-1``.

All methods are batched over leading axes: ``T`` has shape ``(..., d, d)``.
First derivatives come back as ``(..., d, d)`` and second derivatives as the
4-index tensor ``(..., d, d, d, d)`` with ``H[..., i, j, k, l] =
d^2 mu / dT_ij dT_kl``.
"""
from __future__ import annotations

from typing import Protocol

import numpy as np

from .errors import SetupError


def _levi_civita(dim: int) -> np.ndarray:
    if dim == 2:
        return np.array([[0.0, 1.0], [-1.0, 0.0]])
    eps = np.zeros((3, 3, 3))
    for (i, j, k), s in (((0, 1, 2), 1.0), ((1, 2, 0), 1.0), ((2, 0, 1), 1.0),
                         ((0, 2, 1), -1.0), ((2, 1, 0), -1.0), ((1, 0, 2), -1.0)):
        eps[i, j, k] = s
    return eps


class QualityMetric(Protocol):
    dim: int

    def evaluate(self, T: np.ndarray) -> np.ndarray: ...

    def first_derivative(self, T: np.ndarray) -> np.ndarray: ...

    def second_derivative(self, T: np.ndarray) -> np.ndarray: ...


class _DeterminantMixin:
    dim: int
    _eps: np.ndarray

    def cofactor(self, T: np.ndarray) -> np.ndarray:
        """d det(T) / dT."""
        e = self._eps
        if self.dim == 2:
            return np.einsum('il,jn,...ln->...ij', e, e, T)
        return 0.5 * np.einsum('ilm,jno,...ln,...mo->...ij', e, e, T, T, optimize=True)

    def cofactor_derivative(self, T: np.ndarray) -> np.ndarray:
        """d^2 det(T) / dT_ij dT_kl."""
        e = self._eps
        if self.dim == 2:
            d2 = np.einsum('ik,jl->ijkl', e, e)
            return np.broadcast_to(d2, T.shape[:-2] + d2.shape)
        return np.einsum('ikm,jlo,...mo->...ijkl', e, e, T, optimize=True)


class PowerShapeMetric(_DeterminantMixin):
    """``mu(T) = scale * |T|_F^2 * det(T)^(-power) - 1``.

    Minimal (zero) exactly when ``T`` is a scaled rotation. Only defined for
    ``det(T) > 0``; ``evaluate`` returns ``inf`` elsewhere.
    """

    def __init__(self, dim: int, scale: float, power: float, name: str = 'shape'):
        if dim not in (2, 3):
            raise SetupError(f'shape metric needs dim 2 or 3, got {dim}')
        self.dim = dim
        self.scale = float(scale)
        self.power = float(power)
        self.name = name
        self._eps = _levi_civita(dim)

    def evaluate(self, T: np.ndarray) -> np.ndarray:
        T = np.asarray(T, dtype=np.float64)
        f = np.sum(T * T, axis=(-2, -1))
        tau = np.linalg.det(T)
        out = np.full(tau.shape, np.inf)
        ok = tau > 0.0
        out[ok] = self.scale * f[ok] * tau[ok] ** (-self.power) - 1.0
        return out

    def first_derivative(self, T: np.ndarray) -> np.ndarray:
        T = np.asarray(T, dtype=np.float64)
        c, p = self.scale, self.power
        f = np.sum(T * T, axis=(-2, -1))[..., None, None]
        tau = np.linalg.det(T)[..., None, None]
        cof = self.cofactor(T)
        return c * (tau ** -p * 2.0 * T - p * f * tau ** (-p - 1.0) * cof)

    def second_derivative(self, T: np.ndarray) -> np.ndarray:
        T = np.asarray(T, dtype=np.float64)
        c, p, d = self.scale, self.power, self.dim
        f = np.sum(T * T, axis=(-2, -1))[..., None, None, None, None]
        tau = np.linalg.det(T)[..., None, None, None, None]
        cof = self.cofactor(T)
        eye = np.eye(d)
        d2f = 2.0 * np.einsum('ik,jl->ijkl', eye, eye)
        df_dtau = 2.0 * (np.einsum('...ij,...kl->...ijkl', T, cof)
                         + np.einsum('...ij,...kl->...ijkl', cof, T))
        dtau_dtau = np.einsum('...ij,...kl->...ijkl', cof, cof)
        d2tau = self.cofactor_derivative(T)
        return c * (tau ** -p * d2f
                    - p * tau ** (-p - 1.0) * df_dtau
                    + p * (p + 1.0) * f * tau ** (-p - 2.0) * dtau_dtau
                    - p * f * tau ** (-p - 1.0) * d2tau)

    def __repr__(self):
        return f'PowerShapeMetric(dim={self.dim}, scale={self.scale:g}, power={self.power:g})'


class ShapeMetric2D(PowerShapeMetric):
    """``|T|^2 / (2 det T) - 1``."""

    def __init__(self):
        super().__init__(2, 0.5, 1.0, name='shape2d')


class ShapeMetric3D(PowerShapeMetric):
    """``|T|^2 / (3 det(T)^(2/3)) - 1``."""

    def __init__(self):
        super().__init__(3, 1.0 / 3.0, 2.0 / 3.0, name='shape3d')


class ConditionShapeMetric3D(_DeterminantMixin):
    """``|T|^2 |T^-1|^2 / 9 - 1``, the squared condition number of ``T`` over 9.

    Written as ``|T|^2 |adj T|^2 / (9 det(T)^2) - 1`` so the derivatives only
    need the cofactor and its derivatives. Like the power metrics it is
    ``inf`` for ``det(T) <= 0``.
    """

    def __init__(self):
        self.dim = 3
        self.name = 'condition3d'
        self._eps = _levi_civita(3)

    def evaluate(self, T: np.ndarray) -> np.ndarray:
        T = np.asarray(T, dtype=np.float64)
        f = np.sum(T * T, axis=(-2, -1))
        cof = self.cofactor(T)
        g = np.sum(cof * cof, axis=(-2, -1))
        tau = np.linalg.det(T)
        out = np.full(tau.shape, np.inf)
        ok = tau > 0.0
        out[ok] = f[ok] * g[ok] / (9.0 * tau[ok] ** 2) - 1.0
        return out

    def _parts(self, T):
        f = np.sum(T * T, axis=(-2, -1))
        cof = self.cofactor(T)
        g = np.sum(cof * cof, axis=(-2, -1))
        D = self.cofactor_derivative(T)
        dg = 2.0 * np.einsum('...ab,...abkl->...kl', cof, D)
        return f, cof, g, D, dg

    def first_derivative(self, T: np.ndarray) -> np.ndarray:
        T = np.asarray(T, dtype=np.float64)
        f, cof, g, _, dg = self._parts(T)
        tau = np.linalg.det(T)[..., None, None]
        f = f[..., None, None]
        g = g[..., None, None]
        dh = 2.0 * g * T + f * dg
        return (dh / tau ** 2 - 2.0 * f * g * cof / tau ** 3) / 9.0

    def second_derivative(self, T: np.ndarray) -> np.ndarray:
        T = np.asarray(T, dtype=np.float64)
        f, cof, g, D, dg = self._parts(T)
        e = self._eps
        eye = np.eye(3)
        outer = '...ij,...kl->...ijkl'
        d2f = 2.0 * np.einsum('ik,jl->ijkl', eye, eye)
        d2g = 2.0 * (np.einsum('...abij,...abkl->...ijkl', D, D, optimize=True)
                     + np.einsum('aik,bjl,...ab->...ijkl', e, e, cof, optimize=True))
        f2, g2 = f[..., None, None], g[..., None, None]
        f4, g4 = f[..., None, None, None, None], g[..., None, None, None, None]
        dh = 2.0 * g2 * T + f2 * dg
        h = f4 * g4
        d2h = (g4 * d2f + 2.0 * np.einsum(outer, T, dg) + 2.0 * np.einsum(outer, dg, T)
               + f4 * d2g)
        tau = np.linalg.det(T)[..., None, None, None, None]
        return (d2h / tau ** 2
                - 2.0 * (np.einsum(outer, dh, cof) + np.einsum(outer, cof, dh)) / tau ** 3
                + 6.0 * h * np.einsum(outer, cof, cof) / tau ** 4
                - 2.0 * h * D / tau ** 3) / 9.0

    def __repr__(self):
        return 'ConditionShapeMetric3D()'


def make_metric(name: str, dim: int) -> QualityMetric:
    """Build a metric by name; ``shape`` is the default shape metric of ``dim``."""
    if name == 'shape':
        return ShapeMetric2D() if dim == 2 else ConditionShapeMetric3D()
    if name == 'shape2d' and dim == 2:
        return ShapeMetric2D()
    if name == 'shape3d' and dim == 3:
        return ShapeMetric3D()
    if name == 'condition3d' and dim == 3:
        return ConditionShapeMetric3D()
    raise SetupError(f'unknown quality metric {name!r} for dim={dim}')


__all__ = ['QualityMetric', 'PowerShapeMetric', 'ShapeMetric2D', 'ShapeMetric3D',
           'ConditionShapeMetric3D', 'make_metric']
