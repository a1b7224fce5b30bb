"""Newton driver with a validity-guarded Armijo line search.

The driver mutates the coordinate vector it is given. Each iteration solves
``H d = -g`` with the configured Krylov solver, falls back to a
Jacobi-scaled gradient step when ``d`` is not a descent direction, and
backtracks until the trial mesh is valid and the energy decrease satisfies
the Armijo condition. Non-convergence is a status, never an exception.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np
from scipy import sparse

from .config import NewtonConfig
from .constants import EPS_GRAD_NORM, EPS_STEP, EPS_TINY
from .errors import SetupError
from .linear_solver import LinearSolver
from .logging_utils import get_logger
from .stats import SolveStats

logger = get_logger('fitmesh.newton')


class NewtonStatus(enum.Enum):
    CONVERGED = 'converged'
    FIT_TOLERANCE_MET = 'fit_tolerance_met'
    MAX_ITER = 'max_iter'
    LINE_SEARCH_FAILED = 'line_search_failed'
    STALLED = 'stalled'


@dataclass
class NewtonResult:
    status: NewtonStatus
    iterations: int
    energy: float
    grad_norm: float
    fit_error: Optional[float] = None
    history: List[Dict[str, float]] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.status in (NewtonStatus.CONVERGED, NewtonStatus.FIT_TOLERANCE_MET)


def _descent_fallback(H, g: np.ndarray) -> np.ndarray:
    if sparse.issparse(H) or isinstance(H, np.ndarray):
        d = np.abs(np.asarray(H.diagonal(), dtype=np.float64))
        scale = np.where(d > EPS_TINY, 1.0 / np.maximum(d, EPS_TINY), 1.0)
        return -scale * g
    return -g


class NewtonSolver:
    """Minimise an objective from a starting iterate.

    Parameters
    ----------
    objective
        Provides ``energy``, ``gradient``, ``hessian`` and ``is_valid``. When it
        also has ``min_det_jacobian`` the value is recorded after every step.
    linear_solver : LinearSolver
        Used once per iteration for the correction system.
    config : NewtonConfig
        Tolerances, iteration cap, line-search settings and print level.
    fit_monitor : callable, optional
        ``x -> max fitting error``. Enables the fit-tolerance stop and the
        stall test.
    fit_tolerance : float, optional
        Stop as soon as ``fit_monitor(x) <= fit_tolerance``.
    stats : SolveStats, optional
        Shared counters; a fresh instance is created when omitted.
    """

    def __init__(self, objective, linear_solver: LinearSolver, config: Optional[NewtonConfig] = None,
                 fit_monitor: Optional[Callable[[np.ndarray], float]] = None,
                 fit_tolerance: Optional[float] = None, stats: Optional[SolveStats] = None):
        self.objective = objective
        self.linear_solver = linear_solver
        self.config = config or NewtonConfig()
        self.fit_monitor = fit_monitor
        self.fit_tolerance = fit_tolerance
        self.stats = stats if stats is not None else SolveStats()

    def _min_det(self, x) -> float:
        min_det = getattr(self.objective, 'min_det_jacobian', None)
        return np.nan if min_det is None else float(min_det(x))

    def _log(self, msg, *args):
        level = logging.INFO if self.config.print_level >= 1 else logging.DEBUG
        logger.log(level, msg, *args)

    def _line_search(self, x: np.ndarray, d: np.ndarray, energy: float, slope: float):
        """Backtrack from a unit step; return (alpha, energy) or (None, energy) on failure."""
        cfg = self.config
        x0 = x.copy()
        alpha = 1.0
        for _ in range(cfg.ls_max_iter):
            if alpha < EPS_STEP:
                break
            x[:] = x0 + alpha * d
            if not self.objective.is_valid(x):
                self.stats.validity_rejections += 1
                alpha *= 0.5
                continue
            trial = self.objective.energy(x)
            if np.isfinite(trial) and trial <= energy + cfg.ls_c1 * alpha * slope:
                return alpha, trial
            self.stats.armijo_rejections += 1
            alpha *= 0.5
        x[:] = x0
        return None, energy

    def solve(self, x: np.ndarray, max_iter: Optional[int] = None) -> NewtonResult:
        cfg = self.config
        cap = cfg.max_iter if max_iter is None else int(max_iter)
        t_start = time.perf_counter()
        self.stats.newton_solves += 1

        energy = self.objective.energy(x)
        if not np.isfinite(energy):
            raise SetupError('Newton started from an invalid iterate (non-positive Jacobian)')
        g = self.objective.gradient(x)
        g0 = float(np.linalg.norm(g))
        gtol = max(cfg.rel_tol * g0, cfg.abs_tol, EPS_GRAD_NORM)
        fit_err = self.fit_monitor(x) if self.fit_monitor is not None else None
        history: List[Dict[str, float]] = []
        status = NewtonStatus.MAX_ITER
        it = 0
        self._log('Newton start: energy=%.10e |g|=%.3e fit_error=%s', energy, g0,
                  'n/a' if fit_err is None else f'{fit_err:.3e}')

        while True:
            gnorm = float(np.linalg.norm(g))
            if gnorm <= gtol:
                status = NewtonStatus.CONVERGED
                break
            if (fit_err is not None and self.fit_tolerance is not None
                    and fit_err <= self.fit_tolerance):
                status = NewtonStatus.FIT_TOLERANCE_MET
                break
            if it >= cap:
                status = NewtonStatus.MAX_ITER
                break

            t0 = time.perf_counter()
            H = self.objective.hessian(x)
            t1 = time.perf_counter()
            lin = self.linear_solver.solve(H, -g)
            t2 = time.perf_counter()
            self.stats.time_assembly += t1 - t0
            self.stats.time_linear += t2 - t1
            self.stats.linear_solves += 1
            self.stats.linear_iterations += lin.iterations
            if not lin.converged:
                self.stats.linear_failures += 1

            d = lin.x
            slope = float(g @ d) if np.all(np.isfinite(d)) else np.nan
            if not np.isfinite(slope) or slope >= -EPS_TINY * gnorm * float(np.linalg.norm(d)):
                self.stats.descent_fallbacks += 1
                logger.debug('Newton direction is not a descent direction; using scaled gradient')
                d = _descent_fallback(H, g)
                slope = float(g @ d)

            alpha, new_energy = self._line_search(x, d, energy, slope)
            self.stats.time_line_search += time.perf_counter() - t2
            if alpha is None:
                self.stats.line_search_failures += 1
                status = NewtonStatus.LINE_SEARCH_FAILED
                logger.warning('line search failed at Newton iteration %d (energy %.10e)', it + 1, energy)
                break

            it += 1
            self.stats.newton_iterations += 1
            prev_energy, prev_fit = energy, fit_err
            energy = new_energy
            g = self.objective.gradient(x)
            fit_err = self.fit_monitor(x) if self.fit_monitor is not None else None
            history.append({
                'energy': energy,
                'grad_norm': float(np.linalg.norm(g)),
                'fit_error': np.nan if fit_err is None else fit_err,
                'step': alpha,
                'linear_iterations': lin.iterations,
                'min_det_jacobian': self._min_det(x),
            })
            self._log('Newton iter %3d: energy=%.10e |g|=%.3e step=%.2e lin_it=%d fit_error=%s',
                      it, energy, history[-1]['grad_norm'], alpha, lin.iterations,
                      'n/a' if fit_err is None else f'{fit_err:.3e}')

            if fit_err is not None and prev_fit is not None and prev_fit > 0.0:
                fit_drop = (prev_fit - fit_err) / prev_fit
                energy_drop = (prev_energy - energy) / max(abs(prev_energy), EPS_TINY)
                if fit_drop < cfg.stall_rtol and energy_drop < cfg.stall_rtol:
                    status = NewtonStatus.STALLED
                    break

        self.stats.time_total += time.perf_counter() - t_start
        gnorm = float(np.linalg.norm(g))
        self._log('Newton finished: status=%s iterations=%d energy=%.10e |g|=%.3e',
                  status.value, it, energy, gnorm)
        return NewtonResult(status, it, energy, gnorm, fit_err, history)


__all__ = ['NewtonStatus', 'NewtonResult', 'NewtonSolver']
