"""Adaptive fitting-weight controller.

Runs the Newton driver, checks the maximum fitting error and, while it is
above tolerance, multiplies the fitting weight by a growth factor and
re-solves from the current positions. The loop always terminates: every
escalation consumes one of ``max_weight_updates`` and the Newton iteration
budget is shared across all solves.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from .config import AdaptiveConfig
from .fitting import FitWeight
from .logging_utils import get_logger
from .newton import NewtonResult
from .stats import SolveStats

logger = get_logger('fitmesh.adaptive')


class FitState(enum.Enum):
    SOLVING = 'solving'
    CHECK_ERROR = 'check_error'
    INCREASE_WEIGHT = 'increase_weight'
    CONVERGED = 'converged'
    ABORTED = 'aborted'


@dataclass
class FitReport:
    state: FitState
    weight: float
    max_error: float
    total_iterations: int
    weight_history: List[float] = field(default_factory=list)
    error_history: List[float] = field(default_factory=list)
    solves: List[NewtonResult] = field(default_factory=list)
    message: str = ''

    @property
    def converged(self) -> bool:
        return self.state is FitState.CONVERGED

    @property
    def weight_updates(self) -> int:
        return max(len(self.weight_history) - 1, 0)


class AdaptiveWeightController:
    """State machine SOLVING -> CHECK_ERROR -> (CONVERGED | INCREASE_WEIGHT | ABORTED).

    Parameters
    ----------
    solver
        Anything with ``solve(x, max_iter=...) -> NewtonResult``.
    weight : FitWeight
        Handle read live by the fitting term; owned by this controller.
    error_fn : callable
        ``x -> max fitting error`` over the fit mask.
    config : AdaptiveConfig
    max_total_iter : int
        Newton iteration budget for the whole run.
    """

    def __init__(self, solver, weight: FitWeight, error_fn: Callable[[np.ndarray], float],
                 config: Optional[AdaptiveConfig] = None, max_total_iter: int = 200,
                 stats: Optional[SolveStats] = None):
        self.solver = solver
        self.weight = weight
        self.error_fn = error_fn
        self.config = config or AdaptiveConfig()
        self.max_total_iter = int(max_total_iter)
        self.stats = stats if stats is not None else SolveStats()
        self.state = FitState.SOLVING

    def _abort_reason(self, used: int, updates: int) -> Optional[str]:
        cfg = self.config
        if not cfg.enabled:
            return 'adaptive weighting disabled'
        if updates >= cfg.max_weight_updates:
            return f'reached max_weight_updates={cfg.max_weight_updates}'
        if self.weight.value * cfg.growth_factor > cfg.max_weight:
            return f'next weight would exceed max_weight={cfg.max_weight:g}'
        if used >= self.max_total_iter:
            return f'Newton iteration budget of {self.max_total_iter} exhausted'
        return None

    def run(self, x: np.ndarray) -> FitReport:
        cfg = self.config
        self.weight.value = cfg.initial_weight
        self.state = FitState.SOLVING
        weights = [self.weight.value]
        errors: List[float] = []
        solves: List[NewtonResult] = []
        used = 0
        updates = 0
        err = float('nan')
        message = ''

        while self.state not in (FitState.CONVERGED, FitState.ABORTED):
            if self.state is FitState.SOLVING:
                result = self.solver.solve(x, max_iter=max(self.max_total_iter - used, 0))
                solves.append(result)
                used += result.iterations
                if not result.converged:
                    logger.warning('Newton solve at weight %.3e ended with status %s after %d iterations',
                                   self.weight.value, result.status.value, result.iterations)
                self.state = FitState.CHECK_ERROR

            elif self.state is FitState.CHECK_ERROR:
                err = float(self.error_fn(x))
                errors.append(err)
                if err <= cfg.tolerance:
                    self.state = FitState.CONVERGED
                    message = f'max fit error {err:.3e} <= tolerance {cfg.tolerance:.3e}'
                    continue
                reason = self._abort_reason(used, updates)
                if reason is not None:
                    self.state = FitState.ABORTED
                    message = (f'did not meet tolerance {cfg.tolerance:.3e}: {reason}; '
                               f'best max fit error {err:.3e}')
                    logger.warning('fit aborted: %s', message)
                else:
                    self.state = FitState.INCREASE_WEIGHT

            elif self.state is FitState.INCREASE_WEIGHT:
                old = self.weight.value
                self.weight.value = old * cfg.growth_factor
                updates += 1
                self.stats.weight_updates += 1
                weights.append(self.weight.value)
                logger.info('max fit error %.3e > %.3e: fitting weight %.3e -> %.3e',
                            err, cfg.tolerance, old, self.weight.value)
                self.state = FitState.SOLVING

        if self.state is FitState.CONVERGED:
            logger.info('fit converged: %s (weight %.3e, %d Newton iterations)',
                        message, self.weight.value, used)
        return FitReport(self.state, self.weight.value, err, used, weights, errors, solves, message)


__all__ = ['FitState', 'FitReport', 'AdaptiveWeightController']
