"""Target assignment for fitted nodes.

A target rule maps ``(position, attribute)`` to a target position. Rules are
evaluated once, on the original node positions, so the target geometry stays
fixed while the mesh deforms.
"""
from __future__ import annotations

import math
from typing import Callable, Dict

import numpy as np

from .errors import SetupError
from .logging_utils import get_logger

logger = get_logger('fitmesh.targets')

TargetRule = Callable[[np.ndarray, int], np.ndarray]


class IdentityRule:
    """Target equals the position; the node is held where it is."""

    def __call__(self, position, attribute):
        return np.array(position, dtype=np.float64)


class SinusoidalProfileRule:
    """Piecewise sinusoidal profile along one axis.

    Only nodes whose attribute is ``fit_attribute`` move. Nodes below
    ``midpoint`` on ``axis`` go to ``amplitude*sin(4 pi x)*cos(pi z)``; nodes
    above it go to ``offset + amplitude*sin(2 pi x)`` left of the midpoint and
    ``offset + amplitude*sin(2 pi (x + 0.5))`` right of it.
    """

    def __init__(self, fit_attribute: int = 2, axis: int = 1, midpoint: float = 0.5,
                 amplitude: float = 0.1, offset: float = 1.0):
        if axis == 0:
            raise SetupError('SinusoidalProfileRule moves a non-horizontal axis (axis >= 1)')
        self.fit_attribute = fit_attribute
        self.axis = axis
        self.midpoint = midpoint
        self.amplitude = amplitude
        self.offset = offset

    def __call__(self, position, attribute):
        p = np.array(position, dtype=np.float64)
        if attribute != self.fit_attribute:
            return p
        x = p[0]
        z = p[2] if p.shape[0] > 2 else 0.0
        if p[self.axis] < self.midpoint:
            p[self.axis] = self.amplitude * math.sin(4.0 * math.pi * x) * math.cos(math.pi * z)
        elif x < self.midpoint:
            p[self.axis] = self.offset + self.amplitude * math.sin(2.0 * math.pi * x)
        else:
            p[self.axis] = self.offset + self.amplitude * math.sin(2.0 * math.pi * (x + 0.5))
        return p

    def __repr__(self):
        return (f'SinusoidalProfileRule(fit_attribute={self.fit_attribute}, axis={self.axis}, '
                f'midpoint={self.midpoint}, amplitude={self.amplitude}, offset={self.offset})')


class FunctionRule:
    """Wrap a plain ``fn(position, attribute) -> target`` callable."""

    def __init__(self, fn: TargetRule):
        self.fn = fn

    def __call__(self, position, attribute):
        return np.asarray(self.fn(np.array(position, dtype=np.float64), attribute), dtype=np.float64)


TARGET_RULES: Dict[str, Callable[..., TargetRule]] = {
    'sinusoid': lambda fit_attribute: SinusoidalProfileRule(fit_attribute=fit_attribute),
    'identity': lambda fit_attribute: IdentityRule(),
}


def make_target_rule(name: str, fit_attribute: int = 2) -> TargetRule:
    try:
        factory = TARGET_RULES[name]
    except KeyError:
        raise SetupError(f"unknown target rule {name!r}; choose from {sorted(TARGET_RULES)}") from None
    return factory(fit_attribute)


def assign_targets(original: np.ndarray, mask: np.ndarray, node_attributes: np.ndarray,
                   rule: TargetRule) -> np.ndarray:
    """Frozen target positions, shape (N, dim).

    Unmarked nodes get an exact copy of their original position; marked nodes
    get ``rule(original[i], node_attributes[i])``.
    """
    original = np.asarray(original, dtype=np.float64)
    mask = np.asarray(mask, dtype=bool)
    if mask.shape[0] != original.shape[0]:
        raise SetupError('mask and positions disagree on the number of nodes')
    targets = original.copy()
    for i in np.flatnonzero(mask):
        t = np.asarray(rule(original[i].copy(), int(node_attributes[i])), dtype=np.float64)
        if t.shape != original[i].shape:
            raise SetupError(f'target rule returned shape {t.shape} for node {i}, '
                             f'expected {original[i].shape}')
        targets[i] = t
    targets.setflags(write=False)
    moved = np.linalg.norm(targets - original, axis=1)
    logger.info('assigned targets for %d nodes (max displacement %.3e)',
                int(mask.sum()), float(moved.max()) if moved.size else 0.0)
    return targets


__all__ = [
    'TargetRule', 'IdentityRule', 'SinusoidalProfileRule', 'FunctionRule', 'TARGET_RULES',
    'make_target_rule', 'assign_targets',
]
