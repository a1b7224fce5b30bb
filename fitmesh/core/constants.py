"""Central numerical tolerances and solver defaults.

This module centralizes tiny numeric thresholds used across the codebase so
they can be tuned consistently and referenced without scattering literals.
"""
from __future__ import annotations

# Geometry tolerances
EPS_DET: float = 1e-12            # minimum positive Jacobian determinant for a valid element
EPS_VOLUME: float = 1e-15         # near-degenerate simplex volume threshold
EPS_TINY: float = 1e-12           # generic relative tolerance (area/volume comparisons)
EPS_DIVISION: float = 1e-20       # denominator guard for angle cosines

# Solver floors
EPS_GRAD_NORM: float = 1e-13      # absolute gradient norm below which Newton stops
EPS_STEP: float = 1e-9            # smallest line-search scale before giving up

# Defaults mirrored by the config dataclasses
DEFAULT_LINEAR_RTOL: float = 1e-12
DEFAULT_NEWTON_RTOL: float = 1e-10
DEFAULT_ARMIJO_C1: float = 1e-4
DEFAULT_FIT_WEIGHT: float = 100.0
DEFAULT_FIT_TOLERANCE: float = 1e-2
DEFAULT_MAX_WEIGHT: float = 1e12

__all__ = [
    'EPS_DET',
    'EPS_VOLUME',
    'EPS_TINY',
    'EPS_DIVISION',
    'EPS_GRAD_NORM',
    'EPS_STEP',
    'DEFAULT_LINEAR_RTOL',
    'DEFAULT_NEWTON_RTOL',
    'DEFAULT_ARMIJO_C1',
    'DEFAULT_FIT_WEIGHT',
    'DEFAULT_FIT_TOLERANCE',
    'DEFAULT_MAX_WEIGHT',
]
