"""Exception types raised by fitmesh.

Only setup problems are raised. Solver non-convergence, linear-solve failures
and rejected (inverting) steps are reported through result objects and
counters instead.
"""
from __future__ import annotations


class FitMeshError(Exception):
    """Base class for fitmesh errors."""


class SetupError(FitMeshError, ValueError):
    """Invalid mesh, node selection or configuration detected before solving."""


__all__ = ['FitMeshError', 'SetupError']
