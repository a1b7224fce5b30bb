"""Configuration objects for a fitmesh run.

Each solver component reads its own dataclass section; ``FitConfig`` bundles
them together and can be round-tripped through plain dictionaries / JSON.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

from .constants import (
    DEFAULT_ARMIJO_C1,
    DEFAULT_FIT_TOLERANCE,
    DEFAULT_FIT_WEIGHT,
    DEFAULT_LINEAR_RTOL,
    DEFAULT_MAX_WEIGHT,
    DEFAULT_NEWTON_RTOL,
)
from .errors import SetupError


@dataclass
class MeshConfig:
    source: str = 'square:4'
    refine_serial: int = 2
    order: int = 2
    quad_order: int = 5


@dataclass
class SelectionConfig:
    """Node selection and target assignment.

    - fit_attribute: boundary attribute whose nodes are fitted.
    - mark_all_boundary: also mark every other boundary node; those keep their
      current position as target and are therefore held in place.
    - target_rule: name of a rule registered in ``targets.TARGET_RULES``.
    - require_fit_nodes: raise SetupError when no node gets selected.
    """
    fit_attribute: int = 2
    mark_all_boundary: bool = False
    target_rule: str = 'sinusoid'
    require_fit_nodes: bool = True


@dataclass
class QualityConfig:
    metric: str = 'shape'
    target: str = 'ideal_shape_unit_size'
    partitions: int = 1
    workers: Optional[int] = None


@dataclass
class LinearSolverConfig:
    method: str = 'minres'
    max_iter: int = 100
    rel_tol: float = DEFAULT_LINEAR_RTOL
    abs_tol: float = 0.0
    preconditioner: str = 'jacobi'


@dataclass
class NewtonConfig:
    # max_iter is the Newton iteration budget for the whole adaptive run
    max_iter: int = 200
    rel_tol: float = DEFAULT_NEWTON_RTOL
    abs_tol: float = 0.0
    print_level: int = 1
    ls_max_iter: int = 30
    ls_c1: float = DEFAULT_ARMIJO_C1
    stall_rtol: float = 1e-3


@dataclass
class AdaptiveConfig:
    enabled: bool = True
    initial_weight: float = DEFAULT_FIT_WEIGHT
    tolerance: float = DEFAULT_FIT_TOLERANCE
    growth_factor: float = 10.0
    max_weight_updates: int = 10
    max_weight: float = DEFAULT_MAX_WEIGHT


@dataclass
class OutputConfig:
    vtk_out: Optional[str] = None
    plot_out: Optional[str] = None
    targets_plot_out: Optional[str] = None


_SECTIONS = {
    'mesh': MeshConfig,
    'selection': SelectionConfig,
    'quality': QualityConfig,
    'linear': LinearSolverConfig,
    'newton': NewtonConfig,
    'adaptive': AdaptiveConfig,
    'output': OutputConfig,
}


@dataclass
class FitConfig:
    """Unified configuration.

    Attributes
    ----------
    mesh, selection, quality, linear, newton, adaptive, output
        Per-component sections.
    extras : dict
        Free-form dictionary for user extensions; carried through untouched.
    """
    mesh: MeshConfig = field(default_factory=MeshConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    linear: LinearSolverConfig = field(default_factory=LinearSolverConfig)
    newton: NewtonConfig = field(default_factory=NewtonConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FitConfig':
        cfg = cls()
        for key, value in (data or {}).items():
            if key == 'extras':
                cfg.extras = dict(value or {})
                continue
            section_cls = _SECTIONS.get(key)
            if section_cls is None:
                raise SetupError(f"unknown config section '{key}'")
            known = {f.name for f in fields(section_cls)}
            unknown = set(value) - known
            if unknown:
                raise SetupError(f"unknown keys in section '{key}': {sorted(unknown)}")
            setattr(cfg, key, section_cls(**value))
        return cfg

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> 'FitConfig':
        """Check value ranges; raise SetupError on the first problem found."""
        m, q, lin, n, a = self.mesh, self.quality, self.linear, self.newton, self.adaptive
        checks = [
            (m.refine_serial >= 0, 'mesh.refine_serial must be >= 0'),
            (m.order in (1, 2), 'mesh.order must be 1 or 2'),
            (m.quad_order >= 1, 'mesh.quad_order must be >= 1'),
            (q.partitions >= 1, 'quality.partitions must be >= 1'),
            (q.workers is None or q.workers >= 1, 'quality.workers must be >= 1'),
            (lin.method in ('minres', 'cg', 'gmres'), f'unknown linear.method {lin.method!r}'),
            (lin.preconditioner in ('jacobi', 'none'), f'unknown linear.preconditioner {lin.preconditioner!r}'),
            (lin.max_iter >= 1, 'linear.max_iter must be >= 1'),
            (lin.rel_tol >= 0.0 and lin.abs_tol >= 0.0, 'linear tolerances must be >= 0'),
            (n.max_iter >= 1, 'newton.max_iter must be >= 1'),
            (n.rel_tol >= 0.0 and n.abs_tol >= 0.0, 'newton tolerances must be >= 0'),
            (n.ls_max_iter >= 1, 'newton.ls_max_iter must be >= 1'),
            (0.0 < n.ls_c1 < 1.0, 'newton.ls_c1 must be in (0, 1)'),
            (n.stall_rtol >= 0.0, 'newton.stall_rtol must be >= 0'),
            (a.initial_weight >= 0.0, 'adaptive.initial_weight must be >= 0'),
            (a.tolerance > 0.0, 'adaptive.tolerance must be > 0'),
            (a.growth_factor > 1.0, 'adaptive.growth_factor must be > 1'),
            (a.max_weight_updates >= 0, 'adaptive.max_weight_updates must be >= 0'),
            (a.max_weight >= a.initial_weight, 'adaptive.max_weight must be >= initial_weight'),
        ]
        for ok, msg in checks:
            if not ok:
                raise SetupError(msg)
        return self


def load_config(path: str) -> FitConfig:
    """Read a JSON configuration file into a FitConfig."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except OSError as exc:
        raise SetupError(f'cannot read config file {path}: {exc}') from exc
    except json.JSONDecodeError as exc:
        raise SetupError(f'config file {path} is not valid JSON: {exc}') from exc
    if not isinstance(data, dict):
        raise SetupError(f'config file {path} must contain a JSON object')
    return FitConfig.from_dict(data)


__all__ = [
    'MeshConfig', 'SelectionConfig', 'QualityConfig', 'LinearSolverConfig',
    'NewtonConfig', 'AdaptiveConfig', 'OutputConfig', 'FitConfig', 'load_config',
]
