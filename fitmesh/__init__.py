"""Public package API for the fitmesh surface-fitting toolkit.

This facade provides a stable, flatter import surface on top of the
internal implementation package ``fitmesh.core`` while deferring the
matplotlib-backed plotting module until first use to keep
``import fitmesh`` fast.

Example
-------
    from fitmesh import FitConfig, run_fit

    cfg = FitConfig()
    cfg.mesh.source = 'square:8'
    result = run_fit(cfg)

The deeper modules (``fitmesh.core.*``) are considered internal and may
change; rely on this layer for public symbols.
"""
from importlib import import_module as _imp
import logging as _logging

try:  # Python 3.8+ runtime version export
    from importlib.metadata import version as _pkg_version, PackageNotFoundError as _PNF
    __version__ = _pkg_version("fitmesh")  # populated when installed
except _PNF:  # pragma: no cover - source checkout without install
    __version__ = "0.0.0+dev"

_logging.getLogger(__name__).addHandler(_logging.NullHandler())

# Eager light-weight submodules
_const = _imp('fitmesh.core.constants')
_errors = _imp('fitmesh.core.errors')
_config = _imp('fitmesh.core.config')
_mesh = _imp('fitmesh.core.mesh')
_io = _imp('fitmesh.core.io')
_selection = _imp('fitmesh.core.selection')
_targets = _imp('fitmesh.core.targets')
_fitting = _imp('fitmesh.core.fitting')
_objective = _imp('fitmesh.core.objective')
_metrics = _imp('fitmesh.core.metrics')
_qe = _imp('fitmesh.core.quality_energy')
_newton = _imp('fitmesh.core.newton')
_adaptive = _imp('fitmesh.core.adaptive')
_driver = _imp('fitmesh.core.fit_driver')
_stats = _imp('fitmesh.core.stats')


def _lazy_module(mod_name):
    class _ModuleProxy:
        __slots__ = ('_m',)
        def _load(self):  # type: ignore
            try:
                return self._m  # type: ignore
            except AttributeError:
                self._m = _imp(mod_name)  # type: ignore
                return self._m  # type: ignore
        def __getattr__(self, item):  # type: ignore
            if item == '_m':  # unset slot; let _load import the module
                raise AttributeError(item)
            return getattr(self._load(), item)
        def __dir__(self):  # type: ignore
            return dir(self._load())
    return _ModuleProxy()


# Lazily loaded matplotlib-backed module
visualization = _lazy_module('fitmesh.core.visualization')

# Errors and configuration
FitMeshError = _errors.FitMeshError
SetupError = _errors.SetupError
FitConfig = _config.FitConfig
load_config = _config.load_config

# Mesh data model and I/O
Mesh = _mesh.Mesh
box_mesh = _mesh.box_mesh
uniform_refinement = _mesh.uniform_refinement
elevate_order = _mesh.elevate_order
load_mesh = _io.load_mesh
read_msh = _io.read_msh
read_mfem_mesh = _io.read_mfem_mesh
write_vtk = _io.write_vtk

# Problem construction
select_fit_nodes = _selection.select_fit_nodes
assign_targets = _targets.assign_targets
SinusoidalProfileRule = _targets.SinusoidalProfileRule
FunctionRule = _targets.FunctionRule
FitWeight = _fitting.FitWeight
FittingTerm = _fitting.FittingTerm
CompositeObjective = _objective.CompositeObjective
QualityTerm = _qe.QualityTerm
make_metric = _metrics.make_metric

# Solve
NewtonSolver = _newton.NewtonSolver
NewtonStatus = _newton.NewtonStatus
AdaptiveWeightController = _adaptive.AdaptiveWeightController
FitState = _adaptive.FitState
run_fit = _driver.run_fit
setup_fit_problem = _driver.setup_fit_problem

# Namespace submodules for exploratory users
constants = _const
config = _config
io = _io
stats = _stats

__all__ = [
    '__version__',
    'FitMeshError', 'SetupError', 'FitConfig', 'load_config',
    'Mesh', 'box_mesh', 'uniform_refinement', 'elevate_order',
    'load_mesh', 'read_msh', 'read_mfem_mesh', 'write_vtk',
    'select_fit_nodes', 'assign_targets', 'SinusoidalProfileRule', 'FunctionRule',
    'FitWeight', 'FittingTerm', 'CompositeObjective', 'QualityTerm', 'make_metric',
    'NewtonSolver', 'NewtonStatus', 'AdaptiveWeightController', 'FitState',
    'run_fit', 'setup_fit_problem',
    'visualization', 'constants', 'config', 'io', 'stats',
]
