"""Mesh surface-fitting driver.

Builds a fitting problem from a configuration (mesh, fit mask, frozen targets,
shape-quality and fitting terms), runs the adaptive-weight Newton solve on the
live mesh coordinates and writes the requested outputs.

Example::

    python -m fitmesh.core.fit_driver -m square:4 -rs 2 -o 2 --fit-tol 1e-2

Exit codes: 0 converged, 1 setup error, 2 fit aborted before meeting the
tolerance.
"""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from .adaptive import AdaptiveWeightController, FitReport
from .config import FitConfig, MeshConfig, load_config
from .errors import SetupError
from .fitting import FittingTerm, FitWeight
from .io import load_mesh, write_vtk
from .linear_solver import LinearSolver
from .logging_utils import configure_logging, get_logger
from .mesh import Mesh, elevate_order, uniform_refinement
from .metrics import make_metric
from .newton import NewtonSolver
from .objective import CompositeObjective
from .quality import format_quality, quality_summary
from .quality_energy import QualityTerm
from .selection import boundary_nodes, fit_marker_field, node_boundary_attributes, select_fit_nodes
from .stats import SolveStats, format_stats_table
from .targets import TargetRule, assign_targets, make_target_rule

logger = get_logger('fitmesh.driver')


@dataclass
class FitProblem:
    mesh: Mesh
    original: np.ndarray
    mask: np.ndarray
    node_attributes: np.ndarray
    targets: np.ndarray
    weight: FitWeight
    fitting: FittingTerm
    quality: QualityTerm
    objective: CompositeObjective


@dataclass
class FitResult:
    mesh: Mesh
    problem: FitProblem
    report: FitReport
    stats: SolveStats
    quality_before: Dict[str, Any] = field(default_factory=dict)
    quality_after: Dict[str, Any] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return self.report.converged


def prepare_mesh(cfg: MeshConfig, mesh: Optional[Mesh] = None) -> Mesh:
    """Load (unless given), refine ``refine_serial`` times and set the order."""
    if mesh is None:
        mesh = load_mesh(cfg.source)
    else:
        mesh = mesh.copy()
    for _ in range(cfg.refine_serial):
        mesh = uniform_refinement(mesh)
    mesh = elevate_order(mesh, cfg.order)
    logger.info('%s', mesh.summary())
    return mesh


def setup_fit_problem(cfg: FitConfig, mesh: Mesh, rule: Optional[TargetRule] = None) -> FitProblem:
    """Select fit nodes, freeze targets and build the composite objective."""
    sel = cfg.selection
    fit_mask = select_fit_nodes(mesh, sel.fit_attribute)
    if not fit_mask.any():
        if sel.require_fit_nodes:
            raise SetupError(f'no boundary facet carries fit attribute {sel.fit_attribute}; '
                             f'available attributes: {sorted(set(mesh.boundary_attributes.tolist()))}')
        logger.warning('fit mask is empty; running pure quality optimization')
    mask = fit_mask
    if sel.mark_all_boundary:
        mask = fit_mask | boundary_nodes(mesh)
        mask.setflags(write=False)
    original = mesh.nodes.copy()
    node_attrs = node_boundary_attributes(mesh, prefer=sel.fit_attribute)
    if rule is None:
        rule = make_target_rule(sel.target_rule, sel.fit_attribute)
    targets = assign_targets(original, mask, node_attrs, rule)

    weight = FitWeight(cfg.adaptive.initial_weight)
    fitting = FittingTerm(mask, targets, weight)
    logger.info('fit nodes: %d on attribute %s, %d marked in total',
                int(fit_mask.sum()), sel.fit_attribute, fitting.n_fit_nodes)
    metric = make_metric(cfg.quality.metric, mesh.dim)
    quality = QualityTerm(mesh, metric, cfg.quality.target, cfg.mesh.quad_order,
                          cfg.quality.partitions, cfg.quality.workers)
    objective = CompositeObjective(quality, fitting)
    return FitProblem(mesh, original, mask, node_attrs, targets, weight, fitting, quality, objective)


def build_solver(cfg: FitConfig, problem: FitProblem, stats: SolveStats) -> AdaptiveWeightController:
    linear = LinearSolver.from_config(cfg.linear)
    # an empty mask has nothing to fit: only gradient convergence stops Newton
    monitor = problem.fitting.max_error if problem.mask.any() else None
    newton = NewtonSolver(problem.objective, linear, cfg.newton, fit_monitor=monitor,
                          fit_tolerance=cfg.adaptive.tolerance if monitor else None, stats=stats)
    return AdaptiveWeightController(newton, problem.weight, problem.fitting.max_error,
                                    cfg.adaptive, cfg.newton.max_iter, stats)


def write_outputs(cfg: FitConfig, problem: FitProblem) -> None:
    out = cfg.output
    mesh = problem.mesh
    if out.vtk_out:
        write_vtk(out.vtk_out, mesh,
                  point_data={
                      'fit_marker': fit_marker_field(problem.mask),
                      'target': problem.targets,
                      'displacement': mesh.nodes - problem.original,
                  },
                  cell_data={'quality_energy': problem.quality.element_energies(mesh.coordinates())})
        logger.info('wrote %s', out.vtk_out)
    if out.plot_out or out.targets_plot_out:
        from . import visualization
        if out.targets_plot_out:
            visualization.plot_fit_targets(mesh, problem.mask, problem.targets, out.targets_plot_out,
                                           x=problem.original.reshape(-1))
        if out.plot_out:
            visualization.plot_mesh(mesh, out.plot_out, mask=problem.mask, title='fitted mesh')


def run_fit(cfg: FitConfig, mesh: Optional[Mesh] = None, rule: Optional[TargetRule] = None) -> FitResult:
    """Run one complete fit. Raises SetupError before any solve on bad input."""
    cfg.validate()
    mesh = prepare_mesh(cfg.mesh, mesh)
    problem = setup_fit_problem(cfg, mesh, rule)
    stats = SolveStats()
    controller = build_solver(cfg, problem, stats)

    x = mesh.coordinates()
    before = quality_summary(mesh, problem.quality, x)
    logger.info('initial quality: %s; max fit error %.3e', format_quality(before), problem.fitting.max_error(x))
    report = controller.run(x)
    after = quality_summary(mesh, problem.quality, x)
    logger.info('final quality: %s', format_quality(after))
    logger.info('fit %s: max error %.3e, weight %.3e, %d Newton iterations, %d weight updates',
                report.state.value, report.max_error, report.weight, report.total_iterations,
                report.weight_updates)
    write_outputs(cfg, problem)
    return FitResult(mesh, problem, report, stats, before, after)


def _apply_cli_overrides(cfg: FitConfig, args) -> FitConfig:
    overrides = [
        (cfg.mesh, 'source', args.mesh),
        (cfg.mesh, 'refine_serial', args.refine_serial),
        (cfg.mesh, 'order', args.order),
        (cfg.mesh, 'quad_order', args.quad_order),
        (cfg.selection, 'fit_attribute', args.fit_attribute),
        (cfg.selection, 'target_rule', args.target_rule),
        (cfg.quality, 'target', args.target),
        (cfg.quality, 'partitions', args.partitions),
        (cfg.linear, 'method', args.linear_solver),
        (cfg.newton, 'max_iter', args.max_iter),
        (cfg.adaptive, 'initial_weight', args.fit_weight),
        (cfg.adaptive, 'tolerance', args.fit_tol),
        (cfg.adaptive, 'max_weight_updates', args.max_weight_updates),
        (cfg.adaptive, 'growth_factor', args.growth_factor),
        (cfg.output, 'vtk_out', args.vtk_out),
        (cfg.output, 'plot_out', args.plot_out),
        (cfg.output, 'targets_plot_out', args.targets_plot_out),
    ]
    for section, name, value in overrides:
        if value is not None:
            setattr(section, name, value)
    if args.mark_all_boundary:
        cfg.selection.mark_all_boundary = True
    if args.no_adaptive:
        cfg.adaptive.enabled = False
    return cfg


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description='Fit marked boundary nodes of a mesh to target positions '
                                             'while keeping element quality')
    ap.add_argument('--config', type=str, default=None, help='JSON configuration file')
    ap.add_argument('-m', '--mesh', type=str, default=None, help='Mesh file (.mesh/.msh) or square:n / cube:n')
    ap.add_argument('-rs', '--refine-serial', type=int, default=None, help='Number of uniform refinements')
    ap.add_argument('-o', '--order', type=int, default=None, help='Mesh polynomial order (1 or 2)')
    ap.add_argument('-qo', '--quad-order', type=int, default=None, help='Quadrature order')
    ap.add_argument('--fit-attribute', type=int, default=None, help='Boundary attribute of fitted facets')
    ap.add_argument('--target-rule', type=str, default=None, help='Named target rule (sinusoid, identity)')
    ap.add_argument('--mark-all-boundary', action='store_true',
                    help='Mark every boundary node; non-fitted ones are held in place')
    ap.add_argument('--target', type=str, default=None, choices=['ideal_shape_unit_size', 'initial'],
                    help='Target Jacobian construction')
    ap.add_argument('--partitions', type=int, default=None, help='Spatial element partitions for assembly')
    ap.add_argument('--linear-solver', type=str, default=None, choices=['minres', 'cg', 'gmres'])
    ap.add_argument('--max-iter', type=int, default=None, help='Total Newton iteration budget')
    ap.add_argument('--fit-weight', type=float, default=None, help='Initial fitting weight')
    ap.add_argument('--fit-tol', type=float, default=None, help='Max fitting error tolerance')
    ap.add_argument('--max-weight-updates', type=int, default=None, help='Cap on weight escalations')
    ap.add_argument('--growth-factor', type=float, default=None, help='Weight multiplier per escalation')
    ap.add_argument('--no-adaptive', action='store_true', help='Single solve at the initial weight')
    ap.add_argument('--vtk-out', type=str, default=None, help='Write the fitted mesh to this VTK file')
    ap.add_argument('--plot-out', type=str, default=None, help='Plot the fitted mesh to this image (2D)')
    ap.add_argument('--targets-plot-out', type=str, default=None,
                    help='Plot the initial mesh with fit targets to this image (2D)')
    ap.add_argument('--stats', action='store_true', help='Print the solve statistics table at the end')
    ap.add_argument('--dump-config', action='store_true', help='Print the effective configuration as JSON')
    ap.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                    default='INFO')
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        cfg = load_config(args.config) if args.config else FitConfig()
        cfg = _apply_cli_overrides(cfg, args)
        if args.dump_config:
            print(json.dumps(cfg.to_dict(), indent=2))
        result = run_fit(cfg)
    except SetupError as exc:
        logger.error('setup error: %s', exc)
        return 1
    if args.stats:
        print(format_stats_table(result.stats))
    return 0 if result.converged else 2


if __name__ == '__main__':
    sys.exit(main())
