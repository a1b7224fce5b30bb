import json
import os

import numpy as np
import pytest

from fitmesh.core.config import FitConfig
from fitmesh.core.errors import SetupError
from fitmesh.core.fit_driver import build_parser, main, prepare_mesh, run_fit, setup_fit_problem
from fitmesh.core.mesh import box_mesh


def _small_config(tmp_path=None):
    cfg = FitConfig()
    cfg.mesh.source = 'square:4'
    cfg.mesh.refine_serial = 0
    cfg.mesh.order = 1
    cfg.mesh.quad_order = 3
    cfg.newton.print_level = 0
    if tmp_path is not None:
        cfg.output.vtk_out = str(tmp_path / 'fit.vtk')
        cfg.output.plot_out = str(tmp_path / 'fit.png')
        cfg.output.targets_plot_out = str(tmp_path / 'targets.png')
    return cfg


def test_prepare_mesh_refines_and_elevates_a_copy():
    cfg = _small_config()
    cfg.mesh.refine_serial = 1
    cfg.mesh.order = 2
    base = box_mesh(2, 2)
    mesh = prepare_mesh(cfg.mesh, base)
    assert mesh.n_elements == 4 * base.n_elements
    assert mesh.order == 2
    assert mesh.n_vertices == 25
    assert mesh.n_nodes > mesh.n_vertices
    assert base.order == 1 and base.n_elements == 8


def test_prepare_mesh_elevates_tetrahedra():
    cfg = _small_config()
    cfg.mesh.source = 'cube:1'
    cfg.mesh.order = 2
    mesh = prepare_mesh(cfg.mesh)
    assert mesh.elements.shape[1] == 10
    assert mesh.boundary.shape[1] == 6
    assert mesh.n_vertices == 8


def test_setup_problem_wires_shared_weight():
    cfg = _small_config()
    mesh = prepare_mesh(cfg.mesh)
    problem = setup_fit_problem(cfg, mesh)
    assert problem.fitting.weight is problem.weight
    assert problem.objective.terms == [problem.quality, problem.fitting]
    assert problem.mask.any()
    assert problem.fitting.n_fit_nodes == int(problem.mask.sum())
    assert not problem.mask.flags.writeable
    assert not problem.targets.flags.writeable


def test_missing_fit_attribute_is_a_setup_error():
    cfg = _small_config()
    cfg.selection.fit_attribute = 42
    with pytest.raises(SetupError):
        run_fit(cfg)


def test_run_fit_writes_outputs(tmp_path):
    cfg = _small_config(tmp_path)
    result = run_fit(cfg)
    assert result.converged
    for name in ('fit.vtk', 'fit.png', 'targets.png'):
        assert os.path.getsize(tmp_path / name) > 0
    text = (tmp_path / 'fit.vtk').read_text()
    for field_name in ('fit_marker', 'target', 'displacement', 'quality_energy'):
        assert field_name in text
    assert result.stats.newton_solves >= 1
    assert result.stats.to_dict()['newton_iterations'] == result.report.total_iterations


def test_run_fit_uses_given_mesh_without_touching_it():
    cfg = _small_config()
    base = box_mesh(2, 3)
    before = base.nodes.copy()
    result = run_fit(cfg, mesh=base)
    assert np.array_equal(base.nodes, before)
    assert result.mesh.n_nodes == base.n_nodes


def test_cli_converged_exit_code(capsys):
    code = main(['-m', 'square:2', '-rs', '0', '-o', '1', '--target-rule', 'identity', '--stats',
                 '--log-level', 'WARNING'])
    assert code == 0
    assert 'newton_iterations' in capsys.readouterr().out


def test_cli_setup_error_exit_code():
    assert main(['-m', 'square:2', '-rs', '0', '-o', '1', '--fit-attribute', '9',
                 '--log-level', 'ERROR']) == 1
    assert main(['-m', 'does-not-exist.msh', '--log-level', 'CRITICAL']) == 1


def test_cli_aborted_exit_code():
    code = main(['-m', 'square:4', '-rs', '0', '-o', '1', '--fit-tol', '1e-12',
                 '--max-weight-updates', '0', '--max-iter', '20', '--log-level', 'ERROR'])
    assert code == 2


def test_cli_config_file_and_dump(tmp_path, capsys):
    path = tmp_path / 'cfg.json'
    path.write_text(json.dumps({'mesh': {'source': 'square:2', 'refine_serial': 0, 'order': 1},
                                'selection': {'target_rule': 'identity'},
                                'newton': {'print_level': 0}}))
    code = main(['--config', str(path), '--dump-config', '--fit-weight', '5', '--log-level', 'WARNING'])
    assert code == 0
    dumped = json.loads(capsys.readouterr().out)
    assert dumped['mesh']['source'] == 'square:2'
    assert dumped['adaptive']['initial_weight'] == 5.0


def test_parser_defaults_leave_config_untouched():
    args = build_parser().parse_args([])
    assert args.mesh is None and args.fit_tol is None
    assert not args.no_adaptive and not args.mark_all_boundary
