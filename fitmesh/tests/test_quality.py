import numpy as np
import pytest

from fitmesh.core.mesh import box_mesh
from fitmesh.core.metrics import make_metric
from fitmesh.core.quality import format_quality, mesh_min_angle, quality_summary
from fitmesh.core.quality_energy import QualityTerm
from fitmesh.core.stats import SolveStats, format_stats_table


def test_min_angle_of_kuhn_triangles():
    mesh = box_mesh(2, 3)
    assert mesh_min_angle(mesh.nodes, mesh.elements) == pytest.approx(45.0)
    assert np.isnan(mesh_min_angle(mesh.nodes, np.zeros((0, 3), dtype=int)))


def test_summary_with_quality_term():
    mesh = box_mesh(2, 2)
    q = QualityTerm(mesh, make_metric('shape', 2), quad_order=2)
    s = quality_summary(mesh, q)
    assert s['n_elements'] == 8
    assert s['n_inverted'] == 0
    assert s['min_volume'] == pytest.approx(0.125)
    assert s['min_det_jacobian'] > 0.0
    assert s['quality_energy'] > 0.0
    line = format_quality(s)
    assert 'min_angle_deg=45' in line


def test_summary_counts_inverted_elements():
    mesh = box_mesh(3, 1)
    x = mesh.nodes.copy()
    x[0] = [2.0, 2.0, 2.0]
    s = quality_summary(mesh, x=x.reshape(-1))
    assert s['n_inverted'] > 0
    assert 'min_angle_deg' not in s


def test_stats_table_lists_counters():
    stats = SolveStats(newton_iterations=7, linear_solves=7, linear_iterations=21, linear_failures=1)
    d = stats.to_dict()
    assert d['avg_linear_iterations'] == pytest.approx(3.0)
    assert d['linear_failure_rate'] == pytest.approx(1.0 / 7.0)
    table = format_stats_table(stats)
    lines = table.splitlines()
    assert lines[0].split() == ['counter', 'value']
    assert any(line.split() == ['newton_iterations', '7'] for line in lines)
    assert any(line.startswith('total_ms') for line in lines)
    assert format_stats_table(None) == '<no stats>'
    assert format_stats_table({}) == '<no stats>'
