import numpy as np
import pytest

from fitmesh.core.errors import SetupError
from fitmesh.core.metrics import (ConditionShapeMetric3D, ShapeMetric2D, ShapeMetric3D,
                                  make_metric)


def _random_positive(dim, rng):
    while True:
        T = np.eye(dim) + 0.3 * rng.standard_normal((dim, dim))
        if np.linalg.det(T) > 0.2:
            return T


def fd_first(metric, T, h=1e-6):
    d = T.shape[0]
    P = np.zeros_like(T)
    for i in range(d):
        for j in range(d):
            E = np.zeros_like(T); E[i, j] = h
            P[i, j] = (metric.evaluate(T + E) - metric.evaluate(T - E)) / (2.0 * h)
    return P


def fd_second(metric, T, h=1e-6):
    d = T.shape[0]
    H = np.zeros((d, d, d, d))
    for k in range(d):
        for l in range(d):
            E = np.zeros_like(T); E[k, l] = h
            H[:, :, k, l] = (metric.first_derivative(T + E) - metric.first_derivative(T - E)) / (2.0 * h)
    return H


@pytest.mark.parametrize('metric', [ShapeMetric2D(), ShapeMetric3D(), ConditionShapeMetric3D()])
def test_minimum_at_scaled_rotation(metric):
    d = metric.dim
    c, s = np.cos(0.4), np.sin(0.4)
    R = np.eye(d)
    R[:2, :2] = [[c, -s], [s, c]]
    assert metric.evaluate(2.5 * R) == pytest.approx(0.0, abs=1e-12)
    assert np.allclose(metric.first_derivative(2.5 * R), 0.0, atol=1e-10)
    T = np.eye(d); T[0, 0] = 1.7
    assert metric.evaluate(T) > 0.0


@pytest.mark.parametrize('metric', [ShapeMetric2D(), ShapeMetric3D(), ConditionShapeMetric3D()])
def test_first_derivative_matches_fd(metric):
    rng = np.random.default_rng(3)
    for _ in range(3):
        T = _random_positive(metric.dim, rng)
        assert np.allclose(metric.first_derivative(T), fd_first(metric, T), atol=1e-6, rtol=1e-5)


@pytest.mark.parametrize('metric', [ShapeMetric2D(), ShapeMetric3D(), ConditionShapeMetric3D()])
def test_second_derivative_matches_fd(metric):
    rng = np.random.default_rng(5)
    for _ in range(3):
        T = _random_positive(metric.dim, rng)
        H = metric.second_derivative(T)
        assert np.allclose(H, fd_second(metric, T), atol=1e-5, rtol=1e-4)
        # symmetric in the (ij) <-> (kl) pairs
        assert np.allclose(H, H.transpose(2, 3, 0, 1))


def test_batched_evaluation_and_invalid_jacobian():
    m = ShapeMetric2D()
    T = np.stack([np.eye(2), np.diag([1.0, -1.0]), np.diag([2.0, 1.0])])
    mu = m.evaluate(T)
    assert mu.shape == (3,)
    assert mu[0] == pytest.approx(0.0)
    assert np.isinf(mu[1])
    assert mu[2] == pytest.approx(5.0 / 4.0 - 1.0)
    assert m.first_derivative(T[[0, 2]]).shape == (2, 2, 2)
    assert m.second_derivative(T[[0, 2]]).shape == (2, 2, 2, 2, 2)


def test_make_metric():
    assert isinstance(make_metric('shape', 2), ShapeMetric2D)
    assert isinstance(make_metric('shape', 3), ConditionShapeMetric3D)
    assert isinstance(make_metric('shape3d', 3), ShapeMetric3D)
    assert isinstance(make_metric('condition3d', 3), ConditionShapeMetric3D)
    with pytest.raises(SetupError):
        make_metric('shape2d', 3)


def test_condition_metric_uses_inverse_frobenius_norm(rng):
    m = ConditionShapeMetric3D()
    T = np.diag([2.0, 1.0, 1.0])
    # |T|^2 = 6, |T^-1|^2 = 2.25
    assert m.evaluate(T) == pytest.approx(6.0 * 2.25 / 9.0 - 1.0)
    Ts = np.stack([_random_positive(3, rng) for _ in range(4)])
    expected = [np.sum(t * t) * np.sum(np.linalg.inv(t) ** 2) / 9.0 - 1.0 for t in Ts]
    assert np.allclose(m.evaluate(Ts), expected)
    # independent of the orientation-preserving size
    assert np.allclose(m.evaluate(3.0 * Ts), expected)
    assert np.isinf(m.evaluate(np.diag([1.0, 1.0, -1.0])))
