import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from sqwcalc.errors import ConfigurationError
from sqwcalc.interpolation import Interpolation, stencil, stencil_keys
from sqwcalc.stencil_cache import broadcast_runs, group_runs


def test_parse_interpolation():
    assert Interpolation.parse(None) is Interpolation.NONE
    assert Interpolation.parse("Linear") is Interpolation.LINEAR
    assert Interpolation.parse("multilinear") is Interpolation.LINEAR
    assert Interpolation.parse(Interpolation.NONE) is Interpolation.NONE
    with pytest.raises(ConfigurationError):
        Interpolation.parse("cubic")


def test_nearest_ties_go_to_lower_index():
    q = np.array([[0.25, -0.25, 0.0], [0.26, -0.24, 0.0]])
    ms, weights = stencil(q, (2, 2, 1), Interpolation.NONE)
    assert ms.shape == (2, 1, 3)
    assert_array_equal(ms[0, 0], [0, -1, 0])
    assert_array_equal(ms[1, 0], [1, 0, 0])
    assert_allclose(weights, 1.0)


def test_linear_weights():
    q = np.array([[0.25, 0.0, 0.0], [0.1, 0.7, 0.3]])
    ms, weights = stencil(q, (2, 2, 2), Interpolation.LINEAR)
    assert ms.shape == (2, 8, 3)
    assert_allclose(weights.sum(axis=1), 1.0)
    assert np.all(weights >= 0)
    # Halfway between m = 0 and m = 1 along x
    assert_allclose(weights[0], [0.5, 0.5, 0, 0, 0, 0, 0, 0])
    assert_array_equal(ms[0, 1], [1, 0, 0])
    # Interpolation reproduces the query point itself
    centers = np.einsum("nk,nkd->nd", weights, ms) / 2
    assert_allclose(centers, q)


def test_stencil_keys_are_hashable_and_equal_for_equal_stencils():
    q = np.array([[0.1, 0.1, 0.1], [0.15, 0.12, 0.1], [0.9, 0.1, 0.1]])
    ms, _ = stencil(q, (2, 2, 2), Interpolation.LINEAR)
    keys = stencil_keys(ms)
    assert keys[0] == keys[1]
    assert keys[0] != keys[2]
    assert len(set(keys)) == 2


def test_group_runs():
    runs = group_runs(["a", "a", "b", "a"])
    assert runs == [("a", slice(0, 2)), ("b", slice(2, 3)), ("a", slice(3, 4))]
    assert group_runs([]) == []


def test_broadcast_runs_calls_once_per_run():
    calls = []

    def compute(i):
        calls.append(i)
        return i * 10

    out = list(broadcast_runs([1, 1, 1, 2, 2, 1], compute))
    assert calls == [0, 3, 5]
    assert out == [(slice(0, 3), 0), (slice(3, 5), 30), (slice(5, 6), 50)]
