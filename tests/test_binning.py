import numpy as np
import pytest

from binning import apply_bins, build_bins, discretize
from instances import Attribute, Instances
from tree_builder import TreeBuilder, TreeBuilderParams


def test_few_distinct_values_use_midpoints():
    X = np.array([[1.0], [3.0], [3.0], [7.0]])

    thresholds = build_bins(X, max_bins=8)

    np.testing.assert_array_equal(thresholds[0], [2.0, 5.0])
    np.testing.assert_array_equal(apply_bins(X, thresholds)[:, 0], [0.0, 1.0, 1.0, 2.0])


def test_many_distinct_values_are_capped():
    rng = np.random.default_rng(0)
    X = rng.normal(size=(500, 2))

    thresholds = build_bins(X, max_bins=10)
    X_bin = apply_bins(X, thresholds)

    for feature_idx in range(2):
        assert thresholds[feature_idx].size <= 9
        assert X_bin[:, feature_idx].max() <= 9
        assert np.unique(X_bin[:, feature_idx]).size > 5


def test_apply_bins_passes_through_unbinned_features():
    X = np.array([[2.0, 0.5], [1.0, 1.5]])
    X_bin = apply_bins(X, [None, np.array([1.0])])
    np.testing.assert_array_equal(X_bin, [[2.0, 0.0], [1.0, 1.0]])


@pytest.mark.parametrize("max_bins", [0, 1])
def test_invalid_bin_count(max_bins):
    with pytest.raises(ValueError):
        build_bins(np.zeros((3, 1)), max_bins=max_bins)


def test_non_finite_values_are_rejected():
    with pytest.raises(ValueError):
        build_bins(np.array([[1.0], [np.nan]]))


def test_discretize_keeps_nominal_attributes():
    rng = np.random.default_rng(1)
    n = 80
    X = np.column_stack([rng.normal(size=n), rng.integers(0, 3, size=n)])
    attributes = [Attribute(0), Attribute(1, kind="nominal", cardinality=3)]
    instances = Instances(X, rng.normal(size=n), attributes=attributes)

    binned, thresholds = discretize(instances, max_bins=6)

    assert binned.attributes[0].kind == "binned"
    assert binned.attributes[0].cardinality == thresholds[0].size + 1
    assert binned.attributes[1] == attributes[1]
    assert thresholds[1] is None
    np.testing.assert_array_equal(binned.X[:, 1], X[:, 1])
    np.testing.assert_array_equal(binned.y, instances.y)


def test_tree_on_binned_attributes_uses_bin_codes():
    X = np.array([[0.0], [1.0], [2.0], [3.0], [10.0], [11.0], [12.0], [13.0]])
    y = np.array([0.0, 0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 1.0])
    binned, _ = discretize(Instances(X, y), max_bins=8)

    tree = TreeBuilder(TreeBuilderParams(mode="depth", max_depth=1)).build(binned)

    assert tree.root.threshold == 3.5
    np.testing.assert_array_equal(tree.predict(binned.X), y)
