import numpy as np
import pytest

from instances import Attribute, Instances
from sorted_columns import Partition
from split_search import HistogramSplitSearch, build_histogram, evaluate_splits, split_gain


def _sse(y, w):
    if w.sum() <= 0.0:
        return 0.0
    mean = np.dot(w, y) / w.sum()
    return float(np.dot(w, (y - mean) ** 2))


def _brute_force_best_sse(column, y, w):
    """Smallest two-sided SSE over every threshold between distinct values."""
    best = np.inf
    values = np.unique(column)
    for lower, upper in zip(values[:-1], values[1:]):
        left = column <= (lower + upper) / 2
        best = min(best, _sse(y[left], w[left]) + _sse(y[~left], w[~left]))
    return best


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_search_matches_brute_force_per_feature(seed):
    rng = np.random.default_rng(seed)
    n = 30
    X = rng.integers(-4, 5, size=(n, 3)).astype(np.float64)
    y = rng.normal(size=n)
    w = rng.uniform(0.1, 3.0, size=n)
    partition = Partition.create(Instances(X, y, w))

    for attribute in partition.attributes:
        result = HistogramSplitSearch(partition, np.random.default_rng(0), [attribute]).search()
        expected = _brute_force_best_sse(X[:, attribute.index], y, w)

        left = X[:, attribute.index] <= result.candidate.threshold
        actual = _sse(y[left], w[left]) + _sse(y[~left], w[~left])
        assert np.isclose(actual, expected)
        assert np.isclose(result.reduction, _sse(y, w) - expected)


def test_histogram_reinserts_zero_bucket():
    X = np.array([[-2.0], [0.0], [3.0], [0.0], [3.0]])
    y = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    w = np.array([1.0, 1.0, 2.0, 0.5, 1.0])
    partition = Partition.create(Instances(X, y, w))

    histogram = build_histogram(partition, partition.attributes[0])

    np.testing.assert_array_equal(histogram.values, [-2.0, 0.0, 3.0])
    np.testing.assert_allclose(histogram.weights, [1.0, 1.5, 3.0])
    np.testing.assert_allclose(histogram.sums, [1.0, 4.0, 11.0])


def test_nominal_histogram_uses_present_codes():
    X = np.array([[0.0], [2.0], [2.0], [4.0]])
    attributes = [Attribute(0, kind="nominal", cardinality=5)]
    partition = Partition.create(Instances(X, np.array([1.0, 2.0, 3.0, 4.0]), attributes=attributes))

    histogram = build_histogram(partition, attributes[0])

    np.testing.assert_array_equal(histogram.values, [0.0, 2.0, 4.0])
    np.testing.assert_allclose(histogram.weights, [1.0, 2.0, 1.0])
    np.testing.assert_allclose(histogram.sums, [1.0, 5.0, 4.0])

    thresholds, _ = evaluate_splits(histogram, partition.total_weight, partition.weighted_sum)
    np.testing.assert_array_equal(thresholds, [1.0, 3.0])


def test_light_sides_contribute_nothing():
    gains = split_gain(np.array([3.0, 2.0]), np.array([0.0, 2.0]))
    np.testing.assert_allclose(gains, [0.0, 2.0])


def test_constant_features_give_no_candidate():
    X = np.full((6, 2), 1.5)
    partition = Partition.create(Instances(X, np.arange(6.0)))

    result = HistogramSplitSearch(partition, np.random.default_rng(0)).search()

    assert result.candidate is None
    assert result.gain == -np.inf


def test_ties_across_features_are_drawn_with_the_rng():
    column = np.array([1.0, 2.0, 3.0, 4.0])
    X = np.column_stack([column, column])
    y = np.array([0.0, 0.0, 1.0, 1.0])
    partition = Partition.create(Instances(X, y))

    chosen = set()
    for seed in range(20):
        result = HistogramSplitSearch(partition, np.random.default_rng(seed)).search()
        assert result.candidate.threshold == 2.5
        assert result.metrics.tied_candidates == 2
        chosen.add(result.candidate.attribute_index)

    assert chosen == {0, 1}


def test_same_rng_seed_gives_same_choice():
    rng = np.random.default_rng(5)
    X = rng.integers(0, 3, size=(40, 5)).astype(np.float64)
    y = rng.integers(0, 2, size=40).astype(np.float64)
    partition = Partition.create(Instances(X, y))

    first = HistogramSplitSearch(partition, np.random.default_rng(9)).search()
    second = HistogramSplitSearch(partition, np.random.default_rng(9)).search()

    assert first.candidate == second.candidate


def test_search_requires_an_explicit_rng():
    partition = Partition.create(Instances(np.eye(3), np.arange(3.0)))
    with pytest.raises(TypeError):
        HistogramSplitSearch(partition)
