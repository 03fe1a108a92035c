import numpy as np
import pytest

from decision_table import DecisionTable
from errors import InvalidInputError
from instances import Attribute, Instances
from sorted_columns import Partition
from table_builder import DecisionTableBuilder, TableBuilderParams


def _regression_data(seed, n=150, p=5):
    rng = np.random.default_rng(seed)
    X = rng.integers(-3, 4, size=(n, p)).astype(np.float64)
    y = X[:, 0] - 2.0 * (X[:, 1] > 1) + X[:, 2] * X[:, 3] + 0.1 * rng.normal(size=n)
    weights = rng.uniform(0.5, 1.5, size=n)
    return Instances(X, y, weights)


def _weighted_sse(table, instances):
    residual = instances.y - table.predict(instances.X)
    return float(np.dot(instances.weights, residual * residual))


def _build(instances, **kwargs):
    return DecisionTableBuilder(TableBuilderParams(**kwargs)).build(instances)


@pytest.mark.parametrize("mode", ["greedy", "cyclic", "random"])
def test_depth_zero_table_is_the_weighted_mean(mode):
    instances = _regression_data(0)
    table = _build(instances, mode=mode, max_depth=0)

    assert table.depth == 0
    np.testing.assert_array_equal(table.bitmasks, [0])
    expected = Partition.create(instances).weighted_mean
    assert table.predictions[0] == expected
    assert table.regress(instances.X[0]) == expected


def test_depth_one_table_splits_at_the_gap():
    X = np.array([[0.0], [1.0], [2.0], [3.0], [10.0], [11.0], [12.0], [13.0]])
    y = np.array([0.0, 0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 1.0])

    table = _build(Instances(X, y), max_depth=1)

    np.testing.assert_array_equal(table.attribute_indices, [0])
    np.testing.assert_array_equal(table.thresholds, [6.5])
    np.testing.assert_array_equal(table.bitmasks, [0, 1])
    np.testing.assert_array_equal(table.predictions, [1.0, 0.0])


@pytest.mark.parametrize("mode", ["cyclic", "random"])
@pytest.mark.parametrize("seed", [1, 2])
def test_single_pass_matches_greedy(mode, seed):
    instances = _regression_data(seed)
    greedy = _build(instances, mode="greedy", max_depth=4, random_state=seed)
    single = _build(instances, mode=mode, max_depth=4, num_passes=1, random_state=seed)

    np.testing.assert_array_equal(single.attribute_indices, greedy.attribute_indices)
    np.testing.assert_array_equal(single.thresholds, greedy.thresholds)
    np.testing.assert_array_equal(single.bitmasks, greedy.bitmasks)
    np.testing.assert_array_equal(single.predictions, greedy.predictions)


@pytest.mark.parametrize("mode", ["greedy", "cyclic", "random"])
def test_every_leaf_is_the_weighted_mean_of_its_rows(mode):
    instances = _regression_data(3)
    table = _build(instances, mode=mode, max_depth=3, num_passes=3)

    paths = np.array([table.bitmask(x) for x in instances.X])
    assert set(paths) == set(table.bitmasks.tolist())
    for bitmask, prediction in zip(table.bitmasks, table.predictions):
        rows = paths == bitmask
        expected = np.dot(instances.weights[rows], instances.y[rows]) / instances.weights[rows].sum()
        assert np.isclose(prediction, expected)


@pytest.mark.parametrize("mode", ["cyclic", "random"])
@pytest.mark.parametrize("seed", [4, 5, 6])
def test_backfitting_never_increases_training_error(mode, seed):
    instances = _regression_data(seed)
    greedy = _build(instances, mode="greedy", max_depth=4, random_state=seed)

    previous = _weighted_sse(greedy, instances)
    for num_passes in (2, 3, 4):
        table = _build(instances, mode=mode, max_depth=4, num_passes=num_passes, random_state=seed)
        sse = _weighted_sse(table, instances)
        assert sse <= previous * (1.0 + 1e-9) + 1e-9
        previous = sse


def test_backfitting_merges_partitions():
    instances = _regression_data(7)
    builder = DecisionTableBuilder(TableBuilderParams(mode="cyclic", max_depth=3, num_passes=2))

    builder.build(instances)

    assert builder.metrics.passes == 2
    assert builder.metrics.depths_decided == 6
    assert builder.metrics.merges > 0


def test_random_mode_is_reproducible():
    instances = _regression_data(8)
    first = _build(instances, mode="random", max_depth=4, num_passes=3, random_state=21)
    second = _build(instances, mode="random", max_depth=4, num_passes=3, random_state=21)

    np.testing.assert_array_equal(first.attribute_indices, second.attribute_indices)
    np.testing.assert_array_equal(first.thresholds, second.thresholds)
    np.testing.assert_array_equal(first.predictions, second.predictions)


def test_nominal_attribute_thresholds_lie_between_codes():
    codes = np.array([0, 1, 2, 3] * 5, dtype=np.float64)
    X = codes.reshape(-1, 1)
    y = (codes >= 2).astype(np.float64)
    attributes = [Attribute(0, kind="nominal", cardinality=4)]

    table = _build(Instances(X, y, attributes=attributes), max_depth=1)

    np.testing.assert_array_equal(table.thresholds, [1.5])
    np.testing.assert_array_equal(table.predictions, [1.0, 0.0])


def test_constant_features_truncate_the_table():
    X = np.full((10, 3), 2.0)
    y = np.arange(10.0)
    builder = DecisionTableBuilder(TableBuilderParams(max_depth=3))

    table = builder.build(Instances(X, y))

    assert table.depth == 0
    assert builder.metrics.truncated_at == 0
    np.testing.assert_array_equal(table.predictions, [4.5])


def test_predict_matches_regress():
    instances = _regression_data(9)
    table = _build(instances, mode="cyclic", max_depth=5)

    expected = np.array([table.regress(x) for x in instances.X])
    np.testing.assert_array_equal(table.predict(instances.X), expected)


def test_missing_bitmask_predicts_zero():
    table = DecisionTable(
        attribute_indices=np.array([0, 1]),
        thresholds=np.array([0.5, 0.5]),
        bitmasks=np.array([0, 3]),
        predictions=np.array([2.0, -1.0]),
    )

    assert table.regress_by_bitmask(1) == 0.0
    assert table.regress(np.array([0.0, 1.0])) == 0.0
    assert table.regress(np.array([0.0, 0.0])) == -1.0
    np.testing.assert_array_equal(
        table.predict(np.array([[1.0, 1.0], [1.0, 0.0], [0.0, 0.0]])),
        [2.0, 0.0, -1.0],
    )


def test_scaled_table_multiplies_predictions():
    instances = _regression_data(10)
    table = _build(instances, max_depth=3)
    np.testing.assert_allclose(table.scaled(0.1).predict(instances.X), 0.1 * table.predict(instances.X))


@pytest.mark.parametrize(
    "bitmasks",
    [np.array([1, 0]), np.array([0, 4]), np.array([0, 0])],
)
def test_invalid_tables_are_rejected(bitmasks):
    with pytest.raises(ValueError):
        DecisionTable(np.array([0, 1]), np.array([0.0, 0.0]), bitmasks, np.zeros(bitmasks.size))


def test_depth_beyond_bitmask_width_is_rejected():
    with pytest.raises(ValueError):
        TableBuilderParams(max_depth=64)

    params = TableBuilderParams(max_depth=4)
    params.max_depth = 64
    with pytest.raises(ValueError):
        DecisionTableBuilder(params).build(_regression_data(11))


def test_empty_input_is_rejected():
    with pytest.raises(InvalidInputError):
        DecisionTableBuilder().build(Instances(np.empty((0, 2)), np.empty(0)))


@pytest.mark.parametrize(
    "mode, expected",
    [("g:6", "greedy"), ("c:4", "cyclic"), ("r:8", "random")],
)
def test_mode_strings(mode, expected):
    params = TableBuilderParams.from_mode_string(mode)
    assert params.mode == expected
    assert params.max_depth == int(mode.split(":")[1])


@pytest.mark.parametrize("mode", ["q:3", "g", "g:64"])
def test_bad_mode_strings(mode):
    with pytest.raises(ValueError):
        TableBuilderParams.from_mode_string(mode)
