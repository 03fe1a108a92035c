from __future__ import annotations

from dataclasses import dataclass, field
import logging

import numpy as np

from binning import apply_bins, discretize
from decision_table import DecisionTable
from errors import InvalidInputError
from instances import Instances
from regression_tree import RegressionTree
from residuals import RESIDUAL_LOSSES, ResidualConfig, ResidualProvider, weighted_median
from scoring_index import EnsembleScoringIndex
from sorted_columns import Partition
from table_builder import DecisionTableBuilder, TableBuilderParams
from tree_builder import TreeBuilder, TreeBuilderParams

logger = logging.getLogger(__name__)

BOOSTING_LEARNERS = ("table", "tree")


def _default_tree_params() -> TreeBuilderParams:
    return TreeBuilderParams(mode="depth", max_depth=3)


@dataclass
class BoostingParams:
    n_estimators: int = 100
    learning_rate: float = 0.1
    learner: str = "table"  # one of: table, tree

    table_params: TableBuilderParams = field(default_factory=TableBuilderParams)
    tree_params: TreeBuilderParams = field(default_factory=_default_tree_params)

    # Bin numeric attributes before training; None keeps raw values.
    max_bins: int | None = None

    # Residual settings.
    loss: str = "squared_error"
    clip: float | None = None

    verbose: bool = False
    random_state: int = 0

    def __post_init__(self) -> None:
        if self.n_estimators < 0:
            raise ValueError("n_estimators must be >= 0")
        if not (0.0 < self.learning_rate <= 1.0):
            raise ValueError("learning_rate must be in (0, 1]")
        if self.learner not in BOOSTING_LEARNERS:
            raise ValueError("learner must be one of: table, tree")
        if self.max_bins is not None and self.max_bins < 2:
            raise ValueError("max_bins must be at least 2")
        if self.loss not in RESIDUAL_LOSSES:
            raise ValueError("loss must be one of: squared_error, absolute_error")


class BoostedModel:
    """Base score plus a sum of learning-rate-scaled trees or decision tables.

    Table ensembles are scored through an :class:`EnsembleScoringIndex`.
    """

    def __init__(
        self,
        base_score: float,
        models: list[RegressionTree] | list[DecisionTable],
        bin_thresholds: list[np.ndarray | None] | None = None,
    ) -> None:
        self.base_score = float(base_score)
        self.models = list(models)
        self.bin_thresholds = bin_thresholds
        self.index: EnsembleScoringIndex | None = None
        if self.models and all(isinstance(model, DecisionTable) for model in self.models):
            self.index = EnsembleScoringIndex.build(self.models)

    def __len__(self) -> int:
        return len(self.models)

    def predict(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2:
            raise ValueError("X must be a 2D array")
        if self.bin_thresholds is not None:
            X = apply_bins(X, self.bin_thresholds)

        pred = np.full(X.shape[0], self.base_score, dtype=np.float64)
        if self.index is not None:
            return pred + self.index.predict(X)
        for model in self.models:
            pred += model.predict(X)
        return pred

    def regress(self, x: np.ndarray) -> float:
        x = np.asarray(x, dtype=np.float64)
        return float(self.predict(x.reshape(1, -1))[0])


def _with_median_leaves(
    model: RegressionTree | DecisionTable,
    instances: Instances,
    residuals: np.ndarray,
) -> RegressionTree | DecisionTable:
    """Copy of ``model`` whose leaves hold the weighted median residual of their rows."""
    weights = instances.weights
    if isinstance(model, RegressionTree):
        flat = model.flatten()
        leaf_ids = flat.apply(instances.X)
        values = flat.values.copy()
        for leaf in np.unique(leaf_ids):
            rows = leaf_ids == leaf
            values[leaf] = weighted_median(residuals[rows], weights[rows])
        flat.values = values
        return RegressionTree.from_flattened(flat)

    paths = model.paths(instances.X)
    predictions = model.predictions.copy()
    for k, bitmask in enumerate(model.bitmasks):
        rows = paths == bitmask
        predictions[k] = weighted_median(residuals[rows], weights[rows])
    return DecisionTable(model.attribute_indices, model.thresholds, model.bitmasks, predictions)


class LSBoostTrainer:
    """Least-squares boosting of decision tables or regression trees.

    Residuals live in an array parallel to the training targets; each round
    fits the next learner to them on the same cached :class:`Partition`, so
    feature columns are sorted once per fit.

    With ``loss="absolute_error"`` this is least-absolute-deviation boosting:
    the intercept is the weighted median of the targets, each learner is fitted
    to the signs of the residuals and its leaves are then reset to the weighted
    median of the raw residuals they cover.
    """

    def __init__(self, params: BoostingParams | None = None) -> None:
        self.params = params or BoostingParams()
        self.rng = np.random.default_rng(self.params.random_state)

        self.model_: BoostedModel | None = None
        self.train_prediction_: np.ndarray | None = None
        self.metrics: dict = {}

    def _make_builder(self) -> TreeBuilder | DecisionTableBuilder:
        if self.params.learner == "tree":
            return TreeBuilder(self.params.tree_params, rng=self.rng)
        return DecisionTableBuilder(self.params.table_params, rng=self.rng)

    def _initial_prediction(self, instances: Instances) -> float:
        if self.params.loss == "absolute_error":
            return weighted_median(instances.y, instances.weights)
        total_weight = float(instances.weights.sum())
        if total_weight <= 0.0:
            return 0.0
        return float(np.dot(instances.weights, instances.y) / total_weight)

    def fit(self, instances: Instances) -> LSBoostTrainer:
        if len(instances) == 0:
            raise InvalidInputError("cannot boost on zero instances")

        bin_thresholds = None
        if self.params.max_bins is not None:
            instances, bin_thresholds = discretize(instances, max_bins=self.params.max_bins)

        base_score = self._initial_prediction(instances)
        pred = np.full(len(instances), base_score, dtype=np.float64)

        partition = Partition.create(instances)
        builder = self._make_builder()
        residual_config = ResidualConfig(loss=self.params.loss, clip=self.params.clip)

        models = []
        self.metrics = {
            "split_search_time_sec": 0.0,
            "training_loss": [],
            "model_metrics": [],
        }

        for round_idx in range(self.params.n_estimators):
            provider = ResidualProvider(y=instances.y, pred=pred, config=residual_config)
            self.metrics["training_loss"].append(provider.loss())

            rows = partition.with_targets(provider.residuals)
            if isinstance(builder, TreeBuilder):
                model = builder.build_tree(rows)
            else:
                model = builder.build_table(rows)
            if self.params.loss == "absolute_error":
                model = _with_median_leaves(model, instances, instances.y - pred)
            model = model.scaled(self.params.learning_rate)
            models.append(model)
            pred += model.predict(instances.X)

            self.metrics["split_search_time_sec"] += builder.metrics.split_search_time_sec
            self.metrics["model_metrics"].append(builder.metrics)
            if self.params.verbose:
                logger.info(
                    "round %d/%d: training loss %.6g",
                    round_idx + 1,
                    self.params.n_estimators,
                    provider.loss(),
                )

        self.model_ = BoostedModel(base_score, models, bin_thresholds)
        self.train_prediction_ = pred
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        if self.model_ is None:
            raise RuntimeError("Model must be fitted before prediction")
        return self.model_.predict(X)

    def regress(self, x: np.ndarray) -> float:
        if self.model_ is None:
            raise RuntimeError("Model must be fitted before prediction")
        return self.model_.regress(x)
