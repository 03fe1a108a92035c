from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from errors import InvalidInputError
from instances import Attribute, Instances


@dataclass(frozen=True)
class FeatureColumn:
    """Nonzero entries of one numeric feature, sorted ascending by value.

    ``indices`` are positions in the owning partition, not dataset rows.
    """

    indices: np.ndarray
    values: np.ndarray

    def __len__(self) -> int:
        return int(self.values.size)


def _sorted_column(column: np.ndarray) -> FeatureColumn:
    nonzero = np.flatnonzero(column != 0.0)
    nonzero_values = column[nonzero]
    order = np.argsort(nonzero_values, kind="stable")
    return FeatureColumn(
        indices=nonzero[order].astype(np.int64),
        values=np.asarray(nonzero_values[order], dtype=np.float64),
    )


def _merge_columns(left: FeatureColumn, right: FeatureColumn, offset: int) -> FeatureColumn:
    # Rank of every entry in the merged order; left entries win ties.
    n_left = len(left)
    n_right = len(right)
    left_pos = np.arange(n_left) + np.searchsorted(right.values, left.values, side="left")
    right_pos = np.arange(n_right) + np.searchsorted(left.values, right.values, side="right")

    values = np.empty(n_left + n_right, dtype=np.float64)
    indices = np.empty(n_left + n_right, dtype=np.int64)
    values[left_pos] = left.values
    values[right_pos] = right.values
    indices[left_pos] = left.indices
    indices[right_pos] = right.indices + offset
    return FeatureColumn(indices=indices, values=values)


class Partition:
    """A subset of training instances plus one sorted column per numeric attribute.

    Splitting streams every column once and keeps it sorted, so no column is
    ever re-sorted after :meth:`create`. Nominal and binned attributes carry no
    column; their histograms are computed from the dense codes.
    """

    def __init__(
        self,
        instances: Instances,
        rows: np.ndarray,
        targets: np.ndarray,
        weights: np.ndarray,
        attributes: list[Attribute],
        columns: dict[int, FeatureColumn],
    ) -> None:
        self.instances = instances
        self.rows = rows
        self.targets = targets
        self.weights = weights
        self.attributes = attributes
        self.columns = columns

    @classmethod
    def create(
        cls,
        instances: Instances,
        targets: np.ndarray | None = None,
        attributes: list[Attribute] | None = None,
    ) -> Partition:
        if len(instances) == 0:
            raise InvalidInputError("cannot build a learner from zero instances")

        if targets is None:
            targets = instances.y
        else:
            targets = np.asarray(targets, dtype=np.float64)
            if targets.shape != instances.y.shape:
                raise ValueError("targets must have one value per instance")
        if attributes is None:
            attributes = instances.attributes

        columns = {
            attribute.index: _sorted_column(instances.X[:, attribute.index])
            for attribute in attributes
            if attribute.is_numeric
        }
        return cls(
            instances=instances,
            rows=np.arange(len(instances), dtype=np.int64),
            targets=np.array(targets, dtype=np.float64),
            weights=np.array(instances.weights, dtype=np.float64),
            attributes=list(attributes),
            columns=columns,
        )

    def __len__(self) -> int:
        return int(self.rows.size)

    @property
    def size(self) -> int:
        return int(self.rows.size)

    @property
    def total_weight(self) -> float:
        return float(self.weights.sum())

    @property
    def weighted_sum(self) -> float:
        return float(np.dot(self.weights, self.targets))

    @property
    def weighted_mean(self) -> float:
        total_weight = self.total_weight
        if total_weight <= 0.0:
            return 0.0
        return self.weighted_sum / total_weight

    @property
    def has_constant_target(self) -> bool:
        if self.targets.size == 0:
            return True
        return bool(np.all(self.targets == self.targets[0]))

    def feature_values(self, attribute_index: int) -> np.ndarray:
        """Dense values of one attribute, aligned with local positions."""
        return self.instances.X[self.rows, attribute_index]

    def with_targets(self, targets: np.ndarray) -> Partition:
        """Same instances and columns, with ``targets`` indexed by dataset row."""
        targets = np.asarray(targets, dtype=np.float64)
        if targets.shape[0] != len(self.instances):
            raise ValueError("targets must have one value per dataset row")
        return Partition(
            instances=self.instances,
            rows=self.rows,
            targets=targets[self.rows],
            weights=self.weights,
            attributes=self.attributes,
            columns=self.columns,
        )

    def split(self, attribute_index: int, threshold: float) -> tuple[Partition, Partition]:
        go_left = self.feature_values(attribute_index) <= threshold
        go_right = ~go_left

        # Local position of every instance inside the child it lands in.
        left_pos = np.cumsum(go_left) - 1
        right_pos = np.cumsum(go_right) - 1

        left_columns: dict[int, FeatureColumn] = {}
        right_columns: dict[int, FeatureColumn] = {}
        for index, column in self.columns.items():
            mask = go_left[column.indices]
            left_columns[index] = FeatureColumn(
                indices=left_pos[column.indices[mask]],
                values=column.values[mask],
            )
            right_columns[index] = FeatureColumn(
                indices=right_pos[column.indices[~mask]],
                values=column.values[~mask],
            )

        left = Partition(
            instances=self.instances,
            rows=self.rows[go_left],
            targets=self.targets[go_left],
            weights=self.weights[go_left],
            attributes=self.attributes,
            columns=left_columns,
        )
        right = Partition(
            instances=self.instances,
            rows=self.rows[go_right],
            targets=self.targets[go_right],
            weights=self.weights[go_right],
            attributes=self.attributes,
            columns=right_columns,
        )
        return left, right

    @staticmethod
    def merge(left: Partition, right: Partition) -> Partition:
        if left.instances is not right.instances:
            raise ValueError("cannot merge partitions of different datasets")
        if left.columns.keys() != right.columns.keys():
            raise ValueError("cannot merge partitions with different columns")

        offset = left.size
        columns = {
            index: _merge_columns(left.columns[index], right.columns[index], offset)
            for index in left.columns
        }
        return Partition(
            instances=left.instances,
            rows=np.concatenate([left.rows, right.rows]),
            targets=np.concatenate([left.targets, right.targets]),
            weights=np.concatenate([left.weights, right.weights]),
            attributes=left.attributes,
            columns=columns,
        )
