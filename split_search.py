from __future__ import annotations

from dataclasses import dataclass, field
import time

import numpy as np

from instances import Attribute
from sorted_columns import Partition

EPSILON = 1e-8


@dataclass(frozen=True)
class SplitCandidate:
    attribute_index: int
    threshold: float


@dataclass
class SplitSearchMetrics:
    features_evaluated: int = 0
    buckets_scanned: int = 0
    tied_candidates: int = 0
    time_spent_sec: float = 0.0


@dataclass
class SplitSearchResult:
    candidate: SplitCandidate | None
    gain: float
    reduction: float
    metrics: SplitSearchMetrics = field(default_factory=SplitSearchMetrics)


@dataclass(frozen=True)
class Histogram:
    """Distinct values of one attribute with their weight and weighted-target sums."""

    values: np.ndarray
    weights: np.ndarray
    sums: np.ndarray

    def __len__(self) -> int:
        return int(self.values.size)


def split_gain(sums: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """``sum**2 / weight`` per side; sides lighter than EPSILON score 0."""
    sums = np.asarray(sums, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    light = weights < EPSILON
    safe_weights = np.where(light, 1.0, weights)
    return np.where(light, 0.0, sums * sums / safe_weights)


def node_gain(total_sum: float, total_weight: float) -> float:
    if total_weight < EPSILON:
        return 0.0
    return total_sum * total_sum / total_weight


def _numeric_histogram(partition: Partition, attribute_index: int) -> Histogram:
    column = partition.columns[attribute_index]
    weights = partition.weights[column.indices]
    sums = weights * partition.targets[column.indices]

    if len(column) > 0:
        starts = np.flatnonzero(np.r_[True, column.values[1:] != column.values[:-1]])
        values = column.values[starts]
        bucket_weights = np.add.reduceat(weights, starts)
        bucket_sums = np.add.reduceat(sums, starts)
    else:
        values = np.empty(0, dtype=np.float64)
        bucket_weights = np.empty(0, dtype=np.float64)
        bucket_sums = np.empty(0, dtype=np.float64)

    if len(column) < partition.size:
        # Zeros are not stored in the column; rebuild their bucket.
        on_zero = np.ones(partition.size, dtype=bool)
        on_zero[column.indices] = False
        zero_weights = partition.weights[on_zero]
        zero_weight = float(zero_weights.sum())
        zero_sum = float(np.dot(zero_weights, partition.targets[on_zero]))
        pos = int(np.searchsorted(values, 0.0))
        values = np.insert(values, pos, 0.0)
        bucket_weights = np.insert(bucket_weights, pos, zero_weight)
        bucket_sums = np.insert(bucket_sums, pos, zero_sum)

    return Histogram(values=values, weights=bucket_weights, sums=bucket_sums)


def _categorical_histogram(partition: Partition, attribute: Attribute) -> Histogram:
    codes = partition.feature_values(attribute.index).astype(np.int64)
    counts = np.bincount(codes, minlength=attribute.cardinality)
    weights = np.bincount(codes, weights=partition.weights, minlength=attribute.cardinality)
    sums = np.bincount(
        codes,
        weights=partition.weights * partition.targets,
        minlength=attribute.cardinality,
    )
    present = np.flatnonzero(counts)
    return Histogram(
        values=present.astype(np.float64),
        weights=weights[present],
        sums=sums[present],
    )


def build_histogram(partition: Partition, attribute: Attribute) -> Histogram:
    if attribute.is_numeric:
        return _numeric_histogram(partition, attribute.index)
    return _categorical_histogram(partition, attribute)


def evaluate_splits(
    histogram: Histogram,
    total_weight: float,
    total_sum: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Return (thresholds, gains) for every boundary between adjacent buckets."""
    if len(histogram) <= 1:
        empty = np.empty(0, dtype=np.float64)
        return empty, empty

    left_weights = np.cumsum(histogram.weights)[:-1]
    left_sums = np.cumsum(histogram.sums)[:-1]
    gains = split_gain(left_sums, left_weights) + split_gain(
        total_sum - left_sums,
        total_weight - left_weights,
    )
    return midpoints(histogram.values), gains


def midpoints(values: np.ndarray) -> np.ndarray:
    """Thresholds between adjacent sorted distinct values."""
    lower = values[:-1]
    upper = values[1:]
    middle = (lower + upper) / 2
    # Adjacent doubles can round the midpoint up onto the upper value.
    return np.where(middle < upper, middle, lower)


class HistogramSplitSearch:
    """Variance-reduction split search for one partition over a set of attributes.

    Every candidate attaining the maximum gain, across all evaluated
    attributes, is kept; the winner is drawn uniformly from ``rng``.
    """

    def __init__(
        self,
        partition: Partition,
        rng: np.random.Generator,
        attributes: list[Attribute] | None = None,
    ) -> None:
        self.partition = partition
        self.rng = rng
        self.attributes = partition.attributes if attributes is None else attributes

    def search(self) -> SplitSearchResult:
        start = time.perf_counter()
        metrics = SplitSearchMetrics()

        total_weight = self.partition.total_weight
        total_sum = self.partition.weighted_sum

        best_gain = -float("inf")
        ties: list[SplitCandidate] = []
        for attribute in self.attributes:
            histogram = build_histogram(self.partition, attribute)
            metrics.features_evaluated += 1
            metrics.buckets_scanned += len(histogram)

            thresholds, gains = evaluate_splits(histogram, total_weight, total_sum)
            if gains.size == 0:
                continue
            feature_best = float(gains.max())
            if not np.isfinite(feature_best) or feature_best < best_gain:
                continue
            if feature_best > best_gain:
                best_gain = feature_best
                ties = []
            for k in np.flatnonzero(gains == feature_best):
                ties.append(SplitCandidate(attribute.index, float(thresholds[k])))

        metrics.tied_candidates = len(ties)
        if not ties:
            metrics.time_spent_sec = time.perf_counter() - start
            return SplitSearchResult(None, -float("inf"), 0.0, metrics)

        candidate = ties[int(self.rng.integers(len(ties)))]
        reduction = best_gain - node_gain(total_sum, total_weight)
        metrics.time_spent_sec = time.perf_counter() - start
        return SplitSearchResult(candidate, best_gain, reduction, metrics)
