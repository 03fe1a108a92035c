from __future__ import annotations

from dataclasses import dataclass
import logging
import time

import numpy as np

from decision_table import MAX_TABLE_DEPTH, DecisionTable
from errors import InvalidInputError
from instances import Attribute, Instances
from sorted_columns import Partition
from split_search import build_histogram, midpoints, split_gain

logger = logging.getLogger(__name__)

TABLE_MODES = ("greedy", "cyclic", "random")
_MODE_CODES = {"g": "greedy", "c": "cyclic", "r": "random"}

# Ordered (bitmask, partition) pairs, ascending by bitmask.
PartitionMap = list[tuple[int, Partition]]


@dataclass
class TableBuilderParams:
    mode: str = "greedy"  # one of: greedy, cyclic, random
    max_depth: int = 6

    # Full sweeps over the depths; greedy always makes exactly one.
    num_passes: int = 2

    random_state: int = 0

    def __post_init__(self) -> None:
        if self.mode not in TABLE_MODES:
            raise ValueError("mode must be one of: greedy, cyclic, random")
        if self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if self.max_depth > MAX_TABLE_DEPTH:
            raise ValueError(f"max_depth must be <= {MAX_TABLE_DEPTH}")
        if self.num_passes < 1:
            raise ValueError("num_passes must be >= 1")

    @property
    def effective_passes(self) -> int:
        return 1 if self.mode == "greedy" else self.num_passes

    @classmethod
    def from_mode_string(cls, mode: str, **kwargs) -> TableBuilderParams:
        """Parse ``kind:depth`` such as ``g:6``, ``c:4`` or ``r:8``."""
        parts = mode.split(":")
        if len(parts) != 2 or parts[0] not in _MODE_CODES:
            raise ValueError(f"invalid table construction mode: {mode!r}")
        return cls(mode=_MODE_CODES[parts[0]], max_depth=int(parts[1]), **kwargs)


@dataclass
class TableBuildMetrics:
    passes: int = 0
    depths_decided: int = 0
    merges: int = 0
    candidates_evaluated: int = 0
    truncated_at: int | None = None
    split_search_time_sec: float = 0.0


class DecisionTableBuilder:
    """Builds a :class:`DecisionTable` by choosing one global rule per depth.

    The active partitions live in a map keyed by path bitmask. Deciding depth
    ``d`` splits every partition on the same rule and sets bit ``D - d - 1``
    on the side with ``value <= threshold``. On later passes the two children
    of every depth-``d`` split are merged back first, and the rule for ``d`` is
    chosen again with every other depth held fixed.
    """

    def __init__(
        self,
        params: TableBuilderParams | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.params = params or TableBuilderParams()
        self.rng = rng if rng is not None else np.random.default_rng(self.params.random_state)
        self.metrics = TableBuildMetrics()

    def build(self, instances: Instances, targets: np.ndarray | None = None) -> DecisionTable:
        return self.build_table(Partition.create(instances, targets=targets))

    def build_table(self, partition: Partition) -> DecisionTable:
        if partition.size == 0:
            raise InvalidInputError("cannot build a decision table from an empty partition")
        depth = self.params.max_depth
        if depth > MAX_TABLE_DEPTH:
            raise ValueError(f"max_depth must be <= {MAX_TABLE_DEPTH}")

        self.metrics = TableBuildMetrics()
        attribute_indices = np.zeros(depth, dtype=np.int64)
        thresholds = np.zeros(depth, dtype=np.float64)
        partitions: PartitionMap = [(0, partition)]
        candidates = self._candidate_thresholds(partition)

        truncated_at: int | None = None
        for pass_index in range(self.params.effective_passes):
            self.metrics.passes += 1
            for step in range(depth):
                d = self._next_depth(pass_index, step, depth)
                bit = 1 << (depth - d - 1)
                if pass_index > 0:
                    partitions = self._merge_depth(partitions, bit)

                rule = self._best_rule(partitions, candidates)
                if rule is None:
                    if pass_index == 0:
                        truncated_at = d
                        break
                    rule = (int(attribute_indices[d]), float(thresholds[d]))

                attribute_indices[d], thresholds[d] = rule
                partitions = self._split_depth(partitions, rule, bit)
                self.metrics.depths_decided += 1
                logger.debug(
                    "pass=%d depth=%d attribute=%d threshold=%g partitions=%d",
                    pass_index,
                    d,
                    rule[0],
                    rule[1],
                    len(partitions),
                )
            if truncated_at is not None:
                break

        if truncated_at is not None:
            # Only the bits of depths < truncated_at are set.
            shift = depth - truncated_at
            partitions = [(key >> shift, data) for key, data in partitions]
            attribute_indices = attribute_indices[:truncated_at]
            thresholds = thresholds[:truncated_at]
            self.metrics.truncated_at = truncated_at

        table = DecisionTable(
            attribute_indices=attribute_indices,
            thresholds=thresholds,
            bitmasks=np.asarray([key for key, _ in partitions], dtype=np.int64),
            predictions=np.asarray([data.weighted_mean for _, data in partitions], dtype=np.float64),
        )
        logger.info(
            "built %s decision table: size=%d depth=%d leaves=%d passes=%d merges=%d",
            self.params.mode,
            partition.size,
            table.depth,
            len(table),
            self.metrics.passes,
            self.metrics.merges,
        )
        return table

    def _next_depth(self, pass_index: int, step: int, depth: int) -> int:
        if pass_index == 0 or self.params.mode != "random":
            return step
        return int(self.rng.integers(depth))

    def _candidate_thresholds(self, partition: Partition) -> dict[int, np.ndarray]:
        """Global candidate thresholds per attribute; attributes with one value are skipped."""
        candidates: dict[int, np.ndarray] = {}
        for attribute in partition.attributes:
            values = self._distinct_values(partition, attribute)
            if values.size > 1:
                candidates[attribute.index] = values
        return candidates

    @staticmethod
    def _distinct_values(partition: Partition, attribute: Attribute) -> np.ndarray:
        if not attribute.is_numeric:
            return np.arange(attribute.cardinality, dtype=np.float64)
        column = partition.columns[attribute.index]
        values = np.unique(column.values)
        if len(column) < partition.size:
            values = np.insert(values, int(np.searchsorted(values, 0.0)), 0.0)
        return values

    def _best_rule(
        self,
        partitions: PartitionMap,
        candidates: dict[int, np.ndarray],
    ) -> tuple[int, float] | None:
        start = time.perf_counter()
        best_gain = -float("inf")
        ties: list[tuple[int, float]] = []

        for attribute in partitions[0][1].attributes:
            values = candidates.get(attribute.index)
            if values is None:
                continue
            bounds = values[:-1]
            gains = np.zeros(bounds.size, dtype=np.float64)
            for _, data in partitions:
                histogram = build_histogram(data, attribute)
                total_weight = data.total_weight
                total_sum = data.weighted_sum
                cum_weights = np.r_[0.0, np.cumsum(histogram.weights)]
                cum_sums = np.r_[0.0, np.cumsum(histogram.sums)]
                # Buckets with value <= bound fall on the left.
                k = np.searchsorted(histogram.values, bounds, side="right")
                left_weights = cum_weights[k]
                left_sums = cum_sums[k]
                gains += split_gain(left_sums, left_weights) + split_gain(
                    total_sum - left_sums,
                    total_weight - left_weights,
                )
            self.metrics.candidates_evaluated += int(bounds.size)

            feature_best = float(gains.max())
            if not np.isfinite(feature_best) or feature_best < best_gain:
                continue
            if feature_best > best_gain:
                best_gain = feature_best
                ties = []
            thresholds = midpoints(values)
            for k in np.flatnonzero(gains == feature_best):
                ties.append((attribute.index, float(thresholds[k])))

        self.metrics.split_search_time_sec += time.perf_counter() - start
        if not ties:
            return None
        return ties[int(self.rng.integers(len(ties)))]

    @staticmethod
    def _split_depth(partitions: PartitionMap, rule: tuple[int, float], bit: int) -> PartitionMap:
        attribute_index, threshold = rule
        children: PartitionMap = []
        for key, data in partitions:
            left, right = data.split(attribute_index, threshold)
            if left.size:
                children.append((key | bit, left))
            if right.size:
                children.append((key, right))
        children.sort(key=lambda item: item[0])
        return children

    def _merge_depth(self, partitions: PartitionMap, bit: int) -> PartitionMap:
        """Undo one depth: rejoin every pair of partitions differing only in ``bit``."""
        pairs: dict[int, list[Partition | None]] = {}
        for key, data in partitions:
            slot = pairs.setdefault(key & ~bit, [None, None])
            slot[0 if key & bit else 1] = data

        merged: PartitionMap = []
        for key in sorted(pairs):
            left, right = pairs[key]
            if left is not None and right is not None:
                merged.append((key, Partition.merge(left, right)))
                self.metrics.merges += 1
            else:
                merged.append((key, left if left is not None else right))
        return merged
