from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from decision_table import DecisionTable


@dataclass(frozen=True)
class FeatureEntries:
    """Every ``(threshold, table, bit)`` rule on one feature, threshold descending.

    ``negated_thresholds`` is ascending so ``np.searchsorted`` can find how
    many rules a value satisfies. ``num_non_negative`` counts the rules with
    ``threshold >= 0``; a feature at its implicit zero satisfies exactly those.
    """

    negated_thresholds: np.ndarray
    table_ids: np.ndarray
    bits: np.ndarray
    num_non_negative: int

    def __len__(self) -> int:
        return int(self.table_ids.size)


class EnsembleScoringIndex:
    """Scores an additive ensemble of decision tables one feature at a time.

    Each table starts from a baseline bitmask that assumes every feature is
    zero. Scoring an instance then touches only its nonzero features: the
    rules a value satisfies get their bit set, and baseline bits it no longer
    satisfies are cleared. The sum of the tables' leaf values at the final
    bitmasks equals the sum of their individual ``regress`` calls.
    """

    def __init__(
        self,
        tables: list[DecisionTable],
        entries: dict[int, FeatureEntries],
        baselines: np.ndarray,
    ) -> None:
        self.tables = tables
        self.entries = entries
        self.baselines = baselines

    @classmethod
    def build(cls, tables: list[DecisionTable]) -> EnsembleScoringIndex:
        tables = list(tables)
        baselines = np.zeros(len(tables), dtype=np.int64)
        per_feature: dict[int, list[tuple[float, int, int]]] = {}
        for table_id, table in enumerate(tables):
            depth = table.depth
            for d in range(depth):
                bit = 1 << (depth - d - 1)
                threshold = float(table.thresholds[d])
                per_feature.setdefault(int(table.attribute_indices[d]), []).append(
                    (threshold, table_id, bit)
                )
                if threshold >= 0.0:
                    baselines[table_id] |= bit

        entries: dict[int, FeatureEntries] = {}
        for feature, rules in per_feature.items():
            rules.sort(key=lambda rule: -rule[0])
            thresholds = np.asarray([rule[0] for rule in rules], dtype=np.float64)
            entries[feature] = FeatureEntries(
                negated_thresholds=-thresholds,
                table_ids=np.asarray([rule[1] for rule in rules], dtype=np.int64),
                bits=np.asarray([rule[2] for rule in rules], dtype=np.int64),
                num_non_negative=int(np.count_nonzero(thresholds >= 0.0)),
            )
        return cls(tables, entries, baselines)

    def __len__(self) -> int:
        return len(self.tables)

    def bitmasks(self, x: np.ndarray) -> np.ndarray:
        """Path bitmask of ``x`` in every table."""
        x = np.asarray(x, dtype=np.float64)
        masks = self.baselines.copy()
        for feature in np.flatnonzero(x):
            feature_entries = self.entries.get(int(feature))
            if feature_entries is None:
                continue
            value = x[feature]
            if np.isnan(value):
                # NaN compares false against every threshold.
                satisfied = 0
            else:
                satisfied = int(np.searchsorted(feature_entries.negated_thresholds, -value, side="right"))
            np.bitwise_or.at(
                masks,
                feature_entries.table_ids[:satisfied],
                feature_entries.bits[:satisfied],
            )
            if satisfied < feature_entries.num_non_negative:
                lost = slice(satisfied, feature_entries.num_non_negative)
                np.bitwise_and.at(
                    masks,
                    feature_entries.table_ids[lost],
                    ~feature_entries.bits[lost],
                )
        return masks

    def regress(self, x: np.ndarray) -> float:
        masks = self.bitmasks(x)
        total = 0.0
        for table, mask in zip(self.tables, masks):
            total += table.regress_by_bitmask(int(mask))
        return total

    def predict(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2:
            raise ValueError("X must be a 2D array")
        return np.fromiter((self.regress(row) for row in X), dtype=np.float64, count=X.shape[0])
