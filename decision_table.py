from __future__ import annotations

import numpy as np

MAX_TABLE_DEPTH = 63


class DecisionTable:
    """Oblivious regression tree of fixed depth.

    Depth ``d`` holds one global rule ``(attribute_indices[d], thresholds[d])``.
    An instance's path is a bitmask whose bit ``depth - d - 1`` is set when the
    instance satisfies ``value <= threshold`` at depth ``d``. Only populated
    paths are stored, as parallel arrays sorted by bitmask.
    """

    def __init__(
        self,
        attribute_indices: np.ndarray,
        thresholds: np.ndarray,
        bitmasks: np.ndarray,
        predictions: np.ndarray,
    ) -> None:
        self.attribute_indices = np.asarray(attribute_indices, dtype=np.int64)
        self.thresholds = np.asarray(thresholds, dtype=np.float64)
        self.bitmasks = np.asarray(bitmasks, dtype=np.int64)
        self.predictions = np.asarray(predictions, dtype=np.float64)

        if self.attribute_indices.shape != self.thresholds.shape:
            raise ValueError("attribute_indices and thresholds must have the same length")
        if self.bitmasks.shape != self.predictions.shape:
            raise ValueError("bitmasks and predictions must have the same length")
        if self.depth > MAX_TABLE_DEPTH:
            raise ValueError(f"depth must be <= {MAX_TABLE_DEPTH}")
        if self.bitmasks.size > 1 and np.any(np.diff(self.bitmasks) <= 0):
            raise ValueError("bitmasks must be sorted strictly ascending")
        if self.bitmasks.size and (
            self.bitmasks[0] < 0 or self.bitmasks[-1] >= (1 << self.depth)
        ):
            raise ValueError("bitmasks must fit in depth bits")

    @property
    def depth(self) -> int:
        return int(self.attribute_indices.size)

    def __len__(self) -> int:
        return int(self.bitmasks.size)

    def bitmask(self, x: np.ndarray) -> int:
        x = np.asarray(x, dtype=np.float64)
        path = 0
        for attribute_index, threshold in zip(self.attribute_indices, self.thresholds):
            path <<= 1
            if x[attribute_index] <= threshold:
                path |= 1
        return path

    def regress_by_bitmask(self, bitmask: int) -> float:
        pos = int(np.searchsorted(self.bitmasks, bitmask))
        if pos < self.bitmasks.size and self.bitmasks[pos] == bitmask:
            return float(self.predictions[pos])
        return 0.0

    def regress(self, x: np.ndarray) -> float:
        return self.regress_by_bitmask(self.bitmask(x))

    def paths(self, X: np.ndarray) -> np.ndarray:
        """Bitmask of every row of ``X``."""
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2:
            raise ValueError("X must be a 2D array")
        if self.depth == 0:
            return np.zeros(X.shape[0], dtype=np.int64)
        go_left = X[:, self.attribute_indices] <= self.thresholds
        bits = np.left_shift(np.int64(1), np.arange(self.depth - 1, -1, -1, dtype=np.int64))
        return (go_left.astype(np.int64) * bits).sum(axis=1)

    def predict(self, X: np.ndarray) -> np.ndarray:
        paths = self.paths(X)
        if self.bitmasks.size == 0:
            return np.zeros(paths.shape[0], dtype=np.float64)
        pos = np.searchsorted(self.bitmasks, paths)
        clipped = np.minimum(pos, self.bitmasks.size - 1)
        found = self.bitmasks[clipped] == paths
        return np.where(found, self.predictions[clipped], 0.0)

    def scaled(self, c: float) -> DecisionTable:
        return DecisionTable(
            self.attribute_indices.copy(),
            self.thresholds.copy(),
            self.bitmasks.copy(),
            self.predictions * c,
        )
