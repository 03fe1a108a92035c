from __future__ import annotations

import numpy as np

from instances import Attribute, Instances


def build_bins(X: np.ndarray, max_bins: int = 32) -> list[np.ndarray]:
    """Build per-feature bin thresholds used to map values to integer bins."""
    if max_bins < 2:
        raise ValueError("max_bins must be at least 2")

    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError("X must be a 2D array")
    if not np.all(np.isfinite(X)):
        raise ValueError("X must be finite to be binned")

    thresholds: list[np.ndarray] = []
    quantiles = np.linspace(0.0, 1.0, max_bins + 1)[1:-1]

    for feature_idx in range(X.shape[1]):
        column = X[:, feature_idx]
        values = np.unique(column)
        if values.size <= 1:
            thresholds.append(np.array([], dtype=np.float64))
            continue

        if values.size <= max_bins:
            # Midpoints between adjacent unique values define exact ordered bins.
            mids = (values[:-1] + values[1:]) * 0.5
        else:
            mids = np.unique(np.quantile(column, quantiles, method="linear"))

        thresholds.append(np.asarray(mids, dtype=np.float64))

    return thresholds


def apply_bins(X: np.ndarray, bin_thresholds: list[np.ndarray | None]) -> np.ndarray:
    """Map every feature with thresholds to its bin code.

    Features whose thresholds are ``None`` are copied unchanged, so nominal
    attributes pass through next to binned ones.
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError("X must be a 2D array")
    if X.shape[1] != len(bin_thresholds):
        raise ValueError("bin_thresholds length must match number of features")

    X_bin = np.array(X, dtype=np.float64)
    for feature_idx, thresholds in enumerate(bin_thresholds):
        if thresholds is None:
            continue
        column = X[:, feature_idx]
        if not np.all(np.isfinite(column)):
            raise ValueError(f"feature {feature_idx} must be finite to be binned")
        # Values past the last threshold land in the top bin.
        X_bin[:, feature_idx] = np.searchsorted(thresholds, column, side="right")

    return X_bin


def discretize(
    instances: Instances,
    max_bins: int = 32,
) -> tuple[Instances, list[np.ndarray | None]]:
    """Replace every numeric attribute by a binned one with at most ``max_bins`` codes.

    Returns the binned instances and the per-feature thresholds needed to bin
    new data with :func:`apply_bins` (``None`` for attributes left as they are).
    """
    numeric = [attribute.index for attribute in instances.attributes if attribute.is_numeric]
    numeric_thresholds = build_bins(instances.X[:, numeric], max_bins=max_bins)

    bin_thresholds: list[np.ndarray | None] = [None] * instances.dimension
    for feature_idx, thresholds in zip(numeric, numeric_thresholds):
        bin_thresholds[feature_idx] = thresholds

    attributes: list[Attribute] = []
    for attribute in instances.attributes:
        if attribute.is_numeric:
            attribute = Attribute(
                index=attribute.index,
                kind="binned",
                cardinality=int(bin_thresholds[attribute.index].size) + 1,
                name=attribute.name,
            )
        attributes.append(attribute)

    X_bin = apply_bins(instances.X, bin_thresholds)
    return Instances(X_bin, instances.y, instances.weights, attributes), bin_thresholds
