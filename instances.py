from __future__ import annotations

from dataclasses import dataclass

import numpy as np

ATTRIBUTE_KINDS = ("numeric", "nominal", "binned")


@dataclass(frozen=True)
class Attribute:
    index: int
    kind: str = "numeric"  # one of: numeric, nominal, binned
    cardinality: int | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError("index must be non-negative")
        if self.kind not in ATTRIBUTE_KINDS:
            raise ValueError("kind must be one of: numeric, nominal, binned")
        if self.kind != "numeric":
            if self.cardinality is None or self.cardinality < 1:
                raise ValueError("cardinality must be >= 1 for nominal and binned attributes")

    @property
    def is_numeric(self) -> bool:
        return self.kind == "numeric"


class Instances:
    """Dense training set: feature matrix, targets, weights and attribute metadata.

    A zero entry in ``X`` plays the role of an absent value in sparse storage;
    sorted columns built from these instances omit it.
    """

    def __init__(
        self,
        X: np.ndarray,
        y: np.ndarray,
        weights: np.ndarray | None = None,
        attributes: list[Attribute] | None = None,
    ) -> None:
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if X.ndim != 2:
            raise ValueError("X must be a 2D array")
        if y.ndim != 1 or y.shape[0] != X.shape[0]:
            raise ValueError("y must be a 1D array with the same number of rows as X")

        if weights is None:
            weights = np.ones(X.shape[0], dtype=np.float64)
        else:
            weights = np.asarray(weights, dtype=np.float64)
            if weights.shape != y.shape:
                raise ValueError("weights must have the same shape as y")
            if np.any(weights < 0.0):
                raise ValueError("weights must be non-negative")

        if attributes is None:
            attributes = [Attribute(index=j) for j in range(X.shape[1])]
        for attribute in attributes:
            if attribute.index >= X.shape[1]:
                raise ValueError(f"attribute index {attribute.index} is out of range")
            if not attribute.is_numeric:
                codes = X[:, attribute.index]
                if codes.size and (
                    np.any(codes < 0)
                    or np.any(codes >= attribute.cardinality)
                    or np.any(codes != np.floor(codes))
                ):
                    raise ValueError(
                        f"attribute {attribute.index} must hold integer codes in [0, cardinality)"
                    )

        self.X = X
        self.y = y
        self.weights = weights
        self.attributes = list(attributes)

    def __len__(self) -> int:
        return int(self.X.shape[0])

    @property
    def dimension(self) -> int:
        return int(self.X.shape[1])

    def with_targets(self, targets: np.ndarray) -> Instances:
        """Return a view of these instances with ``targets`` in place of ``y``."""
        targets = np.asarray(targets, dtype=np.float64)
        if targets.shape != self.y.shape:
            raise ValueError("targets must have the same shape as y")
        view = Instances.__new__(Instances)
        view.X = self.X
        view.y = targets
        view.weights = self.weights
        view.attributes = self.attributes
        return view

