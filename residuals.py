from dataclasses import dataclass

import numpy as np

RESIDUAL_LOSSES = ("squared_error", "absolute_error")


@dataclass
class ResidualConfig:
    loss: str = "squared_error"  # one of: squared_error, absolute_error
    clip: float | None = None

    def __post_init__(self) -> None:
        if self.loss not in RESIDUAL_LOSSES:
            raise ValueError("loss must be one of: squared_error, absolute_error")
        if self.clip is not None and self.clip <= 0.0:
            raise ValueError("clip must be positive")


class ResidualProvider:
    """Per-round pseudo-residuals the next learner is fitted to."""

    def __init__(
        self,
        y: np.ndarray,
        pred: np.ndarray,
        config: ResidualConfig | None = None,
    ) -> None:
        self.y = np.asarray(y, dtype=np.float64)
        self.pred = np.asarray(pred, dtype=np.float64)
        if self.y.shape != self.pred.shape:
            raise ValueError("y and pred must have the same shape")

        self.config = config or ResidualConfig()
        self.residuals = self._compute_residuals()

    def _compute_residuals(self) -> np.ndarray:
        r = self.y - self.pred
        if self.config.loss == "absolute_error":
            r = np.sign(r)

        if self.config.clip is not None:
            r = np.clip(r, -self.config.clip, self.config.clip)

        return r.astype(np.float64)

    def loss(self) -> float:
        """Mean training loss at the current predictions."""
        diff = self.y - self.pred
        if self.config.loss == "absolute_error":
            return float(np.mean(np.abs(diff)))
        return float(np.mean(diff * diff))


def weighted_median(values: np.ndarray, weights: np.ndarray) -> float:
    """Median of ``values`` under ``weights``; an exact half-weight split averages the two middles.

    With unit weights this is the ordinary median. Returns 0.0 when there is no weight.
    """
    values = np.asarray(values, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    keep = weights > 0.0
    values = values[keep]
    weights = weights[keep]
    if values.size == 0:
        return 0.0

    order = np.argsort(values, kind="stable")
    values = values[order]
    cumulative = np.cumsum(weights[order])
    half = cumulative[-1] / 2
    k = int(np.searchsorted(cumulative, half, side="left"))
    if cumulative[k] == half and k + 1 < values.size:
        return float((values[k] + values[k + 1]) / 2)
    return float(values[k])
