from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import pandas as pd
from sklearn.cluster import HDBSCAN, KMeans

from .config import ClusterConfig
from .errors import InvalidConfiguration
from .preprocess import apply, fit_preprocessor

logger = logging.getLogger(__name__)

NOISE = -1

CLUSTERERS = {
    "kmeans": (KMeans, {"n_clusters": 3, "n_init": 10}),
    "hdbscan": (HDBSCAN, {"min_cluster_size": 5}),
}


@dataclass(frozen=True)
class ClusterResult:
    """Cluster id per record id; HDBSCAN also reports a membership probability."""

    algorithm: str
    assignments: pd.Series
    confidence: pd.Series | None = None

    @property
    def n_clusters(self) -> int:
        return int(self.assignments[self.assignments != NOISE].nunique())

    @property
    def n_noise(self) -> int:
        return int((self.assignments == NOISE).sum())

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "algorithm": self.algorithm,
            "assignments": {str(k): int(v) for k, v in self.assignments.items()},
        }
        if self.confidence is not None:
            out["confidence"] = {str(k): float(v) for k, v in self.confidence.items()}
        return out


def _build(config: ClusterConfig):
    try:
        factory, defaults = CLUSTERERS[config.algorithm]
    except KeyError:
        raise InvalidConfiguration(
            f"Unsupported clustering algorithm: {config.algorithm!r}. "
            f"Available: {sorted(CLUSTERERS)}"
        ) from None

    estimator = factory()
    valid = estimator.get_params()
    params = {**defaults, **config.params}
    unknown = sorted(set(params) - set(valid))
    if unknown:
        raise InvalidConfiguration(
            f"Unsupported hyperparameters for '{config.algorithm}': {unknown}"
        )
    if "random_state" in valid and "random_state" not in config.params:
        params["random_state"] = config.random_state
    return estimator.set_params(**params)


def cluster(
    dataset: pd.DataFrame,
    algorithm_config: ClusterConfig,
    *,
    numeric_columns: Sequence[str],
    categorical_columns: Sequence[str] = (),
) -> ClusterResult:
    """
    Assign every record of `dataset` to a cluster.

    No labels are consumed. Features are standardized/encoded on the dataset
    itself since there is no held-out side.
    """
    transform = fit_preprocessor(dataset, numeric_columns, categorical_columns)
    X = apply(transform, dataset).to_numpy(dtype=float)

    estimator = _build(algorithm_config)
    n_clusters = estimator.get_params().get("n_clusters")
    if isinstance(n_clusters, int) and n_clusters > len(X):
        raise InvalidConfiguration(f"n_clusters={n_clusters} exceeds the {len(X)} records")
    for name in ("min_cluster_size", "min_samples"):
        value = estimator.get_params().get(name)
        if isinstance(value, int) and value > len(X):
            raise InvalidConfiguration(f"{name}={value} exceeds the {len(X)} records")

    try:
        labels = estimator.fit_predict(X)
    except ValueError as exc:
        raise InvalidConfiguration(
            f"Cannot fit '{algorithm_config.algorithm}': {exc}"
        ) from exc

    assignments = pd.Series(labels, index=dataset.index, name="cluster").astype(int)
    confidence = None
    if hasattr(estimator, "probabilities_"):
        confidence = pd.Series(estimator.probabilities_, index=dataset.index, name="confidence")

    result = ClusterResult(
        algorithm=algorithm_config.algorithm, assignments=assignments, confidence=confidence
    )
    logger.debug(
        "%s: %d clusters, %d noise records",
        algorithm_config.algorithm,
        result.n_clusters,
        result.n_noise,
    )
    return result


def cross_tabulate(result: ClusterResult, labels: pd.Series) -> pd.DataFrame:
    """Withheld labels (rows) against cluster ids (columns); for qualitative comparison only."""
    aligned = labels.reindex(result.assignments.index)
    return pd.crosstab(aligned.rename("label"), result.assignments.rename("cluster"))
