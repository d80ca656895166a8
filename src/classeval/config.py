from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

UNKNOWN_POLICIES = ("unknown", "error")


@dataclass(frozen=True)
class EvalConfig:
    """Configuration for split/train/evaluate runs.

    Notes:
      - proportion: share of records that go to the training side.
      - random_state: root seed; per-split seeds are derived from it.
    """

    proportion: float = 0.8
    random_state: int = 42
    iterations: int = 25

    # Optional: stratify splits on the label column
    stratify: bool = False

    # MLflow
    tracking_uri: str | None = None  # None -> MLflow default (./mlruns if run locally)
    experiment_name: str = "classeval"


@dataclass(frozen=True)
class ModelConfig:
    """A named model configuration: algorithm + hyperparameters.

    `params` is stored as a read-only mapping so a config can be shared between
    runs without one run mutating another's hyperparameters.
    """

    name: str
    algorithm: str
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    def to_json(self) -> dict[str, Any]:
        return {"name": self.name, "algorithm": self.algorithm, "params": dict(self.params)}


@dataclass(frozen=True)
class ClusterConfig:
    """Configuration for a label-free clustering run (kmeans or hdbscan)."""

    algorithm: str = "kmeans"
    params: Mapping[str, Any] = field(default_factory=dict)
    random_state: int = 42

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))


@dataclass(frozen=True)
class FeatureSpec:
    """Which columns of a dataset are the label and the predictors.

    unknown_policy: "unknown" maps categories unseen in training to an explicit
    bucket, "error" raises UnseenCategory.
    """

    label_column: str
    numeric_columns: tuple[str, ...] = ()
    categorical_columns: tuple[str, ...] = ()
    unknown_policy: str = "unknown"

    def __post_init__(self) -> None:
        object.__setattr__(self, "numeric_columns", tuple(self.numeric_columns))
        object.__setattr__(self, "categorical_columns", tuple(self.categorical_columns))

    @property
    def predictors(self) -> list[str]:
        return [*self.numeric_columns, *self.categorical_columns]
