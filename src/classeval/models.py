from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any, Protocol

import numpy as np
import pandas as pd
from sklearn.dummy import DummyClassifier
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.neighbors import KNeighborsClassifier

from .config import ModelConfig
from .errors import InvalidConfiguration, SchemaError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainedModel:
    """A fitted estimator bound to one ModelConfig and one training set."""

    config: ModelConfig
    estimator: Any
    feature_columns: tuple[str, ...]
    label_column: str
    n_training: int

    @property
    def classes(self) -> list:
        return list(getattr(self.estimator, "classes_", []))


class Model(Protocol):
    def train(
        self,
        config: ModelConfig,
        training: pd.DataFrame,
        label_column: str,
        *,
        seed: int | None = None,
    ) -> TrainedModel: ...

    def predict(self, handle: TrainedModel, record: Mapping[str, Any]) -> Any: ...


def _split_features(
    frame: pd.DataFrame, label_column: str
) -> tuple[pd.DataFrame, pd.Series]:
    if label_column not in frame.columns:
        raise SchemaError(
            f"Label column '{label_column}' not found. Available: {list(frame.columns)}"
        )
    y = frame[label_column]
    if y.isna().any():
        raise SchemaError(f"Label column '{label_column}' has {int(y.isna().sum())} missing values")

    X = frame.drop(columns=[label_column])
    if X.shape[1] == 0:
        raise SchemaError("No feature columns besides the label")
    wrong = [c for c in X.columns if not pd.api.types.is_numeric_dtype(X[c])]
    if wrong:
        raise SchemaError(f"Feature columns must be numeric (apply a preprocessor first): {wrong}")
    return X, y


def _as_python(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


class EstimatorModel:
    """Model backed by a scikit-learn classifier factory.

    Hyperparameters from the ModelConfig are checked against the estimator's
    parameter names before fitting; values are validated by scikit-learn at fit.
    """

    def __init__(self, factory: Callable[[], Any], defaults: Mapping[str, Any] | None = None):
        self.factory = factory
        self.defaults = dict(defaults or {})

    def build(self, config: ModelConfig, *, seed: int | None = None):
        estimator = self.factory()
        valid = estimator.get_params()

        params = {**self.defaults, **config.params}
        unknown = sorted(set(params) - set(valid))
        if unknown:
            raise InvalidConfiguration(
                f"Unsupported hyperparameters for '{config.algorithm}': {unknown}"
            )
        if seed is not None and "random_state" in valid and "random_state" not in config.params:
            params["random_state"] = seed

        estimator.set_params(**params)
        return estimator

    def train(
        self,
        config: ModelConfig,
        training: pd.DataFrame,
        label_column: str,
        *,
        seed: int | None = None,
    ) -> TrainedModel:
        X, y = _split_features(training, label_column)
        estimator = self.build(config, seed=seed)

        n_neighbors = estimator.get_params().get("n_neighbors")
        if isinstance(n_neighbors, int) and n_neighbors > len(X):
            raise InvalidConfiguration(
                f"n_neighbors={n_neighbors} exceeds the {len(X)} training records"
            )

        try:
            estimator.fit(X.to_numpy(dtype=float), y.to_numpy())
        except ValueError as exc:
            raise InvalidConfiguration(
                f"Cannot fit '{config.name}': {exc}"
            ) from exc

        logger.debug("trained %s (%s) on %d records", config.name, config.algorithm, len(X))
        return TrainedModel(
            config=config,
            estimator=estimator,
            feature_columns=tuple(str(c) for c in X.columns),
            label_column=label_column,
            n_training=len(X),
        )

    def predict(self, handle: TrainedModel, record: Mapping[str, Any]) -> Any:
        missing = [c for c in handle.feature_columns if c not in record]
        if missing:
            raise SchemaError(f"Record is missing feature columns: {missing}")
        row = np.asarray([[float(record[c]) for c in handle.feature_columns]])
        return _as_python(handle.estimator.predict(row)[0])


_REGISTRY: dict[str, Model] = {
    "random_forest": EstimatorModel(RandomForestClassifier, {"n_estimators": 100}),
    "knn": EstimatorModel(KNeighborsClassifier),
    "gradient_boosting": EstimatorModel(GradientBoostingClassifier),
    "logreg": EstimatorModel(LogisticRegression, {"max_iter": 300}),
    "majority": EstimatorModel(partial(DummyClassifier, strategy="most_frequent")),
}


def register_model(algorithm: str, model: Model) -> None:
    _REGISTRY[algorithm] = model


def available_algorithms() -> list[str]:
    return sorted(_REGISTRY)


def get_model(algorithm: str) -> Model:
    try:
        return _REGISTRY[algorithm]
    except KeyError:
        raise InvalidConfiguration(
            f"Unsupported algorithm: {algorithm!r}. Available: {available_algorithms()}"
        ) from None


def train(
    config: ModelConfig,
    training: pd.DataFrame,
    label_column: str,
    *,
    seed: int | None = None,
) -> TrainedModel:
    return get_model(config.algorithm).train(config, training, label_column, seed=seed)


def predict(handle: TrainedModel, record: Mapping[str, Any]) -> Any:
    return get_model(handle.config.algorithm).predict(handle, record)


def predict_frame(handle: TrainedModel, frame: pd.DataFrame) -> pd.Series:
    """Predict every row of `frame`; the result is indexed by record id."""
    missing = [c for c in handle.feature_columns if c not in frame.columns]
    if missing:
        raise SchemaError(f"Frame is missing feature columns: {missing}")
    model = get_model(handle.config.algorithm)
    if isinstance(model, EstimatorModel):
        X = frame[list(handle.feature_columns)].to_numpy(dtype=float)
        values = handle.estimator.predict(X)
    else:
        values = [model.predict(handle, row) for _, row in frame.iterrows()]
    return pd.Series(values, index=frame.index, name="prediction")
