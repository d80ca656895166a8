"""
Preprocessing fit on the training side of a split and applied unchanged to both sides.

Numeric columns are median-imputed then centered and divided by the sample standard
deviation. Categorical columns are read as string labels, mode-imputed, then one-hot
encoded against the vocabulary observed in training. Every statistic comes from the
frame passed to `fit_preprocessor`, never from the frames later passed to `apply`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.compose import ColumnTransformer
from sklearn.impute import SimpleImputer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import FunctionTransformer, StandardScaler
from sklearn.utils.validation import check_is_fitted

from .config import UNKNOWN_POLICIES
from .data import validate_schema
from .errors import InvalidConfiguration, SchemaError, UnseenCategory

logger = logging.getLogger(__name__)

UNKNOWN = "__unknown__"


def _label(value) -> str:
    # numeric codes read as float when a column carries NaN
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def as_category_labels(X) -> pd.DataFrame:
    """String labels for categorical values; missing values become NaN for the imputer."""
    frame = pd.DataFrame(X).astype(object)
    for col in frame.columns:
        labels = [np.nan if pd.isna(v) else _label(v) for v in frame[col]]
        frame[col] = np.asarray(labels, dtype=object)
    return frame


class SampleStandardScaler(StandardScaler):
    """StandardScaler dividing by the sample (ddof=1) standard deviation."""

    def fit(self, X, y=None, sample_weight=None):
        super().fit(X, y, sample_weight)
        n = np.asarray(self.n_samples_seen_, dtype=float)
        if self.with_std and np.all(n > 1):
            var = self.var_ * n / (n - 1)
            self.scale_ = np.where(var > 0, np.sqrt(var), 1.0)
        return self


class CategoryEncoder(TransformerMixin, BaseEstimator):
    """
    One-hot encoder with an explicit policy for categories unseen during fit.

    unknown_policy="unknown" adds one `<column>___unknown__` indicator per column
    that lights up for unseen values; unknown_policy="error" raises UnseenCategory.
    Expects labels already imputed (see `build_preprocess`).
    """

    def __init__(self, unknown_policy: str = "unknown"):
        self.unknown_policy = unknown_policy

    def _as_frame(self, X) -> pd.DataFrame:
        if isinstance(X, pd.DataFrame):
            return X
        columns = getattr(self, "feature_names_in_", None)
        return pd.DataFrame(X, columns=None if columns is None else list(columns))

    def fit(self, X, y=None):
        if self.unknown_policy not in UNKNOWN_POLICIES:
            raise InvalidConfiguration(
                f"unknown_policy must be one of {UNKNOWN_POLICIES}, got {self.unknown_policy!r}"
            )
        X = self._as_frame(X)
        self.feature_names_in_ = np.asarray([str(c) for c in X.columns], dtype=object)
        self.vocabulary_: dict[str, list[str]] = {}

        for col in X.columns:
            observed = X[col].dropna().astype(str)
            if observed.empty:
                raise SchemaError(f"Categorical column '{col}' has no observed values in training")
            self.vocabulary_[str(col)] = sorted(observed.unique())
        return self

    def transform(self, X):
        check_is_fitted(self, "vocabulary_")
        X = self._as_frame(X)
        with_unknown = self.unknown_policy == "unknown"

        blocks = []
        for col, vocab in self.vocabulary_.items():
            values = X[col].astype(str)
            codes = pd.Index(vocab).get_indexer(values)
            unseen = codes < 0
            if unseen.any() and not with_unknown:
                raise UnseenCategory(col, values[unseen])

            block = np.zeros((len(values), len(vocab) + int(with_unknown)), dtype=float)
            if len(values):
                block[np.arange(len(values)), np.where(unseen, len(vocab), codes)] = 1.0
            blocks.append(block)

        if not blocks:
            return np.zeros((len(X), 0), dtype=float)
        return np.hstack(blocks)

    def get_feature_names_out(self, input_features=None):
        check_is_fitted(self, "vocabulary_")
        names = []
        for col, vocab in self.vocabulary_.items():
            names.extend(f"{col}_{v}" for v in vocab)
            if self.unknown_policy == "unknown":
                names.append(f"{col}_{UNKNOWN}")
        return np.asarray(names, dtype=object)


@dataclass(frozen=True)
class Transform:
    column_transformer: ColumnTransformer
    numeric_columns: tuple[str, ...]
    categorical_columns: tuple[str, ...]
    label_column: str | None = None
    unknown_policy: str = "unknown"

    @property
    def columns(self) -> list[str]:
        return [*self.numeric_columns, *self.categorical_columns]

    @property
    def feature_names(self) -> list[str]:
        return [str(n) for n in self.column_transformer.get_feature_names_out()]

    def _numeric_step(self, name: str):
        if not self.numeric_columns:
            return None
        return self.column_transformer.named_transformers_["num"].named_steps[name]

    @property
    def means(self) -> dict[str, float]:
        scaler = self._numeric_step("scaler")
        if scaler is None:
            return {}
        return {c: float(v) for c, v in zip(self.numeric_columns, scaler.mean_)}

    @property
    def scales(self) -> dict[str, float]:
        scaler = self._numeric_step("scaler")
        if scaler is None:
            return {}
        return {c: float(v) for c, v in zip(self.numeric_columns, scaler.scale_)}

    @property
    def medians(self) -> dict[str, float]:
        imputer = self._numeric_step("imputer")
        if imputer is None:
            return {}
        return {c: float(v) for c, v in zip(self.numeric_columns, imputer.statistics_)}

    @property
    def vocabulary(self) -> dict[str, list[str]]:
        if not self.categorical_columns:
            return {}
        encoder = self.column_transformer.named_transformers_["cat"].named_steps["encoder"]
        return {c: list(v) for c, v in encoder.vocabulary_.items()}


def _check_numeric(df: pd.DataFrame, numeric_columns: Sequence[str]) -> None:
    wrong = [c for c in numeric_columns if not pd.api.types.is_numeric_dtype(df[c])]
    if wrong:
        raise SchemaError(f"Numeric columns with non-numeric dtype: {wrong}")


def build_preprocess(
    numeric_columns: Sequence[str],
    categorical_columns: Sequence[str],
    *,
    unknown_policy: str = "unknown",
) -> ColumnTransformer:
    transformers = []
    if numeric_columns:
        numeric_pipe = Pipeline(
            steps=[
                ("imputer", SimpleImputer(strategy="median")),
                ("scaler", SampleStandardScaler()),
            ]
        )
        transformers.append(("num", numeric_pipe, list(numeric_columns)))
    if categorical_columns:
        labels = FunctionTransformer(as_category_labels, feature_names_out="one-to-one")
        imputer = SimpleImputer(strategy="most_frequent").set_output(transform="pandas")
        categorical_pipe = Pipeline(
            steps=[
                ("labels", labels),
                ("imputer", imputer),
                ("encoder", CategoryEncoder(unknown_policy=unknown_policy)),
            ]
        )
        transformers.append(("cat", categorical_pipe, list(categorical_columns)))

    return ColumnTransformer(
        transformers=transformers,
        sparse_threshold=0.0,
        verbose_feature_names_out=False,
    )


def fit_preprocessor(
    training: pd.DataFrame,
    numeric_columns: Sequence[str],
    categorical_columns: Sequence[str],
    *,
    label_column: str | None = None,
    unknown_policy: str = "unknown",
) -> Transform:
    """Fit imputation, scaling and category vocabularies on `training` only."""
    numeric_columns = tuple(numeric_columns)
    categorical_columns = tuple(categorical_columns)
    if not numeric_columns and not categorical_columns:
        raise SchemaError("At least one numeric or categorical column must be declared")
    overlap = set(numeric_columns) & set(categorical_columns)
    if overlap:
        raise SchemaError(f"Columns declared both numeric and categorical: {sorted(overlap)}")
    if label_column is not None and label_column in (*numeric_columns, *categorical_columns):
        raise SchemaError(f"Label column '{label_column}' cannot also be a predictor")
    if unknown_policy not in UNKNOWN_POLICIES:
        raise InvalidConfiguration(
            f"unknown_policy must be one of {UNKNOWN_POLICIES}, got {unknown_policy!r}"
        )

    columns = [*numeric_columns, *categorical_columns]
    validate_schema(training, columns)
    _check_numeric(training, numeric_columns)
    empty = [c for c in columns if training[c].notna().sum() == 0]
    if empty:
        raise SchemaError(f"Columns with no observed values in training: {empty}")

    column_transformer = build_preprocess(
        numeric_columns, categorical_columns, unknown_policy=unknown_policy
    )
    column_transformer.fit(training[columns])

    transform = Transform(
        column_transformer=column_transformer,
        numeric_columns=numeric_columns,
        categorical_columns=categorical_columns,
        label_column=label_column,
        unknown_policy=unknown_policy,
    )
    logger.debug(
        "fit preprocessor on %d records: %d numeric, %d categorical -> %d features",
        len(training),
        len(numeric_columns),
        len(categorical_columns),
        len(transform.feature_names),
    )
    return transform


def apply(transform: Transform, dataset: pd.DataFrame) -> pd.DataFrame:
    """Apply a fitted transform; the index and the label column are carried through."""
    validate_schema(dataset, transform.columns)
    _check_numeric(dataset, transform.numeric_columns)

    values = transform.column_transformer.transform(dataset[transform.columns])
    out = pd.DataFrame(values, columns=transform.feature_names, index=dataset.index)

    label = transform.label_column
    if label is not None and label in dataset.columns:
        # positional: bootstrap samples repeat record ids
        out[label] = dataset[label].to_numpy()
    return out
