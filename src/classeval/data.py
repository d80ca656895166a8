from __future__ import annotations

import logging
import math
from collections.abc import Iterator, Sequence
from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, StratifiedKFold, train_test_split

from .errors import InvalidConfiguration, SchemaError

logger = logging.getLogger(__name__)


def validate_schema(df: pd.DataFrame, columns: Sequence[str]) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaError(f"Missing required columns: {missing}")


def load_csv(path: str | Path, required_columns: Sequence[str] = ()) -> pd.DataFrame:
    """Load a delimited text file and validate the schema."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    df = pd.read_csv(path)
    validate_schema(df, required_columns)
    return df


def to_model_frame(
    df: pd.DataFrame, *, label_column: str, predictors: Sequence[str]
) -> tuple[pd.DataFrame, pd.Series]:
    """Return (X, y) restricted to `predictors`; rows with a missing label are rejected."""
    validate_schema(df, [*predictors, label_column])

    y = df[label_column]
    if y.isna().any():
        raise SchemaError(f"Label column '{label_column}' has {int(y.isna().sum())} missing values")

    X = df[list(predictors)].copy()
    return X, y


def _check_proportion(proportion: float) -> None:
    if not 0.0 < float(proportion) < 1.0:
        raise InvalidConfiguration(f"proportion must be in (0, 1), got {proportion}")


def split(
    dataset: pd.DataFrame,
    proportion: float,
    seed: int,
    *,
    stratify: str | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Partition `dataset` into (training, testing).

    Training gets floor(proportion * N) records, testing the rest. The row index
    is kept on both sides so every record stays traceable to its id.
    """
    _check_proportion(proportion)

    n = len(dataset)
    n_train = int(math.floor(float(proportion) * n))
    if n_train == 0 or n_train == n:
        raise InvalidConfiguration(
            f"Cannot split {n} records with proportion={proportion}: "
            f"training would get {n_train}, testing {n - n_train}"
        )

    strata = None
    if stratify is not None:
        validate_schema(dataset, [stratify])
        strata = dataset[stratify]

    try:
        training, testing = train_test_split(
            dataset,
            train_size=n_train,
            random_state=seed,
            shuffle=True,
            stratify=strata,
        )
    except ValueError as exc:
        # e.g. a stratum with a single member
        raise InvalidConfiguration(f"Cannot split dataset: {exc}") from exc

    logger.debug("split seed=%s: %d training / %d testing", seed, len(training), len(testing))
    return training, testing


def kfold_splits(
    dataset: pd.DataFrame,
    folds: int,
    seed: int,
    *,
    stratify: str | None = None,
) -> Iterator[tuple[pd.DataFrame, pd.DataFrame]]:
    """(training, testing) for each of `folds` shuffled folds; arguments are checked on call."""
    if folds < 2:
        raise InvalidConfiguration(f"folds must be >= 2, got {folds}")
    if len(dataset) < folds:
        raise InvalidConfiguration(f"Cannot make {folds} folds from {len(dataset)} records")

    if stratify is not None:
        validate_schema(dataset, [stratify])
        splitter = StratifiedKFold(n_splits=folds, shuffle=True, random_state=seed)
        labels = dataset[stratify]
    else:
        splitter = KFold(n_splits=folds, shuffle=True, random_state=seed)
        labels = None

    try:
        indices = list(splitter.split(dataset, labels))
    except ValueError as exc:
        raise InvalidConfiguration(f"Cannot make {folds} folds: {exc}") from exc

    return ((dataset.iloc[train_idx], dataset.iloc[test_idx]) for train_idx, test_idx in indices)


def bootstrap_split(dataset: pd.DataFrame, seed: int) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Draw N records with replacement for training; the out-of-bag records are testing."""
    n = len(dataset)
    if n < 2:
        raise InvalidConfiguration(f"Cannot bootstrap {n} records")

    rng = np.random.default_rng(seed)
    picks = rng.integers(0, n, size=n)
    out_of_bag = np.setdiff1d(np.arange(n), picks)
    if out_of_bag.size == 0:
        raise InvalidConfiguration(f"Bootstrap sample with seed={seed} left no out-of-bag records")

    return dataset.iloc[picks], dataset.iloc[out_of_bag]
