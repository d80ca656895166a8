from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    classification_report,
    cohen_kappa_score,
    confusion_matrix,
    f1_score,
    precision_score,
    recall_score,
)
from sklearn.utils.multiclass import unique_labels

from .errors import InvalidConfiguration, SchemaError
from .models import TrainedModel, predict_frame


@dataclass(frozen=True)
class EvalResult:
    metrics: dict[str, float]
    confusion: dict[tuple[Any, Any], int]
    labels: list
    report: str
    n: int

    def confusion_frame(self) -> pd.DataFrame:
        """Confusion matrix with true labels as rows and predicted labels as columns."""
        frame = pd.DataFrame(0, index=self.labels, columns=self.labels, dtype=int)
        for (true, pred), count in self.confusion.items():
            frame.loc[true, pred] = count
        frame.index.name = "true"
        frame.columns.name = "predicted"
        return frame

    def to_json(self) -> dict[str, Any]:
        nested: dict[str, dict[str, int]] = {}
        for (true, pred), count in self.confusion.items():
            nested.setdefault(str(true), {})[str(pred)] = count
        return {
            "metrics": self.metrics,
            "confusion": nested,
            "labels": [str(label) for label in self.labels],
            "n": self.n,
        }


def _to_python(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


def evaluate_predictions(y_true, y_pred) -> EvalResult:
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if y_true.size == 0:
        raise InvalidConfiguration("Cannot evaluate on an empty testing set")
    if y_true.shape != y_pred.shape:
        raise ValueError(f"Shape mismatch: y_true {y_true.shape} vs y_pred {y_pred.shape}")

    labels = unique_labels(y_true, y_pred)
    cm = confusion_matrix(y_true, y_pred, labels=labels)

    # kappa is undefined when chance agreement is 1, i.e. a single label on both sides
    if len(labels) == 1:
        kappa = 1.0
    else:
        kappa = float(cohen_kappa_score(y_true, y_pred, labels=labels))

    metrics: dict[str, float] = {
        "accuracy": float(accuracy_score(y_true, y_pred)),
        "kappa": kappa,
        "precision": float(
            precision_score(y_true, y_pred, labels=labels, average="macro", zero_division=0)
        ),
        "recall": float(
            recall_score(y_true, y_pred, labels=labels, average="macro", zero_division=0)
        ),
        "f1": float(f1_score(y_true, y_pred, labels=labels, average="macro", zero_division=0)),
    }

    py_labels = [_to_python(label) for label in labels]
    confusion = {
        (true, pred): int(cm[i, j])
        for i, true in enumerate(py_labels)
        for j, pred in enumerate(py_labels)
    }

    report = classification_report(y_true, y_pred, labels=labels, zero_division=0)
    return EvalResult(
        metrics=metrics,
        confusion=confusion,
        labels=py_labels,
        report=report,
        n=int(y_true.size),
    )


def evaluate(trained_model: TrainedModel, testing: pd.DataFrame, label_column: str) -> EvalResult:
    """Score `trained_model` on the held-out `testing` frame."""
    if label_column not in testing.columns:
        raise SchemaError(f"Label column '{label_column}' not in testing frame")
    y_pred = predict_frame(trained_model, testing.drop(columns=[label_column]))
    return evaluate_predictions(testing[label_column].to_numpy(), y_pred.to_numpy())


def summarize(results: Iterable[EvalResult]) -> pd.DataFrame:
    """mean / std / min / max of every metric across resamples (one row per metric)."""
    frame = pd.DataFrame([r.metrics for r in results])
    if frame.empty:
        return pd.DataFrame(columns=["mean", "std", "min", "max"])
    return frame.agg(["mean", "std", "min", "max"]).T


def running_mean(results: Iterable[EvalResult], metric: str = "accuracy") -> pd.Series:
    """Cumulative mean of `metric`; the Monte Carlo estimate after each resample."""
    values = pd.Series([r.metrics[metric] for r in results], dtype=float, name=metric)
    return values.expanding().mean()
