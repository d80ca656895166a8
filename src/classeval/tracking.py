from __future__ import annotations

import json
import logging
import math
from collections.abc import Sequence
from pathlib import Path

import matplotlib.pyplot as plt
import mlflow
import pandas as pd
from sklearn.metrics import ConfusionMatrixDisplay

from .config import EvalConfig, FeatureSpec, ModelConfig
from .evaluation import EvalResult
from .pipeline import Comparison

logger = logging.getLogger(__name__)


def _prefix_metrics(prefix: str, metrics: dict[str, float]) -> dict[str, float]:
    return {f"{prefix}_{k}": float(v) for k, v in metrics.items() if not math.isnan(float(v))}


def pooled_confusion(results: Sequence[EvalResult]) -> pd.DataFrame:
    """Sum of the confusion matrices of all resamples, over the union of their labels."""
    pooled: pd.DataFrame | None = None
    for r in results:
        frame = r.confusion_frame()
        pooled = frame if pooled is None else pooled.add(frame, fill_value=0)
    if pooled is None:
        return pd.DataFrame()
    return pooled.fillna(0).astype(int)


def _plot_confusion_matrix(confusion: pd.DataFrame, title: str, outpath: Path) -> None:
    disp = ConfusionMatrixDisplay(
        confusion_matrix=confusion.to_numpy(),
        display_labels=[str(label) for label in confusion.index],
    )
    disp.plot(values_format="d")
    disp.ax_.set_title(title)
    plt.tight_layout()
    outpath.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(outpath, dpi=160)
    plt.close()


def log_comparison(
    comparison: Comparison,
    *,
    model_configs: Sequence[ModelConfig],
    features: FeatureSpec,
    config: EvalConfig | None = None,
    artifacts_dir: str | Path = Path("reports") / "artifacts",
) -> dict:
    """Log a comparison to MLflow: params, per-split metrics, summary, confusion plots."""
    if config is None:
        config = EvalConfig()

    if config.tracking_uri:
        mlflow.set_tracking_uri(config.tracking_uri)

    mlflow.set_experiment(config.experiment_name)

    artifacts_dir = Path(artifacts_dir)
    artifacts_dir.mkdir(parents=True, exist_ok=True)

    with mlflow.start_run() as run:
        mlflow.log_params(
            {
                "proportion": config.proportion,
                "iterations": config.iterations,
                "random_state": config.random_state,
                "stratify": config.stratify,
                "unknown_policy": features.unknown_policy,
                "label_column": features.label_column,
                "n_models": len(model_configs),
            }
        )
        for model_config in model_configs:
            params = {f"{model_config.name}_{k}": v for k, v in model_config.params.items()}
            params[f"{model_config.name}_algorithm"] = model_config.algorithm
            mlflow.log_params(params)

        for name, results in comparison.results.items():
            for step, result in enumerate(results):
                mlflow.log_metrics(_prefix_metrics(name, result.metrics), step=step)

        summary = comparison.summary()
        summary_metrics = {}
        for row in summary.itertuples(index=False):
            summary_metrics.update(
                _prefix_metrics(f"{row.model}_{row.metric}", {"mean": row.mean, "std": row.std})
            )
        mlflow.log_metrics(summary_metrics)

        summary_path = artifacts_dir / "summary.csv"
        summary.to_csv(summary_path, index=False)
        mlflow.log_artifact(str(summary_path))

        results_path = artifacts_dir / "comparison.json"
        results_path.write_text(json.dumps(comparison.to_json(), indent=2), encoding="utf-8")
        mlflow.log_artifact(str(results_path))

        for name, results in comparison.results.items():
            cm_path = artifacts_dir / name / "confusion_matrix.png"
            _plot_confusion_matrix(
                pooled_confusion(results), f"Confusion matrix ({name}, pooled)", cm_path
            )
            mlflow.log_artifact(str(cm_path))

        out = {
            "run_id": run.info.run_id,
            "summary": summary.to_dict(orient="records"),
            "artifact_dir": str(artifacts_dir),
        }

        (artifacts_dir / "last_run.json").write_text(
            json.dumps(out, indent=2, default=float),
            encoding="utf-8",
        )
        mlflow.log_artifact(str(artifacts_dir / "last_run.json"))

        logger.info("logged comparison of %d models to run %s", len(model_configs), out["run_id"])
        return out
