"""
End-to-end evaluation: split -> fit preprocessor on training -> train -> score on testing.

Every resample (random subsample, fold or bootstrap draw) gets its own seed, its
own preprocessor fit and its own trained model; nothing fitted on one resample
is reused on another.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .config import EvalConfig, FeatureSpec, ModelConfig
from .data import bootstrap_split, kfold_splits, split, to_model_frame
from .errors import InvalidConfiguration
from .evaluation import EvalResult, evaluate, summarize
from .models import TrainedModel, train
from .preprocess import apply, fit_preprocessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    model_name: str
    seed: int
    n_training: int
    n_testing: int
    result: EvalResult
    model: TrainedModel | None = None


def derive_seeds(seed: int, n: int) -> list[int]:
    """`n` independent child seeds of `seed`; same inputs, same seeds."""
    children = np.random.SeedSequence(seed).spawn(n)
    return [int(child.generate_state(1)[0]) for child in children]


def _check_dataset(dataset: pd.DataFrame, features: FeatureSpec) -> None:
    to_model_frame(dataset, label_column=features.label_column, predictors=features.predictors)


def fit_and_score(
    model_config: ModelConfig,
    training: pd.DataFrame,
    testing: pd.DataFrame,
    features: FeatureSpec,
    *,
    seed: int,
    retain_model: bool = False,
) -> RunResult:
    """Fit the preprocessor and the model on `training` only, then score on `testing`."""
    transform = fit_preprocessor(
        training,
        features.numeric_columns,
        features.categorical_columns,
        label_column=features.label_column,
        unknown_policy=features.unknown_policy,
    )
    train_frame = apply(transform, training)
    test_frame = apply(transform, testing)

    model = train(model_config, train_frame, features.label_column, seed=seed)
    result = evaluate(model, test_frame, features.label_column)

    return RunResult(
        model_name=model_config.name,
        seed=seed,
        n_training=len(training),
        n_testing=len(testing),
        result=result,
        model=model if retain_model else None,
    )


def run_once(
    model_config: ModelConfig,
    dataset: pd.DataFrame,
    features: FeatureSpec,
    *,
    proportion: float,
    seed: int,
    stratify: bool = False,
    retain_model: bool = False,
) -> RunResult:
    _check_dataset(dataset, features)
    training, testing = split(
        dataset,
        proportion,
        seed,
        stratify=features.label_column if stratify else None,
    )
    return fit_and_score(
        model_config, training, testing, features, seed=seed, retain_model=retain_model
    )


class RepeatedEvaluation:
    """
    Repeated random subsampling validation for one ModelConfig.

    Iterating yields one EvalResult per iteration, lazily. The sequence is finite
    (`len`) and restartable: every iteration draws a fresh split from a seed
    derived from `seed`, so iterating twice gives identical results.
    """

    def __init__(
        self,
        model_config: ModelConfig,
        dataset: pd.DataFrame,
        features: FeatureSpec,
        *,
        proportion: float,
        iterations: int,
        seed: int,
        stratify: bool = False,
    ):
        if iterations < 1:
            raise InvalidConfiguration(f"iterations must be >= 1, got {iterations}")
        if not 0.0 < float(proportion) < 1.0:
            raise InvalidConfiguration(f"proportion must be in (0, 1), got {proportion}")
        _check_dataset(dataset, features)

        self.model_config = model_config
        self.dataset = dataset
        self.features = features
        self.proportion = proportion
        self.iterations = iterations
        self.seed = seed
        self.stratify = stratify

    def __len__(self) -> int:
        return self.iterations

    def seeds(self) -> list[int]:
        return derive_seeds(self.seed, self.iterations)

    def run(self, seed: int) -> RunResult:
        return run_once(
            self.model_config,
            self.dataset,
            self.features,
            proportion=self.proportion,
            seed=seed,
            stratify=self.stratify,
        )

    def runs(self) -> Iterator[RunResult]:
        for seed in self.seeds():
            yield self.run(seed)

    def __iter__(self) -> Iterator[EvalResult]:
        for run in self.runs():
            yield run.result


def repeat_evaluation(
    model_config: ModelConfig,
    dataset: pd.DataFrame,
    proportion: float,
    iterations: int,
    *,
    features: FeatureSpec,
    seed: int = 42,
    stratify: bool = False,
) -> RepeatedEvaluation:
    return RepeatedEvaluation(
        model_config,
        dataset,
        features,
        proportion=proportion,
        iterations=iterations,
        seed=seed,
        stratify=stratify,
    )


def cross_validate(
    model_config: ModelConfig,
    dataset: pd.DataFrame,
    folds: int,
    *,
    features: FeatureSpec,
    seed: int = 42,
    stratify: bool = False,
) -> list[EvalResult]:
    """k-fold cross-validation; each fold fits its own preprocessor and model."""
    _check_dataset(dataset, features)
    strata = features.label_column if stratify else None
    return [
        fit_and_score(model_config, training, testing, features, seed=seed).result
        for training, testing in kfold_splits(dataset, folds, seed, stratify=strata)
    ]


def bootstrap_evaluation(
    model_config: ModelConfig,
    dataset: pd.DataFrame,
    iterations: int,
    *,
    features: FeatureSpec,
    seed: int = 42,
) -> list[EvalResult]:
    """Train on a bootstrap sample, score on the out-of-bag records, `iterations` times."""
    if iterations < 1:
        raise InvalidConfiguration(f"iterations must be >= 1, got {iterations}")
    _check_dataset(dataset, features)

    results = []
    for child in derive_seeds(seed, iterations):
        training, testing = bootstrap_split(dataset, child)
        results.append(fit_and_score(model_config, training, testing, features, seed=child).result)
    return results


@dataclass(frozen=True)
class Comparison:
    results: dict[str, list[EvalResult]]
    seeds: list[int]

    def summary(self) -> pd.DataFrame:
        """Long-form table: one row per (model, metric) with mean/std/min/max."""
        frames = []
        for name, results in self.results.items():
            stats = summarize(results)
            stats.index.name = "metric"
            stats = stats.reset_index()
            stats.insert(0, "model", name)
            frames.append(stats)
        if not frames:
            return pd.DataFrame(columns=["model", "metric", "mean", "std", "min", "max"])
        return pd.concat(frames, ignore_index=True)

    def to_json(self) -> dict:
        return {
            "seeds": self.seeds,
            "results": {
                name: [r.to_json() for r in results] for name, results in self.results.items()
            },
        }


def compare(
    model_configs: Sequence[ModelConfig],
    dataset: pd.DataFrame,
    features: FeatureSpec,
    *,
    config: EvalConfig | None = None,
    n_jobs: int = 1,
) -> Comparison:
    """
    Evaluate several ModelConfigs on the same sequence of random splits.

    All configurations see the same split seeds, so their metrics are paired.
    With n_jobs > 1 the (configuration, seed) runs are spread over a thread pool;
    runs share nothing but the read-only dataset.
    """
    if config is None:
        config = EvalConfig()

    names = [c.name for c in model_configs]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise InvalidConfiguration(f"Duplicate model config names: {duplicates}")

    repeated = {
        c.name: RepeatedEvaluation(
            c,
            dataset,
            features,
            proportion=config.proportion,
            iterations=config.iterations,
            seed=config.random_state,
            stratify=config.stratify,
        )
        for c in model_configs
    }
    seeds = derive_seeds(config.random_state, config.iterations)

    if n_jobs > 1:
        tasks = [(name, s) for name in repeated for s in seeds]
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            runs = list(executor.map(lambda task: repeated[task[0]].run(task[1]), tasks))
        results: dict[str, list[EvalResult]] = {name: [] for name in repeated}
        for run in runs:
            results[run.model_name].append(run.result)
    else:
        results = {name: list(rep) for name, rep in repeated.items()}

    for name, res in results.items():
        accuracy = np.mean([r.metrics["accuracy"] for r in res])
        logger.info("%s: mean accuracy %.4f over %d splits", name, accuracy, len(res))

    return Comparison(results=results, seeds=seeds)
