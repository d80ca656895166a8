import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from classeval.config import FeatureSpec

CENTERS = {"adelie": (0.0, 0.0), "chinstrap": (8.0, 0.0), "gentoo": (0.0, 8.0)}


def make_penguins(n_per_class=(34, 33, 33), seed=0) -> pd.DataFrame:
    """Three balanced, well-separated classes with two numeric and one categorical predictor."""
    rng = np.random.default_rng(seed)
    species = np.concatenate(
        [np.repeat(name, count) for name, count in zip(CENTERS, n_per_class)]
    )
    bill = np.array([CENTERS[s][0] for s in species]) + rng.normal(size=species.size)
    flipper = np.array([CENTERS[s][1] for s in species]) + rng.normal(size=species.size)
    island = rng.choice(["biscoe", "dream", "torgersen"], size=species.size)

    frame = pd.DataFrame(
        {
            "bill_length": bill,
            "flipper_length": flipper,
            "island": island,
            "species": species,
        }
    )
    frame.index = [f"p{i:03d}" for i in range(len(frame))]
    return frame


@pytest.fixture
def penguins():
    return make_penguins()


@pytest.fixture
def shuffled_penguins(penguins):
    """Same predictors, labels permuted so they carry no signal."""
    rng = np.random.default_rng(1)
    out = penguins.copy()
    out["species"] = rng.permutation(out["species"].to_numpy())
    return out


@pytest.fixture
def features():
    return FeatureSpec(
        label_column="species",
        numeric_columns=("bill_length", "flipper_length"),
        categorical_columns=("island",),
    )


@pytest.fixture
def make_frame():
    return make_penguins
