import numpy as np
import pandas as pd
import pytest

from classeval.data import split
from classeval.errors import InvalidConfiguration, SchemaError, UnseenCategory
from classeval.preprocess import UNKNOWN, apply, fit_preprocessor

NUMERIC = ("bill_length", "flipper_length")


def _fit(training, **kwargs):
    return fit_preprocessor(training, NUMERIC, ("island",), label_column="species", **kwargs)


def test_training_side_is_centered_and_scaled(penguins):
    training, _ = split(penguins, 0.8, seed=0)
    out = apply(_fit(training), training)

    for col in NUMERIC:
        assert out[col].mean() == pytest.approx(0.0, abs=1e-9)
        assert out[col].std() == pytest.approx(1.0, abs=1e-9)


def test_statistics_come_from_training_only(penguins):
    training, testing = split(penguins, 0.8, seed=0)
    transform = _fit(training)

    for col in NUMERIC:
        assert transform.means[col] == pytest.approx(training[col].mean())
        assert transform.scales[col] == pytest.approx(training[col].std())
        assert transform.means[col] != pytest.approx(testing[col].mean())


def test_apply_does_not_touch_stored_statistics(penguins):
    training, testing = split(penguins, 0.8, seed=0)
    transform = _fit(training)
    before = (transform.means, transform.scales, transform.medians, transform.vocabulary)

    first = apply(transform, testing)
    second = apply(transform, testing)

    assert (transform.means, transform.scales, transform.medians, transform.vocabulary) == before
    pd.testing.assert_frame_equal(first, second)


def test_apply_keeps_index_and_label(penguins):
    training, testing = split(penguins, 0.8, seed=0)
    out = apply(_fit(training), testing)

    assert list(out.index) == list(testing.index)
    assert out["species"].tolist() == testing["species"].tolist()
    assert "island" not in out.columns


def test_vocabulary_is_restricted_to_training(penguins):
    training = penguins[penguins["island"] != "torgersen"]
    transform = _fit(training)
    assert transform.vocabulary == {"island": ["biscoe", "dream"]}
    assert f"island_{UNKNOWN}" in transform.feature_names


def test_unseen_category_goes_to_unknown_bucket(penguins):
    training = penguins[penguins["island"] != "torgersen"]
    testing = penguins[penguins["island"] == "torgersen"]

    out = apply(_fit(training), testing)

    assert (out[f"island_{UNKNOWN}"] == 1.0).all()
    assert (out["island_biscoe"] == 0.0).all()
    assert (out["island_dream"] == 0.0).all()


def test_unseen_category_raises_under_error_policy(penguins):
    training = penguins[penguins["island"] != "torgersen"]
    testing = penguins[penguins["island"] == "torgersen"]
    transform = _fit(training, unknown_policy="error")

    assert f"island_{UNKNOWN}" not in transform.feature_names
    with pytest.raises(UnseenCategory) as excinfo:
        apply(transform, testing)
    assert excinfo.value.column == "island"
    assert excinfo.value.values == ["torgersen"]


def test_known_categories_pass_under_error_policy(penguins):
    training, testing = split(penguins, 0.8, seed=0)
    transform = _fit(training, unknown_policy="error")
    out = apply(transform, testing)

    onehot = out[[c for c in out.columns if c.startswith("island_")]]
    assert (onehot.sum(axis=1) == 1.0).all()


def test_missing_numeric_value_uses_training_median(penguins):
    training, testing = split(penguins, 0.8, seed=0)
    transform = _fit(training)

    testing = testing.copy()
    row = testing.index[0]
    testing.loc[row, "bill_length"] = np.nan
    out = apply(transform, testing)

    expected = (training["bill_length"].median() - transform.means["bill_length"]) / (
        transform.scales["bill_length"]
    )
    assert out.loc[row, "bill_length"] == pytest.approx(expected)


def test_missing_category_uses_training_mode(penguins):
    training, testing = split(penguins, 0.8, seed=0)
    transform = _fit(training)
    mode = training["island"].mode().iloc[0]

    testing = testing.copy()
    row = testing.index[0]
    testing.loc[row, "island"] = None
    out = apply(transform, testing)

    assert out.loc[row, f"island_{mode}"] == 1.0
    assert out.loc[row, f"island_{UNKNOWN}"] == 0.0


def test_missing_declared_column_is_schema_error(penguins):
    with pytest.raises(SchemaError):
        fit_preprocessor(penguins, ("bill_length", "body_mass"), ())

    transform = _fit(penguins)
    with pytest.raises(SchemaError):
        apply(transform, penguins.drop(columns=["island"]))


def test_non_numeric_numeric_column_is_schema_error(penguins):
    with pytest.raises(SchemaError):
        fit_preprocessor(penguins, ("island",), ())


def test_declarations_are_checked(penguins):
    with pytest.raises(SchemaError):
        fit_preprocessor(penguins, (), ())
    with pytest.raises(SchemaError):
        fit_preprocessor(penguins, ("bill_length",), ("bill_length",))
    with pytest.raises(SchemaError):
        fit_preprocessor(penguins, ("bill_length",), ("species",), label_column="species")
    with pytest.raises(InvalidConfiguration):
        fit_preprocessor(penguins, ("bill_length",), (), unknown_policy="drop")


def test_numeric_only_transform(penguins):
    transform = fit_preprocessor(penguins, NUMERIC, ())
    out = apply(transform, penguins)
    assert list(out.columns) == list(NUMERIC)
    assert transform.vocabulary == {}


def test_scaled_training_column_has_unit_sample_std():
    rng = np.random.default_rng(7)
    training = pd.DataFrame({"x": rng.normal(10.0, 3.0, size=80)})
    out = apply(fit_preprocessor(training, ("x",), ()), training)
    assert out["x"].std() == pytest.approx(1.0, abs=1e-9)


@pytest.mark.parametrize("policy", ["unknown", "error"])
def test_integer_coded_category_survives_missing_values(policy):
    training = pd.DataFrame({"year": [2007, 2008, 2009, 2007]})
    # NaN turns the testing column into floats: 2008.0
    testing = pd.DataFrame({"year": [2008, np.nan]}, index=["a", "b"])
    transform = fit_preprocessor(training, (), ("year",), unknown_policy=policy)

    out = apply(transform, testing)

    assert transform.vocabulary == {"year": ["2007", "2008", "2009"]}
    assert out.loc["a", "year_2008"] == 1.0
    assert out.loc["b", "year_2007"] == 1.0
    if policy == "unknown":
        assert (out[f"year_{UNKNOWN}"] == 0.0).all()


def test_all_missing_categorical_column_is_schema_error(penguins):
    frame = penguins.assign(island=None)
    with pytest.raises(SchemaError):
        fit_preprocessor(frame, NUMERIC, ("island",))
