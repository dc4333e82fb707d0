import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

from fit_model import (INTERCEPT, FittedModel, fit_logistic_regression, irls, load_model, save_model,
                       training_accuracy)
from pipeline_errors import ConvergenceWarning, EmptyPartitionError, RankDeficiencyWarning, SchemaError


def test_matches_statsmodels(logistic_data):
    model = fit_logistic_regression(logistic_data, "y")
    ref = sm.Logit(logistic_data["y"], sm.add_constant(logistic_data[["a", "b"]])).fit(disp=0)

    assert model.converged
    assert model.intercept == pytest.approx(ref.params["const"], rel=1e-5)
    np.testing.assert_allclose(model.coefficients, ref.params[["a", "b"]].to_numpy(), rtol=1e-5)
    np.testing.assert_allclose(model.std_errors, ref.bse[["a", "b"]].to_numpy(), rtol=1e-4)
    np.testing.assert_allclose(model.p_values, ref.pvalues[["a", "b"]].to_numpy(), rtol=1e-3, atol=1e-12)
    assert model.log_likelihood == pytest.approx(ref.llf, rel=1e-6)


def test_recovers_signs(logistic_data):
    coefs = fit_logistic_regression(logistic_data, "y").coef_dict()
    assert coefs["a"] > 0
    assert coefs["b"] < 0


def test_fit_is_deterministic(logistic_data):
    m1 = fit_logistic_regression(logistic_data, "y")
    m2 = fit_logistic_regression(logistic_data.copy(), "y")
    np.testing.assert_allclose(m1.coefficients, m2.coefficients, atol=1e-6)
    assert m1.intercept == pytest.approx(m2.intercept, abs=1e-6)


def test_separable_data(separable):
    model = fit_logistic_regression(separable, "y")
    assert training_accuracy(model, separable) >= 0.99
    coefs = model.coef_dict()
    assert abs(coefs["x"]) > abs(coefs["noise"])
    assert coefs["x"] > 0
    # the separating feature heads the importance table
    tbl = model.coefficient_table()
    assert tbl.loc[tbl["Feature"] != INTERCEPT, "Feature"].iloc[0] == "x"


def test_rank_deficient_design(logistic_data):
    df = logistic_data.assign(a_copy=2 * logistic_data["a"])
    with pytest.warns(RankDeficiencyWarning):
        model = fit_logistic_regression(df, "y")
    assert model.aliased == ["a_copy"]
    assert np.isnan(model.coef_dict()["a_copy"])
    probs = model.predict_proba(df)
    assert np.isfinite(probs).all()
    tbl = model.coefficient_table()
    assert tbl["Feature"].iloc[-1] == "a_copy"
    assert tbl["Direction"].iloc[-1] == "aliased"


def test_iteration_cap_warns(logistic_data):
    with pytest.warns(ConvergenceWarning):
        model = fit_logistic_regression(logistic_data, "y", max_iter=1)
    assert not model.converged
    assert model.iterations == 1


def test_irls_on_plain_arrays(logistic_data):
    X = np.column_stack([np.ones(len(logistic_data)), logistic_data[["a", "b"]].to_numpy()])
    beta, mu, dev, it, converged = irls(X, logistic_data["y"].to_numpy(dtype=float))
    assert converged and it < 25
    assert ((mu > 0) & (mu < 1)).all()
    assert dev > 0
    assert beta.shape == (3,)


def test_rows_with_missing_values_are_excluded(logistic_data):
    df = logistic_data.copy()
    df.loc[:9, "a"] = np.nan
    model = fit_logistic_regression(df, "y")
    assert model.n_obs == len(df) - 10


def test_non_numeric_feature_raises(logistic_data):
    df = logistic_data.assign(label="x")
    with pytest.raises(SchemaError):
        fit_logistic_regression(df, "y")


def test_non_binary_target_raises(logistic_data):
    df = logistic_data.assign(y=logistic_data["y"] * 2)
    with pytest.raises(SchemaError):
        fit_logistic_regression(df, "y")


def test_no_complete_rows_raises():
    df = pd.DataFrame({"a": [np.nan, np.nan], "y": [0, 1]})
    with pytest.raises(EmptyPartitionError):
        fit_logistic_regression(df, "y")


def test_missing_feature_at_prediction(logistic_data):
    model = fit_logistic_regression(logistic_data, "y")
    with pytest.raises(SchemaError):
        model.predict_proba(logistic_data.drop(columns=["b"]))


def test_coefficient_table_layout(logistic_data):
    tbl = fit_logistic_regression(logistic_data, "y").coefficient_table()
    assert list(tbl.columns) == ["Feature", "Coefficient", "StdError", "z_value", "P_Value",
                                 "AbsValue", "Significant", "Direction"]
    assert INTERCEPT in tbl["Feature"].tolist()
    assert tbl["AbsValue"].is_monotonic_decreasing
    row_b = tbl.set_index("Feature").loc["b"]
    assert row_b["Direction"] == "Late"
    assert row_b["Significant"] == "***"


def test_save_and_load_roundtrip(tmp_path, logistic_data):
    model = fit_logistic_regression(logistic_data, "y")
    path = save_model(model, str(tmp_path / "artifacts" / "model.joblib"))
    loaded = load_model(path)
    assert isinstance(loaded, FittedModel)
    np.testing.assert_array_equal(loaded.coefficients, model.coefficients)


def test_load_missing_model(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_model(str(tmp_path / "missing.joblib"))
