import numpy as np
import pandas as pd
import pytest

from evaluate_model import (LATE, ON_TIME, ConfusionCounts, FinancialParams, classification_rates,
                            confusion_counts, evaluate, financial_impact, net_benefit, predict_labels,
                            scale_to_volume)
from fit_model import FittedModel


def _one_feature_model(intercept=0.0, coef=1.0) -> FittedModel:
    nan = np.array([np.nan])
    return FittedModel(target="y", feature_names=["x"], intercept=intercept,
                       coefficients=np.array([coef]), std_errors=nan, z_values=nan, p_values=nan,
                       intercept_se=np.nan, intercept_p=np.nan, iterations=1, converged=True,
                       deviance=0.0, null_deviance=0.0, n_obs=0)


def test_predict_labels_natural_and_inverted():
    p = np.array([0.9, 0.5, 0.1])
    assert predict_labels(p).tolist() == [ON_TIME, LATE, LATE]
    assert predict_labels(p, inverted=True).tolist() == [LATE, ON_TIME, ON_TIME]
    assert predict_labels(p, threshold=0.05).tolist() == [ON_TIME, ON_TIME, ON_TIME]


def test_confusion_counts_late_is_positive():
    y_true = [0, 0, 0, 1, 1, 1, 1]
    y_pred = [0, 0, 1, 0, 1, 1, 1]
    c = confusion_counts(y_true, y_pred)
    assert c == ConfusionCounts(tn=3, fp=1, fn=1, tp=2)
    assert c.total == 7


def test_confusion_counts_empty():
    assert confusion_counts([], []).total == 0


def test_rates():
    r = classification_rates(ConfusionCounts(tn=50, fp=10, fn=5, tp=35))
    assert r["accuracy"] == pytest.approx(0.85)
    assert r["sensitivity"] == pytest.approx(35 / 40)
    assert r["specificity"] == pytest.approx(50 / 60)
    assert r["precision"] == pytest.approx(35 / 45)
    assert r["false_alarm_rate"] == pytest.approx(10 / 60)
    assert r["npv"] == pytest.approx(50 / 55)


def test_rates_undefined_without_negatives():
    r = classification_rates(ConfusionCounts(tn=0, fp=0, fn=3, tp=7))
    assert np.isnan(r["specificity"])
    assert np.isnan(r["false_alarm_rate"])
    assert r["sensitivity"] == pytest.approx(0.7)


def test_rates_all_nan_when_empty():
    r = classification_rates(ConfusionCounts(0, 0, 0, 0))
    assert all(np.isnan(v) for v in r.values())


def test_net_benefit_exact():
    c = ConfusionCounts(tn=1000, fp=17, fn=22, tp=363)
    params = FinancialParams(prevention_cost=6078, late_delivery_loss=7493)
    assert params.profit_per_prevented == 1415
    assert net_benefit(c, params) == 363 * 1415 - 17 * 6078 - 22 * 7493
    assert net_benefit(c, params) == 245473


def test_financial_impact_projection():
    c = ConfusionCounts(tn=1598, fp=17, fn=22, tp=363)
    fi = financial_impact(c, FinancialParams(), observed_volume=2000, monthly_volume=10000)
    assert fi.multiplier == pytest.approx(5.0)
    assert fi.monthly_benefit == pytest.approx(245473 * 5)
    assert fi.annual_benefit == pytest.approx(245473 * 5 * 12)
    assert fi.monthly_prevention_cost == pytest.approx(363 * 5 * 6078)
    assert fi.savings_per_dollar == pytest.approx(7493 / 6078)
    assert fi.notes
    d = fi.to_dict()
    assert d["counts"]["TP"] == 363
    assert d["params"]["profit_per_prevented"] == 1415


def test_financial_impact_defaults_to_observed_total():
    c = ConfusionCounts(tn=5, fp=0, fn=0, tp=5)
    fi = financial_impact(c, monthly_volume=100)
    assert fi.observed_volume == 10
    assert fi.monthly_benefit == pytest.approx(5 * 1415 * 10)


def test_roi_undefined_without_true_positives():
    fi = financial_impact(ConfusionCounts(tn=10, fp=2, fn=3, tp=0))
    assert np.isnan(fi.savings_per_dollar)
    assert np.isnan(fi.roi_pct)


def test_scale_to_volume():
    assert scale_to_volume(100, 2000, 10000) == pytest.approx(500)
    assert np.isnan(scale_to_volume(100, 0, 10000))


def test_evaluate_with_fixed_model():
    model = _one_feature_model()
    df = pd.DataFrame({"x": [2.0, 1.0, -1.0, -2.0, 3.0, -3.0], "y": [1, 1, 0, 0, 0, 1]})
    res = evaluate(model, df, "val")
    # p > 0.5 exactly where x > 0
    assert res.predictions.tolist() == [1, 1, 0, 0, 1, 0]
    assert res.counts == ConfusionCounts(tn=2, fp=1, fn=1, tp=2)
    assert res.rates["accuracy"] == pytest.approx(4 / 6)
    assert 0.0 <= res.auc <= 1.0
    summary = res.summary()
    assert summary["subset"] == "val" and summary["TP"] == 2


def test_evaluate_excludes_rows_without_prediction():
    model = _one_feature_model()
    df = pd.DataFrame({"x": [2.0, np.nan, -1.0], "y": [1, 0, 0]})
    res = evaluate(model, df)
    assert res.n_excluded == 1
    assert res.counts.total == 2


def test_evaluate_single_class_auc_is_nan():
    model = _one_feature_model()
    df = pd.DataFrame({"x": [1.0, 2.0], "y": [1, 1]})
    res = evaluate(model, df)
    assert np.isnan(res.auc)
    assert np.isnan(res.rates["sensitivity"])
