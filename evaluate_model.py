# evaluate_model.py
# Threshold the fitted probabilities, build the confusion matrix and rates,
# and turn the confusion cells into money.
#
# The positive event throughout is a LATE delivery (target == 0):
#   TP = predicted late and late        (delay prevented)
#   FP = predicted late but on time     (wasted prevention)
#   FN = predicted on time but late     (missed delay)
#   TN = predicted on time and on time

from __future__ import annotations

from dataclasses import asdict, dataclass, field

import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix, roc_auc_score

from fit_model import FittedModel
from logging_setup import get_logger
from pipeline_errors import require_columns

THRESHOLD = 0.5
LATE, ON_TIME = 0, 1

PREVENTION_COST = 6078       # re-routing cost per order
LATE_DELIVERY_LOSS = 7493    # loss per late delivery
MONTHLY_VOLUME = 10000
MONTHS_PER_YEAR = 12

# ============================== Classification =============================

def predict_labels(probs, threshold: float = THRESHOLD, inverted: bool = False) -> np.ndarray:
    """
    probs are P(on time). Natural rule: on time (1) when p > threshold, else late (0).
    inverted=True assigns late when p > threshold (the legacy rule).
    """
    p = np.asarray(probs, dtype=float)
    above = p > threshold
    if inverted:
        return np.where(above, LATE, ON_TIME)
    return np.where(above, ON_TIME, LATE)


@dataclass(frozen=True)
class ConfusionCounts:
    tn: int
    fp: int
    fn: int
    tp: int

    @property
    def total(self) -> int:
        return self.tn + self.fp + self.fn + self.tp

    def as_dict(self) -> dict:
        return {"TN": self.tn, "FP": self.fp, "FN": self.fn, "TP": self.tp}


def confusion_counts(y_true, y_pred) -> ConfusionCounts:
    """Counts with late (0) as the positive class."""
    y_true = np.asarray(y_true).astype(int)
    y_pred = np.asarray(y_pred).astype(int)
    if y_true.size == 0:
        return ConfusionCounts(tn=0, fp=0, fn=0, tp=0)
    # labels=[ON_TIME, LATE] puts late second, so ravel() yields tn, fp, fn, tp for the late event
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[ON_TIME, LATE]).ravel()
    return ConfusionCounts(tn=int(tn), fp=int(fp), fn=int(fn), tp=int(tp))


def _safe_rate(num, den) -> float:
    return float(num/den) if den > 0 else np.nan


def classification_rates(c: ConfusionCounts) -> dict:
    """Accuracy and the usual rates; a zero denominator gives NaN."""
    precision = _safe_rate(c.tp, c.tp + c.fp)
    sensitivity = _safe_rate(c.tp, c.tp + c.fn)
    if np.isfinite(precision) and np.isfinite(sensitivity) and (precision + sensitivity) > 0:
        f1 = 2 * precision * sensitivity / (precision + sensitivity)
    else:
        f1 = np.nan
    return {
        "accuracy": _safe_rate(c.tp + c.tn, c.total),
        "sensitivity": sensitivity,
        "specificity": _safe_rate(c.tn, c.tn + c.fp),
        "precision": precision,
        "npv": _safe_rate(c.tn, c.tn + c.fn),
        "false_alarm_rate": _safe_rate(c.fp, c.tn + c.fp),
        "f1": f1,
    }


@dataclass
class EvaluationResult:
    name: str
    probabilities: np.ndarray
    predictions: np.ndarray
    counts: ConfusionCounts
    rates: dict
    auc: float
    threshold: float
    inverted: bool
    n_excluded: int = 0

    def summary(self) -> dict:
        return {"subset": self.name, "threshold": self.threshold, "inverted_labels": self.inverted,
                "n": self.counts.total, "auc": self.auc, **self.counts.as_dict(), **self.rates}


def evaluate(model: FittedModel, df: pd.DataFrame, name: str = "test",
             threshold: float = THRESHOLD, inverted: bool = False) -> EvaluationResult:
    require_columns(df, [model.target], where=f"{name} evaluation")
    probs = model.predict_proba(df)
    y = pd.to_numeric(df[model.target], errors="coerce").to_numpy(dtype=float)
    ok = np.isfinite(probs) & np.isfinite(y)
    n_excluded = int((~ok).sum())
    if n_excluded:
        get_logger().warning(f"{n_excluded:,} {name} row(s) without a usable prediction were excluded")
    probs_ok, y_ok = probs[ok], y[ok].astype(int)

    preds = predict_labels(probs_ok, threshold=threshold, inverted=inverted)
    counts = confusion_counts(y_ok, preds)
    rates = classification_rates(counts)
    for k in ("sensitivity", "specificity", "precision", "false_alarm_rate"):
        if not np.isfinite(rates[k]):
            get_logger().warning(f"{name}: {k} is undefined (zero denominator)")

    # late risk score is 1 - P(on time); AUC is undefined with one class only
    is_late = (y_ok == LATE).astype(int)
    auc = float(roc_auc_score(is_late, 1 - probs_ok)) if len(np.unique(is_late)) == 2 else np.nan

    return EvaluationResult(name=name, probabilities=probs_ok, predictions=preds, counts=counts,
                            rates=rates, auc=auc, threshold=float(threshold), inverted=bool(inverted),
                            n_excluded=n_excluded)


def _pct(x: float) -> str:
    return f"{x*100:.2f}%" if np.isfinite(x) else "undefined"


def print_evaluation(result: EvaluationResult) -> None:
    c, r = result.counts, result.rates
    print(f"\n=== {result.name.capitalize()} set performance ({c.total:,} orders) ===")
    print(f"  True Negatives (TN) : {c.tn:,} - correctly predicted on-time")
    print(f"  True Positives (TP) : {c.tp:,} - correctly predicted late")
    print(f"  False Positives (FP): {c.fp:,} - incorrectly predicted late")
    print(f"  False Negatives (FN): {c.fn:,} - incorrectly predicted on-time")
    print(f"  Accuracy            : {_pct(r['accuracy'])}")
    print(f"  Sensitivity (Recall): {_pct(r['sensitivity'])}")
    print(f"  Specificity         : {_pct(r['specificity'])}")
    print(f"  Precision           : {_pct(r['precision'])}")
    print(f"  False Alarm Rate    : {_pct(r['false_alarm_rate'])}")
    if np.isfinite(result.auc):
        print(f"  ROC AUC             : {result.auc:.4f}")

# ============================ Financial scoring ============================

@dataclass(frozen=True)
class FinancialParams:
    prevention_cost: int = PREVENTION_COST
    late_delivery_loss: int = LATE_DELIVERY_LOSS

    @property
    def profit_per_prevented(self):
        return self.late_delivery_loss - self.prevention_cost


def net_benefit(c: ConfusionCounts, params: FinancialParams = FinancialParams()):
    """TP*(C_l - C_p) - FP*C_p - FN*C_l; exact for integer inputs."""
    return c.tp * params.profit_per_prevented - c.fp * params.prevention_cost - c.fn * params.late_delivery_loss


def scale_to_volume(value, observed_volume, target_volume) -> float:
    """
    Linear extrapolation value * target_volume / observed_volume.
    This assumes the evaluated orders are representative; it is an approximation,
    not a statistically validated forecast.
    """
    if observed_volume is None or observed_volume <= 0:
        get_logger().warning("Observed volume is zero; projection is undefined")
        return np.nan
    return value * (target_volume / observed_volume)


@dataclass
class FinancialImpact:
    params: FinancialParams
    counts: ConfusionCounts
    observed_volume: int
    monthly_volume: int
    tp_profit: float
    fp_loss: float
    fn_loss: float
    net_benefit: float
    multiplier: float
    monthly_benefit: float
    annual_benefit: float
    monthly_prevention_cost: float
    monthly_losses_prevented: float
    savings_per_dollar: float
    roi_pct: float
    notes: list = field(default_factory=list)

    def to_dict(self) -> dict:
        out = asdict(self)
        out["params"]["profit_per_prevented"] = self.params.profit_per_prevented
        out["counts"] = self.counts.as_dict()
        return out


def financial_impact(c: ConfusionCounts, params: FinancialParams = FinancialParams(),
                     observed_volume: int = None, monthly_volume: int = MONTHLY_VOLUME,
                     months: int = MONTHS_PER_YEAR) -> FinancialImpact:
    observed = c.total if observed_volume is None else observed_volume
    tp_profit = c.tp * params.profit_per_prevented
    fp_loss = c.fp * params.prevention_cost
    fn_loss = c.fn * params.late_delivery_loss
    net = tp_profit - fp_loss - fn_loss

    multiplier = scale_to_volume(1.0, observed, monthly_volume)
    monthly = net * multiplier
    annual = monthly * months
    monthly_spend = c.tp * multiplier * params.prevention_cost
    monthly_prevented = c.tp * multiplier * params.late_delivery_loss
    savings_per_dollar = _safe_rate(monthly_prevented, monthly_spend) if np.isfinite(monthly_spend) else np.nan
    roi_pct = _safe_rate(monthly, monthly_spend) * 100 if np.isfinite(monthly_spend) else np.nan
    if np.isfinite(monthly_spend) and monthly_spend == 0:
        get_logger().warning("No prevented delays (TP = 0); ROI is undefined")

    return FinancialImpact(
        params=params, counts=c, observed_volume=int(observed), monthly_volume=int(monthly_volume),
        tp_profit=tp_profit, fp_loss=fp_loss, fn_loss=fn_loss, net_benefit=net,
        multiplier=multiplier, monthly_benefit=monthly, annual_benefit=annual,
        monthly_prevention_cost=monthly_spend, monthly_losses_prevented=monthly_prevented,
        savings_per_dollar=savings_per_dollar, roi_pct=roi_pct,
        notes=["Projections scale the evaluated orders linearly to the target volume; "
               "they are an approximation, not a validated forecast."],
    )


def _money(x) -> str:
    if x is None or not np.isfinite(x):
        return "undefined"
    sign = "-" if x < 0 else ""
    return f"{sign}${abs(x):,.0f}"


def print_financial_impact(fi: FinancialImpact) -> None:
    p, c = fi.params, fi.counts
    print("\nFinancial parameters:")
    print(f"  Prevention cost (re-routing): {_money(p.prevention_cost)}")
    print(f"  Late delivery loss          : {_money(p.late_delivery_loss)}")
    print(f"  Profit per prevented order  : {_money(p.profit_per_prevented)}")

    print(f"\nFinancial impact (test set - {fi.observed_volume:,} orders):")
    print(f"  True positives (prevented delays): {c.tp:,} x {_money(p.profit_per_prevented)} = {_money(fi.tp_profit)}")
    print(f"  False positives (wasted prevention): {c.fp:,} x {_money(p.prevention_cost)} = {_money(-fi.fp_loss)}")
    print(f"  False negatives (missed delays): {c.fn:,} x {_money(p.late_delivery_loss)} = {_money(-fi.fn_loss)}")
    print(f"  NET BENEFIT: {_money(fi.net_benefit)}")

    print("\nScaling to operational volumes:")
    print(f"  Monthly ({fi.monthly_volume:,} orders): {_money(fi.monthly_benefit)}")
    print(f"  Annual ({fi.monthly_volume * MONTHS_PER_YEAR:,} orders): {_money(fi.annual_benefit)}")
    for note in fi.notes:
        print(f"  Note: {note}")

    print("\nReturn on investment:")
    print(f"  Monthly prevention spending: {_money(fi.monthly_prevention_cost)}")
    print(f"  Monthly losses prevented   : {_money(fi.monthly_losses_prevented)}")
    if np.isfinite(fi.savings_per_dollar):
        print(f"  For every $1 spent, save ${fi.savings_per_dollar:.2f} (ROI {fi.roi_pct:.1f}%)")
    else:
        print("  ROI undefined (no prevented delays)")
