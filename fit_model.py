# fit_model.py
# Binary logistic regression fitted by iteratively reweighted least squares (IRLS),
# with standard errors and Wald p-values, plus joblib persistence of the fitted model.

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from typing import List, Optional

import joblib
import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import expit

from logging_setup import get_logger
from pipeline_errors import (ConvergenceWarning, EmptyPartitionError, RankDeficiencyWarning,
                             SchemaError, require_columns)

MAX_ITER = 100
TOL = 1e-8
INTERCEPT = "(Intercept)"

_EPS = np.finfo(float).eps
_ETA_LIMIT = -np.log(_EPS / (1 - _EPS))   # |eta| beyond this gives mu == eps or 1 - eps


@dataclass
class FittedModel:
    target: str
    feature_names: List[str]
    intercept: float
    coefficients: np.ndarray
    std_errors: np.ndarray
    z_values: np.ndarray
    p_values: np.ndarray
    intercept_se: float
    intercept_p: float
    iterations: int
    converged: bool
    deviance: float
    null_deviance: float
    n_obs: int
    aliased: List[str] = field(default_factory=list)

    @property
    def log_likelihood(self) -> float:
        return -0.5 * self.deviance

    @property
    def aic(self) -> float:
        k = 1 + int(np.isfinite(self.coefficients).sum())
        return self.deviance + 2 * k

    def coef_dict(self) -> dict:
        return dict(zip(self.feature_names, self.coefficients.tolist()))

    def decision_function(self, df: pd.DataFrame) -> np.ndarray:
        require_columns(df, self.feature_names, where="model input")
        X = df[self.feature_names].to_numpy(dtype=float)
        # aliased columns carry no information and contribute nothing
        w = np.where(np.isnan(self.coefficients), 0.0, self.coefficients)
        return self.intercept + X @ w

    def predict_proba(self, df: pd.DataFrame) -> np.ndarray:
        """P(target = 1) per row."""
        return expit(self.decision_function(df))

    def coefficient_table(self) -> pd.DataFrame:
        rows = [{
            "Feature": INTERCEPT, "Coefficient": self.intercept, "StdError": self.intercept_se,
            "P_Value": self.intercept_p,
        }]
        for name, b, se, p in zip(self.feature_names, self.coefficients, self.std_errors, self.p_values):
            rows.append({"Feature": name, "Coefficient": b, "StdError": se, "P_Value": p})
        tbl = pd.DataFrame(rows)
        tbl["z_value"] = tbl["Coefficient"] / tbl["StdError"]
        tbl["AbsValue"] = tbl["Coefficient"].abs()
        tbl["Significant"] = tbl["P_Value"].map(_stars)
        tbl["Direction"] = np.where(tbl["Coefficient"] > 0, "On-Time", "Late")
        tbl.loc[tbl["Coefficient"].isna(), "Direction"] = "aliased"
        tbl = tbl.sort_values("AbsValue", ascending=False, na_position="last").reset_index(drop=True)
        return tbl[["Feature", "Coefficient", "StdError", "z_value", "P_Value", "AbsValue", "Significant", "Direction"]]

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "intercept": float(self.intercept),
            "coefficients": self.coef_dict(),
            "std_errors": dict(zip(self.feature_names, self.std_errors.tolist())),
            "p_values": dict(zip(self.feature_names, self.p_values.tolist())),
            "aliased": list(self.aliased),
            "iterations": int(self.iterations),
            "converged": bool(self.converged),
            "deviance": float(self.deviance),
            "null_deviance": float(self.null_deviance),
            "aic": float(self.aic),
            "n_obs": int(self.n_obs),
        }


def _stars(p) -> str:
    if p is None or not np.isfinite(p):
        return ""
    if p < 0.001: return "***"
    if p < 0.01: return "**"
    if p < 0.05: return "*"
    return ""


def _binomial_deviance(y: np.ndarray, mu: np.ndarray) -> float:
    return float(-2.0 * np.sum(y * np.log(mu) + (1 - y) * np.log(1 - mu)))


def _linkinv(eta: np.ndarray) -> np.ndarray:
    return expit(np.clip(eta, -_ETA_LIMIT, _ETA_LIMIT))


def find_aliased_columns(X: np.ndarray) -> List[int]:
    """Indices of columns that are linear combinations of the columns before them."""
    keep, aliased = [], []
    for j in range(X.shape[1]):
        cand = keep + [j]
        if np.linalg.matrix_rank(X[:, cand]) == len(cand):
            keep.append(j)
        else:
            aliased.append(j)
    return aliased


def irls(X: np.ndarray, y: np.ndarray, max_iter: int = MAX_ITER, tol: float = TOL):
    """
    Newton-Raphson / IRLS for the logit link. X must already hold the intercept column.
    Stops when |dev - dev_old| / (|dev| + 0.1) < tol or after max_iter iterations.
    Returns (beta, mu, deviance, iterations, converged).
    """
    mu = (y + 0.5) / 2.0
    eta = np.log(mu / (1 - mu))
    dev_old = _binomial_deviance(y, mu)
    beta = np.zeros(X.shape[1])
    converged = False
    it = 0
    for it in range(1, max_iter + 1):
        w = mu * (1 - mu)
        z = eta + (y - mu) / w
        sw = np.sqrt(w)
        beta, *_ = np.linalg.lstsq(X * sw[:, None], z * sw, rcond=None)
        eta = X @ beta
        mu = _linkinv(eta)
        dev = _binomial_deviance(y, mu)
        if abs(dev - dev_old) / (abs(dev) + 0.1) < tol:
            converged = True
            dev_old = dev
            break
        dev_old = dev
    return beta, mu, dev_old, it, converged


def _covariance(X: np.ndarray, mu: np.ndarray) -> np.ndarray:
    w = mu * (1 - mu)
    fisher = X.T @ (X * w[:, None])
    try:
        return np.linalg.inv(fisher)
    except np.linalg.LinAlgError:
        return np.linalg.pinv(fisher)


def fit_logistic_regression(df: pd.DataFrame, target: str,
                            features: Optional[List[str]] = None,
                            max_iter: int = MAX_ITER, tol: float = TOL) -> FittedModel:
    """Fit P(target = 1 | x) = sigmoid(w.x + b) on every column of df except the target."""
    logger = get_logger()
    require_columns(df, [target], where="model fitter")
    if features is None:
        features = [c for c in df.columns if c != target]
    require_columns(df, features, where="model fitter")
    bad = [c for c in features if not pd.api.types.is_numeric_dtype(df[c])]
    if bad:
        raise SchemaError(f"Model features must be numeric: {', '.join(bad)}")

    data = df[[target] + list(features)]
    complete = data.dropna()
    dropped = len(data) - len(complete)
    if dropped:
        logger.warning(f"{dropped:,} training row(s) with missing values excluded from the fit")
    if len(complete) == 0:
        raise EmptyPartitionError("No complete training rows to fit the model")

    y = complete[target].to_numpy(dtype=float)
    if not np.isin(y, (0.0, 1.0)).all():
        raise SchemaError(f"Target '{target}' must be 0/1 for logistic regression")

    X = np.column_stack([np.ones(len(complete)), complete[list(features)].to_numpy(dtype=float)])
    names = [INTERCEPT] + list(features)

    aliased_idx = find_aliased_columns(X)
    aliased = [names[j] for j in aliased_idx]
    if aliased:
        warnings.warn(
            f"Design matrix is rank deficient; {len(aliased)} aliased column(s) get no coefficient: "
            f"{', '.join(aliased)}", RankDeficiencyWarning, stacklevel=2)
    keep = [j for j in range(X.shape[1]) if j not in set(aliased_idx)]
    Xk = X[:, keep]

    beta_k, mu, dev, iterations, converged = irls(Xk, y, max_iter=max_iter, tol=tol)
    if not converged:
        warnings.warn(f"IRLS did not converge in {max_iter} iterations; returning the last iterate",
                      ConvergenceWarning, stacklevel=2)
    if ((mu < 10 * _EPS) | (mu > 1 - 10 * _EPS)).any():
        logger.warning("Fitted probabilities numerically 0 or 1 occurred (the classes may be separable)")

    cov = _covariance(Xk, mu)
    se_k = np.sqrt(np.clip(np.diag(cov), 0, None))

    beta = np.full(X.shape[1], np.nan)
    se = np.full(X.shape[1], np.nan)
    beta[keep] = beta_k
    se[keep] = se_k
    with np.errstate(divide="ignore", invalid="ignore"):
        z = beta / se
    p = 2 * stats.norm.sf(np.abs(z))

    ybar = y.mean()
    null_dev = _binomial_deviance(y, np.full_like(y, np.clip(ybar, _EPS, 1 - _EPS)))

    return FittedModel(
        target=target,
        feature_names=list(features),
        intercept=float(beta[0]) if np.isfinite(beta[0]) else 0.0,
        coefficients=beta[1:],
        std_errors=se[1:],
        z_values=z[1:],
        p_values=p[1:],
        intercept_se=float(se[0]),
        intercept_p=float(p[0]),
        iterations=int(iterations),
        converged=bool(converged),
        deviance=float(dev),
        null_deviance=float(null_dev),
        n_obs=int(len(complete)),
        aliased=[a for a in aliased if a != INTERCEPT],
    )


def training_accuracy(model: FittedModel, df: pd.DataFrame) -> float:
    """Share of rows where round(P(target=1)) matches the target."""
    p = model.predict_proba(df)
    y = df[model.target].to_numpy(dtype=float)
    ok = np.isfinite(p) & np.isfinite(y)
    return float(((p[ok] > 0.5).astype(int) == y[ok]).mean()) if ok.any() else np.nan


def print_model_summary(model: FittedModel, top: int = 10) -> None:
    tbl = model.coefficient_table()
    print("\n=== Logistic Regression (IRLS) ===")
    print(f"Observations: {model.n_obs:,}   Iterations: {model.iterations}   "
          f"Converged: {model.converged}")
    print(f"Null deviance: {model.null_deviance:,.2f}   Residual deviance: {model.deviance:,.2f}   "
          f"AIC: {model.aic:,.2f}")
    if model.aliased:
        print(f"Aliased (no coefficient): {', '.join(model.aliased)}")
    print(f"\nTop {top} most important predictors:")
    with pd.option_context("display.width", 140, "display.max_columns", 20):
        print(tbl.head(top).to_string(index=False))

    feats = tbl[(tbl["Feature"] != INTERCEPT) & tbl["Coefficient"].notna()]
    pos = feats[feats["Coefficient"] > 0]
    neg = feats[feats["Coefficient"] < 0]
    print("\nKey insights:")
    if not pos.empty:
        print(f"  Strongest positive (on-time protector): {pos.iloc[0]['Feature']} (+{pos.iloc[0]['Coefficient']:.2f})")
    if not neg.empty:
        print(f"  Strongest negative (late predictor)   : {neg.iloc[0]['Feature']} ({neg.iloc[0]['Coefficient']:.2f})")
    print(f"  Statistically significant features: {int((feats['P_Value'] < 0.05).sum())}")


def save_coefficients(model: FittedModel, reports_dir: str = "reports") -> str:
    os.makedirs(reports_dir, exist_ok=True)
    path = os.path.join(reports_dir, "coefficients.csv")
    model.coefficient_table().to_csv(path, index=False)
    get_logger().info(f"[SAVE] Coefficients -> {path}")
    return path


def save_model(model: FittedModel, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    joblib.dump(model, path)
    get_logger().info(f"[SAVE] {path}")
    return path


def load_model(path: str) -> FittedModel:
    if not os.path.exists(path):
        raise FileNotFoundError(os.path.abspath(path))
    model = joblib.load(path)
    if not isinstance(model, FittedModel):
        raise TypeError(f"{path} does not hold a fitted logistic model")
    return model
