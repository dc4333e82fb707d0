# plots.py
# Report figures: class balance, confusion matrix, top coefficients.
# Palette: blue = on time (1), coral = late (0).

from __future__ import annotations

import os

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.ticker import FuncFormatter

from evaluate_model import ConfusionCounts
from fit_model import INTERCEPT, FittedModel
from logging_setup import get_logger

# ------------------ Palette (color-vision friendly) ------------------------
COLOR_ON_TIME = "#3B5BA5"  # deep blue
COLOR_LATE    = "#E45756"  # coral
LINE_MEAN     = "#6B7280"  # slate
# ----------------------------------------------------------------------------

sns.set_theme(
    style="whitegrid",
    rc={
        "axes.titlesize": 13,
        "axes.labelsize": 11,
        "axes.titlepad": 10,
        "legend.frameon": False,
        "figure.dpi": 110,
        "axes.facecolor": "white",
        "grid.color": "#EEF2F5",
        "grid.linewidth": 0.8,
    }
)

def _fmt_thousands(x, _):
    try:
        return f"{int(x):,}"
    except (TypeError, ValueError):
        return str(x)
FMT_THOUSANDS = FuncFormatter(_fmt_thousands)


def new_fig(figsize=(7, 4)):
    return plt.subplots(figsize=figsize, constrained_layout=True)


def save_fig(fig: plt.Figure, out_dir: str, filename: str) -> str:
    os.makedirs(out_dir, exist_ok=True)
    out = os.path.join(out_dir, filename)
    fig.savefig(out, dpi=150, bbox_inches="tight")
    plt.close(fig)
    get_logger().info(f"[SAVE] {out}")
    return out


def plot_class_balance(df: pd.DataFrame, target: str, out_dir: str) -> str:
    counts = df[target].value_counts().reindex([0, 1]).fillna(0).astype(int)
    fig, ax = new_fig(figsize=(6, 4))
    ax.bar([0, 1], counts.values, color=[COLOR_LATE, COLOR_ON_TIME])
    ax.set_xticks([0, 1], ["Late (0)", "On time (1)"])
    total = counts.sum()
    for i, v in enumerate(counts.values):
        share = v / total if total else 0
        ax.text(i, v, f"{v:,} ({share*100:.1f}%)", ha="center", va="bottom", fontsize=9)
    ax.set_title("Delivery outcome")
    ax.set_xlabel(""); ax.set_ylabel("Orders"); ax.yaxis.set_major_formatter(FMT_THOUSANDS)
    return save_fig(fig, out_dir, "class_balance.png")


def plot_confusion(c: ConfusionCounts, title: str, out_dir: str, fname: str) -> str:
    cm = np.array([[c.tn, c.fp], [c.fn, c.tp]])
    df_cm = pd.DataFrame(cm,
                         index=["True: On time", "True: Late"],
                         columns=["Pred: On time", "Pred: Late"])
    fig, ax = new_fig(figsize=(6, 5))
    sns.heatmap(df_cm, annot=True, fmt="d", cmap="Purples", cbar=False, ax=ax)
    ax.set_title(title)
    ax.text(0.0, -0.25,
            "Rows = actual, Columns = predicted. FP = flagged late but on time. FN = missed late delivery.",
            transform=ax.transAxes, ha="left", va="top", fontsize=9, color="#374151")
    return save_fig(fig, out_dir, fname)


def plot_coefficients(model: FittedModel, out_dir: str, top: int = 12) -> str:
    tbl = model.coefficient_table()
    tbl = tbl[(tbl["Feature"] != INTERCEPT) & tbl["Coefficient"].notna()].head(top)
    colors = [COLOR_ON_TIME if b > 0 else COLOR_LATE for b in tbl["Coefficient"]]
    fig, ax = new_fig(figsize=(8, 5))
    ax.barh(tbl["Feature"][::-1], tbl["Coefficient"][::-1], color=colors[::-1])
    ax.axvline(0, color=LINE_MEAN, linewidth=0.8)
    ax.set_title("Top predictors (logistic regression coefficients)")
    ax.set_xlabel("Coefficient (blue = on time, coral = late)")
    return save_fig(fig, out_dir, "coefficients.png")
