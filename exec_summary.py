# exec_summary.py
# Writes a plain-English executive summary to reports/executive_summary.md
# - Model quality on validation and test, confusion mix on test
# - Top drivers from the coefficient table
# - Financial impact and the volume projections (clearly marked as linear scaling)

from __future__ import annotations

import os
from typing import List

import numpy as np
import pandas as pd

from fit_model import INTERCEPT
from logging_setup import get_logger

OUT_NAME = "executive_summary.md"

# ------------ helpers

def fmt_pct(x: float, d: int = 1) -> str:
    if x is None or not np.isfinite(x): return "—"
    return f"{100.0 * float(x):.{d}f}%"

def fmt_float(x: float, d: int = 3) -> str:
    if x is None or not np.isfinite(x): return "—"
    return f"{float(x):.{d}f}"

def fmt_int(x: float | int) -> str:
    if x is None or (isinstance(x, float) and not np.isfinite(x)): return "—"
    return f"{int(round(float(x))):,}"

def fmt_money(x: float) -> str:
    if x is None or not np.isfinite(x): return "—"
    sign = "-" if x < 0 else ""
    return f"{sign}${abs(float(x)):,.0f}"

def df_to_md_table(df: pd.DataFrame) -> str:
    """Render a DataFrame as a GitHub-style Markdown table."""
    cols = list(df.columns)
    header = "| " + " | ".join(cols) + " |"
    sep = "| " + " | ".join(["---"] * len(cols)) + " |"
    rows = ["| " + " | ".join(str(df.iloc[i, j]) for j in range(len(cols))) + " |"
            for i in range(len(df))]
    return "\n".join([header, sep] + rows)

# ------------ sections

def _metrics_table(evaluations) -> str:
    rows = []
    for ev in evaluations:
        r = ev.rates
        rows.append({
            "Subset": ev.name,
            "Orders": fmt_int(ev.counts.total),
            "Accuracy": fmt_pct(r["accuracy"], 2),
            "Sensitivity": fmt_pct(r["sensitivity"], 2),
            "Specificity": fmt_pct(r["specificity"], 2),
            "Precision": fmt_pct(r["precision"], 2),
            "False alarm": fmt_pct(r["false_alarm_rate"], 2),
            "AUC": fmt_float(ev.auc, 3),
        })
    return df_to_md_table(pd.DataFrame(rows))


def _drivers_table(model, top: int = 10) -> str:
    tbl = model.coefficient_table()
    tbl = tbl[(tbl["Feature"] != INTERCEPT) & tbl["Coefficient"].notna()].head(top)
    show = pd.DataFrame({
        "Feature": tbl["Feature"],
        "Coefficient": tbl["Coefficient"].map(lambda v: fmt_float(v, 3)),
        "p-value": tbl["P_Value"].map(lambda v: fmt_float(v, 4)),
        "Sig.": tbl["Significant"],
        "Pushes toward": tbl["Direction"],
    })
    return df_to_md_table(show.reset_index(drop=True))


def build_summary(report) -> str:
    eda = report.eda
    test = report.test_eval
    fi = report.financial
    model = report.model
    c = test.counts

    lines: List[str] = []
    lines.append("# Executive Summary — On-Time Delivery Model\n")

    lines.append("## What this means in plain terms")
    if "late_rate" in eda:
        lines.append(f"- About **{fmt_pct(eda['late_rate'])}** of orders arrive late today.")
    if "disruption_gap_pp" in eda and np.isfinite(eda["disruption_gap_pp"]):
        lines.append(f"- A disruption moves the late rate from **{fmt_pct(eda['late_rate_without_disruption'])}** "
                     f"to **{fmt_pct(eda['late_rate_with_disruption'])}**.")
    lines.append(f"- On **{fmt_int(c.total)}** held-out orders the model is right **{fmt_pct(test.rates['accuracy'], 2)}** "
                 f"of the time and catches **{fmt_pct(test.rates['sensitivity'], 2)}** of late deliveries.")
    lines.append(f"- False alarm rate: **{fmt_pct(test.rates['false_alarm_rate'], 2)}** of on-time orders get flagged.")
    lines.append("")

    lines.append("## Model quality")
    lines.append(_metrics_table([report.val_eval, report.test_eval]))
    lines.append("")
    lines.append(f"- Confusion mix (test): TP={fmt_int(c.tp)} FP={fmt_int(c.fp)} TN={fmt_int(c.tn)} FN={fmt_int(c.fn)}")
    rule = "late when P(on time) > threshold" if test.inverted else "late when P(on time) ≤ threshold"
    lines.append(f"- Threshold: **{test.threshold:.2f}** ({rule}).")
    lines.append(f"- Solver: IRLS, {model.iterations} iterations, converged = {model.converged}.")
    if model.aliased:
        lines.append(f"- Aliased columns without a coefficient: {', '.join(model.aliased)}.")
    lines.append("")

    lines.append("## Top drivers")
    lines.append(_drivers_table(model))
    lines.append("")

    lines.append("## Financial impact")
    p = fi.params
    lines.append(f"- Prevention cost **{fmt_money(p.prevention_cost)}**, late-delivery loss **{fmt_money(p.late_delivery_loss)}**, "
                 f"profit per prevented delay **{fmt_money(p.profit_per_prevented)}**.")
    lines.append(f"- Net benefit on the test set: **{fmt_money(fi.net_benefit)}** "
                 f"({fmt_money(fi.tp_profit)} prevented − {fmt_money(fi.fp_loss)} wasted − {fmt_money(fi.fn_loss)} missed).")
    lines.append(f"- Monthly at {fmt_int(fi.monthly_volume)} orders: **{fmt_money(fi.monthly_benefit)}**; "
                 f"annual: **{fmt_money(fi.annual_benefit)}**.")
    if np.isfinite(fi.savings_per_dollar):
        lines.append(f"- For every $1 spent on prevention, about **${fi.savings_per_dollar:.2f}** of losses are avoided.")
    for note in fi.notes:
        lines.append(f"- _{note}_")
    lines.append("")

    lines.append("## Recommended next steps")
    lines.append("- Flag high-risk orders at booking and start with proactive customer communication.")
    lines.append("- Re-route selectively where the order value justifies the prevention cost.")
    lines.append("- Pilot on one high-risk route, compare on-time rate against the baseline, then scale.")
    lines.append("- Monitor accuracy monthly and retrain quarterly.")
    lines.append("")

    return "\n".join(lines).strip() + "\n"


def write_summary(report, reports_dir: str = "reports") -> str:
    os.makedirs(reports_dir, exist_ok=True)
    path = os.path.join(reports_dir, OUT_NAME)
    with open(path, "w", encoding="utf-8") as f:
        f.write(build_summary(report))
    get_logger().info(f"[SAVE] {path}")
    return path
