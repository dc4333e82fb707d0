# prepare_data.py
# Load the shipment spreadsheet, clean it, summarise it, and add the derived features.

from __future__ import annotations

import os
from typing import Tuple

import numpy as np
import pandas as pd

from logging_setup import get_logger
from pipeline_errors import DataLoadError, DivisionByZeroError, SchemaError, require_columns

TARGET = "Std_On_Time_Delivery"
DISRUPTION_FLAG = "Std_Has_Disruption"

NUMERIC_VARS = [
    "Scheduled_Lead_Time_Days",
    "Base_Lead_Time_Days",
    "Order_Weight_Kg",
    "Shipping_Cost_USD",
    "Geopolitical_Risk_Index",
    "Weather_Severity_Index",
]

CATEGORICAL_VARS = [
    "Route_Type",
    "Transportation_Mode",
    "Product_Category",
    "Mitigation_Action_Taken",
    "Disruption_Event",
]

DERIVED_VARS = ["Lead_Time_Buffer", "Shipping_Cost_per_Kg", "High_Risk_Environment"]

GEO_RISK_LIMIT = 0.6
WEATHER_LIMIT = 7

EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xls")

# ============================ Load & Clean data ============================

def load_dataset(path: str, sheet_name=0) -> pd.DataFrame:
    """Read the shipment table from an Excel workbook or a CSV file."""
    path_abs = os.path.abspath(path)
    if not os.path.exists(path):
        raise FileNotFoundError(path_abs)
    suffix = os.path.splitext(path)[1].lower()
    try:
        if suffix in EXCEL_SUFFIXES:
            df = pd.read_excel(path, sheet_name=sheet_name)
        elif suffix in (".csv", ".txt"):
            df = pd.read_csv(path)
        else:
            raise DataLoadError(f"Unsupported file type '{suffix}': {path_abs}")
    except DataLoadError:
        raise
    except Exception as e:
        raise DataLoadError(f"Could not parse {path_abs} as a table: {e}") from e
    if df.shape[1] == 0:
        raise DataLoadError(f"No columns found in {path_abs}")
    if "Unnamed: 0" in df.columns:
        df = df.drop(columns=["Unnamed: 0"])
    return df


def clean_data(df: pd.DataFrame) -> Tuple[pd.DataFrame, dict]:
    """
    Drop rows where every column is missing; nothing else is touched.
    Returns: (clean_df, summary_dict)
    """
    summary = {
        "rows_before": int(len(df)),
        "columns": int(df.shape[1]),
        "missing_before": int(df.isna().sum().sum()),
    }
    out = df.dropna(how="all").copy()
    summary["rows_after"] = int(len(out))
    summary["rows_removed_total"] = summary["rows_before"] - summary["rows_after"]
    summary["missing_after"] = int(out.isna().sum().sum())
    return out, summary


def print_cleaning_summary(summary: dict) -> None:
    print("\n=== Dataset overview ===")
    print(f"  Rows          : {summary['rows_before']:,}")
    print(f"  Columns       : {summary['columns']:,}")
    print(f"  Missing values: {summary['missing_before']:,}")
    print("After cleaning:")
    print(f"  Rows          : {summary['rows_after']:,}")
    print(f"  Missing values: {summary['missing_after']:,}")


def save_cleaning_report(summary: dict, reports_dir: str = "reports") -> str:
    os.makedirs(reports_dir, exist_ok=True)
    path = os.path.join(reports_dir, "cleaning_report.txt")
    lines = [
        "=== Data Cleaning Summary ===\n",
        f"Rows before cleaning       : {summary.get('rows_before', 0):,}\n",
        f"Rows after cleaning        : {summary.get('rows_after', 0):,}\n",
        f"Fully empty rows removed   : {summary.get('rows_removed_total', 0):,}\n",
        f"Columns                    : {summary.get('columns', 0):,}\n",
        f"Missing cells before       : {summary.get('missing_before', 0):,}\n",
        f"Missing cells after        : {summary.get('missing_after', 0):,}\n",
    ]
    with open(path, "w", encoding="utf-8") as f:
        f.writelines(lines)
    get_logger().info(f"[SAVE] Cleaning summary -> {path}")
    return path


def missingness_table(df: pd.DataFrame, reports_dir: str = "reports") -> pd.DataFrame:
    miss = df.isna().sum().rename("missing")
    pct = (df.isna().mean()*100).round(2).rename("missing_pct")
    out = pd.concat([miss, pct], axis=1).sort_values("missing_pct", ascending=False)
    os.makedirs(reports_dir, exist_ok=True)
    path = os.path.join(reports_dir, "missingness.csv")
    out.to_csv(path)
    get_logger().info(f"[SAVE] Missingness -> {path}")
    return out

# ============================== Diagnostic EDA =============================

def _late_rate(s: pd.Series) -> float:
    s = pd.to_numeric(s, errors="coerce").dropna()
    return float((s == 0).mean()) if len(s) else np.nan


def describe_dataset(df: pd.DataFrame) -> dict:
    """Descriptive statistics, target balance and the effect of disruptions on lateness."""
    out = {}
    num_cols = [c for c in NUMERIC_VARS if c in df.columns]
    out["numeric"] = df[num_cols].describe().T if num_cols else pd.DataFrame()

    if TARGET in df.columns:
        y = pd.to_numeric(df[TARGET], errors="coerce")
        n = int(y.notna().sum())
        counts = y.value_counts().sort_index()
        out["target_counts"] = {int(k): int(v) for k, v in counts.items()}
        out["on_time_rate"] = float((y == 1).sum() / n) if n else np.nan
        out["late_rate"] = float((y == 0).sum() / n) if n else np.nan

        if DISRUPTION_FLAG in df.columns:
            flag = pd.to_numeric(df[DISRUPTION_FLAG], errors="coerce")
            late_with = _late_rate(df.loc[flag == 1, TARGET])
            late_without = _late_rate(df.loc[flag == 0, TARGET])
            out["late_rate_with_disruption"] = late_with
            out["late_rate_without_disruption"] = late_without
            out["disruption_gap_pp"] = (late_with - late_without) * 100
    return out


def print_eda(eda: dict) -> None:
    if "target_counts" in eda:
        print("\nTarget variable distribution:")
        for k, v in eda["target_counts"].items():
            print(f"  {k}: {v:,}")
        print(f"  On-time rate: {eda['on_time_rate']*100:.1f}%")
        print(f"  Late rate   : {eda['late_rate']*100:.1f}%")
    if "disruption_gap_pp" in eda:
        print("\nDisruption impact:")
        print(f"  Late rate WITH disruption   : {eda['late_rate_with_disruption']*100:.1f}%")
        print(f"  Late rate WITHOUT disruption: {eda['late_rate_without_disruption']*100:.1f}%")
        print(f"  Difference: {eda['disruption_gap_pp']:.1f} percentage points")


def save_descriptive_stats(eda: dict, reports_dir: str = "reports") -> None:
    stats = eda.get("numeric")
    if stats is None or stats.empty:
        return
    os.makedirs(reports_dir, exist_ok=True)
    path = os.path.join(reports_dir, "descriptive_stats.csv")
    stats.to_csv(path)
    get_logger().info(f"[SAVE] Descriptive statistics -> {path}")

# =========================== Feature engineering ===========================

def _require_numeric(df: pd.DataFrame, columns) -> None:
    bad = [c for c in columns if not pd.api.types.is_numeric_dtype(df[c])]
    if bad:
        raise SchemaError(f"Expected numeric column(s), got non-numeric: {', '.join(bad)}")


def engineer_features(df: pd.DataFrame) -> pd.DataFrame:
    """Return a copy of df with Lead_Time_Buffer, Shipping_Cost_per_Kg and High_Risk_Environment."""
    needed = NUMERIC_VARS
    require_columns(df, needed, where="feature engineering")
    _require_numeric(df, needed)

    zero_weight = int((df["Order_Weight_Kg"] == 0).sum())
    if zero_weight:
        raise DivisionByZeroError(
            f"Order_Weight_Kg is 0 in {zero_weight:,} row(s); Shipping_Cost_per_Kg is undefined"
        )

    out = df.copy()
    out["Lead_Time_Buffer"] = out["Scheduled_Lead_Time_Days"] - out["Base_Lead_Time_Days"]
    out["Shipping_Cost_per_Kg"] = out["Shipping_Cost_USD"] / out["Order_Weight_Kg"]
    out["High_Risk_Environment"] = (
        (out["Geopolitical_Risk_Index"] > GEO_RISK_LIMIT) | (out["Weather_Severity_Index"] > WEATHER_LIMIT)
    ).astype(int)
    return out


def feature_summary(df: pd.DataFrame) -> dict:
    n = len(df)
    return {
        "lead_time_buffer_min": float(df["Lead_Time_Buffer"].min()),
        "lead_time_buffer_max": float(df["Lead_Time_Buffer"].max()),
        "cost_per_kg_min": float(df["Shipping_Cost_per_Kg"].min()),
        "cost_per_kg_max": float(df["Shipping_Cost_per_Kg"].max()),
        "high_risk_share": float(df["High_Risk_Environment"].sum() / n) if n else np.nan,
    }


def print_feature_summary(fs: dict) -> None:
    print("\nNew features created:")
    print(f"  Lead_Time_Buffer: range [{fs['lead_time_buffer_min']:g}, {fs['lead_time_buffer_max']:g}]")
    print(f"  Shipping_Cost_per_Kg: range [{fs['cost_per_kg_min']:.4f}, {fs['cost_per_kg_max']:.4f}]")
    print(f"  High_Risk_Environment: proportion = {fs['high_risk_share']*100:.1f}%")


def select_model_columns(df: pd.DataFrame, categorical=CATEGORICAL_VARS) -> pd.DataFrame:
    """Keep the target, numeric inputs, disruption flag, derived features and the categorical columns."""
    numeric = NUMERIC_VARS + [DISRUPTION_FLAG] + DERIVED_VARS
    require_columns(df, [TARGET] + numeric + list(categorical), where="model frame")
    _require_numeric(df, [DISRUPTION_FLAG])
    return df[[TARGET] + numeric + list(categorical)].copy()
