"""
================= On-Time Delivery Prediction — Supply Chain =================

End-to-end pipeline for predicting late shipments and pricing the decision
to intervene. Stages run top to bottom and hand their results to the next
one explicitly:

  1. load + clean the shipment spreadsheet, EDA summary
  2. derived features (lead-time buffer, cost per kg, high-risk flag)
  3. stratified 40/30/30 split on the on-time flag
  4. indicator encoding + min-max scaling, fitted on training rows only
  5. logistic regression by IRLS (coefficients, SEs, Wald p-values)
  6. validation/test confusion matrices and rates
  7. net benefit of acting on the predictions, scaled to monthly/annual volume

Prepared data and the fitted model are persisted with joblib under
artifacts/ so later stages can be re-run from disk.

Palette: blue = on time (1), coral = late (0).
===========================================================================
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass, field
from typing import List, Optional

import joblib
import numpy as np
import pandas as pd

from encode_features import CategoricalEncoder, MinMaxNormalizer, print_scaling_check
from evaluate_model import (EvaluationResult, FinancialImpact, FinancialParams, evaluate,
                            financial_impact, print_evaluation, print_financial_impact)
from exec_summary import write_summary
from fit_model import FittedModel, fit_logistic_regression, load_model, print_model_summary, \
    save_coefficients, save_model
from logging_setup import setup_logging
from pipeline_errors import (DataLoadError, DivisionByZeroError, EmptyPartitionError,
                             NotFittedError, SchemaError)
from prepare_data import (CATEGORICAL_VARS, TARGET, clean_data, describe_dataset, engineer_features,
                          feature_summary, load_dataset, missingness_table, print_cleaning_summary,
                          print_eda, print_feature_summary, save_cleaning_report,
                          save_descriptive_stats, select_model_columns)
from split_data import Partition, partition_frames, print_split_summary, split_summary, stratified_split

# -------------------- Configuration ----------------------------------------
DATA_PATH          = "SCM_Disruption_data.xlsx"
OUTPUT_DIR         = "."
RANDOM_SEED        = 42
TRAIN_FRACTION     = 0.40                # 40% train
VAL_OF_REMAINDER   = 0.50                # remaining 60% -> 30% val / 30% test
THRESHOLD          = 0.50
INVERTED_LABELS    = False               # True reproduces "late when p > 0.5"
MAX_ITER           = 100
TOL                = 1e-8
PREVENTION_COST    = 6078
LATE_DELIVERY_LOSS = 7493
MONTHLY_VOLUME     = 10000
MAKE_PLOTS         = True

PREPARED_FILE = "prepared_data.joblib"
MODEL_FILE    = "trained_model.joblib"
# ----------------------------------------------------------------------------

logger = setup_logging()


def _dirs(outdir: str) -> dict:
    return {
        "artifacts": os.path.join(outdir, "artifacts"),
        "reports": os.path.join(outdir, "reports"),
        "figures": os.path.join(outdir, "reports", "figures"),
    }

# ============================ Prepared data ================================

@dataclass
class PreparedData:
    train: pd.DataFrame
    val: pd.DataFrame
    test: pd.DataFrame
    encoder: CategoricalEncoder
    normalizer: MinMaxNormalizer
    partition: Partition
    target: str = TARGET
    cleaning: dict = field(default_factory=dict)
    eda: dict = field(default_factory=dict)
    features: dict = field(default_factory=dict)
    split: Optional[pd.DataFrame] = None


def save_prepared_data(prepared: PreparedData, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    joblib.dump(prepared, path)
    logger.info(f"[SAVE] {path}")
    return path


def load_prepared_data(path: str) -> PreparedData:
    if not os.path.exists(path):
        raise FileNotFoundError(os.path.abspath(path))
    prepared = joblib.load(path)
    if not isinstance(prepared, PreparedData):
        raise TypeError(f"{path} does not hold prepared data")
    return prepared


def prepare_data_stage(data_path: str, reports_dir: str,
                       categorical=CATEGORICAL_VARS, seed: int = RANDOM_SEED,
                       train_fraction: float = TRAIN_FRACTION,
                       val_fraction: float = VAL_OF_REMAINDER) -> PreparedData:
    logger.info(f"Loading {data_path} ...")
    raw = load_dataset(data_path)
    df, cleaning = clean_data(raw)
    print_cleaning_summary(cleaning)
    save_cleaning_report(cleaning, reports_dir)
    missingness_table(raw, reports_dir)

    eda = describe_dataset(df)
    print_eda(eda)
    save_descriptive_stats(eda, reports_dir)

    df = engineer_features(df)
    fs = feature_summary(df)
    print_feature_summary(fs)

    model_df = select_model_columns(df, categorical).reset_index(drop=True)
    partition = stratified_split(model_df, TARGET, train_fraction=train_fraction,
                                 val_fraction_of_remainder=val_fraction, seed=seed)
    train, val, test = partition_frames(model_df, partition)
    split = split_summary([train, val, test], TARGET)
    print_split_summary(split)

    # fit on training rows only, then apply the same transform everywhere
    encoder = CategoricalEncoder(columns=list(categorical), drop_reference=True).fit(train)
    train, val, test = (encoder.transform(f) for f in (train, val, test))
    normalizer = MinMaxNormalizer(exclude=(TARGET,)).fit(train)
    train, val, test = (normalizer.transform(f) for f in (train, val, test))
    print(f"\nFinal modelling frame: {train.shape[1] - 1} predictors "
          f"({len(encoder.feature_names_)} indicator columns, reference levels dropped)")
    print_scaling_check(train)

    return PreparedData(train=train, val=val, test=test, encoder=encoder, normalizer=normalizer,
                        partition=partition, cleaning=cleaning, eda=eda, features=fs, split=split)

# ============================== Train & evaluate ===========================

def train_stage(prepared: PreparedData, max_iter: int = MAX_ITER, tol: float = TOL) -> FittedModel:
    print(f"\nData loaded: training {len(prepared.train):,} / validation {len(prepared.val):,} "
          f"/ test {len(prepared.test):,} orders")
    model = fit_logistic_regression(prepared.train, prepared.target, max_iter=max_iter, tol=tol)
    print_model_summary(model)
    return model


def evaluate_stage(model: FittedModel, prepared: PreparedData, threshold: float = THRESHOLD,
                   inverted: bool = INVERTED_LABELS, params: FinancialParams = FinancialParams(),
                   monthly_volume: int = MONTHLY_VOLUME):
    val_eval = evaluate(model, prepared.val, "validation", threshold=threshold, inverted=inverted)
    print_evaluation(val_eval)
    test_eval = evaluate(model, prepared.test, "test", threshold=threshold, inverted=inverted)
    print_evaluation(test_eval)
    fi = financial_impact(test_eval.counts, params, observed_volume=test_eval.counts.total,
                          monthly_volume=monthly_volume)
    print_financial_impact(fi)
    return val_eval, test_eval, fi

# ================================ Report ===================================

@dataclass
class PipelineReport:
    cleaning: dict
    eda: dict
    features: dict
    split: pd.DataFrame
    model: FittedModel
    val_eval: EvaluationResult
    test_eval: EvaluationResult
    financial: FinancialImpact
    artifacts: dict = field(default_factory=dict)
    figures: List[str] = field(default_factory=list)

    def key_numbers(self) -> dict:
        t = self.test_eval
        return {
            "rows_clean": self.cleaning.get("rows_after"),
            "late_rate": self.eda.get("late_rate", np.nan),
            "train_rows": self.model.n_obs,
            "predictors": len(self.model.feature_names),
            "converged": self.model.converged,
            "iterations": self.model.iterations,
            "val_accuracy": self.val_eval.rates["accuracy"],
            "test_accuracy": t.rates["accuracy"],
            "test_sensitivity": t.rates["sensitivity"],
            "test_specificity": t.rates["specificity"],
            "test_precision": t.rates["precision"],
            "test_false_alarm_rate": t.rates["false_alarm_rate"],
            "test_auc": t.auc,
            **{f"test_{k.lower()}": v for k, v in t.counts.as_dict().items()},
            "net_benefit_test": self.financial.net_benefit,
            "monthly_benefit": self.financial.monthly_benefit,
            "annual_benefit": self.financial.annual_benefit,
        }

    def to_dict(self) -> dict:
        eda = {k: v for k, v in self.eda.items() if k != "numeric"}
        return {
            "cleaning": dict(self.cleaning),
            "eda": eda,
            "features": dict(self.features),
            "split": self.split.to_dict(orient="records"),
            "model": self.model.to_dict(),
            "validation": self.val_eval.summary(),
            "test": self.test_eval.summary(),
            "financial": self.financial.to_dict(),
            "key_numbers": self.key_numbers(),
            "artifacts": dict(self.artifacts),
            "figures": list(self.figures),
        }


def save_evaluation_summary(evals, reports_dir: str) -> str:
    os.makedirs(reports_dir, exist_ok=True)
    path = os.path.join(reports_dir, "evaluation_summary.csv")
    pd.DataFrame([e.summary() for e in evals]).to_csv(path, index=False)
    logger.info(f"[SAVE] {path}")
    return path


def build_key_numbers(report: PipelineReport, reports_dir: str) -> str:
    """Save key summary numbers (data + model + money) to reports/key_numbers.csv."""
    os.makedirs(reports_dir, exist_ok=True)
    path = os.path.join(reports_dir, "key_numbers.csv")
    pd.DataFrame([report.key_numbers()]).to_csv(path, index=False)
    logger.info(f"[SAVE] Key numbers -> {path}")
    return path


def make_figures(prepared: PreparedData, model: FittedModel, test_eval: EvaluationResult,
                 figures_dir: str) -> List[str]:
    import plots
    out = [plots.plot_class_balance(pd.concat([prepared.train, prepared.val, prepared.test]),
                                    prepared.target, figures_dir)]
    out.append(plots.plot_confusion(test_eval.counts, "Confusion matrix — test set", figures_dir, "cm_test.png"))
    out.append(plots.plot_coefficients(model, figures_dir))
    return out


def run_pipeline(data_path: str = DATA_PATH, outdir: str = OUTPUT_DIR, seed: int = RANDOM_SEED,
                 train_fraction: float = TRAIN_FRACTION, val_fraction: float = VAL_OF_REMAINDER,
                 threshold: float = THRESHOLD, inverted: bool = INVERTED_LABELS,
                 max_iter: int = MAX_ITER, tol: float = TOL,
                 params: FinancialParams = FinancialParams(PREVENTION_COST, LATE_DELIVERY_LOSS),
                 monthly_volume: int = MONTHLY_VOLUME, make_plots: bool = MAKE_PLOTS,
                 categorical=CATEGORICAL_VARS) -> PipelineReport:
    d = _dirs(outdir)

    prepared = prepare_data_stage(data_path, d["reports"], categorical=categorical, seed=seed,
                                  train_fraction=train_fraction, val_fraction=val_fraction)
    prepared_path = save_prepared_data(prepared, os.path.join(d["artifacts"], PREPARED_FILE))

    # each stage reloads what the previous one persisted
    prepared = load_prepared_data(prepared_path)
    model = train_stage(prepared, max_iter=max_iter, tol=tol)
    model_path = save_model(model, os.path.join(d["artifacts"], MODEL_FILE))
    save_coefficients(model, d["reports"])

    model = load_model(model_path)
    val_eval, test_eval, fi = evaluate_stage(model, prepared, threshold=threshold, inverted=inverted,
                                             params=params, monthly_volume=monthly_volume)

    report = PipelineReport(cleaning=prepared.cleaning, eda=prepared.eda, features=prepared.features,
                            split=prepared.split, model=model, val_eval=val_eval, test_eval=test_eval,
                            financial=fi, artifacts={"prepared_data": prepared_path, "model": model_path})
    save_evaluation_summary([val_eval, test_eval], d["reports"])
    build_key_numbers(report, d["reports"])
    if make_plots:
        report.figures = make_figures(prepared, model, test_eval, d["figures"])
    write_summary(report, d["reports"])
    return report

# ================================ Main =====================================

def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="On-time delivery prediction pipeline")
    ap.add_argument("--data", default=DATA_PATH, help="Shipment spreadsheet (.xlsx) or CSV")
    ap.add_argument("--outdir", default=OUTPUT_DIR, help="Where artifacts/ and reports/ are written")
    ap.add_argument("--seed", type=int, default=RANDOM_SEED)
    ap.add_argument("--train-fraction", type=float, default=TRAIN_FRACTION)
    ap.add_argument("--val-fraction", type=float, default=VAL_OF_REMAINDER,
                    help="Share of the non-training rows that go to validation")
    ap.add_argument("--threshold", type=float, default=THRESHOLD)
    ap.add_argument("--inverted-labels", action="store_true", default=INVERTED_LABELS,
                    help="Predict late when P(on time) exceeds the threshold")
    ap.add_argument("--max-iter", type=int, default=MAX_ITER)
    ap.add_argument("--prevention-cost", type=int, default=PREVENTION_COST)
    ap.add_argument("--late-loss", type=int, default=LATE_DELIVERY_LOSS)
    ap.add_argument("--monthly-volume", type=int, default=MONTHLY_VOLUME)
    ap.add_argument("--no-plots", action="store_true", help="Skip the figures")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        report = run_pipeline(
            data_path=args.data, outdir=args.outdir, seed=args.seed,
            train_fraction=args.train_fraction, val_fraction=args.val_fraction,
            threshold=args.threshold, inverted=args.inverted_labels, max_iter=args.max_iter,
            params=FinancialParams(args.prevention_cost, args.late_loss),
            monthly_volume=args.monthly_volume, make_plots=not args.no_plots,
        )
    except FileNotFoundError as e:
        logger.error(f"[ERROR] Can't find the dataset: {e}")
        return 2
    except (DataLoadError, SchemaError, DivisionByZeroError, EmptyPartitionError, NotFittedError) as e:
        logger.error(f"[ERROR] {type(e).__name__}: {e}")
        return 1
    print("\nPipeline complete. Reports saved in:", os.path.join(args.outdir, "reports"))
    print(f"Test accuracy {report.test_eval.rates['accuracy']*100:.2f}%, "
          f"net benefit ${report.financial.net_benefit:,.0f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
