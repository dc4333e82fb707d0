import os

import numpy as np
import pytest

import main
from fit_model import FittedModel
from prepare_data import TARGET


@pytest.fixture
def report(tmp_path, shipments_csv):
    return main.run_pipeline(data_path=shipments_csv, outdir=str(tmp_path), make_plots=False)


def test_pipeline_writes_reports_and_artifacts(tmp_path, report):
    reports = tmp_path / "reports"
    for name in ("cleaning_report.txt", "missingness.csv", "descriptive_stats.csv", "coefficients.csv",
                 "evaluation_summary.csv", "key_numbers.csv", "executive_summary.md"):
        assert (reports / name).exists(), name
    assert (tmp_path / "artifacts" / main.PREPARED_FILE).exists()
    assert (tmp_path / "artifacts" / main.MODEL_FILE).exists()
    assert not (reports / "figures").exists()


def test_pipeline_report_contents(report):
    assert report.split["rows"].sum() == 600
    assert report.split["rows"].iloc[0] == 240
    assert abs(report.split["rows"].iloc[1] - 180) <= 2
    assert isinstance(report.model, FittedModel)
    assert report.test_eval.counts.total == report.split["rows"].iloc[2]
    # Lead_Time_Buffer is an exact difference of two other inputs
    assert "Lead_Time_Buffer" in report.model.aliased
    assert report.financial.observed_volume == report.test_eval.counts.total
    assert report.financial.net_benefit == (
        report.test_eval.counts.tp * 1415 - report.test_eval.counts.fp * 6078 - report.test_eval.counts.fn * 7493)

    d = report.to_dict()
    assert {"cleaning", "eda", "split", "model", "validation", "test", "financial", "key_numbers"} <= set(d)
    assert d["key_numbers"]["test_tp"] == report.test_eval.counts.tp


def test_prepared_data_roundtrip(tmp_path, report):
    prepared = main.load_prepared_data(str(tmp_path / "artifacts" / main.PREPARED_FILE))
    assert TARGET in prepared.train.columns
    assert "Route_Type" not in prepared.train.columns
    # scaled on training rows only
    assert prepared.train["Shipping_Cost_USD"].min() == pytest.approx(0.0)
    assert prepared.train["Shipping_Cost_USD"].max() == pytest.approx(1.0)
    assert set(prepared.partition.train).isdisjoint(prepared.partition.test)
    assert np.isin(prepared.encoder.feature_names_, prepared.val.columns).all()


def test_load_prepared_data_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        main.load_prepared_data(str(tmp_path / "none.joblib"))


def test_pipeline_is_reproducible(tmp_path, shipments_csv):
    a = main.run_pipeline(data_path=shipments_csv, outdir=str(tmp_path / "a"), make_plots=False)
    b = main.run_pipeline(data_path=shipments_csv, outdir=str(tmp_path / "b"), make_plots=False)
    np.testing.assert_allclose(a.model.coefficients, b.model.coefficients, atol=1e-6, equal_nan=True)
    assert a.test_eval.counts == b.test_eval.counts


def test_pipeline_with_figures(tmp_path, shipments_csv):
    rep = main.run_pipeline(data_path=shipments_csv, outdir=str(tmp_path), make_plots=True)
    assert len(rep.figures) == 3
    assert all(os.path.exists(p) for p in rep.figures)


def test_executive_summary_mentions_money(tmp_path, report):
    text = (tmp_path / "reports" / "executive_summary.md").read_text(encoding="utf-8")
    assert "## Financial impact" in text
    assert "Lead_Time_Buffer" in text


def test_cli_missing_file(tmp_path):
    assert main.main(["--data", str(tmp_path / "missing.xlsx"), "--outdir", str(tmp_path)]) == 2


def test_cli_schema_error(tmp_path, shipments):
    path = tmp_path / "bad.csv"
    shipments.drop(columns=["Order_Weight_Kg"]).to_csv(path, index=False)
    assert main.main(["--data", str(path), "--outdir", str(tmp_path), "--no-plots"]) == 1


def test_cli_success(tmp_path, shipments_csv):
    code = main.main(["--data", shipments_csv, "--outdir", str(tmp_path), "--no-plots",
                      "--inverted-labels", "--seed", "3"])
    assert code == 0
    assert (tmp_path / "reports" / "key_numbers.csv").exists()
