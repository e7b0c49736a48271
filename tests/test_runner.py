import json
import os
import sys

import pandas as pd
import pytest

from runners import run_study as runner
from screening.bundle import load_bundle


def _artifacts(run_dir):
    return set(os.listdir(run_dir))


def test_classification_study_end_to_end(write_yaml, base_classification_config,
                                         patch_dataset_loader, freeze_time, tmp_path, binary_df):
    cfg = dict(base_classification_config, metrics={"save_plots": True})
    path = write_yaml(cfg)

    run_dir = runner.run_study(path, output_dir=str(tmp_path / "out"))

    assert os.path.basename(run_dir).startswith("pytest_classification_20260104_123456_")
    files = _artifacts(run_dir)
    for name in ["config.yaml", "metrics.json", "rankings.csv", "tuning_metrics.csv",
                 "predictions.csv", "data_profile.json", "model.joblib",
                 "feature_importance.csv", "workflow_ranks.png"]:
        assert name in files, name
    assert "race_log.csv" not in files

    with open(os.path.join(run_dir, "metrics.json")) as f:
        metrics = json.load(f)
    assert metrics["candidates"] == ["norm_glm", "norm_tree"]
    assert metrics["selected_workflow"] in metrics["candidates"]
    assert metrics["n_train"] == 150
    assert metrics["n_test"] == 50
    assert set(metrics["test_metrics"]) == {"roc_auc", "accuracy"}

    predictions = pd.read_csv(os.path.join(run_dir, "predictions.csv"))
    assert len(predictions) == 50

    rankings = pd.read_csv(os.path.join(run_dir, "rankings.csv"))
    assert set(rankings["wflow_id"]) == {"norm_glm", "norm_tree"}

    bundle = load_bundle(os.path.join(run_dir, "model.joblib"))
    out = bundle.predict(binary_df.drop(columns=["class"]).head(5))
    assert set(out[".pred"]) <= {"no", "yes"}


def test_regression_race_study_end_to_end(write_yaml, base_regression_config,
                                          patch_dataset_loader, freeze_time, tmp_path):
    cfg = dict(base_regression_config, metrics={"save_plots": True})
    path = write_yaml(cfg)

    run_dir = runner.run_study(path, output_dir=str(tmp_path / "out"))

    files = _artifacts(run_dir)
    for name in ["race_log.csv", "tuning_metrics.csv", "model.joblib",
                 "tuning_results.png", "race_progress.png"]:
        assert name in files, name
    assert "feature_importance.csv" not in files

    with open(os.path.join(run_dir, "metrics.json")) as f:
        metrics = json.load(f)
    assert metrics["selection_rule"] == "one_std_err"
    assert metrics["selected_params"]["alpha"] in [0.01, 0.1, 1.0, 10.0]
    assert set(metrics["test_metrics"]) == {"rmse", "rsq"}

    with open(os.path.join(run_dir, "data_profile.json")) as f:
        profile = json.load(f)
    assert profile["total_rows"] == 120
    assert profile["n_train"] + profile["n_test"] == 120


def test_invalid_config_is_reported(write_yaml, base_classification_config, capsys):
    cfg = dict(base_classification_config, selection={"rule": "fastest"})
    path = write_yaml(cfg)
    with pytest.raises(Exception, match="Invalid selection rule"):
        runner.run_study(path)
    assert "CONFIG ERROR" in capsys.readouterr().out


def test_main_parses_arguments(monkeypatch, write_yaml, base_classification_config,
                               patch_dataset_loader, tmp_path):
    path = write_yaml(base_classification_config)
    out_dir = tmp_path / "cli"
    monkeypatch.setattr(sys, "argv", ["run_study", "--config", path, "--output-dir", str(out_dir)])

    runner.main()

    runs = os.listdir(out_dir)
    assert len(runs) == 1
    assert "metrics.json" in os.listdir(out_dir / runs[0])


def test_study_reads_local_csv(write_yaml, base_classification_config, binary_df, tmp_path):
    csv_path = tmp_path / "binary.csv"
    binary_df.to_csv(csv_path, index=False)
    path = write_yaml(base_classification_config)

    run_dir = runner.run_study(path, dataset_path=str(csv_path), output_dir=str(tmp_path / "csv_runs"))

    with open(os.path.join(run_dir, "data_profile.json")) as f:
        profile = json.load(f)
    assert profile["dataset_path"] == str(csv_path)
    assert profile["outcome_stats"]["value_counts"] == {"no": 100, "yes": 100}
