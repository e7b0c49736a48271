import pandas as pd
import pytest

from screening.metrics import metric_set
from screening.selection import (
    show_best, select_best, select_by_one_std_err, select_by_pct_loss, rank_results
)
from screening.tuning import TuneResults

FOLDS = ["Fold1", "Fold2", "Fold3"]


def _results(values, params, metric="roc_auc", method="grid", workflow_id="wf"):
    """Build TuneResults from {config: [fold values]} and {config: C}."""
    rows = []
    for config, fold_values in values.items():
        for fold, value in zip(FOLDS, fold_values):
            rows.append({"config": config, "fold": fold, "metric": metric, "value": value})
    grid = pd.DataFrame({"config": list(params), "C": list(params.values())})
    return TuneResults(
        workflow_id=workflow_id,
        method=method,
        grid=grid,
        fold_metrics=pd.DataFrame(rows),
        metrics=metric_set(metric),
        resample_ids=FOLDS,
        param_ids=["C"],
    )


@pytest.fixture
def auc_results():
    # Config01 is best (0.90, se ~0.0115); Config02 is within one SE and has a smaller C
    return _results(
        {
            "Config01": [0.88, 0.90, 0.92],
            "Config02": [0.885, 0.89, 0.895],
            "Config03": [0.79, 0.80, 0.81],
        },
        {"Config01": 10.0, "Config02": 0.1, "Config03": 0.001},
    )


def test_select_best(auc_results):
    best = select_best(auc_results)
    assert best == {"config": "Config01", "C": 10.0}


def test_show_best_orders_by_direction(auc_results):
    top = show_best(auc_results, n=2)
    assert list(top["config"]) == ["Config01", "Config02"]

    rmse = _results({"a": [1.0, 1.0, 1.0], "b": [2.0, 2.0, 2.0]}, {"a": 1.0, "b": 2.0}, metric="rmse")
    assert show_best(rmse, n=1)["config"].iloc[0] == "a"


def test_one_std_err_picks_simpler_config(auc_results):
    chosen = select_by_one_std_err(auc_results, order="C")
    assert chosen["config"] == "Config02"
    assert chosen["C"] == 0.1


def test_one_std_err_descending_order(auc_results):
    # when larger C counts as simpler, the best config is also the simplest
    chosen = select_by_one_std_err(auc_results, order="-C")
    assert chosen["config"] == "Config01"


def test_one_std_err_callable_order(auc_results):
    chosen = select_by_one_std_err(auc_results, order=lambda df: df.sort_values("C"))
    assert chosen["config"] == "Config02"


def test_one_std_err_unknown_parameter(auc_results):
    with pytest.raises(ValueError, match="not a tuning parameter"):
        select_by_one_std_err(auc_results, order="penalty")


def test_pct_loss(auc_results):
    assert select_by_pct_loss(auc_results, order="C", limit=2)["config"] == "Config02"
    assert select_by_pct_loss(auc_results, order="C", limit=1)["config"] == "Config01"


def test_race_results_only_rank_complete_configs():
    results = _results(
        {"Config01": [0.7, 0.7, 0.7], "Config02": [0.9, 0.9]},
        {"Config01": 1.0, "Config02": 2.0},
        method="race",
    )
    assert select_best(results)["config"] == "Config01"


def test_rank_results_across_workflows(auc_results):
    other = _results(
        {"Config01": [0.95, 0.94, 0.96]},
        {"Config01": 1.0},
        workflow_id="other",
    )
    ranked = rank_results({"wf": auc_results, "other": other})
    assert ranked.iloc[0]["wflow_id"] == "other"
    assert list(ranked["rank"]) == [1, 2, 3, 4]

    best_only = rank_results({"wf": auc_results, "other": other}, select_best=True)
    assert len(best_only) == 2
    assert list(best_only["wflow_id"]) == ["other", "wf"]
