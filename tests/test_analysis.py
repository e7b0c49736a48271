import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pytest
from sklearn.linear_model import LinearRegression

from analysis.interpretability import (
    compute_permutation_importance,
    get_local_explanations,
    plot_feature_importance,
    workflow_permutation_importance,
)
from analysis.plots import plot_tuning_results, plot_workflow_ranks
from screening.models import ModelSpec
from screening.recipes import Recipe
from screening.selection import rank_results
from screening.splits import vfold_cv
from screening.tunable import tune
from screening.tuning import tune_grid
from screening.workflow import Workflow


def test_permutation_importance_ranks_signal_first(regression_df):
    X = regression_df[["x1", "x2"]].to_numpy()
    y = regression_df["y"].to_numpy()
    model = LinearRegression().fit(X, y)

    importance = compute_permutation_importance(model, X, y, ["x1", "x2"], n_repeats=5)
    assert list(importance.columns) == [
        "feature", "importance_mean", "importance_std", "importance_min", "importance_max"
    ]
    assert importance.iloc[0]["feature"] == "x1"


def test_workflow_permutation_importance_uses_baked_columns(regression_df, seed):
    wf = Workflow(Recipe("y").impute("median").dummy(), ModelSpec("linear_regression"))
    fitted = wf.fit(regression_df, seed=seed)
    importance = workflow_permutation_importance(fitted, regression_df, n_repeats=3, random_state=seed)
    assert set(importance["feature"]) == set(fitted.feature_names)
    assert "group" not in set(importance["feature"])


def test_workflow_shap_importance_for_trees(binary_df, seed):
    pytest.importorskip("shap")
    from analysis.interpretability import workflow_shap_importance

    wf = Workflow(Recipe("class"), ModelSpec("decision_tree", params={"max_depth": 3}))
    fitted = wf.fit(binary_df, seed=seed)
    importance = workflow_shap_importance(fitted, binary_df, max_samples=50, random_state=seed)

    assert set(importance["feature"]) == {"x1", "x2", "x3"}
    assert (importance["importance_mean"] >= 0).all()
    assert importance.iloc[0]["feature"] == "x1"


def test_local_explanations_sorted_by_magnitude():
    shap_values = np.array([[0.1, -0.5, 0.2], [0.0, 0.3, -0.1]])
    X = np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    explanations = get_local_explanations(shap_values, X, ["a", "b", "c"], [0, 1], base_value=1.0)

    first = explanations[0]
    assert first["prediction"] == pytest.approx(1.0 - 0.2)
    assert [c["feature"] for c in first["top_contributors"]] == ["b", "c", "a"]
    assert first["top_contributors"][0]["direction"] == "negative"


def test_plots_return_figures(regression_df, seed, tmp_path):
    wf = Workflow(Recipe("y").impute("median").dummy(),
                  ModelSpec("ridge", params={"alpha": tune()}), id="ridge")
    folds = vfold_cv(regression_df, v=3, seed=seed)
    results = tune_grid(wf, folds, grid=[{"alpha": 0.1}, {"alpha": 1.0}], seed=seed)

    fig = plot_tuning_results(results, save_path=str(tmp_path / "tuning.png"))
    assert isinstance(fig, plt.Figure)
    plt.close(fig)

    ranks = rank_results({"ridge": results})
    fig = plot_workflow_ranks(ranks, metric="rmse", save_path=str(tmp_path / "ranks.png"))
    assert (tmp_path / "ranks.png").exists()
    plt.close(fig)

    importance = compute_permutation_importance(
        LinearRegression().fit(regression_df[["x1"]], regression_df["y"]),
        regression_df[["x1"]].to_numpy(), regression_df["y"].to_numpy(), ["x1"], n_repeats=2
    )
    fig = plot_feature_importance(importance)
    assert isinstance(fig, plt.Figure)
    plt.close(fig)


def test_workflow_local_explanations_for_linear_model(regression_df, seed):
    pytest.importorskip("shap")
    from analysis.interpretability import workflow_local_explanations

    wf = Workflow(Recipe("y").impute("median").dummy(), ModelSpec("ridge", params={"alpha": 1.0}))
    fitted = wf.fit(regression_df, seed=seed)
    rows = [4, 10]

    explanations = workflow_local_explanations(fitted, regression_df, rows, regression_df, top_k=3)

    preds = fitted.predict(regression_df.iloc[rows])
    np.testing.assert_allclose([e["prediction"] for e in explanations], preds, rtol=1e-6, atol=1e-6)
    top = explanations[0]["top_contributors"]
    assert len(top) == 3
    assert set(c["feature"] for c in top) <= set(fitted.feature_names)
