import pytest
import pandas as pd
import numpy as np

from sklearn.base import BaseEstimator, RegressorMixin


@pytest.fixture(scope="session")
def seed():
    return 42


@pytest.fixture
def binary_df(seed):
    """
    200 rows, binary outcome 'class' with 100/100 balance, 3 numeric predictors.
    x1 separates the classes; x2 and x3 are noise.
    """
    rng = np.random.default_rng(seed)
    n = 200
    labels = np.array(["no"] * 100 + ["yes"] * 100)
    rng.shuffle(labels)
    shift = np.where(labels == "yes", 1.5, 0.0)

    df = pd.DataFrame({
        "x1": rng.normal(size=n) + shift,
        "x2": rng.normal(size=n),
        "x3": rng.uniform(0, 10, size=n),
        "class": pd.Categorical(labels, categories=["no", "yes"]),
    })
    return df


@pytest.fixture
def regression_df(seed):
    """
    120 rows, numeric outcome 'y' driven by x1 and x2, plus a nominal
    'group' column with one rare level and a few missing x3 values.
    """
    rng = np.random.default_rng(seed)
    n = 120
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    x3 = rng.uniform(1, 5, size=n)
    x3[[3, 17, 58]] = np.nan
    group = rng.choice(["a", "b", "c"], size=n, p=[0.5, 0.45, 0.05])

    df = pd.DataFrame({
        "x1": x1,
        "x2": x2,
        "x3": x3,
        "group": group,
        "y": 2.0 * x1 - x2 + rng.normal(scale=0.3, size=n),
    })
    return df


class OffsetRegressor(BaseEstimator, RegressorMixin):
    """Predicts the first feature plus a constant shift."""

    def __init__(self, shift=0.0):
        self.shift = shift

    def fit(self, X, y):
        self.n_features_in_ = X.shape[1]
        return self

    def predict(self, X):
        return np.asarray(X)[:, 0] + self.shift


@pytest.fixture
def offset_regressor():
    return OffsetRegressor


@pytest.fixture
def offset_df(seed):
    """y = x0 + small noise, so a shift of 0 is the best possible config."""
    rng = np.random.default_rng(seed)
    n = 200
    x0 = rng.normal(size=n)
    return pd.DataFrame({"x0": x0, "y": x0 + rng.normal(scale=0.1, size=n)})


@pytest.fixture
def base_classification_config(tmp_path, seed):
    """Minimal study config: one recipe, two models, small grid."""
    cfg = {
        "experiment": {
            "name": "pytest_classification",
            "seed": seed,
            "output_dir": str(tmp_path / "runs")
        },
        "data": {
            "source": "DUMMY.csv",
            "outcome": "class",
            "task": "classification"
        },
        "split": {
            "prop": 0.75,
            "strata": "class"
        },
        "resampling": {
            "method": "vfold",
            "v": 3,
            "strata": "class"
        },
        "recipes": {
            "norm": [
                {"step": "normalize"}
            ]
        },
        "models": {
            "glm": {
                "type": "logistic_regression",
                "params": {"C": "tune"}
            },
            "tree": {
                "type": "decision_tree",
                "params": {"max_depth": 3}
            }
        },
        "tuning": {
            "method": "grid",
            "grid": 3,
            "metrics": ["roc_auc", "accuracy"],
            "ranges": {"C": {"low": 0.01, "high": 10.0, "log": True}}
        },
        "selection": {
            "rule": "best",
            "metric": "roc_auc"
        },
        "final": {
            "importance": "permutation"
        },
        "metrics": {"save_plots": False}
    }
    return cfg


@pytest.fixture
def base_regression_config(tmp_path, seed):
    cfg = {
        "experiment": {
            "name": "pytest_regression",
            "seed": seed,
            "output_dir": str(tmp_path / "runs")
        },
        "data": {
            "source": "DUMMY.csv",
            "outcome": "y",
            "task": "regression"
        },
        "resampling": {
            "method": "vfold",
            "v": 4
        },
        "recipes": {
            "base": [
                {"step": "impute", "strategy": "median"},
                {"step": "dummy"},
                {"step": "normalize"}
            ]
        },
        "models": {
            "ridge": {
                "type": "ridge",
                "params": {"alpha": "tune"}
            }
        },
        "tuning": {
            "method": "race",
            "grid": 4,
            "grid_type": "regular",
            "levels": 4,
            "burn_in": 3,
            "metrics": ["rmse", "rsq"],
            "ranges": {"alpha": [0.01, 0.1, 1.0, 10.0]}
        },
        "selection": {
            "rule": "one_std_err",
            "metric": "rmse",
            "order": "-alpha"
        },
        "metrics": {"save_plots": False}
    }
    return cfg


@pytest.fixture
def patch_dataset_loader(monkeypatch, binary_df, regression_df):
    """
    Monkeypatch load_dataset so studies don't hit disk or network.
    The outcome named in the config picks the frame.
    """
    def _fake_load_dataset(config, dataset_path=None):
        df = binary_df if config["data"]["outcome"] == "class" else regression_df
        return df.copy(), "test_dataset.csv"

    monkeypatch.setattr("screening.data.load_dataset", _fake_load_dataset)
    monkeypatch.setattr("runners.run_study.load_dataset", _fake_load_dataset)
    return _fake_load_dataset


@pytest.fixture
def freeze_time(monkeypatch):
    """
    Make run_dir deterministic by freezing datetime.now().
    """
    import datetime as dt

    class _FixedDT:
        @staticmethod
        def now():
            return dt.datetime(2026, 1, 4, 12, 34, 56)

    monkeypatch.setattr("screening.io.datetime", _FixedDT)
    return _FixedDT


@pytest.fixture
def write_yaml(tmp_path):
    import yaml
    def _write(cfg, name="temp.yaml"):
        p = tmp_path / name
        with open(p, "w") as f:
            yaml.safe_dump(cfg, f, default_flow_style=False)
        return str(p)
    return _write
