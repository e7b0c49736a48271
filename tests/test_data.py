import numpy as np
import pandas as pd
import pytest

from screening.data import DataShapeError, load_dataset, prepare_data, validate_data_integrity


def test_load_dataset_from_local_path(tmp_path, regression_df):
    path = tmp_path / "data.csv"
    regression_df.to_csv(path, index=False)
    df, source = load_dataset({"data": {"source": "ignored.csv"}}, dataset_path=str(path))
    assert source == str(path)
    assert df.shape == regression_df.shape


def test_load_dataset_needs_a_source():
    with pytest.raises(ValueError, match="No dataset source"):
        load_dataset({"data": {}})


def test_prepare_data_selects_columns_and_casts_outcome():
    df = pd.DataFrame({
        "id": [1, 2, 3, 4],
        "a": [0.1, 0.2, 0.3, 0.4],
        "label": ["x", None, "y", "x"],
    })
    config = {"data": {"outcome": "label", "task": "classification",
                       "columns_to_drop": ["id"], "drop_missing_outcome": True}}
    out = prepare_data(df, config)

    assert list(out.columns) == ["a", "label"]
    assert len(out) == 3
    assert isinstance(out["label"].dtype, pd.CategoricalDtype)
    assert list(out.index) == [0, 1, 2]


def test_prepare_data_missing_outcome():
    with pytest.raises(DataShapeError, match="not found"):
        prepare_data(pd.DataFrame({"a": [1]}), {"data": {"outcome": "y", "task": "regression"}})


def test_integrity_passes_on_clean_data(binary_df):
    assert validate_data_integrity(binary_df, "class", "classification")


def test_integrity_collects_problems():
    df = pd.DataFrame({
        "a": [1.0, np.inf, 3.0],
        "empty": [np.nan, np.nan, np.nan],
        "y": [1.0, np.nan, 2.0],
    })
    with pytest.raises(DataShapeError) as exc:
        validate_data_integrity(df, "y", "regression")
    message = str(exc.value)
    assert "NaN values found in outcome" in message
    assert "only missing values" in message
    assert "Infinite values" in message


def test_integrity_single_class():
    df = pd.DataFrame({"a": [1, 2], "y": ["x", "x"]})
    with pytest.raises(DataShapeError, match="fewer than two classes"):
        validate_data_integrity(df, "y", "classification")


def test_integrity_non_numeric_regression_outcome():
    df = pd.DataFrame({"a": [1, 2], "y": ["x", "z"]})
    with pytest.raises(DataShapeError, match="not numeric"):
        validate_data_integrity(df, "y", "regression")
