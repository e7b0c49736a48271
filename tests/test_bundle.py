import joblib
import numpy as np
import pytest

from screening.bundle import bundle_model, save_bundle, load_bundle
from screening.data import DataShapeError
from screening.evaluate import last_fit
from screening.models import ModelSpec
from screening.recipes import Recipe
from screening.splits import initial_split
from screening.workflow import Workflow


@pytest.fixture
def final_fit(binary_df, seed):
    split = initial_split(binary_df, "class", strata="class", seed=seed)
    wf = Workflow(Recipe("class").normalize(), ModelSpec("logistic_regression"), id="norm_glm")
    return last_fit(wf, split, seed=seed)


def test_bundle_metadata(final_fit):
    bundle = bundle_model(final_fit, "spam_filter", metadata={"owner": "pytest"})

    assert bundle.name == "spam_filter"
    assert bundle.metadata["workflow_id"] == "norm_glm"
    assert bundle.metadata["algorithm"] == "logistic_regression"
    assert bundle.metadata["classes"] == ["no", "yes"]
    assert bundle.metadata["owner"] == "pytest"
    assert bundle.prototype == ["x1", "x2", "x3"]
    assert "-" in bundle.version


def test_bundle_round_trip_predictions(final_fit, binary_df, tmp_path):
    bundle = bundle_model(final_fit, "spam_filter")
    path = save_bundle(bundle, str(tmp_path / "models" / "model.joblib"))
    loaded = load_bundle(path)

    new_rows = binary_df.drop(columns=["class"]).head(10)
    out = loaded.predict(new_rows)
    np.testing.assert_array_equal(out[".pred"].to_numpy(), final_fit.workflow.predict(new_rows))
    assert {".pred_no", ".pred_yes"} <= set(out.columns)


def test_bundle_checks_schema(final_fit, binary_df):
    bundle = bundle_model(final_fit, "spam_filter")
    with pytest.raises(DataShapeError, match="missing columns"):
        bundle.predict(binary_df.drop(columns=["x2"]))


def test_load_bundle_rejects_other_objects(tmp_path):
    path = str(tmp_path / "not_a_bundle.joblib")
    joblib.dump({"a": 1}, path)
    with pytest.raises(TypeError, match="ModelBundle"):
        load_bundle(path)
