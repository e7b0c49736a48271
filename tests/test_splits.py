import numpy as np
import pandas as pd
import pytest

from screening.data import DataShapeError
from screening.splits import (
    initial_split, vfold_cv, bootstraps, validation_split, make_resamples, make_strata
)


def test_initial_split_is_disjoint_and_complete(binary_df, seed):
    split = initial_split(binary_df, "class", prop=0.75, strata="class", seed=seed)
    train, test = set(split.train_idx), set(split.test_idx)

    assert train.isdisjoint(test)
    assert train | test == set(range(len(binary_df)))


def test_stratified_split_sizes_and_balance(binary_df, seed):
    split = initial_split(binary_df, "class", prop=0.75, strata="class", seed=seed)
    training = split.training()

    assert len(split.train_idx) == 150
    assert len(split.test_idx) == 50

    train_counts = training["class"].value_counts()
    assert abs(train_counts["yes"] - 75) <= 2
    assert abs(train_counts["no"] - 75) <= 2

    # reading the test rows here only to check balance
    test_counts = split.testing()["class"].value_counts()
    assert abs(test_counts["yes"] - 25) <= 2
    assert abs(test_counts["no"] - 25) <= 2


def test_split_does_not_read_test_rows_on_training_access(binary_df, seed):
    split = initial_split(binary_df, "class", strata="class", seed=seed)
    split.training()
    split.training()
    assert split.test_reads == 0


def test_split_is_reproducible_with_seed(binary_df, seed):
    a = initial_split(binary_df, "class", strata="class", seed=seed)
    b = initial_split(binary_df, "class", strata="class", seed=seed)
    np.testing.assert_array_equal(a.train_idx, b.train_idx)


def test_five_fold_cv_partitions_training_rows(binary_df, seed):
    split = initial_split(binary_df, "class", prop=0.75, strata="class", seed=seed)
    folds = vfold_cv(split.training(), v=5, strata="class", seed=seed)

    assert len(folds) == 5
    assert folds.ids == ["Fold01", "Fold02", "Fold03", "Fold04", "Fold05"]

    assessed = np.concatenate([f.assessment_idx for f in folds])
    assert sorted(assessed.tolist()) == list(range(150))
    for fold in folds:
        assert 28 <= len(fold.assessment_idx) <= 32
        assert set(fold.analysis_idx).isdisjoint(fold.assessment_idx)
        assert len(fold.analysis_idx) + len(fold.assessment_idx) == 150


def test_repeated_vfold_ids_and_coverage(binary_df, seed):
    folds = vfold_cv(binary_df, v=4, repeats=2, seed=seed)
    assert len(folds) == 8
    assert folds.ids[0] == "Repeat1_Fold01"
    assert folds.ids[-1] == "Repeat2_Fold04"

    first_repeat = np.concatenate([f.assessment_idx for f in folds.folds[:4]])
    assert sorted(first_repeat.tolist()) == list(range(len(binary_df)))


def test_vfold_rejects_strata_smaller_than_v(seed):
    df = pd.DataFrame({"x": range(20), "g": ["a"] * 17 + ["b"] * 3})
    with pytest.raises(DataShapeError, match="fewer than 5"):
        vfold_cv(df, v=5, strata="g", seed=seed)


def test_bootstrap_assessment_is_out_of_bag(binary_df, seed):
    boots = bootstraps(binary_df, times=5, strata="class", seed=seed)
    assert len(boots) == 5
    assert boots.ids[0] == "Bootstrap01"
    for fold in boots:
        assert len(fold.analysis_idx) == len(binary_df)
        assert set(fold.analysis_idx).isdisjoint(fold.assessment_idx)
        assert len(fold.assessment_idx) > 0


def test_validation_split_single_fold(binary_df, seed):
    val = validation_split(binary_df, prop=0.8, strata="class", seed=seed)
    assert val.ids == ["validation"]
    fold = val.folds[0]
    assert len(fold.analysis_idx) == 160
    assert len(fold.assessment_idx) == 40


def test_make_strata_bins_numeric_and_pools_small_bins():
    x = pd.Series(np.arange(100, dtype=float))
    labels = make_strata(x, breaks=4)
    assert len(set(labels)) == 4

    with pytest.warns(UserWarning, match="Pooled 2 quantile bin"):
        pooled = make_strata(x, breaks=4, pool=0.3)
    assert len(set(pooled)) == 2


def test_make_strata_keeps_rare_classes():
    rare = pd.Series(["a"] * 50 + ["b"] * 45 + ["c"] * 5)
    labels = make_strata(rare, pool=0.1)
    assert sorted(set(labels)) == ["a", "b", "c"]


@pytest.mark.parametrize("split_seed", [0, 1, 7, 42, 123])
def test_imbalanced_stratified_split_keeps_minority_rate(split_seed):
    rng = np.random.default_rng(split_seed)
    df = pd.DataFrame({
        "x": rng.normal(size=200),
        "y": ["a"] * 185 + ["b"] * 15,
    })
    split = initial_split(df, "y", prop=0.75, strata="y", seed=split_seed)

    test_rate = (split.testing()["y"] == "b").mean()
    train_rate = (split.training()["y"] == "b").mean()
    assert abs(test_rate - 0.075) <= 0.025
    assert abs(train_rate - 0.075) <= 0.01


def test_vfold_rejects_class_too_small_to_stratify(seed):
    df = pd.DataFrame({"x": range(100), "y": ["a"] * 97 + ["b"] * 3})
    with pytest.raises(DataShapeError, match="fewer than 5"):
        vfold_cv(df, v=5, strata="y", seed=seed)


def test_missing_outcome_column_raises(binary_df):
    with pytest.raises(DataShapeError, match="not found"):
        initial_split(binary_df, "missing")


def test_make_resamples_from_config(binary_df, seed):
    cfg = {"resampling": {"method": "bootstrap", "times": 3}}
    res = make_resamples(binary_df, cfg, outcome="class", seed=seed)
    assert res.method == "bootstrap"
    assert len(res) == 3
