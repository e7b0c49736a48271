# Data splitting and resampling
# Initial train/test split plus v-fold, bootstrap and validation resamples

import warnings
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import (
    KFold, StratifiedKFold, RepeatedKFold, RepeatedStratifiedKFold, train_test_split
)

from .data import DataShapeError


@dataclass
class Split:
    """Partition of a dataset into training and test rows (positional indices)."""
    data: pd.DataFrame
    train_idx: np.ndarray
    test_idx: np.ndarray
    outcome: str
    strata: Optional[str] = None
    test_reads: int = 0

    def training(self) -> pd.DataFrame:
        return self.data.iloc[self.train_idx]

    def testing(self) -> pd.DataFrame:
        # Only the final evaluation should ever call this
        self.test_reads += 1
        return self.data.iloc[self.test_idx]

    def __repr__(self):
        return f"<Training/Testing/Total> <{len(self.train_idx)}/{len(self.test_idx)}/{len(self.data)}>"


@dataclass
class Fold:
    id: str
    analysis_idx: np.ndarray
    assessment_idx: np.ndarray


@dataclass
class Resamples:
    """Folds over a training frame. Indices are positional into `data`."""
    data: pd.DataFrame
    folds: List[Fold]
    method: str
    strata: Optional[str] = None
    params: dict = field(default_factory=dict)

    def analysis(self, fold: Fold) -> pd.DataFrame:
        return self.data.iloc[fold.analysis_idx]

    def assessment(self, fold: Fold) -> pd.DataFrame:
        return self.data.iloc[fold.assessment_idx]

    @property
    def ids(self) -> List[str]:
        return [f.id for f in self.folds]

    def __len__(self):
        return len(self.folds)

    def __iter__(self):
        return iter(self.folds)


def make_strata(x, breaks=4, pool=0.1):
    """
    Turn a column into stratification labels.

    Numeric columns with more unique values than `breaks` are cut at quantiles,
    and bins holding less than `pool` of the rows are merged into a neighbour.
    Nominal levels are used as they are; a level too small to stratify on is
    rejected by the caller rather than folded into another class.

    Returns:
        numpy array of string labels
    """
    x = pd.Series(x).reset_index(drop=True)
    if x.isnull().any():
        raise DataShapeError(f"Stratification column '{x.name}' contains missing values")

    if not (pd.api.types.is_numeric_dtype(x) and x.nunique() > breaks):
        return x.astype(str).to_numpy()

    binned = pd.qcut(x, q=breaks, duplicates='drop')
    labels = binned.cat.codes.astype(int)
    order = sorted(labels.unique())

    counts = labels.value_counts()
    n = len(labels)
    # Pool small bins into the next (or previous) neighbour
    mapping = {lvl: lvl for lvl in order}
    pooled = []
    changed = True
    while changed and len(order) > 1:
        changed = False
        for i, lvl in enumerate(order):
            if counts[lvl] / n < pool:
                target = order[i + 1] if i + 1 < len(order) else order[i - 1]
                counts[target] += counts[lvl]
                counts = counts.drop(lvl)
                for k, v in mapping.items():
                    if v == lvl:
                        mapping[k] = target
                order.pop(i)
                pooled.append(lvl)
                changed = True
                break

    if pooled:
        warnings.warn(
            f"Pooled {len(pooled)} quantile bin(s) of '{x.name}' holding less than "
            f"{pool:.0%} of the rows; {len(order)} strata remain"
        )

    return np.array([str(mapping[v]) for v in labels])


def _check_strata(strata_labels, minimum, what):
    counts = pd.Series(strata_labels).value_counts()
    too_small = counts[counts < minimum]
    if len(too_small) > 0:
        raise DataShapeError(
            f"Cannot {what}: strata {too_small.to_dict()} have fewer than {minimum} observations"
        )


def _strata_for(data, strata, breaks, pool):
    if strata is None:
        return None
    if strata not in data.columns:
        raise DataShapeError(f"Stratification column '{strata}' not found. Available: {list(data.columns)}")
    return make_strata(data[strata], breaks=breaks, pool=pool)


def initial_split(data, outcome, prop=0.75, strata=None, seed=None, breaks=4, pool=0.1):
    """
    Split a dataset into training and test sets.

    Args:
        data: DataFrame holding predictors and the outcome
        outcome: Outcome column name
        prop: Proportion of rows assigned to training
        strata: Optional column used for stratification
        seed: Random seed

    Returns:
        Split
    """
    if outcome not in data.columns:
        raise DataShapeError(f"Outcome column '{outcome}' not found. Available: {list(data.columns)}")

    train_idx, test_idx = _split_positions(data, prop, strata, seed, breaks, pool)
    return Split(data=data, train_idx=train_idx, test_idx=test_idx, outcome=outcome, strata=strata)


def _split_positions(data, prop, strata, seed, breaks, pool):
    if not 0 < prop < 1:
        raise ValueError(f"prop must be in (0, 1), got {prop}")

    n = len(data)
    n_train = int(np.floor(n * prop))
    if n_train < 1 or n_train >= n:
        raise DataShapeError(f"Split of {n} rows with prop={prop} leaves an empty subset")

    labels = _strata_for(data, strata, breaks, pool)
    if labels is not None:
        _check_strata(labels, 2, "stratify split")

    train_idx, test_idx = train_test_split(
        np.arange(n), train_size=n_train, stratify=labels, random_state=seed
    )
    return np.sort(train_idx), np.sort(test_idx)


def vfold_cv(data, v=10, repeats=1, strata=None, seed=None, breaks=4, pool=0.1):
    """
    V-fold cross-validation. Each row is assessed exactly once per repeat.

    Returns:
        Resamples with v * repeats folds
    """
    if v < 2:
        raise ValueError("v must be >= 2")
    labels = _strata_for(data, strata, breaks, pool)
    positions = np.arange(len(data))

    if labels is not None:
        _check_strata(labels, v, f"stratify {v}-fold cross-validation")
        if repeats > 1:
            cv = RepeatedStratifiedKFold(n_splits=v, n_repeats=repeats, random_state=seed)
        else:
            cv = StratifiedKFold(n_splits=v, shuffle=True, random_state=seed)
        splits = cv.split(positions, labels)
    else:
        if len(data) < v:
            raise DataShapeError(f"Cannot make {v} folds from {len(data)} rows")
        if repeats > 1:
            cv = RepeatedKFold(n_splits=v, n_repeats=repeats, random_state=seed)
        else:
            cv = KFold(n_splits=v, shuffle=True, random_state=seed)
        splits = cv.split(positions)

    folds = []
    width = len(str(v))
    for i, (analysis_idx, assessment_idx) in enumerate(splits):
        fold_no = i % v + 1
        fold_id = f"Fold{fold_no:0{max(width, 2)}d}"
        if repeats > 1:
            fold_id = f"Repeat{i // v + 1}_{fold_id}"
        folds.append(Fold(fold_id, np.sort(analysis_idx), np.sort(assessment_idx)))

    return Resamples(data=data, folds=folds, method='vfold', strata=strata,
                     params={'v': v, 'repeats': repeats})


def bootstraps(data, times=25, strata=None, seed=None, breaks=4, pool=0.1):
    """
    Bootstrap resamples: analysis rows drawn with replacement (within strata),
    assessment rows are the out-of-bag rows.
    """
    rng = np.random.default_rng(seed)
    n = len(data)
    labels = _strata_for(data, strata, breaks, pool)
    if labels is not None:
        groups = [np.flatnonzero(labels == lvl) for lvl in np.unique(labels)]
    else:
        groups = [np.arange(n)]

    folds = []
    width = max(len(str(times)), 2)
    for b in range(times):
        analysis_idx = np.concatenate([rng.choice(g, size=len(g), replace=True) for g in groups])
        in_bag = np.zeros(n, dtype=bool)
        in_bag[analysis_idx] = True
        assessment_idx = np.flatnonzero(~in_bag)
        if len(assessment_idx) == 0:
            raise DataShapeError(f"Bootstrap {b + 1} has no out-of-bag rows")
        folds.append(Fold(f"Bootstrap{b + 1:0{width}d}", np.sort(analysis_idx), assessment_idx))

    return Resamples(data=data, folds=folds, method='bootstrap', strata=strata,
                     params={'times': times})


def validation_split(data, prop=0.75, strata=None, seed=None, breaks=4, pool=0.1):
    """Single analysis/assessment split of the training data."""
    analysis_idx, assessment_idx = _split_positions(data, prop, strata, seed, breaks, pool)
    fold = Fold("validation", analysis_idx, assessment_idx)
    return Resamples(data=data, folds=[fold], method='validation', strata=strata,
                     params={'prop': prop})


def make_resamples(training, config, outcome=None, seed=None):
    """Build resamples from the `resampling` config section."""
    cfg = config.get('resampling', {})
    method = cfg.get('method', 'vfold')
    strata = cfg.get('strata', outcome if cfg.get('stratify', True) else None)

    if method == 'vfold':
        return vfold_cv(training, v=cfg.get('v', 10), repeats=cfg.get('repeats', 1),
                        strata=strata, seed=seed)
    elif method == 'bootstrap':
        return bootstraps(training, times=cfg.get('times', 25), strata=strata, seed=seed)
    elif method == 'validation':
        return validation_split(training, prop=cfg.get('prop', 0.75), strata=strata, seed=seed)
    else:
        raise ValueError(f"Unknown resampling method: '{method}'")
