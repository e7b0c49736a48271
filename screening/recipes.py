# Preprocessing recipes
# An ordered list of fit-then-apply steps, trained on one analysis set at a time

import copy
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.feature_selection import VarianceThreshold
from sklearn.impute import SimpleImputer
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from .data import DataShapeError
from .tunable import is_tune, from_config_value

SELECTORS = ['all_predictors', 'all_numeric_predictors', 'all_nominal_predictors']


def resolve_columns(df, selector, outcome):
    """Resolve a column selector against the current frame, never returning the outcome."""
    predictors = [c for c in df.columns if c != outcome]
    if selector is None or selector == 'all_predictors':
        return predictors
    if selector == 'all_numeric_predictors':
        return [c for c in predictors if pd.api.types.is_numeric_dtype(df[c])]
    if selector == 'all_nominal_predictors':
        return [c for c in predictors if not pd.api.types.is_numeric_dtype(df[c])]
    if isinstance(selector, str):
        selector = [selector]
    missing = [c for c in selector if c not in df.columns]
    if missing:
        raise DataShapeError(f"Recipe columns not found: {missing}")
    return [c for c in selector if c != outcome]


class Step:
    """
    Base class for recipe steps.

    Subclasses implement `_fit` and `_transform`. Arguments live in
    `self.args` so tuning placeholders can be substituted generically.
    """
    kind = None
    default_columns = 'all_predictors'

    def __init__(self, columns=None, id=None, **args):
        self.columns = columns if columns is not None else self.default_columns
        self.id = id
        self.args = args
        self.trained = False

    def tunable(self):
        return {name: value for name, value in self.args.items() if is_tune(value)}

    def fit(self, df, outcome):
        unresolved = self.tunable()
        if unresolved:
            raise ValueError(f"Step '{self.id}' has untuned arguments: {list(unresolved)}")
        self.columns_ = resolve_columns(df, self.columns, outcome)
        self._fit(df, outcome)
        self.trained = True
        return self

    def transform(self, df):
        if not self.trained:
            raise RuntimeError(f"Step '{self.id}' must be fit before transform")
        return self._transform(df)

    def fitted_params(self):
        return {}

    def _fit(self, df, outcome):
        pass

    def _transform(self, df):
        return df

    def __repr__(self):
        args = ", ".join(f"{k}={v!r}" for k, v in self.args.items())
        return f"{self.__class__.__name__}(id={self.id!r}, columns={self.columns!r}{', ' if args else ''}{args})"


class ImputeStep(Step):
    """Fill missing values with a statistic estimated on the training rows."""
    kind = 'impute'
    _strategies = {'median': 'median', 'mean': 'mean', 'mode': 'most_frequent', 'constant': 'constant'}

    def __init__(self, strategy='median', columns=None, fill_value=None, id=None):
        if strategy not in self._strategies:
            raise ValueError(f"Unknown impute strategy '{strategy}'. Allowed: {list(self._strategies)}")
        if columns is None:
            columns = 'all_numeric_predictors' if strategy in ('median', 'mean') else 'all_predictors'
        super().__init__(columns=columns, id=id, strategy=strategy, fill_value=fill_value)

    def _fit(self, df, outcome):
        if not self.columns_:
            self.imputer_ = None
            return
        all_na = [c for c in self.columns_ if df[c].isnull().all()]
        if all_na:
            raise DataShapeError(f"Cannot impute columns with no observed values: {all_na}")
        self.imputer_ = SimpleImputer(
            strategy=self._strategies[self.args['strategy']],
            fill_value=self.args['fill_value'],
        )
        self.imputer_.fit(self._as_input(df))

    def _as_input(self, df):
        block = df[self.columns_]
        if self.args['strategy'] in ('mode', 'constant'):
            block = block.astype(object).where(block.notnull(), np.nan)
        return block

    def _transform(self, df):
        if self.imputer_ is None:
            return df
        out = df.copy()
        filled = self.imputer_.transform(self._as_input(df))
        for i, col in enumerate(self.columns_):
            out[col] = filled[:, i]
            if self.args['strategy'] in ('median', 'mean'):
                out[col] = out[col].astype(float)
            elif pd.api.types.is_numeric_dtype(df[col]):
                out[col] = pd.to_numeric(out[col])
        return out

    def fitted_params(self):
        if self.imputer_ is None:
            return {}
        return dict(zip(self.columns_, self.imputer_.statistics_.tolist()))


class DummyStep(Step):
    """One-hot / dummy encoding of nominal predictors."""
    kind = 'dummy'
    default_columns = 'all_nominal_predictors'

    def __init__(self, columns=None, one_hot=False, id=None):
        super().__init__(columns=columns, id=id, one_hot=one_hot)

    def _fit(self, df, outcome):
        if not self.columns_:
            self.encoder_ = None
            return
        self.encoder_ = OneHotEncoder(
            drop=None if self.args['one_hot'] else 'first',
            handle_unknown='ignore',
            sparse_output=False,
        )
        self.encoder_.fit(df[self.columns_].astype(str))
        self.feature_names_ = list(self.encoder_.get_feature_names_out(self.columns_))

    def _transform(self, df):
        if self.encoder_ is None:
            return df
        encoded = pd.DataFrame(
            self.encoder_.transform(df[self.columns_].astype(str)),
            columns=self.feature_names_,
            index=df.index,
        )
        return pd.concat([df.drop(columns=self.columns_), encoded], axis=1)

    def fitted_params(self):
        if self.encoder_ is None:
            return {}
        return {col: [str(c) for c in cats] for col, cats in zip(self.columns_, self.encoder_.categories_)}


class OtherStep(Step):
    """Lump infrequent levels of nominal predictors into a single level."""
    kind = 'other'
    default_columns = 'all_nominal_predictors'

    def __init__(self, columns=None, threshold=0.05, other='other', id=None):
        super().__init__(columns=columns, id=id, threshold=threshold, other=other)

    def _fit(self, df, outcome):
        threshold = self.args['threshold']
        self.levels_ = {}
        for col in self.columns_:
            freq = df[col].value_counts(normalize=True, dropna=True)
            if threshold >= 1:
                # integer threshold means a minimum count
                freq = df[col].value_counts(dropna=True)
            self.levels_[col] = sorted(str(v) for v in freq[freq >= threshold].index)

    def _transform(self, df):
        out = df.copy()
        for col, keep in self.levels_.items():
            values = out[col].astype(object)
            known = values.isnull() | values.astype(str).isin(keep)
            out[col] = values.where(known, self.args['other'])
        return out

    def fitted_params(self):
        return dict(self.levels_)


class FilterStep(Step):
    """
    Remove predictors: zero variance ('zv'), near-zero variance ('nzv')
    or high pairwise correlation ('corr').
    """
    kind = 'filter'

    def __init__(self, method='zv', columns=None, threshold=0.9, freq_cut=95 / 5, unique_cut=10, id=None):
        if method not in ('zv', 'nzv', 'corr'):
            raise ValueError(f"Unknown filter method '{method}'")
        if columns is None and method == 'corr':
            columns = 'all_numeric_predictors'
        super().__init__(columns=columns, id=id, method=method, threshold=threshold,
                         freq_cut=freq_cut, unique_cut=unique_cut)

    def _fit(self, df, outcome):
        method = self.args['method']
        if method == 'zv':
            self.removed_ = self._zero_variance(df)
        elif method == 'nzv':
            self.removed_ = self._near_zero_variance(df)
        else:
            self.removed_ = self._correlated(df)

    def _zero_variance(self, df):
        numeric = [c for c in self.columns_ if pd.api.types.is_numeric_dtype(df[c])]
        removed = []
        if numeric:
            vt = VarianceThreshold(threshold=0.0)
            block = df[numeric].fillna(df[numeric].mean()).fillna(0.0)
            try:
                vt.fit(block)
                removed = [c for c, keep in zip(numeric, vt.get_support()) if not keep]
            except ValueError:
                # every numeric column is constant
                removed = list(numeric)
        removed += [c for c in self.columns_ if c not in numeric and df[c].nunique(dropna=True) <= 1]
        return [c for c in self.columns_ if c in removed]

    def _near_zero_variance(self, df):
        removed = []
        n = len(df)
        for col in self.columns_:
            counts = df[col].value_counts(dropna=True)
            if len(counts) <= 1:
                removed.append(col)
                continue
            freq_ratio = counts.iloc[0] / counts.iloc[1]
            pct_unique = 100.0 * len(counts) / n
            if freq_ratio > self.args['freq_cut'] and pct_unique < self.args['unique_cut']:
                removed.append(col)
        return removed

    def _correlated(self, df):
        if len(self.columns_) < 2:
            return []
        corr = df[self.columns_].corr().abs()
        np.fill_diagonal(corr.values, 0.0)
        removed = []
        remaining = list(self.columns_)
        while True:
            sub = corr.loc[remaining, remaining]
            if sub.values.max() <= self.args['threshold']:
                break
            i, j = np.unravel_index(np.argmax(sub.values), sub.shape)
            a, b = remaining[i], remaining[j]
            # drop whichever of the pair is more correlated with everything else
            drop = a if sub[a].mean() >= sub[b].mean() else b
            removed.append(drop)
            remaining.remove(drop)
            if len(remaining) < 2:
                break
        return removed

    def _transform(self, df):
        return df.drop(columns=[c for c in self.removed_ if c in df.columns])

    def fitted_params(self):
        return {'removed': list(self.removed_)}


class NormalizeStep(Step):
    """Center and scale numeric predictors."""
    kind = 'normalize'
    default_columns = 'all_numeric_predictors'

    def __init__(self, columns=None, id=None):
        super().__init__(columns=columns, id=id)

    def _fit(self, df, outcome):
        self.scaler_ = StandardScaler().fit(df[self.columns_]) if self.columns_ else None

    def _transform(self, df):
        if self.scaler_ is None:
            return df
        out = df.copy()
        out[self.columns_] = self.scaler_.transform(df[self.columns_])
        return out

    def fitted_params(self):
        if self.scaler_ is None:
            return {}
        return {'mean': dict(zip(self.columns_, self.scaler_.mean_.tolist())),
                'scale': dict(zip(self.columns_, self.scaler_.scale_.tolist()))}


class LogStep(Step):
    kind = 'log'
    default_columns = 'all_numeric_predictors'

    def __init__(self, columns=None, offset=0.0, base=np.e, id=None):
        super().__init__(columns=columns, id=id, offset=offset, base=base)

    def _fit(self, df, outcome):
        offset = self.args['offset']
        bad = [c for c in self.columns_ if ((df[c].dropna() + offset) <= 0).any()]
        if bad:
            raise DataShapeError(
                f"Log step needs values above {-offset} (offset={offset}); non-positive values in {bad}"
            )

    def _transform(self, df):
        out = df.copy()
        for col in self.columns_:
            out[col] = np.log(out[col] + self.args['offset']) / np.log(self.args['base'])
        return out


class PCAStep(Step):
    """Replace numeric predictors with their leading principal components."""
    kind = 'pca'
    default_columns = 'all_numeric_predictors'

    def __init__(self, columns=None, num_comp=5, prefix='PC', id=None):
        super().__init__(columns=columns, id=id, num_comp=num_comp, prefix=prefix)

    def _fit(self, df, outcome):
        if not self.columns_:
            self.pca_ = None
            return
        block = df[self.columns_]
        if block.isnull().any().any():
            raise DataShapeError("PCA step received missing values; impute before reducing")
        k = int(min(self.args['num_comp'], len(self.columns_), len(block)))
        self.pca_ = PCA(n_components=k).fit(block)
        width = len(str(k))
        self.component_names_ = [f"{self.args['prefix']}{i + 1:0{width}d}" for i in range(k)]

    def _transform(self, df):
        if self.pca_ is None:
            return df
        scores = pd.DataFrame(self.pca_.transform(df[self.columns_]),
                              columns=self.component_names_, index=df.index)
        return pd.concat([df.drop(columns=self.columns_), scores], axis=1)

    def fitted_params(self):
        if self.pca_ is None:
            return {}
        return {'components': self.pca_.components_.tolist(),
                'mean': self.pca_.mean_.tolist()}


STEP_KINDS = {
    'impute': ImputeStep,
    'dummy': DummyStep,
    'other': OtherStep,
    'filter': FilterStep,
    'zv': lambda **kw: FilterStep(method='zv', **kw),
    'nzv': lambda **kw: FilterStep(method='nzv', **kw),
    'corr': lambda **kw: FilterStep(method='corr', **kw),
    'normalize': NormalizeStep,
    'log': LogStep,
    'pca': PCAStep,
}


class Recipe:
    """
    Ordered preprocessing specification for one outcome.

    Builder methods return a new Recipe, so a base recipe can be shared
    between candidates:

        base = Recipe('outcome').impute('median').dummy()
        with_pca = base.normalize().pca(num_comp=tune())
    """

    def __init__(self, outcome, steps: Optional[List[Step]] = None):
        self.outcome = outcome
        self.steps = list(steps or [])

    def add_step(self, step: Step):
        steps = [copy.deepcopy(s) for s in self.steps]
        step = copy.deepcopy(step)
        if step.id is None:
            n = sum(1 for s in steps if s.kind == step.kind) + 1
            step.id = f"{step.kind}_{n}"
        if any(s.id == step.id for s in steps):
            raise ValueError(f"Duplicate step id '{step.id}'")
        return Recipe(self.outcome, steps + [step])

    def impute(self, strategy='median', columns=None, fill_value=None, id=None):
        return self.add_step(ImputeStep(strategy, columns=columns, fill_value=fill_value, id=id))

    def dummy(self, columns=None, one_hot=False, id=None):
        return self.add_step(DummyStep(columns=columns, one_hot=one_hot, id=id))

    def other(self, columns=None, threshold=0.05, id=None):
        return self.add_step(OtherStep(columns=columns, threshold=threshold, id=id))

    def zv(self, columns=None, id=None):
        return self.add_step(FilterStep('zv', columns=columns, id=id))

    def nzv(self, columns=None, id=None):
        return self.add_step(FilterStep('nzv', columns=columns, id=id))

    def corr(self, threshold=0.9, columns=None, id=None):
        return self.add_step(FilterStep('corr', columns=columns, threshold=threshold, id=id))

    def normalize(self, columns=None, id=None):
        return self.add_step(NormalizeStep(columns=columns, id=id))

    def log(self, columns=None, offset=0.0, base=np.e, id=None):
        return self.add_step(LogStep(columns=columns, offset=offset, base=base, id=id))

    def pca(self, num_comp=5, columns=None, id=None):
        return self.add_step(PCAStep(columns=columns, num_comp=num_comp, id=id))

    @classmethod
    def from_config(cls, outcome, step_configs):
        """Build a recipe from a list of `{step: kind, ...args}` dicts."""
        recipe = cls(outcome)
        for cfg in step_configs or []:
            cfg = dict(cfg)
            kind = cfg.pop('step', None)
            if kind not in STEP_KINDS:
                raise ValueError(f"Unknown recipe step '{kind}'. Supported: {sorted(STEP_KINDS)}")
            args = {k: from_config_value(v) for k, v in cfg.items()}
            recipe = recipe.add_step(STEP_KINDS[kind](**args))
        return recipe

    def tunable(self) -> Dict[str, tuple]:
        """Map parameter id -> (step id, argument name) for every placeholder."""
        found = {}
        for step in self.steps:
            for name, placeholder in step.tunable().items():
                param_id = placeholder.id or name
                if param_id in found:
                    raise ValueError(f"Duplicate tuning parameter id '{param_id}' in recipe")
                found[param_id] = (step.id, name)
        return found

    def finalize(self, params):
        steps = [copy.deepcopy(s) for s in self.steps]
        for step in steps:
            for name, placeholder in step.tunable().items():
                param_id = placeholder.id or name
                if param_id not in params:
                    raise ValueError(f"No value given for recipe parameter '{param_id}'")
                value = params[param_id]
                step.args[name] = value.item() if isinstance(value, np.generic) else value
        return Recipe(self.outcome, steps)

    def prep(self, training: pd.DataFrame):
        """Train every step, in order, on `training` only."""
        if self.outcome not in training.columns:
            raise DataShapeError(f"Outcome column '{self.outcome}' not found in training data")
        fitted = []
        current = training
        for step in self.steps:
            step = copy.deepcopy(step)
            step.fit(current, self.outcome)
            current = step.transform(current)
            fitted.append(step)
        return PreparedRecipe(self.outcome, fitted, predictors=[c for c in training.columns if c != self.outcome])

    def __repr__(self):
        lines = [f"Recipe(outcome={self.outcome!r})"] + [f"  {s!r}" for s in self.steps]
        return "\n".join(lines)


class PreparedRecipe:
    """A recipe whose steps have been trained on one analysis set."""

    def __init__(self, outcome, steps, predictors):
        self.outcome = outcome
        self.steps = steps
        self.predictors = predictors

    def bake(self, df: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in self.predictors if c not in df.columns]
        if missing:
            raise DataShapeError(f"New data is missing predictor columns: {missing}")
        cols = self.predictors + ([self.outcome] if self.outcome in df.columns else [])
        current = df[cols]
        for step in self.steps:
            current = step.transform(current)
        return current

    def params(self):
        return {step.id: step.fitted_params() for step in self.steps}
