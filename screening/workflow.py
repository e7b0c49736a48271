# Workflows (candidates)
# A recipe paired with a model spec, fitted and used as one unit

import numpy as np
import pandas as pd

from .data import DataShapeError
from .models import ModelSpec
from .recipes import Recipe


class FitError(RuntimeError):
    """Raised when an estimator fails to fit."""
    pass


class Workflow:
    """A (Recipe, ModelSpec) pair evaluated as one candidate."""

    def __init__(self, recipe: Recipe, model: ModelSpec, id=None):
        self.recipe = recipe
        self.model = model
        self.id = id or f"{model.algorithm}"
        self.outcome = recipe.outcome
        # validate ids early
        self.param_ids

    @property
    def mode(self):
        return self.model.mode

    def parameters(self) -> pd.DataFrame:
        """One row per tuning placeholder: id, component and argument name."""
        rows = []
        for param_id, (step_id, name) in self.recipe.tunable().items():
            rows.append({'id': param_id, 'component': 'recipe', 'owner': step_id, 'name': name})
        for param_id, name in self.model.tunable().items():
            rows.append({'id': param_id, 'component': 'model', 'owner': self.model.algorithm, 'name': name})
        return pd.DataFrame(rows, columns=['id', 'component', 'owner', 'name'])

    @property
    def param_ids(self):
        recipe_ids = list(self.recipe.tunable())
        model_ids = list(self.model.tunable())
        clash = set(recipe_ids) & set(model_ids)
        if clash:
            raise ValueError(f"Tuning parameter ids used by both recipe and model: {sorted(clash)}")
        return recipe_ids + model_ids

    def param_names(self):
        """Map parameter id -> underlying argument name (used for default ranges)."""
        names = {pid: name for pid, (_, name) in self.recipe.tunable().items()}
        names.update(self.model.tunable())
        return names

    @property
    def is_final(self):
        return not self.param_ids

    def finalize(self, params):
        """Return a new workflow with every placeholder replaced by its value."""
        params = {k: v for k, v in dict(params).items() if k != 'config'}
        missing = [pid for pid in self.param_ids if pid not in params]
        if missing:
            raise ValueError(f"Cannot finalize workflow '{self.id}': no value for {missing}")
        recipe = self.recipe.finalize(params)
        model = self.model.finalize(params)
        return Workflow(recipe, model, id=self.id)

    def fit(self, training: pd.DataFrame, params=None, seed=None):
        """
        Train the recipe and the model on `training`.

        Args:
            training: Frame holding predictors and outcome
            params: Values for tuning placeholders (required if not finalized)
            seed: Random seed passed to stochastic estimators

        Returns:
            FittedWorkflow
        """
        wf = self.finalize(params or {}) if not self.is_final else self

        prepared = wf.recipe.prep(training)
        baked = prepared.bake(training)
        X, feature_names = _design_matrix(baked, wf.outcome)
        y = training[wf.outcome]

        classes = None
        if wf.mode == 'classification':
            classes = _class_levels(y)
            y_fit = pd.Categorical(y, categories=classes).codes
            if (y_fit < 0).any():
                raise DataShapeError(f"Outcome '{wf.outcome}' has missing or unknown levels")
            if len(np.unique(y_fit)) < 2:
                raise DataShapeError(f"Outcome '{wf.outcome}' has a single class in this training set")
        else:
            if y.isnull().any():
                raise DataShapeError(f"Outcome '{wf.outcome}' contains missing values")
            y_fit = y.to_numpy(dtype=float)

        estimator = wf.model.build(seed=seed)
        try:
            estimator.fit(X, y_fit)
        except Exception as e:
            raise FitError(f"Workflow '{wf.id}' failed to fit with {wf.model.params}: {e}") from e

        return FittedWorkflow(wf, prepared, estimator, feature_names, classes)


def _class_levels(y):
    if isinstance(y.dtype, pd.CategoricalDtype):
        return list(y.cat.categories)
    return sorted(y.dropna().unique().tolist())


def _design_matrix(baked, outcome):
    X = baked.drop(columns=[outcome], errors='ignore')
    non_numeric = [c for c in X.columns if not pd.api.types.is_numeric_dtype(X[c])]
    if non_numeric:
        raise DataShapeError(
            f"Non-numeric predictors reach the model: {non_numeric}. Add a dummy step to the recipe."
        )
    return X.to_numpy(dtype=float), list(X.columns)


class FittedWorkflow:
    """A trained recipe + trained estimator, usable on new data of the same schema."""

    def __init__(self, workflow, recipe, estimator, feature_names, classes=None):
        self.workflow = workflow
        self.recipe = recipe
        self.estimator = estimator
        self.feature_names = feature_names
        self.classes_ = classes

    @property
    def id(self):
        return self.workflow.id

    @property
    def mode(self):
        return self.workflow.mode

    @property
    def outcome(self):
        return self.workflow.outcome

    def extract_recipe(self):
        return self.recipe

    def extract_estimator(self):
        return self.estimator

    def transform(self, df):
        """Baked predictors as a DataFrame (outcome dropped)."""
        baked = self.recipe.bake(df)
        return baked.drop(columns=[self.outcome], errors='ignore')

    def _matrix(self, df):
        X, names = _design_matrix(self.recipe.bake(df), self.outcome)
        return X

    def predict(self, df):
        pred = self.estimator.predict(self._matrix(df))
        if self.mode == 'classification':
            codes = np.asarray(pred).astype(int)
            return np.asarray(self.classes_, dtype=object)[codes]
        return np.asarray(pred, dtype=float)

    def has_proba(self):
        return self.mode == 'classification' and hasattr(self.estimator, 'predict_proba')

    def predict_proba(self, df):
        """Class probabilities, one column per level in `classes_` order."""
        if not self.has_proba():
            raise AttributeError(f"Workflow '{self.id}' does not produce class probabilities")
        raw = self.estimator.predict_proba(self._matrix(df))
        # classes absent from the training rows get probability zero
        proba = np.zeros((raw.shape[0], len(self.classes_)))
        for j, code in enumerate(np.asarray(self.estimator.classes_).astype(int)):
            proba[:, code] = raw[:, j]
        return proba

    def augment(self, df):
        """Return `df` with prediction columns added."""
        out = df.copy()
        out['.pred'] = self.predict(df)
        if self.has_proba():
            proba = self.predict_proba(df)
            for j, cls in enumerate(self.classes_):
                out[f'.pred_{cls}'] = proba[:, j]
        return out

    def __repr__(self):
        return f"FittedWorkflow(id={self.id!r}, estimator={self.estimator!r})"
