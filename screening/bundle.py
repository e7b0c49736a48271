"""Deployable model bundles: a fitted workflow plus versioned metadata,
saved with joblib.
"""

import os
from datetime import datetime

import joblib
import pandas as pd

from .data import DataShapeError


class ModelBundle:
    """Versioned, reusable prediction object for one fitted workflow."""

    def __init__(self, name, workflow, metadata, version, prototype):
        self.name = name
        self.workflow = workflow
        self.metadata = metadata
        self.version = version
        self.prototype = prototype

    def check_schema(self, df):
        missing = [c for c in self.prototype if c not in df.columns]
        if missing:
            raise DataShapeError(f"Input is missing columns required by '{self.name}': {missing}")

    def predict(self, df):
        """Predict for new rows; returns a frame with `.pred` (and class probabilities)."""
        self.check_schema(df)
        out = pd.DataFrame({'.pred': self.workflow.predict(df)}, index=df.index)
        if self.workflow.has_proba():
            proba = self.workflow.predict_proba(df)
            for j, cls in enumerate(self.workflow.classes_):
                out[f'.pred_{cls}'] = proba[:, j]
        return out

    def __repr__(self):
        return f"ModelBundle(name={self.name!r}, version={self.version!r})"


def bundle_model(fitted, name, metadata=None):
    """
    Wrap a FittedWorkflow (or FinalFit) for reuse.

    The version is a timestamp plus a short hash of the pickled workflow.
    The prototype records the predictor columns seen at training time.
    """
    workflow = fitted.extract_workflow() if hasattr(fitted, 'extract_workflow') else fitted
    digest = joblib.hash(workflow)[:8]
    version = f"{datetime.now().strftime('%Y%m%dT%H%M%S')}-{digest}"

    prototype = list(workflow.recipe.predictors)
    meta = {
        'workflow_id': workflow.id,
        'mode': workflow.mode,
        'outcome': workflow.outcome,
        'algorithm': workflow.workflow.model.algorithm,
        'params': {k: v for k, v in workflow.workflow.model.params.items()},
        'predictors': prototype,
        'classes': list(workflow.classes_) if workflow.classes_ is not None else None,
    }
    meta.update(metadata or {})
    return ModelBundle(name, workflow, meta, version, prototype)


def save_bundle(bundle, path):
    """Save a ModelBundle with joblib. Returns the path on success."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    joblib.dump(bundle, path)
    return path


def load_bundle(path):
    bundle = joblib.load(path)
    if not isinstance(bundle, ModelBundle):
        raise TypeError(f"{path} does not contain a ModelBundle")
    return bundle
