# Final evaluation
# Refit the chosen candidate on all training rows and score it once on the test set

from dataclasses import dataclass

import numpy as np
import pandas as pd

from .metrics import MetricSet, as_metric_set
from .splits import Split
from .workflow import FittedWorkflow


@dataclass
class FinalFit:
    workflow: FittedWorkflow
    metrics: MetricSet
    scores: dict
    predictions: pd.DataFrame
    split: Split

    def collect_metrics(self):
        return pd.DataFrame(
            [{'metric': name, 'value': value, 'direction': self.metrics[name].direction}
             for name, value in self.scores.items()]
        )

    def collect_predictions(self):
        return self.predictions

    def extract_workflow(self):
        return self.workflow

    def feature_importance(self, method='permutation', n_repeats=10, seed=42, max_samples=500):
        """
        Global feature importance of the fitted model on baked training data.

        Args:
            method: 'permutation' or 'shap'
        """
        from analysis.interpretability import workflow_permutation_importance, workflow_shap_importance

        training = self.split.training()
        if method == 'permutation':
            return workflow_permutation_importance(
                self.workflow, training, n_repeats=n_repeats, random_state=seed
            )
        elif method == 'shap':
            return workflow_shap_importance(self.workflow, training, max_samples=max_samples, random_state=seed)
        raise ValueError(f"Unknown importance method '{method}'. Use 'permutation' or 'shap'.")

    def local_explanations(self, data, rows, top_k=10, seed=42):
        """SHAP contributions for the given positional `rows` of `data`."""
        from analysis.interpretability import workflow_local_explanations

        return workflow_local_explanations(
            self.workflow, data, rows, self.split.training(), top_k=top_k, random_state=seed
        )


def last_fit(workflow, split: Split, metrics=None, seed=None):
    """
    Fit a finalized workflow on the training set and evaluate it on the test set.

    This is the only place the test rows are read.

    Returns:
        FinalFit
    """
    if not workflow.is_final:
        raise ValueError(
            f"Workflow '{workflow.id}' still has tuning parameters {workflow.param_ids}; finalize it first"
        )
    metrics = as_metric_set(metrics, workflow.mode)
    metrics.check(workflow.mode, workflow.model.supports_proba())

    fitted = workflow.fit(split.training(), seed=seed)

    testing = split.testing()
    pred = fitted.predict(testing)
    proba = fitted.predict_proba(testing) if fitted.has_proba() else None

    truth = testing[workflow.outcome]
    if workflow.mode == 'classification':
        truth_arr = np.asarray(truth, dtype=object)
    else:
        truth_arr = truth.to_numpy(dtype=float)
    scores = metrics.compute(truth_arr, pred, proba, fitted.classes_)

    predictions = pd.DataFrame({
        '.row': testing.index.to_numpy(),
        workflow.outcome: truth.to_numpy(),
        '.pred': pred,
    })
    if proba is not None:
        for j, cls in enumerate(fitted.classes_):
            predictions[f'.pred_{cls}'] = proba[:, j]

    return FinalFit(workflow=fitted, metrics=metrics, scores=scores, predictions=predictions, split=split)
