# Resampling tuner
# Fits every (grid point, fold) unit and aggregates fold scores per grid point

import warnings
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .data import DataShapeError
from .grids import resolve_grid
from .metrics import MetricSet, as_metric_set
from .models import default_range


@dataclass
class TuneControl:
    n_jobs: int = 1
    verbose: bool = False
    save_pred: bool = False
    on_error: str = 'raise'  # 'raise' or 'omit'
    grid_type: str = 'latin_hypercube'
    levels: int = 3

    def __post_init__(self):
        if self.on_error not in ('raise', 'omit'):
            raise ValueError(f"on_error must be 'raise' or 'omit', got '{self.on_error}'")


@dataclass
class TuneResults:
    """Fold-level metric results for one workflow over a grid."""
    workflow_id: str
    method: str
    grid: pd.DataFrame
    fold_metrics: pd.DataFrame
    metrics: MetricSet
    resample_ids: List[str]
    param_ids: List[str]
    predictions: Optional[pd.DataFrame] = None
    race_log: Optional[pd.DataFrame] = None
    notes: List[str] = field(default_factory=list)

    @property
    def n_resamples(self):
        return len(self.resample_ids)

    def collect_metrics(self, summarize=True):
        """
        Per-config metric summary.

        Returns:
            DataFrame with config, parameter columns, metric, mean, n, std_err
            (or the raw fold-level rows when summarize=False)
        """
        if not summarize:
            return self.fold_metrics.merge(self.grid, on='config', how='left')

        if self.fold_metrics.empty:
            return pd.DataFrame(columns=['config'] + self.param_ids + ['metric', 'mean', 'n', 'std_err'])

        summary = summarize_fold_metrics(self.fold_metrics)
        summary = summary.merge(self.grid, on='config', how='left')
        metric_order = {name: i for i, name in enumerate(self.metrics.names)}
        summary['_m'] = summary['metric'].map(metric_order)
        summary = summary.sort_values(['config', '_m']).drop(columns='_m').reset_index(drop=True)
        return summary[['config'] + self.param_ids + ['metric', 'mean', 'n', 'std_err']]

    def collect_predictions(self):
        if self.predictions is None:
            raise ValueError("Predictions were not saved; rerun with control.save_pred=True")
        return self.predictions

    def __repr__(self):
        return (f"TuneResults(workflow={self.workflow_id!r}, method={self.method!r}, "
                f"configs={len(self.grid)}, resamples={self.n_resamples})")


def summarize_fold_metrics(fold_metrics):
    """Mean, count and standard error (sd with ddof=1 over sqrt(n)) per config and metric."""
    grouped = fold_metrics.groupby(['config', 'metric'], sort=True)['value']
    summary = grouped.agg(['mean', 'count', 'std']).reset_index()
    summary = summary.rename(columns={'count': 'n'})
    summary['std_err'] = summary['std'] / np.sqrt(summary['n'])
    return summary.drop(columns='std')


def _score_unit(workflow, data, fold, config, params, metrics, seed, save_pred, on_error):
    """Fit on one fold's analysis rows and score on its assessment rows."""
    analysis = data.iloc[fold.analysis_idx]
    assessment = data.iloc[fold.assessment_idx]
    outcome = workflow.outcome

    try:
        fitted = workflow.fit(analysis, params=params, seed=seed)
        pred = fitted.predict(assessment)
        proba = fitted.predict_proba(assessment) if metrics.needs_proba or (save_pred and fitted.has_proba()) else None
        truth = assessment[outcome]
        if workflow.mode == 'classification':
            truth = np.asarray(truth, dtype=object)
        else:
            truth = truth.to_numpy(dtype=float)
        scores = metrics.compute(truth, pred, proba, fitted.classes_)
    except Exception as e:
        if on_error == 'raise':
            raise
        return [], None, f"{config}/{fold.id}: {type(e).__name__}: {e}"

    rows = [{'config': config, 'fold': fold.id, 'metric': name, 'value': value}
            for name, value in scores.items()]

    preds = None
    if save_pred:
        preds = pd.DataFrame({
            'config': config,
            'fold': fold.id,
            '.row': assessment.index.to_numpy(),
            outcome: assessment[outcome].to_numpy(),
            '.pred': pred,
        })
        if proba is not None:
            for j, cls in enumerate(fitted.classes_):
                preds[f'.pred_{cls}'] = proba[:, j]

    return rows, preds, None


def run_units(workflow, resamples, units, metrics, control, seed=None):
    """
    Evaluate (config, params, fold) units, possibly in parallel.

    The merged output is sorted by config, fold order and metric order, so it
    does not depend on the order in which workers finish.
    """
    outputs = Parallel(n_jobs=control.n_jobs)(
        delayed(_score_unit)(
            workflow, resamples.data, fold, config, params, metrics, seed,
            control.save_pred, control.on_error
        )
        for config, params, fold in units
    )

    rows, preds, notes = [], [], []
    failed_configs = set()
    for unit, (unit_rows, unit_preds, note) in zip(units, outputs):
        rows.extend(unit_rows)
        if unit_preds is not None:
            preds.append(unit_preds)
        if note is not None:
            notes.append(note)
            failed_configs.add(unit[0])

    fold_metrics = pd.DataFrame(rows, columns=['config', 'fold', 'metric', 'value'])
    if failed_configs:
        # a grid point with any failed fold is dropped entirely
        warnings.warn(f"Omitting grid points with failed fits: {sorted(failed_configs)}")
        fold_metrics = fold_metrics[~fold_metrics['config'].isin(failed_configs)]

    fold_metrics = sort_fold_metrics(fold_metrics, resamples.ids, metrics.names)
    predictions = pd.concat(preds, ignore_index=True) if preds else None
    if predictions is not None and failed_configs:
        predictions = predictions[~predictions['config'].isin(failed_configs)].reset_index(drop=True)
    return fold_metrics, predictions, notes, failed_configs


def sort_fold_metrics(fold_metrics, fold_ids, metric_names):
    fold_order = {f: i for i, f in enumerate(fold_ids)}
    metric_order = {m: i for i, m in enumerate(metric_names)}
    out = fold_metrics.assign(
        _f=fold_metrics['fold'].map(fold_order),
        _m=fold_metrics['metric'].map(metric_order),
    )
    out = out.sort_values(['config', '_f', '_m']).drop(columns=['_f', '_m'])
    return out.reset_index(drop=True)


def grid_points(grid_table, param_ids):
    """(config, params) pairs with per-column dtypes preserved."""
    return [
        (rec['config'], {pid: rec[pid] for pid in param_ids})
        for rec in grid_table.to_dict(orient='records')
    ]


def prepare_tuning(workflow, resamples, grid, metrics, control, seed, ranges=None):
    """Validate inputs and resolve the grid shared by grid search and racing."""
    if workflow.outcome not in resamples.data.columns:
        raise DataShapeError(f"Outcome column '{workflow.outcome}' not found in resamples")
    metrics = as_metric_set(metrics, workflow.mode)
    metrics.check(workflow.mode, workflow.model.supports_proba())

    names = workflow.param_names()
    grid_table = resolve_grid(
        workflow.param_ids, grid=grid, ranges=ranges, grid_type=control.grid_type,
        seed=seed, levels=control.levels, default_range=lambda pid: default_range(names[pid]),
    )
    return metrics, grid_table


def tune_grid(workflow, resamples, grid=10, metrics=None, control=None, seed=None, ranges=None):
    """
    Evaluate a workflow over a grid of tuning parameter values.

    Args:
        workflow: Workflow with tune() placeholders (or none)
        resamples: Resamples built from the training set only
        grid: Grid size, list of parameter dicts, or DataFrame
        metrics: MetricSet or list of metric names (first is primary)
        control: TuneControl
        seed: Seed for grid generation and stochastic estimators
        ranges: Optional parameter id -> Range/Choice overrides

    Returns:
        TuneResults
    """
    control = control or TuneControl()
    metrics, grid_table = prepare_tuning(workflow, resamples, grid, metrics, control, seed, ranges)

    if control.verbose:
        print(f"Tuning '{workflow.id}': {len(grid_table)} configs x {len(resamples)} resamples ({resamples.method})...")

    units = [
        (config, params, fold)
        for config, params in grid_points(grid_table, workflow.param_ids)
        for fold in resamples.folds
    ]
    fold_metrics, predictions, notes, failed = run_units(workflow, resamples, units, metrics, control, seed)

    if failed and len(failed) == len(grid_table):
        raise RuntimeError(f"All grid points failed for workflow '{workflow.id}':\n  - " + "\n  - ".join(notes))

    return TuneResults(
        workflow_id=workflow.id,
        method='grid' if workflow.param_ids else 'resamples',
        grid=grid_table,
        fold_metrics=fold_metrics,
        metrics=metrics,
        resample_ids=resamples.ids,
        param_ids=list(workflow.param_ids),
        predictions=predictions,
        notes=notes,
    )


def fit_resamples(workflow, resamples, metrics=None, control=None, seed=None):
    """Resample a workflow that has nothing to tune."""
    if not workflow.is_final:
        raise ValueError(
            f"Workflow '{workflow.id}' has tuning parameters {workflow.param_ids}; use tune_grid()"
        )
    return tune_grid(workflow, resamples, grid=None, metrics=metrics, control=control, seed=seed)
