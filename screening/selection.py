# Ranking and selection
# Best, one-standard-error and percent-loss selection over tuning summaries

import numpy as np
import pandas as pd

from .metrics import METRICS, MetricError


def _summary(results, metric=None):
    metric = metric or results.metrics.primary.name
    m = results.metrics[metric]
    summary = results.collect_metrics()
    summary = summary[summary['metric'] == metric]
    if results.method == 'race':
        # only configs that survived the race were scored on every resample
        summary = summary[summary['n'] == results.n_resamples]
    if summary.empty:
        raise ValueError(f"No completed results for metric '{metric}' in '{results.workflow_id}'")
    return summary.reset_index(drop=True), m


def _params_of(row, param_ids):
    params = {'config': row['config']}
    for pid in param_ids:
        value = row[pid]
        params[pid] = value.item() if isinstance(value, np.generic) else value
    return params


def show_best(results, metric=None, n=5):
    """Top `n` grid points by mean resampled metric."""
    summary, m = _summary(results, metric)
    ascending = m.direction == 'minimize'
    ranked = summary.sort_values(['mean', 'config'], ascending=[ascending, True])
    return ranked.head(n).reset_index(drop=True)


def select_best(results, metric=None):
    """Parameters (plus `config`) of the grid point with the best mean."""
    best = show_best(results, metric, n=1).iloc[0]
    return _params_of(best, results.param_ids)


def order_by_simplicity(candidates, order, param_ids=None, direction='maximize'):
    """
    Sort candidate grid points simplest-first.

    Args:
        candidates: Summary rows (one per config)
        order: Parameter name (ascending = simpler), '-name' (descending =
            simpler), a list of those, or a callable that takes the
            candidates frame and returns it sorted simplest-first
        param_ids: Allowed parameter names
        direction: Metric direction, used to break ties by performance
    """
    if callable(order):
        ordered = order(candidates.copy())
        if not isinstance(ordered, pd.DataFrame) or ordered.empty:
            raise ValueError("Ordering function must return a non-empty DataFrame")
        return ordered.reset_index(drop=True)

    if isinstance(order, str):
        order = [order]
    if not order:
        raise ValueError("An ordering over at least one parameter is required")

    columns, ascending = [], []
    for item in order:
        name = item[1:] if item.startswith('-') else item
        if param_ids is not None and name not in param_ids:
            raise ValueError(f"Cannot order by '{name}': not a tuning parameter {list(param_ids)}")
        columns.append(name)
        ascending.append(not item.startswith('-'))

    ordered = candidates.sort_values(
        columns + ['mean', 'config'],
        ascending=ascending + [direction == 'minimize', True],
    )
    return ordered.reset_index(drop=True)


def select_by_one_std_err(results, order, metric=None):
    """
    Simplest grid point whose mean is within one standard error of the best.

    What counts as "simplest" differs between models (fewer terms, larger
    penalty, shallower trees), so the ordering is always given by the caller.
    """
    summary, m = _summary(results, metric)
    best_idx = summary['mean'].idxmax() if m.direction == 'maximize' else summary['mean'].idxmin()
    best = summary.loc[best_idx]
    se = best['std_err'] if np.isfinite(best['std_err']) else 0.0

    if m.direction == 'maximize':
        within = summary[summary['mean'] >= best['mean'] - se]
    else:
        within = summary[summary['mean'] <= best['mean'] + se]

    chosen = order_by_simplicity(within, order, results.param_ids, m.direction).iloc[0]
    return _params_of(chosen, results.param_ids)


def select_by_pct_loss(results, order, metric=None, limit=2):
    """Simplest grid point whose loss relative to the best is at most `limit` percent."""
    summary, m = _summary(results, metric)
    best = summary['mean'].max() if m.direction == 'maximize' else summary['mean'].min()
    if best == 0:
        loss = (summary['mean'] - best).abs() * 100
    else:
        loss = ((best - summary['mean']) / best).abs() * 100
    within = summary[loss <= limit]
    chosen = order_by_simplicity(within, order, results.param_ids, m.direction).iloc[0]
    return _params_of(chosen, results.param_ids)


def rank_results(results_by_id, rank_metric=None, select_best=False):
    """
    Rank every (workflow, config) across a set of tuning results.

    Args:
        results_by_id: Dict of workflow id -> TuneResults
        rank_metric: Metric used for ranking (default: first result's primary)
        select_best: Keep only each workflow's best config

    Returns:
        Long DataFrame (wflow_id, config, metric, mean, std_err, n, rank)
    """
    if not results_by_id:
        raise ValueError("No results to rank")
    first = next(iter(results_by_id.values()))
    rank_metric = rank_metric or first.metrics.primary.name
    if rank_metric not in METRICS:
        raise MetricError(f"Unknown metric '{rank_metric}'")
    direction = METRICS[rank_metric].direction

    frames = []
    for wflow_id, results in results_by_id.items():
        if rank_metric not in results.metrics.names:
            raise MetricError(f"Workflow '{wflow_id}' was not scored with '{rank_metric}'")
        summary = results.collect_metrics()
        if results.method == 'race':
            complete = summary.loc[summary['n'] == results.n_resamples, 'config'].unique()
            summary = summary[summary['config'].isin(complete)]
        summary = summary[['config', 'metric', 'mean', 'std_err', 'n']].copy()
        summary.insert(0, 'wflow_id', wflow_id)
        if select_best:
            ranked = summary[summary['metric'] == rank_metric]
            ranked = ranked.sort_values(['mean', 'config'], ascending=[direction == 'minimize', True])
            best_config = ranked['config'].iloc[0]
            summary = summary[summary['config'] == best_config]
        frames.append(summary)

    combined = pd.concat(frames, ignore_index=True)
    keyed = combined[combined['metric'] == rank_metric][['wflow_id', 'config', 'mean']]
    keyed = keyed.sort_values(['mean', 'wflow_id', 'config'],
                              ascending=[direction == 'minimize', True, True]).reset_index(drop=True)
    keyed['rank'] = np.arange(1, len(keyed) + 1)

    out = combined.merge(keyed[['wflow_id', 'config', 'rank']], on=['wflow_id', 'config'], how='inner')
    return out.sort_values(['rank', 'metric']).reset_index(drop=True)
