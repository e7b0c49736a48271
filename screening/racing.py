# Racing
# Grid search that drops clearly inferior grid points after each resample

from dataclasses import asdict, dataclass

import numpy as np
import pandas as pd
from scipy import stats

from .tuning import TuneControl, TuneResults, grid_points, prepare_tuning, run_units, sort_fold_metrics


@dataclass
class RaceControl(TuneControl):
    burn_in: int = 3
    alpha: float = 0.05
    num_ties: int = 10
    randomize: bool = True
    verbose_elim: bool = False

    def __post_init__(self):
        super().__post_init__()
        if self.burn_in < 2:
            raise ValueError("burn_in must be >= 2 so the ANOVA has residual degrees of freedom")
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")


def anova_filter(scores, direction, alpha):
    """
    Compare grid points with an additive two-way ANOVA (config + resample block).

    Each non-best config is eliminated when the one-sided (1 - alpha) lower
    confidence bound of its shortfall from the current best is above zero.

    Args:
        scores: DataFrame with config, fold, value (every config on the same folds)
        direction: 'maximize' or 'minimize'
        alpha: Significance level

    Returns:
        DataFrame with config, mean, shortfall, lower_bound, p_value, status
    """
    table = scores.pivot(index='config', columns='fold', values='value')
    if table.isnull().any().any():
        raise ValueError("Racing comparison needs every active config scored on the same resamples")

    k, b = table.shape
    values = table.to_numpy(dtype=float)
    means = values.mean(axis=1)
    resid = values - means[:, None] - values.mean(axis=0)[None, :] + values.mean()
    df_resid = (k - 1) * (b - 1)
    mse = float((resid ** 2).sum() / df_resid) if df_resid > 0 else np.nan

    best = int(np.argmax(means)) if direction == 'maximize' else int(np.argmin(means))
    if direction == 'maximize':
        shortfall = means[best] - means
    else:
        shortfall = means - means[best]

    se = np.sqrt(2.0 * mse / b) if df_resid > 0 else np.nan
    rows = []
    for i, config in enumerate(table.index):
        if i == best:
            rows.append({'config': config, 'mean': means[i], 'shortfall': 0.0,
                         'lower_bound': np.nan, 'p_value': np.nan, 'status': 'best'})
            continue
        if np.isnan(se):
            lower, p_value, drop = np.nan, np.nan, False
        elif se == 0:
            lower = shortfall[i]
            p_value = 0.0 if shortfall[i] > 0 else 1.0
            drop = shortfall[i] > 0
        else:
            lower = shortfall[i] - stats.t.ppf(1 - alpha, df_resid) * se
            p_value = float(stats.t.sf(shortfall[i] / se, df_resid))
            drop = lower > 0
        rows.append({'config': config, 'mean': means[i], 'shortfall': shortfall[i],
                     'lower_bound': lower, 'p_value': p_value,
                     'status': 'eliminated' if drop else 'kept'})
    return pd.DataFrame(rows)


def tune_race_anova(workflow, resamples, grid=10, metrics=None, control=None, seed=None, ranges=None):
    """
    Tune a workflow, racing grid points across resamples.

    All grid points are scored on the first `burn_in` resamples. After each
    further resample, statistically inferior points on the primary metric stop
    being evaluated. When two points stay tied for `num_ties` rounds, the one
    with the better mean continues. Survivors are scored on every resample.

    Returns:
        TuneResults with method='race' and the elimination log in `race_log`
    """
    if control is None:
        control = RaceControl()
    elif not isinstance(control, RaceControl):
        # plain tuning control: keep its settings, race with the default rules
        control = RaceControl(**asdict(control))
    metrics, grid_table = prepare_tuning(workflow, resamples, grid, metrics, control, seed, ranges)
    primary = metrics.primary

    folds = list(resamples.folds)
    if len(folds) < control.burn_in:
        raise ValueError(f"Racing needs at least burn_in={control.burn_in} resamples, got {len(folds)}")
    if control.randomize:
        order = np.random.default_rng(seed).permutation(len(folds))
        folds = [folds[i] for i in order]

    points = dict(grid_points(grid_table, workflow.param_ids))
    active = list(points)

    if control.verbose:
        print(f"Racing '{workflow.id}': {len(active)} configs x {len(folds)} resamples "
              f"(burn-in {control.burn_in}, alpha {control.alpha})...")

    metric_frames, pred_frames, notes, log_frames = [], [], [], []

    def evaluate(configs, fold_slice):
        units = [(c, points[c], f) for c in configs for f in fold_slice]
        fm, pr, nt, failed = run_units(workflow, resamples, units, metrics, control, seed)
        metric_frames.append(fm)
        if pr is not None:
            pred_frames.append(pr)
        notes.extend(nt)
        return failed

    failed = evaluate(active, folds[:control.burn_in])
    active = [c for c in active if c not in failed]
    if not active:
        raise RuntimeError(f"All grid points failed for workflow '{workflow.id}':\n  - " + "\n  - ".join(notes))

    ties = 0
    for i in range(control.burn_in, len(folds) + 1):
        if len(active) > 1:
            done = {f.id for f in folds[:i]}
            current = pd.concat(metric_frames, ignore_index=True)
            current = current[(current['metric'] == primary.name)
                              & current['config'].isin(active)
                              & current['fold'].isin(done)]
            decision = anova_filter(current, primary.direction, control.alpha)

            if len(active) == 2 and not (decision['status'] == 'eliminated').any():
                ties += 1
                if ties >= control.num_ties:
                    decision.loc[decision['status'] == 'kept', 'status'] = 'eliminated_tie'
            else:
                ties = 0

            decision.insert(0, 'resamples', i)
            log_frames.append(decision)
            dropped = decision.loc[decision['status'].str.startswith('eliminated'), 'config'].tolist()
            active = [c for c in active if c not in dropped]

            if control.verbose_elim:
                print(f"  after {i} resamples: {len(dropped)} eliminated, {len(active)} remaining")

        if i == len(folds):
            break
        failed = evaluate(active, [folds[i]])
        active = [c for c in active if c not in failed]
        if not active:
            raise RuntimeError(f"All grid points failed for workflow '{workflow.id}'")

    fold_metrics = pd.concat(metric_frames, ignore_index=True)
    fold_metrics = sort_fold_metrics(fold_metrics, resamples.ids, metrics.names)
    # a config that failed after burn-in has partial results; drop it
    failed_configs = {n.split('/', 1)[0] for n in notes}
    fold_metrics = fold_metrics[~fold_metrics['config'].isin(failed_configs)].reset_index(drop=True)

    predictions = pd.concat(pred_frames, ignore_index=True) if pred_frames else None
    race_log = (pd.concat(log_frames, ignore_index=True) if log_frames
                else pd.DataFrame(columns=['resamples', 'config', 'mean', 'shortfall',
                                           'lower_bound', 'p_value', 'status']))

    return TuneResults(
        workflow_id=workflow.id,
        method='race',
        grid=grid_table,
        fold_metrics=fold_metrics,
        metrics=metrics,
        resample_ids=resamples.ids,
        param_ids=list(workflow.param_ids),
        predictions=predictions,
        race_log=race_log,
        notes=notes,
    )
