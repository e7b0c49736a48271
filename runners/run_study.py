# Study runner
# Config-driven screening study: split, tune candidates, rank, select, finalize

import argparse
import random
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np

from screening.config_schema import validate_config, ConfigValidationError
from screening.io import load_config, save_results, create_run_dir, save_data_profile
from screening.data import load_dataset, prepare_data, validate_data_integrity
from screening.splits import initial_split, make_resamples
from screening.recipes import Recipe
from screening.models import ModelSpec, check_engines
from screening.grids import Range
from screening.metrics import DEFAULT_METRICS, metric_set
from screening.tuning import TuneControl
from screening.racing import RaceControl
from screening.candidates import workflow_set
from screening.selection import select_best, select_by_one_std_err, select_by_pct_loss
from screening.evaluate import last_fit
from screening.bundle import bundle_model

TUNING_FUNCTIONS = {
    'grid': 'tune_grid',
    'race': 'tune_race_anova',
    'resamples': 'fit_resamples',
}


def set_seeds(seed):
    """Set all random seeds for reproducibility."""
    random.seed(seed)
    np.random.seed(seed)


def parse_ranges(ranges_cfg):
    """
    Convert YAML parameter ranges into grid domains.

    `{low, high, log, integer}` mappings become Range; lists are taken as the
    explicit set of values.
    """
    domains = {}
    for name, spec in (ranges_cfg or {}).items():
        if isinstance(spec, dict):
            domains[name] = Range(
                spec['low'], spec['high'],
                log=spec.get('log', False),
                integer=spec.get('integer', False)
            )
        elif isinstance(spec, (list, tuple)):
            domains[name] = list(spec)
        else:
            raise ConfigValidationError(f"Invalid range for '{name}': {spec!r}")
    return domains


def build_candidates(config):
    """Recipes x models from the config, as a WorkflowSet."""
    outcome = config['data']['outcome']
    recipes = {
        name: Recipe.from_config(outcome, steps)
        for name, steps in config['recipes'].items()
    }
    models = {
        name: ModelSpec.from_config(model_cfg)
        for name, model_cfg in config['models'].items()
    }
    check_engines([m.algorithm for m in models.values()])

    cross = (config.get('workflow_set') or {}).get('cross', True)
    wset = workflow_set(recipes, models, cross=cross)

    tuning = config['tuning']
    ranges = parse_ranges(tuning.get('ranges'))
    if ranges:
        wset.option_add(ranges=ranges)
    for wflow_id, options in (tuning.get('options') or {}).items():
        options = dict(options)
        if 'ranges' in options:
            options['ranges'] = {**ranges, **parse_ranges(options['ranges'])}
        wset.option_add(id=wflow_id, **options)
    return wset


def build_control(config):
    """TuneControl (or RaceControl) from the tuning section."""
    tuning = config['tuning']
    common = {
        'n_jobs': tuning.get('n_jobs', 1),
        'verbose': tuning.get('verbose', False),
        'save_pred': tuning.get('save_pred', False),
        'on_error': tuning.get('on_error', 'raise'),
        'grid_type': tuning.get('grid_type', 'latin_hypercube'),
        'levels': tuning.get('levels', 3),
    }
    if tuning['method'] == 'race':
        return RaceControl(
            burn_in=tuning.get('burn_in', 3),
            alpha=tuning.get('alpha', 0.05),
            num_ties=tuning.get('num_ties', 10),
            randomize=tuning.get('randomize', True),
            verbose_elim=tuning.get('verbose_elim', False),
            **common
        )
    return TuneControl(**common)


def select_params(results, selection, metric):
    """Apply the configured selection rule to one workflow's results."""
    rule = selection.get('rule', 'best')
    if rule == 'best' or not results.param_ids:
        return select_best(results, metric=metric)
    if rule == 'one_std_err':
        return select_by_one_std_err(results, selection['order'], metric=metric)
    if rule == 'pct_loss':
        return select_by_pct_loss(results, selection['order'], metric=metric,
                                  limit=selection.get('limit', 2))
    raise ConfigValidationError(f"Unknown selection rule '{rule}'")


def run_study(config_path, dataset_path=None, output_dir=None):
    """
    Run a full screening study.

    Args:
        config_path: Path to YAML config file
        dataset_path: Optional path to dataset CSV (overrides config)
        output_dir: Optional output directory (overrides config)

    Returns:
        run_dir: Path to study output directory
    """
    config = load_config(config_path)

    if output_dir:
        config['experiment']['output_dir'] = output_dir

    try:
        validate_config(config)
    except ConfigValidationError as e:
        print(f"\nCONFIG ERROR:\n{e}")
        raise

    seed = config['experiment']['seed']
    set_seeds(seed)

    outcome = config['data']['outcome']
    task = config['data']['task']
    tuning = config['tuning']
    selection = config['selection']
    metric_names = tuning.get('metrics') or DEFAULT_METRICS[task]
    rank_metric = selection.get('metric') or metric_names[0]
    metrics = metric_set(metric_names, event_level=tuning.get('event_level', 'second'))

    print("=" * 60)
    print("SCREENING STUDY")
    print("=" * 60)
    print(f"Study: {config['experiment']['name']}")
    print(f"Outcome: {outcome} ({task})")
    print(f"Seed: {seed}")
    print("=" * 60)

    # Load data
    df, actual_path = load_dataset(config, dataset_path)
    df = prepare_data(df, config)
    validate_data_integrity(df, outcome, task)

    print(f"\nDataset shape: {df.shape}")
    if task == 'regression':
        y = df[outcome]
        print(f"Outcome stats: mean={y.mean():.4f}, std={y.std():.4f}, min={y.min():.4f}, max={y.max():.4f}")
    else:
        print(f"Class distribution: {df[outcome].value_counts().to_dict()}")

    # Split once; the test rows stay untouched until last_fit
    split_cfg = config.get('split') or {}
    strata = split_cfg.get('strata', outcome if split_cfg.get('stratify', True) else None)
    split = initial_split(df, outcome, prop=split_cfg.get('prop', 0.75), strata=strata, seed=seed)
    training = split.training()
    resamples = make_resamples(training, config, outcome=outcome, seed=seed)
    print(f"Split: {len(split.train_idx)} training / {len(split.test_idx)} testing rows")
    print(f"Resamples: {len(resamples)} ({resamples.method})")

    # Candidates
    wset = build_candidates(config)
    print(f"\nCandidates ({len(wset)}): {', '.join(wset.ids)}")

    control = build_control(config)
    fn = TUNING_FUNCTIONS[tuning['method']]
    print(f"Tuning: {fn} with metrics {metric_names}")
    wset.workflow_map(
        fn=fn,
        resamples=resamples,
        grid=tuning.get('grid', 10),
        metrics=metrics,
        control=control,
        seed=seed,
        verbose=True
    )

    rankings = wset.rank_results(rank_metric=rank_metric)
    best_per_workflow = wset.rank_results(rank_metric=rank_metric, select_best=True)
    top = best_per_workflow[best_per_workflow['metric'] == rank_metric]

    print("\n" + "=" * 60)
    print(f"CANDIDATE RANKING ({rank_metric}, resampled)")
    print("=" * 60)
    for _, row in top.iterrows():
        print(f"{row['rank']:3d}. {row['wflow_id']:30s} {row['config']:10s} "
              f"{row['mean']:.4f} ± {row['std_err']:.4f}")

    # Select and finalize
    selected_id = top.iloc[0]['wflow_id']
    results = wset.extract_result(selected_id)
    selected = select_params(results, selection, rank_metric)
    params = {k: v for k, v in selected.items() if k != 'config'}
    final_workflow = wset.extract_workflow(selected_id).finalize(params)

    print(f"\nSelected: {selected_id} {selected['config']} "
          f"({selection.get('rule', 'best')}) {params}")

    # The only read of the test rows
    final_fit = last_fit(final_workflow, split, metrics=metrics, seed=seed)

    print("\n" + "=" * 60)
    print("TEST SET RESULTS (last fit)")
    print("=" * 60)
    for name, value in final_fit.scores.items():
        print(f"{name:12s} {value:.4f}")

    importance = None
    importance_method = (config.get('final') or {}).get('importance', 'none')
    if importance_method not in (None, 'none'):
        importance = final_fit.feature_importance(method=importance_method, seed=seed)
        print(f"\nTop features ({importance_method}):")
        for _, row in importance.head(10).iterrows():
            print(f"  {row['feature']:30s} {row['importance_mean']:.4f}")

    bundle = bundle_model(final_fit, name=config['experiment']['name'],
                          metadata={'selection_rule': selection.get('rule', 'best'),
                                    'test_metrics': final_fit.scores})

    run_dir = create_run_dir(config)
    save_data_profile(run_dir, df, split, outcome, actual_path)
    save_results(run_dir, config, {
        'workflow_set': wset,
        'rankings': rankings,
        'rank_metric': rank_metric,
        'selected_id': selected_id,
        'selected_params': params,
        'final_fit': final_fit,
        'bundle': bundle,
        'importance': importance,
    })

    print("\n" + "=" * 60)
    print("Screening study complete!")
    print("=" * 60)

    return run_dir


def main():
    parser = argparse.ArgumentParser(
        description='Run a screening study: tune candidate workflows and evaluate the chosen one once on the test set'
    )
    parser.add_argument('--config', '-c', type=str, required=True,
                        help='Path to study config YAML file')
    parser.add_argument('--dataset', '-d', type=str, default=None,
                        help='Path to dataset CSV (overrides config data.source)')
    parser.add_argument('--output-dir', '-o', type=str, default=None,
                        help='Output directory (overrides config experiment.output_dir)')
    args = parser.parse_args()

    run_study(args.config, args.dataset, args.output_dir)


if __name__ == "__main__":
    main()
