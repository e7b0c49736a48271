# I/O utilities for the study pipeline
# Config loading, result saving, run directory management

import os
import json
import hashlib
from datetime import datetime

import numpy as np
import yaml
import pandas as pd


def load_config(config_path):
    """Load YAML configuration file."""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    if config is None:
        raise ValueError(f"Config file is empty or invalid: {config_path}")

    return config


def config_hash(config):
    """Generate deterministic hash of config for run naming."""
    config_str = json.dumps(config, sort_keys=True, default=str)
    return hashlib.md5(config_str.encode()).hexdigest()[:8]


def dataset_hash(df):
    """Generate hash of dataset content for fingerprinting."""
    # Hash based on shape and sample of data
    content = f"{df.shape}_{df.columns.tolist()}_{df.head(10).to_json()}_{df.tail(10).to_json()}"
    return hashlib.md5(content.encode()).hexdigest()[:12]


def create_run_dir(config, output_dir=None):
    """Create unique run directory for study outputs."""
    output_dir = output_dir or config['experiment'].get('output_dir', 'runs')
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    cfg_hash = config_hash(config)
    run_name = f"{config['experiment']['name']}_{timestamp}_{cfg_hash}"
    run_dir = os.path.join(output_dir, run_name)
    os.makedirs(run_dir, exist_ok=True)
    return run_dir


def _jsonable(value):
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, float) and not np.isfinite(value):
        return None
    return value


def save_results(run_dir, config, study):
    """
    Save all study artifacts to the run directory.

    Args:
        run_dir: Output directory
        config: Study config (saved as config.yaml)
        study: Dict produced by the study runner with keys
            workflow_set, rankings, selected_id, selected_params,
            final_fit, bundle, importance
    """
    from .bundle import save_bundle

    with open(os.path.join(run_dir, 'config.yaml'), 'w') as f:
        yaml.dump(config, f, default_flow_style=False)

    final_fit = study['final_fit']
    wset = study['workflow_set']

    results_json = {
        'experiment_name': config['experiment']['name'],
        'seed': config['experiment']['seed'],
        'outcome': config['data']['outcome'],
        'task': config['data']['task'],
        'candidates': wset.ids,
        'selected_workflow': study['selected_id'],
        'selected_params': {k: _jsonable(v) for k, v in study['selected_params'].items()},
        'selection_rule': config['selection'].get('rule', 'best'),
        'test_metrics': {k: _jsonable(v) for k, v in final_fit.scores.items()},
        'n_train': int(len(final_fit.split.train_idx)),
        'n_test': int(len(final_fit.split.test_idx)),
    }
    with open(os.path.join(run_dir, 'metrics.json'), 'w') as f:
        json.dump(results_json, f, indent=2)

    study['rankings'].to_csv(os.path.join(run_dir, 'rankings.csv'), index=False)

    tuning_frames = []
    race_frames = []
    for wflow_id, results in wset.results.items():
        summary = results.collect_metrics()
        summary.insert(0, 'wflow_id', wflow_id)
        tuning_frames.append(summary)
        if results.race_log is not None:
            race_frames.append(results.race_log.assign(wflow_id=wflow_id))
    pd.concat(tuning_frames, ignore_index=True).to_csv(os.path.join(run_dir, 'tuning_metrics.csv'), index=False)
    if race_frames:
        pd.concat(race_frames, ignore_index=True).to_csv(os.path.join(run_dir, 'race_log.csv'), index=False)

    final_fit.collect_predictions().to_csv(os.path.join(run_dir, 'predictions.csv'), index=False)

    if study.get('importance') is not None:
        study['importance'].to_csv(os.path.join(run_dir, 'feature_importance.csv'), index=False)

    model_path = save_bundle(study['bundle'], os.path.join(run_dir, 'model.joblib'))
    print(f"Model saved to: {model_path}")

    if config.get('metrics', {}).get('save_plots', True):
        _save_plots(run_dir, study)

    print(f"Results saved to: {run_dir}")
    return run_dir


def _save_plots(run_dir, study):
    """Save ranking, tuning and importance plots."""
    import matplotlib
    matplotlib.use('Agg')
    import matplotlib.pyplot as plt
    from analysis.plots import plot_workflow_ranks, plot_tuning_results, plot_race
    from analysis.interpretability import plot_feature_importance

    fig = plot_workflow_ranks(study['rankings'], metric=study.get('rank_metric'), save_path=os.path.join(run_dir, 'workflow_ranks.png'))
    plt.close(fig)

    results = study['workflow_set'].extract_result(study['selected_id'])
    if results.param_ids:
        fig = plot_tuning_results(results, save_path=os.path.join(run_dir, 'tuning_results.png'))
        plt.close(fig)
    if results.race_log is not None and not results.race_log.empty:
        fig = plot_race(results, save_path=os.path.join(run_dir, 'race_progress.png'))
        plt.close(fig)
    if study.get('importance') is not None:
        fig = plot_feature_importance(study['importance'],
                                      save_path=os.path.join(run_dir, 'feature_importance.png'))
        plt.close(fig)


def save_data_profile(run_dir, df, split, outcome, dataset_path):
    """Save dataset fingerprint/profile for reproducibility tracking."""
    y = df[outcome]
    numeric = pd.api.types.is_numeric_dtype(y)
    profile = {
        'dataset_path': str(dataset_path) if dataset_path else 'in_memory',
        'dataset_hash': dataset_hash(df),
        'total_rows': len(df),
        'total_columns': len(df.columns),
        'feature_count': len(df.columns) - 1,
        'features_used': [c for c in df.columns if c != outcome],
        'outcome': outcome,
        'outcome_stats': {
            'mean': float(y.mean()) if numeric else None,
            'std': float(y.std()) if numeric else None,
            'min': float(y.min()) if numeric else None,
            'max': float(y.max()) if numeric else None,
            'unique_values': int(y.nunique()),
            'value_counts': {str(k): int(v) for k, v in y.value_counts().items()} if y.nunique() <= 10 else None
        },
        'n_train': int(len(split.train_idx)),
        'n_test': int(len(split.test_idx)),
        'missing_values': int(df.isnull().sum().sum()),
        'timestamp': datetime.now().isoformat()
    }

    with open(os.path.join(run_dir, 'data_profile.json'), 'w') as f:
        json.dump(profile, f, indent=2)

    return profile
