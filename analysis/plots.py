# Study Plots
# Visual summaries of tuning, racing and candidate rankings

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from typing import Optional, Tuple


def plot_tuning_results(
    results,
    metric: Optional[str] = None,
    figsize: Tuple[int, int] = None,
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot mean resampled metric against each tuning parameter.

    One panel per parameter; error bars are one standard error.

    Args:
        results: TuneResults
        metric: Metric to show (default: primary)
        figsize: Figure size
        save_path: Path to save figure

    Returns:
        Figure object
    """
    metric = metric or results.metrics.primary.name
    summary = results.collect_metrics()
    summary = summary[summary['metric'] == metric]
    params = results.param_ids or ['config']

    n = len(params)
    fig, axes = plt.subplots(1, n, figsize=figsize or (5 * n, 4), sharey=True)
    if n == 1:
        axes = [axes]

    for ax, param in zip(axes, params):
        x = summary[param]
        if not pd.api.types.is_numeric_dtype(x):
            x = x.astype(str)
        ax.errorbar(x, summary['mean'], yerr=summary['std_err'].fillna(0),
                    fmt='o', color='#2E86AB', alpha=0.8, capsize=3)
        ax.set_xlabel(param)
        ax.grid(alpha=0.3)
    axes[0].set_ylabel(metric)

    plt.suptitle(f"{results.workflow_id}: {metric} by tuning parameter", fontsize=12, y=1.02)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    return fig


def plot_workflow_ranks(
    rankings: pd.DataFrame,
    metric: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot ranked (workflow, config) means with one-standard-error bars.

    Args:
        rankings: Output of rank_results()
        metric: Metric to plot (default: first metric in the table)
        figsize: Figure size
        save_path: Path to save figure
    """
    if metric is None:
        metric = rankings['metric'].iloc[0]
    df_plot = rankings[rankings['metric'] == metric].sort_values('rank')

    fig, ax = plt.subplots(figsize=figsize)
    colors = ['#2E86AB', '#A23B72', '#F18F01', '#C73E1D']
    ids = list(dict.fromkeys(df_plot['wflow_id']))

    for i, wflow_id in enumerate(ids):
        sub = df_plot[df_plot['wflow_id'] == wflow_id]
        ax.errorbar(sub['rank'], sub['mean'], yerr=sub['std_err'].fillna(0),
                    fmt='o', color=colors[i % len(colors)], label=wflow_id, capsize=2, alpha=0.8)

    ax.set_xlabel('Rank')
    ax.set_ylabel(metric)
    ax.set_title(f'Candidate workflows ranked by {metric}')
    ax.legend(fontsize=8)
    ax.grid(alpha=0.3)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    return fig


def plot_race(
    results,
    figsize: Tuple[int, int] = (10, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """Number of grid points still racing after each resample."""
    log = results.race_log
    remaining = []
    n_configs = len(results.grid)
    for n_resamples, step in log.groupby('resamples', sort=True):
        dropped = step['status'].str.startswith('eliminated').sum()
        remaining.append((n_resamples, len(step) - dropped))

    fig, ax = plt.subplots(figsize=figsize)
    if remaining:
        x, y = zip(*remaining)
        ax.step([0] + list(x), [n_configs] + list(y), where='post', color='#A23B72')
    ax.set_xlabel('Resamples evaluated')
    ax.set_ylabel('Grid points remaining')
    ax.set_yticks(np.arange(0, n_configs + 1, max(1, n_configs // 10)))
    ax.set_title(f'{results.workflow_id}: racing progress')
    ax.grid(alpha=0.3)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    return fig
