# Analysis and Interpretability Module
# Explanations and plots for tuned and finalized workflows

from .interpretability import (
    compute_permutation_importance,
    compute_shap_values,
    workflow_permutation_importance,
    workflow_shap_importance,
    workflow_local_explanations,
    plot_feature_importance,
    get_local_explanations
)

from .plots import (
    plot_tuning_results,
    plot_workflow_ranks,
    plot_race
)

__all__ = [
    'compute_permutation_importance',
    'compute_shap_values',
    'workflow_permutation_importance',
    'workflow_shap_importance',
    'workflow_local_explanations',
    'plot_feature_importance',
    'get_local_explanations',
    'plot_tuning_results',
    'plot_workflow_ranks',
    'plot_race',
]
