# Interpretability Module
# Global and local explanations for finalized workflows
# Uses SHAP and permutation importance on the baked training matrix

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from typing import Dict, List, Optional, Tuple
from sklearn.inspection import permutation_importance
from sklearn.base import BaseEstimator
import warnings

# Optional SHAP import
try:
    import shap
    HAS_SHAP = True
except ImportError:
    HAS_SHAP = False
    warnings.warn("SHAP not installed. Run: pip install shap")


TREE_ALGORITHMS = [
    'decision_tree', 'decision_tree_reg', 'random_forest', 'random_forest_reg',
    'xgboost_clf', 'xgboost_reg', 'lightgbm_clf', 'lightgbm_reg',
]

LINEAR_ALGORITHMS = ['linear_regression', 'ridge', 'lasso', 'elastic_net', 'logistic_regression']

DEFAULT_SCORING = {
    'regression': 'neg_root_mean_squared_error',
    'classification': 'accuracy',
}


# =============================================================================
# PERMUTATION IMPORTANCE
# =============================================================================

def compute_permutation_importance(
    model: BaseEstimator,
    X: np.ndarray,
    y: np.ndarray,
    feature_names: List[str],
    n_repeats: int = 10,
    scoring: str = 'neg_root_mean_squared_error',
    random_state: int = 42,
    n_jobs: int = 1
) -> pd.DataFrame:
    """
    Compute permutation importance for any sklearn-compatible model.

    Args:
        model: Trained model with predict method
        X: Feature matrix
        y: Target values
        feature_names: List of feature names
        n_repeats: Number of permutation repeats
        scoring: Scoring metric
        random_state: Random seed
        n_jobs: Parallel workers for the permutations

    Returns:
        DataFrame with feature importance statistics
    """
    result = permutation_importance(
        model, X, y,
        n_repeats=n_repeats,
        random_state=random_state,
        scoring=scoring,
        n_jobs=n_jobs
    )

    importance_df = pd.DataFrame({
        'feature': feature_names,
        'importance_mean': result.importances_mean,
        'importance_std': result.importances_std,
        'importance_min': result.importances.min(axis=1),
        'importance_max': result.importances.max(axis=1)
    })

    # Sort by mean importance (descending for negative metrics)
    importance_df = importance_df.sort_values(
        'importance_mean',
        ascending=False
    ).reset_index(drop=True)

    return importance_df


def _training_matrix(fitted, training):
    """Baked predictors and the outcome encoded the way the estimator saw it."""
    X = fitted._matrix(training)
    y = training[fitted.outcome]
    if fitted.mode == 'classification':
        y = pd.Categorical(y, categories=fitted.classes_).codes
    else:
        y = y.to_numpy(dtype=float)
    return X, y


def workflow_permutation_importance(fitted, training, n_repeats=10, scoring=None, random_state=42):
    """
    Permutation importance of a FittedWorkflow's estimator.

    Features are the columns the estimator receives after the recipe is
    applied (dummy columns, principal components, ...), not the raw columns.
    """
    X, y = _training_matrix(fitted, training)
    return compute_permutation_importance(
        fitted.estimator, X, y, fitted.feature_names,
        n_repeats=n_repeats,
        scoring=scoring or DEFAULT_SCORING[fitted.mode],
        random_state=random_state
    )


# =============================================================================
# SHAP VALUES
# =============================================================================

def compute_shap_values(
    model,
    X: np.ndarray,
    feature_names: List[str],
    model_type: str = 'tree',
    background_samples: int = 100,
    max_samples: int = 500,
    random_state: int = 42,
    predict_fn=None,
    background: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, 'shap.Explainer']:
    """
    Compute SHAP values for model interpretability.

    Args:
        model: Trained model
        X: Feature matrix
        feature_names: List of feature names
        model_type: 'tree' for tree-based, 'linear' for linear, 'kernel' for others
        background_samples: Number of background samples for KernelSHAP
        max_samples: Max samples to explain
        random_state: Random seed
        predict_fn: Function explained by KernelSHAP (default: model.predict)
        background: Reference rows for the linear and kernel explainers
            (default: rows of X)

    Returns:
        shap_values: SHAP values for the explained rows
        explainer: SHAP explainer object
    """
    if not HAS_SHAP:
        raise ImportError("SHAP not installed. Run: pip install shap")

    rng = np.random.RandomState(random_state)

    # Subsample if needed
    if len(X) > max_samples:
        idx = rng.choice(len(X), max_samples, replace=False)
        X_explain = X[idx]
    else:
        X_explain = X

    reference = X if background is None else background

    if model_type == 'tree':
        explainer = shap.TreeExplainer(model)
        shap_values = explainer.shap_values(X_explain)
    elif model_type == 'linear':
        explainer = shap.LinearExplainer(model, reference[:background_samples])
        shap_values = explainer.shap_values(X_explain)
    else:
        if len(reference) > background_samples:
            background_idx = rng.choice(len(reference), background_samples, replace=False)
            background = reference[background_idx]
        else:
            background = reference

        explainer = shap.KernelExplainer(predict_fn or model.predict, background)
        shap_values = explainer.shap_values(X_explain, nsamples=100)

    return shap_values, explainer


def _mean_abs_shap(shap_values, n_features):
    """Mean |SHAP| per feature, averaged over rows and (for classifiers) outputs."""
    if isinstance(shap_values, list):
        values = np.stack([np.asarray(v) for v in shap_values], axis=-1)
    else:
        values = np.asarray(shap_values)
    if values.ndim == 2:
        values = values[:, :, None]
    if values.shape[1] != n_features:
        # some explainers put outputs before features
        values = np.moveaxis(values, -1, 1)
    per_row = np.abs(values).mean(axis=2)
    return per_row.mean(axis=0), per_row.std(axis=0)


def _explainer_kind(fitted):
    algorithm = fitted.workflow.model.algorithm
    if algorithm in TREE_ALGORITHMS:
        return 'tree'
    if algorithm in LINEAR_ALGORITHMS:
        return 'linear'
    return 'kernel'


def _predict_fn(fitted):
    return fitted.estimator.predict_proba if fitted.has_proba() else fitted.estimator.predict


def workflow_shap_importance(fitted, training, max_samples=500, random_state=42):
    """Global SHAP importance (mean |SHAP value|) of a FittedWorkflow."""
    X, _ = _training_matrix(fitted, training)
    shap_values, _ = compute_shap_values(
        fitted.estimator, X, fitted.feature_names,
        model_type=_explainer_kind(fitted),
        max_samples=max_samples,
        random_state=random_state,
        predict_fn=_predict_fn(fitted)
    )
    mean, std = _mean_abs_shap(shap_values, len(fitted.feature_names))
    importance_df = pd.DataFrame({
        'feature': fitted.feature_names,
        'importance_mean': mean,
        'importance_std': std,
    })
    return importance_df.sort_values('importance_mean', ascending=False).reset_index(drop=True)


def _single_output(shap_values, expected_value, n_features, output):
    """Rows x features SHAP matrix and base value for one model output."""
    if isinstance(shap_values, list):
        values = np.asarray(shap_values[output])
    else:
        values = np.asarray(shap_values)
        if values.ndim == 3:
            # (rows, features, outputs) or (rows, outputs, features)
            values = values[:, :, output] if values.shape[1] == n_features else values[:, output, :]

    base = np.atleast_1d(np.asarray(expected_value, dtype=float))
    base_value = float(base[output]) if base.size > 1 else float(base[0])
    return values, base_value


def workflow_local_explanations(fitted, data, rows, training, top_k=10, random_state=42):
    """
    Per-row SHAP explanations of a FittedWorkflow.

    `rows` are positions in `data`. Linear and kernel explainers use the baked
    `training` rows as reference data. For classifiers the explained output
    is the probability (or margin) of the last class level.
    """
    rows = list(rows)
    X = fitted._matrix(data.iloc[rows])
    X_train, _ = _training_matrix(fitted, training)

    shap_values, explainer = compute_shap_values(
        fitted.estimator, X, fitted.feature_names,
        model_type=_explainer_kind(fitted),
        max_samples=len(X),
        random_state=random_state,
        predict_fn=_predict_fn(fitted),
        background=X_train
    )
    values, base_value = _single_output(
        shap_values, explainer.expected_value, len(fitted.feature_names), output=-1
    )
    return get_local_explanations(
        values, X, fitted.feature_names, range(len(rows)),
        base_value=base_value, top_k=top_k, row_ids=rows
    )


# =============================================================================
# VISUALIZATION
# =============================================================================

def plot_feature_importance(
    importance_df: pd.DataFrame,
    top_n: int = 20,
    title: str = "Feature Importance",
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None,
    color: str = '#2E86AB'
) -> plt.Figure:
    """
    Plot feature importance bar chart.

    Args:
        importance_df: DataFrame with feature, importance_mean, importance_std
        top_n: Number of top features to show
        title: Plot title
        figsize: Figure size
        save_path: Path to save figure
        color: Bar color

    Returns:
        Figure object
    """
    df_plot = importance_df.head(top_n).copy()

    fig, ax = plt.subplots(figsize=figsize)

    y_pos = np.arange(len(df_plot))

    ax.barh(
        y_pos,
        df_plot['importance_mean'],
        xerr=df_plot['importance_std'],
        color=color,
        alpha=0.8,
        capsize=3
    )

    ax.set_yticks(y_pos)
    ax.set_yticklabels(df_plot['feature'])
    ax.invert_yaxis()
    ax.set_xlabel('Importance')
    ax.set_title(title)

    ax.grid(axis='x', alpha=0.3)
    ax.set_axisbelow(True)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    return fig


def get_local_explanations(
    shap_values: np.ndarray,
    X: np.ndarray,
    feature_names: List[str],
    sample_indices,
    base_value: float = 0.0,
    top_k: int = 10,
    row_ids: Optional[List] = None
) -> List[Dict]:
    """
    Rank each row's feature contributions by absolute SHAP value.

    Args:
        shap_values: SHAP matrix (rows x features) for a single output
        X: Feature matrix aligned with `shap_values`
        feature_names: Feature names
        sample_indices: Positions in `shap_values` to explain
        base_value: Explainer expected value
        top_k: Contributors reported per row
        row_ids: Labels reported as `sample_index` (default: the positions)

    Returns:
        One dict per row with prediction, base_value and top_contributors
    """
    sample_indices = list(sample_indices)
    labels = sample_indices if row_ids is None else list(row_ids)

    explanations = []
    for label, pos in zip(labels, sample_indices):
        contrib = np.asarray(shap_values[pos], dtype=float)
        ranked = np.argsort(-np.abs(contrib), kind='stable')[:top_k]
        explanations.append({
            'sample_index': label,
            'prediction': base_value + float(contrib.sum()),
            'base_value': base_value,
            'top_contributors': [
                {
                    'feature': feature_names[j],
                    'value': float(X[pos][j]),
                    'shap_value': float(contrib[j]),
                    'direction': 'positive' if contrib[j] > 0 else 'negative',
                }
                for j in ranked
            ],
        })

    return explanations
