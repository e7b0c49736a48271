# Model specifications
# Algorithm identity + fixed hyperparameters + tuning placeholders

import copy
import warnings

import numpy as np
from sklearn.base import clone, is_classifier, is_regressor
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.linear_model import ElasticNet, Lasso, LinearRegression, LogisticRegression, Ridge
from sklearn.naive_bayes import GaussianNB
from sklearn.neighbors import KNeighborsClassifier, KNeighborsRegressor
from sklearn.svm import SVC, SVR
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor

from .grids import Range, Choice
from .tunable import is_tune, from_config_value

try:
    from xgboost import XGBClassifier, XGBRegressor
    HAS_XGBOOST = True
except ImportError:
    XGBClassifier = None
    XGBRegressor = None
    HAS_XGBOOST = False

try:
    from lightgbm import LGBMClassifier, LGBMRegressor
    HAS_LIGHTGBM = True
except ImportError:
    LGBMClassifier = None
    LGBMRegressor = None
    HAS_LIGHTGBM = False


SUPPORTED_MODELS = {
    'regression': [
        'linear_regression', 'ridge', 'lasso', 'elastic_net', 'knn_reg', 'decision_tree_reg',
        'random_forest_reg', 'svm_reg', 'xgboost_reg', 'lightgbm_reg'
    ],
    'classification': [
        'logistic_regression', 'naive_bayes', 'knn', 'decision_tree', 'random_forest',
        'svm', 'xgboost_clf', 'lightgbm_clf'
    ]
}

# Models that accept a random_state
MODELS_WITH_RANDOM_STATE = [
    'decision_tree_reg', 'random_forest_reg', 'xgboost_reg', 'lightgbm_reg',
    'logistic_regression', 'decision_tree', 'random_forest', 'svm', 'xgboost_clf', 'lightgbm_clf'
]

# Default search domains used when a grid size (not explicit values) is requested
DEFAULT_RANGES = {
    'C': Range(1e-4, 1e2, log=True),
    'alpha': Range(1e-4, 1e1, log=True),
    'l1_ratio': Range(0.0, 1.0),
    'n_neighbors': Range(1, 15, integer=True),
    'weights': Choice(['uniform', 'distance']),
    'max_depth': Range(1, 15, integer=True),
    'min_samples_split': Range(2, 40, integer=True),
    'min_samples_leaf': Range(1, 20, integer=True),
    'ccp_alpha': Range(1e-6, 1e-1, log=True),
    'max_features': Range(0.1, 1.0),
    'n_estimators': Range(50, 1000, integer=True),
    'gamma': Range(1e-4, 1e1, log=True),
    'learning_rate': Range(1e-3, 0.3, log=True),
    'min_child_weight': Range(1, 40, integer=True),
    'subsample': Range(0.1, 1.0),
    'colsample_bytree': Range(0.1, 1.0),
    'reg_lambda': Range(1e-6, 1e1, log=True),
    'num_leaves': Range(8, 128, integer=True),
    'min_child_samples': Range(2, 40, integer=True),
    'var_smoothing': Range(1e-12, 1e-3, log=True),
    'num_comp': Range(1, 10, integer=True),
    'threshold': Range(0.0, 0.1),
}


def _factory(algorithm):
    if algorithm == 'linear_regression':
        return LinearRegression
    elif algorithm == 'ridge':
        return Ridge
    elif algorithm == 'lasso':
        return Lasso
    elif algorithm == 'elastic_net':
        return ElasticNet
    elif algorithm == 'knn_reg':
        return KNeighborsRegressor
    elif algorithm == 'decision_tree_reg':
        return DecisionTreeRegressor
    elif algorithm == 'random_forest_reg':
        return RandomForestRegressor
    elif algorithm == 'svm_reg':
        return SVR
    elif algorithm == 'xgboost_reg':
        if not HAS_XGBOOST:
            raise ImportError("XGBoost not installed. Run: pip install xgboost")
        return XGBRegressor
    elif algorithm == 'lightgbm_reg':
        if not HAS_LIGHTGBM:
            raise ImportError("LightGBM not installed. Run: pip install lightgbm")
        return LGBMRegressor
    elif algorithm == 'logistic_regression':
        return LogisticRegression
    elif algorithm == 'naive_bayes':
        return GaussianNB
    elif algorithm == 'knn':
        return KNeighborsClassifier
    elif algorithm == 'decision_tree':
        return DecisionTreeClassifier
    elif algorithm == 'random_forest':
        return RandomForestClassifier
    elif algorithm == 'svm':
        return SVC
    elif algorithm == 'xgboost_clf':
        if not HAS_XGBOOST:
            raise ImportError("XGBoost not installed. Run: pip install xgboost")
        return XGBClassifier
    elif algorithm == 'lightgbm_clf':
        if not HAS_LIGHTGBM:
            raise ImportError("LightGBM not installed. Run: pip install lightgbm")
        return LGBMClassifier
    else:
        raise ValueError(
            f"Unknown model type: '{algorithm}'. "
            f"Supported: {SUPPORTED_MODELS}"
        )


def _engine_defaults(algorithm):
    """Quiet, reproducible defaults for specific engines."""
    if algorithm in ('xgboost_reg', 'xgboost_clf'):
        return {'verbosity': 0}
    if algorithm in ('lightgbm_reg', 'lightgbm_clf'):
        return {'verbose': -1}
    if algorithm == 'svm':
        return {'probability': True}
    if algorithm == 'logistic_regression':
        return {'max_iter': 1000}
    return {}


class ModelSpec:
    """
    A learning-algorithm configuration.

    Args:
        algorithm: Name from SUPPORTED_MODELS, or 'custom' with `estimator`
        params: Hyperparameters; values may be tune() placeholders
        mode: 'classification' or 'regression' (inferred when omitted)
        estimator: An unfitted sklearn-compatible estimator for 'custom'
    """

    def __init__(self, algorithm, params=None, mode=None, estimator=None):
        self.algorithm = algorithm
        self.params = dict(params or {})
        self.estimator = estimator

        if estimator is not None:
            self.algorithm = 'custom' if algorithm is None else algorithm
            if mode is None:
                if is_classifier(estimator):
                    mode = 'classification'
                elif is_regressor(estimator):
                    mode = 'regression'
                else:
                    raise ValueError("Cannot infer mode of custom estimator; pass mode=")
        else:
            registry_mode = next((m for m, names in SUPPORTED_MODELS.items() if algorithm in names), None)
            if registry_mode is None:
                raise ValueError(f"Unknown model type: '{algorithm}'. Supported: {SUPPORTED_MODELS}")
            if mode is not None and mode != registry_mode:
                raise ValueError(f"Model '{algorithm}' is a {registry_mode} model, not {mode}")
            mode = registry_mode

        if mode not in ('classification', 'regression'):
            raise ValueError(f"Invalid mode '{mode}'")
        self.mode = mode

    @classmethod
    def custom(cls, estimator, params=None, mode=None):
        return cls(None, params=params, mode=mode, estimator=estimator)

    @classmethod
    def from_config(cls, model_config):
        params = {k: from_config_value(v) for k, v in (model_config.get('params') or {}).items()}
        return cls(model_config['type'], params=params, mode=model_config.get('mode'))

    def tunable(self):
        """Map parameter id -> argument name for every placeholder."""
        return {(v.id or k): k for k, v in self.params.items() if is_tune(v)}

    def finalize(self, params):
        spec = copy.copy(self)
        spec.params = dict(self.params)
        for param_id, name in self.tunable().items():
            if param_id not in params:
                raise ValueError(f"No value given for model parameter '{param_id}'")
            value = params[param_id]
            spec.params[name] = value.item() if isinstance(value, np.generic) else value
        return spec

    def build(self, params=None, seed=None):
        """
        Build a fresh, unfitted estimator.

        Note: deterministic solvers (ridge, lasso, ...) ignore the seed.
        """
        spec = self.finalize(params or {}) if self.tunable() else self
        unresolved = spec.tunable()
        if unresolved:
            raise ValueError(f"Model has untuned parameters: {list(unresolved)}")

        if spec.estimator is not None:
            estimator = clone(spec.estimator)
            if spec.params:
                estimator.set_params(**spec.params)
            if seed is not None and 'random_state' in estimator.get_params() and 'random_state' not in spec.params:
                estimator.set_params(random_state=seed)
            return estimator

        kwargs = _engine_defaults(spec.algorithm)
        kwargs.update(spec.params)
        if spec.algorithm in MODELS_WITH_RANDOM_STATE and seed is not None:
            kwargs.setdefault('random_state', seed)
        return _factory(spec.algorithm)(**kwargs)

    def supports_proba(self):
        if self.mode != 'classification':
            return False
        if self.estimator is not None:
            return hasattr(self.estimator, 'predict_proba')
        if self.algorithm == 'svm':
            return bool(self.params.get('probability', True))
        return True

    def __repr__(self):
        return f"ModelSpec({self.algorithm!r}, mode={self.mode!r}, params={self.params!r})"


def default_range(name):
    if name not in DEFAULT_RANGES:
        raise ValueError(
            f"No default range for parameter '{name}'. "
            f"Give explicit values or a range for it."
        )
    return DEFAULT_RANGES[name]


def check_engines(algorithms):
    """Warn about optional engines that are not installed."""
    missing = []
    for algorithm in algorithms:
        if algorithm.startswith('xgboost') and not HAS_XGBOOST:
            missing.append(algorithm)
        if algorithm.startswith('lightgbm') and not HAS_LIGHTGBM:
            missing.append(algorithm)
    if missing:
        warnings.warn(f"Optional engines not installed for: {missing}")
    return missing
