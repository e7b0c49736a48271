# Config schema validation
# Validates study config structure, types, and forbidden keys

from .metrics import EVENT_LEVELS, METRICS
from .models import SUPPORTED_MODELS
from .recipes import STEP_KINDS

REQUIRED_KEYS = {
    'experiment': ['name', 'seed'],
    'data': ['outcome', 'task'],
    'resampling': ['method'],
    'recipes': [],
    'models': [],
    'tuning': ['method'],
    'selection': [],
}

ALLOWED_TASKS = ['regression', 'classification']

ALLOWED_MODEL_TYPES = SUPPORTED_MODELS['regression'] + SUPPORTED_MODELS['classification']

ALLOWED_RESAMPLING = ['vfold', 'bootstrap', 'validation']

ALLOWED_TUNING = ['grid', 'race', 'resamples']

ALLOWED_GRID_TYPES = ['regular', 'random', 'latin_hypercube']

ALLOWED_SELECTION_RULES = ['best', 'one_std_err', 'pct_loss']

ALLOWED_IMPORTANCE = ['none', 'permutation', 'shap', None]

# Keys for options that would let test rows influence tuning or preprocessing
FORBIDDEN_KEYS = [
    'tune_on_test',
    'select_on_test',
    'prep_on_full_data',
    'evaluate_each_config_on_test',
]


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def validate_config(config):
    """
    Validate a study configuration.

    Args:
        config: dict - Configuration dictionary

    Raises:
        ConfigValidationError if validation fails
    """
    errors = []

    if not isinstance(config, dict):
        raise ConfigValidationError("Config validation failed:\n  - config must be a mapping")

    # Check required top-level keys
    for section, required_keys in REQUIRED_KEYS.items():
        if section not in config or config[section] is None:
            errors.append(f"Missing required section: '{section}'")
            continue
        for key in required_keys:
            if key not in config[section]:
                errors.append(f"Missing required key: '{section}.{key}'")

    if errors:
        raise ConfigValidationError("Config validation failed:\n  - " + "\n  - ".join(errors))

    task = config['data'].get('task')
    if task not in ALLOWED_TASKS:
        errors.append(f"Invalid task '{task}'. Allowed: {ALLOWED_TASKS}")

    # Models
    models = config['models']
    if not isinstance(models, dict) or not models:
        errors.append("'models' must map at least one model name to a model config")
    else:
        for name, model_cfg in models.items():
            if not isinstance(model_cfg, dict) or 'type' not in model_cfg:
                errors.append(f"Missing required key: 'models.{name}.type'")
                continue
            model_type = model_cfg['type']
            if model_type not in ALLOWED_MODEL_TYPES:
                errors.append(f"Invalid model type '{model_type}' for '{name}'. Allowed: {ALLOWED_MODEL_TYPES}")
            elif task in ALLOWED_TASKS and model_type not in SUPPORTED_MODELS[task]:
                errors.append(f"Model '{name}' ({model_type}) cannot be used for {task}")

    # Recipes
    recipes = config['recipes']
    if not isinstance(recipes, dict) or not recipes:
        errors.append("'recipes' must map at least one recipe name to a list of steps")
    else:
        for name, steps in recipes.items():
            for i, step in enumerate(steps or []):
                kind = step.get('step') if isinstance(step, dict) else None
                if kind not in STEP_KINDS:
                    errors.append(f"Invalid step at recipes.{name}[{i}]: '{kind}'. Allowed: {sorted(STEP_KINDS)}")

    # Pairing
    ws = config.get('workflow_set', {}) or {}
    if ws.get('cross') is False and isinstance(recipes, dict) and isinstance(models, dict):
        if len(recipes) != len(models):
            errors.append(
                f"workflow_set.cross=false needs equal numbers of recipes ({len(recipes)}) and models ({len(models)})"
            )

    # Resampling
    resampling = config['resampling']
    method = resampling.get('method')
    if method not in ALLOWED_RESAMPLING:
        errors.append(f"Invalid resampling method '{method}'. Allowed: {ALLOWED_RESAMPLING}")
    if method == 'vfold':
        v = resampling.get('v', 10)
        if not isinstance(v, int) or v < 2:
            errors.append("resampling.v must be an integer >= 2")
    if method == 'bootstrap':
        times = resampling.get('times', 25)
        if not isinstance(times, int) or times < 1:
            errors.append("resampling.times must be a positive integer")

    split = config.get('split', {}) or {}
    prop = split.get('prop', 0.75)
    if not isinstance(prop, (int, float)) or not 0 < prop < 1:
        errors.append("split.prop must be a number in (0, 1)")

    # Tuning
    tuning = config['tuning']
    tune_method = tuning.get('method')
    if tune_method not in ALLOWED_TUNING:
        errors.append(f"Invalid tuning method '{tune_method}'. Allowed: {ALLOWED_TUNING}")
    grid_type = tuning.get('grid_type', 'latin_hypercube')
    if grid_type not in ALLOWED_GRID_TYPES:
        errors.append(f"Invalid grid_type '{grid_type}'. Allowed: {ALLOWED_GRID_TYPES}")
    metric_names = tuning.get('metrics') or []
    unknown = [m for m in metric_names if m not in METRICS]
    if unknown:
        errors.append(f"Unknown metrics: {unknown}. Allowed: {sorted(METRICS)}")
    event_level = tuning.get('event_level', 'second')
    if event_level not in EVENT_LEVELS:
        errors.append(f"Invalid tuning.event_level '{event_level}'. Allowed: {EVENT_LEVELS}")
    if tune_method == 'race':
        if method == 'validation':
            errors.append("Racing needs several resamples; 'validation' gives only one")
        if tuning.get('burn_in', 3) < 2:
            errors.append("tuning.burn_in must be >= 2")

    # Selection
    selection = config['selection']
    rule = selection.get('rule', 'best')
    if rule not in ALLOWED_SELECTION_RULES:
        errors.append(f"Invalid selection rule '{rule}'. Allowed: {ALLOWED_SELECTION_RULES}")
    if rule in ('one_std_err', 'pct_loss') and not selection.get('order'):
        errors.append(f"selection.order is required for the '{rule}' rule")
    sel_metric = selection.get('metric')
    if sel_metric is not None and metric_names and sel_metric not in metric_names:
        errors.append(f"selection.metric '{sel_metric}' is not in tuning.metrics {metric_names}")

    final = config.get('final', {}) or {}
    if final.get('importance', 'none') not in ALLOWED_IMPORTANCE:
        errors.append(f"Invalid final.importance '{final.get('importance')}'. Allowed: {ALLOWED_IMPORTANCE}")

    # Check for forbidden keys
    forbidden_found = _find_forbidden_keys(config)
    if forbidden_found:
        errors.append(f"FORBIDDEN keys detected (test-set leakage): {forbidden_found}")

    # Validate types
    if not isinstance(config['experiment'].get('seed'), int):
        errors.append("experiment.seed must be an integer")

    if errors:
        raise ConfigValidationError("Config validation failed:\n  - " + "\n  - ".join(errors))

    return True


def _find_forbidden_keys(config, prefix=''):
    """Recursively find forbidden keys in config."""
    found = []
    if isinstance(config, dict):
        for key, value in config.items():
            full_key = f"{prefix}.{key}" if prefix else key
            if key in FORBIDDEN_KEYS:
                found.append(full_key)
            found.extend(_find_forbidden_keys(value, full_key))
    elif isinstance(config, list):
        for i, item in enumerate(config):
            found.extend(_find_forbidden_keys(item, f"{prefix}[{i}]"))
    return found
