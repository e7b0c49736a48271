# Screening package
# Resample, tune, rank and finalize candidate modeling workflows

from .config_schema import validate_config, ConfigValidationError
from .io import load_config, save_results, create_run_dir, save_data_profile
from .data import load_dataset, prepare_data, validate_data_integrity, DataShapeError
from .splits import initial_split, vfold_cv, bootstraps, validation_split, make_resamples, make_strata
from .tunable import tune, is_tune
from .recipes import Recipe
from .models import ModelSpec, SUPPORTED_MODELS
from .grids import Range, Choice, grid_regular, grid_random, grid_latin_hypercube
from .metrics import metric_set, MetricError, METRICS
from .workflow import Workflow, FitError
from .tuning import tune_grid, fit_resamples, TuneControl
from .racing import tune_race_anova, RaceControl
from .selection import show_best, select_best, select_by_one_std_err, select_by_pct_loss, rank_results
from .candidates import workflow_set, WorkflowSet
from .evaluate import last_fit
from .bundle import bundle_model, save_bundle, load_bundle

__all__ = [
    'validate_config',
    'ConfigValidationError',
    'load_config',
    'save_results',
    'create_run_dir',
    'save_data_profile',
    'load_dataset',
    'prepare_data',
    'validate_data_integrity',
    'DataShapeError',
    'initial_split',
    'vfold_cv',
    'bootstraps',
    'validation_split',
    'make_resamples',
    'make_strata',
    'tune',
    'is_tune',
    'Recipe',
    'ModelSpec',
    'SUPPORTED_MODELS',
    'Range',
    'Choice',
    'grid_regular',
    'grid_random',
    'grid_latin_hypercube',
    'metric_set',
    'MetricError',
    'METRICS',
    'Workflow',
    'FitError',
    'tune_grid',
    'fit_resamples',
    'TuneControl',
    'tune_race_anova',
    'RaceControl',
    'show_best',
    'select_best',
    'select_by_one_std_err',
    'select_by_pct_loss',
    'rank_results',
    'workflow_set',
    'WorkflowSet',
    'last_fit',
    'bundle_model',
    'save_bundle',
    'load_bundle',
]
