# Data loading and validation utilities

import numpy as np
import pandas as pd


class DataShapeError(ValueError):
    """Raised when a dataset does not have the shape a study expects."""
    pass


def load_dataset(config, dataset_path=None):
    """
    Load a study dataset from a local path or an HTTP(S) URL.

    Returns:
        df: Loaded DataFrame
        source: The path or URL it was read from
    """
    source = dataset_path or config['data'].get('source')
    if source is None:
        raise ValueError("No dataset source given (set data.source or pass dataset_path)")

    print(f"Loading dataset: {source}")
    read_args = config['data'].get('read_csv', {})
    df = pd.read_csv(source, **read_args)

    return df, source


def prepare_data(df, config):
    """
    Select the study columns and coerce the outcome.

    Drops `columns_to_drop`, removes rows with a missing outcome when
    `drop_missing_outcome` is set, and makes a classification outcome
    categorical so class levels have a stable order.
    """
    data_cfg = config['data']
    outcome = data_cfg['outcome']

    cols_to_drop = data_cfg.get('columns_to_drop', [])
    df = df.drop(columns=[c for c in cols_to_drop if c in df.columns])

    keep = data_cfg.get('columns')
    if keep:
        missing = [c for c in keep if c not in df.columns]
        if missing:
            raise DataShapeError(f"Columns not found in dataset: {missing}")
        if outcome in df.columns and outcome not in keep:
            keep = list(keep) + [outcome]
        df = df[list(keep)]

    if outcome not in df.columns:
        raise DataShapeError(f"Outcome column '{outcome}' not found in dataset. Available: {list(df.columns)}")

    if data_cfg.get('drop_missing_outcome', False):
        n_before = len(df)
        df = df[df[outcome].notnull()]
        if len(df) < n_before:
            print(f"Dropped {n_before - len(df)} rows with missing outcome")

    if data_cfg.get('task') == 'classification':
        df = df.copy()
        df[outcome] = df[outcome].astype('category')

    return df.reset_index(drop=True)


def validate_data_integrity(df, outcome, task):
    """
    Validate a prepared dataset before splitting.

    Checks:
    - Outcome column present and fully observed
    - No predictor column is entirely missing
    - No infinite values in numeric columns
    - At least two classes for classification
    """
    errors = []

    if outcome not in df.columns:
        raise DataShapeError(f"Outcome column '{outcome}' not found. Available: {list(df.columns)}")

    y = df[outcome]
    if y.isnull().any():
        errors.append(f"NaN values found in outcome ({outcome}): {int(y.isnull().sum())} missing")

    all_na = df.columns[df.isnull().all()].tolist()
    if all_na:
        errors.append(f"Columns with only missing values: {all_na}")

    numeric = df.select_dtypes(include=[np.number])
    for col in numeric.columns:
        values = numeric[col].dropna()
        if not np.isfinite(values).all():
            errors.append(f"Infinite values found in column: {col}")

    if task == 'classification':
        if y.nunique(dropna=True) < 2:
            errors.append(f"Outcome '{outcome}' has fewer than two classes")
    elif task == 'regression':
        if not pd.api.types.is_numeric_dtype(y):
            errors.append(f"Regression outcome '{outcome}' is not numeric (dtype {y.dtype})")

    if errors:
        raise DataShapeError("Data integrity check failed:\n  - " + "\n  - ".join(errors))

    return True
