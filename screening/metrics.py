# Metric sets
# Named performance metrics with optimisation direction and required prediction type

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np
from sklearn.metrics import (
    accuracy_score, average_precision_score, cohen_kappa_score, confusion_matrix, f1_score,
    log_loss, mean_absolute_error, mean_absolute_percentage_error, mean_squared_error,
    precision_score, r2_score, recall_score, roc_auc_score
)


class MetricError(ValueError):
    """Raised when a metric is undefined for the available predictions."""
    pass


@dataclass(frozen=True)
class Metric:
    name: str
    fn: Callable
    direction: str  # 'maximize' or 'minimize'
    kind: str       # 'class', 'prob' or 'numeric'

    def better(self, a, b):
        return a > b if self.direction == 'maximize' else a < b


def _binary_or_macro(classes):
    return 'binary' if len(classes) == 2 else 'macro'


def _sensitivity(truth, pred, classes):
    avg = _binary_or_macro(classes)
    kwargs = {'pos_label': classes[-1]} if avg == 'binary' else {}
    return recall_score(truth, pred, average=avg, labels=list(classes), zero_division=0, **kwargs)


def _specificity(truth, pred, classes):
    cm = confusion_matrix(truth, pred, labels=list(classes))
    total = cm.sum()
    spec = []
    for i in range(len(classes)):
        tp = cm[i, i]
        fp = cm[:, i].sum() - tp
        fn = cm[i, :].sum() - tp
        tn = total - tp - fp - fn
        spec.append(tn / (tn + fp) if (tn + fp) > 0 else 0.0)
    if len(classes) == 2:
        # specificity of the event class == recall of the other class
        return float(spec[-1])
    return float(np.mean(spec))


def _precision(truth, pred, classes):
    avg = _binary_or_macro(classes)
    kwargs = {'pos_label': classes[-1]} if avg == 'binary' else {}
    return precision_score(truth, pred, average=avg, labels=list(classes), zero_division=0, **kwargs)


def _f_meas(truth, pred, classes):
    avg = _binary_or_macro(classes)
    kwargs = {'pos_label': classes[-1]} if avg == 'binary' else {}
    return f1_score(truth, pred, average=avg, labels=list(classes), zero_division=0, **kwargs)


def _roc_auc(truth, proba, classes):
    if len(np.unique(truth)) < 2:
        return np.nan
    if len(classes) == 2:
        return roc_auc_score(np.asarray(truth) == classes[-1], proba[:, -1])
    return roc_auc_score(truth, proba, multi_class='ovr', average='macro', labels=list(classes))


def _pr_auc(truth, proba, classes):
    if len(classes) == 2:
        return average_precision_score(np.asarray(truth) == classes[-1], proba[:, -1])
    truth = np.asarray(truth)
    return float(np.mean([average_precision_score(truth == c, proba[:, i]) for i, c in enumerate(classes)]))


def _log_loss(truth, proba, classes):
    return log_loss(truth, proba, labels=list(classes))


METRICS: Dict[str, Metric] = {
    'accuracy': Metric('accuracy', lambda t, p, c: accuracy_score(t, p), 'maximize', 'class'),
    'kap': Metric('kap', lambda t, p, c: cohen_kappa_score(t, p, labels=list(c)), 'maximize', 'class'),
    'sensitivity': Metric('sensitivity', _sensitivity, 'maximize', 'class'),
    'recall': Metric('recall', _sensitivity, 'maximize', 'class'),
    'specificity': Metric('specificity', _specificity, 'maximize', 'class'),
    'precision': Metric('precision', _precision, 'maximize', 'class'),
    'f_meas': Metric('f_meas', _f_meas, 'maximize', 'class'),
    'roc_auc': Metric('roc_auc', _roc_auc, 'maximize', 'prob'),
    'pr_auc': Metric('pr_auc', _pr_auc, 'maximize', 'prob'),
    'mn_log_loss': Metric('mn_log_loss', _log_loss, 'minimize', 'prob'),
    'rmse': Metric('rmse', lambda t, p, c: float(np.sqrt(mean_squared_error(t, p))), 'minimize', 'numeric'),
    'mae': Metric('mae', lambda t, p, c: mean_absolute_error(t, p), 'minimize', 'numeric'),
    'rsq': Metric('rsq', lambda t, p, c: r2_score(t, p), 'maximize', 'numeric'),
    'mape': Metric('mape', lambda t, p, c: 100.0 * mean_absolute_percentage_error(t, p), 'minimize', 'numeric'),
}

EVENT_LEVELS = ['first', 'second']

DEFAULT_METRICS = {
    'classification': ['roc_auc', 'accuracy'],
    'regression': ['rmse', 'rsq'],
}


class MetricSet:
    """
    Ordered collection of metrics. The first one is the primary metric.

    For two-class outcomes `event_level` names the class treated as the event
    by sensitivity, specificity, precision, f_meas, roc_auc and pr_auc:
    'second' (the last factor level, default) or 'first'.
    """

    def __init__(self, names: List[str], event_level: str = 'second'):
        if event_level not in EVENT_LEVELS:
            raise ValueError(f"event_level must be one of {EVENT_LEVELS}, got '{event_level}'")
        if not names:
            raise ValueError("A metric set needs at least one metric")
        unknown = [n for n in names if n not in METRICS]
        if unknown:
            raise MetricError(f"Unknown metrics: {unknown}. Supported: {sorted(METRICS)}")
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate metrics in set: {names}")
        self.names = list(names)
        self.metrics = [METRICS[n] for n in self.names]
        self.event_level = event_level

    @property
    def primary(self) -> Metric:
        return self.metrics[0]

    @property
    def needs_proba(self):
        return any(m.kind == 'prob' for m in self.metrics)

    def __getitem__(self, name):
        if name not in self.names:
            raise MetricError(f"Metric '{name}' is not in this metric set {self.names}")
        return METRICS[name]

    def __iter__(self):
        return iter(self.metrics)

    def __repr__(self):
        return f"metric_set({', '.join(self.names)}, event_level={self.event_level!r})"

    def check(self, mode, has_proba=True):
        """Fail early for metrics that cannot be computed for this prediction type."""
        errors = []
        for m in self.metrics:
            if mode == 'regression' and m.kind != 'numeric':
                errors.append(f"'{m.name}' is a classification metric but the model is a regression model")
            elif mode == 'classification' and m.kind == 'numeric':
                errors.append(f"'{m.name}' is a regression metric but the model is a classification model")
            elif m.kind == 'prob' and not has_proba:
                errors.append(f"'{m.name}' needs class probabilities but the model does not produce them")
        if errors:
            raise MetricError("Invalid metric set:\n  - " + "\n  - ".join(errors))
        return True

    def compute(self, truth, pred, proba=None, classes=None) -> Dict[str, float]:
        if self.event_level == 'first' and classes is not None and len(classes) == 2:
            # metric functions score the last level as the event
            classes = list(classes)[::-1]
            if proba is not None:
                proba = np.asarray(proba)[:, ::-1]
        results = {}
        for m in self.metrics:
            if m.kind == 'prob':
                if proba is None:
                    raise MetricError(f"'{m.name}' needs class probabilities")
                results[m.name] = float(m.fn(truth, proba, classes))
            else:
                results[m.name] = float(m.fn(truth, pred, classes))
        return results


def metric_set(*names, event_level='second') -> MetricSet:
    if len(names) == 1 and isinstance(names[0], (list, tuple)):
        names = tuple(names[0])
    return MetricSet(list(names), event_level=event_level)


def as_metric_set(metrics: Optional[object], mode: str) -> MetricSet:
    if metrics is None:
        return MetricSet(DEFAULT_METRICS[mode])
    if isinstance(metrics, MetricSet):
        return metrics
    if isinstance(metrics, str):
        return MetricSet([metrics])
    return MetricSet(list(metrics))
