# Hyperparameter grids
# Regular, random and space-filling grids over parameter domains

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import numpy as np
import pandas as pd
from scipy.stats import loguniform, qmc, randint, uniform
from sklearn.model_selection import ParameterGrid, ParameterSampler


@dataclass(frozen=True)
class Range:
    """Numeric parameter domain. `log` spaces values geometrically."""
    low: float
    high: float
    log: bool = False
    integer: bool = False

    def __post_init__(self):
        if self.low > self.high:
            raise ValueError(f"Range low ({self.low}) exceeds high ({self.high})")
        if self.log and self.low <= 0:
            raise ValueError("Log-scaled ranges need a positive lower bound")

    def levels(self, n):
        if self.log:
            values = np.geomspace(self.low, self.high, n)
        else:
            values = np.linspace(self.low, self.high, n)
        return self._coerce(values)

    def from_unit(self, u):
        """Map points in [0, 1] onto the domain."""
        u = np.asarray(u, dtype=float)
        if self.log:
            values = np.exp(np.log(self.low) + u * (np.log(self.high) - np.log(self.low)))
        elif self.integer:
            # spread the unit interval evenly over the integer bins
            values = self.low + np.floor(u * (self.high - self.low + 1))
            values = np.minimum(values, self.high)
        else:
            values = self.low + u * (self.high - self.low)
        return self._coerce(values)

    def distribution(self):
        if self.integer and not self.log:
            return randint(int(self.low), int(self.high) + 1)
        if self.log:
            return loguniform(self.low, self.high)
        return uniform(self.low, self.high - self.low)

    def _coerce(self, values):
        if self.integer:
            return [int(v) for v in np.round(values)]
        return [float(v) for v in values]


@dataclass(frozen=True)
class Choice:
    values: Sequence[Any]

    def levels(self, n):
        return list(self.values)

    def from_unit(self, u):
        u = np.asarray(u, dtype=float)
        idx = np.minimum((u * len(self.values)).astype(int), len(self.values) - 1)
        return [self.values[i] for i in idx]

    def distribution(self):
        return list(self.values)


def _as_domain(value):
    if isinstance(value, (Range, Choice)):
        return value
    if isinstance(value, (list, tuple)):
        return Choice(list(value))
    raise TypeError(f"Cannot use {value!r} as a parameter domain")


def _to_python(value):
    return value.item() if isinstance(value, np.generic) else value


def _dedupe(points):
    seen = set()
    unique = []
    for p in points:
        key = tuple(sorted((k, repr(v)) for k, v in p.items()))
        if key not in seen:
            seen.add(key)
            unique.append(p)
    return unique


def grid_regular(domains: Dict[str, Any], levels=3) -> List[dict]:
    """Full factorial grid with `levels` values per numeric parameter."""
    if isinstance(levels, int):
        levels = {name: levels for name in domains}
    space = {name: _as_domain(d).levels(levels.get(name, 3)) for name, d in domains.items()}
    points = [{k: _to_python(v) for k, v in p.items()} for p in ParameterGrid(space)]
    return _dedupe(points)


def grid_random(domains: Dict[str, Any], size=10, seed=None) -> List[dict]:
    """Independent random draws from each parameter's domain."""
    space = {name: _as_domain(d).distribution() for name, d in domains.items()}
    points = []
    for p in ParameterSampler(space, n_iter=size, random_state=seed):
        point = {}
        for name, value in p.items():
            domain = _as_domain(domains[name])
            if isinstance(domain, Range) and domain.integer:
                value = int(round(value))
            point[name] = _to_python(value)
        points.append(point)
    return _dedupe(points)


def grid_latin_hypercube(domains: Dict[str, Any], size=10, seed=None) -> List[dict]:
    """Space-filling design: each parameter's range is stratified into `size` slices."""
    names = sorted(domains)
    if not names:
        return [{}]
    sampler = qmc.LatinHypercube(d=len(names), seed=seed)
    unit = sampler.random(n=size)
    columns = {name: _as_domain(domains[name]).from_unit(unit[:, j]) for j, name in enumerate(names)}
    points = [{name: _to_python(columns[name][i]) for name in names} for i in range(size)]
    return _dedupe(points)


GRID_TYPES = {
    'regular': grid_regular,
    'random': grid_random,
    'latin_hypercube': grid_latin_hypercube,
}


def label_configs(points):
    width = max(len(str(len(points))), 2)
    return [f"Config{i + 1:0{width}d}" for i in range(len(points))]


def resolve_grid(param_ids, grid=10, ranges=None, grid_type='latin_hypercube', seed=None, levels=3,
                 default_range=None) -> pd.DataFrame:
    """
    Turn any accepted grid description into a labelled table of grid points.

    Args:
        param_ids: Tunable parameter ids of the workflow
        grid: int (size of generated grid), list of dicts, DataFrame, or None
        ranges: Optional parameter id -> Range/Choice/list overrides
        grid_type: Generator used when `grid` is an int ('regular' uses `levels` instead of the size)
        default_range: Callable giving a domain for a parameter id

    Returns:
        DataFrame with a `config` column and one column per parameter
    """
    param_ids = list(param_ids)
    ranges = dict(ranges or {})

    if not param_ids:
        points = [{}]
    elif isinstance(grid, pd.DataFrame):
        points = grid.drop(columns=['config'], errors='ignore').to_dict(orient='records')
    elif isinstance(grid, (list, tuple)):
        points = [dict(p) for p in grid]
    elif isinstance(grid, int) or grid is None:
        size = 10 if grid is None else grid
        domains = {}
        for pid in param_ids:
            if pid in ranges:
                domains[pid] = ranges[pid]
            elif default_range is not None:
                domains[pid] = default_range(pid)
            else:
                raise ValueError(f"No range for tuning parameter '{pid}'")
        if grid_type not in GRID_TYPES:
            raise ValueError(f"Unknown grid type '{grid_type}'. Allowed: {list(GRID_TYPES)}")
        if grid_type == 'regular':
            points = grid_regular(domains, levels=levels)
        else:
            points = GRID_TYPES[grid_type](domains, size=size, seed=seed)
    else:
        raise TypeError(f"Unsupported grid specification: {type(grid).__name__}")

    for p in points:
        missing = [pid for pid in param_ids if pid not in p]
        extra = [k for k in p if k not in param_ids]
        if missing:
            raise ValueError(f"Grid point {p} is missing parameters: {missing}")
        if extra:
            raise ValueError(f"Grid point {p} has unknown parameters: {extra}")

    points = _dedupe([{k: _to_python(v) for k, v in p.items()} for p in points])
    table = pd.DataFrame({'config': label_configs(points)})
    for pid in param_ids:
        table[pid] = [p[pid] for p in points]
    return table
