import pandas as pd
import pytest

from screening.grids import (
    Range, Choice, grid_regular, grid_random, grid_latin_hypercube, resolve_grid
)


def test_regular_grid_is_full_factorial():
    points = grid_regular({"a": Range(1, 10, integer=True), "b": Choice(["x", "y"])}, levels=3)
    assert len(points) == 6
    assert {p["a"] for p in points} == {1, 6, 10}  # round(5.5) == 6 under banker's rounding
    assert {p["b"] for p in points} == {"x", "y"}


def test_log_range_levels_are_geometric():
    assert Range(0.01, 1.0, log=True).levels(3) == pytest.approx([0.01, 0.1, 1.0])


def test_latin_hypercube_is_reproducible_and_in_bounds(seed):
    domains = {"alpha": Range(1e-3, 1.0, log=True), "depth": Range(1, 10, integer=True)}
    a = grid_latin_hypercube(domains, size=5, seed=seed)
    b = grid_latin_hypercube(domains, size=5, seed=seed)

    assert a == b
    assert len(a) == 5
    for p in a:
        assert 1e-3 <= p["alpha"] <= 1.0
        assert isinstance(p["depth"], int)
        assert 1 <= p["depth"] <= 10


def test_latin_hypercube_covers_each_slice(seed):
    points = grid_latin_hypercube({"u": Range(0.0, 1.0)}, size=4, seed=seed)
    slices = sorted(int(p["u"] * 4) for p in points)
    assert slices == [0, 1, 2, 3]


def test_random_grid_in_bounds(seed):
    points = grid_random({"c": Range(0.1, 10.0, log=True), "k": Range(1, 5, integer=True)},
                         size=8, seed=seed)
    assert 1 <= len(points) <= 8
    for p in points:
        assert 0.1 <= p["c"] <= 10.0
        assert 1 <= p["k"] <= 5


def test_resolve_grid_labels_and_dedupes():
    table = resolve_grid(["alpha"], grid=[{"alpha": 1.0}, {"alpha": 0.1}, {"alpha": 1.0}])
    assert list(table["config"]) == ["Config01", "Config02"]
    assert list(table["alpha"]) == [1.0, 0.1]


def test_resolve_grid_accepts_dataframe():
    grid = pd.DataFrame({"config": ["x", "y"], "alpha": [0.5, 2.0]})
    table = resolve_grid(["alpha"], grid=grid)
    assert list(table["config"]) == ["Config01", "Config02"]


def test_resolve_grid_size_uses_ranges(seed):
    table = resolve_grid(["alpha"], grid=6, ranges={"alpha": Range(1.0, 2.0)}, seed=seed)
    assert len(table) == 6
    assert table["alpha"].between(1.0, 2.0).all()


def test_resolve_grid_without_parameters_has_one_config():
    table = resolve_grid([], grid=10)
    assert list(table["config"]) == ["Config01"]


def test_resolve_grid_rejects_missing_and_unknown_parameters():
    with pytest.raises(ValueError, match="missing parameters"):
        resolve_grid(["alpha", "l1_ratio"], grid=[{"alpha": 1.0}])
    with pytest.raises(ValueError, match="unknown parameters"):
        resolve_grid(["alpha"], grid=[{"alpha": 1.0, "beta": 2}])


def test_resolve_grid_needs_a_range():
    with pytest.raises(ValueError, match="No range"):
        resolve_grid(["mystery"], grid=3)


def test_range_validation():
    with pytest.raises(ValueError):
        Range(5, 1)
    with pytest.raises(ValueError):
        Range(0, 1, log=True)
