# Candidate set builder
# Crosses (or pairs) recipes with model specs and tunes every resulting workflow

from typing import Dict

import pandas as pd

from .models import ModelSpec
from .racing import tune_race_anova
from .recipes import Recipe
from .selection import rank_results
from .tuning import fit_resamples, tune_grid
from .workflow import Workflow

WORKFLOW_FUNCTIONS = {
    'tune_grid': tune_grid,
    'tune_race_anova': tune_race_anova,
    'fit_resamples': fit_resamples,
}


class WorkflowSet:
    """Uniquely named candidate workflows plus their tuning results."""

    def __init__(self, workflows, info=None):
        ids = [wf.id for wf in workflows]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate workflow ids: {duplicates}")
        self.workflows = {wf.id: wf for wf in workflows}
        self.info = info or {wf.id: {} for wf in workflows}
        self.options = {wf.id: {} for wf in workflows}
        self.results = {}

    @property
    def ids(self):
        return list(self.workflows)

    def __len__(self):
        return len(self.workflows)

    def __iter__(self):
        return iter(self.workflows.values())

    def extract_workflow(self, id):
        if id not in self.workflows:
            raise KeyError(f"No workflow '{id}'. Available: {self.ids}")
        return self.workflows[id]

    def extract_result(self, id):
        if id not in self.results:
            raise KeyError(f"Workflow '{id}' has no results yet")
        return self.results[id]

    def option_add(self, id=None, **options):
        """Per-workflow keyword overrides for workflow_map (e.g. grid=..., ranges=...)."""
        targets = [id] if id is not None else self.ids
        for target in targets:
            self.extract_workflow(target)
            self.options[target].update(options)
        return self

    def workflow_map(self, fn='tune_grid', resamples=None, grid=10, metrics=None, control=None,
                     seed=None, verbose=False):
        """Run one tuning function over every workflow in the set."""
        if fn not in WORKFLOW_FUNCTIONS:
            raise ValueError(f"Unknown function '{fn}'. Allowed: {list(WORKFLOW_FUNCTIONS)}")
        if resamples is None:
            raise ValueError("workflow_map needs resamples")

        for i, (wflow_id, wf) in enumerate(self.workflows.items(), start=1):
            if verbose:
                print(f"[{i}/{len(self)}] {wflow_id}")
            kwargs = {'metrics': metrics, 'control': control, 'seed': seed}
            kwargs.update(self.options[wflow_id])
            call = fn
            if fn != 'fit_resamples':
                kwargs.setdefault('grid', grid)
            if wf.is_final and fn != 'fit_resamples':
                # nothing to tune: evaluate the single configuration
                call = 'fit_resamples'
                kwargs.pop('grid', None)
                kwargs.pop('ranges', None)
            self.results[wflow_id] = WORKFLOW_FUNCTIONS[call](wf, resamples, **kwargs)
        return self

    def rank_results(self, rank_metric=None, select_best=False):
        if not self.results:
            raise ValueError("No results yet; call workflow_map() first")
        ranked = rank_results(self.results, rank_metric=rank_metric, select_best=select_best)
        meta = pd.DataFrame([{'wflow_id': k, **v} for k, v in self.info.items()])
        return ranked.merge(meta, on='wflow_id', how='left')

    def __repr__(self):
        return f"WorkflowSet({self.ids})"


def workflow_set(preproc: Dict[str, Recipe], models: Dict[str, ModelSpec], cross=True):
    """
    Build a set of candidate workflows.

    Args:
        preproc: Recipe name -> Recipe
        models: Model name -> ModelSpec
        cross: All combinations when True, element-wise pairs when False

    Returns:
        WorkflowSet with ids '{recipe}_{model}'
    """
    if not preproc or not models:
        raise ValueError("workflow_set needs at least one recipe and one model")

    pairs = []
    if cross:
        for r_name, recipe in preproc.items():
            for m_name, model in models.items():
                pairs.append((r_name, recipe, m_name, model))
    else:
        if len(preproc) != len(models):
            raise ValueError(
                f"Paired workflow sets need equal numbers of recipes ({len(preproc)}) "
                f"and models ({len(models)})"
            )
        for (r_name, recipe), (m_name, model) in zip(preproc.items(), models.items()):
            pairs.append((r_name, recipe, m_name, model))

    workflows, info = [], {}
    outcomes = {recipe.outcome for recipe in preproc.values()}
    if len(outcomes) > 1:
        raise ValueError(f"Recipes in one workflow set must share an outcome, got {sorted(outcomes)}")
    for r_name, recipe, m_name, model in pairs:
        wflow_id = f"{r_name}_{m_name}"
        workflows.append(Workflow(recipe, model, id=wflow_id))
        info[wflow_id] = {'preprocessor': r_name, 'model': m_name}

    return WorkflowSet(workflows, info=info)
