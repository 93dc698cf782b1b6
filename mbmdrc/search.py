# File: mbmdrc/search.py
# Location: mbmdrc/mbmdrc/search.py
"""
Exhaustive model search: the default ranked-model oracle.

``ExhaustiveModelSearch`` enumerates every feature combination of the
requested interaction orders (1 and/or 2), classifies each with
``classification.fit_model`` and returns the strongest ``max_results``
models as a ``RankedModelSet``. Ranking is by model statistic, descending;
ties go to the lower order, then to the lower feature indices, so the
result is deterministic.

No multiple-testing correction is applied; the statistic is used as a
ranking key only.

Any callable ``ObservationView -> RankedModelSet`` can stand in for this
class wherever an oracle is expected (e.g. ``selection.select_ensemble_size``).
"""

from __future__ import annotations

import concurrent.futures
import itertools
import logging
import os
import time
from math import comb
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .classification import AdjustmentMode, ModelFit, fit_model, infer_trait_type
from .data import ObservationView, TraitType
from .models import RankedModelSet
from .validation import ArgumentCollector

logger = logging.getLogger("mbmdrc")


def _worker_initializer() -> None:
    """Set BLAS thread counts to 1 in worker processes to prevent oversubscription."""
    os.environ["OPENBLAS_NUM_THREADS"] = "1"
    os.environ["MKL_NUM_THREADS"] = "1"
    os.environ["OMP_NUM_THREADS"] = "1"


def _fit_chunk_worker(
    args: Tuple[ObservationView, List[Tuple[int, ...]], dict],
) -> List[ModelFit]:
    """Fit a chunk of combinations in a subprocess worker."""
    view, combos, fit_kwargs = args
    return [fit_model(view, combo, **fit_kwargs) for combo in combos]


def count_combinations(n_features: int, orders: Iterable[int]) -> int:
    """Number of feature combinations searched for the given orders."""
    return sum(comb(n_features, o) for o in orders)


class ExhaustiveModelSearch:
    """
    Fit and rank every 1- and/or 2-feature model.

    Parameters
    ----------
    order : sequence of int
        Interaction orders to search, each 1 or 2. Default ``(2,)``.
    min_cell_size : int
        Minimum observations for a cell to be classified.
    alpha : float
        Significance level of the cell test.
    adjustment : AdjustmentMode or str
        Main-effect adjustment.
    max_results : int
        Number of top models to keep.
    statistic : str
        Registered model statistic used for ranking.
    n_workers : int
        Worker processes for fitting. 1 = sequential, -1 = os.cpu_count().
    n_shards : int
        Count-pass shards per model.
    """

    def __init__(
        self,
        order: Sequence[int] = (2,),
        min_cell_size: int = 10,
        alpha: float = 0.1,
        adjustment: AdjustmentMode | str = AdjustmentMode.NONE,
        max_results: int = 1000,
        statistic: str = "sum_chi2",
        n_workers: int = 1,
        n_shards: int = 1,
    ) -> None:
        checks = ArgumentCollector()
        order = tuple(order) if isinstance(order, (list, tuple)) else (order,)
        if not order or len(set(order)) != len(order):
            checks.add(f"'order' must be a non-empty list of distinct orders, got {order!r}")
        for o in order:
            checks.check_int(o, "order", lower=1, upper=2)
        checks.check_int(min_cell_size, "min_cell_size", lower=0)
        checks.check_number(alpha, "alpha", lower=0.0, upper=1.0)
        mode = checks.check_enum(adjustment, AdjustmentMode, "adjustment")
        checks.check_int(max_results, "max_results", lower=1, upper=10000)
        checks.check_int(n_shards, "n_shards", lower=1)
        if not (n_workers == -1 or (isinstance(n_workers, int) and n_workers >= 1)):
            checks.add(f"'n_workers' must be >= 1 or -1, got {n_workers!r}")
        checks.report()

        self.order = tuple(sorted(order))
        self.min_cell_size = min_cell_size
        self.alpha = alpha
        self.adjustment = mode
        self.max_results = max_results
        self.statistic = statistic
        self.n_workers = n_workers
        self.n_shards = n_shards

    def __call__(self, view: ObservationView) -> RankedModelSet:
        return self.fit(view)

    def combinations(self, n_features: int) -> List[Tuple[int, ...]]:
        """All feature combinations searched, lower orders first."""
        combos: List[Tuple[int, ...]] = []
        for o in self.order:
            combos.extend(itertools.combinations(range(n_features), o))
        return combos

    def fit(self, view: ObservationView, trait_type: Optional[TraitType] = None) -> RankedModelSet:
        """
        Search all combinations on ``view`` and return the top models.

        Combinations with an empty genotype space (a feature missing for
        every observation) are skipped.
        """
        start = time.time()
        combos = self.combinations(view.n_features)
        if trait_type is None:
            trait_type = infer_trait_type(view.outcomes)
        fit_kwargs = dict(
            min_cell_size=self.min_cell_size,
            alpha=self.alpha,
            adjustment=self.adjustment,
            trait_type=trait_type,
            statistic=self.statistic,
            n_shards=self.n_shards,
        )
        logger.info(
            f"Model search: {len(combos)} combinations of orders {list(self.order)} "
            f"on {view.n_observations} observations ({trait_type.value} trait)"
        )

        fits = self._fit_all(view, combos, fit_kwargs)
        usable = [f for f in fits if f.n_cells > 0]
        if len(usable) < len(fits):
            logger.warning(
                f"Model search: skipped {len(fits) - len(usable)} combination(s) "
                "with no observed genotypes"
            )

        ranked = sorted(usable, key=lambda f: (-f.statistic, len(f.features), f.features))
        top = ranked[: self.max_results]
        models = RankedModelSet([f.to_model() for f in top])

        logger.info(
            f"Model search complete: kept {len(models)}/{len(usable)} models "
            f"in {time.time() - start:.2f}s"
        )
        if top:
            logger.debug(
                f"Top model {top[0].feature_names} with statistic {top[0].statistic:.4g}"
            )
        return models

    def _fit_all(
        self, view: ObservationView, combos: List[Tuple[int, ...]], fit_kwargs: dict
    ) -> List[ModelFit]:
        n_workers = (os.cpu_count() or 1) if self.n_workers == -1 else self.n_workers
        # Don't over-provision workers for small searches
        if len(combos) < n_workers * 2:
            n_workers = max(1, len(combos) // 2)
        if n_workers <= 1:
            return [fit_model(view, combo, **fit_kwargs) for combo in combos]

        chunk_size = -(-len(combos) // n_workers)
        chunks = [combos[i : i + chunk_size] for i in range(0, len(combos), chunk_size)]
        logger.info(f"Parallel model search: {n_workers} workers, {len(chunks)} chunks")
        fits: List[ModelFit] = []
        with concurrent.futures.ProcessPoolExecutor(
            max_workers=n_workers, initializer=_worker_initializer
        ) as executor:
            for chunk_fits in executor.map(
                _fit_chunk_worker, [(view, chunk, fit_kwargs) for chunk in chunks]
            ):
                fits.extend(chunk_fits)
        return fits


def summarize_models(models: RankedModelSet) -> pd.DataFrame:
    """One row per ranked model: rank, features, statistic and label counts."""
    rows = []
    for rank, model in enumerate(models, start=1):
        labels = model.labels.tolist()
        rows.append(
            {
                "rank": rank,
                "features": ",".join(model.feature_names),
                "order": model.order,
                "statistic": model.statistic,
                "n_cells": model.n_cells,
                "n_high": labels.count("H"),
                "n_low": labels.count("L"),
                "n_other": labels.count("O"),
                "n_not_enough": labels.count("N"),
            }
        )
    return pd.DataFrame(
        rows,
        columns=[
            "rank",
            "features",
            "order",
            "statistic",
            "n_cells",
            "n_high",
            "n_low",
            "n_other",
            "n_not_enough",
        ],
    )
