# File: mbmdrc/selection.py
# Location: mbmdrc/mbmdrc/selection.py
"""
Cross-validated choice of the ensemble size.

For fold f = 1..F the observations with fold id != f are handed to the
oracle (any callable ``ObservationView -> RankedModelSet``), the resulting
ranked set predicts the observations with fold id == f for every ensemble
size 1..max_prefix_size, and a loss (AUC or balanced accuracy, higher is
better) is computed per ensemble size. The selected size is the one with
the highest mean loss across folds; ties go to the smallest size.

Conventions
-----------
- Predictions use the training split's mean outcome as global mean; gap
  predictions (NaN) are replaced by that mean (AUC) or its rounding (BAC)
  before scoring.
- A fold whose oracle returns fewer than ``max_prefix_size`` models reuses
  its largest ensemble for the larger sizes.
- Every test split must contain both outcome classes; otherwise
  ``DegenerateFoldError`` is raised before any model is fitted.
- Folds are independent once assigned and may run on a thread pool
  (``n_workers > 1``). ``should_cancel`` is polled between folds.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Union

import numpy as np
import pandas as pd
from sklearn.metrics import balanced_accuracy_score, roc_auc_score

from .classification import infer_trait_type
from .data import ObservationView, TraitType
from .errors import DegenerateFoldError, SelectionCancelledError
from .models import RankedModelSet
from .prediction import PredictionType, UnknownPolicy, predict
from .validation import ArgumentCollector

logger = logging.getLogger("mbmdrc")

Oracle = Callable[[ObservationView], RankedModelSet]


# ---------------------------------------------------------------------------
# Loss metrics
# ---------------------------------------------------------------------------


def auc(scores: np.ndarray, truth: np.ndarray) -> float:
    """
    Area under the ROC curve.

    Tied scores count half, so constant scores give 0.5.

    Raises
    ------
    ValueError
        If ``truth`` does not contain both 0 and 1.
    """
    scores = np.asarray(scores, dtype=float)
    truth = np.asarray(truth, dtype=int)
    if not np.any(truth == 1) or not np.any(truth == 0):
        raise ValueError("AUC requires both positive and negative observations")
    return float(roc_auc_score(truth, scores))


def bac(predicted: np.ndarray, truth: np.ndarray) -> float:
    """
    Balanced accuracy: mean of sensitivity and specificity.

    Raises
    ------
    ValueError
        If ``truth`` does not contain both 0 and 1.
    """
    predicted = np.asarray(predicted, dtype=float).astype(int)
    truth = np.asarray(truth, dtype=int)
    if not np.any(truth == 1) or not np.any(truth == 0):
        raise ValueError("Balanced accuracy requires both positive and negative observations")
    return float(balanced_accuracy_score(truth, predicted))


class LossMetric(Enum):
    """Cross-validation loss (higher is better)."""

    AUC = "auc"
    BAC = "bac"

    @property
    def prediction_type(self) -> PredictionType:
        return PredictionType.PROB if self is LossMetric.AUC else PredictionType.RESPONSE

    def score(self, predictions: np.ndarray, truth: np.ndarray) -> float:
        return auc(predictions, truth) if self is LossMetric.AUC else bac(predictions, truth)


# ---------------------------------------------------------------------------
# Folds
# ---------------------------------------------------------------------------


def make_stratified_folds(
    outcome: np.ndarray,
    n_folds: int,
    stratify: Optional[bool] = None,
    seed: Union[int, np.random.Generator, None] = None,
) -> np.ndarray:
    """
    Assign observations to folds 1..n_folds.

    With ``stratify`` (default: when the outcome is binary) each outcome
    class is shuffled and split into ``n_folds`` nearly equal chunks
    independently, chunk i going to fold i; otherwise all observations are
    shuffled and chunked together.

    Returns
    -------
    np.ndarray of int, shape (n,)
    """
    outcome = np.asarray(outcome, dtype=float)
    checks = ArgumentCollector()
    if checks.check_int(n_folds, "n_folds", lower=2, upper=10) and n_folds > len(outcome):
        checks.add(f"'n_folds'={n_folds} exceeds the number of observations ({len(outcome)})")
    checks.report()

    rng = seed if isinstance(seed, np.random.Generator) else np.random.default_rng(seed)
    if stratify is None:
        stratify = infer_trait_type(outcome) is TraitType.BINARY

    folds = np.zeros(len(outcome), dtype=np.int64)
    groups = [np.flatnonzero(outcome == c) for c in np.unique(outcome)] if stratify else [
        np.arange(len(outcome))
    ]
    for members in groups:
        shuffled = rng.permutation(members)
        for fold, chunk in enumerate(np.array_split(shuffled, n_folds), start=1):
            folds[chunk] = fold
    return folds


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


@dataclass
class SelectionResult:
    """
    Outcome of ``select_ensemble_size``.

    Fields
    ------
    best_size : int
        Selected ensemble size K*.
    loss_table : pd.DataFrame
        Folds (rows, index ``fold``) by ensemble size (columns ``top_results``).
    mean_loss : pd.Series
        Loss averaged over folds per ensemble size.
    metric : LossMetric
    """

    best_size: int
    loss_table: pd.DataFrame
    mean_loss: pd.Series
    metric: LossMetric

    def long_format(self) -> pd.DataFrame:
        """Loss table as (fold, top_results, cv_loss) rows."""
        long = self.loss_table.reset_index().melt(
            id_vars="fold", var_name="top_results", value_name="cv_loss"
        )
        return long.astype({"fold": int, "top_results": int})


def _fold_losses(
    view: ObservationView,
    folds: np.ndarray,
    fold: int,
    oracle: Oracle,
    max_prefix_size: int,
    metric: LossMetric,
    policy: UnknownPolicy,
) -> np.ndarray:
    start = time.time()
    train = view.subset(folds != fold)
    test = view.subset(folds == fold)
    global_mean = train.global_mean()

    models = oracle(train)
    n_models = min(len(models), max_prefix_size)
    if n_models < max_prefix_size:
        logger.warning(
            f"Fold {fold}: oracle returned {len(models)} models; ensemble sizes "
            f"{n_models + 1}..{max_prefix_size} reuse the size-{n_models} ensemble"
        )

    test_frame = test.to_frame()
    if n_models > 0:
        table = predict(
            models[:n_models],
            test_frame,
            type=metric.prediction_type,
            all_sizes=True,
            unknown_policy=policy,
            global_mean=global_mean,
        ).to_numpy()
    else:
        table = np.empty((test.n_observations, 0))
    if n_models < max_prefix_size:
        last = (
            table[:, -1]
            if n_models > 0
            else predict(
                models,
                test_frame,
                type=metric.prediction_type,
                top_results=0,
                unknown_policy=policy,
                global_mean=global_mean,
            )
        )
        padding = np.repeat(last.reshape(-1, 1), max_prefix_size - n_models, axis=1)
        table = np.hstack([table, padding])

    fill = global_mean if metric is LossMetric.AUC else float(np.round(global_mean))
    table = np.where(np.isnan(table), fill, table)

    truth = test.outcomes
    losses = np.array([metric.score(table[:, k], truth) for k in range(max_prefix_size)])
    logger.debug(
        f"Fold {fold}: {train.n_observations} train / {test.n_observations} test, "
        f"{len(models)} models, best {metric.value}={losses.max():.4f} "
        f"({time.time() - start:.2f}s)"
    )
    return losses


def select_ensemble_size(
    view: ObservationView,
    fold_assignment: np.ndarray,
    max_prefix_size: int,
    loss_metric: Union[LossMetric, str] = LossMetric.AUC,
    oracle: Optional[Oracle] = None,
    unknown_policy: Union[UnknownPolicy, str] = UnknownPolicy.GLOBAL_MEAN,
    n_workers: int = 1,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> SelectionResult:
    """
    Choose the ensemble size by cross-validation.

    Parameters
    ----------
    view : ObservationView
        All observations; must have a binary outcome.
    fold_assignment : np.ndarray of int, shape (n,)
        Fold id (1-based) per observation; see ``make_stratified_folds``.
    max_prefix_size : int
        Largest ensemble size evaluated.
    loss_metric : LossMetric or str
        ``auc`` (scored on ``prob`` predictions) or ``bac`` (on ``response``).
    oracle : callable, optional
        Fits a ranked model set on a training split. Defaults to
        ``ExhaustiveModelSearch(max_results=max_prefix_size)``.
    unknown_policy : UnknownPolicy or str
        Passed to the predictor.
    n_workers : int
        Folds evaluated concurrently on a thread pool when > 1.
    should_cancel : callable, optional
        Polled between folds; returning True aborts with
        ``SelectionCancelledError``.

    Returns
    -------
    SelectionResult

    Raises
    ------
    InvalidArgumentError
        For every invalid argument, reported together.
    DegenerateFoldError
        If a fold's test split lacks one of the outcome classes.
    SelectionCancelledError
        If ``should_cancel`` returned True.
    """
    checks = ArgumentCollector()
    folds = np.asarray(fold_assignment)
    fold_ids: np.ndarray = np.array([], dtype=np.int64)
    if folds.shape != (view.n_observations,):
        checks.add(
            f"'fold_assignment' must have one entry per observation "
            f"({view.n_observations}), got shape {folds.shape}"
        )
    elif not np.issubdtype(folds.dtype, np.integer) or (folds < 1).any():
        checks.add("'fold_assignment' must hold positive integer fold ids")
    else:
        fold_ids = np.unique(folds)
        if len(fold_ids) < 2:
            checks.add(f"'fold_assignment' must define at least 2 folds, got {len(fold_ids)}")
    checks.check_int(max_prefix_size, "max_prefix_size", lower=1)
    metric = checks.check_enum(loss_metric, LossMetric, "loss_metric")
    policy = checks.check_enum(unknown_policy, UnknownPolicy, "unknown_policy")
    if not (n_workers == -1 or (isinstance(n_workers, int) and n_workers >= 1)):
        checks.add(f"'n_workers' must be >= 1 or -1, got {n_workers!r}")
    if oracle is not None and not callable(oracle):
        checks.add("'oracle' must be callable")
    if infer_trait_type(view.outcomes) is not TraitType.BINARY:
        checks.add("cross-validated selection requires a binary (0/1) outcome")
    checks.report()

    for fold in fold_ids:
        present = np.unique(view.outcomes[folds == fold])
        if len(present) < 2:
            raise DegenerateFoldError(int(fold), present.tolist())

    if oracle is None:
        from .search import ExhaustiveModelSearch

        oracle = ExhaustiveModelSearch(max_results=max_prefix_size)

    logger.info(
        f"Cross-validation: {len(fold_ids)} folds, ensemble sizes 1..{max_prefix_size}, "
        f"loss={metric.value}"
    )

    def run_fold(fold: int) -> np.ndarray:
        return _fold_losses(view, folds, fold, oracle, max_prefix_size, metric, policy)

    losses: Dict[int, np.ndarray] = {}
    cancelled = should_cancel or (lambda: False)
    if n_workers == 1 or len(fold_ids) == 1:
        for fold in fold_ids:
            if cancelled():
                raise SelectionCancelledError(len(losses), len(fold_ids))
            losses[int(fold)] = run_fold(int(fold))
            logger.info(f"Fold {int(fold)}/{len(fold_ids)} done")
    else:
        workers = (os.cpu_count() or 1) if n_workers == -1 else n_workers
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(run_fold, int(fold)): int(fold) for fold in fold_ids}
            try:
                for future in concurrent.futures.as_completed(futures):
                    losses[futures[future]] = future.result()
                    logger.info(f"Fold {futures[future]} done ({len(losses)}/{len(fold_ids)})")
                    if len(losses) < len(fold_ids) and cancelled():
                        raise SelectionCancelledError(len(losses), len(fold_ids))
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    loss_table = pd.DataFrame(
        np.vstack([losses[int(f)] for f in fold_ids]),
        index=pd.Index([int(f) for f in fold_ids], name="fold"),
        columns=pd.RangeIndex(1, max_prefix_size + 1, name="top_results"),
    )
    mean_loss = loss_table.mean(axis=0).rename("mean_cv_loss")
    best_size = int(np.argmax(mean_loss.to_numpy())) + 1

    logger.info(
        f"Selected ensemble size {best_size} (mean {metric.value}="
        f"{mean_loss.iloc[best_size - 1]:.4f})"
    )
    return SelectionResult(
        best_size=best_size, loss_table=loss_table, mean_loss=mean_loss, metric=metric
    )
