# File: mbmdrc/prediction.py
# Location: mbmdrc/mbmdrc/prediction.py
"""
Prefix-ensemble prediction from a ranked MB-MDR model set.

For every model (rank order) and every sample the sample's genotype at the
model's features is encoded, flattened to a cell index and the cell's stored
prediction looked up. Cells labelled O or N, and genotypes outside the
trained cell range, are uninformative: they become NaN ("unknown", a gap
ignored by the aggregation) under ``UnknownPolicy.GAP`` or the global mean
under ``UnknownPolicy.GLOBAL_MEAN``.

Aggregation over the top-K models is a cumulative reduction along the ranks.
``predict(..., top_results=K)`` and column K of
``predict(..., all_sizes=True)`` read the same cumulative arrays and are
therefore identical.

Prediction types
----------------
``response``   mean probability over informative models, rounded half-to-even
               (0.5 -> 0)
``prob``       mean probability over informative models; a sample without
               any informative model in the prefix gets the unknown value
``score``      sum of sign(p - 0.5) over the prefix; gaps contribute 0
``scoreprob``  score rescaled to [0, 1] by the cohort min and max at each
               prefix size; a prefix size where every sample has the same
               score yields 0.5
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from .classification import UNINFORMATIVE_LABELS
from .data import ObservationView, codes_from_levels, column_codes, positional_codes
from .errors import DimensionMismatchError
from .indexing import INVALID_CELL, cell_indices
from .models import RankedModel, RankedModelSet
from .validation import ArgumentCollector

logger = logging.getLogger("mbmdrc")

SCOREPROB_CONSTANT = 0.5


class PredictionType(Enum):
    """Output representation of ensemble predictions."""

    RESPONSE = "response"
    PROB = "prob"
    SCORE = "score"
    SCOREPROB = "scoreprob"


class UnknownPolicy(Enum):
    """What an uninformative cell contributes."""

    GAP = "gap"
    GLOBAL_MEAN = "global_mean"


class FeatureEncoding(Enum):
    """
    How new genotype values are mapped to cell coordinates.

    SCHEMA uses the training levels stored with each model. POSITIONAL
    re-encodes each predicted column by the distinct values present in it.
    """

    SCHEMA = "schema"
    POSITIONAL = "positional"


@dataclass(frozen=True)
class CumulativePredictions:
    """
    Running sums over ranks, shape (n_samples, n_models + 1).

    Column 0 is the empty ensemble; column K covers ranks 1..K.
    """

    prob_sum: np.ndarray
    informative: np.ndarray
    score: np.ndarray

    @classmethod
    def from_matrix(cls, probabilities: np.ndarray) -> "CumulativePredictions":
        known = ~np.isnan(probabilities)
        filled = np.where(known, probabilities, 0.0)
        signs = np.where(known, np.sign(probabilities - 0.5), 0.0)
        n = probabilities.shape[0]
        zero = np.zeros((n, 1))
        return cls(
            prob_sum=np.hstack([zero, np.cumsum(filled, axis=1)]),
            informative=np.hstack([zero, np.cumsum(known, axis=1)]),
            score=np.hstack([zero, np.cumsum(signs, axis=1)]),
        )


def _mean_prob(cum: CumulativePredictions, unknown_value: float) -> np.ndarray:
    with np.errstate(invalid="ignore", divide="ignore"):
        mean = cum.prob_sum / cum.informative
    return np.where(cum.informative > 0, mean, unknown_value)


def _aggregate_response(cum: CumulativePredictions, unknown_value: float) -> np.ndarray:
    return np.round(_mean_prob(cum, unknown_value))


def _aggregate_prob(cum: CumulativePredictions, unknown_value: float) -> np.ndarray:
    return _mean_prob(cum, unknown_value)


def _aggregate_score(cum: CumulativePredictions, unknown_value: float) -> np.ndarray:
    return cum.score.copy()


def _aggregate_scoreprob(cum: CumulativePredictions, unknown_value: float) -> np.ndarray:
    return rescale_columns(cum.score)


_AGGREGATORS: Dict[PredictionType, Callable[[CumulativePredictions, float], np.ndarray]] = {
    PredictionType.RESPONSE: _aggregate_response,
    PredictionType.PROB: _aggregate_prob,
    PredictionType.SCORE: _aggregate_score,
    PredictionType.SCOREPROB: _aggregate_scoreprob,
}


def rescale_columns(scores: np.ndarray) -> np.ndarray:
    """
    Min-max rescale each column to [0, 1] over the cohort.

    Columns with a single distinct value (or no rows) map to 0.5.
    """
    if scores.shape[0] == 0:
        return scores.astype(float)
    lo = scores.min(axis=0)
    hi = scores.max(axis=0)
    span = hi - lo
    with np.errstate(invalid="ignore", divide="ignore"):
        scaled = (scores - lo) / span
    return np.where(span > 0, scaled, SCOREPROB_CONSTANT)


def _model_codes(
    model: RankedModel,
    columns: Dict[str, np.ndarray],
    encoding: FeatureEncoding,
) -> np.ndarray:
    coded = []
    for spec in model.schema.features:
        values = columns[spec.name]
        if encoding is FeatureEncoding.SCHEMA:
            coded.append(codes_from_levels(values, spec.levels))
        else:
            coded.append(positional_codes(values))
    return np.column_stack(coded)


def model_predictions(
    models: Sequence[RankedModel],
    new_data: pd.DataFrame,
    unknown_policy: UnknownPolicy = UnknownPolicy.GLOBAL_MEAN,
    global_mean: float = 0.5,
    encoding: FeatureEncoding = FeatureEncoding.SCHEMA,
) -> np.ndarray:
    """
    Per-model cell predictions for every sample.

    Returns
    -------
    np.ndarray, shape (n_samples, len(models))
        Looked-up cell predictions; uninformative entries are NaN (GAP) or
        ``global_mean`` (GLOBAL_MEAN).
    """
    n = len(new_data)
    out = np.full((n, len(models)), np.nan)
    columns: Dict[str, np.ndarray] = {}
    fill = np.nan if unknown_policy is UnknownPolicy.GAP else float(global_mean)

    for m, model in enumerate(models):
        for name in model.feature_names:
            if name not in columns:
                columns[name] = column_codes(new_data[name])
        cells = cell_indices(_model_codes(model, columns, encoding), model.bases)
        valid = cells != INVALID_CELL

        prob = np.full(n, np.nan)
        labels = np.full(n, "N", dtype="<U1")
        prob[valid] = model.predictions[cells[valid]]
        labels[valid] = model.labels[cells[valid]]
        uninformative = ~valid | np.isin(labels, list(UNINFORMATIVE_LABELS)) | np.isnan(prob)
        prob[uninformative] = fill
        out[:, m] = prob

        logger.debug(
            f"Rank {m + 1} {model.feature_names}: {int(valid.sum())}/{n} samples in trained "
            f"cells, {int((~uninformative).sum())} informative"
        )
    return out


def predict(
    models: Union[RankedModelSet, Sequence[RankedModel]],
    new_data: Union[pd.DataFrame, ObservationView],
    type: Union[PredictionType, str] = PredictionType.RESPONSE,
    top_results: Optional[int] = None,
    all_sizes: bool = False,
    unknown_policy: Union[UnknownPolicy, str] = UnknownPolicy.GAP,
    global_mean: float = 0.5,
    encoding: Union[FeatureEncoding, str] = FeatureEncoding.SCHEMA,
) -> Union[np.ndarray, pd.DataFrame]:
    """
    Predict with the top-ranked models of a ranked model set.

    Parameters
    ----------
    models : RankedModelSet or sequence of RankedModel
        Rank 1 first.
    new_data : pd.DataFrame or ObservationView
        Samples to predict. Must contain a column for every model feature.
    type : PredictionType or str
        One of response, prob, score, scoreprob.
    top_results : int, optional
        Ensemble size K in ``[0, len(models)]``. Required unless
        ``all_sizes`` is set.
    all_sizes : bool
        Return predictions for every ensemble size 1..len(models).
    unknown_policy : UnknownPolicy or str
        ``gap`` (uninformative cells are ignored) or ``global_mean``.
    global_mean : float
        Substitute for uninformative cells under ``global_mean``.
    encoding : FeatureEncoding or str
        ``schema`` (default) or ``positional``.

    Returns
    -------
    np.ndarray or pd.DataFrame
        A vector of length n_samples for a fixed K; with ``all_sizes`` a
        DataFrame of n_samples rows and one column per ensemble size
        (labelled 1..len(models)), indexed like ``new_data``.

    Raises
    ------
    InvalidArgumentError
        For every invalid argument, reported together.
    DimensionMismatchError
        If a model feature is not a column of ``new_data``.
    """
    checks = ArgumentCollector()
    if isinstance(models, RankedModelSet):
        model_set = models
    elif isinstance(models, Sequence) and all(isinstance(m, RankedModel) for m in models):
        model_set = RankedModelSet(models)
    else:
        checks.add(f"'models' must be a RankedModelSet, got {models.__class__.__name__}")
        model_set = RankedModelSet()
    if isinstance(new_data, ObservationView):
        new_data = new_data.to_frame()
    if not isinstance(new_data, pd.DataFrame):
        checks.add(f"'new_data' must be a DataFrame, got {new_data.__class__.__name__}")
    kind = checks.check_enum(type, PredictionType, "type")
    policy = checks.check_enum(unknown_policy, UnknownPolicy, "unknown_policy")
    enc = checks.check_enum(encoding, FeatureEncoding, "encoding")
    all_ok = checks.check_flag(all_sizes, "all_sizes")
    checks.check_number(global_mean, "global_mean")
    if top_results is None:
        if all_ok and not all_sizes:
            checks.add("Please specify 'top_results' or set 'all_sizes=True'")
    else:
        checks.check_int(top_results, "top_results", lower=0, upper=len(model_set))

    missing: List[str] = []
    if isinstance(new_data, pd.DataFrame):
        missing = [name for name in model_set.feature_names if name not in new_data.columns]
    if missing and checks.violations:
        checks.add(f"Missing covariate(s) in new data: {', '.join(missing)}")
    checks.report()
    if missing:
        raise DimensionMismatchError(missing)

    n_models = len(model_set) if all_sizes else int(top_results)
    probabilities = model_predictions(
        model_set[:n_models], new_data, policy, float(global_mean), enc
    )
    cumulative = CumulativePredictions.from_matrix(probabilities)
    unknown_value = np.nan if policy is UnknownPolicy.GAP else float(global_mean)
    aggregated = _AGGREGATORS[kind](cumulative, unknown_value)

    logger.debug(
        f"Predicted {len(new_data)} samples with {n_models} models "
        f"(type={kind.value}, unknown_policy={policy.value}, all_sizes={all_sizes})"
    )

    if all_sizes:
        frame = pd.DataFrame(
            aggregated[:, 1:],
            index=new_data.index,
            columns=pd.RangeIndex(1, n_models + 1, name="top_results"),
        )
        return frame
    return aggregated[:, n_models]
