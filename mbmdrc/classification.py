# File: mbmdrc/classification.py
# Location: mbmdrc/mbmdrc/classification.py
"""
Cell classification and model test statistics for one MB-MDR model.

A model is a fixed set of one or two features. ``fit_model`` partitions the
observations into genotype-combination cells, tests every cell against the
rest of the data and labels it:

    H  cell outcome rate significantly above the overall mean
    L  cell outcome rate significantly below the overall mean
    O  enough data, no significant deviation
    N  fewer than ``min_cell_size`` observations

Statistical approach
--------------------
Binary traits: pooled two-proportion z test of cell vs rest, reported as the
1-df chi-square ``z**2`` (identical to the Pearson chi-square of the 2x2
cell/rest by case/control table without continuity correction).

Continuous traits and adjusted analyses: pooled-variance two-sample t test
of cell vs rest with ``N - 2`` degrees of freedom, reported as ``t**2``.

Adjustment
----------
``ADDITIVE`` and ``CODOMINANT`` residualise the outcome on the main effects
of the model's markers (statsmodels OLS) before testing. ADDITIVE codes each
marker as allele dosage, so heterozygotes are collapsed onto the trend
between the homozygotes; CODOMINANT gives every genotype its own dummy term.
Labels then reflect interaction beyond the main effects. Cell predictions
are always raw in-cell outcome means.

Model statistic
---------------
Pluggable via the ``ModelStatistic`` ABC. ``sum_chi2`` (default) sums the
per-cell chi-squares of all non-N cells. ``hl_max`` pools H cells and L
cells and takes the larger of the two pooled-vs-rest chi-squares (MB-MDR
style).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple, Type

import numpy as np
from scipy.stats import chi2 as chi2_dist
from scipy.stats import t as t_dist

from .data import FeatureSchema, ObservationView, TraitType, build_schema, codes_from_levels
from .errors import UndefinedStatisticError
from .indexing import INVALID_CELL, cardinality_metadata, cell_indices
from .validation import ArgumentCollector

if TYPE_CHECKING:
    from .models import RankedModel

logger = logging.getLogger("mbmdrc")


class CellLabel(str, Enum):
    """HLO classification of a genotype combination."""

    HIGH = "H"
    LOW = "L"
    OTHER = "O"
    NOT_ENOUGH_DATA = "N"


UNINFORMATIVE_LABELS = frozenset({CellLabel.OTHER.value, CellLabel.NOT_ENOUGH_DATA.value})


class AdjustmentMode(Enum):
    """Main-effect adjustment applied before cell testing."""

    NONE = "NONE"
    ADDITIVE = "ADDITIVE"
    CODOMINANT = "CODOMINANT"


@dataclass(frozen=True)
class GroupSums:
    """Sufficient statistics of a group of observations."""

    n: float
    total: float
    total_sq: float


@dataclass
class CellTable:
    """
    Per-cell arrays of one classified model.

    ``test_*`` arrays hold the sums the H/L/O test ran on (residuals when an
    adjustment is active, the raw outcome otherwise); ``test_totals`` the
    corresponding sums over every counted observation.
    """

    counts: np.ndarray
    rate_in: np.ndarray
    rate_out: np.ndarray
    chi2: np.ndarray
    p_values: np.ndarray
    labels: np.ndarray
    test_n: np.ndarray
    test_sum: np.ndarray
    test_sumsq: np.ndarray
    test_totals: GroupSums
    test_trait: TraitType


# ---------------------------------------------------------------------------
# Count pass
# ---------------------------------------------------------------------------


def count_cells(
    cells: np.ndarray, values: np.ndarray, n_cells: int, n_shards: int = 1
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Accumulate per-cell count, sum and sum of squares.

    Rows with ``cells == INVALID_CELL`` are skipped. With ``n_shards > 1``
    the observations are split into disjoint contiguous shards, each with
    its own counters, merged by summation.
    """
    keep = cells != INVALID_CELL
    cells = cells[keep]
    values = np.asarray(values, dtype=float)[keep]

    n = np.zeros(n_cells, dtype=float)
    s = np.zeros(n_cells, dtype=float)
    ss = np.zeros(n_cells, dtype=float)
    for shard_cells, shard_values in zip(
        np.array_split(cells, max(1, n_shards)), np.array_split(values, max(1, n_shards))
    ):
        n += np.bincount(shard_cells, minlength=n_cells)
        s += np.bincount(shard_cells, weights=shard_values, minlength=n_cells)
        ss += np.bincount(shard_cells, weights=shard_values**2, minlength=n_cells)
    return n, s, ss


# ---------------------------------------------------------------------------
# Cell-vs-rest test
# ---------------------------------------------------------------------------


def group_deviation(
    group: GroupSums, totals: GroupSums, trait: TraitType, cell: int = -1
) -> Tuple[float, float, float, float]:
    """
    Test one group of observations against all other observations.

    Returns
    -------
    (rate_in, rate_out, chi2, p_value)
        ``chi2`` is the squared standardized deviation (z**2 or t**2). An
        untestable group (no rest of data, zero variance) yields chi2 0
        and p-value 1.

    Raises
    ------
    UndefinedStatisticError
        If the group is empty.
    """
    if group.n <= 0:
        raise UndefinedStatisticError(cell)

    n_in = group.n
    n_out = totals.n - n_in
    rate_in = group.total / n_in
    if n_out <= 0:
        return rate_in, float("nan"), 0.0, 1.0
    rate_out = (totals.total - group.total) / n_out

    if trait is TraitType.BINARY:
        mu = totals.total / totals.n
        variance = mu * (1.0 - mu) * (1.0 / n_in + 1.0 / n_out)
        if variance <= 0:
            return rate_in, rate_out, 0.0, 1.0
        stat = (rate_in - rate_out) ** 2 / variance
        return rate_in, rate_out, float(stat), float(chi2_dist.sf(stat, 1))

    df = totals.n - 2
    ss_in = group.total_sq - group.total**2 / n_in
    ss_out = (totals.total_sq - group.total_sq) - (totals.total - group.total) ** 2 / n_out
    if df <= 0:
        return rate_in, rate_out, 0.0, 1.0
    pooled = max(ss_in + ss_out, 0.0) / df
    variance = pooled * (1.0 / n_in + 1.0 / n_out)
    if variance <= 0:
        return rate_in, rate_out, 0.0, 1.0
    t_stat = (rate_in - rate_out) / np.sqrt(variance)
    return rate_in, rate_out, float(t_stat**2), float(2.0 * t_dist.sf(abs(t_stat), df))


# ---------------------------------------------------------------------------
# Model statistics
# ---------------------------------------------------------------------------


class ModelStatistic(ABC):
    """Combine a classified CellTable into one ranking statistic."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier used for registry lookup."""
        ...

    @abstractmethod
    def compute(self, table: CellTable) -> float:
        """Return a finite, deterministic statistic; larger means stronger evidence."""
        ...


class SumChiSquareStatistic(ModelStatistic):
    """Sum of per-cell squared standardized deviations over non-N cells."""

    @property
    def name(self) -> str:
        return "sum_chi2"

    def compute(self, table: CellTable) -> float:
        informative = table.labels != CellLabel.NOT_ENOUGH_DATA.value
        return float(np.sum(table.chi2[informative]))


class HLMaxStatistic(ModelStatistic):
    """
    Larger of the pooled-H-vs-rest and pooled-L-vs-rest chi-squares.

    A model without H and L cells scores 0.
    """

    @property
    def name(self) -> str:
        return "hl_max"

    def compute(self, table: CellTable) -> float:
        best = 0.0
        for label in (CellLabel.HIGH.value, CellLabel.LOW.value):
            members = table.labels == label
            if not members.any():
                continue
            pooled = GroupSums(
                n=float(table.test_n[members].sum()),
                total=float(table.test_sum[members].sum()),
                total_sq=float(table.test_sumsq[members].sum()),
            )
            _, _, stat, _ = group_deviation(pooled, table.test_totals, table.test_trait)
            best = max(best, stat)
        return best


def _build_statistic_registry() -> Dict[str, Type[ModelStatistic]]:
    return {
        "sum_chi2": SumChiSquareStatistic,
        "hl_max": HLMaxStatistic,
    }


def get_model_statistic(name: str) -> ModelStatistic:
    """
    Instantiate a registered model statistic by name.

    Raises
    ------
    ValueError
        If ``name`` is not registered. The message lists the available names.
    """
    registry = _build_statistic_registry()
    if name not in registry:
        raise ValueError(
            f"Model statistic '{name}' is not available. "
            f"Available statistics: {', '.join(sorted(registry))}"
        )
    return registry[name]()


def available_statistics() -> List[str]:
    return sorted(_build_statistic_registry())


# ---------------------------------------------------------------------------
# Adjustment
# ---------------------------------------------------------------------------


def adjust_outcome(
    outcome: np.ndarray, genotypes: np.ndarray, bases: Sequence[int], mode: AdjustmentMode
) -> np.ndarray:
    """
    Residualise ``outcome`` on the main effects of the model's markers.

    Parameters
    ----------
    outcome : np.ndarray, shape (n,)
        Outcome of the counted (non-missing) observations.
    genotypes : np.ndarray, shape (n, k)
        Positional genotype codes of the same observations.
    bases : sequence of int
        Cardinality of each marker.
    mode : AdjustmentMode
        ADDITIVE (dosage terms) or CODOMINANT (one dummy per non-reference
        genotype). NONE returns ``outcome`` unchanged.
    """
    if mode is AdjustmentMode.NONE or len(outcome) == 0:
        return outcome

    import statsmodels.api as sm

    terms: List[np.ndarray] = []
    for j, base in enumerate(bases):
        codes = genotypes[:, j]
        if mode is AdjustmentMode.ADDITIVE:
            terms.append(codes.astype(float))
        else:
            for level in range(1, int(base)):
                terms.append((codes == level).astype(float))

    if not terms:
        return outcome - outcome.mean()
    design = sm.add_constant(np.column_stack(terms), has_constant="add")
    fit_result = sm.OLS(outcome, design).fit()
    return np.asarray(fit_result.resid, dtype=float)


# ---------------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------------


@dataclass
class ModelFit:
    """
    Classification of one model on training data.

    ``labels``, ``predictions`` and ``statistic`` are the per-model result;
    the remaining fields carry the counts and metadata needed to rank the
    model and predict with it later.
    """

    features: Tuple[int, ...]
    schema: FeatureSchema
    trait_type: TraitType
    labels: np.ndarray
    predictions: np.ndarray
    statistic: float
    cells: CellTable
    mean: float
    n_rows: int
    n_cells: int

    @property
    def feature_names(self) -> List[str]:
        return self.schema.names

    def to_model(self) -> "RankedModel":
        """Immutable model record for a ranked model set."""
        from .models import RankedModel

        return RankedModel(
            features=self.features,
            schema=self.schema,
            labels=self.labels,
            predictions=self.predictions,
            n_rows=self.n_rows,
            n_cells=self.n_cells,
            statistic=self.statistic,
        )


def infer_trait_type(outcome: np.ndarray) -> TraitType:
    """BINARY if every outcome value is 0 or 1, CONTINUOUS otherwise."""
    values = np.unique(outcome)
    return TraitType.BINARY if np.all(np.isin(values, (0.0, 1.0))) else TraitType.CONTINUOUS


def fit_model(
    view: ObservationView,
    features: Sequence[int],
    min_cell_size: int = 10,
    alpha: float = 0.1,
    adjustment: AdjustmentMode | str = AdjustmentMode.NONE,
    trait_type: Optional[TraitType] = None,
    statistic: str | ModelStatistic = "sum_chi2",
    n_shards: int = 1,
) -> ModelFit:
    """
    Classify the cells of one model and compute its test statistic.

    Parameters
    ----------
    view : ObservationView
        Training data.
    features : sequence of int
        One or two feature indices into ``view``.
    min_cell_size : int
        Cells with fewer observations are labelled N.
    alpha : float
        Two-sided significance level of the cell-vs-rest test.
    adjustment : AdjustmentMode or str
        Main-effect adjustment (NONE, ADDITIVE, CODOMINANT).
    trait_type : TraitType, optional
        Inferred from the outcome when not given.
    statistic : str or ModelStatistic
        Registered statistic name or instance.
    n_shards : int
        Number of disjoint observation shards for the count pass.

    Returns
    -------
    ModelFit

    Raises
    ------
    InvalidArgumentError
        Listing every invalid argument.
    """
    checks = ArgumentCollector()
    features = tuple(int(f) for f in features) if _is_int_sequence(features) else features
    if not _is_int_sequence(features) or not 1 <= len(features) <= 2:
        checks.add(f"'features' must hold 1 or 2 feature indices, got {features!r}")
    else:
        if len(set(features)) != len(features):
            checks.add(f"'features' must be distinct, got {list(features)}")
        out_of_range = [f for f in features if not 0 <= f < view.n_features]
        if out_of_range:
            checks.add(f"feature index(es) {out_of_range} outside [0, {view.n_features})")
    checks.check_int(min_cell_size, "min_cell_size", lower=0)
    checks.check_number(alpha, "alpha", lower=0.0, upper=1.0)
    mode = checks.check_enum(adjustment, AdjustmentMode, "adjustment")
    checks.check_int(n_shards, "n_shards", lower=1)
    stat_impl: Optional[ModelStatistic] = None
    if isinstance(statistic, ModelStatistic):
        stat_impl = statistic
    elif statistic in _build_statistic_registry():
        stat_impl = get_model_statistic(statistic)
    else:
        checks.add(
            f"'statistic' must be one of {available_statistics()}, got {statistic!r}"
        )
    checks.report()
    assert mode is not None and stat_impl is not None

    if trait_type is None:
        trait_type = infer_trait_type(view.outcomes)

    schema = build_schema(view, features)
    bases = schema.bases
    n_rows, n_cells = cardinality_metadata(bases)

    positional = np.column_stack(
        [codes_from_levels(view.column(f), spec.levels) for f, spec in zip(features, schema.features)]
    )
    cells = cell_indices(positional, bases)
    counted = cells != INVALID_CELL

    y = view.outcomes
    n, s, _ = count_cells(cells, y, n_cells, n_shards)

    if mode is AdjustmentMode.NONE:
        test_values = y[counted]
        test_trait = trait_type
    else:
        test_values = adjust_outcome(y[counted], positional[counted], bases, mode)
        test_trait = TraitType.CONTINUOUS
    test_n, test_sum, test_sumsq = count_cells(cells[counted], test_values, n_cells, n_shards)
    totals = GroupSums(
        n=float(test_n.sum()), total=float(test_sum.sum()), total_sq=float(test_sumsq.sum())
    )

    table = _classify_cells(
        n, s, test_n, test_sum, test_sumsq, totals, test_trait, min_cell_size, alpha
    )
    stat_value = stat_impl.compute(table)

    predictions = np.where(n > 0, s / np.where(n > 0, n, 1.0), np.nan)
    mean = float(s.sum() / n.sum()) if n.sum() > 0 else float("nan")
    labels = table.labels.copy()
    labels.setflags(write=False)
    predictions.setflags(write=False)

    logger.debug(
        f"Model {schema.names}: {n_cells} cells, "
        f"H={int(np.sum(labels == 'H'))} L={int(np.sum(labels == 'L'))} "
        f"O={int(np.sum(labels == 'O'))} N={int(np.sum(labels == 'N'))}, "
        f"{stat_impl.name}={stat_value:.4g}"
    )

    return ModelFit(
        features=tuple(features),
        schema=schema,
        trait_type=trait_type,
        labels=labels,
        predictions=predictions,
        statistic=stat_value,
        cells=table,
        mean=mean,
        n_rows=n_rows,
        n_cells=n_cells,
    )


def _is_int_sequence(value) -> bool:
    try:
        return all(isinstance(v, (int, np.integer)) and not isinstance(v, bool) for v in value)
    except TypeError:
        return False


def _classify_cells(
    n: np.ndarray,
    s: np.ndarray,
    test_n: np.ndarray,
    test_sum: np.ndarray,
    test_sumsq: np.ndarray,
    totals: GroupSums,
    test_trait: TraitType,
    min_cell_size: int,
    alpha: float,
) -> CellTable:
    n_cells = len(n)
    rate_in = np.full(n_cells, np.nan)
    rate_out = np.full(n_cells, np.nan)
    chi2 = np.zeros(n_cells)
    p_values = np.ones(n_cells)
    labels = np.full(n_cells, CellLabel.NOT_ENOUGH_DATA.value, dtype="<U1")
    total_n = float(n.sum())
    total_s = float(s.sum())

    for cell in range(n_cells):
        if n[cell] < min_cell_size:
            if n[cell] > 0:
                rate_in[cell] = s[cell] / n[cell]
            continue
        try:
            _, _, stat, p = group_deviation(
                GroupSums(test_n[cell], test_sum[cell], test_sumsq[cell]),
                totals,
                test_trait,
                cell,
            )
        except UndefinedStatisticError:
            # min_cell_size == 0 lets empty cells through
            continue
        rate_in[cell] = s[cell] / n[cell]
        if total_n > n[cell]:
            rate_out[cell] = (total_s - s[cell]) / (total_n - n[cell])
        chi2[cell] = stat
        p_values[cell] = p
        if p < alpha and stat > 0:
            above = test_sum[cell] / test_n[cell] > totals.total / totals.n
            labels[cell] = CellLabel.HIGH.value if above else CellLabel.LOW.value
        else:
            labels[cell] = CellLabel.OTHER.value

    return CellTable(
        counts=n,
        rate_in=rate_in,
        rate_out=rate_out,
        chi2=chi2,
        p_values=p_values,
        labels=labels,
        test_n=test_n,
        test_sum=test_sum,
        test_sumsq=test_sumsq,
        test_totals=totals,
        test_trait=test_trait,
    )
