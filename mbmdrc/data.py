# File: mbmdrc/data.py
# Location: mbmdrc/mbmdrc/data.py
"""
Observation data access and encoding for MB-MDR.

Provides:

- ``ObservationView``: read-only accessor over an integer-coded feature
  matrix and an outcome vector. No business logic.
- ``FeatureSpec`` / ``FeatureSchema``: versioned per-feature level lists
  carried by every fitted model, so genotype codes are mapped to cell
  positions identically at fit and at predict time.
- ``encode_frame``: turn a pandas DataFrame into an ObservationView plus
  the categorical level maps needed to encode new data the same way.
- ``codes_from_levels`` / ``positional_codes``: the two genotype encodings
  used by the predictor.

Genotype codes are non-negative integers. ``MISSING_CODE`` (-9) and any
other negative code mean "missing"; observations with a missing code at a
model feature are excluded from that model's cells.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import InvalidArgumentError

logger = logging.getLogger("mbmdrc")

MISSING_CODE = -9
SCHEMA_VERSION = 1


def _read_only(array: np.ndarray) -> np.ndarray:
    view = array.view()
    view.setflags(write=False)
    return view


class TraitType(Enum):
    """Outcome scale: binary (classification) or continuous (regression)."""

    BINARY = "binary"
    CONTINUOUS = "continuous"


class ObservationView:
    """
    Read-only view over a feature matrix and an outcome vector.

    The arrays are borrowed, not copied, when they already have an integer
    (features) and floating (outcome) dtype. Out-of-range access is left to
    numpy; callers are expected to stay within bounds.

    Parameters
    ----------
    features : array-like, shape (n_observations, n_features)
        Integer genotype codes. Negative values denote missing genotypes.
    outcome : array-like, shape (n_observations,)
        0/1 for binary traits, real values for continuous traits.
    feature_names : sequence of str, optional
        Column names. Defaults to ``X1..Xk``.
    """

    def __init__(
        self,
        features: np.ndarray,
        outcome: np.ndarray,
        feature_names: Optional[Sequence[str]] = None,
    ) -> None:
        features = np.asarray(features)
        if features.ndim != 2:
            raise InvalidArgumentError([f"features must be 2-dimensional, got {features.ndim}"])
        if not np.issubdtype(features.dtype, np.integer):
            features = features.astype(np.int64)
        outcome = np.asarray(outcome, dtype=float)
        if outcome.shape != (features.shape[0],):
            raise InvalidArgumentError(
                [
                    f"outcome has shape {outcome.shape}, expected ({features.shape[0]},) "
                    "to match the feature matrix"
                ]
            )
        if feature_names is None:
            feature_names = [f"X{j + 1}" for j in range(features.shape[1])]
        elif len(feature_names) != features.shape[1]:
            raise InvalidArgumentError(
                [f"{len(feature_names)} feature names given for {features.shape[1]} features"]
            )

        self._features = features
        self._outcome = outcome
        self._feature_names = tuple(str(n) for n in feature_names)

    @property
    def n_observations(self) -> int:
        """Number of observations."""
        return int(self._features.shape[0])

    @property
    def n_features(self) -> int:
        """Number of features."""
        return int(self._features.shape[1])

    @property
    def feature_names(self) -> Tuple[str, ...]:
        """Column names of the feature matrix."""
        return self._feature_names

    def feature(self, observation: int, feature: int) -> int:
        """Genotype code of one observation at one feature."""
        return int(self._features[observation, feature])

    def outcome(self, observation: int) -> float:
        """Outcome value of one observation."""
        return float(self._outcome[observation])

    def column(self, feature: int) -> np.ndarray:
        """All genotype codes of one feature (read-only)."""
        return _read_only(self._features[:, feature])

    def columns(self, features: Sequence[int]) -> np.ndarray:
        """Genotype codes of several features, shape (n_observations, len(features))."""
        return self._features[:, list(features)]

    @property
    def outcomes(self) -> np.ndarray:
        """The outcome vector (read-only)."""
        return _read_only(self._outcome)

    def global_mean(self) -> float:
        """Mean outcome over all observations."""
        return float(self._outcome.mean()) if self.n_observations else float("nan")

    def subset(self, rows: np.ndarray) -> "ObservationView":
        """New view restricted to ``rows`` (boolean mask or integer positions)."""
        return ObservationView(self._features[rows], self._outcome[rows], self._feature_names)

    def to_frame(self) -> pd.DataFrame:
        """Feature matrix as a DataFrame with the view's column names."""
        return pd.DataFrame(self._features, columns=list(self._feature_names))


@dataclass(frozen=True)
class FeatureSpec:
    """Training-time levels of one feature. Position in ``levels`` is the cell coordinate."""

    name: str
    levels: Tuple[int, ...]

    @property
    def cardinality(self) -> int:
        return len(self.levels)


@dataclass(frozen=True)
class FeatureSchema:
    """Versioned list of FeatureSpec, one per model feature, in model order."""

    features: Tuple[FeatureSpec, ...]
    version: int = SCHEMA_VERSION

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.features]

    @property
    def bases(self) -> List[int]:
        return [f.cardinality for f in self.features]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "features": [{"name": f.name, "levels": list(f.levels)} for f in self.features],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FeatureSchema":
        version = int(payload.get("version", SCHEMA_VERSION))
        if version != SCHEMA_VERSION:
            raise InvalidArgumentError(
                [f"Unsupported feature schema version {version} (expected {SCHEMA_VERSION})"]
            )
        specs = tuple(
            FeatureSpec(name=str(f["name"]), levels=tuple(int(v) for v in f["levels"]))
            for f in payload["features"]
        )
        return cls(features=specs, version=version)


def observed_levels(codes: np.ndarray) -> Tuple[int, ...]:
    """Sorted distinct non-missing codes of a column."""
    codes = np.asarray(codes)
    return tuple(int(v) for v in np.unique(codes[codes >= 0]))


def build_schema(view: ObservationView, features: Sequence[int]) -> FeatureSchema:
    """Schema of ``features`` as observed in ``view``."""
    return FeatureSchema(
        features=tuple(
            FeatureSpec(name=view.feature_names[j], levels=observed_levels(view.column(j)))
            for j in features
        )
    )


def codes_from_levels(values: np.ndarray, levels: Sequence[int]) -> np.ndarray:
    """
    Map raw genotype codes to positions in ``levels``.

    Missing (negative) codes and codes not present in ``levels`` map to -1.
    """
    values = np.asarray(values, dtype=np.int64)
    out = np.full(values.shape, -1, dtype=np.int64)
    if len(levels) == 0:
        return out
    level_arr = np.asarray(levels, dtype=np.int64)
    pos = np.searchsorted(level_arr, values)
    pos_clipped = np.minimum(pos, len(level_arr) - 1)
    hit = (values >= 0) & (level_arr[pos_clipped] == values)
    out[hit] = pos_clipped[hit]
    return out


def positional_codes(values: np.ndarray) -> np.ndarray:
    """
    Re-encode a column by the sorted distinct values present in it.

    This is the per-call encoding of the original predictor: codes are
    local to the column being predicted and only positionally aligned with
    training-time codes.
    """
    values = np.asarray(values, dtype=np.int64)
    return codes_from_levels(values, observed_levels(values))


def column_codes(series: pd.Series) -> np.ndarray:
    """Integer codes of a DataFrame column; NaN and non-numeric entries become MISSING_CODE."""
    numeric = pd.to_numeric(series, errors="coerce")
    n_bad = int(numeric.isna().sum() - series.isna().sum())
    if n_bad > 0:
        logger.warning(
            f"Column '{series.name}': {n_bad} non-numeric value(s) treated as missing genotypes"
        )
    return numeric.fillna(MISSING_CODE).to_numpy().astype(np.int64)


@dataclass
class EncodedFrame:
    """Result of ``encode_frame``."""

    view: ObservationView
    trait_type: TraitType
    class_levels: Optional[List[Any]] = None
    categories: Dict[str, List[Any]] = field(default_factory=dict)


def _encode_feature_column(
    series: pd.Series, categories: Optional[List[Any]]
) -> Tuple[np.ndarray, Optional[List[Any]]]:
    if categories is None and pd.api.types.is_numeric_dtype(series) and not isinstance(
        series.dtype, pd.CategoricalDtype
    ):
        return column_codes(series), None
    if categories is None:
        categories = sorted(series.dropna().unique().tolist(), key=str)
    lookup = {value: code for code, value in enumerate(categories)}
    codes = np.array(
        [MISSING_CODE if pd.isna(v) else lookup.get(v, MISSING_CODE) for v in series],
        dtype=np.int64,
    )
    return codes, categories


def encode_features(
    df: pd.DataFrame,
    columns: Sequence[str],
    categories: Optional[Dict[str, List[Any]]] = None,
) -> Tuple[np.ndarray, Dict[str, List[Any]]]:
    """
    Integer-code ``columns`` of ``df``.

    Numeric columns are taken as genotype codes. Non-numeric (or
    categorical) columns are factor-coded by their sorted distinct values,
    or by ``categories[column]`` when given so that new data is coded the
    same way as training data.
    """
    categories = categories or {}
    matrix = np.empty((len(df), len(columns)), dtype=np.int64)
    used: Dict[str, List[Any]] = {}
    for j, col in enumerate(columns):
        codes, cats = _encode_feature_column(df[col], categories.get(col))
        matrix[:, j] = codes
        if cats is not None:
            used[col] = cats
    return matrix, used


def encode_frame(
    df: pd.DataFrame,
    outcome: str,
    features: Optional[Sequence[str]] = None,
) -> EncodedFrame:
    """
    Build an ObservationView from a DataFrame.

    Parameters
    ----------
    df : pd.DataFrame
        Input data, one row per observation.
    outcome : str
        Name of the outcome column.
    features : sequence of str, optional
        Feature columns. Defaults to every column except ``outcome``.

    Returns
    -------
    EncodedFrame
        The view, the trait type, the class levels (binary traits; first
        level is the negative class) and the categorical maps used.

    Raises
    ------
    InvalidArgumentError
        If the outcome column is missing or has missing values, or a binary
        outcome does not have exactly two levels.
    """
    violations: List[str] = []
    if outcome not in df.columns:
        raise InvalidArgumentError([f"Outcome column '{outcome}' not found in data"])
    if features is None:
        features = [c for c in df.columns if c != outcome]
    missing = [c for c in features if c not in df.columns]
    if missing:
        violations.append(f"Feature column(s) not found in data: {missing}")
    if not features:
        violations.append("At least one feature column is required")

    y_raw = df[outcome]
    if y_raw.isna().any():
        violations.append(f"Outcome column '{outcome}' contains {int(y_raw.isna().sum())} NA value(s)")
    if violations:
        raise InvalidArgumentError(violations)

    class_levels: Optional[List[Any]] = None
    if pd.api.types.is_numeric_dtype(y_raw) and not isinstance(y_raw.dtype, pd.CategoricalDtype):
        distinct = set(np.unique(y_raw.to_numpy()).tolist())
        if pd.api.types.is_bool_dtype(y_raw) or distinct <= {0, 1}:
            trait_type = TraitType.BINARY
            class_levels = [0, 1]
        else:
            trait_type = TraitType.CONTINUOUS
        y = y_raw.to_numpy().astype(float)
    else:
        if isinstance(y_raw.dtype, pd.CategoricalDtype):
            present = set(y_raw.dropna().tolist())
            class_levels = [c for c in y_raw.cat.categories.tolist() if c in present]
        else:
            class_levels = sorted(y_raw.unique().tolist(), key=str)
        if len(class_levels) != 2:
            raise InvalidArgumentError(
                [
                    f"Categorical outcome '{outcome}' must have exactly 2 levels, "
                    f"found {len(class_levels)}: {class_levels}"
                ]
            )
        trait_type = TraitType.BINARY
        y = (y_raw == class_levels[1]).to_numpy().astype(float)

    matrix, categories = encode_features(df, list(features))
    view = ObservationView(matrix, y, list(features))
    logger.debug(
        f"Encoded {view.n_observations} observations x {view.n_features} features "
        f"({trait_type.value} outcome, {len(categories)} factor-coded column(s))"
    )
    return EncodedFrame(
        view=view, trait_type=trait_type, class_levels=class_levels, categories=categories
    )
