# File: mbmdrc/models.py
# Location: mbmdrc/mbmdrc/models.py
"""
Ranked model records and their JSON persistence.

A ``RankedModelSet`` is the only object that has to survive between fitting
and prediction. Each ``RankedModel`` keeps just what prediction needs:

- feature indices and the feature schema (names + training levels)
- the per-cell label array (H/L/O/N)
- the per-cell prediction array (case rate or outcome mean)
- cardinality metadata ``n_rows`` / ``n_cells`` from which the cell bases
  are rebuilt (see ``indexing.bases_for``)
- the model test statistic it was ranked by

Models and sets are immutable once built: arrays are flagged read-only and
the set stores a tuple.
"""

from __future__ import annotations

import json
import logging
import math
from collections import abc
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union, overload

import numpy as np

from .data import FeatureSchema
from .errors import ModelFormatError
from .indexing import bases_for

logger = logging.getLogger("mbmdrc")

MODEL_FORMAT_VERSION = 1
_VALID_LABELS = frozenset({"H", "L", "O", "N"})


@dataclass(frozen=True, eq=False)
class RankedModel:
    """One fitted MB-MDR model."""

    features: Tuple[int, ...]
    schema: FeatureSchema
    labels: np.ndarray
    predictions: np.ndarray
    n_rows: int
    n_cells: int
    statistic: float = float("nan")

    def __post_init__(self) -> None:
        labels = np.asarray(self.labels, dtype="<U1")
        predictions = np.asarray(self.predictions, dtype=float)
        labels.setflags(write=False)
        predictions.setflags(write=False)
        object.__setattr__(self, "labels", labels)
        object.__setattr__(self, "predictions", predictions)
        object.__setattr__(self, "features", tuple(int(f) for f in self.features))

    @property
    def feature_names(self) -> List[str]:
        return self.schema.names

    @property
    def bases(self) -> List[int]:
        return bases_for(self.n_rows, self.n_cells, len(self.features))

    @property
    def order(self) -> int:
        return len(self.features)

    def validate(self, rank: Optional[int] = None) -> None:
        """
        Check internal consistency.

        Raises
        ------
        ModelFormatError
            If array lengths, labels, schema and cardinality metadata disagree.
        """
        if not 1 <= len(self.features) <= 2:
            raise ModelFormatError(f"expected 1 or 2 features, got {len(self.features)}", rank)
        if len(self.schema.features) != len(self.features):
            raise ModelFormatError(
                f"schema lists {len(self.schema.features)} features for "
                f"{len(self.features)} model features",
                rank,
            )
        if self.labels.shape != (self.n_cells,) or self.predictions.shape != (self.n_cells,):
            raise ModelFormatError(
                f"label/prediction arrays must have length n_cells={self.n_cells}, got "
                f"{self.labels.shape} and {self.predictions.shape}",
                rank,
            )
        bad = sorted(set(self.labels.tolist()) - _VALID_LABELS)
        if bad:
            raise ModelFormatError(f"unknown cell label(s) {bad}", rank)
        try:
            bases = bases_for(self.n_rows, self.n_cells, len(self.features))
        except ValueError as e:
            raise ModelFormatError(str(e), rank) from e
        if len(bases) != len(self.features) or bases != self.schema.bases:
            raise ModelFormatError(
                f"cardinality metadata (n_rows={self.n_rows}, n_cells={self.n_cells}) "
                f"does not match schema bases {self.schema.bases}",
                rank,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "features": list(self.features),
            "schema": self.schema.to_dict(),
            "labels": self.labels.tolist(),
            "predictions": [None if math.isnan(p) else float(p) for p in self.predictions],
            "n_rows": int(self.n_rows),
            "n_cells": int(self.n_cells),
            "statistic": None if math.isnan(self.statistic) else float(self.statistic),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], rank: Optional[int] = None) -> "RankedModel":
        try:
            model = cls(
                features=tuple(payload["features"]),
                schema=FeatureSchema.from_dict(payload["schema"]),
                labels=np.asarray(payload["labels"], dtype="<U1"),
                predictions=np.asarray(
                    [np.nan if p is None else p for p in payload["predictions"]], dtype=float
                ),
                n_rows=int(payload["n_rows"]),
                n_cells=int(payload["n_cells"]),
                statistic=(
                    float("nan") if payload.get("statistic") is None else float(payload["statistic"])
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ModelFormatError(f"cannot read model record: {e}", rank) from e
        model.validate(rank)
        return model


class RankedModelSet(abc.Sequence):
    """
    Immutable ordered sequence of RankedModel, rank 1 first.

    Slicing returns a RankedModelSet holding the corresponding prefix.
    """

    def __init__(self, models: Sequence[RankedModel] = ()) -> None:
        self._models: Tuple[RankedModel, ...] = tuple(models)
        for rank, model in enumerate(self._models, start=1):
            model.validate(rank)

    @overload
    def __getitem__(self, index: int) -> RankedModel: ...

    @overload
    def __getitem__(self, index: slice) -> "RankedModelSet": ...

    def __getitem__(self, index: Union[int, slice]):
        if isinstance(index, slice):
            return RankedModelSet(self._models[index])
        return self._models[index]

    def __len__(self) -> int:
        return len(self._models)

    def __iter__(self) -> Iterator[RankedModel]:
        return iter(self._models)

    def __repr__(self) -> str:
        return f"RankedModelSet({len(self)} models)"

    @property
    def feature_names(self) -> List[str]:
        """Distinct feature names used by any model, in first-use order."""
        seen: Dict[str, None] = {}
        for model in self._models:
            for name in model.feature_names:
                seen.setdefault(name, None)
        return list(seen)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format_version": MODEL_FORMAT_VERSION,
            "models": [m.to_dict() for m in self._models],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RankedModelSet":
        version = payload.get("format_version")
        if version != MODEL_FORMAT_VERSION:
            raise ModelFormatError(
                f"unsupported model format version {version!r} (expected {MODEL_FORMAT_VERSION})"
            )
        models = payload.get("models")
        if not isinstance(models, list):
            raise ModelFormatError("'models' must be a list")
        return cls(
            [RankedModel.from_dict(m, rank) for rank, m in enumerate(models, start=1)]
        )


def save_models(models: RankedModelSet, path: Union[str, Path]) -> None:
    """Write a ranked model set as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(models.to_dict(), f, indent=2)
    logger.info(f"Saved {len(models)} ranked models to {path}")


def load_models(path: Union[str, Path]) -> RankedModelSet:
    """
    Read a ranked model set written by ``save_models``.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    ModelFormatError
        If the file is not valid JSON or a model record is malformed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Model file '{path}' not found.")
    with open(path, "r", encoding="utf-8") as f:
        try:
            payload = json.load(f)
        except json.JSONDecodeError as e:
            raise ModelFormatError(f"Error parsing model JSON: {e}") from e
    models = RankedModelSet.from_dict(payload)
    logger.debug(f"Loaded {len(models)} ranked models from {path}")
    return models
