# File: mbmdrc/classifier.py
# Location: mbmdrc/mbmdrc/classifier.py
"""
End-to-end MB-MDR estimator on pandas DataFrames.

``MBMDRClassifier.fit`` encodes the data, optionally picks the ensemble size
by internal cross-validation, runs the exhaustive model search and keeps the
ranked model set together with everything prediction needs (global mean,
class levels, categorical level maps). ``predict`` maps the ensemble output
back to the outcome's own labels.

Example
-------
>>> clf = MBMDRClassifier(order=[2], min_cell_size=5, folds=5, cv_loss="auc", seed=1)
>>> clf.fit(df, outcome="status")
>>> clf.predict(new_df, type="prob")
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import MBMDRConfig
from .data import TraitType, encode_features, encode_frame
from .errors import DimensionMismatchError, MBMDRError, ModelFormatError
from .models import RankedModelSet
from .prediction import PredictionType, UnknownPolicy, predict
from .search import ExhaustiveModelSearch, count_combinations
from .selection import make_stratified_folds, select_ensemble_size
from .validation import parse_enum
from .version import __version__

CLASSIFIER_FORMAT_VERSION = 1


def _json_default(value: Any) -> Any:
    """Convert numpy scalars left in level lists and CV tables."""
    if isinstance(value, np.generic):
        return value.item()
    raise TypeError(f"Object of type {value.__class__.__name__} is not JSON serializable")


class NotFittedError(MBMDRError):
    """Raised when predicting with a classifier that has not been fitted."""

    def __init__(self) -> None:
        super().__init__("MBMDRClassifier is not fitted yet; call fit() first")


class MBMDRClassifier:
    """
    MB-MDR classifier / regressor.

    Parameters
    ----------
    config : MBMDRConfig, optional
        Full configuration. Defaults to ``MBMDRConfig()``.
    logger : logging.Logger, optional
        Sink for progress messages. Defaults to the ``mbmdrc`` logger; pass
        ``silent_logger()`` to suppress output.
    **overrides
        Individual ``MBMDRConfig`` fields, applied on top of ``config``.

    Attributes (after ``fit``)
    --------------------------
    models : RankedModelSet
    top_results : int
        Ensemble size used by ``predict`` (selected by CV when enabled).
    global_mean : float
    trait_type : TraitType
    class_levels : list or None
        Outcome labels, negative class first (binary traits only).
    categories : dict
        Level lists of factor-coded feature columns.
    cv_performance : pd.DataFrame or None
        Long-format CV table (fold, top_results, cv_loss).
    num_samples, num_features, num_combinations : int
    """

    def __init__(
        self,
        config: Optional[MBMDRConfig] = None,
        logger: Optional[logging.Logger] = None,
        **overrides: Any,
    ) -> None:
        settings = (config or MBMDRConfig()).to_dict()
        settings.update(overrides)
        self.config = MBMDRConfig.from_dict(settings)
        self.logger = logger or logging.getLogger("mbmdrc")

        self.models: Optional[RankedModelSet] = None
        self.top_results: Optional[int] = None
        self.global_mean: float = float("nan")
        self.trait_type: Optional[TraitType] = None
        self.class_levels: Optional[List[Any]] = None
        self.categories: Dict[str, List[Any]] = {}
        self.cv_performance: Optional[pd.DataFrame] = None
        self.num_samples = 0
        self.num_features = 0
        self.num_combinations = 0

    def __repr__(self) -> str:
        if not self.is_fitted:
            return "MBMDRClassifier(unfitted)"
        return f"MBMDRClassifier({len(self.models)} models, top_results={self.top_results})"

    @property
    def is_fitted(self) -> bool:
        return self.models is not None

    def _search(self, max_results: int) -> ExhaustiveModelSearch:
        cfg = self.config
        return ExhaustiveModelSearch(
            order=cfg.order,
            min_cell_size=cfg.min_cell_size,
            alpha=cfg.alpha,
            adjustment=cfg.adjustment,
            max_results=max_results,
            statistic=cfg.model_statistic,
            n_workers=cfg.n_workers,
            n_shards=cfg.n_shards,
        )

    def fit(
        self,
        df: pd.DataFrame,
        outcome: str,
        features: Optional[Sequence[str]] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> "MBMDRClassifier":
        """
        Fit on ``df``.

        Parameters
        ----------
        df : pd.DataFrame
            One row per observation.
        outcome : str
            Outcome column. Two-level or 0/1 outcomes fit a classifier,
            other numeric outcomes a regressor.
        features : sequence of str, optional
            Feature columns; default every column except ``outcome``.
        should_cancel : callable, optional
            Polled between cross-validation folds.

        Returns
        -------
        MBMDRClassifier
            ``self``.
        """
        cfg = self.config
        start = time.time()
        encoded = encode_frame(df, outcome, features)
        view = encoded.view

        n_combinations = count_combinations(view.n_features, cfg.order)
        max_results = max(1, min(cfg.max_results, n_combinations))
        top_results = min(max_results, cfg.top_results)
        self.logger.info(
            f"Fitting MB-MDR on {view.n_observations} samples x {view.n_features} features "
            f"({encoded.trait_type.value} outcome, {n_combinations} combinations)"
        )

        cv_performance = None
        if cfg.cross_validate:
            if encoded.trait_type is not TraitType.BINARY:
                raise MBMDRError(
                    "Internal cross-validation requires a binary outcome",
                    {"trait_type": encoded.trait_type.value},
                )
            folds = make_stratified_folds(view.outcomes, cfg.folds, stratify=True, seed=cfg.seed)
            result = select_ensemble_size(
                view,
                folds,
                top_results,
                loss_metric=cfg.cv_loss,
                oracle=self._search(top_results),
                unknown_policy=cfg.unknown_policy,
                should_cancel=should_cancel,
            )
            top_results = result.best_size
            cv_performance = result.long_format()
            self.logger.info(f"Cross-validation selected top_results={top_results}")

        models = self._search(max_results).fit(view, encoded.trait_type)
        if len(models) < top_results:
            self.logger.warning(
                f"Only {len(models)} models available; using top_results={len(models)} "
                f"instead of {top_results}"
            )
            top_results = len(models)

        self.models = models
        self.top_results = top_results
        self.global_mean = view.global_mean()
        self.trait_type = encoded.trait_type
        self.class_levels = encoded.class_levels
        self.categories = encoded.categories
        self.cv_performance = cv_performance
        self.num_samples = view.n_observations
        self.num_features = view.n_features
        self.num_combinations = n_combinations

        self.logger.info(f"MB-MDR fit finished in {time.time() - start:.2f}s")
        return self

    def predict(
        self,
        df: pd.DataFrame,
        type: Union[PredictionType, str] = PredictionType.RESPONSE,
        top_results: Optional[int] = None,
    ) -> Union[pd.Categorical, pd.DataFrame, np.ndarray]:
        """
        Predict new samples with the top ``top_results`` models.

        Returns
        -------
        pd.Categorical
            Class labels for ``response`` (binary traits).
        pd.DataFrame
            One column per class level (negative first) for ``prob`` and
            ``scoreprob`` (binary traits), indexed like ``df``.
        np.ndarray
            Risk scores for ``score``; any prediction of a continuous trait.

        Raises
        ------
        NotFittedError
            If ``fit`` has not been called.
        DimensionMismatchError
            If a model feature is missing from ``df``.
        InvalidArgumentError
            For invalid ``type`` or ``top_results``.
        """
        if not self.is_fitted:
            raise NotFittedError()
        k = self.top_results if top_results is None else top_results

        names = self.models.feature_names
        missing = [name for name in names if name not in df.columns]
        if missing:
            raise DimensionMismatchError(missing)
        matrix, _ = encode_features(df, names, categories=self.categories)
        frame = pd.DataFrame(matrix, columns=names, index=df.index)

        raw = predict(
            self.models,
            frame,
            type=type,
            top_results=k,
            unknown_policy=self.config.unknown_policy,
            global_mean=self.global_mean,
        )
        kind = parse_enum(type, PredictionType)
        if self.trait_type is not TraitType.BINARY or kind is PredictionType.SCORE:
            return raw
        if kind is PredictionType.RESPONSE:
            codes = np.where(np.isnan(raw), -1, raw).astype(int)
            return pd.Categorical.from_codes(codes, categories=self.class_levels)
        return pd.DataFrame(
            np.column_stack([1.0 - raw, raw]), index=df.index, columns=list(self.class_levels)
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        if not self.is_fitted:
            raise NotFittedError()
        return {
            "classifier_format_version": CLASSIFIER_FORMAT_VERSION,
            "mbmdrc_version": __version__,
            "config": self.config.to_dict(),
            "top_results": self.top_results,
            "global_mean": self.global_mean,
            "trait_type": self.trait_type.value,
            "class_levels": self.class_levels,
            "categories": self.categories,
            "num_samples": self.num_samples,
            "num_features": self.num_features,
            "num_combinations": self.num_combinations,
            "cv_performance": (
                None if self.cv_performance is None else self.cv_performance.to_dict(orient="list")
            ),
            "models": self.models.to_dict(),
        }

    @classmethod
    def from_dict(
        cls, payload: Dict[str, Any], logger: Optional[logging.Logger] = None
    ) -> "MBMDRClassifier":
        version = payload.get("classifier_format_version")
        if version != CLASSIFIER_FORMAT_VERSION:
            raise ModelFormatError(
                f"unsupported classifier format version {version!r} "
                f"(expected {CLASSIFIER_FORMAT_VERSION})"
            )
        try:
            clf = cls(MBMDRConfig.from_dict(payload["config"]), logger=logger)
            clf.models = RankedModelSet.from_dict(payload["models"])
            clf.top_results = int(payload["top_results"])
            clf.global_mean = float(payload["global_mean"])
            clf.trait_type = TraitType(payload["trait_type"])
            clf.class_levels = payload.get("class_levels")
            clf.categories = payload.get("categories") or {}
            clf.num_samples = int(payload.get("num_samples", 0))
            clf.num_features = int(payload.get("num_features", 0))
            clf.num_combinations = int(payload.get("num_combinations", 0))
        except (KeyError, TypeError) as e:
            raise ModelFormatError(f"cannot read classifier record: {e}") from e
        cv = payload.get("cv_performance")
        clf.cv_performance = None if cv is None else pd.DataFrame(cv)
        return clf

    def save(self, path: Union[str, Path]) -> None:
        """Write the fitted classifier as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, default=_json_default)
        self.logger.info(f"Saved MB-MDR classifier ({len(self.models)} models) to {path}")

    @classmethod
    def load(
        cls, path: Union[str, Path], logger: Optional[logging.Logger] = None
    ) -> "MBMDRClassifier":
        """
        Read a classifier written by ``save``.

        Raises
        ------
        FileNotFoundError
            If ``path`` does not exist.
        ModelFormatError
            If the file is not a valid classifier record.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Model file '{path}' not found.")
        with open(path, "r", encoding="utf-8") as f:
            try:
                payload = json.load(f)
            except json.JSONDecodeError as e:
                raise ModelFormatError(f"Error parsing model JSON: {e}") from e
        return cls.from_dict(payload, logger=logger)
