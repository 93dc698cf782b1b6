# File: mbmdrc/config.py
# Location: mbmdrc/mbmdrc/config.py

"""
Configuration management module.

Defaults live in ``config.json`` inside the installed package directory.
``load_config`` reads that file (or a user-supplied one) into a dict and
``MBMDRConfig.from_dict`` turns the dict into a validated configuration
object that is passed explicitly to every call; there is no module-level
configuration state.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

from .classification import AdjustmentMode, available_statistics
from .errors import InvalidArgumentError
from .prediction import UnknownPolicy
from .selection import LossMetric
from .validation import ArgumentCollector

logger = logging.getLogger("mbmdrc")


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a JSON file.

    Parameters
    ----------
    config_file : str, optional
        Path to a configuration file in JSON format. If None, defaults to
        the package-installed 'config.json'.

    Returns
    -------
    dict
        Configuration dictionary loaded from the JSON file.

    Raises
    ------
    FileNotFoundError
        If the specified configuration file does not exist.
    ValueError
        If there is an error parsing the JSON configuration file.
    """
    if not config_file:
        config_file = os.path.join(os.path.dirname(__file__), "config.json")

    if not os.path.exists(config_file):
        raise FileNotFoundError(f"Configuration file '{config_file}' not found.")

    with open(config_file, "r", encoding="utf-8") as f:
        try:
            config = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Error parsing JSON configuration: {e}")

    return config


@dataclass
class MBMDRConfig:
    """
    Configuration for MB-MDR fitting, prediction and cross-validation.

    Fields
    ------
    order : list of int
        Interaction orders searched; each 1 or 2. Default: [2].
    min_cell_size : int
        Cells with fewer observations are labelled N. Default: 10.
    alpha : float
        Significance level of the HLO cell test. Default: 0.1.
    adjustment : str
        Main-effect adjustment: "NONE", "ADDITIVE" or "CODOMINANT". Default: "NONE".
    max_results : int
        Number of top models kept by the search (1..10000). Default: 1000.
    top_results : int
        Ensemble size used for prediction, or the upper bound of the CV
        search when ``folds`` and ``cv_loss`` are set. Default: 1000.
    folds : int or None
        Internal cross-validation folds (2..10). None = no CV.
    cv_loss : str or None
        "auc" or "bac". Required together with ``folds``.
    unknown_policy : str
        "gap" (uninformative cells ignored) or "global_mean". Default: "global_mean".
    model_statistic : str
        Ranking statistic: "sum_chi2" or "hl_max". Default: "sum_chi2".
    n_workers : int
        Worker count for model search and CV folds. -1 = os.cpu_count(). Default: 1.
    n_shards : int
        Count-pass shards per model. Default: 1.
    seed : int or None
        Seed for fold assignment. None = nondeterministic.
    """

    order: List[int] = field(default_factory=lambda: [2])
    min_cell_size: int = 10
    alpha: float = 0.1
    adjustment: str = "NONE"
    max_results: int = 1000
    top_results: int = 1000
    folds: Optional[int] = None
    cv_loss: Optional[str] = None
    unknown_policy: str = "global_mean"
    model_statistic: str = "sum_chi2"
    n_workers: int = 1
    n_shards: int = 1
    seed: Optional[int] = None

    def validate(self) -> None:
        """
        Check every field.

        Raises
        ------
        InvalidArgumentError
            Listing all invalid fields.
        """
        checks = ArgumentCollector()
        if not isinstance(self.order, (list, tuple)) or not self.order:
            checks.add(f"'order' must be a non-empty list, got {self.order!r}")
        else:
            for o in self.order:
                checks.check_int(o, "order", lower=1, upper=2)
            if len(set(self.order)) != len(self.order):
                checks.add(f"'order' must not repeat values, got {list(self.order)}")
        checks.check_int(self.min_cell_size, "min_cell_size", lower=0)
        checks.check_number(self.alpha, "alpha", lower=0.0, upper=1.0)
        checks.check_enum(self.adjustment, AdjustmentMode, "adjustment")
        if checks.check_int(self.max_results, "max_results", lower=1, upper=10000):
            checks.check_int(self.top_results, "top_results", lower=1, upper=self.max_results)
        if (self.folds is None) != (self.cv_loss is None):
            checks.add("'folds' and 'cv_loss' must be given together")
        if self.folds is not None:
            checks.check_int(self.folds, "folds", lower=2, upper=10)
        if self.cv_loss is not None:
            checks.check_enum(self.cv_loss, LossMetric, "cv_loss")
        checks.check_enum(self.unknown_policy, UnknownPolicy, "unknown_policy")
        if self.model_statistic not in available_statistics():
            checks.add(
                f"'model_statistic' must be one of {available_statistics()}, "
                f"got {self.model_statistic!r}"
            )
        if not (self.n_workers == -1 or (isinstance(self.n_workers, int) and self.n_workers >= 1)):
            checks.add(f"'n_workers' must be >= 1 or -1, got {self.n_workers!r}")
        checks.check_int(self.n_shards, "n_shards", lower=1)
        if self.seed is not None:
            checks.check_int(self.seed, "seed", lower=0)
        checks.report()

    @property
    def cross_validate(self) -> bool:
        return self.folds is not None and self.cv_loss is not None

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "MBMDRConfig":
        """
        Build and validate a configuration from a dict.

        Raises
        ------
        InvalidArgumentError
            If ``cfg`` has unknown keys or any value is invalid.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(cfg) - known)
        if unknown:
            raise InvalidArgumentError([f"Unknown configuration key(s): {unknown}"])
        config = cls(**cfg)
        config.validate()
        logger.debug(f"Configuration: {config.to_dict()}")
        return config

    @classmethod
    def from_file(cls, config_file: Optional[str] = None) -> "MBMDRConfig":
        """Load ``config_file`` (default: package config.json) and validate it."""
        return cls.from_dict(load_config(config_file))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
