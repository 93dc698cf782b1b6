# File: mbmdrc/__init__.py
# Location: mbmdrc/mbmdrc/__init__.py

"""
mbmdrc Package.

This package detects genotype interactions with Model-Based Multifactor
Dimensionality Reduction (MB-MDR) and combines the ranked interaction
models into a prefix-ensemble risk predictor whose size can be chosen by
cross-validation.
"""

from .classification import AdjustmentMode, CellLabel, fit_model
from .classifier import MBMDRClassifier
from .config import MBMDRConfig, load_config
from .data import ObservationView, TraitType, encode_frame
from .models import RankedModel, RankedModelSet, load_models, save_models
from .prediction import FeatureEncoding, PredictionType, UnknownPolicy, predict
from .search import ExhaustiveModelSearch
from .selection import LossMetric, make_stratified_folds, select_ensemble_size
from .utils import silent_logger
from .version import __version__

__all__ = [
    "AdjustmentMode",
    "CellLabel",
    "ExhaustiveModelSearch",
    "FeatureEncoding",
    "LossMetric",
    "MBMDRClassifier",
    "MBMDRConfig",
    "ObservationView",
    "PredictionType",
    "RankedModel",
    "RankedModelSet",
    "TraitType",
    "UnknownPolicy",
    "__version__",
    "encode_frame",
    "fit_model",
    "load_config",
    "load_models",
    "make_stratified_folds",
    "predict",
    "save_models",
    "select_ensemble_size",
    "silent_logger",
]
