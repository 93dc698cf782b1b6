# File: mbmdrc/errors.py
# Location: mbmdrc/mbmdrc/errors.py
"""
Exception classes for MB-MDR fitting, prediction and cross-validation.

- MBMDRError               : base class, carries a ``details`` dict
- InvalidArgumentError     : one or more argument checks failed (all reported together)
- DimensionMismatchError   : a model feature is absent from the data being predicted on
- DegenerateFoldError      : a cross-validation test split lacks one outcome class
- UndefinedStatisticError  : zero-count cell statistic; always intercepted by the classifier
- SelectionCancelledError  : cooperative cancellation between folds
- ModelFormatError         : malformed ranked model set (e.g. on load)
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class MBMDRError(Exception):
    """Base exception for all mbmdrc errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize MB-MDR error.

        Parameters
        ----------
        message : str
            Error message
        details : dict, optional
            Additional error details
        """
        super().__init__(message)
        self.details = details or {}


class InvalidArgumentError(MBMDRError, ValueError):
    """Raised when argument validation fails. Lists every violation found."""

    def __init__(self, violations: Sequence[str]):
        """Initialize with the full list of violations."""
        self.violations: List[str] = list(violations)
        if len(self.violations) == 1:
            message = f"Invalid argument: {self.violations[0]}"
        else:
            lines = "\n".join(f"  * {v}" for v in self.violations)
            message = f"{len(self.violations)} invalid arguments:\n{lines}"
        super().__init__(message, {"violations": self.violations})


class DimensionMismatchError(MBMDRError, ValueError):
    """Raised when features required by a model are missing from new data."""

    def __init__(self, missing: Sequence[str]):
        """Initialize with the missing feature names."""
        self.missing: List[str] = list(missing)
        message = (
            f"Missing covariate(s) in new data: {', '.join(self.missing)}. "
            "Every model feature must be present as a column."
        )
        super().__init__(message, {"missing": self.missing})


class DegenerateFoldError(MBMDRError):
    """Raised when a cross-validation test split does not contain both classes."""

    def __init__(self, fold: int, classes_present: Sequence[Any]):
        """Initialize with the offending fold and the classes it contains."""
        self.fold = fold
        self.classes_present = list(classes_present)
        message = (
            f"Fold {fold} test split contains only class(es) {self.classes_present}; "
            "the loss metric is undefined. Use fewer folds or more observations."
        )
        super().__init__(message, {"fold": fold, "classes_present": self.classes_present})


class UndefinedStatisticError(MBMDRError, ArithmeticError):
    """Raised when a cell statistic would divide by zero. Never escapes the classifier."""

    def __init__(self, cell: int):
        """Initialize with the flat index of the empty cell."""
        self.cell = cell
        super().__init__(f"Cell {cell} has zero observations", {"cell": cell})


class SelectionCancelledError(MBMDRError):
    """Raised when ensemble size selection is cancelled between folds."""

    def __init__(self, completed_folds: int, total_folds: int):
        """Initialize with progress at the time of cancellation."""
        self.completed_folds = completed_folds
        self.total_folds = total_folds
        super().__init__(
            f"Ensemble size selection cancelled after {completed_folds}/{total_folds} folds",
            {"completed_folds": completed_folds, "total_folds": total_folds},
        )


class ModelFormatError(MBMDRError, ValueError):
    """Raised when a ranked model set is malformed."""

    def __init__(self, message: str, rank: Optional[int] = None):
        """Initialize model format error."""
        self.rank = rank
        if rank is not None:
            message = f"Model at rank {rank}: {message}"
        super().__init__(message, {"rank": rank})
