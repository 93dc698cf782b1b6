# File: mbmdrc/validation.py
# Location: mbmdrc/mbmdrc/validation.py

"""
Argument validation for mbmdrc entry points.

Validation is eager and exhaustive: an ``ArgumentCollector`` records every
violation found while checking the arguments of one call, and ``report()``
raises a single ``InvalidArgumentError`` listing all of them. Callers get a
complete diagnostic in one pass instead of fixing arguments one at a time.

Example
-------
>>> checks = ArgumentCollector()
>>> checks.check_int(min_cell_size, "min_cell_size", lower=0)
>>> kind = checks.check_enum(type, PredictionType, "type")
>>> checks.report()
"""

import logging
import math
from enum import Enum
from numbers import Integral, Real
from typing import Any, Iterable, List, Optional, Type, TypeVar

from .errors import InvalidArgumentError

logger = logging.getLogger("mbmdrc")

E = TypeVar("E", bound=Enum)


class ArgumentCollector:
    """Collect argument violations and report them together."""

    def __init__(self) -> None:
        self.violations: List[str] = []

    def add(self, message: str) -> None:
        """Record a free-form violation."""
        self.violations.append(message)

    def check_int(
        self,
        value: Any,
        name: str,
        lower: Optional[int] = None,
        upper: Optional[int] = None,
    ) -> bool:
        """Check that ``value`` is an integer within ``[lower, upper]``."""
        if isinstance(value, bool) or not isinstance(value, Integral):
            self.add(f"'{name}' must be an integer, got {value!r}")
            return False
        if lower is not None and value < lower:
            self.add(f"'{name}' must be >= {lower}, got {value}")
            return False
        if upper is not None and value > upper:
            self.add(f"'{name}' must be <= {upper}, got {value}")
            return False
        return True

    def check_number(
        self,
        value: Any,
        name: str,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
    ) -> bool:
        """Check that ``value`` is a finite real number within ``[lower, upper]``."""
        if isinstance(value, bool) or not isinstance(value, Real):
            self.add(f"'{name}' must be a number, got {value!r}")
            return False
        if not math.isfinite(float(value)):
            self.add(f"'{name}' must be finite, got {value!r}")
            return False
        if lower is not None and value < lower:
            self.add(f"'{name}' must be >= {lower}, got {value}")
            return False
        if upper is not None and value > upper:
            self.add(f"'{name}' must be <= {upper}, got {value}")
            return False
        return True

    def check_flag(self, value: Any, name: str) -> bool:
        """Check that ``value`` is a boolean flag."""
        if not isinstance(value, bool):
            self.add(f"'{name}' must be True or False, got {value!r}")
            return False
        return True

    def check_enum(self, value: Any, enum_cls: Type[E], name: str) -> Optional[E]:
        """
        Parse ``value`` into a member of ``enum_cls``.

        Members are accepted as-is; strings are matched case-insensitively
        against member values and names. Returns None (and records a
        violation) when nothing matches.
        """
        member = parse_enum(value, enum_cls)
        if member is None:
            choices = ", ".join(repr(m.value) for m in enum_cls)
            self.add(f"'{name}' must be one of {choices}, got {value!r}")
        return member

    def check_subset(self, values: Iterable[Any], allowed: Iterable[Any], name: str) -> bool:
        """Check that every element of ``values`` is in ``allowed``."""
        allowed_set = set(allowed)
        outside = [v for v in values if v not in allowed_set]
        if outside:
            self.add(f"'{name}' contains unknown value(s): {outside}")
            return False
        return True

    def report(self) -> None:
        """Raise InvalidArgumentError if any violation was recorded."""
        if self.violations:
            logger.debug(f"Argument validation failed: {self.violations}")
            raise InvalidArgumentError(self.violations)


def parse_enum(value: Any, enum_cls: Type[E]) -> Optional[E]:
    """Return the ``enum_cls`` member matching ``value`` or None."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = value.strip().lower()
        for member in enum_cls:
            if str(member.value).lower() == key or member.name.lower() == key:
                return member
    return None
