"""
Exception hierarchy for metabopheno.

Errors that reduce the sample set (alignment, missing BMI, outliers) are
recovered by filtering and logged as counts. The classes below are raised
when a downstream computation would otherwise be meaningless.
"""

from typing import Dict, Optional


class MetaboPhenoError(Exception):
    """Base class for all metabopheno errors."""


class DataAlignmentError(MetaboPhenoError, ValueError):
    """The abundance and metadata tables share no sample identifiers."""


class MissingValueError(MetaboPhenoError, ValueError):
    """A required field is missing and the affected rows cannot be excluded."""


class DegenerateClassError(MetaboPhenoError, ValueError):
    """One of the two response classes has no members."""

    def __init__(self, message: str, counts: Optional[Dict[str, int]] = None):
        super().__init__(message)
        self.counts = dict(counts or {})


class EmptyPartitionError(MetaboPhenoError, ValueError):
    """The train or test partition came out empty."""


class UndefinedMetricError(MetaboPhenoError, ArithmeticError):
    """Precision or recall requested with a zero denominator."""

    def __init__(self, metric: str, message: Optional[str] = None):
        super().__init__(message or f"{metric} is undefined: denominator is zero")
        self.metric = metric
