"""
Errors raised by the evaluation pipeline.

All of them are raised synchronously by the operation that detects the problem
and are meant to be handled by the caller.
"""

from __future__ import annotations

from collections.abc import Iterable


class SchemaError(ValueError):
    """A declared column is missing or has the wrong type."""


class InvalidConfiguration(ValueError):
    """Split proportion out of range, too few records, or a bad hyperparameter."""


class UnseenCategory(ValueError):
    """A categorical value at apply-time was not in the training vocabulary."""

    def __init__(self, column: str, values: Iterable[object]):
        self.column = column
        self.values = sorted({str(v) for v in values})
        super().__init__(f"Unseen categories in column '{column}': {self.values}")
