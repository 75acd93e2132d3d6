"""Exceptions raised by the report pipelines."""
from __future__ import annotations


class NarrativeError(Exception):
    """Base class for errors that stop a report from being generated."""


class StructuralError(NarrativeError, ValueError):
    """Input does not have the structure a pipeline relies on (sheets, columns, header lines)."""


class DegenerateDataError(NarrativeError, ValueError):
    """Sample for which an estimator is undefined (e.g. zero variance)."""
