"""
ETL error taxonomy.

Row-level errors (SchemaError, DimensionLookupError) are recovered where
they are raised: the row is skipped, counted and logged. Structural errors
(ConsistencyError, StagingIncompleteError) abort the run. TransientIOError
is the only error the orchestrator retries.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, *, table: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.table = table
        self.details = details or {}
        prefix = f"[{table}] " if table else ""
        super().__init__(f"{prefix}{message}")


class SchemaError(PipelineError):
    """Required column missing or value of the wrong type in a staged row."""
    kind = 'schema'


class DimensionLookupError(PipelineError, LookupError):
    """Dimension value not found for a fact or dimension reference."""
    kind = 'lookup'

    def __init__(self, dimension: str, value: Any):
        self.dimension = dimension
        self.value = value
        super().__init__(f"dimension value not found: {dimension}={value!r}", table=dimension)


class ConsistencyError(PipelineError):
    """History-tracked dimension has zero or several current rows for a natural key."""


class StagingIncompleteError(PipelineError):
    """Staged extract for the run is partial (aborted or still running)."""


class TransientIOError(PipelineError):
    """Source or sink temporarily unavailable."""


class PipelineAborted(PipelineError):
    """Run aborted between stages on request."""
