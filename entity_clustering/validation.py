"""
Validation helpers shared by every pipeline stage.

Each stage checks its own preconditions and raises a
:class:`PipelineStageError` naming the stage and the violated invariant, so a
failed run aborts before any artifact is written.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class PipelineStageError(ValueError):
    """Fatal violation of a stage precondition."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"[{stage}] {message}")


@dataclass
class DataValidationResult:
    """Container for validation results"""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict = field(default_factory=dict)

    def log_results(self):
        """Log validation results"""
        if self.errors:
            logger.error(f"Validation failed with {len(self.errors)} errors:")
            for error in self.errors:
                logger.error(f"  - {error}")
        if self.warnings:
            logger.warning(f"Validation completed with {len(self.warnings)} warnings:")
            for warning in self.warnings:
                logger.warning(f"  - {warning}")
        if self.is_valid:
            logger.info("Validation passed successfully")

    def raise_if_invalid(self, stage: str):
        """Raise a PipelineStageError carrying every collected error."""
        if not self.is_valid:
            raise PipelineStageError(stage, "; ".join(self.errors))


def as_float_matrix(values, stage: str, name: str = "matrix") -> np.ndarray:
    """Return ``values`` as a 2-D float array, rejecting non-finite entries."""
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 2:
        raise PipelineStageError(stage, f"{name} must be 2-D, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        n_bad = int((~np.isfinite(arr)).sum())
        raise PipelineStageError(stage, f"{name} contains {n_bad} non-finite values")
    return arr


def check_min_rows(arr: np.ndarray, stage: str, minimum: int = 2, name: str = "matrix"):
    if arr.shape[0] < minimum:
        raise PipelineStageError(
            stage, f"{name} needs at least {minimum} rows, got {arr.shape[0]}"
        )


def check_square_symmetric(arr: np.ndarray, stage: str, name: str = "matrix",
                           atol: float = 1e-8):
    """Reject non-square matrices and matrices that are not symmetric."""
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise PipelineStageError(stage, f"{name} must be square, got shape {arr.shape}")
    if not np.allclose(arr, arr.T, atol=atol, rtol=0.0):
        raise PipelineStageError(stage, f"{name} is not symmetric")


def entity_keys(frame: pd.DataFrame) -> List[str]:
    return [str(k) for k in frame.index]


def assert_same_entities(expected: Sequence, actual: Sequence, stage: str):
    """Assert that two ordered entity-key lists are identical."""
    expected = list(expected)
    actual = list(actual)
    if expected == actual:
        return
    if len(expected) != len(actual):
        raise PipelineStageError(
            stage,
            f"entity count changed across stage boundary: {len(expected)} → {len(actual)}",
        )
    first = next(i for i, (a, b) in enumerate(zip(expected, actual)) if a != b)
    raise PipelineStageError(
        stage,
        f"entity order changed across stage boundary at position {first}: "
        f"expected '{expected[first]}', got '{actual[first]}'",
    )


def check_labeled_square(frame: pd.DataFrame, stage: str):
    """Row and column labels of an entity × entity matrix must agree."""
    assert_same_entities(list(frame.index), list(frame.columns), stage)
    return frame
