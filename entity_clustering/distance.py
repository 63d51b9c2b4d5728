# distance.py
"""
Pairwise Mahalanobis distances under a shrinkage inverse covariance.

Uses the Gram-matrix identity instead of evaluating the quadratic form for
every pair:

    M = X_c Σ⁻¹ X_cᵀ,   d_i = M[i, i]
    D²[i, j] = d_i + d_j - 2 M[i, j]
"""

import logging

import numpy as np
import pandas as pd

from .covariance import ShrinkageCovariance
from .validation import (
    PipelineStageError,
    as_float_matrix,
    check_min_rows,
    check_square_symmetric,
)

logger = logging.getLogger(__name__)

STAGE = "distance"


def center_features(X) -> np.ndarray:
    """Subtract column means."""
    X = np.asarray(X, dtype=float)
    return X - X.mean(axis=0)


def mahalanobis_gram(centered, precision) -> np.ndarray:
    """Inner products of the centered rows in the Mahalanobis metric."""
    centered = np.asarray(centered, dtype=float)
    precision = np.asarray(precision, dtype=float)
    if centered.shape[1] != precision.shape[0]:
        raise PipelineStageError(
            STAGE,
            f"feature count {centered.shape[1]} does not match precision "
            f"matrix size {precision.shape[0]}",
        )
    gram = centered @ precision @ centered.T
    return 0.5 * (gram + gram.T)


def squared_distances_from_gram(gram) -> np.ndarray:
    """
    Squared distances from a Gram matrix via the polarization identity.

    Round-off can leave tiny negative values (diagonal, near-duplicate rows);
    these are clamped to 0. The diagonal is exactly 0.
    """
    gram = np.asarray(gram, dtype=float)
    d = np.diag(gram)
    sq = d[:, None] + d[None, :] - 2.0 * gram
    sq = 0.5 * (sq + sq.T)
    n_negative = int((sq < 0).sum())
    if n_negative:
        logger.debug(f"  Clamping {n_negative} negative squared distances to 0")
    sq[sq < 0] = 0.0
    np.fill_diagonal(sq, 0.0)
    return sq


def mahalanobis_distance_matrix(features: pd.DataFrame,
                                covariance: ShrinkageCovariance) -> pd.DataFrame:
    """
    Full pairwise Mahalanobis distance matrix, labeled by entity key.

    Parameters
    ----------
    features : DataFrame
        Feature matrix (rows = entities); the same one the covariance was
        estimated from.
    covariance : ShrinkageCovariance

    Returns
    -------
    DataFrame
        Symmetric n × n distances with zero diagonal.
    """
    if covariance.feature_names and list(map(str, features.columns)) != covariance.feature_names:
        raise PipelineStageError(
            STAGE, "feature columns are not in the order the covariance was estimated in"
        )
    X = as_float_matrix(features, STAGE, name="feature matrix")
    check_min_rows(X, STAGE, name="feature matrix")
    check_square_symmetric(covariance.precision, STAGE, name="precision matrix")

    logger.info("Calculating Mahalanobis distance matrix...")
    gram = mahalanobis_gram(center_features(X), covariance.precision)
    dist = np.sqrt(squared_distances_from_gram(gram))

    keys = list(features.index)
    D = pd.DataFrame(dist, index=keys, columns=keys)
    summary = summarize_distances(D)
    logger.info(f"  Matrix dimensions: {D.shape[0]} x {D.shape[1]}")
    logger.info(f"  Distance range: [{summary['min']:.2f}, {summary['max']:.2f}]")
    return D


def upper_triangle(matrix) -> np.ndarray:
    """Entries strictly above the diagonal."""
    arr = np.asarray(matrix, dtype=float)
    return arr[np.triu_indices(arr.shape[0], k=1)]


def summarize_distances(D) -> dict:
    """Summary of the off-diagonal distances."""
    values = upper_triangle(D)
    if values.size == 0:
        return {"n_pairs": 0, "min": 0.0, "median": 0.0, "mean": 0.0, "max": 0.0}
    return {
        "n_pairs": int(values.size),
        "min": float(values.min()),
        "median": float(np.median(values)),
        "mean": float(values.mean()),
        "max": float(values.max()),
    }
