# affinity.py
"""
RBF (Gaussian) affinity with a median-distance bandwidth.

    σ = multiplier × median(D[i, j] for i < j)
    W[i, j] = exp(-D[i, j]² / (2σ²)),   W[i, i] = 1
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .config import SIGMA_MULTIPLIER, SIGMA_SWEEP_MULTIPLIERS
from .distance import upper_triangle
from .validation import (
    PipelineStageError,
    as_float_matrix,
    check_labeled_square,
    check_square_symmetric,
)

logger = logging.getLogger(__name__)

STAGE = "affinity"
# exp(-x) rounds to 0 in float64 once it falls below half the smallest subnormal
EXP_UNDERFLOW = float(np.log(2.0) - np.log(np.nextafter(0.0, 1.0)))


@dataclass
class AffinityResult:
    affinity: pd.DataFrame
    sigma: float
    median_distance: float
    n_underflow: int = 0


def _distance_array(D) -> np.ndarray:
    arr = as_float_matrix(D, STAGE, name="distance matrix")
    check_square_symmetric(arr, STAGE, name="distance matrix")
    if arr.shape[0] < 2:
        raise PipelineStageError(STAGE, "at least 2 entities are needed for a bandwidth")
    if (arr < 0).any():
        raise PipelineStageError(STAGE, "distance matrix has negative entries")
    return arr


def median_bandwidth(D, multiplier: float = SIGMA_MULTIPLIER):
    """
    Bandwidth from the median off-diagonal distance.

    Returns
    -------
    sigma, median_distance : float

    Raises
    ------
    PipelineStageError
        If the median distance is 0 (every entity identical under the
        metric), which leaves the kernel undefined.
    """
    if multiplier <= 0:
        raise PipelineStageError(STAGE, f"sigma multiplier must be positive, got {multiplier}")
    median_dist = float(np.median(upper_triangle(_distance_array(D))))
    sigma = multiplier * median_dist
    if not np.isfinite(sigma) or sigma <= 0:
        logger.error(f"Median pairwise distance is {median_dist}; RBF kernel undefined")
        raise PipelineStageError(
            STAGE, f"median pairwise distance is {median_dist:g}; bandwidth sigma must be > 0"
        )
    return sigma, median_dist


def rbf_kernel(distances, sigma: float) -> np.ndarray:
    """exp(-d² / (2σ²)) elementwise."""
    d = np.asarray(distances, dtype=float)
    return np.exp(-d ** 2 / (2 * sigma ** 2))


def underflow_distance(sigma: float) -> float:
    """Distance beyond which the RBF kernel evaluates to exactly 0."""
    return float(np.sqrt(2 * EXP_UNDERFLOW) * sigma)


def rbf_affinity(D, sigma: float) -> pd.DataFrame:
    """
    Affinity matrix for a fixed bandwidth.

    The diagonal is set to exactly 1 regardless of the kernel output.
    """
    if not np.isfinite(sigma) or sigma <= 0:
        raise PipelineStageError(STAGE, f"bandwidth sigma must be > 0, got {sigma}")
    arr = _distance_array(D)
    W = rbf_kernel(arr, sigma)
    W = 0.5 * (W + W.T)
    np.fill_diagonal(W, 1.0)

    if isinstance(D, pd.DataFrame):
        check_labeled_square(D, STAGE)
        return pd.DataFrame(W, index=D.index, columns=D.columns)
    return pd.DataFrame(W)


def build_affinity_matrix(D: pd.DataFrame,
                          multiplier: float = SIGMA_MULTIPLIER) -> AffinityResult:
    """Median-bandwidth RBF affinity for a labeled distance matrix."""
    logger.info("Applying RBF kernel to create affinity matrix...")
    sigma, median_dist = median_bandwidth(D, multiplier)
    logger.info(f"  Median distance: {median_dist:.2f}")
    logger.info(f"  Sigma ({multiplier} x median): {sigma:.2f}")

    W = rbf_affinity(D, sigma)
    off_diag = upper_triangle(W)
    n_underflow = int((off_diag == 0).sum())
    if n_underflow:
        logger.warning(
            f"{n_underflow} affinities underflowed to 0 "
            f"(distances beyond ~{underflow_distance(sigma):.1f}); graph may be disconnected"
        )
    if off_diag.size:
        logger.info(f"  Affinity range: [{off_diag.min():.4f}, {off_diag.max():.4f}]")
        logger.info(f"  Mean affinity: {W.to_numpy().mean():.4f}")
    return AffinityResult(affinity=W, sigma=sigma, median_distance=median_dist,
                          n_underflow=n_underflow)


def sigma_sweep(D, multipliers=SIGMA_SWEEP_MULTIPLIERS) -> pd.DataFrame:
    """
    Affinity spread for a range of bandwidths around the median distance.

    One row per multiplier with the min, max, width, mean and median of the
    off-diagonal affinities.
    """
    _, median_dist = median_bandwidth(D, 1.0)
    distances = upper_triangle(_distance_array(D))

    rows = []
    for m in multipliers:
        sigma = m * median_dist
        aff = rbf_kernel(distances, sigma)
        rows.append({
            "multiplier": float(m),
            "sigma": sigma,
            "min_affinity": float(aff.min()),
            "max_affinity": float(aff.max()),
            "affinity_width": float(aff.max() - aff.min()),
            "mean_affinity": float(aff.mean()),
            "median_affinity": float(np.median(aff)),
        })
        logger.info(
            f"  sigma = {sigma:.2f} ({m:.1f}x median): "
            f"[{aff.min():.3f}-{aff.max():.3f}] (width {aff.max() - aff.min():.3f})"
        )
    return pd.DataFrame(rows)
