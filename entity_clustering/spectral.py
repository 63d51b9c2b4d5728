# spectral.py
"""
Normalized graph Laplacian and spectral embedding.

Given an affinity matrix W with degrees deg_i = Σ_j W[i, j]:

    L = I - D^(-1/2) W D^(-1/2)

Its eigenvalues lie in [0, 2] and the smallest is ≈ 0 for a connected graph
(eigenvector ∝ sqrt(deg)). The embedding keeps the k eigenvectors that
follow the trivial one, with k chosen as the larger of

* the position of the largest gap among the leading eigenvalues, and
* the heuristic K + ceil(ln K) for K target clusters.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
from scipy import linalg

from .config import GAP_SEARCH_LIMIT, N_TOP_GAPS, ZERO_EIGENVALUE_TOL
from .validation import (
    PipelineStageError,
    as_float_matrix,
    check_labeled_square,
    check_square_symmetric,
)

logger = logging.getLogger(__name__)

STAGE = "embedding"


@dataclass
class LaplacianResult:
    laplacian: pd.DataFrame
    degrees: pd.Series
    warnings: List[str] = field(default_factory=list)


@dataclass
class DimensionSelection:
    """Outcome of the embedding dimensionality rule."""
    k: int
    k_gap: int
    k_heuristic: int
    gap_position: Optional[int]
    gap_value: Optional[float]
    top_gaps: pd.DataFrame


@dataclass
class SpectralEmbedding:
    embedding: pd.DataFrame
    eigenvalues: np.ndarray
    selection: DimensionSelection
    warnings: List[str] = field(default_factory=list)

    @property
    def k(self) -> int:
        return self.selection.k


# ── Laplacian ─────────────────────────────────────────────────────────────────

def normalized_laplacian(W: pd.DataFrame) -> LaplacianResult:
    """
    Symmetric normalized Laplacian of a labeled affinity matrix.

    Isolated entities (zero degree) get D^(-1/2) = 0; this is reported as a
    warning rather than an error.
    """
    stage = "laplacian"
    check_labeled_square(W, stage)
    arr = as_float_matrix(W, stage, name="affinity matrix")
    check_square_symmetric(arr, stage, name="affinity matrix")

    logger.info("Computing normalized graph Laplacian...")
    degrees = arr.sum(axis=1)
    logger.info(f"  Degree range: [{degrees.min():.2f}, {degrees.max():.2f}]")
    logger.info(f"  Mean degree: {degrees.mean():.2f}")

    warnings = []
    with np.errstate(divide="ignore", invalid="ignore"):
        d_inv_sqrt = 1.0 / np.sqrt(degrees)
    isolated = ~np.isfinite(d_inv_sqrt) | (degrees <= 0)
    if isolated.any():
        names = [str(k) for k in W.index[isolated]]
        msg = f"{len(names)} entities have zero degree (isolated): {names[:10]}"
        logger.warning(msg)
        warnings.append(msg)
        d_inv_sqrt[isolated] = 0.0

    normalized = d_inv_sqrt[:, None] * arr * d_inv_sqrt[None, :]
    L = np.eye(arr.shape[0]) - normalized
    L = 0.5 * (L + L.T)

    return LaplacianResult(
        laplacian=pd.DataFrame(L, index=W.index, columns=W.columns),
        degrees=pd.Series(degrees, index=W.index, name="degree"),
        warnings=warnings,
    )


# ── Eigen-analysis ────────────────────────────────────────────────────────────

def check_trivial_eigenvalue(eigenvalues, tol: float = ZERO_EIGENVALUE_TOL) -> List[str]:
    """
    Sanity checks on the bottom of the spectrum.

    A connected affinity graph has exactly one eigenvalue ≈ 0. Returns the
    list of warnings (empty when both checks pass).
    """
    values = np.sort(np.asarray(eigenvalues, dtype=float))
    warnings = []
    if abs(values[0]) > tol:
        warnings.append(
            f"smallest Laplacian eigenvalue is {values[0]:.3g}, expected ≈ 0 "
            f"(tolerance {tol:g})"
        )
    n_zero = int((np.abs(values) <= tol).sum())
    if n_zero > 1:
        warnings.append(
            f"{n_zero} Laplacian eigenvalues are ≈ 0; the affinity graph looks "
            f"disconnected or the bandwidth is too small"
        )
    for msg in warnings:
        logger.warning(msg)
    return warnings


def _top_gaps(values: np.ndarray, gaps: np.ndarray, n_top: int) -> pd.DataFrame:
    order = np.argsort(-gaps, kind="stable")[:n_top]
    return pd.DataFrame({
        "position": order + 1,
        "gap": gaps[order],
        "eigenvalue_before": values[order],
        "eigenvalue_after": values[order + 1],
    })


def select_embedding_dimension(eigenvalues, n_clusters: int,
                               gap_search_limit: int = GAP_SEARCH_LIMIT,
                               n_top_gaps: int = N_TOP_GAPS) -> DimensionSelection:
    """
    Choose the number of non-trivial eigenvectors to keep.

    Parameters
    ----------
    eigenvalues : array-like
        Full Laplacian spectrum (the trivial eigenvalue included).
    n_clusters : int
        Target cluster count K.
    gap_search_limit : int
        Only the first ``min(gap_search_limit, n - 2)`` gaps are candidates.

    Returns
    -------
    DimensionSelection
        ``k = max(k_gap, k_heuristic)``.
    """
    if n_clusters < 1:
        raise PipelineStageError(STAGE, f"number of clusters must be ≥ 1, got {n_clusters}")
    values = np.sort(np.asarray(eigenvalues, dtype=float))
    n_total = values.size
    if n_total < 2:
        raise PipelineStageError(STAGE, f"need at least 2 eigenvalues, got {n_total}")

    nontrivial = values[1:]
    gaps = np.diff(nontrivial)
    n_search = min(int(gap_search_limit), n_total - 2)

    if n_search > 0:
        best = int(np.argmax(gaps[:n_search]))
        k_gap = best + 1
        gap_position, gap_value = k_gap, float(gaps[best])
    else:
        k_gap = 1
        gap_position, gap_value = None, None

    k_heuristic = min(n_clusters + math.ceil(math.log(n_clusters)), n_total - 1)
    k = max(k_gap, k_heuristic)

    return DimensionSelection(
        k=k,
        k_gap=k_gap,
        k_heuristic=k_heuristic,
        gap_position=gap_position,
        gap_value=gap_value,
        top_gaps=_top_gaps(nontrivial, gaps, n_top_gaps),
    )


def cumulative_spectrum_criteria(eigenvalues, levels=(0.95, 0.99)) -> dict:
    """
    Number of non-trivial eigenvalues needed to reach each fraction of the
    total non-trivial eigenvalue mass. Reported only; never used to pick k.
    """
    nontrivial = np.sort(np.asarray(eigenvalues, dtype=float))[1:]
    total = nontrivial.sum()
    if nontrivial.size == 0 or total <= 0:
        return {level: None for level in levels}
    cum = np.cumsum(nontrivial) / total
    return {level: int(np.searchsorted(cum, level - 1e-12) + 1) for level in levels}


def _orient(vectors: np.ndarray) -> np.ndarray:
    """Flip each eigenvector so its largest-magnitude entry is positive."""
    idx = np.argmax(np.abs(vectors), axis=0)
    signs = np.sign(vectors[idx, np.arange(vectors.shape[1])])
    signs[signs == 0] = 1.0
    return vectors * signs


def spectral_embedding(laplacian: pd.DataFrame, n_clusters: int,
                       gap_search_limit: int = GAP_SEARCH_LIMIT,
                       tol: float = ZERO_EIGENVALUE_TOL) -> SpectralEmbedding:
    """
    Eigendecompose the Laplacian and build the k-dimensional embedding.

    Uses the symmetric solver (real eigenvalues, orthonormal eigenvectors).
    """
    check_labeled_square(laplacian, STAGE)
    L = as_float_matrix(laplacian, STAGE, name="Laplacian")
    check_square_symmetric(L, STAGE, name="Laplacian")

    logger.info("Computing all eigenvectors of the Laplacian...")
    try:
        values, vectors = linalg.eigh(L)
    except linalg.LinAlgError as exc:
        raise PipelineStageError(STAGE, f"eigendecomposition failed: {exc}") from exc

    logger.info(f"  Total eigenvalues computed: {values.size}")
    logger.info(f"  Eigenvalue range: [{values.min():.6f}, {values.max():.6f}]")
    logger.info(f"  Smallest eigenvalue (trivial, should be ≈ 0): {values[0]:.6f}")
    warnings = check_trivial_eigenvalue(values, tol)

    selection = select_embedding_dimension(values, n_clusters, gap_search_limit)
    if selection.gap_position is not None:
        logger.info(
            f"  Largest spectral gap (in first {gap_search_limit}): position "
            f"{selection.gap_position} (gap = {selection.gap_value:.6f})"
        )
    criteria = cumulative_spectrum_criteria(values)
    for level, count in criteria.items():
        if count is not None:
            logger.debug(f"  {level:.0%} eigenvalue mass: {count} eigenvectors")
    logger.info(
        f"  SELECTED: {selection.k} eigenvectors (max of gap={selection.k_gap}, "
        f"heuristic={selection.k_heuristic})"
    )

    Z = _orient(vectors[:, 1:selection.k + 1])
    embedding = pd.DataFrame(
        Z,
        index=laplacian.index,
        columns=[f"SE{i}" for i in range(1, selection.k + 1)],
    )
    logger.info(f"  Dimensions: {Z.shape[0]} entities x {Z.shape[1]} dimensions")
    return SpectralEmbedding(embedding=embedding, eigenvalues=values,
                             selection=selection, warnings=warnings)
