# covariance.py
"""
Shrinkage inverse covariance for ``features ≫ samples`` data.

The sample covariance of an ``n × p`` matrix has rank at most ``n - 1``, so
it cannot be inverted when ``p > n``. Every estimator here blends it with a
diagonal target,

    Σ_shrunk = λ · Target + (1 - λ) · Σ_sample,

with a data-driven intensity ``λ``; the blend is full rank for ``λ > 0``.

Methods
-------
oas
    Oracle Approximating Shrinkage toward ``μ·I`` (scikit-learn).
ledoit_wolf
    Ledoit-Wolf shrinkage toward ``μ·I`` (scikit-learn).
schafer_strimmer
    Correlations shrunk toward the identity and variances toward their
    median, each with its own analytic intensity (Schäfer & Strimmer 2005,
    Opgen-Rhein & Strimmer 2007).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
from scipy import linalg
from sklearn.covariance import OAS, LedoitWolf

from .config import SHRINKAGE_METHOD
from .validation import PipelineStageError, as_float_matrix, check_min_rows

logger = logging.getLogger(__name__)

STAGE = "covariance"
SHRINKAGE_METHODS = ("oas", "ledoit_wolf", "schafer_strimmer")


@dataclass
class ShrinkageCovariance:
    """Inverse of a shrunk covariance matrix, with the intensities used."""
    precision: np.ndarray
    shrinkage: float
    method: str
    feature_names: List[str] = field(default_factory=list)
    variance_shrinkage: Optional[float] = None

    @property
    def n_features(self) -> int:
        return self.precision.shape[0]

    def as_frame(self) -> pd.DataFrame:
        names = self.feature_names or None
        return pd.DataFrame(self.precision, index=names, columns=names)


# ── Schäfer-Strimmer ──────────────────────────────────────────────────────────

def _standardize(X):
    """Center and scale columns by their unbiased sd; constant columns → 0."""
    xc = X - X.mean(axis=0)
    sd = xc.std(axis=0, ddof=1)
    scale = np.where(sd > 0, sd, 1.0)
    return xc / scale, sd > 0


def correlation_shrinkage_intensity(xs: np.ndarray) -> float:
    """
    Analytic intensity for shrinking the correlation matrix toward I.

    ``xs`` must be column-standardised. λ = Σ Var(r_ij) / Σ r_ij² over
    i ≠ j, with the variance of each correlation estimated from the
    per-sample products x_ki·x_kj.
    """
    n = xs.shape[0]
    e = xs.T @ xs / n
    sum_e2r = float(np.sum(e ** 2) - np.sum(np.diag(e) ** 2))

    xs2 = xs ** 2
    q = xs2.T @ xs2 / n
    sum_er2 = float(np.sum(q) - np.trace(q))

    if sum_e2r == 0:
        return 1.0
    lam = (sum_er2 - sum_e2r) / sum_e2r / (n - 1)
    return float(min(1.0, max(0.0, lam)))


def shrink_variances(X: np.ndarray):
    """
    Shrink per-column variances toward their median.

    Returns
    -------
    variances : ndarray
        Shrunk unbiased variances.
    lam : float
        Variance shrinkage intensity.
    """
    n = X.shape[0]
    h1 = n / (n - 1)
    xc = X - X.mean(axis=0)
    z = xc ** 2
    q1 = z.mean(axis=0)
    q2 = (z ** 2).mean(axis=0) - q1 ** 2
    v = h1 * q1
    target = float(np.median(v))

    denominator = float(np.sum((q1 - target / h1) ** 2))
    if denominator == 0:
        lam = 1.0
    else:
        lam = float(min(1.0, max(0.0, np.sum(q2) / denominator / (n - 1))))
    return lam * target + (1 - lam) * v, lam


def _schafer_strimmer_precision(X):
    n = X.shape[0]
    xs, varying = _standardize(X)
    lam = correlation_shrinkage_intensity(xs)

    r = xs.T @ xs / (n - 1)
    np.fill_diagonal(r, 1.0)
    # (1 - λ)·R + λ·I; the unit diagonal is unchanged
    r_shrunk = (1 - lam) * r
    r_shrunk[np.diag_indices_from(r_shrunk)] = 1.0

    variances, lam_var = shrink_variances(X)
    bad = variances <= 0
    if bad.any():
        # Centered values of these columns are all zero, so the substitute
        # never reaches the distances.
        fallback = float(np.median(variances[~bad])) if (~bad).any() else 1.0
        logger.warning(
            f"{int(bad.sum())} columns have zero shrunk variance; "
            f"using {fallback:.4g} in the precision matrix"
        )
        variances = np.where(bad, fallback, variances)

    inv_sd = 1.0 / np.sqrt(variances)
    precision = linalg.pinvh(r_shrunk) * np.outer(inv_sd, inv_sd)
    if (~varying).any():
        logger.info(f"  {int((~varying).sum())} constant columns (zero correlation)")
    return precision, lam, lam_var


# ── Public API ────────────────────────────────────────────────────────────────

def estimate_inverse_covariance(features, method: str = SHRINKAGE_METHOD) -> ShrinkageCovariance:
    """
    Estimate a well-conditioned inverse covariance matrix.

    Parameters
    ----------
    features : DataFrame or array-like
        ``n × p`` feature matrix, rows = entities. Must be finite, n ≥ 2.
    method : str
        One of ``SHRINKAGE_METHODS``.

    Returns
    -------
    ShrinkageCovariance
        Symmetric ``p × p`` precision plus the shrinkage intensity used.

    Raises
    ------
    PipelineStageError
        For non-finite input, fewer than 2 rows, or an unknown method.
    """
    if method not in SHRINKAGE_METHODS:
        raise PipelineStageError(
            STAGE, f"unknown shrinkage method '{method}' (choose from {SHRINKAGE_METHODS})"
        )

    names = [str(c) for c in features.columns] if isinstance(features, pd.DataFrame) else []
    X = as_float_matrix(features, STAGE, name="feature matrix")
    check_min_rows(X, STAGE, name="feature matrix")
    n, p = X.shape
    logger.info(f"Estimating shrinkage inverse covariance ({method}) for {n} x {p} matrix...")

    lam_var = None
    if method == "schafer_strimmer":
        precision, lam, lam_var = _schafer_strimmer_precision(X)
    else:
        estimator = OAS() if method == "oas" else LedoitWolf()
        estimator.fit(X)
        precision = estimator.precision_
        lam = float(estimator.shrinkage_)

    precision = 0.5 * (precision + precision.T)
    if not np.all(np.isfinite(precision)):
        raise PipelineStageError(STAGE, "shrinkage precision matrix is not finite")

    if lam_var is None:
        logger.info(f"  Shrinkage intensity: {lam:.4f}")
    else:
        logger.info(f"  Correlation shrinkage: {lam:.4f}, variance shrinkage: {lam_var:.4f}")

    return ShrinkageCovariance(
        precision=precision,
        shrinkage=lam,
        method=method,
        feature_names=names,
        variance_shrinkage=lam_var,
    )
