# clustering.py
"""
K-means partitioning of the spectral embedding, with cluster-count
diagnostics (elbow, silhouette, Calinski-Harabasz, gap statistic) and
stability validation.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.cluster import KMeans
from sklearn.metrics import adjusted_rand_score, calinski_harabasz_score, silhouette_score

from .config import (
    GAP_N_REFS, GAP_SE_FACTOR, K_MAX, MAX_ITER, N_JOBS, N_RESTARTS,
    N_STABILITY_RUNS, RANDOM_SEED,
)
from .validation import PipelineStageError, as_float_matrix

logger = logging.getLogger(__name__)

STAGE = "partition"


@dataclass
class KMeansResult:
    """Best of several Lloyd k-means restarts."""
    labels: pd.Series
    centers: pd.DataFrame
    tot_withinss: float
    withinss: np.ndarray
    betweenss: float
    totss: float
    n_iter: int
    converged: bool
    restart_inertias: np.ndarray
    warnings: List[str] = field(default_factory=list)

    @property
    def n_clusters(self) -> int:
        return self.centers.shape[0]

    @property
    def between_ratio(self) -> float:
        return self.betweenss / self.totss if self.totss > 0 else float("nan")

    def cluster_sizes(self) -> pd.Series:
        return self.labels.value_counts().reindex(self.centers.index, fill_value=0)

    def to_frame(self) -> pd.DataFrame:
        """Entity → cluster assignment table."""
        return self.labels.rename("cluster").to_frame()


def _single_restart(Z, n_clusters, seed, max_iter):
    km = KMeans(
        n_clusters=n_clusters,
        init="random",
        n_init=1,
        max_iter=max_iter,
        tol=0.0,
        algorithm="lloyd",
        random_state=seed,
    )
    km.fit(Z)
    return km


def _is_fixed_point(Z, km) -> bool:
    """True when every center is the mean of the entities assigned to it."""
    for c, center in enumerate(km.cluster_centers_):
        members = Z[km.labels_ == c]
        if members.shape[0] == 0 or not np.allclose(members.mean(axis=0), center):
            return False
    return True


def _converged(Z, km, max_iter) -> bool:
    # sklearn reports n_iter_ == max_iter both when the assignment settled on
    # the last allowed iteration and when it was still changing
    return km.n_iter_ < max_iter or _is_fixed_point(Z, km)


def restart_seeds(seed: int, n_restarts: int) -> np.ndarray:
    """Per-restart seeds derived from one master seed."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 2**31 - 1, size=n_restarts)


def run_kmeans(embedding, n_clusters: int, seed: int = RANDOM_SEED,
               n_restarts: int = N_RESTARTS, max_iter: int = MAX_ITER,
               n_jobs: Optional[int] = N_JOBS) -> KMeansResult:
    """
    Lloyd k-means with independent random restarts.

    Each restart draws K initial centroids from the rows of the embedding
    and iterates until no assignment changes or ``max_iter`` is reached.
    The restart with the lowest total within-cluster sum of squares is kept
    (the first one on ties), so the result does not depend on ``n_jobs``.

    Parameters
    ----------
    embedding : DataFrame or array-like
        n × k embedding, rows = entities.
    n_clusters : int
        K, the number of clusters.
    seed : int
        Master seed; identical inputs and seed give identical labels.
    n_restarts, max_iter : int
        R ≥ 1 restarts, I ≥ 1 iterations per restart.

    Returns
    -------
    KMeansResult
        Labels in 1..K keyed by entity.
    """
    Z = as_float_matrix(embedding, STAGE, name="embedding")
    n = Z.shape[0]
    if n_clusters < 1 or n_clusters > n:
        raise PipelineStageError(
            STAGE, f"number of clusters must be in [1, {n}], got {n_clusters}"
        )
    if n_restarts < 1 or max_iter < 1:
        raise PipelineStageError(
            STAGE, f"restarts and iterations must be ≥ 1, got {n_restarts}, {max_iter}"
        )

    seeds = restart_seeds(seed, n_restarts)
    fits = Parallel(n_jobs=n_jobs)(
        delayed(_single_restart)(Z, n_clusters, int(s), max_iter) for s in seeds
    )
    inertias = np.array([km.inertia_ for km in fits])
    best = fits[int(np.argmin(inertias))]

    labels = best.labels_.astype(int) + 1
    centers = best.cluster_centers_
    withinss = np.array([
        float(((Z[labels == c] - centers[c - 1]) ** 2).sum())
        for c in range(1, n_clusters + 1)
    ])
    tot_withinss = float(withinss.sum())
    totss = float(((Z - Z.mean(axis=0)) ** 2).sum())

    warnings = []
    converged = _converged(Z, best, max_iter)
    if not converged:
        msg = (
            f"k-means (K={n_clusters}) did not converge within {max_iter} "
            f"iterations; keeping the last assignment"
        )
        logger.warning(msg)
        warnings.append(msg)
    n_not_converged = sum(not _converged(Z, km, max_iter) for km in fits)
    if n_not_converged:
        logger.debug(f"  {n_not_converged}/{n_restarts} restarts were still changing at the cap")

    if isinstance(embedding, pd.DataFrame):
        index, columns = embedding.index, embedding.columns
    else:
        index, columns = pd.RangeIndex(n), None
    cluster_index = pd.Index(range(1, n_clusters + 1), name="cluster")

    return KMeansResult(
        labels=pd.Series(labels, index=index, name="cluster"),
        centers=pd.DataFrame(centers, index=cluster_index, columns=columns),
        tot_withinss=tot_withinss,
        withinss=withinss,
        betweenss=totss - tot_withinss,
        totss=totss,
        n_iter=int(best.n_iter_),
        converged=converged,
        restart_inertias=inertias,
        warnings=warnings,
    )


def first_se_max(gap, se, se_factor: float = GAP_SE_FACTOR) -> int:
    """
    Tibshirani's "first SE max" rule.

    Locate the first local maximum of the gap curve, then return the
    smallest k whose gap is within ``se_factor`` standard errors of it.
    k is 1-based (``gap[0]`` belongs to k = 1).
    """
    gap = np.asarray(gap, dtype=float)
    se = np.asarray(se, dtype=float)
    decreasing = np.diff(gap) <= 0
    nc = int(np.argmax(decreasing)) + 1 if decreasing.any() else gap.size
    within = gap[:nc - 1] >= gap[nc - 1] - se_factor * se[nc - 1]
    return int(np.argmax(within)) + 1 if within.any() else nc


def reference_sample(Z: np.ndarray, rng: np.random.Generator,
                     space: str = "scaledPCA") -> np.ndarray:
    """
    Uniform reference data for the gap statistic.

    ``original`` draws in the bounding box of Z; ``scaledPCA`` draws in the
    box of the principal-axis rotation of Z and rotates back.
    """
    if space == "original":
        lo, hi = Z.min(axis=0), Z.max(axis=0)
        return rng.uniform(lo, hi, size=Z.shape)
    if space != "scaledPCA":
        raise ValueError(f"unknown reference space '{space}'")
    mean = Z.mean(axis=0)
    _, _, vt = np.linalg.svd(Z - mean, full_matrices=False)
    rotated = (Z - mean) @ vt.T
    lo, hi = rotated.min(axis=0), rotated.max(axis=0)
    return rng.uniform(lo, hi, size=rotated.shape) @ vt + mean


class ClusterAnalyzer:
    """K-means on a spectral embedding, with cluster-count diagnostics."""

    def __init__(self, embedding, name="embedding", seed=RANDOM_SEED,
                 n_restarts=N_RESTARTS, max_iter=MAX_ITER, n_jobs=N_JOBS):
        """
        Parameters
        ----------
        embedding : DataFrame
            Spectral embedding (rows=entities, columns=eigenvectors).
        name : str
            Label used in log messages.
        """
        self.embedding = embedding
        self.name = name
        self.seed = seed
        self.n_restarts = n_restarts
        self.max_iter = max_iter
        self.n_jobs = n_jobs
        self.results = {}
        self.result: Optional[KMeansResult] = None

    def _kmeans(self, k, seed=None, n_restarts=None, data=None):
        return run_kmeans(
            self.embedding if data is None else data,
            k,
            seed=self.seed if seed is None else seed,
            n_restarts=self.n_restarts if n_restarts is None else n_restarts,
            max_iter=self.max_iter,
            n_jobs=self.n_jobs,
        )

    @property
    def labels(self):
        return None if self.result is None else self.result.labels

    # ── Final model ───────────────────────────────────────────────────────

    def fit(self, n_clusters) -> KMeansResult:
        """Fit k-means with the chosen number of clusters."""
        logger.info(f"Running k-means clustering with k = {n_clusters} on {self.name}...")
        self.result = self._kmeans(n_clusters)
        r = self.result
        logger.info(f"  K-means stopped after {r.n_iter} iterations")
        logger.info(f"  Total within-cluster sum of squares: {r.tot_withinss:.2f}")
        logger.info(f"  Between-cluster sum of squares: {r.betweenss:.2f}")
        logger.info(f"  Ratio (between/total): {100 * r.between_ratio:.2f}%")
        return r

    # ── Optimal k search ──────────────────────────────────────────────────

    def find_optimal_k(self, k_max=None):
        """
        WCSS, silhouette and Calinski-Harabasz for k = 1..k_max.

        Silhouette and Calinski-Harabasz are undefined at k = 1 (NaN).
        """
        Z = as_float_matrix(self.embedding, STAGE, name="embedding")
        k_max = min(k_max or K_MAX, Z.shape[0] - 1)
        if k_max < 1:
            raise PipelineStageError(STAGE, "need at least 2 entities to compare cluster counts")

        rows = []
        for k in range(1, k_max + 1):
            r = self._kmeans(k)
            labels = r.labels.to_numpy()
            if k >= 2 and np.unique(labels).size >= 2:
                sil = float(silhouette_score(Z, labels))
                ch = float(calinski_harabasz_score(Z, labels))
            else:
                sil = ch = float("nan")
            rows.append({"k": k, "wcss": r.tot_withinss,
                         "silhouette": sil, "calinski_harabasz": ch})
            logger.info(f"  k={k:2d}  WCSS={r.tot_withinss:10.2f}  "
                        f"Silhouette={sil:.3f}  CH={ch:.2f}")

        metrics = pd.DataFrame(rows)
        self.results["metrics"] = metrics
        if metrics["silhouette"].notna().any():
            self.results["optimal_k_silhouette"] = int(
                metrics.loc[metrics["silhouette"].idxmax(), "k"])
            self.results["optimal_k_calinski"] = int(
                metrics.loc[metrics["calinski_harabasz"].idxmax(), "k"])
            logger.info(f"  Silhouette method: k = {self.results['optimal_k_silhouette']}")
            logger.info(f"  Calinski-Harabasz: k = {self.results['optimal_k_calinski']}")
        return metrics

    def gap_statistic(self, k_max=None, n_refs=GAP_N_REFS, space="scaledPCA",
                      se_factor=GAP_SE_FACTOR, n_restarts=None):
        """
        Gap statistic (Tibshirani, Walther & Hastie 2001) for k = 1..k_max.

        Compares log WCSS on the data with its average over ``n_refs``
        uniform reference datasets; the recommended k follows the
        "first SE max" rule.
        """
        Z = as_float_matrix(self.embedding, STAGE, name="embedding")
        k_max = min(k_max or K_MAX, Z.shape[0] - 1)
        if k_max < 1 or n_refs < 2:
            raise PipelineStageError(STAGE, "gap statistic needs k_max ≥ 1 and n_refs ≥ 2")

        ks = range(1, k_max + 1)
        log_w = np.log([self._kmeans(k, n_restarts=n_restarts, data=Z).tot_withinss
                        for k in ks])

        rng = np.random.default_rng(self.seed)
        log_w_ref = np.empty((n_refs, k_max))
        for b in range(n_refs):
            ref = reference_sample(Z, rng, space)
            for j, k in enumerate(ks):
                w = self._kmeans(k, n_restarts=n_restarts, data=ref).tot_withinss
                log_w_ref[b, j] = np.log(w)

        expected = log_w_ref.mean(axis=0)
        gap = expected - log_w
        se = np.sqrt(1 + 1 / n_refs) * log_w_ref.std(axis=0, ddof=1)
        table = pd.DataFrame({
            "k": list(ks),
            "log_wcss": log_w,
            "expected_log_wcss": expected,
            "gap": gap,
            "gap_se": se,
        })
        optimal = first_se_max(gap, se, se_factor)
        self.results["gap"] = table
        self.results["optimal_k_gap"] = optimal
        logger.info(f"  Gap statistic suggests: k = {optimal}")
        return table, optimal

    # ── Stability validation ──────────────────────────────────────────────

    def validate_stability(self, n_clusters=None, n_runs=None):
        """
        Run single-start k-means with different seeds and measure pairwise ARI.
        """
        if n_clusters is None:
            if self.result is None:
                raise RuntimeError("Call fit first or pass n_clusters.")
            n_clusters = self.result.n_clusters
        if n_runs is None:
            n_runs = N_STABILITY_RUNS

        all_labels = [self._kmeans(n_clusters, seed=i, n_restarts=1).labels.to_numpy()
                      for i in range(n_runs)]

        ari_scores = []
        for i in range(n_runs):
            for j in range(i + 1, n_runs):
                ari_scores.append(adjusted_rand_score(all_labels[i], all_labels[j]))

        mean_ari = float(np.mean(ari_scores)) if ari_scores else float("nan")
        std_ari = float(np.std(ari_scores)) if ari_scores else float("nan")
        logger.info(f"  Stability ({n_runs} runs): ARI = {mean_ari:.3f} ± {std_ari:.3f}")
        if mean_ari > 0.9:
            logger.info("    → Very stable")
        elif mean_ari > 0.7:
            logger.info("    → Moderately stable")
        else:
            logger.info("    → Unstable — consider a different k")

        self.results["stability_ari_mean"] = mean_ari
        self.results["stability_ari_std"] = std_ari
        return mean_ari
