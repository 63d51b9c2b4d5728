"""
Spectral Clustering Pipeline
============================

Composes the stages into one deterministic pass:

1. Shrinkage inverse covariance of the combined feature matrix
2. Mahalanobis distance matrix
3. RBF affinity matrix (median bandwidth)
4. Normalized graph Laplacian
5. Spectral embedding with gap/heuristic dimensionality selection
6. Multi-restart k-means on the embedding

Stages hand labeled in-memory artifacts to each other; the entity order of
every artifact is checked against the feature matrix at each boundary.
Files are only read at the start and written at the end, after every stage
has succeeded.

Example Usage:
    from entity_clustering.pipeline import run_spectral_pipeline

    result = run_spectral_pipeline(features, n_clusters=18, seed=42)
    result.clusters.to_frame().to_csv('clusters.csv')
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import pandas as pd

from .affinity import AffinityResult, build_affinity_matrix
from .artifacts import write_pipeline_artifacts
from .clustering import ClusterAnalyzer, KMeansResult
from .config import (
    GAP_SEARCH_LIMIT, MAX_ITER, N_CLUSTERS, N_JOBS, N_RESTARTS, RANDOM_SEED,
    SHRINKAGE_METHOD, SIGMA_MULTIPLIER,
)
from .covariance import ShrinkageCovariance, estimate_inverse_covariance
from .data_ingestion import (
    FeatureTable, assemble_feature_matrix, load_all_feature_tables, validate_feature_table,
)
from .distance import mahalanobis_distance_matrix
from .spectral import LaplacianResult, SpectralEmbedding, normalized_laplacian, spectral_embedding
from .validation import assert_same_entities, entity_keys

logger = logging.getLogger(__name__)


@dataclass
class SpectralPipelineResult:
    """Every artifact of one pipeline run, labeled by entity key."""
    features: pd.DataFrame
    covariance: ShrinkageCovariance
    distances: pd.DataFrame
    affinity_result: AffinityResult
    laplacian_result: LaplacianResult
    embedding: SpectralEmbedding
    clusters: KMeansResult
    warnings: List[str] = field(default_factory=list)

    @property
    def keys(self) -> List[str]:
        return entity_keys(self.features)

    @property
    def affinity(self) -> pd.DataFrame:
        return self.affinity_result.affinity

    @property
    def laplacian(self) -> pd.DataFrame:
        return self.laplacian_result.laplacian

    @property
    def sigma(self) -> float:
        return self.affinity_result.sigma

    def eigenvalue_table(self) -> pd.DataFrame:
        values = self.embedding.eigenvalues
        return pd.DataFrame(
            {"eigenvalue": values},
            index=pd.Index(np.arange(1, values.size + 1), name="position"),
        )

    def cluster_summary(self) -> pd.DataFrame:
        c = self.clusters
        return pd.DataFrame({
            "size": c.cluster_sizes(),
            "withinss": c.withinss,
        }, index=c.centers.index)


def run_spectral_pipeline(features: pd.DataFrame,
                          n_clusters: int = N_CLUSTERS,
                          seed: int = RANDOM_SEED,
                          n_restarts: int = N_RESTARTS,
                          max_iter: int = MAX_ITER,
                          shrinkage_method: str = SHRINKAGE_METHOD,
                          sigma_multiplier: float = SIGMA_MULTIPLIER,
                          gap_search_limit: int = GAP_SEARCH_LIMIT,
                          n_jobs: Optional[int] = N_JOBS) -> SpectralPipelineResult:
    """
    Run every stage on an assembled feature matrix.

    Parameters
    ----------
    features : DataFrame
        entities × features, indexed by entity key.
    n_clusters : int
        K, fixed a priori.

    Returns
    -------
    SpectralPipelineResult

    Raises
    ------
    PipelineStageError
        On the first violated stage invariant; nothing is written.
        Duplicate keys, non-numeric columns and missing values are rejected
        at stage ``"assemble"`` before any computation.
    """
    validate_feature_table(FeatureTable(name="features", data=features)).raise_if_invalid("assemble")
    keys = entity_keys(features)
    logger.info(f"Feature matrix dimensions: {features.shape[0]} x {features.shape[1]}")

    covariance = estimate_inverse_covariance(features, method=shrinkage_method)

    distances = mahalanobis_distance_matrix(features, covariance)
    assert_same_entities(keys, entity_keys(distances), "distance")

    affinity = build_affinity_matrix(distances, multiplier=sigma_multiplier)
    assert_same_entities(keys, entity_keys(affinity.affinity), "affinity")

    laplacian = normalized_laplacian(affinity.affinity)
    assert_same_entities(keys, entity_keys(laplacian.laplacian), "laplacian")

    embedding = spectral_embedding(laplacian.laplacian, n_clusters, gap_search_limit)
    assert_same_entities(keys, entity_keys(embedding.embedding), "embedding")

    analyzer = ClusterAnalyzer(embedding.embedding, name="spectral embedding", seed=seed,
                               n_restarts=n_restarts, max_iter=max_iter, n_jobs=n_jobs)
    clusters = analyzer.fit(n_clusters)
    assert_same_entities(keys, [str(k) for k in clusters.labels.index], "partition")

    warnings = laplacian.warnings + embedding.warnings + clusters.warnings
    if affinity.n_underflow:
        warnings.append(f"{affinity.n_underflow} affinities underflowed to 0")

    sizes = clusters.cluster_sizes()
    logger.info("Cluster sizes: " + ", ".join(f"{c}: {n}" for c, n in sizes.items()))
    if warnings:
        logger.warning(f"Pipeline finished with {len(warnings)} warnings")

    return SpectralPipelineResult(
        features=features,
        covariance=covariance,
        distances=distances,
        affinity_result=affinity,
        laplacian_result=laplacian,
        embedding=embedding,
        clusters=clusters,
        warnings=warnings,
    )


def run_from_files(output_dir: Union[str, Path],
                   stats_path: Union[str, Path, None] = None,
                   text_path: Union[str, Path, None] = None,
                   image_path: Union[str, Path, None] = None,
                   **kwargs) -> SpectralPipelineResult:
    """
    Load the three feature tables, run the pipeline and write every artifact.

    Keyword arguments are passed to :func:`run_spectral_pipeline`.
    """
    tables = load_all_feature_tables(stats_path, text_path, image_path)
    features = assemble_feature_matrix(tables)
    result = run_spectral_pipeline(features, **kwargs)
    write_pipeline_artifacts(result, output_dir)
    return result
