"""
Entity Spectral Clustering
==========================

Groups entities described by several keyed feature tables into K clusters
using spectral clustering over a Mahalanobis-distance affinity graph.

Main Components:
- data_ingestion: Load, validate and inner-join the feature tables
- covariance: Shrinkage estimate of the inverse covariance matrix
- distance: Pairwise Mahalanobis distances via the Gram identity
- affinity: RBF affinity with a median-distance bandwidth
- spectral: Normalized Laplacian and spectral embedding
- clustering: Multi-restart k-means and cluster-count diagnostics
- artifacts: Pickle/CSV persistence of every labeled output
- visualization: Diagnostic figures

Example Usage:
    from entity_clustering.pipeline import run_from_files

    result = run_from_files(
        'outputs/clustering_results',
        stats_path='data/clean_stats.csv',
        text_path='data/clean_text_SVD.csv',
        image_path='data/clean_images_PCA.csv',
        n_clusters=18,
        seed=42
    )

    labels = result.clusters.labels
"""

__version__ = '1.0.0'
__author__ = 'Entity Clustering Research Team'

from .validation import (
    PipelineStageError,
    DataValidationResult,
)

from .data_ingestion import (
    FeatureTable,
    load_feature_table,
    make_feature_table,
    assemble_feature_matrix,
    load_all_feature_tables
)

from .covariance import (
    ShrinkageCovariance,
    estimate_inverse_covariance
)

from .distance import mahalanobis_distance_matrix

from .affinity import (
    AffinityResult,
    build_affinity_matrix,
    sigma_sweep
)

from .spectral import (
    LaplacianResult,
    SpectralEmbedding,
    normalized_laplacian,
    select_embedding_dimension,
    spectral_embedding
)

from .clustering import (
    ClusterAnalyzer,
    KMeansResult,
    run_kmeans
)

from .pipeline import (
    SpectralPipelineResult,
    run_spectral_pipeline,
    run_from_files
)

__all__ = [
    'PipelineStageError',
    'DataValidationResult',
    'FeatureTable',
    'load_feature_table',
    'make_feature_table',
    'assemble_feature_matrix',
    'load_all_feature_tables',
    'ShrinkageCovariance',
    'estimate_inverse_covariance',
    'mahalanobis_distance_matrix',
    'AffinityResult',
    'build_affinity_matrix',
    'sigma_sweep',
    'LaplacianResult',
    'SpectralEmbedding',
    'normalized_laplacian',
    'select_embedding_dimension',
    'spectral_embedding',
    'ClusterAnalyzer',
    'KMeansResult',
    'run_kmeans',
    'SpectralPipelineResult',
    'run_spectral_pipeline',
    'run_from_files',
]
