"""
Smoke tests for the diagnostic figures.

Run: pytest tests/test_visualization.py -v
"""

import pytest

from entity_clustering.affinity import sigma_sweep
from entity_clustering.clustering import ClusterAnalyzer
from entity_clustering.pipeline import run_spectral_pipeline
from entity_clustering.visualization import (
    plot_distance_distribution,
    plot_eigen_spectrum,
    plot_k_selection,
    plot_sigma_effect,
)


@pytest.fixture
def blob_result(two_blobs):
    features, _ = two_blobs
    return run_spectral_pipeline(features, n_clusters=2, seed=42, n_restarts=5)


class TestFigures:
    """Each plot writes one PNG and returns its path."""

    def test_distance_distribution(self, blob_result, tmp_path):
        paths = plot_distance_distribution(blob_result.distances, tmp_path)
        assert [p.name for p in paths] == ["distance_distribution.png"]
        assert paths[0].exists()

    def test_sigma_effect(self, blob_result, tmp_path):
        sweep = sigma_sweep(blob_result.distances, [0.5, 1, 2])
        paths = plot_sigma_effect(blob_result.distances, sweep, tmp_path)
        assert paths[0].exists()

    def test_eigen_spectrum(self, blob_result, tmp_path):
        emb = blob_result.embedding
        paths = plot_eigen_spectrum(emb.eigenvalues, emb.selection, figures_dir=tmp_path)
        assert paths[0].name == "eigen_spectrum.png"
        assert paths[0].exists()

    @pytest.mark.slow
    def test_k_selection(self, blob_result, tmp_path):
        analyzer = ClusterAnalyzer(blob_result.embedding.embedding, seed=1, n_restarts=3)
        metrics = analyzer.find_optimal_k(k_max=4)
        gap_table, optimal = analyzer.gap_statistic(k_max=4, n_refs=3, n_restarts=2)
        paths = plot_k_selection(metrics, gap_table, selected_k=optimal, figures_dir=tmp_path)
        assert paths[0].exists()
