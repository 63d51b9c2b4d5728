"""
Tests for the normalized Laplacian and the spectral embedding.

Run: pytest tests/test_spectral.py -v
"""

import numpy as np
import pandas as pd
import pytest

from entity_clustering.affinity import build_affinity_matrix
from entity_clustering.covariance import estimate_inverse_covariance
from entity_clustering.distance import mahalanobis_distance_matrix
from entity_clustering.spectral import (
    check_trivial_eigenvalue,
    cumulative_spectrum_criteria,
    normalized_laplacian,
    select_embedding_dimension,
    spectral_embedding,
)
from entity_clustering.validation import PipelineStageError


def _labeled(values, prefix="k"):
    values = np.asarray(values, dtype=float)
    keys = [f"{prefix}{i}" for i in range(values.shape[0])]
    return pd.DataFrame(values, index=keys, columns=keys)


@pytest.fixture
def blob_affinity(two_blobs):
    features, _ = two_blobs
    cov = estimate_inverse_covariance(features)
    return build_affinity_matrix(mahalanobis_distance_matrix(features, cov)).affinity


@pytest.fixture
def two_components():
    """Affinity of two disconnected triples."""
    W = np.zeros((6, 6))
    W[:3, :3] = 1.0
    W[3:, 3:] = 1.0
    return _labeled(W)


# ===================================================================
# Laplacian
# ===================================================================

class TestLaplacian:

    def test_structure(self, blob_affinity):
        result = normalized_laplacian(blob_affinity)
        L = result.laplacian.to_numpy()

        assert list(result.laplacian.index) == list(blob_affinity.index)
        np.testing.assert_allclose(L, L.T)
        values = np.linalg.eigvalsh(L)
        assert values.min() > -1e-9
        assert values.max() < 2 + 1e-9
        assert abs(values.min()) < 1e-8
        assert result.warnings == []

    def test_degrees(self, blob_affinity):
        result = normalized_laplacian(blob_affinity)
        np.testing.assert_allclose(result.degrees.to_numpy(),
                                   blob_affinity.to_numpy().sum(axis=1))

    def test_isolated_entity_warns(self):
        """A zero-degree row gives a warning and an identity row, not an error."""
        W = _labeled([[0.0, 0.0, 0.0],
                      [0.0, 1.0, 0.5],
                      [0.0, 0.5, 1.0]])
        result = normalized_laplacian(W)
        L = result.laplacian.to_numpy()

        assert len(result.warnings) == 1
        assert "zero degree" in result.warnings[0]
        np.testing.assert_array_equal(L[0], [1.0, 0.0, 0.0])
        assert np.all(np.isfinite(L))

    def test_label_mismatch(self):
        W = pd.DataFrame(np.eye(2), index=["a", "b"], columns=["b", "a"])
        with pytest.raises(PipelineStageError) as exc:
            normalized_laplacian(W)
        assert exc.value.stage == "laplacian"


# ===================================================================
# Trivial eigenvalue checks
# ===================================================================

class TestTrivialEigenvalue:

    def test_connected_spectrum(self):
        assert check_trivial_eigenvalue([0.0, 0.3, 0.8]) == []

    def test_nonzero_smallest(self):
        warnings = check_trivial_eigenvalue([0.01, 0.3, 0.8])
        assert len(warnings) == 1
        assert "expected ≈ 0" in warnings[0]

    def test_several_zero_eigenvalues(self):
        warnings = check_trivial_eigenvalue([0.0, 1e-9, 0.4])
        assert len(warnings) == 1
        assert "disconnected" in warnings[0]


# ===================================================================
# Embedding dimension
# ===================================================================

class TestDimensionSelection:

    def test_heuristic_beats_gap(self):
        """K = 3 gives K + ceil(ln 3) = 5, above the gap choice of 2."""
        selection = select_embedding_dimension([0, 0.01, 0.02, 0.5, 0.51, 0.9], 3)
        assert selection.k_gap == 2
        assert selection.k_heuristic == 5
        assert selection.k == 5
        np.testing.assert_allclose(selection.gap_value, 0.48)

    def test_gap_beats_heuristic(self):
        values = [0.0, 0.1, 0.11, 0.12, 0.13, 0.14, 0.9, 0.95, 1.0]
        selection = select_embedding_dimension(values, 1)
        assert selection.k_heuristic == 1
        assert selection.k_gap == 5
        assert selection.k == 5

    def test_heuristic_capped_by_entity_count(self):
        selection = select_embedding_dimension([0.0, 0.2, 0.5, 0.7], 10)
        assert selection.k_heuristic == 3
        assert selection.k == 3

    def test_search_limit(self):
        """Gaps past the search limit are never chosen."""
        values = [0.0, 0.1, 0.2, 0.3, 0.9]
        assert select_embedding_dimension(values, 1, gap_search_limit=100).k_gap == 3
        assert select_embedding_dimension(values, 1, gap_search_limit=2).k_gap == 1

    def test_first_maximal_gap_wins(self):
        selection = select_embedding_dimension([0.0, 0.125, 0.5, 0.875, 1.0], 1)
        assert selection.k_gap == 1

    def test_two_entities(self):
        """No gap exists between the non-trivial eigenvalues of a 2-entity graph."""
        selection = select_embedding_dimension([0.0, 1.0], 2)
        assert selection.gap_position is None
        assert selection.k_gap == 1
        assert selection.k == 1

    def test_invalid_cluster_count(self):
        with pytest.raises(PipelineStageError, match="number of clusters"):
            select_embedding_dimension([0.0, 0.5, 1.0], 0)

    def test_top_gaps_sorted(self):
        selection = select_embedding_dimension([0, 0.01, 0.02, 0.5, 0.51, 0.9], 3)
        gaps = selection.top_gaps["gap"].to_numpy()
        assert np.all(np.diff(gaps) <= 0)
        assert selection.top_gaps["position"].iloc[0] == 2

    def test_cumulative_criteria(self):
        criteria = cumulative_spectrum_criteria([0.0, 1.0, 1.0, 2.0], levels=(0.5, 0.95))
        assert criteria == {0.5: 2, 0.95: 3}


# ===================================================================
# Embedding
# ===================================================================

class TestSpectralEmbedding:

    def test_embedding_shape_and_labels(self, blob_affinity):
        L = normalized_laplacian(blob_affinity).laplacian
        emb = spectral_embedding(L, n_clusters=2)

        assert emb.k == emb.selection.k
        assert emb.embedding.shape == (20, emb.k)
        assert list(emb.embedding.index) == list(blob_affinity.index)
        assert list(emb.embedding.columns) == [f"SE{i}" for i in range(1, emb.k + 1)]
        assert np.all(np.diff(emb.eigenvalues) >= 0)

    def test_columns_are_orthonormal(self, blob_affinity):
        L = normalized_laplacian(blob_affinity).laplacian
        Z = spectral_embedding(L, n_clusters=2).embedding.to_numpy()
        np.testing.assert_allclose(Z.T @ Z, np.eye(Z.shape[1]), atol=1e-8)

    def test_deterministic_orientation(self, blob_affinity):
        """Each eigenvector's largest-magnitude entry is positive."""
        L = normalized_laplacian(blob_affinity).laplacian
        first = spectral_embedding(L, n_clusters=2).embedding
        second = spectral_embedding(L, n_clusters=2).embedding
        pd.testing.assert_frame_equal(first, second)

        Z = first.to_numpy()
        peaks = Z[np.argmax(np.abs(Z), axis=0), np.arange(Z.shape[1])]
        assert np.all(peaks > 0)

    def test_disconnected_graph_warns(self, two_components):
        L = normalized_laplacian(two_components).laplacian
        emb = spectral_embedding(L, n_clusters=2)
        assert any("disconnected" in w for w in emb.warnings)
        assert emb.k == 3
