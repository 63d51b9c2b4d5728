"""
Tests for the Mahalanobis distance engine.

Run: pytest tests/test_distance.py -v
"""

import numpy as np
import pandas as pd
import pytest
from scipy.spatial.distance import cdist

from entity_clustering.covariance import ShrinkageCovariance, estimate_inverse_covariance
from entity_clustering.distance import (
    mahalanobis_distance_matrix,
    mahalanobis_gram,
    squared_distances_from_gram,
    summarize_distances,
    upper_triangle,
)
from entity_clustering.validation import PipelineStageError


def _identity_covariance(features):
    p = features.shape[1]
    return ShrinkageCovariance(precision=np.eye(p), shrinkage=0.0, method="identity",
                               feature_names=list(features.columns))


# ===================================================================
# Distance matrix properties
# ===================================================================

class TestDistanceMatrix:
    """The distance matrix is a labeled, symmetric, non-negative metric table."""

    def test_structure(self, two_blobs):
        features, _ = two_blobs
        cov = estimate_inverse_covariance(features)
        D = mahalanobis_distance_matrix(features, cov)

        assert D.shape == (20, 20)
        assert list(D.index) == list(features.index)
        assert list(D.columns) == list(features.index)
        np.testing.assert_array_equal(D.to_numpy(), D.to_numpy().T)
        assert np.all(np.diag(D.to_numpy()) == 0.0)
        assert (D.to_numpy() >= 0).all()

    def test_matches_pairwise_quadratic_form(self, small_features):
        """The Gram identity agrees with the direct per-pair computation."""
        cov = estimate_inverse_covariance(small_features)
        D = mahalanobis_distance_matrix(small_features, cov)
        expected = cdist(small_features.to_numpy(), small_features.to_numpy(),
                         metric="mahalanobis", VI=cov.precision)
        np.testing.assert_allclose(D.to_numpy(), expected, atol=1e-8)

    def test_identity_precision_gives_euclidean(self):
        """Three entities with Σ⁻¹ = I reproduce Euclidean distances."""
        features = pd.DataFrame(
            [[0.0, 0.0], [3.0, 4.0], [6.0, 0.0]],
            index=["p", "q", "r"], columns=["x", "y"],
        )
        D = mahalanobis_distance_matrix(features, _identity_covariance(features))
        np.testing.assert_allclose(D.loc["p", "q"], 5.0)
        np.testing.assert_allclose(D.loc["q", "r"], 5.0)
        np.testing.assert_allclose(D.loc["p", "r"], 6.0)

    def test_duplicate_entities_have_zero_distance(self):
        features = pd.DataFrame(
            [[1.0, 2.0], [1.0, 2.0], [4.0, -1.0]],
            index=["a", "b", "c"], columns=["x", "y"],
        )
        D = mahalanobis_distance_matrix(features, _identity_covariance(features))
        assert D.loc["a", "b"] == pytest.approx(0.0, abs=1e-6)


# ===================================================================
# Gram identity helpers
# ===================================================================

class TestGramHelpers:

    def test_negative_squared_distances_are_clamped(self):
        """Round-off below zero is clamped to exactly 0."""
        gram = np.array([[1.0, 1.0 + 1e-12], [1.0 + 1e-12, 1.0]])
        sq = squared_distances_from_gram(gram)
        assert sq[0, 1] == 0.0
        assert sq[1, 0] == 0.0

    def test_shape_mismatch(self):
        with pytest.raises(PipelineStageError, match="does not match"):
            mahalanobis_gram(np.zeros((3, 4)), np.eye(5))

    def test_column_order_must_match_covariance(self, small_features):
        cov = estimate_inverse_covariance(small_features)
        shuffled = small_features[["b", "a", "c", "d"]]
        with pytest.raises(PipelineStageError) as exc:
            mahalanobis_distance_matrix(shuffled, cov)
        assert exc.value.stage == "distance"

    def test_non_finite_features(self, small_features):
        cov = _identity_covariance(small_features)
        features = small_features.copy()
        features.iloc[0, 0] = np.inf
        with pytest.raises(PipelineStageError, match="non-finite"):
            mahalanobis_distance_matrix(features, cov)


class TestSummaries:

    def test_upper_triangle_excludes_diagonal(self):
        M = np.arange(9.0).reshape(3, 3)
        np.testing.assert_array_equal(upper_triangle(M), [1.0, 2.0, 5.0])

    def test_summarize_distances(self):
        D = np.array([[0.0, 1.0, 3.0], [1.0, 0.0, 2.0], [3.0, 2.0, 0.0]])
        summary = summarize_distances(D)
        assert summary == {"n_pairs": 3, "min": 1.0, "median": 2.0, "mean": 2.0, "max": 3.0}
