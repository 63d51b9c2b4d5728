"""
Pytest configuration and shared fixtures for entity clustering tests.

This conftest.py adds the project root to sys.path so that imports of
`entity_clustering.*` modules work from within the tests/ directory without
an installed package.
"""

import sys
from pathlib import Path

import matplotlib
import numpy as np
import pandas as pd
import pytest

# Add project root to sys.path so `from entity_clustering.xxx import ...` works
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

matplotlib.use("Agg")


@pytest.fixture
def root_dir():
    """Return the project root directory as a Path object."""
    return ROOT


def make_two_blobs(n_per_blob=10, n_features=50, n_shifted=8, shift=2.0, seed=0):
    """
    Two groups of entities in ``n_features`` dimensions.

    Every feature is standard normal noise; the second group is shifted by
    ``shift`` in the first ``n_shifted`` features. Returns the feature
    DataFrame and the true group (1 or 2) of each entity.
    """
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(2 * n_per_blob, n_features))
    X[n_per_blob:, :n_shifted] += shift
    keys = [f"entity_{i:02d}" for i in range(2 * n_per_blob)]
    features = pd.DataFrame(
        X, index=pd.Index(keys, name="name"),
        columns=[f"f{j}" for j in range(n_features)],
    )
    truth = pd.Series([1] * n_per_blob + [2] * n_per_blob, index=features.index)
    return features, truth


@pytest.fixture
def two_blobs():
    """(features, truth) for 20 entities x 50 features in two groups."""
    return make_two_blobs()


@pytest.fixture
def small_features():
    """A small well-conditioned 12 x 4 feature matrix."""
    rng = np.random.default_rng(7)
    X = rng.normal(size=(12, 4))
    keys = [f"e{i}" for i in range(12)]
    return pd.DataFrame(X, index=pd.Index(keys, name="name"),
                        columns=["a", "b", "c", "d"])


@pytest.fixture
def feature_csvs(tmp_path):
    """
    Three keyed CSV tables sharing four of their entities.

    stats has A-E, text has B-E plus F, image has E, D, C, B (different
    order). The shared set is B, C, D, E.
    """
    stats = pd.DataFrame({
        "name": ["A", "B", "C", "D", "E"],
        "x1": [1.0, 2.0, 3.0, 4.0, 5.0],
        "x2": [0.5, 0.1, 0.9, 0.3, 0.7],
    })
    text = pd.DataFrame({
        "name": ["B", "C", "D", "E", "F"],
        "t1": [0.2, 0.4, 0.6, 0.8, 1.0],
    })
    image = pd.DataFrame({
        "name": ["E", "D", "C", "B"],
        "i1": [9.0, 7.0, 5.0, 3.0],
        "i2": [1.0, 0.0, 1.0, 0.0],
    })
    paths = {}
    for label, df in (("stats", stats), ("text", text), ("image", image)):
        path = tmp_path / f"{label}.csv"
        df.to_csv(path, index=False)
        paths[label] = path
    return paths


@pytest.fixture
def blob_factory():
    """The two-blob generator itself, for tests that vary its parameters."""
    return make_two_blobs


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: reference-heavy scenarios (gap statistic, parallel restarts)")
