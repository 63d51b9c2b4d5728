# artifacts.py
"""
Persistence of labeled pipeline outputs.

Every artifact is written twice: a pandas pickle (``.pkl``) that preserves
dtypes and labels exactly, and a CSV (``.csv``) for inspection in other
tools. Row (and for entity × entity matrices, column) labels are the entity
keys.
"""

import logging
from pathlib import Path
from typing import Dict, Union

import pandas as pd

logger = logging.getLogger(__name__)

ARTIFACT_FORMATS = ("pkl", "csv")


def save_artifact(frame: pd.DataFrame, directory: Union[str, Path], stem: str) -> Dict[str, Path]:
    """Write one artifact in every format; returns {format: path}."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    paths = {}
    for fmt in ARTIFACT_FORMATS:
        path = directory / f"{stem}.{fmt}"
        if fmt == "pkl":
            frame.to_pickle(path)
        else:
            frame.to_csv(path)
        paths[fmt] = path
        logger.info(f"  Saved: {path}")
    return paths


def load_artifact(path: Union[str, Path]) -> pd.DataFrame:
    """
    Read an artifact written by :func:`save_artifact`.

    CSV files are read with the first column as the index; entity keys are
    kept as strings and columns that hold entity keys stay strings as well.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Artifact not found: {path}")
    if path.suffix == ".pkl":
        return pd.read_pickle(path)
    if path.suffix == ".csv":
        return pd.read_csv(path, index_col=0, converters={0: str})
    raise ValueError(f"Unsupported artifact format: {path.suffix}")


def write_pipeline_artifacts(result, directory: Union[str, Path]) -> Dict[str, Dict[str, Path]]:
    """
    Persist every output of a completed pipeline run.

    Parameters
    ----------
    result : SpectralPipelineResult
    directory : path
        Output directory (created if needed).
    """
    logger.info(f"Saving pipeline artifacts to {directory}...")
    frames = {
        "combined_features": result.features,
        "mahalanobis_distance_matrix": result.distances,
        "affinity_matrix": result.affinity,
        "spectral_embedding": result.embedding.embedding,
        "spectral_clustering_results": result.clusters.to_frame(),
        "eigenvalues": result.eigenvalue_table(),
        "spectral_gaps": result.embedding.selection.top_gaps,
        "cluster_summary": result.cluster_summary(),
    }
    return {stem: save_artifact(frame, directory, stem) for stem, frame in frames.items()}
