"""
Feature Matrix Assembler
========================

Loads the keyed feature tables produced by the feature engineering stage
(numeric attributes, text embedding, image embedding) and joins them into a
single dense ``entities × features`` matrix.

Every table is a record set of ``(key, feature columns...)``. Tables are
combined with an inner join on the key: the output entity set is the
intersection of the input entity sets, in the order of the first table.
Entities missing from any table are dropped (and reported).
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import (
    IMAGE_FEATURES_FILE,
    KEY_COLUMN,
    STATS_FEATURES_FILE,
    TEXT_FEATURES_FILE,
)
from .validation import DataValidationResult, PipelineStageError

logger = logging.getLogger(__name__)

STAGE = "assemble"


@dataclass(frozen=True)
class FeatureTable:
    """
    Named block of per-entity features.

    ``data`` is indexed by entity key (strings, unique) and holds only
    numeric feature columns.
    """
    name: str
    data: pd.DataFrame

    @property
    def keys(self) -> List[str]:
        return list(self.data.index)

    @property
    def n_entities(self) -> int:
        return self.data.shape[0]

    @property
    def n_features(self) -> int:
        return self.data.shape[1]


def validate_feature_table(table: FeatureTable) -> DataValidationResult:
    """
    Check a feature table against the assembler's contract.

    Errors: duplicate keys, non-numeric columns, missing or non-finite
    values, no feature columns. An empty table is an error too.
    """
    errors = []
    warnings = []
    df = table.data

    if df.shape[0] == 0:
        errors.append(f"{table.name}: table has no rows")
    if df.shape[1] == 0:
        errors.append(f"{table.name}: table has no feature columns")

    duplicated = df.index[df.index.duplicated()].unique()
    if len(duplicated) > 0:
        errors.append(
            f"{table.name}: {len(duplicated)} duplicate keys "
            f"(e.g. {list(duplicated[:5])})"
        )

    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        errors.append(f"{table.name}: non-numeric feature columns {non_numeric[:5]}")
    else:
        n_missing = int(df.isna().sum().sum())
        if n_missing:
            errors.append(f"{table.name}: {n_missing} missing values")
        elif df.shape[1] > 0 and not np.all(np.isfinite(df.to_numpy(dtype=float))):
            errors.append(f"{table.name}: non-finite values present")

        if not errors and df.shape[0] > 1:
            constant = [c for c in df.columns if df[c].nunique() <= 1]
            if constant:
                warnings.append(f"{table.name}: {len(constant)} constant columns")

    return DataValidationResult(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        metadata={"name": table.name, "shape": df.shape},
    )


def make_feature_table(df: pd.DataFrame, name: str,
                       key_column: Optional[str] = None) -> FeatureTable:
    """
    Build a validated FeatureTable from a DataFrame.

    Parameters
    ----------
    df : DataFrame
        Either already indexed by key, or holding the key in ``key_column``.
    name : str
        Table label used in log messages and diagnostics.
    key_column : str, optional
        Column to move into the index.
    """
    data = df.copy()
    if key_column is not None:
        if key_column not in data.columns:
            raise PipelineStageError(STAGE, f"{name}: missing key column '{key_column}'")
        data = data.set_index(key_column)
    data.index = data.index.map(str)
    data.index.name = KEY_COLUMN
    data.columns = [str(c) for c in data.columns]

    table = FeatureTable(name=name, data=data)
    result = validate_feature_table(table)
    result.log_results()
    result.raise_if_invalid(STAGE)
    return table


def load_feature_table(filepath: Union[str, Path], key_column: str = KEY_COLUMN,
                       name: Optional[str] = None) -> FeatureTable:
    """
    Load a keyed feature table from a CSV file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    PipelineStageError
        If the table violates the feature-table contract
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Feature table not found: {filepath}")

    name = name or filepath.stem
    logger.info(f"Loading feature table '{name}' from: {filepath}")
    df = pd.read_csv(filepath, dtype={key_column: str})
    table = make_feature_table(df, name=name, key_column=key_column)
    logger.info(f"  {table.n_entities} entities x {table.n_features} features")
    return table


def inner_join_tables(tables: Sequence[FeatureTable]) -> pd.DataFrame:
    """
    Inner-join feature tables on the entity key.

    The result keeps the entities present in every table, in the order of
    the first table, with the columns of each table appended in table order.
    """
    if len(tables) == 0:
        raise PipelineStageError(STAGE, "no feature tables to join")

    seen_columns: Dict[str, str] = {}
    for table in tables:
        for col in table.data.columns:
            if col in seen_columns:
                raise PipelineStageError(
                    STAGE,
                    f"column '{col}' appears in both '{seen_columns[col]}' "
                    f"and '{table.name}'",
                )
            seen_columns[col] = table.name

    common = set(tables[0].keys)
    for table in tables[1:]:
        common &= set(table.keys)
    keys = [k for k in tables[0].keys if k in common]

    for table in tables:
        n_dropped = table.n_entities - len(keys)
        if n_dropped:
            logger.warning(
                f"Inner join dropped {n_dropped} of {table.n_entities} entities "
                f"from '{table.name}'"
            )

    if len(keys) < 2:
        raise PipelineStageError(
            STAGE,
            f"mismatched entity sets: only {len(keys)} entities shared by all "
            f"{len(tables)} tables",
        )

    combined = pd.concat([t.data.loc[keys] for t in tables], axis=1)
    combined.index.name = KEY_COLUMN
    return combined


def assemble_feature_matrix(tables: Sequence[FeatureTable]) -> pd.DataFrame:
    """
    Join the feature tables into one validated numeric matrix.

    Returns
    -------
    DataFrame
        entities × features, indexed by entity key.
    """
    logger.info(f"Joining {len(tables)} feature tables by key...")
    combined = inner_join_tables(tables)

    result = validate_feature_table(FeatureTable(name="combined", data=combined))
    result.raise_if_invalid(STAGE)

    logger.info(
        f"  Combined data: {combined.shape[0]} entities x "
        f"{combined.shape[1]} total features"
    )
    return combined.astype(float)


def load_all_feature_tables(stats_path: Union[str, Path, None] = None,
                            text_path: Union[str, Path, None] = None,
                            image_path: Union[str, Path, None] = None,
                            key_column: str = KEY_COLUMN) -> List[FeatureTable]:
    """Load the numeric, text-embedding and image-embedding tables."""
    paths = [
        ("stats", stats_path or STATS_FEATURES_FILE),
        ("text", text_path or TEXT_FEATURES_FILE),
        ("image", image_path or IMAGE_FEATURES_FILE),
    ]
    return [load_feature_table(p, key_column=key_column, name=n) for n, p in paths]
