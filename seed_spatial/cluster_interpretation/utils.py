"""Utility functions for cluster interpretation."""

import logging
from typing import List, Optional

import anndata
import numpy as np

logger = logging.getLogger(__name__)


def get_candidate_label_columns(adata: anndata.AnnData) -> List[str]:
    """
    Get candidate grouping columns from adata.obs.

    Columns containing cluster or region keywords come first.
    """
    keywords = ["cluster", "leiden", "region", "section"]

    priority_cols = [
        col for col in adata.obs.columns if any(kw in col.lower() for kw in keywords)
    ]
    other_cols = [
        col
        for col in adata.obs.columns
        if col not in priority_cols
        and (adata.obs[col].dtype == object or str(adata.obs[col].dtype) == "category")
    ]
    return priority_cols + other_cols


def prepare_expression_data(
    adata: anndata.AnnData,
    use_layer: Optional[str] = "lognorm",
    normalize: bool = True,
) -> np.ndarray:
    """
    Prepare a dense expression matrix for marker testing.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    use_layer : str, optional
        Layer to use. Falls back to adata.X when the layer is missing.
    normalize : bool
        If True and the data look like raw counts, apply log1p.

    Returns
    -------
    np.ndarray
        Expression matrix (spots × genes).
    """
    if use_layer is not None and use_layer in adata.layers:
        expr = adata.layers[use_layer]
        logger.info(f"Using layer '{use_layer}' for expression data")
    else:
        expr = adata.X
        logger.info("Using adata.X for expression data")

    if hasattr(expr, "toarray"):
        expr = expr.toarray()
    expr = np.asarray(expr, dtype=np.float64)

    if normalize and expr.size and expr.min() >= 0 and np.allclose(expr, np.round(expr)):
        if expr.max() > 20:
            logger.info("Data look like raw counts; applying log1p")
            expr = np.log1p(expr)

    return expr


def get_feature_values(
    adata: anndata.AnnData, feature: str, use_layer: Optional[str] = "lognorm"
) -> np.ndarray:
    """
    Values of a gene or an obs column for every spot.

    Genes are read from ``use_layer`` (or X); obs columns are returned as is.
    """
    if feature in adata.obs.columns:
        return adata.obs[feature].to_numpy()
    if feature not in adata.var_names:
        raise ValueError(f"Feature '{feature}' is neither a gene nor an obs column")

    idx = adata.var_names.get_loc(feature)
    data = adata.layers[use_layer] if use_layer in adata.layers else adata.X
    column = data[:, idx]
    if hasattr(column, "toarray"):
        column = column.toarray()
    return np.asarray(column, dtype=float).ravel()
