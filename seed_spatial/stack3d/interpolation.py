"""Interpolate spot values onto the 3D stack."""

import logging
from typing import Literal, Optional

import anndata
import numpy as np
import pandas as pd
from scipy.interpolate import griddata

from ..cluster_interpretation.utils import get_feature_values
from ..io.converter import section_mask

logger = logging.getLogger(__name__)

Method = Literal["linear", "nearest"]


def _interpolate_numeric(coords, values, points, method: Method) -> np.ndarray:
    if method == "linear" and len(coords) >= 4:
        result = griddata(coords, values, points, method="linear")
        missing = np.isnan(result)
        if missing.any():
            result[missing] = griddata(coords, values, points[missing], method="nearest")
        return result
    return griddata(coords, values, points, method="nearest")


def interpolate_feature(
    adata: anndata.AnnData,
    stack: pd.DataFrame,
    feature: str,
    method: Method = "linear",
    use_layer: Optional[str] = "lognorm",
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> pd.Series:
    """
    Interpolate a gene or obs column from spots onto stack points.

    Each section is interpolated from its own spots only. Numeric values use
    linear interpolation, with points outside the spots' hull filled from the
    nearest spot; categorical values always use the nearest spot.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    stack : pd.DataFrame
        Output of :func:`create_3d_stack`.
    feature : str
        Gene name or column in adata.obs.
    method : {"linear", "nearest"}
        Interpolation method for numeric features.
    use_layer : str, optional
        Layer for gene expression.

    Returns
    -------
    pd.Series
        Interpolated values aligned to ``stack``.
    """
    if method not in ("linear", "nearest"):
        raise ValueError(f"Unknown interpolation method '{method}'")
    if spatial_key not in adata.obsm:
        raise ValueError(f"Spatial key '{spatial_key}' not found in adata.obsm")
    for col in ("x", "y", "section"):
        if col not in stack.columns:
            raise ValueError(f"Stack is missing column '{col}'")

    raw = get_feature_values(adata, feature, use_layer=use_layer)
    categorical = not pd.api.types.is_numeric_dtype(pd.Series(raw)) or pd.api.types.is_bool_dtype(
        pd.Series(raw)
    )
    if categorical:
        codes = pd.Categorical(raw)
        values = codes.codes.astype(float)
        values[codes.codes < 0] = np.nan
    else:
        values = np.asarray(raw, dtype=float)

    coords_all = np.asarray(adata.obsm[spatial_key], dtype=float)
    result = np.full(len(stack), np.nan)
    stack_sections = stack["section"].astype(str).to_numpy()

    for section in pd.unique(stack_sections):
        rows = stack_sections == section
        spots = section_mask(adata, section, library_key) & ~np.isnan(values)
        if not spots.any():
            logger.warning(f"No valid '{feature}' values in section '{section}'")
            continue
        points = stack.loc[rows, ["x", "y"]].to_numpy(dtype=float)
        section_method = "nearest" if categorical else method
        result[rows] = _interpolate_numeric(coords_all[spots], values[spots], points, section_method)

    if categorical:
        filled = ~np.isnan(result)
        labels = np.full(len(stack), None, dtype=object)
        labels[filled] = codes.categories.to_numpy()[result[filled].astype(int)]
        series = pd.Series(
            pd.Categorical(labels, categories=codes.categories), index=stack.index, name=feature
        )
    else:
        series = pd.Series(result, index=stack.index, name=feature)

    logger.info(
        f"Interpolated '{feature}' onto {len(stack)} stack points "
        f"({'nearest' if categorical else method})"
    )
    return series
