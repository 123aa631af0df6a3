"""Section access and coordinate conversion helpers."""

import logging
from typing import List, Optional

import anndata
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def get_sections(adata: anndata.AnnData, library_key: str = "section") -> List[str]:
    """
    Return section ids in their stored order.

    Categorical columns keep their category order (the order sections were
    listed in the info table); other columns use order of appearance.
    """
    if library_key not in adata.obs.columns:
        raise ValueError(f"Section column '{library_key}' not found in adata.obs")

    col = adata.obs[library_key]
    if isinstance(col.dtype, pd.CategoricalDtype):
        present = set(col.unique())
        return [str(c) for c in col.cat.categories if c in present]
    return [str(c) for c in pd.unique(col)]


def get_spatial_info(adata: anndata.AnnData, section: str) -> dict:
    """Return ``adata.uns['spatial'][section]``."""
    spatial = adata.uns.get("spatial", {})
    if section not in spatial:
        raise ValueError(f"No image data for section '{section}' in adata.uns['spatial']")
    return spatial[section]


def get_image(adata: anndata.AnnData, section: str, key: str = "hires") -> np.ndarray:
    """Return the stored image of a section."""
    images = get_spatial_info(adata, section).get("images", {})
    if key not in images:
        raise ValueError(f"Image '{key}' not found for section '{section}'")
    return images[key]


def get_scalefactor(adata: anndata.AnnData, section: str) -> float:
    """Scale factor from full-resolution pixels to the stored hires image."""
    factors = get_spatial_info(adata, section).get("scalefactors", {})
    return float(factors.get("tissue_hires_scalef", 1.0))


def section_mask(
    adata: anndata.AnnData, section: str, library_key: str = "section"
) -> np.ndarray:
    """Boolean mask selecting the spots of one section."""
    if library_key not in adata.obs.columns:
        raise ValueError(f"Section column '{library_key}' not found in adata.obs")
    mask = (adata.obs[library_key].astype(str) == str(section)).to_numpy()
    if not mask.any():
        raise ValueError(f"Section '{section}' has no spots")
    return mask


def to_image_coords(
    adata: anndata.AnnData,
    section: str,
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> np.ndarray:
    """
    Spot coordinates of one section in hires-image pixels (x, y).

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    section : str
        Section id.
    spatial_key : str
        Key in adata.obsm with full-resolution coordinates.
    library_key : str
        Column in adata.obs with section ids.

    Returns
    -------
    np.ndarray
        (n_spots_in_section, 2) array.
    """
    if spatial_key not in adata.obsm:
        raise ValueError(f"Spatial key '{spatial_key}' not found in adata.obsm")
    mask = section_mask(adata, section, library_key)
    coords = np.asarray(adata.obsm[spatial_key])[mask]
    return coords * get_scalefactor(adata, section)


def ensure_spatial_coords(
    adata: anndata.AnnData,
    x_col: Optional[str] = None,
    y_col: Optional[str] = None,
    spatial_key: str = "spatial",
    overwrite: bool = False,
) -> anndata.AnnData:
    """
    Ensure spot coordinates are in adata.obsm[spatial_key].

    If x_col and y_col are provided, they are taken from adata.obs.
    Otherwise, spatial_key must already exist in obsm.
    """
    if spatial_key in adata.obsm and not overwrite:
        logger.info(f"Spatial coordinates already exist in adata.obsm['{spatial_key}']")
        return adata

    if x_col and y_col:
        for col in (x_col, y_col):
            if col not in adata.obs.columns:
                raise ValueError(f"Column '{col}' not found in adata.obs")

        adata.obsm[spatial_key] = adata.obs[[x_col, y_col]].to_numpy(dtype=float)
        logger.info(
            f"Created spatial coordinates in adata.obsm['{spatial_key}'] from {x_col}, {y_col}"
        )
    elif spatial_key not in adata.obsm:
        raise ValueError(
            f"No spatial coordinates found. Please provide x_col and y_col, "
            f"or ensure adata.obsm['{spatial_key}'] exists."
        )

    return adata


def normalize_metadata(
    adata: anndata.AnnData,
    library_key: str = "section",
    source_col: Optional[str] = None,
) -> anndata.AnnData:
    """
    Make sure every spot carries a categorical section id.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    library_key : str
        Column to create or normalize.
    source_col : str, optional
        Existing column to copy the section ids from.

    Returns
    -------
    anndata.AnnData
        Modified AnnData object.
    """
    if library_key not in adata.obs.columns:
        if source_col and source_col in adata.obs.columns:
            adata.obs[library_key] = adata.obs[source_col].astype(str)
            logger.info(f"Created '{library_key}' from column '{source_col}'")
        else:
            libraries = list(adata.uns.get("spatial", {}).keys())
            if len(libraries) != 1:
                raise ValueError(
                    f"Cannot infer '{library_key}': found {len(libraries)} libraries "
                    f"in adata.uns['spatial']"
                )
            adata.obs[library_key] = libraries[0]
            logger.warning(f"No section column found. Using library '{libraries[0]}'")

    if not isinstance(adata.obs[library_key].dtype, pd.CategoricalDtype):
        adata.obs[library_key] = pd.Categorical(
            adata.obs[library_key].astype(str),
            categories=[str(c) for c in pd.unique(adata.obs[library_key].astype(str))],
        )

    return adata
