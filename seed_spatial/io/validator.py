"""Validator for the spot-level AnnData layout."""

import logging
from typing import List, Tuple

import anndata
import numpy as np

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Custom exception for validation errors."""

    pass


def validate_schema(
    adata: anndata.AnnData,
    strict: bool = False,
    library_key: str = "section",
) -> Tuple[bool, List[str]]:
    """
    Validate that the AnnData object has the layout the pipeline expects.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    strict : bool
        If True, missing section images are errors instead of warnings.
    library_key : str
        Column in adata.obs holding section ids.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of warning/error messages)
    """
    messages = []
    is_valid = True

    if adata.n_obs == 0:
        messages.append("ERROR: No spots (observations) in the dataset.")
        is_valid = False

    if adata.n_vars == 0:
        messages.append("ERROR: No genes (variables) in the dataset.")
        is_valid = False

    if adata.X is None and not adata.layers:
        messages.append("ERROR: No data matrix found (neither adata.X nor adata.layers).")
        is_valid = False

    if not adata.obs.index.is_unique:
        messages.append("ERROR: Spot IDs (obs.index) are not unique.")
        is_valid = False

    if "spatial" in adata.obsm:
        coords = np.asarray(adata.obsm["spatial"])
        if coords.ndim != 2 or coords.shape[1] != 2:
            messages.append(
                f"ERROR: Spot coordinates in obsm['spatial'] should have 2 columns (x, y), "
                f"found shape {coords.shape}."
            )
            is_valid = False
        elif np.any(np.isnan(coords)):
            messages.append("WARNING: Spot coordinates contain NaN values.")
    else:
        messages.append("ERROR: No spot coordinates found in adata.obsm['spatial'].")
        is_valid = False

    if library_key not in adata.obs.columns:
        messages.append(f"ERROR: Section column '{library_key}' not found in adata.obs.")
        is_valid = False
    else:
        spatial = adata.uns.get("spatial", {})
        for section in adata.obs[library_key].astype(str).unique():
            images = spatial.get(section, {}).get("images", {})
            if "hires" not in images:
                level = "ERROR" if strict else "WARNING"
                messages.append(f"{level}: No image stored for section '{section}'.")
                if strict:
                    is_valid = False

    if "counts" not in adata.layers:
        messages.append("WARNING: No raw counts in adata.layers['counts'].")

    logger.info(f"Validation completed: {'PASSED' if is_valid else 'FAILED'}")
    for msg in messages:
        if msg.startswith("ERROR"):
            logger.error(msg)
        else:
            logger.warning(msg)

    return is_valid, messages


def check_required_fields(
    adata: anndata.AnnData,
    obs_columns: List[str] = (),
    obsm_keys: List[str] = (),
    layers: List[str] = (),
) -> None:
    """
    Raise ValidationError if any of the named fields is missing.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    obs_columns, obsm_keys, layers : list of str
        Fields that must be present.
    """
    missing = [f"obs['{c}']" for c in obs_columns if c not in adata.obs.columns]
    missing += [f"obsm['{k}']" for k in obsm_keys if k not in adata.obsm]
    missing += [f"layers['{k}']" for k in layers if k not in adata.layers]

    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
