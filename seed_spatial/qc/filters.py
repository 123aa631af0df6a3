"""Spot and gene filtering."""

import logging
from typing import Dict, Optional, Tuple

import anndata
import numpy as np
import scipy.sparse as sp

logger = logging.getLogger(__name__)

Bounds = Tuple[Optional[float], Optional[float]]


def create_filter_mask(adata: anndata.AnnData, filter_criteria: Dict[str, Bounds]) -> np.ndarray:
    """
    Flag the spots whose obs values fall inside every requested range.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    filter_criteria : dict
        ``{column: (low, high)}`` with inclusive bounds; ``None`` leaves a
        side open, e.g. ``{'n_counts': (100, None), 'n_genes': (50, 8000)}``.
        Columns absent from ``adata.obs`` are skipped with a warning.

    Returns
    -------
    np.ndarray
        True for spots that pass.
    """
    passing = np.ones(adata.n_obs, dtype=bool)

    for column, (low, high) in filter_criteria.items():
        if column not in adata.obs.columns:
            logger.warning(f"QC column '{column}' is not in adata.obs; ignoring it")
            continue

        values = adata.obs[column].to_numpy()
        in_range = np.ones(adata.n_obs, dtype=bool)
        if low is not None:
            in_range &= values >= low
        if high is not None:
            in_range &= values <= high
        passing &= in_range

        logger.info(
            f"QC '{column}' in [{low}, {high}]: {int((~in_range).sum())} spots out of range, "
            f"{int(passing.sum())} still passing"
        )

    return passing


def apply_qc_filters(
    adata: anndata.AnnData,
    filter_criteria: Dict[str, Bounds],
    inplace: bool = False,
    add_qc_column: bool = True,
) -> anndata.AnnData:
    """
    Drop the spots that fail ``create_filter_mask``.

    With ``add_qc_column`` the pass/fail flags are first written to
    ``adata.obs['qc_pass']`` of the input. The filtered object is a copy
    unless ``inplace`` is set.
    """
    passing = create_filter_mask(adata, filter_criteria)
    if add_qc_column:
        adata.obs["qc_pass"] = passing

    n_removed = int((~passing).sum())
    logger.info(
        f"QC removed {n_removed} of {adata.n_obs} spots "
        f"({100 * n_removed / max(adata.n_obs, 1):.1f}%)"
    )

    if not inplace:
        return adata[passing].copy()
    adata._inplace_subset_obs(passing)
    return adata


def filter_genes(
    adata: anndata.AnnData,
    min_counts: Optional[int] = None,
    min_spots: Optional[int] = None,
    layer: Optional[str] = "counts",
) -> anndata.AnnData:
    """
    Remove genes with too few counts or detected in too few spots.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    min_counts : int, optional
        Minimum total count of a gene across all spots.
    min_spots : int, optional
        Minimum number of spots in which a gene is detected.
    layer : str, optional
        Layer with raw counts; falls back to adata.X when absent.

    Returns
    -------
    anndata.AnnData
        Filtered copy.
    """
    data = adata.layers[layer] if layer in adata.layers else adata.X

    if sp.issparse(data):
        totals = np.asarray(data.sum(axis=0)).ravel()
        detected = np.asarray((data > 0).sum(axis=0)).ravel()
    else:
        totals = np.asarray(data).sum(axis=0)
        detected = (np.asarray(data) > 0).sum(axis=0)

    keep = np.ones(adata.n_vars, dtype=bool)
    if min_counts is not None:
        keep &= totals >= min_counts
    if min_spots is not None:
        keep &= detected >= min_spots

    logger.info(f"Gene filter: keeping {keep.sum()} of {adata.n_vars} genes")
    return adata[:, keep].copy()


def filter_outliers_mad(
    adata: anndata.AnnData,
    column: str,
    n_mads: float = 5.0,
    only_upper: bool = False,
) -> np.ndarray:
    """
    Flag spots within ``n_mads`` median absolute deviations of the median.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    column : str
        Numeric obs column, e.g. ``'n_counts'``.
    n_mads : float
        Allowed distance from the median in MADs.
    only_upper : bool
        Keep low values regardless of distance.

    Returns
    -------
    np.ndarray
        True for spots that are not outliers.
    """
    if column not in adata.obs.columns:
        raise ValueError(f"Column '{column}' not found in adata.obs")

    values = adata.obs[column].to_numpy(dtype=float)
    center = np.median(values)
    spread = np.median(np.abs(values - center))
    keep = values <= center + n_mads * spread
    if not only_upper:
        keep &= values >= center - n_mads * spread

    logger.info(f"MAD filter on '{column}': {int((~keep).sum())} outlier spots")
    return keep
