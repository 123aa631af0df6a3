"""QC summary and statistics functions."""

import logging
from typing import Dict, List, Optional

import anndata
import numpy as np
import pandas as pd
import scipy.sparse as sp

logger = logging.getLogger(__name__)


def compute_spot_statistics(
    adata: anndata.AnnData,
    layer: Optional[str] = "counts",
    add_to_obs: bool = True,
) -> pd.DataFrame:
    """
    Compute total counts and detected genes per spot.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    layer : str, optional
        Layer with raw counts; falls back to adata.X when absent.
    add_to_obs : bool
        If True, also store 'n_counts' and 'n_genes' in adata.obs.

    Returns
    -------
    pd.DataFrame
        DataFrame with per-spot statistics.
    """
    data = adata.layers[layer] if layer in adata.layers else adata.X

    if sp.issparse(data):
        n_counts = np.asarray(data.sum(axis=1)).ravel()
        n_genes = np.asarray((data > 0).sum(axis=1)).ravel()
    else:
        n_counts = np.asarray(data).sum(axis=1)
        n_genes = (np.asarray(data) > 0).sum(axis=1)

    stats_df = pd.DataFrame({"n_counts": n_counts, "n_genes": n_genes}, index=adata.obs.index)

    if add_to_obs:
        adata.obs["n_counts"] = stats_df["n_counts"].to_numpy()
        adata.obs["n_genes"] = stats_df["n_genes"].to_numpy()

    return stats_df


def compute_qc_summary(
    adata: anndata.AnnData,
    qc_columns: Optional[List[str]] = None,
    group_by: Optional[str] = "section",
) -> Dict:
    """
    Compute summary statistics for QC metrics.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    qc_columns : list of str, optional
        Columns to summarize. Defaults to 'n_counts' and 'n_genes',
        computing them if needed.
    group_by : str, optional
        Column to summarize per group (usually the section).

    Returns
    -------
    dict
        'n_spots', 'qc_columns', 'overall' and optionally 'by_group'.
    """
    if qc_columns is None:
        if "n_counts" not in adata.obs or "n_genes" not in adata.obs:
            compute_spot_statistics(adata)
        qc_columns = ["n_counts", "n_genes"]

    qc_columns = [c for c in qc_columns if c in adata.obs.columns]
    obs = adata.obs[qc_columns]

    summary = {
        "n_spots": adata.n_obs,
        "qc_columns": qc_columns,
        "overall": obs.describe().to_dict(),
    }

    if group_by and group_by in adata.obs.columns:
        grouped = obs.groupby(adata.obs[group_by], observed=True)
        summary["by_group"] = {
            str(group): df.describe().to_dict() for group, df in grouped
        }

    return summary


def compute_filter_stats(adata: anndata.AnnData, mask: np.ndarray) -> Dict:
    """
    Compute statistics for a filter mask.

    Returns
    -------
    dict
        n_total, n_kept, n_filtered and percent_kept.
    """
    n_total = adata.n_obs
    n_kept = int(np.sum(mask))
    return {
        "n_total": n_total,
        "n_kept": n_kept,
        "n_filtered": n_total - n_kept,
        "percent_kept": 100 * n_kept / n_total if n_total else 0.0,
    }
