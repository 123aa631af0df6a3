"""Cluster summary computation."""

import logging
from typing import Optional

import anndata
import pandas as pd

logger = logging.getLogger(__name__)


def compute_cluster_summary(
    adata: anndata.AnnData,
    label_col: str = "clusters",
    sample_col: Optional[str] = "section",
    exclude_na: bool = True,
) -> pd.DataFrame:
    """
    Compute spot counts per cluster, optionally split by section.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    label_col : str
        Column in adata.obs containing group labels.
    sample_col : str, optional
        Column in adata.obs with section ids. If present, per-section
        counts are added as extra columns.
    exclude_na : bool
        If True, exclude spots with missing labels.

    Returns
    -------
    pd.DataFrame
        Columns: group_id, n_spots, percent_of_total, [per-section counts]
    """
    if label_col not in adata.obs.columns:
        raise ValueError(f"Label column '{label_col}' not found in adata.obs")

    obs_data = adata.obs[adata.obs[label_col].notna()] if exclude_na else adata.obs
    total_spots = len(obs_data)

    group_counts = obs_data[label_col].value_counts()
    summary = pd.DataFrame(
        {
            "group_id": group_counts.index.astype(str),
            "n_spots": group_counts.values,
            "percent_of_total": (group_counts.values / total_spots * 100).round(2),
        }
    )

    if sample_col and sample_col in obs_data.columns:
        crosstab = pd.crosstab(obs_data[label_col], obs_data[sample_col])
        crosstab.index = crosstab.index.astype(str)
        crosstab.columns = crosstab.columns.astype(str)
        crosstab = crosstab.reset_index().rename(columns={label_col: "group_id"})
        summary = summary.merge(crosstab, on="group_id", how="left")
        logger.info(f"Added per-section counts for {crosstab.shape[1] - 1} sections")

    summary = summary.sort_values("group_id", key=_natural_key).reset_index(drop=True)
    logger.info(f"Computed summary for {len(summary)} groups in '{label_col}'")
    return summary


def compute_section_composition(
    adata: anndata.AnnData,
    label_col: str = "clusters",
    section_col: str = "section",
    normalize: bool = True,
) -> pd.DataFrame:
    """
    Cluster composition of each section.

    Returns
    -------
    pd.DataFrame
        Sections × clusters table of fractions (or counts).
    """
    for col in (label_col, section_col):
        if col not in adata.obs.columns:
            raise ValueError(f"Column '{col}' not found in adata.obs")

    return pd.crosstab(
        adata.obs[section_col], adata.obs[label_col], normalize="index" if normalize else False
    )


def _natural_key(values: pd.Series) -> pd.Series:
    """Sort numeric cluster ids numerically, otherwise alphabetically."""
    numeric = pd.to_numeric(values, errors="coerce")
    return numeric if numeric.notna().all() else values.astype(str)
