"""Differential expression between clusters."""

import logging
from typing import Optional

import anndata
import numpy as np
import pandas as pd
from scipy import stats

from .utils import prepare_expression_data

logger = logging.getLogger(__name__)

MARKER_COLUMNS = ["cluster", "gene", "avg_log2FC", "pct_1", "pct_2", "p_val", "p_val_adj"]


def _group_statistics(expr_in: np.ndarray, expr_out: np.ndarray, pseudocount: float = 1.0):
    """Fold change of mean expression (linear scale) and detection rates."""
    mean_in = np.expm1(expr_in).mean(axis=0)
    mean_out = np.expm1(expr_out).mean(axis=0)
    log_fc = np.log2(mean_in + pseudocount) - np.log2(mean_out + pseudocount)
    pct_in = (expr_in > 0).mean(axis=0)
    pct_out = (expr_out > 0).mean(axis=0)
    return log_fc, pct_in, pct_out


def compute_marker_genes(
    adata: anndata.AnnData,
    label_col: str,
    group_id: str,
    use_layer: Optional[str] = "lognorm",
    min_pct: float = 0.1,
    logfc_threshold: float = 0.25,
    only_pos: bool = True,
    n_genes: Optional[int] = None,
    expr: Optional[np.ndarray] = None,
) -> pd.DataFrame:
    """
    Compute marker genes for one group versus all other spots.

    Genes are pre-filtered on detection rate and fold change, then tested
    with the Wilcoxon rank-sum test and Benjamini-Hochberg corrected.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    label_col : str
        Column in adata.obs containing group labels.
    group_id : str
        Group to compute markers for.
    use_layer : str, optional
        Layer with log-normalized expression.
    min_pct : float
        Minimum fraction of spots expressing the gene in either group.
    logfc_threshold : float
        Minimum absolute log2 fold change.
    only_pos : bool
        If True, keep only genes higher in the group.
    n_genes : int, optional
        Return only the top n genes.
    expr : np.ndarray, optional
        Precomputed expression matrix (spots × genes).

    Returns
    -------
    pd.DataFrame
        Columns cluster, gene, avg_log2FC, pct_1, pct_2, p_val, p_val_adj,
        sorted by adjusted p-value then fold change.
    """
    if label_col not in adata.obs.columns:
        raise ValueError(f"Label column '{label_col}' not found in adata.obs")

    if expr is None:
        expr = prepare_expression_data(adata, use_layer=use_layer)

    labels = adata.obs[label_col].astype(object)
    group_mask = (labels == group_id).to_numpy()
    other_mask = ((labels != group_id) & labels.notna()).to_numpy()

    n_in = group_mask.sum()
    n_out = other_mask.sum()
    if n_in == 0:
        raise ValueError(f"Group '{group_id}' has no spots")
    if n_out == 0:
        raise ValueError("No spots in 'other' group for comparison")

    logger.info(f"Computing markers for {group_id}: {n_in} spots vs {n_out} other spots")

    expr_in = expr[group_mask]
    expr_out = expr[other_mask]
    log_fc, pct_in, pct_out = _group_statistics(expr_in, expr_out)

    keep = np.maximum(pct_in, pct_out) >= min_pct
    if only_pos:
        keep &= log_fc >= logfc_threshold
    else:
        keep &= np.abs(log_fc) >= logfc_threshold

    if not keep.any():
        logger.info(f"No genes pass the marker filters for group {group_id}")
        return pd.DataFrame(columns=MARKER_COLUMNS)

    _, p_values = stats.ranksums(expr_in[:, keep], expr_out[:, keep], axis=0)
    p_values = np.nan_to_num(p_values, nan=1.0)
    adj_p_values = stats.false_discovery_control(p_values, method="bh")

    results = pd.DataFrame(
        {
            "cluster": str(group_id),
            "gene": adata.var_names[keep],
            "avg_log2FC": log_fc[keep],
            "pct_1": np.round(pct_in[keep], 3),
            "pct_2": np.round(pct_out[keep], 3),
            "p_val": p_values,
            "p_val_adj": adj_p_values,
        }
    )
    results = results.sort_values(["p_val_adj", "avg_log2FC"], ascending=[True, False])
    if n_genes is not None:
        results = results.head(n_genes)
    results = results.reset_index(drop=True)

    logger.info(f"Computed {len(results)} marker genes for group {group_id}")
    return results


def find_all_markers(
    adata: anndata.AnnData,
    label_col: str = "clusters",
    use_layer: Optional[str] = "lognorm",
    min_pct: float = 0.1,
    logfc_threshold: float = 0.25,
    only_pos: bool = True,
) -> pd.DataFrame:
    """
    Compute markers of every group against the rest.

    Returns
    -------
    pd.DataFrame
        Concatenated marker tables of all groups (see
        :func:`compute_marker_genes`).
    """
    if label_col not in adata.obs.columns:
        raise ValueError(f"Label column '{label_col}' not found in adata.obs")

    labels = adata.obs[label_col]
    if isinstance(labels.dtype, pd.CategoricalDtype):
        groups = [g for g in labels.cat.categories if (labels == g).any()]
    else:
        groups = sorted(labels.dropna().unique(), key=str)
    if len(groups) < 2:
        raise ValueError(f"Need at least 2 groups in '{label_col}', found {len(groups)}")

    expr = prepare_expression_data(adata, use_layer=use_layer)
    tables = [
        compute_marker_genes(
            adata, label_col, group, use_layer=use_layer, min_pct=min_pct,
            logfc_threshold=logfc_threshold, only_pos=only_pos, expr=expr,
        )
        for group in groups
    ]
    tables = [t for t in tables if not t.empty]
    if not tables:
        return pd.DataFrame(columns=MARKER_COLUMNS)

    markers = pd.concat(tables, ignore_index=True)[MARKER_COLUMNS]
    logger.info(f"Found {len(markers)} markers across {len(groups)} groups of '{label_col}'")
    return markers


def top_markers(
    markers: pd.DataFrame, n: int = 10, max_p_val_adj: float = 0.05
) -> pd.DataFrame:
    """
    Top ``n`` significant markers per cluster, ranked by fold change.

    Parameters
    ----------
    markers : pd.DataFrame
        Output of :func:`find_all_markers`.
    n : int
        Genes per cluster.
    max_p_val_adj : float
        Significance cutoff.

    Returns
    -------
    pd.DataFrame
        Subset of ``markers``.
    """
    significant = markers[markers["p_val_adj"] <= max_p_val_adj].copy()
    order = {c: i for i, c in enumerate(pd.unique(markers["cluster"]))}
    significant["_order"] = significant["cluster"].map(order)
    ranked = significant.sort_values(["_order", "avg_log2FC"], ascending=[True, False])
    top = ranked.groupby("cluster", sort=False).head(n)
    return top.drop(columns="_order").reset_index(drop=True)
