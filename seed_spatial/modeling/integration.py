"""Batch-effect correction across sections with Harmony."""

import logging
from typing import Optional

import anndata
import numpy as np

from ..utils.deps import require_package
from .parameters import AnalysisParameters
from .preprocessing import cluster_spots, run_umap

logger = logging.getLogger(__name__)


def run_harmony(
    adata: anndata.AnnData,
    batch_key: str = "section",
    basis: str = "X_pca",
    adjusted_basis: str = "X_pca_harmony",
    theta: float = 2.0,
    max_iter: int = 10,
    random_state: int = 42,
) -> anndata.AnnData:
    """
    Correct a PCA embedding for batch effects with Harmony.

    Parameters
    ----------
    adata : anndata.AnnData
        AnnData with ``obsm[basis]``, modified in place.
    batch_key : str
        Column in adata.obs defining batches (usually the section).
    basis : str
        Embedding to correct.
    adjusted_basis : str
        Key in adata.obsm for the corrected embedding.
    theta : float
        Diversity penalty.
    max_iter : int
        Maximum Harmony iterations.
    random_state : int
        Random seed.

    Returns
    -------
    anndata.AnnData
        The same AnnData object.
    """
    if batch_key not in adata.obs.columns:
        raise ValueError(f"Batch column '{batch_key}' not found in adata.obs")
    if basis not in adata.obsm:
        raise ValueError(f"Basis '{basis}' not found in adata.obsm")

    n_batches = adata.obs[batch_key].nunique()
    if n_batches < 2:
        raise ValueError(f"Harmony needs at least 2 batches in '{batch_key}', found {n_batches}")

    require_package("harmonypy")
    import harmonypy

    logger.info(f"Running Harmony on {basis} over {n_batches} batches of '{batch_key}'")
    meta = adata.obs[[batch_key]].astype(str)
    harmony_out = harmonypy.run_harmony(
        np.asarray(adata.obsm[basis], dtype=np.float64),
        meta,
        vars_use=[batch_key],
        theta=theta,
        max_iter_harmony=max_iter,
        random_state=random_state,
        verbose=False,
    )

    corrected = np.asarray(harmony_out.Z_corr)
    if corrected.shape[0] != adata.n_obs:
        corrected = corrected.T
    adata.obsm[adjusted_basis] = corrected.astype(np.float32)

    logger.info(f"Stored Harmony embedding in obsm['{adjusted_basis}']")
    return adata


def integrate_sections(
    adata: anndata.AnnData, params: Optional[AnalysisParameters] = None
) -> anndata.AnnData:
    """
    Harmony-correct the PCA embedding, then re-embed and re-cluster.

    Writes ``obsm['X_pca_harmony']``, ``obsm['X_umap_harmony']`` and
    ``obs['harmony_clusters']``.
    """
    params = params or AnalysisParameters()
    if "X_pca" not in adata.obsm:
        raise ValueError("PCA embedding not found; run run_dimensionality_reduction first")

    run_harmony(
        adata,
        batch_key=params.batch_key,
        theta=params.harmony_theta,
        max_iter=params.harmony_max_iter,
        random_state=params.random_state,
    )
    run_umap(
        adata,
        use_rep="X_pca_harmony",
        n_neighbors=params.n_neighbors,
        min_dist=params.min_dist,
        neighbors_key="neighbors_harmony",
        key_added="X_umap_harmony",
        random_state=params.random_state,
    )
    cluster_spots(
        adata,
        resolution=params.resolution,
        neighbors_key="neighbors_harmony",
        key_added="harmony_clusters",
        random_state=params.random_state,
    )
    return adata
