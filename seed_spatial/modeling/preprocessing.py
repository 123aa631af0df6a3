"""Normalization, PCA, UMAP and graph-based clustering."""

import logging
from typing import Literal, Optional

import anndata
import numpy as np
import scanpy as sc
import scipy.sparse as sp

from ..utils.deps import require_package
from .parameters import AnalysisParameters, validate_parameters

logger = logging.getLogger(__name__)


def log_normalize(counts, target_sum: Optional[float] = 1e4):
    """Library-size normalize a counts matrix and apply log1p."""
    normed = sc.pp.normalize_total(
        anndata.AnnData(X=counts.copy()), target_sum=target_sum, inplace=False
    )["X"]
    return normed.log1p() if sp.issparse(normed) else np.log1p(normed)


def normalize_expression(
    adata: anndata.AnnData,
    method: Literal["pearson_residuals", "log"] = "pearson_residuals",
    target_sum: Optional[float] = 1e4,
    n_top_genes: Optional[int] = 3000,
    theta: float = 100.0,
    clip: Optional[float] = None,
) -> anndata.AnnData:
    """
    Normalize spot counts and select highly variable genes.

    ``'pearson_residuals'`` uses analytic Pearson residuals of a negative
    binomial model (the SCTransform-style variance stabilisation);
    ``'log'`` uses library-size normalization, log1p and scaling.
    Either way raw counts stay in ``layers['counts']`` and log-normalized
    values in ``layers['lognorm']`` for marker testing and plotting.

    Parameters
    ----------
    adata : anndata.AnnData
        AnnData with raw counts in X or layers['counts'], modified in place.
    method : {'pearson_residuals', 'log'}
        Normalization method.
    target_sum : float, optional
        Target library size for log normalization.
    n_top_genes : int, optional
        Number of highly variable genes; None keeps all genes.
    theta : float
        Overdispersion for Pearson residuals.
    clip : float, optional
        Residual clipping threshold (default sqrt(n_spots)).

    Returns
    -------
    anndata.AnnData
        The normalized AnnData object.
    """
    if "counts" not in adata.layers:
        adata.layers["counts"] = adata.X.copy()
    adata.X = adata.layers["counts"].copy()
    adata.layers["lognorm"] = log_normalize(adata.layers["counts"], target_sum)

    if n_top_genes is not None:
        n_top_genes = min(n_top_genes, adata.n_vars)

    if method == "pearson_residuals":
        if n_top_genes is not None:
            logger.info(f"Selecting {n_top_genes} highly variable genes (Pearson residuals)")
            sc.experimental.pp.highly_variable_genes(
                adata, flavor="pearson_residuals", n_top_genes=n_top_genes,
                theta=theta, layer="counts",
            )
        logger.info(f"Computing Pearson residuals (theta={theta})")
        sc.experimental.pp.normalize_pearson_residuals(adata, theta=theta, clip=clip)
    elif method == "log":
        adata.X = adata.layers["lognorm"].copy()
        if n_top_genes is not None:
            logger.info(f"Selecting {n_top_genes} highly variable genes")
            sc.pp.highly_variable_genes(adata, n_top_genes=n_top_genes, flavor="seurat")
        logger.info("Scaling data")
        sc.pp.scale(adata, max_value=10)
    else:
        raise ValueError(f"Unknown normalization method: {method}")

    adata.uns["normalization"] = {"method": method, "theta": theta}
    logger.info(f"Normalized {adata.n_obs} spots × {adata.n_vars} genes with '{method}'")
    return adata


def run_pca(
    adata: anndata.AnnData, n_pcs: int = 30, random_state: int = 42
) -> anndata.AnnData:
    """Compute PCA on highly variable genes (all genes if none are flagged)."""
    use_hvg = "highly_variable" in adata.var.columns
    n_features = int(adata.var["highly_variable"].sum()) if use_hvg else adata.n_vars
    n_comps = min(n_pcs, adata.n_obs - 1, n_features - 1)
    if n_comps < 2:
        raise ValueError(f"Too few spots or genes for PCA ({adata.n_obs} × {n_features})")
    if n_comps < n_pcs:
        logger.warning(f"Reducing number of PCs from {n_pcs} to {n_comps}")

    logger.info(f"Computing {n_comps} principal components")
    sc.tl.pca(
        adata,
        n_comps=n_comps,
        mask_var="highly_variable" if use_hvg else None,
        random_state=random_state,
    )
    return adata


def _graph_key(neighbors_key: str) -> Optional[str]:
    # scanpy keeps the default graph in the unprefixed obsp['connectivities']
    return None if neighbors_key == "neighbors" else neighbors_key


def run_umap(
    adata: anndata.AnnData,
    use_rep: str = "X_pca",
    n_neighbors: int = 15,
    min_dist: float = 0.3,
    neighbors_key: str = "neighbors",
    key_added: str = "X_umap",
    random_state: int = 42,
) -> anndata.AnnData:
    """Build the spot kNN graph on ``use_rep`` and embed it with UMAP."""
    if use_rep not in adata.obsm:
        raise ValueError(f"Representation '{use_rep}' not found in adata.obsm")

    n_neighbors = min(n_neighbors, adata.n_obs - 1)
    logger.info(f"Computing neighbors on {use_rep} (k={n_neighbors})")
    sc.pp.neighbors(
        adata, n_neighbors=n_neighbors, use_rep=use_rep,
        key_added=_graph_key(neighbors_key), random_state=random_state,
    )

    logger.info(f"Computing UMAP into obsm['{key_added}']")
    sc.tl.umap(
        adata, min_dist=min_dist, neighbors_key=_graph_key(neighbors_key),
        key_added=key_added, random_state=random_state,
    )
    return adata


def cluster_spots(
    adata: anndata.AnnData,
    resolution: float = 0.8,
    neighbors_key: str = "neighbors",
    key_added: str = "clusters",
    random_state: int = 42,
) -> anndata.AnnData:
    """Leiden clustering of the spot neighbor graph."""
    if neighbors_key not in adata.uns:
        raise ValueError(f"Neighbor graph '{neighbors_key}' not found; run run_umap first")
    require_package("igraph")

    sc.tl.leiden(
        adata,
        resolution=resolution,
        key_added=key_added,
        neighbors_key=_graph_key(neighbors_key),
        flavor="igraph",
        n_iterations=2,
        directed=False,
        random_state=random_state,
    )
    logger.info(
        f"Leiden clustering (resolution={resolution}): "
        f"{adata.obs[key_added].nunique()} clusters in '{key_added}'"
    )
    return adata


def run_dimensionality_reduction(
    adata: anndata.AnnData, params: Optional[AnalysisParameters] = None
) -> anndata.AnnData:
    """
    Normalize, reduce, embed and cluster.

    Writes ``obsm['X_pca']``, ``obsm['X_umap']`` and ``obs['clusters']``.
    """
    params = params or AnalysisParameters()
    is_valid, errors = validate_parameters(params)
    if not is_valid:
        raise ValueError(f"Invalid analysis parameters: {'; '.join(errors)}")

    normalize_expression(
        adata,
        method=params.normalization,
        target_sum=params.target_sum,
        n_top_genes=params.n_top_genes,
        theta=params.theta,
        clip=params.clip,
    )
    run_pca(adata, n_pcs=params.n_pcs, random_state=params.random_state)
    run_umap(
        adata, use_rep="X_pca", n_neighbors=params.n_neighbors,
        min_dist=params.min_dist, random_state=params.random_state,
    )
    cluster_spots(adata, resolution=params.resolution, random_state=params.random_state)

    adata.uns["analysis_params"] = {
        k: v for k, v in params.to_dict().items() if v is not None
    }
    return adata
