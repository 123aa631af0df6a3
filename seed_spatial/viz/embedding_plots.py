"""Embedding plots (PCA, UMAP, Harmony)."""

import logging
from typing import Optional

import anndata
import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

logger = logging.getLogger(__name__)


def _scatter_2d(
    xy: np.ndarray,
    adata: anndata.AnnData,
    color_by: Optional[str],
    axis_prefix: str,
    title: str,
    size: float,
    opacity: float,
    color_map: Optional[str],
    width: int,
    height: int,
) -> go.Figure:
    plot_data = pd.DataFrame({"x": xy[:, 0], "y": xy[:, 1]}, index=adata.obs_names)
    color_col = None
    if color_by:
        if color_by not in adata.obs.columns:
            raise ValueError(f"Column '{color_by}' not found in adata.obs")
        color_col = color_by
        plot_data[color_col] = adata.obs[color_by].to_numpy()

    if color_col and pd.api.types.is_numeric_dtype(plot_data[color_col]):
        fig = px.scatter(
            plot_data, x="x", y="y", color=color_col,
            color_continuous_scale=color_map or "viridis", opacity=opacity, title=title,
        )
    else:
        if color_col:
            plot_data[color_col] = plot_data[color_col].astype(str)
        fig = px.scatter(plot_data, x="x", y="y", color=color_col, opacity=opacity, title=title)

    fig.update_traces(marker=dict(size=size))
    fig.update_layout(
        width=width,
        height=height,
        xaxis_title=f"{axis_prefix}1",
        yaxis_title=f"{axis_prefix}2",
        plot_bgcolor="white",
        xaxis=dict(showgrid=True, gridcolor="lightgray"),
        yaxis=dict(showgrid=True, gridcolor="lightgray"),
    )
    return fig


def plot_embedding(
    adata: anndata.AnnData,
    basis: str = "X_umap",
    color_by: Optional[str] = None,
    components: tuple = (0, 1),
    size: float = 3,
    opacity: float = 0.7,
    title: Optional[str] = None,
    color_map: Optional[str] = None,
    width: int = 700,
    height: int = 600,
) -> go.Figure:
    """
    Plot two dimensions of an embedding colored by metadata.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    basis : str
        Key in adata.obsm for embedding coordinates.
    color_by : str, optional
        Column in adata.obs to color by.
    components : tuple
        Which dimensions to plot (0-indexed).
    size : float
        Marker size.
    opacity : float
        Marker opacity.
    title : str, optional
        Plot title.
    color_map : str, optional
        Continuous colormap name.

    Returns
    -------
    plotly.graph_objects.Figure
        Plotly figure object.
    """
    if basis not in adata.obsm:
        raise ValueError(f"Basis '{basis}' not found in adata.obsm")

    embedding = np.asarray(adata.obsm[basis])
    if embedding.shape[1] <= max(components):
        raise ValueError(
            f"Embedding '{basis}' has {embedding.shape[1]} dimensions; "
            f"cannot plot components {components}"
        )

    label = basis[2:] if basis.startswith("X_") else basis
    default_title = f"{label}: {color_by}" if color_by else label
    return _scatter_2d(
        embedding[:, list(components)], adata, color_by, f"{label}_",
        title or default_title, size, opacity, color_map, width, height,
    )


def plot_pca(
    adata: anndata.AnnData,
    color_by: Optional[str] = None,
    components: tuple = (0, 1),
    basis: str = "X_pca",
    **kwargs,
) -> go.Figure:
    """Plot two principal components."""
    if basis not in adata.obsm:
        raise ValueError("PCA not found. Run run_pca first.")
    return plot_embedding(
        adata,
        basis=basis,
        color_by=color_by,
        components=components,
        title=kwargs.pop("title", f"PCA (PC{components[0] + 1} vs PC{components[1] + 1})"),
        **kwargs,
    )


def plot_umap(
    adata: anndata.AnnData,
    color_by: Optional[str] = None,
    basis: str = "X_umap",
    **kwargs,
) -> go.Figure:
    """
    Plot a UMAP embedding.

    Use ``basis="X_umap_harmony"`` for the embedding computed after
    Harmony integration.
    """
    if basis not in adata.obsm:
        raise ValueError(f"UMAP '{basis}' not found. Run UMAP computation first.")
    title = "UMAP (Harmony)" if "harmony" in basis else "UMAP"
    return plot_embedding(
        adata, basis=basis, color_by=color_by, title=kwargs.pop("title", title), **kwargs
    )


def plot_variance_explained(
    adata: anndata.AnnData, n_comps: int = 30, width: int = 800, height: int = 400
) -> go.Figure:
    """
    Elbow plot of PCA variance explained with its cumulative curve.

    Reads ``adata.uns['pca']['variance_ratio']``.
    """
    if "pca" not in adata.uns or "variance_ratio" not in adata.uns["pca"]:
        raise ValueError("PCA variance not found. Run run_pca first.")

    ratio = np.asarray(adata.uns["pca"]["variance_ratio"])[:n_comps] * 100
    pcs = np.arange(1, len(ratio) + 1)

    fig = go.Figure()
    fig.add_trace(go.Bar(x=pcs, y=ratio, name="Variance explained", marker_color="steelblue"))
    fig.add_trace(
        go.Scatter(
            x=pcs,
            y=np.cumsum(ratio),
            name="Cumulative",
            mode="lines+markers",
            line=dict(color="firebrick", width=2),
            yaxis="y2",
        )
    )
    fig.update_layout(
        title="PCA variance explained",
        xaxis_title="Principal component",
        yaxis_title="Variance explained (%)",
        yaxis2=dict(title="Cumulative (%)", overlaying="y", side="right", range=[0, 100]),
        width=width,
        height=height,
        plot_bgcolor="white",
    )
    return fig
