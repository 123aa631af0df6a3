"""Visualization functions for cluster interpretation."""

import logging
from typing import Optional

import anndata
import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .utils import prepare_expression_data

logger = logging.getLogger(__name__)


def plot_spatial_highlight(
    adata: anndata.AnnData,
    label_col: str,
    group_id: str,
    spatial_key: str = "spatial",
    size: float = 4,
    highlight_color: str = "#e74c3c",
    background_color: str = "#d3d3d3",
    title: Optional[str] = None,
    width: int = 800,
    height: int = 600,
) -> go.Figure:
    """
    Spatial scatter plot with one group highlighted.

    Other spots are drawn in light grey behind the selected group.
    """
    if spatial_key not in adata.obsm:
        raise ValueError(f"Spatial key '{spatial_key}' not found in adata.obsm")
    if label_col not in adata.obs.columns:
        raise ValueError(f"Label column '{label_col}' not found in adata.obs")

    coords = np.asarray(adata.obsm[spatial_key])
    is_selected = (adata.obs[label_col].astype(str) == str(group_id)).to_numpy()

    fig = go.Figure()
    fig.add_trace(
        go.Scatter(
            x=coords[~is_selected, 0],
            y=coords[~is_selected, 1],
            mode="markers",
            marker=dict(size=size, color=background_color, opacity=0.3),
            name="Other",
            hovertemplate="<b>Other spots</b><br>x: %{x:.0f}<br>y: %{y:.0f}<extra></extra>",
        )
    )
    fig.add_trace(
        go.Scatter(
            x=coords[is_selected, 0],
            y=coords[is_selected, 1],
            mode="markers",
            marker=dict(size=size, color=highlight_color, opacity=0.8),
            name=str(group_id),
            hovertemplate=f"<b>{group_id}</b><br>x: %{{x:.0f}}<br>y: %{{y:.0f}}<extra></extra>",
        )
    )

    fig.update_layout(
        title=title or f"Spatial: {group_id} vs Other",
        width=width,
        height=height,
        plot_bgcolor="white",
        xaxis=dict(showgrid=False),
        yaxis=dict(showgrid=False, scaleanchor="x", scaleratio=1, autorange="reversed"),
    )
    return fig


def plot_marker_heatmap(
    adata: anndata.AnnData,
    markers: pd.DataFrame,
    label_col: str = "clusters",
    use_layer: Optional[str] = "lognorm",
    standardize: bool = True,
    title: str = "Top marker genes",
    width: int = 800,
    height: Optional[int] = None,
) -> go.Figure:
    """
    Heatmap of mean expression of marker genes per cluster.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    markers : pd.DataFrame
        Marker table (e.g. from top_markers); genes are shown in its order.
    label_col : str
        Cluster column in adata.obs.
    standardize : bool
        If True, z-score each gene across clusters.

    Returns
    -------
    plotly.graph_objects.Figure
        Plotly heatmap (genes × clusters).
    """
    if label_col not in adata.obs.columns:
        raise ValueError(f"Label column '{label_col}' not found in adata.obs")

    genes = [g for g in pd.unique(markers["gene"]) if g in adata.var_names]
    if not genes:
        raise ValueError("None of the marker genes are present in adata.var_names")

    sub = adata[:, genes]
    expr = pd.DataFrame(
        prepare_expression_data(sub, use_layer=use_layer), columns=genes, index=adata.obs_names
    )
    means = expr.groupby(adata.obs[label_col].astype(str).to_numpy()).mean().T

    if standardize:
        std = means.std(axis=1).replace(0, 1)
        means = means.sub(means.mean(axis=1), axis=0).div(std, axis=0)

    fig = px.imshow(
        means,
        aspect="auto",
        color_continuous_scale="RdBu_r" if standardize else "viridis",
        labels=dict(x=label_col, y="gene", color="z-score" if standardize else "mean"),
        title=title,
    )
    fig.update_layout(width=width, height=height or max(400, 18 * len(genes)))
    return fig


def plot_cluster_composition(
    composition: pd.DataFrame,
    title: str = "Cluster composition per section",
    width: int = 800,
    height: int = 500,
) -> go.Figure:
    """Stacked bar chart of a sections × clusters composition table."""
    long = composition.reset_index().melt(
        id_vars=composition.index.name or "index", var_name="cluster", value_name="fraction"
    )
    fig = px.bar(
        long,
        x=composition.index.name or "index",
        y="fraction",
        color="cluster",
        title=title,
    )
    fig.update_layout(width=width, height=height, barmode="stack", plot_bgcolor="white")
    return fig
