"""3D plots of stacked sections."""

import logging
from typing import Optional, Sequence

import anndata
import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from ..io.converter import get_sections, section_mask

logger = logging.getLogger(__name__)


def plot_feature_3d(
    stack: pd.DataFrame,
    values: Optional[pd.Series] = None,
    feature: Optional[str] = None,
    size: float = 2,
    opacity: float = 0.6,
    color_map: str = "viridis",
    title: Optional[str] = None,
    width: int = 900,
    height: int = 700,
) -> go.Figure:
    """
    3D scatter of stack points colored by an interpolated feature.

    Parameters
    ----------
    stack : pd.DataFrame
        Point cloud with columns x, y, z, section.
    values : pd.Series, optional
        Values aligned to ``stack`` (e.g. from interpolate_feature). If
        omitted, points are colored by section.
    feature : str, optional
        Name shown in the legend and title.

    Returns
    -------
    plotly.graph_objects.Figure
        Plotly figure object.
    """
    plot_data = stack[["x", "y", "z", "section"]].copy()
    plot_data["section"] = plot_data["section"].astype(str)

    if values is not None:
        if len(values) != len(stack):
            raise ValueError(f"Got {len(values)} values for {len(stack)} stack points")
        color_col = feature or getattr(values, "name", None) or "value"
        plot_data[color_col] = np.asarray(values)
        plot_data = plot_data[pd.notna(plot_data[color_col])]
    else:
        color_col = "section"

    if pd.api.types.is_numeric_dtype(plot_data[color_col]):
        fig = px.scatter_3d(
            plot_data, x="x", y="y", z="z", color=color_col,
            color_continuous_scale=color_map, opacity=opacity,
            title=title or f"3D: {color_col}",
        )
    else:
        plot_data[color_col] = plot_data[color_col].astype(str)
        fig = px.scatter_3d(
            plot_data, x="x", y="y", z="z", color=color_col,
            opacity=opacity, title=title or f"3D: {color_col}",
        )

    fig.update_traces(marker=dict(size=size))
    fig.update_layout(
        width=width,
        height=height,
        scene=dict(aspectmode="data", yaxis=dict(autorange="reversed")),
    )
    return fig


def plot_sections_3d(
    adata: anndata.AnnData,
    sections: Optional[Sequence[str]] = None,
    z_spacing: float = 100.0,
    color_by: Optional[str] = None,
    size: float = 2,
    opacity: float = 0.8,
    spatial_key: str = "spatial",
    library_key: str = "section",
    width: int = 900,
    height: int = 700,
) -> go.Figure:
    """
    Spots of several sections drawn as stacked layers.

    Each section is placed at ``order_index * z_spacing`` and colored by
    an obs column (section by default).
    """
    if spatial_key not in adata.obsm:
        raise ValueError(f"Spatial key '{spatial_key}' not found in adata.obsm")
    if color_by and color_by not in adata.obs.columns:
        raise ValueError(f"Column '{color_by}' not found in adata.obs")

    sections = list(sections) if sections is not None else get_sections(adata, library_key)
    coords = np.asarray(adata.obsm[spatial_key])
    color_col = color_by or library_key

    frames = []
    for index, section in enumerate(sections):
        mask = section_mask(adata, section, library_key)
        frames.append(
            pd.DataFrame(
                {
                    "x": coords[mask, 0],
                    "y": coords[mask, 1],
                    "z": index * float(z_spacing),
                    color_col: adata.obs[color_col].to_numpy()[mask],
                }
            )
        )
    plot_data = pd.concat(frames, ignore_index=True)

    if not pd.api.types.is_numeric_dtype(plot_data[color_col]):
        plot_data[color_col] = plot_data[color_col].astype(str)

    fig = px.scatter_3d(
        plot_data, x="x", y="y", z="z", color=color_col, opacity=opacity,
        title=f"Stacked sections: {color_col}",
    )
    fig.update_traces(marker=dict(size=size))
    fig.update_layout(
        width=width,
        height=height,
        scene=dict(aspectmode="data", yaxis=dict(autorange="reversed")),
    )
    return fig
