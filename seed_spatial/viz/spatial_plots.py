"""Spatial scatter plots and section images."""

import logging
from typing import Optional, Sequence

import anndata
import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from ..cluster_interpretation.utils import get_feature_values
from ..io.converter import (
    get_image,
    get_scalefactor,
    get_sections,
    get_spatial_info,
    section_mask,
)

logger = logging.getLogger(__name__)


def _to_uint8(image: np.ndarray) -> np.ndarray:
    image = np.asarray(image)
    if image.dtype == np.uint8:
        return image
    if image.dtype == bool:
        return image.astype(np.uint8) * 255
    return (np.clip(image, 0, 1) * 255).astype(np.uint8)


def _image_trace(image: np.ndarray) -> go.Image:
    image = _to_uint8(image)
    if image.ndim == 2:
        image = np.stack([image] * 3, axis=-1)
    return go.Image(z=image[..., :3], hoverinfo="skip", name="image")


def plot_section_image(
    adata: anndata.AnnData,
    section: str,
    image_key: str = "hires",
    show_mask: bool = False,
    title: Optional[str] = None,
    width: int = 700,
    height: int = 700,
) -> go.Figure:
    """
    Show the stored image of one section (or its tissue mask).

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    section : str
        Section id.
    image_key : str
        Key in ``uns['spatial'][section]['images']``.
    show_mask : bool
        Show the boolean tissue mask instead of the image.

    Returns
    -------
    plotly.graph_objects.Figure
        Plotly figure object in image pixel coordinates.
    """
    if show_mask:
        info = get_spatial_info(adata, section)
        if "mask" not in info:
            raise ValueError(f"Section '{section}' has no tissue mask; run mask_images first")
        image = info["mask"]
    else:
        image = get_image(adata, section, image_key)

    fig = go.Figure(_image_trace(image))
    fig.update_layout(
        title=title or f"{section}: {'mask' if show_mask else image_key}",
        width=width,
        height=height,
        xaxis=dict(showgrid=False),
        yaxis=dict(showgrid=False, scaleanchor="x", scaleratio=1),
        margin=dict(l=20, r=20, t=50, b=20),
    )
    return fig


def plot_spatial_scatter(
    adata: anndata.AnnData,
    color_by: Optional[str] = None,
    section: Optional[str] = None,
    show_image: bool = False,
    image_key: str = "hires",
    use_layer: Optional[str] = "lognorm",
    spatial_key: str = "spatial",
    library_key: str = "section",
    size: float = 3,
    opacity: float = 0.7,
    title: Optional[str] = None,
    color_map: Optional[str] = None,
    width: int = 800,
    height: int = 600,
    scale_with_zoom: bool = True,
) -> go.Figure:
    """
    Spatial scatter plot colored by metadata or gene expression.

    With ``show_image`` the spots of ``section`` are drawn in hires-image
    pixels on top of the section image; otherwise full-resolution
    coordinates are used.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    color_by : str, optional
        Column in adata.obs or gene name.
    section : str, optional
        Restrict the plot to one section. Required with ``show_image``.
    show_image : bool
        Draw the section image as background.
    size : float
        Marker size. With ``scale_with_zoom`` it is a fraction of the data
        range, otherwise pixels.
    scale_with_zoom : bool
        Size markers in data coordinates so they grow with zoom.

    Returns
    -------
    plotly.graph_objects.Figure
        Plotly figure object.
    """
    if spatial_key not in adata.obsm:
        raise ValueError(f"Spatial key '{spatial_key}' not found in adata.obsm")
    if show_image and section is None:
        sections = get_sections(adata, library_key)
        if len(sections) != 1:
            raise ValueError("show_image requires a section when several sections are loaded")
        section = sections[0]

    keep = section_mask(adata, section, library_key) if section is not None else np.ones(adata.n_obs, bool)
    coords = np.asarray(adata.obsm[spatial_key], dtype=float)[keep]
    if show_image:
        coords = coords * get_scalefactor(adata, section)

    plot_data = pd.DataFrame({"x": coords[:, 0], "y": coords[:, 1]}, index=adata.obs_names[keep])
    color_col = None
    if color_by:
        color_col = color_by
        plot_data[color_col] = get_feature_values(adata, color_by, use_layer=use_layer)[keep]

    default_title = f"Spatial: {color_by}" if color_by else "Spatial"
    if section is not None:
        default_title = f"{section} - {default_title}"

    if color_col and pd.api.types.is_numeric_dtype(plot_data[color_col]):
        fig = px.scatter(
            plot_data, x="x", y="y", color=color_col,
            color_continuous_scale=color_map or "viridis",
            opacity=opacity, title=title or default_title,
        )
    else:
        if color_col:
            plot_data[color_col] = plot_data[color_col].astype(str)
        fig = px.scatter(
            plot_data, x="x", y="y", color=color_col,
            color_discrete_sequence=px.colors.qualitative.Set1 if not color_map else None,
            opacity=opacity, title=title or default_title,
        )

    if scale_with_zoom and len(plot_data) > 1:
        avg_range = float(np.ptp(coords[:, 0]) + np.ptp(coords[:, 1])) / 2
        fig.update_traces(marker=dict(size=avg_range * (size / 300.0), sizemode="diameter", sizeref=1))
    else:
        fig.update_traces(marker=dict(size=size))

    if show_image:
        fig.add_trace(_image_trace(get_image(adata, section, image_key)))
        fig.data = (fig.data[-1],) + fig.data[:-1]

    fig.update_layout(
        width=width,
        height=height,
        xaxis_title="X",
        yaxis_title="Y",
        plot_bgcolor="white",
        xaxis=dict(showgrid=not show_image, gridcolor="lightgray"),
        yaxis=dict(
            showgrid=not show_image,
            gridcolor="lightgray",
            scaleanchor="x",
            scaleratio=1,
            autorange="reversed",
        ),
        dragmode="zoom",
    )
    return fig


def plot_qc_spatial(
    adata: anndata.AnnData,
    qc_mask: np.ndarray,
    spatial_key: str = "spatial",
    size: float = 3,
    opacity: float = 0.7,
    title: str = "QC filtering: kept vs. filtered",
    width: int = 800,
    height: int = 600,
) -> go.Figure:
    """Spatial plot of spots colored by QC pass/fail."""
    if spatial_key not in adata.obsm:
        raise ValueError(f"Spatial key '{spatial_key}' not found in adata.obsm")

    coords = np.asarray(adata.obsm[spatial_key])
    plot_data = pd.DataFrame(
        {
            "x": coords[:, 0],
            "y": coords[:, 1],
            "QC status": np.where(np.asarray(qc_mask, dtype=bool), "Kept", "Filtered"),
        }
    )
    fig = px.scatter(
        plot_data,
        x="x",
        y="y",
        color="QC status",
        color_discrete_map={"Kept": "steelblue", "Filtered": "red"},
        category_orders={"QC status": ["Kept", "Filtered"]},
        opacity=opacity,
        title=title,
    )
    fig.update_traces(marker=dict(size=size))
    fig.update_layout(
        width=width,
        height=height,
        plot_bgcolor="white",
        yaxis=dict(scaleanchor="x", scaleratio=1, autorange="reversed"),
    )
    return fig


def plot_alignment_overlay(
    adata: anndata.AnnData,
    sections: Optional[Sequence[str]] = None,
    spatial_key: str = "spatial",
    library_key: str = "section",
    show_unaligned: bool = False,
    size: float = 4,
    opacity: float = 0.6,
    width: int = 800,
    height: int = 700,
) -> go.Figure:
    """
    Overlay the spots of several sections to judge their alignment.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    sections : sequence of str, optional
        Sections to overlay. Defaults to all.
    show_unaligned : bool
        Also draw positions before alignment as faint open markers.

    Returns
    -------
    plotly.graph_objects.Figure
        Plotly figure with one trace per section.
    """
    if spatial_key not in adata.obsm:
        raise ValueError(f"Spatial key '{spatial_key}' not found in adata.obsm")

    sections = list(sections) if sections is not None else get_sections(adata, library_key)
    palette = px.colors.qualitative.Set1 + px.colors.qualitative.Set2
    coords = np.asarray(adata.obsm[spatial_key])
    unaligned = adata.obsm.get("spatial_unaligned") if show_unaligned else None

    fig = go.Figure()
    for i, section in enumerate(sections):
        mask = section_mask(adata, section, library_key)
        color = palette[i % len(palette)]
        if unaligned is not None:
            before = np.asarray(unaligned)[mask]
            fig.add_trace(
                go.Scatter(
                    x=before[:, 0],
                    y=before[:, 1],
                    mode="markers",
                    marker=dict(size=size, color=color, opacity=0.2, symbol="circle-open"),
                    name=f"{section} (unaligned)",
                    legendgroup=str(section),
                    hoverinfo="skip",
                )
            )
        fig.add_trace(
            go.Scatter(
                x=coords[mask, 0],
                y=coords[mask, 1],
                mode="markers",
                marker=dict(size=size, color=color, opacity=opacity),
                name=str(section),
                legendgroup=str(section),
            )
        )

    fig.update_layout(
        title="Section alignment overlay",
        width=width,
        height=height,
        plot_bgcolor="white",
        xaxis=dict(showgrid=True, gridcolor="lightgray"),
        yaxis=dict(showgrid=True, gridcolor="lightgray", scaleanchor="x", scaleratio=1, autorange="reversed"),
    )
    return fig
