"""Visualization utilities."""

from .spatial_plots import (
    plot_spatial_scatter,
    plot_section_image,
    plot_qc_spatial,
    plot_alignment_overlay,
)
from .embedding_plots import plot_embedding, plot_pca, plot_umap, plot_variance_explained

__all__ = [
    "plot_spatial_scatter",
    "plot_section_image",
    "plot_qc_spatial",
    "plot_alignment_overlay",
    "plot_embedding",
    "plot_pca",
    "plot_umap",
    "plot_variance_explained",
]
