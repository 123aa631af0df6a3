"""Cluster interpretation and marker gene analysis."""

from .markers import MARKER_COLUMNS, compute_marker_genes, find_all_markers, top_markers
from .summaries import compute_cluster_summary, compute_section_composition
from .visualization import plot_spatial_highlight, plot_marker_heatmap, plot_cluster_composition
from .utils import get_candidate_label_columns, prepare_expression_data, get_feature_values

__all__ = [
    "MARKER_COLUMNS",
    "compute_marker_genes",
    "find_all_markers",
    "top_markers",
    "compute_cluster_summary",
    "compute_section_composition",
    "plot_spatial_highlight",
    "plot_marker_heatmap",
    "plot_cluster_composition",
    "get_candidate_label_columns",
    "prepare_expression_data",
    "get_feature_values",
]
