"""Quality control utilities."""

from .filters import apply_qc_filters, create_filter_mask, filter_genes, filter_outliers_mad
from .summaries import compute_qc_summary, compute_spot_statistics, compute_filter_stats

__all__ = [
    "apply_qc_filters",
    "create_filter_mask",
    "filter_genes",
    "filter_outliers_mad",
    "compute_qc_summary",
    "compute_spot_statistics",
    "compute_filter_stats",
]
