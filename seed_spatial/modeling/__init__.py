"""Expression normalization, embedding, clustering and integration."""

from .parameters import AnalysisParameters, get_default_parameters, validate_parameters
from .preprocessing import (
    log_normalize,
    normalize_expression,
    run_pca,
    run_umap,
    cluster_spots,
    run_dimensionality_reduction,
)
from .integration import run_harmony, integrate_sections

__all__ = [
    "AnalysisParameters",
    "get_default_parameters",
    "validate_parameters",
    "log_normalize",
    "normalize_expression",
    "run_pca",
    "run_umap",
    "cluster_spots",
    "run_dimensionality_reduction",
    "run_harmony",
    "integrate_sections",
]
