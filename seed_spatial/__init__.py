"""
seed-spatial: spatial transcriptomics workflow for maize seed sections.

This package provides tools to:
- Load Visium-style sections from an info table and validate them
- Annotate regions manually and split multi-section images into sections
- Mask image background and align sections manually
- Normalize, embed and cluster spots, with Harmony integration across sections
- Find cluster marker genes
- Stack aligned sections into an interpolated 3D view
"""

__version__ = "0.1.0"

from . import (
    io,
    qc,
    annotation,
    imaging,
    modeling,
    cluster_interpretation,
    stack3d,
    viz,
    export,
)

__all__ = [
    "io",
    "qc",
    "annotation",
    "imaging",
    "modeling",
    "cluster_interpretation",
    "stack3d",
    "viz",
    "export",
    "__version__",
]
