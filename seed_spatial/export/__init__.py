"""Export utilities for tables, manifests and snapshots."""

from .writers import (
    export_all,
    export_clusters,
    export_embeddings,
    export_markers,
    export_stack,
)
from .manifest import create_manifest, save_manifest, validate_manifest

__all__ = [
    "export_all",
    "export_clusters",
    "export_embeddings",
    "export_markers",
    "export_stack",
    "create_manifest",
    "save_manifest",
    "validate_manifest",
]
