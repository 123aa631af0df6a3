"""I/O utilities for loading sections, validating and snapshotting AnnData objects."""

from .loader import (
    load_h5ad,
    load_section,
    load_info_table,
    read_expression,
    read_positions,
    read_scalefactors,
    read_image,
    detect_mappings,
    summarize_adata,
)
from .validator import ValidationError, validate_schema, check_required_fields
from .converter import (
    get_sections,
    get_spatial_info,
    get_image,
    get_scalefactor,
    section_mask,
    to_image_coords,
    ensure_spatial_coords,
    normalize_metadata,
)
from .snapshots import save_snapshot, load_snapshot

__all__ = [
    "load_h5ad",
    "load_section",
    "load_info_table",
    "read_expression",
    "read_positions",
    "read_scalefactors",
    "read_image",
    "detect_mappings",
    "summarize_adata",
    "ValidationError",
    "validate_schema",
    "check_required_fields",
    "get_sections",
    "get_spatial_info",
    "get_image",
    "get_scalefactor",
    "section_mask",
    "to_image_coords",
    "ensure_spatial_coords",
    "normalize_metadata",
    "save_snapshot",
    "load_snapshot",
]
