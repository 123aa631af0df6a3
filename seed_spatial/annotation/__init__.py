"""Manual region annotation and splitting of multi-section images."""

from .regions import annotate_spots, annotate_polygon, annotate_from_table, clear_annotation
from .crop import CropGeometry, get_crop_windows, crop_sections, crop_windows_to_frame

__all__ = [
    "annotate_spots",
    "annotate_polygon",
    "annotate_from_table",
    "clear_annotation",
    "CropGeometry",
    "get_crop_windows",
    "crop_sections",
    "crop_windows_to_frame",
]
