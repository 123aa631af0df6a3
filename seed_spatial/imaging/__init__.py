"""Image masking and manual section alignment."""

from .masking import (
    MaskParameters,
    channel_image,
    threshold_tissue_mask,
    apply_mask,
    spots_in_mask,
    mask_images,
)
from .alignment import (
    AlignmentParameters,
    transform_points,
    warp_image,
    apply_affine,
    align_section,
    manual_align_images,
    estimate_alignment_from_landmarks,
)

__all__ = [
    "MaskParameters",
    "channel_image",
    "threshold_tissue_mask",
    "apply_mask",
    "spots_in_mask",
    "mask_images",
    "AlignmentParameters",
    "transform_points",
    "warp_image",
    "apply_affine",
    "align_section",
    "manual_align_images",
    "estimate_alignment_from_landmarks",
]
