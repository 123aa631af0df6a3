"""Manual rigid and affine alignment of sections."""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

import anndata
import numpy as np
from skimage.transform import AffineTransform, estimate_transform, warp

from ..io.converter import get_scalefactor, get_spatial_info, section_mask

logger = logging.getLogger(__name__)


@dataclass
class AlignmentParameters:
    """
    Manual alignment of one section.

    Rotation and shear are in degrees, shifts in hires-image pixels. All
    operations act about the image centre; the shift is applied last.
    """

    angle: float = 0.0
    shift_x: float = 0.0
    shift_y: float = 0.0
    flip_x: bool = False
    flip_y: bool = False
    scale: float = 1.0
    shear: float = 0.0

    def __post_init__(self):
        if self.scale <= 0:
            raise ValueError(f"scale must be > 0, got {self.scale}")
        if abs(self.shear) >= 90:
            raise ValueError(f"shear must be within (-90, 90) degrees, got {self.shear}")

    def is_identity(self) -> bool:
        return self == AlignmentParameters()

    def to_matrix(self, center: Tuple[float, float] = (0.0, 0.0)) -> np.ndarray:
        """
        Compose the 3x3 affine matrix acting on (x, y, 1) image coordinates.

        Parameters
        ----------
        center : tuple of float
            (x, y) point that rotation, scaling, shear and flips keep fixed.

        Returns
        -------
        np.ndarray
            3x3 homogeneous matrix.
        """
        cx, cy = center
        theta = math.radians(self.angle)

        to_origin = np.array([[1, 0, -cx], [0, 1, -cy], [0, 0, 1]], dtype=float)
        back = np.array([[1, 0, cx], [0, 1, cy], [0, 0, 1]], dtype=float)
        flip = np.diag([-1.0 if self.flip_x else 1.0, -1.0 if self.flip_y else 1.0, 1.0])
        shear = np.array(
            [[1, math.tan(math.radians(self.shear)), 0], [0, 1, 0], [0, 0, 1]], dtype=float
        )
        scale = np.diag([self.scale, self.scale, 1.0])
        rotation = np.array(
            [
                [math.cos(theta), -math.sin(theta), 0],
                [math.sin(theta), math.cos(theta), 0],
                [0, 0, 1],
            ]
        )
        shift = np.array([[1, 0, self.shift_x], [0, 1, self.shift_y], [0, 0, 1]], dtype=float)

        return shift @ back @ rotation @ scale @ shear @ flip @ to_origin

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "AlignmentParameters":
        return cls(**{k: v for k, v in d.items() if k in cls.__annotations__})


def transform_points(points: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Apply a 3x3 affine matrix to (n, 2) points."""
    points = np.asarray(points, dtype=float)
    homog = np.column_stack([points, np.ones(len(points))])
    return (matrix @ homog.T).T[:, :2]


def warp_image(
    image: np.ndarray,
    matrix: np.ndarray,
    output_shape: Optional[Tuple[int, int]] = None,
    background: float = 1.0,
    order: int = 1,
) -> np.ndarray:
    """
    Warp an image with an affine matrix (forward map, image coordinates).

    Boolean images (masks) are warped with nearest-neighbour interpolation
    and returned as booleans.
    """
    output_shape = output_shape or image.shape[:2]
    inverse = AffineTransform(matrix=np.linalg.inv(matrix))

    if image.dtype == bool:
        warped = warp(
            image.astype(np.float32), inverse, output_shape=output_shape,
            order=0, mode="constant", cval=0.0, preserve_range=True,
        )
        return warped > 0.5

    warped = warp(
        image, inverse, output_shape=output_shape,
        order=order, mode="constant", cval=background, preserve_range=True,
    )
    return warped.astype(image.dtype, copy=False)


def apply_affine(
    adata: anndata.AnnData,
    section: str,
    matrix: np.ndarray,
    parameters: Optional[dict] = None,
    background: float = 1.0,
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> anndata.AnnData:
    """
    Apply an affine matrix to one section's images and spot coordinates.

    The matrix acts on hires-image pixels. The state before the first
    alignment is kept (``obsm['spatial_unaligned']`` and ``<image>_unaligned``
    entries), and every call starts from it, so repeated alignments of the
    same section replace rather than compound each other.
    """
    matrix = np.asarray(matrix, dtype=float)
    if matrix.shape != (3, 3):
        raise ValueError(f"Affine matrix must be 3x3, got {matrix.shape}")

    info = get_spatial_info(adata, section)
    images = info["images"]

    for key in [k for k in images if not k.endswith("_unaligned")]:
        original = images.setdefault(f"{key}_unaligned", images[key])
        images[key] = warp_image(original, matrix, background=background)
    if "mask" in info:
        original = info.setdefault("mask_unaligned", info["mask"])
        info["mask"] = warp_image(original, matrix)

    if "spatial_unaligned" not in adata.obsm:
        adata.obsm["spatial_unaligned"] = np.array(adata.obsm[spatial_key], dtype=float)
    coords = np.array(adata.obsm[spatial_key], dtype=float)
    in_section = section_mask(adata, section, library_key)
    scalef = get_scalefactor(adata, section)

    unaligned = adata.obsm["spatial_unaligned"][in_section] * scalef
    coords[in_section] = transform_points(unaligned, matrix) / scalef
    adata.obsm[spatial_key] = coords

    info["alignment"] = {"matrix": matrix}
    if parameters:
        info["alignment"]["parameters"] = parameters

    logger.info(f"Aligned section '{section}' ({in_section.sum()} spots)")
    return adata


def align_section(
    adata: anndata.AnnData,
    section: str,
    params: Union[AlignmentParameters, dict],
    background: float = 1.0,
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> anndata.AnnData:
    """
    Rotate, flip, scale, shear and shift one section about its image centre.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object, modified in place.
    section : str
        Section to align.
    params : AlignmentParameters or dict
        Manual alignment parameters.

    Returns
    -------
    anndata.AnnData
        The same AnnData object.
    """
    if isinstance(params, dict):
        params = AlignmentParameters.from_dict(params)

    images = get_spatial_info(adata, section)["images"]
    reference = images.get("hires_unaligned", images["hires"])
    height, width = reference.shape[:2]
    matrix = params.to_matrix(center=((width - 1) / 2, (height - 1) / 2))

    logger.info(f"Section '{section}' alignment: {params}")
    return apply_affine(
        adata, section, matrix, parameters=params.to_dict(),
        background=background, spatial_key=spatial_key, library_key=library_key,
    )


def manual_align_images(
    adata: anndata.AnnData,
    parameters: Dict[str, Union[AlignmentParameters, dict]],
    reference: Optional[str] = None,
    background: float = 1.0,
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> anndata.AnnData:
    """
    Align several sections to a reference with manual parameters.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object, modified in place.
    parameters : dict
        Mapping of section id to alignment parameters.
    reference : str, optional
        Section that defines the common frame; it is never transformed.

    Returns
    -------
    anndata.AnnData
        The same AnnData object.
    """
    for section, params in parameters.items():
        if section == reference:
            logger.warning(f"Skipping alignment of reference section '{section}'")
            continue
        align_section(adata, section, params, background, spatial_key, library_key)

    if reference is not None:
        adata.uns["alignment_reference"] = reference

    return adata


def estimate_alignment_from_landmarks(
    fixed_points: Sequence[Sequence[float]],
    moving_points: Sequence[Sequence[float]],
    kind: str = "affine",
) -> np.ndarray:
    """
    Least-squares transform mapping moving landmarks onto fixed landmarks.

    Parameters
    ----------
    fixed_points, moving_points : sequence of (x, y)
        Matching landmarks in hires-image pixels, at least three pairs.
    kind : str
        'affine', 'similarity' or 'euclidean'.

    Returns
    -------
    np.ndarray
        3x3 matrix usable with :func:`apply_affine`.
    """
    fixed = np.asarray(fixed_points, dtype=float)
    moving = np.asarray(moving_points, dtype=float)
    if fixed.shape != moving.shape or fixed.ndim != 2 or fixed.shape[1] != 2:
        raise ValueError("Landmark arrays must both have shape (n, 2)")
    if len(fixed) < 3:
        raise ValueError(f"At least 3 landmark pairs are needed, got {len(fixed)}")

    tform = estimate_transform(kind, moving, fixed)
    residual = np.linalg.norm(transform_points(moving, tform.params) - fixed, axis=1)
    logger.info(
        f"Estimated {kind} transform from {len(fixed)} landmarks "
        f"(mean residual {residual.mean():.2f} px)"
    )
    return tform.params
