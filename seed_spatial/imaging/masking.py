"""Tissue masking of section images."""

import logging
from dataclasses import asdict, dataclass
from typing import Literal, Optional, Sequence

import anndata
import numpy as np
from scipy import ndimage
from skimage.color import rgb2gray, rgb2hsv
from skimage.filters import gaussian, threshold_otsu
from skimage.measure import label
from skimage.morphology import disk
from sklearn.cluster import KMeans

from ..io.converter import get_sections, get_spatial_info, section_mask, to_image_coords
from .alignment import warp_image

logger = logging.getLogger(__name__)

Channel = Literal["grey", "red", "green", "blue", "saturation", "value"]


@dataclass
class MaskParameters:
    """Parameters of the tissue thresholding function."""

    method: Literal["otsu", "kmeans", "fixed"] = "otsu"
    channel: Channel = "grey"
    threshold: Optional[float] = None
    tissue_is_bright: Optional[bool] = None
    blur_sigma: float = 2.0
    closing_radius: int = 5
    fill_holes: bool = True
    min_size: int = 500
    keep_largest: bool = False
    background: float = 1.0
    random_state: int = 42

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "MaskParameters":
        return cls(**{k: v for k, v in d.items() if k in cls.__annotations__})


def channel_image(image: np.ndarray, channel: Channel = "grey") -> np.ndarray:
    """
    Extract a single channel in [0, 1] from an RGB image.

    Parameters
    ----------
    image : np.ndarray
        (H, W, 3) RGB image, float in [0, 1] or uint8.
    channel : str
        'grey', 'red', 'green', 'blue', 'saturation' or 'value'.

    Returns
    -------
    np.ndarray
        (H, W) float image.
    """
    image = np.asarray(image)
    if image.dtype == np.uint8:
        image = image.astype(np.float32) / 255.0
    if image.ndim == 2:
        return image.astype(np.float32)
    rgb = image[..., :3]

    if channel == "grey":
        return rgb2gray(rgb)
    if channel in ("red", "green", "blue"):
        return rgb[..., ["red", "green", "blue"].index(channel)]
    if channel in ("saturation", "value"):
        return rgb2hsv(rgb)[..., 1 if channel == "saturation" else 2]
    raise ValueError(f"Unknown channel: {channel}")


def _remove_small(mask: np.ndarray, min_size: int, keep_largest: bool) -> np.ndarray:
    labels = label(mask)
    if labels.max() == 0:
        return mask
    sizes = np.bincount(labels.ravel())
    sizes[0] = 0
    if keep_largest:
        return labels == sizes.argmax()
    keep = sizes >= min_size
    keep[0] = False
    return keep[labels]


def threshold_tissue_mask(
    image: np.ndarray, params: Optional[MaskParameters] = None, **kwargs
) -> np.ndarray:
    """
    Separate tissue from background in a section image.

    The selected channel is blurred and thresholded (Otsu, a fixed value, or
    a two-cluster KMeans on pixel colours), then cleaned with a binary
    closing, hole filling and removal of small components.

    Parameters
    ----------
    image : np.ndarray
        (H, W, 3) RGB image.
    params : MaskParameters, optional
        Thresholding parameters; keyword arguments override single fields.

    Returns
    -------
    np.ndarray
        Boolean (H, W) mask, True on tissue.
    """
    params = params or MaskParameters()
    if kwargs:
        params = MaskParameters.from_dict({**params.to_dict(), **kwargs})

    bright = params.tissue_is_bright
    if bright is None:
        bright = params.channel == "saturation"

    if params.method == "kmeans":
        rgb = np.asarray(image, dtype=np.float32)[..., :3]
        if params.blur_sigma > 0:
            rgb = gaussian(rgb, sigma=params.blur_sigma, channel_axis=-1)
        pixels = rgb.reshape(-1, 3)
        rng = np.random.default_rng(params.random_state)
        sample = pixels[rng.choice(len(pixels), size=min(len(pixels), 50000), replace=False)]
        km = KMeans(n_clusters=2, random_state=params.random_state, n_init=10).fit(sample)
        assigned = km.predict(pixels).reshape(rgb.shape[:2])
        centre_score = km.cluster_centers_.mean(axis=1)
        if params.channel == "saturation":
            centre_score = rgb2hsv(km.cluster_centers_[None, :, :])[0, :, 1]
        tissue_cluster = centre_score.argmax() if bright else centre_score.argmin()
        mask = assigned == tissue_cluster
    else:
        values = channel_image(image, params.channel)
        if params.blur_sigma > 0:
            values = gaussian(values, sigma=params.blur_sigma)

        if params.method == "otsu":
            threshold = threshold_otsu(values)
        elif params.method == "fixed":
            if params.threshold is None:
                raise ValueError("method='fixed' requires a threshold")
            threshold = params.threshold
        else:
            raise ValueError(f"Unknown masking method: {params.method}")

        mask = values > threshold if bright else values < threshold

    if params.closing_radius > 0:
        mask = ndimage.binary_closing(mask, structure=disk(params.closing_radius))
    if params.fill_holes:
        mask = ndimage.binary_fill_holes(mask)
    mask = _remove_small(mask, params.min_size, params.keep_largest)

    logger.debug(f"Tissue mask covers {100 * mask.mean():.1f}% of the image")
    return mask.astype(bool)


def apply_mask(image: np.ndarray, mask: np.ndarray, background: float = 1.0) -> np.ndarray:
    """Return a copy of ``image`` with non-tissue pixels set to ``background``."""
    if image.shape[:2] != mask.shape:
        raise ValueError(f"Mask shape {mask.shape} does not match image {image.shape[:2]}")
    masked = np.array(image, copy=True)
    masked[~mask] = background
    return masked


def spots_in_mask(
    adata: anndata.AnnData,
    section: str,
    mask: np.ndarray,
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> np.ndarray:
    """Boolean flag per spot of ``section``: does its centre fall on tissue."""
    xy = np.rint(to_image_coords(adata, section, spatial_key, library_key)).astype(int)
    height, width = mask.shape
    inside = (xy[:, 0] >= 0) & (xy[:, 0] < width) & (xy[:, 1] >= 0) & (xy[:, 1] < height)
    flags = np.zeros(len(xy), dtype=bool)
    flags[inside] = mask[xy[inside, 1], xy[inside, 0]]
    return flags


def mask_images(
    adata: anndata.AnnData,
    params: Optional[MaskParameters] = None,
    sections: Optional[Sequence[str]] = None,
    drop_outside: bool = False,
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> anndata.AnnData:
    """
    Mask the background out of every section image.

    The unmasked image is kept once as ``images['hires_raw']``; the masked
    image replaces ``images['hires']`` and the boolean mask is stored under
    ``uns['spatial'][section]['mask']``. Spots are flagged in
    ``obs['in_mask']``. Aligned sections are thresholded on their unaligned
    image and the stored alignment is applied again to the mask and images,
    so a later re-alignment starts from masked, unaligned data.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    params : MaskParameters, optional
        Thresholding parameters.
    sections : sequence of str, optional
        Sections to mask. Defaults to all.
    drop_outside : bool
        If True, return a copy without spots outside the mask.

    Returns
    -------
    anndata.AnnData
        The masked AnnData (same object unless ``drop_outside``).
    """
    params = params or MaskParameters()
    sections = list(sections) if sections is not None else get_sections(adata, library_key)

    if "in_mask" not in adata.obs.columns:
        adata.obs["in_mask"] = True

    for section in sections:
        info = get_spatial_info(adata, section)
        images = info["images"]

        if "alignment" not in info:
            raw = images.setdefault("hires_raw", images["hires"])
            mask = threshold_tissue_mask(raw, params)
            images["hires"] = apply_mask(raw, mask, background=params.background)
        else:
            # aligned sections are masked in their unaligned frame, then re-warped
            matrix = np.asarray(info["alignment"]["matrix"], dtype=float)
            raw = images.setdefault("hires_raw_unaligned", images["hires_unaligned"])
            unaligned_mask = threshold_tissue_mask(raw, params)
            images["hires_unaligned"] = apply_mask(
                raw, unaligned_mask, background=params.background
            )
            info["mask_unaligned"] = unaligned_mask
            images["hires_raw"] = warp_image(raw, matrix, background=params.background)
            images["hires"] = warp_image(
                images["hires_unaligned"], matrix, background=params.background
            )
            mask = warp_image(unaligned_mask, matrix)
        info["mask"] = mask
        info["mask_params"] = {k: v for k, v in params.to_dict().items() if v is not None}

        flags = spots_in_mask(adata, section, mask, spatial_key, library_key)
        in_mask = adata.obs["in_mask"].to_numpy(dtype=bool)
        in_mask[section_mask(adata, section, library_key)] = flags
        adata.obs["in_mask"] = in_mask

        logger.info(
            f"Masked section '{section}': tissue {100 * mask.mean():.1f}% of image, "
            f"{flags.sum()}/{len(flags)} spots on tissue"
        )

    if drop_outside:
        keep = adata.obs["in_mask"].to_numpy(dtype=bool)
        logger.info(f"Dropping {np.sum(~keep)} spots outside the tissue mask")
        return adata[keep].copy()

    return adata
