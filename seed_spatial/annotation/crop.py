"""Crop geometries and splitting of multi-section images."""

import logging
import math
import re
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Sequence

import anndata
import numpy as np
import pandas as pd

from ..io.converter import (
    get_image,
    get_scalefactor,
    get_sections,
    get_spatial_info,
    section_mask,
    to_image_coords,
)

logger = logging.getLogger(__name__)

_GEOMETRY_RE = re.compile(r"^\s*(\d+)x(\d+)\+(\d+)\+(\d+)\s*$")


@dataclass
class CropGeometry:
    """Rectangle in hires-image pixels plus the label filter it isolates."""

    width: int
    height: int
    x_offset: int
    y_offset: int
    group_col: str = "region"
    group_value: Optional[str] = None
    section: Optional[str] = None

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Crop size must be positive, got {self.width}x{self.height}")
        if self.x_offset < 0 or self.y_offset < 0:
            raise ValueError("Crop offsets must be non-negative")

    def to_string(self) -> str:
        """Geometry as ``WxH+X+Y``."""
        return f"{self.width}x{self.height}+{self.x_offset}+{self.y_offset}"

    @classmethod
    def from_string(cls, geometry: str, **kwargs) -> "CropGeometry":
        """Parse a ``WxH+X+Y`` geometry string."""
        match = _GEOMETRY_RE.match(geometry)
        if match is None:
            raise ValueError(f"Invalid crop geometry '{geometry}', expected 'WxH+X+Y'")
        width, height, x, y = (int(v) for v in match.groups())
        return cls(width=width, height=height, x_offset=x, y_offset=y, **kwargs)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "CropGeometry":
        if "geometry" in d:
            extra = {
                k: v for k, v in d.items() if k in ("group_col", "group_value", "section")
            }
            return cls.from_string(d["geometry"], **extra)
        return cls(**{k: v for k, v in d.items() if k in cls.__annotations__})

    def contains(self, xy: np.ndarray) -> np.ndarray:
        """Boolean mask of points (hires pixels) inside the rectangle."""
        xy = np.asarray(xy)
        return (
            (xy[:, 0] >= self.x_offset)
            & (xy[:, 0] < self.x_offset + self.width)
            & (xy[:, 1] >= self.y_offset)
            & (xy[:, 1] < self.y_offset + self.height)
        )


def get_crop_windows(
    adata: anndata.AnnData,
    group_col: str = "region",
    groups: Optional[Sequence[str]] = None,
    padding: int = 20,
    section: Optional[str] = None,
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> List[CropGeometry]:
    """
    Compute one crop window per annotated group.

    Each window is the bounding box of the group's spots in hires-image
    pixels, widened by the spot radius and ``padding`` and clipped to the
    image.

    Parameters
    ----------
    adata : anndata.AnnData
        Annotated AnnData object.
    group_col : str
        Column in adata.obs with region labels.
    groups : sequence of str, optional
        Group values to compute windows for. Defaults to all labels present.
    padding : int
        Extra pixels around each bounding box.
    section : str, optional
        Restrict to one section. Defaults to every section.

    Returns
    -------
    list of CropGeometry
        Windows ordered by section, then group.
    """
    if group_col not in adata.obs.columns:
        raise ValueError(f"Group column '{group_col}' not found in adata.obs")

    sections = [section] if section is not None else get_sections(adata, library_key)
    windows = []

    for sec in sections:
        in_section = section_mask(adata, sec, library_key)
        coords = to_image_coords(adata, sec, spatial_key, library_key)
        labels = adata.obs[group_col].to_numpy()[in_section]
        height, width = get_image(adata, sec).shape[:2]

        factors = get_spatial_info(adata, sec).get("scalefactors", {})
        radius = factors.get("spot_diameter_fullres", 0.0) * get_scalefactor(adata, sec) / 2
        pad = padding + radius

        present = [g for g in pd.unique(labels[pd.notna(labels)])]
        wanted = present if groups is None else list(groups)
        if section is not None and groups is not None:
            absent = [g for g in wanted if g not in present]
            if absent:
                raise ValueError(f"Groups {absent} have no spots in section '{sec}'")

        for group in wanted:
            if group not in present:
                continue
            xy = coords[labels == group]
            x0 = max(0, math.floor(xy[:, 0].min() - pad))
            y0 = max(0, math.floor(xy[:, 1].min() - pad))
            x1 = min(width, math.ceil(xy[:, 0].max() + pad))
            y1 = min(height, math.ceil(xy[:, 1].max() + pad))

            window = CropGeometry(
                width=x1 - x0,
                height=y1 - y0,
                x_offset=x0,
                y_offset=y0,
                group_col=group_col,
                group_value=str(group),
                section=str(sec),
            )
            windows.append(window)
            logger.info(
                f"Crop window for '{group}' on section '{sec}': {window.to_string()}"
            )

    if not windows:
        raise ValueError(f"No labelled spots found in '{group_col}'")

    return windows


def _crop_one(
    adata: anndata.AnnData,
    geometry: CropGeometry,
    new_id: str,
    spatial_key: str,
    library_key: str,
) -> anndata.AnnData:
    sec = geometry.section
    in_section = section_mask(adata, sec, library_key)
    coords = to_image_coords(adata, sec, spatial_key, library_key)

    keep = geometry.contains(coords)
    if geometry.group_value is not None:
        if geometry.group_col not in adata.obs.columns:
            raise ValueError(f"Group column '{geometry.group_col}' not found in adata.obs")
        labels = adata.obs[geometry.group_col].astype(object).to_numpy()[in_section]
        keep &= labels == geometry.group_value

    if not keep.any():
        raise ValueError(
            f"Crop {geometry.to_string()} of section '{sec}' "
            f"({geometry.group_col}={geometry.group_value}) contains no spots"
        )

    indices = np.flatnonzero(in_section)[keep]
    sub = adata[indices].copy()

    scalef = get_scalefactor(adata, sec)
    shift = np.array([geometry.x_offset, geometry.y_offset], dtype=float) / scalef
    for key in (spatial_key, "spatial_unaligned"):
        if key in sub.obsm:
            sub.obsm[key] = np.asarray(sub.obsm[key], dtype=float) - shift

    info = get_spatial_info(adata, sec)
    ys = slice(geometry.y_offset, geometry.y_offset + geometry.height)
    xs = slice(geometry.x_offset, geometry.x_offset + geometry.width)
    new_info = {
        "images": {k: np.ascontiguousarray(img[ys, xs]) for k, img in info["images"].items()},
        "scalefactors": dict(info.get("scalefactors", {})),
        "metadata": {
            **dict(info.get("metadata", {})),
            "source_section": str(sec),
            "crop_geometry": geometry.to_string(),
        },
    }
    if "mask" in info:
        new_info["mask"] = np.ascontiguousarray(info["mask"][ys, xs])

    sub.uns = {"spatial": {new_id: new_info}}
    sub.obs["source_section"] = str(sec)
    sub.obs[library_key] = new_id
    return sub


def crop_sections(
    adata: anndata.AnnData,
    geometries: Sequence[CropGeometry],
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> anndata.AnnData:
    """
    Split multi-section images into per-section datasets.

    For every geometry, keep the spots of its section that fall inside the
    rectangle (and match ``group_col == group_value`` when a value is set),
    crop the section image to the rectangle and move spot coordinates into
    the cropped frame. Each crop becomes a new section named
    ``<section>_<group_value>``.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    geometries : sequence of CropGeometry
        Crop windows, e.g. from :func:`get_crop_windows`.

    Returns
    -------
    anndata.AnnData
        New AnnData with one section per geometry, in geometry order.
    """
    if not geometries:
        raise ValueError("No crop geometries given")

    sections = get_sections(adata, library_key)
    pieces: List[anndata.AnnData] = []
    new_ids: List[str] = []

    for i, geometry in enumerate(geometries):
        if geometry.section is None:
            if len(sections) != 1:
                raise ValueError(
                    f"Crop geometry {geometry.to_string()} needs a section "
                    f"(dataset has {len(sections)} sections)"
                )
            geometry = CropGeometry(**{**geometry.to_dict(), "section": sections[0]})

        suffix = geometry.group_value if geometry.group_value is not None else str(i + 1)
        new_id = f"{geometry.section}_{suffix}"
        if new_id in new_ids:
            raise ValueError(f"Duplicate crop section id '{new_id}'")

        pieces.append(_crop_one(adata, geometry, new_id, spatial_key, library_key))
        new_ids.append(new_id)
        logger.info(f"Cropped section '{new_id}': {pieces[-1].n_obs} spots")

    other_uns = {k: v for k, v in adata.uns.items() if k != "spatial"}
    if len(pieces) == 1:
        cropped = pieces[0]
    else:
        cropped = anndata.concat(pieces, join="outer", merge="same", uns_merge="unique")
    cropped.uns.update(other_uns)
    cropped.obs[library_key] = pd.Categorical(cropped.obs[library_key], categories=new_ids)

    if not cropped.obs_names.is_unique:
        cropped.obs_names_make_unique()

    logger.info(f"Split into {len(pieces)} sections with {cropped.n_obs} spots in total")
    return cropped


def crop_windows_to_frame(windows: Sequence[CropGeometry]) -> pd.DataFrame:
    """Tabulate crop windows with their geometry strings."""
    rows = [{**w.to_dict(), "geometry": w.to_string()} for w in windows]
    return pd.DataFrame(rows)
