"""Build a 3D point cloud from aligned sections."""

import logging
from typing import Optional, Sequence

import anndata
import numpy as np
import pandas as pd
from scipy.spatial import Delaunay

from ..io.converter import get_scalefactor, get_sections, get_spatial_info, to_image_coords

logger = logging.getLogger(__name__)

STACK_COLUMNS = ["x", "y", "z", "section"]


def _grid_in_mask(mask: np.ndarray, step: int) -> np.ndarray:
    """Regular grid points (x, y) in image pixels that fall on the mask."""
    rows, cols = np.mgrid[0 : mask.shape[0] : step, 0 : mask.shape[1] : step]
    rows = rows.ravel()
    cols = cols.ravel()
    keep = mask[rows, cols]
    return np.column_stack([cols[keep], rows[keep]]).astype(float)


def _grid_in_hull(xy: np.ndarray, step: int) -> np.ndarray:
    """Regular grid points inside the convex hull of ``xy``."""
    x_min, y_min = np.floor(xy.min(axis=0))
    x_max, y_max = np.ceil(xy.max(axis=0))
    gx, gy = np.meshgrid(np.arange(x_min, x_max + 1, step), np.arange(y_min, y_max + 1, step))
    grid = np.column_stack([gx.ravel(), gy.ravel()])
    if len(xy) < 3:
        return grid
    inside = Delaunay(xy).find_simplex(grid) >= 0
    return grid[inside]


def create_3d_stack(
    adata: anndata.AnnData,
    sections: Optional[Sequence[str]] = None,
    z_spacing: float = 100.0,
    step: int = 10,
    use_mask: bool = True,
    spatial_key: str = "spatial",
    library_key: str = "section",
    key_added: Optional[str] = "stack_3d",
) -> pd.DataFrame:
    """
    Sample a regular grid on each section and stack the sections along z.

    Grid points are placed every ``step`` hires-image pixels inside the
    tissue mask of the section, or inside the convex hull of its spots when
    the section has no mask. Points are returned in full-resolution
    coordinates, matching ``adata.obsm[spatial_key]``.

    Parameters
    ----------
    adata : anndata.AnnData
        Aligned AnnData object.
    sections : sequence of str, optional
        Sections from bottom to top. Defaults to the stored section order.
    z_spacing : float
        Distance between consecutive sections, in full-resolution pixels.
    step : int
        Grid spacing in hires-image pixels.
    use_mask : bool
        Use the tissue mask when available.
    key_added : str, optional
        If set, store the stack in ``adata.uns[key_added]``.

    Returns
    -------
    pd.DataFrame
        Point cloud with columns x, y, z, section.
    """
    if step < 1:
        raise ValueError(f"step must be a positive integer, got {step}")
    if z_spacing <= 0:
        raise ValueError(f"z_spacing must be positive, got {z_spacing}")

    sections = list(sections) if sections is not None else get_sections(adata, library_key)
    if not sections:
        raise ValueError("No sections to stack")

    if "alignment_reference" not in adata.uns and not any(
        "alignment" in get_spatial_info(adata, s) for s in sections
    ):
        logger.warning("No section has been aligned; stacking raw coordinates")

    frames = []
    for index, section in enumerate(sections):
        info = get_spatial_info(adata, section)
        scalef = get_scalefactor(adata, section)

        if use_mask and "mask" in info:
            grid = _grid_in_mask(np.asarray(info["mask"], dtype=bool), step)
            source = "mask"
        else:
            grid = _grid_in_hull(to_image_coords(adata, section, spatial_key, library_key), step)
            source = "spot hull"

        if len(grid) == 0:
            logger.warning(f"Section '{section}' produced no grid points; skipping")
            continue

        full_res = grid / scalef
        frames.append(
            pd.DataFrame(
                {
                    "x": full_res[:, 0],
                    "y": full_res[:, 1],
                    "z": index * float(z_spacing),
                    "section": section,
                }
            )
        )
        logger.info(f"Section '{section}': {len(grid)} grid points from {source} at z={index * z_spacing}")

    if not frames:
        raise ValueError("No grid points were generated for any section")

    stack = pd.concat(frames, ignore_index=True)
    stack["section"] = pd.Categorical(stack["section"], categories=[str(s) for s in sections])

    if key_added:
        adata.uns[key_added] = stack
        adata.uns[f"{key_added}_params"] = {
            "sections": [str(s) for s in sections],
            "z_spacing": float(z_spacing),
            "step": int(step),
            "use_mask": bool(use_mask),
        }

    logger.info(f"Built 3D stack with {len(stack)} points across {len(frames)} sections")
    return stack
