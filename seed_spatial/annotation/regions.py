"""Manual region annotation of spots."""

import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import anndata
import numpy as np
import pandas as pd
from skimage.measure import points_in_poly

from ..io.converter import section_mask, to_image_coords

logger = logging.getLogger(__name__)


def _label_column(adata: anndata.AnnData, column: str) -> pd.Series:
    """Return the annotation column as an object series, creating it if needed."""
    if column not in adata.obs.columns:
        return pd.Series(np.nan, index=adata.obs_names, dtype=object)
    return adata.obs[column].astype(object)


def annotate_spots(
    adata: anndata.AnnData,
    spot_ids: Iterable[str],
    label: str,
    column: str = "region",
) -> int:
    """
    Assign a label to an explicit selection of spots.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object, modified in place.
    spot_ids : iterable of str
        Spot names (adata.obs_names) to label.
    label : str
        Region label.
    column : str
        Annotation column in adata.obs.

    Returns
    -------
    int
        Number of spots labelled.
    """
    spot_ids = pd.Index([str(s) for s in spot_ids])
    unknown = spot_ids.difference(adata.obs_names)
    if len(unknown):
        raise ValueError(f"{len(unknown)} spot ids not found, e.g. '{unknown[0]}'")

    labels = _label_column(adata, column)
    labels.loc[spot_ids] = label
    adata.obs[column] = labels

    logger.info(f"Labelled {len(spot_ids)} spots as '{label}' in '{column}'")
    return len(spot_ids)


def annotate_polygon(
    adata: anndata.AnnData,
    polygon: Sequence[Sequence[float]],
    label: str,
    section: str,
    column: str = "region",
    spatial_key: str = "spatial",
    library_key: str = "section",
) -> int:
    """
    Label every spot of a section whose image position lies inside a polygon.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object, modified in place.
    polygon : sequence of (x, y)
        Polygon vertices in hires-image pixels of the section.
    label : str
        Region label.
    section : str
        Section the polygon was drawn on.
    column : str
        Annotation column in adata.obs.

    Returns
    -------
    int
        Number of spots labelled.
    """
    polygon = np.asarray(polygon, dtype=float)
    if polygon.ndim != 2 or polygon.shape[1] != 2 or len(polygon) < 3:
        raise ValueError("Polygon needs at least three (x, y) vertices")

    in_section = section_mask(adata, section, library_key)
    coords = to_image_coords(adata, section, spatial_key, library_key)
    inside = points_in_poly(coords, polygon)

    selected = adata.obs_names[in_section][inside]
    if len(selected) == 0:
        logger.warning(f"Polygon for '{label}' on section '{section}' contains no spots")
        return 0

    return annotate_spots(adata, selected, label, column)


def _resolve_spot_ids(
    adata: anndata.AnnData, table: pd.DataFrame, id_col: str, library_key: str
) -> pd.Series:
    """Map table ids to obs names, directly or through the platform barcode."""
    ids = table[id_col]
    resolved = ids.where(ids.isin(adata.obs_names))
    pending = resolved.isna()
    if not pending.any() or "barcode" not in adata.obs.columns:
        return resolved

    spots = pd.DataFrame(
        {"barcode": adata.obs["barcode"].astype(str).to_numpy(), "spot": adata.obs_names}
    )
    keys = ["barcode"]
    if "section" in table.columns and library_key in adata.obs.columns:
        spots["section"] = adata.obs[library_key].astype(str).to_numpy()
        keys.append("section")

    shared = spots.duplicated(keys, keep=False)
    if shared.any():
        logger.warning(
            f"{spots.loc[shared, 'barcode'].nunique()} barcodes occur in several sections "
            f"and are skipped; add a 'section' column to the table to tell them apart"
        )
    lookup = spots[~shared].set_index(keys)["spot"]

    rows = table.loc[pending]
    if len(keys) == 1:
        wanted = pd.Index(rows[id_col])
    else:
        wanted = pd.MultiIndex.from_arrays([rows[id_col], rows["section"]])
    resolved.loc[pending] = lookup.reindex(wanted).to_numpy()
    return resolved


def annotate_from_table(
    adata: anndata.AnnData,
    path: Union[str, Path],
    column: str = "region",
    id_col: Optional[str] = None,
    label_col: str = "label",
    library_key: str = "section",
) -> int:
    """
    Import region labels from a CSV/TSV table.

    The table needs a label column and a spot id column (``spot_id`` or
    ``barcode``). Ids are matched against the spot names first and then
    against the platform barcodes kept in ``obs['barcode']``; an optional
    ``section`` column picks the section when a barcode occurs in several.
    Rows that match no spot are reported and skipped.

    Returns
    -------
    int
        Number of spots labelled.
    """
    path = Path(path)
    sep = "\t" if path.suffix in (".tsv", ".txt") else ","
    table = pd.read_csv(path, sep=sep, dtype=str)

    if id_col is None:
        id_col = next((c for c in ("spot_id", "barcode") if c in table.columns), None)
    if id_col is None or id_col not in table.columns:
        raise ValueError(f"No spot id column found in {path.name}")
    if label_col not in table.columns:
        raise ValueError(f"Label column '{label_col}' not found in {path.name}")

    table = table.dropna(subset=[label_col])
    spot_ids = _resolve_spot_ids(adata, table, id_col, library_key)
    known = spot_ids.notna()
    if (~known).any():
        logger.warning(f"{(~known).sum()} rows of {path.name} match no spot and are skipped")

    labels = _label_column(adata, column)
    labels.loc[spot_ids[known].to_numpy()] = table.loc[known, label_col].to_numpy()
    adata.obs[column] = labels

    logger.info(f"Imported {int(known.sum())} labels from {path.name} into '{column}'")
    return int(known.sum())


def clear_annotation(
    adata: anndata.AnnData, column: str = "region", label: Optional[str] = None
) -> None:
    """Remove one label (or all labels when ``label`` is None) from a column."""
    if column not in adata.obs.columns:
        return
    labels = _label_column(adata, column)
    if label is None:
        labels[:] = np.nan
    else:
        labels[labels == label] = np.nan
    adata.obs[column] = labels
