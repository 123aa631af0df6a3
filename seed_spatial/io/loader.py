"""Loaders for spot-level expression, tissue images and spot positions."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import anndata
import numpy as np
import pandas as pd
import scanpy as sc
from PIL import Image

logger = logging.getLogger(__name__)

# Whole-slide scans of seed sections exceed PIL's decompression-bomb limit
Image.MAX_IMAGE_PIXELS = None

POSITION_COLUMNS = [
    "barcode",
    "in_tissue",
    "array_row",
    "array_col",
    "pxl_row_in_fullres",
    "pxl_col_in_fullres",
]

INFO_TABLE_COLUMNS = ["samples", "spotfiles", "imgs", "json"]


def load_h5ad(file_path: str) -> anndata.AnnData:
    """
    Load an H5AD file.

    Parameters
    ----------
    file_path : str
        Path to H5AD file.

    Returns
    -------
    anndata.AnnData
        Loaded AnnData object.
    """
    logger.info(f"Loading H5AD file: {file_path}")
    adata = anndata.read_h5ad(file_path)
    logger.info(f"Loaded {adata.n_obs} spots × {adata.n_vars} genes from {file_path}")
    return adata


def read_expression(
    path: Union[str, Path],
    barcodes: Optional[pd.Index] = None,
) -> anndata.AnnData:
    """
    Read a spot-level expression matrix.

    Supports 10x ``.h5`` files, 10x matrix directories and delimited tables.
    Tables may be genes × spots or spots × genes; when ``barcodes`` is given
    the orientation is chosen so that spots end up as observations.

    Parameters
    ----------
    path : str or Path
        Expression matrix file or directory.
    barcodes : pd.Index, optional
        Known spot barcodes, used to orient delimited tables.

    Returns
    -------
    anndata.AnnData
        Spots × genes AnnData with raw counts in X.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Expression matrix not found: {path}")

    if path.is_dir():
        adata = sc.read_10x_mtx(path, var_names="gene_symbols", cache=False)
    elif path.suffix == ".h5":
        adata = sc.read_10x_h5(path)
    else:
        sep = "," if ".csv" in path.suffixes else "\t"
        table = pd.read_csv(path, sep=sep, index_col=0)
        if barcodes is not None:
            in_columns = table.columns.isin(barcodes).sum()
            in_index = table.index.isin(barcodes).sum()
            if in_columns > in_index:
                table = table.T
        adata = anndata.AnnData(
            X=table.values.astype(np.float32),
            obs=pd.DataFrame(index=table.index.astype(str)),
            var=pd.DataFrame(index=table.columns.astype(str)),
        )

    adata.var_names_make_unique()
    logger.info(f"Read expression matrix {path.name}: {adata.n_obs} spots × {adata.n_vars} genes")
    return adata


def read_positions(path: Union[str, Path]) -> pd.DataFrame:
    """
    Read a spot-position file.

    Both the header-less ``tissue_positions_list.csv`` and the headed
    ``tissue_positions.csv`` layouts are accepted.

    Returns
    -------
    pd.DataFrame
        Positions indexed by barcode with the standard column names.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Spot position file not found: {path}")

    positions = pd.read_csv(path, header=None)
    if str(positions.iloc[0, 0]) == "barcode":
        positions = pd.read_csv(path, header=0)
    if positions.shape[1] != len(POSITION_COLUMNS):
        raise ValueError(
            f"Expected {len(POSITION_COLUMNS)} columns in {path.name}, "
            f"found {positions.shape[1]}"
        )
    positions.columns = POSITION_COLUMNS
    positions["barcode"] = positions["barcode"].astype(str)
    positions = positions.set_index("barcode")
    positions.index.name = None
    return positions


def read_scalefactors(path: Union[str, Path]) -> Dict[str, float]:
    """Read a ``scalefactors_json.json`` file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Scale factor file not found: {path}")
    with open(path) as f:
        return {key: float(value) for key, value in json.load(f).items()}


def read_image(path: Union[str, Path], max_dim: Optional[int] = None) -> tuple:
    """
    Read a histological image as float RGB in [0, 1].

    Parameters
    ----------
    path : str or Path
        Image file.
    max_dim : int, optional
        If given, downscale so that the longest side is at most ``max_dim``.

    Returns
    -------
    tuple of (np.ndarray, float)
        Image array (H, W, 3) and the downscaling factor applied.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    with Image.open(path) as img:
        img = img.convert("RGB")
        factor = 1.0
        if max_dim is not None and max(img.size) > max_dim:
            factor = max_dim / max(img.size)
            new_size = (round(img.size[0] * factor), round(img.size[1] * factor))
            img = img.resize(new_size, Image.Resampling.LANCZOS)
        image = np.asarray(img, dtype=np.float32) / 255.0

    logger.info(f"Read image {path.name}: {image.shape[1]} × {image.shape[0]} px")
    return image, factor


def load_section(
    expression: Union[str, Path],
    image: Union[str, Path],
    positions: Union[str, Path],
    scalefactors: Union[str, Path],
    library_id: str,
    image_scale_key: Optional[str] = "tissue_hires_scalef",
    max_image_dim: Optional[int] = None,
    only_in_tissue: bool = True,
    library_key: str = "section",
) -> anndata.AnnData:
    """
    Load one tissue section from the sequencing platform's output files.

    Parameters
    ----------
    expression : str or Path
        Expression matrix (``.h5``, matrix directory, or delimited table).
    image : str or Path
        Histological image of the capture area.
    positions : str or Path
        Spot-position file.
    scalefactors : str or Path
        ``scalefactors_json.json``.
    library_id : str
        Identifier for the section.
    image_scale_key : str, optional
        Scale factor relating full-resolution pixels to ``image``. Use None
        when ``image`` is the full-resolution scan.
    max_image_dim : int, optional
        Downscale the stored image to at most this many pixels per side.
    only_in_tissue : bool
        If True, keep only spots flagged as covered by tissue.
    library_key : str
        Column in obs holding the section id.

    Returns
    -------
    anndata.AnnData
        Section with raw counts, ``obsm['spatial']`` in full-resolution
        pixels and image data in ``uns['spatial'][library_id]``.
    """
    logger.info(f"Loading section '{library_id}'")

    spots = read_positions(positions)
    factors = read_scalefactors(scalefactors)
    adata = read_expression(expression, barcodes=spots.index)

    positioned = adata.obs_names.intersection(spots.index)
    n_no_position = adata.n_obs - len(positioned)
    if only_in_tissue:
        spots = spots[spots["in_tissue"] == 1]

    shared = positioned.intersection(spots.index)
    n_off_tissue = len(positioned) - len(shared)
    if len(shared) == 0:
        raise ValueError(
            f"No spot barcodes shared between {Path(expression).name} and {Path(positions).name}"
        )
    if n_no_position:
        logger.warning(f"Section '{library_id}': dropping {n_no_position} spots without positions")
    if n_off_tissue:
        logger.info(f"Section '{library_id}': dropping {n_off_tissue} spots outside the tissue")

    adata = adata[shared, :].copy()
    spots = spots.loc[shared]

    adata.obs = adata.obs.join(spots[["in_tissue", "array_row", "array_col"]])
    adata.obs["barcode"] = adata.obs_names.astype(str)
    adata.obs[library_key] = library_id
    adata.obsm["spatial"] = spots[["pxl_col_in_fullres", "pxl_row_in_fullres"]].to_numpy(
        dtype=float
    )
    adata.layers["counts"] = adata.X.copy()

    img, factor = read_image(image, max_dim=max_image_dim)
    scalef = factors.get(image_scale_key, 1.0) if image_scale_key else 1.0
    factors["tissue_hires_scalef"] = scalef * factor

    adata.uns["spatial"] = {
        library_id: {
            "images": {"hires": img},
            "scalefactors": factors,
            "metadata": {"source_image": str(image)},
        }
    }

    logger.info(f"Section '{library_id}': {adata.n_obs} spots × {adata.n_vars} genes")
    return adata


def load_info_table(
    path: Union[str, Path],
    image_scale_key: Optional[str] = "tissue_hires_scalef",
    max_image_dim: Optional[int] = None,
    only_in_tissue: bool = True,
    library_key: str = "section",
) -> anndata.AnnData:
    """
    Load every section listed in an info table and merge them.

    The table needs the columns ``samples`` (expression matrix),
    ``spotfiles`` (spot positions), ``imgs`` (image) and ``json`` (scale
    factors). An optional ``section`` column names each section; any other
    columns are copied into obs. Relative paths are resolved against the
    table's directory.

    Returns
    -------
    anndata.AnnData
        Merged AnnData with spot names ``<barcode>_<section>``.
    """
    path = Path(path)
    sep = "\t" if path.suffix in (".tsv", ".txt") else ","
    info = pd.read_csv(path, sep=sep)

    missing = [col for col in INFO_TABLE_COLUMNS if col not in info.columns]
    if missing:
        raise ValueError(f"Info table {path.name} is missing columns: {missing}")
    if info.empty:
        raise ValueError(f"Info table {path.name} lists no sections")

    if "section" not in info.columns:
        info["section"] = [f"S{i + 1}" for i in range(len(info))]
    info["section"] = info["section"].astype(str)
    if not info["section"].is_unique:
        raise ValueError("Section names in the info table must be unique")

    meta_cols = [c for c in info.columns if c not in INFO_TABLE_COLUMNS + ["section"]]

    def resolve(p):
        p = Path(p)
        return p if p.is_absolute() else path.parent / p

    sections: List[anndata.AnnData] = []
    for _, row in info.iterrows():
        section = load_section(
            expression=resolve(row["samples"]),
            image=resolve(row["imgs"]),
            positions=resolve(row["spotfiles"]),
            scalefactors=resolve(row["json"]),
            library_id=row["section"],
            image_scale_key=image_scale_key,
            max_image_dim=max_image_dim,
            only_in_tissue=only_in_tissue,
            library_key=library_key,
        )
        for col in meta_cols:
            section.obs[col] = row[col]
        section.obs_names = [f"{bc}_{row['section']}" for bc in section.obs_names]
        sections.append(section)

    if len(sections) == 1:
        adata = sections[0]
    else:
        adata = anndata.concat(sections, join="outer", merge="same", uns_merge="unique")
        adata.X = _fill_missing(adata.X)
        adata.layers["counts"] = _fill_missing(adata.layers["counts"])

    adata.obs[library_key] = pd.Categorical(
        adata.obs[library_key], categories=info["section"].tolist()
    )
    logger.info(
        f"Loaded {len(sections)} sections: {adata.n_obs} spots × {adata.n_vars} genes"
    )
    return adata


def _fill_missing(matrix):
    """Outer joins leave NaN for genes absent in a section; those are zero counts."""
    if hasattr(matrix, "toarray"):
        matrix = matrix.tocsr()
        matrix.data = np.nan_to_num(matrix.data)
        return matrix
    return np.nan_to_num(matrix)


def detect_mappings(adata: anndata.AnnData) -> Dict[str, Optional[str]]:
    """
    Auto-detect the keys used for coordinates, sections, regions and clusters.

    Returns
    -------
    dict
        - 'spatial_key': key in obsm for spot coordinates
        - 'library_key': obs column naming the section
        - 'region_col': obs column with manual region labels
        - 'cluster_col': obs column with cluster assignments
    """
    mappings = {
        "spatial_key": None,
        "library_key": None,
        "region_col": None,
        "cluster_col": None,
    }
    obs_cols = adata.obs.columns.tolist()

    for key in ["spatial", "X_spatial"]:
        if key in adata.obsm:
            mappings["spatial_key"] = key
            logger.info(f"Detected spatial coordinates in adata.obsm['{key}']")
            break

    candidates = {
        "library_key": ["section", "library_id", "sample_id", "sample"],
        "region_col": ["region", "annotation", "labels", "group"],
        "cluster_col": ["harmony_clusters", "clusters", "leiden", "seurat_clusters"],
    }
    for mapping, names in candidates.items():
        for col in names:
            if col in obs_cols:
                mappings[mapping] = col
                logger.info(f"Detected {mapping}: {col}")
                break

    return mappings


def summarize_adata(adata: anndata.AnnData, library_key: str = "section") -> Dict:
    """
    Generate a summary of the AnnData object.

    Returns
    -------
    dict
        Summary statistics and metadata.
    """
    summary = {
        "n_obs": adata.n_obs,
        "n_vars": adata.n_vars,
        "obs_columns": adata.obs.columns.tolist(),
        "obsm_keys": list(adata.obsm.keys()),
        "layers": list(adata.layers.keys()) if adata.layers else [],
        "uns_keys": list(adata.uns.keys()) if adata.uns else [],
    }

    if library_key in adata.obs.columns:
        summary["n_sections"] = adata.obs[library_key].nunique()
        summary["spots_per_section"] = (
            adata.obs[library_key].value_counts(sort=False).to_dict()
        )

    return summary
