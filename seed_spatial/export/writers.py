"""Table writers for clusters, embeddings, markers and 3D stacks."""

import logging
from pathlib import Path
from typing import Dict, List, Literal, Optional

import anndata
import pandas as pd

logger = logging.getLogger(__name__)


def _check_format(output_file: str, format: str) -> None:
    if format not in ("csv", "parquet"):
        raise ValueError(f"Unknown format: {format}. Use 'csv' or 'parquet'.")
    Path(output_file).parent.mkdir(parents=True, exist_ok=True)


def export_clusters(
    adata: anndata.AnnData,
    output_file: str,
    cluster_cols: Optional[List[str]] = None,
    library_key: str = "section",
) -> str:
    """
    Export per-spot section, region and cluster labels to CSV.

    Parameters
    ----------
    adata : anndata.AnnData
        Clustered AnnData object.
    output_file : str
        Output CSV path.
    cluster_cols : list of str, optional
        Label columns to export. Defaults to every present column among
        region, clusters and harmony_clusters.

    Returns
    -------
    str
        Path of the written file.
    """
    if cluster_cols is None:
        cluster_cols = [
            c for c in ("region", "clusters", "harmony_clusters") if c in adata.obs.columns
        ]
    missing = [c for c in cluster_cols if c not in adata.obs.columns]
    if missing:
        raise ValueError(f"Columns not found in adata.obs: {missing}")
    if not cluster_cols:
        raise ValueError("No cluster columns to export")

    cols = ([library_key] if library_key in adata.obs.columns else []) + cluster_cols
    df = adata.obs[cols].copy()
    df.insert(0, "spot_id", adata.obs_names)

    _check_format(output_file, "csv")
    df.to_csv(output_file, index=False)
    logger.info(f"Exported labels for {len(df)} spots to {output_file}")
    return output_file


def export_embeddings(
    adata: anndata.AnnData,
    output_file: str,
    embedding_key: str = "X_umap",
    format: Literal["parquet", "csv"] = "parquet",
) -> str:
    """
    Export an embedding from adata.obsm.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    output_file : str
        Output file path.
    embedding_key : str
        Key in adata.obsm.
    format : {'parquet', 'csv'}
        Output format.

    Returns
    -------
    str
        Path of the written file.
    """
    if embedding_key not in adata.obsm:
        raise ValueError(f"Embedding '{embedding_key}' not found in adata.obsm")
    _check_format(output_file, format)

    embedding = adata.obsm[embedding_key]
    prefix = embedding_key.removeprefix("X_")
    df = pd.DataFrame(
        embedding, columns=[f"{prefix}_{i + 1}" for i in range(embedding.shape[1])]
    )
    df.insert(0, "spot_id", adata.obs_names.to_numpy())

    if format == "parquet":
        df.to_parquet(output_file, index=False)
    else:
        df.to_csv(output_file, index=False)

    logger.info(f"Exported {embedding_key} ({embedding.shape[1]} dims) to {output_file}")
    return output_file


def export_markers(markers: pd.DataFrame, output_file: str) -> str:
    """Export a marker gene table to CSV."""
    _check_format(output_file, "csv")
    markers.to_csv(output_file, index=False)
    logger.info(f"Exported {len(markers)} marker rows to {output_file}")
    return output_file


def export_stack(
    stack: pd.DataFrame,
    output_file: str,
    format: Literal["parquet", "csv"] = "parquet",
) -> str:
    """Export a 3D point-cloud stack."""
    _check_format(output_file, format)
    if format == "parquet":
        stack.to_parquet(output_file, index=False)
    else:
        stack.to_csv(output_file, index=False)
    logger.info(f"Exported 3D stack with {len(stack)} points to {output_file}")
    return output_file


def export_all(
    adata: anndata.AnnData,
    output_dir: str,
    embedding_format: Literal["parquet", "csv"] = "parquet",
) -> Dict[str, str]:
    """
    Export every available label column and embedding.

    Returns
    -------
    dict
        Mapping of export name to written path.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    exported = {}

    if any(c in adata.obs.columns for c in ("region", "clusters", "harmony_clusters")):
        exported["clusters"] = export_clusters(adata, str(out / "clusters.csv"))

    for key in ("X_pca", "X_umap", "X_pca_harmony", "X_umap_harmony"):
        if key in adata.obsm:
            path = out / f"{key.removeprefix('X_')}.{embedding_format}"
            exported[key] = export_embeddings(
                adata, str(path), embedding_key=key, format=embedding_format
            )

    if "stack_3d" in adata.uns:
        exported["stack_3d"] = export_stack(
            pd.DataFrame(adata.uns["stack_3d"]),
            str(out / f"stack_3d.{embedding_format}"),
            format=embedding_format,
        )

    return exported
