"""Manifest creation for documenting snapshots and run parameters."""

import hashlib
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import anndata

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "0.1.0"


def compute_file_hash(file_path: str, algorithm: str = "sha256") -> str:
    """
    Compute hash of a file.

    Parameters
    ----------
    file_path : str
        Path to file.
    algorithm : str
        Hash algorithm ('md5', 'sha256').

    Returns
    -------
    str
        Hex digest of file hash.
    """
    hash_func = hashlib.new(algorithm)

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            hash_func.update(chunk)

    return hash_func.hexdigest()


def create_manifest(
    adata: anndata.AnnData,
    input_files: Optional[List[str]] = None,
    parameters: Optional[Dict[str, Any]] = None,
    step: Optional[str] = None,
    library_key: str = "section",
) -> Dict[str, Any]:
    """
    Create a manifest documenting an analysis snapshot.

    Parameters
    ----------
    adata : anndata.AnnData
        AnnData object being saved.
    input_files : list, optional
        Input file paths to record (with size and hash).
    parameters : dict, optional
        Parameters of the step that produced the snapshot.
    step : str, optional
        Pipeline step name.
    library_key : str
        Column in adata.obs holding section ids.

    Returns
    -------
    dict
        Manifest dictionary.
    """
    manifest = {
        "timestamp": datetime.now().isoformat(),
        "version": MANIFEST_VERSION,
        "step": step,
        "input": {"files": []},
        "data": {
            "n_spots": adata.n_obs,
            "n_genes": adata.n_vars,
            "layers": list(adata.layers.keys()),
            "embeddings": {key: adata.obsm[key].shape[1] for key in adata.obsm.keys()},
        },
        "parameters": parameters or {},
    }

    for file_path in input_files or []:
        path = Path(file_path)
        if path.is_file():
            manifest["input"]["files"].append(
                {
                    "path": str(path),
                    "name": path.name,
                    "size_bytes": path.stat().st_size,
                    "sha256": compute_file_hash(str(path), "sha256"),
                }
            )

    if library_key in adata.obs:
        spatial = adata.uns.get("spatial", {})
        manifest["sections"] = {
            "n_sections": int(adata.obs[library_key].nunique()),
            "spots_per_section": {
                str(k): int(v) for k, v in adata.obs[library_key].value_counts().items()
            },
            "aligned": sorted(s for s, info in spatial.items() if "alignment" in info),
            "masked": sorted(s for s, info in spatial.items() if "mask" in info),
        }

    for cluster_col in ("clusters", "harmony_clusters"):
        if cluster_col in adata.obs:
            manifest.setdefault("clusters", {})[cluster_col] = int(
                adata.obs[cluster_col].nunique()
            )

    try:
        import scanpy as sc

        manifest["software"] = {
            "python_version": sys.version,
            "seed_spatial_version": MANIFEST_VERSION,
            "scanpy_version": sc.__version__,
            "anndata_version": anndata.__version__,
        }
    except ImportError as e:
        logger.warning(f"Could not retrieve software versions: {e}")

    return manifest


def save_manifest(manifest: Dict[str, Any], output_file: str) -> None:
    """
    Save manifest to JSON file.

    Parameters
    ----------
    manifest : dict
        Manifest dictionary.
    output_file : str
        Output JSON file path.
    """
    logger.info(f"Saving manifest to {output_file}")

    with open(output_file, "w") as f:
        json.dump(manifest, f, indent=2, default=str)


def validate_manifest(manifest: Dict[str, Any]) -> tuple:
    """
    Validate manifest structure.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of error messages)
    """
    errors = []

    for key in ["timestamp", "version", "input", "data", "parameters"]:
        if key not in manifest:
            errors.append(f"Missing required key: {key}")

    if "input" in manifest and "files" not in manifest["input"]:
        errors.append("Missing 'files' in input section")

    if "data" in manifest and "n_spots" not in manifest["data"]:
        errors.append("Missing 'n_spots' in data section")

    return len(errors) == 0, errors
