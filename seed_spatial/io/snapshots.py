"""Intermediate snapshots of the analysis object."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import anndata
import numpy as np
import pandas as pd

from ..export.manifest import create_manifest, save_manifest

logger = logging.getLogger(__name__)


def _h5ad_safe(value: Any) -> Any:
    """Drop entries h5ad cannot store (None) and turn lists into arrays."""
    if isinstance(value, dict):
        return {str(k): _h5ad_safe(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        if all(isinstance(v, dict) for v in value) and value:
            return {str(i): _h5ad_safe(v) for i, v in enumerate(value)}
        return np.asarray([np.nan if v is None else v for v in value])
    return value


def _prepare_obs(adata: anndata.AnnData) -> None:
    """Object columns mixing labels and NaN are written as categoricals."""
    for col in adata.obs.columns:
        values = adata.obs[col]
        if values.dtype == object:
            adata.obs[col] = pd.Categorical(values.where(values.isna(), values.astype(str)))


def save_snapshot(
    adata: anndata.AnnData,
    path: str,
    step: str,
    parameters: Optional[Dict[str, Any]] = None,
    input_files: Optional[List[str]] = None,
) -> Path:
    """
    Write an ``.h5ad`` snapshot plus a JSON manifest next to it.

    Parameters
    ----------
    adata : anndata.AnnData
        Analysis object to save.
    path : str
        Output ``.h5ad`` path.
    step : str
        Name of the pipeline step the snapshot follows.
    parameters : dict, optional
        Step parameters, also stored in ``adata.uns['snapshot_params'][step]``.
    input_files : list of str, optional
        Files to record in the manifest.

    Returns
    -------
    Path
        Path of the written snapshot.
    """
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)

    if parameters:
        history = dict(adata.uns.get("snapshot_params", {}))
        history[step] = _h5ad_safe(parameters)
        adata.uns["snapshot_params"] = history

    _prepare_obs(adata)
    logger.info(f"Saving snapshot '{step}' to {out}")
    adata.write_h5ad(out)

    manifest = create_manifest(
        adata, input_files=input_files, parameters=parameters, step=step
    )
    save_manifest(manifest, str(out.with_suffix(".manifest.json")))

    return out


def load_snapshot(path: str) -> anndata.AnnData:
    """Read a snapshot written by :func:`save_snapshot`."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot not found: {path}")
    adata = anndata.read_h5ad(path)
    steps = list(adata.uns.get("snapshot_params", {}).keys())
    logger.info(f"Loaded snapshot {path.name} ({adata.n_obs} spots, steps: {steps})")
    return adata
