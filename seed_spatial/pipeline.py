"""End-to-end seed section workflow driven by a JSON configuration."""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import anndata

from . import annotation, cluster_interpretation, export, imaging, io, modeling, qc, stack3d

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """
    Settings for :func:`run_pipeline`.

    Paths may be relative; :meth:`from_json` resolves them against the
    directory holding the configuration file.
    """

    info_table: str
    output_dir: str = "results"
    library_key: str = "section"
    max_image_dim: Optional[int] = None

    # QC: obs column -> [min, max]
    spot_filters: Dict[str, List[Optional[float]]] = field(default_factory=dict)
    min_gene_counts: Optional[int] = None
    min_gene_spots: Optional[int] = None

    # Manual regions and cropping
    region_table: Optional[str] = None
    region_col: str = "region"
    crop_geometries: List[Dict[str, Any]] = field(default_factory=list)
    auto_crop: bool = False
    crop_padding: int = 20

    # Masking and alignment
    mask: Optional[Dict[str, Any]] = None
    drop_outside_mask: bool = False
    alignment: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    alignment_reference: Optional[str] = None

    # Expression analysis
    analysis: Dict[str, Any] = field(default_factory=dict)
    integrate: bool = True

    # Differential expression
    marker_min_pct: float = 0.1
    marker_logfc_threshold: float = 0.25
    marker_only_pos: bool = True
    n_top_markers: int = 10

    # 3D stack
    stack: bool = True
    stack_sections: Optional[List[str]] = None
    z_spacing: float = 100.0
    stack_step: int = 10
    stack_features: List[str] = field(default_factory=list)
    interpolation: str = "linear"

    embedding_format: str = "parquet"

    def to_dict(self):
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict):
        """Create from dictionary, ignoring unknown keys."""
        unknown = set(d) - set(cls.__annotations__)
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {sorted(unknown)}")
        if "info_table" not in d:
            raise ValueError("Configuration must define 'info_table'")
        return cls(**{k: v for k, v in d.items() if k in cls.__annotations__})

    @classmethod
    def from_json(cls, path: str) -> "PipelineConfig":
        """Load a configuration file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with open(path) as f:
            config = cls.from_dict(json.load(f))

        base = path.parent
        for name in ("info_table", "region_table", "output_dir"):
            value = getattr(config, name)
            if value and not Path(value).is_absolute():
                setattr(config, name, str(base / value))
        return config

    def to_json(self, path: str) -> None:
        """Write the configuration to a JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    def analysis_parameters(self) -> modeling.AnalysisParameters:
        """Analysis parameters with the configured batch key."""
        params = modeling.AnalysisParameters.from_dict(
            {"batch_key": self.library_key, **self.analysis}
        )
        is_valid, errors = modeling.validate_parameters(params)
        if not is_valid:
            raise ValueError(f"Invalid analysis parameters: {'; '.join(errors)}")
        return params


def load_and_filter(config: PipelineConfig) -> anndata.AnnData:
    """Load all sections, compute spot statistics and apply QC filters."""
    adata = io.load_info_table(
        config.info_table, max_image_dim=config.max_image_dim, library_key=config.library_key
    )
    qc.compute_spot_statistics(adata)

    if config.spot_filters:
        criteria = {col: tuple(bounds) for col, bounds in config.spot_filters.items()}
        adata = qc.apply_qc_filters(adata, criteria)
    if config.min_gene_counts is not None or config.min_gene_spots is not None:
        adata = qc.filter_genes(
            adata, min_counts=config.min_gene_counts, min_spots=config.min_gene_spots
        )
    return adata


def prepare_sections(adata: anndata.AnnData, config: PipelineConfig) -> anndata.AnnData:
    """Region annotation, cropping, masking and manual alignment."""
    key = config.library_key

    if config.region_table:
        annotation.annotate_from_table(
            adata, config.region_table, column=config.region_col, library_key=key
        )

    geometries = [annotation.CropGeometry.from_dict(g) for g in config.crop_geometries]
    if not geometries and config.auto_crop:
        geometries = annotation.get_crop_windows(
            adata, group_col=config.region_col, padding=config.crop_padding, library_key=key
        )
    if geometries:
        adata = annotation.crop_sections(adata, geometries, library_key=key)

    if config.mask is not None:
        adata = imaging.mask_images(
            adata,
            imaging.MaskParameters.from_dict(config.mask),
            drop_outside=config.drop_outside_mask,
            library_key=key,
        )

    if config.alignment:
        missing = set(config.alignment) - set(io.get_sections(adata, key))
        if missing:
            raise ValueError(f"Alignment given for unknown sections: {sorted(missing)}")
        imaging.manual_align_images(
            adata, config.alignment, reference=config.alignment_reference, library_key=key
        )

    return adata


def run_pipeline(config: PipelineConfig) -> anndata.AnnData:
    """
    Run the full workflow and write snapshots and tables.

    Steps: load and QC, annotate/crop/mask/align, normalize and cluster,
    Harmony integration, marker genes, 3D stack. A snapshot is written
    after loading, preparation, clustering and integration.

    Parameters
    ----------
    config : PipelineConfig
        Workflow settings.

    Returns
    -------
    anndata.AnnData
        Final analysis object.
    """
    out = Path(config.output_dir)
    out.mkdir(parents=True, exist_ok=True)
    key = config.library_key
    inputs = [config.info_table] + ([config.region_table] if config.region_table else [])

    logger.info("Step 1: loading sections")
    adata = load_and_filter(config)
    io.save_snapshot(
        adata, str(out / "01_loaded.h5ad"), "load",
        parameters={"spot_filters": config.spot_filters}, input_files=inputs,
    )

    logger.info("Steps 2-5: regions, cropping, masking, alignment")
    adata = prepare_sections(adata, config)
    io.save_snapshot(
        adata, str(out / "02_prepared.h5ad"), "prepare",
        parameters={
            "crop_geometries": config.crop_geometries or None,
            "mask": config.mask,
            "alignment": config.alignment or None,
        },
    )

    logger.info("Step 6: normalization, embedding and clustering")
    params = config.analysis_parameters()
    modeling.run_dimensionality_reduction(adata, params)
    io.save_snapshot(adata, str(out / "03_clustered.h5ad"), "cluster", parameters=params.to_dict())

    label_col = "clusters"
    n_sections = len(io.get_sections(adata, key))
    if config.integrate and n_sections > 1:
        logger.info("Step 7: Harmony integration")
        modeling.integrate_sections(adata, params)
        label_col = "harmony_clusters"
        io.save_snapshot(
            adata, str(out / "04_integrated.h5ad"), "integrate", parameters=params.to_dict()
        )
    elif config.integrate:
        logger.warning(f"Skipping integration: only {n_sections} section(s)")

    logger.info(f"Step 8: marker genes for '{label_col}'")
    markers = cluster_interpretation.find_all_markers(
        adata,
        label_col=label_col,
        min_pct=config.marker_min_pct,
        logfc_threshold=config.marker_logfc_threshold,
        only_pos=config.marker_only_pos,
    )
    export.export_markers(markers, str(out / "markers.csv"))
    export.export_markers(
        cluster_interpretation.top_markers(markers, n=config.n_top_markers),
        str(out / "top_markers.csv"),
    )
    cluster_interpretation.compute_cluster_summary(adata, label_col, key).to_csv(
        out / "cluster_summary.csv", index=False
    )

    if config.stack:
        logger.info("Step 9: 3D stack")
        stack = stack3d.create_3d_stack(
            adata,
            sections=config.stack_sections,
            z_spacing=config.z_spacing,
            step=config.stack_step,
            library_key=key,
        )
        for feature in config.stack_features:
            stack[feature] = stack3d.interpolate_feature(
                adata, stack, feature, method=config.interpolation, library_key=key
            )
        adata.uns["stack_3d"] = stack

    exported = export.export_all(adata, str(out), embedding_format=config.embedding_format)
    manifest = export.create_manifest(
        adata,
        input_files=inputs,
        parameters={"pipeline": config.to_dict(), "analysis": params.to_dict()},
        step="run",
        library_key=key,
    )
    manifest["exports"] = exported
    export.save_manifest(manifest, str(out / "run_manifest.json"))

    logger.info(f"Pipeline finished: {adata.n_obs} spots, outputs in {out}")
    return adata


def write_example_config(path: str, info_table: str = "info_table.csv") -> PipelineConfig:
    """Write a configuration file with default settings."""
    config = PipelineConfig(
        info_table=info_table,
        spot_filters={"n_counts": [100, None], "n_genes": [50, None]},
        min_gene_spots=3,
        mask={"method": "otsu", "channel": "grey"},
        stack_features=["clusters"],
    )
    config.to_json(path)
    return config

