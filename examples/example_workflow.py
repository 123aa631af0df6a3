"""
Example workflow for a set of maize seed sections.

This script shows how to:
1. Load sections listed in an info table
2. Filter spots and genes
3. Import manual region labels and split a multi-seed capture area
4. Mask the image background
5. Align sections manually
6. Normalize, embed and cluster spots
7. Correct section effects with Harmony
8. Find cluster marker genes
9. Stack the sections into an interpolated 3D view
"""

import logging
from pathlib import Path

from seed_spatial import (
    annotation,
    cluster_interpretation,
    export,
    imaging,
    io,
    modeling,
    qc,
    stack3d,
    viz,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """Run the example workflow."""
    output_dir = Path("results")
    output_dir.mkdir(exist_ok=True)

    # ==================== 1. Load ====================
    # Columns: samples, spotfiles, imgs, json (paths relative to the table)
    adata = io.load_info_table("data/info_table.csv", max_image_dim=2000)

    is_valid, messages = io.validate_schema(adata, strict=True)
    if not is_valid:
        for msg in messages:
            logger.error(msg)
        return
    io.save_snapshot(adata, str(output_dir / "01_loaded.h5ad"), "load")

    # ==================== 2. QC ====================
    qc.compute_spot_statistics(adata)
    adata = qc.apply_qc_filters(adata, {"n_counts": (100, None), "n_genes": (50, None)})
    adata = qc.filter_genes(adata, min_spots=3)
    logger.info(f"QC summary: {qc.compute_qc_summary(adata, ['n_counts', 'n_genes'])['overall']}")

    # ==================== 3. Regions and cropping ====================
    # Labels drawn in the app (or any barcode,label table)
    annotation.annotate_from_table(adata, "data/regions.csv", column="region")
    windows = annotation.get_crop_windows(adata, group_col="region", padding=20)
    for window in windows:
        logger.info(f"{window.section}/{window.group_value}: {window.to_string()}")
    adata = annotation.crop_sections(adata, windows)

    # ==================== 4. Masking ====================
    adata = imaging.mask_images(
        adata, imaging.MaskParameters(method="otsu", channel="saturation", keep_largest=True)
    )

    # ==================== 5. Alignment ====================
    sections = io.get_sections(adata)
    reference = sections[0]
    alignment = {
        section: imaging.AlignmentParameters(angle=0.0)
        for section in sections[1:]
    }
    imaging.manual_align_images(adata, alignment, reference=reference)
    viz.plot_alignment_overlay(adata).write_html(output_dir / "alignment.html")
    io.save_snapshot(adata, str(output_dir / "02_prepared.h5ad"), "prepare")

    # ==================== 6. Clustering ====================
    params = modeling.get_default_parameters("pearson_residuals")
    modeling.run_dimensionality_reduction(adata, params)
    viz.plot_umap(adata, color_by="clusters").write_html(output_dir / "umap.html")

    # ==================== 7. Harmony ====================
    if len(sections) > 1:
        modeling.integrate_sections(adata, params)
        viz.plot_umap(adata, color_by="section", basis="X_umap_harmony").write_html(
            output_dir / "umap_harmony.html"
        )
    label_col = "harmony_clusters" if "harmony_clusters" in adata.obs else "clusters"
    io.save_snapshot(adata, str(output_dir / "03_clustered.h5ad"), "cluster", parameters=params.to_dict())

    # ==================== 8. Markers ====================
    markers = cluster_interpretation.find_all_markers(adata, label_col=label_col)
    top = cluster_interpretation.top_markers(markers, n=10)
    export.export_markers(markers, str(output_dir / "markers.csv"))
    cluster_interpretation.plot_marker_heatmap(adata, top, label_col=label_col).write_html(
        output_dir / "marker_heatmap.html"
    )

    # ==================== 9. 3D stack ====================
    stack = stack3d.create_3d_stack(adata, z_spacing=150.0, step=8)
    stack[label_col] = stack3d.interpolate_feature(adata, stack, label_col)
    stack3d.plot_feature_3d(stack, stack[label_col]).write_html(output_dir / "stack_3d.html")

    exported = export.export_all(adata, str(output_dir))
    logger.info(f"Exported: {exported}")


if __name__ == "__main__":
    main()
