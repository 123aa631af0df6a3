"""Command-line interface for seed-spatial."""

import functools
import json
import logging
import sys
from pathlib import Path

import click

from . import __version__, annotation, cluster_interpretation, export, imaging, io, modeling, stack3d
from .pipeline import PipelineConfig, run_pipeline, write_example_config


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def handle_errors(func):
    """Report failures as ``ERROR: ...`` on stderr and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except click.ClickException:
            raise
        except Exception as e:
            logging.getLogger(__name__).debug("Command failed", exc_info=True)
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(1)

    return wrapper


def _output_path(input_file: str, output: str, suffix: str) -> str:
    return output or input_file.replace(".h5ad", f"_{suffix}.h5ad")


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def main(verbose):
    """seed-spatial: spatial transcriptomics workflow for maize seed sections."""
    setup_logging(verbose)


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--strict", is_flag=True, help="Require image data for every section")
@handle_errors
def validate(input_file, strict):
    """
    Validate H5AD file schema and required fields.

    INPUT_FILE: Path to H5AD file
    """
    adata = io.load_h5ad(input_file)
    is_valid, messages = io.validate_schema(adata, strict=strict)
    mappings = io.detect_mappings(adata)

    click.echo("\n=== Validation Results ===")
    click.echo(f"Status: {'PASSED' if is_valid else 'FAILED'}")
    click.echo("\nMessages:")
    for msg in messages:
        click.echo(f"  {msg}")

    click.echo("\n=== Detected Mappings ===")
    for key, value in mappings.items():
        click.echo(f"  {key}: {value}")

    sys.exit(0 if is_valid else 1)


@main.command("crop-windows")
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--group-col", default="region", help="Obs column with manual labels")
@click.option("--group", "groups", multiple=True, help="Label to crop (repeatable)")
@click.option("--padding", type=int, default=20, help="Padding in hires pixels")
@click.option("--section", default=None, help="Only compute windows for this section")
@click.option("--table", type=click.Path(), help="Write the windows to this CSV file")
@click.option("--apply", "apply_to", type=click.Path(), help="Crop and save to this H5AD file")
@handle_errors
def crop_windows(input_file, group_col, groups, padding, section, table, apply_to):
    """
    Compute crop geometries around labelled regions.

    INPUT_FILE: Path to H5AD file with region labels
    """
    adata = io.load_h5ad(input_file)
    windows = annotation.get_crop_windows(
        adata, group_col=group_col, groups=list(groups) or None, padding=padding, section=section
    )

    click.echo("\n=== Crop Windows ===")
    for window in windows:
        click.echo(f"  {window.section} / {window.group_value}: {window.to_string()}")

    if table:
        annotation.crop_windows_to_frame(windows).to_csv(table, index=False)
        click.echo(f"Windows: {table}")

    if apply_to:
        cropped = annotation.crop_sections(adata, windows)
        io.save_snapshot(
            cropped, apply_to, "crop",
            parameters={"windows": [w.to_dict() for w in windows]}, input_files=[input_file],
        )
        click.echo(f"Cropped sections: {apply_to}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output H5AD file")
@click.option("--method", type=click.Choice(["otsu", "kmeans", "fixed"]), default="otsu")
@click.option(
    "--channel",
    type=click.Choice(["grey", "red", "green", "blue", "saturation", "value"]),
    default="grey",
)
@click.option("--threshold", type=float, help="Threshold for the fixed method")
@click.option("--min-size", type=int, default=500, help="Smallest tissue object in pixels")
@click.option("--keep-largest", is_flag=True, help="Keep only the largest tissue component")
@click.option("--drop-outside", is_flag=True, help="Drop spots outside the mask")
@handle_errors
def mask(input_file, output, method, channel, threshold, min_size, keep_largest, drop_outside):
    """
    Mask the background of every section image.

    INPUT_FILE: Path to H5AD file
    """
    adata = io.load_h5ad(input_file)
    params = imaging.MaskParameters(
        method=method,
        channel=channel,
        threshold=threshold,
        min_size=min_size,
        keep_largest=keep_largest,
    )
    adata = imaging.mask_images(adata, params, drop_outside=drop_outside)

    output_file = _output_path(input_file, output, "masked")
    io.save_snapshot(adata, output_file, "mask", parameters=params.to_dict(), input_files=[input_file])
    click.echo(f"Masking complete: {output_file}")
    click.echo(f"Spots on tissue: {int(adata.obs['in_mask'].sum())}/{adata.n_obs}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output H5AD file")
@click.option("--params", "params_file", type=click.Path(exists=True),
              help="JSON file mapping section ids to alignment parameters")
@click.option("--reference", default=None, help="Reference section (left untransformed)")
@click.option("--section", default=None, help="Single section to align")
@click.option("--angle", type=float, default=0.0, help="Rotation in degrees")
@click.option("--shift-x", type=float, default=0.0, help="Horizontal shift in hires pixels")
@click.option("--shift-y", type=float, default=0.0, help="Vertical shift in hires pixels")
@click.option("--flip-x", is_flag=True, help="Mirror horizontally")
@click.option("--flip-y", is_flag=True, help="Mirror vertically")
@click.option("--scale", type=float, default=1.0, help="Isotropic scale factor")
@handle_errors
def align(input_file, output, params_file, reference, section, angle, shift_x, shift_y,
          flip_x, flip_y, scale):
    """
    Apply manual rigid/affine alignment to sections.

    INPUT_FILE: Path to H5AD file
    """
    if params_file:
        with open(params_file) as f:
            parameters = json.load(f)
    elif section:
        parameters = {
            section: imaging.AlignmentParameters(
                angle=angle, shift_x=shift_x, shift_y=shift_y,
                flip_x=flip_x, flip_y=flip_y, scale=scale,
            ).to_dict()
        }
    else:
        raise click.UsageError("Provide --params or --section")

    adata = io.load_h5ad(input_file)
    imaging.manual_align_images(adata, parameters, reference=reference)

    output_file = _output_path(input_file, output, "aligned")
    io.save_snapshot(adata, output_file, "align", parameters=parameters, input_files=[input_file])
    click.echo(f"Alignment complete: {output_file}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output H5AD file")
@click.option("--normalization", type=click.Choice(["pearson_residuals", "log"]),
              default="pearson_residuals")
@click.option("--n-top-genes", type=int, default=3000, help="Number of HVGs")
@click.option("--n-pcs", type=int, default=30, help="Number of principal components")
@click.option("--n-neighbors", type=int, default=15, help="Neighbors for the kNN graph")
@click.option("--resolution", type=float, default=0.8, help="Leiden resolution")
@click.option("--random-state", type=int, default=42, help="Random seed")
@handle_errors
def cluster(input_file, output, normalization, n_top_genes, n_pcs, n_neighbors, resolution,
            random_state):
    """
    Normalize, embed (PCA, UMAP) and cluster spots.

    INPUT_FILE: Path to H5AD file
    """
    params = modeling.AnalysisParameters(
        normalization=normalization,
        n_top_genes=n_top_genes,
        n_pcs=n_pcs,
        n_neighbors=n_neighbors,
        resolution=resolution,
        random_state=random_state,
    )
    is_valid, errors = modeling.validate_parameters(params)
    if not is_valid:
        raise ValueError("; ".join(errors))

    adata = io.load_h5ad(input_file)
    modeling.run_dimensionality_reduction(adata, params)

    output_file = _output_path(input_file, output, "clustered")
    io.save_snapshot(adata, output_file, "cluster", parameters=params.to_dict(), input_files=[input_file])
    click.echo(f"Clustering complete: {output_file}")
    click.echo(f"Found {adata.obs['clusters'].nunique()} clusters")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output H5AD file")
@click.option("--batch-key", default="section", help="Obs column defining batches")
@click.option("--theta", type=float, default=2.0, help="Harmony diversity penalty")
@click.option("--max-iter", type=int, default=10, help="Harmony iterations")
@click.option("--resolution", type=float, default=None, help="Leiden resolution after integration")
@handle_errors
def integrate(input_file, output, batch_key, theta, max_iter, resolution):
    """
    Harmony batch correction, then re-embed and re-cluster.

    INPUT_FILE: Path to clustered H5AD file
    """
    adata = io.load_h5ad(input_file)
    stored = adata.uns.get("analysis_params", {})
    params = modeling.AnalysisParameters.from_dict(dict(stored))
    params.batch_key = batch_key
    params.harmony_theta = theta
    params.harmony_max_iter = max_iter
    if resolution is not None:
        params.resolution = resolution

    modeling.integrate_sections(adata, params)

    output_file = _output_path(input_file, output, "integrated")
    io.save_snapshot(adata, output_file, "integrate", parameters=params.to_dict(), input_files=[input_file])
    click.echo(f"Integration complete: {output_file}")
    click.echo(f"Found {adata.obs['harmony_clusters'].nunique()} clusters after Harmony")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output CSV file")
@click.option("--label-col", default=None, help="Cluster column [default: harmony_clusters or clusters]")
@click.option("--min-pct", type=float, default=0.1, help="Minimum detection rate")
@click.option("--logfc-threshold", type=float, default=0.25, help="Minimum log2 fold change")
@click.option("--both-directions", is_flag=True, help="Also report down-regulated genes")
@click.option("--top", type=int, default=None, help="Keep only the top N markers per cluster")
@handle_errors
def markers(input_file, output, label_col, min_pct, logfc_threshold, both_directions, top):
    """
    Find marker genes of every cluster.

    INPUT_FILE: Path to clustered H5AD file
    """
    adata = io.load_h5ad(input_file)
    if label_col is None:
        label_col = "harmony_clusters" if "harmony_clusters" in adata.obs else "clusters"

    table = cluster_interpretation.find_all_markers(
        adata, label_col=label_col, min_pct=min_pct,
        logfc_threshold=logfc_threshold, only_pos=not both_directions,
    )
    if top:
        table = cluster_interpretation.top_markers(table, n=top)

    output_file = output or input_file.replace(".h5ad", "_markers.csv")
    export.export_markers(table, output_file)
    click.echo(f"Markers: {output_file} ({len(table)} rows)")


@main.command("stack3d")
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output table (.parquet or .csv)")
@click.option("--section", "sections", multiple=True, help="Section order, bottom to top")
@click.option("--z-spacing", type=float, default=100.0, help="Distance between sections")
@click.option("--step", type=int, default=10, help="Grid step in hires pixels")
@click.option("--feature", "features", multiple=True, help="Gene or obs column to interpolate")
@click.option("--method", type=click.Choice(["linear", "nearest"]), default="linear")
@click.option("--html", type=click.Path(), help="Write an interactive 3D plot")
@handle_errors
def stack_3d(input_file, output, sections, z_spacing, step, features, method, html):
    """
    Build an interpolated 3D stack from aligned sections.

    INPUT_FILE: Path to aligned H5AD file
    """
    adata = io.load_h5ad(input_file)
    stack = stack3d.create_3d_stack(
        adata, sections=list(sections) or None, z_spacing=z_spacing, step=step
    )
    for feature in features:
        stack[feature] = stack3d.interpolate_feature(adata, stack, feature, method=method)

    output_file = output or input_file.replace(".h5ad", "_stack3d.parquet")
    fmt = "csv" if output_file.endswith(".csv") else "parquet"
    export.export_stack(stack, output_file, format=fmt)
    click.echo(f"3D stack: {output_file} ({len(stack)} points)")

    if html:
        values = stack[features[0]] if features else None
        fig = stack3d.plot_feature_3d(stack, values, feature=features[0] if features else None)
        fig.write_html(html)
        click.echo(f"3D plot: {html}")


@main.command()
@click.argument("config_file", type=click.Path(exists=True))
@handle_errors
def run(config_file):
    """
    Run the whole workflow from a JSON configuration.

    CONFIG_FILE: Path to pipeline configuration
    """
    config = PipelineConfig.from_json(config_file)
    adata = run_pipeline(config)
    click.echo(f"\nPipeline complete: {adata.n_obs} spots, {adata.n_vars} genes")
    click.echo(f"Outputs: {Path(config.output_dir)}")


@main.command("init-config")
@click.argument("config_file", type=click.Path())
@click.option("--info-table", default="info_table.csv", help="Info table path")
@handle_errors
def init_config(config_file, info_table):
    """
    Write a pipeline configuration with default settings.

    CONFIG_FILE: Path of the JSON file to create
    """
    write_example_config(config_file, info_table=info_table)
    click.echo(f"Configuration: {config_file}")


if __name__ == "__main__":
    main()
