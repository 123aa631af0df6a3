"""Shared synthetic seed-section data for the tests."""

import json

import numpy as np
import pandas as pd
import pytest
from anndata import AnnData
from PIL import Image

IMAGE_SIZE = 200
SCALEF = 0.5
TISSUE_CENTER = (100, 100)
TISSUE_RADIUS = 70


def make_section_image(size=IMAGE_SIZE, center=TISSUE_CENTER, radius=TISSUE_RADIUS):
    """White RGB image with a dark disk of tissue."""
    yy, xx = np.mgrid[0:size, 0:size]
    tissue = (xx - center[0]) ** 2 + (yy - center[1]) ** 2 <= radius**2
    image = np.ones((size, size, 3), dtype=np.float32)
    image[tissue] = [0.45, 0.3, 0.25]
    return image


def create_test_adata(n_sections=2, step=16, n_genes=40, seed=0):
    """
    Multi-section AnnData following the Visium layout.

    Spots sit on a regular grid of the hires image (step pixels apart);
    genes 0-9 are high on the left half and genes 10-19 on the right half
    of every section.
    """
    rng = np.random.default_rng(seed)
    grid = np.arange(20, IMAGE_SIZE - 19, step)
    gx, gy = np.meshgrid(grid, grid)
    hires_xy = np.column_stack([gx.ravel(), gy.ravel()]).astype(float)
    n_spots = len(hires_xy)

    pieces = []
    spatial = {}
    for s in range(n_sections):
        section = f"S{s + 1}"
        left = hires_xy[:, 0] < IMAGE_SIZE / 2
        means = np.full((n_spots, n_genes), 1.0)
        means[left, :10] = 12.0
        means[~left, 10:20] = 12.0
        counts = rng.poisson(means).astype(np.float32)

        obs = pd.DataFrame(
            {
                "section": section,
                "array_row": np.repeat(np.arange(len(grid)), len(grid)),
                "array_col": np.tile(np.arange(len(grid)), len(grid)),
            },
            index=[f"spot{i}_{section}" for i in range(n_spots)],
        )
        pieces.append((counts, obs, hires_xy / SCALEF))
        spatial[section] = {
            "images": {"hires": make_section_image()},
            "scalefactors": {"tissue_hires_scalef": SCALEF, "spot_diameter_fullres": 20.0},
            "metadata": {},
        }

    X = np.vstack([p[0] for p in pieces])
    obs = pd.concat([p[1] for p in pieces])
    obs["section"] = pd.Categorical(obs["section"], categories=list(spatial))
    var = pd.DataFrame(index=[f"Zm{i:05d}" for i in range(n_genes)])

    adata = AnnData(X=X.copy(), obs=obs, var=var)
    adata.layers["counts"] = X.copy()
    adata.obsm["spatial"] = np.vstack([p[2] for p in pieces])
    adata.uns["spatial"] = spatial
    return adata


def write_section_files(directory, barcodes_prefix="AAAC", step=16, headed_positions=False):
    """Write one section as platform files; returns the file paths."""
    directory.mkdir(parents=True, exist_ok=True)
    grid = np.arange(20, IMAGE_SIZE - 19, step)
    gx, gy = np.meshgrid(grid, grid)
    n_spots = gx.size
    barcodes = [f"{barcodes_prefix}{i:04d}-1" for i in range(n_spots)]

    positions = pd.DataFrame(
        {
            "barcode": barcodes,
            "in_tissue": [1] * (n_spots - 2) + [0, 0],
            "array_row": np.repeat(np.arange(len(grid)), len(grid)),
            "array_col": np.tile(np.arange(len(grid)), len(grid)),
            "pxl_row_in_fullres": (gy.ravel() / SCALEF).astype(int),
            "pxl_col_in_fullres": (gx.ravel() / SCALEF).astype(int),
        }
    )
    positions_file = directory / ("tissue_positions.csv" if headed_positions else "tissue_positions_list.csv")
    positions.to_csv(positions_file, index=False, header=headed_positions)

    rng = np.random.default_rng(1)
    genes = [f"Zm{i:05d}" for i in range(12)]
    # genes x spots, as exported by the platform's table writer
    table = pd.DataFrame(rng.poisson(3, size=(len(genes), n_spots)), index=genes, columns=barcodes)
    expression_file = directory / "counts.tsv"
    table.to_csv(expression_file, sep="\t")

    image_file = directory / "tissue_hires_image.png"
    Image.fromarray((make_section_image() * 255).astype(np.uint8)).save(image_file)

    scalefactors_file = directory / "scalefactors_json.json"
    with open(scalefactors_file, "w") as f:
        json.dump({"tissue_hires_scalef": SCALEF, "spot_diameter_fullres": 20.0}, f)

    return {
        "samples": expression_file,
        "spotfiles": positions_file,
        "imgs": image_file,
        "json": scalefactors_file,
        "barcodes": barcodes,
    }


@pytest.fixture
def seed_adata():
    """Two synthetic seed sections."""
    return create_test_adata()


@pytest.fixture
def single_section_adata():
    """One synthetic seed section."""
    return create_test_adata(n_sections=1)
