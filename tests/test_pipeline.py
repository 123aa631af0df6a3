"""Tests for the configured end-to-end workflow."""

import json
import logging

import pandas as pd
import pytest

from seed_spatial import io
from seed_spatial.pipeline import (
    PipelineConfig,
    load_and_filter,
    prepare_sections,
    run_pipeline,
    write_example_config,
)

from conftest import SCALEF, write_section_files

SMALL_ANALYSIS = {"n_top_genes": 10, "n_pcs": 5, "n_neighbors": 10}


def write_info_table(directory, sections=("S1", "S2")):
    """Write platform files for each section plus an info table listing them."""
    rows = []
    for section in sections:
        files = write_section_files(directory / section)
        rows.append(
            {
                "samples": f"{section}/{files['samples'].name}",
                "spotfiles": f"{section}/{files['spotfiles'].name}",
                "imgs": f"{section}/{files['imgs'].name}",
                "json": f"{section}/{files['json'].name}",
                "section": section,
            }
        )
    path = directory / "info_table.csv"
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


class TestConfig:
    """Tests for pipeline configuration."""

    def test_from_json_resolves_paths(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(
            json.dumps({"info_table": "info.csv", "region_table": "regions.csv", "z_spacing": 50})
        )

        config = PipelineConfig.from_json(str(config_file))

        assert config.info_table == str(tmp_path / "info.csv")
        assert config.region_table == str(tmp_path / "regions.csv")
        assert config.output_dir == str(tmp_path / "results")
        assert config.z_spacing == 50

    def test_unknown_keys_warn(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = PipelineConfig.from_dict({"info_table": "a.csv", "colour": "red"})
        assert config.info_table == "a.csv"
        assert "colour" in caplog.text

    def test_info_table_required(self):
        with pytest.raises(ValueError, match="info_table"):
            PipelineConfig.from_dict({"output_dir": "out"})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PipelineConfig.from_json(str(tmp_path / "missing.json"))

    def test_analysis_parameters(self):
        config = PipelineConfig(info_table="a.csv", library_key="seed", analysis={"n_pcs": 12})
        params = config.analysis_parameters()
        assert params.n_pcs == 12
        assert params.batch_key == "seed"

        config.analysis = {"resolution": -1}
        with pytest.raises(ValueError, match="resolution"):
            config.analysis_parameters()

    def test_write_example_config(self, tmp_path):
        path = tmp_path / "config.json"
        written = write_example_config(str(path), info_table="table.csv")

        loaded = PipelineConfig.from_dict(json.loads(path.read_text()))
        assert loaded == written
        assert loaded.mask["method"] == "otsu"


class TestSteps:
    """Tests for the individual workflow steps."""

    def test_load_and_filter(self, tmp_path):
        config = PipelineConfig(
            info_table=str(write_info_table(tmp_path)),
            spot_filters={"n_counts": [None, 1e9]},
            min_gene_spots=1,
        )
        adata = load_and_filter(config)

        assert io.get_sections(adata) == ["S1", "S2"]
        assert "n_counts" in adata.obs
        assert adata.obs["qc_pass"].all()
        assert adata.n_vars == 12

    def test_prepare_sections(self, seed_adata, tmp_path):
        """Region labels drive the crop; the cropped section is masked and aligned."""
        in_s1 = io.section_mask(seed_adata, "S1")
        left = seed_adata.obsm["spatial"][:, 0] * SCALEF < 100
        pd.DataFrame(
            {"spot_id": seed_adata.obs_names[in_s1 & left], "label": "seed_a"}
        ).to_csv(tmp_path / "regions.csv", index=False)

        config = PipelineConfig(
            info_table="unused.csv",
            region_table=str(tmp_path / "regions.csv"),
            auto_crop=True,
            mask={"method": "otsu", "channel": "grey"},
            alignment={"S1_seed_a": {"angle": 10}},
        )
        adata = prepare_sections(seed_adata, config)

        assert io.get_sections(adata) == ["S1_seed_a"]
        assert adata.n_obs == 55
        info = io.get_spatial_info(adata, "S1_seed_a")
        assert "mask" in info
        assert info["alignment"]["parameters"]["angle"] == 10
        assert "in_mask" in adata.obs

    def test_explicit_crop_geometries(self, seed_adata):
        config = PipelineConfig(
            info_table="unused.csv",
            crop_geometries=[
                {"geometry": "100x200+0+0", "section": "S1"},
                {"geometry": "100x200+100+0", "section": "S2"},
            ],
        )
        adata = prepare_sections(seed_adata, config)
        assert io.get_sections(adata) == ["S1_1", "S2_2"]

    def test_alignment_unknown_section(self, seed_adata):
        config = PipelineConfig(info_table="unused.csv", alignment={"S9": {"angle": 5}})
        with pytest.raises(ValueError, match="unknown sections"):
            prepare_sections(seed_adata, config)


class TestRunPipeline:
    """Tests for the full workflow."""

    def test_run_two_sections(self, tmp_path):
        """Every step writes its outputs."""
        out = tmp_path / "results"
        config = PipelineConfig(
            info_table=str(write_info_table(tmp_path)),
            output_dir=str(out),
            spot_filters={"n_counts": [1, None]},
            mask={"method": "otsu"},
            alignment={"S2": {"angle": 5, "shift_x": 3}},
            alignment_reference="S1",
            analysis=SMALL_ANALYSIS,
            stack_step=20,
            stack_features=["harmony_clusters", "Zm00001"],
        )

        adata = run_pipeline(config)

        for name in (
            "01_loaded.h5ad",
            "02_prepared.h5ad",
            "03_clustered.h5ad",
            "04_integrated.h5ad",
            "markers.csv",
            "top_markers.csv",
            "cluster_summary.csv",
            "clusters.csv",
            "umap_harmony.parquet",
            "stack_3d.parquet",
            "run_manifest.json",
        ):
            assert (out / name).exists(), name

        assert "harmony_clusters" in adata.obs
        assert adata.uns["alignment_reference"] == "S1"

        stack = pd.read_parquet(out / "stack_3d.parquet")
        assert {"x", "y", "z", "section", "harmony_clusters", "Zm00001"} <= set(stack.columns)
        assert set(stack["z"]) == {0.0, 100.0}

        with open(out / "run_manifest.json") as f:
            manifest = json.load(f)
        assert manifest["step"] == "run"
        assert "stack_3d" in manifest["exports"]
        assert manifest["sections"]["aligned"] == ["S2"]

        prepared = io.load_snapshot(str(out / "02_prepared.h5ad"))
        assert "mask" in prepared.uns["spatial"]["S1"]

    def test_single_section_skips_integration(self, tmp_path):
        out = tmp_path / "results"
        config = PipelineConfig(
            info_table=str(write_info_table(tmp_path, sections=("S1",))),
            output_dir=str(out),
            analysis=SMALL_ANALYSIS,
            stack=False,
        )

        adata = run_pipeline(config)

        assert "harmony_clusters" not in adata.obs
        assert not (out / "04_integrated.h5ad").exists()
        assert not (out / "stack_3d.parquet").exists()
        summary = pd.read_csv(out / "cluster_summary.csv")
        assert summary["n_spots"].sum() == adata.n_obs
