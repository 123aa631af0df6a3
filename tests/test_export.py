"""Tests for export module."""

import hashlib
import json
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from seed_spatial.export import manifest, writers


@pytest.fixture
def clustered_adata(seed_adata):
    """Sections with cluster labels and embeddings."""
    rng = np.random.default_rng(0)
    seed_adata.obs["clusters"] = pd.Categorical(rng.choice(["0", "1", "2"], seed_adata.n_obs))
    seed_adata.obs["region"] = "seed_1"
    seed_adata.obsm["X_pca"] = rng.normal(size=(seed_adata.n_obs, 10))
    seed_adata.obsm["X_umap"] = rng.normal(size=(seed_adata.n_obs, 2))
    return seed_adata


class TestWriters:
    """Tests for export writers."""

    def test_export_clusters(self, clustered_adata):
        """Test exporting labels to CSV."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_file = Path(tmpdir) / "clusters.csv"

            writers.export_clusters(clustered_adata, str(output_file))

            df = pd.read_csv(output_file, dtype=str)
            assert list(df.columns) == ["spot_id", "section", "region", "clusters"]
            assert len(df) == clustered_adata.n_obs
            assert df["spot_id"].iloc[0] == clustered_adata.obs_names[0]

    def test_export_clusters_missing(self, clustered_adata):
        with pytest.raises(ValueError, match="not found"):
            writers.export_clusters(clustered_adata, "x.csv", cluster_cols=["harmony_clusters"])

    def test_export_embeddings_parquet(self, clustered_adata):
        """Test exporting embeddings to Parquet."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_file = Path(tmpdir) / "pca.parquet"

            writers.export_embeddings(
                clustered_adata, str(output_file), embedding_key="X_pca", format="parquet"
            )

            df = pd.read_parquet(output_file)
            assert list(df.columns[:3]) == ["spot_id", "pca_1", "pca_2"]
            assert df.shape == (clustered_adata.n_obs, 11)

    def test_export_embeddings_csv(self, clustered_adata):
        """Test exporting embeddings to CSV."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_file = Path(tmpdir) / "nested" / "umap.csv"

            writers.export_embeddings(
                clustered_adata, str(output_file), embedding_key="X_umap", format="csv"
            )

            df = pd.read_csv(output_file)
            np.testing.assert_allclose(df[["umap_1", "umap_2"]], clustered_adata.obsm["X_umap"])

    def test_export_embeddings_errors(self, clustered_adata):
        with pytest.raises(ValueError, match="not found"):
            writers.export_embeddings(clustered_adata, "x.parquet", embedding_key="X_tsne")
        with pytest.raises(ValueError, match="Unknown format"):
            writers.export_embeddings(clustered_adata, "x.json", format="json")

    def test_export_markers_and_stack(self, tmp_path):
        markers = pd.DataFrame({"cluster": ["0"], "gene": ["Zm00001"], "p_val_adj": [0.01]})
        writers.export_markers(markers, str(tmp_path / "markers.csv"))
        assert pd.read_csv(tmp_path / "markers.csv")["gene"].iloc[0] == "Zm00001"

        stack = pd.DataFrame(
            {"x": [1.0, 2.0], "y": [3.0, 4.0], "z": [0.0, 100.0], "section": ["S1", "S2"]}
        )
        writers.export_stack(stack, str(tmp_path / "stack.csv"), format="csv")
        pd.testing.assert_frame_equal(pd.read_csv(tmp_path / "stack.csv"), stack)

    def test_export_all(self, clustered_adata, tmp_path):
        """Every available label set, embedding and stack is written."""
        clustered_adata.uns["stack_3d"] = pd.DataFrame(
            {"x": [1.0], "y": [1.0], "z": [0.0], "section": ["S1"]}
        )

        exported = writers.export_all(clustered_adata, str(tmp_path / "out"))

        assert set(exported) == {"clusters", "X_pca", "X_umap", "stack_3d"}
        for path in exported.values():
            assert Path(path).exists()
        assert exported["X_umap"].endswith("umap.parquet")


class TestManifest:
    """Tests for manifest creation."""

    def test_create_manifest(self, clustered_adata):
        """Test creating a manifest."""
        result = manifest.create_manifest(
            clustered_adata, parameters={"resolution": 0.8}, step="cluster"
        )

        assert result["step"] == "cluster"
        assert result["data"]["n_spots"] == clustered_adata.n_obs
        assert result["data"]["embeddings"] == {"spatial": 2, "X_pca": 10, "X_umap": 2}
        assert result["sections"]["spots_per_section"] == {"S1": 121, "S2": 121}
        assert result["sections"]["aligned"] == []
        assert result["clusters"]["clusters"] == 3
        assert result["parameters"]["resolution"] == 0.8

    def test_manifest_records_inputs(self, clustered_adata, tmp_path):
        input_file = tmp_path / "info.csv"
        input_file.write_text("samples\n")

        result = manifest.create_manifest(clustered_adata, input_files=[str(input_file)])

        files = result["input"]["files"]
        assert len(files) == 1
        assert files[0]["sha256"] == manifest.compute_file_hash(str(input_file))

    def test_save_manifest(self, clustered_adata, tmp_path):
        """Test saving manifest to JSON."""
        result = manifest.create_manifest(clustered_adata)
        output_file = tmp_path / "manifest.json"

        manifest.save_manifest(result, str(output_file))

        with open(output_file) as f:
            loaded = json.load(f)
        assert loaded["data"]["n_genes"] == clustered_adata.n_vars

    def test_validate_manifest(self, clustered_adata):
        """Test manifest validation."""
        valid = manifest.create_manifest(clustered_adata)
        assert manifest.validate_manifest(valid) == (True, [])

        is_valid, errors = manifest.validate_manifest({"version": "0.1.0"})
        assert not is_valid
        assert len(errors) == 4

    def test_compute_file_hash(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_bytes(b"seed")
        assert manifest.compute_file_hash(str(path), "md5") == hashlib.md5(b"seed").hexdigest()
        assert len(manifest.compute_file_hash(str(path))) == 64
