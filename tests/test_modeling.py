"""Tests for normalization, embedding, clustering and Harmony integration."""

import numpy as np
import pandas as pd
import pytest

from seed_spatial import modeling

from conftest import SCALEF


def small_parameters(**kwargs):
    """Parameters sized for the synthetic sections."""
    defaults = dict(n_top_genes=20, n_pcs=10, n_neighbors=10, resolution=0.5)
    defaults.update(kwargs)
    return modeling.AnalysisParameters(**defaults)


def left_half(adata):
    return adata.obsm["spatial"][:, 0] * SCALEF < 100


class TestParameters:
    """Tests for parameter handling."""

    def test_defaults(self):
        params = modeling.get_default_parameters("pearson_residuals")
        assert params.normalization == "pearson_residuals"
        assert params.batch_key == "section"
        assert modeling.validate_parameters(params)[0]

        log_params = modeling.get_default_parameters("log")
        assert log_params.n_top_genes == 2000

    def test_unknown_normalization(self):
        with pytest.raises(ValueError, match="Unknown normalization"):
            modeling.get_default_parameters("sctransform_v2")

    def test_from_dict_ignores_unknown(self):
        params = modeling.AnalysisParameters.from_dict({"n_pcs": 12, "colour": "red"})
        assert params.n_pcs == 12
        assert modeling.AnalysisParameters.from_dict(params.to_dict()) == params

    def test_validate(self):
        params = modeling.AnalysisParameters(n_pcs=1, resolution=0, theta=-1)
        is_valid, errors = modeling.validate_parameters(params)
        assert not is_valid
        assert len(errors) == 3


class TestNormalization:
    """Tests for normalization."""

    def test_log_normalize(self, seed_adata):
        lognorm = modeling.log_normalize(seed_adata.layers["counts"], target_sum=1e4)
        np.testing.assert_allclose(np.expm1(lognorm).sum(axis=1), 1e4, rtol=1e-4)

    def test_pearson_residuals(self, seed_adata):
        """Residuals replace X; counts and log values are kept in layers."""
        counts = seed_adata.layers["counts"].copy()
        modeling.normalize_expression(seed_adata, method="pearson_residuals", n_top_genes=20)

        np.testing.assert_array_equal(seed_adata.layers["counts"], counts)
        assert "lognorm" in seed_adata.layers
        assert seed_adata.var["highly_variable"].sum() == 20
        # Genes with a spatial pattern are the variable ones
        assert seed_adata.var["highly_variable"].iloc[:20].all()
        assert seed_adata.uns["normalization"]["method"] == "pearson_residuals"
        assert not np.allclose(seed_adata.X, counts)

    def test_log_scaled(self, seed_adata):
        modeling.normalize_expression(seed_adata, method="log", n_top_genes=20)
        np.testing.assert_allclose(np.asarray(seed_adata.X).mean(axis=0), 0, atol=1e-5)
        assert seed_adata.var["highly_variable"].sum() == 20

    def test_counts_from_x(self, seed_adata):
        """Without a counts layer the raw counts are taken from X."""
        del seed_adata.layers["counts"]
        modeling.normalize_expression(seed_adata, n_top_genes=None)
        assert "counts" in seed_adata.layers

    def test_unknown_method(self, seed_adata):
        with pytest.raises(ValueError, match="Unknown normalization method"):
            modeling.normalize_expression(seed_adata, method="tpm")


class TestEmbedding:
    """Tests for PCA, UMAP and Leiden clustering."""

    def test_run_pca_caps_components(self, seed_adata):
        modeling.normalize_expression(seed_adata, n_top_genes=20)
        modeling.run_pca(seed_adata, n_pcs=50)
        assert seed_adata.obsm["X_pca"].shape == (seed_adata.n_obs, 19)

    def test_run_umap_missing_rep(self, seed_adata):
        with pytest.raises(ValueError, match="not found"):
            modeling.run_umap(seed_adata, use_rep="X_pca")

    def test_graph_keys(self, seed_adata):
        """The default graph uses scanpy's plain keys, named graphs are prefixed."""
        modeling.normalize_expression(seed_adata, n_top_genes=20)
        modeling.run_pca(seed_adata, n_pcs=10)

        modeling.run_umap(seed_adata, n_neighbors=10)
        assert "connectivities" in seed_adata.obsp
        assert "neighbors" in seed_adata.uns
        modeling.cluster_spots(seed_adata, resolution=0.5)
        assert "clusters" in seed_adata.obs

        modeling.run_umap(
            seed_adata, n_neighbors=10, neighbors_key="neighbors_alt", key_added="X_umap_alt"
        )
        assert "neighbors_alt_connectivities" in seed_adata.obsp
        assert seed_adata.obsm["X_umap_alt"].shape == (seed_adata.n_obs, 2)
        modeling.cluster_spots(seed_adata, neighbors_key="neighbors_alt", key_added="alt")
        assert "alt" in seed_adata.obs

    def test_cluster_needs_graph(self, seed_adata):
        with pytest.raises(ValueError, match="Neighbor graph"):
            modeling.cluster_spots(seed_adata)

    def test_run_dimensionality_reduction(self, seed_adata):
        """Left and right halves of the sections fall in different clusters."""
        params = small_parameters()
        modeling.run_dimensionality_reduction(seed_adata, params)

        assert seed_adata.obsm["X_pca"].shape == (seed_adata.n_obs, 10)
        assert seed_adata.obsm["X_umap"].shape == (seed_adata.n_obs, 2)
        assert isinstance(seed_adata.obs["clusters"].dtype, pd.CategoricalDtype)
        assert seed_adata.obs["clusters"].nunique() >= 2
        assert seed_adata.uns["analysis_params"]["n_pcs"] == 10

        left = left_half(seed_adata)
        clusters = seed_adata.obs["clusters"]
        assert clusters[left].mode()[0] != clusters[~left].mode()[0]

    def test_invalid_parameters(self, seed_adata):
        with pytest.raises(ValueError, match="Invalid analysis parameters"):
            modeling.run_dimensionality_reduction(seed_adata, small_parameters(n_neighbors=1))


class TestIntegration:
    """Tests for Harmony integration."""

    def test_integrate_sections(self, seed_adata):
        params = small_parameters()
        modeling.run_dimensionality_reduction(seed_adata, params)
        modeling.integrate_sections(seed_adata, params)

        assert seed_adata.obsm["X_pca_harmony"].shape == seed_adata.obsm["X_pca"].shape
        assert seed_adata.obsm["X_umap_harmony"].shape == (seed_adata.n_obs, 2)
        assert "neighbors_harmony" in seed_adata.uns
        assert seed_adata.obs["harmony_clusters"].nunique() >= 2
        # Uncorrected results are kept
        assert "clusters" in seed_adata.obs
        assert "X_umap" in seed_adata.obsm

    def test_integrate_needs_pca(self, seed_adata):
        with pytest.raises(ValueError, match="PCA embedding"):
            modeling.integrate_sections(seed_adata)

    def test_harmony_single_batch(self, single_section_adata):
        single_section_adata.obsm["X_pca"] = np.random.default_rng(0).normal(
            size=(single_section_adata.n_obs, 5)
        )
        with pytest.raises(ValueError, match="at least 2 batches"):
            modeling.run_harmony(single_section_adata)

    def test_harmony_missing_batch(self, seed_adata):
        seed_adata.obsm["X_pca"] = np.zeros((seed_adata.n_obs, 5))
        with pytest.raises(ValueError, match="Batch column"):
            modeling.run_harmony(seed_adata, batch_key="slide")
