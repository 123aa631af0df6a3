"""Tests for QC module."""

import numpy as np
import pytest

from seed_spatial.qc import filters, summaries


class TestFilters:
    """Tests for filter functions."""

    def test_create_filter_mask(self, seed_adata):
        """Test creating filter mask."""
        summaries.compute_spot_statistics(seed_adata)
        threshold = seed_adata.obs["n_counts"].median()

        mask = filters.create_filter_mask(seed_adata, {"n_counts": (threshold, None)})

        assert mask.dtype == bool
        assert len(mask) == seed_adata.n_obs
        assert mask.sum() == (seed_adata.obs["n_counts"] >= threshold).sum()

    def test_missing_column_is_skipped(self, seed_adata):
        mask = filters.create_filter_mask(seed_adata, {"not_a_column": (1, None)})
        assert mask.all()

    def test_apply_qc_filters(self, seed_adata):
        """Test filtering returns a copy and flags spots."""
        seed_adata.obs["score"] = np.arange(seed_adata.n_obs)

        filtered = filters.apply_qc_filters(seed_adata, {"score": (10, None)})

        assert filtered.n_obs == seed_adata.n_obs - 10
        assert filtered.n_vars == seed_adata.n_vars
        assert "qc_pass" in seed_adata.obs
        assert seed_adata.obs["qc_pass"].sum() == filtered.n_obs

    def test_apply_qc_filters_inplace(self, seed_adata):
        seed_adata.obs["score"] = np.arange(seed_adata.n_obs)
        n_obs = seed_adata.n_obs

        result = filters.apply_qc_filters(seed_adata, {"score": (None, 99)}, inplace=True)

        assert result is seed_adata
        assert seed_adata.n_obs == 100 < n_obs

    def test_filter_genes(self, seed_adata):
        """Genes without counts are removed."""
        seed_adata.layers["counts"][:, 0] = 0

        filtered = filters.filter_genes(seed_adata, min_spots=1)

        assert filtered.n_vars == seed_adata.n_vars - 1
        assert seed_adata.var_names[0] not in filtered.var_names

    def test_filter_genes_min_counts(self, seed_adata):
        totals = np.asarray(seed_adata.layers["counts"]).sum(axis=0)
        filtered = filters.filter_genes(seed_adata, min_counts=int(np.median(totals)))
        assert 0 < filtered.n_vars <= seed_adata.n_vars

    def test_filter_outliers_mad(self, seed_adata):
        values = np.ones(seed_adata.n_obs)
        values[:3] = 1000
        seed_adata.obs["n_counts"] = values + np.random.default_rng(0).normal(0, 0.1, len(values))

        mask = filters.filter_outliers_mad(seed_adata, "n_counts", n_mads=5)

        assert not mask[:3].any()
        assert mask[3:].mean() > 0.95


class TestSummaries:
    """Tests for summary functions."""

    def test_compute_spot_statistics(self, seed_adata):
        """Test per-spot counts and detected genes."""
        stats = summaries.compute_spot_statistics(seed_adata)

        counts = np.asarray(seed_adata.layers["counts"])
        np.testing.assert_allclose(stats["n_counts"], counts.sum(axis=1))
        np.testing.assert_array_equal(stats["n_genes"], (counts > 0).sum(axis=1))
        assert "n_counts" in seed_adata.obs
        assert "n_genes" in seed_adata.obs

    def test_compute_qc_summary(self, seed_adata):
        """Test QC summary per section."""
        summary = summaries.compute_qc_summary(seed_adata)

        assert summary["n_spots"] == seed_adata.n_obs
        assert summary["qc_columns"] == ["n_counts", "n_genes"]
        assert set(summary["by_group"]) == {"S1", "S2"}
        assert summary["by_group"]["S1"]["n_counts"]["count"] == 121

    def test_compute_filter_stats(self, seed_adata):
        mask = np.zeros(seed_adata.n_obs, dtype=bool)
        mask[:121] = True

        stats = summaries.compute_filter_stats(seed_adata, mask)

        assert stats["n_kept"] == 121
        assert stats["n_filtered"] == 121
        assert stats["percent_kept"] == pytest.approx(50.0)
