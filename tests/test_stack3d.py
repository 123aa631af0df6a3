"""Tests for the 3D section stack."""

import logging

import numpy as np
import pandas as pd
import pytest

from seed_spatial import imaging, stack3d
from seed_spatial.modeling import log_normalize

from conftest import SCALEF, TISSUE_CENTER, TISSUE_RADIUS


@pytest.fixture
def stack_adata(seed_adata):
    """Aligned sections with log values and a left/right label."""
    seed_adata.layers["lognorm"] = log_normalize(seed_adata.layers["counts"])
    left = seed_adata.obsm["spatial"][:, 0] * SCALEF < 100
    seed_adata.obs["half"] = pd.Categorical(np.where(left, "left", "right"))
    imaging.manual_align_images(seed_adata, {"S2": {"angle": 0}}, reference="S1")
    return seed_adata


class TestCreateStack:
    """Tests for building the point cloud."""

    def test_stack_from_spot_hull(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata, z_spacing=150, step=10)

        assert list(stack.columns) == stack3d.stack.STACK_COLUMNS
        assert list(stack["section"].cat.categories) == ["S1", "S2"]
        assert set(stack["z"]) == {0.0, 150.0}

        # Spots span hires 20..180, i.e. full resolution 40..360
        assert stack["x"].min() >= 40 and stack["x"].max() <= 360
        per_section = stack.groupby("section", observed=True).size()
        assert per_section["S1"] == per_section["S2"]
        assert 15 * 15 <= per_section["S1"] <= 17 * 17

    def test_stack_stored(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata, step=20)
        pd.testing.assert_frame_equal(stack_adata.uns["stack_3d"], stack)
        assert stack_adata.uns["stack_3d_params"] == {
            "sections": ["S1", "S2"],
            "z_spacing": 100.0,
            "step": 20,
            "use_mask": True,
        }

    def test_stack_from_mask(self, stack_adata):
        """Masked sections are sampled inside the tissue."""
        imaging.mask_images(stack_adata)
        stack = stack3d.create_3d_stack(stack_adata, step=5)

        hires = stack[["x", "y"]].to_numpy() * SCALEF
        dist = np.hypot(hires[:, 0] - TISSUE_CENTER[0], hires[:, 1] - TISSUE_CENTER[1])
        assert (dist <= TISSUE_RADIUS + 3).all()
        n_expected = np.pi * TISSUE_RADIUS**2 / 25
        assert abs(len(stack) / 2 - n_expected) / n_expected < 0.1

    def test_section_order(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata, sections=["S2", "S1"], key_added=None)
        assert stack.loc[stack["z"] == 0, "section"].eq("S2").all()
        assert "stack_3d" not in stack_adata.uns

    def test_unaligned_warning(self, seed_adata, caplog):
        with caplog.at_level(logging.WARNING):
            stack3d.create_3d_stack(seed_adata)
        assert "No section has been aligned" in caplog.text

    @pytest.mark.parametrize("kwargs", [{"step": 0}, {"z_spacing": 0}])
    def test_invalid(self, stack_adata, kwargs):
        with pytest.raises(ValueError):
            stack3d.create_3d_stack(stack_adata, **kwargs)


class TestInterpolation:
    """Tests for interpolating onto the stack."""

    def test_gene_linear(self, stack_adata):
        """A left-half gene stays high on the left of every layer."""
        stack = stack3d.create_3d_stack(stack_adata, step=10)
        values = stack3d.interpolate_feature(stack_adata, stack, "Zm00000")

        assert values.name == "Zm00000"
        assert not values.isna().any()
        hires_x = stack["x"] * SCALEF
        assert values[hires_x <= 80].mean() > values[hires_x >= 110].mean() + 1

    def test_values_within_range(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata, step=10)
        values = stack3d.interpolate_feature(stack_adata, stack, "Zm00025", method="nearest")
        observed = stack_adata.layers["lognorm"][:, 25]
        assert values.min() >= observed.min()
        assert values.max() <= observed.max()

    def test_categorical_nearest(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata, step=10)
        labels = stack3d.interpolate_feature(stack_adata, stack, "half")

        assert isinstance(labels.dtype, pd.CategoricalDtype)
        hires_x = stack["x"] * SCALEF
        assert labels[hires_x <= 80].eq("left").all()
        assert labels[hires_x >= 110].eq("right").all()

    def test_unknown_method(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata)
        with pytest.raises(ValueError, match="Unknown interpolation method"):
            stack3d.interpolate_feature(stack_adata, stack, "Zm00000", method="cubic")

    def test_bad_stack(self, stack_adata):
        with pytest.raises(ValueError, match="missing column"):
            stack3d.interpolate_feature(stack_adata, pd.DataFrame({"x": [1.0]}), "Zm00000")


class TestPlots:
    """Tests for 3D plots."""

    def test_plot_feature_numeric(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata, step=20)
        values = stack3d.interpolate_feature(stack_adata, stack, "Zm00000")
        fig = stack3d.plot_feature_3d(stack, values)

        assert len(fig.data) == 1
        assert fig.data[0].type == "scatter3d"
        assert fig.layout.scene.aspectmode == "data"

    def test_plot_feature_categorical(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata, step=20)
        labels = stack3d.interpolate_feature(stack_adata, stack, "half")
        fig = stack3d.plot_feature_3d(stack, labels)
        assert {trace.name for trace in fig.data} == {"left", "right"}

    def test_plot_by_section(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata, step=20)
        fig = stack3d.plot_feature_3d(stack)
        assert len(fig.data) == 2

    def test_plot_length_mismatch(self, stack_adata):
        stack = stack3d.create_3d_stack(stack_adata, step=20)
        with pytest.raises(ValueError, match="values for"):
            stack3d.plot_feature_3d(stack, pd.Series([1.0, 2.0]))

    def test_plot_sections_3d(self, stack_adata):
        fig = stack3d.plot_sections_3d(stack_adata, z_spacing=50)
        assert len(fig.data) == 2
        assert set(fig.data[1].z) == {50.0}

    def test_plot_sections_unknown_column(self, stack_adata):
        with pytest.raises(ValueError, match="not found"):
            stack3d.plot_sections_3d(stack_adata, color_by="missing")
