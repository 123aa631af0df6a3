"""Tests for region annotation and cropping."""

import numpy as np
import pandas as pd
import pytest

from seed_spatial import annotation, io

from conftest import write_section_files


def write_info_table(directory, sections):
    """Write platform files for each section and an info table listing them."""
    rows = []
    for section in sections:
        files = write_section_files(directory / section)
        rows.append(
            {
                "samples": files["samples"],
                "spotfiles": files["spotfiles"],
                "imgs": files["imgs"],
                "json": files["json"],
                "section": section,
            }
        )
    path = directory / "info.csv"
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


def label_halves(adata, column="region"):
    """Label the left half of every section seed_a and the right half seed_b."""
    for section in io.get_sections(adata):
        names = adata.obs_names[io.section_mask(adata, section)]
        xy = io.to_image_coords(adata, section)
        annotation.annotate_spots(adata, names[xy[:, 0] < 100], "seed_a", column)
        annotation.annotate_spots(adata, names[xy[:, 0] > 100], "seed_b", column)


class TestRegions:
    """Tests for manual labelling."""

    def test_annotate_spots(self, seed_adata):
        n = annotation.annotate_spots(seed_adata, seed_adata.obs_names[:5], "embryo")

        assert n == 5
        assert (seed_adata.obs["region"] == "embryo").sum() == 5
        assert seed_adata.obs["region"].isna().sum() == seed_adata.n_obs - 5

    def test_annotate_spots_relabels(self, seed_adata):
        """A later selection overrides an earlier label."""
        annotation.annotate_spots(seed_adata, seed_adata.obs_names[:5], "embryo")
        annotation.annotate_spots(seed_adata, seed_adata.obs_names[3:8], "endosperm")

        counts = seed_adata.obs["region"].value_counts()
        assert counts["embryo"] == 3
        assert counts["endosperm"] == 5

    def test_annotate_unknown_spot(self, seed_adata):
        with pytest.raises(ValueError, match="not found"):
            annotation.annotate_spots(seed_adata, ["nope"], "embryo")

    def test_annotate_polygon(self, seed_adata):
        """Spots inside the polygon on the given section are labelled."""
        polygon = [(0, 0), (99, 0), (99, 199), (0, 199)]
        n = annotation.annotate_polygon(seed_adata, polygon, "seed_a", section="S1")

        assert n == 55
        labelled = seed_adata.obs["region"] == "seed_a"
        assert (seed_adata.obs.loc[labelled, "section"] == "S1").all()

    def test_annotate_polygon_empty(self, seed_adata):
        polygon = [(0, 0), (5, 0), (5, 5)]
        assert annotation.annotate_polygon(seed_adata, polygon, "x", section="S1") == 0
        assert "region" not in seed_adata.obs

    def test_annotate_polygon_invalid(self, seed_adata):
        with pytest.raises(ValueError, match="three"):
            annotation.annotate_polygon(seed_adata, [(0, 0), (1, 1)], "x", section="S1")

    def test_annotate_from_table(self, seed_adata, tmp_path):
        """Labels are imported by spot id; unknown ids are skipped."""
        table = pd.DataFrame(
            {
                "spot_id": list(seed_adata.obs_names[:4]) + ["unknown_spot"],
                "label": ["pericarp"] * 5,
            }
        )
        table.to_csv(tmp_path / "regions.csv", index=False)

        n = annotation.annotate_from_table(seed_adata, tmp_path / "regions.csv")

        assert n == 4
        assert (seed_adata.obs["region"] == "pericarp").sum() == 4

    def test_annotate_from_barcode_table(self, tmp_path):
        """Platform barcodes match spots renamed to <barcode>_<section>."""
        adata = io.load_info_table(write_info_table(tmp_path, ["S1"]))
        barcodes = list(adata.obs["barcode"][:10])
        pd.DataFrame({"barcode": barcodes, "label": "embryo"}).to_csv(
            tmp_path / "regions.csv", index=False
        )

        n = annotation.annotate_from_table(adata, tmp_path / "regions.csv")

        assert n == 10
        assert list(adata.obs_names[adata.obs["region"] == "embryo"]) == [
            f"{bc}_S1" for bc in barcodes
        ]

    def test_annotate_from_barcode_table_with_section(self, tmp_path):
        """A barcode found in several sections needs the section column."""
        adata = io.load_info_table(write_info_table(tmp_path, ["S1", "S2"]))
        barcodes = list(adata.obs["barcode"][:3])
        table = pd.DataFrame({"barcode": barcodes, "label": "endosperm"})
        table.to_csv(tmp_path / "ambiguous.csv", index=False)
        table.assign(section="S2").to_csv(tmp_path / "regions.csv", index=False)

        assert annotation.annotate_from_table(adata, tmp_path / "ambiguous.csv") == 0

        n = annotation.annotate_from_table(adata, tmp_path / "regions.csv")

        assert n == 3
        labelled = adata.obs[adata.obs["region"] == "endosperm"]
        assert set(labelled["section"]) == {"S2"}
        assert list(labelled["barcode"]) == barcodes


    def test_annotate_from_table_no_id_column(self, seed_adata, tmp_path):
        pd.DataFrame({"name": ["a"], "label": ["b"]}).to_csv(tmp_path / "r.csv", index=False)
        with pytest.raises(ValueError, match="spot id"):
            annotation.annotate_from_table(seed_adata, tmp_path / "r.csv")

    def test_clear_annotation(self, seed_adata):
        label_halves(seed_adata)

        annotation.clear_annotation(seed_adata, label="seed_a")
        assert "seed_a" not in set(seed_adata.obs["region"].dropna())
        assert (seed_adata.obs["region"] == "seed_b").any()

        annotation.clear_annotation(seed_adata)
        assert seed_adata.obs["region"].isna().all()


class TestCropGeometry:
    """Tests for crop geometry strings."""

    def test_string_round_trip(self):
        geometry = annotation.CropGeometry.from_string("120x80+10+25", section="S1")
        assert (geometry.width, geometry.height) == (120, 80)
        assert (geometry.x_offset, geometry.y_offset) == (10, 25)
        assert geometry.to_string() == "120x80+10+25"

    def test_from_dict_geometry(self):
        geometry = annotation.CropGeometry.from_dict(
            {"geometry": "50x50+0+0", "group_value": "seed_a", "section": "S1"}
        )
        assert geometry.group_value == "seed_a"
        assert geometry.to_dict()["width"] == 50

    @pytest.mark.parametrize("text", ["50x50", "50x50+1", "ax50+0+0", "-5x5+0+0"])
    def test_invalid_string(self, text):
        with pytest.raises(ValueError):
            annotation.CropGeometry.from_string(text)

    def test_invalid_size(self):
        with pytest.raises(ValueError, match="positive"):
            annotation.CropGeometry(width=0, height=10, x_offset=0, y_offset=0)

    def test_contains(self):
        geometry = annotation.CropGeometry(width=10, height=10, x_offset=5, y_offset=5)
        inside = geometry.contains(np.array([[5, 5], [14.9, 14.9], [15, 10], [4, 10]]))
        np.testing.assert_array_equal(inside, [True, True, False, False])


class TestCropWindows:
    """Tests for crop window computation."""

    def test_windows_per_group(self, seed_adata):
        label_halves(seed_adata)
        windows = annotation.get_crop_windows(seed_adata, padding=20)

        assert len(windows) == 4
        assert [(w.section, w.group_value) for w in windows[:2]] == [
            ("S1", "seed_a"),
            ("S1", "seed_b"),
        ]

        # Left half spans x 20..84; padding plus spot radius is 25 px
        left = windows[0]
        assert left.x_offset == 0
        assert left.width == 109
        right = windows[1]
        assert right.x_offset == 91
        assert right.x_offset + right.width == 200

    def test_windows_single_section(self, seed_adata):
        label_halves(seed_adata)
        windows = annotation.get_crop_windows(seed_adata, section="S2", groups=["seed_b"])
        assert len(windows) == 1
        assert windows[0].section == "S2"

    def test_windows_missing_group(self, seed_adata):
        label_halves(seed_adata)
        with pytest.raises(ValueError, match="no spots"):
            annotation.get_crop_windows(seed_adata, section="S1", groups=["seed_c"])

    def test_windows_missing_column(self, seed_adata):
        with pytest.raises(ValueError, match="not found"):
            annotation.get_crop_windows(seed_adata, group_col="region")

    def test_windows_to_frame(self, seed_adata):
        label_halves(seed_adata)
        frame = annotation.crop_windows_to_frame(annotation.get_crop_windows(seed_adata))
        assert "geometry" in frame.columns
        assert len(frame) == 4


class TestCropSections:
    """Tests for splitting sections."""

    def test_crop_sections(self, seed_adata):
        """Each window becomes a section with its own cropped image."""
        label_halves(seed_adata)
        windows = annotation.get_crop_windows(seed_adata)

        cropped = annotation.crop_sections(seed_adata, windows)

        assert io.get_sections(cropped) == ["S1_seed_a", "S1_seed_b", "S2_seed_a", "S2_seed_b"]
        # The middle column (x == 100) carries no label and is dropped
        assert cropped.n_obs == 4 * 55
        assert set(cropped.obs["source_section"]) == {"S1", "S2"}
        assert cropped.obs_names.is_unique

        image = io.get_image(cropped, "S1_seed_b")
        assert image.shape == (200, 109, 3)

        xy = io.to_image_coords(cropped, "S1_seed_b")
        assert xy[:, 0].min() == pytest.approx(116 - 91)

        info = io.get_spatial_info(cropped, "S1_seed_b")
        assert info["metadata"]["crop_geometry"] == windows[1].to_string()

    def test_crop_without_group(self, single_section_adata):
        """A plain rectangle keeps every spot inside it."""
        geometry = annotation.CropGeometry.from_string("50x50+10+10")
        cropped = annotation.crop_sections(single_section_adata, [geometry])

        assert io.get_sections(cropped) == ["S1_1"]
        # Hires grid points 20, 36 and 52 fall inside [10, 60)
        assert cropped.n_obs == 9
        assert io.get_image(cropped, "S1_1").shape[:2] == (50, 50)

    def test_crop_needs_section(self, seed_adata):
        geometry = annotation.CropGeometry.from_string("50x50+10+10")
        with pytest.raises(ValueError, match="needs a section"):
            annotation.crop_sections(seed_adata, [geometry])

    def test_crop_empty(self, single_section_adata):
        geometry = annotation.CropGeometry.from_string("5x5+0+0", section="S1")
        with pytest.raises(ValueError, match="contains no spots"):
            annotation.crop_sections(single_section_adata, [geometry])
