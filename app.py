"""Streamlit GUI for the seed section workflow."""

import logging
import sys
from pathlib import Path

import numpy as np
import plotly.graph_objects as go
import streamlit as st

# Add package to path
sys.path.insert(0, str(Path(__file__).parent))

from seed_spatial import (
    __version__,
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

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

st.set_page_config(
    page_title="Seed Spatial",
    page_icon="🌽",
    layout="wide",
    initial_sidebar_state="expanded",
)

for key, default in {
    "adata": None,
    "crop_windows": None,
    "clustered": False,
    "integrated": False,
    "markers": None,
    "stack": None,
}.items():
    if key not in st.session_state:
        st.session_state[key] = default


def _sections(adata):
    return io.get_sections(adata) if adata is not None else []


st.title("🌽 Seed Spatial")
st.markdown("Spatial transcriptomics of maize seed sections: from raw sections to a 3D view")

with st.sidebar:
    st.header("Navigation")
    page = st.radio(
        "Select Page",
        [
            "📁 Load Data",
            "🔍 QC Filtering",
            "✏️ Annotate Regions",
            "✂️ Crop Sections",
            "🎭 Mask Background",
            "🧭 Align Sections",
            "🧬 Clustering",
            "📊 Markers",
            "🧊 3D View",
            "💾 Export",
        ],
    )

    st.divider()
    st.header("Dataset Info")
    if st.session_state.adata is not None:
        st.metric("Spots", st.session_state.adata.n_obs)
        st.metric("Genes", st.session_state.adata.n_vars)
        st.metric("Sections", len(_sections(st.session_state.adata)))


# ==================== Load Data Page ====================
if page == "📁 Load Data":
    st.header("📁 Load Sections")

    source = st.radio("Source", ["Info table", "H5AD snapshot"], horizontal=True)

    if source == "Info table":
        table_path = st.text_input("Info table (CSV/TSV with samples, spotfiles, imgs, json)")
        max_dim = st.number_input("Max image size (0 = keep)", value=2000, min_value=0)
        if st.button("Load Sections") and table_path:
            with st.spinner("Loading sections..."):
                try:
                    adata = io.load_info_table(table_path, max_image_dim=max_dim or None)
                    qc.compute_spot_statistics(adata)
                    st.session_state.adata = adata
                    st.success(f"Loaded {adata.n_obs} spots × {adata.n_vars} genes")
                except Exception as e:
                    st.error(f"Error loading sections: {e}")
    else:
        uploaded_file = st.file_uploader("Upload H5AD file", type=["h5ad"])
        if uploaded_file is not None and st.button("Load Snapshot"):
            temp_path = Path("/tmp") / uploaded_file.name
            with open(temp_path, "wb") as f:
                f.write(uploaded_file.getbuffer())
            with st.spinner("Loading snapshot..."):
                try:
                    adata = io.load_snapshot(str(temp_path))
                    io.normalize_metadata(adata)
                    st.session_state.adata = adata
                    st.success(f"Loaded {adata.n_obs} spots × {adata.n_vars} genes")
                except Exception as e:
                    st.error(f"Error loading file: {e}")

    if st.session_state.adata is not None:
        adata = st.session_state.adata
        st.divider()
        st.subheader("Dataset Summary")

        is_valid, messages = io.validate_schema(adata)
        (st.success if is_valid else st.error)("Schema " + ("valid" if is_valid else "invalid"))
        for msg in messages:
            st.text(msg)

        summary = io.summarize_adata(adata)
        st.json(summary)

        section = st.selectbox("Preview section", _sections(adata))
        st.plotly_chart(viz.plot_section_image(adata, section), use_container_width=True)


# ==================== QC Filtering Page ====================
elif page == "🔍 QC Filtering":
    st.header("🔍 Quality Control Filtering")

    if st.session_state.adata is None:
        st.warning("Please load sections first")
    else:
        adata = st.session_state.adata
        if "n_counts" not in adata.obs:
            qc.compute_spot_statistics(adata)

        col1, col2, col3 = st.columns(3)
        min_counts = col1.number_input("Min counts per spot", value=0, min_value=0)
        min_genes = col2.number_input("Min genes per spot", value=0, min_value=0)
        min_spots = col3.number_input("Min spots per gene", value=0, min_value=0)

        criteria = {"n_counts": (min_counts or None, None), "n_genes": (min_genes or None, None)}
        mask = qc.create_filter_mask(adata, criteria)
        stats = qc.compute_filter_stats(adata, mask)
        st.info(f"{stats['n_kept']} spots kept ({stats['percent_kept']:.1f}%)")
        st.plotly_chart(viz.plot_qc_spatial(adata, mask), use_container_width=True)

        st.dataframe(qc.compute_qc_summary(adata, ["n_counts", "n_genes"])["overall"])

        if st.button("Apply Filters"):
            adata = qc.apply_qc_filters(adata, criteria)
            if min_spots:
                adata = qc.filter_genes(adata, min_spots=min_spots)
            st.session_state.adata = adata
            st.success(f"{adata.n_obs} spots × {adata.n_vars} genes remain")


# ==================== Annotate Regions Page ====================
elif page == "✏️ Annotate Regions":
    st.header("✏️ Manual Region Annotation")

    if st.session_state.adata is None:
        st.warning("Please load sections first")
    else:
        adata = st.session_state.adata
        col1, col2 = st.columns([1, 3])

        with col1:
            section = st.selectbox("Section", _sections(adata))
            column = st.text_input("Annotation column", value="region")
            label = st.text_input("Label for selected spots", value="seed_1")

        spot_mask = io.section_mask(adata, section)
        xy = io.to_image_coords(adata, section)
        spot_ids = adata.obs_names[spot_mask].to_numpy()
        current = (
            adata.obs.loc[spot_mask, column].astype(str).to_numpy()
            if column in adata.obs
            else np.full(len(spot_ids), "nan")
        )

        fig = viz.plot_section_image(adata, section, title=f"{section}: lasso spots to label")
        fig.add_trace(
            go.Scatter(
                x=xy[:, 0],
                y=xy[:, 1],
                mode="markers",
                marker=dict(size=4, opacity=0.6),
                customdata=spot_ids,
                text=current,
                hovertemplate="%{customdata}<br>%{text}<extra></extra>",
                name="spots",
            )
        )
        fig.update_layout(dragmode="lasso")

        with col2:
            event = st.plotly_chart(
                fig, use_container_width=True, on_select="rerun", selection_mode=("lasso", "box")
            )

        points = event.selection.points if event else []
        selected = [p["customdata"] for p in points if "customdata" in p]
        with col1:
            st.metric("Selected spots", len(selected))
            if st.button("Assign label", disabled=not selected):
                n = annotation.annotate_spots(adata, selected, label, column=column)
                st.success(f"Labelled {n} spots as '{label}'")
            if st.button("Clear label"):
                annotation.clear_annotation(adata, column=column, label=label)
                st.success(f"Cleared '{label}'")

        if column in adata.obs:
            st.dataframe(adata.obs[column].value_counts(dropna=False))


# ==================== Crop Sections Page ====================
elif page == "✂️ Crop Sections":
    st.header("✂️ Split Multi-Section Images")

    if st.session_state.adata is None:
        st.warning("Please load sections first")
    else:
        adata = st.session_state.adata
        group_col = st.selectbox(
            "Region column", cluster_interpretation.get_candidate_label_columns(adata)
        )
        padding = st.slider("Padding (hires pixels)", 0, 200, 20)

        if st.button("Compute crop windows"):
            try:
                st.session_state.crop_windows = annotation.get_crop_windows(
                    adata, group_col=group_col, padding=padding
                )
            except Exception as e:
                st.error(f"Error: {e}")

        windows = st.session_state.crop_windows
        if windows:
            st.dataframe(annotation.crop_windows_to_frame(windows))

            section = st.selectbox("Preview section", sorted({w.section for w in windows}))
            fig = viz.plot_section_image(adata, section)
            for w in windows:
                if w.section != section:
                    continue
                fig.add_shape(
                    type="rect",
                    x0=w.x_offset,
                    y0=w.y_offset,
                    x1=w.x_offset + w.width,
                    y1=w.y_offset + w.height,
                    line=dict(color="red", width=2),
                )
                fig.add_annotation(x=w.x_offset, y=w.y_offset, text=str(w.group_value), showarrow=False)
            st.plotly_chart(fig, use_container_width=True)

            if st.button("Crop sections"):
                with st.spinner("Cropping..."):
                    try:
                        st.session_state.adata = annotation.crop_sections(adata, windows)
                        st.session_state.crop_windows = None
                        st.success(f"Created sections: {_sections(st.session_state.adata)}")
                    except Exception as e:
                        st.error(f"Error: {e}")


# ==================== Mask Background Page ====================
elif page == "🎭 Mask Background":
    st.header("🎭 Tissue Masking")

    if st.session_state.adata is None:
        st.warning("Please load sections first")
    else:
        adata = st.session_state.adata

        col1, col2 = st.columns([1, 2])
        with col1:
            section = st.selectbox("Preview section", _sections(adata))
            method = st.selectbox("Method", ["otsu", "kmeans", "fixed"])
            channel = st.selectbox("Channel", ["grey", "saturation", "red", "green", "blue", "value"])
            threshold = st.slider("Threshold", 0.0, 1.0, 0.8) if method == "fixed" else None
            blur_sigma = st.slider("Blur sigma", 0.0, 10.0, 2.0)
            closing_radius = st.slider("Closing radius", 0, 20, 5)
            min_size = st.number_input("Min object size (pixels)", value=500, min_value=0)
            keep_largest = st.checkbox("Keep largest component only")
            drop_outside = st.checkbox("Drop spots outside the mask")

        params = imaging.MaskParameters(
            method=method,
            channel=channel,
            threshold=threshold,
            blur_sigma=blur_sigma,
            closing_radius=closing_radius,
            min_size=min_size,
            keep_largest=keep_largest,
        )

        info = io.get_spatial_info(adata, section)
        raw = info["images"].get("hires_raw", info["images"]["hires"])
        with col2:
            try:
                preview = imaging.threshold_tissue_mask(raw, params)
                st.image(
                    [raw, imaging.apply_mask(raw, preview)],
                    caption=["Original", f"Masked ({100 * preview.mean():.1f}% tissue)"],
                    width=350,
                    clamp=True,
                )
            except Exception as e:
                st.error(f"Error: {e}")

        if st.button("Apply to all sections"):
            with st.spinner("Masking..."):
                st.session_state.adata = imaging.mask_images(adata, params, drop_outside=drop_outside)
                st.success("Masks applied")


# ==================== Align Sections Page ====================
elif page == "🧭 Align Sections":
    st.header("🧭 Manual Alignment")

    if st.session_state.adata is None:
        st.warning("Please load sections first")
    else:
        adata = st.session_state.adata
        sections = _sections(adata)
        if len(sections) < 2:
            st.info("Alignment needs at least two sections")
        else:
            col1, col2 = st.columns([1, 2])
            with col1:
                reference = st.selectbox("Reference section", sections)
                moving = st.selectbox("Section to align", [s for s in sections if s != reference])
                stored = io.get_spatial_info(adata, moving).get("alignment", {}).get("parameters", {})
                current = imaging.AlignmentParameters.from_dict(dict(stored))
                angle = st.slider("Rotation (degrees)", -180.0, 180.0, float(current.angle), 0.5)
                shift_x = st.slider("Shift x (pixels)", -500.0, 500.0, float(current.shift_x), 1.0)
                shift_y = st.slider("Shift y (pixels)", -500.0, 500.0, float(current.shift_y), 1.0)
                scale = st.slider("Scale", 0.5, 2.0, float(current.scale), 0.01)
                shear = st.slider("Shear (degrees)", -30.0, 30.0, float(current.shear), 0.5)
                flip_x = st.checkbox("Flip horizontally", value=bool(current.flip_x))
                flip_y = st.checkbox("Flip vertically", value=bool(current.flip_y))

                if st.button("Apply alignment"):
                    params = imaging.AlignmentParameters(
                        angle=angle, shift_x=shift_x, shift_y=shift_y,
                        flip_x=flip_x, flip_y=flip_y, scale=scale, shear=shear,
                    )
                    imaging.manual_align_images(adata, {moving: params}, reference=reference)
                    st.success(f"Aligned {moving}")

            with col2:
                fig = viz.plot_alignment_overlay(
                    adata, [reference, moving], show_unaligned="spatial_unaligned" in adata.obsm
                )
                st.plotly_chart(fig, use_container_width=True)


# ==================== Clustering Page ====================
elif page == "🧬 Clustering":
    st.header("🧬 Normalization, Clustering and Integration")

    if st.session_state.adata is None:
        st.warning("Please load sections first")
    else:
        adata = st.session_state.adata

        col1, col2 = st.columns(2)
        with col1:
            normalization = st.selectbox("Normalization", ["pearson_residuals", "log"])
            n_top_genes = st.number_input("Number of HVGs", value=3000, min_value=100)
            n_pcs = st.number_input("PCA components", value=30, min_value=2)
        with col2:
            n_neighbors = st.number_input("Neighbors", value=15, min_value=2)
            resolution = st.number_input("Leiden resolution", value=0.8, min_value=0.05)
            random_state = st.number_input("Random seed", value=42)

        params = modeling.AnalysisParameters(
            normalization=normalization,
            n_top_genes=int(n_top_genes),
            n_pcs=int(n_pcs),
            n_neighbors=int(n_neighbors),
            resolution=float(resolution),
            random_state=int(random_state),
        )

        if st.button("Run clustering"):
            with st.spinner("Normalizing and clustering..."):
                try:
                    modeling.run_dimensionality_reduction(adata, params)
                    st.session_state.clustered = True
                    st.success(f"Found {adata.obs['clusters'].nunique()} clusters")
                except Exception as e:
                    st.error(f"Error: {e}")

        if st.session_state.clustered and st.button("Run Harmony integration"):
            with st.spinner("Integrating sections..."):
                try:
                    modeling.integrate_sections(adata, params)
                    st.session_state.integrated = True
                    st.success(f"Found {adata.obs['harmony_clusters'].nunique()} clusters after Harmony")
                except Exception as e:
                    st.error(f"Error: {e}")

        if st.session_state.clustered:
            st.divider()
            color_by = st.selectbox(
                "Color by", cluster_interpretation.get_candidate_label_columns(adata)
            )
            col1, col2 = st.columns(2)
            col1.plotly_chart(viz.plot_umap(adata, color_by=color_by), use_container_width=True)
            if "X_umap_harmony" in adata.obsm:
                col2.plotly_chart(
                    viz.plot_umap(adata, color_by=color_by, basis="X_umap_harmony"),
                    use_container_width=True,
                )
            section = st.selectbox("Section", _sections(adata))
            st.plotly_chart(
                viz.plot_spatial_scatter(adata, color_by=color_by, section=section, show_image=True),
                use_container_width=True,
            )


# ==================== Markers Page ====================
elif page == "📊 Markers":
    st.header("📊 Cluster Marker Genes")

    adata = st.session_state.adata
    if adata is None or not st.session_state.clustered:
        st.warning("Please run clustering first")
    else:
        label_col = st.selectbox(
            "Cluster column",
            [c for c in ("harmony_clusters", "clusters") if c in adata.obs],
        )
        col1, col2, col3 = st.columns(3)
        min_pct = col1.number_input("Min detection rate", value=0.1, min_value=0.0, max_value=1.0)
        logfc = col2.number_input("Min log2 fold change", value=0.25, min_value=0.0)
        n_top = col3.number_input("Top genes per cluster", value=10, min_value=1)

        if st.button("Find markers"):
            with st.spinner("Testing genes..."):
                try:
                    st.session_state.markers = cluster_interpretation.find_all_markers(
                        adata, label_col=label_col, min_pct=min_pct, logfc_threshold=logfc
                    )
                except Exception as e:
                    st.error(f"Error: {e}")

        markers = st.session_state.markers
        if markers is not None:
            top = cluster_interpretation.top_markers(markers, n=int(n_top))
            st.dataframe(top)
            if not top.empty:
                st.plotly_chart(
                    cluster_interpretation.plot_marker_heatmap(adata, top, label_col=label_col),
                    use_container_width=True,
                )

            st.subheader("Cluster summary")
            st.dataframe(cluster_interpretation.compute_cluster_summary(adata, label_col))
            group = st.selectbox("Highlight cluster", sorted(adata.obs[label_col].astype(str).unique()))
            st.plotly_chart(
                cluster_interpretation.plot_spatial_highlight(adata, label_col, group),
                use_container_width=True,
            )


# ==================== 3D View Page ====================
elif page == "🧊 3D View":
    st.header("🧊 3D Stack")

    adata = st.session_state.adata
    if adata is None:
        st.warning("Please load sections first")
    else:
        sections = st.multiselect("Sections (bottom to top)", _sections(adata), _sections(adata))
        col1, col2 = st.columns(2)
        z_spacing = col1.number_input("Section spacing", value=100.0, min_value=1.0)
        step = col2.number_input("Grid step (hires pixels)", value=10, min_value=1)

        if st.button("Build stack") and sections:
            with st.spinner("Building stack..."):
                try:
                    st.session_state.stack = stack3d.create_3d_stack(
                        adata, sections=sections, z_spacing=z_spacing, step=int(step)
                    )
                except Exception as e:
                    st.error(f"Error: {e}")

        stack = st.session_state.stack
        if stack is not None:
            feature = st.text_input("Gene or obs column", value="clusters" if st.session_state.clustered else "")
            method = st.radio("Interpolation", ["linear", "nearest"], horizontal=True)
            values = None
            if feature:
                try:
                    values = stack3d.interpolate_feature(adata, stack, feature, method=method)
                except Exception as e:
                    st.error(f"Error: {e}")
            st.plotly_chart(
                stack3d.plot_feature_3d(stack, values, feature=feature or None),
                use_container_width=True,
            )
            st.plotly_chart(
                stack3d.plot_sections_3d(adata, sections, z_spacing=z_spacing),
                use_container_width=True,
            )


# ==================== Export Page ====================
elif page == "💾 Export":
    st.header("💾 Export Results")

    adata = st.session_state.adata
    if adata is None:
        st.warning("Please load sections first")
    else:
        output_dir = st.text_input("Output Directory", value="./results")
        embedding_format = st.selectbox("Embedding Format", ["parquet", "csv"])

        if st.button("Export All"):
            with st.spinner("Exporting..."):
                try:
                    out = Path(output_dir)
                    io.save_snapshot(adata, str(out / "session.h5ad"), "app")
                    exported = export.export_all(adata, output_dir, embedding_format=embedding_format)
                    if st.session_state.markers is not None:
                        exported["markers"] = export.export_markers(
                            st.session_state.markers, str(out / "markers.csv")
                        )
                    if st.session_state.stack is not None:
                        exported["stack_3d"] = export.export_stack(
                            st.session_state.stack,
                            str(out / f"stack_3d.{embedding_format}"),
                            format=embedding_format,
                        )

                    manifest = export.create_manifest(
                        adata, parameters=dict(adata.uns.get("analysis_params", {}))
                    )
                    manifest_file = out / "run_manifest.json"
                    export.save_manifest(manifest, str(manifest_file))

                    st.success("Export complete!")
                    for key, path in exported.items():
                        st.text(f"{key}: {path}")
                    st.text(f"manifest: {manifest_file}")
                except Exception as e:
                    st.error(f"Error: {e}")


st.divider()
st.markdown(
    f"""
    <div style='text-align: center; color: gray;'>
    Seed Spatial v{__version__} | Built with Streamlit
    </div>
    """,
    unsafe_allow_html=True,
)
