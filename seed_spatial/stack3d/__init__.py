"""3D reconstruction from aligned sections."""

from .stack import create_3d_stack
from .interpolation import interpolate_feature
from .plots import plot_feature_3d, plot_sections_3d

__all__ = [
    "create_3d_stack",
    "interpolate_feature",
    "plot_feature_3d",
    "plot_sections_3d",
]
