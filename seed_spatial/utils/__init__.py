"""Utility functions and helpers."""

from .deps import MissingDependency, check_dependencies, require_package, get_install_hint

__all__ = ["MissingDependency", "check_dependencies", "require_package", "get_install_hint"]
