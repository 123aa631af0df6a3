"""Checks for the analysis backends that scanpy imports lazily."""

import importlib
import logging
import shutil
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# import name -> distribution name
ANALYSIS_BACKENDS = {
    "harmonypy": "harmonypy",
    "igraph": "igraph",
    "umap": "umap-learn",
}


class MissingDependency(Exception):
    """An analysis backend could not be imported."""

    def __init__(self, package_name: str, install_hint: str):
        self.package_name = package_name
        self.install_hint = install_hint
        super().__init__(f"Missing dependency: {package_name}\n{install_hint}")


def get_install_hint(package_name: str, pip_package: Optional[str] = None) -> str:
    """
    Build the install instructions shown for a missing backend.

    ``uv pip`` is offered first when ``uv`` is on the PATH.
    """
    dist = pip_package or ANALYSIS_BACKENDS.get(package_name, package_name)
    installers = ["uv pip", "pip"] if shutil.which("uv") else ["pip"]
    commands = [f"{installer} install {dist}" for installer in installers]

    if len(commands) == 1:
        return f"Install with: {commands[0]}"
    return "Install with one of:\n" + "\n".join(f"  - {cmd}" for cmd in commands)


def _importable(import_name: str) -> bool:
    try:
        importlib.import_module(import_name)
    except ImportError:
        return False
    return True


def require_package(import_name: str, pip_package: Optional[str] = None) -> None:
    """
    Fail early when a backend needed by the next analysis step is absent.

    Parameters
    ----------
    import_name : str
        Module name as imported, e.g. ``'harmonypy'``.
    pip_package : str, optional
        Distribution name when it differs from the module name.

    Raises
    ------
    MissingDependency
        With install instructions in ``install_hint``.
    """
    if _importable(import_name):
        return
    logger.error(f"Backend '{import_name}' is not installed")
    raise MissingDependency(import_name, get_install_hint(import_name, pip_package))


def check_dependencies(
    packages: Optional[Dict[str, str]] = None,
) -> Tuple[List[str], List[str]]:
    """Split ``packages`` (default: the analysis backends) into available and missing."""
    packages = packages if packages is not None else ANALYSIS_BACKENDS
    available = [name for name in packages if _importable(name)]
    missing = [name for name in packages if name not in available]
    for name in missing:
        logger.warning(f"Backend '{name}' is missing; install {packages[name]}")
    return available, missing
