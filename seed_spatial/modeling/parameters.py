"""Parameter management for the expression analysis steps."""

from dataclasses import asdict, dataclass
from typing import Literal, Optional


@dataclass
class AnalysisParameters:
    """Parameters for normalization, embedding, clustering and integration."""

    # Normalization
    normalization: Literal["pearson_residuals", "log"] = "pearson_residuals"
    target_sum: Optional[float] = 1e4
    n_top_genes: Optional[int] = 3000
    theta: float = 100.0  # overdispersion of the Pearson residual model
    clip: Optional[float] = None

    # Dimensionality reduction and clustering
    n_pcs: int = 30
    n_neighbors: int = 15
    min_dist: float = 0.3
    resolution: float = 0.8

    # Batch-effect correction
    batch_key: str = "section"
    harmony_theta: float = 2.0
    harmony_max_iter: int = 10

    random_state: int = 42

    def to_dict(self):
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict):
        """Create from dictionary."""
        return cls(**{k: v for k, v in d.items() if k in cls.__annotations__})


def get_default_parameters(
    normalization: Literal["pearson_residuals", "log"] = "pearson_residuals",
) -> AnalysisParameters:
    """
    Get default parameters for a normalization flavour.

    Parameters
    ----------
    normalization : {'pearson_residuals', 'log'}
        Normalization method.

    Returns
    -------
    AnalysisParameters
        Defaults for the chosen method.
    """
    if normalization == "pearson_residuals":
        return AnalysisParameters(normalization="pearson_residuals", n_top_genes=3000, n_pcs=30)
    elif normalization == "log":
        return AnalysisParameters(
            normalization="log", target_sum=1e4, n_top_genes=2000, n_pcs=30
        )
    else:
        raise ValueError(f"Unknown normalization: {normalization}")


def validate_parameters(params: AnalysisParameters) -> tuple[bool, list[str]]:
    """
    Validate parameters.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of error messages)
    """
    errors = []

    if params.normalization not in ("pearson_residuals", "log"):
        errors.append(f"Unknown normalization: {params.normalization}")
    if params.n_top_genes is not None and params.n_top_genes < 2:
        errors.append("n_top_genes must be >= 2")
    if params.theta <= 0:
        errors.append("theta must be > 0")
    if params.n_pcs < 2:
        errors.append("n_pcs must be >= 2")
    if params.n_neighbors < 2:
        errors.append("n_neighbors must be >= 2")
    if params.resolution <= 0:
        errors.append("resolution must be > 0")
    if params.harmony_max_iter < 1:
        errors.append("harmony_max_iter must be >= 1")

    return len(errors) == 0, errors
