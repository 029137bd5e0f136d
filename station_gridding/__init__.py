"""
Interpolation of weather station observations onto regular grids covering a
region, using Inverse Distance Weighting or Kriging with fitted variogram
models.
"""

from .grid import grid_from_boundary, mask_grid
from .idw import idw, idw_grid, idw_power_sweep
from .kriging import (
    OrdinaryKriging,
    SimpleKriging,
    UniversalKriging,
    krige,
    krige_grid,
)
from .validation import cross_validate, cv_summary
from .variogram import (
    ExponentialVariogram,
    GaussianVariogram,
    LinearVariogram,
    MaternVariogram,
    NuggetVariogram,
    PowerVariogram,
    SphericalVariogram,
    empirical_variogram,
    fit_variogram,
    variogram_model,
)

__all__ = [
    "ExponentialVariogram",
    "GaussianVariogram",
    "LinearVariogram",
    "MaternVariogram",
    "NuggetVariogram",
    "OrdinaryKriging",
    "PowerVariogram",
    "SimpleKriging",
    "SphericalVariogram",
    "UniversalKriging",
    "cross_validate",
    "cv_summary",
    "empirical_variogram",
    "fit_variogram",
    "grid_from_boundary",
    "idw",
    "idw_grid",
    "idw_power_sweep",
    "krige",
    "krige_grid",
    "mask_grid",
    "variogram_model",
]

__version__ = "0.1.0"
