"""Types and Literals used by station_gridding functions and methods."""

from typing import Literal

KrigMethod = Literal["simple", "ordinary", "universal"]

# Short model names, as used by gstat's vgm
ModelName = Literal["Nug", "Lin", "Pow", "Sph", "Exp", "Gau", "Mat"]

MaternModel = Literal["sklearn", "gstat", "karspeck"]

# Weighting used when fitting a variogram model to a sample variogram.
#   1: N_j, 2: N_j / gamma_j^2, 6: unweighted, 7: N_j / h_j^2
FitMethod = Literal[1, 2, 6, 7]
