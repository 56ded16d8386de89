from __future__ import annotations

import numpy as np

from particlefluid.solver.wcsph import WCSPHFluidSolver
from particlefluid.sph.pressure import pressure_state_equation_linear


class CSPHFluidSolver(WCSPHFluidSolver):
    """
    Classic SPH (Müller et al. 2003).

    Same density -> force -> integrate passes as WCSPH, but the state
    equation is the plain linear one, so particles below rest density pull
    on their neighbors.
    """

    tag = "CSPH"

    def equation_of_state(self, rho: np.ndarray) -> np.ndarray:
        return pressure_state_equation_linear(rho, rho0=self.rest_density, k=self.gas_constant)
