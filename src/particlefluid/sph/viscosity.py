from __future__ import annotations

import numpy as np

from particlefluid.neighbors.grid_hash import NeighborPairs
from particlefluid.sph.kernels import SmoothingKernel


def viscosity_force_laplacian(
    positions: np.ndarray,
    velocities: np.ndarray,
    densities: np.ndarray,
    pairs: NeighborPairs,
    kernel: SmoothingKernel,
    particle_mass: float,
    viscosity: float,
) -> np.ndarray:
    """
    Viscosity force (Müller et al. 2003, Eq. (14)) over fluid neighbors:

        f_i = mu sum_j m_j (v_j - v_i) / rho_j lap W_visc(x_i - x_j)

    Boundary particles are static and do not take part.
    """
    fluid = pairs.subset(pairs.is_fluid)
    i, j = fluid.i, fluid.j

    lap = kernel.viscosity_laplacian(positions[i, :3] - positions[j, :3])
    lap = np.atleast_1d(lap)
    vij = velocities[j, :3] - velocities[i, :3]
    coeff = float(viscosity) * float(particle_mass) * lap / densities[j]

    return fluid.reduce(coeff[:, None] * vij)
