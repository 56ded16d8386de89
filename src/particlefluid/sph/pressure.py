from __future__ import annotations

import numpy as np

from particlefluid.neighbors.grid_hash import NeighborPairs
from particlefluid.sph.kernels import SmoothingKernel


def pressure_state_equation_linear(rho: np.ndarray, rho0: float, k: float) -> np.ndarray:
    """
    Linear state equation (Müller et al. 2003, Eq. (12)):
        p_i = k (rho_i - rho0)

    Negative pressures are kept, which gives the fluid some cohesion.
    """
    return float(k) * (np.asarray(rho, dtype=np.float64) - float(rho0))


def pressure_state_equation_clamped(rho: np.ndarray, rho0: float, k: float) -> np.ndarray:
    """
    Weakly compressible state equation without tensile pressure:
        p_i = k max(0, rho_i - rho0)
    """
    return np.maximum(pressure_state_equation_linear(rho, rho0=rho0, k=k), 0.0)


def pressure_force_spiky(
    positions: np.ndarray,
    densities: np.ndarray,
    pressures: np.ndarray,
    pairs: NeighborPairs,
    kernel: SmoothingKernel,
    particle_mass: float,
    boundary_psi: float,
    rest_density: float,
) -> np.ndarray:
    """
    Symmetrized pressure force (Müller et al. 2003, Eq. (10)):

        f_i = - sum_j m_j (p_i + p_j) / (2 rho_j) grad W_spiky(x_i - x_j)

    Boundary neighbors mirror the fluid particle's pressure (p_b = p_i),
    use the rest density (rho_b = rho0) and weight psi instead of a mass.
    Only fluid particles receive a force, one row per owning particle of
    `pairs`.
    """
    i, j = pairs.i, pairs.j
    fluid = pairs.is_fluid
    # boundary indices are not valid into densities/pressures
    jf = np.where(fluid, j, 0)

    p_i = pressures[i]
    p_j = np.where(fluid, pressures[jf], p_i)
    rho_j = np.where(fluid, densities[jf], float(rest_density))
    m_j = np.where(fluid, float(particle_mass), float(boundary_psi))

    grad = kernel.spiky_gradient(positions[i, :3] - positions[j, :3])
    coeff = -m_j * (p_i + p_j) / (2.0 * rho_j)

    return pairs.reduce(coeff[:, None] * grad)
