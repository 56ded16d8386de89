"""
XSPH velocity smoothing, used as the viscosity step of the PBD solver.

References:
- Schechter & Bridson, "Ghost SPH for Animating Water" (2012), XSPH form
- Macklin & Müller, "Position Based Fluids" (2013), Eq. (17)
"""

from __future__ import annotations

import numpy as np

from particlefluid.neighbors.grid_hash import NeighborPairs
from particlefluid.sph.kernels import SmoothingKernel


def xsph_velocity_correction(
    positions: np.ndarray,
    velocities: np.ndarray,
    densities: np.ndarray,
    pairs: NeighborPairs,
    kernel: SmoothingKernel,
    particle_mass: float,
    eps: float,
) -> np.ndarray:
    """
    Compute an XSPH velocity correction dv for each fluid particle.

        dv_i = eps * sum_j (m_j / rho_j) * (v_j - v_i) * W_ij

    Conventions:
    - Only fluid neighbors contribute; returns one row per owning particle of `pairs`.
    - Purely computes dv; the caller decides where to apply it.
    """
    fluid = pairs.subset(pairs.is_fluid)
    i, j = fluid.i, fluid.j

    w = np.atleast_1d(kernel.poly6(positions[i, :3] - positions[j, :3]))
    vij = velocities[j, :3] - velocities[i, :3]
    coeff = float(particle_mass) * w / densities[j]

    return float(eps) * fluid.reduce(coeff[:, None] * vij)
