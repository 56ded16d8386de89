from __future__ import annotations

import numpy as np

from particlefluid.neighbors.grid_hash import NeighborPairs
from particlefluid.sph.kernels import SmoothingKernel


def compute_density_summation(
    positions: np.ndarray,
    pairs: NeighborPairs,
    kernel: SmoothingKernel,
    particle_mass: float,
) -> np.ndarray:
    """
    Density by SPH summation over fluid neighbors only:

        rho_i = m W(0) + sum_j m W_ij

    Boundary pairs in `pairs` are ignored.
    """
    fluid = pairs.subset(pairs.is_fluid)
    r = positions[fluid.i, :3] - positions[fluid.j, :3]
    w = kernel.poly6(r)

    rho = np.full((pairs.num_owners,), float(particle_mass) * kernel.poly6_zero, dtype=np.float64)
    rho += float(particle_mass) * fluid.reduce(w)
    return rho


def compute_density_with_boundaries(
    positions: np.ndarray,
    pairs: NeighborPairs,
    kernel: SmoothingKernel,
    particle_mass: float,
    boundary_psi: float,
) -> np.ndarray:
    """
    Density including static boundary samples.

        rho_i = m W(0) + sum_f m W_if + sum_b psi W_ib

    `positions` is the global (fluid, then boundary) position array. The self
    term is always present, so an isolated particle has rho = m W(0) > 0 and
    later divisions by density are safe.

    Reference:
    - Akinci et al., "Versatile Rigid-Fluid Coupling for Incompressible SPH"
      (2012): boundary particles contribute through a per-particle volume
      weight psi instead of a fluid mass. Here psi is a single tuned constant.
    """
    r = positions[pairs.i, :3] - positions[pairs.j, :3]
    w = kernel.poly6(r)
    weight = np.where(pairs.is_fluid, float(particle_mass), float(boundary_psi))

    rho = np.full((pairs.num_owners,), float(particle_mass) * kernel.poly6_zero, dtype=np.float64)
    rho += pairs.reduce(weight * w)
    return rho
