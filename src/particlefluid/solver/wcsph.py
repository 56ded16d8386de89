"""
Weakly compressible SPH (WCSPH) solver with static boundary particles.

Per step:
  1) rebuild the grid hash from fluid + boundary positions,
  2) density / pressure pass,
  3) force pass (gravity, pressure, viscosity),
  4) integration pass.

Every pass reads only what the previous pass finished writing; density is
evaluated on the positions from before the integration pass moves them.

References:
- Müller, Charypar, Gross, "Particle-Based Fluid Simulation for Interactive
  Applications" (SCA 2003): kernels, symmetrized pressure force, viscosity.
- Becker & Teschner, "Weakly compressible SPH for free surface flows" (2007).
"""

from __future__ import annotations

import numpy as np

from particlefluid.core.simulator import SimConfig
from particlefluid.core.state import FluidBody, FluidBoundary, FluidType
from particlefluid.neighbors.grid_hash import NeighborPairs
from particlefluid.solver.base import FluidSolver
from particlefluid.sph.density import compute_density_with_boundaries
from particlefluid.sph.pressure import pressure_force_spiky, pressure_state_equation_clamped
from particlefluid.sph.viscosity import viscosity_force_laplacian


class WCSPHFluidSolver(FluidSolver):

    tag = "WCSPH"
    supported_types = (FluidType.WCSPH, FluidType.CSPH)

    def __init__(self, body: FluidBody, boundary: FluidBoundary, config: SimConfig | None = None):
        super().__init__(body, boundary, config)
        self.gas_constant = float(self.config.gas_constant)
        self._pairs: NeighborPairs | None = None
        self._positions: np.ndarray | None = None

    def equation_of_state(self, rho: np.ndarray) -> np.ndarray:
        return pressure_state_equation_clamped(rho, rho0=self.rest_density, k=self.gas_constant)

    def _step(self, dt: float) -> None:
        body = self.body

        self.hash.process(body.positions, self.boundary.positions)
        self._positions = self.global_positions(body.positions)
        self._pairs = self.neighbor_pairs(self._positions)

        self.compute_density_pressure()
        self.compute_forces()
        self.integrate(dt)

        if self.config.debug:
            rho = body.densities
            print(
                f"[{self.tag}] step={self.steps + 1} dt={dt:.3e} "
                f"pairs={len(self._pairs)} "
                f"rho(min/avg/max)={rho.min():.3f}/{rho.mean():.3f}/{rho.max():.3f} "
                f"p(max)={body.pressures.max():.3f}"
            )

    def compute_density_pressure(self) -> None:
        body = self.body
        pairs = self._pairs

        def kernel(batch: slice) -> None:
            sub = pairs.between(batch.start, batch.stop)
            rho = compute_density_with_boundaries(
                self._positions,
                sub,
                self.kernel,
                particle_mass=body.particle_mass,
                boundary_psi=self.boundary_psi,
            )
            body.densities[batch] = rho

        self.dispatch(kernel)

        # pressure only depends on the particle's own density
        body.pressures[:] = self.equation_of_state(body.densities)

    def compute_forces(self) -> None:
        body = self.body
        pairs = self._pairs
        mass = body.particle_mass

        def kernel(batch: slice) -> None:
            sub = pairs.between(batch.start, batch.stop)

            f_pressure = pressure_force_spiky(
                self._positions,
                body.densities,
                body.pressures,
                sub,
                self.kernel,
                particle_mass=mass,
                boundary_psi=self.boundary_psi,
                rest_density=self.rest_density,
            )
            f_visc = viscosity_force_laplacian(
                self._positions,
                body.velocities_sph,
                body.densities,
                sub,
                self.kernel,
                particle_mass=mass,
                viscosity=self.viscosity,
            )

            body.forces[batch, :3] = mass * self.gravity[None, :] + f_pressure + f_visc
            body.forces[batch, 3] = 0.0

        self.dispatch(kernel)

    def integrate(self, dt: float) -> None:
        """
        Semi-implicit Euler on the velocity, time-centered position update:

            v' = v + dt f / m,   v' -= v' * dampning * dt
            x' = x + dt (v + v') / 2

        Walls act only through boundary-particle pressure; positions are not
        clamped here.
        """
        body = self.body
        mass = body.particle_mass

        def kernel(batch: slice) -> None:
            v_old = body.velocities_sph[batch, :3].copy()
            v_new = v_old + dt * body.forces[batch, :3] / mass
            v_new -= v_new * self.dampning * dt

            body.velocities_sph[batch, :3] = v_new
            body.positions[batch, :3] += dt * 0.5 * (v_old + v_new)

        self.dispatch(kernel)
