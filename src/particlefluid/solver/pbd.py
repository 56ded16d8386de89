"""
Position Based Fluids solver with static boundary particles.

Each step is split into `solver_iterations` substeps. Per substep:

  1) predict:    v* = v + dt g (damped), x* = x + dt v*
  2) rebuild the grid hash from predicted + boundary positions
  3) repeat `constraint_iterations` times:
       a) density / lambda pass (reads predicted[READ])
       b) position correction pass (predicted[WRITE] = predicted[READ] + dx)
       c) swap roles
  4) collision pass against boundary particles
  5) velocity from positional change: v = (x* - x) / dt
  6) XSPH viscosity
  7) x = x*

Predicted positions and velocities are double buffered: a pass reads every
neighbor's value from the READ half and writes only its own slot in the
WRITE half, then the roles flip.

References:
- Macklin & Müller, "Position Based Fluids" (SIGGRAPH 2013)
  - Eq. (1): density constraint C_i = rho_i / rho0 - 1
  - Eq. (11): lambda_i = -C_i / (sum_k |grad_k C_i|^2 + eps)
  - Eq. (12): position update dx_i = 1/rho0 sum_j (lambda_i + lambda_j) grad W_ij
  - Eq. (17): XSPH viscosity
"""

from __future__ import annotations

import numpy as np

from particlefluid.core.simulator import SimConfig
from particlefluid.core.state import FluidBody, FluidBoundary, FluidType
from particlefluid.neighbors.grid_hash import NeighborPairs
from particlefluid.solver.base import FluidSolver
from particlefluid.sph.density import compute_density_with_boundaries
from particlefluid.sph.kernels import SmoothingKernel
from particlefluid.sph.xsph import xsph_velocity_correction


def _compute_lambda(
    positions: np.ndarray,
    densities: np.ndarray,
    pairs: NeighborPairs,
    kernel: SmoothingKernel,
    particle_mass: float,
    boundary_psi: float,
    rest_density: float,
    eps: float,
) -> np.ndarray:
    """
    Lagrange multiplier of the density constraint (Eq. (11)).

    The constraint is clamped at zero so only compression is corrected.
    Boundary particles do not move, so their own gradient terms drop out of
    the denominator, but they do enter grad_i C_i.
    """
    weight = np.where(pairs.is_fluid, float(particle_mass), float(boundary_psi))
    grad = kernel.spiky_gradient(positions[pairs.i, :3] - positions[pairs.j, :3])
    grad_j = (weight / rest_density)[:, None] * grad

    grad_i = pairs.reduce(grad_j)
    sum_grad2 = pairs.reduce(np.where(pairs.is_fluid, np.einsum("ij,ij->i", grad_j, grad_j), 0.0))
    sum_grad2 += np.einsum("ij,ij->i", grad_i, grad_i)

    constraint = np.maximum(densities[pairs.owners] / rest_density - 1.0, 0.0)
    return -constraint / (sum_grad2 + eps)


def _position_correction(
    positions: np.ndarray,
    lambdas: np.ndarray,
    pairs: NeighborPairs,
    kernel: SmoothingKernel,
    particle_mass: float,
    boundary_psi: float,
    rest_density: float,
) -> np.ndarray:
    """
    Position update (Eq. (12)); boundary neighbors contribute with lambda_j = 0
    and weight psi.
    """
    fluid = pairs.is_fluid
    jf = np.where(fluid, pairs.j, 0)

    lam_i = lambdas[pairs.i]
    lam_j = np.where(fluid, lambdas[jf], 0.0)
    weight = np.where(fluid, float(particle_mass), float(boundary_psi))

    grad = kernel.spiky_gradient(positions[pairs.i, :3] - positions[pairs.j, :3])
    coeff = weight * (lam_i + lam_j) / rest_density
    return pairs.reduce(coeff[:, None] * grad)


def _boundary_push_out(positions: np.ndarray, pairs: NeighborPairs, min_distance: float) -> np.ndarray:
    """
    Displacement that moves fluid particles out of boundary particles closer
    than `min_distance`, averaged over all penetrated boundary particles.
    """
    solid = pairs.subset(pairs.is_boundary)
    d = positions[solid.i, :3] - positions[solid.j, :3]
    dist = np.linalg.norm(d, axis=1)

    hit = (dist < min_distance) & (dist > 0.0)
    solid = solid.subset(hit)
    d, dist = d[hit], dist[hit]

    push = ((min_distance - dist) / dist)[:, None] * d
    total = solid.reduce(push)
    count = solid.reduce(np.ones_like(dist))
    return total / np.maximum(count, 1.0)[:, None]


class PBDFluidSolver(FluidSolver):

    tag = "PBD"
    supported_types = (FluidType.PBD,)

    def __init__(self, body: FluidBody, boundary: FluidBoundary, config: SimConfig | None = None):
        super().__init__(body, boundary, config)
        self.solver_iterations = int(self.config.solver_iterations)
        self.constraint_iterations = int(self.config.constraint_iterations)
        self.lambda_epsilon = float(self.config.lambda_epsilon)

    def _step(self, dt: float) -> None:
        sub_dt = dt / self.solver_iterations
        for _ in range(self.solver_iterations):
            self._substep(sub_dt)

        if self.config.debug:
            rho = self.body.densities
            err = np.mean(np.abs(rho / self.rest_density - 1.0))
            print(
                f"[{self.tag}] step={self.steps + 1} dt={dt:.3e} "
                f"iters={self.solver_iterations}x{self.constraint_iterations} "
                f"rho(min/avg/max)={rho.min():.3f}/{rho.mean():.3f}/{rho.max():.3f} "
                f"rho_err_avg={err:.3e}"
            )

    def _substep(self, dt: float) -> None:
        body = self.body

        self.predict_positions(dt)
        self.hash.process(body.predicted.read, self.boundary.positions)

        for _ in range(self.constraint_iterations):
            positions = self.global_positions(body.predicted.read)
            pairs = self.neighbor_pairs(positions)
            self.compute_density(positions, pairs)
            self.solve_constraint(positions, pairs)

        positions = self.global_positions(body.predicted.read)
        pairs = self.neighbor_pairs(positions)
        self.solve_collisions(positions, pairs)

        self.update_velocities(dt)

        positions = self.global_positions(body.predicted.read)
        self.solve_viscosity(positions, self.neighbor_pairs(positions))

        self.update_positions()

    def predict_positions(self, dt: float) -> None:
        body = self.body
        v_read, v_write = body.velocities.read, body.velocities.write
        p_write = body.predicted.write

        def kernel(batch: slice) -> None:
            v = v_read[batch, :3] + dt * self.gravity[None, :]
            v -= v * self.dampning * dt
            v_write[batch, :3] = v
            p_write[batch, :3] = body.positions[batch, :3] + dt * v

        self.dispatch(kernel)
        body.velocities.swap()
        body.predicted.swap()

    def compute_density(self, positions: np.ndarray, pairs: NeighborPairs) -> None:
        """Densities and constraint multipliers; lambdas are kept in `pressures`."""
        body = self.body

        def density_kernel(batch: slice) -> None:
            rho = compute_density_with_boundaries(
                positions,
                pairs.between(batch.start, batch.stop),
                self.kernel,
                particle_mass=body.particle_mass,
                boundary_psi=self.boundary_psi,
            )
            body.densities[batch] = rho

        self.dispatch(density_kernel)

        def lambda_kernel(batch: slice) -> None:
            lam = _compute_lambda(
                positions,
                body.densities,
                pairs.between(batch.start, batch.stop),
                self.kernel,
                particle_mass=body.particle_mass,
                boundary_psi=self.boundary_psi,
                rest_density=self.rest_density,
                eps=self.lambda_epsilon,
            )
            body.pressures[batch] = lam

        self.dispatch(lambda_kernel)

    def solve_constraint(self, positions: np.ndarray, pairs: NeighborPairs) -> None:
        body = self.body
        p_read, p_write = body.predicted.read, body.predicted.write

        def kernel(batch: slice) -> None:
            dx = _position_correction(
                positions,
                body.pressures,
                pairs.between(batch.start, batch.stop),
                self.kernel,
                particle_mass=body.particle_mass,
                boundary_psi=self.boundary_psi,
                rest_density=self.rest_density,
            )
            p_write[batch, :3] = p_read[batch, :3] + dx

        self.dispatch(kernel)
        body.predicted.swap()

    def solve_collisions(self, positions: np.ndarray, pairs: NeighborPairs) -> None:
        """
        Push fluid particles out of boundary particles they overlap and keep
        them inside the boundary's bounds.
        """
        body = self.body
        p_read, p_write = body.predicted.read, body.predicted.write
        bounds = self.boundary.bounds

        def kernel(batch: slice) -> None:
            dx = _boundary_push_out(positions, pairs.between(batch.start, batch.stop), body.particle_diameter)
            x = p_read[batch, :3] + dx
            if bounds is not None:
                x = np.clip(x, bounds.min, bounds.max)
            p_write[batch, :3] = x

        self.dispatch(kernel)
        body.predicted.swap()

    def update_velocities(self, dt: float) -> None:
        body = self.body
        p_read = body.predicted.read
        v_write = body.velocities.write

        def kernel(batch: slice) -> None:
            v_write[batch, :3] = (p_read[batch, :3] - body.positions[batch, :3]) / dt

        self.dispatch(kernel)
        body.velocities.swap()

    def solve_viscosity(self, positions: np.ndarray, pairs: NeighborPairs) -> None:
        body = self.body
        v_read, v_write = body.velocities.read, body.velocities.write

        def kernel(batch: slice) -> None:
            dv = xsph_velocity_correction(
                positions,
                v_read,
                body.densities,
                pairs.between(batch.start, batch.stop),
                self.kernel,
                particle_mass=body.particle_mass,
                eps=self.viscosity,
            )
            v_write[batch, :3] = v_read[batch, :3] + dv

        self.dispatch(kernel)
        body.velocities.swap()

    def update_positions(self) -> None:
        body = self.body
        p_read = body.predicted.read

        def kernel(batch: slice) -> None:
            body.positions[batch, :3] = p_read[batch, :3]

        self.dispatch(kernel)
