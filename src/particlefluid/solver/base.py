from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Callable

import numpy as np

from particlefluid.core.errors import InvalidConfiguration, SimulationDiverged
from particlefluid.core.simulator import SimConfig
from particlefluid.core.state import BufferRole, FluidBody, FluidBoundary, FluidType
from particlefluid.neighbors.grid_hash import GridHash, NeighborPairs
from particlefluid.sph.kernels import SmoothingKernel


class FluidSolver(ABC):
    """
    Common stepping contract for the fluid solvers.

    The solver borrows a fluid body and a boundary; it owns the grid hash and
    the kernel it builds from them. Construction wiring is shared by all
    variants:

    - kernel / cell size h = 4 * particle radius,
    - one hash grid over the union of fluid and boundary bounds, sized for
      all particles of both sets,
    - dispatch groups = ceil(num_particles / batch_size).

    Each variant implements `_step(dt)` as a fixed sequence of passes. Every
    pass runs over all fluid particles (in batches) and finishes before the
    next one starts.
    """

    THREADS = 128
    READ = BufferRole.READ
    WRITE = BufferRole.WRITE

    # fluid types a variant can drive
    supported_types: tuple[FluidType, ...] = ()

    def __init__(self, body: FluidBody, boundary: FluidBoundary, config: SimConfig | None = None):
        if body.disposed or boundary.disposed:
            raise InvalidConfiguration("cannot build a solver on disposed particle sets")
        if self.supported_types and body.fluid_type not in self.supported_types:
            raise InvalidConfiguration(
                f"{type(self).__name__} cannot drive a {body.fluid_type.name} fluid body"
            )

        self.body = body
        self.boundary = boundary
        self.config = config if config is not None else SimConfig()
        self.config.validate()

        cell_size = body.particle_radius * 4.0
        total = body.num_particles + boundary.num_particles

        self.hash = GridHash(body.bounds.union(boundary.bounds), total, cell_size)
        self.kernel = SmoothingKernel(cell_size)

        self.batch_size = int(self.config.batch_size)
        self.groups = math.ceil(body.num_particles / self.batch_size)

        self.gravity = np.asarray(self.config.gravity, dtype=np.float64).reshape(3)
        self.rest_density = self.config.resolve_rest_density(body)
        self.viscosity = self.config.resolve_viscosity(body)
        self.dampning = self.config.resolve_dampning(body)
        self.boundary_psi = self.config.resolve_boundary_psi(boundary, self.kernel)

        self.steps = 0
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def step_physics(self, dt: float) -> bool:
        """
        Advance the simulation by dt.

        dt <= 0 is not an error: nothing is touched and False is returned.
        """
        if self._disposed:
            raise RuntimeError("solver has been disposed")

        dt = float(dt)
        if not dt > 0.0:
            return False

        self._step(dt)

        if not np.isfinite(self.body.positions).all():
            raise SimulationDiverged(f"non-finite particle positions after step {self.steps + 1} (dt={dt:.3e})")

        self.steps += 1
        return True

    @abstractmethod
    def _step(self, dt: float) -> None:
        ...

    def dispatch(self, kernel_fn: Callable[[slice], None], count: int | None = None) -> None:
        """
        Run `kernel_fn(batch)` for every batch of particle indices.

        Returns only once every batch has run, which is the barrier between
        consecutive passes.
        """
        count = self.body.num_particles if count is None else int(count)
        for start in range(0, count, self.batch_size):
            kernel_fn(slice(start, min(start + self.batch_size, count)))

    def global_positions(self, fluid_positions: np.ndarray) -> np.ndarray:
        """Fluid positions followed by boundary positions (global index order)."""
        if self.boundary.num_particles == 0:
            return fluid_positions[:, :3]
        return np.concatenate([fluid_positions[:, :3], self.boundary.positions[:, :3]], axis=0)

    def neighbor_pairs(self, positions: np.ndarray) -> NeighborPairs:
        """
        Gather exact neighbor pairs for all fluid particles, one dispatch
        batch at a time. `positions` is in global order.
        """
        parts: list[NeighborPairs] = []

        def gather(batch: slice) -> None:
            ids = np.arange(batch.start, batch.stop, dtype=np.int64)
            parts.append(self.hash.neighbor_pairs(ids, positions, radius=self.kernel.radius))

        self.dispatch(gather)
        return NeighborPairs.concat(parts, num_fluid=self.body.num_particles).sorted()

    def dispose(self) -> None:
        if self._disposed:
            return
        self.hash.dispose()
        self._disposed = True

    def __enter__(self) -> FluidSolver:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()
