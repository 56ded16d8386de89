from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING

import numpy as np

from particlefluid.core.errors import InvalidConfiguration
from particlefluid.core.state import FluidBody, FluidBoundary, FluidType

if TYPE_CHECKING:
    from particlefluid.solver.base import FluidSolver
    from particlefluid.sph.kernels import SmoothingKernel


class TimeStep(IntEnum):
    """Divides the nominal frame time; larger values mean smaller steps."""

    FAST = 1
    MEDIUM = 2
    SLOW = 4
    VERY_SLOW = 8


# Per fluid-type defaults for particle density and nominal frame dt.
# The SPH variants are tuned for unit density.
DEFAULT_DENSITY = {
    FluidType.PBD: 1000.0,
    FluidType.CSPH: 1.0,
    FluidType.WCSPH: 1.0,
}

DEFAULT_DT = {
    FluidType.PBD: 0.005,
    FluidType.CSPH: 0.0008,
    FluidType.WCSPH: 0.0008,
}


@dataclass(frozen=True)
class SimConfig:
    """
    Solver tuning parameters.

    Fields left as None are derived from the particle sets when a solver is
    built (see the resolve_* methods). The defaults are tuning values, not
    physical constants, and any of them can be overridden.
    """

    gravity: np.ndarray = field(default_factory=lambda: np.array([0.0, -9.81, 0.0]))

    # state equation p = k (rho - rho0)
    gas_constant: float = 1000.0

    # rest density; None -> body density (PBD) or body density * rest_density_scale (SPH)
    rest_density: float | None = None
    rest_density_scale: float = 0.5

    # None -> 0.25 for the SPH variants, body viscosity (XSPH factor) for PBD
    viscosity: float | None = None
    sph_viscosity: float = 0.25

    # None -> body dampning
    dampning: float | None = None

    # boundary weight; None -> rho_b^2 / (315 / (64 pi h^3))
    boundary_psi: float | None = None

    # particles per dispatch batch
    batch_size: int = 128

    # PBD: substeps per step and density-constraint iterations per substep
    solver_iterations: int = 2
    constraint_iterations: int = 2
    lambda_epsilon: float = 1.0

    # one print line per step
    debug: bool = False

    def validate(self) -> None:
        if np.asarray(self.gravity).reshape(-1).shape != (3,):
            raise InvalidConfiguration("gravity must be a 3-vector")
        if int(self.batch_size) <= 0:
            raise InvalidConfiguration("batch_size must be > 0")
        if int(self.solver_iterations) <= 0 or int(self.constraint_iterations) <= 0:
            raise InvalidConfiguration("solver/constraint iterations must be > 0")
        if self.rest_density is not None and float(self.rest_density) <= 0.0:
            raise InvalidConfiguration("rest_density must be > 0")
        if float(self.lambda_epsilon) < 0.0:
            raise InvalidConfiguration("lambda_epsilon must be >= 0")

    def resolve_rest_density(self, body: FluidBody) -> float:
        if self.rest_density is not None:
            return float(self.rest_density)
        if body.fluid_type == FluidType.PBD:
            return float(body.density)
        return float(body.density) * float(self.rest_density_scale)

    def resolve_viscosity(self, body: FluidBody) -> float:
        if self.viscosity is not None:
            return float(self.viscosity)
        if body.fluid_type == FluidType.PBD:
            return float(body.viscosity)
        return float(self.sph_viscosity)

    def resolve_dampning(self, body: FluidBody) -> float:
        return float(body.dampning if self.dampning is None else self.dampning)

    def resolve_boundary_psi(self, boundary: FluidBoundary, kernel: SmoothingKernel) -> float:
        if self.boundary_psi is not None:
            return float(self.boundary_psi)
        return float(boundary.density) ** 2 / (315.0 / (64.0 * np.pi * kernel.radius3))


def sim_config_from_scene(scene: dict) -> SimConfig:
    """
    Build a SimConfig from the optional "solver" section of a scene:

      "solver": {"gas_constant": 1000, "rest_density": null, "viscosity": null,
                 "solver_iterations": 2, "constraint_iterations": 2, ...}
    """
    solver_cfg = scene.get("solver", {}) or {}
    gravity = scene.get("forces", {}).get("gravity", [0.0, -9.81, 0.0])

    def opt(key: str) -> float | None:
        value = solver_cfg.get(key)
        return None if value is None else float(value)

    cfg = SimConfig(
        gravity=np.array(gravity, dtype=np.float64),
        gas_constant=float(solver_cfg.get("gas_constant", 1000.0)),
        rest_density=opt("rest_density"),
        rest_density_scale=float(solver_cfg.get("rest_density_scale", 0.5)),
        viscosity=opt("viscosity"),
        sph_viscosity=float(solver_cfg.get("sph_viscosity", 0.25)),
        dampning=opt("dampning"),
        boundary_psi=opt("boundary_psi"),
        batch_size=int(solver_cfg.get("batch_size", 128)),
        solver_iterations=int(solver_cfg.get("solver_iterations", 2)),
        constraint_iterations=int(solver_cfg.get("constraint_iterations", 2)),
        lambda_epsilon=float(solver_cfg.get("lambda_epsilon", 1.0)),
        debug=bool(solver_cfg.get("debug", False)),
    )
    cfg.validate()
    return cfg


def create_solver(body: FluidBody, boundary: FluidBoundary, cfg: SimConfig | None = None) -> FluidSolver:
    """Pick the solver variant matching the body's fluid type."""
    # Lazy imports: the solvers import SimConfig from this module.
    if body.fluid_type == FluidType.PBD:
        from particlefluid.solver.pbd import PBDFluidSolver

        return PBDFluidSolver(body, boundary, cfg)

    if body.fluid_type == FluidType.CSPH:
        from particlefluid.solver.csph import CSPHFluidSolver

        return CSPHFluidSolver(body, boundary, cfg)

    if body.fluid_type == FluidType.WCSPH:
        from particlefluid.solver.wcsph import WCSPHFluidSolver

        return WCSPHFluidSolver(body, boundary, cfg)

    raise InvalidConfiguration(f"Unknown fluid type: {body.fluid_type!r}")


def step_simulation(solver: FluidSolver, dt: float, time_step: TimeStep | int = TimeStep.FAST) -> float:
    """
    Advance one frame: a single solver step of dt / time_step.

    Returns the dt handed to the solver.
    """
    divisor = int(time_step)
    if divisor not in {t.value for t in TimeStep}:
        raise InvalidConfiguration(f"time step divisor must be one of 1, 2, 4, 8, got {divisor}")

    sub_dt = float(dt) / divisor
    solver.step_physics(sub_dt)
    return sub_dt
