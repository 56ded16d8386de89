"""
Per-step diagnostics for fluid runs.

Statistics are taken over fluid particles only; boundary particles are
static and only show up in `n_boundary` and in the neighbor counts. The
module never writes particle state; it does rebuild the solver's grid
hash.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from particlefluid.solver.base import FluidSolver


@dataclass(frozen=True)
class StepDiagnostics:
    step: int
    dt: float
    n_fluid: int
    n_boundary: int

    v_max: float

    rho_min: float
    rho_mean: float
    rho_max: float

    # (rho - rho0) / rho0
    rho_rel_err_min: float
    rho_rel_err_mean: float
    rho_rel_err_max: float

    # for PBD this holds the constraint multipliers
    p_min: float
    p_mean: float
    p_max: float

    neigh_min: int
    neigh_mean: float
    neigh_max: int

    def format_line(self) -> str:
        return (
            f"[STEP {self.step:04d}] dt={self.dt:.3e} "
            f"|v|max={self.v_max:.3e} "
            f"rho(min/avg/max)={self.rho_min:.3f}/{self.rho_mean:.3f}/{self.rho_max:.3f} "
            f"err% (avg)={100.0 * self.rho_rel_err_mean:.2f} "
            f"p(min/avg/max)={self.p_min:.3f}/{self.p_mean:.3f}/{self.p_max:.3f} "
            f"neigh(min/avg/max)={self.neigh_min}/{self.neigh_mean:.1f}/{self.neigh_max}"
        )


def compute_step_diagnostics(step: int, dt: float, solver: FluidSolver) -> StepDiagnostics:
    """
    Snapshot of the solver state after a step.

    Neighbor counts come from a fresh grid build on the current positions, so
    they describe the state the next step will start from.
    """
    body = solver.body
    rho0 = float(solver.rest_density)

    vnorm = np.linalg.norm(body.velocity[:, :3], axis=1)

    rho = body.densities
    rel_err = (rho - rho0) / rho0
    p = body.pressures

    solver.hash.process(body.positions, solver.boundary.positions)
    positions = solver.global_positions(body.positions)
    pairs = solver.neighbor_pairs(positions)
    neigh = np.bincount(pairs.i, minlength=body.num_particles)

    return StepDiagnostics(
        step=int(step),
        dt=float(dt),
        n_fluid=int(body.num_particles),
        n_boundary=int(solver.boundary.num_particles),
        v_max=float(vnorm.max()),
        rho_min=float(rho.min()),
        rho_mean=float(rho.mean()),
        rho_max=float(rho.max()),
        rho_rel_err_min=float(rel_err.min()),
        rho_rel_err_mean=float(rel_err.mean()),
        rho_rel_err_max=float(rel_err.max()),
        p_min=float(p.min()),
        p_mean=float(p.mean()),
        p_max=float(p.max()),
        neigh_min=int(neigh.min()),
        neigh_mean=float(neigh.mean()),
        neigh_max=int(neigh.max()),
    )
