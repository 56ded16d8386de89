from __future__ import annotations

from pathlib import Path

import numpy as np

from particlefluid.core.state import FluidBody, FluidBoundary


def export_particles_csv(path: str | Path, body: FluidBody, boundary: FluidBoundary | None = None) -> None:
    """
    Write fluid particles (then boundary particles, if given) to CSV.

    Columns:
      id, is_boundary, x, y, z, vx, vy, vz, rho, p, m

    Boundary rows carry zero velocity, zero pressure, the boundary density
    and zero mass.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    n = body.num_particles
    vel = body.velocity

    rows = [
        np.column_stack(
            [
                np.arange(n, dtype=np.int64),
                np.zeros((n,), dtype=np.int64),
                body.positions[:, :3],
                vel[:, :3],
                body.densities,
                body.pressures,
                np.full((n,), body.particle_mass),
            ]
        )
    ]

    if boundary is not None and boundary.num_particles > 0:
        m = boundary.num_particles
        rows.append(
            np.column_stack(
                [
                    np.arange(n, n + m, dtype=np.int64),
                    np.ones((m,), dtype=np.int64),
                    boundary.positions[:, :3],
                    np.zeros((m, 3)),
                    np.full((m,), boundary.density),
                    np.zeros((m,)),
                    np.zeros((m,)),
                ]
            )
        )

    table = np.concatenate(rows, axis=0)
    fmt = "%d,%d," + ",".join(["%.17g"] * 9)

    with path.open("w", encoding="utf-8", newline="\n") as f:
        f.write("id,is_boundary,x,y,z,vx,vy,vz,rho,p,m\n")
        np.savetxt(f, table, delimiter=",", fmt=fmt)
