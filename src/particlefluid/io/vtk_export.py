"""
VTK legacy ASCII PolyData writer for particle snapshots (ParaView).

One vertex per particle; point data: is_boundary, rho, p, v.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np

from particlefluid.core.state import FluidBody, FluidBoundary


def _write_block(f, values: np.ndarray, fmt: str) -> None:
    np.savetxt(f, values, fmt=fmt)


def export_particles_vtk_legacy(path: str | Path, body: FluidBody, boundary: FluidBoundary | None = None) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    pos = [body.positions[:, :3]]
    vel = [body.velocity[:, :3]]
    is_b = [np.zeros((body.num_particles,), dtype=np.int32)]
    rho = [body.densities]
    p = [body.pressures]

    if boundary is not None and boundary.num_particles > 0:
        m = boundary.num_particles
        pos.append(boundary.positions[:, :3])
        vel.append(np.zeros((m, 3)))
        is_b.append(np.ones((m,), dtype=np.int32))
        rho.append(np.full((m,), boundary.density))
        p.append(np.zeros((m,)))

    pos3 = np.concatenate(pos, axis=0)
    vel3 = np.concatenate(vel, axis=0)
    n = pos3.shape[0]

    with path.open("w", encoding="utf-8", newline="\n") as f:
        f.write("# vtk DataFile Version 3.0\n")
        f.write(f"particlefluid particles ({body.fluid_type.name})\n")
        f.write("ASCII\n")
        f.write("DATASET POLYDATA\n")

        f.write(f"POINTS {n} float\n")
        _write_block(f, pos3, "%.9g")

        f.write(f"VERTICES {n} {2 * n}\n")
        _write_block(f, np.column_stack([np.ones((n,), dtype=np.int64), np.arange(n)]), "%d")

        f.write(f"POINT_DATA {n}\n")

        f.write("SCALARS is_boundary int 1\n")
        f.write("LOOKUP_TABLE default\n")
        _write_block(f, np.concatenate(is_b), "%d")

        f.write("SCALARS rho float 1\n")
        f.write("LOOKUP_TABLE default\n")
        _write_block(f, np.concatenate(rho), "%.9g")

        f.write("SCALARS p float 1\n")
        f.write("LOOKUP_TABLE default\n")
        _write_block(f, np.concatenate(p), "%.9g")

        f.write("VECTORS v float\n")
        _write_block(f, vel3, "%.9g")
