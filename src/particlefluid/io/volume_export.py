"""
Density volume: the SPH density field sampled on a voxel grid.

A volume renderer ray-marches this field to draw the fluid surface. Each
voxel center x gets

    rho(x) = sum_j m W_poly6(x - x_j)

over the fluid particles found through the grid hash table / index map, so
the hash must have been processed on the current positions.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np

from particlefluid.core.errors import InvalidConfiguration
from particlefluid.core.state import Bounds, FluidBody
from particlefluid.neighbors.grid_hash import GridHash
from particlefluid.sph.kernels import SmoothingKernel


class DensityVolume:
    """Voxel grid over `bounds`, filled in blocks of THREADS^3 voxels."""

    THREADS = 8

    def __init__(self, bounds: Bounds, voxel_size: float):
        voxel_size = float(voxel_size)
        if not np.isfinite(voxel_size) or voxel_size <= 0.0:
            raise InvalidConfiguration(f"voxel_size must be > 0, got {voxel_size}")
        if bounds is None or bounds.is_degenerate:
            raise InvalidConfiguration("volume bounds are degenerate")

        self.voxel_size = voxel_size
        self.origin = bounds.min.astype(np.float64, copy=True)
        self.dims = tuple(int(d) for d in np.ceil(bounds.size / voxel_size).astype(np.int64))
        self.groups = tuple(-(-d // self.THREADS) for d in self.dims)

        nx, ny, nz = self.dims
        self.values = np.zeros((nz, ny, nx), dtype=np.float64)

    @property
    def world_bounds(self) -> Bounds:
        return Bounds(min=self.origin.copy(), max=self.origin + np.array(self.dims) * self.voxel_size)

    def voxel_centers(self, ix: np.ndarray, iy: np.ndarray, iz: np.ndarray) -> np.ndarray:
        idx = np.stack([ix, iy, iz], axis=-1).astype(np.float64)
        return self.origin + (idx + 0.5) * self.voxel_size

    def fill(self, body: FluidBody, grid: GridHash, kernel: SmoothingKernel) -> np.ndarray:
        t = self.THREADS
        gx, gy, gz = self.groups
        for bz in range(gz):
            for by in range(gy):
                for bx in range(gx):
                    self._fill_block(bx * t, by * t, bz * t, body, grid, kernel)
        return self.values

    def _fill_block(self, x0: int, y0: int, z0: int, body: FluidBody, grid: GridHash, kernel: SmoothingKernel) -> None:
        nx, ny, nz = self.dims
        t = self.THREADS
        x1, y1, z1 = min(x0 + t, nx), min(y0 + t, ny), min(z0 + t, nz)

        iz, iy, ix = np.meshgrid(
            np.arange(z0, z1), np.arange(y0, y1), np.arange(x0, x1), indexing="ij"
        )
        centers = self.voxel_centers(ix.ravel(), iy.ravel(), iz.ravel())

        rows, j = grid.candidates(grid.cell_coords(centers))
        fluid = j < grid.num_fluid
        rows, j = rows[fluid], j[fluid]

        w = kernel.poly6(centers[rows] - body.positions[j, :3])
        rho = body.particle_mass * np.bincount(rows, weights=w, minlength=centers.shape[0])

        self.values[z0:z1, y0:y1, x0:x1] = rho.reshape(z1 - z0, y1 - y0, x1 - x0)


def fill_density_volume(body: FluidBody, grid: GridHash, kernel: SmoothingKernel, voxel_size: float | None = None) -> DensityVolume:
    """Volume over the grid bounds; the voxel size defaults to the particle radius."""
    volume = DensityVolume(grid.bounds, body.particle_radius if voxel_size is None else voxel_size)
    volume.fill(body, grid, kernel)
    return volume


def export_volume_vtk(path: str | Path, volume: DensityVolume) -> None:
    """VTK legacy ASCII STRUCTURED_POINTS with one `rho` scalar per voxel (x fastest)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    nx, ny, nz = volume.dims
    origin = volume.origin + 0.5 * volume.voxel_size
    s = volume.voxel_size

    with path.open("w", encoding="utf-8", newline="\n") as f:
        f.write("# vtk DataFile Version 3.0\n")
        f.write("particlefluid density volume\n")
        f.write("ASCII\n")
        f.write("DATASET STRUCTURED_POINTS\n")
        f.write(f"DIMENSIONS {nx} {ny} {nz}\n")
        f.write(f"ORIGIN {origin[0]:.9g} {origin[1]:.9g} {origin[2]:.9g}\n")
        f.write(f"SPACING {s:.9g} {s:.9g} {s:.9g}\n")
        f.write(f"POINT_DATA {nx * ny * nz}\n")
        f.write("SCALARS rho float 1\n")
        f.write("LOOKUP_TABLE default\n")
        np.savetxt(f, volume.values.reshape(-1), fmt="%.9g")
