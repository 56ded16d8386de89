from __future__ import annotations

from dataclasses import dataclass, replace

import numpy as np

from particlefluid.core.errors import InvalidConfiguration, ResourceExhaustion
from particlefluid.core.state import Bounds

# 3x3x3 cell neighborhood, x fastest
_NEIGHBOR_OFFSETS = np.array(
    [(dx, dy, dz) for dz in (-1, 0, 1) for dy in (-1, 0, 1) for dx in (-1, 0, 1)],
    dtype=np.int64,
)

MAX_CELLS = 1 << 26


@dataclass(frozen=True)
class NeighborPairs:
    """
    Neighbor pairs (i, j) in the global index space of a GridHash:
    fluid particles are [0, num_fluid), boundary particles follow.

    All i lie in the owner range [start, stop) (stop=None means num_fluid);
    reductions return one row per owner of that range.
    """

    i: np.ndarray
    j: np.ndarray
    num_fluid: int
    start: int = 0
    stop: int | None = None

    def __len__(self) -> int:
        return int(self.i.shape[0])

    @property
    def owners(self) -> slice:
        return slice(self.start, self.num_fluid if self.stop is None else self.stop)

    @property
    def num_owners(self) -> int:
        s = self.owners
        return s.stop - s.start

    @property
    def is_fluid(self) -> np.ndarray:
        return self.j < self.num_fluid

    @property
    def is_boundary(self) -> np.ndarray:
        return self.j >= self.num_fluid

    def reduce(self, values: np.ndarray) -> np.ndarray:
        """
        Sum per-pair values onto the owning particle i, one row per owner.

        Each fluid particle only receives its own pairs, so this is the
        read-many / write-own reduction of a per-particle pass.
        """
        values = np.asarray(values, dtype=np.float64)
        local = self.i - self.start
        n = self.num_owners

        if values.ndim == 1:
            return np.bincount(local, weights=values, minlength=n).astype(np.float64, copy=False)

        out = np.empty((n, values.shape[1]), dtype=np.float64)
        for c in range(values.shape[1]):
            out[:, c] = np.bincount(local, weights=values[:, c], minlength=n)
        return out

    def sorted(self) -> NeighborPairs:
        """Pairs ordered by owning particle i (stable)."""
        order = np.argsort(self.i, kind="stable")
        return replace(self, i=self.i[order], j=self.j[order])

    def between(self, start: int, stop: int) -> NeighborPairs:
        """Pairs owned by particles in [start, stop). Requires pairs sorted by i."""
        lo, hi = np.searchsorted(self.i, [start, stop], side="left")
        return NeighborPairs(
            i=self.i[lo:hi], j=self.j[lo:hi], num_fluid=self.num_fluid, start=int(start), stop=int(stop)
        )

    def subset(self, mask: np.ndarray) -> NeighborPairs:
        return replace(self, i=self.i[mask], j=self.j[mask])

    @classmethod
    def concat(cls, parts: list[NeighborPairs], num_fluid: int) -> NeighborPairs:
        if not parts:
            empty = np.zeros((0,), dtype=np.int64)
            return cls(i=empty, j=empty.copy(), num_fluid=num_fluid)
        return cls(
            i=np.concatenate([p.i for p in parts]),
            j=np.concatenate([p.j for p in parts]),
            num_fluid=num_fluid,
        )


class GridHash:
    """
    Uniform grid over fixed bounds for neighbor search.

    Each call to `process` rebuilds, from scratch, a counting-sort bucket
    structure:

    - `index_map`: permutation of [0, num_particles) with particles that
      share a cell stored contiguously,
    - `table`: per cell (offset, count) into `index_map`.

    Cell size equals the kernel support radius, so the 3x3x3 cells around a
    particle hold every particle within that radius. Positions outside the
    bounds are clamped into the border cells instead of being dropped.

    References:
    - Green, "Particle Simulation using CUDA" (NVIDIA, 2010)
    - Ihmsen et al., "A Parallel SPH Implementation on Multi-Core CPUs" (2011)
    """

    def __init__(self, bounds: Bounds, num_particles: int, cell_size: float, max_cells: int = MAX_CELLS):
        cell_size = float(cell_size)
        if not np.isfinite(cell_size) or cell_size <= 0.0:
            raise InvalidConfiguration(f"cell_size must be > 0, got {cell_size}")
        if bounds is None or bounds.is_degenerate:
            raise InvalidConfiguration("grid bounds are degenerate")
        if int(num_particles) < 0:
            raise InvalidConfiguration("num_particles must be >= 0")

        self._cell_size = cell_size
        self._inv_cell_size = 1.0 / cell_size
        self.num_particles = int(num_particles)

        self._origin = bounds.min.astype(np.float64, copy=True)
        self._dims = np.maximum(np.ceil(bounds.size * self._inv_cell_size), 1.0).astype(np.int64)
        self._bounds = Bounds(min=self._origin.copy(), max=self._origin + self._dims * cell_size)

        num_cells = int(np.prod(self._dims.astype(object)))
        if num_cells <= 0 or num_cells > int(max_cells):
            raise ResourceExhaustion(
                f"grid of {tuple(int(d) for d in self._dims)} cells ({num_cells}) exceeds limit {int(max_cells)}"
            )
        self.num_cells = num_cells

        try:
            self.index_map: np.ndarray | None = np.zeros((self.num_particles,), dtype=np.int64)
            self.table: np.ndarray | None = np.zeros((num_cells, 2), dtype=np.int64)
        except MemoryError as exc:
            raise ResourceExhaustion(f"cannot allocate hash grid with {num_cells} cells") from exc

        self._cells: np.ndarray | None = None
        self._num_fluid = 0

    @property
    def cell_size(self) -> float:
        return self._cell_size

    @property
    def inv_cell_size(self) -> float:
        return self._inv_cell_size

    @property
    def bounds(self) -> Bounds:
        """Grid extent, snapped outward to whole cells. Returned as a copy."""
        return Bounds(min=self._bounds.min.copy(), max=self._bounds.max.copy())

    @property
    def dims(self) -> tuple[int, int, int]:
        return tuple(int(d) for d in self._dims)

    @property
    def num_fluid(self) -> int:
        return self._num_fluid

    @property
    def particle_cells(self) -> np.ndarray | None:
        """Integer cell coordinate of every particle from the last `process`."""
        return self._cells

    def cell_coords(self, points: np.ndarray) -> np.ndarray:
        pts = np.atleast_2d(np.asarray(points, dtype=np.float64))[:, :3]
        c = np.floor((pts - self._origin) * self._inv_cell_size)
        c = np.clip(c, 0, self._dims - 1)
        return c.astype(np.int64)

    def cell_hash(self, coords: np.ndarray) -> np.ndarray:
        nx, ny = int(self._dims[0]), int(self._dims[1])
        return coords[..., 0] + coords[..., 1] * nx + coords[..., 2] * (nx * ny)

    def process(self, fluid_positions: np.ndarray, boundary_positions: np.ndarray | None = None) -> None:
        """
        Rebuild index map and cell table from the current positions.

        Global indices: fluid particles first, then boundary particles.

        Counting sort in three phases:
        1) count particles per cell,
        2) exclusive prefix sum -> cell offsets,
        3) scatter: every particle gets the slot offset[cell] + rank, where
           rank is its position among the particles of the same cell. The
           ranks come from a stable sort on the cell key, so slots are
           distinct and no two particles write the same entry.
        """
        self._require_live()

        fluid = np.asarray(fluid_positions, dtype=np.float64)[:, :3]
        if boundary_positions is not None and len(boundary_positions) > 0:
            pts = np.concatenate([fluid, np.asarray(boundary_positions, dtype=np.float64)[:, :3]], axis=0)
        else:
            pts = fluid

        if pts.shape[0] != self.num_particles:
            raise InvalidConfiguration(
                f"grid was sized for {self.num_particles} particles, got {pts.shape[0]}"
            )

        cells = self.cell_coords(pts) if pts.shape[0] else np.zeros((0, 3), dtype=np.int64)
        keys = self.cell_hash(cells)

        # (1) count
        counts = np.bincount(keys, minlength=self.num_cells).astype(np.int64)

        # (2) prefix sum
        offsets = np.cumsum(counts) - counts

        # (3) scatter into precomputed slots
        order = np.argsort(keys, kind="stable")
        rank = np.empty_like(order)
        rank[order] = np.arange(order.shape[0], dtype=np.int64) - offsets[keys[order]]
        slots = offsets[keys] + rank

        self.index_map[slots] = np.arange(pts.shape[0], dtype=np.int64)
        self.table[:, 0] = offsets
        self.table[:, 1] = counts

        self._cells = cells
        self._num_fluid = int(fluid.shape[0])

    def candidates(self, cells: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Coarse neighbor candidates for a batch of cells.

        Returns (row, particle) where `row` indexes into `cells` and
        `particle` is a global particle index found in the 27 surrounding
        cells. No distance test is applied here.
        """
        self._require_processed()

        cells = np.asarray(cells, dtype=np.int64).reshape(-1, 3)
        nc = cells[:, None, :] + _NEIGHBOR_OFFSETS[None, :, :]          # (M, 27, 3)
        valid = np.all((nc >= 0) & (nc < self._dims), axis=2)           # (M, 27)

        rows = np.nonzero(valid)[0]
        flat = self.cell_hash(nc[valid])

        start = self.table[flat, 0]
        count = self.table[flat, 1]
        total = int(count.sum())
        if total == 0:
            empty = np.zeros((0,), dtype=np.int64)
            return empty, empty.copy()

        # expand each (offset, count) run into individual index-map slots
        first = np.repeat(np.cumsum(count) - count, count)
        slots = np.repeat(start, count) + (np.arange(total, dtype=np.int64) - first)

        return np.repeat(rows, count), self.index_map[slots]

    def neighbor_pairs(
        self,
        query_ids: np.ndarray,
        positions: np.ndarray,
        radius: float | None = None,
        include_self: bool = False,
    ) -> NeighborPairs:
        """
        Exact neighbor pairs for the given query particles.

        `positions` holds all particles in global order (fluid then boundary)
        and may differ from the positions the grid was built with (PBD moves
        predicted positions between passes); the cell lookup uses the cells
        recorded by `process`, the radius test uses `positions`.
        """
        self._require_processed()
        radius = self.cell_size if radius is None else float(radius)
        if radius > self.cell_size * (1.0 + 1e-12):
            raise InvalidConfiguration("query radius must not exceed the cell size")

        query_ids = np.asarray(query_ids, dtype=np.int64).reshape(-1)
        rows, j = self.candidates(self._cells[query_ids])
        i = query_ids[rows]

        pos = np.asarray(positions, dtype=np.float64)[:, :3]
        d = pos[i] - pos[j]
        keep = np.einsum("ij,ij->i", d, d) <= radius * radius
        if not include_self:
            keep &= i != j

        return NeighborPairs(i=i[keep], j=j[keep], num_fluid=self._num_fluid)

    def query(self, point: np.ndarray, positions: np.ndarray, radius: float | None = None) -> np.ndarray:
        """Global indices of all particles within `radius` of a single point."""
        radius = self.cell_size if radius is None else float(radius)
        if radius > self.cell_size * (1.0 + 1e-12):
            raise InvalidConfiguration("query radius must not exceed the cell size")

        point = np.asarray(point, dtype=np.float64).reshape(-1)[:3]
        _, j = self.candidates(self.cell_coords(point))

        pos = np.asarray(positions, dtype=np.float64)[:, :3]
        d = pos[j] - point
        return j[np.einsum("ij,ij->i", d, d) <= radius * radius]

    def cell_range(self, cell: int) -> np.ndarray:
        """Particle indices stored in one cell (a view into `index_map`)."""
        self._require_processed()
        offset, count = self.table[int(cell)]
        return self.index_map[offset:offset + count]

    def dispose(self) -> None:
        self.index_map = None
        self.table = None
        self._cells = None

    @property
    def disposed(self) -> bool:
        return self.table is None

    def _require_live(self) -> None:
        if self.table is None:
            raise RuntimeError("grid hash has been disposed")

    def _require_processed(self) -> None:
        self._require_live()
        if self._cells is None:
            raise RuntimeError("process() must be called before neighbor queries")
