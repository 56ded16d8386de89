from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

import numpy as np

from particlefluid.core.errors import InvalidConfiguration


class FluidType(Enum):
    PBD = "pbd"
    CSPH = "csph"
    WCSPH = "wcsph"

    @classmethod
    def parse(cls, value: str | FluidType) -> FluidType:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidConfiguration(f"unknown fluid type: {value!r}") from None


class BufferRole(IntEnum):
    READ = 0
    WRITE = 1


@dataclass(frozen=True, eq=False)
class Bounds:
    """Axis-aligned box given by its min/max corners (3-vectors)."""

    min: np.ndarray
    max: np.ndarray

    @classmethod
    def from_min_max(cls, lo, hi) -> Bounds:
        return cls(min=np.asarray(lo, dtype=np.float64).reshape(3), max=np.asarray(hi, dtype=np.float64).reshape(3))

    @classmethod
    def from_points(cls, points: np.ndarray, pad: float = 0.0) -> Bounds | None:
        """Tight box around `points[:, :3]`, grown by `pad` on every side. None when empty."""
        pts = np.asarray(points, dtype=np.float64)
        if pts.shape[0] == 0:
            return None
        lo = pts[:, :3].min(axis=0) - float(pad)
        hi = pts[:, :3].max(axis=0) + float(pad)
        return cls(min=lo, max=hi)

    @property
    def size(self) -> np.ndarray:
        return self.max - self.min

    @property
    def center(self) -> np.ndarray:
        return 0.5 * (self.min + self.max)

    @property
    def is_degenerate(self) -> bool:
        if not (np.isfinite(self.min).all() and np.isfinite(self.max).all()):
            return True
        return bool(np.any(self.size <= 0.0))

    def contains(self, points: np.ndarray) -> np.ndarray:
        pts = np.atleast_2d(np.asarray(points, dtype=np.float64))[:, :3]
        return np.all((pts >= self.min) & (pts <= self.max), axis=1)

    def union(self, other: Bounds | None) -> Bounds:
        if other is None:
            return self
        return Bounds(min=np.minimum(self.min, other.min), max=np.maximum(self.max, other.max))

    def padded(self, amount: float) -> Bounds:
        return Bounds(min=self.min - float(amount), max=self.max + float(amount))


class DoubleBuffer:
    """
    Two fixed arrays addressed by READ/WRITE role.

    A pass reads `read` for its whole duration and writes `write`; `swap()`
    then flips the roles so the next pass sees the freshly written values.
    The arrays themselves never move or alias each other.
    """

    def __init__(self, initial: np.ndarray):
        self._buffers = (initial.copy(), initial.copy())
        self._read = 0

    def buffer(self, role: BufferRole) -> np.ndarray:
        if role == BufferRole.READ:
            return self._buffers[self._read]
        return self._buffers[1 - self._read]

    @property
    def read(self) -> np.ndarray:
        return self.buffer(BufferRole.READ)

    @property
    def write(self) -> np.ndarray:
        return self.buffer(BufferRole.WRITE)

    @property
    def read_index(self) -> int:
        return self._read

    def swap(self) -> None:
        self._read = 1 - self._read


def _homogeneous(positions, transform: np.ndarray | None, w: float) -> np.ndarray:
    pts = np.asarray(positions, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] not in (3, 4):
        raise InvalidConfiguration(f"positions must have shape (N, 3) or (N, 4), got {pts.shape}")

    out = np.empty((pts.shape[0], 4), dtype=np.float64)
    out[:, :3] = pts[:, :3]
    out[:, 3] = w

    if transform is not None:
        m = np.asarray(transform, dtype=np.float64)
        if m.shape != (4, 4):
            raise InvalidConfiguration("transform must be a 4x4 matrix")
        out = out @ m.T
        out[:, 3] = w

    if not np.isfinite(out).all():
        raise InvalidConfiguration("positions contain NaN/Inf")
    return out


def _check_positive(name: str, value: float) -> float:
    value = float(value)
    if not np.isfinite(value) or value <= 0.0:
        raise InvalidConfiguration(f"{name} must be > 0, got {value}")
    return value


class FluidBody:
    """
    Fluid particle set.

    Counts are fixed at construction. Positions are stored as (N, 4) with the
    homogeneous component set to 1; velocities and forces use (N, 4) with the
    last component 0. Which velocity buffers exist depends on the fluid type:

    - PBD: `predicted` and `velocities` double buffers
    - CSPH / WCSPH: `velocities_sph` and `forces`
    """

    def __init__(
        self,
        positions,
        radius: float,
        density: float,
        fluid_type: FluidType | str = FluidType.PBD,
        transform: np.ndarray | None = None,
    ):
        self.fluid_type = FluidType.parse(fluid_type)
        self.particle_radius = _check_positive("radius", radius)
        self.density = _check_positive("density", density)

        pos = _homogeneous(positions, transform, w=1.0)
        if pos.shape[0] == 0:
            raise InvalidConfiguration("fluid body needs at least one particle")

        self.num_particles = int(pos.shape[0])
        self.viscosity = 0.002
        self.dampning = 0.0

        # volume and mass are derived once and stay constant
        self.particle_volume = (4.0 / 3.0) * np.pi * self.particle_radius ** 3
        self.particle_mass = self.particle_volume * self.density

        self.bounds = Bounds.from_points(pos, pad=self.particle_radius)

        n = self.num_particles
        self.positions: np.ndarray | None = pos
        self.densities: np.ndarray | None = np.zeros((n,), dtype=np.float64)
        self.pressures: np.ndarray | None = np.zeros((n,), dtype=np.float64)

        self.predicted: DoubleBuffer | None = None
        self.velocities: DoubleBuffer | None = None
        self.velocities_sph: np.ndarray | None = None
        self.forces: np.ndarray | None = None

        zeros = np.zeros((n, 4), dtype=np.float64)
        if self.fluid_type == FluidType.PBD:
            self.predicted = DoubleBuffer(pos)
            self.velocities = DoubleBuffer(zeros)
        else:
            self.velocities_sph = zeros.copy()
            self.forces = zeros.copy()

        self._disposed = False

    @property
    def particle_diameter(self) -> float:
        return 2.0 * self.particle_radius

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def velocity(self) -> np.ndarray:
        """Current velocity array regardless of fluid type (the READ half for PBD)."""
        if self.fluid_type == FluidType.PBD:
            return self.velocities.read
        return self.velocities_sph

    def validate(self) -> None:
        n = self.num_particles
        arrays = [
            ("positions", self.positions, (n, 4)),
            ("densities", self.densities, (n,)),
            ("pressures", self.pressures, (n,)),
        ]
        if self.fluid_type == FluidType.PBD:
            for role in BufferRole:
                arrays.append((f"predicted[{role.name}]", self.predicted.buffer(role), (n, 4)))
                arrays.append((f"velocities[{role.name}]", self.velocities.buffer(role), (n, 4)))
        else:
            arrays.append(("velocities_sph", self.velocities_sph, (n, 4)))
            arrays.append(("forces", self.forces, (n, 4)))

        for name, arr, shape in arrays:
            if arr is None:
                raise ValueError(f"{name} has been released")
            if arr.shape != shape:
                raise ValueError(f"{name} shape {arr.shape} != {shape}")

        if not np.isfinite(self.positions).all():
            raise ValueError("positions contain NaN/Inf")

    def dispose(self) -> None:
        if self._disposed:
            return
        self.positions = None
        self.densities = None
        self.pressures = None
        self.predicted = None
        self.velocities = None
        self.velocities_sph = None
        self.forces = None
        self._disposed = True


class FluidBoundary:
    """
    Static boundary particles (walls, obstacles).

    Positions are immutable after construction: the array is flagged
    read-only so an accidental write from a solver pass raises.
    """

    def __init__(self, positions, radius: float, density: float, transform: np.ndarray | None = None):
        self.particle_radius = _check_positive("radius", radius)
        self.density = _check_positive("density", density)

        pts = np.asarray(positions, dtype=np.float64)
        if pts.size == 0:
            # a scene without walls is allowed
            pts = pts.reshape(0, 3)

        pos = _homogeneous(pts, transform, w=1.0)
        pos.setflags(write=False)

        self.num_particles = int(pos.shape[0])
        self.bounds = Bounds.from_points(pos, pad=self.particle_radius)
        self.positions: np.ndarray | None = pos
        self._disposed = False

    @property
    def particle_diameter(self) -> float:
        return 2.0 * self.particle_radius

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self.positions = None
        self._disposed = True
