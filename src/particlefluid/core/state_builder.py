from __future__ import annotations

import numpy as np

from particlefluid.core.simulator import DEFAULT_DENSITY
from particlefluid.core.state import Bounds, FluidBody, FluidBoundary, FluidType


def _lattice(origin: np.ndarray, counts: np.ndarray, spacing: float) -> np.ndarray:
    """Cell-centered lattice points origin + (idx + 0.5) * spacing, x fastest."""
    nx, ny, nz = (int(c) for c in counts)
    if nx <= 0 or ny <= 0 or nz <= 0:
        return np.zeros((0, 3), dtype=np.float64)

    zs, ys, xs = np.meshgrid(np.arange(nz), np.arange(ny), np.arange(nx), indexing="ij")
    idx = np.stack([xs.ravel(), ys.ravel(), zs.ravel()], axis=1).astype(np.float64)
    return origin[None, :] + (idx + 0.5) * spacing


def create_particles(spacing: float, bounds: Bounds) -> np.ndarray:
    """Fill `bounds` with floor(size / spacing) evenly spaced particles per axis."""
    spacing = float(spacing)
    if spacing <= 0.0:
        raise ValueError("spacing must be > 0")

    counts = np.floor(np.maximum(bounds.size, 0.0) / spacing).astype(np.int64)
    return _lattice(bounds.min, counts, spacing)


def create_boundary_particles(spacing: float, bounds: Bounds, exclusion: Bounds) -> np.ndarray:
    """
    Fill `bounds` with evenly spaced particles (one extra per axis so the
    shell is closed), dropping every particle inside `exclusion`.
    """
    spacing = float(spacing)
    if spacing <= 0.0:
        raise ValueError("spacing must be > 0")

    counts = np.floor(bounds.size / spacing).astype(np.int64) + 1
    pts = _lattice(bounds.min, counts, spacing)
    return pts[~exclusion.contains(pts)] if pts.shape[0] else pts


def _bounds_list(entries) -> list[Bounds]:
    return [Bounds.from_min_max(e["min"], e["max"]) for e in (entries or [])]


def build_boundary(scene: dict, radius: float, density: float) -> tuple[FluidBoundary, Bounds]:
    """
    Wall shell around the simulation bounds plus obstacle boxes.

    The shell is 1.2 radii thick on each side so a bounds size that is not a
    multiple of the spacing still leaves no gap. Returns the boundary and
    the outer bounds of the shell.
    """
    sim = Bounds.from_min_max(scene["simulation"]["min"], scene["simulation"]["max"])
    if sim.is_degenerate:
        raise ValueError("simulation bounds are degenerate")

    outer = sim.padded(radius * 1.2)

    parts = [create_boundary_particles(radius * 2.0, outer, sim)]
    for b in _bounds_list(scene.get("obstacles")):
        parts.append(create_particles(radius * 2.0, b))

    return FluidBoundary(np.concatenate(parts, axis=0), radius, density), outer


def build_fluid(scene: dict, radius: float, density: float, fluid_type: FluidType) -> FluidBody:
    """Fluid blocks, each spawn box shrunk by one radius and filled at 1.8 radii spacing."""
    spawns = _bounds_list(scene["fluid"].get("spawn"))
    if not spawns:
        raise ValueError("scene needs at least one fluid spawn box")

    parts = [create_particles(radius * 1.8, b.padded(-radius)) for b in spawns]
    positions = np.concatenate(parts, axis=0)

    body = FluidBody(positions, radius, density, fluid_type)

    fluid_cfg = scene["fluid"]
    body.viscosity = float(fluid_cfg.get("viscosity", body.viscosity))
    body.dampning = float(fluid_cfg.get("dampning", body.dampning))
    return body


def build_scene(scene: dict) -> tuple[FluidBody, FluidBoundary]:
    """
    Build fluid and boundary particle sets from a scene dict:

      {
        "particles":  {"radius": 0.1, "density": null},
        "fluid":      {"type": "pbd", "spawn": [{"min": [...], "max": [...]}]},
        "simulation": {"min": [...], "max": [...]},
        "obstacles":  [{"min": [...], "max": [...]}]
      }

    Density defaults per fluid type when not given.
    """
    particles = scene.get("particles", {})
    radius = float(particles.get("radius", 0.1))

    fluid_type = FluidType.parse(scene["fluid"].get("type", "pbd"))
    density = particles.get("density")
    density = DEFAULT_DENSITY[fluid_type] if density is None else float(density)

    boundary, _ = build_boundary(scene, radius, density)
    body = build_fluid(scene, radius, density, fluid_type)

    body.validate()
    return body, boundary
