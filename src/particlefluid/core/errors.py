from __future__ import annotations


class FluidError(Exception):
    """Base class for errors raised by the fluid simulation core."""


class InvalidConfiguration(FluidError, ValueError):
    """
    Non-positive radius / cell size / density, degenerate bounds or malformed
    particle arrays. Raised at construction time before any buffer is kept.
    """


class ResourceExhaustion(FluidError, MemoryError):
    """Grid or particle buffer allocation failed (or would exceed its limit)."""


class SimulationDiverged(FluidError, RuntimeError):
    """A step produced non-finite particle state; the frame is lost."""
