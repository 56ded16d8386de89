from __future__ import annotations

import numpy as np

from particlefluid.core.errors import InvalidConfiguration


class SmoothingKernel:
    """
    Smoothing kernels with compact support radius h.

    Reference:
    - Müller, Charypar, Gross, "Particle-Based Fluid Simulation for Interactive
      Applications" (SCA 2003), Section 3.5.

        W_poly6(r, h)      = 315 / (64 pi h^9) (h^2 - |r|^2)^3      0 <= |r| <= h
        grad W_spiky(r, h) = -45 / (pi h^6) (h - |r|)^2 r/|r|
        lap W_visc(r, h)   =  45 / (pi h^6) (h - |r|)

    All three vanish outside the support. Instances only hold h-derived
    constants, so one kernel is shared by every pass and every solver.
    """

    def __init__(self, radius: float):
        radius = float(radius)
        if not np.isfinite(radius) or radius <= 0.0:
            raise InvalidConfiguration(f"kernel radius must be > 0, got {radius}")

        self.radius = radius
        self.radius2 = radius * radius
        self.radius3 = radius * radius * radius

        self.POLY6 = 315.0 / (64.0 * np.pi * radius ** 9)
        self.SPIKY_GRAD = -45.0 / (np.pi * radius ** 6)
        self.VISC_LAP = 45.0 / (np.pi * radius ** 6)

    @property
    def poly6_zero(self) -> float:
        """W_poly6(0) = POLY6 h^6, the self contribution of a particle."""
        return float(self.POLY6 * self.radius2 ** 3)

    def poly6_r2(self, r2: np.ndarray) -> np.ndarray:
        r2 = np.asarray(r2, dtype=np.float64)
        diff = np.maximum(self.radius2 - r2, 0.0)
        return self.POLY6 * diff * diff * diff

    def poly6(self, r: np.ndarray) -> np.ndarray | float:
        """Poly6 weight for displacement(s) r of shape (3,) or (..., 3)."""
        r = np.asarray(r, dtype=np.float64)
        w = self.poly6_r2(np.sum(r * r, axis=-1))
        return float(w) if w.ndim == 0 else w

    def spiky_gradient(self, r: np.ndarray) -> np.ndarray:
        """
        Spiky kernel gradient for displacement(s) r = x_i - x_j.

        At r = 0 the direction is undefined; the gradient is set to zero there.
        """
        r = np.asarray(r, dtype=np.float64)
        rn = np.linalg.norm(r, axis=-1)
        inside = (rn > 0.0) & (rn < self.radius)
        safe = np.where(inside, rn, 1.0)
        scale = np.where(inside, self.SPIKY_GRAD * (self.radius - safe) ** 2 / safe, 0.0)
        return r * scale[..., None]

    def viscosity_laplacian(self, r: np.ndarray) -> np.ndarray | float:
        r = np.asarray(r, dtype=np.float64)
        rn = np.linalg.norm(r, axis=-1)
        lap = np.where(rn < self.radius, self.VISC_LAP * (self.radius - rn), 0.0)
        return float(lap) if lap.ndim == 0 else lap
