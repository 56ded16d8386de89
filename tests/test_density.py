import numpy as np

from particlefluid.core.state import Bounds
from particlefluid.neighbors.grid_hash import GridHash, NeighborPairs
from particlefluid.sph.density import compute_density_summation, compute_density_with_boundaries
from particlefluid.sph.kernels import SmoothingKernel
from particlefluid.sph.pressure import pressure_state_equation_clamped, pressure_state_equation_linear


BOX = Bounds.from_min_max([-1.0, -1.0, -1.0], [1.0, 1.0, 1.0])


def _pairs(fluid, boundary=None, h=0.4):
    n_b = 0 if boundary is None else boundary.shape[0]
    grid = GridHash(BOX, fluid.shape[0] + n_b, h)
    grid.process(fluid, boundary)
    pos = fluid if boundary is None else np.concatenate([fluid, boundary])
    return pos, grid.neighbor_pairs(np.arange(fluid.shape[0]), pos, radius=h)


def test_isolated_particle_density_is_self_contribution():
    k = SmoothingKernel(0.4)
    m = 0.0042
    pos = np.zeros((1, 3))
    pairs = NeighborPairs.concat([], num_fluid=1)

    rho = compute_density_with_boundaries(pos, pairs, k, particle_mass=m, boundary_psi=1.0)
    assert np.isclose(rho[0], m * k.poly6_zero)
    assert rho[0] > 0.0


def test_pair_density_sums_both_kernels():
    k = SmoothingKernel(0.4)
    m = 2.0
    fluid = np.array([[0.0, 0.0, 0.0], [0.2, 0.0, 0.0]])
    pos, pairs = _pairs(fluid)

    rho = compute_density_summation(pos, pairs, k, particle_mass=m)
    expected = m * (k.poly6_zero + k.poly6(np.array([0.2, 0.0, 0.0])))
    assert np.allclose(rho, expected)


def test_boundary_contributes_with_psi_weight():
    k = SmoothingKernel(0.4)
    m, psi = 0.5, 3.0
    fluid = np.array([[0.0, 0.0, 0.0]])
    boundary = np.array([[0.0, -0.2, 0.0]])
    pos, pairs = _pairs(fluid, boundary)

    assert len(pairs) == 1
    assert pairs.is_boundary.all()

    rho = compute_density_with_boundaries(pos, pairs, k, particle_mass=m, boundary_psi=psi)
    expected = m * k.poly6_zero + psi * k.poly6(np.array([0.0, 0.2, 0.0]))
    assert np.isclose(rho[0], expected)

    # the fluid-only summation ignores the wall
    rho_f = compute_density_summation(pos, pairs, k, particle_mass=m)
    assert np.isclose(rho_f[0], m * k.poly6_zero)


def test_equations_of_state():
    rho = np.array([0.2, 0.5, 0.9])
    assert np.allclose(pressure_state_equation_linear(rho, rho0=0.5, k=1000.0), [-300.0, 0.0, 400.0])
    assert np.allclose(pressure_state_equation_clamped(rho, rho0=0.5, k=1000.0), [0.0, 0.0, 400.0])
