import numpy as np
import pytest

from particlefluid.core.errors import InvalidConfiguration
from particlefluid.core.simulator import SimConfig
from particlefluid.core.state import Bounds, FluidBody, FluidBoundary
from particlefluid.core.state_builder import build_scene, create_particles
from particlefluid.solver.pbd import PBDFluidSolver


def _no_walls(radius=0.1):
    return FluidBoundary(np.zeros((0, 3)), radius, 1000.0)


def test_isolated_particle_substeps():
    """
    Two substeps of dt/2 with nothing to correct:
        v = g dt,  dy = g (dt/2)^2 (1 + 2) = 3/4 g dt^2
    """
    body = FluidBody(np.array([[0.0, 1.0, 0.0]]), 0.1, 1000.0, "pbd")
    solver = PBDFluidSolver(body, _no_walls())
    dt = 0.005

    assert solver.step_physics(dt)

    assert np.isclose(body.positions[0, 1] - 1.0, -0.75 * 9.81 * dt * dt)
    assert np.isclose(body.velocities.read[0, 1], -9.81 * dt)
    assert np.isclose(body.densities[0], body.particle_mass * solver.kernel.poly6_zero)

    # rho < rho0, the clamped constraint leaves lambda at zero
    assert body.pressures[0] == 0.0

    assert np.allclose(body.predicted.read[:, :3], body.positions[:, :3])


def test_compressed_block_is_pushed_apart():
    # spacing well below 1.8 r packs the block above rest density
    pts = create_particles(0.12, Bounds.from_min_max([0.0, 0.0, 0.0], [1.5, 1.5, 1.5]))
    assert pts.shape == (12 ** 3, 3)
    body = FluidBody(pts, 0.1, 1000.0, "pbd")
    solver = PBDFluidSolver(body, _no_walls(), SimConfig(gravity=np.zeros(3)))

    extent0 = np.ptp(body.positions[:, 0])
    solver.step_physics(0.005)

    assert body.densities.max() > solver.rest_density
    assert np.all(body.pressures <= 0.0)
    assert np.any(body.pressures < 0.0)
    assert np.ptp(body.positions[:, 0]) > extent0


def test_batch_without_neighbors_steps_cleanly():
    # the far particle's batch has no pairs at all
    pts = np.array([[0.0, 0.0, 0.0], [0.15, 0.0, 0.0], [5.0, 0.0, 0.0]])
    body = FluidBody(pts, 0.1, 1000.0, "pbd")
    solver = PBDFluidSolver(body, _no_walls(), SimConfig(batch_size=1))

    assert solver.step_physics(0.005)

    assert np.isfinite(body.positions).all()
    assert body.densities.dtype == np.float64
    assert np.isclose(body.densities[2], body.particle_mass * solver.kernel.poly6_zero)
    assert np.isclose(body.positions[2, 1], -0.75 * 9.81 * 0.005 ** 2)


def test_pbd_batch_size_does_not_change_the_result():
    pts = create_particles(0.12, Bounds.from_min_max([0.0, 0.0, 0.0], [0.6, 0.6, 0.6]))
    a = FluidBody(pts, 0.1, 1000.0, "pbd")
    b = FluidBody(pts, 0.1, 1000.0, "pbd")

    PBDFluidSolver(a, _no_walls(), SimConfig(batch_size=128)).step_physics(0.005)
    PBDFluidSolver(b, _no_walls(), SimConfig(batch_size=9)).step_physics(0.005)

    assert np.allclose(a.positions, b.positions, rtol=0.0, atol=1e-12)
    assert np.allclose(a.densities, b.densities, rtol=0.0, atol=1e-12)


def test_pbd_step_moves_fluid_down_and_stays_inside_walls():
    scene = {
        "particles": {"radius": 0.05},
        "fluid": {"type": "pbd", "spawn": [{"min": [0.0, 0.1, 0.0], "max": [0.3, 0.4, 0.3]}]},
        "simulation": {"min": [0.0, 0.0, 0.0], "max": [0.4, 0.6, 0.4]},
    }
    body, boundary = build_scene(scene)
    y0 = body.positions[:, 1].mean()

    solver = PBDFluidSolver(body, boundary)
    for _ in range(10):
        solver.step_physics(0.005)

    assert body.positions[:, 1].mean() < y0
    assert boundary.bounds.contains(body.positions).all()
    assert np.isfinite(body.velocities.read).all()


def test_substep_passes_flip_buffer_roles():
    body = FluidBody(np.array([[0.0, 0.0, 0.0]]), 0.1, 1000.0, "pbd")
    solver = PBDFluidSolver(body, _no_walls())

    read = body.predicted.read_index
    solver.predict_positions(0.001)
    assert body.predicted.read_index == 1 - read

    # the freshly predicted positions are now on the READ side
    assert body.predicted.read[0, 1] < 0.0
    assert body.predicted.write[0, 1] == 0.0


def test_pbd_solver_rejects_sph_body():
    body = FluidBody(np.zeros((1, 3)), 0.1, 1.0, "wcsph")
    with pytest.raises(InvalidConfiguration):
        PBDFluidSolver(body, _no_walls())


def test_pbd_defaults():
    body = FluidBody(np.zeros((1, 3)), 0.1, 1000.0, "pbd")
    solver = PBDFluidSolver(body, _no_walls())

    assert np.isclose(solver.rest_density, 1000.0)
    assert np.isclose(solver.viscosity, 0.002)
    assert solver.solver_iterations == 2
    assert solver.constraint_iterations == 2
