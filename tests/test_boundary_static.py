import numpy as np
import pytest

from particlefluid.core.simulator import DEFAULT_DT, create_solver
from particlefluid.core.state_builder import build_scene


def _scene(fluid_type):
    return {
        "particles": {"radius": 0.05},
        "fluid": {"type": fluid_type, "spawn": [{"min": [0.0, 0.0, 0.0], "max": [0.3, 0.3, 0.3]}]},
        "simulation": {"min": [0.0, 0.0, 0.0], "max": [0.4, 0.4, 0.4]},
    }


@pytest.mark.parametrize("fluid_type", ["pbd", "csph", "wcsph"])
def test_boundary_particles_remain_static(fluid_type):
    body, boundary = build_scene(_scene(fluid_type))
    pos0 = boundary.positions.copy()

    solver = create_solver(body, boundary)
    dt = DEFAULT_DT[body.fluid_type]
    for _ in range(3):
        assert solver.step_physics(dt)

    assert np.array_equal(boundary.positions, pos0)
    assert np.isfinite(body.positions).all()


def test_boundary_positions_are_read_only():
    _, boundary = build_scene(_scene("pbd"))

    assert not boundary.positions.flags.writeable
    with pytest.raises(ValueError):
        boundary.positions[0, 0] = 1.0
