import json

import numpy as np
import pytest

from particlefluid.core.bootstrap import main
from particlefluid.core.diagnostics import compute_step_diagnostics
from particlefluid.core.errors import InvalidConfiguration, SimulationDiverged
from particlefluid.core.simulator import create_solver
from particlefluid.core.state_builder import build_scene
from particlefluid.io.csv_export import export_particles_csv
from particlefluid.io.volume_export import DensityVolume, export_volume_vtk, fill_density_volume
from particlefluid.io.vtk_export import export_particles_vtk_legacy


def _scene(fluid_type="wcsph"):
    return {
        "particles": {"radius": 0.05},
        "fluid": {"type": fluid_type, "spawn": [{"min": [0.0, 0.0, 0.0], "max": [0.3, 0.3, 0.3]}]},
        "simulation": {"min": [0.0, 0.0, 0.0], "max": [0.4, 0.4, 0.4]},
    }


def test_csv_export_writes_fluid_and_boundary_rows(tmp_path):
    body, boundary = build_scene(_scene())
    path = tmp_path / "out" / "p.csv"
    export_particles_csv(path, body, boundary)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "id,is_boundary,x,y,z,vx,vy,vz,rho,p,m"

    table = np.loadtxt(path, delimiter=",", skiprows=1)
    assert table.shape == (body.num_particles + boundary.num_particles, 11)
    assert np.count_nonzero(table[:, 1] == 1) == boundary.num_particles
    assert np.allclose(table[: body.num_particles, 2:5], body.positions[:, :3])


def test_vtk_export_is_well_formed(tmp_path):
    body, boundary = build_scene(_scene("pbd"))
    n = body.num_particles + boundary.num_particles
    path = tmp_path / "p.vtk"
    export_particles_vtk_legacy(path, body, boundary)

    text = path.read_text(encoding="utf-8")
    assert text.startswith("# vtk DataFile Version 3.0")
    assert f"POINTS {n} float" in text
    assert f"VERTICES {n} {2 * n}" in text
    assert f"POINT_DATA {n}" in text
    assert "VECTORS v float" in text


def test_density_volume_matches_direct_summation():
    body, boundary = build_scene(_scene())
    solver = create_solver(body, boundary)
    solver.hash.process(body.positions, boundary.positions)

    volume = fill_density_volume(body, solver.hash, solver.kernel)

    nx, ny, nz = volume.dims
    assert volume.values.shape == (nz, ny, nx)
    assert volume.groups == tuple(-(-d // 8) for d in volume.dims)
    assert np.isclose(volume.voxel_size, body.particle_radius)

    iz, iy, ix = np.meshgrid(np.arange(nz), np.arange(ny), np.arange(nx), indexing="ij")
    centers = volume.voxel_centers(ix, iy, iz)
    d = centers[..., None, :] - body.positions[None, None, None, :, :3]
    expected = body.particle_mass * solver.kernel.poly6(d).sum(axis=-1)

    assert np.allclose(volume.values, expected)
    assert volume.values.max() > 0.0


def test_density_volume_export(tmp_path):
    body, boundary = build_scene(_scene())
    solver = create_solver(body, boundary)
    solver.hash.process(body.positions, boundary.positions)
    volume = fill_density_volume(body, solver.hash, solver.kernel)

    path = tmp_path / "vol.vtk"
    export_volume_vtk(path, volume)

    text = path.read_text(encoding="utf-8")
    nx, ny, nz = volume.dims
    assert f"DIMENSIONS {nx} {ny} {nz}" in text
    assert f"POINT_DATA {nx * ny * nz}" in text


def test_density_volume_rejects_bad_voxel_size():
    body, boundary = build_scene(_scene())
    solver = create_solver(body, boundary)
    with pytest.raises(InvalidConfiguration):
        DensityVolume(solver.hash.bounds, 0.0)


def test_step_diagnostics():
    body, boundary = build_scene(_scene())
    solver = create_solver(body, boundary)
    solver.step_physics(0.0008)

    diag = compute_step_diagnostics(step=1, dt=0.0008, solver=solver)

    assert diag.n_fluid == body.num_particles
    assert diag.n_boundary == boundary.num_particles
    assert np.isclose(diag.rho_max, body.densities.max())
    assert np.isclose(diag.rho_rel_err_mean, np.mean(body.densities / solver.rest_density - 1.0))
    assert diag.v_max > 0.0

    pos = solver.global_positions(body.positions)
    d = pos[: body.num_particles, None, :] - pos[None, :, :]
    close = np.einsum("ijk,ijk->ij", d, d) <= solver.kernel.radius2
    counts = close.sum(axis=1) - 1
    assert diag.neigh_min == counts.min()
    assert diag.neigh_max == counts.max()

    assert diag.format_line().startswith("[STEP 0001]")


def test_bootstrap_runs_scene(tmp_path, capsys):
    scene = _scene()
    scene["time"] = {"steps": 2, "log_every": 1, "time_step": 2}
    scene["export"] = {"csv": {"enable": True, "every": 1, "dir": str(tmp_path / "csv")}}
    path = tmp_path / "scene.json"
    path.write_text(json.dumps(scene), encoding="utf-8")

    assert main([str(path)]) == 0

    out = capsys.readouterr().out
    assert "[BOOT] done" in out
    assert "[STEP 0002]" in out
    for step in (0, 1, 2):
        assert (tmp_path / "csv" / f"particles_step_{step:04d}.csv").exists()


def test_bootstrap_usage_and_missing_file(tmp_path):
    assert main([]) == 2
    assert main([str(tmp_path / "missing.json")]) == 1


def test_bootstrap_releases_particles_when_a_step_fails(tmp_path, monkeypatch):
    import particlefluid.core.bootstrap as bootstrap

    built = []

    def build_and_keep(scene):
        body, boundary = build_scene(scene)
        built.append((body, boundary))
        return body, boundary

    monkeypatch.setattr(bootstrap, "build_scene", build_and_keep)

    scene = _scene()
    scene["forces"] = {"gravity": [0.0, float("inf"), 0.0]}
    scene["time"] = {"steps": 3}
    path = tmp_path / "scene.json"
    path.write_text(json.dumps(scene), encoding="utf-8")

    with np.errstate(invalid="ignore", over="ignore"):
        with pytest.raises(SimulationDiverged):
            main([str(path)])

    body, boundary = built[0]
    assert body.disposed
    assert boundary.disposed
