import numpy as np
import pytest

from particlefluid.core.errors import InvalidConfiguration
from particlefluid.sph.kernels import SmoothingKernel


def test_poly6_constants():
    h = 0.4
    k = SmoothingKernel(h)

    assert np.isclose(k.POLY6, 315.0 / (64.0 * np.pi * h ** 9))
    assert np.isclose(k.SPIKY_GRAD, -45.0 / (np.pi * h ** 6))
    assert np.isclose(k.VISC_LAP, 45.0 / (np.pi * h ** 6))
    assert np.isclose(k.radius2, h * h)
    assert np.isclose(k.radius3, h * h * h)


def test_poly6_support_is_compact():
    h = 0.4
    k = SmoothingKernel(h)

    assert np.isclose(k.poly6(np.zeros(3)), k.POLY6 * h ** 6)
    assert np.isclose(k.poly6(np.zeros(3)), k.poly6_zero)

    assert k.poly6(np.array([0.999 * h, 0.0, 0.0])) > 0.0
    assert k.poly6(np.array([h, 0.0, 0.0])) == 0.0
    assert k.poly6(np.array([1.01 * h, 0.0, 0.0])) == 0.0


def test_poly6_is_symmetric_and_non_negative():
    h = 0.4
    k = SmoothingKernel(h)

    rng = np.random.default_rng(0)
    r = rng.uniform(-h, h, size=(200, 3))
    w = k.poly6(r)

    assert w.shape == (200,)
    assert np.all(w >= 0.0)
    assert np.allclose(w, k.poly6(-r), rtol=0.0, atol=1e-14)


def test_poly6_integrates_to_one():
    """Midpoint quadrature of W over its support."""
    h = 0.4
    k = SmoothingKernel(h)

    n = 40
    dx = 2.0 * h / n
    axis = -h + (np.arange(n) + 0.5) * dx
    X, Y, Z = np.meshgrid(axis, axis, axis, indexing="ij")
    r = np.stack([X.ravel(), Y.ravel(), Z.ravel()], axis=1)

    integral = np.sum(k.poly6(r)) * dx ** 3
    assert np.isclose(integral, 1.0, rtol=1e-2)


def test_poly6_from_squared_distance_matches_vector_form():
    k = SmoothingKernel(0.4)
    r = np.array([[0.1, 0.0, 0.0], [0.1, 0.2, -0.1], [0.5, 0.0, 0.0]])
    assert np.allclose(k.poly6_r2(np.sum(r * r, axis=1)), k.poly6(r))


@pytest.mark.parametrize("radius", [0.0, -1.0, np.nan, np.inf])
def test_invalid_radius_raises(radius):
    with pytest.raises(InvalidConfiguration):
        SmoothingKernel(radius)


def test_invalid_radius_is_a_value_error():
    with pytest.raises(ValueError):
        SmoothingKernel(0.0)
