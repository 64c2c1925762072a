"""Unit tests for orbital mechanics utilities.

Tests the numba-optimized two-body propagation used as the default
trajectory oracle.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from lander.body import EARTH, MOON
from lander.orbital import (
    KeplerPropagator,
    circular_orbit_state,
    compute_orbital_elements,
    is_discontinuous_orbit,
)

# =============================================================================
# Orbital Elements Tests
# =============================================================================


class TestOrbitalElements:
    """Test orbital element computation."""

    def test_circular_orbit_400km(self):
        """Circular orbit at 400 km (ISS-like)."""
        r = EARTH.radius + 400e3
        v = np.sqrt(EARTH.mu / r)
        elements = compute_orbital_elements(EARTH, np.array([r, 0.0, 0.0]), np.array([0.0, v, 0.0]))

        assert_allclose(elements.semi_major_axis, r, rtol=1e-6)
        assert elements.eccentricity < 1e-6
        assert_allclose(elements.inclination, 0.0, atol=1e-6)
        assert_allclose(elements.periapsis_radius, r, rtol=1e-6)
        assert elements.is_closed

    def test_escape_trajectory(self):
        """Above escape speed the orbit is open with infinite period."""
        r = MOON.radius + 10e3
        v = 1.1 * np.sqrt(2.0 * MOON.mu / r)
        elements = compute_orbital_elements(MOON, np.array([r, 0.0, 0.0]), np.array([0.0, v, 0.0]))

        assert elements.eccentricity > 1.0
        assert not elements.is_closed
        assert elements.period == np.inf

    def test_inclination(self):
        """Polar orbit has 90 degree inclination."""
        state = circular_orbit_state(MOON, altitude=20e3, mass=1000.0, inclination=90.0)
        elements = compute_orbital_elements(MOON, state.position, state.velocity)
        assert_allclose(np.degrees(elements.inclination), 90.0, atol=1e-6)


# =============================================================================
# Kepler Propagation Tests
# =============================================================================


class TestKeplerPropagator:
    """Test universal-variable propagation."""

    @pytest.fixture
    def orbit(self):
        state = circular_orbit_state(MOON, altitude=15e3, mass=2000.0)
        return state, KeplerPropagator.from_state(MOON, state)

    def test_zero_offset(self, orbit):
        """Propagating by zero returns the epoch state."""
        state, prop = orbit
        pos, vel = prop.state_at(state.time)
        assert_allclose(pos, state.position)
        assert_allclose(vel, state.velocity)

    def test_circular_radius_constant(self, orbit):
        """Radius stays constant on a circular orbit."""
        state, prop = orbit
        pos, _ = prop.state_at(1234.5)
        assert_allclose(np.linalg.norm(pos), state.radius, rtol=1e-8)

    def test_full_period_returns(self, orbit):
        """After one period the vehicle is back where it started."""
        state, prop = orbit
        period = compute_orbital_elements(MOON, prop.position, prop.velocity).period
        pos, vel = prop.state_at(period)
        assert_allclose(pos, state.position, atol=1e-2)
        assert_allclose(vel, state.velocity, atol=1e-5)

    def test_vectorized_matches_scalar(self, orbit):
        """states_at agrees with state_at."""
        _, prop = orbit
        times = np.array([10.0, 500.0, 3000.0])
        positions, velocities = prop.states_at(times)
        for t, p, v in zip(times, positions, velocities):
            ps, vs = prop.state_at(t)
            assert_allclose(p, ps, rtol=1e-10)
            assert_allclose(v, vs, rtol=1e-10)

    def test_energy_conserved_on_ellipse(self):
        """Specific energy is conserved along an eccentric orbit."""
        state = circular_orbit_state(MOON, altitude=50e3, mass=1000.0)
        prop = KeplerPropagator(MOON.mu, state.position, state.velocity * 0.9)
        energy0 = compute_orbital_elements(MOON, prop.position, prop.velocity).specific_energy
        pos, vel = prop.state_at(900.0)
        energy = float(np.dot(vel, vel)) / 2.0 - MOON.mu / float(np.linalg.norm(pos))
        assert_allclose(energy, energy0, rtol=1e-8)

    def test_hyperbolic_propagation(self):
        """Open orbits propagate outward without NaNs."""
        r = MOON.radius + 10e3
        v = 1.5 * np.sqrt(2.0 * MOON.mu / r)
        prop = KeplerPropagator(MOON.mu, np.array([r, 0.0, 0.0]), np.array([0.0, v, 0.0]))
        pos, vel = prop.state_at(600.0)
        assert np.all(np.isfinite(pos))
        assert np.linalg.norm(pos) > r


# =============================================================================
# Discontinuous Orbit Tests
# =============================================================================


class TestDiscontinuousOrbit:
    """Test the landing precondition check."""

    def test_closed_orbit_is_continuous(self):
        """Closed orbits never escape."""
        state = circular_orbit_state(MOON, altitude=15e3, mass=1000.0)
        assert not is_discontinuous_orbit(MOON, state.position, state.velocity)

    def test_escaping_is_discontinuous(self):
        """Leaving on an escape trajectory cannot land."""
        r = MOON.radius + 10e3
        v = 1.5 * np.sqrt(2.0 * MOON.mu / r)
        assert is_discontinuous_orbit(MOON, np.array([r, 0.0, 0.0]), np.array([v, v, 0.0]))

    def test_open_orbit_hitting_surface(self):
        """An incoming hyperbola aimed at the ground still lands."""
        r = MOON.radius + 10e3
        v = 1.5 * np.sqrt(2.0 * MOON.mu / r)
        assert not is_discontinuous_orbit(MOON, np.array([r, 0.0, 0.0]), np.array([-v, 10.0, 0.0]))

    def test_non_finite_state(self):
        """NaNs in the state count as discontinuous."""
        assert is_discontinuous_orbit(MOON, np.array([np.nan, 0.0, 0.0]), np.zeros(3))
