"""Two-body orbital mechanics with numba optimization.

Provides the default propagation oracle used by the landing guidance:
a universal-variable Kepler solver that returns the inertial position and
velocity of a coasting vehicle at any time. Core functions are
numba-compiled for use inside the trajectory search loops.

Key functions:
- compute_orbital_elements: Classical orbital elements from state vectors
- KeplerPropagator: Coasting state at any time from an initial state
- is_discontinuous_orbit: Landing precondition check
- circular_orbit_state: Convenience constructor for test and setup states

Example:
    >>> from lander.body import MOON
    >>> from lander.orbital import KeplerPropagator, circular_orbit_state
    >>>
    >>> state = circular_orbit_state(MOON, altitude=20e3, mass=2000.0)
    >>> prop = KeplerPropagator.from_state(MOON, state)
    >>> pos, vel = prop.state_at(state.time + 600.0)
"""

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np
from beartype import beartype
from numba import njit
from numpy.typing import NDArray

from lander.body import CelestialBody
from lander.dynamics.state import State, attitude_from_direction, unit

# =============================================================================
# Data Classes
# =============================================================================


class OrbitalElements(NamedTuple):
    """Classical orbital elements.

    Attributes:
        semi_major_axis: Semi-major axis [m] (negative for hyperbolic, inf for parabolic)
        eccentricity: Orbital eccentricity [-]
        inclination: Inclination [rad]
        periapsis_radius: Periapsis distance from the body center [m]
        apoapsis_radius: Apoapsis distance [m] (inf for open orbits)
        period: Orbital period [s] (inf for open orbits)
        specific_energy: Specific orbital energy [J/kg]
    """
    semi_major_axis: float
    eccentricity: float
    inclination: float
    periapsis_radius: float
    apoapsis_radius: float
    period: float
    specific_energy: float

    @property
    def is_closed(self) -> bool:
        return self.eccentricity < 1.0


# =============================================================================
# Core Numba Functions
# =============================================================================


@njit(cache=True, fastmath=True)
def _orbital_elements_core(
    rx: float, ry: float, rz: float,
    vx: float, vy: float, vz: float,
    mu: float,
) -> tuple[float, float, float, float, float, float, float]:
    """Numba-optimized orbital elements computation.

    Returns tuple of:
        (sma, ecc, inc, r_periapsis, r_apoapsis, period, energy)
    """
    r = np.sqrt(rx*rx + ry*ry + rz*rz)
    v2 = vx*vx + vy*vy + vz*vz
    energy = v2 / 2.0 - mu / r

    # Angular momentum h = r x v
    hx = ry * vz - rz * vy
    hy = rz * vx - rx * vz
    hz = rx * vy - ry * vx
    h = np.sqrt(hx*hx + hy*hy + hz*hz)

    # Eccentricity vector e = ((v^2 - mu/r) r - (r.v) v) / mu
    rdotv = rx*vx + ry*vy + rz*vz
    k = v2 - mu / r
    ex = (k * rx - rdotv * vx) / mu
    ey = (k * ry - rdotv * vy) / mu
    ez = (k * rz - rdotv * vz) / mu
    ecc = np.sqrt(ex*ex + ey*ey + ez*ez)

    inc = np.arccos(min(max(hz / h, -1.0), 1.0)) if h > 0.0 else 0.0
    r_pe = h * h / mu / (1.0 + ecc)

    if abs(energy) < 1e-10:
        sma = np.inf
    else:
        sma = -mu / (2.0 * energy)

    if ecc < 1.0:
        r_ap = sma * (1.0 + ecc)
        period = 2.0 * np.pi * np.sqrt(sma**3 / mu)
    else:
        r_ap = np.inf
        period = np.inf

    return (sma, ecc, inc, r_pe, r_ap, period, energy)


@njit(cache=True, fastmath=True)
def _stumpff(psi: float) -> tuple[float, float]:
    """Stumpff functions c2(psi), c3(psi)."""
    if psi > 1e-6:
        s = np.sqrt(psi)
        return ((1.0 - np.cos(s)) / psi, (s - np.sin(s)) / (s * psi))
    if psi < -1e-6:
        s = np.sqrt(-psi)
        return ((1.0 - np.cosh(s)) / psi, (np.sinh(s) - s) / (s * -psi))
    return (0.5, 1.0 / 6.0)


@njit(cache=True, fastmath=True)
def _kepler_universal(
    rx: float, ry: float, rz: float,
    vx: float, vy: float, vz: float,
    dt: float,
    mu: float,
) -> tuple[float, float, float, float, float, float]:
    """Propagate a two-body state by dt using universal variables.

    Works for elliptic, parabolic and hyperbolic orbits, forward and backward.
    """
    if dt == 0.0:
        return (rx, ry, rz, vx, vy, vz)

    r0 = np.sqrt(rx*rx + ry*ry + rz*rz)
    v0sq = vx*vx + vy*vy + vz*vz
    rdotv = rx*vx + ry*vy + rz*vz
    sqrt_mu = np.sqrt(mu)
    alpha = 2.0 / r0 - v0sq / mu

    if alpha > 1e-12:
        # whole revolutions do not change the state
        period = 2.0 * np.pi / (sqrt_mu * alpha**1.5)
        dt = dt - period * np.trunc(dt / period)
        chi = sqrt_mu * dt * alpha
    elif alpha < -1e-12:
        a = 1.0 / alpha
        sgn = 1.0 if dt > 0.0 else -1.0
        denom = rdotv + sgn * np.sqrt(-mu * a) * (1.0 - r0 * alpha)
        arg = -2.0 * mu * alpha * dt / denom if denom != 0.0 else -1.0
        if arg > 0.0:
            chi = sgn * np.sqrt(-a) * np.log(arg)
        else:
            chi = sqrt_mu * dt / r0
    else:
        chi = sqrt_mu * dt / r0

    for _ in range(100):
        psi = chi * chi * alpha
        c2, c3 = _stumpff(psi)
        r = chi*chi*c2 + rdotv / sqrt_mu * chi * (1.0 - psi*c3) + r0 * (1.0 - psi*c2)
        delta = (sqrt_mu*dt - chi**3*c3 - rdotv/sqrt_mu*chi*chi*c2 - r0*chi*(1.0 - psi*c3)) / r
        chi += delta
        if abs(delta) < 1e-10 * max(1.0, abs(chi)):
            break

    psi = chi * chi * alpha
    c2, c3 = _stumpff(psi)
    r = chi*chi*c2 + rdotv / sqrt_mu * chi * (1.0 - psi*c3) + r0 * (1.0 - psi*c2)

    f = 1.0 - chi*chi / r0 * c2
    g = dt - chi**3 / sqrt_mu * c3
    fdot = sqrt_mu / (r * r0) * chi * (psi*c3 - 1.0)
    gdot = 1.0 - chi*chi / r * c2

    return (
        f*rx + g*vx, f*ry + g*vy, f*rz + g*vz,
        fdot*rx + gdot*vx, fdot*ry + gdot*vy, fdot*rz + gdot*vz,
    )


@njit(cache=True, fastmath=True)
def _propagate_many(
    rx: float, ry: float, rz: float,
    vx: float, vy: float, vz: float,
    dts: NDArray[np.float64],
    mu: float,
) -> NDArray[np.float64]:
    """Propagate one state to many offsets. Returns (n, 6) array [pos, vel]."""
    n = len(dts)
    out = np.empty((n, 6))
    for i in range(n):
        s = _kepler_universal(rx, ry, rz, vx, vy, vz, dts[i], mu)
        for j in range(6):
            out[i, j] = s[j]
    return out


# =============================================================================
# Python API
# =============================================================================


def compute_orbital_elements(
    body: CelestialBody,
    position: NDArray[np.float64],
    velocity: NDArray[np.float64],
) -> OrbitalElements:
    """Compute classical orbital elements about a body."""
    return OrbitalElements(*_orbital_elements_core(
        position[0], position[1], position[2],
        velocity[0], velocity[1], velocity[2],
        body.mu,
    ))


def is_discontinuous_orbit(
    body: CelestialBody,
    position: NDArray[np.float64],
    velocity: NDArray[np.float64],
) -> bool:
    """Whether a coasting vehicle leaves the body's influence before landing.

    A closed orbit is always continuous. An open orbit is continuous only
    while it is still headed toward a periapsis below the surface; otherwise
    the vehicle escapes and no landing trajectory exists.
    """
    if not (np.all(np.isfinite(position)) and np.all(np.isfinite(velocity))):
        return True
    elements = compute_orbital_elements(body, position, velocity)
    if not np.isfinite(elements.eccentricity):
        return True
    if elements.is_closed:
        return False
    approaching = float(np.dot(position, velocity)) < 0.0
    return not (approaching and elements.periapsis_radius < body.radius)


@beartype
@dataclass(frozen=True)
class KeplerPropagator:
    """Two-body coast propagation from a reference state.

    Attributes:
        mu: Gravitational parameter [m^3/s^2]
        position: Inertial position at epoch [m]
        velocity: Inertial velocity at epoch [m/s]
        epoch: Time of the reference state [s]
    """
    mu: float
    position: NDArray[np.float64]
    velocity: NDArray[np.float64]
    epoch: float = 0.0

    @classmethod
    def from_state(cls, body: CelestialBody, state: State) -> "KeplerPropagator":
        return cls(
            mu=body.mu,
            position=state.position.copy(),
            velocity=state.velocity.copy(),
            epoch=state.time,
        )

    def state_at(self, time: float) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Inertial position and velocity at time."""
        s = _kepler_universal(
            self.position[0], self.position[1], self.position[2],
            self.velocity[0], self.velocity[1], self.velocity[2],
            float(time - self.epoch), self.mu,
        )
        return np.array(s[:3]), np.array(s[3:])

    def states_at(self, times: NDArray[np.float64]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Vectorized state_at. Returns (n, 3) positions and velocities."""
        out = _propagate_many(
            self.position[0], self.position[1], self.position[2],
            self.velocity[0], self.velocity[1], self.velocity[2],
            np.asarray(times, dtype=np.float64) - self.epoch, self.mu,
        )
        return out[:, :3], out[:, 3:]


def circular_orbit_state(
    body: CelestialBody,
    altitude: float,
    mass: float,
    longitude: float = 0.0,
    inclination: float = 0.0,
    time: float = 0.0,
) -> State:
    """State on a circular orbit crossing the equator at a given longitude.

    The vehicle is pointed retrograde, ready for a braking burn.

    Args:
        body: Central body
        altitude: Orbit altitude above the sphere [m]
        mass: Vehicle mass [kg]
        longitude: Body-fixed longitude of the vehicle at time [deg]
        inclination: Orbit inclination [deg]
        time: State epoch [s]
    """
    position = body.surface_position(0.0, longitude, altitude, time)
    speed = np.sqrt(body.mu / np.linalg.norm(position))
    east = unit(np.cross(np.array([0.0, 0.0, 1.0]), position))
    north = np.array([0.0, 0.0, 1.0])
    inc = np.radians(inclination)
    velocity = speed * (np.cos(inc) * east + np.sin(inc) * north)

    return State(
        position=position,
        velocity=velocity,
        quaternion=attitude_from_direction(-velocity, position),
        angular_velocity=np.zeros(3),
        mass=mass,
        time=time,
    )
