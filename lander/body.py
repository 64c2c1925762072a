"""Rotating celestial bodies.

A body is a sphere of given radius and gravitational parameter spinning
about the inertial +Z axis, with an optional exponential atmosphere.
Core conversions are numba-compiled, matching the rest of the package.

Frames:
- Inertial: body-centered, non-rotating
- Body-fixed: rotates with the body, X through longitude 0 at time 0

Example:
    >>> from lander.body import MOON
    >>>
    >>> pos = MOON.surface_position(10.0, 20.0, altitude=0.0, time=0.0)
    >>> lat, lon, alt = MOON.coordinates(pos, time=0.0)
    >>> MOON.surface_distance(0.0, 0.0, 0.0, 1.0)  # ~30.3 km
"""

from dataclasses import dataclass

import numpy as np
from beartype import beartype
from numba import njit
from numpy.typing import NDArray

# =============================================================================
# Numba-Optimized Core Functions
# =============================================================================


@njit(cache=True, fastmath=True)
def _central_angle(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle angle between two points given in degrees (haversine) [rad]."""
    phi1 = np.radians(lat1)
    phi2 = np.radians(lat2)
    dphi = phi2 - phi1
    dlmb = np.radians(lon2 - lon1)
    a = np.sin(dphi / 2.0) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlmb / 2.0) ** 2
    if a > 1.0:
        a = 1.0
    return 2.0 * np.arcsin(np.sqrt(a))


@njit(cache=True, fastmath=True)
def _rotate_z(x: float, y: float, z: float, angle: float) -> tuple[float, float, float]:
    """Rotate a vector about +Z by angle [rad]."""
    c = np.cos(angle)
    s = np.sin(angle)
    return (c * x - s * y, s * x + c * y, z)


@njit(cache=True, fastmath=True)
def _spherical_coordinates(x: float, y: float, z: float) -> tuple[float, float, float]:
    """Latitude [deg], longitude [deg] and radius [m] of a body-fixed vector."""
    r = np.sqrt(x*x + y*y + z*z)
    if r < 1e-9:
        return (0.0, 0.0, 0.0)
    lat = np.degrees(np.arcsin(z / r))
    lon = np.degrees(np.arctan2(y, x))
    return (lat, lon, r)


# =============================================================================
# Celestial Body
# =============================================================================


@beartype
@dataclass(frozen=True)
class CelestialBody:
    """Spherical rotating body with an optional exponential atmosphere.

    Attributes:
        name: Body name, used to check that a target belongs to it
        radius: Mean radius [m]
        mu: Gravitational parameter [m^3/s^2]
        rotation_rate: Sidereal rotation rate about +Z [rad/s]
        density_asl: Atmospheric density at zero altitude [kg/m^3] (0 = airless)
        pressure_asl: Static pressure at zero altitude [kPa]
        scale_height: Atmospheric scale height [m]
        temperature: Ambient atmospheric temperature [K]
        has_ocean: Whether terrain below zero altitude is water
    """
    name: str
    radius: float
    mu: float
    rotation_rate: float = 0.0
    density_asl: float = 0.0
    pressure_asl: float = 0.0
    scale_height: float = 7000.0
    temperature: float = 250.0
    has_ocean: bool = False

    def __post_init__(self) -> None:
        if self.radius <= 0:
            raise ValueError(f"Body radius must be positive, got {self.radius}")
        if self.mu <= 0:
            raise ValueError(f"Gravitational parameter must be positive, got {self.mu}")

    @property
    def has_atmosphere(self) -> bool:
        return self.density_asl > 0.0

    @property
    def angular_velocity(self) -> NDArray[np.float64]:
        """Rotation vector of the body [rad/s]."""
        return np.array([0.0, 0.0, self.rotation_rate])

    @property
    def surface_gravity(self) -> float:
        """Gravitational acceleration at zero altitude [m/s^2]."""
        return self.mu / self.radius**2

    def gravity(self, radius: float) -> float:
        """Gravitational acceleration magnitude at a distance from the center [m/s^2]."""
        return self.mu / max(radius, 1.0) ** 2

    # -------------------------------------------------------------------------
    # Frames and coordinates
    # -------------------------------------------------------------------------

    def rotation_angle(self, time: float) -> float:
        """Angle the body has turned since time zero [rad]."""
        return self.rotation_rate * time

    def to_fixed(self, position: NDArray[np.float64], time: float) -> NDArray[np.float64]:
        """Inertial position at time -> body-fixed position."""
        return np.array(_rotate_z(position[0], position[1], position[2], -self.rotation_angle(time)))

    def to_inertial(self, fixed: NDArray[np.float64], time: float) -> NDArray[np.float64]:
        """Body-fixed position -> inertial position at time."""
        return np.array(_rotate_z(fixed[0], fixed[1], fixed[2], self.rotation_angle(time)))

    def fixed_position(self, latitude: float, longitude: float, altitude: float = 0.0) -> NDArray[np.float64]:
        """Body-fixed position of a point given in degrees and meters."""
        lat = np.radians(latitude)
        lon = np.radians(longitude)
        r = self.radius + altitude
        return np.array([
            r * np.cos(lat) * np.cos(lon),
            r * np.cos(lat) * np.sin(lon),
            r * np.sin(lat),
        ])

    def surface_position(
        self,
        latitude: float,
        longitude: float,
        altitude: float = 0.0,
        time: float = 0.0,
    ) -> NDArray[np.float64]:
        """Inertial position at time of a surface-fixed point."""
        return self.to_inertial(self.fixed_position(latitude, longitude, altitude), time)

    def coordinates(self, position: NDArray[np.float64], time: float) -> tuple[float, float, float]:
        """Latitude [deg], longitude [deg] and altitude above the sphere [m].

        Args:
            position: Inertial position [m]
            time: Time at which the position is taken [s]
        """
        x, y, z = _rotate_z(position[0], position[1], position[2], -self.rotation_angle(time))
        lat, lon, r = _spherical_coordinates(x, y, z)
        return float(lat), float(lon), float(r - self.radius)

    def surface_velocity(self, position: NDArray[np.float64]) -> NDArray[np.float64]:
        """Inertial velocity of the ground (or co-rotating air) at a position."""
        return np.cross(self.angular_velocity, position)

    def central_angle(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Great-circle angle between two surface points [rad]."""
        return float(_central_angle(lat1, lon1, lat2, lon2))

    def surface_distance(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Great-circle distance between two surface points [m]."""
        return self.radius * self.central_angle(lat1, lon1, lat2, lon2)

    # -------------------------------------------------------------------------
    # Atmosphere
    # -------------------------------------------------------------------------

    def density(self, altitude: float) -> float:
        """Atmospheric density at altitude [kg/m^3]."""
        if not self.has_atmosphere:
            return 0.0
        return self.density_asl * np.exp(-max(altitude, 0.0) / self.scale_height)

    def pressure(self, altitude: float) -> float:
        """Static pressure at altitude [kPa]."""
        if not self.has_atmosphere:
            return 0.0
        return self.pressure_asl * np.exp(-max(altitude, 0.0) / self.scale_height)

    def atmosphere_temperature(self, altitude: float) -> float:
        """Ambient temperature at altitude [K]; isothermal model."""
        return self.temperature


# =============================================================================
# Presets
# =============================================================================

MOON = CelestialBody(
    name="Moon",
    radius=1737.4e3,
    mu=4.9048695e12,
    rotation_rate=2.6617e-6,
    temperature=250.0,
)

MARS = CelestialBody(
    name="Mars",
    radius=3389.5e3,
    mu=4.282837e13,
    rotation_rate=7.088218e-5,
    density_asl=0.020,
    pressure_asl=0.636,
    scale_height=11100.0,
    temperature=210.0,
)

EARTH = CelestialBody(
    name="Earth",
    radius=6371.0e3,
    mu=3.986004418e14,
    rotation_rate=7.2921159e-5,
    density_asl=1.225,
    pressure_asl=101.325,
    scale_height=8500.0,
    temperature=288.15,
    has_ocean=True,
)
