"""Landing target.

A target is an immutable surface-fixed point, optionally marking a landed
vessel. Relocation (by the flat-site search or a collision-avoidance
re-target) produces a new Target; the autopilot decides whether to adopt it.

Example:
    >>> from lander import MOON, FlatTerrain
    >>> from flight.guidance.target import Target
    >>>
    >>> target = Target.on_surface(MOON, FlatTerrain(), latitude=0.0, longitude=12.5)
    >>> target.distance_to(MOON, state.position, state.time)
"""

from dataclasses import dataclass, replace

import numpy as np
from beartype import beartype
from numpy.typing import NDArray

from lander.body import CelestialBody
from lander.terrain import Terrain

# =============================================================================
# Target
# =============================================================================


@beartype
@dataclass(frozen=True)
class Target:
    """Surface-fixed landing target.

    Attributes:
        latitude: Target latitude [deg]
        longitude: Target longitude [deg]
        altitude: Surface altitude at the target [m]
        is_vessel: The target marks a vessel rather than a waypoint
        radius: Extent of the target; widens the landing deadzone [m]
        body_name: Body the target belongs to (None = any)
        vessel_landed: For vessel targets, whether the vessel is landed
    """
    latitude: float
    longitude: float
    altitude: float = 0.0
    is_vessel: bool = False
    radius: float = 0.0
    body_name: str | None = None
    vessel_landed: bool = True

    @classmethod
    def on_surface(
        cls,
        body: CelestialBody,
        terrain: Terrain,
        latitude: float,
        longitude: float,
        **kwargs,
    ) -> "Target":
        """Waypoint at the terrain surface of a body."""
        return cls(
            latitude=latitude,
            longitude=longitude,
            altitude=float(terrain.altitude(latitude, longitude)),
            body_name=body.name,
            **kwargs,
        )

    def position(self, body: CelestialBody, time: float) -> NDArray[np.float64]:
        """Inertial position of the target at time [m]."""
        return body.surface_position(self.latitude, self.longitude, self.altitude, time)

    def vector_to(self, body: CelestialBody, position: NDArray[np.float64], time: float) -> NDArray[np.float64]:
        """Vector from the target to an inertial position [m]."""
        return position - self.position(body, time)

    def angle_to(self, body: CelestialBody, position: NDArray[np.float64], time: float) -> float:
        """Central angle between the target and the ground point under position [rad]."""
        lat, lon, _ = body.coordinates(position, time)
        return body.central_angle(self.latitude, self.longitude, lat, lon)

    def distance_to(self, body: CelestialBody, position: NDArray[np.float64], time: float) -> float:
        """Surface distance from the target to the ground point under position [m]."""
        return body.radius * self.angle_to(body, position, time)

    def same_site(self, latitude: float, longitude: float) -> bool:
        return bool(np.isclose(latitude, self.latitude) and np.isclose(longitude, self.longitude))

    def relocated(self, latitude: float, longitude: float, altitude: float) -> "Target":
        """Waypoint at another site. Relocation never keeps the vessel marker."""
        return Target(
            latitude=latitude,
            longitude=longitude,
            altitude=altitude,
            body_name=self.body_name,
        )

    def with_radius(self, radius: float) -> "Target":
        return replace(self, radius=radius)
