"""Terrain oracles.

The guidance never owns terrain data; it only asks two questions of the
surface under a latitude/longitude pair: how high it is and whether it is
water. Anything implementing the Terrain protocol can be plugged in.

Example:
    >>> from lander.terrain import FlatTerrain, ProceduralTerrain
    >>>
    >>> flat = FlatTerrain(level=120.0)
    >>> hills = ProceduralTerrain(lambda lat, lon: 5.0 * (lat**2 + lon**2))
    >>> hills.altitude(10.0, 20.0)
"""

from abc import abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

# =============================================================================
# Terrain Protocol
# =============================================================================


@runtime_checkable
class Terrain(Protocol):
    """Protocol for surface height/water oracles.

    Coordinates are in degrees; altitudes in meters above the body sphere.
    """

    @abstractmethod
    def altitude(self, latitude: float, longitude: float) -> float:
        """Surface altitude at a point. Water surfaces report their own level."""
        ...

    @abstractmethod
    def is_water(self, latitude: float, longitude: float) -> bool:
        """Whether the point is covered by water."""
        ...


# =============================================================================
# Implementations
# =============================================================================


@dataclass(frozen=True)
class FlatTerrain:
    """Terrain at a constant altitude everywhere."""
    level: float = 0.0
    water: bool = False

    def altitude(self, latitude: float, longitude: float) -> float:
        return self.level

    def is_water(self, latitude: float, longitude: float) -> bool:
        return self.water


@dataclass(frozen=True)
class ProceduralTerrain:
    """Terrain defined by a height function of (latitude, longitude) in degrees.

    Attributes:
        height: Raw terrain height function [m]
        ocean: If True, points with negative height are water at level 0
        water: Optional explicit water predicate, overrides the ocean rule
    """
    height: Callable[[float, float], float]
    ocean: bool = False
    water: Callable[[float, float], bool] | None = None

    def altitude(self, latitude: float, longitude: float) -> float:
        h = float(self.height(latitude, longitude))
        if self.ocean and h < 0.0:
            return 0.0
        return h

    def is_water(self, latitude: float, longitude: float) -> bool:
        if self.water is not None:
            return bool(self.water(latitude, longitude))
        return self.ocean and float(self.height(latitude, longitude)) < 0.0
