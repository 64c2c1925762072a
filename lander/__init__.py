"""Lander - world and vehicle models consumed by the landing guidance.

This package provides the "plant" side of the landing autopilot: the
rotating celestial body, terrain oracles, the two-body propagation oracle
and the per-tick vehicle capability snapshot. Flight software lives in
flight/ and only reads these models.

Example:
    >>> from lander import MOON, FlatTerrain, KeplerPropagator, circular_orbit_state
    >>>
    >>> state = circular_orbit_state(MOON, altitude=15e3, mass=2000.0)
    >>> prop = KeplerPropagator.from_state(MOON, state)
    >>> pos, vel = prop.state_at(120.0)
"""

__version__ = "0.1.0"

from lander.body import EARTH, MARS, MOON, CelestialBody
from lander.dynamics.state import State
from lander.orbital import (
    KeplerPropagator,
    OrbitalElements,
    circular_orbit_state,
    compute_orbital_elements,
    is_discontinuous_orbit,
)
from lander.terrain import FlatTerrain, ProceduralTerrain, Terrain
from lander.vehicle import VehicleSnapshot

__all__ = [
    # Bodies
    "CelestialBody",
    "EARTH",
    "MARS",
    "MOON",
    # State
    "State",
    "VehicleSnapshot",
    # Orbits
    "KeplerPropagator",
    "OrbitalElements",
    "circular_orbit_state",
    "compute_orbital_elements",
    "is_discontinuous_orbit",
    # Terrain
    "Terrain",
    "FlatTerrain",
    "ProceduralTerrain",
]
