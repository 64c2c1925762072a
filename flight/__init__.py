"""Flight software package - powered-landing guidance and control.

This package contains the guidance and control algorithms that would run
on the flight computer of a landing vehicle. They read the world and
vehicle models in lander/ and never mutate them.

Architecture:
    The host (a simulator or a game) provides the "plant": it refreshes a
    VehicleSnapshot every tick and applies the commands it gets back.

    Control loop:
        vehicle = host.snapshot()                      # "Sensors"
        command = autopilot.update(vehicle)            # Stage machine
        steering = autopilot.attitude.update(vehicle, dt)
        apply_command(host, command)                   # Actuators
        apply_steering(host, steering)

Subpackages:
    guidance: Trajectory prediction, site search and the landing stages
    control: Attitude control loop

Example:
    >>> from lander import MOON, FlatTerrain
    >>> from flight import LandingAutopilot, Target
    >>>
    >>> terrain = FlatTerrain()
    >>> autopilot = LandingAutopilot(MOON, terrain, Target.on_surface(MOON, terrain, 0.0, 30.0))
    >>> autopilot.start(vehicle)
"""

from flight.actuators import Actuators, apply_command, apply_steering
from flight.control import AttitudeConfig, AttitudeControl, AttitudeMode
from flight.errors import DiscontinuousOrbitError, LandingError, LandingSetupError, TargetError
from flight.guidance import LandingAutopilot, LandingCommand, LandingConfig, LandingStage, Target

__all__ = [
    # Actuators
    "Actuators",
    "apply_command",
    "apply_steering",
    # Control
    "AttitudeConfig",
    "AttitudeControl",
    "AttitudeMode",
    # Errors
    "DiscontinuousOrbitError",
    "LandingError",
    "LandingSetupError",
    "TargetError",
    # Guidance
    "LandingAutopilot",
    "LandingCommand",
    "LandingConfig",
    "LandingStage",
    "Target",
]
