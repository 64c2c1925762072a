"""Actuator sinks.

The flight software never touches hardware. Each tick it produces commands,
and the host forwards them to whatever implements the Actuators protocol.

Example:
    >>> command = autopilot.update(vehicle)
    >>> apply_command(actuators, command)
    >>> apply_steering(actuators, attitude.update(vehicle, dt))
"""

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from flight.guidance.stages import LandingCommand

# =============================================================================
# Actuator Protocol
# =============================================================================


@runtime_checkable
class Actuators(Protocol):
    """Protocol for the host's actuator sinks."""

    @abstractmethod
    def set_throttle(self, throttle: float) -> None:
        """Main engine throttle in [0, 1]."""
        ...

    @abstractmethod
    def set_desired_thrust_direction(self, direction: NDArray[np.float64]) -> None:
        """World direction the thrust (force) should point along."""
        ...

    @abstractmethod
    def set_desired_attitude(self, quaternion: NDArray[np.float64]) -> None:
        """Attitude to hold (inertial to vehicle quaternion)."""
        ...

    @abstractmethod
    def set_steering_command(self, steering: NDArray[np.float64]) -> None:
        """Per-axis normalized torque request in [-1, 1]."""
        ...


# =============================================================================
# Dispatch
# =============================================================================


def apply_command(actuators: Actuators, command: "LandingCommand") -> None:
    """Forward the actuator part of a landing command.

    Orientation requests that are not thrust directions (custom rotations,
    attitude off) are the attitude loop's business and are not forwarded.
    """
    actuators.set_throttle(float(np.clip(command.throttle, 0.0, 1.0)))
    if command.thrust_direction is not None:
        actuators.set_desired_thrust_direction(command.thrust_direction)
    if command.attitude is not None:
        actuators.set_desired_attitude(command.attitude)


def apply_steering(actuators: Actuators, steering: NDArray[np.float64]) -> None:
    actuators.set_steering_command(np.clip(steering, -1.0, 1.0))
