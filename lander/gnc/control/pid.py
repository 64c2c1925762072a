"""PID controller for three-axis attitude control.

Provides a vector PID controller with:
- Per-axis integral with anti-windup clamping
- Derivative taken from measured rates (derivative on measurement)
- Output saturation
- Gain scheduling via mutable gains

Example:
    >>> from lander.gnc.control import PIDGains, VectorPIDController
    >>>
    >>> ctrl = VectorPIDController.from_gains(PIDGains(kp=10.0, ki=0.02, kd=0.5), output_limit=1.0)
    >>>
    >>> # angular error [rad] and body rates [rad/s] in the vehicle frame
    >>> command = ctrl.update(steering_error, angular_velocity, dt=0.02)
"""

from dataclasses import dataclass, field

import numpy as np
from beartype import beartype
from numpy.typing import NDArray

# =============================================================================
# PID Gains
# =============================================================================


@beartype
@dataclass(frozen=True)
class PIDGains:
    """PID controller gains.

    Attributes:
        kp: Proportional gain
        ki: Integral gain
        kd: Derivative gain
    """
    kp: float = 1.0
    ki: float = 0.0
    kd: float = 0.0

    def scale(self, factor: float) -> "PIDGains":
        """Scale all gains by a factor."""
        return PIDGains(
            kp=self.kp * factor,
            ki=self.ki * factor,
            kd=self.kd * factor,
        )


# =============================================================================
# Vector PID Controller
# =============================================================================


@beartype
@dataclass
class VectorPIDController:
    """Three-axis PID controller.

    Implements, per axis:
        u = kp * e + ki * integral(e) - kd * rate

    The derivative acts on the measured rate rather than on the error, so
    setpoint jumps do not kick the output.

    Attributes:
        kp: Proportional gain
        ki: Integral gain
        kd: Derivative gain
        output_limit: Symmetric per-axis output limit (None = unlimited)
        integral_limit: Symmetric per-axis integral limit (None = unlimited)
    """
    kp: float = 1.0
    ki: float = 0.0
    kd: float = 0.0
    output_limit: float | None = None
    integral_limit: float | None = None

    # Internal state
    _integral: NDArray[np.float64] = field(default_factory=lambda: np.zeros(3), init=False, repr=False)
    _action: NDArray[np.float64] = field(default_factory=lambda: np.zeros(3), init=False, repr=False)

    @classmethod
    def from_gains(
        cls,
        gains: PIDGains,
        output_limit: float | None = None,
    ) -> "VectorPIDController":
        """Create controller from PIDGains object."""
        return cls(
            kp=gains.kp,
            ki=gains.ki,
            kd=gains.kd,
            output_limit=output_limit,
        )

    def reset(self) -> None:
        """Reset integrator and last output."""
        self._integral = np.zeros(3)
        self._action = np.zeros(3)

    def update(
        self,
        error: NDArray[np.float64],
        rate: NDArray[np.float64],
        dt: float,
    ) -> NDArray[np.float64]:
        """Compute PID output.

        Args:
            error: Per-axis error (setpoint - measurement)
            rate: Measured per-axis rate of the controlled quantity
            dt: Time step [s]

        Returns:
            Control output per axis
        """
        if dt <= 0:
            return self._action.copy()

        self._integral = self._integral + error * dt
        if self.integral_limit is not None:
            self._integral = np.clip(self._integral, -self.integral_limit, self.integral_limit)

        output = self.kp * error + self.ki * self._integral - self.kd * rate

        if self.output_limit is not None:
            output = np.clip(output, -self.output_limit, self.output_limit)

        self._action = output
        return output.copy()

    @property
    def action(self) -> NDArray[np.float64]:
        """Last computed output."""
        return self._action.copy()

    @property
    def integral(self) -> NDArray[np.float64]:
        return self._integral.copy()

    @property
    def gains(self) -> PIDGains:
        """Get current gains as PIDGains object."""
        return PIDGains(kp=self.kp, ki=self.ki, kd=self.kd)

    @gains.setter
    def gains(self, value: PIDGains) -> None:
        """Set gains from PIDGains object."""
        self.kp = value.kp
        self.ki = value.ki
        self.kd = value.kd
