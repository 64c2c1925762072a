"""Per-tick vehicle capability snapshot.

The host refreshes a VehicleSnapshot once per control tick. The guidance
reads it and never mutates it; everything it wants to change goes out as a
command. Besides the raw numbers the snapshot carries small derived
kinematics used throughout the landing logic: rocket-equation fuel costs,
time-to-burn, hover endurance and rotation times.

Example:
    >>> snapshot = VehicleSnapshot(
    ...     state=state,
    ...     max_thrust=15000.0,
    ...     max_mass_flow=5.0,
    ...     fuel_mass=600.0,
    ... )
    >>> snapshot.ttb(100.0)        # seconds of full thrust to change speed by 100 m/s
    >>> snapshot.max_hover_time(200.0, g=1.62)
"""

from dataclasses import dataclass, field

import numpy as np
from beartype import beartype
from numpy.typing import NDArray

from lander.dynamics.state import State

# =============================================================================
# Vehicle Snapshot
# =============================================================================


def _x_axis() -> NDArray[np.float64]:
    return np.array([1.0, 0.0, 0.0])


def _unit_vector() -> NDArray[np.float64]:
    return np.ones(3)


def _zero_vector() -> NDArray[np.float64]:
    return np.zeros(3)


@beartype
@dataclass
class VehicleSnapshot:
    """Read-only view of the vehicle for one control tick.

    Attributes:
        state: Rigid-body state (inertial frame)
        max_thrust: Maximum thrust of active engines [N]
        max_mass_flow: Propellant mass flow at full throttle [kg/s]
        fuel_mass: Usable propellant mass [kg]
        thrust: Current thrust magnitude [N]
        thrust_axis: Thrust (force) direction in the vehicle frame
        max_torque: Per-axis torque without engines, e.g. wheels and RCS [N*m]
        max_engine_torque: Additional per-axis torque from engine gimbals [N*m]
        moment_of_inertia: Principal moments of inertia [kg*m^2]
        size: Characteristic vehicle size (footprint) [m]
        height: Height of the vehicle above its landing gear [m]
        max_area_axis: Vehicle-frame axis of maximum cross-section area
        has_active_engines: Any engine is currently active
        has_thrusters: At least one engine usable for main thrust
        has_next_stage_engines: Staging would bring more engines online
        has_control_authority: Attitude actuators can follow commands now
        has_potential_control_authority: ... would, with engines throttled up
        landed: Vehicle is landed or splashed down
        dynamic_pressure: Dynamic pressure [kPa]
        static_pressure: Static pressure [kPa]
        mach: Mach number
        external_temperature: Ambient temperature [K]
        min_max_temperature: Lowest temperature limit among parts [K]
        max_temperature_ratio: Highest part temperature / its limit
        has_parachutes: Parachutes present
        has_usable_parachutes: Parachutes present and not yet spent
        parachutes_active: Some parachute is armed or open
        parachutes_deployed: Some parachute is fully deployed
        current_stage: Current staging index
        nearest_parachute_stage: Staging index of the nearest parachute (-1 if none)
        drag: Aerodynamic drag force (inertial) [N]
        lift: Aerodynamic lift force (vehicle frame) [N]
        course_correction: Collision-avoidance velocity correction (inertial) [m/s]
        can_warp: Host allows time acceleration now
    """
    state: State
    max_thrust: float
    max_mass_flow: float
    fuel_mass: float
    thrust: float = 0.0
    thrust_axis: NDArray[np.float64] = field(default_factory=_x_axis)
    max_torque: NDArray[np.float64] = field(default_factory=_unit_vector)
    max_engine_torque: NDArray[np.float64] = field(default_factory=_zero_vector)
    moment_of_inertia: NDArray[np.float64] = field(default_factory=_unit_vector)
    size: float = 2.0
    height: float = 2.0
    max_area_axis: NDArray[np.float64] = field(default_factory=lambda: np.array([0.0, 0.0, 1.0]))
    has_active_engines: bool = True
    has_thrusters: bool = True
    has_next_stage_engines: bool = False
    has_control_authority: bool = True
    has_potential_control_authority: bool = True
    landed: bool = False
    dynamic_pressure: float = 0.0
    static_pressure: float = 0.0
    mach: float = 0.0
    external_temperature: float = 0.0
    min_max_temperature: float = np.inf
    max_temperature_ratio: float = 0.0
    has_parachutes: bool = False
    has_usable_parachutes: bool = False
    parachutes_active: bool = False
    parachutes_deployed: bool = False
    current_stage: int = 0
    nearest_parachute_stage: int = -1
    drag: NDArray[np.float64] = field(default_factory=_zero_vector)
    lift: NDArray[np.float64] = field(default_factory=_zero_vector)
    course_correction: NDArray[np.float64] = field(default_factory=_zero_vector)
    can_warp: bool = True

    def __post_init__(self) -> None:
        if self.max_thrust < 0 or self.max_mass_flow < 0 or self.fuel_mass < 0:
            raise ValueError("Thrust, mass flow and fuel mass must be non-negative")
        norm = np.linalg.norm(self.thrust_axis)
        if norm < 1e-9:
            raise ValueError("Thrust axis must be a non-zero vector")
        self.thrust_axis = self.thrust_axis / norm

    # -------------------------------------------------------------------------
    # Linear kinematics
    # -------------------------------------------------------------------------

    @property
    def mass(self) -> float:
        return self.state.mass

    @property
    def radius(self) -> float:
        """Half of the vehicle size [m]."""
        return self.size / 2.0

    @property
    def max_accel(self) -> float:
        """Acceleration at full thrust [m/s^2]."""
        return self.max_thrust / self.mass

    @property
    def exhaust_velocity(self) -> float:
        """Effective exhaust velocity [m/s]; zero without mass flow."""
        if self.max_mass_flow <= 0:
            return 0.0
        return self.max_thrust / self.max_mass_flow

    @property
    def thrust_direction(self) -> NDArray[np.float64]:
        """Thrust (force) direction in the inertial frame."""
        return self.state.to_inertial(self.thrust_axis)

    def fuel_needed(self, dv: float, mass: float | None = None) -> float:
        """Propellant needed to change velocity by dv (rocket equation) [kg]."""
        m = self.mass if mass is None else mass
        ve = self.exhaust_velocity
        if ve <= 0:
            return np.inf if dv > 0 else 0.0
        return m * (1.0 - np.exp(-abs(dv) / ve))

    def ttb(self, dv: float) -> float:
        """Time to burn dv at full thrust, accounting for mass loss [s]."""
        if dv <= 0:
            return 0.0
        if self.max_thrust <= 0:
            return np.inf
        if self.max_mass_flow <= 0:
            return dv / self.max_accel
        return self.fuel_needed(dv) / self.max_mass_flow

    def antigrav_ttb(self, dv: float, g: float) -> float:
        """Time to kill dv of vertical speed while also fighting gravity g [s]."""
        if dv <= 0:
            return 0.0
        margin = self.max_accel - g
        if margin <= 0:
            return np.inf
        return dv / margin

    def antigrav_fuel_needed(self, dv: float, g: float) -> float:
        """Propellant used while killing dv of vertical speed against gravity [kg]."""
        return self.antigrav_ttb(dv, g) * self.max_mass_flow

    def max_hover_time(self, fuel: float, g: float) -> float:
        """How long the given propellant can keep the vehicle hovering [s]."""
        ve = self.exhaust_velocity
        if fuel <= 0 or ve <= 0 or g <= 0 or self.max_accel <= g:
            return 0.0
        fuel = min(fuel, self.mass * (1.0 - 1e-9))
        return ve / g * np.log(self.mass / (self.mass - fuel))

    def hover_throttle(self, g: float) -> float:
        """Throttle that balances gravity g, clamped to [0, 1]."""
        if self.max_accel <= 0:
            return 1.0
        return float(np.clip(g / self.max_accel, 0.0, 1.0))

    def burn_time_left(self) -> float:
        """Seconds of full-throttle burn left in the tanks."""
        if self.max_mass_flow <= 0:
            return np.inf if self.max_thrust > 0 else 0.0
        return self.fuel_mass / self.max_mass_flow

    # -------------------------------------------------------------------------
    # Rotational kinematics
    # -------------------------------------------------------------------------

    def _angular_accel(self, torque: NDArray[np.float64]) -> NDArray[np.float64]:
        moi = self.moment_of_inertia
        return np.divide(torque, moi, out=np.zeros(3), where=moi > 0)

    @property
    def max_angular_accel(self) -> NDArray[np.float64]:
        """Per-axis angular acceleration without engines [rad/s^2]."""
        return self._angular_accel(self.max_torque)

    @property
    def max_possible_angular_accel(self) -> NDArray[np.float64]:
        """Per-axis angular acceleration with engines at full gimbal [rad/s^2]."""
        return self._angular_accel(self.max_torque + self.max_engine_torque)

    @property
    def angular_momentum(self) -> NDArray[np.float64]:
        return self.state.angular_velocity * self.moment_of_inertia

    def _steering_accel(self, accel: NDArray[np.float64]) -> float:
        """Weakest angular acceleration among axes that turn the thrust axis."""
        roll = int(np.argmax(np.abs(self.thrust_axis)))
        turning = np.delete(accel, roll)
        turning = turning[turning > 0]
        return float(turning.min()) if turning.size else 0.0

    def rotation_time(self, angle: float, with_engines: bool = True) -> float:
        """Time to rotate by angle [deg] accelerating then braking [s]."""
        accel = self.max_possible_angular_accel if with_engines else self.max_angular_accel
        aa = self._steering_accel(accel)
        if angle <= 0:
            return 0.0
        if aa <= 0:
            return np.inf
        return 2.0 * np.sqrt(np.radians(angle) / aa)

    @property
    def min_stop_time(self) -> float:
        """Time to stop the current rotation without engines [s]."""
        accel = self.max_angular_accel
        omega = np.abs(self.state.angular_velocity)
        if not np.any(omega > 0):
            return 0.0
        times = np.divide(omega, accel, out=np.full(3, np.inf), where=accel > 0)
        times[omega == 0] = 0.0
        return float(times.max())

    @property
    def turn_time(self) -> float:
        """Time to turn the thrust axis by a right angle without engines [s]."""
        return self.rotation_time(90.0, with_engines=False)
