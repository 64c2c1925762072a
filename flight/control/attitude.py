"""Attitude control loop.

Turns a desired orientation into a per-axis steering command in [-1, 1]
(the normalized torque request handed to reaction wheels, RCS and engine
gimbals). The loop runs every physics step, independently of the landing
stage machine, and keeps tracking the last requested direction until a new
one is set.

The steering error is a rotation vector in the vehicle frame: rotating the
vehicle by it would bring the current orientation onto the requested one.
Requests come in three kinds:

    thrust direction   the vehicle thrust axis should point along a world
                       vector (force direction, not exhaust direction)
    custom rotation    an arbitrary vehicle axis should point along a world vector
    attitude           a full target quaternion

Thrust-direction errors above an angle threshold are split into rotations
about the dominant and the secondary misaligned vehicle axes instead of one
great-circle rotation, which keeps a nearly anti-parallel flip stable.

Example:
    >>> from flight.control import AttitudeControl, AttitudeMode
    >>>
    >>> atc = AttitudeControl(body=MOON)
    >>> atc.set_thrust_direction(-surface_velocity)
    >>> steering = atc.update(vehicle, dt=0.02)
    >>> atc.attitude_error, atc.alignment_factor
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np
from beartype import beartype
from numpy.typing import NDArray

from lander.body import CelestialBody
from lander.dynamics.state import angle_between, quaternion_to_dcm, rotation_vector, unit
from lander.gnc.control.pid import PIDGains, VectorPIDController
from lander.vehicle import VehicleSnapshot

logger = logging.getLogger(__name__)

STEERING_NORM = np.pi**2

# =============================================================================
# Modes and Configuration
# =============================================================================


class AttitudeMode(Enum):
    """What the attitude loop points the vehicle at."""
    CUSTOM = "custom"
    HOLD_ATTITUDE = "hold_attitude"
    KILL_ROTATION = "kill_rotation"
    PROGRADE = "prograde"
    RETROGRADE = "retrograde"
    NORMAL = "normal"
    ANTI_NORMAL = "anti_normal"
    RADIAL = "radial"
    ANTI_RADIAL = "anti_radial"
    TARGET = "target"
    ANTI_TARGET = "anti_target"
    MANEUVER_NODE = "maneuver_node"


@beartype
@dataclass(frozen=True)
class AttitudeConfig:
    """Attitude loop tuning.

    Attributes:
        gains: Base PID gains
        output_limit: Steering command limit per axis
        min_aaf: Lower clamp of the authority factor
        max_aaf: Upper clamp of the authority factor
        inertia_factor: Softening of the inertia compensation for light vehicles
        angular_mf: Derivative boost per unit of angular momentum
        moi_factor: Moment of inertia at which inertia softening fades out (inverse)
        angle_threshold: Error above which thrust-direction errors are decomposed [deg]
        min_ef: Lower clamp of the error factor
        max_ef: Scale of the proportional and integral gains
        max_attitude_error: Error at which the vehicle counts as misaligned [deg]
    """
    gains: PIDGains = field(default_factory=lambda: PIDGains(kp=10.0, ki=0.02, kd=0.5))
    output_limit: float = 1.0
    min_aaf: float = 0.1
    max_aaf: float = 1.0
    inertia_factor: float = 10.0
    angular_mf: float = 0.002
    moi_factor: float = 0.01
    angle_threshold: float = 25.0
    min_ef: float = 0.001
    max_ef: float = 5.0
    max_attitude_error: float = 10.0


def _max_component(v: NDArray[np.float64]) -> NDArray[np.float64]:
    """v with everything but its largest-magnitude component zeroed."""
    out = np.zeros(3)
    i = int(np.argmax(np.abs(v)))
    out[i] = v[i]
    return out


def _without(v: NDArray[np.float64], index: int) -> NDArray[np.float64]:
    out = v.copy()
    out[index] = 0.0
    return out


def _inverse(v: NDArray[np.float64]) -> NDArray[np.float64]:
    """Component-wise 1/v with zero where v is zero."""
    return np.divide(1.0, v, out=np.zeros(3), where=v != 0)


# =============================================================================
# Attitude Control
# =============================================================================


@dataclass
class AttitudeControl:
    """Gain-scheduled attitude PID loop.

    Attributes:
        config: Loop tuning
        body: Central body; enables surface-relative prograde in an atmosphere
    """
    config: AttitudeConfig = field(default_factory=AttitudeConfig)
    body: CelestialBody | None = None

    _mode: AttitudeMode = field(default=AttitudeMode.KILL_ROTATION, init=False, repr=False)
    _pid: VectorPIDController = field(init=False, repr=False)
    _thrust_direction: NDArray[np.float64] | None = field(default=None, init=False, repr=False)
    _custom_rotation: tuple[NDArray[np.float64], NDArray[np.float64]] | None = field(
        default=None, init=False, repr=False
    )
    _attitude: NDArray[np.float64] | None = field(default=None, init=False, repr=False)
    _target: NDArray[np.float64] | None = field(default=None, init=False, repr=False)
    _maneuver: NDArray[np.float64] | None = field(default=None, init=False, repr=False)
    _locked: NDArray[np.float64] | None = field(default=None, init=False, repr=False)
    _omega2: float = field(default=0.0, init=False, repr=False)
    _p_omega2: float = field(default=0.0, init=False, repr=False)
    _pp_omega2: float = field(default=0.0, init=False, repr=False)
    _error: float = field(default=0.0, init=False, repr=False)
    _gimbal_limit: float = field(default=100.0, init=False, repr=False)

    def __post_init__(self) -> None:
        self._pid = VectorPIDController.from_gains(self.config.gains, output_limit=self.config.output_limit)

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    @property
    def mode(self) -> AttitudeMode:
        return self._mode

    def set_mode(self, mode: AttitudeMode) -> None:
        if mode is not self._mode:
            logger.debug("Attitude mode %s -> %s", self._mode.value, mode.value)
            self._locked = None
        self._mode = mode

    @beartype
    def set_thrust_direction(self, direction: NDArray[np.float64]) -> None:
        """Point the thrust axis along a world direction (force direction)."""
        self.set_mode(AttitudeMode.CUSTOM)
        self._thrust_direction = unit(direction)
        self._custom_rotation = None
        self._attitude = None

    @beartype
    def set_custom_rotation(self, axis: NDArray[np.float64], direction: NDArray[np.float64]) -> None:
        """Point a vehicle-frame axis along a world direction."""
        self.set_mode(AttitudeMode.CUSTOM)
        self._custom_rotation = (unit(axis), unit(direction))
        self._thrust_direction = None
        self._attitude = None

    @beartype
    def set_attitude(self, quaternion: NDArray[np.float64]) -> None:
        """Track a full attitude quaternion (inertial to vehicle)."""
        self.set_mode(AttitudeMode.CUSTOM)
        self._attitude = quaternion / np.linalg.norm(quaternion)
        self._thrust_direction = None
        self._custom_rotation = None

    def set_target(self, position: NDArray[np.float64] | None) -> None:
        """Inertial position used by the TARGET and ANTI_TARGET modes."""
        self._target = None if position is None else np.asarray(position, dtype=np.float64)

    def set_maneuver(self, delta_v: NDArray[np.float64] | None) -> None:
        """Burn vector used by the MANEUVER_NODE mode."""
        self._maneuver = None if delta_v is None else np.asarray(delta_v, dtype=np.float64)

    def reset(self) -> None:
        """Forget all loop memory; requests and mode are kept."""
        self._pid.reset()
        self._locked = None
        self._omega2 = self._p_omega2 = self._pp_omega2 = 0.0
        self._error = 0.0
        self._gimbal_limit = 100.0

    # -------------------------------------------------------------------------
    # Outputs
    # -------------------------------------------------------------------------

    @property
    def steering(self) -> NDArray[np.float64]:
        """Last steering command."""
        return self._pid.action

    @property
    def attitude_error(self) -> float:
        """Angle between current and requested orientation [deg]."""
        return self._error

    @property
    def gimbal_limit(self) -> float:
        """Engine gimbal range allowed for steering [%]."""
        return self._gimbal_limit

    @property
    def alignment_factor(self) -> float:
        """1 when aligned, falling to 0 at the maximum attitude error."""
        return max(1.0 - self._error / self.config.max_attitude_error, 0.0)

    @property
    def inv_alignment_factor(self) -> float:
        return min(self._error / self.config.max_attitude_error, 1.0)

    # -------------------------------------------------------------------------
    # Steering error
    # -------------------------------------------------------------------------

    def _attitude_error(self, vehicle: VehicleSnapshot, target: NDArray[np.float64]) -> NDArray[np.float64]:
        """Rotation vector from the current to the target attitude (vehicle frame)."""
        current = vehicle.state.dcm_inertial_to_body
        desired = quaternion_to_dcm(target)
        return rotation_vector(current @ desired.T)

    @staticmethod
    def _from_to(current: NDArray[np.float64], needed: NDArray[np.float64]) -> NDArray[np.float64]:
        """Great-circle rotation vector taking one vehicle-frame direction onto another."""
        axis = np.cross(current, needed)
        angle = np.radians(angle_between(current, needed))
        if np.linalg.norm(axis) < 1e-9:
            if angle < 1e-6:
                return np.zeros(3)
            # anti-parallel: any perpendicular axis will do
            axis = np.cross(current, np.eye(3)[int(np.argmin(np.abs(current)))])
        return unit(axis) * angle

    def _direction_error(
        self,
        vehicle: VehicleSnapshot,
        needed: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Steering that turns the thrust axis onto a needed vehicle-frame direction."""
        lthrust = vehicle.thrust_axis
        if angle_between(lthrust, needed) <= self.config.angle_threshold:
            return self._from_to(lthrust, needed)

        # split into rotations about the two most misaligned vehicle axes
        main = int(np.argmax(np.abs(lthrust)))
        axis = _without(np.cross(lthrust, needed), main)
        if np.dot(axis, axis) < 0.01:
            axis = _max_component(_without(vehicle.max_angular_accel, main))
        axis1 = _max_component(axis)
        e1 = unit(axis1)
        lthrust1 = lthrust - np.dot(lthrust, e1) * e1
        needed1 = needed - np.dot(needed, e1) * e1
        angle1 = _signed(lthrust1, needed1, e1)
        axis2 = _max_component(axis - axis1)
        e2 = unit(axis2)
        angle2 = _signed(needed1, needed, e2) if np.any(e2) else 0.0
        return e1 * angle1 + e2 * angle2

    def _needed_direction(self, vehicle: VehicleSnapshot) -> NDArray[np.float64] | None:
        """World force direction requested by the current mode, if it is direction-based."""
        state = vehicle.state
        velocity = state.velocity
        if self.body is not None and vehicle.static_pressure > 0:
            velocity = velocity - self.body.surface_velocity(state.position)
        h = np.cross(state.position, state.velocity)
        mode = self._mode
        if mode is AttitudeMode.CUSTOM:
            return self._thrust_direction
        if mode is AttitudeMode.PROGRADE:
            return unit(velocity)
        if mode is AttitudeMode.RETROGRADE:
            return -unit(velocity)
        if mode is AttitudeMode.NORMAL:
            return unit(h)
        if mode is AttitudeMode.ANTI_NORMAL:
            return -unit(h)
        if mode is AttitudeMode.RADIAL:
            return unit(np.cross(state.velocity, h))
        if mode is AttitudeMode.ANTI_RADIAL:
            return -unit(np.cross(state.velocity, h))
        if mode in (AttitudeMode.TARGET, AttitudeMode.ANTI_TARGET):
            if self._target is None:
                logger.info("No target to point at, killing rotation")
                self.set_mode(AttitudeMode.KILL_ROTATION)
                return None
            toward = unit(self._target - state.position)
            return toward if mode is AttitudeMode.TARGET else -toward
        if mode is AttitudeMode.MANEUVER_NODE:
            if self._maneuver is None or not np.any(self._maneuver):
                logger.info("No maneuver to execute, killing rotation")
                self.set_mode(AttitudeMode.KILL_ROTATION)
                return None
            return unit(self._maneuver)
        return None

    def _compute_error(self, vehicle: VehicleSnapshot) -> NDArray[np.float64]:
        state = vehicle.state
        mode = self._mode

        if mode is AttitudeMode.HOLD_ATTITUDE:
            if self._locked is None:
                self._locked = state.quaternion.copy()
            return self._attitude_error(vehicle, self._locked)

        if mode is AttitudeMode.KILL_ROTATION:
            # re-lock only once rotation stopped decreasing
            if self._locked is None or (self._p_omega2 <= self._pp_omega2 and self._p_omega2 < self._omega2):
                self._locked = state.quaternion.copy()
            return self._attitude_error(vehicle, self._locked)

        if mode is AttitudeMode.CUSTOM:
            if self._attitude is not None:
                return self._attitude_error(vehicle, self._attitude)
            if self._custom_rotation is not None:
                axis, direction = self._custom_rotation
                return self._from_to(axis, state.to_body(direction))

        needed = self._needed_direction(vehicle)
        if needed is None:
            if self._mode is AttitudeMode.KILL_ROTATION:
                return self._compute_error(vehicle)
            return np.zeros(3)
        return self._direction_error(vehicle, unit(state.to_body(needed)))

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def _available_torque(self, vehicle: VehicleSnapshot) -> NDArray[np.float64]:
        torque = vehicle.max_torque.copy()
        if vehicle.max_thrust > 0 and vehicle.thrust > 0:
            torque = torque + vehicle.max_engine_torque * min(vehicle.thrust / vehicle.max_thrust, 1.0)
        return torque

    @beartype
    def update(self, vehicle: VehicleSnapshot, dt: float) -> NDArray[np.float64]:
        """Advance the loop by one physics step.

        Args:
            vehicle: Current vehicle snapshot
            dt: Physics step [s]

        Returns:
            Per-axis steering command in [-output_limit, output_limit]
        """
        cfg = self.config
        omega = vehicle.state.angular_velocity
        self._omega2 = float(np.dot(omega, omega))

        steering = self._compute_error(vehicle)
        self._error = float(np.degrees(np.linalg.norm(steering)))

        moi = vehicle.moment_of_inertia
        torque = self._available_torque(vehicle)
        max_aa = np.divide(torque, moi, out=np.zeros(3), where=moi > 0)
        angular_m = vehicle.angular_momentum

        # gain scheduling
        max_aa_m = float(np.linalg.norm(max_aa))
        aaf = float(np.clip(1.0 / max_aa_m, cfg.min_aaf, cfg.max_aaf)) if max_aa_m > 0 else cfg.max_aaf
        ef = float(np.clip(np.dot(steering, steering) / STEERING_NORM, cfg.min_ef, 1.0))
        pif = aaf * max(1.0 - ef, 0.5) * cfg.max_ef
        kd_f = min(max(1.0 - 2.0 * ef, 0.0) + float(np.linalg.norm(angular_m)) * cfg.angular_mf, 1.0)
        self._pid.gains = replace(cfg.gains.scale(pif), kd=cfg.gains.kd * kd_f * aaf * aaf)
        self._gimbal_limit = ef * 100.0

        # weight axes by inverse authority, ignoring the least-misaligned one
        control = (steering != 0).astype(np.float64)
        authority = _without(max_aa, int(np.argmin(np.abs(steering)))) * control
        steering = steering * unit(_inverse(authority))

        # counter the momentum of slow-turning axes
        inertia = np.clip(
            np.sign(angular_m) * angular_m**2 * _inverse(torque * moi),
            -np.pi, np.pi,
        )
        softening = float(np.interp(np.clip(np.linalg.norm(moi) * cfg.moi_factor, 0.0, 1.0),
                                    [0.0, 1.0], [cfg.inertia_factor, 1.0]))
        steering = steering - inertia / softening

        action = self._pid.update(steering, omega, dt)

        self._pp_omega2 = self._p_omega2
        self._p_omega2 = self._omega2
        return action


def _signed(a: NDArray[np.float64], b: NDArray[np.float64], axis: NDArray[np.float64]) -> float:
    """Angle from a to b about axis [rad]."""
    angle = np.radians(angle_between(a, b))
    return float(angle if np.dot(np.cross(a, b), axis) >= 0 else -angle)
