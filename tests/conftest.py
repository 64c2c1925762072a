"""Shared fixtures and test doubles for the landing autopilot tests.

Vehicles are built on the lunar equator, moving east over a flat surface,
so geometry is easy to reason about: "ahead" is +longitude and the local
vertical is the position direction.
"""

from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np
import pytest
from numpy.typing import NDArray

from flight.actuators import Actuators
from flight.guidance.target import Target
from flight.guidance.trajectory import LandingTrajectory, SurfacePoint, TrajectoryEvent
from lander.body import MOON, CelestialBody
from lander.dynamics.state import State, attitude_from_direction, unit
from lander.terrain import FlatTerrain
from lander.vehicle import VehicleSnapshot

# =============================================================================
# Builders
# =============================================================================


def make_state(
    body: CelestialBody = MOON,
    altitude: float = 5000.0,
    longitude: float = 0.0,
    vertical_speed: float = 0.0,
    east_speed: float = 0.0,
    time: float = 0.0,
    mass: float = 2000.0,
) -> State:
    """Equatorial state with a surface-relative velocity, thrust axis up."""
    position = body.surface_position(0.0, longitude, altitude, time)
    up = unit(position)
    east = unit(np.cross(np.array([0.0, 0.0, 1.0]), up))
    velocity = body.surface_velocity(position) + vertical_speed * up + east_speed * east
    return State(
        position=position,
        velocity=velocity,
        quaternion=attitude_from_direction(up, east),
        angular_velocity=np.zeros(3),
        mass=mass,
        time=time,
    )


def make_vehicle(
    body: CelestialBody = MOON,
    altitude: float = 5000.0,
    longitude: float = 0.0,
    vertical_speed: float = 0.0,
    east_speed: float = 0.0,
    time: float = 0.0,
    mass: float = 2000.0,
    **kwargs,
) -> VehicleSnapshot:
    """Lander with a thrust-to-weight ratio of about 4.6 on the Moon."""
    options = {"max_thrust": 15000.0, "max_mass_flow": 5.0, "fuel_mass": 600.0}
    options.update(kwargs)
    state = make_state(body, altitude, longitude, vertical_speed, east_speed, time, mass)
    return VehicleSnapshot(state=state, **options)


def make_trajectory(
    vehicle: VehicleSnapshot,
    target: Target,
    brake_start: float,
    fly_over: float | None = None,
    delta_radial: float = 0.0,
    distance: float = 0.0,
    fuel: float = 100.0,
    propagator=None,
) -> LandingTrajectory:
    """Canned prediction with events at absolute times and the site on the target."""
    state = vehicle.state
    fly_over = brake_start + 10.0 if fly_over is None else fly_over

    def event(time: float) -> TrajectoryEvent:
        return TrajectoryEvent(time, state.position.copy(), state.velocity.copy())

    return LandingTrajectory(
        start_time=state.time,
        start_state=state.copy(),
        target=target,
        target_altitude=target.altitude,
        fly_over=event(fly_over),
        brake_start=event(brake_start),
        brake_end=event(fly_over),
        impact=None,
        surface_point=SurfacePoint(target.latitude, target.longitude, target.altitude),
        delta_radial=delta_radial,
        delta_angular=0.0,
        distance_to_target=distance,
        brake_duration=fly_over - brake_start,
        brake_delta_v=state.speed,
        total_fuel_needed=fuel,
        propagator=propagator,
    )


# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class LinearPropagator:
    """Straight-line coast, handy for predictable clearance profiles."""
    position: NDArray[np.float64]
    velocity: NDArray[np.float64]
    epoch: float = 0.0

    @classmethod
    def from_state(cls, body: CelestialBody, state: State) -> "LinearPropagator":
        return cls(state.position.copy(), state.velocity.copy(), state.time)

    def state_at(self, time: float) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        return self.position + self.velocity * (time - self.epoch), self.velocity.copy()

    def states_at(self, times: NDArray[np.float64]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        dt = np.asarray(times, dtype=np.float64) - self.epoch
        return self.position + np.outer(dt, self.velocity), np.tile(self.velocity, (len(dt), 1))


@dataclass
class StubPredictor:
    """Predictor returning canned trajectories and recording every call.

    Attributes:
        build: Makes the trajectory from (vehicle, target)
        calls: The full flag of every predict() call
    """
    build: Callable[[VehicleSnapshot, Target], LandingTrajectory]
    calls: list[bool] = field(default_factory=list)

    def predict(self, vehicle, target, start_time=None, full=False, with_path=False):
        self.calls.append(full)
        return self.build(vehicle, target)

    @property
    def full_calls(self) -> int:
        return sum(self.calls)


@dataclass
class RecordingActuators(Actuators):
    """Actuator sink that remembers the last value of every channel."""
    throttle: float | None = None
    thrust_direction: NDArray[np.float64] | None = None
    attitude: NDArray[np.float64] | None = None
    steering: NDArray[np.float64] | None = None

    def set_throttle(self, throttle: float) -> None:
        self.throttle = throttle

    def set_desired_thrust_direction(self, direction: NDArray[np.float64]) -> None:
        self.thrust_direction = direction

    def set_desired_attitude(self, quaternion: NDArray[np.float64]) -> None:
        self.attitude = quaternion

    def set_steering_command(self, steering: NDArray[np.float64]) -> None:
        self.steering = steering


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def moon() -> CelestialBody:
    return MOON


@pytest.fixture
def flat() -> FlatTerrain:
    return FlatTerrain()


@pytest.fixture
def vehicle() -> VehicleSnapshot:
    return make_vehicle()


@pytest.fixture
def near_target(moon, flat) -> Target:
    """Waypoint about 300 m east of the vehicles built by make_vehicle()."""
    return Target.on_surface(moon, flat, 0.0, 0.01)
