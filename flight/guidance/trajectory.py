"""Landing trajectory prediction.

Predicts where the vehicle would land if it coasted from its current state
and then killed its surface-relative speed with one full-thrust braking burn
ending above the target. The prediction is an immutable LandingTrajectory;
the autopilot replaces it wholesale when the state or target changes.

The coast itself comes from a propagation oracle (any object with
state_at/states_at, by default a two-body KeplerPropagator). Events are
located on the ballistic path:

    impact      first crossing of the target-altitude sphere
    fly_over    closest angular approach to the (rotating) target,
                or the impact point when impact comes first
    brake_end   = fly_over
    brake_start = brake_end - time-to-burn(surface speed at fly_over)

Example:
    >>> from lander import MOON, FlatTerrain
    >>> from flight.guidance import LandingConfig, Target, TrajectoryPredictor
    >>>
    >>> predictor = TrajectoryPredictor(MOON, LandingConfig(), terrain=FlatTerrain())
    >>> trajectory = predictor.predict(vehicle, target, full=True)
    >>> trajectory.distance_to_target, trajectory.brake_start.time
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import NamedTuple, Protocol, runtime_checkable

import numpy as np
from beartype import beartype
from numpy.typing import NDArray

from flight.guidance.config import LandingConfig
from flight.guidance.target import Target
from lander.body import CelestialBody
from lander.dynamics.state import State, signed_angle, unit
from lander.orbital import KeplerPropagator, compute_orbital_elements
from lander.terrain import Terrain
from lander.vehicle import VehicleSnapshot

PATH_COLUMNS = ("time", "x", "y", "z", "latitude", "longitude", "altitude", "temperature")

# =============================================================================
# Events and Propagation Oracle
# =============================================================================


class TrajectoryEvent(NamedTuple):
    """A point of the predicted path (inertial frame)."""
    time: float
    position: NDArray[np.float64]
    velocity: NDArray[np.float64]


class SurfacePoint(NamedTuple):
    latitude: float
    longitude: float
    altitude: float


@runtime_checkable
class Propagator(Protocol):
    """Coast propagation oracle: pure function of time."""

    def state_at(self, time: float) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        ...

    def states_at(self, times: NDArray[np.float64]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        ...


# =============================================================================
# Landing Trajectory
# =============================================================================


@beartype
@dataclass(frozen=True, eq=False)
class LandingTrajectory:
    """Immutable landing prediction.

    Attributes:
        start_time: Time the prediction starts from [s]
        start_state: Vehicle state the prediction was made from
        target: Landing target
        target_altitude: Altitude of the target surface [m]
        fly_over: Closest approach to the target on the ballistic path
        brake_start: Start of the braking burn
        brake_end: End of the braking burn
        impact: Ballistic impact on the target-altitude sphere, if any
        surface_point: Predicted landing site
        delta_radial: Along-track angle from landing site to target, positive when short [deg]
        delta_angular: Cross-track angle from landing site to target [deg]
        distance_to_target: Surface distance from landing site to target [m]
        brake_duration: Full-thrust braking time [s]
        brake_delta_v: Surface speed killed by the braking burn [m/s]
        total_fuel_needed: Propellant for braking (and final descent, if full) [kg]
        max_temperature: Highest predicted skin temperature before braking [K]
        overheat: Predicted temperature exceeds the vehicle's limit
    """
    start_time: float
    start_state: State
    target: Target
    target_altitude: float
    fly_over: TrajectoryEvent
    brake_start: TrajectoryEvent
    brake_end: TrajectoryEvent
    impact: TrajectoryEvent | None
    surface_point: SurfacePoint
    delta_radial: float
    delta_angular: float
    distance_to_target: float
    brake_duration: float
    brake_delta_v: float
    total_fuel_needed: float
    max_temperature: float = 0.0
    overheat: bool = False
    propagator: Propagator | None = field(default=None, repr=False)
    path: NDArray[np.float64] | None = field(default=None, repr=False)

    @property
    def time_to_target(self) -> float:
        return self.fly_over.time - self.start_time

    @property
    def at_target_position(self) -> NDArray[np.float64]:
        return self.fly_over.position

    @property
    def at_target_velocity(self) -> NDArray[np.float64]:
        return self.fly_over.velocity

    @property
    def will_overheat(self) -> bool:
        return self.overheat

    def surface_position(self, body: CelestialBody, time: float) -> NDArray[np.float64]:
        """Inertial position of the predicted landing site at time."""
        sp = self.surface_point
        return body.surface_position(sp.latitude, sp.longitude, sp.altitude, time)

    def retargeted(self, target: Target) -> "LandingTrajectory":
        """Copy aimed at a new target placed on the predicted landing site."""
        return replace(
            self,
            target=target,
            target_altitude=target.altitude,
            delta_radial=0.0,
            delta_angular=0.0,
            distance_to_target=0.0,
        )

    def path_frame(self):
        """Sampled path as a polars DataFrame (for renderers and logs).

        Returns:
            DataFrame with columns time, x, y, z (body-fixed), latitude,
            longitude, altitude and temperature
        """
        import polars as pl

        if self.path is None:
            return pl.DataFrame(schema={name: pl.Float64 for name in PATH_COLUMNS})
        return pl.DataFrame({name: self.path[:, i] for i, name in enumerate(PATH_COLUMNS)})


# =============================================================================
# Predictor
# =============================================================================


@dataclass
class TrajectoryPredictor:
    """Builds LandingTrajectory snapshots for a body.

    Attributes:
        body: Central body
        config: Landing configuration
        terrain: Terrain oracle for the landing-site altitude (None = target altitude)
        propagator_factory: Builds a propagation oracle from a vehicle state
        samples: Number of coarse samples for event searches
        horizon: Longest coast considered [s] (None = one orbit, or an escape estimate)
        time_tolerance: Resolution of event times [s]
    """
    body: CelestialBody
    config: LandingConfig = field(default_factory=LandingConfig)
    terrain: Terrain | None = None
    propagator_factory: Callable[[CelestialBody, State], Propagator] = KeplerPropagator.from_state
    samples: int = 256
    horizon: float | None = None
    time_tolerance: float = 0.01

    def __post_init__(self) -> None:
        if self.samples < 3:
            raise ValueError(f"At least 3 samples are needed, got {self.samples}")

    def predict(
        self,
        vehicle: VehicleSnapshot,
        target: Target,
        start_time: float | None = None,
        full: bool = False,
        with_path: bool = False,
    ) -> LandingTrajectory:
        """Predict the landing from the vehicle's current state.

        Args:
            vehicle: Vehicle snapshot
            target: Landing target
            start_time: Prediction start (None = state time)
            full: Also estimate final-descent fuel and reentry heating
            with_path: Also sample the path for rendering

        Returns:
            LandingTrajectory
        """
        body = self.body
        state = vehicle.state
        t0 = state.time if start_time is None else float(start_time)
        propagator = self.propagator_factory(body, state)
        ground_radius = body.radius + target.altitude

        t_end = t0 + self._horizon(state)
        impact = self._find_impact(propagator, t0, t_end, ground_radius)
        if impact is not None:
            t_end = impact.time
        fly_over = self._closest_approach(propagator, target, t0, t_end)

        # braking burn ends at fly-over
        srf_vel = fly_over.velocity - body.surface_velocity(fly_over.position)
        brake_dv = float(np.linalg.norm(srf_vel))
        brake_duration = float(vehicle.ttb(brake_dv))
        if np.isfinite(brake_duration):
            brake_start_time = max(t0, fly_over.time - brake_duration)
            surface_time = min(brake_start_time + brake_duration / 2.0, fly_over.time)
        else:
            brake_start_time = t0
            surface_time = fly_over.time
        brake_start = self._event(propagator, brake_start_time)

        # the braked path stops about where the ballistic one is halfway through the burn
        sp_pos, _ = propagator.state_at(surface_time)
        lat, lon, _ = body.coordinates(sp_pos, surface_time)
        alt = target.altitude if self.terrain is None else float(self.terrain.altitude(lat, lon))
        surface_point = SurfacePoint(lat, lon, alt)

        site = body.surface_position(lat, lon, alt, surface_time)
        goal = target.position(body, surface_time)
        normal = unit(np.cross(state.position, state.velocity))
        delta_radial = signed_angle(site, goal, normal)
        delta_angular = float(np.degrees(
            np.arcsin(np.clip(np.dot(unit(goal), normal), -1.0, 1.0))
            - np.arcsin(np.clip(np.dot(unit(site), normal), -1.0, 1.0))
        ))
        distance = body.surface_distance(lat, lon, target.latitude, target.longitude)

        fuel = vehicle.fuel_needed(brake_dv)
        max_temperature = 0.0
        overheat = False
        if full:
            fuel += self._descent_fuel(vehicle, fuel, ground_radius)
            times = np.linspace(t0, max(brake_start_time, t0), self.samples)
            positions, velocities = propagator.states_at(times)
            max_temperature = float(self._temperatures(positions, velocities).max())
            overheat = max_temperature > vehicle.min_max_temperature

        path = self._sample_path(propagator, t0, t_end) if with_path else None

        return LandingTrajectory(
            start_time=t0,
            start_state=state.copy(),
            target=target,
            target_altitude=target.altitude,
            fly_over=fly_over,
            brake_start=brake_start,
            brake_end=fly_over,
            impact=impact,
            surface_point=surface_point,
            delta_radial=float(delta_radial),
            delta_angular=delta_angular,
            distance_to_target=float(distance),
            brake_duration=brake_duration,
            brake_delta_v=brake_dv,
            total_fuel_needed=float(fuel),
            max_temperature=max_temperature,
            overheat=bool(overheat),
            propagator=propagator,
            path=path,
        )

    # -------------------------------------------------------------------------
    # Event searches
    # -------------------------------------------------------------------------

    def _horizon(self, state: State) -> float:
        if self.horizon is not None:
            return self.horizon
        elements = compute_orbital_elements(self.body, state.position, state.velocity)
        if elements.is_closed and np.isfinite(elements.period):
            return float(elements.period)
        return max(4.0 * state.radius / max(state.speed, 1.0), 600.0)

    @staticmethod
    def _event(propagator: Propagator, time: float) -> TrajectoryEvent:
        position, velocity = propagator.state_at(time)
        return TrajectoryEvent(float(time), np.asarray(position), np.asarray(velocity))

    def _find_impact(
        self,
        propagator: Propagator,
        start: float,
        stop: float,
        ground_radius: float,
    ) -> TrajectoryEvent | None:
        times = np.linspace(start, stop, self.samples)
        positions, _ = propagator.states_at(times)
        below = np.flatnonzero(np.linalg.norm(positions, axis=1) <= ground_radius)
        if below.size == 0:
            return None
        i = int(below[0])
        if i == 0:
            return self._event(propagator, start)
        lo, hi = times[i - 1], times[i]
        while hi - lo > self.time_tolerance:
            mid = 0.5 * (lo + hi)
            position, _ = propagator.state_at(mid)
            if np.linalg.norm(position) <= ground_radius:
                hi = mid
            else:
                lo = mid
        return self._event(propagator, hi)

    def _target_track(self, target: Target, times: NDArray[np.float64]) -> NDArray[np.float64]:
        """Inertial target positions at many times, shape (n, 3)."""
        fixed = self.body.fixed_position(target.latitude, target.longitude, target.altitude)
        angles = self.body.rotation_rate * times
        c, s = np.cos(angles), np.sin(angles)
        return np.column_stack([
            c * fixed[0] - s * fixed[1],
            s * fixed[0] + c * fixed[1],
            np.full_like(times, fixed[2]),
        ])

    def _closest_approach(
        self,
        propagator: Propagator,
        target: Target,
        start: float,
        stop: float,
    ) -> TrajectoryEvent:
        if stop <= start:
            return self._event(propagator, start)

        def angle(t: NDArray[np.float64]) -> NDArray[np.float64]:
            positions, _ = propagator.states_at(t)
            track = self._target_track(target, t)
            cos = np.einsum("ij,ij->i", positions, track)
            cos /= np.linalg.norm(positions, axis=1) * np.linalg.norm(track, axis=1)
            return np.arccos(np.clip(cos, -1.0, 1.0))

        times = np.linspace(start, stop, self.samples)
        i = int(np.argmin(angle(times)))
        lo = times[max(i - 1, 0)]
        hi = times[min(i + 1, len(times) - 1)]

        # ternary refinement of the bracketing interval
        while hi - lo > self.time_tolerance:
            m1 = lo + (hi - lo) / 3.0
            m2 = hi - (hi - lo) / 3.0
            a1, a2 = angle(np.array([m1, m2]))
            if a1 < a2:
                hi = m2
            else:
                lo = m1
        return self._event(propagator, 0.5 * (lo + hi))

    # -------------------------------------------------------------------------
    # Fuel and heating
    # -------------------------------------------------------------------------

    def _descent_fuel(self, vehicle: VehicleSnapshot, brake_fuel: float, ground_radius: float) -> float:
        """Fuel to stop a free fall from the fly-over altitude."""
        if not np.isfinite(brake_fuel):
            return 0.0
        mass = vehicle.mass - brake_fuel
        if mass <= 0:
            return np.inf
        g = self.body.gravity(ground_radius)
        dv = np.sqrt(2.0 * g * self.config.fly_over_alt)
        return vehicle.fuel_needed(float(dv), mass=float(mass))

    def _temperatures(
        self,
        positions: NDArray[np.float64],
        velocities: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Skin temperature estimate along the path [K]."""
        body = self.body
        altitudes = np.linalg.norm(positions, axis=1) - body.radius
        ambient = np.array([body.atmosphere_temperature(a) for a in altitudes])
        if not body.has_atmosphere:
            return ambient
        srf_vel = velocities - np.cross(body.angular_velocity, positions)
        speed2 = np.einsum("ij,ij->i", srf_vel, srf_vel)
        density = np.array([body.density(a) for a in altitudes])
        heating = self.config.heating_coefficient * speed2 * np.sqrt(density / body.density_asl) / 2.0
        return ambient + heating

    def _sample_path(self, propagator: Propagator, start: float, stop: float) -> NDArray[np.float64]:
        body = self.body
        times = np.linspace(start, max(stop, start), self.samples)
        positions, velocities = propagator.states_at(times)
        temperatures = self._temperatures(positions, velocities)
        rows = []
        for t, position, temperature in zip(times, positions, temperatures):
            fixed = body.to_fixed(position, t)
            lat, lon, alt = body.coordinates(position, t)
            rows.append((t, *fixed, lat, lon, alt, temperature))
        return np.array(rows, dtype=np.float64)
