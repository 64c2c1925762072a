"""Landing autopilot: the landing stage machine.

Drives a vehicle from orbit or a suborbital arc to touchdown at a target.
The host calls update() once per control tick with a fresh VehicleSnapshot
and forwards the returned LandingCommand to its actuators; the attitude
loop owned by the autopilot is ticked separately every physics step.

Stage flow:

    WAIT ──> DECELERATE ──> COAST ──> SOFT_LANDING ──> LAND
      ^          │  ^          │            │  └──────> APPROACH ──> LAND
      └──────────┘  └──────────┘            └─────────> LAND_HERE
    (collision hold)

Any stage may fall back to HARD_LANDING when fuel, thrust or control
authority run out. Touchdown in any stage ends the landing.

Example:
    >>> from lander import MOON, FlatTerrain
    >>> from flight.guidance import LandingAutopilot, Target
    >>>
    >>> terrain = FlatTerrain()
    >>> target = Target.on_surface(MOON, terrain, latitude=0.0, longitude=30.0)
    >>> autopilot = LandingAutopilot(MOON, terrain, target)
    >>> autopilot.start(vehicle)
    >>>
    >>> while autopilot.active:
    ...     command = autopilot.update(host.snapshot())
    ...     host.apply(command)
"""

import logging
from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np
from numpy.typing import NDArray

from flight.control.attitude import AttitudeControl
from flight.errors import DiscontinuousOrbitError, LandingSetupError, TargetError
from flight.guidance.config import LandingConfig
from flight.guidance.flat_site import FlatSiteSearch
from flight.guidance.obstacles import ObstacleSearch, find_worst_clearance, ground_clearance
from flight.guidance.stages import (
    Approach,
    Coast,
    Decelerate,
    HardLanding,
    Idle,
    Land,
    LandHere,
    LandingCommand,
    LandingContext,
    LandingStage,
    ParachuteAction,
    SoftLanding,
    StageState,
    Wait,
)
from flight.guidance.target import Target
from flight.guidance.timing import Timer
from flight.guidance.trajectory import LandingTrajectory, TrajectoryPredictor
from lander.body import CelestialBody
from lander.dynamics.state import angle_between, clamp_magnitude, exclude, rotate_about_axis, unit
from lander.orbital import is_discontinuous_orbit
from lander.terrain import Terrain
from lander.vehicle import VehicleSnapshot

logger = logging.getLogger(__name__)

# Radius given to a vessel target once the approach starts [m]
VESSEL_APPROACH_RADIUS = 7.0


class Flight(NamedTuple):
    """Surface-relative kinematics of one tick."""
    time: float
    up: NDArray[np.float64]
    gravity: float
    surface_velocity: NDArray[np.float64]
    surface_speed: float
    vertical_speed: float
    horizontal_velocity: NDArray[np.float64]
    horizontal_speed: float
    altitude: float
    relative_altitude: float


# =============================================================================
# Landing Autopilot
# =============================================================================


@dataclass
class LandingAutopilot:
    """Landing stage machine.

    Attributes:
        body: Central body
        terrain: Terrain oracle
        target: Requested landing target
        config: Landing configuration
        attitude: Attitude loop fed with the requested directions
        predictor: Landing trajectory predictor
        use_brakes: Use aerodynamic brakes in an atmosphere
        use_chutes: Use parachutes in an atmosphere
        correct_target: Move the target to the flattest site nearby before braking
        land_asap: Land wherever the final burn ends instead of flying to the target
        correction_max_dist: Largest target correction [km] (None = config default)
        render_path: Sample the full prediction's path for renderers
    """
    body: CelestialBody
    terrain: Terrain
    target: Target
    config: LandingConfig = field(default_factory=LandingConfig)
    attitude: AttitudeControl | None = None
    predictor: TrajectoryPredictor | None = None
    use_brakes: bool = True
    use_chutes: bool = True
    correct_target: bool = True
    land_asap: bool = False
    correction_max_dist: float | None = None
    render_path: bool = False

    _state: StageState = field(default_factory=Idle, init=False, repr=False)
    _ctx: LandingContext | None = field(default=None, init=False, repr=False)
    _status: str = field(default="", init=False, repr=False)

    def __post_init__(self) -> None:
        if self.attitude is None:
            self.attitude = AttitudeControl(body=self.body)
        if self.predictor is None:
            self.predictor = TrajectoryPredictor(self.body, self.config, terrain=self.terrain)
        if self.correction_max_dist is None:
            self.correction_max_dist = self.config.max_correction_dist
        if self.correction_max_dist < 0:
            raise ValueError(f"correction_max_dist must be non-negative, got {self.correction_max_dist}")

    # -------------------------------------------------------------------------
    # Host interface
    # -------------------------------------------------------------------------

    @property
    def stage(self) -> LandingStage:
        return self._state.stage

    @property
    def state(self) -> StageState:
        return self._state

    @property
    def active(self) -> bool:
        return self.stage.active

    @property
    def status(self) -> str:
        return self._status

    @property
    def context(self) -> LandingContext | None:
        return self._ctx

    @property
    def current_target(self) -> Target:
        """Target in use; differs from target after a site correction."""
        return self.target if self._ctx is None else self._ctx.target

    @property
    def trajectory(self) -> LandingTrajectory | None:
        return None if self._ctx is None else self._ctx.trajectory

    @property
    def landing_trajectory(self) -> LandingTrajectory | None:
        return None if self._ctx is None else self._ctx.landing_trajectory

    def check_target(self) -> None:
        """Raise TargetError if the target cannot be landed at."""
        target = self.target
        if target.body_name is not None and target.body_name != self.body.name:
            raise TargetError("target should be on the body the vehicle is orbiting")
        if target.is_vessel and not target.vessel_landed:
            raise TargetError("target vessel should be landed")

    def check_initial_trajectory(
        self,
        vehicle: VehicleSnapshot,
        trajectory: LandingTrajectory | None = None,
    ) -> list[str]:
        """Warnings that should stop an unforced start.

        Returns:
            Human-readable warnings; empty if the landing looks safe
        """
        if trajectory is None:
            trajectory = self.predictor.predict(vehicle, self.current_target, full=True)
        cfg = self.config
        fuel_needed = trajectory.total_fuel_needed
        hover_time = 0.0
        if fuel_needed < vehicle.fuel_mass:
            hover_time = vehicle.max_hover_time(vehicle.fuel_mass - fuel_needed, self.body.surface_gravity)
        needed_hover_time = self._needed_hover_time()

        warnings = []
        if hover_time <= needed_hover_time:
            shortage = (needed_hover_time - hover_time) / needed_hover_time
            warnings.append(f"Fuel is {shortage:.0%} below safe margin for powered landing.")
            if self.body.has_atmosphere and vehicle.has_parachutes:
                warnings.append(
                    "Landing with parachutes may be possible, but you're advised to supervise the process."
                )
        if trajectory.distance_to_target > cfg.dtol:
            warnings.append(
                f"Predicted landing site is too far from the target. Error is {trajectory.distance_to_target:.0f} m."
            )
        if trajectory.will_overheat:
            warnings.append(
                f"Predicted reentry temperature is {trajectory.max_temperature:.0f}K. "
                "The vehicle may lose integrity and explode!"
            )
        return warnings

    def start(self, vehicle: VehicleSnapshot, force: bool = False) -> bool:
        """Validate preconditions and begin the landing.

        Args:
            vehicle: Current vehicle snapshot
            force: Start even if the initial trajectory raised warnings

        Returns:
            True if the landing started; False if warnings stopped it

        Raises:
            TargetError: The target is on another body or is an unlanded vessel
            LandingSetupError: No active engines or no thrusters
            DiscontinuousOrbitError: The coast escapes before reaching the surface
        """
        self.reset()
        self.check_target()
        if not vehicle.has_active_engines:
            raise LandingSetupError("no engines are active, unable to calculate trajectory")
        if not vehicle.has_thrusters:
            raise LandingSetupError("there are only maneuver engines in the current profile")
        if is_discontinuous_orbit(self.body, vehicle.state.position, vehicle.state.velocity):
            raise DiscontinuousOrbitError()

        ctx = LandingContext.create(self.target, self.config, self.attitude.config.max_attitude_error)
        ctx.trajectory = self.predictor.predict(vehicle, ctx.target, full=True)
        warnings = self.check_initial_trajectory(vehicle, ctx.trajectory)
        if warnings and not force:
            self._status = "\n".join(["WARNING:", *warnings, "Push to proceed. At your own risk."])
            logger.warning("Landing not started: %s", " ".join(warnings))
            return False
        for warning in warnings:
            logger.warning("Landing forced despite: %s", warning)

        self._ctx = ctx
        self._transition(self._start_landing(vehicle, LandingCommand()))
        return True

    def abort(self) -> None:
        if self.active:
            logger.info("Landing aborted in stage %s", self.stage.name)
        self.reset()
        self._status = "Landing aborted."

    def reset(self) -> None:
        """Return to NONE and drop every session."""
        self._state = Idle()
        self._ctx = None
        self._status = ""
        self.attitude.reset()

    def obstacle_ahead(self, vehicle: VehicleSnapshot, offset: float = 0.0) -> float:
        """Obstruction margin along the coast to the target; positive means collision."""
        trajectory = None if self._ctx is None else self._ctx.trajectory
        if trajectory is None or trajectory.propagator is None:
            return -1.0
        start = trajectory.start_time
        stop = max(trajectory.fly_over.time - 0.1, start)
        clearance = ground_clearance(self.body, self.terrain, trajectory.propagator, vehicle.size)
        return find_worst_clearance(clearance, start, stop, offset, self.config.obstacle_tolerance)

    def obstacle_sweep(self, vehicle: VehicleSnapshot, offset: float = 0.0) -> ObstacleSearch | None:
        """Resumable sweep of the whole coast through the end of the braking burn.

        Returns:
            ObstacleSearch to step a few sub-windows per tick, or None without a prediction
        """
        trajectory = None if self._ctx is None else self._ctx.trajectory
        if trajectory is None or trajectory.propagator is None:
            return None
        return ObstacleSearch(
            ground_clearance(self.body, self.terrain, trajectory.propagator, vehicle.size),
            start=trajectory.start_time,
            stop=max(trajectory.brake_end.time, trajectory.start_time),
            offset=offset,
            windows=self.config.obstacle_windows,
            tolerance=self.config.obstacle_tolerance,
        )

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def update(self, vehicle: VehicleSnapshot) -> LandingCommand:
        """Advance the stage machine by one control tick."""
        cmd = LandingCommand(stage=self.stage)
        if not self.active:
            cmd.status = self._status
            return cmd
        if vehicle.landed:
            return self._touchdown(vehicle, cmd)

        ctx = self._ctx
        cfg = self.config
        flight = self._observe(vehicle)
        now = flight.time
        ctx.trajectory = self.predictor.predict(vehicle, ctx.target)
        trajectory = ctx.trajectory

        if ctx.no_engines_timer.run_if(
            bool(vehicle.max_thrust == 0 and not vehicle.has_next_stage_engines), now
        ) and not isinstance(self._state, HardLanding):
            self._emergency(cmd, "No engines left. Performing emergency landing...")
            self._transition(HardLanding())

        ctx.landing_deadzone = vehicle.size + ctx.target.radius
        self._update_pressure_threshold(vehicle, now)

        vector_from_target = ctx.target.vector_to(self.body, vehicle.state.position, now)
        ctx.vessel_within_range = self._distance_to_target(vehicle) < cfg.dtol
        ctx.vessel_after_target = float(np.dot(flight.horizontal_velocity, vector_from_target)) >= 0
        ctx.target_within_range = trajectory.distance_to_target < cfg.dtol
        ctx.landing_before_target = trajectory.delta_radial > 0
        self._compute_terminal_velocity(vehicle, flight)

        state = self._state
        if isinstance(state, Wait):
            next_state = self._wait(state, vehicle, flight, cmd)
        elif isinstance(state, Decelerate):
            next_state = self._decelerate_stage(state, vehicle, flight, cmd)
        elif isinstance(state, Coast):
            next_state = self._coast(state, vehicle, flight, cmd)
        elif isinstance(state, HardLanding):
            next_state = self._hard_landing(state, vehicle, flight, cmd)
        elif isinstance(state, SoftLanding):
            next_state = self._soft_landing(state, vehicle, flight, cmd)
        elif isinstance(state, LandHere):
            next_state = self._land_here(state, vehicle, flight, cmd)
        elif isinstance(state, Approach):
            next_state = self._approach_stage(state, vehicle, flight, cmd)
        else:
            next_state = self._land_stage(state, vehicle, flight, cmd)

        self._transition(next_state)
        cmd.stage = self.stage
        cmd.status = self._status
        return cmd

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _wait(self, stage: Wait, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> StageState:
        ctx = self._ctx
        cfg = self.config
        self._status = "Preparing for deceleration..."
        cmd.throttle = 0.0
        self._nose_to_target(vehicle, flight, cmd)
        cmd.altitude_above_terrain = flight.relative_altitude < 5000
        self._brakes_on_if_requested(vehicle, cmd)
        self._refresh_landing_trajectory(vehicle, every=cfg.trajectory_refresh)

        landing = ctx.landing_trajectory
        brake_pos = landing.brake_start.position
        brake_vel = self.corrected_brake_velocity(vehicle, flight, landing.brake_start.velocity, brake_pos)
        brake_vel = self.corrected_brake_direction(brake_vel, brake_pos, flight)
        self._point(cmd, -brake_vel)

        lateral = ctx.lateral_angle
        from_target = ctx.target.vector_to(self.body, vehicle.state.position, flight.time)
        lateral.update(
            lateral.upper + lateral.lower
            - angle_between(exclude(brake_pos, brake_vel), exclude(brake_pos, -from_target))
        )
        if lateral:
            cmd.throttle = min((lateral.upper + lateral.lower - lateral.value) / 90.0, 1.0)

        ctx.ttb = landing.brake_duration
        ctx.countdown = landing.brake_start.time - flight.time - 1.0
        if flight.horizontal_speed > 0:
            ctx.countdown += np.radians(landing.delta_radial) * self.body.radius / flight.horizontal_speed
        self._correct_attitude_with_thrusters(vehicle, cmd, vehicle.rotation_time(self.attitude.attitude_error))

        if self.obstacle_ahead(vehicle) > 0:
            logger.warning("Obstacle ahead on the landing path")
            return self._decelerate(cmd, collision=True)
        if self._sweep_for_obstacles(vehicle) > 0:
            logger.warning("Obstacle found by the full-path sweep")
            return self._decelerate(cmd, collision=True)
        if ctx.countdown <= ctx.rel_dp or self._is_overheating(vehicle):
            return self._decelerate(cmd, collision=False)

        if vehicle.can_warp and (not self.correct_target or ctx.countdown > cfg.correction_offset):
            cmd.warp_to = flight.time + ctx.countdown
        else:
            cmd.stop_warp = True
        if self.correct_target and ctx.countdown < cfg.correction_offset:
            self._scan_for_landing_site(vehicle, cmd)
        return stage

    def _decelerate_stage(
        self,
        stage: Decelerate,
        vehicle: VehicleSnapshot,
        flight: Flight,
        cmd: LandingCommand,
    ) -> StageState:
        ctx = self._ctx
        cfg = self.config
        trajectory = ctx.trajectory
        cmd.altitude_above_terrain = flight.relative_altitude < 5000

        if stage.collision:
            self._status = "Possible collision detected."
            self._correct_attitude_with_thrusters(vehicle, cmd, vehicle.rotation_time(self.attitude.attitude_error))
            climb = flight.up * (cfg.collision_climb_speed - flight.vertical_speed)
            self._execute(vehicle, cmd, climb, cfg.min_delta_v)
            if self.obstacle_ahead(vehicle, cfg.collision_offset) > 0:
                stage.collision_timer.reset()
                return stage
            if not stage.collision_timer.time_passed(flight.time):
                return stage
            logger.info("Collision avoided, restarting the landing")
            return self._start_landing(vehicle, cmd)

        self._status = f"Decelerating. Landing site error: {trajectory.distance_to_target:.0f} m"
        if self.correct_target:
            self._scan_for_landing_site(vehicle, cmd)
        self._aerobrake_if_requested(vehicle, cmd)
        overheating = self._is_overheating(vehicle)
        if not overheating and vehicle.burn_time_left() < cfg.landing_thrust_time:
            return self._emergency(cmd, "Not enough fuel for powered landing. Performing emergency landing...")

        if vehicle.has_control_authority:
            stage.deceleration_timer.reset()
        if ctx.vessel_after_target:
            if self._execute(vehicle, cmd, -flight.surface_velocity, cfg.brake_end_speed):
                return stage
        elif overheating or (
            not ctx.landing_before_target
            and not stage.deceleration_timer.time_passed(flight.time)
            and trajectory.distance_to_target > ctx.landing_deadzone
        ):
            cmd.throttle = 0.0
            ctx.ttb = vehicle.ttb(flight.surface_speed)
            aerobraking = ctx.rel_dp > 0 and vehicle.parachutes_active
            if overheating:
                self._point(cmd, -flight.surface_velocity)
                cmd.throttle = 1.0
            else:
                state = vehicle.state
                brake_vel = self.corrected_brake_velocity(vehicle, flight, state.velocity, state.position)
                brake_vel = self.corrected_brake_direction(brake_vel, state.position, flight)
                self._point(cmd, -brake_vel)
                if self._distance_to_target(vehicle) > trajectory.distance_to_target:
                    descent = max(1.0 + float(np.dot(unit(brake_vel), flight.up)), 1e-3)
                    cmd.throttle = min(trajectory.distance_to_target / ctx.landing_deadzone / 3.0 / descent, 1.0)
                else:
                    cmd.throttle = 1.0
            if cmd.throttle > 0 or aerobraking:
                return stage
        ctx.landing_trajectory = None
        return Coast()

    def _coast(self, stage: Coast, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> StageState:
        ctx = self._ctx
        cfg = self.config
        trajectory = ctx.trajectory
        self._status = f"Coasting. Landing site error: {trajectory.distance_to_target:.0f} m"
        if self._is_overheating(vehicle):
            return self._decelerate(cmd, collision=False)

        cmd.throttle = 0.0
        self._nose_to_target(vehicle, flight, cmd)
        self._setup_for_deceleration(flight, cmd)
        if ctx.landing_before_target:
            if vehicle.mach < 1:
                self._stop_aerobraking(vehicle, cmd)
        else:
            self._brakes_on_if_requested(vehicle, cmd)
            if trajectory.distance_to_target * 2 > self._distance_to_target(vehicle):
                return self._decelerate(cmd, collision=False)
        if self._correct_landing_site(vehicle, flight, cmd):
            self._correct_attitude_with_thrusters(vehicle, cmd, vehicle.rotation_time(self.attitude.attitude_error))

        ctx.ttb = vehicle.ttb(flight.surface_speed)
        ctx.countdown -= max(ctx.ttb + vehicle.turn_time + vehicle.dynamic_pressure, cfg.maneuver_offset)
        if ctx.countdown > 0 and not ctx.vessel_after_target:
            if cmd.throttle == 0:
                self._warp_to_countdown(vehicle, flight, cmd)
            return stage
        if not ctx.landing_before_target and not ctx.target_within_range:
            return self._decelerate(cmd, collision=False)

        if vehicle.max_accel <= flight.gravity:
            return self._emergency(cmd, "Not enough thrust for powered landing. Performing emergency landing...")
        if (
            not vehicle.has_control_authority
            and not vehicle.has_potential_control_authority
            and angle_between(vehicle.thrust_direction, -flight.surface_velocity) > 45
        ):
            return self._emergency(cmd, "Lacking control authority to land properly. Performing emergency landing...")
        fuel_left = vehicle.fuel_mass
        fuel_needed = vehicle.antigrav_fuel_needed(ctx.terminal_velocity, flight.gravity)
        if (
            fuel_needed >= fuel_left
            or vehicle.max_hover_time(fuel_left - fuel_needed, self.body.surface_gravity) < self._needed_hover_time()
        ):
            return self._emergency(cmd, "Not enough fuel for powered landing. Performing emergency landing...")
        return SoftLanding()

    def _hard_landing(
        self,
        stage: HardLanding,
        vehicle: VehicleSnapshot,
        flight: Flight,
        cmd: LandingCommand,
    ) -> StageState:
        ctx = self._ctx
        cfg = self.config
        body = self.body
        status = "Landing on parachutes." if vehicle.parachutes_active else "Emergency Landing."
        status += f"\nVertical impact speed: {ctx.terminal_velocity:.1f} m/s"
        self._set_destination(vehicle, flight, cmd)
        cmd.throttle = 0.0
        not_too_hot = vehicle.external_temperature < vehicle.min_max_temperature
        if not_too_hot:
            self._setup_for_deceleration(flight, cmd)

        if (
            vehicle.max_thrust > 0
            and ctx.terminal_velocity > 4
            and (vehicle.has_control_authority or vehicle.has_potential_control_authority)
        ):
            ctx.ttb = self._on_planet_ttb(vehicle, flight)
            ctx.countdown -= ctx.ttb
            if not ctx.target_within_range and vehicle.mach < 1 and ctx.countdown > vehicle.turn_time:
                self._correct_landing_site_with_lift(vehicle, flight, cmd)
            if ctx.countdown < 0 and (
                not vehicle.has_parachutes or (vehicle.parachutes_active and vehicle.parachutes_deployed)
            ):
                stage.burning = True
            else:
                stage.burning = stage.burning and ctx.countdown <= 0.5
            if stage.burning:
                cmd.correct_throttle = False
                cmd.throttle = 1.0 if flight.vertical_speed < -5 else vehicle.hover_throttle(flight.gravity)
            status += "\nWill decelerate as much as possible before impact."

        if body.has_atmosphere and vehicle.has_usable_parachutes:
            if ctx.vessel_within_range or ctx.vessel_after_target or not ctx.landing_before_target:
                cmd.parachutes = ParachuteAction.ASAP
            else:
                cmd.parachutes = ParachuteAction.BEFORE_UNSAFE
            if not vehicle.parachutes_active:
                if not_too_hot:
                    if ctx.target_within_range or vehicle.mach > 1:
                        self._brake_with_drag(vehicle, flight, cmd)
                    else:
                        self._correct_landing_site_with_lift(vehicle, flight, cmd)
                else:
                    cmd.attitude_off = True
                if ctx.stage_timer.run_if(
                    bool(
                        vehicle.current_stage - 1 > vehicle.nearest_parachute_stage
                        and vehicle.dynamic_pressure > cfg.drop_ballast_threshold * ctx.pressure_asl
                        and vehicle.mach > cfg.mach_threshold
                    ),
                    flight.time,
                ):
                    cmd.activate_next_stage = True
                    self._message(cmd, "Have to drop ballast to decelerate...")
                status += "\nWaiting for the right moment to deploy parachutes."
        if body.has_atmosphere:
            cmd.brakes = True
        if (
            not vehicle.has_parachutes
            and not vehicle.has_next_stage_engines
            and (vehicle.max_thrust == 0 or not vehicle.has_control_authority)
        ):
            if body.has_atmosphere and not_too_hot:
                self._brake_with_drag(vehicle, flight, cmd)
            status += "\nCrash is imminent!"
        self._status = status
        return stage

    def _soft_landing(
        self,
        stage: SoftLanding,
        vehicle: VehicleSnapshot,
        flight: Flight,
        cmd: LandingCommand,
    ) -> StageState:
        ctx = self._ctx
        cfg = self.config
        trajectory = ctx.trajectory
        cmd.throttle = 0.0
        self._set_destination(vehicle, flight, cmd)
        self._setup_for_deceleration(flight, cmd)
        if ctx.vessel_within_range or ctx.vessel_after_target:
            self._aerobrake_if_requested(vehicle, cmd, full=True)
        else:
            self._brakes_on_if_requested(vehicle, cmd)
        turn_time = vehicle.rotation_time(self.attitude.attitude_error)

        correction = vehicle.course_correction
        if np.any(correction):
            self._status = "Avoiding collision!"
            site = trajectory.surface_point
            ctx.target = ctx.target.relocated(site.latitude, site.longitude, site.altitude)
            ctx.trajectory = trajectory.retargeted(ctx.target)
            ctx.flat_target = False
            self._execute(vehicle, cmd, correction - flight.surface_velocity, 0.0)
            cmd.delta_v = float(np.linalg.norm(correction)) + flight.surface_speed
            cmd.correct_throttle = False
            return stage

        error_text = f"Landing site error: {trajectory.distance_to_target:.0f} m"
        if not stage.burning:
            self._correct_landing_site(vehicle, flight, cmd)
            self._correct_attitude_with_thrusters(vehicle, cmd, turn_time)
            ctx.ttb = self._on_planet_ttb(vehicle, flight)
            ctx.countdown -= ctx.ttb + turn_time
            stage.burning = ctx.countdown <= 0 or flight.surface_speed < cfg.brake_end_speed
            if not stage.burning:
                if self.attitude.inv_alignment_factor > 0.5:
                    self._status = f"Final deceleration: correcting attitude.\n{error_text}"
                else:
                    self._status = f"Final deceleration: waiting for the burn.\n{error_text}"
                return stage

        self._point(cmd, self.correction_direction(vehicle, flight))
        if not vehicle.has_control_authority:
            self._correct_attitude_with_thrusters(vehicle, cmd, turn_time)
            if not vehicle.has_potential_control_authority:
                return self._emergency(cmd, "Lost control authority. Performing emergency landing...")
            return stage
        cmd.correct_throttle = False
        ctx.ttb = self._on_planet_ttb(vehicle, flight)
        ctx.countdown -= ctx.ttb + turn_time
        if (ctx.target_within_range and ctx.flat_target) or flight.relative_altitude > cfg.wide_check_altitude:
            if flight.vertical_speed < 0:
                margin = vehicle.max_accel - flight.gravity
                if ctx.countdown < 0.1 or margin <= 0:
                    cmd.throttle = 1.0
                else:
                    cmd.throttle = float(np.clip(
                        -flight.vertical_speed / margin / max(ctx.countdown, 0.01),
                        vehicle.hover_throttle(flight.gravity) * 1.1,
                        1.0,
                    ))
            else:
                cmd.throttle = min(
                    flight.horizontal_speed / cfg.brake_thrust_threshold * self.attitude.alignment_factor, 1.0
                )
        else:
            cmd.throttle = 1.0
        if flight.relative_altitude > cfg.stop_at_h * vehicle.size and flight.vertical_speed < 0:
            stage.burning = cmd.throttle > 0.7 or ctx.countdown < 10
            self._status = f"Final deceleration. {error_text}"
            return stage

        cmd.throttle = 0.0
        if self.land_asap:
            return LandHere()
        self._stop_aerobraking(vehicle, cmd)
        if self._distance_to_target(vehicle) - vehicle.radius > cfg.dtol:
            return self._approach(vehicle, flight, cmd)
        return self._land(cmd)

    def _land_here(self, stage: LandHere, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> StageState:
        ctx = self._ctx
        self._status = "Landing..."
        cmd.altitude_above_terrain = True
        cmd.stop_horizontal = True
        if ctx.desired_altitude >= 0 and flight.horizontal_speed <= self.config.moving_fast_speed:
            ctx.desired_altitude = 0.0
        else:
            ctx.desired_altitude = max(flight.relative_altitude / 2.0, vehicle.height * 2.0)
        cmd.desired_altitude = ctx.desired_altitude
        return stage

    def _approach_stage(
        self,
        stage: Approach,
        vehicle: VehicleSnapshot,
        flight: Flight,
        cmd: LandingCommand,
    ) -> StageState:
        ctx = self._ctx
        self._status = "Approaching the target..."
        self._set_destination(vehicle, flight, cmd)
        if vehicle.burn_time_left() < self.config.landing_thrust_time:
            self._message(cmd, "Low on fuel, landing here.")
            return LandHere()
        cmd.navigate_to_target = True
        cmd.altitude_above_terrain = True
        cmd.desired_altitude = ctx.desired_altitude
        if self._distance_to_target(vehicle) < max(ctx.landing_deadzone, ctx.target.radius):
            return self._land(cmd)
        return stage

    def _land_stage(self, stage: StageState, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> StageState:
        self._status = "Landing at the target..."
        self._set_destination(vehicle, flight, cmd)
        cmd.land_at_target = True
        return stage

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _transition(self, next_state: StageState) -> None:
        if next_state is self._state:
            return
        if next_state.stage is not self.stage:
            logger.info("Landing stage %s -> %s", self.stage.name, next_state.stage.name)
        self._state = next_state

    def _start_landing(self, vehicle: VehicleSnapshot, cmd: LandingCommand) -> Wait:
        ctx = self._ctx
        cmd.stop_warp = True
        cmd.altitude_above_terrain = False
        ctx.obstacle_search = None
        ctx.trajectory = self.predictor.predict(vehicle, ctx.target)
        self._refresh_landing_trajectory(vehicle)
        ctx.pressure_asl = self.body.pressure(0.0)
        return Wait()

    def _decelerate(self, cmd: LandingCommand, collision: bool) -> Decelerate:
        cmd.stop_warp = True
        self._ctx.obstacle_search = None
        if collision:
            self._ctx.landing_trajectory = None
        return Decelerate(
            collision=collision,
            collision_timer=Timer(self.config.collision_timer),
            deceleration_timer=Timer(self.config.deceleration_timer),
        )

    def _approach(self, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> Approach:
        ctx = self._ctx
        cfg = self.config
        cmd.bearing = None
        cmd.altitude_above_terrain = True
        if cfg.approach_alt < flight.relative_altitude / 2.0:
            ctx.desired_altitude = cfg.approach_alt
        else:
            ctx.desired_altitude = max(flight.relative_altitude / 2.0, vehicle.height * 2.0)
        cmd.desired_altitude = ctx.desired_altitude
        cmd.navigate_to_target = True
        if ctx.target.is_vessel:
            ctx.target = ctx.target.with_radius(VESSEL_APPROACH_RADIUS)
        return Approach()

    def _land(self, cmd: LandingCommand) -> Land:
        cmd.land_at_target = True
        return Land()

    def _emergency(self, cmd: LandingCommand, message: str) -> HardLanding:
        logger.warning(message)
        cmd.messages.append(message)
        return HardLanding()

    def _message(self, cmd: LandingCommand, message: str) -> None:
        logger.info(message)
        cmd.messages.append(message)

    def _touchdown(self, vehicle: VehicleSnapshot, cmd: LandingCommand) -> LandingCommand:
        logger.debug("Distance to target: %.1f m", self._distance_to_target(vehicle))
        logger.info("Touchdown in stage %s", self.stage.name)
        self._stop_aerobraking(vehicle, cmd)
        cmd.throttle = 0.0
        cmd.finished = True
        self.reset()
        self._status = "Landed."
        cmd.stage = self.stage
        cmd.status = self._status
        return cmd

    # -------------------------------------------------------------------------
    # Per-tick estimates
    # -------------------------------------------------------------------------

    def _observe(self, vehicle: VehicleSnapshot) -> Flight:
        body = self.body
        state = vehicle.state
        up = state.up
        surface_velocity = state.velocity - body.surface_velocity(state.position)
        vertical_speed = float(np.dot(surface_velocity, up))
        horizontal_velocity = surface_velocity - vertical_speed * up
        lat, lon, altitude = body.coordinates(state.position, state.time)
        return Flight(
            time=state.time,
            up=up,
            gravity=body.gravity(state.radius),
            surface_velocity=surface_velocity,
            surface_speed=float(np.linalg.norm(surface_velocity)),
            vertical_speed=vertical_speed,
            horizontal_velocity=horizontal_velocity,
            horizontal_speed=float(np.linalg.norm(horizontal_velocity)),
            altitude=altitude,
            relative_altitude=altitude - float(self.terrain.altitude(lat, lon)),
        )

    def _distance_to_target(self, vehicle: VehicleSnapshot) -> float:
        return self._ctx.target.distance_to(self.body, vehicle.state.position, vehicle.state.time)

    def _needed_hover_time(self) -> float:
        threshold = self.config.hover_time_threshold
        return threshold / 5.0 if self.land_asap else threshold

    def _update_pressure_threshold(self, vehicle: VehicleSnapshot, now: float) -> None:
        """Adapt the dynamic pressure threshold to how well the attitude holds."""
        ctx = self._ctx
        cfg = self.config
        error = self.attitude.attitude_error
        pressure = vehicle.dynamic_pressure
        if pressure > 0:
            if ctx.dp_up_timer.run_if(bool(error > ctx.last_error or abs(error - ctx.last_error) < 0.01), now):
                ctx.dp_threshold = max(ctx.dp_threshold * 0.9, cfg.min_dpressure)
                ctx.last_dp = pressure
            elif ctx.dp_down_timer.run_if(bool(error < ctx.last_error and pressure < ctx.last_dp), now):
                ctx.dp_threshold = min(ctx.dp_threshold * 1.1, cfg.max_dpressure)
                ctx.last_dp = pressure
        else:
            ctx.dp_threshold = cfg.max_dpressure
        ctx.rel_dp = pressure / ctx.dp_threshold
        ctx.last_error = error

    def _compute_terminal_velocity(self, vehicle: VehicleSnapshot, flight: Flight) -> None:
        ctx = self._ctx
        if flight.vertical_speed > -100 or flight.relative_altitude < 100 + vehicle.height:
            ctx.terminal_velocity = max(-flight.vertical_speed, 0.1)
            ctx.countdown = (flight.relative_altitude - vehicle.height) / ctx.terminal_velocity
        else:
            trajectory = ctx.trajectory
            ctx.terminal_velocity = abs(float(np.dot(
                trajectory.at_target_velocity, unit(trajectory.at_target_position)
            )))
            ctx.countdown = trajectory.time_to_target

    def _on_planet_ttb(self, vehicle: VehicleSnapshot, flight: Flight) -> float:
        """Time to kill the surface velocity while falling [s]."""
        if flight.surface_speed <= 0:
            return 0.0
        falling = max(-flight.vertical_speed, 0.0) / flight.surface_speed
        margin = vehicle.max_accel - flight.gravity * falling
        return flight.surface_speed / margin if margin > 0 else np.inf

    def _is_overheating(self, vehicle: VehicleSnapshot) -> bool:
        return self._ctx.rel_dp > 0 and vehicle.max_temperature_ratio > self.config.temperature_gauge_threshold

    def _refresh_landing_trajectory(self, vehicle: VehicleSnapshot, every: float | None = None) -> None:
        ctx = self._ctx
        now = vehicle.state.time
        if every is not None and ctx.landing_trajectory is not None and now - ctx.last_refresh <= every:
            return
        ctx.landing_trajectory = self.predictor.predict(
            vehicle, ctx.target, full=True, with_path=self.render_path
        )
        ctx.last_refresh = now

    # -------------------------------------------------------------------------
    # Steering requests
    # -------------------------------------------------------------------------

    def _point(self, cmd: LandingCommand, force: NDArray[np.float64]) -> None:
        """Request the thrust (force) to point along a world direction."""
        direction = unit(np.asarray(force, dtype=np.float64))
        if not np.any(direction):
            return
        cmd.thrust_direction = direction
        cmd.custom_rotation = None
        self.attitude.set_thrust_direction(direction)

    def _rotate(self, cmd: LandingCommand, axis: NDArray[np.float64], direction: NDArray[np.float64]) -> None:
        """Request a vehicle-frame axis to point along a world direction."""
        if not np.any(axis) or not np.any(direction):
            return
        cmd.custom_rotation = (unit(axis), unit(direction))
        cmd.thrust_direction = None
        self.attitude.set_custom_rotation(*cmd.custom_rotation)

    def _execute(self, vehicle: VehicleSnapshot, cmd: LandingCommand, delta_v: NDArray[np.float64], min_dv: float) -> bool:
        """Burn toward a velocity change, throttled by alignment.

        Returns:
            True while more than min_dv is left to burn
        """
        dv = float(np.linalg.norm(delta_v))
        if dv <= min_dv:
            return False
        self._point(cmd, delta_v)
        cmd.delta_v = dv
        if vehicle.max_accel > 0:
            cmd.throttle = min(dv / vehicle.max_accel, 1.0) * self.attitude.alignment_factor
        return True

    def _nose_to_target(self, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> None:
        to_target = self._ctx.target.position(self.body, flight.time) - vehicle.state.position
        cmd.bearing = unit(exclude(flight.up, to_target))

    def _set_destination(self, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> None:
        cmd.destination = self._ctx.target.position(self.body, flight.time) - vehicle.state.position

    def _setup_for_deceleration(self, flight: Flight, cmd: LandingCommand) -> None:
        cmd.altitude_above_terrain = True
        self._point(cmd, -flight.surface_velocity)

    def _warp_to_countdown(self, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> None:
        if not vehicle.can_warp:
            cmd.stop_warp = True
            return
        countdown = self._ctx.countdown
        max_warp = self.config.max_warp
        cmd.warp_to = flight.time + (min(countdown, max_warp) if countdown > 0 else max_warp)

    def _correct_attitude_with_thrusters(self, vehicle: VehicleSnapshot, cmd: LandingCommand, turn_time: float) -> bool:
        """Add throttle so engine gimbals help turning when time is short."""
        ctx = self._ctx
        error = self.attitude.attitude_error
        if (
            np.any(vehicle.max_engine_torque > 0)
            and (error > max(1.0 - ctx.rel_dp, 0.1) or vehicle.min_stop_time > turn_time)
            and (
                not vehicle.has_control_authority
                or ctx.rel_dp > 0
                or vehicle.rotation_time(error, with_engines=False) > ctx.countdown
            )
        ):
            alignment_time = float(np.clip(ctx.countdown, 1.0, self.config.max_time_to_alignment))
            cmd.add_throttle(min((1.0 + ctx.rel_dp) * turn_time / alignment_time, 1.0))
            return True
        return False

    def correction_direction(self, vehicle: VehicleSnapshot, flight: Flight) -> NDArray[np.float64]:
        """Force direction that steers the final descent onto the target."""
        ctx = self._ctx
        cfg = self.config
        trajectory = ctx.trajectory
        t0 = max(ctx.countdown, 1e-5)
        t1 = t0 * cfg.correction_time_f
        # desired velocity change: gravity compensation plus velocity cancellation over the horizon
        correction = (
            flight.up * flight.gravity * (1.0 - t0 * t0 / t1 / t1)
            - flight.surface_velocity * 2.0 * ((t1 - t0) / t1 / t1)
        )
        miss = trajectory.surface_position(self.body, flight.time) - ctx.target.position(self.body, flight.time)
        if vehicle.max_accel > 0 and np.any(miss):
            heading = max(2.0 + float(np.dot(unit(miss), unit(flight.horizontal_velocity))) * cfg.correction_dir_f, 1.0)
            closeness = min(
                trajectory.distance_to_target / cfg.dtol
                * cfg.fly_over_alt / max(flight.relative_altitude, 1e-3)
                * heading,
                1.0,
            )
            correction -= (
                clamp_magnitude(miss, float(np.linalg.norm(correction)))
                / vehicle.max_accel
                * self.body.surface_gravity
                * min(1.0 + ctx.rel_dp, 2.0)
                * closeness**cfg.distance_curve
            )
        return unit(correction)

    def _correct_landing_site(self, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> bool:
        """Throttle up a correction burn if the landing site is off."""
        ctx = self._ctx
        cfg = self.config
        distance = ctx.trajectory.distance_to_target
        self._point(cmd, self.correction_direction(vehicle, flight))
        rel_altitude = flight.relative_altitude / cfg.fly_over_alt
        if (
            vehicle.has_control_authority
            and vehicle.max_accel > 0
            and distance > ctx.landing_deadzone
            and (ctx.correction_needed or rel_altitude < 1 or distance > cfg.dtol * rel_altitude)
        ):
            cmd.add_throttle(min(
                distance / vehicle.max_accel / cfg.dtol * cfg.correction_thrust_f,
                vehicle.hover_throttle(flight.gravity) * 0.9,
            ))
            ctx.correction_needed = distance > cfg.dtol
            return True
        ctx.correction_needed = False
        return False

    def _correct_landing_site_with_lift(self, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> None:
        """Roll the lift vector toward the target."""
        if not np.any(vehicle.lift):
            return
        state = vehicle.state
        lift = exclude(state.to_body(flight.up), vehicle.lift)
        if np.linalg.norm(lift) / vehicle.mass <= 0.1:
            return
        ctx = self._ctx
        toward = ctx.target.position(self.body, flight.time) - ctx.trajectory.surface_position(self.body, flight.time)
        self._rotate(cmd, lift, exclude(flight.up, toward))

    def _brake_with_drag(self, vehicle: VehicleSnapshot, flight: Flight, cmd: LandingCommand) -> None:
        """Turn the largest cross-section into the airflow."""
        axis = vehicle.max_area_axis
        if float(np.dot(vehicle.state.to_inertial(axis), flight.surface_velocity)) < 0:
            axis = -axis
        self._rotate(cmd, axis, flight.surface_velocity)

    def corrected_brake_velocity(
        self,
        vehicle: VehicleSnapshot,
        flight: Flight,
        velocity: NDArray[np.float64],
        position: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Velocity the braking burn should kill (surface frame).

        Only part of the vertical velocity is killed: the thinner the air and
        the more time left, the more of the fall is left to the final descent.
        """
        ctx = self._ctx
        vertical = unit(position) * float(np.dot(velocity, unit(position)))
        vertical_ttb = vehicle.antigrav_ttb(float(np.linalg.norm(vertical)), flight.gravity)
        factor = 0.5 * (self.body.density_asl + ctx.rel_dp) + vertical_ttb / max(ctx.countdown, 0.1)
        return velocity - vertical * (1.0 - float(np.clip(factor, 0.1, 1.0))) - self.body.surface_velocity(position)

    def corrected_brake_direction(
        self,
        velocity: NDArray[np.float64],
        position: NDArray[np.float64],
        flight: Flight,
    ) -> NDArray[np.float64]:
        """Brake velocity turned about the local vertical to cancel the cross-track error."""
        ctx = self._ctx
        side = unit(np.cross(position, velocity))
        miss = (
            ctx.trajectory.surface_position(self.body, flight.time)
            - ctx.target.position(self.body, flight.time)
        )
        to_target = ctx.target.position(self.body, flight.time) - position
        distance = float(np.linalg.norm(exclude(position, to_target)))
        angle = float(np.arctan2(np.dot(miss, side), max(distance, 1.0)))
        return rotate_about_axis(velocity, position, angle)

    # -------------------------------------------------------------------------
    # Aerobraking and site search
    # -------------------------------------------------------------------------

    def _brakes_on_if_requested(self, vehicle: VehicleSnapshot, cmd: LandingCommand) -> None:
        if self.use_brakes and vehicle.static_pressure > 0:
            cmd.brakes = True

    def _aerobrake_if_requested(self, vehicle: VehicleSnapshot, cmd: LandingCommand, full: bool = False) -> None:
        if vehicle.static_pressure <= 0:
            return
        if self.use_brakes:
            cmd.brakes = True
        if self.use_chutes and vehicle.has_usable_parachutes and (full or not vehicle.parachutes_active):
            cmd.parachutes = ParachuteAction.ASAP

    def _stop_aerobraking(self, vehicle: VehicleSnapshot, cmd: LandingCommand) -> None:
        if self.use_brakes:
            cmd.brakes = False
        if self.use_chutes and vehicle.parachutes_active:
            cmd.parachutes = ParachuteAction.CUT

    def _sweep_for_obstacles(self, vehicle: VehicleSnapshot) -> float:
        """Advance the full-path obstacle sweep by a few sub-windows.

        Returns:
            Obstruction margin once one is found or the sweep is complete; -1 while nothing was found
        """
        ctx = self._ctx
        if ctx.obstacle_search is None:
            ctx.obstacle_search = self.obstacle_sweep(vehicle)
            if ctx.obstacle_search is None:
                return -1.0
        status = ctx.obstacle_search.step(self.config.obstacle_windows_per_frame)
        if status.value > 0 or not status.in_progress:
            # the next sweep starts from a fresh prediction
            ctx.obstacle_search = None
            return status.value
        return -1.0

    def _scan_for_landing_site(self, vehicle: VehicleSnapshot, cmd: LandingCommand) -> None:
        """Advance the flat-site search; relocate the target once it converges."""
        ctx = self._ctx
        if ctx.scanned:
            return
        if ctx.flat_search is None:
            ctx.flat_search = FlatSiteSearch.around(
                ctx.target,
                self.body,
                self.terrain,
                vehicle.size,
                max_distance=self.correction_max_dist * 1000.0,
                target_score=self.config.max_unevenness,
            )
        search = ctx.flat_search
        status = search.advance(self.config.points_per_frame)
        self._status = f"Scanning for flat surface to land: {status.progress:.1%}"
        if status.in_progress:
            return

        relocated = search.relocation(ctx.target, self.terrain)
        ctx.flat_target = bool(np.isfinite(search.best_value)) and (relocated is not None or not ctx.target.is_vessel)
        if relocated is not None:
            ctx.target = relocated
            ctx.trajectory = self.predictor.predict(vehicle, relocated)
            ctx.obstacle_search = None
            self._refresh_landing_trajectory(vehicle)
            if search.best_value < self.config.max_unevenness:
                self._message(cmd, "Found flat region for landing.")
            else:
                self._message(cmd, "Moved landing site to a flatter region.")
        ctx.scanned = True
        ctx.flat_search = None
