"""Landing stages, per-stage state and the per-tick command.

Each stage is a small dataclass carrying only the data that stage needs;
the autopilot holds exactly one of them and replaces it on a transition.
Accumulators that outlive a single stage (timers, the adaptive pressure
threshold, search sessions, the latest predictions) live in LandingContext.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import ClassVar

import numpy as np
from numpy.typing import NDArray

from flight.guidance.config import LandingConfig
from flight.guidance.flat_site import FlatSiteSearch
from flight.guidance.obstacles import ObstacleSearch
from flight.guidance.target import Target
from flight.guidance.timing import FuzzyThreshold, Timer
from flight.guidance.trajectory import LandingTrajectory

# =============================================================================
# Stage Enum
# =============================================================================


class LandingStage(IntEnum):
    """Landing state machine stages."""
    NONE = 0
    WAIT = 2
    DECELERATE = 3
    COAST = 4
    HARD_LANDING = 5
    SOFT_LANDING = 6
    APPROACH = 7
    LAND = 8
    LAND_HERE = 9

    @property
    def active(self) -> bool:
        return self is not LandingStage.NONE

    @property
    def terminal(self) -> bool:
        return self in (LandingStage.HARD_LANDING, LandingStage.LAND, LandingStage.LAND_HERE)


class ParachuteAction(Enum):
    NONE = "none"
    ASAP = "asap"
    BEFORE_UNSAFE = "before_unsafe"
    CUT = "cut"


# =============================================================================
# Stage Variants
# =============================================================================


@dataclass
class Idle:
    stage: ClassVar[LandingStage] = LandingStage.NONE


@dataclass
class Wait:
    """Pointing for the braking burn and counting down to it."""
    stage: ClassVar[LandingStage] = LandingStage.WAIT


@dataclass
class Decelerate:
    """Braking burn, or climbing away from a predicted collision.

    Attributes:
        collision: A collision was predicted; climb until clear
        collision_timer: Time clear of obstacles before landing is retried
        deceleration_timer: Grace period without control authority
    """
    stage: ClassVar[LandingStage] = LandingStage.DECELERATE
    collision: bool = False
    collision_timer: Timer = field(default_factory=Timer)
    deceleration_timer: Timer = field(default_factory=lambda: Timer(0.5))


@dataclass
class Coast:
    stage: ClassVar[LandingStage] = LandingStage.COAST


@dataclass
class HardLanding:
    """Emergency descent. burning is set once the last-moment burn started."""
    stage: ClassVar[LandingStage] = LandingStage.HARD_LANDING
    burning: bool = False


@dataclass
class SoftLanding:
    """Final powered deceleration. burning is set once the final burn started."""
    stage: ClassVar[LandingStage] = LandingStage.SOFT_LANDING
    burning: bool = False


@dataclass
class Approach:
    stage: ClassVar[LandingStage] = LandingStage.APPROACH


@dataclass
class Land:
    stage: ClassVar[LandingStage] = LandingStage.LAND


@dataclass
class LandHere:
    stage: ClassVar[LandingStage] = LandingStage.LAND_HERE


StageState = Idle | Wait | Decelerate | Coast | HardLanding | SoftLanding | Approach | Land | LandHere


# =============================================================================
# Shared Context
# =============================================================================


@dataclass
class LandingContext:
    """State shared by all stages of one landing.

    Attributes:
        target: Current landing target
        trajectory: Prediction refreshed every tick
        landing_trajectory: Full prediction used to time the braking burn
        last_refresh: Time of the last full prediction [s]
        dp_threshold: Adaptive dynamic pressure threshold [kPa]
        last_dp: Dynamic pressure at the last threshold change [kPa]
        last_error: Attitude error on the previous tick [deg]
        rel_dp: Dynamic pressure relative to the threshold
        pressure_asl: Static pressure at sea level [kPa]
        landing_deadzone: Landing errors below this need no correction [m]
        terminal_velocity: Expected vertical impact speed [m/s]
        countdown: Time left until the next action [s]
        ttb: Time to burn of the next action [s]
        desired_altitude: Altitude hold set-point of the final stages [m]
        correction_needed: A landing-site correction burn is in progress
        scanned: The flat-site search finished for this landing
        flat_target: The target sits on a site chosen by the flat-site search
        flat_search: Running flat-site search session
        obstacle_search: Running full-path obstacle sweep
        lateral_angle: Hysteresis on the lateral pointing error before braking
    """
    target: Target
    config: LandingConfig = field(default_factory=LandingConfig)
    trajectory: LandingTrajectory | None = None
    landing_trajectory: LandingTrajectory | None = None
    last_refresh: float = -np.inf
    dp_threshold: float = 3.0
    last_dp: float = 0.0
    last_error: float = 0.0
    rel_dp: float = 0.0
    pressure_asl: float = 0.0
    landing_deadzone: float = 0.0
    terminal_velocity: float = 0.0
    countdown: float = 0.0
    ttb: float = 0.0
    desired_altitude: float = 0.0
    vessel_within_range: bool = False
    vessel_after_target: bool = False
    target_within_range: bool = False
    landing_before_target: bool = False
    correction_needed: bool = False
    scanned: bool = False
    flat_target: bool = False
    flat_search: FlatSiteSearch | None = None
    obstacle_search: ObstacleSearch | None = None
    no_engines_timer: Timer = field(default_factory=Timer)
    stage_timer: Timer = field(default_factory=lambda: Timer(5.0))
    dp_up_timer: Timer = field(default_factory=Timer)
    dp_down_timer: Timer = field(default_factory=Timer)
    lateral_angle: FuzzyThreshold = field(default_factory=FuzzyThreshold)

    @classmethod
    def create(cls, target: Target, config: LandingConfig, max_attitude_error: float) -> "LandingContext":
        """Fresh context with timers and thresholds taken from the config."""
        return cls(
            target=target,
            config=config,
            dp_threshold=config.max_dpressure,
            no_engines_timer=Timer(config.no_engines_timer),
            stage_timer=Timer(config.stage_timer),
            dp_up_timer=Timer(config.pressure_timer),
            dp_down_timer=Timer(config.pressure_timer),
            lateral_angle=FuzzyThreshold(max_attitude_error, config.attitude_error_threshold),
        )


# =============================================================================
# Command
# =============================================================================


@dataclass
class LandingCommand:
    """Everything the autopilot asks of the host for one tick.

    Fields left at None mean "leave as it is".

    Attributes:
        stage: Stage after this tick
        status: Human-readable status
        throttle: Main throttle in [0, 1]
        correct_throttle: Host may reduce throttle to follow attitude error
        delta_v: Velocity change the throttle is sized for [m/s]
        thrust_direction: World force direction for the thrust axis
        custom_rotation: (vehicle axis, world direction) to align instead
        attitude: Attitude quaternion to hold instead
        attitude_off: Release attitude control entirely
        bearing: Horizontal direction the vehicle's nose should face
        destination: Vector from the vehicle to the target [m]
        brakes: Aerodynamic brakes on/off
        parachutes: Parachute request
        activate_next_stage: Drop the current stage
        warp_to: Time-warp until this time [s]
        stop_warp: Stop time-warp now
        desired_altitude: Altitude hold set-point [m]
        altitude_above_terrain: Altitude hold is relative to terrain
        navigate_to_target: Fly horizontally to the target
        stop_horizontal: Kill horizontal speed
        land_at_target: Hand over to the vertical landing autopilot
        messages: One-shot operator messages
        finished: The landing ended with touchdown
    """
    stage: LandingStage = LandingStage.NONE
    status: str = ""
    throttle: float = 0.0
    correct_throttle: bool = True
    delta_v: float | None = None
    thrust_direction: NDArray[np.float64] | None = None
    custom_rotation: tuple[NDArray[np.float64], NDArray[np.float64]] | None = None
    attitude: NDArray[np.float64] | None = None
    attitude_off: bool = False
    bearing: NDArray[np.float64] | None = None
    destination: NDArray[np.float64] | None = None
    brakes: bool | None = None
    parachutes: ParachuteAction = ParachuteAction.NONE
    activate_next_stage: bool = False
    warp_to: float | None = None
    stop_warp: bool = False
    desired_altitude: float | None = None
    altitude_above_terrain: bool | None = None
    navigate_to_target: bool = False
    stop_horizontal: bool = False
    land_at_target: bool = False
    messages: list[str] = field(default_factory=list)
    finished: bool = False

    def add_throttle(self, amount: float) -> None:
        self.throttle = float(np.clip(self.throttle + amount, 0.0, 1.0))
