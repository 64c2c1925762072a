"""Landing guidance configuration.

All thresholds, timer periods and tuning factors of the landing stage
machine live in one immutable LandingConfig that is injected at
construction. Persisted profiles are the host's concern; from_dict/to_dict
only translate between the config and a plain mapping.

Example:
    >>> from flight.guidance.config import LandingConfig
    >>>
    >>> config = LandingConfig(dtol=500.0)
    >>> profile = config.to_dict()
    >>> LandingConfig.from_dict({**profile, "approach_alt": 300.0})
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any

from beartype import beartype

# =============================================================================
# Landing Configuration
# =============================================================================


@beartype
@dataclass(frozen=True)
class LandingConfig:
    """Landing stage machine configuration.

    Attributes:
        dtol: Landing accuracy; errors below this are on target [m]
        fly_over_alt: Altitude above the target where braking ends [m]
        approach_alt: Cruise altitude for the approach to the target [m]
        brake_thrust_threshold: Horizontal speed scale for final braking [m/s]
        brake_end_speed: Surface speed at which a braking burn is done [m/s]
        landing_thrust_time: Minimum full-thrust burn time for a powered landing [s]
        correction_offset: Time before brake start reserved for site correction [s]
        correction_thrust_f: Throttle factor of landing-site corrections
        correction_time_f: Horizon factor of correction burns
        correction_dir_f: Weight of the error direction in correction burns
        distance_curve: Exponent shaping correction strength by distance
        hover_time_threshold: Hover endurance required for a powered landing [s]
        drop_ballast_threshold: Dynamic/static pressure ratio that triggers staging
        max_dpressure: Upper bound of the adaptive dynamic pressure threshold [kPa]
        min_dpressure: Lower bound of the adaptive dynamic pressure threshold [kPa]
        mach_threshold: Mach number above which ballast may be dropped
        points_per_frame: Flat-site optimizer evaluations per tick
        max_correction_dist: Largest landing-site relocation [km]
        max_unevenness: Unevenness of a site considered flat
        heating_coefficient: Aerodynamic heating coefficient of the thermal estimate
        temperature_gauge_threshold: Part temperature ratio considered overheating
        attitude_error_threshold: Hysteresis of the lateral pointing check [deg]
        max_time_to_alignment: Cap on the time allowed for turning [s]
        maneuver_offset: Minimum lead time kept before the final burn [s]
        wide_check_altitude: Altitude above which final braking is throttled [m]
        stop_at_h: Final braking ends below this many vehicle sizes of altitude
        min_delta_v: Velocity changes below this are done [m/s]
        collision_offset: Clearance kept while avoiding a collision [m]
        collision_climb_speed: Climb rate used while avoiding a collision [m/s]
        moving_fast_speed: Horizontal speed that delays final descent [m/s]
        trajectory_refresh: Period of the full landing trajectory refresh [s]
        deceleration_timer: Grace period without control authority [s]
        collision_timer: Time clear of obstacles before retrying the landing [s]
        stage_timer: Time of sustained high pressure before dropping ballast [s]
        no_engines_timer: Time without thrust before an emergency landing [s]
        pressure_timer: Period of the adaptive dynamic pressure updates [s]
        obstacle_windows: Sub-windows of the full obstacle sweep
        obstacle_windows_per_frame: Obstacle sweep sub-windows searched per tick
        obstacle_tolerance: Time resolution of the obstacle search [s]
        max_warp: Longest single time-warp request while correcting [s]
    """
    dtol: float = 1000.0
    fly_over_alt: float = 1000.0
    approach_alt: float = 250.0

    brake_thrust_threshold: float = 100.0
    brake_end_speed: float = 10.0
    landing_thrust_time: float = 3.0

    correction_offset: float = 20.0
    correction_thrust_f: float = 2.0
    correction_time_f: float = 2.0
    correction_dir_f: float = 2.0
    distance_curve: float = 2.0

    hover_time_threshold: float = 60.0
    drop_ballast_threshold: float = 0.5
    max_dpressure: float = 3.0
    min_dpressure: float = 1.0
    mach_threshold: float = 0.9

    points_per_frame: int = 5
    max_correction_dist: float = 1.0
    max_unevenness: float = 0.1

    heating_coefficient: float = 0.02
    temperature_gauge_threshold: float = 0.5

    attitude_error_threshold: float = 3.0
    max_time_to_alignment: float = 15.0
    maneuver_offset: float = 10.0

    wide_check_altitude: float = 200.0
    stop_at_h: float = 2.0
    min_delta_v: float = 0.1
    collision_offset: float = 100.0
    collision_climb_speed: float = 10.0
    moving_fast_speed: float = 1.0

    trajectory_refresh: float = 5.0
    deceleration_timer: float = 0.5
    collision_timer: float = 1.0
    stage_timer: float = 5.0
    no_engines_timer: float = 1.0
    pressure_timer: float = 1.0

    obstacle_windows: int = 100
    obstacle_windows_per_frame: int = 10
    obstacle_tolerance: float = 0.01
    max_warp: float = 60.0

    def __post_init__(self) -> None:
        if self.min_dpressure > self.max_dpressure:
            raise ValueError(
                f"min_dpressure ({self.min_dpressure}) exceeds max_dpressure ({self.max_dpressure})"
            )
        if self.points_per_frame < 1 or self.obstacle_windows < 1 or self.obstacle_windows_per_frame < 1:
            raise ValueError("points_per_frame, obstacle_windows and obstacle_windows_per_frame must be at least 1")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LandingConfig":
        """Build a config from a mapping, e.g. a loaded profile.

        Raises:
            ValueError: If the mapping has keys that are not config fields
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown landing config keys: {', '.join(unknown)}")
        return cls(**dict(data))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
