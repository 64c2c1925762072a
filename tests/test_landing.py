"""Scenario tests for the landing stage machine.

The predictor is replaced by a Plan that hands out canned trajectories, so
each scenario controls exactly when braking starts, how far off the landing
site is and whether the coast hits terrain. Vehicles are rebuilt every tick
with the kinematics the scenario calls for.
"""

from dataclasses import dataclass

import numpy as np
import pytest
from numpy.testing import assert_allclose

from conftest import LinearPropagator, StubPredictor, make_trajectory, make_vehicle
from flight.errors import DiscontinuousOrbitError, LandingSetupError, TargetError
from flight.guidance.landing import LandingAutopilot
from flight.guidance.stages import LandingStage, ParachuteAction
from flight.guidance.target import Target
from lander.body import MARS, MOON, CelestialBody
from lander.terrain import FlatTerrain, ProceduralTerrain, Terrain

DESCENT = {"altitude": 50.0, "vertical_speed": -20.0, "east_speed": 5.0}
TOUCHDOWN = {"altitude": 2.0, "vertical_speed": -0.5, "east_speed": 0.5}


@dataclass
class Plan:
    """Canned prediction, adjustable between ticks.

    Attributes:
        brake_start: Absolute brake start time [s]
        delta_radial: Along-track error, positive when short [deg]
        distance: Landing site error [m]
        fuel: Fuel needed [kg]
        propagate: Attach a straight-line coast for obstacle searches
    """
    brake_start: float = 1000.0
    delta_radial: float = 1e-5
    distance: float = 0.0
    fuel: float = 100.0
    propagate: bool = False

    def __call__(self, vehicle, target):
        propagator = LinearPropagator.from_state(MOON, vehicle.state) if self.propagate else None
        return make_trajectory(
            vehicle,
            target,
            self.brake_start,
            delta_radial=self.delta_radial,
            distance=self.distance,
            fuel=self.fuel,
            propagator=propagator,
        )


def make_autopilot(
    target: Target,
    plan: Plan,
    body: CelestialBody = MOON,
    terrain: Terrain | None = None,
    **kwargs,
) -> LandingAutopilot:
    options = {"correct_target": False}
    options.update(kwargs)
    return LandingAutopilot(
        body,
        FlatTerrain() if terrain is None else terrain,
        target,
        predictor=StubPredictor(plan),
        **options,
    )


def tick(autopilot: LandingAutopilot, time: float, **kwargs):
    return autopilot.update(make_vehicle(body=autopilot.body, time=time, **kwargs))


def descend_to_soft_landing(autopilot: LandingAutopilot, plan: Plan, **kwargs) -> None:
    """Start and tick through WAIT, DECELERATE and COAST."""
    assert autopilot.start(make_vehicle(body=autopilot.body, **DESCENT, **kwargs))
    plan.brake_start = 0.0
    assert tick(autopilot, 0.1, **DESCENT, **kwargs).stage is LandingStage.DECELERATE
    assert tick(autopilot, 0.2, **DESCENT, **kwargs).stage is LandingStage.COAST
    assert tick(autopilot, 0.3, **DESCENT, **kwargs).stage is LandingStage.SOFT_LANDING


@pytest.fixture
def plan() -> Plan:
    return Plan()


# =============================================================================
# Start and Abort
# =============================================================================


class TestStart:
    """Test start preconditions and warnings."""

    def test_start_enters_wait(self, near_target, plan):
        """A clean start predicts fully and waits for the burn."""
        autopilot = make_autopilot(near_target, plan)
        assert autopilot.start(make_vehicle())
        assert autopilot.stage is LandingStage.WAIT
        assert autopilot.active
        assert autopilot.landing_trajectory is not None
        assert autopilot.predictor.full_calls == 2

    def test_no_engines(self, near_target, plan):
        """Without active engines no trajectory can be computed."""
        autopilot = make_autopilot(near_target, plan)
        with pytest.raises(LandingSetupError, match="no engines"):
            autopilot.start(make_vehicle(has_active_engines=False))
        assert autopilot.stage is LandingStage.NONE

    def test_only_maneuver_engines(self, near_target, plan):
        """Thrusters usable for landing are required."""
        autopilot = make_autopilot(near_target, plan)
        with pytest.raises(LandingSetupError, match="maneuver engines"):
            autopilot.start(make_vehicle(has_thrusters=False))

    def test_target_on_other_body(self, plan):
        """The target must be on the body being orbited."""
        autopilot = make_autopilot(Target(0.0, 0.01, body_name="Mars"), plan)
        with pytest.raises(TargetError, match="body"):
            autopilot.start(make_vehicle())

    def test_vessel_not_landed(self, plan):
        """A vessel target must already be on the ground."""
        target = Target(0.0, 0.01, is_vessel=True, vessel_landed=False)
        autopilot = make_autopilot(target, plan)
        with pytest.raises(TargetError, match="landed"):
            autopilot.start(make_vehicle())

    def test_escape_trajectory(self, near_target, plan):
        """A coast that escapes the body cannot be landed from."""
        autopilot = make_autopilot(near_target, plan)
        with pytest.raises(DiscontinuousOrbitError):
            autopilot.start(make_vehicle(east_speed=5000.0))

    def test_negative_correction_distance(self, near_target, plan):
        """The correction radius cannot be negative."""
        with pytest.raises(ValueError, match="correction_max_dist"):
            make_autopilot(near_target, plan, correction_max_dist=-1.0)

    def test_low_fuel_warning(self, near_target, plan):
        """Low fuel stops an unforced start with a warning."""
        autopilot = make_autopilot(near_target, plan)
        assert not autopilot.start(make_vehicle(fuel_mass=10.0))
        assert autopilot.stage is LandingStage.NONE
        assert autopilot.status.startswith("WARNING:")
        assert "below safe margin" in autopilot.status
        assert autopilot.status.endswith("Push to proceed. At your own risk.")

    def test_far_landing_site_warning(self, near_target, plan):
        """A large predicted error is reported with its size."""
        plan.distance = 5000.0
        autopilot = make_autopilot(near_target, plan)
        warnings = autopilot.check_initial_trajectory(make_vehicle())
        assert warnings == ["Predicted landing site is too far from the target. Error is 5000 m."]

    def test_forced_start(self, near_target, plan):
        """Forcing proceeds despite warnings."""
        autopilot = make_autopilot(near_target, plan)
        assert autopilot.start(make_vehicle(fuel_mass=10.0), force=True)
        assert autopilot.stage is LandingStage.WAIT

    def test_abort(self, near_target, plan):
        """Abort drops the landing."""
        autopilot = make_autopilot(near_target, plan)
        autopilot.start(make_vehicle())
        autopilot.abort()
        assert autopilot.stage is LandingStage.NONE
        assert autopilot.context is None
        cmd = tick(autopilot, 1.0)
        assert cmd.stage is LandingStage.NONE
        assert cmd.status == "Landing aborted."


# =============================================================================
# Wait
# =============================================================================


class TestWait:
    """Test the countdown to the braking burn."""

    def test_warps_toward_brake_start(self, near_target, plan):
        """Far from the burn the host is asked to warp to it."""
        autopilot = make_autopilot(near_target, plan)
        autopilot.start(make_vehicle())
        cmd = tick(autopilot, 1.0)
        assert cmd.stage is LandingStage.WAIT
        assert cmd.status == "Preparing for deceleration..."
        assert cmd.warp_to == pytest.approx(999.0)
        assert cmd.throttle == 0.0

    def test_countdown_starts_deceleration(self, near_target, plan):
        """At brake start the burn begins and warp stops."""
        autopilot = make_autopilot(near_target, plan)
        autopilot.start(make_vehicle())
        plan.brake_start = 0.5
        cmd = tick(autopilot, 0.1)
        assert cmd.stage is LandingStage.DECELERATE
        assert cmd.stop_warp
        assert not autopilot.state.collision

    def test_full_prediction_throttled(self, near_target, plan):
        """The full prediction is refreshed only every few seconds."""
        autopilot = make_autopilot(near_target, plan)
        autopilot.start(make_vehicle())
        predictor = autopilot.predictor
        for time in (1.0, 2.0, 3.0, 4.0, 5.0):
            assert tick(autopilot, time).stage is LandingStage.WAIT
        assert predictor.full_calls == 2
        tick(autopilot, 6.0)
        assert predictor.full_calls == 3

    def test_obstacle_ahead(self, plan):
        """A ridge under the coast triggers a collision hold."""
        terrain = ProceduralTerrain(lambda lat, lon: 6000.0 if lon > 0.005 else 0.0)
        target = Target.on_surface(MOON, terrain, 0.0, 0.0)
        autopilot = make_autopilot(target, plan, terrain=terrain)
        autopilot.start(make_vehicle(east_speed=100.0))

        plan.brake_start = 100.0
        plan.propagate = True
        cmd = tick(autopilot, 0.1, east_speed=100.0)
        assert cmd.stage is LandingStage.DECELERATE
        assert autopilot.state.collision
        assert autopilot.landing_trajectory is None

        # climb while the obstacle persists
        vehicle = make_vehicle(time=0.2, east_speed=100.0)
        cmd = autopilot.update(vehicle)
        assert cmd.stage is LandingStage.DECELERATE
        assert cmd.status == "Possible collision detected."
        assert cmd.throttle == pytest.approx(1.0)
        assert_allclose(cmd.thrust_direction, vehicle.state.up, atol=1e-9)

        # once clear for long enough the landing restarts
        plan.propagate = False
        assert tick(autopilot, 0.3, east_speed=100.0).stage is LandingStage.DECELERATE
        assert tick(autopilot, 1.4, east_speed=100.0).stage is LandingStage.WAIT

    def test_flat_site_scan(self, plan):
        """Near brake start the target moves onto level ground."""
        terrain = ProceduralTerrain(lambda lat, lon: max(0.0, 1000.0 * (0.0005 - lon)))
        target = Target.on_surface(MOON, terrain, 0.0, 0.0)
        autopilot = make_autopilot(target, plan, terrain=terrain, correct_target=True)
        autopilot.start(make_vehicle())

        messages = []
        time = 0.0
        while not autopilot.context.scanned and time < 10.0:
            time += 0.1
            plan.brake_start = time + 10.0
            cmd = tick(autopilot, time)
            assert cmd.stage is LandingStage.WAIT
            assert cmd.stop_warp
            messages.extend(cmd.messages)

        ctx = autopilot.context
        assert ctx.scanned
        assert ctx.flat_target
        assert ctx.flat_search is None
        assert autopilot.current_target.longitude > 0.0005
        assert autopilot.target is target
        assert "Found flat region for landing." in messages

    def test_obstacle_sweep_before_burn(self, plan):
        """A spike the single-window search misses is found by the sweep during the wait."""
        terrain = ProceduralTerrain(lambda lat, lon: 6000.0 if 0.198 < lon < 0.23 else 0.0)
        target = Target.on_surface(MOON, terrain, 0.0, 0.0)
        autopilot = make_autopilot(target, plan, terrain=terrain)
        autopilot.start(make_vehicle(east_speed=100.0))

        plan.brake_start = 100.0
        plan.propagate = True
        cmd = tick(autopilot, 0.1, east_speed=100.0)
        assert cmd.stage is LandingStage.WAIT
        assert autopilot.obstacle_ahead(make_vehicle(time=0.1, east_speed=100.0)) < 0
        assert autopilot.context.obstacle_search is not None

        time = 0.1
        while cmd.stage is LandingStage.WAIT and time < 2.0:
            time += 0.1
            cmd = tick(autopilot, time, east_speed=100.0)

        assert cmd.stage is LandingStage.DECELERATE
        assert autopilot.state.collision
        assert autopilot.context.obstacle_search is None
        assert time < plan.brake_start


# =============================================================================
# Descent
# =============================================================================


class TestDescent:
    """Test the nominal stage sequence."""

    def test_land_at_target(self, near_target, plan):
        """WAIT, DECELERATE, COAST, SOFT_LANDING, LAND, then touchdown."""
        autopilot = make_autopilot(near_target, plan)
        descend_to_soft_landing(autopilot, plan)

        cmd = tick(autopilot, 0.4, **TOUCHDOWN)
        assert cmd.stage is LandingStage.LAND
        assert cmd.land_at_target
        assert cmd.throttle == 0.0

        cmd = tick(autopilot, 0.5, **TOUCHDOWN)
        assert cmd.status == "Landing at the target..."
        assert cmd.destination is not None

        cmd = tick(autopilot, 0.6, landed=True, **TOUCHDOWN)
        assert cmd.finished
        assert cmd.stage is LandingStage.NONE
        assert cmd.status == "Landed."
        assert not autopilot.active
        assert autopilot.context is None

    def test_final_burn_holds_stage(self, near_target, plan):
        """High above the ground the final burn keeps going."""
        autopilot = make_autopilot(near_target, plan)
        descend_to_soft_landing(autopilot, plan)
        cmd = tick(autopilot, 0.4, **DESCENT)
        assert cmd.stage is LandingStage.SOFT_LANDING
        assert autopilot.state.burning
        assert cmd.throttle == 1.0
        assert not cmd.correct_throttle
        assert cmd.status.startswith("Final deceleration.")

    def test_land_asap(self, near_target, plan):
        """Landing as soon as possible ends in LAND_HERE."""
        autopilot = make_autopilot(near_target, plan, land_asap=True)
        descend_to_soft_landing(autopilot, plan)
        assert tick(autopilot, 0.4, **TOUCHDOWN).stage is LandingStage.LAND_HERE

        cmd = tick(autopilot, 0.5, **TOUCHDOWN)
        assert cmd.status == "Landing..."
        assert cmd.stop_horizontal
        assert cmd.desired_altitude == 0.0

    def test_approach_far_target(self, moon, flat, plan):
        """A distant target is flown to after the final burn."""
        target = Target.on_surface(moon, flat, 0.0, 0.1)
        autopilot = make_autopilot(target, plan)
        descend_to_soft_landing(autopilot, plan)

        cmd = tick(autopilot, 0.4, **TOUCHDOWN)
        assert cmd.stage is LandingStage.APPROACH
        assert cmd.navigate_to_target
        assert cmd.desired_altitude == pytest.approx(4.0)

        cmd = tick(autopilot, 0.5, **TOUCHDOWN)
        assert cmd.stage is LandingStage.APPROACH
        assert cmd.status == "Approaching the target..."

    def test_approach_low_fuel(self, moon, flat, plan):
        """Running low on fuel during the approach lands on the spot."""
        target = Target.on_surface(moon, flat, 0.0, 0.1)
        autopilot = make_autopilot(target, plan)
        descend_to_soft_landing(autopilot, plan)
        tick(autopilot, 0.4, **TOUCHDOWN)

        cmd = tick(autopilot, 0.5, fuel_mass=10.0, **TOUCHDOWN)
        assert cmd.stage is LandingStage.LAND_HERE
        assert "Low on fuel, landing here." in cmd.messages

    def test_collision_avoidance(self, near_target, plan):
        """A course correction retargets onto the predicted site and burns."""
        autopilot = make_autopilot(near_target, plan)
        descend_to_soft_landing(autopilot, plan)
        correction = np.array([0.0, 0.0, 5.0])
        vehicle = make_vehicle(time=0.4, course_correction=correction, **DESCENT)

        cmd = autopilot.update(vehicle)
        assert cmd.stage is LandingStage.SOFT_LANDING
        assert cmd.status == "Avoiding collision!"
        assert not cmd.correct_throttle
        assert cmd.delta_v == pytest.approx(5.0 + np.sqrt(20.0**2 + 5.0**2), rel=1e-3)
        assert not autopilot.context.flat_target
        assert autopilot.context.target is not near_target

    def test_touchdown_keeps_operator_target(self, plan):
        """A target relocated by the site search is not handed back after landing."""
        terrain = ProceduralTerrain(lambda lat, lon: max(0.0, 1000.0 * (0.0005 - lon)))
        target = Target.on_surface(MOON, terrain, 0.0, 0.0)
        autopilot = make_autopilot(target, plan, terrain=terrain, correct_target=True)
        autopilot.start(make_vehicle())

        time = 0.0
        while not autopilot.context.scanned and time < 10.0:
            time += 0.1
            plan.brake_start = time + 10.0
            tick(autopilot, time)
        assert autopilot.current_target is not target

        cmd = tick(autopilot, time + 0.1, landed=True, **TOUCHDOWN)
        assert cmd.finished
        assert cmd.status == "Landed."
        assert autopilot.target is target
        assert autopilot.current_target is target


# =============================================================================
# Emergencies
# =============================================================================


class TestEmergency:
    """Test fallbacks to HARD_LANDING."""

    def test_out_of_fuel_while_braking(self, near_target, plan):
        """Too little fuel for a powered landing ends the burn."""
        autopilot = make_autopilot(near_target, plan)
        autopilot.start(make_vehicle(fuel_mass=10.0, **DESCENT), force=True)
        plan.brake_start = 0.0
        assert tick(autopilot, 0.1, fuel_mass=10.0, **DESCENT).stage is LandingStage.DECELERATE

        cmd = tick(autopilot, 0.2, fuel_mass=10.0, **DESCENT)
        assert cmd.stage is LandingStage.HARD_LANDING
        assert "Not enough fuel for powered landing. Performing emergency landing..." in cmd.messages

    def test_short_hover_after_coast(self, near_target, plan):
        """Fuel for the final burn but not for the hover reserve ends in an emergency."""
        low = {"fuel_mass": 60.0, **DESCENT}
        autopilot = make_autopilot(near_target, plan)
        autopilot.start(make_vehicle(**low), force=True)
        plan.brake_start = 0.0
        assert tick(autopilot, 0.1, **low).stage is LandingStage.DECELERATE
        assert tick(autopilot, 0.2, **low).stage is LandingStage.COAST

        cmd = tick(autopilot, 0.3, **low)
        assert cmd.stage is LandingStage.HARD_LANDING
        assert "Not enough fuel for powered landing. Performing emergency landing..." in cmd.messages

    def test_no_engines_left(self, near_target, plan):
        """Losing all thrust for a while forces an emergency landing."""
        autopilot = make_autopilot(near_target, plan)
        autopilot.start(make_vehicle(max_thrust=0.0), force=True)

        assert tick(autopilot, 0.1, max_thrust=0.0).stage is LandingStage.WAIT
        assert tick(autopilot, 0.6, max_thrust=0.0).stage is LandingStage.WAIT
        cmd = tick(autopilot, 1.2, max_thrust=0.0)
        assert cmd.stage is LandingStage.HARD_LANDING
        assert "No engines left. Performing emergency landing..." in cmd.messages
        assert cmd.status.startswith("Emergency Landing.")
        assert "Crash is imminent!" in cmd.status

        # the emergency is not restarted on later ticks
        cmd = tick(autopilot, 2.5, max_thrust=0.0)
        assert cmd.stage is LandingStage.HARD_LANDING
        assert not cmd.messages

    def test_parachutes_in_atmosphere(self, flat, plan):
        """With an atmosphere the hard landing asks for parachutes and brakes."""
        target = Target.on_surface(MARS, flat, 0.0, 0.01)
        autopilot = make_autopilot(target, plan, body=MARS)
        chutes = {"fuel_mass": 10.0, "has_parachutes": True, "has_usable_parachutes": True}
        vehicle = make_vehicle(body=MARS, **chutes, **DESCENT)

        warnings = autopilot.check_initial_trajectory(vehicle)
        assert len(warnings) == 2
        assert warnings[1].startswith("Landing with parachutes may be possible")

        autopilot.start(vehicle, force=True)
        plan.brake_start = 0.0
        tick(autopilot, 0.1, **chutes, **DESCENT)
        assert tick(autopilot, 0.2, **chutes, **DESCENT).stage is LandingStage.HARD_LANDING

        cmd = tick(autopilot, 0.3, **chutes, **DESCENT)
        assert cmd.parachutes is ParachuteAction.ASAP
        assert cmd.brakes
        assert cmd.custom_rotation is not None
        assert "Waiting for the right moment to deploy parachutes." in cmd.status


# =============================================================================
# Timers
# =============================================================================


class TestTimers:
    """Test that repeated ticks keep timers running instead of restarting them."""

    def test_collision_timer_not_rearmed(self, plan):
        """The clear-of-obstacles timer counts from its first clear tick."""
        terrain = ProceduralTerrain(lambda lat, lon: 6000.0 if lon > 0.005 else 0.0)
        target = Target.on_surface(MOON, terrain, 0.0, 0.0)
        autopilot = make_autopilot(target, plan, terrain=terrain)
        autopilot.start(make_vehicle(east_speed=100.0))

        plan.brake_start = 100.0
        plan.propagate = True
        assert tick(autopilot, 0.1, east_speed=100.0).stage is LandingStage.DECELERATE
        state = autopilot.state

        plan.propagate = False
        for time in (0.3, 0.6, 0.9):
            assert tick(autopilot, time, east_speed=100.0).stage is LandingStage.DECELERATE
        assert autopilot.state is state
        assert state.collision_timer.elapsed(0.9) == pytest.approx(0.6)
        assert tick(autopilot, 1.4, east_speed=100.0).stage is LandingStage.WAIT

    def test_no_engines_timer_not_rearmed(self, near_target, plan):
        """Without thrust the timer keeps its start across ticks."""
        autopilot = make_autopilot(near_target, plan)
        autopilot.start(make_vehicle(max_thrust=0.0), force=True)
        tick(autopilot, 0.1, max_thrust=0.0)
        tick(autopilot, 0.6, max_thrust=0.0)
        assert autopilot.context.no_engines_timer.elapsed(0.6) == pytest.approx(0.5)

    def test_stage_timer_not_rearmed(self, flat, plan):
        """Sustained high pressure drops ballast once the stage timer runs out."""
        target = Target.on_surface(MARS, flat, 0.0, 0.01)
        autopilot = make_autopilot(target, plan, body=MARS)
        fast = {
            "fuel_mass": 10.0,
            "has_parachutes": True,
            "has_usable_parachutes": True,
            "dynamic_pressure": 1.0,
            "mach": 2.0,
            "current_stage": 2,
            **DESCENT,
        }
        autopilot.start(make_vehicle(body=MARS, **fast), force=True)
        plan.brake_start = 0.0
        tick(autopilot, 0.1, **fast)
        assert tick(autopilot, 0.2, **fast).stage is LandingStage.HARD_LANDING

        for time in (0.3, 2.0, 4.0):
            cmd = tick(autopilot, time, **fast)
            assert not cmd.activate_next_stage
        timer = autopilot.context.stage_timer
        assert timer.elapsed(4.0) == pytest.approx(3.7)

        cmd = tick(autopilot, 5.5, **fast)
        assert cmd.activate_next_stage
        assert "Have to drop ballast to decelerate..." in cmd.messages
