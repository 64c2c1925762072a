"""Guidance algorithms for powered landing.

Guidance predicts where the vehicle will come down, searches for a safe
spot and sequences the landing stages.

Available components:
    TrajectoryPredictor: Ballistic landing prediction with a braking estimate
    ObstacleSearch: Resumable sweep for terrain above the predicted path
    FlatSiteSearch: Resumable search for the flattest site near a target
    LandingAutopilot: Landing stage machine
"""

from flight.guidance.config import LandingConfig
from flight.guidance.flat_site import FlatSiteSearch, unevenness
from flight.guidance.landing import LandingAutopilot
from flight.guidance.obstacles import ObstacleSearch, ScanStatus, find_worst_clearance, ground_clearance
from flight.guidance.stages import LandingCommand, LandingContext, LandingStage, ParachuteAction
from flight.guidance.target import Target
from flight.guidance.timing import FuzzyThreshold, Timer
from flight.guidance.trajectory import (
    LandingTrajectory,
    SurfacePoint,
    TrajectoryEvent,
    TrajectoryPredictor,
)

__all__ = [
    "FlatSiteSearch",
    "FuzzyThreshold",
    "LandingAutopilot",
    "LandingCommand",
    "LandingConfig",
    "LandingContext",
    "LandingStage",
    "LandingTrajectory",
    "ObstacleSearch",
    "ParachuteAction",
    "ScanStatus",
    "SurfacePoint",
    "Target",
    "Timer",
    "TrajectoryEvent",
    "TrajectoryPredictor",
    "find_worst_clearance",
    "ground_clearance",
    "unevenness",
]
