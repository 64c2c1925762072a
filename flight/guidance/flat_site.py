"""Flat landing-site search.

Searches the surface around a target for a point where the terrain under
the vehicle footprint is as level as possible. The optimizer is a
derivative-free compass search over (latitude, longitude) with an explicit
resumable state: each call to advance() evaluates at most a budget of
points, so the search can be spread over many control ticks.

The search knows nothing about terrain or targets; it is parameterized by a
score function and a feasibility predicate. FlatSiteSearch.around() wires
both up for a target on a body.

Example:
    >>> search = FlatSiteSearch.around(target, MOON, terrain, size=4.0, max_distance=1000.0)
    >>> while search.advance(budget=5).in_progress:
    ...     pass
    >>> search.relocation(target, terrain)    # new Target, or None to keep the old one
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np

from flight.guidance.obstacles import ScanStatus
from flight.guidance.target import Target
from lander.body import CelestialBody
from lander.terrain import Terrain

logger = logging.getLogger(__name__)

# Compass directions in (latitude, longitude)
DIRECTIONS = ((1.0, 0.0), (0.0, 1.0), (-1.0, 0.0), (0.0, -1.0))

# =============================================================================
# Unevenness
# =============================================================================


def unevenness(terrain: Terrain, latitude: float, longitude: float, half: float, size: float) -> float:
    """Terrain roughness under a square footprint.

    Mean absolute height difference between the footprint center and its
    four corners, divided by the footprint size.

    Args:
        terrain: Terrain oracle
        latitude: Footprint center latitude [deg]
        longitude: Footprint center longitude [deg]
        half: Half of the footprint side [deg]
        size: Footprint side [m]

    Returns:
        Dimensionless unevenness; infinite over water
    """
    if terrain.is_water(latitude, longitude):
        return np.inf
    center = float(terrain.altitude(latitude, longitude))
    corners = (
        (latitude - half, longitude - half),
        (latitude + half, longitude - half),
        (latitude + half, longitude + half),
        (latitude - half, longitude + half),
    )
    delta = sum(abs(float(terrain.altitude(lat, lon)) - center) for lat, lon in corners)
    return delta / 4.0 / size


# =============================================================================
# Compass Search
# =============================================================================


@dataclass
class FlatSiteSearch:
    """Resumable 2D compass search minimizing a score.

    Tries the four compass directions around the best point at the current
    step. An improving sample moves the best point; a full round of four
    failed samples halves the step. Infeasible samples count as failures, so
    the search is pushed back inside the feasible region without a hard
    boundary.

    The search converges once the step falls below the tolerance, or once
    the step has been halved patience times in a row without the best
    score improving by more than min_improvement (relative). The second
    condition ends the search on plateaus.

    Attributes:
        score: Score of a (latitude, longitude) point; lower is better
        feasible: Whether a (latitude, longitude) point may be selected
        origin: Starting point (latitude, longitude) [deg]
        step: Initial step [deg]
        tolerance: The search converges when the step falls below this [deg]
        epsilon: Numeric floor of the step [deg]
        max_evaluations: Hard cap on score evaluations
        target_score: Score considered good enough, used for progress only
        min_improvement: Relative score gain that counts as progress between halvings
        patience: Consecutive halvings without progress before the search stops
    """
    score: Callable[[float, float], float]
    feasible: Callable[[float, float], bool]
    origin: tuple[float, float]
    step: float
    tolerance: float
    epsilon: float = 1e-7
    max_evaluations: int = 10000
    target_score: float = 0.1
    min_improvement: float = 1e-3
    patience: int = 5

    _best: tuple[float, float] | None = field(default=None, init=False, repr=False)
    _best_value: float = field(default=np.inf, init=False, repr=False)
    _direction: int = field(default=0, init=False, repr=False)
    _failures: int = field(default=0, init=False, repr=False)
    _evaluations: int = field(default=0, init=False, repr=False)
    _halving_value: float = field(default=np.inf, init=False, repr=False)
    _stalls: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.step <= 0:
            raise ValueError(f"Search step must be positive, got {self.step}")
        if self.patience < 1:
            raise ValueError(f"Search patience must be at least 1, got {self.patience}")

    @classmethod
    def around(
        cls,
        target: Target,
        body: CelestialBody,
        terrain: Terrain,
        size: float,
        max_distance: float = -1.0,
        tolerance: float = 0.01,
        target_score: float = 0.1,
    ) -> "FlatSiteSearch":
        """Search around a target for a vehicle of a given footprint.

        Args:
            target: Landing target the search starts from
            body: Central body
            terrain: Terrain oracle
            size: Vehicle footprint [m]
            max_distance: Largest relocation [m]; negative means unlimited
            tolerance: Convergence step as a fraction of the footprint
            target_score: Unevenness considered flat
        """
        delta = float(np.degrees(size / body.radius))
        half = delta / 2.0

        def score(lat: float, lon: float) -> float:
            return unevenness(terrain, lat, lon, half, size)

        def feasible(lat: float, lon: float) -> bool:
            if max_distance < 0:
                return True
            return body.surface_distance(target.latitude, target.longitude, lat, lon) < max_distance

        return cls(
            score=score,
            feasible=feasible,
            origin=(target.latitude, target.longitude),
            step=10.0 * delta,
            tolerance=tolerance * delta,
            target_score=target_score,
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def best(self) -> tuple[float, float]:
        return self.origin if self._best is None else self._best

    @property
    def best_value(self) -> float:
        return self._best_value

    @property
    def evaluations(self) -> int:
        return self._evaluations

    @property
    def done(self) -> bool:
        return (
            self._best is not None
            and (
                self.step < max(self.tolerance, self.epsilon)
                or self._evaluations >= self.max_evaluations
                or self._stalls >= self.patience
            )
        )

    @property
    def progress(self) -> float:
        if self._best_value <= 0:
            return 1.0
        return min(self.target_score / self._best_value, 1.0)

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def _evaluate(self, lat: float, lon: float) -> float:
        self._evaluations += 1
        if not self.feasible(lat, lon):
            return np.inf
        return float(self.score(lat, lon))

    def _improved(self) -> bool:
        if self._best_value >= self._halving_value:
            return False
        if not np.isfinite(self._halving_value):
            return True
        return self._halving_value - self._best_value > self.min_improvement * abs(self._halving_value)

    def _halve(self) -> None:
        self._stalls = 0 if self._improved() else self._stalls + 1
        self._halving_value = self._best_value
        self.step /= 2.0
        self._failures = 0
        if self._stalls >= self.patience:
            logger.debug("Site search stalled at unevenness %.3g, step %.3g deg", self._best_value, self.step)

    def advance(self, budget: int = 1) -> ScanStatus:
        """Evaluate up to budget points.

        Returns:
            ScanStatus with the best score so far; in_progress is False once converged
        """
        if budget < 1:
            raise ValueError(f"Search budget must be positive, got {budget}")
        for _ in range(budget):
            if self.done:
                break
            if self._best is None:
                self._best = self.origin
                self._best_value = self._evaluate(*self.origin)
                self._halving_value = self._best_value
                continue
            dlat, dlon = DIRECTIONS[self._direction]
            lat = self._best[0] + dlat * self.step
            lon = self._best[1] + dlon * self.step
            value = self._evaluate(lat, lon)
            if value < self._best_value:
                self._best = (lat, lon)
                self._best_value = value
                self._failures = 0
            else:
                self._failures += 1
                self._direction = (self._direction + 1) % len(DIRECTIONS)
                if self._failures >= len(DIRECTIONS):
                    self._halve()
        return ScanStatus(not self.done, self._best_value, self.progress)

    def run(self) -> tuple[float, float]:
        """Advance to convergence and return the best point."""
        while not self.done:
            self.advance(100)
        return self.best

    def relocation(self, target: Target, terrain: Terrain) -> Target | None:
        """Target moved to the best site, or None if it should stay.

        A vessel target is never relocated, and neither is a target whose
        best site is the origin itself or is unusable (e.g. water).
        """
        if target.is_vessel or not np.isfinite(self._best_value):
            return None
        lat, lon = self.best
        if target.same_site(lat, lon):
            return None
        logger.debug("Flat site at %.5f, %.5f, unevenness %.3g", lat, lon, self._best_value)
        return target.relocated(lat, lon, float(terrain.altitude(lat, lon)))
