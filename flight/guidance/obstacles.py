"""Obstacle search along a predicted path.

Ground clearance along a coast is sampled through a clearance function of
time. The single-window search is a local line search: from the window
midpoint it samples both sides at a halving step and moves to the lowest
clearance seen. It finds a low point, not necessarily the global minimum of
the window. The full-path sweep splits a long window into equal sub-windows
and searches them a few per tick, so a long sweep never blocks the caller.

Example:
    >>> clearance = ground_clearance(MOON, terrain, trajectory.propagator, vehicle.size)
    >>> find_worst_clearance(clearance, t0, t1, offset=100.0)    # > 0 means obstruction
    >>>
    >>> search = ObstacleSearch(clearance, t0, t1, offset=0.0)
    >>> status = search.step(budget=5)
    >>> status.in_progress, status.value
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np

from lander.body import CelestialBody
from lander.terrain import Terrain

logger = logging.getLogger(__name__)

ClearanceFunction = Callable[[float], float]


# =============================================================================
# Clearance
# =============================================================================


def ground_clearance(
    body: CelestialBody,
    terrain: Terrain,
    propagator,
    size: float,
) -> ClearanceFunction:
    """Clearance between the vehicle and the terrain below it at a time.

    Args:
        body: Central body
        terrain: Terrain oracle
        propagator: Propagation oracle with state_at(time)
        size: Vehicle size, subtracted from the clearance [m]

    Returns:
        Function of time returning the clearance [m]
    """
    def clearance(time: float) -> float:
        position, _ = propagator.state_at(time)
        lat, lon, alt = body.coordinates(position, time)
        return alt - size - float(terrain.altitude(lat, lon))

    return clearance


def find_worst_clearance(
    clearance: ClearanceFunction,
    start: float,
    stop: float,
    offset: float,
    tolerance: float = 0.01,
) -> float:
    """Obstruction margin inside a time window.

    Args:
        clearance: Clearance as a function of time [m]
        start: Window start [s]
        stop: Window stop [s]
        offset: Required clearance [m]
        tolerance: Smallest sampling step [s]

    Returns:
        offset - lowest clearance found; positive means obstruction
    """
    if stop <= start:
        return offset - clearance(start)

    time = 0.5 * (start + stop)
    lowest = clearance(time)
    step = 0.5 * (stop - start)
    while step >= tolerance:
        ahead = clearance(time + step) if time + step <= stop else np.inf
        behind = clearance(time - step) if time - step >= start else np.inf
        if ahead < lowest and ahead <= behind:
            time += step
            lowest = ahead
        elif behind < lowest:
            time -= step
            lowest = behind
        step /= 2.0
    return offset - lowest


# =============================================================================
# Resumable Sweep
# =============================================================================


class ScanStatus(NamedTuple):
    """Progress report of a resumable search."""
    in_progress: bool
    value: float
    progress: float


@dataclass
class ObstacleSearch:
    """Full-path obstacle sweep, advanced a few sub-windows per call.

    Attributes:
        clearance: Clearance as a function of time [m]
        start: Sweep start [s]
        stop: Sweep stop [s]
        offset: Required clearance [m]
        windows: Number of equal sub-windows
        tolerance: Smallest sampling step [s]
    """
    clearance: ClearanceFunction
    start: float
    stop: float
    offset: float = 0.0
    windows: int = 100
    tolerance: float = 0.01

    _index: int = field(default=0, init=False, repr=False)
    _worst: float = field(default=-np.inf, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.windows < 1:
            raise ValueError(f"Obstacle search needs at least one window, got {self.windows}")

    @property
    def done(self) -> bool:
        return self._index >= self.windows

    @property
    def value(self) -> float:
        """Largest obstruction margin seen so far."""
        return self._worst

    @property
    def progress(self) -> float:
        return min(self._index / self.windows, 1.0)

    def step(self, budget: int = 1) -> ScanStatus:
        """Search up to budget sub-windows.

        Returns:
            ScanStatus; in_progress is False once the whole path is covered
        """
        if budget < 1:
            raise ValueError(f"Search budget must be positive, got {budget}")
        width = (self.stop - self.start) / self.windows
        for _ in range(budget):
            if self.done:
                break
            lo = self.start + self._index * width
            margin = find_worst_clearance(self.clearance, lo, lo + width, self.offset, self.tolerance)
            self._worst = max(self._worst, margin)
            self._index += 1
        if self.done:
            logger.debug("Obstacle sweep finished, worst margin %.1f m", self._worst)
        return ScanStatus(not self.done, self._worst, self.progress)

    def run(self) -> float:
        """Sweep the rest of the path at once."""
        while not self.done:
            self.step(self.windows)
        return self._worst
