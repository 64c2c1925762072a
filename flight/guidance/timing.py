"""Tick-driven timers and hysteresis thresholds.

The stage machine never sleeps or schedules callbacks; it samples these
helpers with the current mission time once per tick and acts on the result.

Example:
    >>> timer = Timer(period=5.0)
    >>> timer.run_if(dynamic_pressure_high, now)   # True once held for 5 s
    >>>
    >>> pointing = FuzzyThreshold(upper=10.0, shift=3.0)
    >>> pointing.update(error_deg)                  # on above 10, off below 7
"""

from dataclasses import dataclass, field

from beartype import beartype

# =============================================================================
# Timer
# =============================================================================


@beartype
@dataclass
class Timer:
    """Period timer that starts counting on the first poll.

    Attributes:
        period: Time that has to elapse for the timer to fire [s]
    """
    period: float = 1.0

    _start: float | None = field(default=None, init=False, repr=False)

    @property
    def running(self) -> bool:
        return self._start is not None

    def reset(self) -> None:
        self._start = None

    def elapsed(self, now: float) -> float:
        if self._start is None:
            return 0.0
        return now - self._start

    def time_passed(self, now: float) -> bool:
        """Whether the period has elapsed since the timer was (re)started.

        Polling a reset timer starts it, so the first call is always False
        for a positive period.
        """
        if self._start is None:
            self._start = now
        return now - self._start >= self.period

    def run_if(self, condition: bool, now: float) -> bool:
        """Fire once the condition has held for a full period.

        A false condition resets the timer. A fired timer restarts, so a
        condition that keeps holding fires once per period.

        Returns:
            True on the tick the timer fires
        """
        if not condition:
            self.reset()
            return False
        if self.time_passed(now):
            self.reset()
            return True
        return False


# =============================================================================
# Hysteresis Threshold
# =============================================================================


@beartype
@dataclass
class FuzzyThreshold:
    """Boolean switch with hysteresis.

    The switch turns on when the value rises above upper and off when it
    falls below upper - shift. In between it keeps its previous state.

    Attributes:
        upper: Switch-on level
        shift: Width of the hysteresis band
    """
    upper: float = 10.0
    shift: float = 3.0

    value: float = field(default=0.0, init=False)
    _on: bool = field(default=False, init=False, repr=False)

    @property
    def lower(self) -> float:
        return self.upper - self.shift

    def update(self, value: float) -> bool:
        self.value = float(value)
        if self.value > self.upper:
            self._on = True
        elif self.value < self.lower:
            self._on = False
        return self._on

    def reset(self) -> None:
        self.value = 0.0
        self._on = False

    def __bool__(self) -> bool:
        return self._on
