"""Landing autopilot exceptions.

Only precondition failures are exceptional. Running out of fuel, thrust or
control authority mid-descent is handled inside the stage machine as a
transition to an emergency landing, never by raising.
"""


class LandingError(Exception):
    """Base class for all landing autopilot errors."""
    pass


class LandingSetupError(LandingError):
    """The autopilot cannot start with the current vehicle configuration."""

    def __init__(self, reason: str, message: str = "Cannot start landing"):
        self.reason = reason
        super().__init__(f"{message}: {reason}")


class DiscontinuousOrbitError(LandingSetupError):
    """The coasting trajectory escapes before it can reach the surface."""

    def __init__(self, reason: str = "orbit is discontinuous; cannot perform a targeted landing from unstable orbit"):
        super().__init__(reason)


class TargetError(LandingSetupError):
    """The landing target is unusable (wrong body, vessel not landed, ...)."""

    def __init__(self, reason: str):
        super().__init__(reason, message="Invalid landing target")
