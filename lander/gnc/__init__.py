"""GNC building blocks shared by the flight software."""

from lander.gnc.control import PIDGains, VectorPIDController

__all__ = [
    "PIDGains",
    "VectorPIDController",
]
