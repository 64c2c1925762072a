"""Control primitives for attitude loops."""

from lander.gnc.control.pid import (
    PIDGains,
    VectorPIDController,
)

__all__ = [
    "PIDGains",
    "VectorPIDController",
]
