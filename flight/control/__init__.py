"""Control algorithms for landing vehicles.

Control computes actuator commands that achieve the orientation requested
by guidance.

Available controllers:
    AttitudeControl: PID attitude loop with gain scheduling on control authority
"""

from flight.control.attitude import AttitudeConfig, AttitudeControl, AttitudeMode

__all__ = [
    "AttitudeConfig",
    "AttitudeControl",
    "AttitudeMode",
]
