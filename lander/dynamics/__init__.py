"""Vehicle state representation and rotation utilities.

Example:
    >>> from lander.dynamics import State, attitude_from_direction
    >>> import numpy as np
    >>>
    >>> q = attitude_from_direction(np.array([0.0, 0.0, 1.0]), np.array([1.0, 0.0, 0.0]))
    >>> state = State(position=np.array([1.8e6, 0.0, 0.0]), velocity=np.zeros(3),
    ...               quaternion=q, angular_velocity=np.zeros(3), mass=1500.0)
"""

from lander.dynamics.state import (
    State,
    angle_between,
    attitude_from_direction,
    clamp_magnitude,
    dcm_to_quaternion,
    exclude,
    normalize_quaternion,
    quaternion_conjugate,
    quaternion_to_dcm,
    rotate_about_axis,
    rotation_vector,
    signed_angle,
    unit,
)

__all__ = [
    # State
    "State",
    # Quaternion utilities
    "quaternion_to_dcm",
    "dcm_to_quaternion",
    "quaternion_conjugate",
    "normalize_quaternion",
    "rotation_vector",
    "attitude_from_direction",
    # Vector utilities
    "unit",
    "exclude",
    "angle_between",
    "signed_angle",
    "rotate_about_axis",
    "clamp_magnitude",
]
