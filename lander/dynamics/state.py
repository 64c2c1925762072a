"""Rigid-body state of the landing vehicle.

The state vector contains:
- Position (3): [x, y, z] in the body-centered inertial frame
- Velocity (3): [vx, vy, vz] in the inertial frame
- Quaternion (4): [q0, q1, q2, q3] attitude (scalar-first convention)
- Angular velocity (3): [p, q, r] body rates in body frame
- Mass (1): current vehicle mass

Coordinate frames:
- Inertial: centered on the celestial body, Z along its rotation axis
- Body-fixed: rotates with the celestial body (see lander.body)
- Vehicle: X along the main thrust axis

Quaternion convention:
- Scalar-first: q = [q0, q1, q2, q3] where q0 is the scalar part
- Represents rotation from the inertial frame to the vehicle frame
"""

from dataclasses import dataclass

import numpy as np
from beartype import beartype
from numpy.typing import NDArray

# =============================================================================
# Vector Utilities
# =============================================================================


def unit(v: NDArray[np.float64]) -> NDArray[np.float64]:
    """Unit vector along v, or zero vector if v is (nearly) zero."""
    norm = np.linalg.norm(v)
    if norm < 1e-12:
        return np.zeros_like(v, dtype=np.float64)
    return v / norm


def exclude(normal: NDArray[np.float64], v: NDArray[np.float64]) -> NDArray[np.float64]:
    """Component of v perpendicular to normal."""
    n = unit(normal)
    return v - np.dot(v, n) * n


def angle_between(a: NDArray[np.float64], b: NDArray[np.float64]) -> float:
    """Angle between two vectors [deg]. Zero if either vector is zero."""
    na = np.linalg.norm(a)
    nb = np.linalg.norm(b)
    if na < 1e-12 or nb < 1e-12:
        return 0.0
    cos_angle = np.clip(np.dot(a, b) / (na * nb), -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_angle)))


def signed_angle(a: NDArray[np.float64], b: NDArray[np.float64], normal: NDArray[np.float64]) -> float:
    """Angle from a to b measured counterclockwise about normal [deg]."""
    n = unit(normal)
    pa = exclude(n, a)
    pb = exclude(n, b)
    return float(np.degrees(np.arctan2(np.dot(np.cross(pa, pb), n), np.dot(pa, pb))))


def rotate_about_axis(v: NDArray[np.float64], axis: NDArray[np.float64], angle: float) -> NDArray[np.float64]:
    """Rotate v about axis by angle [rad] (Rodrigues' formula)."""
    k = unit(axis)
    c, s = np.cos(angle), np.sin(angle)
    return v * c + np.cross(k, v) * s + k * np.dot(k, v) * (1.0 - c)


def clamp_magnitude(v: NDArray[np.float64], max_norm: float) -> NDArray[np.float64]:
    """Scale v down so that its norm does not exceed max_norm."""
    norm = np.linalg.norm(v)
    if norm > max_norm and norm > 0:
        return v * (max_norm / norm)
    return v


# =============================================================================
# Quaternion Utilities
# =============================================================================


@beartype
def normalize_quaternion(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Normalize a quaternion to unit length."""
    norm = np.linalg.norm(q)
    if norm < 1e-10:
        return np.array([1.0, 0.0, 0.0, 0.0])
    return q / norm


@beartype
def quaternion_conjugate(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Compute quaternion conjugate (inverse for unit quaternions)."""
    return np.array([q[0], -q[1], -q[2], -q[3]])


@beartype
def quaternion_to_dcm(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert quaternion to Direction Cosine Matrix (DCM).

    Args:
        q: Quaternion [q0, q1, q2, q3] representing rotation from frame A to B

    Returns:
        3x3 DCM that transforms vectors from frame A to frame B
    """
    q0, q1, q2, q3 = normalize_quaternion(q)

    return np.array([
        [1 - 2*(q2**2 + q3**2), 2*(q1*q2 - q0*q3), 2*(q1*q3 + q0*q2)],
        [2*(q1*q2 + q0*q3), 1 - 2*(q1**2 + q3**2), 2*(q2*q3 - q0*q1)],
        [2*(q1*q3 - q0*q2), 2*(q2*q3 + q0*q1), 1 - 2*(q1**2 + q2**2)],
    ])


@beartype
def dcm_to_quaternion(dcm: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert a Direction Cosine Matrix to a scalar-first quaternion.

    Every pairwise product q_i * q_j is a linear combination of DCM entries.
    The row of the largest component is divided by its magnitude, which
    stays well conditioned for any rotation.
    """
    d = dcm
    squares = 0.25 * np.array([
        1.0 + d[0, 0] + d[1, 1] + d[2, 2],
        1.0 + d[0, 0] - d[1, 1] - d[2, 2],
        1.0 - d[0, 0] + d[1, 1] - d[2, 2],
        1.0 - d[0, 0] - d[1, 1] + d[2, 2],
    ])
    w_x = 0.25 * (d[2, 1] - d[1, 2])
    w_y = 0.25 * (d[0, 2] - d[2, 0])
    w_z = 0.25 * (d[1, 0] - d[0, 1])
    x_y = 0.25 * (d[0, 1] + d[1, 0])
    x_z = 0.25 * (d[0, 2] + d[2, 0])
    y_z = 0.25 * (d[1, 2] + d[2, 1])
    products = np.array([
        [squares[0], w_x, w_y, w_z],
        [w_x, squares[1], x_y, x_z],
        [w_y, x_y, squares[2], y_z],
        [w_z, x_z, y_z, squares[3]],
    ])

    k = int(np.argmax(squares))
    return normalize_quaternion(products[k] / np.sqrt(squares[k]))



@beartype
def rotation_vector(dcm: NDArray[np.float64]) -> NDArray[np.float64]:
    """Axis-angle vector [rad] of the rotation described by a DCM.

    The shortest rotation is returned, so the norm never exceeds pi.
    """
    q = dcm_to_quaternion(dcm)
    if q[0] < 0:
        q = -q
    sin_half = np.linalg.norm(q[1:])
    if sin_half < 1e-12:
        return np.zeros(3)
    angle = 2.0 * np.arctan2(sin_half, q[0])
    return q[1:] / sin_half * angle


@beartype
def attitude_from_direction(
    direction: NDArray[np.float64],
    reference: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Attitude quaternion with the vehicle X axis along direction.

    Args:
        direction: Desired X axis in the inertial frame
        reference: Inertial vector the vehicle Z axis should lean toward

    Returns:
        Quaternion [q0, q1, q2, q3] (inertial to vehicle)
    """
    body_x = unit(direction)
    body_z = exclude(body_x, reference)
    if np.linalg.norm(body_z) < 1e-3:
        fallback = np.array([0.0, 0.0, 1.0]) if abs(body_x[2]) < 0.9 else np.array([1.0, 0.0, 0.0])
        body_z = exclude(body_x, fallback)
    body_z = unit(body_z)
    body_y = np.cross(body_z, body_x)

    # columns are vehicle axes in the inertial frame, i.e. vehicle -> inertial
    dcm = np.column_stack([body_x, body_y, body_z])
    return dcm_to_quaternion(dcm.T)


# =============================================================================
# State
# =============================================================================


@beartype
@dataclass
class State:
    """Rigid-body state of the vehicle.

    Attributes:
        position: [x, y, z] position in inertial frame [m]
        velocity: [vx, vy, vz] velocity in inertial frame [m/s]
        quaternion: [q0, q1, q2, q3] attitude quaternion (scalar-first)
        angular_velocity: [p, q, r] body angular rates [rad/s]
        mass: current vehicle mass [kg]
        time: mission time [s]
    """
    position: NDArray[np.float64]
    velocity: NDArray[np.float64]
    quaternion: NDArray[np.float64]
    angular_velocity: NDArray[np.float64]
    mass: float
    time: float = 0.0

    def __post_init__(self) -> None:
        """Validate and normalize state."""
        self.position = np.asarray(self.position, dtype=np.float64)
        self.velocity = np.asarray(self.velocity, dtype=np.float64)
        self.quaternion = normalize_quaternion(np.asarray(self.quaternion, dtype=np.float64))
        self.angular_velocity = np.asarray(self.angular_velocity, dtype=np.float64)

        if self.position.shape != (3,):
            raise ValueError(f"Position must be shape (3,), got {self.position.shape}")
        if self.velocity.shape != (3,):
            raise ValueError(f"Velocity must be shape (3,), got {self.velocity.shape}")
        if self.quaternion.shape != (4,):
            raise ValueError(f"Quaternion must be shape (4,), got {self.quaternion.shape}")
        if self.angular_velocity.shape != (3,):
            raise ValueError(f"Angular velocity must be shape (3,), got {self.angular_velocity.shape}")
        if self.mass <= 0:
            raise ValueError(f"Mass must be positive, got {self.mass}")

    def copy(self) -> "State":
        """Create a copy of this state."""
        return State(
            position=self.position.copy(),
            velocity=self.velocity.copy(),
            quaternion=self.quaternion.copy(),
            angular_velocity=self.angular_velocity.copy(),
            mass=self.mass,
            time=self.time,
        )

    @property
    def dcm_body_to_inertial(self) -> NDArray[np.float64]:
        """Get DCM that transforms vectors from vehicle to inertial frame."""
        return quaternion_to_dcm(quaternion_conjugate(self.quaternion))

    @property
    def dcm_inertial_to_body(self) -> NDArray[np.float64]:
        """Get DCM that transforms vectors from inertial to vehicle frame."""
        return quaternion_to_dcm(self.quaternion)

    @property
    def radius(self) -> float:
        """Distance from the body center [m]."""
        return float(np.linalg.norm(self.position))

    @property
    def up(self) -> NDArray[np.float64]:
        """Local vertical unit vector (inertial frame)."""
        return unit(self.position)

    @property
    def speed(self) -> float:
        """Get inertial speed magnitude [m/s]."""
        return float(np.linalg.norm(self.velocity))

    def to_body(self, v: NDArray[np.float64]) -> NDArray[np.float64]:
        """Express an inertial vector in the vehicle frame."""
        return self.dcm_inertial_to_body @ v

    def to_inertial(self, v: NDArray[np.float64]) -> NDArray[np.float64]:
        """Express a vehicle-frame vector in the inertial frame."""
        return self.dcm_body_to_inertial @ v
