"""Unit tests for vehicle state, vector helpers and quaternions."""

import numpy as np
import pytest
from numpy.testing import assert_allclose

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

# =============================================================================
# Vector Helpers
# =============================================================================


class TestVectorHelpers:
    """Test small vector utilities."""

    def test_unit_of_zero_is_zero(self):
        """Unit vector of a zero vector should be zero, not NaN."""
        assert_allclose(unit(np.zeros(3)), np.zeros(3))

    def test_exclude_removes_normal_component(self):
        """Excluded vector should be perpendicular to the normal."""
        v = exclude(np.array([0.0, 0.0, 2.0]), np.array([1.0, 2.0, 3.0]))
        assert_allclose(v, [1.0, 2.0, 0.0])

    def test_angle_between_degrees(self):
        """Perpendicular vectors are 90 degrees apart."""
        assert angle_between(np.array([1.0, 0.0, 0.0]), np.array([0.0, 5.0, 0.0])) == pytest.approx(90.0)

    def test_signed_angle_sign(self):
        """Counterclockwise about the normal is positive."""
        x = np.array([1.0, 0.0, 0.0])
        y = np.array([0.0, 1.0, 0.0])
        z = np.array([0.0, 0.0, 1.0])
        assert signed_angle(x, y, z) == pytest.approx(90.0)
        assert signed_angle(y, x, z) == pytest.approx(-90.0)

    def test_rotate_about_axis(self):
        """Rotating X by 90 degrees about Z gives Y."""
        v = rotate_about_axis(np.array([1.0, 0.0, 0.0]), np.array([0.0, 0.0, 1.0]), np.pi / 2)
        assert_allclose(v, [0.0, 1.0, 0.0], atol=1e-12)

    def test_clamp_magnitude(self):
        """Long vectors are scaled down, short ones kept."""
        assert_allclose(np.linalg.norm(clamp_magnitude(np.array([3.0, 4.0, 0.0]), 1.0)), 1.0)
        assert_allclose(clamp_magnitude(np.array([0.3, 0.4, 0.0]), 1.0), [0.3, 0.4, 0.0])


# =============================================================================
# Quaternions
# =============================================================================


class TestQuaternionOperations:
    """Test quaternion math operations."""

    def test_normalize_zero_gives_identity(self):
        """A degenerate quaternion normalizes to identity."""
        assert_allclose(normalize_quaternion(np.zeros(4)), [1.0, 0.0, 0.0, 0.0])

    def test_quaternion_conjugate_inverse(self):
        """The conjugate describes the inverse rotation."""
        q = normalize_quaternion(np.array([1.0, 2.0, 3.0, 4.0]))
        assert_allclose(quaternion_to_dcm(quaternion_conjugate(q)), quaternion_to_dcm(q).T, atol=1e-12)

    def test_dcm_roundtrip(self):
        """Converting quaternion to DCM and back should preserve the rotation."""
        q = normalize_quaternion(np.array([0.5, 0.5, 0.5, 0.5]))
        recovered = dcm_to_quaternion(quaternion_to_dcm(q))
        if np.dot(q, recovered) < 0:
            recovered = -recovered
        assert_allclose(recovered, q, atol=1e-10)

    def test_dcm_roundtrip_half_turn(self):
        """A half turn has a zero scalar part and still converts back."""
        q = np.array([0.0, 0.0, 1.0, 0.0])
        recovered = dcm_to_quaternion(quaternion_to_dcm(q))
        assert_allclose(np.abs(recovered), q, atol=1e-10)
        assert_allclose(quaternion_to_dcm(recovered), np.diag([-1.0, 1.0, -1.0]), atol=1e-10)

    def test_rotation_vector_of_axis_angle(self):
        """Rotation vector recovers the axis-angle the DCM was built from."""
        axis = np.array([0.0, 0.0, 1.0])
        dcm = quaternion_to_dcm(np.array([np.cos(0.15), 0.0, 0.0, np.sin(0.15)]))
        assert_allclose(rotation_vector(dcm), axis * 0.3, atol=1e-10)

    def test_rotation_vector_identity(self):
        """No rotation gives a zero vector."""
        assert_allclose(rotation_vector(np.eye(3)), np.zeros(3))

    def test_attitude_from_direction_points_x_axis(self):
        """The vehicle X axis should end up along the requested direction."""
        direction = unit(np.array([1.0, 1.0, 0.0]))
        q = attitude_from_direction(direction, np.array([0.0, 0.0, 1.0]))
        state = State(np.ones(3), np.zeros(3), q, np.zeros(3), mass=1.0)
        assert_allclose(state.to_inertial(np.array([1.0, 0.0, 0.0])), direction, atol=1e-10)

    def test_attitude_from_parallel_reference(self):
        """A reference parallel to the direction still gives a valid attitude."""
        q = attitude_from_direction(np.array([0.0, 0.0, 1.0]), np.array([0.0, 0.0, 1.0]))
        assert np.isclose(np.linalg.norm(q), 1.0)


# =============================================================================
# State
# =============================================================================


class TestState:
    """Test state construction and frame conversions."""

    def test_invalid_shapes(self):
        """Wrong vector shapes are rejected."""
        with pytest.raises(ValueError, match="Position"):
            State(np.zeros(2), np.zeros(3), np.array([1.0, 0.0, 0.0, 0.0]), np.zeros(3), mass=1.0)

    def test_non_positive_mass(self):
        """Mass must be positive."""
        with pytest.raises(ValueError, match="Mass"):
            State(np.zeros(3), np.zeros(3), np.array([1.0, 0.0, 0.0, 0.0]), np.zeros(3), mass=0.0)

    def test_quaternion_normalized(self):
        """The attitude quaternion is normalized on construction."""
        state = State(np.zeros(3), np.zeros(3), np.array([2.0, 0.0, 0.0, 0.0]), np.zeros(3), mass=1.0)
        assert_allclose(state.quaternion, [1.0, 0.0, 0.0, 0.0])

    def test_frame_roundtrip(self):
        """to_body and to_inertial are inverses."""
        q = normalize_quaternion(np.array([0.9, 0.1, -0.3, 0.2]))
        state = State(np.zeros(3), np.zeros(3), q, np.zeros(3), mass=1.0)
        v = np.array([1.0, -2.0, 0.5])
        assert_allclose(state.to_inertial(state.to_body(v)), v, atol=1e-10)

    def test_copy_is_independent(self):
        """Copies do not share arrays."""
        state = State(np.ones(3), np.zeros(3), np.array([1.0, 0.0, 0.0, 0.0]), np.zeros(3), mass=1.0)
        clone = state.copy()
        clone.position[0] = 5.0
        assert state.position[0] == 1.0
