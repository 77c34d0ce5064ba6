"""Tests for the transforms module."""

import hypothesis
import jax
import jax.numpy as jnp
import numpy as np
from hypothesis import given, settings
from hypothesis import strategies as st

import kinematic_tree  # noqa: F401  (enables float64)
from kinematic_tree.transforms import se3, so3

# Use hypothesis profile for CI
hypothesis.settings.register_profile("ci", max_examples=10, deadline=None)

X = jnp.array([1.0, 0.0, 0.0])
Y = jnp.array([0.0, 1.0, 0.0])
Z = jnp.array([0.0, 0.0, 1.0])


def _transform_point(T, p):
    return se3.get_rotation(T) @ p + se3.get_position(T)


# SO(3) tests
def test_so3_from_axis_angle_identity():
    """Test a zero angle gives the identity for any axis."""
    R = so3.from_axis_angle(jnp.array([0.0, 0.6, 0.8]), 0.0)
    np.testing.assert_allclose(R, jnp.eye(3), rtol=1e-6, atol=1e-6)


def test_so3_from_axis_angle_quarter_turn():
    """Test a quarter turn about z maps x onto y."""
    R = so3.from_axis_angle(Z, jnp.pi / 2)
    np.testing.assert_allclose(R @ X, Y, atol=1e-12)
    np.testing.assert_allclose(jnp.linalg.det(R), 1.0, atol=1e-12)


def test_so3_log_identity():
    """Test SO(3) log with identity matrix gives zero vector."""
    log_r = so3.log(jnp.eye(3))
    np.testing.assert_allclose(log_r, jnp.zeros(3), rtol=1e-6, atol=1e-6)


def test_so3_log_recovers_axis_angle():
    """Test log(from_axis_angle(a, θ)) = θ a for a rotation about z."""
    log_r = so3.log(so3.from_axis_angle(Z, jnp.pi / 4))
    np.testing.assert_allclose(log_r, Z * jnp.pi / 4, rtol=1e-6, atol=1e-6)


def test_so3_log_near_pi():
    """Test SO(3) log recovers a half turn."""
    R = so3.from_axis_angle(Y, jnp.pi)
    log_r = so3.log(R)
    np.testing.assert_allclose(jnp.abs(log_r), jnp.array([0.0, jnp.pi, 0.0]), atol=1e-6)


def test_so3_from_axis_angle_differentiable_at_zero():
    """The joint rotation must have a finite derivative at angle 0."""
    dR = jax.jacfwd(lambda a: so3.from_axis_angle(Z, a))(0.0)

    assert jnp.isfinite(dR).all()
    np.testing.assert_allclose(dR, so3.skew_symmetric(Z), atol=1e-12)


def test_so3_from_rpy():
    """Test roll-pitch-yaw composition order (Rz @ Ry @ Rx)."""
    R = so3.from_rpy(jnp.array([0.0, 0.0, jnp.pi / 2]))
    np.testing.assert_allclose(R @ X, Y, atol=1e-12)

    R = so3.from_rpy(jnp.array([0.1, 0.2, 0.3]))
    expected = so3.from_axis_angle(Z, 0.3) @ so3.from_axis_angle(Y, 0.2) @ so3.from_axis_angle(X, 0.1)
    np.testing.assert_allclose(R, expected, atol=1e-12)


def test_so3_skew_symmetric():
    """Test skew-symmetric matrix function."""
    v = jnp.array([1.0, 2.0, 3.0])
    K = so3.skew_symmetric(v)

    expected = jnp.array([[0.0, -3.0, 2.0], [3.0, 0.0, -1.0], [-2.0, 1.0, 0.0]])
    np.testing.assert_allclose(K, expected, rtol=1e-6, atol=1e-6)
    np.testing.assert_allclose(K @ jnp.array([4.0, 5.0, 6.0]), jnp.cross(v, jnp.array([4.0, 5.0, 6.0])))


def test_so3_inverse():
    """Test SO(3) inverse."""
    R = so3.from_axis_angle(jnp.array([1.0, 2.0, 2.0]) / 3.0, 0.4)
    np.testing.assert_allclose(R @ so3.inverse(R), jnp.eye(3), rtol=1e-6, atol=1e-6)


def test_so3_batch_operations():
    """Test SO(3) operations work with batched inputs."""
    key_axis, key_angle = jax.random.split(jax.random.PRNGKey(42))
    axes = jax.random.normal(key_axis, (5, 3))
    axes = axes / jnp.linalg.norm(axes, axis=-1, keepdims=True)
    angles = jax.random.uniform(key_angle, (5,), minval=0.1, maxval=2.0)

    R_batch = so3.from_axis_angle(axes, angles)
    log_r_batch = so3.log(R_batch)

    assert R_batch.shape == (5, 3, 3)
    assert log_r_batch.shape == (5, 3)
    np.testing.assert_allclose(log_r_batch, axes * angles[:, None], rtol=1e-5, atol=1e-5)


# SE(3) tests
def test_se3_from_position_and_rotation():
    """Test SE(3) construction from position and rotation."""
    T = se3.from_position_and_rotation(jnp.array([1.0, 2.0, 3.0]), jnp.eye(3))

    expected = jnp.array([[1.0, 0.0, 0.0, 1.0], [0.0, 1.0, 0.0, 2.0], [0.0, 0.0, 1.0, 3.0], [0.0, 0.0, 0.0, 1.0]])
    np.testing.assert_allclose(T, expected, rtol=1e-6, atol=1e-6)


def test_se3_from_translation_batched():
    """Test translations broadcast over a batch of positions."""
    T = se3.from_translation(jnp.array([[1.0, 0.0, 0.0], [0.0, 2.0, 0.0]]))

    assert T.shape == (2, 4, 4)
    np.testing.assert_allclose(se3.get_position(T), jnp.array([[1.0, 0.0, 0.0], [0.0, 2.0, 0.0]]))
    np.testing.assert_allclose(se3.get_rotation(T), jnp.broadcast_to(jnp.eye(3), (2, 3, 3)))


def test_se3_revolute_motion():
    """A revolute motion rotates about the axis through the origin."""
    T = se3.revolute(Z, jnp.pi / 2)

    np.testing.assert_allclose(se3.get_position(T), jnp.zeros(3), atol=1e-12)
    np.testing.assert_allclose(_transform_point(T, X), Y, atol=1e-12)


def test_se3_prismatic_motion():
    """A prismatic motion translates along the axis."""
    T = se3.prismatic(Y, 0.25)

    np.testing.assert_allclose(se3.get_rotation(T), jnp.eye(3), atol=1e-12)
    np.testing.assert_allclose(se3.get_position(T), jnp.array([0.0, 0.25, 0.0]), atol=1e-12)


def test_se3_rot_x():
    """Test rotation about x maps y onto z."""
    T = se3.rot_x(jnp.pi / 2)
    np.testing.assert_allclose(_transform_point(T, Y), Z, atol=1e-12)


@given(st.integers(min_value=0, max_value=100))
@settings(deadline=None)
def test_revolute_motion_inverse_property(seed):
    """Test rotating by θ then -θ about the same axis returns the original points."""
    key1, key2, key3 = jax.random.split(jax.random.PRNGKey(seed), 3)

    axis = jax.random.normal(key1, (3,))
    axis = axis / jnp.linalg.norm(axis)
    angle = jax.random.uniform(key2, (), minval=-jnp.pi, maxval=jnp.pi)

    points = jax.random.uniform(key3, (10, 3), minval=-10.0, maxval=10.0)
    R_back = se3.get_rotation(se3.revolute(axis, -angle) @ se3.revolute(axis, angle))

    np.testing.assert_allclose(points @ R_back.T, points, rtol=1e-5, atol=1e-5)


def test_se3_jit_compatibility():
    """Test SE(3) joint motions are JIT compatible."""
    jitted = jax.jit(se3.revolute)
    T = jitted(X, 0.3)
    np.testing.assert_allclose(T, se3.rot_x(0.3), atol=1e-12)
