"""SE(3) rigid body transforms in JAX.

This module implements SE(3) rigid body transforms using homogeneous 4x4
matrices, including the elementary joint motions (rotation about an axis,
translation along an axis) that bodies are parameterized by. All functions
are pure, JIT-able, and operate on JAX arrays.
"""

import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


def from_position_and_rotation(p: Array, R: Array) -> Array:
    """
    Construct SE(3) transform from position and rotation.

    Args:
        p: (..., 3) position vector
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 4, 4) homogeneous transformation matrix
    """
    p = jnp.asarray(p)
    R = jnp.asarray(R)
    dtype = jnp.result_type(p.dtype, R.dtype)

    # Ensure consistent batch shapes
    batch_shape = jnp.broadcast_shapes(p.shape[:-1], R.shape[:-2])
    p = jnp.broadcast_to(p, batch_shape + (3,))
    R = jnp.broadcast_to(R, batch_shape + (3, 3))

    T = jnp.zeros(batch_shape + (4, 4), dtype=dtype)
    T = T.at[..., :3, :3].set(R)
    T = T.at[..., :3, 3].set(p)
    T = T.at[..., 3, 3].set(1.0)

    return T


def from_translation(p: Array) -> Array:
    """Pure translation by `p` (..., 3)."""
    p = jnp.asarray(p, dtype=float)
    return from_position_and_rotation(p, jnp.eye(3, dtype=p.dtype))


def rot_x(angle: Array) -> Array:
    """Pure rotation about the x axis by `angle` radians."""
    angle = jnp.asarray(angle, dtype=float)
    R = so3.from_axis_angle(jnp.array([1.0, 0.0, 0.0], dtype=angle.dtype), angle)
    return from_position_and_rotation(jnp.zeros(3, dtype=angle.dtype), R)


def revolute(axis: Array, angle: Array) -> Array:
    """
    Motion of a revolute joint: rotation by `angle` about the unit `axis`
    through the joint frame origin.

    Args:
        axis: (..., 3) unit joint axis
        angle: (...) joint angle in radians

    Returns:
        (..., 4, 4) transformation matrix
    """
    R = so3.from_axis_angle(axis, angle)
    return from_position_and_rotation(jnp.zeros(R.shape[:-1], dtype=R.dtype), R)


def prismatic(axis: Array, displacement: Array) -> Array:
    """
    Motion of a prismatic joint: translation by `displacement` along `axis`.

    Args:
        axis: (..., 3) unit joint axis
        displacement: (...) joint displacement in meters

    Returns:
        (..., 4, 4) transformation matrix
    """
    p = axis * jnp.asarray(displacement)[..., None]
    R = jnp.broadcast_to(jnp.eye(3, dtype=p.dtype), p.shape[:-1] + (3, 3))
    return from_position_and_rotation(p, R)


def get_position(T: Array) -> Array:
    """Extract the (..., 3) position from SE(3) transformation matrix."""
    return T[..., :3, 3]


def get_rotation(T: Array) -> Array:
    """Extract the (..., 3, 3) rotation matrix from SE(3) transformation matrix."""
    return T[..., :3, :3]
