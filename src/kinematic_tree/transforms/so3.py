"""SO(3) and so(3) Lie group operations in JAX.

This module implements the rotation algebra used by joint motion and
orientation error: skew matrices, Rodrigues' formula and its inverse. All
functions are pure, JIT-able, and operate on JAX arrays.
"""

import jax
import jax.numpy as jnp

Array = jax.Array


def skew_symmetric(v: Array) -> Array:
    """
    Convert 3D vector to skew-symmetric matrix.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) skew-symmetric matrix
    """
    zeros = jnp.zeros(v.shape[:-1], dtype=v.dtype)

    return jnp.stack([
        jnp.stack([zeros, -v[..., 2], v[..., 1]], axis=-1),
        jnp.stack([v[..., 2], zeros, -v[..., 0]], axis=-1),
        jnp.stack([-v[..., 1], v[..., 0], zeros], axis=-1)
    ], axis=-2)


def from_axis_angle(axis: Array, angle: Array) -> Array:
    """
    Rotation by `angle` about a unit `axis`.

    With the axis given separately from the angle, the result is smooth in
    `angle` everywhere (including zero) and safe to differentiate.

    Args:
        axis: (..., 3) unit rotation axis
        angle: (...) rotation angle in radians

    Returns:
        (..., 3, 3) rotation matrix
    """
    angle = jnp.asarray(angle)
    K = skew_symmetric(axis)
    I = jnp.broadcast_to(jnp.eye(3, dtype=K.dtype), K.shape)

    # Rodrigues formula: R = I + sin(θ) * K + (1 - cos(θ)) * K²
    return (I
            + jnp.sin(angle)[..., None, None] * K
            + (1.0 - jnp.cos(angle))[..., None, None] * jnp.matmul(K, K))


def log(R: Array) -> Array:
    """
    SO(3) logarithm map: convert rotation matrix to axis-angle vector.

    Inverse of `from_axis_angle(axis, angle)` for angles in [0, pi]. Used for
    orientation errors in pose IK.

    Args:
        R: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 3) array of axis-angle vectors
    """
    trace = jnp.trace(R, axis1=-2, axis2=-1)

    cos_angle = (trace - 1.0) / 2.0
    cos_angle = jnp.clip(cos_angle, -1.0, 1.0)  # Numerical stability
    angle = jnp.arccos(cos_angle)

    small_angle = angle < 1e-8
    near_pi = jnp.abs(angle - jnp.pi) < 1e-6

    sin_angle = jnp.where(small_angle, 1.0, jnp.sin(angle))

    # axis = [R21 - R12, R02 - R20, R10 - R01] / (2 sin θ)
    skew_part = jnp.stack([
        R[..., 2, 1] - R[..., 1, 2],
        R[..., 0, 2] - R[..., 2, 0],
        R[..., 1, 0] - R[..., 0, 1]
    ], axis=-1)

    axis_small = skew_part / 2.0
    axis_general = skew_part / (2.0 * sin_angle[..., None])

    # Near π the skew part vanishes; take the dominant column of (R + I) / 2
    B = (R + jnp.eye(3, dtype=R.dtype)) / 2.0
    diag_vals = jnp.diagonal(B, axis1=-2, axis2=-1)
    max_idx = jnp.argmax(diag_vals, axis=-1)
    axis_pi = jnp.take_along_axis(B, max_idx[..., None, None], axis=-1)[..., 0]
    axis_pi = axis_pi / jnp.linalg.norm(axis_pi, axis=-1, keepdims=True)

    return jnp.where(
        small_angle[..., None],
        axis_small,
        jnp.where(near_pi[..., None], angle[..., None] * axis_pi, angle[..., None] * axis_general)
    )


def from_rpy(rpy: Array) -> Array:
    """
    Convert roll-pitch-yaw angles to a rotation matrix (R = Rz @ Ry @ Rx).

    Args:
        rpy: (3,) array of [roll, pitch, yaw] in radians

    Returns:
        (3, 3) rotation matrix
    """
    rpy = jnp.asarray(rpy)
    eye = jnp.eye(3, dtype=rpy.dtype)
    R_x = from_axis_angle(eye[0], rpy[0])
    R_y = from_axis_angle(eye[1], rpy[1])
    R_z = from_axis_angle(eye[2], rpy[2])
    return R_z @ R_y @ R_x


def inverse(R: Array) -> Array:
    """
    Compute inverse of rotation matrix.

    For rotation matrices, the inverse is simply the transpose.
    """
    return jnp.swapaxes(R, -1, -2)
