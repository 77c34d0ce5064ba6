"""Core kinematics algorithms: Forward Kinematics and Jacobian computation.

Frames are reported in depth-first order. For centre-of-mass frames that is
one frame per body in append order; for output frames each body's output k is
followed by the subtree attached to it before output k + 1.

Jacobians are geometric: rows 0-2 map joint velocities to the linear velocity
of the frame origin, rows 3-5 to its angular velocity, both in world
coordinates.
"""

from typing import Tuple

import jax
import jax.numpy as jnp
from jax import Array

from .core.body import JointType
from .core.tree_model import FrameType, TreeModel
from .errors import DimensionMismatchError, StructureError
from .transforms import se3


def _check_positions(model: TreeModel, q) -> Array:
    q = jnp.asarray(q, dtype=model.base_frame.dtype)
    if q.shape != (model.num_dofs,):
        raise DimensionMismatchError(
            f"Expected a joint vector of shape ({model.num_dofs},), got {q.shape}")
    return q


def _check_single_leaf(model: TreeModel) -> None:
    if model.num_bodies > 0 and model.leaf_count != 1:
        raise StructureError(
            f"End-effector queries need exactly one leaf output, tree has {model.leaf_count} "
            "free output connectors")


def _propagate(model: TreeModel, q: Array) -> Tuple[Array, Array, Array]:
    """Walk the bodies in append order, composing world transforms.

    Returns:
        outputs_world: (num_bodies, max_outputs, 4, 4) world pose of each output
        joint_world: (num_bodies, 4, 4) world pose of each joint frame
        com_world: (num_bodies, 4, 4) world pose of each centre of mass
    """
    num_bodies = model.num_bodies
    max_outputs = model.output_transforms.shape[1]

    # Scatter the joint vector onto the bodies that own a DoF
    q_full = jnp.zeros(num_bodies, dtype=q.dtype).at[model.dof_bodies].set(q)

    outputs_world = jnp.broadcast_to(jnp.eye(4, dtype=q.dtype), (num_bodies, max_outputs, 4, 4))

    def scan_body(carry, i):
        """Processes body `i`; its parent (appended earlier) is already in `carry`."""
        parent = model.parent_indices[i]
        T_world_to_input = jnp.where(parent < 0, model.base_frame, carry[parent, model.parent_outputs[i]])
        T_world_to_joint = T_world_to_input @ model.input_transforms[i]

        axis = model.joint_axes[i]
        joint_type = model.joint_types[i]
        T_motion = jnp.where(
            joint_type == int(JointType.REVOLUTE),
            se3.revolute(axis, q_full[i]),
            jnp.where(joint_type == int(JointType.PRISMATIC), se3.prismatic(axis, q_full[i]), jnp.eye(4, dtype=q.dtype)),
        )
        T_world_to_moved = T_world_to_joint @ T_motion

        carry = carry.at[i].set(jnp.matmul(T_world_to_moved[None], model.output_transforms[i]))
        return carry, (T_world_to_joint, T_world_to_moved @ model.com_transforms[i])

    outputs_world, (joint_world, com_world) = jax.lax.scan(scan_body, outputs_world, jnp.arange(num_bodies))
    return outputs_world, joint_world, com_world


def _frame_bodies(model: TreeModel, frame_type: FrameType) -> Array:
    if frame_type == FrameType.COM:
        return jnp.arange(model.num_bodies)
    return model.output_frame_bodies


def _frames(model: TreeModel, frame_type: FrameType, q: Array) -> Tuple[Array, Array]:
    """World frames of the requested type plus the joint frames they depend on."""
    outputs_world, joint_world, com_world = _propagate(model, q)
    if frame_type == FrameType.COM:
        return com_world, joint_world
    return outputs_world[model.output_frame_bodies, model.output_frame_slots], joint_world


def _jacobians(model: TreeModel, frame_type: FrameType, frames: Array, joint_world: Array) -> Array:
    dof_bodies = model.dof_bodies
    joint_frames = joint_world[dof_bodies]

    # Joint origins and axes in world coordinates
    p_j = se3.get_position(joint_frames)  # (D, 3)
    a_j = jnp.einsum("dij,dj->di", se3.get_rotation(joint_frames), model.joint_axes[dof_bodies])
    is_revolute = (model.joint_types[dof_bodies] == int(JointType.REVOLUTE))[None, :, None]

    p_T = se3.get_position(frames)  # (F, 3)
    r = p_T[:, None, :] - p_j[None, :, :]  # (F, D, 3)
    a = jnp.broadcast_to(a_j[None], r.shape)

    linear = jnp.where(is_revolute, jnp.cross(a, r), a)
    angular = jnp.where(is_revolute, a, 0.0)

    # Only joints on the path from the root to the frame's body move it
    precedes = model.ancestors[_frame_bodies(model, frame_type)][:, dof_bodies]  # (F, D)
    J = jnp.concatenate([linear, angular], axis=-1) * precedes[..., None]

    return jnp.swapaxes(J, -1, -2)  # (F, 6, D)


def forward_kinematics(model: TreeModel, frame_type: FrameType, q: Array) -> Array:
    """Compute the world pose of every frame of `frame_type`.

    Args:
        model: TreeModel containing the tree's kinematic structure
        frame_type: Which frames to report (centre of mass or outputs)
        q: Joint positions of shape (num_dofs,), meters or radians

    Returns:
        Array of shape (num_frames, 4, 4). An empty tree reports its base
        frame as the only frame.

    Raises:
        DimensionMismatchError: if `q` does not have one entry per DoF.
    """
    q = _check_positions(model, q)
    if model.num_bodies == 0:
        return model.base_frame[None]
    frames, _ = _frames(model, FrameType(frame_type), q)
    return frames


def end_effector(model: TreeModel, frame_type: FrameType, q: Array) -> Array:
    """World pose (4, 4) of the last frame, for trees with a single free output."""
    _check_single_leaf(model)
    return forward_kinematics(model, frame_type, q)[-1]


def jacobians(model: TreeModel, frame_type: FrameType, q: Array) -> Array:
    """Compute the 6 x num_dofs geometric Jacobian of every frame.

    Column j belongs to the j-th DoF-contributing body in append order. For a
    revolute joint with world axis a at p_j the column is [a x (p_T - p_j); a],
    for a prismatic joint [a; 0]. Joints that are not ancestors of the frame's
    body contribute zero columns.

    Returns:
        Array of shape (num_frames, 6, num_dofs)
    """
    q = _check_positions(model, q)
    if model.num_bodies == 0:
        return jnp.zeros((1, 6, 0), dtype=q.dtype)
    frame_type = FrameType(frame_type)
    frames, joint_world = _frames(model, frame_type, q)
    return _jacobians(model, frame_type, frames, joint_world)


def end_effector_jacobian(model: TreeModel, frame_type: FrameType, q: Array) -> Array:
    """Jacobian (6, num_dofs) of the last frame, for trees with a single free output."""
    _check_single_leaf(model)
    return jacobians(model, frame_type, q)[-1]


def end_effector_kinematics(model: TreeModel, frame_type: FrameType, q: Array) -> Tuple[Array, Array]:
    """End-effector pose and Jacobian from a single pass over the tree."""
    _check_single_leaf(model)
    q = _check_positions(model, q)
    if model.num_bodies == 0:
        return model.base_frame, jnp.zeros((6, 0), dtype=q.dtype)
    frame_type = FrameType(frame_type)
    frames, joint_world = _frames(model, frame_type, q)
    return frames[-1], _jacobians(model, frame_type, frames, joint_world)[-1]
