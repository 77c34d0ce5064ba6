"""TreeModel PyTree data structure: the compiled, JAX-native form of a tree.

This module defines the immutable representation that forward kinematics,
Jacobians and IK operate on. A `KinematicTree` rebuilds it whenever its
structure changes; it is never mutated afterwards, so it may be shared freely
between threads and passed through `jax.jit`.
"""

import enum
from typing import Tuple

import jax
from flax import struct

Array = jax.Array


class FrameType(enum.Enum):
    """Which frames FK and Jacobian queries report.

    COM: one frame per body, at its centre of mass.
    OUTPUT: one frame per output connector of every body.
    """
    COM = "com"
    OUTPUT = "output"


@struct.dataclass
class TreeModel:
    """Immutable PyTree representation of a kinematic tree.

    Bodies are stored in an arena indexed by append position, which is also
    depth-first pre-order. Parent/child relationships are integer indices.

    Attributes:
        body_names: Name of each body (None when unnamed). Static field.
        leaf_count: Number of free output connectors (outputs with nothing
            attached). A single chain has exactly one. Static field.
        base_frame: (4, 4) world transform of the root body's input.
        parent_indices: (num_bodies,) parent body of each body, -1 for the root.
        parent_outputs: (num_bodies,) output connector of the parent used.
        input_transforms: (num_bodies, 4, 4) body input to joint frame.
        joint_types: (num_bodies,) `JointType` values.
        joint_axes: (num_bodies, 3) unit joint axes in the joint frame.
        com_transforms: (num_bodies, 4, 4) moved joint frame to centre of mass.
        output_transforms: (num_bodies, max_outputs, 4, 4) moved joint frame
            to each output, padded with identities.
        dof_bodies: (num_dofs,) body contributing each joint-vector entry.
        output_frame_bodies: (num_output_frames,) body of each output frame,
            in depth-first frame order.
        output_frame_slots: (num_output_frames,) output index of each frame.
        ancestors: (num_bodies, num_bodies) ancestors[i, j] is True when body
            j is body i or one of its ancestors.
    """
    body_names: Tuple = struct.field(pytree_node=False)
    leaf_count: int = struct.field(pytree_node=False)
    base_frame: Array
    parent_indices: Array
    parent_outputs: Array
    input_transforms: Array
    joint_types: Array
    joint_axes: Array
    com_transforms: Array
    output_transforms: Array
    dof_bodies: Array
    output_frame_bodies: Array
    output_frame_slots: Array
    ancestors: Array

    @property
    def num_bodies(self) -> int:
        return self.parent_indices.shape[0]

    @property
    def num_dofs(self) -> int:
        return self.dof_bodies.shape[0]

    def frame_count(self, frame_type: FrameType) -> int:
        if frame_type == FrameType.COM:
            return self.num_bodies
        return self.output_frame_bodies.shape[0]
