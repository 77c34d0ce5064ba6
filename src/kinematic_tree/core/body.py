"""Kinematic bodies: the elements a kinematic tree is assembled from.

A body maps its input frame to one or more output frames. Its local transform
for output k is

    input_transform @ motion(q) @ output_transforms[k]

where `motion` is a rotation about `joint_axis` (revolute), a translation along
it (prismatic) or the identity (fixed, the joint value is ignored). The
centre-of-mass frame is `input_transform @ motion(q) @ translation(com)`.
"""

import enum
from typing import Optional, Sequence

import jax
import jax.numpy as jnp
import numpy as np

from ..errors import ConstructionError
from ..transforms import se3

Array = jax.Array

# X5 actuator geometry (meters, relative to the actuator input interface)
X5_OUTPUT_HEIGHT = 0.03105
X5_COM = (-0.0142, -0.0031, 0.0185)


class BodyKind(enum.Enum):
    """Which factory produced a body."""
    ACTUATOR = "actuator"
    LINK = "link"
    GENERIC = "generic"


class JointType(enum.IntEnum):
    """Joint contributed by a body. FIXED bodies contribute no DoF."""
    FIXED = 0
    REVOLUTE = 1
    PRISMATIC = 2


def _as_finite(name: str, value, shape) -> np.ndarray:
    array = np.asarray(value, dtype=np.float64)
    if array.shape != shape:
        raise ConstructionError(f"{name} must have shape {shape}, got {array.shape}")
    if not np.all(np.isfinite(array)):
        raise ConstructionError(f"{name} contains non-finite values")
    return array


def _as_transform(name: str, value) -> np.ndarray:
    T = _as_finite(name, value, (4, 4))
    if not np.allclose(T[3], [0.0, 0.0, 0.0, 1.0], atol=1e-9):
        raise ConstructionError(f"{name} bottom row must be [0, 0, 0, 1], got {T[3]}")
    R = T[:3, :3]
    if not np.allclose(R @ R.T, np.eye(3), atol=1e-6) or np.linalg.det(R) < 0.0:
        raise ConstructionError(f"{name} rotation block is not a proper rotation")
    return T


def _as_axis(value) -> np.ndarray:
    axis = _as_finite("axis", value, (3,))
    norm = np.linalg.norm(axis)
    if norm < 1e-9:
        raise ConstructionError("axis must be non-zero")
    return axis / norm


class KinematicBody:
    """A single kinematic element (actuator, link or generic fixed transform).

    Bodies are created through the `create_*` factories, which validate every
    geometry parameter. Adding a body to a `KinematicTree` consumes it: the
    tree takes exclusive ownership and the body cannot be added anywhere else.
    """

    def __init__(
        self,
        kind: BodyKind,
        joint_type: JointType,
        output_transforms: np.ndarray,
        com: np.ndarray,
        joint_axis: Optional[np.ndarray] = None,
        input_transform: Optional[np.ndarray] = None,
        name: Optional[str] = None,
    ):
        if len(output_transforms) == 0:
            raise ConstructionError("a body needs at least one output")
        if joint_type != JointType.FIXED and joint_axis is None:
            raise ConstructionError(f"a {joint_type.name.lower()} body needs a joint axis")

        self.kind = kind
        self.joint_type = joint_type
        self.name = name
        self.input_transform = jnp.asarray(np.eye(4) if input_transform is None else input_transform)
        self.joint_axis = jnp.asarray(np.zeros(3) if joint_axis is None else joint_axis)
        self.com = jnp.asarray(com)
        self.output_transforms = jnp.asarray(np.stack(output_transforms))
        self._owner = None

    def __repr__(self) -> str:
        label = f" {self.name!r}" if self.name else ""
        return (f"<KinematicBody{label} kind={self.kind.value} joint={self.joint_type.name} "
                f"outputs={self.output_count}>")

    @property
    def dof_count(self) -> int:
        return 0 if self.joint_type == JointType.FIXED else 1

    @property
    def output_count(self) -> int:
        return self.output_transforms.shape[0]

    @property
    def is_consumed(self) -> bool:
        """True once a tree has taken ownership of this body."""
        return self._owner is not None

    def _consume(self, owner) -> None:
        self._owner = owner

    def motion(self, position=0.0) -> Array:
        """Joint motion for the given joint value (identity for fixed bodies)."""
        if self.joint_type == JointType.REVOLUTE:
            return se3.revolute(self.joint_axis, position)
        if self.joint_type == JointType.PRISMATIC:
            return se3.prismatic(self.joint_axis, position)
        return jnp.eye(4)

    def local_transforms(self, position=0.0) -> Array:
        """(output_count, 4, 4) transforms from the input frame to each output."""
        moved = self.input_transform @ self.motion(position)
        return jnp.matmul(moved[None], self.output_transforms)

    def com_transform(self, position=0.0) -> Array:
        """(4, 4) transform from the input frame to the centre-of-mass frame."""
        return self.input_transform @ self.motion(position) @ se3.from_translation(self.com)

    # Factories

    @classmethod
    def create_x5(cls, name: Optional[str] = None) -> "KinematicBody":
        """Creates a body with the kinematics of an X5 actuator.

        The output rotates about the actuator's z axis and sits
        `X5_OUTPUT_HEIGHT` above the input interface.
        """
        return cls(
            BodyKind.ACTUATOR,
            JointType.REVOLUTE,
            output_transforms=[np.asarray(se3.from_translation([0.0, 0.0, X5_OUTPUT_HEIGHT]))],
            com=np.asarray(X5_COM),
            joint_axis=np.array([0.0, 0.0, 1.0]),
            name=name,
        )

    @classmethod
    def create_x5_link(cls, length: float, twist: float, name: Optional[str] = None) -> "KinematicBody":
        """Creates a tube link between two X5 actuators.

        Args:
            length: The center-to-center distance between the actuator
                rotational axes. Must be positive.
            twist: The rotation (in radians) about the tube axis between the
                input and output actuator axes.
        """
        length = float(_as_finite("length", length, ()))
        twist = float(_as_finite("twist", twist, ()))
        if length <= 0.0:
            raise ConstructionError(f"link length must be positive, got {length}")

        output = se3.from_translation([length, 0.0, 0.0]) @ se3.rot_x(twist)
        return cls(
            BodyKind.LINK,
            JointType.FIXED,
            output_transforms=[np.asarray(output)],
            com=np.array([length / 2.0, 0.0, 0.0]),
            name=name,
        )

    @classmethod
    def create_generic_link(cls, com, output, name: Optional[str] = None) -> "KinematicBody":
        """Create a fixed transform between an input and a single output.

        Args:
            com: 3-vector of the center of mass location, relative to the input.
            output: 4x4 homogeneous transform to the output frame, relative to
                the input frame.
        """
        return cls.create_generic_body(com, [output], name=name)

    @classmethod
    def create_generic_body(cls, com, outputs: Sequence, name: Optional[str] = None) -> "KinematicBody":
        """Fixed body with one or more outputs, used for branching structures."""
        return cls.create_joint_body(JointType.FIXED, outputs, com=com, name=name)

    @classmethod
    def create_rotary_actuator(cls, axis, output, com=(0.0, 0.0, 0.0), input=None,
                               name: Optional[str] = None) -> "KinematicBody":
        """Actuator rotating about `axis` (expressed in its joint frame).

        `input` is the fixed transform from the body input to the joint frame
        (identity by default) and `output` the transform from the moved joint
        frame to the output.
        """
        return cls.create_joint_body(JointType.REVOLUTE, [output], com=com, axis=axis,
                                     input=input, name=name)

    @classmethod
    def create_prismatic_actuator(cls, axis, output, com=(0.0, 0.0, 0.0), input=None,
                                  name: Optional[str] = None) -> "KinematicBody":
        """Actuator translating along `axis`; see `create_rotary_actuator`."""
        return cls.create_joint_body(JointType.PRISMATIC, [output], com=com, axis=axis,
                                     input=input, name=name)

    @classmethod
    def create_joint_body(cls, joint_type: JointType, outputs: Sequence, com=(0.0, 0.0, 0.0),
                          axis=None, input=None, name: Optional[str] = None) -> "KinematicBody":
        """General validated factory used by the specific ones and by loaders."""
        joint_type = JointType(joint_type)
        if joint_type == JointType.FIXED:
            kind, joint_axis = BodyKind.GENERIC, None
        else:
            if axis is None:
                raise ConstructionError(f"a {joint_type.name.lower()} body needs a joint axis")
            kind, joint_axis = BodyKind.ACTUATOR, _as_axis(axis)
        return cls(
            kind,
            joint_type,
            output_transforms=[_as_transform(f"outputs[{i}]", output) for i, output in enumerate(outputs)],
            com=_as_finite("com", com, (3,)),
            joint_axis=joint_axis,
            input_transform=None if input is None else _as_transform("input", input),
            name=name,
        )
