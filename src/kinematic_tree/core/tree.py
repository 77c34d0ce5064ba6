"""KinematicTree: owns bodies and compiles them into a `TreeModel`.

Trees are built once (`add_body`, `set_base_frame`) and then queried
repeatedly. Bodies must be appended in depth-first order; each append either
succeeds and transfers ownership of the body to the tree, or fails and leaves
the tree untouched.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import jax.numpy as jnp
import numpy as np

from .. import chain, ik
from ..errors import StructureError, TreeReleasedError
from ..transforms import se3
from .body import JointType, KinematicBody, _as_transform
from .tree_model import FrameType, TreeModel

logger = logging.getLogger(__name__)


@dataclass
class _BodyRecord:
    """Arena entry: a consumed body plus its place in the tree."""
    body: KinematicBody
    parent: int
    parent_output: int
    children: List[Optional[int]] = field(default_factory=list)

    @property
    def last_used_output(self) -> int:
        used = [k for k, child in enumerate(self.children) if child is not None]
        return used[-1] if used else -1


def _empty_model(base_frame: np.ndarray) -> TreeModel:
    return TreeModel(
        body_names=(),
        leaf_count=0,
        base_frame=jnp.asarray(base_frame),
        parent_indices=jnp.zeros((0,), dtype=jnp.int32),
        parent_outputs=jnp.zeros((0,), dtype=jnp.int32),
        input_transforms=jnp.zeros((0, 4, 4)),
        joint_types=jnp.zeros((0,), dtype=jnp.int32),
        joint_axes=jnp.zeros((0, 3)),
        com_transforms=jnp.zeros((0, 4, 4)),
        output_transforms=jnp.zeros((0, 1, 4, 4)),
        dof_bodies=jnp.zeros((0,), dtype=jnp.int32),
        output_frame_bodies=jnp.zeros((0,), dtype=jnp.int32),
        output_frame_slots=jnp.zeros((0,), dtype=jnp.int32),
        ancestors=jnp.zeros((0, 0), dtype=bool),
    )


class KinematicTree:
    """A kinematic chain or tree of bodies (links, joints and actuators).

    Only single-chain trees are fully supported by the end-effector queries;
    branching trees can be built and queried frame by frame.

    The tree cannot be copied. Use it as a context manager (or call `close`)
    to release every owned body deterministically.
    """

    def __init__(self):
        self._records: List[_BodyRecord] = []
        self._base_frame = np.eye(4)
        self._model = _empty_model(self._base_frame)
        self._closed = False

    def __copy__(self):
        raise TypeError("KinematicTree objects cannot be duplicated")

    def __deepcopy__(self, memo):
        raise TypeError("KinematicTree objects cannot be duplicated")

    def __enter__(self) -> "KinematicTree":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        if self._closed:
            return "<KinematicTree released>"
        return f"<KinematicTree bodies={len(self._records)} dofs={self.get_dof_count()}>"

    def close(self) -> None:
        """Release every owned body. Further use of the tree raises."""
        if self._closed:
            return
        for record in self._records:
            # A released body is not available for re-use either
            record.body._consume(_RELEASED)
        logger.debug("Released kinematic tree with %d bodies", len(self._records))
        self._records = []
        self._model = None
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise TreeReleasedError("kinematic tree has been released")

    # Structure

    @property
    def model(self) -> TreeModel:
        """The compiled, immutable `TreeModel` for the current structure."""
        self._check_open()
        return self._model

    @property
    def body_names(self) -> Tuple:
        return self.model.body_names

    @property
    def leaf_count(self) -> int:
        """Free output connectors; end-effector queries need exactly one."""
        return self.model.leaf_count

    def get_dof_count(self) -> int:
        """Number of settable degrees of freedom (one per joint body)."""
        return self.model.num_dofs

    def get_frame_count(self, frame_type: FrameType) -> int:
        """Number of frames reported for `frame_type`.

        One per body for centre-of-mass frames, one per output per body for
        output frames.
        """
        return self.model.frame_count(FrameType(frame_type))

    def get_base_frame(self) -> np.ndarray:
        self._check_open()
        return self._base_frame.copy()

    def set_base_frame(self, base_frame) -> None:
        """Set the transform from the world frame to the root body's input."""
        self._check_open()
        self._base_frame = _as_transform("base_frame", base_frame)
        self._rebuild()

    def add_body(self, body: KinematicBody, parent: Optional[int] = None,
                 output: Optional[int] = None) -> bool:
        """Append `body`, taking ownership of it on success.

        By default the body is attached to the first free output of the most
        recently added body (or to the base frame for the first body). For
        branching trees, `parent` (an index in append order) and `output`
        select the connector; it must keep the append order depth-first.

        Returns:
            True if the body was added, False if it could not be attached.
            A failed call leaves the tree unchanged.
        """
        self._check_open()
        try:
            if body.is_consumed:
                raise StructureError(f"{body!r} is already owned by a kinematic tree")
            parent, output = self._resolve_attachment(parent, output)
        except StructureError as e:
            logger.warning("Unable to add body: %s", e)
            return False

        index = len(self._records)
        self._records.append(_BodyRecord(
            body=body,
            parent=parent,
            parent_output=output,
            children=[None] * body.output_count,
        ))
        if parent >= 0:
            self._records[parent].children[output] = index
        body._consume(self)
        self._rebuild()

        logger.debug("Added %r as body %d (parent %d, output %d)", body, index, parent, output)
        return True

    # Queries. Each reads the current model once, so concurrent callers see a
    # consistent structure.

    def forward_kinematics(self, frame_type: FrameType, positions) -> jnp.ndarray:
        """World transforms of every frame; see `chain.forward_kinematics`."""
        return chain.forward_kinematics(self.model, frame_type, positions)

    def end_effector(self, frame_type: FrameType, positions) -> jnp.ndarray:
        return chain.end_effector(self.model, frame_type, positions)

    def jacobians(self, frame_type: FrameType, positions) -> jnp.ndarray:
        """Jacobians of every frame; see `chain.jacobians`."""
        return chain.jacobians(self.model, frame_type, positions)

    def end_effector_jacobian(self, frame_type: FrameType, positions) -> jnp.ndarray:
        return chain.end_effector_jacobian(self.model, frame_type, positions)

    def solve_ik(self, target_xyz, initial_positions, config: Optional["ik.IKConfig"] = None,
                 should_cancel: Optional[Callable[[], bool]] = None) -> "ik.IKResult":
        """Position-only IK for the end effector; see `ik.solve_ik`."""
        return ik.solve_ik(self.model, target_xyz, initial_positions, config=config,
                           should_cancel=should_cancel)

    def solve_pose_ik(self, target_transform, initial_positions, config: Optional["ik.IKConfig"] = None,
                      should_cancel: Optional[Callable[[], bool]] = None) -> "ik.IKResult":
        return ik.solve_pose_ik(self.model, target_transform, initial_positions, config=config,
                                should_cancel=should_cancel)

    def _open_path(self) -> List[int]:
        """Bodies that can still accept children: the last body and its ancestors."""
        path = []
        index = len(self._records) - 1
        while index >= 0:
            path.append(index)
            index = self._records[index].parent
        return path

    def _resolve_attachment(self, parent: Optional[int], output: Optional[int]) -> Tuple[int, int]:
        if not self._records:
            if parent is not None or output not in (None, 0):
                raise StructureError("the first body attaches to the base frame")
            return -1, 0

        if parent is None:
            parent = len(self._records) - 1
        if not 0 <= parent < len(self._records):
            raise StructureError(f"parent index {parent} is out of range")
        if parent not in self._open_path():
            raise StructureError(
                f"body {parent} has a completed subtree; attaching to it would break depth-first order")

        record = self._records[parent]
        if output is None:
            output = record.last_used_output + 1
        if not 0 <= output < len(record.children):
            raise StructureError(
                f"body {parent} has no free output connector (requested {output}, "
                f"has {len(record.children)})")
        if output <= record.last_used_output:
            raise StructureError(
                f"output {output} of body {parent} is already consumed or precedes a consumed output")
        return parent, output

    def _rebuild(self) -> None:
        """Compile the arena into a fresh `TreeModel`."""
        records = self._records
        if not records:
            self._model = _empty_model(self._base_frame)
            return

        num_bodies = len(records)
        max_outputs = max(r.body.output_count for r in records)

        output_transforms = np.broadcast_to(np.eye(4), (num_bodies, max_outputs, 4, 4)).copy()
        ancestors = np.zeros((num_bodies, num_bodies), dtype=bool)
        for i, record in enumerate(records):
            count = record.body.output_count
            output_transforms[i, :count] = np.asarray(record.body.output_transforms)
            if record.parent >= 0:
                ancestors[i] = ancestors[record.parent]
            ancestors[i, i] = True

        # Output frames: output k of a body, then the subtree on output k, then k + 1
        frame_order = []
        stack = [(0, 0)]
        while stack:
            body_index, slot = stack.pop()
            record = records[body_index]
            if slot >= len(record.children):
                continue
            frame_order.append((body_index, slot))
            stack.append((body_index, slot + 1))
            child = record.children[slot]
            if child is not None:
                stack.append((child, 0))

        self._model = TreeModel(
            body_names=tuple(r.body.name for r in records),
            leaf_count=sum(child is None for r in records for child in r.children),
            base_frame=jnp.asarray(self._base_frame),
            parent_indices=jnp.array([r.parent for r in records], dtype=jnp.int32),
            parent_outputs=jnp.array([r.parent_output for r in records], dtype=jnp.int32),
            input_transforms=jnp.stack([r.body.input_transform for r in records]),
            joint_types=jnp.array([int(r.body.joint_type) for r in records], dtype=jnp.int32),
            joint_axes=jnp.stack([r.body.joint_axis for r in records]),
            com_transforms=jnp.stack([se3.from_translation(r.body.com) for r in records]),
            output_transforms=jnp.asarray(output_transforms),
            dof_bodies=jnp.array(
                [i for i, r in enumerate(records) if r.body.joint_type != JointType.FIXED],
                dtype=jnp.int32),
            output_frame_bodies=jnp.array([b for b, _ in frame_order], dtype=jnp.int32),
            output_frame_slots=jnp.array([k for _, k in frame_order], dtype=jnp.int32),
            ancestors=jnp.asarray(ancestors),
        )


class _Released:
    """Owner marker for bodies whose tree has been closed."""

    def __repr__(self) -> str:
        return "<released>"


_RELEASED = _Released()