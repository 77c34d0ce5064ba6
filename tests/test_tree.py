"""Tests for KinematicTree construction, ownership and counts."""

import copy

import jax.numpy as jnp
import numpy as np
import pytest

from kinematic_tree import (
    ConstructionError,
    FrameType,
    KinematicBody,
    KinematicTree,
    TreeReleasedError,
)
from kinematic_tree.transforms import se3


def _branching_body():
    return KinematicBody.create_generic_body(
        [0.0, 0.0, 0.0], [se3.from_translation([0.0, 1.0, 0.0]), se3.from_translation([0.0, 0.0, 1.0])])


def test_empty_tree():
    """Test a new tree has no DoF, no frames and an identity base frame."""
    tree = KinematicTree()

    assert tree.get_dof_count() == 0
    assert tree.get_frame_count(FrameType.COM) == 0
    assert tree.get_frame_count(FrameType.OUTPUT) == 0
    np.testing.assert_allclose(tree.get_base_frame(), np.eye(4))


def test_dof_count_counts_actuators_only():
    """Test k actuators and m links give k DoF."""
    tree = KinematicTree()
    for _ in range(3):
        assert tree.add_body(KinematicBody.create_x5())
        assert tree.add_body(KinematicBody.create_x5_link(0.3, jnp.pi))

    assert tree.get_dof_count() == 3
    assert tree.get_frame_count(FrameType.COM) == 6
    assert tree.get_frame_count(FrameType.OUTPUT) == 6
    assert tree.leaf_count == 1


def test_frame_counts_with_multiple_outputs():
    """Test output frames count every output of every body."""
    tree = KinematicTree()
    assert tree.add_body(KinematicBody.create_x5())
    assert tree.add_body(_branching_body())

    assert tree.get_frame_count(FrameType.COM) == 2
    assert tree.get_frame_count(FrameType.OUTPUT) == 3


def test_add_body_to_consumed_connector_fails():
    """Test attaching to a used single output fails and leaves the tree unchanged."""
    tree = KinematicTree()
    assert tree.add_body(KinematicBody.create_x5())
    assert tree.add_body(KinematicBody.create_x5())

    body = KinematicBody.create_x5()
    assert not tree.add_body(body, parent=0)
    assert not tree.add_body(body, parent=0, output=0)

    assert tree.get_dof_count() == 2
    assert tree.get_frame_count(FrameType.OUTPUT) == 2
    assert not body.is_consumed


def test_add_body_rejects_invalid_attachments():
    """Test out-of-range, closed-subtree and out-of-order attachments fail."""
    tree = KinematicTree()
    assert not tree.add_body(KinematicBody.create_x5(), parent=0)

    assert tree.add_body(_branching_body())          # 0
    assert tree.add_body(KinematicBody.create_x5())   # 1, on output 0 of body 0
    assert tree.add_body(KinematicBody.create_x5())   # 2

    assert not tree.add_body(KinematicBody.create_x5(), parent=5)
    assert not tree.add_body(KinematicBody.create_x5(), parent=2, output=1)

    assert tree.add_body(KinematicBody.create_x5(), parent=0, output=1)  # 3
    # Body 1's subtree is closed once body 0's second output is used
    assert not tree.add_body(KinematicBody.create_x5(), parent=1)
    assert not tree.add_body(KinematicBody.create_x5(), parent=0, output=0)

    assert tree.get_dof_count() == 3
    assert tree.leaf_count == 2


def test_body_cannot_be_added_twice():
    """Test a consumed body cannot be added to the same or another tree."""
    body = KinematicBody.create_x5()
    tree = KinematicTree()
    other = KinematicTree()

    assert tree.add_body(body)
    assert body.is_consumed
    assert not tree.add_body(body)
    assert not other.add_body(body)
    assert tree.get_dof_count() == 1
    assert other.get_dof_count() == 0


def test_set_base_frame():
    tree = KinematicTree()
    base = se3.from_translation([0.0, 0.0, 1.0])
    tree.set_base_frame(base)

    np.testing.assert_allclose(tree.get_base_frame(), base)
    np.testing.assert_allclose(tree.model.base_frame, base)

    with pytest.raises(ConstructionError):
        tree.set_base_frame(np.zeros((4, 4)))


def test_tree_cannot_be_copied():
    tree = KinematicTree()
    with pytest.raises(TypeError):
        copy.copy(tree)
    with pytest.raises(TypeError):
        copy.deepcopy(tree)


def test_context_manager_releases_bodies():
    """Test leaving the context releases the tree and its bodies."""
    body = KinematicBody.create_x5()
    with KinematicTree() as tree:
        assert tree.add_body(body)
        assert tree.get_dof_count() == 1

    with pytest.raises(TreeReleasedError):
        tree.get_dof_count()
    with pytest.raises(TreeReleasedError):
        tree.add_body(KinematicBody.create_x5())

    # Released bodies stay unavailable
    assert body.is_consumed
    assert not KinematicTree().add_body(body)


def test_body_names():
    tree = KinematicTree()
    tree.add_body(KinematicBody.create_x5(name="shoulder"))
    tree.add_body(KinematicBody.create_x5_link(0.3, 0.0, name="upper_arm"))

    assert tree.body_names == ("shoulder", "upper_arm")
