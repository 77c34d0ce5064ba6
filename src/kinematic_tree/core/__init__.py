"""Core data structures for the kinematic tree.

Bodies are assembled into a `KinematicTree`, which compiles them into an
immutable, JAX-native `TreeModel`.
"""

from .body import BodyKind, JointType, KinematicBody
from .tree import KinematicTree
from .tree_model import FrameType, TreeModel

__all__ = ["BodyKind", "JointType", "KinematicBody", "KinematicTree", "FrameType", "TreeModel"]
