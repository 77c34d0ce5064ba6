"""
Kinematic Tree: forward kinematics, Jacobians and inverse kinematics for
articulated chains of actuators and links, built on JAX.

Bodies are appended to a `KinematicTree`; its compiled `TreeModel` feeds the
pure, JIT-compilable functions in `chain` (FK and Jacobians) and `ik`.
"""

import jax
jax.config.update("jax_enable_x64", True)

from . import transforms
from . import core
from . import chain
from . import ik
from . import io
from .core import BodyKind, FrameType, JointType, KinematicBody, KinematicTree, TreeModel
from .errors import (
    ConfigurationError,
    ConstructionError,
    DimensionMismatchError,
    IKNonConvergenceError,
    KinematicsError,
    NonFiniteInputError,
    StructureError,
    TreeReleasedError,
)
from .ik import IKConfig, IKResult, IKStatus

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "chain",
    "ik",
    "io",
    "BodyKind",
    "FrameType",
    "JointType",
    "KinematicBody",
    "KinematicTree",
    "TreeModel",
    "IKConfig",
    "IKResult",
    "IKStatus",
    "KinematicsError",
    "NonFiniteInputError",
    "ConfigurationError",
    "ConstructionError",
    "DimensionMismatchError",
    "IKNonConvergenceError",
    "StructureError",
    "TreeReleasedError",
]
