"""Iterative inverse kinematics with damped least squares.

Each iteration linearizes the end-effector error e around the current joint
vector and takes the step

    dq = J^T (J J^T + λ² I)^-1 e

with Levenberg-Marquardt damping: λ shrinks after a step that lowers the
error and grows (and the step is discarded) otherwise, so the joint vector
kept is always the lowest-error one visited. Steps are scaled so that no joint
moves more than `IKConfig.max_step` per iteration.

The linearization and the step are JIT-compiled; the loop itself runs in
Python so callers can cancel a solve between iterations.
"""

import enum
import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

import jax
import jax.numpy as jnp
import numpy as np
from flax import struct
from jax import Array

from .chain import _check_single_leaf, end_effector_kinematics
from .core.tree_model import FrameType, TreeModel
from .errors import ConfigurationError, DimensionMismatchError, IKNonConvergenceError, NonFiniteInputError
from .transforms import se3, so3

logger = logging.getLogger(__name__)


class IKStatus(enum.Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class IKConfig:
    """Solver settings.

    Attributes:
        max_iterations: Iteration budget before giving up.
        tolerance: Convergence threshold on the error norm (meters for
            position targets; position and radians combined for pose targets).
        damping: Initial damping factor λ.
        min_damping: Lower bound for λ.
        max_damping: Upper bound for λ.
        damping_decrease: Factor applied to λ after an accepted step.
        damping_increase: Factor applied to λ after a rejected step.
        max_step: Largest joint change allowed in one iteration.
        singular_threshold: Smallest singular value of the task Jacobian below
            which the configuration is reported as near-singular.
    """
    max_iterations: int = 100
    tolerance: float = 1e-6
    damping: float = 1e-2
    min_damping: float = 1e-6
    max_damping: float = 1e3
    damping_decrease: float = 0.5
    damping_increase: float = 4.0
    max_step: float = 0.5
    singular_threshold: float = 1e-4

    def __post_init__(self):
        if self.max_iterations < 0:
            raise ConfigurationError(f"max_iterations must be non-negative, got {self.max_iterations}")
        for name in ("tolerance", "damping", "min_damping", "max_damping", "max_step"):
            value = getattr(self, name)
            if not np.isfinite(value) or value <= 0.0:
                raise ConfigurationError(f"{name} must be positive and finite, got {value}")
        if not self.min_damping <= self.damping <= self.max_damping:
            raise ConfigurationError("damping must lie within [min_damping, max_damping]")
        if not 0.0 < self.damping_decrease < 1.0:
            raise ConfigurationError(f"damping_decrease must be in (0, 1), got {self.damping_decrease}")
        if self.damping_increase <= 1.0:
            raise ConfigurationError(f"damping_increase must be > 1, got {self.damping_increase}")
        if self.singular_threshold < 0.0:
            raise ConfigurationError(f"singular_threshold must be non-negative, got {self.singular_threshold}")


@struct.dataclass
class IKResult:
    """Outcome of an IK solve.

    `positions` is always finite and is the lowest-error joint vector found;
    check `status` before treating it as a solution.
    """
    positions: Array
    error: Array
    status: IKStatus = struct.field(pytree_node=False)
    iterations: int = struct.field(pytree_node=False)
    near_singular: bool = struct.field(pytree_node=False)
    min_singular_value: float = struct.field(pytree_node=False)

    @property
    def converged(self) -> bool:
        return self.status == IKStatus.CONVERGED

    def raise_for_status(self) -> "IKResult":
        """Return self if converged, otherwise raise `IKNonConvergenceError`."""
        if not self.converged:
            raise IKNonConvergenceError(
                f"IK {self.status.value} after {self.iterations} iterations "
                f"(error {float(self.error):.3e})", result=self)
        return self


@partial(jax.jit, static_argnames=("frame_type", "with_orientation"))
def _linearize(model: TreeModel, q: Array, target: Array, frame_type: FrameType, with_orientation: bool):
    """Task error, task Jacobian and its smallest singular value at `q`."""
    T, J = end_effector_kinematics(model, frame_type, q)
    position_error = target[:3, 3] - se3.get_position(T)

    if with_orientation:
        # World-frame axis-angle taking the current orientation onto the target
        rotation_error = so3.log(se3.get_rotation(target) @ so3.inverse(se3.get_rotation(T)))
        error = jnp.concatenate([position_error, rotation_error])
    else:
        error = position_error
        J = J[:3]

    if J.shape[1] == 0:
        return error, J, jnp.zeros((), dtype=J.dtype)
    singular_values = jnp.linalg.svd(J, compute_uv=False)
    return error, J, jnp.min(singular_values)


@jax.jit
def _damped_least_squares_step(J: Array, error: Array, damping: Array, max_step: Array) -> Array:
    A = J @ J.T + damping ** 2 * jnp.eye(J.shape[0], dtype=J.dtype)
    dq = J.T @ jnp.linalg.solve(A, error)

    # Scale (not clip) to keep the step direction
    largest = jnp.max(jnp.abs(dq))
    return dq * jnp.minimum(1.0, max_step / jnp.maximum(largest, 1e-12))


def solve_ik(
    model: TreeModel,
    target_xyz: Array,
    initial_positions: Array,
    config: Optional[IKConfig] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    frame_type: FrameType = FrameType.OUTPUT,
) -> IKResult:
    """Find joint positions that move the end effector to `target_xyz`.

    Args:
        model: TreeModel of a single-leaf tree
        target_xyz: (3,) desired end-effector position in world coordinates
        initial_positions: (num_dofs,) seed joint vector
        config: Solver settings; defaults to `IKConfig()`
        should_cancel: Polled before every iteration; returning True ends the
            solve with status CANCELLED
        frame_type: Which frame type's last frame is the end effector

    Returns:
        IKResult. Non-convergence is reported through `status`, not raised.

    Raises:
        DimensionMismatchError: if the target or seed has the wrong shape.
        NonFiniteInputError: if the target or seed contains NaN or inf.
        StructureError: if the tree does not have exactly one free output.
    """
    target_xyz = jnp.asarray(target_xyz, dtype=model.base_frame.dtype)
    if target_xyz.shape != (3,):
        raise DimensionMismatchError(f"Expected a target position of shape (3,), got {target_xyz.shape}")
    target = se3.from_translation(target_xyz)
    return _solve(model, target, initial_positions, config, should_cancel, frame_type, with_orientation=False)


def solve_pose_ik(
    model: TreeModel,
    target_transform: Array,
    initial_positions: Array,
    config: Optional[IKConfig] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    frame_type: FrameType = FrameType.OUTPUT,
) -> IKResult:
    """Like `solve_ik`, but targets a full (4, 4) end-effector pose.

    The error is the position error stacked with the world-frame axis-angle
    orientation error; the full 6-row Jacobian is used.
    """
    target = jnp.asarray(target_transform, dtype=model.base_frame.dtype)
    if target.shape != (4, 4):
        raise DimensionMismatchError(f"Expected a target transform of shape (4, 4), got {target.shape}")
    return _solve(model, target, initial_positions, config, should_cancel, frame_type, with_orientation=True)


def _solve(model, target, initial_positions, config, should_cancel, frame_type, with_orientation) -> IKResult:
    config = config or IKConfig()
    frame_type = FrameType(frame_type)
    q = jnp.asarray(initial_positions, dtype=model.base_frame.dtype)
    if q.shape != (model.num_dofs,):
        raise DimensionMismatchError(
            f"Expected seed positions of shape ({model.num_dofs},), got {q.shape}")
    if not (jnp.isfinite(q).all() and jnp.isfinite(target).all()):
        raise NonFiniteInputError("IK seed and target must be finite")
    _check_single_leaf(model)

    error, J, sigma_min = _linearize(model, q, target, frame_type, with_orientation)
    error_norm = float(jnp.linalg.norm(error))
    min_singular_value = float(sigma_min)
    damping = config.damping
    iterations = 0
    status = IKStatus.MAX_ITERATIONS_REACHED

    for _ in range(config.max_iterations if model.num_dofs > 0 else 0):
        if error_norm <= config.tolerance:
            status = IKStatus.CONVERGED
            break
        if should_cancel is not None and should_cancel():
            status = IKStatus.CANCELLED
            break

        dq = _damped_least_squares_step(J, error, damping, config.max_step)
        q_new = q + dq
        error_new, J_new, sigma_new = _linearize(model, q_new, target, frame_type, with_orientation)
        error_norm_new = float(jnp.linalg.norm(error_new))
        iterations += 1

        if np.isfinite(error_norm_new) and error_norm_new < error_norm:
            q, error, J, error_norm = q_new, error_new, J_new, error_norm_new
            min_singular_value = min(min_singular_value, float(sigma_new))
            damping = max(damping * config.damping_decrease, config.min_damping)
        else:
            damping = min(damping * config.damping_increase, config.max_damping)

        logger.debug("IK iteration %d: error %.3e, damping %.1e", iterations, error_norm, damping)
    else:
        if error_norm <= config.tolerance:
            status = IKStatus.CONVERGED

    near_singular = min_singular_value < config.singular_threshold
    if status == IKStatus.CONVERGED:
        logger.debug("IK converged in %d iterations (error %.3e)", iterations, error_norm)
    else:
        logger.info("IK %s after %d iterations (error %.3e)", status.value, iterations, error_norm)

    return IKResult(
        positions=q,
        error=jnp.asarray(error_norm),
        status=status,
        iterations=iterations,
        near_singular=near_singular,
        min_singular_value=min_singular_value,
    )
