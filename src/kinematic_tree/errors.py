"""Exception types raised by the kinematic tree library."""


class KinematicsError(Exception):
    """Base class for all kinematic tree errors."""


class ConstructionError(KinematicsError, ValueError):
    """Invalid geometry parameters passed to a body or base-frame factory."""


class StructureError(KinematicsError):
    """A body cannot be attached, or a query does not fit the tree structure."""


class DimensionMismatchError(KinematicsError, ValueError):
    """A joint vector or target does not match the tree's dimensions."""


class ConfigurationError(KinematicsError, ValueError):
    """Invalid solver configuration."""


class TreeReleasedError(KinematicsError, RuntimeError):
    """The tree has been closed and no longer owns any bodies."""


class IKNonConvergenceError(KinematicsError):
    """Raised on request when an IK solve ends without reaching tolerance."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class NonFiniteInputError(KinematicsError, ValueError):
    """A joint vector or target contains NaN or infinite values."""
