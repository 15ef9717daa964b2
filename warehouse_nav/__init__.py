"""
warehouse_nav
Occupancy-grid navigation stack for a differential-drive warehouse robot:
obstacle extraction, frontier exploration, A* planning and path following
"""

from .errors import (
    GridFormatError,
    InvalidGoal,
    NavigationError,
    NoPath,
    OutOfBounds,
    PlanningCancelled,
    PlanningFailure,
    StaleGrid,
    StaleInput,
    StalePose,
)
from .types import CellState, Path, Pose, VelocityCommand

__version__ = '0.1.0'

__all__ = [
    'CellState', 'Path', 'Pose', 'VelocityCommand',
    'NavigationError', 'GridFormatError', 'OutOfBounds',
    'PlanningFailure', 'InvalidGoal', 'NoPath', 'PlanningCancelled',
    'StaleInput', 'StalePose', 'StaleGrid',
]
