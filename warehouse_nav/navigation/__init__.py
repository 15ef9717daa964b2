"""
Navigation module
Global path planning, path following and the exploration loop
"""

from .path_planner import PathPlanner, PathPlannerConfig
from .motion_controller import MotionController, MotionControllerConfig, MotionState
from .controller import ExplorationController, ExplorationConfig, ExplorationStatus

__all__ = [
    'PathPlanner', 'PathPlannerConfig',
    'MotionController', 'MotionControllerConfig', 'MotionState',
    'ExplorationController', 'ExplorationConfig', 'ExplorationStatus',
]
