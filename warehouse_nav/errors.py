"""
Navigation error types

Every failure raised by the navigation core derives from NavigationError so
the exploration loop can tell core failures apart from programming errors.
"""


class NavigationError(Exception):
    """Base class for navigation core errors"""


class GridFormatError(NavigationError, ValueError):
    """Occupancy grid snapshot is malformed (rejected at construction)"""


class OutOfBounds(NavigationError, IndexError):
    """World point or cell index lies outside the grid extent"""

    def __init__(self, message: str, point=None):
        super().__init__(message)
        self.point = point


class PlanningFailure(NavigationError):
    """Path planning did not produce a path"""

    def __init__(self, message: str, goal=None):
        super().__init__(message)
        self.goal = goal


class InvalidGoal(PlanningFailure):
    """Goal cell is out of bounds or not traversable"""


class NoPath(PlanningFailure):
    """Start and goal are disconnected in the traversable-cell graph"""


class PlanningCancelled(PlanningFailure):
    """In-flight planning was abandoned by a newer request"""


class StaleInput(NavigationError):
    """An input stream has not updated within its expected interval"""

    def __init__(self, message: str, age: float = None):
        super().__init__(message)
        self.age = age


class StalePose(StaleInput):
    """No pose update within the staleness threshold"""


class StaleGrid(StaleInput):
    """No map snapshot within the staleness threshold"""
