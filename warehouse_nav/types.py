"""
Core data types
Cell states, robot pose, planned path and velocity command
"""

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Tuple

Point = Tuple[float, float]
Cell = Tuple[int, int]


class CellState(IntEnum):
    """Occupancy grid cell classification"""
    FREE = 0
    OCCUPIED = 1
    UNKNOWN = 2


def wrap_angle(angle: float) -> float:
    """Wrap an angle to (-pi, pi]

    Args:
        angle: angle in radians

    Returns:
        the equivalent angle in (-pi, pi]
    """
    wrapped = math.atan2(math.sin(angle), math.cos(angle))
    # atan2 may return exactly -pi
    if wrapped <= -math.pi:
        wrapped += 2.0 * math.pi
    return wrapped


@dataclass(frozen=True)
class Pose:
    """Robot pose in the map frame

    Attributes:
        x, y: position (m)
        theta: heading (rad), wrapped to (-pi, pi]
        stamp: monotonic time the pose was observed (s)
    """
    x: float
    y: float
    theta: float = 0.0
    stamp: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, 'theta', wrap_angle(float(self.theta)))

    def distance_to(self, point: Point) -> float:
        return math.hypot(point[0] - self.x, point[1] - self.y)

    def bearing_to(self, point: Point) -> float:
        """Heading-relative bearing to a world point (rad)"""
        return wrap_angle(math.atan2(point[1] - self.y, point[0] - self.x) - self.theta)

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.theta)


@dataclass(frozen=True)
class Path:
    """Planned route from the robot to a goal

    Waypoints are cell centres in world coordinates, ordered from start to
    goal. A path is never edited; replanning produces a new one.

    Attributes:
        waypoints: world points (x, y)
        cells: grid cells (row, col) matching the waypoints
        cost: accumulated step cost in meters
        goal: the goal point that was requested
    """
    waypoints: Tuple[Point, ...]
    cells: Tuple[Cell, ...] = ()
    cost: float = 0.0
    goal: Point = field(default=(0.0, 0.0))

    def __len__(self) -> int:
        return len(self.waypoints)

    @property
    def is_empty(self) -> bool:
        return len(self.waypoints) == 0

    @property
    def final_waypoint(self) -> Point:
        return self.waypoints[-1]

    def length(self, start_index: int = 0) -> float:
        """Polyline length from waypoint start_index to the end (m)"""
        total = 0.0
        for a, b in zip(self.waypoints[start_index:], self.waypoints[start_index + 1:]):
            total += math.hypot(b[0] - a[0], b[1] - a[1])
        return total


@dataclass(frozen=True)
class VelocityCommand:
    """Differential-drive velocity command

    Attributes:
        linear: forward velocity (m/s)
        angular: yaw rate (rad/s), positive counter-clockwise
    """
    linear: float = 0.0
    angular: float = 0.0

    @classmethod
    def zero(cls) -> 'VelocityCommand':
        return cls(0.0, 0.0)

    @property
    def is_zero(self) -> bool:
        return self.linear == 0.0 and self.angular == 0.0
