"""
Simulation helpers
A unicycle robot and a range sensor over a ground-truth warehouse grid,
used by the demos and the integration tests to feed the pose and map
streams
"""

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..errors import OutOfBounds
from ..navigation.path_planner import PathPlanner
from ..slam.occupancy_grid import OccupancyGrid
from ..types import CellState, Pose, VelocityCommand, wrap_angle

logger = logging.getLogger(__name__)

Block = Tuple[int, int, int, int]  # (row0, col0, row1, col1), inclusive


def make_warehouse(width: int = 60,
                   height: int = 40,
                   resolution: float = 0.1,
                   shelves: Optional[Sequence[Block]] = None) -> OccupancyGrid:
    """Ground-truth warehouse: outer walls and rectangular shelf blocks

    Args:
        width, height: size in cells
        resolution: meters per cell
        shelves: shelf blocks (row0, col0, row1, col1), default a row of
            shelves with aisles at both ends

    Returns:
        fully known OccupancyGrid
    """
    cells = np.full((height, width), CellState.FREE, dtype=np.uint8)
    cells[0, :] = CellState.OCCUPIED
    cells[-1, :] = CellState.OCCUPIED
    cells[:, 0] = CellState.OCCUPIED
    cells[:, -1] = CellState.OCCUPIED

    if shelves is None:
        aisle = max(height // 4, 6)
        shelves = [(aisle, col, height - 1 - aisle, col + 3)
                   for col in range(width // 6, width - 8, 14)]

    for row0, col0, row1, col1 in shelves:
        cells[row0:row1 + 1, col0:col1 + 1] = CellState.OCCUPIED

    return OccupancyGrid(width, height, resolution, cells)


class RobotSim:
    """Unicycle robot over a ground-truth grid

    Velocities are saturated to the configured limits. A step that would
    end inside an occupied (or off-map) cell keeps the position and only
    applies the rotation.

    Attributes:
        truth: ground-truth OccupancyGrid
        pose: current pose, stamped with the simulation time
        time: simulation time (s)
        collisions: number of refused moves
        distance: total distance travelled (m)
    """

    def __init__(self,
                 truth: OccupancyGrid,
                 pose: Pose,
                 max_linear: float = 0.4,
                 max_angular: float = 1.5):
        self.truth = truth
        self.max_linear = max_linear
        self.max_angular = max_angular

        self.time = 0.0
        self.pose = Pose(pose.x, pose.y, pose.theta, self.time)
        self.collisions = 0
        self.distance = 0.0

    def clock(self) -> float:
        return self.time

    def step(self, command: VelocityCommand, dt: float) -> Pose:
        """Integrate one command for dt seconds (midpoint heading)"""
        v = float(np.clip(command.linear, -self.max_linear, self.max_linear))
        w = float(np.clip(command.angular, -self.max_angular, self.max_angular))

        self.time += dt
        delta_theta = w * dt
        mid_theta = self.pose.theta + delta_theta / 2.0

        x = self.pose.x + v * dt * math.cos(mid_theta)
        y = self.pose.y + v * dt * math.sin(mid_theta)
        theta = wrap_angle(self.pose.theta + delta_theta)

        if not self._is_free(x, y):
            self.collisions += 1
            logger.debug(f"[Sim] move to ({x:.2f}, {y:.2f}) blocked")
            x, y = self.pose.x, self.pose.y
        else:
            self.distance += abs(v * dt)

        self.pose = Pose(x, y, theta, self.time)
        return self.pose

    def _is_free(self, x: float, y: float) -> bool:
        try:
            cell = self.truth.world_to_cell((x, y))
        except OutOfBounds:
            return False
        return self.truth.state_at(cell) != CellState.OCCUPIED


class SensorSim:
    """Range sensor that reveals the ground truth into a probability map

    Every scan casts Bresenham rays from the robot cell to the cells on the
    sensor range circle. Cells along a ray are observed free up to and
    including the first occupied cell, which is observed occupied. The
    observations are fused with a clamped log-odds update.

    Example:
        >>> sensor = SensorSim(truth, sensor_range=1.5)
        >>> snapshot = sensor.scan(robot.pose)
    """

    def __init__(self,
                 truth: OccupancyGrid,
                 sensor_range: float = 1.5,
                 prob_occupied: float = 0.9,
                 prob_free: float = 0.2):
        self.truth = truth
        self.sensor_range = sensor_range

        self._log_occupied = math.log(prob_occupied / (1.0 - prob_occupied))
        self._log_free = math.log(prob_free / (1.0 - prob_free))
        self.log_odds = np.zeros(truth.shape, dtype=np.float64)

        radius_cells = int(math.ceil(sensor_range / truth.resolution))
        self._ray_ends = self._circle_offsets(radius_cells)
        self.scan_count = 0

    @staticmethod
    def _circle_offsets(radius: int) -> List[Tuple[int, int]]:
        """Cell offsets on the boundary of a disk of the given radius"""
        span = np.arange(-radius, radius + 1)
        dr, dc = np.meshgrid(span, span, indexing='ij')
        dist_sq = dr ** 2 + dc ** 2
        ring = (dist_sq <= radius ** 2) & (dist_sq > (radius - 1) ** 2)
        return [(int(r), int(c)) for r, c in zip(dr[ring], dc[ring])]

    @property
    def probabilities(self) -> np.ndarray:
        return 1.0 / (1.0 + np.exp(-self.log_odds))

    def scan(self, pose: Pose) -> OccupancyGrid:
        """Reveal the cells visible from pose and return the new snapshot"""
        try:
            origin = self.truth.world_to_cell((pose.x, pose.y))
        except OutOfBounds:
            logger.warning(f"[Sim] sensor at ({pose.x:.2f}, {pose.y:.2f}) is off the map")
            return self.snapshot()

        truth = self.truth.cells
        observed_free = np.zeros(truth.shape, dtype=bool)
        observed_occupied = np.zeros(truth.shape, dtype=bool)

        for dr, dc in self._ray_ends:
            end = (origin[0] + dr, origin[1] + dc)
            for row, col in PathPlanner.ray_trace(origin, end):
                if not self.truth.in_bounds((row, col)):
                    break
                if truth[row, col] == CellState.OCCUPIED:
                    observed_occupied[row, col] = True
                    break
                observed_free[row, col] = True

        # Each cell is updated once per scan
        observed_free &= ~observed_occupied
        self.log_odds[observed_free] += self._log_free
        self.log_odds[observed_occupied] += self._log_occupied
        np.clip(self.log_odds, -5.0, 5.0, out=self.log_odds)

        self.scan_count += 1
        return self.snapshot()

    def snapshot(self) -> OccupancyGrid:
        """Current knowledge as an OccupancyGrid"""
        return OccupancyGrid.from_probabilities(self.probabilities, self.truth.resolution,
                                                self.truth.origin)
