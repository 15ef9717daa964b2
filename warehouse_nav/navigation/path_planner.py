"""
Path planning module
A* global planning over the occupancy grid with obstacle inflation and
line-of-sight smoothing
"""

import heapq
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.ndimage import binary_dilation

from ..errors import InvalidGoal, NoPath, OutOfBounds, PlanningCancelled
from ..slam.obstacle_extractor import Obstacle
from ..slam.occupancy_grid import OccupancyGrid
from ..types import Cell, CellState, Path, Point, Pose
from ..utils.logger import log_performance

logger = logging.getLogger(__name__)


@dataclass
class PathPlannerConfig:
    """Path planning parameters"""
    robot_radius: float = 0.15  # robot half-width (m)
    inflation_radius: float = 0.3  # obstacle inflation (m), never below robot_radius
    allow_diagonal: bool = True  # 8-connected movement
    diagonal_cost: float = math.sqrt(2.0)  # diagonal step cost
    smooth: bool = False  # drop waypoints along clear straight segments
    smoothing_tolerance: float = 0.1  # Douglas-Peucker tolerance (m)
    cancel_check_interval: int = 256  # expansions between cancellation checks

    def __post_init__(self):
        if self.inflation_radius < self.robot_radius:
            raise ValueError(
                f"inflation_radius {self.inflation_radius} must be at least "
                f"robot_radius {self.robot_radius}")
        if self.cancel_check_interval < 1:
            raise ValueError("cancel_check_interval must be at least 1")


def disk_structure(radius_cells: int) -> np.ndarray:
    """Boolean disk structuring element of the given radius in cells"""
    span = np.arange(-radius_cells, radius_cells + 1)
    dr, dc = np.meshgrid(span, span, indexing='ij')
    return dr ** 2 + dc ** 2 <= radius_cells ** 2


class PathPlanner:
    """A* path planner

    Cells are traversable iff free and outside the inflated footprint of
    every obstacle. The search runs over flat cell indices
    (row * width + col) with an explicit heap, and the path is rebuilt by
    walking a parent-index array. Equal f-scores are broken by the lower
    heuristic, then the lower index, so results are deterministic.

    Attributes:
        config: PathPlannerConfig

    Example:
        >>> planner = PathPlanner(PathPlannerConfig(inflation_radius=0.3))
        >>> path = planner.plan(grid, obstacles, pose, frontier.target)
        >>> path.waypoints[-1]
    """

    def __init__(self, config: PathPlannerConfig = None):
        self.config = config if config else PathPlannerConfig()

        diagonal = self.config.diagonal_cost
        # (d_row, d_col, cost)
        self.neighbors_4 = [
            (-1, 0, 1.0),
            (0, -1, 1.0),
            (0, 1, 1.0),
            (1, 0, 1.0),
        ]
        self.neighbors_8 = self.neighbors_4 + [
            (-1, -1, diagonal),
            (-1, 1, diagonal),
            (1, -1, diagonal),
            (1, 1, diagonal),
        ]

    # ------------------------------------------------------------------
    # Traversability
    # ------------------------------------------------------------------

    def inflation_cells(self, grid: OccupancyGrid, radius: Optional[float] = None) -> int:
        radius = self.config.inflation_radius if radius is None else radius
        if radius <= 0:
            return 0
        return int(math.ceil(radius / grid.resolution - 1e-9))

    def traversable_mask(self,
                         grid: OccupancyGrid,
                         obstacles: Sequence[Obstacle],
                         inflation_radius: Optional[float] = None) -> np.ndarray:
        """Boolean (height x width) mask of traversable cells

        Args:
            grid: occupancy grid snapshot
            obstacles: obstacles whose cells are inflated
            inflation_radius: override the configured radius (m)
        """
        obstacle_map = np.zeros(grid.shape, dtype=bool)
        for obstacle in obstacles:
            for row, col in obstacle.cells:
                obstacle_map[row, col] = True

        radius_cells = self.inflation_cells(grid, inflation_radius)
        if radius_cells > 0 and obstacle_map.any():
            obstacle_map = binary_dilation(obstacle_map, structure=disk_structure(radius_cells))

        return grid.mask(CellState.FREE) & ~obstacle_map

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    @log_performance(logger)
    def plan(self,
             grid: OccupancyGrid,
             obstacles: Sequence[Obstacle],
             start: Union[Pose, Point],
             goal: Point,
             cancel_event=None,
             smooth: Optional[bool] = None) -> Path:
        """Plan a collision-free path from start to goal

        Args:
            grid: occupancy grid snapshot
            obstacles: obstacles to inflate and avoid
            start: robot pose or world point
            goal: world goal point
            cancel_event: threading.Event, planning is abandoned once it is set
            smooth: override config.smooth

        Returns:
            Path from the start cell to the goal cell

        Raises:
            InvalidGoal: goal out of bounds or not traversable
            NoPath: start blocked or goal unreachable
            PlanningCancelled: cancel_event was set during the search
        """
        start_point = (start.x, start.y) if isinstance(start, Pose) else tuple(start)
        goal_point = tuple(goal)

        try:
            goal_cell = grid.world_to_cell(goal_point)
        except OutOfBounds as e:
            raise InvalidGoal(f"goal {goal_point} is outside the grid", goal_point) from e

        try:
            start_cell = grid.world_to_cell(start_point)
        except OutOfBounds as e:
            raise NoPath(f"start {start_point} is outside the grid", goal_point) from e

        traversable = self.traversable_mask(grid, obstacles)

        goal_state = grid.state_at(goal_cell)
        if goal_state != CellState.FREE:
            raise InvalidGoal(f"goal cell {goal_cell} is {goal_state.name.lower()}", goal_point)
        if not traversable[goal_cell]:
            raise InvalidGoal(f"goal cell {goal_cell} lies inside the inflated obstacle footprint",
                              goal_point)
        if not traversable[start_cell]:
            raise NoPath(f"start cell {start_cell} is not traversable", goal_point)

        cells, steps = self._astar_search(grid, traversable, start_cell, goal_cell, cancel_event)

        waypoints = [grid.cell_to_world(c) for c in cells]
        use_smoothing = self.config.smooth if smooth is None else smooth
        if use_smoothing and len(cells) > 2:
            cells = self._smooth_cells(cells, grid, traversable)
            waypoints = [grid.cell_to_world(c) for c in cells]

        path = Path(
            waypoints=tuple(waypoints),
            cells=tuple(cells),
            cost=steps * grid.resolution,
            goal=goal_point,
        )
        logger.debug(f"[Planner] path found: {len(path)} waypoints, cost={path.cost:.2f}m")
        return path

    def _astar_search(self,
                      grid: OccupancyGrid,
                      traversable: np.ndarray,
                      start: Cell,
                      goal: Cell,
                      cancel_event=None) -> Tuple[List[Cell], float]:
        """A* over flat cell indices

        Returns:
            (cells from start to goal, accumulated step cost in cells)
        """
        width = grid.width
        size = grid.width * grid.height
        neighbors = self.neighbors_8 if self.config.allow_diagonal else self.neighbors_4
        flat_traversable = traversable.ravel()

        g_score = np.full(size, np.inf)
        parent = np.full(size, -1, dtype=np.int64)
        closed = np.zeros(size, dtype=bool)

        start_idx = start[0] * width + start[1]
        goal_idx = goal[0] * width + goal[1]

        g_score[start_idx] = 0.0
        h0 = self._heuristic(start, goal)
        open_set = [(h0, h0, start_idx)]
        expansions = 0

        while open_set:
            _, _, current = heapq.heappop(open_set)
            if closed[current]:
                continue

            if current == goal_idx:
                return self._reconstruct_path(parent, current, width), float(g_score[current])

            closed[current] = True
            expansions += 1

            if (cancel_event is not None
                    and expansions % self.config.cancel_check_interval == 0
                    and cancel_event.is_set()):
                raise PlanningCancelled("planning cancelled by a newer request", goal)

            row, col = divmod(int(current), width)
            g_current = g_score[current]

            for dr, dc, cost in neighbors:
                r, c = row + dr, col + dc
                if not (0 <= r < grid.height and 0 <= c < width):
                    continue
                neighbor = r * width + c
                if closed[neighbor] or not flat_traversable[neighbor]:
                    continue
                # No corner cutting past a blocked cell
                if dr != 0 and dc != 0:
                    if not (traversable[row + dr, col] and traversable[row, col + dc]):
                        continue

                tentative = g_current + cost
                if tentative < g_score[neighbor]:
                    g_score[neighbor] = tentative
                    parent[neighbor] = current
                    h = self._heuristic((r, c), goal)
                    heapq.heappush(open_set, (tentative + h, h, neighbor))

        raise NoPath(f"no path from {start} to {goal}: disconnected traversable regions",
                     grid.cell_to_world(goal))

    def _heuristic(self, node: Cell, goal: Cell) -> float:
        """Octile distance with diagonal moves, Manhattan otherwise"""
        dr = abs(node[0] - goal[0])
        dc = abs(node[1] - goal[1])

        if self.config.allow_diagonal:
            return max(dr, dc) + (self.config.diagonal_cost - 1.0) * min(dr, dc)
        return dr + dc

    @staticmethod
    def _reconstruct_path(parent: np.ndarray, current: int, width: int) -> List[Cell]:
        cells = []
        while current != -1:
            cells.append(divmod(int(current), width))
            current = parent[current]
        cells.reverse()
        return cells

    # ------------------------------------------------------------------
    # Smoothing
    # ------------------------------------------------------------------

    def _smooth_cells(self, cells: List[Cell], grid: OccupancyGrid,
                      traversable: np.ndarray) -> List[Cell]:
        """Douglas-Peucker simplification that keeps every segment traversable"""
        tolerance_cells = self.config.smoothing_tolerance / grid.resolution
        smoothed = self._douglas_peucker(cells, tolerance_cells, traversable)

        if smoothed[0] != cells[0]:
            smoothed.insert(0, cells[0])
        if smoothed[-1] != cells[-1]:
            smoothed.append(cells[-1])
        return smoothed

    def _douglas_peucker(self, cells: List[Cell], tolerance: float,
                         traversable: np.ndarray) -> List[Cell]:
        # Explicit stack of (first, last) index ranges
        keep = {0, len(cells) - 1}
        stack = [(0, len(cells) - 1)]

        while stack:
            first, last = stack.pop()
            if last - first < 2:
                continue

            start = np.array(cells[first], dtype=float)
            end = np.array(cells[last], dtype=float)
            max_dist = -1.0
            max_index = first + 1
            for i in range(first + 1, last):
                dist = self._point_to_line_distance(np.array(cells[i], dtype=float), start, end)
                if dist > max_dist:
                    max_dist = dist
                    max_index = i

            if max_dist > tolerance or not self._line_of_sight(cells[first], cells[last], traversable):
                keep.add(max_index)
                stack.append((first, max_index))
                stack.append((max_index, last))

        return [cells[i] for i in sorted(keep)]

    @staticmethod
    def _point_to_line_distance(point: np.ndarray, line_start: np.ndarray,
                                line_end: np.ndarray) -> float:
        line_vec = line_end - line_start
        line_len_sq = np.dot(line_vec, line_vec)

        if line_len_sq == 0:
            return float(np.linalg.norm(point - line_start))

        t = np.clip(np.dot(point - line_start, line_vec) / line_len_sq, 0, 1)
        projection = line_start + t * line_vec
        return float(np.linalg.norm(point - projection))

    @staticmethod
    def ray_trace(c0: Cell, c1: Cell) -> List[Cell]:
        """Bresenham cells from c0 to c1 inclusive"""
        cells = []

        r0, col0 = c0
        r1, col1 = c1
        dr = abs(r1 - r0)
        dc = abs(col1 - col0)
        sr = 1 if r0 < r1 else -1
        sc = 1 if col0 < col1 else -1
        err = dc - dr

        r, c = r0, col0
        while True:
            cells.append((r, c))
            if r == r1 and c == col1:
                break
            e2 = 2 * err
            if e2 > -dr:
                err -= dr
                c += sc
            if e2 < dc:
                err += dc
                r += sr
        return cells

    def _line_of_sight(self, c0: Cell, c1: Cell, traversable: np.ndarray) -> bool:
        ray = self.ray_trace(c0, c1)
        if not all(traversable[r, c] for r, c in ray):
            return False

        # Diagonal steps obey the same no-corner-cutting rule as A*
        for (r0, col0), (r1, col1) in zip(ray, ray[1:]):
            if r0 != r1 and col0 != col1:
                if not (traversable[r1, col0] and traversable[r0, col1]):
                    return False
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def get_path_length(path: Union[Path, Sequence[Point]]) -> float:
        """Polyline length of a path (m)"""
        points = path.waypoints if isinstance(path, Path) else path
        length = 0.0
        for a, b in zip(points, points[1:]):
            length += math.hypot(b[0] - a[0], b[1] - a[1])
        return length

    def is_path_valid(self, grid: OccupancyGrid, obstacles: Sequence[Obstacle],
                      path: Union[Path, Sequence[Point]]) -> bool:
        """Check that every waypoint of a path lies on a traversable cell"""
        traversable = self.traversable_mask(grid, obstacles)
        points = path.waypoints if isinstance(path, Path) else path

        for point in points:
            try:
                cell = grid.world_to_cell(point)
            except OutOfBounds:
                return False
            if not traversable[cell]:
                return False
        return True
