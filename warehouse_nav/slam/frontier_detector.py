"""
Frontier exploration module
Frontier detection, grouping and ranking
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Dict, FrozenSet, List, Optional, Union

import numpy as np

from ..types import Cell, CellState, Point, Pose
from ..utils.logger import log_performance
from .occupancy_grid import OccupancyGrid

logger = logging.getLogger(__name__)

NEIGHBOURS_4 = ((-1, 0), (0, -1), (0, 1), (1, 0))


@dataclass(frozen=True)
class Frontier:
    """Connected group of frontier-edge cells

    Attributes:
        cells: member cells (row, col), all free and next to unknown space
        centroid: mean of the member cell centres (x, y)
        target: centre of the member cell nearest the centroid, a free goal point
        distance: distance from the ranking pose to target, None when unranked
    """
    cells: FrozenSet[Cell]
    centroid: Point
    target: Point
    distance: Optional[float] = None

    @property
    def size(self) -> int:
        return len(self.cells)

    def summary(self) -> dict:
        return {
            'target': self.target,
            'centroid': self.centroid,
            'size': self.size,
            'distance': self.distance,
        }


# ============================================================================
# Ranking policies: (frontier, pose) -> ascending sort key
# ============================================================================

def rank_largest(frontier: Frontier, pose: Optional[Pose]):
    """Descending cell count"""
    return (-frontier.size, frontier.target)


def rank_nearest(frontier: Frontier, pose: Optional[Pose]):
    """Ascending distance from the robot, largest first without a pose"""
    if pose is None:
        return rank_largest(frontier, pose)
    return (pose.distance_to(frontier.target), frontier.target)


def rank_balanced(frontier: Frontier, pose: Optional[Pose]):
    """Large frontiers win unless they are much further away"""
    dist = pose.distance_to(frontier.target) if pose is not None else 0.0
    score = math.log(frontier.size + 1) * 10 - dist
    return (-score, frontier.target)


RankingPolicy = Callable[[Frontier, Optional[Pose]], tuple]

RANKING_POLICIES: Dict[str, RankingPolicy] = {
    'nearest': rank_nearest,
    'largest': rank_largest,
    'balanced': rank_balanced,
}


def resolve_policy(policy: Union[str, RankingPolicy]) -> RankingPolicy:
    """Look up a ranking policy by name, or pass a callable through

    Raises:
        ValueError: unknown policy name
    """
    if callable(policy):
        return policy
    try:
        return RANKING_POLICIES[policy]
    except KeyError:
        raise ValueError(
            f"unknown frontier policy {policy!r}, expected one of {sorted(RANKING_POLICIES)}") from None


@dataclass
class FrontierConfig:
    """Frontier analysis parameters"""
    min_frontier_size: int = 1  # frontiers with fewer cells are dropped
    policy: Union[str, RankingPolicy] = 'nearest'


class FrontierDetector:
    """Frontier detection

    A frontier-edge cell is a free cell with at least one unknown
    4-neighbour. Edge cells are grouped by 4-connectivity into frontiers,
    which are then ranked by the configured policy. Groups below
    min_frontier_size are dropped, so exploration is only complete when
    edge_mask() is empty.

    Example:
        >>> detector = FrontierDetector(FrontierConfig(policy='largest'))
        >>> frontiers = detector.find_frontiers(grid, pose)
        >>> goal = frontiers[0].target if frontiers else None
    """

    def __init__(self, config: FrontierConfig = None):
        self.config = config if config else FrontierConfig()
        self._policy = resolve_policy(self.config.policy)

    def find_frontiers(self,
                       grid: OccupancyGrid,
                       pose: Optional[Pose] = None,
                       policy: Union[str, RankingPolicy, None] = None) -> List[Frontier]:
        """Detect and rank the frontiers of a snapshot

        Args:
            grid: occupancy grid snapshot
            pose: robot pose used by distance-based policies
            policy: override the configured ranking policy

        Returns:
            frontiers, best first
        """
        return self.rank(self.detect(grid), pose, policy)

    def edge_mask(self, grid: OccupancyGrid) -> np.ndarray:
        """Boolean mask of free cells with an unknown 4-neighbour"""
        free = grid.mask(CellState.FREE)
        unknown = grid.mask(CellState.UNKNOWN)

        # Cells outside the grid never count as unknown
        near_unknown = np.zeros_like(unknown)
        near_unknown[1:, :] |= unknown[:-1, :]
        near_unknown[:-1, :] |= unknown[1:, :]
        near_unknown[:, 1:] |= unknown[:, :-1]
        near_unknown[:, :-1] |= unknown[:, 1:]

        return free & near_unknown

    @log_performance(logger)
    def detect(self, grid: OccupancyGrid) -> List[Frontier]:
        """Group frontier-edge cells into frontiers (unranked, row-major order)"""
        edges = self.edge_mask(grid)
        visited = np.zeros_like(edges)
        height, width = edges.shape

        frontiers = []
        for seed_row, seed_col in np.argwhere(edges):
            if visited[seed_row, seed_col]:
                continue

            group = []
            stack = [(int(seed_row), int(seed_col))]
            visited[seed_row, seed_col] = True

            while stack:
                row, col = stack.pop()
                group.append((row, col))

                for dr, dc in NEIGHBOURS_4:
                    r, c = row + dr, col + dc
                    if 0 <= r < height and 0 <= c < width and edges[r, c] and not visited[r, c]:
                        visited[r, c] = True
                        stack.append((r, c))

            if len(group) < self.config.min_frontier_size:
                continue

            frontiers.append(self._summarise(grid, group))

        logger.debug(f"[Frontier] {int(edges.sum())} edge cells, {len(frontiers)} frontiers")
        return frontiers

    def _summarise(self, grid: OccupancyGrid, group: List[Cell]) -> Frontier:
        group.sort()
        rows = np.array([c[0] for c in group])
        cols = np.array([c[1] for c in group])
        centres = grid.cells_to_world(rows, cols)

        centroid = centres.mean(axis=0)
        nearest = int(np.argmin(np.hypot(centres[:, 0] - centroid[0],
                                         centres[:, 1] - centroid[1])))

        return Frontier(
            cells=frozenset(group),
            centroid=(float(centroid[0]), float(centroid[1])),
            target=(float(centres[nearest, 0]), float(centres[nearest, 1])),
        )

    def rank(self,
             frontiers: List[Frontier],
             pose: Optional[Pose] = None,
             policy: Union[str, RankingPolicy, None] = None) -> List[Frontier]:
        """Order frontiers best first

        Args:
            frontiers: detected frontiers
            pose: robot pose (fills Frontier.distance when given)
            policy: name or callable, defaults to the configured policy

        Returns:
            a new ranked list
        """
        key_fn = resolve_policy(policy) if policy is not None else self._policy

        if pose is not None:
            frontiers = [replace(f, distance=pose.distance_to(f.target)) for f in frontiers]

        return sorted(frontiers, key=lambda f: key_fn(f, pose))

    def information_gain(self, grid: OccupancyGrid, frontier: Frontier, radius_cells: int = 10) -> int:
        """Number of unknown cells in a square window around the frontier target"""
        row, col = grid.world_to_cell(frontier.target, clamp=True)
        r0, r1 = max(row - radius_cells, 0), min(row + radius_cells + 1, grid.height)
        c0, c1 = max(col - radius_cells, 0), min(col + radius_cells + 1, grid.width)
        window = grid.cells[r0:r1, c0:c1]
        return int(np.count_nonzero(window == CellState.UNKNOWN))
