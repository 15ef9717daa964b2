"""
Obstacle extraction module
Clusters occupied cells into discrete obstacles with shape summaries
"""

import logging
import math
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

import numpy as np

from ..types import Cell, CellState, Point
from ..utils.logger import log_performance
from .occupancy_grid import OccupancyGrid

logger = logging.getLogger(__name__)

# 8-connectivity: diagonally touching occupied cells belong to one obstacle
NEIGHBOURS_8 = (
    (-1, -1), (-1, 0), (-1, 1),
    (0, -1),           (0, 1),
    (1, -1),  (1, 0),  (1, 1),
)


@dataclass
class ObstacleExtractorConfig:
    """Obstacle extraction parameters"""
    min_cells: int = 3  # smaller components are discarded as sensor noise
    classify_shapes: bool = True  # fit a circle / rectangle to each obstacle
    circle_score_threshold: float = 0.05  # circle accepted outright below this residual


@dataclass(frozen=True)
class ObstacleShape:
    """Best-fitting primitive for an obstacle

    Attributes:
        kind: 'circle' or 'rectangle'
        centre: world centre (x, y)
        width: extent across the principal axis (m), diameter for circles
        length: extent along the principal axis (m), diameter for circles
        rotation: principal axis angle in [0, pi) (rad)
        score: normalised fit residual, lower is better
    """
    kind: str
    centre: Point
    width: float
    length: float
    rotation: float
    score: float


@dataclass(frozen=True)
class Obstacle:
    """Connected component of occupied cells

    Attributes:
        cells: member cells (row, col)
        bbox_cells: (min_row, min_col, max_row, max_col)
        bbox: world extent (min_x, min_y, max_x, max_y) of the member cells
        centroid: mean of the member cell centres (x, y)
        radius: distance from the centroid enclosing every member cell (m)
        shape: fitted circle / rectangle, None when classification is off
    """
    cells: FrozenSet[Cell]
    bbox_cells: Tuple[int, int, int, int]
    bbox: Tuple[float, float, float, float]
    centroid: Point
    radius: float
    shape: Optional[ObstacleShape] = None
    points: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    resolution: float = field(default=0.0, compare=False, repr=False)

    @property
    def size(self) -> int:
        return len(self.cells)

    def nearest_point(self, point: Point) -> Tuple[Point, float]:
        """Member cell centre closest to a world point, and its distance"""
        if self.points is None:
            d = math.hypot(point[0] - self.centroid[0], point[1] - self.centroid[1])
            return self.centroid, max(0.0, d - self.radius)
        dists = np.hypot(self.points[:, 0] - point[0], self.points[:, 1] - point[1])
        i = int(np.argmin(dists))
        return (float(self.points[i, 0]), float(self.points[i, 1])), float(dists[i])

    def distance_to(self, point: Point) -> float:
        """Clearance from a world point to the nearest member cell edge"""
        if self.points is None:
            return self.nearest_point(point)[1]
        return max(0.0, self.nearest_point(point)[1] - self.resolution / 2.0)

    def summary(self) -> dict:
        return {
            'centroid': self.centroid,
            'size': self.size,
            'radius': self.radius,
            'bbox': self.bbox,
            'shape': self.shape.kind if self.shape else None,
        }


class ObstacleExtractor:
    """Occupied-cell clustering

    Components are found with an explicit stack flood fill seeded in
    row-major order, so the output is identical for identical grids.
    Components below config.min_cells are dropped as noise; every other
    occupied cell belongs to exactly one obstacle.

    Example:
        >>> extractor = ObstacleExtractor()
        >>> obstacles = extractor.extract(grid)
        >>> [o.centroid for o in obstacles]
    """

    def __init__(self, config: ObstacleExtractorConfig = None):
        self.config = config if config else ObstacleExtractorConfig()

    @log_performance(logger)
    def extract(self, grid: OccupancyGrid) -> List[Obstacle]:
        """Find the obstacles in a snapshot

        Args:
            grid: occupancy grid snapshot

        Returns:
            obstacles ordered by their lowest (row, col) member
        """
        occupied = grid.mask(CellState.OCCUPIED)
        visited = np.zeros_like(occupied, dtype=bool)
        height, width = occupied.shape

        obstacles = []
        discarded = 0

        for seed_row, seed_col in np.argwhere(occupied):
            if visited[seed_row, seed_col]:
                continue

            component = []
            stack = [(int(seed_row), int(seed_col))]
            visited[seed_row, seed_col] = True

            while stack:
                row, col = stack.pop()
                component.append((row, col))

                for dr, dc in NEIGHBOURS_8:
                    r, c = row + dr, col + dc
                    if 0 <= r < height and 0 <= c < width and occupied[r, c] and not visited[r, c]:
                        visited[r, c] = True
                        stack.append((r, c))

            if len(component) < self.config.min_cells:
                discarded += 1
                continue

            obstacles.append(self._summarise(grid, component))

        logger.debug(f"[Obstacles] {len(obstacles)} obstacles, {discarded} noise clusters discarded")
        return obstacles

    def _summarise(self, grid: OccupancyGrid, component: List[Cell]) -> Obstacle:
        """Geometry of one component, independent of fill order"""
        component.sort()
        rows = np.array([c[0] for c in component])
        cols = np.array([c[1] for c in component])
        centres = grid.cells_to_world(rows, cols)
        centres.flags.writeable = False

        centroid = centres.mean(axis=0)
        half = grid.resolution / 2.0
        radius = float(np.max(np.hypot(centres[:, 0] - centroid[0],
                                       centres[:, 1] - centroid[1]))) + half

        shape = None
        if self.config.classify_shapes:
            shape = self.classify_shape(centres, grid.resolution)

        return Obstacle(
            cells=frozenset(component),
            bbox_cells=(int(rows.min()), int(cols.min()), int(rows.max()), int(cols.max())),
            bbox=(float(centres[:, 0].min() - half), float(centres[:, 1].min() - half),
                  float(centres[:, 0].max() + half), float(centres[:, 1].max() + half)),
            centroid=(float(centroid[0]), float(centroid[1])),
            radius=radius,
            shape=shape,
            points=centres,
            resolution=grid.resolution,
        )

    def classify_shape(self, points: np.ndarray, resolution: float) -> ObstacleShape:
        """Fit a circle and an oriented rectangle, keep the better one

        Args:
            points: (N x 2) world coordinates of the member cell centres
            resolution: map resolution, the smallest meaningful extent

        Returns:
            the best-fitting ObstacleShape
        """
        circle = self._fit_circle(points, resolution)

        # Near-perfect circles skip the rectangle fit
        if circle is not None and circle.score < self.config.circle_score_threshold:
            return circle

        rectangle = self._fit_rectangle(points, resolution)
        if circle is not None and circle.score < rectangle.score:
            return circle
        return rectangle

    def _fit_circle(self, points: np.ndarray, resolution: float) -> Optional[ObstacleShape]:
        """Algebraic least-squares circle fit (x^2 + y^2 + Dx + Ey + F = 0)"""
        if len(points) < 3:
            return None

        # Fit in centred coordinates so the result does not depend on the map origin
        mean = points.mean(axis=0)
        x, y = points[:, 0] - mean[0], points[:, 1] - mean[1]
        a = np.column_stack((x, y, np.ones_like(x)))
        b = -(x ** 2 + y ** 2)
        (d, e, f), *_ = np.linalg.lstsq(a, b, rcond=None)

        cx, cy = -d / 2.0, -e / 2.0
        r_sq = cx ** 2 + cy ** 2 - f
        if not np.isfinite(r_sq) or r_sq <= 0:
            return None

        r = math.sqrt(r_sq)
        # A nearly straight cluster fits a huge circle
        if r > 10.0 * max(np.ptp(x), np.ptp(y), resolution):
            return None

        residual = np.abs(np.hypot(x - cx, y - cy) - r)
        score = float(residual.mean() / max(r, resolution))
        diameter = 2.0 * r + resolution

        return ObstacleShape('circle', (float(cx + mean[0]), float(cy + mean[1])),
                             diameter, diameter, 0.0, score)

    def _fit_rectangle(self, points: np.ndarray, resolution: float) -> ObstacleShape:
        """Oriented bounding box along the principal axes"""
        centre = points.mean(axis=0)
        centred = points - centre

        if len(points) > 1:
            cov = np.cov(centred.T)
            _, vecs = np.linalg.eigh(cov)
            major = vecs[:, -1]
        else:
            major = np.array([1.0, 0.0])

        rotation = math.atan2(major[1], major[0]) % math.pi
        u_axis = np.array([math.cos(rotation), math.sin(rotation)])
        v_axis = np.array([-u_axis[1], u_axis[0]])

        u = centred @ u_axis
        v = centred @ v_axis
        u_min, u_max = u.min(), u.max()
        v_min, v_max = v.min(), v.max()

        # Distance of each member to the nearest rectangle edge
        edge_dist = np.minimum.reduce([u - u_min, u_max - u, v - v_min, v_max - v])
        half_short = max(min(u_max - u_min, v_max - v_min) / 2.0, resolution)
        score = float(edge_dist.mean() / half_short)

        box_centre = centre + u_axis * (u_min + u_max) / 2.0 + v_axis * (v_min + v_max) / 2.0

        return ObstacleShape(
            'rectangle',
            (float(box_centre[0]), float(box_centre[1])),
            float(v_max - v_min + resolution),
            float(u_max - u_min + resolution),
            float(rotation),
            score,
        )
