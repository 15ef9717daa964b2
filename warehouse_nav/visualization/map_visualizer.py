"""
Map visualization module
Renders a grid snapshot with obstacles, frontiers, the planned path and the
robot for diagnostics
"""

import logging
from pathlib import Path as FilePath
from typing import Optional, Sequence

import matplotlib
import matplotlib.patches as patches
import numpy as np

from .. import config
from ..slam.frontier_detector import Frontier
from ..slam.obstacle_extractor import Obstacle
from ..slam.occupancy_grid import OccupancyGrid
from ..types import CellState, Path, Pose

logger = logging.getLogger(__name__)


def grid_to_rgb(grid: OccupancyGrid) -> np.ndarray:
    """(height x width x 3) uint8 image: white free, black occupied, grey unknown"""
    palette = np.zeros((len(CellState), 3), dtype=np.uint8)
    palette[CellState.FREE] = config.COLOR_FREE
    palette[CellState.OCCUPIED] = config.COLOR_OCCUPIED
    palette[CellState.UNKNOWN] = config.COLOR_UNKNOWN
    return palette[grid.cells]


def render_snapshot(grid: OccupancyGrid,
                    obstacles: Sequence[Obstacle] = (),
                    frontiers: Sequence[Frontier] = (),
                    path: Optional[Path] = None,
                    pose: Optional[Pose] = None,
                    ax=None,
                    title: str = 'Occupancy Grid'):
    """Draw a snapshot in world coordinates

    The image is placed with its lower-left corner at the grid origin; the
    origin yaw is not drawn.

    Args:
        grid: occupancy grid snapshot
        obstacles: drawn as bounding boxes with their centroids
        frontiers: targets drawn as crosses, sized by cell count
        path: planned path
        pose: robot pose, drawn as an arrow
        ax: matplotlib axes, a new figure is created when None
        title: axes title

    Returns:
        the matplotlib axes
    """
    import matplotlib.pyplot as plt

    if ax is None:
        _, ax = plt.subplots(figsize=config.VISUALIZE_FIGSIZE)

    x0, y0 = grid.origin.x, grid.origin.y
    extent = (x0, x0 + grid.width * grid.resolution, y0, y0 + grid.height * grid.resolution)
    ax.imshow(grid_to_rgb(grid), origin='lower', extent=extent, interpolation='nearest')

    for obstacle in obstacles:
        min_x, min_y, max_x, max_y = obstacle.bbox
        ax.add_patch(patches.Rectangle(
            (min_x, min_y), max_x - min_x, max_y - min_y,
            fill=False, edgecolor='tab:red', linewidth=1.0, zorder=4))
        ax.plot(obstacle.centroid[0], obstacle.centroid[1], 'r+', markersize=6, zorder=5)

    if frontiers:
        targets = np.array([f.target for f in frontiers])
        sizes = np.array([f.size for f in frontiers], dtype=float)
        ax.scatter(targets[:, 0], targets[:, 1],
                   s=30 + 4 * np.sqrt(sizes), c='lime', marker='X',
                   edgecolors='black', linewidths=1.0, zorder=8, label='Frontiers')

    if path is not None and not path.is_empty:
        points = np.array(path.waypoints)
        ax.plot(points[:, 0], points[:, 1], 'g-', linewidth=2, marker='o',
                markersize=3, alpha=0.8, zorder=7, label='Planned Path')

    if pose is not None:
        arrow = 4 * grid.resolution
        ax.arrow(pose.x, pose.y, arrow * np.cos(pose.theta), arrow * np.sin(pose.theta),
                 head_width=1.5 * grid.resolution, head_length=1.5 * grid.resolution,
                 fc='red', ec='black', zorder=10)
        ax.plot(pose.x, pose.y, 'o', color='blue', markeredgecolor='black',
                markersize=8, zorder=10, label='Robot')

    ax.set_xlabel('X (meters)')
    ax.set_ylabel('Y (meters)')
    ax.set_title(title)
    ax.set_aspect('equal')
    if ax.get_legend_handles_labels()[0]:
        ax.legend(loc='upper right', fontsize=8)

    return ax


def save_snapshot_image(filename: str, grid: OccupancyGrid, **kwargs) -> str:
    """Render a snapshot off-screen and save it as an image

    Args:
        filename: output path, parent directories are created
        grid: occupancy grid snapshot
        **kwargs: passed to render_snapshot

    Returns:
        the written file path
    """
    matplotlib.use('Agg')
    import matplotlib.pyplot as plt

    out = FilePath(filename)
    out.parent.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=config.VISUALIZE_FIGSIZE)
    try:
        render_snapshot(grid, ax=ax, **kwargs)
        fig.savefig(out, dpi=150, bbox_inches='tight')
    finally:
        plt.close(fig)

    logger.info(f"[Visualizer] image saved: {out}")
    return str(out)
