"""
Path planning demo
Plans across the simulated warehouse with increasing obstacle inflation and
saves one image per radius
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from warehouse_nav import config
from warehouse_nav.errors import PlanningFailure
from warehouse_nav.navigation import PathPlanner, PathPlannerConfig
from warehouse_nav.sim import make_warehouse
from warehouse_nav.slam import FrontierDetector, ObstacleExtractor, OccupancyGrid
from warehouse_nav.types import CellState, Pose
from warehouse_nav.utils.logger import setup_logger
from warehouse_nav.visualization import save_snapshot_image

logger = logging.getLogger('warehouse_nav.demo')


def demo_inflation(grid, obstacles, start, goal, out_dir):
    """Plan the same query with growing inflation radii"""
    print("\n=== Inflation ===")
    for radius in (0.0, 0.1, 0.2, 0.3):
        planner = PathPlanner(PathPlannerConfig(robot_radius=0.0, inflation_radius=radius))
        try:
            path = planner.plan(grid, obstacles, start, goal)
        except PlanningFailure as e:
            print(f"  inflation {radius:.2f}m: {type(e).__name__}: {e}")
            continue

        print(f"  inflation {radius:.2f}m: {len(path)} waypoints, cost {path.cost:.2f}m")
        if out_dir:
            save_snapshot_image(os.path.join(out_dir, f'plan_inflation_{radius:.2f}.png'),
                                grid, obstacles=obstacles, path=path, pose=start,
                                title=f'A* with {radius:.2f}m inflation')


def demo_smoothing(grid, obstacles, start, goal, out_dir):
    """Raw grid path against the line-of-sight smoothed path"""
    print("\n=== Smoothing ===")
    planner = PathPlanner(PathPlannerConfig(robot_radius=config.ROBOT_RADIUS,
                                            inflation_radius=config.PATH_INFLATION_RADIUS))
    raw = planner.plan(grid, obstacles, start, goal, smooth=False)
    smooth = planner.plan(grid, obstacles, start, goal, smooth=True)

    print(f"  raw:      {len(raw)} waypoints, {raw.length():.2f}m")
    print(f"  smoothed: {len(smooth)} waypoints, {smooth.length():.2f}m")
    if out_dir:
        save_snapshot_image(os.path.join(out_dir, 'plan_smoothed.png'), grid,
                            obstacles=obstacles, path=smooth, pose=start,
                            title='Smoothed A* path')


def demo_invalid_goal(grid, obstacles, start):
    """Goals on a shelf and off the map are rejected"""
    print("\n=== Invalid goals ===")
    planner = PathPlanner(PathPlannerConfig(robot_radius=config.ROBOT_RADIUS,
                                            inflation_radius=config.PATH_INFLATION_RADIUS))
    # Smallest obstacle is a shelf, the largest is the outer wall
    shelf = min(obstacles, key=lambda o: o.size).centroid
    for goal in (shelf, (-1.0, -1.0)):
        try:
            planner.plan(grid, obstacles, start, goal)
        except PlanningFailure as e:
            print(f"  goal ({goal[0]:.2f}, {goal[1]:.2f}): {type(e).__name__}")


def demo_frontiers(out_dir):
    """Frontier ranking on a half-revealed warehouse"""
    print("\n=== Frontiers ===")
    truth = make_warehouse()
    cells = truth.cells.copy()
    cells[:, truth.width // 2:] = CellState.UNKNOWN
    grid = OccupancyGrid(truth.width, truth.height, truth.resolution, cells)

    pose = Pose(0.55, 0.55, 0.0)
    for policy in ('nearest', 'largest', 'balanced'):
        frontiers = FrontierDetector().find_frontiers(grid, pose, policy=policy)
        best = frontiers[0]
        print(f"  {policy:8s}: {len(frontiers)} frontiers, best at "
              f"({best.target[0]:.2f}, {best.target[1]:.2f}) with {best.size} cells")

    if out_dir:
        save_snapshot_image(os.path.join(out_dir, 'frontiers.png'), grid,
                            frontiers=FrontierDetector().find_frontiers(grid, pose), pose=pose,
                            title='Frontiers')


def main():
    parser = argparse.ArgumentParser(description='A* planning on the simulated warehouse')
    parser.add_argument('--save', metavar='DIR', default=None,
                        help='save images to DIR')
    parser.add_argument('--log-level', default=config.LOG_LEVEL,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    args = parser.parse_args()

    setup_logger('warehouse_nav', None, getattr(logging, args.log_level),
                 fmt=config.LOG_FORMAT, datefmt=config.LOG_DATE_FORMAT)

    grid = make_warehouse()
    obstacles = ObstacleExtractor().extract(grid)
    print(f"warehouse: {grid}, {len(obstacles)} obstacles")

    start = Pose(0.55, 0.55, 0.0)
    goal = (grid.width * grid.resolution - 0.55, grid.height * grid.resolution - 0.55)

    demo_inflation(grid, obstacles, start, goal, args.save)
    demo_smoothing(grid, obstacles, start, goal, args.save)
    demo_invalid_goal(grid, obstacles, start)
    demo_frontiers(args.save)


if __name__ == '__main__':
    main()
