"""
Shared fixtures for the navigation tests
"""

import pytest

from warehouse_nav.navigation.motion_controller import MotionControllerConfig
from warehouse_nav.navigation.path_planner import PathPlannerConfig
from warehouse_nav.slam.occupancy_grid import OccupancyGrid


@pytest.fixture
def open_grid():
    """10x10 free grid, 1m cells"""
    return OccupancyGrid.from_strings(['.' * 10] * 10)


@pytest.fixture
def block_grid():
    """10x10 free grid with a 2x2 block in the centre (rows/cols 4-5)"""
    rows = ['.' * 10] * 4 + ['....##....'] * 2 + ['.' * 10] * 4
    return OccupancyGrid.from_strings(rows)


@pytest.fixture
def wall_grid():
    """Free grid split in two by a solid vertical wall"""
    return OccupancyGrid.from_strings(['....#....'] * 7)


@pytest.fixture
def ringed_grid():
    """8x8 grid: free interior with a one-cell unknown border"""
    return OccupancyGrid.from_strings(
        ['?' * 8] + ['?' + '.' * 6 + '?'] * 6 + ['?' * 8])


@pytest.fixture
def no_inflation():
    """Planner config that plans on raw free cells"""
    return PathPlannerConfig(robot_radius=0.0, inflation_radius=0.0)


@pytest.fixture
def motion_config():
    return MotionControllerConfig(
        max_linear=0.5,
        max_angular=1.5,
        waypoint_tolerance=0.2,
        goal_tolerance=0.1,
        pose_timeout=0.5,
        avoid_distance=0.5,
        stop_distance=0.2,
        clear_margin=0.1,
        corridor_half_width=0.3,
    )
