"""
Motion controller tests
"""

import math

import numpy as np
import pytest

from warehouse_nav.navigation.motion_controller import (
    MotionController,
    MotionControllerConfig,
    MotionState,
)
from warehouse_nav.slam.obstacle_extractor import Obstacle
from warehouse_nav.types import Path, Pose, VelocityCommand


def straight_path(length=3):
    return Path(waypoints=tuple((float(x), 0.0) for x in range(length + 1)),
                goal=(float(length), 0.0))


def point_obstacle(x, y, resolution=0.1):
    """One-cell obstacle centred on (x, y)"""
    half = resolution / 2.0
    return Obstacle(
        cells=frozenset({(0, 0)}),
        bbox_cells=(0, 0, 0, 0),
        bbox=(x - half, y - half, x + half, y + half),
        centroid=(x, y),
        radius=half,
        points=np.array([[x, y]]),
        resolution=resolution,
    )


@pytest.fixture
def controller(motion_config):
    return MotionController(motion_config)


# ============================================================================
# Idle and staleness
# ============================================================================

def test_idle_emits_zero(controller):
    command = controller.tick(Pose(0.0, 0.0, 0.0, stamp=1.0), now=1.0)

    assert command.is_zero
    assert controller.state == MotionState.IDLE


def test_empty_path_stays_idle(controller):
    controller.set_path(Path(waypoints=()))
    assert controller.state == MotionState.IDLE
    controller.set_path(None)
    assert controller.state == MotionState.IDLE


@pytest.mark.parametrize("obstacle_x", [None, 0.45])
def test_stale_pose_stops_from_any_state(controller, obstacle_x):
    obstacles = [point_obstacle(obstacle_x, 0.0)] if obstacle_x is not None else []
    controller.set_path(straight_path())
    controller.tick(Pose(0.0, 0.0, 0.0, stamp=10.0), now=10.0, obstacles=obstacles)
    expected = MotionState.AVOIDING if obstacle_x is not None else MotionState.FOLLOWING
    assert controller.state == expected

    command = controller.tick(Pose(0.0, 0.0, 0.0, stamp=10.0), now=10.6, obstacles=obstacles)

    assert command.is_zero
    assert controller.state == MotionState.IDLE
    assert controller.path is None


def test_missing_pose_stops(controller):
    controller.set_path(straight_path())
    assert controller.tick(None, now=0.0).is_zero
    assert controller.state == MotionState.IDLE


# ============================================================================
# Path following
# ============================================================================

class TestFollowing:

    def setup_method(self):
        self.controller = MotionController(MotionControllerConfig(
            max_linear=0.5, max_angular=1.5, waypoint_tolerance=0.2, goal_tolerance=0.1))
        self.controller.set_path(straight_path())

    def test_drives_forward_when_aligned(self):
        command = self.controller.tick(Pose(0.0, 0.0, 0.0, stamp=0.0), now=0.1)

        assert self.controller.state == MotionState.FOLLOWING
        assert self.controller.waypoint_index == 1
        assert np.isclose(command.linear, 0.5)
        assert np.isclose(command.angular, 0.0)

    def test_turns_in_place_when_facing_away(self):
        command = self.controller.tick(Pose(0.0, 0.0, math.pi, stamp=0.0), now=0.1)

        assert command.linear == 0.0
        assert np.isclose(abs(command.angular), 1.5)

    def test_steers_towards_waypoint(self):
        command = self.controller.tick(Pose(0.0, -0.1, 0.0, stamp=0.0), now=0.1)
        assert command.angular > 0.0
        assert command.linear > 0.0

    def test_commands_are_bounded(self):
        rng = np.random.default_rng(3)
        for _ in range(50):
            x, y = rng.uniform(-1.0, 4.0, size=2)
            theta = rng.uniform(-math.pi, math.pi)
            command = self.controller.tick(Pose(x, y, theta, stamp=0.0), now=0.0)
            assert 0.0 <= command.linear <= 0.5
            assert abs(command.angular) <= 1.5
            if self.controller.state == MotionState.IDLE:
                self.controller.set_path(straight_path())

    def test_last_command_is_recorded(self):
        command = self.controller.tick(Pose(0.0, 0.0, 0.0, stamp=0.0), now=0.0)
        assert self.controller.last_command == command


def test_arrival_calls_back_and_idles(motion_config):
    arrived = []
    controller = MotionController(motion_config, on_arrived=arrived.append)
    path = Path(waypoints=((0.0, 0.0), (1.0, 0.0)), goal=(1.0, 0.0))
    controller.set_path(path)

    controller.tick(Pose(0.0, 0.0, 0.0, stamp=0.0), now=0.0)
    assert controller.waypoint_index == 1

    command = controller.tick(Pose(0.95, 0.0, 0.0, stamp=1.0), now=1.0)

    assert command.is_zero
    assert controller.state == MotionState.IDLE
    assert arrived == [path]


def test_no_arrival_outside_goal_tolerance(controller):
    controller.set_path(Path(waypoints=((0.0, 0.0), (1.0, 0.0))))
    controller.tick(Pose(0.0, 0.0, 0.0, stamp=0.0), now=0.0)

    command = controller.tick(Pose(0.85, 0.0, 0.0, stamp=0.0), now=0.0)
    assert controller.state == MotionState.FOLLOWING
    assert command.linear > 0.0


# ============================================================================
# Obstacle avoidance
# ============================================================================

class TestAvoidance:
    """avoid_distance 0.5, stop_distance 0.2, clear_margin 0.1, corridor 0.3"""

    @pytest.fixture(autouse=True)
    def setup(self, motion_config):
        self.controller = MotionController(motion_config)
        self.controller.set_path(straight_path())
        self.pose = Pose(0.0, 0.0, 0.0, stamp=0.0)

    def tick(self, *obstacles):
        return self.controller.tick(self.pose, now=0.0, obstacles=list(obstacles))

    def test_slows_and_steers_near_obstacle(self):
        command = self.tick(point_obstacle(0.45, 0.0))

        assert self.controller.state == MotionState.AVOIDING
        assert 0.0 < command.linear < 0.5
        assert command.angular != 0.0

    def test_stops_inside_stop_distance(self):
        command = self.tick(point_obstacle(0.2, 0.0))

        assert self.controller.state == MotionState.AVOIDING
        assert command.linear == 0.0

    def test_obstacle_on_left_steers_right(self):
        command = self.tick(point_obstacle(0.4, 0.1))
        assert command.angular < 0.0

    def test_obstacle_on_right_steers_left(self):
        command = self.tick(point_obstacle(0.4, -0.1))
        assert command.angular > 0.0

    def test_ignores_obstacles_outside_corridor(self):
        command = self.tick(point_obstacle(0.3, 0.6), point_obstacle(-0.3, 0.0))

        assert self.controller.state == MotionState.FOLLOWING
        assert np.isclose(command.linear, 0.5)

    def test_hysteresis(self):
        self.tick(point_obstacle(0.45, 0.0))
        assert self.controller.state == MotionState.AVOIDING

        # Clearance 0.55: beyond avoid_distance but inside the margin
        self.tick(point_obstacle(0.6, 0.0))
        assert self.controller.state == MotionState.AVOIDING

        self.tick(point_obstacle(0.7, 0.0))
        assert self.controller.state == MotionState.FOLLOWING

    def test_summary_only_obstacle_is_a_disk(self):
        obstacle = Obstacle(
            cells=frozenset({(0, 0)}), bbox_cells=(0, 0, 0, 0), bbox=(0.4, -0.1, 0.6, 0.1),
            centroid=(0.5, 0.0), radius=0.1)
        self.tick(obstacle)
        assert self.controller.state == MotionState.AVOIDING

    def test_wall_across_the_path(self):
        """Long wall: the nearest cell counts, not the centroid"""
        ys = np.arange(-2.0, 2.01, 0.1)
        wall = Obstacle(
            cells=frozenset((i, 0) for i in range(len(ys))),
            bbox_cells=(0, 0, len(ys) - 1, 0),
            bbox=(0.35, -2.05, 0.45, 2.05),
            centroid=(0.4, 0.0),
            radius=2.05,
            points=np.column_stack((np.full_like(ys, 0.4), ys)),
            resolution=0.1,
        )
        command = self.tick(wall)

        assert self.controller.state == MotionState.AVOIDING
        assert command.linear < 0.5


def test_config_rejects_stop_beyond_avoid():
    with pytest.raises(ValueError):
        MotionControllerConfig(avoid_distance=0.2, stop_distance=0.3)


def test_zero_command():
    assert VelocityCommand.zero().is_zero
    assert not VelocityCommand(0.1, 0.0).is_zero
