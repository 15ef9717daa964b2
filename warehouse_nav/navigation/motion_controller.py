"""
Motion controller module
Path following for a differential-drive robot with an obstacle avoidance
override
"""

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from ..slam.obstacle_extractor import Obstacle
from ..types import Path, Pose, VelocityCommand

logger = logging.getLogger(__name__)


class MotionState(Enum):
    """Motion controller states"""
    IDLE = 0          # no path, zero command
    FOLLOWING = 1     # tracking the path
    AVOIDING = 2      # obstacle ahead, heading overridden
    ARRIVED = 3       # final waypoint reached (transient)


@dataclass
class MotionControllerConfig:
    """Motion control parameters

    The avoidance thresholds are tuning points, not physical constants.
    """
    # Velocity limits
    max_linear: float = 0.4  # m/s
    max_angular: float = 1.5  # rad/s

    # Proportional control law
    k_linear: float = 0.8  # on distance error
    k_angular: float = 2.0  # on heading error
    heading_slowdown: float = 1.0  # exponent on cos(heading error)
    rotate_in_place_angle: float = 1.0  # rad, no forward motion above this

    # Tolerances
    waypoint_tolerance: float = 0.15  # m
    goal_tolerance: float = 0.1  # m
    pose_timeout: float = 0.5  # s

    # Obstacle avoidance
    avoid_distance: float = 0.35  # enter avoidance below this clearance (m)
    stop_distance: float = 0.12  # linear velocity is zero at this clearance (m)
    clear_margin: float = 0.05  # hysteresis before resuming (m)
    corridor_half_width: float = 0.2  # lateral extent of the checked corridor (m)
    k_avoid: float = 0.8  # fraction of max_angular used to steer away

    def __post_init__(self):
        if self.stop_distance >= self.avoid_distance:
            raise ValueError("stop_distance must be below avoid_distance")
        if self.max_linear <= 0 or self.max_angular <= 0:
            raise ValueError("velocity limits must be positive")


class MotionController:
    """Path-following state machine

    IDLE -> FOLLOWING on a new path, FOLLOWING <-> AVOIDING on obstacle
    clearance, FOLLOWING -> ARRIVED -> IDLE at the final waypoint. A missing
    or stale pose drops the path and returns to IDLE from any state. IDLE
    always emits a zero command.

    Attributes:
        config: MotionControllerConfig
        on_arrived: called with the finished path on arrival

    Example:
        >>> controller = MotionController()
        >>> controller.set_path(path)
        >>> cmd = controller.tick(pose, time.monotonic(), obstacles)
    """

    def __init__(self,
                 config: MotionControllerConfig = None,
                 on_arrived: Optional[Callable[[Path], None]] = None):
        self.config = config if config else MotionControllerConfig()
        self.on_arrived = on_arrived

        self._state = MotionState.IDLE
        self._path: Optional[Path] = None
        self._waypoint_index = 0
        self.last_command = VelocityCommand.zero()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> MotionState:
        return self._state

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def waypoint_index(self) -> int:
        return self._waypoint_index

    def set_path(self, path: Optional[Path]):
        """Replace the active path (an empty path leaves the controller idle)"""
        if path is None or path.is_empty:
            self.clear("empty path")
            return

        self._path = path
        self._waypoint_index = 0
        self._state = MotionState.FOLLOWING
        logger.info(f"[Motion] following new path: {len(path)} waypoints, "
                    f"goal=({path.final_waypoint[0]:.2f}, {path.final_waypoint[1]:.2f})")

    def clear(self, reason: str = ""):
        """Drop the path and go idle"""
        if self._state != MotionState.IDLE:
            logger.info(f"[Motion] {self._state.name} -> IDLE" + (f" ({reason})" if reason else ""))
        self._path = None
        self._waypoint_index = 0
        self._state = MotionState.IDLE

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def tick(self,
             pose: Optional[Pose],
             now: Optional[float] = None,
             obstacles: Sequence[Obstacle] = ()) -> VelocityCommand:
        """Compute one velocity command

        Args:
            pose: latest pose, None when no pose is available
            now: current monotonic time (s), default time.monotonic()
            obstacles: obstacles checked for the avoidance override

        Returns:
            bounded VelocityCommand, zero when idle or when the pose is stale
        """
        now = time.monotonic() if now is None else now

        if pose is None or now - pose.stamp > self.config.pose_timeout:
            if self._state != MotionState.IDLE:
                age = "none" if pose is None else f"{now - pose.stamp:.2f}s"
                logger.warning(f"[Motion] stale pose (age {age}), stopping")
                self.clear("stale pose")
            return self._emit(VelocityCommand.zero())

        if self._state == MotionState.IDLE or self._path is None:
            return self._emit(VelocityCommand.zero())

        waypoints = self._path.waypoints
        last = len(waypoints) - 1

        # Advance past reached waypoints
        while (self._waypoint_index < last
               and pose.distance_to(waypoints[self._waypoint_index]) < self.config.waypoint_tolerance):
            self._waypoint_index += 1

        if self._waypoint_index == last and pose.distance_to(waypoints[last]) < self.config.goal_tolerance:
            return self._arrive()

        target = waypoints[self._waypoint_index]
        heading_error = pose.bearing_to(target)
        distance_error = pose.distance_to(target) + self._path.length(self._waypoint_index)

        linear, angular = self._track(heading_error, distance_error)

        threat = self._nearest_threat(pose, obstacles)
        self._update_avoidance(threat)

        if self._state == MotionState.AVOIDING and threat is not None:
            linear, angular = self._avoid(linear, angular, threat)

        return self._emit(VelocityCommand(linear, angular))

    def _track(self, heading_error: float, distance_error: float) -> Tuple[float, float]:
        """Proportional control law, bounded by the velocity limits"""
        cfg = self.config

        angular = float(np.clip(cfg.k_angular * heading_error, -cfg.max_angular, cfg.max_angular))

        if abs(heading_error) > cfg.rotate_in_place_angle:
            linear = 0.0
        else:
            alignment = max(0.0, math.cos(heading_error)) ** cfg.heading_slowdown
            linear = float(np.clip(cfg.k_linear * distance_error, 0.0, cfg.max_linear)) * alignment

        return linear, angular

    def _nearest_threat(self, pose: Pose, obstacles: Sequence[Obstacle]) -> Optional[Tuple[float, float]]:
        """Closest obstacle cell in the corridor ahead

        Returns:
            (clearance, lateral offset) of the nearest threat, None when clear
        """
        cos_t, sin_t = math.cos(pose.theta), math.sin(pose.theta)
        best = None

        for obstacle in obstacles:
            if obstacle.points is None:
                # Summary-only obstacle: treat it as a disk
                candidates = np.array([obstacle.centroid])
                half_cell = obstacle.radius
            else:
                candidates = obstacle.points
                half_cell = obstacle.resolution / 2.0

            dx = candidates[:, 0] - pose.x
            dy = candidates[:, 1] - pose.y
            forward = cos_t * dx + sin_t * dy
            lateral = -sin_t * dx + cos_t * dy

            ahead = (forward > 0.0) & (np.abs(lateral) <= self.config.corridor_half_width + half_cell)
            if not ahead.any():
                continue

            dist = np.hypot(forward[ahead], lateral[ahead]) - half_cell
            i = int(np.argmin(dist))
            clearance = max(0.0, float(dist[i]))
            if best is None or clearance < best[0]:
                best = (clearance, float(lateral[ahead][i]))

        return best

    def _update_avoidance(self, threat: Optional[Tuple[float, float]]):
        cfg = self.config

        if self._state == MotionState.FOLLOWING:
            if threat is not None and threat[0] < cfg.avoid_distance:
                logger.info(f"[Motion] obstacle ahead at {threat[0]:.2f}m, avoiding")
                self._state = MotionState.AVOIDING

        elif self._state == MotionState.AVOIDING:
            if threat is None or threat[0] >= cfg.avoid_distance + cfg.clear_margin:
                logger.info("[Motion] path clear, resuming")
                self._state = MotionState.FOLLOWING

    def _avoid(self, linear: float, angular: float, threat: Tuple[float, float]) -> Tuple[float, float]:
        """Bias the heading away from the obstacle and slow down with proximity"""
        cfg = self.config
        clearance, lateral = threat

        span = cfg.avoid_distance - cfg.stop_distance
        scale = float(np.clip((clearance - cfg.stop_distance) / span, 0.0, 1.0))
        proximity = 1.0 - scale

        # Obstacle on the left (positive lateral) steers right
        if lateral > 0.0:
            direction = -1.0
        elif lateral < 0.0:
            direction = 1.0
        else:
            direction = 1.0 if angular >= 0.0 else -1.0

        angular = angular + direction * cfg.k_avoid * proximity * cfg.max_angular
        angular = float(np.clip(angular, -cfg.max_angular, cfg.max_angular))
        linear = linear * scale

        return linear, angular

    def _arrive(self) -> VelocityCommand:
        path = self._path
        self._state = MotionState.ARRIVED
        logger.info(f"[Motion] arrived at ({path.final_waypoint[0]:.2f}, {path.final_waypoint[1]:.2f})")

        self._path = None
        self._waypoint_index = 0
        self._state = MotionState.IDLE

        if self.on_arrived:
            self.on_arrived(path)
        return self._emit(VelocityCommand.zero())

    def _emit(self, command: VelocityCommand) -> VelocityCommand:
        self.last_command = command
        return command
