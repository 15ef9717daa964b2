"""
Exploration controller module
Ties the grid model, obstacle extraction, frontier analysis, path planning
and motion control into one frontier-exploration loop
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, Optional, Set, Tuple

import numpy as np

from .. import config
from ..errors import InvalidGoal, NoPath, OutOfBounds, PlanningCancelled, StaleGrid, StaleInput, StalePose
from ..slam.frontier_detector import Frontier, FrontierConfig, FrontierDetector
from ..slam.obstacle_extractor import Obstacle, ObstacleExtractor, ObstacleExtractorConfig
from ..slam.occupancy_grid import GridModel, OccupancyGrid
from ..types import Path, Point, Pose, VelocityCommand
from .motion_controller import MotionController, MotionControllerConfig, MotionState
from .path_planner import PathPlanner, PathPlannerConfig

logger = logging.getLogger(__name__)


class ExplorationStatus(Enum):
    """Exploration progress"""
    WAITING_FOR_MAP = 0         # no snapshot yet
    EXPLORING = 1               # frontiers left
    COMPLETED = 2               # no Free cell borders Unknown in the current snapshot
    NO_REACHABLE_FRONTIER = 3   # no frontier could be planned to, retry on the next snapshot
    STOPPED = 4                 # threads stopped


@dataclass
class ExplorationConfig:
    """Exploration loop parameters"""
    control_rate: float = 20.0  # Hz
    grid_timeout: Optional[float] = 30.0  # s, None disables the check
    min_frontier_size: int = 3  # cells
    frontier_policy: str = 'nearest'
    min_goal_distance: float = 0.2  # frontiers closer than this are skipped (m)

    obstacles: ObstacleExtractorConfig = field(default_factory=ObstacleExtractorConfig)
    planner: PathPlannerConfig = field(default_factory=PathPlannerConfig)
    motion: MotionControllerConfig = field(default_factory=MotionControllerConfig)

    @classmethod
    def from_config(cls) -> 'ExplorationConfig':
        """Build the configuration from the module-level settings in config.py"""
        return cls(
            control_rate=config.CONTROL_LOOP_RATE,
            grid_timeout=config.GRID_TIMEOUT,
            min_frontier_size=config.FRONTIER_MIN_SIZE,
            frontier_policy=config.FRONTIER_POLICY,
            min_goal_distance=config.FRONTIER_MIN_GOAL_DISTANCE,
            obstacles=ObstacleExtractorConfig(
                min_cells=config.OBSTACLE_MIN_CELLS,
                classify_shapes=config.OBSTACLE_CLASSIFY_SHAPES,
                circle_score_threshold=config.OBSTACLE_CIRCLE_SCORE,
            ),
            planner=PathPlannerConfig(
                robot_radius=config.ROBOT_RADIUS,
                inflation_radius=config.PATH_INFLATION_RADIUS,
                allow_diagonal=config.PATH_ALLOW_DIAGONAL,
                diagonal_cost=config.PATH_DIAGONAL_COST,
                smooth=config.PATH_SMOOTH,
                smoothing_tolerance=config.PATH_SMOOTHING_TOLERANCE,
                cancel_check_interval=config.PATH_CANCEL_CHECK_INTERVAL,
            ),
            motion=MotionControllerConfig(
                max_linear=config.NAV_MAX_LINEAR_SPEED,
                max_angular=config.NAV_MAX_ANGULAR_SPEED,
                k_linear=config.NAV_K_LINEAR,
                k_angular=config.NAV_K_ANGULAR,
                rotate_in_place_angle=config.NAV_ROTATE_IN_PLACE_ANGLE,
                waypoint_tolerance=config.NAV_WAYPOINT_TOLERANCE,
                goal_tolerance=config.NAV_GOAL_TOLERANCE,
                pose_timeout=config.POSE_TIMEOUT,
                avoid_distance=config.AVOID_DISTANCE,
                stop_distance=config.AVOID_STOP_DISTANCE,
                clear_margin=config.AVOID_CLEAR_MARGIN,
                corridor_half_width=config.AVOID_CORRIDOR_HALF_WIDTH,
                k_avoid=config.AVOID_GAIN,
            ),
        )


class ExplorationController:
    """Frontier exploration controller

    Inputs (pose, map snapshots) are accepted at any time and never block.
    The control tick turns the latest pose and path into one velocity
    command; replanning picks the best reachable frontier and hands its path
    to the motion controller. Both can be driven synchronously
    (control_tick / replan) or by the two daemon threads started with
    start().

    Attributes:
        config: ExplorationConfig
        grid_model: GridModel holding the current snapshot
        extractor: ObstacleExtractor
        detector: FrontierDetector
        planner: PathPlanner
        motion: MotionController
        on_command: called with every VelocityCommand

    Example:
        >>> controller = ExplorationController(on_command=robot.send)
        >>> controller.submit_map(grid)
        >>> controller.submit_pose(pose)
        >>> controller.start()
    """

    def __init__(self,
                 config: ExplorationConfig = None,
                 on_command: Optional[Callable[[VelocityCommand], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config if config else ExplorationConfig()
        self.on_command = on_command
        self._clock = clock

        self.grid_model = GridModel(clock=clock)
        self.extractor = ObstacleExtractor(self.config.obstacles)
        self.detector = FrontierDetector(FrontierConfig(
            min_frontier_size=self.config.min_frontier_size,
            policy=self.config.frontier_policy,
        ))
        self.planner = PathPlanner(self.config.planner)
        self.motion = MotionController(self.config.motion, on_arrived=self._on_arrived)

        # Reference swaps and motion hand-over only
        self._lock = threading.Lock()
        self._motion_lock = threading.Lock()

        self._pose: Optional[Pose] = None
        self._pose_failed = False
        self._status = ExplorationStatus.WAITING_FOR_MAP
        self._goal: Optional[Point] = None
        self._last_command = VelocityCommand.zero()
        self._blacklist: Set[Point] = set()
        self._faults: Dict[str, StaleInput] = {}

        # Obstacle view published by the planner side, read by the control tick
        self._obstacles: Tuple[Obstacle, ...] = ()
        self._obstacles_version = 0

        # Replan requests: pending while requested != completed
        self._requested = 0
        self._completed = 0
        self._replan_event = threading.Event()
        self._cancel_event: Optional[threading.Event] = None

        # Threads
        self._stop_event = threading.Event()
        self._control_thread: Optional[threading.Thread] = None
        self._planner_thread: Optional[threading.Thread] = None

        # Statistics
        self.stats = {
            'ticks': 0,
            'replans': 0,
            'cancelled': 0,
            'goals_reached': 0,
            'pose_failures': 0,
            'tick_errors': 0,
        }

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def submit_pose(self, pose: Pose):
        """Replace the latest pose (a zero stamp is set to the current time)"""
        if pose.stamp == 0.0:
            pose = replace(pose, stamp=self._clock())
        with self._lock:
            self._pose = pose
            self._pose_failed = False

    def submit_map(self, grid: OccupancyGrid):
        """Load a new snapshot and request a replan

        Raises:
            GridFormatError: grid is not an OccupancyGrid
        """
        self.grid_model.load(grid)
        with self._lock:
            # Unreachable goals get another chance on a new map
            self._blacklist.clear()
            if self._status != ExplorationStatus.STOPPED:
                self._status = ExplorationStatus.EXPLORING
        self.request_replan()

    def report_pose_failure(self):
        """No pose this tick: the next control tick is skipped"""
        with self._lock:
            self._pose_failed = True
        self.stats['pose_failures'] += 1

    def request_replan(self):
        """Ask the planner for a new path, cancelling any in-flight request"""
        with self._lock:
            self._requested += 1
            if self._cancel_event is not None:
                self._cancel_event.set()
        self._replan_event.set()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> ExplorationStatus:
        return self._status

    @property
    def pose(self) -> Optional[Pose]:
        return self._pose

    @property
    def goal(self) -> Optional[Point]:
        return self._goal

    @property
    def replan_pending(self) -> bool:
        return self._requested != self._completed

    @property
    def faults(self) -> Dict[str, StaleInput]:
        return dict(self._faults)

    def _set_fault(self, key: str, fault: Optional[StaleInput]):
        if fault is None:
            if self._faults.pop(key, None) is not None:
                logger.info(f"[Explore] {key} stream recovered")
            return
        if key not in self._faults:
            logger.warning(f"[Explore] {fault}")
        self._faults[key] = fault

    # ------------------------------------------------------------------
    # Control tick
    # ------------------------------------------------------------------

    def control_tick(self, now: Optional[float] = None) -> VelocityCommand:
        """Run one control cycle and emit exactly one command

        Args:
            now: current monotonic time (s), default the controller clock

        Returns:
            the emitted VelocityCommand
        """
        now = self._clock() if now is None else now
        self.stats['ticks'] += 1

        try:
            command = self._compute_command(now)
        except Exception:
            logger.exception("[Explore] control tick failed, stopping the robot")
            self.stats['tick_errors'] += 1
            with self._motion_lock:
                self.motion.clear("tick error")
            command = VelocityCommand.zero()

        self._emit(command)
        return command

    def _compute_command(self, now: float) -> VelocityCommand:
        if self._status == ExplorationStatus.STOPPED:
            return VelocityCommand.zero()

        with self._lock:
            pose = self._pose
            skip = self._pose_failed
            self._pose_failed = False
        if skip:
            logger.debug("[Explore] no pose this tick, skipped")
            return VelocityCommand.zero()

        if not self.grid_model.has_snapshot:
            return VelocityCommand.zero()

        # Map stream
        grid_age = now - self.grid_model.loaded_at
        timeout = self.config.grid_timeout
        if timeout is not None and grid_age > timeout:
            self._set_fault('grid', StaleGrid(f"no map snapshot for {grid_age:.1f}s", grid_age))
            with self._motion_lock:
                self.motion.clear("stale map")
            return VelocityCommand.zero()
        self._set_fault('grid', None)

        # Pose stream
        if pose is None or now - pose.stamp > self.config.motion.pose_timeout:
            age = None if pose is None else now - pose.stamp
            message = "no pose received" if age is None else f"pose is {age:.2f}s old"
            self._set_fault('pose', StalePose(message, age))
        else:
            self._set_fault('pose', None)

        # May still be the previous snapshot's set until the planner publishes
        obstacles = self._obstacles
        with self._motion_lock:
            command = self.motion.tick(pose, now, obstacles)
            idle = self.motion.state == MotionState.IDLE

        if (idle and 'pose' not in self._faults
                and self._status == ExplorationStatus.EXPLORING
                and not self.replan_pending):
            self.request_replan()

        return command

    def _emit(self, command: VelocityCommand):
        self._last_command = command
        if self.on_command is None:
            return
        try:
            self.on_command(command)
        except Exception:
            logger.exception("[Explore] command callback failed")

    def _on_arrived(self, path: Path):
        self.stats['goals_reached'] += 1
        logger.info(f"[Explore] frontier reached at ({path.goal[0]:.2f}, {path.goal[1]:.2f})")
        self._goal = None
        self.request_replan()

    # ------------------------------------------------------------------
    # Replanning
    # ------------------------------------------------------------------

    def replan(self, now: Optional[float] = None,
               cancel_event: Optional[threading.Event] = None) -> Optional[Path]:
        """Pick the best reachable frontier and plan a path to it

        Frontiers are tried in rank order; a goal that raises InvalidGoal or
        NoPath is blacklisted and the next one is tried.

        Args:
            now: current monotonic time (s)
            cancel_event: threading.Event that abandons this call once set

        Returns:
            the new path, or None when nothing was planned

        Raises:
            PlanningCancelled: cancel_event was set, controller state is unchanged
        """
        now = self._clock() if now is None else now
        request = self._requested

        try:
            path = self._replan(now, cancel_event)
        except PlanningCancelled:
            self.stats['cancelled'] += 1
            raise

        self._completed = request
        return path

    def _replan(self, now: float, cancel_event: Optional[threading.Event]) -> Optional[Path]:
        if self._status == ExplorationStatus.STOPPED or not self.grid_model.has_snapshot:
            return None

        version = self.grid_model.version
        grid = self.grid_model.snapshot
        obstacles = self.grid_model.obstacles(self.extractor)
        if self.grid_model.version != version:
            raise PlanningCancelled("snapshot replaced during obstacle extraction")
        self._publish_obstacles(obstacles, version)

        pose = self._pose
        if pose is None or now - pose.stamp > self.config.motion.pose_timeout:
            logger.debug("[Explore] replan skipped: no fresh pose")
            return None

        frontiers = self.grid_model.frontiers(self.detector, pose)
        if self.grid_model.version != version:
            raise PlanningCancelled("snapshot replaced during replanning")

        self.stats['replans'] += 1

        if not frontiers:
            if self.detector.edge_mask(grid).any():
                # Only edge groups below min_frontier_size are left
                logger.warning("[Explore] only frontier speckle below the size threshold left, "
                               "waiting for the next map")
                self._finish(ExplorationStatus.NO_REACHABLE_FRONTIER, "frontier speckle only")
            else:
                logger.info("[Explore] no frontiers left, exploration complete")
                self._finish(ExplorationStatus.COMPLETED, "exploration complete")
            return None

        candidates = [
            f for f in frontiers
            if f.target not in self._blacklist and f.distance >= self.config.min_goal_distance
        ]
        logger.debug(f"[Explore] {len(frontiers)} frontiers, {len(candidates)} candidates")

        traversable = self.planner.traversable_mask(grid, obstacles)
        start = self._planning_start(grid, traversable, pose)

        for frontier in candidates:
            if cancel_event is not None and cancel_event.is_set():
                raise PlanningCancelled("replan superseded", frontier.target)

            goal = self._reachable_target(grid, traversable, frontier)
            try:
                path = self.planner.plan(grid, obstacles, start, goal, cancel_event=cancel_event)
            except (InvalidGoal, NoPath) as e:
                logger.info(f"[Explore] frontier ({frontier.target[0]:.2f}, "
                            f"{frontier.target[1]:.2f}) blacklisted: {e}")
                self._blacklist.add(frontier.target)
                continue

            # stop() may have run while the planner was searching
            with self._lock:
                if self._status == ExplorationStatus.STOPPED:
                    raise PlanningCancelled("controller stopped", goal)
                if cancel_event is not None and cancel_event.is_set():
                    raise PlanningCancelled("replan superseded", goal)
                self._goal = goal
                self._status = ExplorationStatus.EXPLORING
            with self._motion_lock:
                self.motion.set_path(path)
            logger.info(f"[Explore] new goal ({goal[0]:.2f}, {goal[1]:.2f}), "
                        f"{frontier.size} cells, path {path.length():.2f}m")
            return path

        logger.warning(f"[Explore] none of {len(frontiers)} frontiers is reachable, "
                       f"waiting for the next map")
        self._finish(ExplorationStatus.NO_REACHABLE_FRONTIER, "no reachable frontier")
        return None

    def _publish_obstacles(self, obstacles, version: int):
        """Swap in the obstacle set the control tick avoids"""
        with self._lock:
            if version > self._obstacles_version:
                self._obstacles = tuple(obstacles)
                self._obstacles_version = version

    def _finish(self, status: ExplorationStatus, reason: str):
        """Drop the goal and park in a terminal status unless stop() got there first"""
        with self._lock:
            if self._status == ExplorationStatus.STOPPED:
                raise PlanningCancelled("controller stopped")
            self._goal = None
            self._status = status
        with self._motion_lock:
            self.motion.clear(reason)

    @staticmethod
    def _reachable_target(grid: OccupancyGrid, traversable: np.ndarray, frontier: Frontier) -> Point:
        """Frontier target, moved to the nearest traversable member cell when it is inflated"""
        target_cell = grid.world_to_cell(frontier.target)
        if traversable[target_cell]:
            return frontier.target

        members = sorted(c for c in frontier.cells if traversable[c])
        if not members:
            return frontier.target
        best = min(members, key=lambda c: (c[0] - target_cell[0]) ** 2 + (c[1] - target_cell[1]) ** 2)
        return grid.cell_to_world(best)

    @staticmethod
    def _planning_start(grid: OccupancyGrid, traversable: np.ndarray, pose: Pose) -> Point:
        """Robot position, or the nearest traversable cell when the robot has drifted
        into the inflated band"""
        try:
            cell = grid.world_to_cell((pose.x, pose.y))
        except OutOfBounds:
            return (pose.x, pose.y)
        if traversable[cell]:
            return (pose.x, pose.y)

        free_cells = np.argwhere(traversable)
        if len(free_cells) == 0:
            return (pose.x, pose.y)
        dist_sq = (free_cells[:, 0] - cell[0]) ** 2 + (free_cells[:, 1] - cell[1]) ** 2
        row, col = free_cells[int(np.argmin(dist_sq))]
        logger.info(f"[Explore] robot inside the inflated band, planning from cell ({row}, {col})")
        return grid.cell_to_world((int(row), int(col)))

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def start(self):
        """Start the control loop and planner worker threads"""
        if self._control_thread is not None and self._control_thread.is_alive():
            return

        self._stop_event.clear()
        with self._lock:
            self._status = (ExplorationStatus.EXPLORING if self.grid_model.has_snapshot
                            else ExplorationStatus.WAITING_FOR_MAP)

        self._control_thread = threading.Thread(target=self._control_loop,
                                                name='nav-control', daemon=True)
        self._planner_thread = threading.Thread(target=self._planner_loop,
                                                name='nav-planner', daemon=True)
        self._control_thread.start()
        self._planner_thread.start()
        logger.info(f"[Explore] started, control loop at {self.config.control_rate}Hz")

    def stop(self, timeout: float = 1.0):
        """Stop both threads and leave the robot with a zero command"""
        self._stop_event.set()
        with self._lock:
            self._status = ExplorationStatus.STOPPED
            if self._cancel_event is not None:
                self._cancel_event.set()
        self._replan_event.set()

        for thread in (self._control_thread, self._planner_thread):
            if thread is not None:
                thread.join(timeout=timeout)
        self._control_thread = None
        self._planner_thread = None

        with self._motion_lock:
            self.motion.clear("stopped")
        self._emit(VelocityCommand.zero())
        logger.info("[Explore] stopped")

    @property
    def running(self) -> bool:
        return self._control_thread is not None and self._control_thread.is_alive()

    def _control_loop(self):
        period = 1.0 / self.config.control_rate
        while not self._stop_event.is_set():
            loop_start = time.monotonic()

            self.control_tick()

            elapsed = time.monotonic() - loop_start
            self._stop_event.wait(max(0.0, period - elapsed))

    def _planner_loop(self):
        while not self._stop_event.is_set():
            if not self._replan_event.wait(timeout=0.1):
                continue

            with self._lock:
                self._replan_event.clear()
                cancel = threading.Event()
                self._cancel_event = cancel
            if self._stop_event.is_set():
                break

            try:
                self.replan(cancel_event=cancel)
            except PlanningCancelled:
                logger.debug("[Explore] in-flight planning cancelled by a newer request")
            except Exception:
                logger.exception("[Explore] replanning failed")
            finally:
                with self._lock:
                    if self._cancel_event is cancel:
                        self._cancel_event = None

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def diagnostics(self) -> dict:
        """Read-only view of the controller for operators"""
        path = self.motion.path
        has_snapshot = self.grid_model.has_snapshot

        obstacles = self._obstacles
        frontiers = self.grid_model.frontiers(self.detector, self._pose) if has_snapshot else []

        return {
            'status': self._status.name,
            'motion_state': self.motion.state.name,
            'snapshot_version': self.grid_model.version,
            'map': self.grid_model.statistics(),
            'obstacles': [o.summary() for o in obstacles],
            'frontiers': [{'target': f.target, 'size': f.size} for f in frontiers],
            'goal': self._goal,
            'path_length': path.length() if path else 0.0,
            'waypoint_index': self.motion.waypoint_index,
            'blacklist': sorted(self._blacklist),
            'last_command': (self._last_command.linear, self._last_command.angular),
            'faults': [
                {'type': type(f).__name__, 'message': str(f), 'age': f.age}
                for f in self._faults.values()
            ],
            'stats': dict(self.stats),
        }
