# config.py - warehouse_nav configuration
# Edit this file and restart the process for changes to take effect

import logging

logger = logging.getLogger(__name__)

# ============================================================================
# Robot geometry
# ============================================================================
ROBOT_RADIUS = 0.15                # Half-width of the robot footprint (m)

# ============================================================================
# Map classification
# ============================================================================
MAP_RESOLUTION = 0.05              # Default meters per cell
MAP_FREE_THRESHOLD = 0.3           # Probability maps: < 0.3 is free
MAP_OCCUPIED_THRESHOLD = 0.7       # Probability maps: > 0.7 is occupied
MAP_OCCUPIED_VALUE = 3             # ROS int8 maps: value > 3 is occupied, < 0 unknown

# ============================================================================
# Obstacle extraction
# ============================================================================
OBSTACLE_MIN_CELLS = 3             # Smaller components are sensor noise
OBSTACLE_CLASSIFY_SHAPES = True    # Fit circle / rectangle to each obstacle
OBSTACLE_CIRCLE_SCORE = 0.05       # Circle fit accepted outright below this residual

# ============================================================================
# Frontier analysis
# ============================================================================
FRONTIER_MIN_SIZE = 3              # Minimum frontier size (cells) used for goals
FRONTIER_POLICY = 'nearest'        # Ranking policy
                                   # 'nearest'  - ascending distance from robot
                                   # 'largest'  - descending cell count
                                   # 'balanced' - log(size) weighted against distance
FRONTIER_MIN_GOAL_DISTANCE = 0.2   # Ignore frontiers closer than this (m)

# ============================================================================
# Path planning (A*)
# ============================================================================
PATH_INFLATION_RADIUS = 0.25       # Obstacle inflation (m), >= ROBOT_RADIUS
PATH_ALLOW_DIAGONAL = True         # 8-connected movement
PATH_DIAGONAL_COST = 1.414         # Diagonal step cost (sqrt 2)
PATH_SMOOTH = True                 # Line-of-sight Douglas-Peucker smoothing
PATH_SMOOTHING_TOLERANCE = 0.1     # Douglas-Peucker tolerance (m)
PATH_CANCEL_CHECK_INTERVAL = 256   # Expansions between cancellation checks

# ============================================================================
# Motion control
# ============================================================================
CONTROL_LOOP_RATE = 20             # Control loop frequency (Hz)
NAV_MAX_LINEAR_SPEED = 0.4         # m/s
NAV_MAX_ANGULAR_SPEED = 1.5        # rad/s
NAV_K_LINEAR = 0.8                 # Proportional gain on distance error
NAV_K_ANGULAR = 2.0                # Proportional gain on heading error
NAV_ROTATE_IN_PLACE_ANGLE = 1.0    # Turn on the spot above this heading error (rad)
NAV_WAYPOINT_TOLERANCE = 0.15      # Intermediate waypoint reached (m)
NAV_GOAL_TOLERANCE = 0.1           # Final waypoint reached (m)
POSE_TIMEOUT = 0.5                 # Pose older than this is stale (s)
GRID_TIMEOUT = 30.0                # Map older than this is stale (s), None disables

# Obstacle avoidance override (tune on the robot)
AVOID_DISTANCE = 0.35              # Enter avoidance below this clearance (m)
AVOID_STOP_DISTANCE = 0.12         # Linear velocity is zero at this clearance (m)
AVOID_CLEAR_MARGIN = 0.05          # Hysteresis before resuming path following (m)
AVOID_CORRIDOR_HALF_WIDTH = 0.2   # Half-width of the corridor ahead checked for obstacles (m)
AVOID_GAIN = 0.8                   # Fraction of max angular speed used to steer away

# ============================================================================
# Simulator (demos and tests)
# ============================================================================
SIM_SENSOR_RANGE = 1.5             # Sensor reveal range (m)
SIM_MAP_UPDATE_PERIOD = 1.0        # Seconds between map snapshots

# ============================================================================
# Visualization
# ============================================================================
VISUALIZE_FIGSIZE = (8, 8)
COLOR_FREE = (255, 255, 255)
COLOR_OCCUPIED = (0, 0, 0)
COLOR_UNKNOWN = (128, 128, 128)

# ============================================================================
# Logging
# ============================================================================
LOG_DIR = 'data/logs'
LOG_LEVEL = 'INFO'                 # DEBUG | INFO | WARNING | ERROR
ENABLE_FILE_LOG = False
ENABLE_CONSOLE_LOG = True
LOG_FORMAT = '[%(asctime)s] %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%H:%M:%S'


def get_config_summary():
    """Return a short summary of the key parameters"""
    return (
        f"robot: radius={ROBOT_RADIUS}m\n"
        f"map: resolution={MAP_RESOLUTION}m/cell, "
        f"free<{MAP_FREE_THRESHOLD}, occupied>{MAP_OCCUPIED_THRESHOLD}\n"
        f"obstacles: min_cells={OBSTACLE_MIN_CELLS}\n"
        f"frontiers: min_size={FRONTIER_MIN_SIZE}, policy={FRONTIER_POLICY}\n"
        f"planner: inflation={PATH_INFLATION_RADIUS}m, diagonal={PATH_ALLOW_DIAGONAL}\n"
        f"control: {CONTROL_LOOP_RATE}Hz, v<={NAV_MAX_LINEAR_SPEED}m/s, "
        f"w<={NAV_MAX_ANGULAR_SPEED}rad/s\n"
        f"avoidance: avoid={AVOID_DISTANCE}m, stop={AVOID_STOP_DISTANCE}m\n"
        f"logging: {LOG_LEVEL} -> {LOG_DIR}"
    )


def validate_config():
    """Check the parameters for consistency

    Returns:
        True when no errors were found (warnings are allowed)
    """
    errors = []
    warnings = []

    if MAP_RESOLUTION <= 0:
        errors.append("MAP_RESOLUTION must be positive")
    if not 0.0 <= MAP_FREE_THRESHOLD < MAP_OCCUPIED_THRESHOLD <= 1.0:
        errors.append("MAP_FREE_THRESHOLD must be below MAP_OCCUPIED_THRESHOLD")
    if PATH_INFLATION_RADIUS < ROBOT_RADIUS:
        errors.append("PATH_INFLATION_RADIUS must be at least ROBOT_RADIUS")
    if CONTROL_LOOP_RATE <= 0:
        errors.append("CONTROL_LOOP_RATE must be positive")
    if NAV_MAX_LINEAR_SPEED <= 0 or NAV_MAX_ANGULAR_SPEED <= 0:
        errors.append("NAV_MAX_LINEAR_SPEED and NAV_MAX_ANGULAR_SPEED must be positive")
    if AVOID_STOP_DISTANCE >= AVOID_DISTANCE:
        errors.append("AVOID_STOP_DISTANCE must be below AVOID_DISTANCE")
    if FRONTIER_POLICY not in ('nearest', 'largest', 'balanced'):
        errors.append(f"unknown FRONTIER_POLICY {FRONTIER_POLICY!r}")

    if CONTROL_LOOP_RATE < 10:
        warnings.append(f"CONTROL_LOOP_RATE={CONTROL_LOOP_RATE}Hz is sluggish, use tens of Hz")
    if POSE_TIMEOUT * CONTROL_LOOP_RATE < 2:
        warnings.append("POSE_TIMEOUT is shorter than two control periods")
    if NAV_MAX_LINEAR_SPEED > 2.0:
        warnings.append(f"NAV_MAX_LINEAR_SPEED={NAV_MAX_LINEAR_SPEED}m/s may be too fast indoors")

    for err in errors:
        logger.error(f"[Config] {err}")
    for warn in warnings:
        logger.warning(f"[Config] {warn}")

    return len(errors) == 0


if __name__ == '__main__':
    print(get_config_summary())
    validate_config()
