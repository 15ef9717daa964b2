"""
Frontier exploration demo
Drives the exploration controller against the simulated warehouse and
saves snapshots of the map as it fills in
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from warehouse_nav import config
from warehouse_nav.navigation.controller import ExplorationConfig, ExplorationController, ExplorationStatus
from warehouse_nav.sim import RobotSim, SensorSim, make_warehouse
from warehouse_nav.types import CellState, Pose
from warehouse_nav.utils.logger import setup_logger
from warehouse_nav.visualization import save_snapshot_image

logger = logging.getLogger('warehouse_nav.demo')


def run_exploration(steps, rate, policy, save_dir=None, save_every=200):
    """Run the controller synchronously on the simulated robot

    Returns:
        (controller, robot, truth)
    """
    truth = make_warehouse()
    robot = RobotSim(truth, Pose(0.55, 0.55, 0.0),
                     max_linear=config.NAV_MAX_LINEAR_SPEED,
                     max_angular=config.NAV_MAX_ANGULAR_SPEED)
    sensor = SensorSim(truth, sensor_range=config.SIM_SENSOR_RANGE)

    explore_config = ExplorationConfig.from_config()
    explore_config.frontier_policy = policy
    explore_config.control_rate = rate
    controller = ExplorationController(explore_config, clock=robot.clock)

    dt = 1.0 / rate
    scan_every = max(1, int(round(config.SIM_MAP_UPDATE_PERIOD / dt)))

    for step in range(steps):
        controller.submit_pose(robot.pose)
        if step % scan_every == 0:
            controller.submit_map(sensor.scan(robot.pose))
        if controller.replan_pending:
            controller.replan()

        if controller.status in (ExplorationStatus.COMPLETED,
                                 ExplorationStatus.NO_REACHABLE_FRONTIER):
            break

        robot.step(controller.control_tick(), dt)

        if save_dir and step % save_every == 0:
            _save(controller, robot, os.path.join(save_dir, f'exploration_{step:05d}.png'))

    if save_dir:
        _save(controller, robot, os.path.join(save_dir, 'exploration_final.png'))

    return controller, robot, truth


def _save(controller, robot, filename):
    model = controller.grid_model
    save_snapshot_image(
        filename,
        model.snapshot,
        obstacles=model.obstacles(controller.extractor),
        frontiers=model.frontiers(controller.detector, robot.pose),
        path=controller.motion.path,
        pose=robot.pose,
        title=f'Exploration t={robot.time:.1f}s ({controller.status.name})',
    )


def main():
    parser = argparse.ArgumentParser(description='Frontier exploration in a simulated warehouse')
    parser.add_argument('--steps', type=int, default=6000,
                        help='maximum control ticks (default 6000)')
    parser.add_argument('--rate', type=float, default=config.CONTROL_LOOP_RATE,
                        help='control rate in Hz')
    parser.add_argument('--policy', choices=['nearest', 'largest', 'balanced'],
                        default=config.FRONTIER_POLICY, help='frontier ranking policy')
    parser.add_argument('--save', metavar='DIR', default=None,
                        help='save map snapshots to DIR')
    parser.add_argument('--log-level', default=config.LOG_LEVEL,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    args = parser.parse_args()

    log_file = os.path.join(config.LOG_DIR, 'demo_exploration.log') if config.ENABLE_FILE_LOG else None
    setup_logger('warehouse_nav', log_file, getattr(logging, args.log_level),
                 console=config.ENABLE_CONSOLE_LOG,
                 fmt=config.LOG_FORMAT, datefmt=config.LOG_DATE_FORMAT)

    if not config.validate_config():
        sys.exit(1)

    print("=" * 70)
    print(" warehouse_nav - frontier exploration demo")
    print("=" * 70)
    print(config.get_config_summary())
    print()

    controller, robot, truth = run_exploration(args.steps, args.rate, args.policy, args.save)

    known = controller.grid_model.snapshot
    truth_free = truth.mask(CellState.FREE)
    explored = (known.mask(CellState.FREE) & truth_free).sum() / truth_free.sum()
    stats = controller.stats

    print("\n" + "=" * 70)
    print(f" status:        {controller.status.name}")
    print(f" sim time:      {robot.time:.1f}s")
    print(f" explored:      {explored * 100:.1f}% of free space")
    print(f" distance:      {robot.distance:.2f}m ({robot.collisions} blocked moves)")
    print(f" goals reached: {stats['goals_reached']}, replans: {stats['replans']}")
    print("=" * 70)


if __name__ == '__main__':
    main()
