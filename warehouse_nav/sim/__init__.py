"""
Simulation module
Ground-truth warehouse, unicycle robot and range sensor for demos and tests
"""

from .robot_sim import RobotSim, SensorSim, make_warehouse

__all__ = ['RobotSim', 'SensorSim', 'make_warehouse']
