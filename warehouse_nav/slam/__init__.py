"""
Map module
Occupancy grid snapshots, obstacle extraction and frontier detection
"""

from .occupancy_grid import OccupancyGrid, GridModel, MapConfig
from .obstacle_extractor import Obstacle, ObstacleShape, ObstacleExtractor, ObstacleExtractorConfig
from .frontier_detector import Frontier, FrontierDetector, FrontierConfig, RANKING_POLICIES

__all__ = [
    'OccupancyGrid', 'GridModel', 'MapConfig',
    'Obstacle', 'ObstacleShape', 'ObstacleExtractor', 'ObstacleExtractorConfig',
    'Frontier', 'FrontierDetector', 'FrontierConfig', 'RANKING_POLICIES',
]
