"""
Visualization module
Static diagnostic rendering of map snapshots
"""

from .map_visualizer import render_snapshot, save_snapshot_image

__all__ = ['render_snapshot', 'save_snapshot_image']
