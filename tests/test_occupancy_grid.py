"""
Occupancy grid snapshot and grid model tests
"""

import math
import threading

import numpy as np
import pytest

from warehouse_nav.errors import GridFormatError, OutOfBounds
from warehouse_nav.slam.obstacle_extractor import ObstacleExtractor
from warehouse_nav.slam.frontier_detector import FrontierDetector
from warehouse_nav.slam.occupancy_grid import GridModel, MapConfig, OccupancyGrid
from warehouse_nav.types import CellState, Pose


# ============================================================================
# OccupancyGrid construction
# ============================================================================

def test_grid_from_flat_cells():
    """Flat row-major cells: index = row * width + col"""
    grid = OccupancyGrid(3, 2, 0.1, [0, 0, 1, 2, 2, 0])

    assert grid.shape == (2, 3)
    assert grid.state_at((0, 2)) == CellState.OCCUPIED
    assert grid.state_at((1, 0)) == CellState.UNKNOWN
    assert grid.state_at((1, 2)) == CellState.FREE


@pytest.mark.parametrize("width, height, resolution, cells", [
    (3, 2, 0.1, [0] * 5),            # too few cells
    (0, 2, 0.1, []),                 # empty width
    (2, 2, 0.0, [0] * 4),            # zero resolution
    (2, 2, -1.0, [0] * 4),           # negative resolution
    (2, 2, 0.1, [0, 1, 2, 7]),       # unknown code
])
def test_grid_rejects_bad_input(width, height, resolution, cells):
    with pytest.raises(GridFormatError):
        OccupancyGrid(width, height, resolution, cells)


def test_grid_rejects_mismatched_2d_shape():
    with pytest.raises(GridFormatError):
        OccupancyGrid(3, 2, 0.1, np.zeros((3, 2), dtype=np.uint8))


def test_grid_cells_are_read_only():
    grid = OccupancyGrid.from_strings(['..', '..'])
    with pytest.raises(ValueError):
        grid.cells[0, 0] = CellState.OCCUPIED


def test_grid_cells_cannot_be_made_writeable():
    cells = np.zeros((2, 2), dtype=np.uint8)
    grid = OccupancyGrid(2, 2, 0.1, cells)

    with pytest.raises(ValueError):
        grid.cells.flags.writeable = True

    # The caller's array is copied, not shared
    cells[0, 0] = CellState.OCCUPIED
    assert grid.state_at((0, 0)) == CellState.FREE


def test_grid_from_strings_top_row_first():
    grid = OccupancyGrid.from_strings([
        '#.?',
        '...',
    ])

    assert grid.state_at((1, 0)) == CellState.OCCUPIED
    assert grid.state_at((1, 2)) == CellState.UNKNOWN
    assert grid.state_at((0, 0)) == CellState.FREE


def test_grid_from_strings_errors():
    with pytest.raises(GridFormatError):
        OccupancyGrid.from_strings(['..', '.'])
    with pytest.raises(GridFormatError):
        OccupancyGrid.from_strings(['.x'])
    with pytest.raises(GridFormatError):
        OccupancyGrid.from_strings([])


def test_grid_from_occupancy_values():
    """ROS int8 values: < 0 unknown, > occupied_value occupied"""
    grid = OccupancyGrid.from_occupancy_values([-1, 0, 50, 3, 4, 100], 3, 2, 0.05)

    assert grid.cells[0].tolist() == [CellState.UNKNOWN, CellState.FREE, CellState.OCCUPIED]
    assert grid.cells[1].tolist() == [CellState.FREE, CellState.OCCUPIED, CellState.OCCUPIED]


def test_grid_from_occupancy_values_custom_threshold():
    grid = OccupancyGrid.from_occupancy_values([10, 60], 2, 1, 0.05,
                                               config=MapConfig(occupied_value=50))
    assert grid.cells[0].tolist() == [CellState.FREE, CellState.OCCUPIED]


def test_grid_from_probabilities():
    grid = OccupancyGrid.from_probabilities(np.array([[0.1, 0.3, 0.5, 0.7, 0.9]]), 0.05)

    assert grid.cells[0].tolist() == [
        CellState.FREE, CellState.UNKNOWN, CellState.UNKNOWN,
        CellState.UNKNOWN, CellState.OCCUPIED,
    ]


def test_grid_counts(block_grid):
    counts = block_grid.counts()
    assert counts == {'free': 96, 'occupied': 4, 'unknown': 0}


# ============================================================================
# Coordinate transforms
# ============================================================================

class TestTransforms:
    """world <-> cell conversions"""

    def setup_method(self):
        self.grid = OccupancyGrid(4, 3, 0.5, [0] * 12, origin=Pose(1.0, 2.0))

    def test_world_to_cell(self):
        assert self.grid.world_to_cell((1.6, 2.1)) == (0, 1)
        assert self.grid.world_to_cell((2.99, 3.49)) == (2, 3)

    def test_cell_to_world_is_cell_centre(self):
        assert np.allclose(self.grid.cell_to_world((0, 0)), (1.25, 2.25))
        assert np.allclose(self.grid.cell_to_world((2, 3)), (2.75, 3.25))

    def test_cell_centres_map_back(self):
        for row in range(self.grid.height):
            for col in range(self.grid.width):
                assert self.grid.world_to_cell(self.grid.cell_to_world((row, col))) == (row, col)

    def test_out_of_bounds(self):
        with pytest.raises(OutOfBounds):
            self.grid.world_to_cell((0.9, 2.1))
        with pytest.raises(OutOfBounds):
            self.grid.world_to_cell((1.1, 3.6))
        with pytest.raises(OutOfBounds):
            self.grid.cell_to_world((3, 0))

    def test_clamp(self):
        assert self.grid.world_to_cell((0.0, 0.0), clamp=True) == (0, 0)
        assert self.grid.world_to_cell((10.0, 10.0), clamp=True) == (2, 3)

    def test_vectorised_matches_scalar(self):
        centres = self.grid.cells_to_world(np.array([0, 2]), np.array([1, 3]))
        assert np.allclose(centres[0], self.grid.cell_to_world((0, 1)))
        assert np.allclose(centres[1], self.grid.cell_to_world((2, 3)))

    def test_rotated_origin(self):
        grid = OccupancyGrid(2, 2, 1.0, [0] * 4, origin=Pose(0.0, 0.0, math.pi / 2))

        centre = grid.cell_to_world((0, 0))
        assert np.allclose(centre, (-0.5, 0.5))
        assert grid.world_to_cell(centre) == (0, 0)


# ============================================================================
# GridModel
# ============================================================================

class CountingExtractor(ObstacleExtractor):
    """ObstacleExtractor that counts its calls"""

    def __init__(self):
        super().__init__()
        self.calls = 0

    def extract(self, grid):
        self.calls += 1
        return super().extract(grid)


class TestGridModel:

    def setup_method(self):
        self.now = 100.0
        self.model = GridModel(clock=lambda: self.now)

    def test_empty_model(self):
        assert not self.model.has_snapshot
        assert self.model.snapshot is None
        assert self.model.version == 0
        assert not self.model.is_occupied((0, 0))
        assert not self.model.is_free((0, 0))
        assert self.model.statistics()['total_cells'] == 0

        with pytest.raises(OutOfBounds):
            self.model.cell_at((0.0, 0.0))
        with pytest.raises(OutOfBounds):
            self.model.obstacles(ObstacleExtractor())

    def test_load_and_query(self, block_grid):
        self.model.load(block_grid)

        assert self.model.has_snapshot
        assert self.model.version == 1
        assert self.model.loaded_at == 100.0
        assert self.model.is_occupied((4, 4))
        assert self.model.is_free((0, 0))
        assert not self.model.is_unknown((0, 0))
        assert self.model.cell_at((4.5, 5.5)) == (5, 4)
        assert np.allclose(self.model.world_at((5, 4)), (4.5, 5.5))

    def test_out_of_bounds_queries_are_false(self, block_grid):
        self.model.load(block_grid)

        assert not self.model.is_occupied((-1, 0))
        assert not self.model.is_free((10, 10))
        assert not self.model.is_unknown((0, 99))

    def test_load_rejects_non_grid(self):
        with pytest.raises(GridFormatError):
            self.model.load(np.zeros((3, 3)))

    def test_statistics(self, ringed_grid):
        self.model.load(ringed_grid)
        stats = self.model.statistics()

        assert stats['total_cells'] == 64
        assert stats['free_cells'] == 36
        assert stats['unknown_cells'] == 28
        assert np.isclose(stats['explored_ratio'], 36 / 64)

    def test_derived_views_are_cached_per_snapshot(self, block_grid):
        extractor = CountingExtractor()
        self.model.load(block_grid)

        first = self.model.obstacles(extractor)
        second = self.model.obstacles(extractor)
        assert extractor.calls == 1
        assert first == second

        self.model.load(OccupancyGrid.from_strings(['.' * 10] * 10))
        assert self.model.obstacles(extractor) == []
        assert extractor.calls == 2

    def test_frontiers_ranked_per_call(self, ringed_grid):
        self.model.load(ringed_grid)
        detector = FrontierDetector()

        near_origin = self.model.frontiers(detector, Pose(1.5, 1.5))
        assert near_origin[0].distance is not None
        assert self.model.frontiers(detector)[0].distance is None

    def test_readers_see_whole_snapshots(self):
        """Concurrent loads never expose a mix of two snapshots"""
        free = OccupancyGrid.from_strings(['.' * 20] * 20)
        blocked = OccupancyGrid.from_strings(['#' * 20] * 20)
        self.model.load(free)

        stop = threading.Event()
        mixed = []

        def writer():
            toggle = False
            while not stop.is_set():
                self.model.load(blocked if toggle else free)
                toggle = not toggle

        def reader():
            while not stop.is_set():
                grid = self.model.snapshot
                values = np.unique(grid.cells)
                if len(values) != 1:
                    mixed.append(values)

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        stop.wait(0.3)
        stop.set()
        for t in threads:
            t.join()

        assert not mixed
        assert self.model.version > 1
