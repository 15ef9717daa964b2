"""
Obstacle extraction tests
"""

import numpy as np
import pytest
from scipy import ndimage

from warehouse_nav.slam.obstacle_extractor import ObstacleExtractor, ObstacleExtractorConfig
from warehouse_nav.slam.occupancy_grid import OccupancyGrid
from warehouse_nav.types import CellState


def random_grid(seed, shape=(30, 40), occupied=0.25, unknown=0.1):
    rng = np.random.default_rng(seed)
    draw = rng.random(shape)
    cells = np.full(shape, CellState.FREE, dtype=np.uint8)
    cells[draw < occupied] = CellState.OCCUPIED
    cells[(draw >= occupied) & (draw < occupied + unknown)] = CellState.UNKNOWN
    return OccupancyGrid(shape[1], shape[0], 0.05, cells)


def ring_grid(radius=6, size=21):
    """Hollow circle of occupied cells centred on the middle cell"""
    centre = size // 2
    rows, cols = np.mgrid[0:size, 0:size]
    dist = np.hypot(rows - centre, cols - centre)
    cells = np.full((size, size), CellState.FREE, dtype=np.uint8)
    cells[(dist >= radius - 0.5) & (dist <= radius + 0.5)] = CellState.OCCUPIED
    return OccupancyGrid(size, size, 1.0, cells)


# ============================================================================
# Partition property
# ============================================================================

@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_obstacles_partition_occupied_cells(seed):
    """Every occupied cell is in exactly one obstacle or in a discarded small cluster"""
    grid = random_grid(seed)
    extractor = ObstacleExtractor(ObstacleExtractorConfig(min_cells=3, classify_shapes=False))
    obstacles = extractor.extract(grid)

    occupied = {tuple(c) for c in np.argwhere(grid.mask(CellState.OCCUPIED)).tolist()}
    covered = set()
    for obstacle in obstacles:
        assert not (covered & obstacle.cells), "obstacles share a cell"
        covered |= obstacle.cells
        assert obstacle.size >= 3

    assert covered <= occupied

    # Whatever is left over forms only components below min_cells
    labels, count = ndimage.label(grid.mask(CellState.OCCUPIED), structure=np.ones((3, 3)))
    for label in range(1, count + 1):
        component = {tuple(c) for c in np.argwhere(labels == label).tolist()}
        if len(component) >= 3:
            assert component <= covered
            assert frozenset(component) in {o.cells for o in obstacles}
        else:
            assert not (component & covered)


def test_extract_is_idempotent():
    grid = random_grid(7)
    extractor = ObstacleExtractor()

    first = extractor.extract(grid)
    second = extractor.extract(grid)

    assert [o.cells for o in first] == [o.cells for o in second]
    assert [o.centroid for o in first] == [o.centroid for o in second]


def test_empty_and_free_grids_have_no_obstacles(open_grid):
    assert ObstacleExtractor().extract(open_grid) == []
    unknown = OccupancyGrid.from_strings(['???'] * 3)
    assert ObstacleExtractor().extract(unknown) == []


# ============================================================================
# Connectivity and filtering
# ============================================================================

def test_diagonal_cells_join_one_obstacle():
    grid = OccupancyGrid.from_strings([
        '#....',
        '.#...',
        '..#..',
    ])
    obstacles = ObstacleExtractor().extract(grid)

    assert len(obstacles) == 1
    assert obstacles[0].size == 3


def test_small_clusters_are_noise():
    grid = OccupancyGrid.from_strings([
        '#...###',
        '.......',
        '##.....',
    ])

    default = ObstacleExtractor().extract(grid)
    assert len(default) == 1
    assert default[0].size == 3

    keep_all = ObstacleExtractor(ObstacleExtractorConfig(min_cells=1)).extract(grid)
    assert sorted(o.size for o in keep_all) == [1, 2, 3]


def test_obstacles_ordered_by_lowest_member():
    grid = OccupancyGrid.from_strings([
        '###....',
        '.......',
        '....###',
    ])
    obstacles = ObstacleExtractor().extract(grid)

    assert [min(o.cells) for o in obstacles] == [(0, 4), (2, 0)]


# ============================================================================
# Geometry
# ============================================================================

class TestObstacleGeometry:

    def setup_method(self):
        rows = ['.' * 10] * 4 + ['....##....'] * 2 + ['.' * 10] * 4
        self.grid = OccupancyGrid.from_strings(rows)
        self.obstacle = ObstacleExtractor().extract(self.grid)[0]

    def test_summary_geometry(self):
        assert self.obstacle.cells == frozenset({(4, 4), (4, 5), (5, 4), (5, 5)})
        assert self.obstacle.bbox_cells == (4, 4, 5, 5)
        assert np.allclose(self.obstacle.centroid, (5.0, 5.0))
        assert np.allclose(self.obstacle.bbox, (4.0, 4.0, 6.0, 6.0))
        assert np.isclose(self.obstacle.radius, np.sqrt(0.5) + 0.5)

    def test_distance_to_uses_member_cells(self):
        assert np.isclose(self.obstacle.distance_to((0.5, 4.5)), 3.5)
        point, dist = self.obstacle.nearest_point((0.5, 4.5))
        assert np.allclose(point, (4.5, 4.5))
        assert np.isclose(dist, 4.0)

    def test_summary_dict(self):
        summary = self.obstacle.summary()
        assert summary['size'] == 4
        assert summary['shape'] in ('circle', 'rectangle')


def test_ring_is_classified_as_circle():
    obstacles = ObstacleExtractor().extract(ring_grid(radius=6))

    assert len(obstacles) == 1
    shape = obstacles[0].shape
    assert shape.kind == 'circle'
    assert np.allclose(shape.centre, (10.5, 10.5), atol=0.3)
    assert abs(shape.width - 13.0) < 1.5


def test_wall_is_classified_as_rectangle():
    grid = OccupancyGrid.from_strings(['.' * 24, '..' + '#' * 20 + '..', '.' * 24])
    shape = ObstacleExtractor().extract(grid)[0].shape

    assert shape.kind == 'rectangle'
    assert np.isclose(shape.length, 20.0)
    assert np.isclose(shape.width, 1.0)
    assert np.isclose(shape.rotation, 0.0) or np.isclose(shape.rotation, np.pi)


def test_shape_classification_can_be_disabled(block_grid):
    extractor = ObstacleExtractor(ObstacleExtractorConfig(classify_shapes=False))
    assert extractor.extract(block_grid)[0].shape is None
