"""
Occupancy grid model
Immutable map snapshots and the grid model that owns the current one
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .. import config
from ..errors import GridFormatError, OutOfBounds
from ..types import Cell, CellState, Point, Pose

logger = logging.getLogger(__name__)

_VALID_CODES = np.array([s.value for s in CellState], dtype=np.uint8)

_CHAR_STATES = {
    '.': CellState.FREE,
    '#': CellState.OCCUPIED,
    '?': CellState.UNKNOWN,
}


@dataclass
class MapConfig:
    """Map classification parameters"""
    resolution: float = config.MAP_RESOLUTION  # meters per cell

    # Probability maps
    free_threshold: float = config.MAP_FREE_THRESHOLD  # below is free
    occupied_threshold: float = config.MAP_OCCUPIED_THRESHOLD  # above is occupied

    # ROS int8 maps (-1 unknown, 0..100 occupancy)
    occupied_value: int = config.MAP_OCCUPIED_VALUE  # above is occupied


class OccupancyGrid:
    """Immutable occupancy grid snapshot

    Cells are stored row-major: cell (row, col) has flat index
    row * width + col. Row 0 is the bottom of the map, column 0 its left
    edge, and origin is the world pose of the lower-left corner of cell
    (0, 0).

    Attributes:
        width, height: size in cells
        resolution: meters per cell
        origin: world pose of the grid corner
        cells: read-only (height x width) array of CellState codes

    Example:
        >>> grid = OccupancyGrid(3, 2, 0.1, [0, 0, 1, 2, 2, 0])
        >>> grid.state_at((0, 2))
        <CellState.OCCUPIED: 1>
    """

    def __init__(self,
                 width: int,
                 height: int,
                 resolution: float,
                 cells,
                 origin: Optional[Pose] = None):
        """Build a snapshot, validating its dimensions

        Args:
            width, height: size in cells
            resolution: meters per cell, must be positive
            cells: flat row-major sequence or (height, width) array of CellState codes
            origin: world pose of the lower-left grid corner (default: map origin)

        Raises:
            GridFormatError: inconsistent dimensions, bad resolution or unknown codes
        """
        if int(width) != width or int(height) != height or width <= 0 or height <= 0:
            raise GridFormatError(f"grid dimensions must be positive integers, got {width}x{height}")
        if not resolution > 0 or not math.isfinite(resolution):
            raise GridFormatError(f"resolution must be positive, got {resolution}")

        data = np.asarray(cells)
        if data.size != width * height:
            raise GridFormatError(
                f"cell array has {data.size} entries, expected {width}x{height}={width * height}")
        if data.ndim == 2 and data.shape != (height, width):
            raise GridFormatError(f"cell array shape {data.shape} does not match ({height}, {width})")
        if data.size and not np.isin(data, _VALID_CODES).all():
            raise GridFormatError("cell array contains codes that are not CellState values")

        self.width = int(width)
        self.height = int(height)
        self.resolution = float(resolution)
        self.origin = origin if origin is not None else Pose(0.0, 0.0, 0.0)

        # Owned buffer, never handed out directly
        self._cells = np.array(data, dtype=np.uint8).reshape(self.height, self.width).copy()
        self._cells.flags.writeable = False

        self._cos = math.cos(self.origin.theta)
        self._sin = math.sin(self.origin.theta)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_occupancy_values(cls,
                              values,
                              width: int,
                              height: int,
                              resolution: float,
                              origin: Optional[Pose] = None,
                              config: MapConfig = None) -> 'OccupancyGrid':
        """Build a snapshot from ROS-style int8 occupancy values

        Negative values are unknown, values above config.occupied_value are
        occupied and everything else is free.
        """
        config = config if config else MapConfig()
        data = np.asarray(values, dtype=np.int16)
        if data.size != width * height:
            raise GridFormatError(
                f"occupancy array has {data.size} entries, expected {width * height}")

        cells = np.full(data.shape, CellState.FREE, dtype=np.uint8)
        cells[data > config.occupied_value] = CellState.OCCUPIED
        cells[data < 0] = CellState.UNKNOWN
        return cls(width, height, resolution, cells.ravel(), origin)

    @classmethod
    def from_probabilities(cls,
                           probs: np.ndarray,
                           resolution: float,
                           origin: Optional[Pose] = None,
                           config: MapConfig = None) -> 'OccupancyGrid':
        """Build a snapshot from a (height x width) occupancy probability map"""
        config = config if config else MapConfig()
        probs = np.asarray(probs, dtype=np.float32)
        if probs.ndim != 2:
            raise GridFormatError(f"probability map must be 2-D, got shape {probs.shape}")

        cells = np.full(probs.shape, CellState.UNKNOWN, dtype=np.uint8)
        cells[probs < config.free_threshold] = CellState.FREE
        cells[probs > config.occupied_threshold] = CellState.OCCUPIED
        height, width = probs.shape
        return cls(width, height, resolution, cells, origin)

    @classmethod
    def from_strings(cls,
                     rows: Sequence[str],
                     resolution: float = 1.0,
                     origin: Optional[Pose] = None) -> 'OccupancyGrid':
        """Build a snapshot from a text picture

        '.' is free, '#' occupied and '?' unknown. The first string is the
        top row of the map (highest row index).
        """
        if not rows:
            raise GridFormatError("text grid has no rows")
        width = len(rows[0])
        if any(len(r) != width for r in rows):
            raise GridFormatError("text grid rows have different lengths")

        try:
            cells = [[_CHAR_STATES[ch] for ch in row] for row in reversed(rows)]
        except KeyError as e:
            raise GridFormatError(f"unknown cell character {e.args[0]!r}") from e
        return cls(width, len(rows), resolution, np.array(cells, dtype=np.uint8), origin)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def cells(self) -> np.ndarray:
        """Read-only (height x width) array of CellState codes

        A view over the private buffer: its writeable flag cannot be switched back on.
        """
        return self._cells.view()

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    def in_bounds(self, cell: Cell) -> bool:
        row, col = cell
        return 0 <= row < self.height and 0 <= col < self.width

    def state_at(self, cell: Cell) -> CellState:
        if not self.in_bounds(cell):
            raise OutOfBounds(f"cell {cell} outside {self.height}x{self.width} grid", cell)
        return CellState(int(self._cells[cell[0], cell[1]]))

    def mask(self, state: CellState) -> np.ndarray:
        """Boolean (height x width) mask of cells in the given state"""
        return self._cells == state

    def counts(self) -> Dict[str, int]:
        return {
            'free': int(np.count_nonzero(self._cells == CellState.FREE)),
            'occupied': int(np.count_nonzero(self._cells == CellState.OCCUPIED)),
            'unknown': int(np.count_nonzero(self._cells == CellState.UNKNOWN)),
        }

    def neighbours4(self, cell: Cell) -> Iterator[Cell]:
        row, col = cell
        for dr, dc in ((-1, 0), (0, -1), (0, 1), (1, 0)):
            r, c = row + dr, col + dc
            if 0 <= r < self.height and 0 <= c < self.width:
                yield (r, c)

    def neighbours8(self, cell: Cell) -> Iterator[Cell]:
        row, col = cell
        for dr in (-1, 0, 1):
            for dc in (-1, 0, 1):
                if dr == 0 and dc == 0:
                    continue
                r, c = row + dr, col + dc
                if 0 <= r < self.height and 0 <= c < self.width:
                    yield (r, c)

    # ------------------------------------------------------------------
    # Coordinate transforms
    # ------------------------------------------------------------------

    def world_to_cell(self, point: Point, clamp: bool = False) -> Cell:
        """Map a world point to the (row, col) of the cell containing it

        Raises:
            OutOfBounds: point lies outside the grid and clamp is False
        """
        dx = point[0] - self.origin.x
        dy = point[1] - self.origin.y
        local_x = self._cos * dx + self._sin * dy
        local_y = -self._sin * dx + self._cos * dy

        col = int(math.floor(local_x / self.resolution))
        row = int(math.floor(local_y / self.resolution))

        if not self.in_bounds((row, col)):
            if not clamp:
                raise OutOfBounds(
                    f"point ({point[0]:.3f}, {point[1]:.3f}) outside grid extent", point)
            row = min(max(row, 0), self.height - 1)
            col = min(max(col, 0), self.width - 1)
        return (row, col)

    def cell_to_world(self, cell: Cell) -> Point:
        """World coordinates of the centre of a cell"""
        if not self.in_bounds(cell):
            raise OutOfBounds(f"cell {cell} outside {self.height}x{self.width} grid", cell)
        local_x = (cell[1] + 0.5) * self.resolution
        local_y = (cell[0] + 0.5) * self.resolution
        x = self.origin.x + self._cos * local_x - self._sin * local_y
        y = self.origin.y + self._sin * local_x + self._cos * local_y
        return (x, y)

    def cells_to_world(self, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
        """Vectorised cell-centre transform, returns an (N x 2) array"""
        local_x = (np.asarray(cols, dtype=np.float64) + 0.5) * self.resolution
        local_y = (np.asarray(rows, dtype=np.float64) + 0.5) * self.resolution
        xs = self.origin.x + self._cos * local_x - self._sin * local_y
        ys = self.origin.y + self._sin * local_x + self._cos * local_y
        return np.column_stack((xs, ys))

    def __repr__(self):
        return (f"OccupancyGrid({self.width}x{self.height}, res={self.resolution}, "
                f"origin=({self.origin.x:.2f}, {self.origin.y:.2f}, {self.origin.theta:.2f}))")


class _SnapshotState:
    """Current snapshot plus the views derived from it

    Replaced as a whole on every load, which drops every cached view.
    """
    __slots__ = ('grid', 'version', 'loaded_at', 'derived')

    def __init__(self, grid: OccupancyGrid, version: int, loaded_at: float):
        self.grid = grid
        self.version = version
        self.loaded_at = loaded_at
        self.derived = {}


class GridModel:
    """Owner of the current occupancy grid snapshot

    Readers get either the complete old snapshot or the complete new one:
    load() swaps a single reference to an immutable state object, and every
    query reads that reference once.

    Example:
        >>> model = GridModel()
        >>> model.load(OccupancyGrid.from_strings(['..', '.#']))
        >>> model.is_occupied((0, 1))
        True
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._state: Optional[_SnapshotState] = None
        self._version = 0

    def load(self, snapshot: OccupancyGrid):
        """Atomically replace the current snapshot (derived views are dropped)

        Raises:
            GridFormatError: snapshot is not an OccupancyGrid
        """
        if not isinstance(snapshot, OccupancyGrid):
            raise GridFormatError(f"expected an OccupancyGrid, got {type(snapshot).__name__}")

        with self._lock:
            self._version += 1
            self._state = _SnapshotState(snapshot, self._version, self._clock())

        logger.debug(f"[GridModel] snapshot v{self._version} loaded: {snapshot}")

    # ------------------------------------------------------------------
    # Snapshot access
    # ------------------------------------------------------------------

    @property
    def has_snapshot(self) -> bool:
        return self._state is not None

    @property
    def snapshot(self) -> Optional[OccupancyGrid]:
        state = self._state
        return state.grid if state else None

    @property
    def version(self) -> int:
        state = self._state
        return state.version if state else 0

    @property
    def loaded_at(self) -> Optional[float]:
        state = self._state
        return state.loaded_at if state else None

    def _require_state(self) -> _SnapshotState:
        state = self._state
        if state is None:
            raise OutOfBounds("no occupancy grid loaded")
        return state

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def cell_at(self, point: Point, clamp: bool = False) -> Cell:
        """Grid index (row, col) of a world point

        Raises:
            OutOfBounds: point outside the grid (unless clamp=True)
        """
        return self._require_state().grid.world_to_cell(point, clamp=clamp)

    def world_at(self, cell: Cell) -> Point:
        """Cell-centre world coordinates of a grid index"""
        return self._require_state().grid.cell_to_world(cell)

    def _state_is(self, cell: Cell, state: CellState) -> bool:
        current = self._state
        if current is None or not current.grid.in_bounds(cell):
            return False
        return current.grid.cells[cell[0], cell[1]] == state

    def is_occupied(self, cell: Cell) -> bool:
        return self._state_is(cell, CellState.OCCUPIED)

    def is_free(self, cell: Cell) -> bool:
        return self._state_is(cell, CellState.FREE)

    def is_unknown(self, cell: Cell) -> bool:
        return self._state_is(cell, CellState.UNKNOWN)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def obstacles(self, extractor) -> List:
        """Obstacles of the current snapshot, computed once per snapshot"""
        state = self._require_state()
        key = ('obstacles', id(extractor))
        cached = state.derived.get(key)
        if cached is None:
            cached = tuple(extractor.extract(state.grid))
            # Stored on the state it was computed from, never on a newer one
            state.derived[key] = cached
        return list(cached)

    def frontiers(self, detector, pose: Optional[Pose] = None, policy=None) -> List:
        """Ranked frontiers of the current snapshot

        Detection runs once per snapshot; ranking runs on every call because
        it depends on the pose.
        """
        state = self._require_state()
        key = ('frontiers', id(detector))
        cached = state.derived.get(key)
        if cached is None:
            cached = tuple(detector.detect(state.grid))
            state.derived[key] = cached
        return detector.rank(list(cached), pose, policy)

    def statistics(self) -> dict:
        """Cell counts of the current snapshot"""
        state = self._state
        if state is None:
            return {'version': 0, 'total_cells': 0, 'free_cells': 0,
                    'occupied_cells': 0, 'unknown_cells': 0, 'explored_ratio': 0.0}

        counts = state.grid.counts()
        total = state.grid.width * state.grid.height
        return {
            'version': state.version,
            'total_cells': total,
            'free_cells': counts['free'],
            'occupied_cells': counts['occupied'],
            'unknown_cells': counts['unknown'],
            'explored_ratio': (counts['free'] + counts['occupied']) / total,
        }
