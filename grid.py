# grid.py
"""
Uniform spatial grid rebuilt every step with a counting sort.

The grid partitions the domain into square cells whose side equals the base
interaction radius. Each step the particle indices are bucketed by cell:
count per cell, exclusive prefix sum for the start offsets, then a scatter
into one reordered index array. Neighbor queries then read a cell's members
as a contiguous slice.
"""
import logging
import numpy as np
from typing import Tuple
from numba import jit

# --- Data Contracts ---
#
# class SpatialGrid:
#   - __init__(self, domain_width: float, domain_height: float, cell_size: float):
#     - Inputs: domain size and cell size (the base interaction radius).
#     - Side Effects: Allocates nothing until the first rebuild.
#
#   - rebuild(self, positions: np.ndarray) -> None:
#     - Inputs: positions, float64 array of shape (N, 2), each inside
#       [0, domain_width) x [0, domain_height).
#     - Side Effects: Replaces counts, offsets and indices.
#     - Invariants:
#       - counts.sum() == N
#       - indices is a permutation of range(N).
#       - indices[offsets[c]:offsets[c] + counts[c]] holds exactly the
#         particles in cell c, in ascending particle index order.


def grid_dimensions(domain_width: float, domain_height: float, cell_size: float) -> Tuple[int, int]:
    """Cells per axis: floor(domain / cell_size), never less than one."""
    grid_width = max(1, int(np.floor(domain_width / cell_size)))
    grid_height = max(1, int(np.floor(domain_height / cell_size)))
    return grid_width, grid_height


@jit(nopython=True)
def cell_coord(value, cell_size, n_cells):
    """
    Cell coordinate along one axis.

    When the domain is not a whole number of cells the remainder strip
    belongs to the last cell, so the coordinate is clamped to the grid.
    """
    c = int(np.floor(value / cell_size))
    if c < 0:
        c = 0
    elif c >= n_cells:
        c = n_cells - 1
    return c


@jit(nopython=True)
def _build_grid_numba(positions, cell_size, grid_width, grid_height):
    """
    Numba-jitted counting sort of particle indices into grid cells.
    """
    particle_count = positions.shape[0]
    n_cells = grid_width * grid_height

    # 1. Count occupancy per cell
    counts = np.zeros(n_cells, dtype=np.int32)
    cell_ids = np.empty(particle_count, dtype=np.int32)
    for i in range(particle_count):
        cx = cell_coord(positions[i, 0], cell_size, grid_width)
        cy = cell_coord(positions[i, 1], cell_size, grid_height)
        c = cy * grid_width + cx
        cell_ids[i] = c
        counts[c] += 1

    # 2. Exclusive prefix sum
    offsets = np.zeros(n_cells, dtype=np.int32)
    running = 0
    for c in range(n_cells):
        offsets[c] = running
        running += counts[c]

    # 3. Scatter in particle order so every cell range stays sorted
    cursor = offsets.copy()
    indices = np.empty(particle_count, dtype=np.int32)
    for i in range(particle_count):
        c = cell_ids[i]
        indices[cursor[c]] = i
        cursor[c] += 1

    return counts, offsets, indices


def build_grid(positions: np.ndarray, cell_size: float, grid_width: int, grid_height: int):
    """
    Buckets particle indices by cell.

    Returns:
        Tuple of (counts, offsets, indices) int32 arrays.
    """
    positions = np.ascontiguousarray(positions, dtype=np.float64)
    return _build_grid_numba(positions, float(cell_size), int(grid_width), int(grid_height))


class SpatialGrid:
    """
    Per-step bucket index over particle positions.
    """
    def __init__(self, domain_width: float, domain_height: float, cell_size: float):
        self.cell_size = float(cell_size)
        self.grid_width, self.grid_height = grid_dimensions(domain_width, domain_height, cell_size)
        self.counts = np.zeros(self.cell_count, dtype=np.int32)
        self.offsets = np.zeros(self.cell_count, dtype=np.int32)
        self.indices = np.zeros(0, dtype=np.int32)

        logging.info(
            f"Spatial grid configured: {self.grid_width}x{self.grid_height} cells, "
            f"cell size {self.cell_size:.2f}."
        )

    @property
    def cell_count(self) -> int:
        return self.grid_width * self.grid_height

    def rebuild(self, positions: np.ndarray) -> None:
        """Re-buckets all particles from scratch. Nothing carries over between steps."""
        self.counts, self.offsets, self.indices = build_grid(
            positions, self.cell_size, self.grid_width, self.grid_height
        )

    def cell_of(self, x: float, y: float) -> int:
        cx = cell_coord(x, self.cell_size, self.grid_width)
        cy = cell_coord(y, self.cell_size, self.grid_height)
        return cy * self.grid_width + cx

    def cell_members(self, cell: int) -> np.ndarray:
        start = self.offsets[cell]
        return self.indices[start:start + self.counts[cell]]
