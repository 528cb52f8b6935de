# simulation.py
"""
Handles the core simulation logic and physics calculations.

This module defines the Simulation class, which advances the particle
system by one time step. A step has two phases separated by a barrier:

1. Rebuild the spatial grid from the positions committed by the previous
   step.
2. For every particle in parallel, gather the forces of its neighbors from
   the 3x3 block of cells around it (toroidal distances), then integrate
   velocity and position with density-adaptive damping and periodic wrap.

Phase 2 reads a frozen snapshot of the particle buffers and writes into a
second pair of buffers. The two pairs are swapped once the phase is over,
so no particle ever sees another particle's next-step state.
"""
import logging
import numpy as np
from typing import Optional, Tuple
from numba import jit, prange

from params import SimParams
from particle import ParticleSystem
from forces import ForceModel, effective_radius, force_magnitude
from grid import SpatialGrid, cell_coord

# --- Data Contracts ---
#
# class Simulation:
#   - __init__(self, particles: ParticleSystem, params: SimParams):
#     - Inputs:
#       - particles: An initialized ParticleSystem object.
#       - params: Validated SimParams.
#     - Outputs: None
#     - Side Effects: Builds the force model and the spatial grid and
#       allocates the back buffers used for double buffering.
#     - Raises: ValueError if the particle system and params disagree on
#       the number of particle types or on the domain size.
#
#   - step(self) -> None:
#     - Inputs: None (operates on internal state).
#     - Outputs: None
#     - Side Effects: Replaces particles.positions and particles.velocities
#       with the next-step arrays (the previous arrays become the back
#       buffers). Callers must re-read the attributes after each step.
#     - Invariants: Particle count and types remain constant. Every
#       position stays inside [0, domain_width) x [0, domain_height).


@jit(nopython=True)
def minimum_image(d, size):
    """Shortest signed displacement along one periodic axis."""
    return d - np.floor(d / size + 0.5) * size


@jit(nopython=True)
def wrap(value, size):
    """
    Folds a coordinate into [0, size).

    value + size - size * floor((value + size) / size) is exact for the
    usual one-domain overshoot; the guards fold the rare rounding result
    that lands on size (or just below zero) back into range.
    """
    temp = value + size
    wrapped = temp - size * np.floor(temp / size)
    if wrapped >= size:
        wrapped -= size
    if wrapped < 0.0:
        wrapped += size
    if wrapped >= size:
        wrapped = 0.0
    return wrapped


@jit(nopython=True)
def adaptive_multiplier(neighbor_count, max_expected_neighbors, density_balance):
    """
    Force response scale from local crowding.

    Sparse neighborhoods are boosted towards lerp(1, 4, balance), dense
    ones damped towards lerp(1, 0.01, balance). balance == 0 gives 1.0.
    """
    density = neighbor_count / max_expected_neighbors
    if density < 0.0:
        density = 0.0
    elif density > 1.0:
        density = 1.0
    min_mult = 1.0 * (1.0 - density_balance) + 0.01 * density_balance
    max_mult = 1.0 * (1.0 - density_balance) + 4.0 * density_balance
    return max_mult * (1.0 - density) + min_mult * density


@jit(nopython=True)
def integrate(px, py, vx, vy, fx, fy, neighbor_count,
              friction, time_step, density_balance, max_expected_neighbors,
              world_width, world_height):
    """
    Semi-implicit Euler update with friction, adaptive damping and wrap.

    Returns:
        Tuple (x, y, vx, vy) of the next-step state.
    """
    mult = adaptive_multiplier(neighbor_count, max_expected_neighbors, density_balance)
    new_vx = vx * friction + fx * time_step * mult
    new_vy = vy * friction + fy * time_step * mult
    new_x = wrap(px + new_vx * time_step, world_width)
    new_y = wrap(py + new_vy * time_step, world_height)
    return new_x, new_y, new_vx, new_vy


@jit(nopython=True)
def _scan_range(cell, n_cells, wrap_cells):
    """First cell and number of cells to visit along one axis."""
    if wrap_cells and n_cells < 3:
        # Wrapping a narrow grid would visit the same column twice.
        return 0, n_cells
    return cell - 1, 3


@jit(nopython=True)
def _query_neighbors_numba(
    i, positions, types, counts, offsets, indices,
    grid_width, grid_height, cell_size, wrap_cells,
    force_table, radius_by_type, base_radius, radius_ratio,
    repulsion, attraction, k, force_multiplier,
    world_width, world_height, out_ids
):
    """
    Sums the forces acting on particle i and counts its neighbors.

    Neighbors are searched in the 3x3 cell block around i. The separation
    uses the minimum image on both axes. When out_ids is non-empty the
    accepted neighbor indices are written into it in scan order.
    Particles whose type is outside the force table neither receive nor
    exert forces.
    """
    num_types = force_table.shape[0]
    record = out_ids.shape[0] > 0
    fx = 0.0
    fy = 0.0
    neighbors_count = 0

    my_type = types[i]
    if my_type < 0 or my_type >= num_types:
        return fx, fy, neighbors_count

    radius = effective_radius(base_radius, radius_by_type[my_type], radius_ratio)
    px = positions[i, 0]
    py = positions[i, 1]
    cell_x = cell_coord(px, cell_size, grid_width)
    cell_y = cell_coord(py, cell_size, grid_height)
    x_start, x_span = _scan_range(cell_x, grid_width, wrap_cells)
    y_start, y_span = _scan_range(cell_y, grid_height, wrap_cells)

    for oy in range(y_span):
        ny = y_start + oy
        if wrap_cells:
            ny = ny % grid_height
        elif ny < 0 or ny >= grid_height:
            continue
        for ox in range(x_span):
            nx = x_start + ox
            if wrap_cells:
                nx = nx % grid_width
            elif nx < 0 or nx >= grid_width:
                continue

            cell = ny * grid_width + nx
            start = offsets[cell]
            for n in range(counts[cell]):
                j = indices[start + n]
                if j == i:
                    continue
                other_type = types[j]
                if other_type < 0 or other_type >= num_types:
                    continue

                dx = minimum_image(positions[j, 0] - px, world_width)
                dy = minimum_image(positions[j, 1] - py, world_height)
                dist = np.sqrt(dx * dx + dy * dy)
                if dist == 0.0 or dist > radius:
                    continue

                if record:
                    out_ids[neighbors_count] = j
                neighbors_count += 1

                r = dist / radius
                f = force_magnitude(
                    force_table[my_type, other_type], r,
                    repulsion, attraction, k, force_multiplier
                )
                fx += dx / dist * f
                fy += dy / dist * f

    return fx, fy, neighbors_count


@jit(nopython=True, parallel=True)
def _step_numba(
    positions, velocities, types, new_positions, new_velocities, neighbor_counts,
    counts, offsets, indices, grid_width, grid_height, cell_size, wrap_cells,
    force_table, radius_by_type, base_radius, radius_ratio,
    repulsion, attraction, k, force_multiplier,
    friction, time_step, density_balance, max_expected_neighbors,
    world_width, world_height
):
    """
    Numba-jitted force and integration phase, one task per particle.

    Reads positions/velocities only and writes new_positions/new_velocities
    only, so the iteration order across particles cannot change results.
    """
    particle_count = positions.shape[0]
    no_ids = np.empty(0, dtype=np.int32)
    for i in prange(particle_count):
        fx, fy, count = _query_neighbors_numba(
            i, positions, types, counts, offsets, indices,
            grid_width, grid_height, cell_size, wrap_cells,
            force_table, radius_by_type, base_radius, radius_ratio,
            repulsion, attraction, k, force_multiplier,
            world_width, world_height, no_ids
        )
        neighbor_counts[i] = count
        x, y, vx, vy = integrate(
            positions[i, 0], positions[i, 1], velocities[i, 0], velocities[i, 1],
            fx, fy, count, friction, time_step, density_balance,
            max_expected_neighbors, world_width, world_height
        )
        new_positions[i, 0] = x
        new_positions[i, 1] = y
        new_velocities[i, 0] = vx
        new_velocities[i, 1] = vy


class Simulation:
    """
    Advances the particle system one step at a time using a spatial grid,
    double-buffered particle state and a parallel per-particle kernel.
    """
    def __init__(self, particles: ParticleSystem, params: SimParams):
        """
        Initializes the simulation environment.

        Args:
            particles (ParticleSystem): The particle system to simulate.
            params (SimParams): Validated simulation parameters.
        """
        self.particles = particles
        self.step_count = 0
        self.rng = np.random.default_rng(params.seed)
        self._configure(params)
        self._allocate_buffers()

        logging.info("Simulation logic initialized and configuration validated.")

    def _configure(self, params: SimParams) -> None:
        if self.particles.particle_types != params.particle_types:
            msg = (
                f"Configuration error: particle system has {self.particles.particle_types} "
                f"types but params declare {params.particle_types}."
            )
            logging.critical(msg)
            raise ValueError(msg)
        if (self.particles.width, self.particles.height) != (params.domain_width, params.domain_height):
            msg = (
                f"Configuration error: particle domain {self.particles.width}x{self.particles.height} "
                f"does not match params domain {params.domain_width}x{params.domain_height}."
            )
            logging.critical(msg)
            raise ValueError(msg)

        edited = getattr(self, "force_model", None)
        self.params = params
        self.force_model = ForceModel(params)
        if edited is not None and edited.force_table.shape == self.force_model.force_table.shape:
            # Keep affinity edits made through the UI or set_affinity
            self.force_model.force_table = edited.force_table
        self.grid = SpatialGrid(params.domain_width, params.domain_height, params.base_radius)
        self.world_width = params.domain_width
        self.world_height = params.domain_height

        if params.radius_ratio > 0 and np.any(params.radius_by_type > 0):
            logging.warning(
                "Some effective radii exceed the grid cell size; neighbors beyond one "
                "cell are not visited by the 3x3 scan."
            )
        if not params.wrap_neighbor_cells:
            logging.info(
                "Neighbor cell scan clips at the grid border; pairs that only meet "
                "across the domain edge may be missed."
            )

    def _allocate_buffers(self) -> None:
        n = self.particles.particle_count
        self._back_positions = np.empty((n, 2), dtype=np.float64)
        self._back_velocities = np.empty((n, 2), dtype=np.float64)
        self.neighbor_counts = np.zeros(n, dtype=np.int32)

    # --- Reconfiguration (only between steps) ---

    @property
    def force_table(self) -> np.ndarray:
        return self.force_model.force_table

    def set_params(self, params: SimParams) -> None:
        """
        Swaps in a new configuration, e.g. after a UI edit.

        Affinity edits made since the last configuration are carried over
        while the type count is unchanged; use set_force_table to replace
        the table itself.
        """
        self._configure(params)
        logging.info("Simulation parameters reconfigured.")

    def set_force_table(self, table) -> None:
        self.force_model.set_table(table)

    def set_affinity(self, my_type: int, other_type: int, value: float) -> None:
        self.force_model.set_affinity(my_type, other_type, value)

    def randomize_force_table(self) -> None:
        """
        Replaces the affinity table with random values between -1.0 and 1.0.
        """
        self.force_model.randomize(self.rng)

    def reset_force_table(self) -> None:
        self.force_model.reset()

    def reset_particles(self, particles: ParticleSystem) -> None:
        """Replaces the particle buffer; the count may differ from before. The affinity table is kept."""
        self.particles = particles
        self._configure(self.params)
        self._allocate_buffers()
        self.step_count = 0
        logging.info(f"Particle buffer replaced ({particles.particle_count} particles).")

    # --- Stepping ---

    def _kernel_args(self):
        p = self.params
        fm = self.force_model
        return (
            self.grid.counts, self.grid.offsets, self.grid.indices,
            self.grid.grid_width, self.grid.grid_height, self.grid.cell_size,
            bool(p.wrap_neighbor_cells),
            fm.force_table, fm.radius_by_type, p.base_radius, float(p.radius_ratio),
            float(p.repulsion), float(p.attraction), float(p.decay_sharpness),
            float(p.force_multiplier),
        )

    def step(self) -> None:
        """
        Executes one time step of the simulation.
        """
        front_positions = self.particles.positions
        front_velocities = self.particles.velocities

        # 1. Rebuild the spatial grid from the committed positions (barrier)
        self.grid.rebuild(front_positions)

        # 2. Forces and integration, reading front, writing back
        p = self.params
        _step_numba(
            front_positions, front_velocities, self.particles.types,
            self._back_positions, self._back_velocities, self.neighbor_counts,
            *self._kernel_args(),
            float(p.friction), float(p.time_step), float(p.density_balance),
            float(p.max_expected_neighbors), self.world_width, self.world_height
        )

        # 3. Swap buffers
        self.particles.positions = self._back_positions
        self.particles.velocities = self._back_velocities
        self._back_positions = front_positions
        self._back_velocities = front_velocities
        self.step_count += 1

    def run(self, steps: int) -> None:
        """Runs whole steps; the state is only valid between steps."""
        for _ in range(steps):
            self.step()

    # --- Diagnostics ---

    def query(self, i: int) -> Tuple[np.ndarray, int]:
        """
        Force and neighbor count of particle i for the current positions.

        Rebuilds the grid first, so it can be called at any point between steps.
        """
        force, count, _ = self._query(i, record=False)
        return force, count

    def neighbor_ids(self, i: int) -> np.ndarray:
        """Indices accepted as neighbors of particle i, in scan order."""
        _, _, ids = self._query(i, record=True)
        return ids

    def _query(self, i: int, record: bool):
        self.grid.rebuild(self.particles.positions)
        n = self.particles.particle_count
        out_ids = np.empty(max(n, 1) if record else 0, dtype=np.int32)
        fx, fy, count = _query_neighbors_numba(
            int(i), self.particles.positions, self.particles.types,
            *self._kernel_args(),
            self.world_width, self.world_height, out_ids
        )
        ids: Optional[np.ndarray] = out_ids[:count].copy() if record else None
        return np.array([fx, fy]), count, ids

    def mean_neighbor_count(self) -> float:
        if self.neighbor_counts.shape[0] == 0:
            return 0.0
        return float(np.mean(self.neighbor_counts))
