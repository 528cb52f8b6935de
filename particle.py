# particle.py
"""
Manages the state of all particles in the simulation.

This module defines the ParticleSystem class, which is responsible for
initializing and storing particle data (position, velocity, type) in
NumPy arrays. Types are fixed at creation; positions and velocities are
replaced by the simulation once per step.
"""
import logging
import numpy as np

from params import SimParams

# --- Data Contracts ---
#
# class ParticleSystem:
#   - __init__(self, params: SimParams):
#     - Inputs:
#       - params: Validated SimParams. Uses "seed", "particle_count",
#         "particle_types", "domain_width" and "domain_height".
#     - Outputs: None
#     - Side Effects: Initializes internal NumPy arrays for particle state.
#     - Invariants:
#       - self.positions is a NumPy array of shape (N, 2) of dtype float64,
#         every row inside [0, domain_width) x [0, domain_height).
#       - self.velocities is a NumPy array of shape (N, 2) of dtype float64.
#       - self.types is a NumPy array of shape (N,) of dtype int32.
#
#   - from_arrays(params, positions, velocities=None, types=None) -> ParticleSystem:
#     - Builds a system from explicit state. Positions outside the domain are
#       wrapped into it with a warning.


class ParticleSystem:
    """
    A container for all particles, managing their state via NumPy arrays.
    """
    def __init__(self, params: SimParams):
        """
        Initializes the particle system with random positions and types.

        Args:
            params (SimParams): Simulation parameters.
        """
        self.particle_count = params.particle_count
        self.particle_types = params.particle_types
        self.seed = params.seed
        self.width = params.domain_width
        self.height = params.domain_height

        # All randomness in this module comes from one seeded generator.
        self.rng = np.random.default_rng(self.seed)

        self.positions = self.rng.uniform(
            low=[0, 0],
            high=[self.width, self.height],
            size=(self.particle_count, 2)
        )
        self.velocities = np.zeros((self.particle_count, 2), dtype=np.float64)
        self.types = self.rng.integers(
            low=0,
            high=self.particle_types,
            size=self.particle_count,
            dtype=np.int32
        )

        logging.info(
            f"ParticleSystem initialized with {self.particle_count} "
            f"particles of {self.particle_types} types."
        )
        logging.debug(
            f"Particle data arrays created. "
            f"Positions shape: {self.positions.shape}, "
            f"Velocities shape: {self.velocities.shape}, "
            f"Types shape: {self.types.shape}"
        )

    @classmethod
    def from_arrays(
        cls,
        params: SimParams,
        positions,
        velocities=None,
        types=None,
    ) -> "ParticleSystem":
        """
        Creates a particle system from explicit state instead of random draws.

        Args:
            params (SimParams): Simulation parameters (domain and type count).
            positions: (N, 2) array-like of positions.
            velocities: Optional (N, 2) array-like, zeros if omitted.
            types: Optional (N,) array-like of type indices, zeros if omitted.
        """
        positions = np.array(positions, dtype=np.float64).reshape(-1, 2)
        n = positions.shape[0]

        system = cls.__new__(cls)
        system.particle_count = n
        system.particle_types = params.particle_types
        system.seed = params.seed
        system.width = params.domain_width
        system.height = params.domain_height
        system.rng = np.random.default_rng(params.seed)

        if velocities is None:
            system.velocities = np.zeros((n, 2), dtype=np.float64)
        else:
            system.velocities = np.array(velocities, dtype=np.float64).reshape(n, 2)
        if types is None:
            system.types = np.zeros(n, dtype=np.int32)
        else:
            system.types = np.array(types, dtype=np.int32).reshape(n)

        outside = (
            (positions[:, 0] < 0) | (positions[:, 0] >= system.width)
            | (positions[:, 1] < 0) | (positions[:, 1] >= system.height)
        )
        if np.any(outside):
            logging.warning(
                f"{int(outside.sum())} initial positions lie outside the domain; "
                "wrapping them into it."
            )
            for axis, size in ((0, system.width), (1, system.height)):
                folded = positions[:, axis] % size
                # A tiny negative value rounds up to exactly size
                folded[folded >= size] -= size
                positions[:, axis] = folded
        system.positions = positions

        unknown = system.types >= system.particle_types
        if np.any(unknown):
            logging.warning(
                f"{int(unknown.sum())} particles have a type >= {system.particle_types}; "
                "they will move but neither exert nor receive forces."
            )

        logging.info(f"ParticleSystem loaded from arrays with {n} particles.")
        return system

    def snapshot(self) -> np.ndarray:
        """Copy of the state as an (N, 5) array: x, y, vx, vy, type."""
        return np.column_stack((self.positions, self.velocities, self.types.astype(np.float64)))

    def average_speed(self) -> float:
        if self.particle_count == 0:
            return 0.0
        return float(np.mean(np.linalg.norm(self.velocities, axis=1)))
