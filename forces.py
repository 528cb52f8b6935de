# forces.py
"""
Type-pair force model.

Every ordered pair of particle types carries an affinity coefficient. The
force a neighbor exerts on a particle is a softened repulsion minus a
quadratic attraction, evaluated on the distance normalized by the
particle's effective radius, and scaled by that affinity. The table is
indexed [subject][neighbor] and is deliberately not symmetric.
"""
import logging
import numpy as np
from typing import Optional
from numba import jit

from params import SimParams, random_force_table

# --- Data Contracts ---
#
# class ForceModel:
#   - __init__(self, params: SimParams):
#     - Inputs: validated SimParams (force_table, radius_by_type, scalars).
#     - Side Effects: Keeps a private copy of both per-type tables.
#     - Invariants:
#       - force_table.shape == (particle_types, particle_types)
#       - radius_by_type.shape == (particle_types,)
#
#   - magnitude(self, my_type: int, other_type: int, r: float) -> float:
#     - Inputs: r = dist / effective_radius(my_type), in (0, 1].
#     - Outputs: Signed force magnitude along the direction to the neighbor.
#       Positive pulls towards the neighbor, negative pushes away.


@jit(nopython=True)
def effective_radius(base_radius, type_scale, radius_ratio):
    """base_radius * (1 + type_scale * radius_ratio)."""
    return base_radius + base_radius * type_scale * radius_ratio


@jit(nopython=True)
def force_magnitude(affinity, r, repulsion, attraction, k, force_multiplier):
    """
    Scalar force for a normalized distance r.

    The repulsion term decays as 1 / (1 + (r*k)^2), the attraction term
    grows as r^2. The affinity sign selects which one wins for a type pair.
    """
    rep_decay = r * k
    repulsion_term = repulsion * (1.0 / (1.0 + rep_decay * rep_decay))
    attraction_term = attraction * r * r
    return affinity * (repulsion_term - attraction_term) * force_multiplier


class ForceModel:
    """
    Holds the affinity table and per-type radius scales for the kernel.
    """
    def __init__(self, params: SimParams):
        self.params = params
        self.force_table = np.array(params.force_table, dtype=np.float64)
        self.radius_by_type = np.array(params.radius_by_type, dtype=np.float64)

    @property
    def num_types(self) -> int:
        return self.force_table.shape[0]

    def effective_radius(self, particle_type: int) -> float:
        """Interaction cutoff for a particle type. Unknown types use the base radius."""
        if not 0 <= particle_type < self.num_types:
            return self.params.base_radius
        return effective_radius(
            self.params.base_radius, self.radius_by_type[particle_type], self.params.radius_ratio
        )

    def magnitude(self, my_type: int, other_type: int, r: float) -> float:
        p = self.params
        return force_magnitude(
            self.force_table[my_type, other_type], r,
            p.repulsion, p.attraction, p.decay_sharpness, p.force_multiplier
        )

    def set_affinity(self, my_type: int, other_type: int, value: float) -> None:
        old_value = self.force_table[my_type, other_type]
        self.force_table[my_type, other_type] = value
        logging.info(
            f"Affinity ({my_type}, {other_type}) updated. "
            f"Old: {old_value:.2f}, New: {value:.2f}"
        )

    def set_table(self, table) -> None:
        """Replaces the whole affinity table; the shape must stay (n, n)."""
        table = np.array(table, dtype=np.float64)
        if table.ndim == 1 and table.shape[0] == self.num_types ** 2:
            table = table.reshape(self.num_types, self.num_types)
        if table.shape != self.force_table.shape:
            msg = (
                f"Configuration error: force table shape {table.shape} does not "
                f"match particle_types ({self.num_types})."
            )
            logging.critical(msg)
            raise ValueError(msg)
        self.force_table = table
        logging.info("Force table replaced.")

    def randomize(self, rng: Optional[np.random.Generator] = None) -> None:
        """Replaces every affinity with a uniform draw from [-1, 1)."""
        if rng is None:
            rng = np.random.default_rng()
        self.force_table = random_force_table(self.num_types, rng)
        logging.info("Force table randomized.")

    def reset(self) -> None:
        self.force_table.fill(0.0)
        logging.info("Force table reset to all zeros.")
