# params.py
"""
Typed simulation configuration and its validation.

SimParams collects every scalar that drives the simulation kernel together
with the two per-type tables (the affinity force table and the per-type
radius scale). It is built from the "simulation_parameters" section of
config.json and validated once, before any step runs.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Any, Optional

import numpy as np

# --- Data Contracts ---
#
# class SimParams:
#   - from_config(params: Dict[str, Any]) -> SimParams:
#     - Inputs:
#       - params: Dictionary of simulation parameters from config.json.
#         - "base_radius", "time_step", "friction", "repulsion",
#           "attraction", "decay_sharpness", "density_balance",
#           "domain_width", "domain_height", "particle_types",
#           "radius_ratio", "force_multiplier", "max_expected_neighbors":
#           float / int scalars
#         - "force_table": List[List[float]] or flat List[float]
#         - "radius_by_type": List[float]
#     - Outputs: A validated SimParams instance.
#     - Side Effects: Logs warnings for permissive-but-unusual values.
#     - Invariants:
#       - force_table is a float64 array of shape (particle_types, particle_types).
#       - radius_by_type is a float64 array of shape (particle_types,).
#       - max_expected_neighbors > 0.

# Floor for max_expected_neighbors so the density estimate never divides by zero.
MIN_EXPECTED_NEIGHBORS = 1e-6


def _fail(msg: str) -> None:
    logging.critical(msg)
    raise ValueError(msg)


@dataclass
class SimParams:
    """
    Scalar configuration of the kernel plus the per-type force tables.
    """
    base_radius: float = 20.0
    time_step: float = 0.1
    friction: float = 0.9
    repulsion: float = 1.0
    attraction: float = 1.0
    decay_sharpness: float = 5.0
    density_balance: float = 0.5
    domain_width: float = 800.0
    domain_height: float = 600.0
    particle_types: int = 1
    radius_ratio: float = 0.0
    force_multiplier: float = 1.0
    max_expected_neighbors: float = 30.0
    force_table: Optional[np.ndarray] = None
    radius_by_type: Optional[np.ndarray] = None

    # Application fields, not consumed by the per-particle math.
    particle_count: int = 0
    seed: int = 0
    # Wrap the 3x3 neighbor cell scan across the domain edges. When False the
    # scan clips at the grid border even though distances are toroidal.
    wrap_neighbor_cells: bool = True

    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        n = self.particle_types
        if self.force_table is None:
            self.force_table = np.ones((max(n, 0), max(n, 0)), dtype=np.float64)
        if self.radius_by_type is None:
            self.radius_by_type = np.zeros(max(n, 0), dtype=np.float64)
        self.validate()

    @classmethod
    def from_config(cls, params: Dict[str, Any]) -> "SimParams":
        """
        Builds SimParams from the "simulation_parameters" config section.

        Unknown keys are kept in `extra` so that collaborators (e.g. the
        visualizer's parameter panel) can still display the scalar ones.
        """
        known = {f for f in cls.__dataclass_fields__ if f != 'extra'}
        kwargs = {k: v for k, v in params.items() if k in known}
        extra = {k: v for k, v in params.items() if k not in known}

        if 'force_table' in kwargs:
            kwargs['force_table'] = _as_force_table(
                kwargs['force_table'], int(params.get('particle_types', 1))
            )
        if 'radius_by_type' in kwargs:
            kwargs['radius_by_type'] = np.array(kwargs['radius_by_type'], dtype=np.float64)

        logging.debug(f"Building SimParams from config keys: {sorted(params.keys())}")
        return cls(extra=extra, **kwargs)

    def validate(self) -> None:
        """
        Rejects configurations the kernel cannot run and coerces the rest.

        Raises:
            ValueError: on any fatal configuration error.
        """
        n = int(self.particle_types)
        if n <= 0:
            _fail(f"Configuration error: particle_types must be positive, got {n}.")
        self.particle_types = n

        self.force_table = np.asarray(self.force_table, dtype=np.float64)
        if self.force_table.shape != (n, n):
            _fail(
                f"Configuration error: force table shape {self.force_table.shape} "
                f"does not match particle_types ({n}). The table must hold "
                f"particle_types^2 = {n * n} values."
            )

        self.radius_by_type = np.asarray(self.radius_by_type, dtype=np.float64).reshape(-1)
        if self.radius_by_type.shape[0] != n:
            _fail(
                f"Configuration error: radius_by_type has {self.radius_by_type.shape[0]} "
                f"entries but particle_types is {n}."
            )
        if np.any(self.radius_by_type < 0):
            _fail("Configuration error: radius_by_type entries must be non-negative.")

        for name in ('domain_width', 'domain_height', 'time_step', 'base_radius'):
            value = float(getattr(self, name))
            if not value > 0:
                _fail(f"Configuration error: {name} must be strictly positive, got {value}.")
            setattr(self, name, value)

        if self.particle_count < 0:
            _fail(f"Configuration error: particle_count must be >= 0, got {self.particle_count}.")

        if not self.max_expected_neighbors > 0:
            logging.warning(
                f"max_expected_neighbors={self.max_expected_neighbors} is not positive; "
                f"clamping to {MIN_EXPECTED_NEIGHBORS}."
            )
            self.max_expected_neighbors = MIN_EXPECTED_NEIGHBORS

        # Permissive: out-of-range values only produce unusual dynamics.
        if not 0.0 <= self.friction <= 1.0:
            logging.warning(
                f"friction={self.friction} is outside [0, 1]; velocities will be amplified "
                "or flip sign each step."
            )
        if not 0.0 <= self.density_balance <= 1.0:
            logging.warning(
                f"density_balance={self.density_balance} is outside [0, 1]; the adaptive "
                "multiplier will extrapolate beyond its usual range."
            )
        if self.base_radius > min(self.domain_width, self.domain_height):
            logging.warning(
                f"base_radius={self.base_radius} exceeds the smallest domain side; "
                "the spatial grid collapses to a single cell along that axis."
            )

    def with_changes(self, **changes) -> "SimParams":
        """Returns a validated copy with the given fields replaced."""
        return replace(self, **changes)

    def as_display_dict(self) -> Dict[str, Any]:
        """Flat scalar view used by the visualizer's parameter panel, extras included."""
        shown: Dict[str, Any] = {}
        for name in self.__dataclass_fields__:
            if name in ('force_table', 'radius_by_type', 'extra'):
                continue
            shown[name] = getattr(self, name)
        for key, value in self.extra.items():
            if isinstance(value, (int, float, str, bool)):
                shown.setdefault(key, value)
        return shown


def _as_force_table(raw: Any, num_types: int) -> np.ndarray:
    """Accepts a nested list (rows) or a flat row-major list of num_types^2 values."""
    table = np.array(raw, dtype=np.float64)
    if table.ndim == 1 and table.shape[0] == num_types * num_types:
        table = table.reshape(num_types, num_types)
    return table


def random_force_table(num_types: int, rng: np.random.Generator) -> np.ndarray:
    """Uniform affinities in [-1, 1), one draw per ordered type pair."""
    return rng.uniform(-1.0, 1.0, size=(num_types, num_types))
