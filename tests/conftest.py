"""Pytest configuration for the particle life tests."""
import os

import numpy as np
import pytest

from params import SimParams
from particle import ParticleSystem
from simulation import Simulation


def pytest_configure(config):
    """Run pygame without a display."""
    os.environ['SDL_VIDEODRIVER'] = 'dummy'
    os.environ['SDL_AUDIODRIVER'] = 'dummy'


@pytest.fixture
def make_params():
    """Factory for small, valid parameter sets; keyword overrides win."""
    def _make(**overrides):
        values = dict(
            base_radius=20.0,
            time_step=0.1,
            friction=1.0,
            repulsion=1.0,
            attraction=0.0,
            decay_sharpness=1.0,
            density_balance=0.0,
            domain_width=100.0,
            domain_height=100.0,
            particle_types=1,
            radius_ratio=0.0,
            force_multiplier=1.0,
            max_expected_neighbors=10.0,
            force_table=[[1.0]],
            radius_by_type=[0.0],
        )
        values.update(overrides)
        return SimParams(**values)
    return _make


@pytest.fixture
def make_sim(make_params):
    """Builds a Simulation from explicit particle state."""
    def _make(positions, velocities=None, types=None, **overrides):
        params = make_params(**overrides)
        particles = ParticleSystem.from_arrays(params, positions, velocities, types)
        return Simulation(particles, params)
    return _make


@pytest.fixture
def random_params(make_params):
    """Three types, asymmetric table, 200x160 domain."""
    rng = np.random.default_rng(7)
    return make_params(
        particle_types=3,
        domain_width=200.0,
        domain_height=160.0,
        attraction=0.7,
        decay_sharpness=4.0,
        density_balance=0.6,
        friction=0.9,
        force_multiplier=5.0,
        force_table=rng.uniform(-1, 1, size=(3, 3)),
        radius_by_type=[0.0, 0.0, 0.0],
        particle_count=300,
        seed=11,
    )
