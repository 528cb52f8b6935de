"""Tests for the neighbor query, the integrator and the stepper."""

import numpy as np
import pytest

from particle import ParticleSystem
from simulation import Simulation, adaptive_multiplier, minimum_image, wrap

TOLERANCE = 1e-9


def brute_force_neighbors(positions, types, i, radius, width, height):
    """O(N^2) reference: every j within radius of i on the torus."""
    found = set()
    for j in range(len(positions)):
        if j == i:
            continue
        d = positions[j] - positions[i]
        d[0] -= np.floor(d[0] / width + 0.5) * width
        d[1] -= np.floor(d[1] / height + 0.5) * height
        dist = np.sqrt(d[0] * d[0] + d[1] * d[1])
        if 0.0 < dist <= radius:
            found.add(j)
    return found


def reference_step(positions, velocities, types, params):
    """Straight transcription of the update rule over all pairs."""
    n = len(positions)
    new_pos = np.empty_like(positions)
    new_vel = np.empty_like(velocities)
    for i in range(n):
        radius = params.base_radius * (1.0 + params.radius_by_type[types[i]] * params.radius_ratio)
        force = np.zeros(2)
        count = 0
        for j in range(n):
            if j == i:
                continue
            d = positions[j] - positions[i]
            d[0] -= np.floor(d[0] / params.domain_width + 0.5) * params.domain_width
            d[1] -= np.floor(d[1] / params.domain_height + 0.5) * params.domain_height
            dist = np.sqrt(d[0] * d[0] + d[1] * d[1])
            if dist == 0.0 or dist > radius:
                continue
            count += 1
            r = dist / radius
            rep = params.repulsion / (1.0 + (r * params.decay_sharpness) ** 2)
            att = params.attraction * r * r
            f = params.force_table[types[i], types[j]] * (rep - att) * params.force_multiplier
            force += d / dist * f
        density = min(max(count / params.max_expected_neighbors, 0.0), 1.0)
        b = params.density_balance
        lo = 1.0 + (0.01 - 1.0) * b
        hi = 1.0 + (4.0 - 1.0) * b
        mult = hi + (lo - hi) * density
        v = velocities[i] * params.friction + force * params.time_step * mult
        p = positions[i] + v * params.time_step
        new_vel[i] = v
        new_pos[i] = np.mod(p, [params.domain_width, params.domain_height])
    return new_pos, new_vel


class TestWrap:
    @pytest.mark.parametrize("value", [
        -250.0, -100.0, -9.5, -1e-12, 0.0, 0.5, 42.0, 99.999999, 100.0, 100.5, 350.25,
    ])
    def test_result_in_range_and_shift_is_whole_domains(self, value):
        size = 100.0
        w = wrap(value, size)
        assert 0.0 <= w < size
        shift = (w - value) / size
        assert shift == pytest.approx(round(shift), abs=1e-9)

    def test_random_values(self):
        rng = np.random.default_rng(1)
        for value in rng.uniform(-1e4, 1e4, size=200):
            w = wrap(float(value), 37.5)
            assert 0.0 <= w < 37.5

    def test_minimum_image_picks_shortest_path(self):
        assert minimum_image(98.0, 100.0) == pytest.approx(-2.0)
        assert minimum_image(-98.0, 100.0) == pytest.approx(2.0)
        assert minimum_image(30.0, 100.0) == pytest.approx(30.0)


class TestAdaptiveMultiplier:
    @pytest.mark.parametrize("balance", [0.1, 0.5, 1.0])
    def test_non_increasing_with_density(self, balance):
        values = [adaptive_multiplier(c, 20.0, balance) for c in range(0, 30)]
        assert all(a >= b for a, b in zip(values, values[1:]))
        assert values[0] == pytest.approx(1.0 + 3.0 * balance)
        assert values[-1] == pytest.approx(1.0 - 0.99 * balance)

    def test_zero_balance_disables_effect(self):
        for c in range(0, 50, 7):
            assert adaptive_multiplier(c, 10.0, 0.0) == pytest.approx(1.0)


class TestNeighborQuery:
    def test_interior_matches_brute_force(self, make_sim):
        rng = np.random.default_rng(5)
        positions = rng.uniform([0, 0], [200, 160], size=(400, 2))
        sim = make_sim(positions, domain_width=200.0, domain_height=160.0)

        checked = 0
        for i in range(len(positions)):
            x, y = positions[i]
            if not (20.0 <= x < 180.0 and 20.0 <= y < 140.0):
                continue
            got = set(sim.neighbor_ids(i).tolist())
            expected = brute_force_neighbors(positions, None, i, 20.0, 200.0, 160.0)
            assert got == expected
            checked += 1
        assert checked > 100

    def test_never_counts_itself(self, make_sim):
        rng = np.random.default_rng(9)
        positions = rng.uniform([0, 0], [100, 100], size=(150, 2))
        # duplicates at identical positions as well
        positions = np.vstack([positions, positions[:10]])
        sim = make_sim(positions)
        for i in range(len(positions)):
            assert i not in set(sim.neighbor_ids(i).tolist())

    def test_coincident_particles_are_ignored(self, make_sim):
        sim = make_sim([[50.0, 50.0], [50.0, 50.0]])
        force, count = sim.query(0)
        assert count == 0
        assert np.all(force == 0.0)

    def test_wrapped_cells_find_neighbors_across_the_edge(self, make_sim):
        sim = make_sim([[1.0, 50.0], [99.0, 50.0]])
        assert sim.neighbor_ids(0).tolist() == [1]
        force, _ = sim.query(0)
        # Neighbor sits 2 units to the left through the edge
        assert force[0] < 0.0

    def test_clipped_scan_misses_pairs_across_the_edge(self, make_sim):
        sim = make_sim([[1.0, 50.0], [99.0, 50.0]], wrap_neighbor_cells=False)
        assert sim.neighbor_ids(0).tolist() == []

    def test_clipped_scan_still_uses_toroidal_distance(self, make_sim):
        # Both particles sit in adjacent cells on the left edge; the
        # minimum image must not push their separation across the domain.
        sim = make_sim([[1.0, 10.0], [1.0, 25.0]], wrap_neighbor_cells=False)
        assert sim.neighbor_ids(0).tolist() == [1]

    @pytest.mark.parametrize("side", [30.0, 50.0])
    def test_narrow_grid_visits_each_cell_once(self, make_sim, side):
        sim = make_sim(
            [[5.0, 5.0], [12.0, 5.0], [5.0, 14.0]],
            domain_width=side, domain_height=side,
        )
        ids = sim.neighbor_ids(0).tolist()
        assert sorted(ids) == [1, 2]
        _, count = sim.query(0)
        assert count == 2

    def test_out_of_range_type_is_inert(self, make_sim):
        sim = make_sim(
            [[50.0, 50.0], [55.0, 50.0]],
            velocities=[[0.0, 0.0], [1.0, 0.0]],
            types=[0, 3],
        )
        force, count = sim.query(0)
        assert count == 0
        assert np.all(force == 0.0)
        force, count = sim.query(1)
        assert count == 0

        sim.step()
        # Still integrated: drifts with its own velocity
        assert sim.particles.positions[1, 0] == pytest.approx(55.1)
        assert sim.particles.positions[0, 0] == pytest.approx(50.0)

    def test_radius_follows_the_querying_particles_type(self, make_sim):
        # Type 1 reaches 20 * (1 + 0.4) = 28, type 0 only 20
        sim = make_sim(
            [[40.0, 50.0], [65.0, 50.0]],
            types=[1, 0],
            particle_types=2,
            force_table=[[1.0, 1.0], [1.0, 1.0]],
            radius_by_type=[0.0, 0.4],
            radius_ratio=1.0,
        )
        assert sim.neighbor_ids(0).tolist() == [1]
        assert sim.neighbor_ids(1).tolist() == []

        force, count = sim.query(0)
        r = 25.0 / 28.0
        assert count == 1
        np.testing.assert_allclose(force, [1.0 / (1.0 + r * r), 0.0], rtol=0, atol=1e-12)


class TestScenarios:
    def test_two_particles_with_positive_affinity(self, make_sim):
        sim = make_sim([[45.0, 50.0], [55.0, 50.0]])
        sim.step()
        pos = sim.particles.positions
        vel = sim.particles.velocities
        # r = 0.5, k = 1: magnitude 1 / 1.25 = 0.8 towards the neighbor
        np.testing.assert_allclose(pos[0], [45.008, 50.0], rtol=0, atol=1e-5)
        np.testing.assert_allclose(pos[1], [54.992, 50.0], rtol=0, atol=1e-5)
        np.testing.assert_allclose(vel[0], [0.08, 0.0], rtol=0, atol=1e-5)
        np.testing.assert_allclose(vel[1], [-0.08, 0.0], rtol=0, atol=1e-5)

    def test_two_particles_with_negative_affinity_move_apart(self, make_sim):
        sim = make_sim([[45.0, 50.0], [55.0, 50.0]], force_table=[[-1.0]])
        sim.step()
        pos = sim.particles.positions
        assert pos[1, 0] - pos[0, 0] > 10.0
        np.testing.assert_allclose(pos[0], [44.992, 50.0], rtol=0, atol=1e-5)
        np.testing.assert_allclose(pos[1], [55.008, 50.0], rtol=0, atol=1e-5)

    def test_wrap_around_at_left_edge(self, make_sim):
        sim = make_sim([[0.5, 50.0]], velocities=[[-10.0, 0.0]], time_step=1.0)
        sim.step()
        np.testing.assert_allclose(sim.particles.positions[0], [90.5, 50.0], rtol=0, atol=1e-9)
        np.testing.assert_allclose(sim.particles.velocities[0], [-10.0, 0.0], rtol=0, atol=1e-12)


class TestStepper:
    def test_matches_all_pairs_reference(self, random_params):
        particles = ParticleSystem(random_params)
        particles.velocities = particles.rng.normal(0.0, 1.0, size=(particles.particle_count, 2))
        sim = Simulation(particles, random_params)

        for _ in range(3):
            expected_pos, expected_vel = reference_step(
                particles.positions.copy(), particles.velocities.copy(),
                particles.types, random_params
            )
            sim.step()
            # Compare on the torus so a wrap at the edge is not a mismatch
            diff = sim.particles.positions - expected_pos
            diff[:, 0] = [minimum_image(d, 200.0) for d in diff[:, 0]]
            diff[:, 1] = [minimum_image(d, 160.0) for d in diff[:, 1]]
            assert np.max(np.abs(diff)) < TOLERANCE
            assert np.max(np.abs(sim.particles.velocities - expected_vel)) < TOLERANCE

    def test_matches_reference_with_per_type_radii(self, make_sim):
        # Keep every particle within two adjacent cells so the 3x3 scan
        # sees all pairs even though radii exceed the cell size.
        rng = np.random.default_rng(3)
        positions = rng.uniform(41.0, 79.0, size=(12, 2))
        velocities = rng.normal(0.0, 1.0, size=(12, 2))
        types = np.array([0, 1] * 6, dtype=np.int32)
        sim = make_sim(
            positions, velocities, types,
            particle_types=2,
            force_table=[[0.6, -0.4], [0.9, -0.2]],
            radius_by_type=[0.0, 0.4],
            radius_ratio=1.0,
            attraction=0.5,
            density_balance=0.3,
        )
        expected_pos, expected_vel = reference_step(positions.copy(), velocities.copy(), types, sim.params)
        sim.step()
        np.testing.assert_allclose(sim.particles.positions, expected_pos, rtol=0, atol=TOLERANCE)
        np.testing.assert_allclose(sim.particles.velocities, expected_vel, rtol=0, atol=TOLERANCE)

    def test_deterministic_across_runs(self, random_params):
        runs = []
        for _ in range(2):
            sim = Simulation(ParticleSystem(random_params), random_params)
            states = []
            for _ in range(15):
                sim.step()
                states.append(sim.particles.snapshot())
            runs.append(states)
        for a, b in zip(*runs):
            assert np.array_equal(a, b)

    def test_double_buffering_leaves_snapshot_untouched(self, random_params):
        sim = Simulation(ParticleSystem(random_params), random_params)
        before = sim.particles.positions
        before_copy = before.copy()
        sim.step()
        assert not np.shares_memory(before, sim.particles.positions)
        assert np.array_equal(before, before_copy)

    def test_positions_stay_in_domain(self, random_params):
        sim = Simulation(ParticleSystem(random_params), random_params)
        sim.run(25)
        pos = sim.particles.positions
        assert np.all(pos[:, 0] >= 0.0) and np.all(pos[:, 0] < 200.0)
        assert np.all(pos[:, 1] >= 0.0) and np.all(pos[:, 1] < 160.0)
        assert sim.step_count == 25

    def test_types_are_immutable(self, random_params):
        sim = Simulation(ParticleSystem(random_params), random_params)
        types = sim.particles.types.copy()
        sim.run(5)
        assert np.array_equal(sim.particles.types, types)


class TestReconfiguration:
    def test_type_count_mismatch_is_rejected(self, make_params):
        particles = ParticleSystem(make_params(particle_count=5))
        other = make_params(
            particle_types=2, force_table=np.ones((2, 2)), radius_by_type=[0.0, 0.0]
        )
        with pytest.raises(ValueError):
            Simulation(particles, other)

    def test_set_affinity_changes_next_step(self, make_sim):
        sim = make_sim([[45.0, 50.0], [55.0, 50.0]])
        sim.set_affinity(0, 0, 0.0)
        sim.step()
        np.testing.assert_allclose(sim.particles.positions[0], [45.0, 50.0], rtol=0, atol=1e-12)

    def test_reset_particles_resizes_buffers(self, make_sim, make_params):
        sim = make_sim([[45.0, 50.0], [55.0, 50.0]])
        sim.step()
        params = sim.params
        sim.reset_particles(ParticleSystem.from_arrays(params, [[10.0, 10.0], [12.0, 10.0], [90.0, 90.0]]))
        assert sim.step_count == 0
        sim.step()
        assert sim.particles.positions.shape == (3, 2)
        assert sim.neighbor_counts.tolist() == [1, 1, 0]

    def test_randomize_force_table(self, random_params):
        sim = Simulation(ParticleSystem(random_params), random_params)
        old = sim.force_table.copy()
        sim.randomize_force_table()
        assert sim.force_table.shape == old.shape
        assert not np.array_equal(sim.force_table, old)

    def test_set_force_table_and_params(self, make_sim):
        sim = make_sim([[45.0, 50.0], [55.0, 50.0]])
        sim.set_params(sim.params.with_changes(time_step=0.2))
        sim.set_force_table([[-1.0]])
        sim.step()
        # v = -0.8 * 0.2, x = 45 + v * 0.2
        np.testing.assert_allclose(sim.particles.positions[0], [45.0 - 0.032, 50.0], rtol=0, atol=1e-9)

    def test_set_params_rejects_domain_change(self, make_sim):
        sim = make_sim([[45.0, 50.0]])
        with pytest.raises(ValueError):
            sim.set_params(sim.params.with_changes(domain_width=300.0))

    def test_set_params_keeps_edited_affinities(self, make_sim):
        sim = make_sim([[45.0, 50.0], [55.0, 50.0]])
        sim.set_affinity(0, 0, -0.5)
        sim.set_params(sim.params.with_changes(time_step=0.2))
        assert sim.force_table[0, 0] == -0.5
        assert sim.params.time_step == 0.2

    def test_reset_particles_keeps_edited_affinities(self, make_sim):
        sim = make_sim([[45.0, 50.0], [55.0, 50.0]])
        sim.set_affinity(0, 0, 0.25)
        sim.reset_particles(ParticleSystem.from_arrays(sim.params, [[10.0, 10.0]]))
        assert sim.force_table[0, 0] == 0.25
