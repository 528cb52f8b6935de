# main.py
"""
Main entry point for the Particle Life simulation.

This script orchestrates the simulation lifecycle:
1. Loads configuration from `config.json` (or --config).
2. Initializes the logging system.
3. Sets up the particles and the simulation.
4. Runs the main loop, with or without a Pygame window.
5. Handles clean shutdown.
"""
import argparse
import logging
import cProfile
import pstats
import io

from constants import DEFAULT_CONFIG_PATH
from utils import setup_logging, load_config, params_from_config


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Typed particle life on a toroidal domain.")
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH, help="Path to the JSON configuration.")
    parser.add_argument('--headless', action='store_true', help="Run without opening a window.")
    parser.add_argument('--steps', type=int, default=None, help="Override run_control.max_steps.")
    parser.add_argument('--profile', action='store_true', help="Log a cProfile summary at exit.")
    return parser.parse_args(argv)


def main(argv=None):
    """
    The main function to run the simulation.
    """
    args = parse_args(argv)

    # Logging is not set up yet, so we use a print for this one error.
    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"FATAL: Could not load {args.config}. Error: {e}")
        return 1

    setup_logging(config)
    logging.info("--- Particle Life Simulation Starting ---")

    run_params = config.get('run_control', {})
    vis_params = config.get('visualization', {})

    try:
        params = params_from_config(config)
    except ValueError:
        logging.critical("Invalid simulation parameters. Aborting.")
        return 1

    from particle import ParticleSystem
    from simulation import Simulation

    particles = ParticleSystem(params)
    sim = Simulation(particles, params)

    visualizer = None
    headless = args.headless or run_params.get('headless', False)
    if not headless:
        from visualization import Visualizer
        visualizer = Visualizer(params, colors=vis_params.get('particle_colors'))

    log_throttle = run_params.get('log_throttle_steps', 100)
    max_steps = args.steps if args.steps is not None else run_params.get('max_steps', 5000)
    profile = args.profile or run_params.get('profile', False)

    profiler = cProfile.Profile() if profile else None
    if profiler:
        profiler.enable()

    running = True
    while running and sim.step_count < max_steps:
        sim.step()

        # The visualizer returns False once the user quits. Edits it makes to
        # the force table land between steps.
        if visualizer is not None and not visualizer.draw(sim.particles, sim):
            running = False

        step_num = sim.step_count
        # Hot loops must throttle logs
        if step_num % log_throttle == 0:
            logging.info(f"Simulation step {step_num}/{max_steps}")
            logging.debug(
                f"Step {step_num} | Average Velocity: {sim.particles.average_speed():.4f} "
                f"| Mean Neighbors: {sim.mean_neighbor_count():.2f}"
            )

    if sim.step_count >= max_steps:
        logging.info(f"Reached max_steps ({max_steps}). Stopping simulation.")

    if visualizer is not None:
        visualizer.close()
    logging.info("Simulation loop finished.")

    if profiler:
        profiler.disable()
        logging.info("--- Performance Profile ---")
        s = io.StringIO()
        stats = pstats.Stats(profiler, stream=s).sort_stats('cumtime')
        stats.print_stats(20)
        logging.info(f"\n{s.getvalue()}")

    logging.info("--- Particle Life Simulation Shutting Down ---")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
