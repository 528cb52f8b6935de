# utils.py
"""
Utility functions for the simulation framework.

Logging setup and configuration loading: helpers used by the application
shell that do not belong to the physics or rendering modules.
"""
import logging
import logging.handlers
import json
import os
from typing import Dict, Any

from params import SimParams

# --- Data Contracts ---
#
# setup_logging(config: Dict[str, Any]) -> None:
#   - Inputs:
#     - config: A dictionary with an optional "logging" key holding "level",
#       "format" and "log_file" sub-keys. A null "log_file" disables the
#       file handler.
#   - Side Effects: Reconfigures the root Python logger with a console
#     handler and a rotating file handler (1 MB, 5 backups).
#
# load_config(path: str) -> Dict[str, Any]:
#   - Raises: FileNotFoundError, json.JSONDecodeError (logged first).
#
# params_from_config(config: Dict[str, Any]) -> SimParams:
#   - Inputs: the full config dictionary.
#   - Outputs: validated SimParams from its "simulation_parameters" section.
#   - Raises: ValueError on invalid configuration.


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Configures the logging system from a configuration dictionary.
    """
    log_config = config.get('logging', {})
    log_level = log_config.get('level', 'INFO').upper()
    log_format = log_config.get('format', '%(asctime)s - %(levelname)s - %(message)s')
    log_file_path = log_config.get('log_file', 'logs/simulation.log')

    logger = logging.getLogger()
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplication
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file_path:
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path, maxBytes=1024*1024, backupCount=5
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logging.info("Logging system initialized.")
    logging.debug(f"Log level set to {log_level}.")
    logging.debug(f"Log file path: {log_file_path}")


def load_config(path: str) -> Dict[str, Any]:
    """Loads a JSON configuration file."""
    logging.info(f"Loading configuration from {path}...")
    try:
        with open(path, 'r') as f:
            config = json.load(f)
    except FileNotFoundError:
        logging.error(f"Configuration file not found at {path}.")
        raise
    except json.JSONDecodeError:
        logging.error(f"Error decoding JSON from {path}.")
        raise
    logging.info("Configuration loaded successfully.")
    return config


def params_from_config(config: Dict[str, Any]) -> SimParams:
    """Builds validated SimParams from the "simulation_parameters" section."""
    sim_params = config.get('simulation_parameters', {})
    params = SimParams.from_config(sim_params)
    logging.info(
        f"Simulation parameters: {params.particle_count} particles, "
        f"{params.particle_types} types, domain {params.domain_width:g}x{params.domain_height:g}, "
        f"base radius {params.base_radius:g}."
    )
    return params
