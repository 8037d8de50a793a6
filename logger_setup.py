# logger_setup.py

import logging
import os

from config import load_config

LOGGER_NAME = "balloon_sim"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(config_path='config.json', log_root='runs'):
    """
    Sets up the dedicated "balloon_sim" logger (not the root logger).

    Reads the 'run_id' and 'logging' sections of the config file, creates
    runs/<run_id>/ and sends records to both the console and
    runs/<run_id>/simulation.log. Uvicorn/Ursina loggers are left alone.

    A missing config file falls back to INFO on the console only.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False

    try:
        config = load_config(config_path)
    except (OSError, ValueError) as exc:
        config = None
        fallback_reason = exc

    log_config = (config or {}).get('logging', {})
    logger.setLevel(log_config.get('level', 'INFO'))
    formatter = logging.Formatter(log_config.get('format', DEFAULT_FORMAT))

    # Clear existing handlers to avoid duplication if this function is called again
    if logger.hasHandlers():
        logger.handlers.clear()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if config is None:
        logger.warning(f"Logging config unavailable ({fallback_reason}); console only.")
        return logger

    run_id = str(config.get('run_id', 'default'))
    log_dir = os.path.join(log_root, run_id)
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, 'simulation.log')

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.info(f"Logging initialized. Run ID: {run_id}. Log file: {log_file}")
    return logger
