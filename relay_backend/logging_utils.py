import os
import glob
import logging
import time

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s] - %(message)s'


def setup_logging(log_dir: str, log_name_prefix: str, max_files: int = 5) -> str:
    """
    Prepares a new timestamped log file path in log_dir.
    Maintains only the `max_files` most recent log files.

    Returns the path to the new log file.
    """
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    log_pattern = os.path.join(log_dir, f"{log_name_prefix}_*.log")
    existing_logs = sorted(glob.glob(log_pattern))

    # Make room for the file about to be created
    while len(existing_logs) >= max_files:
        oldest_log = existing_logs.pop(0)
        try:
            os.remove(oldest_log)
            logging.info(f"Deleted old log file: {oldest_log}")
        except OSError as e:
            logging.warning(f"Error deleting old log file {oldest_log}: {e}")

    timestamp = time.strftime("%Y%m%d_%H%M%S")
    return os.path.join(log_dir, f"{log_name_prefix}_{timestamp}.log")


def configure_logging(level: str = "INFO", log_dir: str = None, log_name_prefix: str = "relay",
                      max_files: int = 5) -> str:
    """
    Console logging always; file logging too when log_dir is given.
    Returns the log file path, or None when logging to the console only.
    """
    handlers = [logging.StreamHandler()]
    log_path = None
    if log_dir:
        log_path = setup_logging(log_dir, log_name_prefix, max_files)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    return log_path
