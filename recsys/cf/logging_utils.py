"""
Logging Utilities for the Recommendation Service and Model Lifecycle.

Every module logs through ``logging.getLogger(__name__)``; this module wires
handlers onto the package-level loggers so those records land in
``logs/service/<name>.log`` (and ``error.log`` for errors).

Example:
    >>> from recsys.cf.logging_utils import setup_service_logger, format_params
    >>> logger = setup_service_logger('recommender')
    >>> logger.info(f"Config loaded | {format_params({'limit': 10})}")
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional, Any

# ============================================================================
# Constants
# ============================================================================

SERVICE_LOG_DIR = "logs/service"

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


# ============================================================================
# Service Logger Setup
# ============================================================================

def setup_service_logger(
    name: str = 'recommender',
    namespace: str = 'service',
    log_dir: Optional[str] = None,
    console: bool = True,
    level: int = logging.INFO
) -> logging.Logger:
    """
    Setup logger for a service component.

    Args:
        name: Component name; the logger is '<namespace>.<name>'
        namespace: Top-level package ('service' or 'recsys')
        log_dir: Directory for log files (default: $LOG_DIR or logs/service)
        console: Whether to also log to console
        level: Minimum level for the file and console handlers

    Returns:
        Configured logger
    """
    log_path = Path(log_dir or os.getenv('LOG_DIR', SERVICE_LOG_DIR))
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(f'{namespace}.{name}')
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers = []

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    fh = logging.FileHandler(log_path / f'{name}.log', encoding='utf-8')
    fh.setLevel(level)
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    eh = logging.FileHandler(log_path / 'error.log', encoding='utf-8')
    eh.setLevel(logging.ERROR)
    eh.setFormatter(formatter)
    logger.addHandler(eh)

    if console:
        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.setFormatter(formatter)
        logger.addHandler(ch)

    return logger


# ============================================================================
# Format Helpers
# ============================================================================

def format_params(params: Dict[str, Any]) -> str:
    """Format parameters for logging."""
    items = []
    for k, v in params.items():
        if isinstance(v, float):
            items.append(f"{k}={v:.4g}")
        else:
            items.append(f"{k}={v}")
    return ", ".join(items)


def format_metrics(metrics: Dict[str, Any]) -> str:
    """Format metrics for logging. None values are skipped."""
    items = []
    for k, v in metrics.items():
        if v is None:
            continue
        if isinstance(v, float):
            items.append(f"{k}={v:.4f}")
        else:
            items.append(f"{k}={v}")
    return ", ".join(items)
