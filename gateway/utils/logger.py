"""
Logging utilities for the gateway

Stdlib handlers are configured through dictConfig (optionally loaded from a
YAML file); structlog renders key/value events on top of them.
"""

import os
import copy
import logging
import logging.config
from typing import Optional, Dict, Any

import yaml
import structlog

# Third-party loggers whose configured level is kept as-is
QUIET_LOGGERS = ('httpx', 'httpcore')

# Default logging configuration
DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'plain': {
            'format': '%(message)s',
        },
        'default': {
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'level': 'INFO',
            'formatter': 'plain',
            'stream': 'ext://sys.stdout'
        }
    },
    'loggers': {
        'gateway': {
            'level': 'INFO',
            'handlers': ['console'],
            'propagate': False
        },
        'uvicorn': {
            'level': 'INFO',
            'handlers': ['console'],
            'propagate': False
        },
        'httpx': {
            'level': 'WARNING',
            'handlers': ['console'],
            'propagate': False
        },
    },
    'root': {
        'level': 'INFO',
        'handlers': ['console'],
    },
}


def load_logging_config(config_path: Optional[str]) -> Dict[str, Any]:
    """Load a dictConfig mapping from YAML, falling back to the defaults"""
    if config_path and os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
        if isinstance(config, dict):
            return config
        logging.getLogger(__name__).warning(
            "Logging config %s is not a mapping, using defaults", config_path
        )
    return copy.deepcopy(DEFAULT_LOGGING_CONFIG)


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    config_path: Optional[str] = None
) -> None:
    """
    Setup logging configuration

    Args:
        log_level: Level applied to every configured handler and logger
        log_format: 'json' for machine-readable events, 'console' for humans
        config_path: Optional YAML file holding a dictConfig mapping
    """
    config = load_logging_config(config_path)

    log_level = log_level.upper()
    for name, logger_config in config.get('loggers', {}).items():
        if name not in QUIET_LOGGERS:
            logger_config['level'] = log_level
    for handler_config in config.get('handlers', {}).values():
        handler_config['level'] = log_level
    if 'root' in config:
        config['root']['level'] = log_level

    logging.config.dictConfig(config)

    if log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
