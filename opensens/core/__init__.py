"""Core infrastructure: config, logger."""
from .config import OpensensConfig, get_config
from .logger import connector_context, setup_logging, get_logger

__all__ = [
    "OpensensConfig", "get_config",
    "setup_logging", "get_logger", "connector_context",
]
