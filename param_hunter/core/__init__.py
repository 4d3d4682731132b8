"""
Core functionality for Param Hunter
"""

from .config import Config, HTTPConfig, MiningConfig, get_config
from .logger import get_logger

__all__ = [
    "Config",
    "HTTPConfig",
    "MiningConfig",
    "get_config",
    "get_logger",
]
