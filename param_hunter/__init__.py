"""
Param Hunter - Hidden HTTP Parameter Discovery

Finds query, header and body parameters a server reacts to but never
advertises, by sending batches of candidate names and bisecting the batches
whose responses deviate from a learned baseline.
"""

__version__ = "1.0.0"
__author__ = "Param Hunter Team"
__license__ = "MIT"

from param_hunter.core.config import Config, MiningConfig
from param_hunter.core.logger import get_logger
from param_hunter.mining.param_miner import ParamMiner
from param_hunter.mining.session_manager import MiningSessionManager

# Core exports
__all__ = [
    "Config",
    "MiningConfig",
    "MiningSessionManager",
    "ParamMiner",
    "get_logger",
    "__version__",
]
