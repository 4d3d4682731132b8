"""
Hidden parameter mining engine.
"""

from .anomaly import AnomalyDetector
from .discovery import ParamDiscovery
from .events import EventKind, SessionEvents
from .param_miner import ParamMiner
from .request_builder import RequestBuilder, build_request
from .session_manager import MiningSessionManager
from .state_manager import StateManager
from .wordlist import Wordlist

__all__ = [
    "AnomalyDetector",
    "EventKind",
    "MiningSessionManager",
    "ParamDiscovery",
    "ParamMiner",
    "RequestBuilder",
    "SessionEvents",
    "StateManager",
    "Wordlist",
    "build_request",
]
