"""
Adaptive probes run between baseline learning and discovery.
"""

from .additional_checks import apply_additional_checks, perform_additional_checks
from .autopilot import autopilot_check_response
from .guess_max_size import SIZE_PROFILES, SizeProfile, guess_max_size
from .waf_check import WAF_PATTERNS, check_for_waf

__all__ = [
    "SIZE_PROFILES",
    "SizeProfile",
    "WAF_PATTERNS",
    "apply_additional_checks",
    "autopilot_check_response",
    "check_for_waf",
    "guess_max_size",
    "perform_additional_checks",
]
