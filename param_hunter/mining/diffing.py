"""
Line-level diff tracking for noisy response bodies.
"""

import re
from typing import List

from ..core.logger import get_component_logger

logger = get_component_logger("mining.diffing")

_LINE_BREAK = re.compile(r"\r?\n")


def split_lines(body: str) -> List[str]:
    return _LINE_BREAK.split(body or "")


def count_differences(lines_a: List[str], lines_b: List[str]) -> int:
    """Count index-wise mismatching lines; missing lines compare as empty."""
    differences = 0
    for i in range(max(len(lines_a), len(lines_b))):
        a = lines_a[i] if i < len(lines_a) else ""
        b = lines_b[i] if i < len(lines_b) else ""
        if a != b:
            differences += 1
    return differences


class DiffTracker:
    """
    Tracks whether a body differs from a reference beyond its normal noise.

    The number of differing lines between the two reference bodies is the
    accepted noise floor. A candidate is changed only when its diff count
    against the first reference differs from that floor, so pages with
    timestamps or nonces do not flood the detector.
    """

    def __init__(self, first_body: str, second_body: str):
        self._reference = split_lines(first_body)
        self.initial_diff_count = count_differences(self._reference, split_lines(second_body))

    def has_changes(self, body: str) -> bool:
        diff_count = count_differences(self._reference, split_lines(body))
        if diff_count != self.initial_diff_count:
            logger.debug(f"Difference count changed from {self.initial_diff_count} to {diff_count}")
            return True
        return False
