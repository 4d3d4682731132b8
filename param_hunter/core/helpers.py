"""
Small helpers shared by the mining components.
"""

import random
import string
import time
from typing import Dict
from urllib.parse import quote

_ALPHABET = string.ascii_lowercase + string.digits
_ID_ALPHABET = string.ascii_letters + string.digits

# Characters left alone by JavaScript's encodeURIComponent
URI_COMPONENT_SAFE = "-_.!~*'()"


def random_string(length: int) -> str:
    """Return a random lowercase alphanumeric token."""
    return "".join(random.choice(_ALPHABET) for _ in range(length))


def generate_id() -> str:
    """Generate a short, time-ordered identifier."""
    millis = int(time.time() * 1000)
    digits = []
    while millis:
        millis, rem = divmod(millis, 36)
        digits.append(_ALPHABET[rem])
    prefix = "".join(reversed(digits)) or "0"
    return prefix + "".join(random.choice(_ID_ALPHABET) for _ in range(5))


def encode_component(value: str) -> str:
    """Percent-encode a query/form component."""
    return quote(value, safe=URI_COMPONENT_SAFE)


def string_similarity(first: str, second: str, substring_length: int = 2,
                      case_sensitive: bool = False) -> float:
    """
    Dice coefficient over character n-grams.

    Returns a value between 0 (nothing shared) and 1 (identical). Strings
    shorter than the n-gram length always score 0.
    """
    if not case_sensitive:
        first = first.lower()
        second = second.lower()

    if len(first) < substring_length or len(second) < substring_length:
        return 0.0

    grams: Dict[str, int] = {}
    for i in range(len(first) - substring_length + 1):
        gram = first[i:i + substring_length]
        grams[gram] = grams.get(gram, 0) + 1

    matches = 0
    for j in range(len(second) - substring_length + 1):
        gram = second[j:j + substring_length]
        count = grams.get(gram, 0)
        if count > 0:
            grams[gram] = count - 1
            matches += 1

    total = len(first) + len(second) - (substring_length - 1) * 2
    return (matches * 2) / total
