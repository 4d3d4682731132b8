"""
Probes for how the target handles special characters in parameter names.
"""

import re
from typing import TYPE_CHECKING, Tuple

from ...core.helpers import encode_component, random_string
from ...core.models import AdditionalChecksResult, Parameter, RequestContext
from ..wordlist import Wordlist

if TYPE_CHECKING:
    from ..param_miner import ParamMiner

RAW_PROBE_NAME = "paramhunter[]"
ENCODED_PROBE_NAME = "paramhunter%5B%5D"

_SPECIAL_CHARACTER = re.compile(r"[^a-zA-Z0-9_-]")


async def _probe_name(miner: "ParamMiner", name: str) -> bool:
    """True if a parameter called ``name`` leaves the response unchanged."""
    parameters = [Parameter(name=name, value=random_string(10), verbatim=True)]
    request_response = await miner.send(parameters, RequestContext.CALIBRATION)
    return miner.anomaly_detector.has_changes(request_response.response, parameters) is None


async def perform_additional_checks(miner: "ParamMiner") -> AdditionalChecksResult:
    """
    Send ``paramhunter[]`` as-is and, if the target chokes on it, its
    percent-encoded form. Probe failures leave the result at its defaults.
    """
    result = AdditionalChecksResult()
    events = miner.events

    try:
        if not await miner.state_manager.continue_or_wait():
            return result
        if await _probe_name(miner, RAW_PROBE_NAME):
            return result

        result.handles_special_characters = False
        if not await miner.state_manager.continue_or_wait():
            return result

        if await _probe_name(miner, ENCODED_PROBE_NAME):
            events.log(
                "Server doesn't handle special characters without URL encoding. "
                "Special characters in your words will get URL encoded."
            )
        else:
            result.handles_encoded_special_characters = False
            events.log(
                "Server doesn't handle special characters, even URL encoded. "
                "Special characters will be ignored."
            )
    except Exception as e:
        events.debug(f"[additional_checks] Special character probe failed: {e}")

    return result


def has_special_characters(word: str) -> bool:
    return bool(_SPECIAL_CHARACTER.search(word))


def encode_special_characters(word: str) -> str:
    return _SPECIAL_CHARACTER.sub(lambda match: encode_component(match.group(0)), word)


def apply_additional_checks(wordlist: Wordlist, result: AdditionalChecksResult) -> Tuple[Wordlist, bool]:
    """
    Adapt the wordlist to what the target accepts.

    Returns:
        The new wordlist and whether names are now in wire form and must be
        sent verbatim.
    """
    if result.handles_special_characters:
        return wordlist, False
    if result.handles_encoded_special_characters:
        return wordlist.map(encode_special_characters), True
    return wordlist.filter(lambda word: not has_special_characters(word)), False
