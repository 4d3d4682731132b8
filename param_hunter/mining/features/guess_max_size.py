"""
Maximum request size detection.

Candidate sizes are tried from largest to smallest; the first one the
target accepts without an anomaly wins.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Tuple

from ...core.helpers import random_string
from ...core.models import AttackLocation, Parameter, RequestContext

if TYPE_CHECKING:
    from ..param_miner import ParamMiner


def _many_headers(size: int) -> List[Parameter]:
    return [Parameter(name=random_string(10), value=random_string(10)) for _ in range(size)]


def _oversized_value(size: int) -> List[Parameter]:
    return [Parameter(name="test", value=random_string(size))]


@dataclass(frozen=True)
class SizeProfile:
    """Candidate sizes for one location and how to build a probe of a size."""
    sizes: Tuple[int, ...]
    default_size: int
    make_parameters: Callable[[int], List[Parameter]]
    label: str


SIZE_PROFILES: Dict[AttackLocation, SizeProfile] = {
    AttackLocation.QUERY: SizeProfile((14000, 8000, 4000, 2000, 500), 500, _oversized_value, "URL size"),
    AttackLocation.HEADERS: SizeProfile((100, 80, 50, 20), 20, _many_headers, "header count"),
    AttackLocation.BODY: SizeProfile((100000, 50000, 25000, 10000), 10000, _oversized_value, "body size"),
}


async def guess_max_size(miner: "ParamMiner",
                         context: RequestContext = RequestContext.CALIBRATION) -> int:
    """
    Find the largest candidate size the target tolerates.

    A probe that raises counts as a failed size. Falls back to the
    location's default when every size fails.
    """
    location = miner.config.attack_type
    profile = SIZE_PROFILES[location]
    events = miner.events

    events.debug(f"[guess_max_size] Detecting maximum {location.value} size")

    for size in profile.sizes:
        if not await miner.state_manager.continue_or_wait():
            break

        parameters = profile.make_parameters(size)
        events.debug(f"[guess_max_size] Testing {profile.label} {size}")
        try:
            request_response = await miner.send(parameters, context)
        except Exception as e:
            events.debug(f"[guess_max_size] {profile.label} {size} failed with error: {e}")
            continue

        anomaly = miner.anomaly_detector.has_changes(request_response.response, parameters)
        if anomaly is None:
            events.debug(f"[guess_max_size] {profile.label} {size} successful")
            return size

        events.debug(f"[guess_max_size] {profile.label} {size} failed with anomaly: {anomaly}")

    events.log(
        f"Could not determine maximum {location.value} size, using default of {profile.default_size}"
    )
    return profile.default_size
