"""
Autopilot reactions to responses seen during discovery.
"""

from typing import TYPE_CHECKING

from ...core.models import AttackLocation, RequestContext, RequestResponse
from .guess_max_size import guess_max_size

if TYPE_CHECKING:
    from ..param_miner import ParamMiner

URI_TOO_LONG = 414


async def autopilot_check_response(miner: "ParamMiner", request_response: RequestResponse) -> bool:
    """
    Re-detect the max URL size after a ``414 URI Too Long``.

    Runs at most once per session. The new size is adopted only when it is
    smaller than the current one.

    Returns:
        True if the session's max size was lowered.
    """
    if request_response.response.status != URI_TOO_LONG:
        return False
    if miner.config.attack_type != AttackLocation.QUERY or miner.autopilot_adjusted:
        return False

    miner.autopilot_adjusted = True
    miner.events.log("[AUTOPILOT] Received 414: URI Too Long, adjusting max URL size.")

    new_size = await guess_max_size(miner, RequestContext.AUTOPILOT)
    current = miner.max_size

    if current is not None and new_size == current:
        miner.events.log("[AUTOPILOT] Guessed the same max URL size as before, ignoring.")
        return False
    if current is not None and new_size > current:
        miner.events.log("[AUTOPILOT] Guessed greater max URL size than before, ignoring.")
        return False

    miner.events.log(f"[AUTOPILOT] Adjusting max URL size to {new_size} (old: {current})")
    miner.max_size = new_size
    return True
