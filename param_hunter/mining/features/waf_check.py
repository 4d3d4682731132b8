"""
WAF detection with well-known attack patterns.
"""

from typing import TYPE_CHECKING, Optional, Sequence

from ...core.models import Parameter, RequestContext, Response

if TYPE_CHECKING:
    from ..param_miner import ParamMiner

WAF_PATTERNS = (
    "/etc/passwd",
    ".htaccess",
    "<script>alert(1)</script>",
)


async def check_for_waf(miner: "ParamMiner",
                        patterns: Sequence[str] = WAF_PATTERNS) -> Optional[Response]:
    """
    Send each pattern as a parameter value and return the first response
    that deviates from the baseline.

    The returned response is recorded on the anomaly detector so that later
    look-alike block pages are not reported as findings. A failed probe ends
    the check with no WAF.
    """
    events = miner.events

    for pattern in patterns:
        if not await miner.state_manager.continue_or_wait():
            return None

        parameters = [Parameter(name="test", value=pattern)]
        events.debug(f"[waf_check] Testing WAF pattern: {pattern}")
        try:
            request_response = await miner.send(parameters, RequestContext.CALIBRATION)
        except Exception as e:
            events.debug(f"[waf_check] WAF check failed with error: {e}")
            return None

        anomaly = miner.anomaly_detector.has_changes(request_response.response, parameters)
        if anomaly:
            events.debug(f"[waf_check] Pattern {pattern!r} triggered anomaly: {anomaly.kind.value}")
            miner.anomaly_detector.set_waf_response(request_response.response)
            return request_response.response

        events.debug(f"[waf_check] Pattern {pattern!r} did not trigger WAF")

    return None
