"""
Baseline learning and anomaly detection.

The learner sends several probes carrying random, unique parameters and
records which response characteristics stay constant. Later responses are
compared only on those stable factors.
"""

import asyncio
import html
import json
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from ..core.exceptions import ConfigurationError, LearningCanceled
from ..core.helpers import encode_component, random_string, string_similarity
from ..core.models import (
    Anomaly,
    AnomalyType,
    Parameter,
    RequestContext,
    RequestResponse,
    Response,
    StableFactors,
)
from .diffing import DiffTracker

if TYPE_CHECKING:
    from .param_miner import ParamMiner

MIN_LEARN_REQUESTS = 3

DEFAULT_UNSTABLE_HEADERS = frozenset({"content-length", "date", "cf-cache-status"})

LEARNING_SIMILARITY_THRESHOLD = 0.98
DETECTION_SIMILARITY_THRESHOLD = 0.95
WAF_SIMILARITY_THRESHOLD = 0.85


def reflection_variations(value: str) -> List[str]:
    """Forms a reflected value may take in a response body."""
    variations = [value]
    encoded = encode_component(value)
    if encoded != value:
        variations.append(encoded)
    escaped = html.escape(value, quote=True).replace("&#x27;", "&#39;")
    if escaped != value:
        variations.append(escaped)
    return variations


class AnomalyDetector:
    """Learns stable factors for a session and flags deviations from them."""

    def __init__(self, miner: "ParamMiner"):
        self.miner = miner
        self.stable_factors: Optional[StableFactors] = None
        self.initial_request_response: Optional[RequestResponse] = None
        self.differ: Optional[DiffTracker] = None
        self.waf_response: Optional[Response] = None

    @property
    def initial_response(self) -> Optional[Response]:
        if self.initial_request_response is None:
            return None
        return self.initial_request_response.response

    def set_waf_response(self, response: Optional[Response]) -> None:
        self.waf_response = response

    @staticmethod
    def _random_parameters(count: int) -> List[Parameter]:
        return [
            Parameter(name=random_string(10 + count), value=random_string(10))
            for _ in range(count)
        ]

    async def learn_factors(self) -> StableFactors:
        """
        Send the learning probes and compute the stable factors.

        Probe ``i`` carries ``i + 1`` random parameters.

        Raises:
            ConfigurationError: fewer than three learning probes configured.
            LearningCanceled: the session was canceled while learning.
        """
        count = self.miner.config.learn_requests_count
        if count < MIN_LEARN_REQUESTS:
            raise ConfigurationError(f"Learn requests count must be at least {MIN_LEARN_REQUESTS}")

        state = self.miner.state_manager
        events = self.miner.events
        events.debug(f"[anomaly] Starting learning phase with {count} requests")

        samples: List[Tuple[RequestResponse, List[Parameter]]] = []
        for i in range(count):
            if not await state.continue_or_wait():
                events.debug("[anomaly] Learning phase canceled or errored")
                raise LearningCanceled("Learning phase canceled")

            parameters = self._random_parameters(i + 1)
            events.debug(f"[anomaly] Sending learning request {i + 1}/{count}")
            request_response = await self.miner.send(parameters, RequestContext.LEARNING)

            if not await state.continue_or_wait():
                events.debug("[anomaly] Learning phase canceled after request")
                raise LearningCanceled("Learning phase canceled")

            samples.append((request_response, parameters))
            if i < count - 1:
                await asyncio.sleep(self.miner.config.delay_between_requests)

        self.initial_request_response = samples[0][0]
        self.differ = DiffTracker(
            samples[0][0].response.body,
            samples[1][0].response.body,
        )

        stable = self.check_factors(samples[1][0].response, samples[1][1])
        for request_response, parameters in samples[2:]:
            stable = stable.merge(self.check_factors(request_response.response, parameters))

        self.stable_factors = stable
        events.debug(f"[anomaly] Learning phase completed, factors: {stable}")
        return stable

    def check_factors(self, response: Response, parameters: Sequence[Parameter]) -> StableFactors:
        """Compare one learning sample against the first one."""
        initial = self.initial_response
        factors = StableFactors(
            status_code=initial.status,
            unstable_headers=set(DEFAULT_UNSTABLE_HEADERS),
        )

        location = response.first_header("location")
        if location is not None:
            factors.redirect_target = location
            initial_location = initial.first_header("location")
            if initial_location is not None:
                factors.redirect_stable = initial_location == location

        body = response.body or ""
        factors.similarity = string_similarity(initial.body, body)
        factors.similarity_stable = factors.similarity > LEARNING_SIMILARITY_THRESHOLD

        if self.differ is not None and self.differ.has_changes(body):
            factors.body_stable = False

        if response.status != initial.status:
            factors.status_code_stable = False

        for parameter in parameters:
            for variation in reflection_variations(parameter.value):
                factors.reflections_count = max(factors.reflections_count, body.count(variation))

        if len(response.headers) != len(initial.headers):
            factors.headers_stable = False
        else:
            for name, values in response.headers.items():
                if initial.headers.get(name) != values:
                    factors.unstable_headers.add(name)

        return factors

    def has_changes(self, response: Response, parameters: Sequence[Parameter]) -> Optional[Anomaly]:
        """
        Return the first anomaly found in ``response``, or None.

        Only stable factors are checked, cheapest and most reliable first:
        status code, redirect, headers, reflections, body diff, similarity.
        """
        factors = self.stable_factors
        initial = self.initial_response
        if factors is None or initial is None:
            return None

        body = response.body or ""

        # Responses that look like the recorded WAF block page are not signals
        if self.waf_response is not None:
            if (self.waf_response.status == response.status
                    and string_similarity(self.waf_response.body, body) > WAF_SIMILARITY_THRESHOLD):
                return None

        if factors.status_code_stable and response.status != initial.status:
            return Anomaly(
                kind=AnomalyType.STATUS_CODE,
                from_value=str(initial.status),
                to_value=str(response.status),
            )

        if factors.redirect_target and factors.redirect_stable:
            location = response.first_header("location")
            if location and location != factors.redirect_target:
                return Anomaly(
                    kind=AnomalyType.REDIRECT,
                    from_value=factors.redirect_target,
                    to_value=location,
                )

        if factors.headers_stable:
            anomaly = self._check_headers(response, initial, factors)
            if anomaly:
                return anomaly

        if factors.reflection_stable:
            for parameter in parameters:
                reflections = body.count(parameter.value)
                if reflections != factors.reflections_count:
                    return Anomaly(
                        kind=AnomalyType.REFLECTION,
                        which=parameter.name,
                        from_value=str(factors.reflections_count),
                        to_value=str(reflections),
                    )

        if factors.body_stable and self.differ is not None and self.differ.has_changes(body):
            return Anomaly(kind=AnomalyType.BODY)

        if factors.similarity_stable:
            similarity = string_similarity(initial.body, body)
            if similarity < DETECTION_SIMILARITY_THRESHOLD:
                return Anomaly(
                    kind=AnomalyType.SIMILARITY,
                    from_value=f"{factors.similarity:.2f}",
                    to_value=f"{similarity:.2f}",
                )

        return None

    @staticmethod
    def _check_headers(response: Response, initial: Response,
                       factors: StableFactors) -> Optional[Anomaly]:
        for name, values in initial.headers.items():
            if name in factors.unstable_headers:
                continue
            current = response.headers.get(name)
            if current != values:
                return Anomaly(
                    kind=AnomalyType.HEADERS,
                    which=name,
                    from_value=json.dumps(values),
                    to_value=json.dumps(current),
                )

        for name, values in response.headers.items():
            if name not in factors.unstable_headers and name not in initial.headers:
                return Anomaly(
                    kind=AnomalyType.HEADERS,
                    which=name,
                    from_value="N/A",
                    to_value=json.dumps(values),
                )

        return None
