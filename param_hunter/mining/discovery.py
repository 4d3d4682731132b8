"""
Chunked parameter discovery and bisection.

The wordlist is split into size-bounded chunks. Each chunk is sent in one
probe; a chunk whose anomaly reproduces is narrowed down with an explicit
work stack until the responsible parameters are isolated.
"""

import asyncio
import time
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from ..core.helpers import random_string
from ..core.models import (
    Anomaly,
    AttackLocation,
    Finding,
    MiningSessionState,
    Parameter,
    RequestContext,
    RequestResponse,
    Response,
)
from .features.autopilot import autopilot_check_response

if TYPE_CHECKING:
    from .param_miner import ParamMiner

PARAMS_VALUES_SIZE = 8
DEFAULT_HEADER_CHUNK_SIZE = 20
RATE_LIMIT_STATUS = 429


class ParamDiscovery:
    """Drives the request, detect, verify and narrow cycle for one session."""

    def __init__(self, miner: "ParamMiner"):
        self.miner = miner
        self.last_wordlist_index = 0
        self.completed_chunks = 0
        self.total_chunks = 0
        self.clock = time.monotonic
        self._words: Optional[List[str]] = None

    @property
    def events(self):
        return self.miner.events

    @property
    def state(self):
        return self.miner.state_manager

    def _current_words(self) -> List[str]:
        if self._words is None:
            return self.miner.wordlist.to_list()
        return self._words

    # Chunk planning

    def _parameter_value(self) -> str:
        custom_value = self.miner.config.custom_value
        value = random_string(PARAMS_VALUES_SIZE)
        return f"{custom_value}{value}" if custom_value else value

    def make_parameters(self, names: Sequence[str]) -> List[Parameter]:
        """Fresh random values for every probe, so reflections are per probe."""
        verbatim = self.miner.names_verbatim
        return [Parameter(name=name, value=self._parameter_value(), verbatim=verbatim) for name in names]

    def pack_chunk(self, words: Sequence[str], start: int,
                   max_size: Optional[int]) -> Tuple[List[str], int, List[str]]:
        """
        Take the next chunk of ``words`` starting at ``start``.

        Headers are chunked by count. Query and body chunks are packed
        greedily by serialized size, starting from the location's base cost.

        Returns:
            The chunk, the index after it, and words skipped because they do
            not fit within ``max_size`` even on their own.
        """
        limit = self.miner.config.max_parameters_amount

        if self.miner.config.attack_type == AttackLocation.HEADERS:
            size = min(max_size, DEFAULT_HEADER_CHUNK_SIZE) if max_size else DEFAULT_HEADER_CHUNK_SIZE
            if limit:
                size = min(size, limit)
            end = min(start + size, len(words))
            return list(words[start:end]), end, []

        builder = self.miner.builder
        base_size = builder.base_cost()
        current_size = base_size
        chunk: List[str] = []
        skipped: List[str] = []
        index = start

        while index < len(words) and (not limit or len(chunk) < limit):
            word = words[index]
            cost = builder.parameter_cost(
                Parameter(name=word, value=self._parameter_value(), verbatim=self.miner.names_verbatim)
            )
            if max_size and base_size + cost > max_size:
                skipped.append(word)
                index += 1
                continue
            if max_size and current_size + cost > max_size:
                break

            chunk.append(word)
            current_size += cost
            index += 1

        return chunk, index, skipped

    def plan_chunks(self, start: int = 0, max_size: Optional[int] = None,
                    words: Optional[Sequence[str]] = None) -> List[List[str]]:
        """Simulate chunking from ``start`` without sending anything."""
        words = self._current_words() if words is None else words
        max_size = self.miner.max_size if max_size is None else max_size
        chunks = []
        index = start
        while index < len(words):
            chunk, index, _ = self.pack_chunk(words, index, max_size)
            if chunk:
                chunks.append(chunk)
        return chunks

    def calculate_total_requests(self, start: int = 0) -> int:
        """Number of chunks discovery will send from ``start``."""
        return len(self.plan_chunks(start))

    def has_more_parameters(self) -> bool:
        return self.last_wordlist_index < len(self._current_words())

    # Main loop

    async def start_discovery(self) -> None:
        timeout = self.miner.config.timeout
        start_time = self.clock()
        self._words = self.miner.wordlist.to_list()
        self.total_chunks = self.calculate_total_requests(self.last_wordlist_index)

        self.events.debug(f"[discovery] Starting discovery with timeout {timeout}s")
        self.events.progress(self.completed_chunks, self.total_chunks)

        try:
            await self._process_parameters(timeout, start_time)
        except Exception as e:
            self.miner.fail(f"Discovery error: {e}")
            return

        if await self.state.continue_or_wait():
            self._complete_discovery(start_time)

    async def _process_parameters(self, timeout: float, start_time: float) -> None:
        while self.has_more_parameters():
            if not await self.state.continue_or_wait():
                self.events.debug("[discovery] Discovery canceled or errored")
                return

            if self.clock() - start_time > timeout:
                self._handle_timeout(timeout)
                return

            chunk, self.last_wordlist_index, skipped = self.pack_chunk(
                self._words, self.last_wordlist_index, self.miner.max_size
            )
            self._log_skipped(skipped)

            if not chunk:
                self.events.debug("[discovery] No more parameters to process")
                break

            await self._process_chunk(chunk)

    def _log_skipped(self, skipped: Sequence[str]) -> None:
        for word in skipped:
            self.events.log(f"Skipping parameter {word!r}: it does not fit within max size")

    def _handle_timeout(self, timeout: float) -> None:
        message = f"Discovery timed out after {timeout}s"
        self.events.log(message)
        self.miner.update_state(MiningSessionState.TIMEOUT)

    def _chunk_done(self) -> None:
        self.completed_chunks += 1
        if self.state.should_continue():
            self.events.progress(self.completed_chunks, self.total_chunks)

    async def _process_chunk(self, names: List[str], allow_autopilot: bool = True) -> None:
        self.events.debug(f"[discovery] Processing chunk of {len(names)} parameters")

        parameters = self.make_parameters(names)
        request_response = await self._send(parameters, RequestContext.DISCOVERY, len(names))

        if not await self.state.continue_or_wait():
            self.events.debug("[discovery] Discovery canceled after request")
            return

        if allow_autopilot and self.miner.config.autopilot_enabled:
            if await autopilot_check_response(self.miner, request_response):
                await self._repack_chunk(names)
                return

        anomaly = self._detect(request_response.response, parameters)
        if anomaly:
            await self._handle_anomaly(names, anomaly)

        self._chunk_done()
        await self._delay()

    async def _repack_chunk(self, names: List[str]) -> None:
        """Split a chunk the server rejected as too large under the new limit."""
        sub_chunks = []
        index = 0
        while index < len(names):
            sub_chunk, index, skipped = self.pack_chunk(names, index, self.miner.max_size)
            self._log_skipped(skipped)
            if sub_chunk:
                sub_chunks.append(sub_chunk)

        remaining = self.calculate_total_requests(self.last_wordlist_index)
        self.total_chunks = self.completed_chunks + len(sub_chunks) + remaining
        self.events.total_adjusted(self.total_chunks)

        for sub_chunk in sub_chunks:
            if not await self.state.continue_or_wait():
                return
            await self._process_chunk(sub_chunk, allow_autopilot=False)

    async def _send(self, parameters: List[Parameter], context: RequestContext,
                    parameters_sent: int = 0) -> RequestResponse:
        request_response = await self.miner.send(parameters, context, parameters_sent)
        if request_response.response.status == RATE_LIMIT_STATUS:
            self._handle_rate_limit()
        return request_response

    def _handle_rate_limit(self) -> None:
        self.events.debug(f"[discovery] Rate limit detected ({RATE_LIMIT_STATUS})")
        self.events.log("Rate limited, canceling discovery. Please adjust delay between requests.")
        self.miner.cancel()

    def _detect(self, response: Response, parameters: Sequence[Parameter]) -> Optional[Anomaly]:
        anomaly = self.miner.anomaly_detector.has_changes(response, parameters)
        if anomaly and anomaly.kind in self.miner.config.ignore_anomaly_types:
            self.events.debug(f"[discovery] Ignoring {anomaly.kind.value} anomaly")
            return None
        return anomaly

    async def _handle_anomaly(self, names: List[str], anomaly: Anomaly) -> None:
        self.events.debug(f"[discovery] Initial anomaly detected: {anomaly}")

        # The anomaly must reproduce before any narrowing work begins
        parameters = self.make_parameters(names)
        request_response = await self._send(parameters, RequestContext.NARROWER)
        if not await self.state.continue_or_wait():
            self.events.debug("[discovery] Discovery canceled during verification")
            return

        verified = self._detect(request_response.response, parameters)
        if not verified:
            self.events.log(f"Anomaly {anomaly.kind.value.upper()} did not reproduce, skipping chunk.")
            return

        self.events.log(
            f"Anomaly {verified.kind.value.upper()} detected in response. "
            f"Narrowing down {len(names)} parameters."
        )
        findings = await self.narrow_down_wordlist(names)
        self.events.debug(f"[discovery] Narrowed down to {len(findings)} parameters")

        if not findings and self.state.should_continue():
            self.events.log("False positive - no parameters could be isolated")

    async def narrow_down_wordlist(self, names: Sequence[str]) -> List[Finding]:
        """
        Bisect ``names`` down to the parameters that cause an anomaly.

        Uses an explicit stack so cancellation is checked between every
        step. Both halves of an anomalous sub-chunk are explored, so several
        causes in one chunk are all found.
        """
        findings: List[Finding] = []
        stack: List[List[str]] = [list(names)]

        self.events.debug(f"[discovery] Starting narrowing with {len(names)} parameters")

        while stack:
            current = stack.pop()
            if not current:
                continue

            if not await self.state.continue_or_wait():
                self.events.debug("[discovery] Narrowing canceled")
                return findings

            parameters = self.make_parameters(current)
            request_response = await self._send(parameters, RequestContext.NARROWER)

            if not await self.state.continue_or_wait():
                self.events.debug("[discovery] Narrowing canceled after request")
                return findings

            anomaly = self._detect(request_response.response, parameters)
            if not anomaly:
                self.events.debug(f"[discovery] No anomaly detected for chunk of {len(current)} parameters")
            elif len(current) == 1:
                finding = await self._confirm_parameter(current)
                if finding is None and not self.state.should_continue():
                    return findings
                if finding:
                    findings.append(finding)
                    self.miner.add_finding(finding)
            else:
                mid = len(current) // 2
                first_half, second_half = current[:mid], current[mid:]
                self.events.debug(
                    f"[discovery] Splitting chunk into {len(first_half)} and {len(second_half)} parameters"
                )
                stack.append(second_half)
                stack.append(first_half)

            await self._delay()

        self.events.debug(f"[discovery] Narrowing complete - found {len(findings)} parameters")
        return findings

    async def _confirm_parameter(self, names: List[str]) -> Optional[Finding]:
        parameters = self.make_parameters(names)
        request_response = await self._send(parameters, RequestContext.NARROWER)

        if not await self.state.continue_or_wait():
            self.events.debug("[discovery] Narrowing canceled during verification")
            return None

        anomaly = self._detect(request_response.response, parameters)
        parameter = parameters[0]
        if not anomaly:
            self.events.debug(f"[discovery] Parameter verification failed: {parameter.name}")
            return None

        self.events.debug(f"[discovery] Parameter verified: {parameter.name} ({anomaly.kind.value})")
        return Finding(
            parameter=parameter,
            request_response=request_response,
            anomaly_kind=anomaly.kind,
            anomaly=anomaly,
        )

    async def _delay(self) -> None:
        await asyncio.sleep(self.miner.config.delay_between_requests)

    def _complete_discovery(self, start_time: float) -> None:
        total_time = self.clock() - start_time
        if self.miner.update_state(MiningSessionState.COMPLETED):
            self.events.log(f"Discovery complete in {total_time:.2f}s")
