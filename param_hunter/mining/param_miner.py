"""
Mining session orchestration.

A :class:`ParamMiner` owns everything one session needs: its config
snapshot, the target, the wordlist, the state machine, the anomaly detector
and the discovery loop. Sessions share no mutable state.
"""

from typing import Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError

from ..core.exceptions import ConfigurationError, LearningCanceled, ParamHunterError
from ..core.helpers import generate_id
from ..core.http_client import Transport
from ..core.logger import get_session_logger
from ..core.models import (
    AdditionalChecksResult,
    AttackLocation,
    Finding,
    MiningSessionPhase,
    MiningSessionState,
    Parameter,
    Request,
    RequestContext,
    RequestResponse,
)
from ..core.config import MiningConfig
from .anomaly import AnomalyDetector
from .discovery import ParamDiscovery
from .events import SessionEvents
from .features.additional_checks import apply_additional_checks, perform_additional_checks
from .features.guess_max_size import guess_max_size
from .features.waf_check import check_for_waf
from .request_builder import RequestBuilder
from .state_manager import StateManager
from .wordlist import Wordlist, extract_words


class ParamMiner:
    """One hidden parameter mining session against a single target."""

    def __init__(
        self,
        transport: Transport,
        target: Request,
        config: MiningConfig,
        wordlist: Union[Wordlist, Iterable[str], None] = None,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or generate_id()
        self.transport = transport
        self.target = target
        self.config = config
        self.wordlist = wordlist if isinstance(wordlist, Wordlist) else Wordlist(wordlist or ())

        self.logger = get_session_logger(self.id)
        self.events = SessionEvents(self.logger)
        self.state_manager = StateManager(self.events)
        self.builder = RequestBuilder(target, config.attack_type, config.update_content_length)
        self.anomaly_detector = AnomalyDetector(self)
        self.discovery = ParamDiscovery(self)

        self.findings: List[Finding] = []
        self.max_size: Optional[int] = None
        self.autopilot_adjusted = False
        self.names_verbatim = False
        self.additional_checks_result: Optional[AdditionalChecksResult] = None
        self.requests_sent = 0

    @property
    def state(self) -> MiningSessionState:
        return self.state_manager.state

    @property
    def phase(self) -> MiningSessionPhase:
        return self.state_manager.phase

    async def start(self) -> None:
        """
        Run the whole session: learning, adaptive probes, then discovery.

        Never raises for session failures; they end in the ``error`` state
        with an error event.
        """
        self.update_state(MiningSessionState.LEARNING, MiningSessionPhase.LEARNING)

        try:
            self.validate_config()
        except ParamHunterError as e:
            self.fail(str(e))
            return

        self.events.log("Sending learn requests...")
        try:
            await self.anomaly_detector.learn_factors()
        except LearningCanceled:
            return
        except Exception as e:
            self.fail(f"Learning failed: {e}")
            return
        if not await self.state_manager.continue_or_wait():
            return
        self.events.log("Learn requests sent.")

        if not await self._calibrate():
            return

        if self.config.extract_words_from_response:
            self._extract_words_from_response()

        self.events.total_adjusted(self.discovery.calculate_total_requests())

        if await self.state_manager.continue_or_wait():
            self.update_state(MiningSessionState.RUNNING, MiningSessionPhase.DISCOVERY)
            await self.discovery.start_discovery()

    def validate_config(self) -> None:
        """
        Re-validate the config snapshot and the target body.

        Raises:
            ConfigurationError: the config violates a constraint.
            UnsupportedBodyError: the body cannot carry parameters.
        """
        try:
            self.config = MiningConfig.model_validate(self.config.model_dump())
        except ValidationError as e:
            messages = "; ".join(error["msg"] for error in e.errors())
            raise ConfigurationError(f"Invalid mining config: {messages}") from e

        if self.config.attack_type == AttackLocation.BODY:
            self.events.debug(f"[param_miner] Body encoding: {self.builder.body_encoding.value}")

    async def _calibrate(self) -> bool:
        """Adaptive probes between learning and discovery."""
        location = self.config.attack_type.value

        if self.config.auto_detect_max_size:
            self.events.log(f"Auto-detecting max {location} size...")
            self.max_size = await guess_max_size(self)
            if not await self.state_manager.continue_or_wait():
                return False
        else:
            self.max_size = self.config.explicit_max_size()

        if self.max_size:
            self.events.log(f"Max {location} size: {self.max_size}")

        if self.config.waf_detection:
            self.events.log("Checking for WAF...")
            waf_response = await check_for_waf(self)
            if not await self.state_manager.continue_or_wait():
                return False
            self.events.log("WAF detected" if waf_response else "No WAF detected")

        if self.config.additional_checks:
            self.events.log("Performing additional learning checks...")
            self.additional_checks_result = await perform_additional_checks(self)
            if not await self.state_manager.continue_or_wait():
                return False
            self.wordlist, self.names_verbatim = apply_additional_checks(
                self.wordlist, self.additional_checks_result
            )
            self.events.log("Additional learning checks completed")

        return True

    def _extract_words_from_response(self) -> int:
        response = self.anomaly_detector.initial_response
        words = extract_words(response.body if response else "")
        added = self.wordlist.extend(words)
        self.events.log(f"Extracted {len(words)} words from initial response ({added} new).")
        return added

    async def send(self, parameters: Sequence[Parameter], context: RequestContext,
                   parameters_sent: int = 0) -> RequestResponse:
        """Build a probe carrying ``parameters``, send it and publish the response."""
        request = self.builder.build(parameters, context)
        response = await self.transport.send(request)
        self.requests_sent += 1

        request_response = RequestResponse(request=request, response=response)
        self.events.response(
            parameters_sent,
            context,
            None if self.config.performance_mode else request_response,
        )
        return request_response

    def add_finding(self, finding: Finding) -> None:
        self.findings.append(finding)
        self.events.finding(finding)

    def update_state(self, state: MiningSessionState,
                     phase: Optional[MiningSessionPhase] = None) -> bool:
        return self.state_manager.update_state(state, phase)

    def fail(self, message: str) -> None:
        """Publish an error and move to the error state, unless already ended."""
        if self.state.is_terminal:
            self.events.debug(f"[param_miner] Ignoring error after {self.state.value}: {message}")
            return
        self.events.error(message)
        self.update_state(MiningSessionState.ERROR)

    def pause(self) -> None:
        self.state_manager.pause()

    def resume(self) -> None:
        self.state_manager.resume()

    def cancel(self) -> None:
        self.state_manager.cancel()

    def __repr__(self):
        return f"ParamMiner(id={self.id!r}, target={self.target.url!r}, state={self.state.value})"
