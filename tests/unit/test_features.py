"""
Tests for the adaptive probes: size guessing, WAF detection, autopilot and
special character checks.
"""

import asyncio
from urllib.parse import unquote

import pytest

from param_hunter.core.models import (
    AdditionalChecksResult,
    AttackLocation,
    MiningSessionPhase,
    MiningSessionState,
    Parameter,
    Request,
    RequestContext,
    RequestResponse,
)
from param_hunter.mining.features.additional_checks import (
    apply_additional_checks,
    encode_special_characters,
    perform_additional_checks,
)
from param_hunter.mining.features.autopilot import autopilot_check_response
from param_hunter.mining.features.guess_max_size import SIZE_PROFILES, guess_max_size
from param_hunter.mining.features.waf_check import WAF_PATTERNS, check_for_waf
from param_hunter.mining.wordlist import Wordlist
from tests.conftest import make_response, query_names, query_values


def url_limit_server(limit: int):
    """Answers 414 for URLs longer than ``limit``."""
    def handler(request: Request):
        if len(request.url) > limit:
            return make_response(status=414, body="URI Too Long")
        return make_response()
    return handler


async def learned_miner(make_miner, handler, **config):
    miner = make_miner(handler, **config)
    await miner.anomaly_detector.learn_factors()
    return miner


class TestGuessMaxSize:
    """Test maximum size detection."""

    @pytest.mark.asyncio
    async def test_first_accepted_size_wins(self, make_miner):
        miner = await learned_miner(make_miner, url_limit_server(5000))

        assert await guess_max_size(miner) == 4000
        sizes = [len(query_values(request)[0]) for request in miner.transport.sent(RequestContext.CALIBRATION)]
        assert sizes == [14000, 8000, 4000]

    @pytest.mark.asyncio
    async def test_default_when_every_size_fails(self, make_miner):
        miner = await learned_miner(make_miner, url_limit_server(100))

        assert await guess_max_size(miner) == SIZE_PROFILES[AttackLocation.QUERY].default_size == 500

    @pytest.mark.asyncio
    async def test_probe_errors_count_as_failures(self, make_miner):
        def handler(request):
            if request.context == RequestContext.CALIBRATION and len(request.url) > 3000:
                raise ConnectionError("connection reset")
            return make_response()

        miner = await learned_miner(make_miner, handler)

        assert await guess_max_size(miner) == 2000

    @pytest.mark.asyncio
    async def test_header_count(self, make_miner):
        def handler(request):
            if len(request.headers) > 60:
                return make_response(status=431, body="Request Header Fields Too Large")
            return make_response()

        miner = await learned_miner(make_miner, handler, attack_type=AttackLocation.HEADERS)

        assert await guess_max_size(miner) == 50


class TestWafCheck:
    """Test WAF detection."""

    @pytest.mark.asyncio
    async def test_stops_at_first_triggering_pattern(self, make_miner):
        def handler(request):
            if "/etc/passwd" in query_values(request):
                return make_response(status=403, body="Blocked by WAF")
            return make_response()

        miner = await learned_miner(make_miner, handler)
        response = await check_for_waf(miner)

        assert response.status == 403
        assert miner.anomaly_detector.waf_response is response
        calibration = miner.transport.sent(RequestContext.CALIBRATION)
        assert len(calibration) == 1
        assert query_values(calibration[0]) == [WAF_PATTERNS[0]]

    @pytest.mark.asyncio
    async def test_no_waf(self, make_miner):
        miner = await learned_miner(make_miner, None)

        assert await check_for_waf(miner) is None
        assert len(miner.transport.sent(RequestContext.CALIBRATION)) == len(WAF_PATTERNS)
        assert miner.anomaly_detector.waf_response is None

    @pytest.mark.asyncio
    async def test_probe_error_means_no_waf(self, make_miner):
        def handler(request):
            if request.context == RequestContext.CALIBRATION:
                raise ConnectionError("reset by peer")
            return make_response()

        miner = await learned_miner(make_miner, handler)

        assert await check_for_waf(miner) is None
        assert len(miner.transport.sent(RequestContext.CALIBRATION)) == 1

    @pytest.mark.asyncio
    async def test_later_pattern(self, make_miner):
        def handler(request):
            if any("<script>" in value for value in query_values(request)):
                return make_response(status=406, body="Not Acceptable")
            return make_response()

        miner = await learned_miner(make_miner, handler)
        response = await check_for_waf(miner)

        assert response.status == 406
        assert len(miner.transport.sent(RequestContext.CALIBRATION)) == 3


class TestAutopilot:
    """Test the 414 autopilot."""

    @staticmethod
    def too_long(miner):
        request = miner.builder.build([], RequestContext.DISCOVERY)
        return RequestResponse(request, make_response(status=414))

    @pytest.mark.asyncio
    async def test_lowers_max_size_once(self, make_miner):
        miner = await learned_miner(make_miner, url_limit_server(3000), autopilot_enabled=True)
        miner.max_size = 8000

        assert await autopilot_check_response(miner, self.too_long(miner))
        assert miner.max_size == 2000
        assert miner.autopilot_adjusted
        assert all(request.context == RequestContext.AUTOPILOT
                   for request in miner.transport.sent()[3:])

        sent = len(miner.transport.requests)
        assert not await autopilot_check_response(miner, self.too_long(miner))
        assert len(miner.transport.requests) == sent

    @pytest.mark.asyncio
    async def test_larger_guess_is_ignored(self, make_miner):
        miner = await learned_miner(make_miner, url_limit_server(3000))
        miner.max_size = 1000

        assert not await autopilot_check_response(miner, self.too_long(miner))
        assert miner.max_size == 1000
        assert miner.autopilot_adjusted

    @pytest.mark.asyncio
    async def test_ignores_other_statuses(self, make_miner):
        miner = await learned_miner(make_miner, None)
        request_response = RequestResponse(miner.target, make_response(status=500))

        assert not await autopilot_check_response(miner, request_response)
        assert not miner.autopilot_adjusted

    @pytest.mark.asyncio
    async def test_only_for_query_sessions(self, make_miner):
        miner = await learned_miner(make_miner, None, attack_type=AttackLocation.HEADERS)
        request_response = RequestResponse(miner.target, make_response(status=414))

        assert not await autopilot_check_response(miner, request_response)
        assert not miner.autopilot_adjusted


def special_character_server(accept_encoded: bool):
    """Rejects raw brackets in names, and optionally their encoded form."""
    def handler(request):
        if "[" in request.query:
            return make_response(status=400, body="Bad Request")
        if "%5B" in request.query and not accept_encoded:
            return make_response(status=400, body="Bad Request")
        return make_response()
    return handler


class TestAdditionalChecks:
    """Test special character handling probes."""

    @pytest.mark.asyncio
    async def test_server_handles_special_characters(self, make_miner):
        miner = await learned_miner(make_miner, None)
        result = await perform_additional_checks(miner)

        assert result == AdditionalChecksResult(True, True)
        calibration = miner.transport.sent(RequestContext.CALIBRATION)
        assert len(calibration) == 1
        assert calibration[0].query.startswith("paramhunter[]=")

    @pytest.mark.asyncio
    async def test_only_encoded_form_works(self, make_miner):
        miner = await learned_miner(make_miner, special_character_server(accept_encoded=True))
        result = await perform_additional_checks(miner)

        assert result == AdditionalChecksResult(False, True)
        calibration = miner.transport.sent(RequestContext.CALIBRATION)
        assert calibration[1].query.startswith("paramhunter%5B%5D=")

    @pytest.mark.asyncio
    async def test_nothing_works(self, make_miner):
        miner = await learned_miner(make_miner, special_character_server(accept_encoded=False))

        assert await perform_additional_checks(miner) == AdditionalChecksResult(False, False)

    def test_apply_keeps_wordlist_when_supported(self):
        wordlist = Wordlist(["id", "user[name]"])
        result, verbatim = apply_additional_checks(wordlist, AdditionalChecksResult(True, True))

        assert result.to_list() == ["id", "user[name]"]
        assert not verbatim

    def test_apply_encodes_special_characters(self):
        wordlist = Wordlist(["id", "user[name]", "a.b"])
        result, verbatim = apply_additional_checks(wordlist, AdditionalChecksResult(False, True))

        assert result.to_list() == ["id", "user%5Bname%5D", "a.b"]
        assert verbatim

    def test_apply_drops_special_characters(self):
        wordlist = Wordlist(["id", "user[name]", "a.b", "under_score", "da-sh"])
        result, verbatim = apply_additional_checks(wordlist, AdditionalChecksResult(False, False))

        assert result.to_list() == ["id", "under_score", "da-sh"]
        assert not verbatim

    def test_encode_special_characters(self):
        assert encode_special_characters("a b[]") == "a%20b%5B%5D"
        assert unquote(encode_special_characters("x/y")) == "x/y"

    def test_verbatim_names_reach_the_wire_unchanged(self, make_miner):
        miner = make_miner()
        miner.names_verbatim = True
        parameters = miner.discovery.make_parameters(["user%5Bname%5D"])
        request = miner.builder.build(parameters)

        assert query_names(request) == ["user[name]"]
        assert request.query.startswith("user%5Bname%5D=")
        assert parameters[0] == Parameter("user%5Bname%5D", parameters[0].value, verbatim=True)


def pausing_server(session, respond, then="resume", after=0.05):
    """
    Pauses the session on its first calibration request, then resumes or
    cancels it ``after`` seconds later. Calibration requests that arrive
    while paused are collected in ``session["sent_while_paused"]``.
    """
    session.update(paused=False, sent_while_paused=[])

    def handler(request):
        if request.context == RequestContext.CALIBRATION:
            miner = session["miner"]
            if miner.state == MiningSessionState.PAUSED:
                session["sent_while_paused"].append(request)
            elif not session["paused"]:
                session["paused"] = True
                miner.pause()
                asyncio.get_running_loop().call_later(after, getattr(miner, then))
        return respond(request)
    return handler


class TestPauseDuringCalibration:
    """Test the adaptive probes hold still while the session is paused."""

    async def calibrating_miner(self, make_miner, respond, then="resume"):
        session = {}
        miner = await learned_miner(make_miner, pausing_server(session, respond, then))
        session["miner"] = miner
        miner.update_state(MiningSessionState.LEARNING, MiningSessionPhase.LEARNING)
        return miner, session

    @pytest.mark.asyncio
    async def test_size_guess_waits_for_resume(self, make_miner):
        def respond(request):
            if request.context == RequestContext.CALIBRATION:
                return make_response(status=500, body="error")
            return make_response()

        miner, session = await self.calibrating_miner(make_miner, respond)

        assert await guess_max_size(miner) == 500
        assert session["sent_while_paused"] == []
        assert len(miner.transport.sent(RequestContext.CALIBRATION)) == 5
        assert miner.state == MiningSessionState.LEARNING

    @pytest.mark.asyncio
    async def test_size_guess_stops_when_canceled_while_paused(self, make_miner):
        def respond(request):
            if request.context == RequestContext.CALIBRATION:
                return make_response(status=500, body="error")
            return make_response()

        miner, session = await self.calibrating_miner(make_miner, respond, then="cancel")

        await guess_max_size(miner)

        assert session["sent_while_paused"] == []
        assert len(miner.transport.sent(RequestContext.CALIBRATION)) == 1
        assert miner.state == MiningSessionState.CANCELED

    @pytest.mark.asyncio
    async def test_waf_check_waits_for_resume(self, make_miner):
        miner, session = await self.calibrating_miner(make_miner, lambda request: make_response())

        assert await check_for_waf(miner) is None
        assert session["sent_while_paused"] == []
        assert len(miner.transport.sent(RequestContext.CALIBRATION)) == len(WAF_PATTERNS)

    @pytest.mark.asyncio
    async def test_additional_checks_wait_for_resume(self, make_miner):
        miner, session = await self.calibrating_miner(
            make_miner, special_character_server(accept_encoded=True)
        )

        assert await perform_additional_checks(miner) == AdditionalChecksResult(False, True)
        assert session["sent_while_paused"] == []
        assert len(miner.transport.sent(RequestContext.CALIBRATION)) == 2
