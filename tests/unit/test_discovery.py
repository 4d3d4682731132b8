"""
Tests for chunk planning, the discovery loop and bisection.
"""

import asyncio
import math

import pytest

from param_hunter.core.models import (
    AnomalyType,
    AttackLocation,
    MiningSessionState,
    RequestContext,
)
from tests.conftest import make_response, query_names, secret_server


async def learn_and_discover(miner):
    """Run learning and discovery without calibration probes."""
    await miner.anomaly_detector.learn_factors()
    miner.max_size = miner.config.explicit_max_size()
    miner.update_state(MiningSessionState.RUNNING)
    await miner.discovery.start_discovery()


class TestChunkPlanning:
    """Test how the wordlist is split into chunks."""

    def test_headers_chunked_by_twenty(self, make_miner):
        """Test 45 header names split into 20, 20 and 5."""
        words = [f"x-header-{i}" for i in range(45)]
        miner = make_miner(wordlist=words, attack_type=AttackLocation.HEADERS)

        chunks = miner.discovery.plan_chunks()
        assert [len(chunk) for chunk in chunks] == [20, 20, 5]
        assert [word for chunk in chunks for word in chunk] == words

    def test_headers_smaller_max_size(self, make_miner):
        miner = make_miner(wordlist=[f"h{i}" for i in range(25)], attack_type=AttackLocation.HEADERS)
        miner.max_size = 10

        assert [len(chunk) for chunk in miner.discovery.plan_chunks()] == [10, 10, 5]

    def test_query_chunks_fit_max_size(self, make_miner):
        """Test no built query probe exceeds the max size."""
        words = [f"param_{i}_{'x' * (i % 13)}" for i in range(400)]
        miner = make_miner(wordlist=words)
        miner.max_size = 300

        chunks = miner.discovery.plan_chunks()
        assert len(chunks) > 1
        for chunk in chunks:
            request = miner.builder.build(miner.discovery.make_parameters(chunk))
            assert len(request.url) <= 300
        assert [word for chunk in chunks for word in chunk] == words

    def test_body_chunks_fit_max_size(self, make_miner, target):
        body_target = target.replace(method="POST", headers={"Content-Type": ["application/json"]},
                                     body='{"id": 1}')
        miner = make_miner(wordlist=[f"field{i}" for i in range(200)], target_request=body_target,
                           attack_type=AttackLocation.BODY)
        miner.max_size = 250

        for chunk in miner.discovery.plan_chunks():
            request = miner.builder.build(miner.discovery.make_parameters(chunk))
            added = len(request.body) - len(body_target.body)
            assert added <= 250

    def test_max_parameters_amount_caps_chunks(self, make_miner):
        miner = make_miner(wordlist=[f"w{i}" for i in range(25)], max_parameters_amount=10)

        assert [len(chunk) for chunk in miner.discovery.plan_chunks()] == [10, 10, 5]

    def test_oversized_word_is_skipped(self, make_miner):
        """Test a word that cannot fit on its own does not stall planning."""
        miner = make_miner(wordlist=["a", "b" * 500, "c"])
        miner.max_size = 100

        assert miner.discovery.plan_chunks() == [["a", "c"]]

    def test_total_from_cursor(self, make_miner):
        miner = make_miner(wordlist=[f"w{i}" for i in range(25)], max_parameters_amount=10)

        assert miner.discovery.calculate_total_requests() == 3
        assert miner.discovery.calculate_total_requests(start=20) == 1


class TestDiscovery:
    """Test the discovery loop end to end against a fake server."""

    @pytest.mark.asyncio
    async def test_isolates_secret_parameter(self, make_miner):
        """Test the single reacting parameter of a chunk is found."""
        miner = make_miner(secret_server("secret"), wordlist=["a", "b", "secret", "c"])
        found = []
        miner.events.on_finding(lambda event: found.append(event.finding))

        await learn_and_discover(miner)

        assert [finding.parameter.name for finding in miner.findings] == ["secret"]
        assert found == miner.findings
        assert miner.findings[0].anomaly_kind == AnomalyType.BODY
        assert miner.state == MiningSessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_bisection_is_logarithmic(self, make_miner):
        words = [f"word{i}" for i in range(64)]
        miner = make_miner(secret_server("word37"), wordlist=words)

        await learn_and_discover(miner)

        narrowing = miner.transport.sent(RequestContext.NARROWER)
        assert [finding.parameter.name for finding in miner.findings] == ["word37"]
        assert len(narrowing) <= 2 * math.log2(len(words)) + 4

    @pytest.mark.asyncio
    async def test_several_secrets_in_one_chunk(self, make_miner):
        miner = make_miner(secret_server("b", "d"), wordlist=["a", "b", "c", "d", "e"])

        await learn_and_discover(miner)

        assert sorted(finding.parameter.name for finding in miner.findings) == ["b", "d"]

    @pytest.mark.asyncio
    async def test_non_reproducible_anomaly_is_skipped(self, make_miner):
        """Test a one-off anomaly does not trigger narrowing."""
        discovery_seen = []

        def handler(request):
            if request.context == RequestContext.DISCOVERY and not discovery_seen:
                discovery_seen.append(request)
                return make_response(status=500)
            return make_response()

        miner = make_miner(handler, wordlist=["a", "b"])
        await learn_and_discover(miner)

        assert miner.findings == []
        assert len(miner.transport.sent(RequestContext.NARROWER)) == 1

    @pytest.mark.asyncio
    async def test_combination_only_anomaly_is_false_positive(self, make_miner):
        logs = []

        def handler(request):
            names = query_names(request)
            if "a" in names and "b" in names:
                return make_response(status=500)
            return make_response()

        miner = make_miner(handler, wordlist=["a", "b"])
        miner.events.on_log(lambda event: logs.append(event.message))
        await learn_and_discover(miner)

        assert miner.findings == []
        assert any("False positive" in message for message in logs)

    @pytest.mark.asyncio
    async def test_repack_logs_words_that_no_longer_fit(self, make_miner):
        """Test words dropped after the autopilot lowers the limit are reported."""
        oversized = "x" * 1600
        logs = []

        def handler(request):
            if len(request.url) > 1500:
                return make_response(status=414, body="URI Too Long")
            return make_response()

        miner = make_miner(handler, wordlist=["alpha", oversized, "omega"],
                           autopilot_enabled=True, max_query_size=5000)
        miner.events.on_log(lambda event: logs.append(event.message))
        await learn_and_discover(miner)

        assert miner.max_size == 500
        assert miner.state == MiningSessionState.COMPLETED
        assert any(message.startswith(f"Skipping parameter '{oversized}'") for message in logs)
        repacked = miner.transport.sent(RequestContext.DISCOVERY)[1:]
        assert [query_names(request) for request in repacked] == [["alpha", "omega"]]

    @pytest.mark.asyncio
    async def test_ignored_anomaly_types(self, make_miner):
        miner = make_miner(secret_server("secret"), wordlist=["secret"],
                           ignore_anomaly_types=[AnomalyType.BODY, AnomalyType.SIMILARITY])

        await learn_and_discover(miner)

        assert miner.findings == []
        assert miner.transport.sent(RequestContext.NARROWER) == []

    @pytest.mark.asyncio
    async def test_requests_match_prediction(self, make_miner):
        """Test the predicted chunk count equals the chunks actually sent."""
        miner = make_miner(wordlist=[f"param{i}" for i in range(300)], max_query_size=400)
        miner.max_size = 400
        predicted = miner.discovery.calculate_total_requests()
        progress = []
        miner.events.on_progress(lambda event: progress.append((event.completed, event.total)))

        await learn_and_discover(miner)

        assert len(miner.transport.sent(RequestContext.DISCOVERY)) == predicted
        assert progress[-1] == (predicted, predicted)

    @pytest.mark.asyncio
    async def test_rate_limit_cancels(self, make_miner):
        """Test a 429 cancels the session and stops all requests."""
        def handler(request):
            if request.context == RequestContext.DISCOVERY:
                return make_response(status=429, body="Too Many Requests")
            return make_response()

        miner = make_miner(handler, wordlist=[f"w{i}" for i in range(30)], max_parameters_amount=5)
        await learn_and_discover(miner)

        assert miner.state == MiningSessionState.CANCELED
        assert len(miner.transport.sent(RequestContext.DISCOVERY)) == 1
        assert miner.transport.requests[-1].context == RequestContext.DISCOVERY

    @pytest.mark.asyncio
    async def test_rate_limit_during_narrowing(self, make_miner):
        def handler(request):
            if request.context == RequestContext.NARROWER:
                return make_response(status=429)
            return secret_server("secret")(request)

        miner = make_miner(handler, wordlist=["a", "secret"])
        await learn_and_discover(miner)

        assert miner.state == MiningSessionState.CANCELED
        assert len(miner.transport.sent(RequestContext.NARROWER)) == 1

    @pytest.mark.asyncio
    async def test_pause_resume_continues_at_same_chunk(self, make_miner):
        """Test chunks after a pause follow on exactly, with none repeated or lost."""
        words = [f"w{i}" for i in range(10)]
        miner = make_miner(wordlist=words, max_parameters_amount=2)
        discovery_count = []

        def handler(request):
            if request.context == RequestContext.DISCOVERY:
                discovery_count.append(request)
                if len(discovery_count) == 2:
                    miner.pause()
                    asyncio.get_running_loop().call_later(0.05, miner.resume)
            return make_response()

        miner.transport.handler = handler
        states = []
        miner.events.on_state_change(lambda event: states.append(event.new_state))

        await learn_and_discover(miner)

        sent = [query_names(request) for request in miner.transport.sent(RequestContext.DISCOVERY)]
        assert sent == [words[i:i + 2] for i in range(0, 10, 2)]
        assert MiningSessionState.PAUSED in states
        assert miner.state == MiningSessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_stops_requests(self, make_miner):
        miner = make_miner(wordlist=[f"w{i}" for i in range(10)], max_parameters_amount=2)

        def handler(request):
            if request.context == RequestContext.DISCOVERY:
                miner.cancel()
            return make_response()

        miner.transport.handler = handler
        await learn_and_discover(miner)

        assert len(miner.transport.sent(RequestContext.DISCOVERY)) == 1
        assert miner.state == MiningSessionState.CANCELED

    @pytest.mark.asyncio
    async def test_timeout(self, make_miner):
        """Test the deadline is checked before every chunk."""
        now = [0.0]

        def handler(request):
            if request.context == RequestContext.DISCOVERY:
                now[0] += 10
            return make_response()

        miner = make_miner(handler, wordlist=[f"w{i}" for i in range(10)],
                           max_parameters_amount=2, timeout=15)
        miner.discovery.clock = lambda: now[0]

        await learn_and_discover(miner)

        assert miner.state == MiningSessionState.TIMEOUT
        assert len(miner.transport.sent(RequestContext.DISCOVERY)) == 2

    @pytest.mark.asyncio
    async def test_transport_error_ends_in_error_state(self, make_miner):
        errors = []

        def handler(request):
            if request.context == RequestContext.DISCOVERY:
                raise ConnectionError("connection reset")
            return make_response()

        miner = make_miner(handler, wordlist=["a"])
        miner.events.on_error(lambda event: errors.append(event.message))
        await learn_and_discover(miner)

        assert miner.state == MiningSessionState.ERROR
        assert errors and "connection reset" in errors[0]
