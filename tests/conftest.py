"""
Shared fixtures for Param Hunter tests.

Sessions run against :class:`FakeTransport`, an in-memory server whose
behaviour is a plain function of the request.
"""

import inspect
from typing import Callable, List, Optional
from urllib.parse import parse_qsl

import pytest

from param_hunter.core.config import MiningConfig
from param_hunter.core.models import AttackLocation, Request, RequestContext, Response
from param_hunter.mining.param_miner import ParamMiner

BASELINE_BODY = "<html>\n<head><title>Profile</title></head>\n<body>\nWelcome back\n</body>\n</html>"


def make_response(status: int = 200, body: str = BASELINE_BODY, headers=None) -> Response:
    """Build a response with stable default headers."""
    if headers is None:
        headers = {"Content-Type": ["text/html"], "Server": ["fake"]}
    return Response(status=status, headers=headers, body=body)


def query_names(request: Request) -> List[str]:
    """Decoded parameter names in the request's query string."""
    return [name for name, _ in parse_qsl(request.query, keep_blank_values=True)]


def query_values(request: Request) -> List[str]:
    return [value for _, value in parse_qsl(request.query, keep_blank_values=True)]


class FakeTransport:
    """Records every request and answers with ``handler(request)``."""

    def __init__(self, handler: Optional[Callable] = None):
        self.handler = handler or (lambda request: make_response())
        self.requests: List[Request] = []

    async def send(self, request: Request) -> Response:
        self.requests.append(request)
        result = self.handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    def sent(self, context: Optional[RequestContext] = None) -> List[Request]:
        if context is None:
            return list(self.requests)
        return [request for request in self.requests if request.context == context]

    async def close(self):
        pass


def secret_server(*secrets: str, status: int = 200) -> Callable:
    """A server whose body changes when any of ``secrets`` is in the query."""
    def handler(request: Request) -> Response:
        names = query_names(request)
        if any(secret in names for secret in secrets):
            return make_response(status=status, body=BASELINE_BODY.replace("Welcome back", "Debug enabled"))
        return make_response()
    return handler


@pytest.fixture
def target():
    """A simple GET target."""
    return Request(
        host="example.com",
        port=443,
        tls=True,
        method="GET",
        path="/api/profile",
        headers={"Host": ["example.com"], "Accept": ["*/*"]},
    )


@pytest.fixture
def mining_config():
    """A fast query mining config with calibration probes disabled."""
    return MiningConfig(
        attack_type=AttackLocation.QUERY,
        learn_requests_count=3,
        delay_between_requests=0,
        auto_detect_max_size=False,
        waf_detection=False,
        additional_checks=False,
        autopilot_enabled=False,
        extract_words_from_response=False,
    )


@pytest.fixture
def make_miner(target, mining_config):
    """Factory for a miner against a fake transport."""
    def factory(handler=None, wordlist=(), target_request=None, **config_changes):
        config = mining_config.model_copy(update=config_changes)
        transport = FakeTransport(handler)
        miner = ParamMiner(transport, target_request or target, config, list(wordlist))
        miner.state_manager.poll_interval = 0.01
        return miner
    return factory
