"""Shared fixtures: scripted provider fakes and a fully-keyed config."""
import pytest

from domain_research.analysis.llm_client import ProviderRouter
from domain_research.analysis.providers import ProviderError, ProviderFailure
from domain_research.config import Config


class FakeProvider:
    """Stand-in for a provider adapter.

    Answers from ``handler(prompt)`` when given, otherwise pops ``responses``
    in order. Exceptions returned by either are raised.
    """

    def __init__(self, name, responses=None, handler=None):
        self.name = name
        self.responses = list(responses or [])
        self.handler = handler
        self.prompts = []
        self.timeouts = []

    @property
    def calls(self):
        return len(self.prompts)

    async def __call__(self, prompt, timeout_s):
        self.prompts.append(prompt)
        self.timeouts.append(timeout_s)
        if self.handler is not None:
            result = self.handler(prompt)
        elif self.responses:
            result = self.responses.pop(0)
        else:
            result = ProviderError(self.name, ProviderFailure.UPSTREAM_HTTP_ERROR, "no scripted response")
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def config():
    return Config(google_api_key="g-key", openai_api_key="o-key", anthropic_api_key="a-key")


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def make_router(config):
    def _make(**adapters):
        return ProviderRouter(config, adapters=adapters)
    return _make
