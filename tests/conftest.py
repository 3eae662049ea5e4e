"""Shared fixtures for the ACME companion tests."""

from typing import List

import pytest

from acme_companion.certmanager.models import DomainSet
from acme_companion.certmanager.registry import DomainRegistry
from acme_companion.shared.config import Settings

from factories import FakeACMEClient, FakePipeline, FakeWebhook


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        debug=False,
        retry_interval=1,
        max_retry=10,
        acquisition_timeout=5,
        renewal_threshold_days=15,
        disable_staging_precontrol=False,
        docker_polling=False,
        webhook_host="proxy_proxy",
    )


@pytest.fixture
def registry() -> DomainRegistry:
    return DomainRegistry()


@pytest.fixture
def call_log() -> List[tuple]:
    return []


@pytest.fixture
def staging(call_log) -> FakeACMEClient:
    return FakeACMEClient("staging", call_log)


@pytest.fixture
def production(call_log) -> FakeACMEClient:
    return FakeACMEClient("production", call_log)


@pytest.fixture
def webhook() -> FakeWebhook:
    return FakeWebhook()


@pytest.fixture
def fake_pipeline() -> FakePipeline:
    return FakePipeline()


@pytest.fixture
def domain_set() -> DomainSet:
    return DomainSet(
        key="a.example.com,b.example.com",
        hostnames=["a.example.com", "b.example.com"],
        email="ops@example.com"
    )
