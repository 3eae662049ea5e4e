"""Acquisition pipeline: cache check, staging pre-control, retry policy."""

import asyncio
import logging
import threading
import time

import pytest
import pytest_asyncio

from acme_companion.certmanager.models import DomainSet
from acme_companion.certmanager.pipeline import AcquisitionPipeline
from acme_companion.shared.exceptions import (
    AcquisitionTimeoutError,
    IssuanceError,
    RenewalError,
    StagingValidationError,
)

from factories import FakeACMEClient, make_record

pytestmark = pytest.mark.certificates


@pytest_asyncio.fixture
async def pipeline(registry, staging, production, settings, webhook):
    pipeline = AcquisitionPipeline(registry, staging, production, settings, webhook=webhook)
    yield pipeline
    await pipeline.stop()


def outstanding_task(pipeline, key):
    return pipeline._outstanding[key]


@pytest.mark.asyncio
async def test_fresh_cached_certificate_is_returned_without_issuing(pipeline, production, staging, domain_set):
    production.default_cached = make_record(domain_set.hostnames, 25)

    record = await pipeline.acquire(domain_set)

    assert record is production.default_cached
    assert production.operations() == ["check"]
    assert staging.operations() == []


@pytest.mark.asyncio
async def test_expiring_certificate_goes_through_staging_then_renew(pipeline, production, call_log, domain_set):
    production.default_cached = make_record(domain_set.hostnames, 10)

    record = await pipeline.acquire(domain_set)

    assert [(env, op) for env, op, _ in call_log] == [
        ("production", "check"),
        ("staging", "issue"),
        ("production", "renew"),
    ]
    assert record.remaining().days >= 89


@pytest.mark.asyncio
async def test_missing_certificate_goes_through_staging_then_issue(pipeline, call_log, domain_set):
    await pipeline.acquire(domain_set)

    assert [(env, op) for env, op, _ in call_log] == [
        ("production", "check"),
        ("staging", "issue"),
        ("production", "issue"),
    ]
    assert call_log[-1][2] == ("a.example.com", "b.example.com")


@pytest.mark.asyncio
async def test_staging_failure_never_reaches_production(pipeline, staging, production, domain_set):
    staging.issue_error = RuntimeError("urn:ietf:params:acme:error:unauthorized")

    with pytest.raises(StagingValidationError) as exc_info:
        await pipeline.acquire(domain_set)

    assert exc_info.value.hostnames == domain_set.hostnames
    assert production.operations() == ["check"]


@pytest.mark.asyncio
async def test_disabled_precontrol_skips_staging(pipeline, settings, staging, production, domain_set):
    settings.disable_staging_precontrol = True

    await pipeline.acquire(domain_set)

    assert staging.operations() == []
    assert production.operations() == ["check", "issue"]


@pytest.mark.asyncio
async def test_production_errors_are_classified(pipeline, production, domain_set):
    production.issue_error = RuntimeError("rate limited")
    with pytest.raises(IssuanceError):
        await pipeline.acquire(domain_set)

    production.default_cached = make_record(domain_set.hostnames, 3)
    production.renew_error = RuntimeError("order invalid")
    with pytest.raises(RenewalError):
        await pipeline.acquire(domain_set)


@pytest.mark.asyncio
async def test_failures_back_off_linearly_then_give_up(pipeline, registry, production, domain_set, caplog):
    caplog.set_level(logging.INFO)
    production.issue_error = RuntimeError("challenge failed")
    registry.add(domain_set)
    pipeline.submit(domain_set)
    task = outstanding_task(pipeline, domain_set.key)
    loop = asyncio.get_running_loop()

    for attempt in range(1, 11):
        await pipeline.process(task)
        assert task.retry_count == attempt
        assert domain_set.retry_count == attempt
        assert task.retry_handle is not None
        delay = task.retry_handle.when() - loop.time()
        assert attempt * 1 - 0.5 < delay <= attempt * 1
        pipeline.queue.cancel_timer(task.retry_handle)

    await pipeline.process(task)

    assert task.retry_count == 11
    assert task.retry_handle is None
    assert not pipeline.is_outstanding(domain_set.key)
    assert "Giving up on a.example.com,b.example.com after 11 failed attempts (max 10)" in caplog.text


@pytest.mark.asyncio
async def test_success_resets_retry_count_and_pushes_webhook(pipeline, registry, staging, webhook, domain_set):
    staging.issue_error = RuntimeError("dns not ready")
    registry.add(domain_set)
    pipeline.submit(domain_set)
    task = outstanding_task(pipeline, domain_set.key)

    await pipeline.process(task)
    pipeline.queue.cancel_timer(task.retry_handle)
    assert task.retry_count == 1

    staging.issue_error = None
    await pipeline.process(task)

    assert task.retry_count == 0
    assert domain_set.retry_count == 0
    assert [cert.subject for cert in webhook.pushed] == ["a.example.com"]
    assert not pipeline.is_outstanding(domain_set.key)


@pytest.mark.asyncio
async def test_cached_certificate_is_pushed_to_webhook(pipeline, registry, production, webhook, domain_set):
    production.default_cached = make_record(domain_set.hostnames, 60)
    registry.add(domain_set)
    pipeline.submit(domain_set)

    await pipeline.process(outstanding_task(pipeline, domain_set.key))

    assert webhook.pushed == [production.default_cached]


@pytest.mark.asyncio
async def test_slow_acquisition_times_out_and_is_retried(pipeline, registry, settings, domain_set, monkeypatch):
    settings.acquisition_timeout = 0.05

    async def hang(_domain_set):
        await asyncio.sleep(5)

    monkeypatch.setattr(pipeline, "acquire", hang)
    errors = []
    original = pipeline._on_failure
    monkeypatch.setattr(pipeline, "_on_failure", lambda task, error: (errors.append(error), original(task, error)))

    registry.add(domain_set)
    pipeline.submit(domain_set)
    task = outstanding_task(pipeline, domain_set.key)
    await pipeline.process(task)

    assert isinstance(errors[0], AcquisitionTimeoutError)
    assert task.retry_count == 1
    assert task.retry_handle is not None


@pytest.mark.asyncio
async def test_submit_is_deduplicated_per_key(pipeline, domain_set):
    assert pipeline.submit(domain_set) is True
    assert pipeline.submit(domain_set) is False
    assert len(pipeline.queue) == 1


@pytest.mark.asyncio
async def test_cancelled_task_is_skipped(pipeline, registry, call_log, domain_set):
    registry.add(domain_set)
    pipeline.submit(domain_set)
    task = outstanding_task(pipeline, domain_set.key)

    assert pipeline.cancel(domain_set.key) is True
    await pipeline.process(task)

    assert call_log == []
    assert pipeline.cancel(domain_set.key) is False


@pytest.mark.asyncio
async def test_result_for_removed_domain_is_discarded(pipeline, registry, webhook, domain_set, monkeypatch):
    registry.add(domain_set)
    pipeline.submit(domain_set)
    task = outstanding_task(pipeline, domain_set.key)
    original = pipeline.acquire

    async def acquire_then_remove(ds):
        record = await original(ds)
        registry.remove(ds.key)
        return record

    monkeypatch.setattr(pipeline, "acquire", acquire_then_remove)
    await pipeline.process(task)

    assert webhook.pushed == []
    assert not pipeline.is_outstanding(domain_set.key)


@pytest.mark.asyncio
async def test_worker_processes_tasks_in_order(pipeline, registry, call_log, webhook):
    first = DomainSet(key="one.example.com", hostnames=["one.example.com"], email="a@example.com")
    second = DomainSet(key="two.example.com", hostnames=["two.example.com"], email="a@example.com")
    for domain_set in (first, second):
        registry.add(domain_set)
        pipeline.submit(domain_set)

    pipeline.start()
    await asyncio.wait_for(pipeline.queue.join(), timeout=5)

    issued = [hosts[0] for env, op, hosts in call_log if env == "production" and op == "issue"]
    assert issued == ["one.example.com", "two.example.com"]
    assert [cert.subject for cert in webhook.pushed] == ["one.example.com", "two.example.com"]


class SlowIssuer(FakeACMEClient):
    """Blocks its executor thread while counting concurrent issue calls."""

    def __init__(self, *args, delay=0.3, **kwargs):
        super().__init__(*args, **kwargs)
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def issue(self, hostnames, email):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
            return super().issue(hostnames, email)
        finally:
            with self._lock:
                self.active -= 1


async def drained(issuer):
    while issuer.active:
        await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_timed_out_issuance_is_not_overlapped(registry, staging, call_log, settings, webhook):
    settings.acquisition_timeout = 0.1
    settings.max_retry = 0
    settings.disable_staging_precontrol = True
    production = SlowIssuer("production", call_log)
    pipeline = AcquisitionPipeline(registry, staging, production, settings, webhook=webhook)

    for name in ("one.example.com", "two.example.com", "three.example.com"):
        domain_set = DomainSet(key=name, hostnames=[name], email="ops@example.com")
        registry.add(domain_set)
        pipeline.submit(domain_set)

    pipeline.start()
    try:
        await asyncio.wait_for(pipeline.queue.join(), timeout=5)
        await asyncio.wait_for(drained(production), timeout=5)
    finally:
        await pipeline.stop()

    assert production.peak == 1
    assert webhook.pushed == []
