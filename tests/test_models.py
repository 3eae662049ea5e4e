"""Domain and certificate models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from acme_companion.certmanager.models import CertificateRecord, DomainSet

from factories import make_record


def test_domain_set_normalizes_hostnames():
    domain_set = DomainSet(key="k", hostnames=[" A.example.com", "a.example.com", "b.example.com "], email="Ops@Example.com")

    assert domain_set.hostnames == ["a.example.com", "b.example.com"]
    assert domain_set.subject == "a.example.com"
    assert domain_set.email == "ops@example.com"


def test_domain_set_requires_a_hostname():
    with pytest.raises(ValidationError):
        DomainSet(key="k", hostnames=["  "], email="ops@example.com")


def test_renewal_threshold():
    now = datetime.now(timezone.utc)
    record = make_record(["a.example.com"], 20)

    assert not record.needs_renewal(15, now)
    assert record.needs_renewal(15, now + timedelta(days=6))
    assert record.needs_renewal(25, now)


def test_naive_expiry_is_treated_as_utc():
    record = CertificateRecord(
        subject="a.example.com",
        hostnames=["a.example.com"],
        private_key="KEY",
        certificate="CERT",
        not_after=datetime(2030, 1, 1)
    )

    assert record.not_after.tzinfo == timezone.utc


def test_webhook_body_and_coverage():
    record = CertificateRecord(
        subject="a.example.com",
        hostnames=["a.example.com", "b.example.com"],
        private_key="KEY",
        certificate="CERT",
        chain="CHAIN",
        not_after=datetime(2030, 1, 1, tzinfo=timezone.utc)
    )

    assert record.webhook_body() == "KEY\nCERT\nCHAIN\n"
    assert record.fullchain == "CERTCHAIN"
    assert record.covers(["B.example.com"])
    assert not record.covers(["c.example.com"])
