"""ACME client internals that do not need a live issuer."""

from types import SimpleNamespace

import josepy as jose
import pytest
from acme import challenges, messages
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from acme_companion.certmanager.acme_client import ACMEClient
from acme_companion.certmanager.challenges import ChallengeStore
from acme_companion.certmanager.models import STAGING
from acme_companion.certmanager.storage import CertificateStorage
from acme_companion.shared.log_levels import TRACE

pytestmark = pytest.mark.certificates

DIRECTORY_URL = "https://acme-staging-v02.api.letsencrypt.org/directory"


@pytest.fixture
def challenge_store():
    return ChallengeStore(STAGING)


@pytest.fixture
def acme(tmp_path, challenge_store):
    storage = CertificateStorage(str(tmp_path), STAGING)
    return ACMEClient(STAGING, DIRECTORY_URL, storage, challenge_store, rsa_key_size=2048, poll_timeout=1)


@pytest.fixture
def account_key(acme):
    return acme._get_or_create_account_key("ops@example.com")


def pending_authz(hostname, token=b"t" * 32):
    return SimpleNamespace(body=SimpleNamespace(
        identifier=SimpleNamespace(value=hostname),
        status=messages.STATUS_PENDING,
        challenges=[
            SimpleNamespace(chall=challenges.DNS01(token=token)),
            SimpleNamespace(chall=challenges.HTTP01(token=token)),
        ]
    ))


def fake_issuer(account_key, answered):
    return SimpleNamespace(
        net=SimpleNamespace(key=account_key),
        answer_challenge=lambda challb, response: answered.append(challb)
    )


def test_csr_lists_every_hostname(acme):
    key, _ = acme._generate_rsa_key(2048)

    csr = x509.load_pem_x509_csr(acme._create_csr(key, ["a.example.com", "b.example.com"]))

    cn = csr.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)[0].value
    san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert cn == "a.example.com"
    assert san.get_values_for_type(x509.DNSName) == ["a.example.com", "b.example.com"]


def test_account_key_is_persisted_and_reused(acme, account_key):
    stored = acme.storage.load_account_key(DIRECTORY_URL, "ops@example.com")
    reloaded = acme._get_or_create_account_key("ops@example.com")

    assert stored is not None
    assert serialization.load_pem_private_key(stored.encode(), password=None).key_size == 2048
    assert reloaded.thumbprint() == account_key.thumbprint()


def test_http01_secret_is_published_before_answering(acme, account_key, challenge_store):
    answered = []
    authz = pending_authz("a.example.com")

    hostname, token = acme._answer_authorization(fake_issuer(account_key, answered), authz)

    assert hostname == "a.example.com"
    assert token == jose.b64encode(b"t" * 32).decode()
    expected = f"{token}.{jose.b64encode(account_key.thumbprint()).decode()}"
    assert challenge_store.get("a.example.com", token) == expected
    assert isinstance(answered[0].chall, challenges.HTTP01)


def test_valid_authorization_is_not_answered(acme, account_key, challenge_store):
    authz = pending_authz("a.example.com")
    authz.body.status = messages.STATUS_VALID
    answered = []

    assert acme._answer_authorization(fake_issuer(account_key, answered), authz) is None
    assert answered == []
    assert len(challenge_store) == 0


def test_failed_order_clears_published_challenges(acme, account_key, challenge_store, monkeypatch, caplog):
    caplog.set_level(TRACE, logger="acme_companion.certmanager.acme_client")
    answered = []
    issuer = fake_issuer(account_key, answered)
    issuer.new_order = lambda csr: SimpleNamespace(uri="https://acme.test/order/1", authorizations=[
        pending_authz("a.example.com", b"a" * 32),
        pending_authz("b.example.com", b"b" * 32),
    ])

    def poll_and_finalize(order, deadline=None):
        assert len(challenge_store) == 2
        raise RuntimeError("authorization failed")

    issuer.poll_and_finalize = poll_and_finalize
    monkeypatch.setattr(acme, "_create_acme_client", lambda key: issuer)
    monkeypatch.setattr(acme, "_register_or_login", lambda acme_client, email: None)

    with pytest.raises(RuntimeError):
        acme.issue(["a.example.com", "b.example.com"], "ops@example.com")

    assert len(answered) == 2
    assert len(challenge_store) == 0
    assert acme.check(["a.example.com", "b.example.com"]) is None
    assert "order https://acme.test/order/1 with 2 authorizations" in caplog.text
