"""ACME protocol client for one issuer environment (staging or production).

Calls block on network I/O; the acquisition pipeline runs them in a thread
executor. Issuance answers HTTP-01 challenges only, which requires the
challenge server to be reachable from the issuer on port 80 for every
hostname while ``issue`` or ``renew`` runs.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import josepy as jose
from acme import client, challenges, messages, errors
from cryptography import x509
from cryptography.hazmat.primitives import serialization, hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .challenges import ChallengeStore
from .models import CertificateRecord
from .storage import CertificateStorage, build_record
from .. import __version__
from ..shared.log_levels import setup_trace_logging

# Ensure TRACE level is set up
setup_trace_logging()

logger = logging.getLogger(__name__)

USER_AGENT = f"acme-companion/{__version__}"


class ACMEClient:
    """ACME protocol client for certificate management."""

    def __init__(
        self,
        environment: str,
        directory_url: str,
        storage: CertificateStorage,
        challenge_store: ChallengeStore,
        rsa_key_size: int = 4096,
        poll_timeout: int = 90
    ):
        self.environment = environment
        self.directory_url = directory_url
        self.storage = storage
        self.challenge_store = challenge_store
        self.account_key_size = rsa_key_size
        self.cert_key_size = rsa_key_size
        self.poll_timeout = poll_timeout

    def _generate_rsa_key(self, key_size: int) -> Tuple[rsa.RSAPrivateKey, str]:
        """Generate RSA key pair."""
        private_key = rsa.generate_private_key(
            public_exponent=65537,
            key_size=key_size
        )

        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        ).decode('utf-8')

        return private_key, private_pem

    def _get_or_create_account_key(self, email: str) -> jose.JWKRSA:
        """Get existing or create new account key."""
        key_pem = self.storage.load_account_key(self.directory_url, email)

        if key_pem:
            private_key = serialization.load_pem_private_key(
                key_pem.encode('utf-8'),
                password=None
            )
            return jose.JWKRSA(key=private_key)

        private_key, private_pem = self._generate_rsa_key(self.account_key_size)
        self.storage.save_account_key(self.directory_url, email, private_pem)
        logger.info(f"[{self.environment}] created new account key for {email}")

        return jose.JWKRSA(key=private_key)

    def _create_acme_client(self, account_key: jose.JWKRSA) -> client.ClientV2:
        """Create ACME client instance."""
        net = client.ClientNetwork(account_key, user_agent=USER_AGENT)
        directory = messages.Directory.from_json(net.get(self.directory_url).json())
        return client.ClientV2(directory, net=net)

    def _register_or_login(self, acme_client: client.ClientV2, email: str) -> messages.RegistrationResource:
        """Register new account or login with existing."""
        try:
            new_reg = messages.NewRegistration.from_data(
                email=email,
                terms_of_service_agreed=True
            )
            regr = acme_client.new_account(new_reg)
            logger.info(f"[{self.environment}] registered new ACME account for {email}")
            return regr
        except errors.ConflictError as e:
            # Account already exists; the Location header carries its URI
            logger.debug(f"[{self.environment}] account already exists for {email}, retrieving it")
            regr = messages.RegistrationResource(
                body=messages.Registration(key=acme_client.net.key.public_key()),
                uri=str(e.location)
            )
            return acme_client.query_registration(regr)

    def _create_csr(self, private_key, domains: List[str]) -> bytes:
        """Create Certificate Signing Request in PEM format."""
        builder = x509.CertificateSigningRequestBuilder()

        # Common name is the first domain
        builder = builder.subject_name(x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, domains[0])
        ]))

        san_list = [x509.DNSName(domain) for domain in domains]
        builder = builder.add_extension(
            x509.SubjectAlternativeName(san_list),
            critical=False
        )

        csr = builder.sign(private_key, hashes.SHA256())

        # ACME expects PEM, not DER
        return csr.public_bytes(serialization.Encoding.PEM)

    def _answer_authorization(
        self,
        acme_client: client.ClientV2,
        authz: messages.AuthorizationResource
    ) -> Optional[Tuple[str, str]]:
        """Publish the HTTP-01 secret for one authorization and answer it.

        Returns the (hostname, token) pair that was published, or None when
        the authorization is already valid.
        """
        hostname = authz.body.identifier.value
        if authz.body.status == messages.STATUS_VALID:
            logger.debug(f"[{self.environment}] authorization for {hostname} already valid")
            return None

        http_challenge = None
        for challenge in authz.body.challenges:
            if isinstance(challenge.chall, challenges.HTTP01):
                http_challenge = challenge
                break

        if not http_challenge:
            raise errors.Error(f"No HTTP-01 challenge offered for {hostname}")

        response, validation = http_challenge.chall.response_and_validation(acme_client.net.key)
        # Token as served in the URL: base64url, not raw bytes
        token = http_challenge.chall.encode('token')

        self.challenge_store.store(hostname, token, validation)
        logger.info(f"[{self.environment}] answering HTTP-01 challenge for {hostname}")
        acme_client.answer_challenge(http_challenge, response)
        return hostname, token

    def _obtain(self, hostnames: List[str], email: str) -> CertificateRecord:
        account_key = self._get_or_create_account_key(email)
        acme_client = self._create_acme_client(account_key)
        self._register_or_login(acme_client, email)

        cert_key, cert_key_pem = self._generate_rsa_key(self.cert_key_size)
        csr = self._create_csr(cert_key, hostnames)

        order = acme_client.new_order(csr)
        logger.trace(f"[{self.environment}] order {order.uri} with {len(order.authorizations)} authorizations")

        published = []
        try:
            for authz in order.authorizations:
                entry = self._answer_authorization(acme_client, authz)
                if entry:
                    published.append(entry)

            deadline = datetime.now() + timedelta(seconds=self.poll_timeout)
            order = acme_client.poll_and_finalize(order, deadline=deadline)
        finally:
            for hostname, token in published:
                self.challenge_store.delete(hostname, token)

        record = build_record(cert_key_pem, order.fullchain_pem, self.environment, subject=hostnames[0])
        self.storage.save(record)
        return record

    def check(self, hostnames: List[str]) -> Optional[CertificateRecord]:
        """Return the stored certificate covering ``hostnames``, if any."""
        return self.storage.load(hostnames)

    def issue(self, hostnames: List[str], email: str) -> CertificateRecord:
        """Obtain a new certificate for ``hostnames``."""
        logger.info(f"[{self.environment}] requesting certificate for {','.join(hostnames)}")
        record = self._obtain(hostnames, email)
        logger.info(
            f"[{self.environment}] obtained certificate for {','.join(hostnames)}, "
            f"valid until {record.not_after.isoformat()}"
        )
        return record

    def renew(self, hostnames: List[str], email: str) -> CertificateRecord:
        """Replace the stored certificate for ``hostnames`` with a fresh one."""
        existing = self.check(hostnames)
        if existing:
            logger.info(
                f"[{self.environment}] renewing certificate for {','.join(hostnames)} "
                f"expiring {existing.not_after.isoformat()}"
            )
        return self.issue(hostnames, email)
