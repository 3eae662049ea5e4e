"""File storage for issued certificates and ACME account keys.

Layout under the environment's base path::

    accounts/<directory host>/<email>/private_key.pem
    live/<subject>/privkey.pem
    live/<subject>/cert.pem
    live/<subject>/chain.pem
    live/<subject>/fullchain.pem
"""

import logging
import os
import tempfile
from datetime import timezone
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .models import CertificateRecord, PRODUCTION

logger = logging.getLogger(__name__)


def split_fullchain(fullchain_pem: str) -> Tuple[str, str]:
    """Split a PEM bundle into the leaf certificate and the rest of the chain."""
    certs = x509.load_pem_x509_certificates(fullchain_pem.encode('utf-8'))
    pems = [c.public_bytes(serialization.Encoding.PEM).decode('utf-8') for c in certs]
    return pems[0], "".join(pems[1:])


def certificate_hostnames(cert: x509.Certificate) -> List[str]:
    """DNS names from the SAN extension, falling back to the common name."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        return [name.lower() for name in san.value.get_values_for_type(x509.DNSName)]
    except x509.ExtensionNotFound:
        cns = cert.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
        return [str(cn.value).lower() for cn in cns]


def build_record(private_key_pem: str, fullchain_pem: str, environment: str,
                 subject: Optional[str] = None) -> CertificateRecord:
    """Parse issued PEM material into a CertificateRecord.

    The issuer may reorder SANs, so callers pass the subject they asked for.
    """
    leaf_pem, chain_pem = split_fullchain(fullchain_pem)
    leaf = x509.load_pem_x509_certificate(leaf_pem.encode('utf-8'))
    hostnames = certificate_hostnames(leaf)
    return CertificateRecord(
        subject=(subject or hostnames[0]).lower(),
        hostnames=hostnames,
        private_key=private_key_pem,
        certificate=leaf_pem,
        chain=chain_pem,
        not_after=leaf.not_valid_after_utc.astimezone(timezone.utc),
        environment=environment
    )


class CertificateStorage:
    """Certificate and account key persistence for one issuer environment."""

    def __init__(self, base_path: str, environment: str = PRODUCTION):
        self.base_path = Path(base_path)
        self.environment = environment

    def live_dir(self, subject: str) -> Path:
        return self.base_path / "live" / subject.lower()

    def account_key_path(self, directory_url: str, email: str) -> Path:
        host = urlparse(directory_url).hostname or "default"
        return self.base_path / "accounts" / host.replace('.', '_') / email.lower() / "private_key.pem"

    @staticmethod
    def _write(path: Path, content: str, mode: int = 0o644) -> None:
        """Write a file atomically."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(content)
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    # Certificate operations
    def save(self, record: CertificateRecord) -> Path:
        directory = self.live_dir(record.subject)
        self._write(directory / "privkey.pem", record.private_key, mode=0o600)
        self._write(directory / "cert.pem", record.certificate)
        self._write(directory / "chain.pem", record.chain)
        self._write(directory / "fullchain.pem", record.fullchain)
        logger.info(f"[{self.environment}] stored certificate for {record.subject} in {directory}")
        return directory

    def load(self, hostnames: List[str]) -> Optional[CertificateRecord]:
        """Load the stored certificate covering all ``hostnames``, if any."""
        if not hostnames:
            return None
        directory = self.live_dir(hostnames[0])
        cert_path = directory / "cert.pem"
        key_path = directory / "privkey.pem"
        if not cert_path.exists() or not key_path.exists():
            return None

        chain_path = directory / "chain.pem"
        chain = chain_path.read_text() if chain_path.exists() else ""
        try:
            record = build_record(key_path.read_text(), cert_path.read_text() + chain,
                                  self.environment, subject=hostnames[0])
        except ValueError as e:
            logger.warning(f"[{self.environment}] ignoring unreadable certificate in {directory}: {e}")
            return None

        if not record.covers(hostnames):
            logger.info(
                f"[{self.environment}] stored certificate for {hostnames[0]} does not cover "
                f"{','.join(hostnames)} (has {','.join(record.hostnames)})"
            )
            return None
        return record

    # Account key operations
    def load_account_key(self, directory_url: str, email: str) -> Optional[str]:
        path = self.account_key_path(directory_url, email)
        if path.exists():
            return path.read_text()
        return None

    def save_account_key(self, directory_url: str, email: str, key_pem: str) -> None:
        self._write(self.account_key_path(directory_url, email), key_pem, mode=0o600)
