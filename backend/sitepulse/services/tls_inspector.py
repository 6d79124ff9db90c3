"""TLS certificate inspector - handshake and certificate metadata."""
import asyncio
import logging
import socket
import ssl
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlsplit

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from ..config import settings
from ..utils.time import utcnow, to_naive_utc

logger = logging.getLogger(__name__)


@dataclass
class CertificateInfo:
    """Certificate metadata as seen by one handshake."""
    is_https: bool
    valid: bool = False
    issuer: Optional[str] = None
    subject: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    days_remaining: Optional[int] = None
    serial_number: Optional[str] = None
    fingerprint: Optional[str] = None
    algorithm: Optional[str] = None
    authorized: Optional[bool] = None
    authorization_error: Optional[str] = None
    error: Optional[str] = None


def host_port_from_url(url: str) -> Optional[tuple[str, int]]:
    """Return (host, port) for https URLs, None for anything else."""
    try:
        parts = urlsplit(str(url or "").strip())
        port = parts.port
    except ValueError:
        return None
    if (parts.scheme or "").lower() != "https":
        return None
    host = (parts.hostname or "").strip()
    if not host:
        return None
    return host, int(port or 443)


def _name_attribute(name: x509.Name, oid) -> Optional[str]:
    values = name.get_attributes_for_oid(oid)
    if not values:
        return None
    return str(values[0].value)


def days_until(valid_to: datetime, now: datetime) -> int:
    """Whole days left, floored; negative once expired."""
    return (valid_to - now) // timedelta(days=1)


def parse_certificate(
    cert_der: bytes,
    hostname: str,
    now: Optional[datetime] = None,
) -> CertificateInfo:
    """Extract the fields we track from a DER encoded certificate."""
    now = now or utcnow()
    cert = x509.load_der_x509_certificate(cert_der)

    valid_from = to_naive_utc(cert.not_valid_before_utc)
    valid_to = to_naive_utc(cert.not_valid_after_utc)

    issuer = (
        _name_attribute(cert.issuer, NameOID.ORGANIZATION_NAME)
        or _name_attribute(cert.issuer, NameOID.COMMON_NAME)
        or "Unknown"
    )
    subject = _name_attribute(cert.subject, NameOID.COMMON_NAME) or hostname

    fingerprint = cert.fingerprint(hashes.SHA256()).hex().upper()
    fingerprint = ":".join(fingerprint[i:i + 2] for i in range(0, len(fingerprint), 2))

    oid = cert.signature_algorithm_oid
    algorithm = getattr(oid, "_name", None) or oid.dotted_string

    return CertificateInfo(
        is_https=True,
        valid=valid_from <= now <= valid_to,
        issuer=issuer,
        subject=subject,
        valid_from=valid_from,
        valid_to=valid_to,
        days_remaining=days_until(valid_to, now),
        serial_number=format(cert.serial_number, "X"),
        fingerprint=fingerprint,
        algorithm=algorithm,
    )


class TlsInspector:
    """Opens a TLS connection and reports the peer certificate."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.ssl_timeout_seconds

    def _fetch_der(self, host: str, port: int, verify: bool) -> bytes:
        """Blocking handshake returning the peer certificate in DER form."""
        context = ssl.create_default_context()
        if not verify:
            # Read the certificate even when the chain does not validate
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        with socket.create_connection((host, port), timeout=self.timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as ssock:
                cert_der = ssock.getpeercert(binary_form=True)
        if not cert_der:
            raise ssl.SSLError("No certificate found")
        return cert_der

    def _inspect_blocking(self, host: str, port: int) -> CertificateInfo:
        authorized = True
        authorization_error = None
        try:
            cert_der = self._fetch_der(host, port, verify=True)
        except ssl.SSLCertVerificationError as e:
            authorized = False
            authorization_error = e.verify_message or str(e)
            cert_der = self._fetch_der(host, port, verify=False)

        info = parse_certificate(cert_der, host)
        info.authorized = authorized
        info.authorization_error = authorization_error
        return info

    async def inspect(self, url: str) -> CertificateInfo:
        """Inspect the certificate served for ``url``.

        Non-HTTPS URLs short-circuit with ``is_https=False``. Handshake
        failures and timeouts are reported in ``error``, never raised.
        """
        target = host_port_from_url(url)
        if target is None:
            return CertificateInfo(is_https=False, error="Not an HTTPS URL")
        host, port = target

        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self._inspect_blocking, host, port),
                timeout=self.timeout + 1,
            )
        except (asyncio.TimeoutError, socket.timeout):
            return CertificateInfo(is_https=True, error="SSL check timeout")
        except Exception as e:
            logger.debug(f"TLS inspection failed for {host}:{port}: {e}")
            return CertificateInfo(is_https=True, error=str(e) or type(e).__name__)


# Global instance
tls_inspector = TlsInspector()
