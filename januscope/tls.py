from __future__ import annotations

import asyncio
import ssl
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa

from januscope.models import CertificateCheckResult, Service, utc_now


logger = structlog.get_logger(__name__)

NOT_HTTPS = "Not an HTTPS URL"


def _tls_host_port_from_url(url: str) -> tuple[str, int] | None:
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


def _hostname(url: str) -> str | None:
    try:
        return urlsplit(str(url or "").strip()).hostname
    except ValueError:
        return None


def _public_key_kind(public_key: Any) -> str:
    if isinstance(public_key, rsa.RSAPublicKey):
        return "RSA"
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return "ECDSA"
    if isinstance(public_key, dsa.DSAPublicKey):
        return "DSA"
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return "Ed25519"
    if isinstance(public_key, ed448.Ed448PublicKey):
        return "Ed448"
    return type(public_key).__name__


def _signature_algorithm(cert: x509.Certificate) -> str:
    # Rendered the way most TLS tooling names it, e.g. "SHA256withRSA".
    try:
        kind = _public_key_kind(cert.public_key())
    except Exception:
        kind = "unknown"
    hash_alg = cert.signature_hash_algorithm
    if hash_alg is None:
        return kind
    return f"{hash_alg.name.upper().replace('-', '')}with{kind}"


def _key_size(cert: x509.Certificate) -> int | None:
    try:
        public_key = cert.public_key()
    except Exception as exc:
        logger.warning("Could not determine key size", error=f"{type(exc).__name__}: {exc}")
        return None
    if isinstance(public_key, rsa.RSAPublicKey):
        return int(public_key.key_size)
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return int(public_key.curve.key_size)
    return None


def format_fingerprint(digest: bytes) -> str:
    return ":".join(f"{b:02X}" for b in digest)


def days_until(valid_to: datetime, now: datetime) -> int:
    """Calendar days from now until valid_to (UTC); negative once expired."""
    return (valid_to.astimezone(timezone.utc).date() - now.astimezone(timezone.utc).date()).days


def certificate_facts(
    der: bytes,
    *,
    service_id: int,
    domain: str | None,
    now: datetime | None = None,
) -> CertificateCheckResult:
    """Build a check result from the DER encoding of a leaf certificate."""
    now = now or utc_now()
    cert = x509.load_der_x509_certificate(der)

    valid_from = cert.not_valid_before_utc
    valid_to = cert.not_valid_after_utc

    error = None
    if now < valid_from:
        error = "Certificate not valid: not yet valid"
    elif now > valid_to:
        error = "Certificate not valid: expired"

    return CertificateCheckResult(
        service_id=service_id,
        domain=domain,
        is_valid=error is None,
        issuer=cert.issuer.rfc4514_string(),
        subject=cert.subject.rfc4514_string(),
        valid_from=valid_from,
        valid_to=valid_to,
        days_remaining=days_until(valid_to, now),
        serial_number=format(cert.serial_number, "X"),
        fingerprint=format_fingerprint(cert.fingerprint(hashes.SHA256())),
        algorithm=_signature_algorithm(cert),
        key_size=_key_size(cert),
        is_self_signed=cert.issuer == cert.subject,
        error_message=error,
        checked_at=now,
    )


def _inspection_context() -> ssl.SSLContext:
    # Chain/hostname verification is off so expired and self-signed
    # certificates can still be read and reported.
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


class CertificateInspector:
    """Opens one TLS connection per service and reports on the leaf certificate."""

    def __init__(self, *, timeout_ms: int = 10_000):
        self.timeout_seconds = max(1.0, float(timeout_ms) / 1000.0)

    async def inspect(self, service: Service) -> CertificateCheckResult:
        domain = _hostname(service.url)
        target = _tls_host_port_from_url(service.url)
        if target is None:
            return CertificateCheckResult(
                service_id=service.service_id,
                domain=domain,
                is_valid=False,
                error_message=NOT_HTTPS,
            )

        host, port = target
        try:
            der = await self._fetch_leaf_der(host, port)
            if not der:
                return CertificateCheckResult(
                    service_id=service.service_id,
                    domain=host,
                    is_valid=False,
                    error_message="No certificate presented",
                )
            result = certificate_facts(der, service_id=service.service_id, domain=host)
        except Exception as exc:
            err = f"{type(exc).__name__}: {exc}"
            logger.error("Certificate check failed", service_id=service.service_id, host=host, error=err)
            return CertificateCheckResult(
                service_id=service.service_id,
                domain=host,
                is_valid=False,
                error_message=err,
            )

        if result.days_remaining is not None and result.days_remaining < 0:
            logger.warning("Certificate expired", host=host, days_remaining=result.days_remaining)
        return result

    async def _fetch_leaf_der(self, host: str, port: int) -> bytes | None:
        writer = None
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host=host, port=port, ssl=_inspection_context(), server_hostname=host),
                timeout=self.timeout_seconds,
            )
            sslobj = writer.get_extra_info("ssl_object")
            if sslobj is None:
                return None
            return sslobj.getpeercert(binary_form=True)
        finally:
            if writer is not None:
                try:
                    writer.close()
                    await writer.wait_closed()
                except Exception:
                    pass
