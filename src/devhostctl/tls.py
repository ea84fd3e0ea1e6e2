"""Certificate inspection helpers."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from cryptography import x509


class TLSInspectionError(RuntimeError):
    """Raised when a certificate file cannot be parsed."""


class ExpiryStatus(Enum):
    """Renewal urgency derived from days remaining."""

    OK = "ok"
    RENEW_SOON = "renew-soon"
    URGENT = "urgent"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CertificateRecord:
    """Expiry facts for the certificate serving *domain*."""

    domain: str
    path: Path
    not_after: datetime
    days_remaining: int

    def classify(self, *, warn_days: int = 30, urgent_days: int = 7) -> ExpiryStatus:
        """Return the renewal urgency for this certificate."""
        if self.days_remaining < 0:
            return ExpiryStatus.EXPIRED
        if self.days_remaining < urgent_days:
            return ExpiryStatus.URGENT
        if self.days_remaining < warn_days:
            return ExpiryStatus.RENEW_SOON
        return ExpiryStatus.OK

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation of the record."""
        return {
            "domain": self.domain,
            "path": str(self.path),
            "not_after": self.not_after.isoformat(),
            "days_remaining": self.days_remaining,
        }


@dataclass(slots=True)
class CertificateInspector:
    """Read certificate expiry from the certificate store."""

    clock: Callable[[], datetime] = lambda: datetime.now(UTC)

    def inspect(self, domain: str, certificate: Path) -> CertificateRecord | None:
        """Return a record for *certificate*, or None when the file is absent."""
        if not certificate.exists():
            return None
        try:
            cert_obj = _load_certificate(certificate)
        except (OSError, ValueError) as exc:
            raise TLSInspectionError(f"Unable to parse certificate {certificate}: {exc}") from exc
        not_after = _as_utc(cert_obj.not_valid_after_utc)
        remaining = not_after - _as_utc(self.clock())
        return CertificateRecord(
            domain=domain,
            path=certificate,
            not_after=not_after,
            days_remaining=remaining.days,
        )


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


__all__ = [
    "CertificateInspector",
    "CertificateRecord",
    "ExpiryStatus",
    "TLSInspectionError",
]
