"""ACME client provider wrapping certbot."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .process import run_command

_REQUEST_TIMEOUT = 600.0


class CertbotError(RuntimeError):
    """Raised when certbot invocations fail."""


@dataclass(slots=True)
class CertbotProvider:
    """Request, renew and delete Let's Encrypt certificates."""

    live_dir: Path = Path("/etc/letsencrypt/live")
    certbot_bin: str = "certbot"

    def certificate_path(self, domain: str) -> Path:
        """Return the fullchain path for *domain*."""
        return self.live_dir / domain / "fullchain.pem"

    def request(self, domain: str, email: str) -> subprocess.CompletedProcess[str]:
        """Obtain a certificate non-interactively using the nginx authenticator."""
        return self._run_certbot(
            [
                "certonly",
                "--nginx",
                "-d",
                domain,
                "--email",
                email,
                "--agree-tos",
                "--non-interactive",
                "--keep-until-expiring",
            ]
        )

    def renew(self, domain: str | None = None) -> subprocess.CompletedProcess[str]:
        """Renew certificates (only *domain* when given)."""
        args = ["renew", "--non-interactive"]
        if domain is not None:
            args.extend(["--cert-name", domain])
        return self._run_certbot(args)

    def delete(self, domain: str) -> subprocess.CompletedProcess[str]:
        """Delete the certificate lineage for *domain*."""
        return self._run_certbot(["delete", "--cert-name", domain, "--non-interactive"])

    # ------------------------------------------------------------------
    def _run_certbot(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return run_command(
            [self.certbot_bin, *args],
            error=CertbotError,
            error_prefix=f"{self.certbot_bin} {args[0]}",
            timeout=_REQUEST_TIMEOUT,
        )


__all__ = ["CertbotError", "CertbotProvider"]
