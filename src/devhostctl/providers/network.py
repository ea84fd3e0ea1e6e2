"""Network capability interface: reachability, public IP and DNS lookups."""
from __future__ import annotations

import ipaddress
import logging
import socket
import urllib.error
import urllib.request
from collections.abc import Sequence
from dataclasses import dataclass

import dns.exception
import dns.resolver

_LOG = logging.getLogger(__name__)
_USER_AGENT = "devhostctl"


class NetworkError(RuntimeError):
    """Raised when a network lookup cannot produce an answer."""


@dataclass(frozen=True, slots=True)
class HttpStatus:
    """Result of an HTTP(S) reachability request."""

    url: str
    status: int | None
    detail: str

    @property
    def ok(self) -> bool:
        """Return True for a 2xx/3xx response."""
        return self.status is not None and 200 <= self.status < 400


def parse_endpoint(endpoint: str, default_port: int = 443) -> tuple[str, int]:
    """Split ``host:port`` into its parts."""
    host, sep, port = endpoint.rpartition(":")
    if not sep or not port.isdigit():
        return endpoint, default_port
    return host, int(port)


@dataclass(slots=True)
class NetworkProvider:
    """Perform the outbound checks used by the prober, certificates and monitor."""

    timeout: float = 5.0

    def tcp_reachable(self, host: str, port: int) -> bool:
        """Return True when a TCP connection to *host*:*port* succeeds."""
        try:
            with socket.create_connection((host, port), timeout=self.timeout):
                return True
        except OSError as exc:
            _LOG.debug("TCP probe to %s:%s failed: %s", host, port, exc)
            return False

    def any_reachable(self, endpoints: Sequence[str]) -> str | None:
        """Return the first reachable ``host:port`` of *endpoints*, if any."""
        for endpoint in endpoints:
            host, port = parse_endpoint(endpoint)
            if self.tcp_reachable(host, port):
                return endpoint
        return None

    def public_ip(self, echo_urls: Sequence[str]) -> str:
        """Return this host's public IPv4 address via an IP-echo service."""
        failures: list[str] = []
        for url in echo_urls:
            try:
                body = self._fetch(url)
            except (urllib.error.URLError, OSError) as exc:
                failures.append(f"{url}: {exc}")
                continue
            candidate = body.strip()
            try:
                ipaddress.IPv4Address(candidate)
            except ValueError:
                failures.append(f"{url}: unexpected response {candidate[:40]!r}")
                continue
            return candidate
        raise NetworkError("Unable to determine public IP: " + "; ".join(failures))

    def resolve_a(self, domain: str, nameservers: Sequence[str]) -> tuple[str, ...]:
        """Return the A records for *domain* as seen by *nameservers*."""
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = list(nameservers)
        resolver.lifetime = self.timeout
        try:
            answer = resolver.resolve(domain, "A")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return ()
        except dns.exception.DNSException as exc:
            raise NetworkError(f"DNS lookup for {domain} failed: {exc}") from exc
        return tuple(sorted(str(record) for record in answer))

    def https_status(self, url: str) -> HttpStatus:
        """Issue a GET against *url* and report the HTTP status."""
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:  # noqa: S310
                return HttpStatus(url=url, status=response.status, detail=response.reason)
        except urllib.error.HTTPError as exc:
            return HttpStatus(url=url, status=exc.code, detail=str(exc.reason))
        except (urllib.error.URLError, OSError) as exc:
            reason = getattr(exc, "reason", exc)
            return HttpStatus(url=url, status=None, detail=str(reason))

    def fetch_text(self, url: str) -> str:
        """Return the body of *url* decoded as UTF-8."""
        try:
            return self._fetch(url)
        except (urllib.error.URLError, OSError) as exc:
            raise NetworkError(f"Failed to fetch {url}: {exc}") from exc

    # ------------------------------------------------------------------
    def _fetch(self, url: str) -> str:
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        with urllib.request.urlopen(request, timeout=self.timeout) as response:  # noqa: S310
            return response.read().decode("utf-8", errors="replace")


__all__ = ["HttpStatus", "NetworkError", "NetworkProvider", "parse_endpoint"]
