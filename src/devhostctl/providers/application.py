"""code-server capability interface: install, version detection and config."""
from __future__ import annotations

import json
import logging
import os
import pwd
import subprocess
from dataclasses import dataclass
from pathlib import Path

import yaml
from packaging.version import InvalidVersion, Version

from ..templates import write_if_changed
from .network import NetworkError, NetworkProvider
from .process import run_command

_LOG = logging.getLogger(__name__)

INSTALL_SCRIPT_URL = "https://code-server.dev/install.sh"
LATEST_RELEASE_URL = "https://api.github.com/repos/coder/code-server/releases/latest"
_INSTALL_TIMEOUT = 1800.0


class ApplicationError(RuntimeError):
    """Raised when code-server cannot be installed or inspected."""


@dataclass(frozen=True, slots=True)
class AppVersion:
    """Installed and latest known versions of code-server."""

    installed: Version | None
    latest: Version | None

    @property
    def update_available(self) -> bool:
        """Return True when a newer release than the installed one exists."""
        return (
            self.installed is not None
            and self.latest is not None
            and self.latest > self.installed
        )


def parse_version(text: str) -> Version | None:
    """Return the first PEP 440 compatible token found in *text*."""
    for token in text.replace(",", " ").split():
        try:
            return Version(token.lstrip("v"))
        except InvalidVersion:
            continue
    return None


@dataclass(slots=True)
class ApplicationProvider:
    """Install code-server natively and manage its configuration file."""

    network: NetworkProvider
    binary: str = "code-server"
    install_script_url: str = INSTALL_SCRIPT_URL
    latest_release_url: str = LATEST_RELEASE_URL

    def install(self) -> subprocess.CompletedProcess[str]:
        """Download and run the upstream install script."""
        try:
            script = self.network.fetch_text(self.install_script_url)
        except NetworkError as exc:
            raise ApplicationError(f"Unable to download code-server installer: {exc}") from exc
        return run_command(
            ["sh", "-s", "--"],
            error=ApplicationError,
            error_prefix="code-server install script",
            input_text=script,
            timeout=_INSTALL_TIMEOUT,
        )

    def installed_version(self) -> Version | None:
        """Return the installed code-server version, or None when absent."""
        try:
            result = run_command([self.binary, "--version"], error=ApplicationError)
        except ApplicationError as exc:
            _LOG.debug("code-server version unavailable: %s", exc)
            return None
        first_line = (result.stdout or "").strip().splitlines()
        return parse_version(first_line[0]) if first_line else None

    def latest_version(self) -> Version | None:
        """Return the newest published release, or None when unreachable."""
        try:
            payload = json.loads(self.network.fetch_text(self.latest_release_url))
        except (NetworkError, ValueError) as exc:
            _LOG.warning("Unable to query latest code-server release: %s", exc)
            return None
        tag = payload.get("tag_name") if isinstance(payload, dict) else None
        return parse_version(str(tag)) if tag else None

    def versions(self) -> AppVersion:
        """Return installed and latest versions together."""
        return AppVersion(installed=self.installed_version(), latest=self.latest_version())

    @staticmethod
    def config_path(service_user: str) -> Path:
        """Return the code-server config file for *service_user*."""
        try:
            home = Path(pwd.getpwnam(service_user).pw_dir)
        except KeyError:
            home = Path("/home") / service_user
        return home / ".config" / "code-server" / "config.yaml"

    def write_config(
        self,
        path: Path,
        *,
        port: int,
        credential: str,
        credential_scheme: str,
        owner: str | None = None,
    ) -> bool:
        """Write code-server's ``config.yaml`` bound to loopback (mode 0600)."""
        payload: dict[str, object] = {
            "bind-addr": f"127.0.0.1:{port}",
            "auth": "password",
            "cert": False,
        }
        if credential_scheme == "sha256":
            payload["hashed-password"] = credential
        else:
            payload["password"] = credential
        content = yaml.safe_dump(payload, sort_keys=False)
        changed = write_if_changed(path, content, mode=0o600)
        if owner is not None:
            _chown_tree(path.parent, owner)
        return changed


def _chown_tree(directory: Path, owner: str) -> None:
    try:
        entry = pwd.getpwnam(owner)
    except KeyError:
        _LOG.warning("User %s does not exist; leaving %s owned by current user.", owner, directory)
        return
    for current in (directory.parent, directory):
        os.chown(current, entry.pw_uid, entry.pw_gid)
    for child in directory.iterdir():
        os.chown(child, entry.pw_uid, entry.pw_gid)


__all__ = ["AppVersion", "ApplicationError", "ApplicationProvider", "parse_version"]
