"""Nginx provider for activating the code-server site."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..templates import write_if_changed
from .process import run_command


class NginxError(RuntimeError):
    """Raised when nginx operations fail."""


@dataclass(slots=True)
class NginxActivationResult:
    """Outcome of activating a site configuration."""

    changed: bool
    validation: subprocess.CompletedProcess[str] | None = None
    reload: subprocess.CompletedProcess[str] | None = None


@dataclass(slots=True)
class NginxProvider:
    """Write, validate and enable the reverse proxy site."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    site_name: str = "code-server"
    nginx_bin: str = "nginx"

    @property
    def site_path(self) -> Path:
        """Return the path to the site configuration file."""
        return self.sites_available / self.site_name

    @property
    def enabled_path(self) -> Path:
        """Return the path of the symlink in sites-enabled."""
        return self.sites_enabled / self.site_name

    def activate(self, content: str, *, reload: bool = True) -> NginxActivationResult:
        """Install *content* as the active site.

        The new file is validated with ``nginx -t`` before nginx is reloaded.
        When validation fails the previous file (or its absence) is restored
        and :class:`NginxError` is raised; nginx is never reloaded with a
        configuration that failed validation.
        """
        destination = self.site_path
        destination.parent.mkdir(parents=True, exist_ok=True)

        previous: tuple[str, int] | None = None
        if destination.exists():
            previous = (
                destination.read_text(encoding="utf-8"),
                destination.stat().st_mode,
            )
        was_enabled = self.is_enabled()

        changed = write_if_changed(destination, content, mode=0o644)
        self.enable()
        if not changed and was_enabled:
            return NginxActivationResult(changed=False)

        try:
            validation = self.test_config()
        except NginxError:
            if previous is None:
                destination.unlink(missing_ok=True)
            else:
                prior_content, mode = previous
                destination.write_text(prior_content, encoding="utf-8")
                destination.chmod(mode)
            if not was_enabled:
                self.disable()
            raise

        reload_result = self.reload() if reload else None
        return NginxActivationResult(changed=True, validation=validation, reload=reload_result)

    def enable(self) -> None:
        """Enable the site by creating a symlink in sites-enabled."""
        source = self.site_path
        target = self.enabled_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists() or target.is_symlink():
            try:
                if target.resolve() == source.resolve():
                    return
            except FileNotFoundError:
                # Broken symlink; replace it with a fresh one.
                pass
            target.unlink()
        target.symlink_to(source)

    def disable(self) -> None:
        """Disable the site by removing the symlink."""
        self.enabled_path.unlink(missing_ok=True)

    def disable_default_site(self, backup_dir: Path | None = None) -> bool:
        """Remove the distribution's ``default`` site; return True when removed."""
        default_link = self.sites_enabled / "default"
        if not (default_link.exists() or default_link.is_symlink()):
            return False
        if backup_dir is not None and default_link.exists():
            backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(default_link, backup_dir / "nginx-default-site")
        default_link.unlink()
        return True

    def remove(self) -> bool:
        """Remove both the configuration and its symlink."""
        existed = self.site_path.exists()
        self.disable()
        self.site_path.unlink(missing_ok=True)
        return existed

    def is_enabled(self) -> bool:
        """Return True when the site is enabled via sites-enabled symlink."""
        target = self.enabled_path
        if not target.is_symlink():
            return False
        try:
            return target.resolve() == self.site_path.resolve()
        except FileNotFoundError:
            return False

    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t`` to validate the configuration."""
        return self._run_nginx(["-t"])

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload nginx to apply configuration changes."""
        return self._run_nginx(["-s", "reload"])

    # ------------------------------------------------------------------
    def _run_nginx(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return run_command(
            [self.nginx_bin, *args],
            error=NginxError,
            error_prefix=f"{self.nginx_bin} {' '.join(args)}",
        )


__all__ = ["NginxActivationResult", "NginxError", "NginxProvider"]
