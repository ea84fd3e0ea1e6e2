"""Interactive management console."""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from rich.console import Console
from rich.table import Table

from .backups import BackupError
from .certificates import CertificateError
from .health import HealthReport, HealthStatus
from .health.monitor import HealthLog, HealthLogError
from .management import Management, UpdateError
from .providers.application import AppVersion
from .providers.nginx import NginxError
from .prompts import Prompter
from .supervisor import SupervisorError, TransitionResult
from .tls import ExpiryStatus, TLSInspectionError

REMOVE_CONFIRMATION = "YES"

MENU: tuple[tuple[str, str], ...] = (
    ("1", "Status"),
    ("2", "Start services"),
    ("3", "Stop services"),
    ("4", "Restart services"),
    ("5", "Update code-server"),
    ("6", "Run health check"),
    ("7", "View logs"),
    ("8", "Certificate status / renew"),
    ("9", "Backup configuration"),
    ("10", "Remove installation"),
    ("11", "System information"),
    ("12", "Security check"),
    ("0", "Exit"),
)

_STATUS_STYLE = {
    HealthStatus.OK: "[green]OK[/green]",
    HealthStatus.WARNING: "[yellow]WARNING[/yellow]",
    HealthStatus.CRITICAL: "[red]CRITICAL[/red]",
    HealthStatus.ERROR: "[red]ERROR[/red]",
}

_HANDLED_ERRORS = (
    BackupError,
    CertificateError,
    HealthLogError,
    NginxError,
    SupervisorError,
    TLSInspectionError,
    UpdateError,
)


@dataclass(slots=True)
class ManagementConsole:
    """Numbered-menu loop over :class:`Management` operations."""

    management: Management
    prompter: Prompter
    console: Console = field(default_factory=Console)
    _removed: bool = field(default=False, init=False)

    def run(self) -> int:
        """Loop until the operator exits or removes the installation."""
        handlers = self._handlers()
        while not self._removed:
            self._render_menu()
            choice = self.prompter.ask("Select an option", default="1").strip()
            if choice == "0":
                self.console.print("Goodbye.")
                break
            handler = handlers.get(choice)
            if handler is None:
                self.console.print(f"[red]Unknown option '{choice}'.[/red]")
                continue
            try:
                handler()
            except _HANDLED_ERRORS as exc:
                self.console.print(f"[red]{exc}[/red]")
        return 0

    # Menu actions -----------------------------------------------------
    def show_status(self) -> None:
        """Render the quick status checks."""
        self._render_report("Status", self.management.status())

    def start(self) -> None:
        """Start the application and proxy."""
        self._render_transitions(self.management.start())

    def stop(self) -> None:
        """Stop the application."""
        self._render_transitions(self.management.stop())

    def restart(self) -> None:
        """Restart the application and proxy."""
        self._render_transitions(self.management.restart())

    def update(self) -> None:
        """Update code-server after confirmation."""
        outcome = self.management.update(confirm=self._confirm_update)
        if not outcome.updated:
            self.console.print(f"No update applied ({_describe_versions(outcome.before)}).")
            return
        self.console.print("[green]code-server updated.[/green]")
        if outcome.restart is not None:
            self._render_transitions([outcome.restart])

    def health_check(self) -> None:
        """Run the full health monitor once."""
        self._render_report("Health check", self.management.health_check())

    def view_logs(self) -> None:
        """Show the application log tail and recent health log entries."""
        self.console.rule("Application log")
        self.console.print(self.management.logs() or "(empty)", markup=False)
        self.console.rule("Health log")
        entries = HealthLog(self.management.config.health_log).tail()
        self.console.print("\n".join(entries) or "(empty)", markup=False)

    def certificate(self) -> None:
        """Show certificate expiry and optionally renew now."""
        domain = self.management.installation.domain
        record = self.management.certificates.status(domain)
        if record is None:
            self.console.print(f"[yellow]No certificate found for {domain}.[/yellow]")
        else:
            urgency = record.classify(
                warn_days=self.management.config.certificates.warn_days,
                urgent_days=self.management.config.certificates.urgent_days,
            )
            style = "green" if urgency is ExpiryStatus.OK else "yellow"
            if urgency in {ExpiryStatus.URGENT, ExpiryStatus.EXPIRED}:
                style = "red"
            self.console.print(
                f"[{style}]{domain}: expires {record.not_after:%Y-%m-%d} "
                f"({record.days_remaining} day(s) remaining, {urgency.value})[/{style}]"
            )
        if self.prompter.confirm("Renew the certificate now?", default=False):
            renewed = self.management.certificates.renew(domain)
            days = renewed.days_remaining if renewed is not None else "unknown"
            self.console.print(f"[green]Renewal complete; {days} day(s) remaining.[/green]")

    def backup(self) -> None:
        """Back up configuration and state."""
        result = self.management.backup()
        self.console.print(f"[green]Backup written to {result.path}[/green]")
        if result.copied:
            self.console.print(f"Copied: {', '.join(result.copied)}")
        if result.skipped:
            self.console.print(f"[yellow]Skipped (missing): {', '.join(result.skipped)}[/yellow]")
        for name, reason in result.failed.items():
            self.console.print(f"[red]Failed {name}: {reason}[/red]")

    def remove(self) -> None:
        """Remove everything after a typed confirmation."""
        self.console.print(
            "[bold red]This removes the service, proxy site, certificate, "
            "installation record and console.[/bold red]"
        )
        answer = self.prompter.ask(f"Type {REMOVE_CONFIRMATION} to confirm removal")
        if answer.strip() != REMOVE_CONFIRMATION:
            self.console.print("Removal cancelled.")
            return
        for outcome in self.management.remove():
            marker = "[green]done[/green]" if outcome.ok else "[red]failed[/red]"
            self.console.print(f"{outcome.name}: {marker} {outcome.detail}".rstrip())
        self._removed = True

    def system_info(self) -> None:
        """Render host facts."""
        table = Table(title="System information", show_header=False)
        table.add_column("Key")
        table.add_column("Value")
        for key, value in self.management.system_info().items():
            table.add_row(key.replace("_", " "), str(value))
        self.console.print(table)

    def security_check(self) -> None:
        """Render the firewall, fail2ban, permissions and certificate checks."""
        self._render_report("Security check", self.management.security_check())

    # ------------------------------------------------------------------
    def _handlers(self) -> dict[str, Callable[[], None]]:
        return {
            "1": self.show_status,
            "2": self.start,
            "3": self.stop,
            "4": self.restart,
            "5": self.update,
            "6": self.health_check,
            "7": self.view_logs,
            "8": self.certificate,
            "9": self.backup,
            "10": self.remove,
            "11": self.system_info,
            "12": self.security_check,
        }

    def _render_menu(self) -> None:
        installation = self.management.installation
        self.console.rule(f"devhost panel: {installation.domain} ({installation.install_method})")
        for key, label in MENU:
            self.console.print(f"  {key:>2}) {label}")

    def _render_report(self, title: str, report: HealthReport) -> None:
        render_report(self.console, title, report)

    def _render_transitions(self, results: Sequence[TransitionResult]) -> None:
        render_transitions(self.console, results)

    def _confirm_update(self, versions: AppVersion) -> bool:
        return self.prompter.confirm(f"Update code-server ({_describe_versions(versions)})?", default=True)


def render_report(console: Console, title: str, report: HealthReport) -> None:
    """Print *report* as a table followed by its summary line."""
    table = Table(title=title)
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Detail")
    for result in report.results:
        table.add_row(result.name, _STATUS_STYLE[result.status], result.detail)
    console.print(table)
    console.print(report.summary_line())


def render_transitions(console: Console, results: Sequence[TransitionResult]) -> int:
    """Print one line per transition; return how many did not end live."""
    failures = 0
    for result in results:
        if result.ok:
            console.print(f"[green]{result.target}: {result.state.value}[/green]")
            continue
        failures += 1
        console.print(f"[yellow]{result.target}: {result.state.value} after {result.action}[/yellow]")
        if result.log_tail:
            console.print(result.log_tail, markup=False)
    return failures


def _describe_versions(versions: AppVersion) -> str:
    installed = str(versions.installed) if versions.installed else "unknown"
    latest = str(versions.latest) if versions.latest else "unknown"
    return f"installed {installed}, latest {latest}"


__all__ = [
    "MENU",
    "ManagementConsole",
    "REMOVE_CONFIRMATION",
    "render_report",
    "render_transitions",
]
