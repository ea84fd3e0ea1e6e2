"""Typer-powered command line for ``devhostctl``.

``devhostctl`` installs and operates a single-host code-server deployment.
``devhost-panel`` and ``devhost-monitor`` are thin entry points onto the
``console`` and ``health-check`` commands.
"""
from __future__ import annotations

import json
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .backups import BackupError, BackupsRegistry
from .certificates import CertificateError, CertificateManager
from .config import AppConfig, ConfigError, load_config
from .console import REMOVE_CONFIRMATION, ManagementConsole, render_report, render_transitions
from .exit_codes import ExitCode
from .health import HealthLogError, HealthReport
from .installation import (
    InstallationConfig,
    InstallationStateError,
    InstallationStore,
    ValidationError,
)
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .management import Management, UpdateError
from .orchestrator import InstallSummary, Orchestrator
from .prober import PreconditionError, ResourceProber
from .prompts import OperatorAborted, TyperPrompter
from .providers import (
    ApplicationError,
    ApplicationProvider,
    CertbotProvider,
    ComposeError,
    ComposeProvider,
    HostError,
    HostProvider,
    NetworkProvider,
    NginxError,
    NginxProvider,
    PackageInstallError,
    SystemdError,
    SystemdProvider,
)
from .renderer import ConfigRenderer
from .retry import RetryExhaustedError
from .supervisor import ServiceSupervisor, SupervisorError, TransitionResult
from .swap import SwapError, SwapProvisioner
from .templates import TemplateEngine
from .tls import CertificateInspector, TLSInspectionError

console = Console()

app = typer.Typer(
    help="Install and operate a TLS-terminated, monitored code-server host.",
    no_args_is_help=False,
)
service_app = typer.Typer(help="Start, stop or restart managed services.")
cert_app = typer.Typer(help="Inspect or renew the TLS certificate.")

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to devhostctl's YAML config file.",
)
SERVICE_TARGET_ARGUMENT = typer.Argument(
    "all",
    help="Service to act on: app, proxy or all.",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit the report as JSON.")

_PROVIDER_ERRORS: tuple[type[Exception], ...] = (
    ApplicationError,
    BackupError,
    CertificateError,
    ComposeError,
    HealthLogError,
    HostError,
    NginxError,
    PackageInstallError,
    RetryExhaustedError,
    SupervisorError,
    SwapError,
    SystemdError,
    TLSInspectionError,
    UpdateError,
)
_ENVIRONMENT_ERRORS: tuple[type[Exception], ...] = (
    InstallationStateError,
    LockTimeoutError,
    PreconditionError,
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine
    store: InstallationStore
    prompter: TyperPrompter
    host: HostProvider
    network: NetworkProvider
    renderer: ConfigRenderer
    nginx_provider: NginxProvider
    systemd_provider: SystemdProvider
    compose_provider: ComposeProvider
    certbot_provider: CertbotProvider
    application_provider: ApplicationProvider
    backups: BackupsRegistry
    inspector: CertificateInspector


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc

    templates = TemplateEngine.with_overrides(config.templates_dir)
    network = NetworkProvider(timeout=config.prober.connect_timeout)
    runtime = RuntimeContext(
        config=config,
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
        templates=templates,
        store=InstallationStore(config.state_file),
        prompter=TyperPrompter(console),
        host=HostProvider(),
        network=network,
        renderer=ConfigRenderer(
            templates=templates,
            app_port=config.app_port,
            certificates=config.certificates,
            service=config.service,
            container=config.container,
        ),
        nginx_provider=NginxProvider(
            sites_available=config.nginx.sites_available,
            sites_enabled=config.nginx.sites_enabled,
            site_name=config.nginx.site_name,
            nginx_bin=config.nginx.nginx_bin,
        ),
        systemd_provider=SystemdProvider(
            systemd_dir=config.systemd.unit_dir,
            systemctl_bin=config.systemd.systemctl_bin,
            journalctl_bin=config.systemd.journalctl_bin,
        ),
        compose_provider=ComposeProvider(
            compose_dir=config.container.compose_dir,
            container_name=config.container.container_name,
            docker_bin=config.container.docker_bin,
        ),
        certbot_provider=CertbotProvider(
            live_dir=config.certificates.live_dir,
            certbot_bin=config.certificates.certbot_bin,
        ),
        application_provider=ApplicationProvider(network=network),
        backups=BackupsRegistry(config.backups.root, config.backups.index),
        inspector=CertificateInspector(),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


def _certificate_manager(runtime: RuntimeContext) -> CertificateManager:
    return CertificateManager(
        config=runtime.config.certificates,
        certbot=runtime.certbot_provider,
        network=runtime.network,
        nginx=runtime.nginx_provider,
        systemd=runtime.systemd_provider,
        renderer=runtime.renderer,
        prompter=runtime.prompter,
        inspector=runtime.inspector,
    )


def _supervisor(runtime: RuntimeContext, installation: InstallationConfig) -> ServiceSupervisor:
    return ServiceSupervisor(
        installation=installation,
        systemd=runtime.systemd_provider,
        compose=runtime.compose_provider,
        config=runtime.config.service,
    )


def _management(runtime: RuntimeContext, installation: InstallationConfig) -> Management:
    return Management(
        config=runtime.config,
        installation=installation,
        store=runtime.store,
        supervisor=_supervisor(runtime, installation),
        certificates=_certificate_manager(runtime),
        nginx=runtime.nginx_provider,
        systemd=runtime.systemd_provider,
        compose=runtime.compose_provider,
        application=runtime.application_provider,
        host=runtime.host,
        network=runtime.network,
        backups=runtime.backups,
        inspector=runtime.inspector,
    )


def _orchestrator(runtime: RuntimeContext, op: OperationScope) -> Orchestrator:
    config = runtime.config
    return Orchestrator(
        config=config,
        store=runtime.store,
        prompter=runtime.prompter,
        host=runtime.host,
        prober=ResourceProber(config.prober, runtime.host, runtime.network),
        swap=SwapProvisioner(config.swap, runtime.host, runtime.prompter),
        renderer=runtime.renderer,
        nginx=runtime.nginx_provider,
        systemd=runtime.systemd_provider,
        compose=runtime.compose_provider,
        application=runtime.application_provider,
        certificates=_certificate_manager(runtime),
        on_step=lambda name, status, detail: op.add_step(name, status=status, detail=detail),
    )


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the devhostctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"devhostctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = 2,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _fail(op: OperationScope, exc: Exception) -> NoReturn:
    """Map a domain exception onto its exit code and terminate."""
    if isinstance(exc, OperatorAborted):
        _command_error(op, str(exc), rc=int(ExitCode.ABORTED))
    if isinstance(exc, (ValidationError, ConfigError)):
        _command_error(op, str(exc), rc=int(ExitCode.VALIDATION))
    if isinstance(exc, _ENVIRONMENT_ERRORS):
        _command_error(op, str(exc), rc=int(ExitCode.ENVIRONMENT))
    if isinstance(exc, SupervisorError) and exc.log_tail:
        console.print(exc.log_tail, markup=False)
    _command_error(op, str(exc), rc=int(ExitCode.PROVIDER))


_HANDLED = (
    OperatorAborted,
    ValidationError,
    ConfigError,
    *_ENVIRONMENT_ERRORS,
    *_PROVIDER_ERRORS,
)


def _load_installation(runtime: RuntimeContext, op: OperationScope) -> InstallationConfig:
    try:
        installation = runtime.store.load()
    except InstallationStateError as exc:
        _command_error(op, str(exc), rc=int(ExitCode.ENVIRONMENT))
    op.add_step("installation.load", detail=str(runtime.store.path))
    return installation


def _render_report(title: str, report: HealthReport) -> None:
    render_report(console, title, report)


def _render_transitions(results: Sequence[TransitionResult]) -> int:
    return render_transitions(console, results)


def _render_summary(summary: InstallSummary) -> None:
    installation = summary.installation
    table = Table(title="Installation complete", show_header=False)
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("URL", summary.url)
    table.add_row("Method", installation.install_method)
    table.add_row("Host", f"{summary.resources.os_name} ({summary.resources.memory_mb} MB)")
    if summary.swap is not None:
        table.add_row("Swap", f"{summary.swap.size_gb} GB at {summary.swap.backing_path}")
    record = summary.certificate.record
    if record is not None:
        table.add_row("Certificate", f"valid until {record.not_after:%Y-%m-%d}")
    table.add_row("Console", "devhost-panel")
    console.print(table)
    for warning in summary.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


@app.command()
def install(ctx: typer.Context) -> None:
    """Run the interactive first-time installation."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "install",
        target={"kind": "installation", "path": str(runtime.store.path)},
    ) as op:
        try:
            with runtime.locks.installation_lock(runtime.store.path) as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                summary = _orchestrator(runtime, op).run()
        except _HANDLED as exc:
            _fail(op, exc)
        _render_summary(summary)
        op.success(
            f"Installed {summary.installation.domain}.",
            changed=1,
            warnings=list(summary.warnings),
            context={"installation": summary.installation.redacted()},
        )


@app.command("console")
def console_command(ctx: typer.Context) -> None:
    """Open the interactive management console."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("console", target={"kind": "console"}) as op:
        installation = _load_installation(runtime, op)
        try:
            with runtime.locks.installation_lock(runtime.store.path) as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                ManagementConsole(
                    management=_management(runtime, installation),
                    prompter=runtime.prompter,
                    console=console,
                ).run()
        except _HANDLED as exc:
            _fail(op, exc)
        op.success("Console session ended.", changed=0)


@app.command("health-check")
def health_check(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only write the health log."),
) -> None:
    """Run every health check once and append the results to the health log."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("health-check", target={"kind": "health"}) as op:
        installation = _load_installation(runtime, op)
        try:
            with runtime.locks.monitor_lock():
                report = _management(runtime, installation).health_check()
        except LockTimeoutError:
            if not quiet:
                console.print("Another health check is already running; skipping.")
            op.success("Skipped; another run holds the monitor lock.", changed=0)
            return
        except _HANDLED as exc:
            _fail(op, exc)
        if json_output:
            typer.echo(json.dumps(report.to_dict(), indent=2))
        elif not quiet:
            _render_report("Health check", report)
        message = f"Health check finished: {report.summary_line()}."
        if report.exit_code:
            op.warning(message, warnings=[r.detail for r in report.results if r.is_issue])
            raise typer.Exit(code=report.exit_code)
        op.success(message, changed=0)


@app.command()
def status(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show service state and resource usage without restarting anything."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("status", target={"kind": "status"}) as op:
        installation = _load_installation(runtime, op)
        report = _management(runtime, installation).status()
        if json_output:
            typer.echo(json.dumps(report.to_dict(), indent=2))
        else:
            _render_report(f"Status: {installation.domain}", report)
        op.success(report.summary_line(), changed=0)


def _service_action(ctx: typer.Context, action: str, target: str) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"service {action}",
        args={"target": target},
        target={"kind": "service", "name": target},
    ) as op:
        if target not in {"app", "proxy", "all"}:
            _command_error(op, f"Unknown target '{target}'; use app, proxy or all.", rc=2)
        installation = _load_installation(runtime, op)
        try:
            with runtime.locks.installation_lock(runtime.store.path) as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                management = _management(runtime, installation)
                if target == "all":
                    results = getattr(management, action)()
                else:
                    results = [getattr(management.supervisor, action)(target)]
        except _HANDLED as exc:
            _fail(op, exc)
        failures = _render_transitions(results)
        if failures:
            op.warning(f"{failures} service(s) not in the expected state after {action}.", changed=1)
            return
        op.success(f"Services {action} complete.", changed=1)


@service_app.command("start")
def service_start(ctx: typer.Context, target: str = SERVICE_TARGET_ARGUMENT) -> None:
    """Start services and verify they are running."""
    _service_action(ctx, "start", target)


@service_app.command("stop")
def service_stop(ctx: typer.Context, target: str = SERVICE_TARGET_ARGUMENT) -> None:
    """Stop services."""
    _service_action(ctx, "stop", target)


@service_app.command("restart")
def service_restart(ctx: typer.Context, target: str = SERVICE_TARGET_ARGUMENT) -> None:
    """Restart services and verify they came back."""
    _service_action(ctx, "restart", target)


@cert_app.command("status")
def cert_status(ctx: typer.Context) -> None:
    """Show certificate expiry for the installed domain."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("cert status", target={"kind": "certificate"}) as op:
        installation = _load_installation(runtime, op)
        try:
            record = _certificate_manager(runtime).status(installation.domain)
        except _HANDLED as exc:
            _fail(op, exc)
        if record is None:
            console.print(f"[yellow]No certificate found for {installation.domain}.[/yellow]")
            op.warning("Certificate missing.", warnings=["certificate missing"])
            return
        urgency = record.classify(
            warn_days=runtime.config.certificates.warn_days,
            urgent_days=runtime.config.certificates.urgent_days,
        )
        console.print(
            f"{record.domain}: expires {record.not_after:%Y-%m-%d} "
            f"({record.days_remaining} day(s) remaining, {urgency.value})"
        )
        op.success("Certificate inspected.", changed=0, context=record.to_dict())


@cert_app.command("renew")
def cert_renew(ctx: typer.Context) -> None:
    """Renew the certificate now and reload nginx."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("cert renew", target={"kind": "certificate"}) as op:
        installation = _load_installation(runtime, op)
        try:
            with runtime.locks.installation_lock(runtime.store.path) as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                record = _certificate_manager(runtime).renew(installation.domain)
        except _HANDLED as exc:
            _fail(op, exc)
        days = record.days_remaining if record is not None else "unknown"
        console.print(f"[green]Certificate renewed; {days} day(s) remaining.[/green]")
        op.success("Certificate renewed.", changed=1)


@app.command()
def backup(ctx: typer.Context) -> None:
    """Back up configuration and the installation record."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("backup", target={"kind": "backup"}) as op:
        installation = _load_installation(runtime, op)
        try:
            with runtime.locks.installation_lock(runtime.store.path) as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                result = _management(runtime, installation).backup()
        except _HANDLED as exc:
            _fail(op, exc)
        console.print(f"[green]Backup written to {result.path}[/green]")
        for name in result.skipped:
            console.print(f"[yellow]Skipped missing artifact: {name}[/yellow]")
        for name, reason in result.failed.items():
            console.print(f"[red]Failed to copy {name}: {reason}[/red]")
        entry = result.to_entry()
        if result.failed:
            op.warning(
                "Backup completed with failures.",
                changed=1,
                backups=[str(result.path)],
                context=entry,
            )
            return
        op.success("Backup complete.", changed=1, context=entry)


@app.command()
def remove(
    ctx: typer.Context,
    confirm: str | None = typer.Option(
        None,
        "--confirm",
        help=f"Pass {REMOVE_CONFIRMATION} to skip the interactive confirmation.",
    ),
) -> None:
    """Remove the service, proxy site, certificate, state and console."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("remove", target={"kind": "installation"}) as op:
        installation = _load_installation(runtime, op)
        answer = confirm
        if answer is None:
            answer = runtime.prompter.ask(f"Type {REMOVE_CONFIRMATION} to confirm removal")
        if answer.strip() != REMOVE_CONFIRMATION:
            _command_error(op, "Removal cancelled.", rc=int(ExitCode.ABORTED))
        try:
            with runtime.locks.installation_lock(runtime.store.path) as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                outcomes = _management(runtime, installation).remove()
        except _HANDLED as exc:
            _fail(op, exc)
        failed = [outcome for outcome in outcomes if not outcome.ok]
        for outcome in outcomes:
            op.add_step(
                f"remove.{outcome.name}",
                status="success" if outcome.ok else "error",
                detail=outcome.detail,
            )
            marker = "[green]done[/green]" if outcome.ok else "[red]failed[/red]"
            console.print(f"{outcome.name}: {marker} {outcome.detail}".rstrip())
        if failed:
            op.warning(
                "Removal finished with failures.",
                errors=[f"{outcome.name}: {outcome.detail}" for outcome in failed],
                changed=len(outcomes) - len(failed),
            )
            raise typer.Exit(code=int(ExitCode.PROVIDER))
        op.success("Installation removed.", changed=len(outcomes))


@app.command()
def update(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Update code-server to the latest release."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("update", target={"kind": "application"}) as op:
        installation = _load_installation(runtime, op)
        try:
            with runtime.locks.installation_lock(runtime.store.path) as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                outcome = _management(runtime, installation).update(
                    confirm=None
                    if yes
                    else lambda versions: runtime.prompter.confirm(
                        f"Update code-server from {versions.installed} to {versions.latest}?",
                        default=True,
                    )
                )
        except _HANDLED as exc:
            _fail(op, exc)
        if not outcome.updated:
            console.print(f"code-server is up to date ({outcome.before.installed}).")
            op.success("No update applied.", changed=0)
            return
        console.print("[green]code-server updated.[/green]")
        if outcome.restart is not None:
            _render_transitions([outcome.restart])
        op.success("code-server updated.", changed=1)


app.add_typer(service_app, name="service")
app.add_typer(cert_app, name="cert")


def main() -> None:
    """Entry point for ``devhostctl``."""
    app()


def panel_main() -> None:
    """Entry point for ``devhost-panel``."""
    app(args=[*sys.argv[1:], "console"], prog_name="devhost-panel")


def monitor_main() -> None:
    """Entry point for ``devhost-monitor`` (one health run, log only)."""
    app(args=[*sys.argv[1:], "health-check", "--quiet"], prog_name="devhost-monitor")


__all__ = ["RuntimeContext", "app", "main", "monitor_main", "panel_main"]
