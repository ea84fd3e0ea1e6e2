"""Service supervisor: transitions plus post-transition liveness checks."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .config import ServiceConfig
from .installation import InstallationConfig
from .providers.compose import ComposeError, ComposeProvider
from .providers.service_state import ServiceState
from .providers.systemd import SystemdError, SystemdProvider

_LOG = logging.getLogger(__name__)

TARGETS = ("app", "proxy", "stack")
PROXY_UNIT = "nginx.service"


class SupervisorError(RuntimeError):
    """Raised when a service transition leaves the service unusable."""

    def __init__(self, message: str, *, log_tail: str = "") -> None:
        """Attach the diagnostic *log_tail* gathered after the failure."""
        super().__init__(message)
        self.log_tail = log_tail


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Outcome of one start/stop/restart call."""

    target: str
    action: str
    state: ServiceState
    detail: str = ""
    retried: bool = False
    log_tail: str = ""

    @property
    def live(self) -> bool:
        """Return True when the service was observed running afterwards."""
        return self.state.is_running

    @property
    def ok(self) -> bool:
        """Return True when the observed state matches the requested action."""
        if self.action == "stop":
            return self.state is ServiceState.STOPPED
        return self.live


@dataclass(slots=True)
class ServiceSupervisor:
    """Start, stop and restart the application, the proxy or the container stack.

    In container deployments the ``app`` target is the compose stack.
    """

    installation: InstallationConfig
    systemd: SystemdProvider
    compose: ComposeProvider
    config: ServiceConfig
    sleep: Callable[[float], None] = time.sleep

    def resolve(self, target: str) -> str:
        """Map *target* onto what this deployment actually runs."""
        if target not in TARGETS:
            raise SupervisorError(f"Unknown service target '{target}'.")
        if target == "app" and self.installation.is_container:
            return "stack"
        if target == "stack" and not self.installation.is_container:
            raise SupervisorError("Native deployments have no container stack.")
        return target

    def unit_for(self, target: str) -> str:
        """Return the systemd unit behind *target*."""
        resolved = self.resolve(target)
        if resolved == "proxy":
            return PROXY_UNIT
        if resolved == "app":
            return self.systemd.app_unit(self.installation.service_user)
        raise SupervisorError("The container stack is not managed by systemd.")

    def start(self, target: str, *, first_install: bool = False) -> TransitionResult:
        """Start *target* and verify it came up."""
        return self._transition(target, "start", first_install=first_install)

    def restart(self, target: str, *, first_install: bool = False) -> TransitionResult:
        """Restart *target* and verify it came back."""
        return self._transition(target, "restart", first_install=first_install)

    def stop(self, target: str) -> TransitionResult:
        """Stop *target* and verify it went down."""
        resolved = self.resolve(target)
        detail = ""
        try:
            if resolved == "stack":
                self.compose.stop()
            else:
                self.systemd.stop(self.unit_for(resolved))
        except (SystemdError, ComposeError) as exc:
            detail = str(exc)
        self.sleep(self.config.settle_delay)
        result = TransitionResult(
            target=resolved, action="stop", state=self.state(resolved), detail=detail
        )
        if not result.ok:
            _LOG.warning("%s did not stop cleanly (state=%s). %s", resolved, result.state.value, detail)
        return result

    def state(self, target: str) -> ServiceState:
        """Return the live state of *target* (``unknown`` when undeterminable)."""
        resolved = self.resolve(target)
        if resolved == "stack":
            return self.compose.state()
        return self.systemd.state(self.unit_for(resolved))

    def logs(self, target: str, *, lines: int | None = None) -> str:
        """Return the recent log tail for *target*."""
        resolved = self.resolve(target)
        count = lines if lines is not None else self.config.log_tail_lines
        try:
            if resolved == "stack":
                return self.compose.logs(lines=count)
            return self.systemd.logs(self.unit_for(resolved), lines=count)
        except (SystemdError, ComposeError) as exc:
            return f"(logs unavailable: {exc})"

    # ------------------------------------------------------------------
    def _transition(self, target: str, action: str, *, first_install: bool) -> TransitionResult:
        resolved = self.resolve(target)
        detail = self._invoke(resolved, action)
        self.sleep(self.config.settle_delay)
        state = self.state(resolved)
        retried = False

        if not state.is_running and resolved == "stack":
            _LOG.warning("Container stack not running after %s; cleaning up and retrying once.", action)
            self._cleanup_stack()
            retried = True
            detail = self._invoke(resolved, "start")
            self.sleep(self.config.settle_delay)
            state = self.state(resolved)

        if state.is_running:
            return TransitionResult(
                target=resolved, action=action, state=state, detail=detail, retried=retried
            )

        tail = self.logs(resolved)
        result = TransitionResult(
            target=resolved,
            action=action,
            state=state,
            detail=detail,
            retried=retried,
            log_tail=tail,
        )
        message = f"{resolved} is not running after {action} (state={state.value})."
        if detail:
            message = f"{message} {detail}"
        if first_install:
            raise SupervisorError(message, log_tail=tail)
        _LOG.warning(message)
        return result

    def _invoke(self, resolved: str, action: str) -> str:
        try:
            if resolved == "stack":
                if action == "restart":
                    self.compose.restart()
                else:
                    self.compose.up()
            elif action == "restart":
                self.systemd.restart(self.unit_for(resolved))
            else:
                self.systemd.start(self.unit_for(resolved))
        except (SystemdError, ComposeError) as exc:
            return str(exc)
        return ""

    def _cleanup_stack(self) -> None:
        for step in (self.compose.down, self.compose.prune):
            try:
                step()
            except ComposeError as exc:
                _LOG.warning("Container cleanup step failed: %s", exc)


__all__ = ["PROXY_UNIT", "SupervisorError", "ServiceSupervisor", "TARGETS", "TransitionResult"]
