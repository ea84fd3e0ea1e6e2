"""Tests for the template engine."""
from __future__ import annotations

import stat
from pathlib import Path

import pytest
from jinja2 import UndefinedError

from devhostctl.templates import TemplateEngine, compose_escape, write_if_changed


def test_packaged_template_renders() -> None:
    """Built-in templates are found through the package loader."""
    engine = TemplateEngine.with_overrides(None)

    content = engine.render_to_string("logrotate/devhostctl.j2", {"logs_dir": "/var/log/devhostctl"})

    assert "/var/log/devhostctl/*.log" in content


def test_override_directory_wins(tmp_path: Path) -> None:
    """Operator templates shadow built-in ones of the same name."""
    override = tmp_path / "templates" / "logrotate"
    override.mkdir(parents=True)
    (override / "devhostctl.j2").write_text("custom {{ logs_dir }}\n", encoding="utf-8")

    engine = TemplateEngine.with_overrides(tmp_path / "templates")

    assert engine.render_to_string("logrotate/devhostctl.j2", {"logs_dir": "/x"}) == "custom /x\n"


def test_missing_variable_is_an_error() -> None:
    """Templates render with strict undefined handling."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(UndefinedError):
        engine.render_to_string("logrotate/devhostctl.j2", {})


def test_compose_escape_doubles_dollars() -> None:
    """Dollar signs survive docker compose interpolation."""
    assert compose_escape("pa$$word$") == "pa$$$$word$$"


def test_write_if_changed(tmp_path: Path) -> None:
    """Writes are skipped when content is unchanged."""
    target = tmp_path / "conf" / "site.conf"

    assert write_if_changed(target, "one\n", mode=0o640) is True
    assert write_if_changed(target, "one\n", mode=0o640) is False
    assert write_if_changed(target, "two\n") is True
    assert target.read_text(encoding="utf-8") == "two\n"
    assert stat.S_IMODE(target.stat().st_mode) == 0o644

