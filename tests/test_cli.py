"""Tests de la CLI con typer.testing.CliRunner."""

import os

import pytest
import yaml
from rich.console import Console
from typer.testing import CliRunner

from lsxagent import __version__
import lsxagent.cli.app as cli_app
from lsxagent.cli.app import app
from lsxagent.core.catalog.catalog import Catalog


runner = CliRunner()


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "agent.yaml"
    path.write_text(yaml.safe_dump({"statedir": str(tmp_path / "state"), "node_name": "web01"}))
    return path


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_disable_status_enable(config, tmp_path):
    result = runner.invoke(app, ["disable", "--config", str(config)])
    assert result.exit_code == 0
    assert (tmp_path / "state" / "agent.lock").exists()

    result = runner.invoke(app, ["status", "--config", str(config)])
    assert result.exit_code == 0
    assert "deshabilitado" in result.output

    result = runner.invoke(app, ["enable", "--config", str(config)])
    assert result.exit_code == 0
    assert not (tmp_path / "state" / "agent.lock").exists()


def test_run_local_catalog(config, tmp_path):
    target = tmp_path / "motd"
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(yaml.safe_dump({
        "name": "web01",
        "resources": [{"type": "file", "title": str(target), "parameters": {"ensure": "file", "mode": "600"}}],
    }))

    result = runner.invoke(app, ["run", "--config", str(config), "--catalog", str(catalog)])
    assert result.exit_code == 0, result.output
    assert target.is_file()
    assert oct(os.stat(target).st_mode & 0o777) == "0o600"
    assert not (tmp_path / "state" / "classes.txt").exists()


def test_run_noop(config, tmp_path):
    target = tmp_path / "motd"
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(yaml.safe_dump({
        "resources": [{"type": "file", "title": str(target), "parameters": {"ensure": "file"}}],
    }))

    result = runner.invoke(app, ["run", "--config", str(config), "--catalog", str(catalog), "--noop"])
    assert result.exit_code == 0, result.output
    assert not target.exists()


def test_run_failure_exit_code(config, tmp_path):
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(yaml.safe_dump({
        "resources": [{"type": "file", "title": str(tmp_path / "no" / "existe"), "parameters": {"ensure": "file"}}],
    }))
    result = runner.invoke(app, ["run", "--config", str(config), "--catalog", str(catalog)])
    assert result.exit_code == 1


def test_run_without_server_or_catalog(config):
    result = runner.invoke(app, ["run", "--config", str(config)])
    assert result.exit_code == 2


def test_invalid_config(tmp_path):
    config = tmp_path / "agent.yaml"
    config.write_text("splaylimit: -1\n")
    result = runner.invoke(app, ["status", "--config", str(config)])
    assert result.exit_code == 2


@pytest.fixture
def wide_console(monkeypatch):
    console = Console(width=300, record=True)
    monkeypatch.setattr(cli_app, "console", console)
    return console


def test_report_shows_bracketed_references(config, tmp_path, wide_console):
    missing = tmp_path / "no" / "existe"
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(yaml.safe_dump({
        "resources": [
            {"type": "file", "title": str(missing), "parameters": {"ensure": "file"}},
            {"type": "notify", "title": "aviso", "parameters": {"require": f"File[{missing}]"}},
        ],
    }))
    result = runner.invoke(app, ["run", "--config", str(config), "--catalog", str(catalog)])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    text = wide_console.export_text()
    assert f"File[{missing}]" in text
    assert "Notify[aviso]" in text
    assert f"depende de File[{missing}]" in text


def test_display_report_escapes_markup(registry, wide_console):
    catalog = Catalog("web01")
    catalog.add_resource(registry.type("notify").create("[/cierre]", {"message": "[bold]hola[/x]"}))
    report = catalog.apply().report

    cli_app.display_report(report)
    text = wide_console.export_text()
    assert "Notify[[/cierre]]" in text
    assert "[bold]hola[/x]" in text
