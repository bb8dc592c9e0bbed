"""
Aplicación CLI del agente (lsxagent).

Solo compone comandos; la lógica vive en lsxagent.core.
"""

import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from lsxagent import __version__
from lsxagent.core.client import CatalogClient, FileCompiler, LocalCompilerDriver
from lsxagent.core.errors import AgentError, ConfigError
from lsxagent.core.runtime.lock import Pidlock
from lsxagent.core.settings import AgentSettings, load_settings
from lsxagent.core.transaction.report import ResourceStatus, RunReport


DEFAULT_CONFIG = Path(os.environ.get("LSXAGENT_CONFIG", "/etc/lsx/agent.yaml"))

app = typer.Typer(
    name="lsxagent",
    help="LSX Agent - Convergencia declarativa del nodo",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=debug, show_path=debug)],
        force=True,
    )


def _settings(config: Path) -> AgentSettings:
    env = Path.cwd() / ".env"
    if env.exists():
        load_dotenv(env)
    try:
        return load_settings(config)
    except ConfigError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        raise typer.Exit(2)


def _reexec() -> None:
    os.execv(sys.executable, [sys.executable, "-m", "lsxagent"] + sys.argv[1:])


def display_report(report: RunReport) -> None:
    """Muestra el resultado de la transacción"""
    style = {
        ResourceStatus.CHANGED: "[green]changed[/green]",
        ResourceStatus.FAILED: "[red]failed[/red]",
        ResourceStatus.SKIPPED: "[yellow]skipped[/yellow]",
        ResourceStatus.FILTERED: "[dim]filtered[/dim]",
    }
    table = Table(title=f"Ejecución en {report.host or '-'}", show_header=True, header_style="bold")
    table.add_column("Recurso", style="cyan")
    table.add_column("Estado")
    table.add_column("Eventos", style="dim")

    for resource in report.resources.values():
        if resource.status == ResourceStatus.UNCHANGED:
            continue
        detail = "; ".join(e.message for e in resource.events)
        if resource.skipped_because:
            detail = f"depende de {resource.skipped_because}"
        # las referencias Tipo[título] no son markup de rich
        table.add_row(escape(resource.ref), style.get(resource.status, resource.status.value), escape(detail))

    if table.row_count:
        console.print(table)

    metrics = report.metrics()
    border = "red" if metrics["failed"] or report.error else "green"
    console.print(Panel.fit(
        f"[bold]Recursos:[/bold] {metrics['total']}  "
        f"[green]cambiados {metrics['changed']}[/green]  "
        f"[red]fallidos {metrics['failed']}[/red]  "
        f"[yellow]omitidos {metrics['skipped']}[/yellow]\n"
        f"[bold]Duración:[/bold] {report.duration or 0.0:.2f} s"
        + (f"\n[red]{escape(report.error)}[/red]" if report.error else ""),
        border_style=border,
    ))


@app.command()
def run(
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Archivo de configuración YAML"),
    noop: bool = typer.Option(False, "--noop", help="Solo muestra lo que cambiaría"),
    tags: Optional[str] = typer.Option(None, "--tags", help="Aplicar solo recursos con estos tags (a,b)"),
    catalog: Optional[Path] = typer.Option(None, "--catalog", help="Aplicar un catálogo compilado local"),
    debug: bool = typer.Option(False, "--debug", help="Logs de depuración"),
):
    """Obtiene el catálogo del nodo y lo aplica"""
    _setup_logging(debug)
    settings = _settings(config)

    driver = None
    local = None
    if catalog is not None:
        driver = LocalCompilerDriver(settings.node_name, FileCompiler(catalog))
        local = True

    try:
        client = CatalogClient(settings, driver=driver, local=local, restart_hook=_reexec)
    except ConfigError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        raise typer.Exit(2)

    signal.signal(signal.SIGHUP, lambda signum, frame: client.restart())

    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else None
    try:
        report = client.run(tags=tag_list, noop=noop or None)
    except AgentError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        raise typer.Exit(1)

    if report is None:
        console.print("[yellow]⚠ No se aplicó ningún catálogo[/yellow]")
        return
    display_report(report)
    if report.error or report.with_status(ResourceStatus.FAILED):
        raise typer.Exit(1)


@app.command()
def disable(config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c")):
    """Pausa las ejecuciones (lock anónimo)"""
    lock = Pidlock(_settings(config).lockfile)
    if lock.lock(anonymous=True):
        console.print("[green]✓ Ejecuciones deshabilitadas[/green]")
    else:
        console.print(f"[yellow]⚠ Hay una ejecución en curso (PID {lock.lock_owner()})[/yellow]")
        raise typer.Exit(1)


@app.command()
def enable(config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c")):
    """Reanuda las ejecuciones"""
    lock = Pidlock(_settings(config).lockfile)
    if lock.unlock(anonymous=True):
        console.print("[green]✓ Ejecuciones habilitadas[/green]")
    else:
        console.print("[dim]Las ejecuciones no estaban deshabilitadas[/dim]")


@app.command()
def status(config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c")):
    """Muestra el estado del lock y de la caché"""
    settings = _settings(config)
    lock = Pidlock(settings.lockfile)
    cachefile = Path(f"{settings.localconfig}.yaml")

    table = Table(title=f"Nodo {settings.node_name}", show_header=True, header_style="bold cyan")
    table.add_column("Campo", style="cyan")
    table.add_column("Valor", style="green")

    if not lock.locked():
        state = "libre"
    elif lock.anonymous():
        state = "[yellow]deshabilitado[/yellow]"
    else:
        state = f"ejecutando (PID {lock.lock_owner()})"
    table.add_row("Lock", state)
    table.add_row("Compilador", settings.server or "local")
    table.add_row("Caché", str(cachefile) if cachefile.exists() else "[dim]sin caché[/dim]")
    table.add_row("Estado", str(settings.statefile))
    console.print(table)


@app.command()
def version():
    """Muestra la versión de LSX Agent"""
    console.print(Panel.fit(
        "[bold cyan]LSX Agent[/bold cyan]\n"
        "[dim]Convergencia declarativa del nodo[/dim]\n\n"
        f"[bold]Versión:[/bold] {__version__}",
        border_style="cyan"
    ))


def main():
    app()
