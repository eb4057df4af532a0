"""Typer-based CLI for DesignSync."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__, config_manager
from .config import SyncSettings, load_sync_settings
from .diff_engine import create_diff
from .llm import LocalLLM
from .models import SyncReport
from .orchestrator import SyncOrchestrator
from .storage import ProjectManager, SourceIndex

app = typer.Typer(
    help="🧭 DesignSync: apply architecture-graph edits back to source code.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

ACTION_STYLES = {
    "updated": "green",
    "created": "cyan",
    "unchanged": "dim",
    "failed": "red",
}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"DesignSync v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Show debug logging."),
):
    """DesignSync: keep code in step with its architecture diagram."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def print_error(message: str) -> None:
    console.print(f"[red]❌ {message}[/red]")


def _project_name_from_path(project_path: Path) -> str:
    return project_path.resolve().name.replace(" ", "_")


def _open_current_index(pm: ProjectManager) -> Tuple[SourceIndex, Path]:
    project = pm.get_current_project()
    if not project:
        raise typer.BadParameter("No project loaded. Run 'dsync index <path>' first.")
    project_dir = pm.project_dir(project)
    if not project_dir.exists():
        raise typer.BadParameter(f"Loaded project '{project}' does not exist in memory.")
    index = SourceIndex(project_dir)
    root = index.get_metadata().get("project_root")
    if not root:
        index.close()
        raise typer.BadParameter(f"Project '{project}' has no workspace root. Re-run 'dsync index <path>'.")
    return index, Path(root)


def _read_graph(path: Path) -> Dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{path} is not valid JSON: {exc}")
    if not isinstance(payload, dict):
        raise typer.BadParameter(f"{path} must contain a JSON object with 'nodes' and 'edges'.")
    return payload


def _build_orchestrator(index: SourceIndex, root: Path) -> SyncOrchestrator:
    settings: SyncSettings = load_sync_settings()
    return SyncOrchestrator(index, LocalLLM(), root, settings)


def _render_report(report: SyncReport) -> None:
    console.print(f"\n[bold]{report.summary}[/bold]")

    if report.changed_files:
        table = Table(title="Changed files", show_lines=False)
        table.add_column("File")
        table.add_column("Action")
        table.add_column("Attempts", justify="right")
        table.add_column("Change", justify="right")
        table.add_column("Note")
        for item in report.changed_files:
            style = ACTION_STYLES.get(item.action, "white")
            note = item.error or (f"fallback: {item.fallback_reason}" if item.forced_fallback else "")
            table.add_row(
                item.file_path,
                f"[{style}]{item.action}[/{style}]",
                str(item.rewrite_attempts),
                f"{item.change_ratio:.0%}",
                note,
            )
        console.print(table)

    if report.plan and not report.changed_files:
        table = Table(title="Plan")
        table.add_column("Type")
        table.add_column("Target")
        table.add_column("Confidence", justify="right")
        table.add_column("Reason")
        for item in report.plan:
            target = item.file_path or item.to_path
            if item.import_from:
                target += f" → {item.import_from}"
            table.add_row(item.type, target, f"{item.confidence:.2f}", item.reason)
        console.print(table)

    comparison = report.comparison
    if comparison:
        console.print(
            f"[dim]Edges: +{len(comparison.get('addedEdges', []))} "
            f"-{len(comparison.get('removedEdges', []))} | "
            f"coverage {comparison.get('mappingCoverage', 0):.0%}[/dim]"
        )
    for warning in report.warnings:
        console.print(f"[yellow]⚠️  {warning}[/yellow]")
    for question in report.questions:
        console.print(f"[cyan]❓ {question}[/cyan]")


@app.command("index")
def index_project(
    project_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Path to the workspace."),
    project_name: Optional[str] = typer.Option(None, "--name", "-n", help="Explicit memory name for project."),
):
    """Index a workspace's files and import graph, and make it current."""
    pm = ProjectManager()
    resolved_path = project_path.resolve()
    name = project_name or _project_name_from_path(resolved_path)
    index = SourceIndex(pm.create_or_get_project(name))
    try:
        stats = index.index_project(resolved_path)
        index.set_metadata({
            **index.get_metadata(),
            "project_name": name,
            "indexed_at": datetime.now().isoformat(),
        })
    finally:
        index.close()
    pm.set_current_project(name)

    typer.echo(f"Indexed '{resolved_path}' as project '{name}'.")
    typer.echo(f"Files: {stats['files']} | Edges: {stats['edges']}")


@app.command("status")
def status():
    """Show the current project and its index size."""
    pm = ProjectManager()
    index, root = _open_current_index(pm)
    try:
        typer.echo(f"Project:   {pm.get_current_project()}")
        typer.echo(f"Workspace: {root}")
        typer.echo(f"Files: {index.file_count()} | Edges: {index.edge_count()}")
    finally:
        index.close()


@app.command("commit")
def commit(
    graph_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Visual graph JSON."),
    dirty: List[str] = typer.Option([], "--dirty", "-d", help="Only apply these node ids (repeatable)."),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    show_diff: bool = typer.Option(False, "--show-diff", help="Print a unified diff for every written file."),
):
    """Rewrite files so they satisfy the instructions on graph nodes."""
    payload = _read_graph(graph_file)
    index, root = _open_current_index(ProjectManager())
    try:
        orchestrator = _build_orchestrator(index, root)
        report = asyncio.run(orchestrator.commit(payload, list(dirty) if dirty else None))
    finally:
        index.close()

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
        return

    _render_report(report)
    if show_diff:
        for result in orchestrator.last_results:
            if not result.should_write:
                continue
            rel = result.update.relative_path
            diff = create_diff(result.update.current_content, result.rewritten_content, rel)
            typer.echo(diff or f"(no textual change in {rel})")


@app.command("preview")
def preview(
    graph_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Visual graph JSON."),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON."),
):
    """Ask the LLM for a refactor plan matching the graph. Writes nothing."""
    payload = _read_graph(graph_file)
    index, root = _open_current_index(ProjectManager())
    try:
        report = _build_orchestrator(index, root).preview(payload)
    finally:
        index.close()

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _render_report(report)


@app.command("mermaid")
def mermaid(
    design_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Edited Mermaid flowchart."),
    original: Optional[Path] = typer.Option(None, "--original", "-o", exists=True, dir_okay=False,
                                            help="Mermaid text before the edit."),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON."),
):
    """Plan the code changes implied by an edited Mermaid diagram."""
    text = design_file.read_text(encoding="utf-8")
    original_text = original.read_text(encoding="utf-8") if original else ""
    index, root = _open_current_index(ProjectManager())
    try:
        report = _build_orchestrator(index, root).preview_mermaid(text, original_text)
    finally:
        index.close()

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _render_report(report)


@app.command("set-llm")
def set_llm(
    provider: str = typer.Argument(..., help="LLM provider: ollama, groq, openai, anthropic, gemini, openrouter"),
    model: str = typer.Option(None, "--model", "-m", help="Model name (uses provider default if not set)."),
    api_key: str = typer.Option(None, "--api-key", "-k", help="API key for cloud providers."),
    endpoint: str = typer.Option(None, "--endpoint", "-e", help="Custom endpoint URL."),
):
    """Switch the LLM provider used for rewrites and plans.

    Examples:
        dsync set-llm ollama -m qwen2.5-coder:7b
        dsync set-llm groq -k YOUR_API_KEY
    """
    provider = provider.lower().strip()
    if provider not in config_manager.ALL_PROVIDERS:
        print_error(f"Unknown provider '{provider}'. Choose from: {', '.join(config_manager.ALL_PROVIDERS)}")
        raise typer.Exit(code=1)

    defaults = config_manager.get_provider_config(provider)
    resolved_model = model or defaults.get("model", "")
    resolved_endpoint = endpoint or defaults.get("endpoint", "")
    if provider != "ollama" and not api_key:
        current = config_manager.load_config()
        if current.get("provider") == provider and current.get("api_key"):
            api_key = current["api_key"]
        else:
            print_error(f"Provider '{provider}' needs an API key (--api-key).")
            raise typer.Exit(code=1)

    if not config_manager.save_config(provider, resolved_model, api_key or "", resolved_endpoint):
        print_error(f"Could not write {config_manager.CONFIG_FILE}")
        raise typer.Exit(code=1)
    console.print(f"[green]✅ LLM set to {provider} ({resolved_model})[/green]")


@app.command("show-llm")
def show_llm():
    """Show current LLM provider configuration."""
    cfg = config_manager.load_config()
    api_key = cfg.get("api_key", "")
    typer.echo(f"  Provider  {cfg.get('provider', 'ollama')}")
    typer.echo(f"  Model     {cfg.get('model', '')}")
    if cfg.get("endpoint"):
        typer.echo(f"  Endpoint  {cfg['endpoint']}")
    if api_key:
        typer.echo(f"  API Key   {api_key[:8] + '•' * min(len(api_key) - 8, 16)}")
    else:
        typer.echo("  API Key   (not set)")
    typer.echo(f"  Config    {config_manager.CONFIG_FILE}")


@app.command("set-sync")
def set_sync(
    key: str = typer.Argument(..., help="Setting name, e.g. commit_limit or workers."),
    value: str = typer.Argument(..., help="New value."),
):
    """Change a commit tunable in the [sync] config section."""
    defaults = SyncSettings()
    if not hasattr(defaults, key):
        raise typer.BadParameter(f"Unknown setting '{key}'.")
    try:
        converted = type(getattr(defaults, key))(value)
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not a valid value for {key}.")
    if not config_manager.save_sync_config({key: converted}):
        print_error(f"Could not write {config_manager.CONFIG_FILE}")
        raise typer.Exit(code=1)
    console.print(f"[green]✅ {key} = {converted}[/green]")
