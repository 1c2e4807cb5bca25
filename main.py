"""
modelmesh - Main Entry Point

CLI for inspecting providers, selecting a model, and streaming a
completion through the fallback chain.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from modelmesh.config.loader import load_model_config
from modelmesh.config.schema import ModelConfig
from modelmesh.exceptions import ConfigurationError, ModelMeshError
from modelmesh.llm.model_manager import ModelManager, create_model_manager
from modelmesh.llm.types import LLMMessage, LLMOptions, MessageRole
from modelmesh.observability.logging_config import configure_logging

load_dotenv()

app = typer.Typer(
    name="modelmesh",
    help="modelmesh - multi-provider completion routing",
)
console = Console()
logger = logging.getLogger("modelmesh")

ConfigOption = typer.Option(
    None, "--config", "-c", help="Path to models.yaml (default: config/models.yaml)"
)


def _get_config(config_path: Optional[Path]) -> ModelConfig:
    """Load and return the model config, with a friendly error on failure."""
    try:
        return load_model_config(config_path)
    except FileNotFoundError as e:
        console.print(Panel(
            f"[red]Config not found:[/] {e}\n\n"
            f"Copy [cyan]config/models.yaml[/] and adjust providers,\n"
            f"or point [bold]MODELMESH_CONFIG[/] at your file.",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)
    except ConfigurationError as e:
        console.print(Panel(str(e), title="⚠ Configuration Error", border_style="red"))
        raise typer.Exit(code=1)


async def _manager_for(config_path: Optional[Path]) -> ModelManager:
    manager = await create_model_manager(_get_config(config_path))
    if not manager.get_registered_providers():
        console.print("[yellow]No providers available. Check API keys and enabled flags.[/]")
    return manager


# =========================================================================
# Commands
# =========================================================================


@app.command()
def providers(config: Optional[Path] = ConfigOption):
    """Show configured providers and whether they registered."""

    async def _run():
        model_config = _get_config(config)
        manager = await create_model_manager(model_config)
        try:
            registered = set(manager.get_registered_providers())

            table = Table(title="Providers")
            table.add_column("Name", style="cyan")
            table.add_column("Enabled", style="white")
            table.add_column("Status", style="green")
            table.add_column("Models", style="yellow")

            for pc in model_config.providers:
                if pc.name in registered:
                    status = "[green]available[/]"
                    models = str(len(manager.get_provider_models(pc.name)))
                elif not pc.enabled:
                    status = "[dim]disabled[/]"
                    models = "-"
                else:
                    status = "[red]unavailable[/]"
                    models = "-"
                table.add_row(pc.name, "yes" if pc.enabled else "no", status, models)

            console.print(table)
        finally:
            await manager.aclose()

    asyncio.run(_run())


@app.command()
def models(config: Optional[Path] = ConfigOption):
    """List every model offered by the registered providers."""

    async def _run():
        manager = await _manager_for(config)
        try:
            table = Table(title="Available Models")
            table.add_column("Model ID", style="cyan")
            table.add_column("Name", style="white")
            table.add_column("Max Output", style="yellow")

            for provider_name in manager.get_registered_providers():
                for info in manager.get_provider_models(provider_name):
                    table.add_row(
                        f"{provider_name}/{info.id}",
                        info.name,
                        str(info.max_tokens) if info.max_tokens else "-",
                    )

            console.print(table)
        finally:
            await manager.aclose()

    asyncio.run(_run())


@app.command()
def select(
    model: Optional[str] = typer.Argument(
        None, help="provider/model to select (default: fallback chain)"
    ),
    config: Optional[Path] = ConfigOption,
):
    """Run model selection and show which candidate was committed."""

    async def _run():
        manager = await _manager_for(config)
        try:
            selection = await manager.select_model(model)
        except ModelMeshError as e:
            console.print(f"[red]Selection failed:[/] {e}")
            raise typer.Exit(1)
        finally:
            await manager.aclose()

        console.print(Panel(
            f"Provider: [cyan]{selection.provider}[/]\n"
            f"Model:    [cyan]{selection.model}[/]",
            title="Model Selected",
            border_style="green",
        ))

    asyncio.run(_run())


@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User prompt"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="provider/model"),
    system: Optional[str] = typer.Option(None, "--system", "-s", help="System prompt"),
    temperature: Optional[float] = typer.Option(None, help="Sampling temperature"),
    max_tokens: Optional[int] = typer.Option(None, help="Max output tokens"),
    config: Optional[Path] = ConfigOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show routing logs"),
):
    """Stream a completion through the fallback chain."""
    configure_logging(level=logging.INFO if verbose else logging.WARNING)

    async def _run():
        manager = await _manager_for(config)

        messages: list[LLMMessage] = []
        if system:
            messages.append(LLMMessage(role=MessageRole.SYSTEM, content=system))
        messages.append(LLMMessage(role=MessageRole.USER, content=prompt))

        try:
            selection = await manager.select_model(model)
            console.print(f"[dim]→ {selection.provider}/{selection.model}[/]")

            options = LLMOptions(temperature=temperature, max_tokens=max_tokens)
            async for text in manager.stream_completion(messages, options):
                console.print(text, end="", soft_wrap=True, highlight=False)
            console.print()
        except ModelMeshError as e:
            console.print(f"\n[red]Completion failed:[/] {e}")
            raise typer.Exit(1)
        finally:
            await manager.aclose()

        summary = manager.get_cost_summary()
        if summary.count:
            console.print(
                f"[dim]Estimated cost: ${summary.total:.4f} "
                f"({summary.count} completion{'s' if summary.count != 1 else ''})[/]"
            )

    asyncio.run(_run())


if __name__ == "__main__":
    app()
