"""
main.py — pngtuber-relay application entrypoint.

Bootstraps:
  1. Settings loading (relay.yaml + env)
  2. Avatar config store (config.json)
  3. Broadcast hub, OBS bridge, visibility + audio pipeline
  4. FastAPI server (uvicorn) — the OBS connection starts in its lifespan

CLI:
  python run.py start              start the relay server
  python run.py init-config        create a default relay.yaml
  python run.py check              test OBS connectivity using config.json
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pngtuber_relay import __version__
from pngtuber_relay.api import create_app
from pngtuber_relay.config import Settings
from pngtuber_relay.core import OBSError, build_relay

console = Console()
app = typer.Typer(name="pngtuber-relay", help="PNG-tuber avatar control server with OBS bridge")


def setup_logging(level: str = "info") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


async def build_and_run(config_path: Optional[Path] = None) -> None:
    settings = Settings.load(config_path)
    setup_logging(settings.api.log_level)
    log = logging.getLogger("pngtuber_relay")

    console.rule(f"[bold magenta]pngtuber-relay v{__version__}[/bold magenta]")

    relay = build_relay(settings)
    fast_app = create_app(relay)

    cfg = relay.config.get()
    local = f"localhost:{settings.api.port}"
    console.print(f"\n[green]✓ Panel[/green]     http://{local}/panel")
    console.print(f"[green]✓ Overlay[/green]   http://{local}/overlay")
    console.print(f"[green]✓ WS[/green]        ws://{local}/ws?role=overlay|panel")
    console.print(f"[green]✓ Config[/green]    {settings.storage.resolve(settings.storage.config_path)}")
    console.print(f"[cyan]… OBS[/cyan]       connecting to {cfg['obsHost']}:{cfg['obsPort']}")
    if not cfg.get("obsInputName"):
        console.print("[yellow]⚠ Audio[/yellow]     No OBS input selected — pick one in the panel")
    console.print()

    config = uvicorn.Config(
        fast_app,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.api.log_level,
        loop="asyncio",
    )
    server = uvicorn.Server(config)

    loop = asyncio.get_running_loop()

    def shutdown():
        log.info("Shutdown signal received.")
        server.should_exit = True

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown)
        except NotImplementedError:
            pass  # Windows

    await server.serve()


# ──────────────────────────────────────────────────────────────────────────────
# CLI commands
# ──────────────────────────────────────────────────────────────────────────────

@app.command()
def start(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to relay.yaml"),
    host: Optional[str] = typer.Option(None, "--host", help="API bind host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="API port"),
):
    """Start the pngtuber-relay server."""
    import os
    if host:
        os.environ["API_HOST"] = host
    if port:
        os.environ["API_PORT"] = str(port)
    asyncio.run(build_and_run(config))


@app.command("init-config")
def init_config(
    output: Path = typer.Option(Path("relay.yaml"), "--output", "-o"),
):
    """Generate a default relay.yaml."""
    s = Settings.load()
    s.to_yaml(output)
    console.print(f"[green]✓[/green] Config written to [bold]{output}[/bold]")


@app.command("check")
def check_obs(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to relay.yaml"),
):
    """Test OBS WebSocket connectivity with the endpoint stored in config.json."""
    async def _check():
        settings = Settings.load(config)
        setup_logging("warning")
        relay = build_relay(settings)
        host, port = relay.config["obsHost"], relay.config["obsPort"]
        ok = await relay.bridge.connect()
        if not ok:
            await relay.bridge.disconnect()
            console.print(f"[red]✗ Could not connect to OBS at {host}:{port}[/red]")
            sys.exit(1)

        console.print(f"[green]✓ Connected to OBS[/green] at {host}:{port}")
        try:
            inputs = await relay.bridge.list_audio_inputs()
            scene, sources = await relay.bridge.list_scene_sources()
        except OBSError as e:
            console.print(f"[red]✗ OBS request failed: {e}[/red]")
            sys.exit(1)
        finally:
            await relay.bridge.disconnect()

        table = Table(title=f"OBS — scene '{scene}'", show_header=True)
        table.add_column("Audio inputs", style="cyan")
        table.add_column("Scene sources", style="green")
        for i in range(max(len(inputs), len(sources))):
            table.add_row(
                inputs[i] if i < len(inputs) else "",
                sources[i] if i < len(sources) else "",
            )
        console.print(table)

        selected_input = relay.config["obsInputName"]
        selected_source = relay.config["obsSourceName"]
        if selected_input and selected_input not in inputs:
            console.print(f"[yellow]⚠ Configured input '{selected_input}' not found[/yellow]")
        if selected_source and selected_source not in sources:
            console.print(f"[yellow]⚠ Configured source '{selected_source}' not in current scene[/yellow]")
    asyncio.run(_check())


if __name__ == "__main__":
    app()
