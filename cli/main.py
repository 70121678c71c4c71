import os

import typer
import uvicorn

from backend.app.config import settings

app = typer.Typer(help="Spawnpoint - game server fleet orchestrator")


@app.command()
def start(
    host: str = typer.Option(settings.host, help="Interface to bind."),
    port: int = typer.Option(settings.port, help="Listening port (also the heartbeat port)."),
    reload: bool = typer.Option(False, help="Reload on code changes (development only)."),
) -> None:
    """Start the Spawnpoint server."""
    # The heartbeat endpoint handed to game servers is built from settings.port.
    # The env vars cover the reload worker, which re-imports settings.
    settings.host = host
    settings.port = port
    os.environ["SPAWNPOINT_HOST"] = host
    os.environ["SPAWNPOINT_PORT"] = str(port)

    typer.echo(f"Starting Spawnpoint on {host}:{port}...")
    uvicorn.run(
        "backend.app.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def config() -> None:
    """Print the effective configuration."""
    for key, value in settings.model_dump().items():
        typer.echo(f"{key} = {value}")
    typer.echo(f"max_ports_per_agent = {settings.max_ports_per_agent}")


if __name__ == "__main__":
    app()
