"""Command-line interface for the HA-Firestore Bridge."""

from pathlib import Path
from typing import Annotated, Any, Optional

import typer

from ha_firestore_bridge import __version__
from ha_firestore_bridge.config import BridgeSettings, load_config
from ha_firestore_bridge.domain.errors import BridgeError

app = typer.Typer(
    name="ha-firestore-bridge",
    help="HA-Firestore Bridge: mirror Home Assistant switches and lights to Cloud Firestore",
    no_args_is_help=True,
)


def _settings(config: Optional[Path]) -> BridgeSettings:
    settings = BridgeSettings()
    if config:
        settings = BridgeSettings(config_file=config)
    return settings


@app.callback()
def callback() -> None:
    """HA-Firestore Bridge CLI."""
    pass


@app.command()
def run(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to options.json or config.yaml"),
    ] = None,
) -> None:
    """Run the HA-Firestore Bridge daemon."""
    from ha_firestore_bridge.daemon import run_daemon

    cfg = load_config(_settings(config))
    try:
        run_daemon(cfg)
    except BridgeError as e:
        typer.echo(f"Bridge stopped: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def validate(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to options.json or config.yaml"),
    ] = None,
) -> None:
    """Validate configuration without starting the daemon."""
    settings = _settings(config)

    try:
        cfg = load_config(settings)
        typer.echo(f"Configuration valid: {settings.config_file}")
        typer.echo(f"  Hub: {cfg.hub.url}")
        typer.echo(f"  Hub token: {'set' if cfg.hub.token else 'missing'}")
        typer.echo(f"  Firestore enabled: {cfg.firestore.enabled}")
        typer.echo(f"  Collection: {cfg.firestore.collection}")
        typer.echo(f"  Domains: {', '.join(cfg.sync.domains)}")
        typer.echo(f"  Settle delay: {cfg.sync.settle_delay_seconds}s")
    except Exception as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"ha-firestore-bridge {__version__}")


@app.command()
def status(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to options.json or config.yaml"),
    ] = None,
) -> None:
    """Check the status of a running bridge instance."""
    import httpx

    cfg = load_config(_settings(config))

    try:
        resp = httpx.get(f"http://localhost:{cfg.observability.health_port}/health", timeout=5.0)
    except httpx.ConnectError:
        typer.echo("Bridge is not running or health endpoint unreachable", err=True)
        raise typer.Exit(1)

    if resp.status_code not in (200, 503):
        typer.echo(f"Health check returned {resp.status_code}", err=True)
        raise typer.Exit(1)

    data = resp.json()
    typer.echo(f"Status: {data.get('status', 'unknown')}")
    typer.echo(f"Hub connected: {data.get('hub_connected', False)}")
    typer.echo(f"Firestore enabled: {data.get('firestore_enabled', False)}")
    if "tracked_entities" in data:
        typer.echo(f"Tracked entities: {data['tracked_entities']}")
    if resp.status_code != 200:
        raise typer.Exit(1)


@app.command()
def entities(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to options.json or config.yaml"),
    ] = None,
) -> None:
    """List hub entities mirrored to Firestore and their document keys."""
    import asyncio

    from ha_firestore_bridge.hub.client import HubClient
    from ha_firestore_bridge.mapping.identity import document_key, is_sync_eligible

    cfg = load_config(_settings(config))
    if cfg.hub.token is None:
        typer.echo("No hub access token: set hub.token or SUPERVISOR_TOKEN", err=True)
        raise typer.Exit(1)
    token = cfg.hub.token.get_secret_value()

    async def fetch() -> list[dict[str, Any]]:
        async with HubClient(
            cfg.hub.url,
            token=token,
            timeout=cfg.hub.timeout_seconds,
            verify_ssl=cfg.hub.verify_ssl,
        ) as client:
            return await client.get_states()

    try:
        states = asyncio.run(fetch())
    except BridgeError as e:
        typer.echo(f"Failed to read hub states: {e}", err=True)
        raise typer.Exit(1)

    domains = cfg.sync.domains
    mirrored = sorted(
        (s for s in states if is_sync_eligible(str(s.get("entity_id", "")), domains)),
        key=lambda s: str(s["entity_id"]),
    )
    for state in mirrored:
        entity_id = state["entity_id"]
        typer.echo(
            f"{entity_id}: {state.get('state', 'unknown')} -> {document_key(entity_id, domains)}"
        )
    typer.echo(f"{len(mirrored)} of {len(states)} entities mirrored")


if __name__ == "__main__":
    app()
