"""Typer CLI for running and inspecting the chat relay."""

from __future__ import annotations

import json
from typing import Optional

import typer

from .logging_utils import configure_logging, parse_level
from .server.config import ConfigError
from .server.config_loader import list_env_overrides, load_relay_config, redacted

app = typer.Typer(help="Streaming chat relay for Azure OpenAI deployments")


@app.command("serve")
def cmd_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Override listen host"),
    port: Optional[int] = typer.Option(None, "--port", help="Override listen port"),
    log_level: str = typer.Option("info", "--log-level", help="Root log level"),
):
    """Validate configuration and serve the relay with uvicorn."""
    import uvicorn

    from .server.app import create_app

    cfg = load_relay_config()
    if host:
        cfg.host = host
    if port:
        cfg.port = port
    try:
        level = parse_level(log_level)
        cfg.validate()
    except (ConfigError, ValueError) as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(1)

    log_path = configure_logging("chatrelay", level=level, cfg=cfg)
    typer.echo(f"Logging to {log_path}")
    relay_app = create_app(cfg)
    typer.echo(f"Listening on {cfg.host}:{cfg.port}")
    # log_config=None keeps uvicorn on the handlers installed above
    uvicorn.run(
        relay_app,
        host=cfg.host,
        port=cfg.port,
        log_level=log_level.lower(),
        log_config=None,
    )


@app.command("show-config")
def cmd_show_config():
    """Print the effective configuration (secrets masked)."""
    cfg = load_relay_config()
    typer.echo(
        json.dumps(
            {
                "runtime": redacted(cfg),
                "env_overrides": list_env_overrides(),
                "missing": cfg.missing_required(),
            },
            indent=2,
        )
    )
    try:
        cfg.validate()
    except ConfigError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(1)


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
