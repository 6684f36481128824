"""Carbon Voice MCP CLI.

Default mode is stdio (for MCP clients that spawn the server as a subprocess).
Use --http to run the streamable HTTP server.

Usage:
    carbon-voice-mcp                      # Stdio mode (default)
    carbon-voice-mcp --http               # HTTP server mode
    carbon-voice-mcp --http --port 8080   # HTTP with custom port
    carbon-voice-mcp --health             # Check HTTP server health
    carbon-voice-mcp config               # Show configuration
"""

from __future__ import annotations

import asyncio
import json
import sys

import click
import httpx
from pydantic import ValidationError

from . import SERVICE_NAME, __version__
from .config import DEFAULT_HOST, DEFAULT_PORT, Settings
from .logging_config import configure_logging


def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except (ValidationError, ValueError) as e:
        raise click.UsageError(f"Invalid configuration: {e}") from e


@click.group(invoke_without_command=True)
@click.option("--http", "http_mode", is_flag=True, help="Run as HTTP server instead of stdio")
@click.option("--host", default=None, help=f"Host to bind to (HTTP mode, default {DEFAULT_HOST})")
@click.option(
    "--port", default=None, type=int, help=f"Port to bind to (HTTP mode, default {DEFAULT_PORT})"
)
@click.option("--reload", is_flag=True, help="Enable auto-reload for development (HTTP mode)")
@click.option("--health", "health_check", is_flag=True, help="Check HTTP server health and exit")
@click.option(
    "--health-url", default=f"http://localhost:{DEFAULT_PORT}", help="Server URL for health check"
)
@click.version_option(__version__, prog_name=SERVICE_NAME)
@click.pass_context
def main(
    ctx: click.Context,
    http_mode: bool,
    host: str | None,
    port: int | None,
    reload: bool,
    health_check: bool,
    health_url: str,
) -> None:
    """Carbon Voice MCP server.

    By default, runs in stdio mode for subprocess communication.
    Use --http to run as a streamable HTTP server.
    """
    if ctx.invoked_subcommand is not None:
        return

    if reload and not http_mode:
        raise click.UsageError(
            "--reload requires --http mode. "
            "Auto-reload is only available when running as an HTTP server."
        )

    if (host is not None or port is not None) and not http_mode:
        raise click.UsageError(
            "--host and --port require --http mode. "
            "These options are only available when running as an HTTP server."
        )

    if health_check:
        _do_health_check(health_url)
        return

    settings = _load_settings()

    if http_mode:
        _run_http_server(settings, host or settings.host, port or settings.port, reload)
    else:
        _run_stdio_server(settings)


def _do_health_check(url: str) -> None:
    """Check server health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url.rstrip('/')}/health")
                if response.status_code == 200:
                    data = response.json()
                    click.echo(f"Server is healthy: {data}")
                else:
                    click.echo(f"Server returned {response.status_code}", err=True)
                    sys.exit(1)
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)

    asyncio.run(check())


def _run_http_server(settings: Settings, host: str, port: int, reload: bool) -> None:
    """Run HTTP server mode."""
    import uvicorn

    configure_logging(settings.log_level, log_dir=settings.log_dir)

    click.echo(f"Starting {SERVICE_NAME} on http://{host}:{port}/mcp", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        "carbon_voice_mcp.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


def _run_stdio_server(settings: Settings) -> None:
    """Run stdio server mode (default)."""
    from .transport import run_stdio_server

    configure_logging(settings.log_level, stdio_mode=True, log_dir=settings.log_dir)

    if not settings.carbon_voice_api_key:
        raise click.UsageError("CARBON_VOICE_API_KEY must be set to run in stdio mode")

    click.echo(f"Starting {SERVICE_NAME} in stdio mode", err=True)

    try:
        asyncio.run(run_stdio_server(settings))
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


@main.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def show_config(output_json: bool) -> None:
    """Show current configuration.

    Examples:

        carbon-voice-mcp config
        carbon-voice-mcp config --json
    """
    config = _load_settings().redacted()

    if output_json:
        click.echo(json.dumps(config, indent=2))
        return

    session = config["session"]
    click.echo(f"{SERVICE_NAME} Configuration")
    click.echo("-" * 40)
    click.echo(f"API base URL:       {config['carbon_voice_base_url']}")
    click.echo(f"API key:            {config['carbon_voice_api_key'] or 'not set'}")
    click.echo(f"Log level:          {config['log_level']}")
    click.echo(f"Log directory:      {config['log_dir'] or 'none'}")
    click.echo(f"HTTP bind:          {config['host']}:{config['port']}")
    click.echo(f"Required scopes:    {' '.join(config['required_scopes'])}")
    click.echo(f"Rate limit:         {config['rate_limit'] or 'off'}")
    click.echo(f"Max body size:      {config['max_body_bytes']} bytes")
    click.echo(f"Session TTL:        {session['ttl']}s")
    click.echo(f"Max sessions:       {session['max_sessions']}")
    click.echo(f"Cleanup interval:   {session['cleanup_interval']}s")
    click.echo(f"Enforce owner:      {session['enforce_owner']}")


if __name__ == "__main__":
    main()
