"""
Command-line interface for the serial bridge.

Provides commands for running the HTTP bridge and listing serial ports.
"""

import logging
from pathlib import Path

import click

from serbridge import __version__
from serbridge.core.config import Config, load_config, resolve_bind
from serbridge.serial.registry import create_device_id
from serbridge.serial.transport import list_serial_ports


@click.group()
@click.version_option(version=__version__, prog_name="serbridge")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option(
    "-c", "--config", "config_path", type=click.Path(exists=True, path_type=Path),
    help="Path to config file"
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """Serial Bridge - Relay serial devices to HTTP clients."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = load_config(config_path)


@main.command("serve")
@click.option("--port", "-p", type=int, help="Port the webserver listens on (default: 9615)")
@click.option(
    "--bind", "-b",
    help="IP address to bind to, or 'any' to listen on every address (default: 127.0.0.1)",
)
@click.option(
    "--static", "-s", "static_dir", type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory to serve static files from",
)
@click.pass_context
def serve_cmd(
    ctx: click.Context,
    port: int | None,
    bind: str | None,
    static_dir: Path | None,
) -> None:
    """Run the HTTP bridge."""
    from serbridge.web.app import create_app, shutdown_app

    verbose = ctx.obj.get("verbose", False)
    config: Config = ctx.obj["config"]

    if port is not None:
        config.server.port = port
    if bind is not None:
        config.server.bind = bind
    if static_dir is not None:
        config.server.static_dir = static_dir

    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app(config)
    click.echo(f"# Starting webserver on port {config.server.port}")
    try:
        app.run(
            host=resolve_bind(config.server.bind),
            port=config.server.port,
            threaded=True,
            use_reloader=False,
        )
    finally:
        shutdown_app(app)


@main.command("ports")
@click.pass_context
def ports_cmd(ctx: click.Context) -> None:
    """List serial ports and the ids the bridge gives them."""
    verbose = ctx.obj.get("verbose", False)
    ports = list_serial_ports()

    if not ports:
        click.echo("No serial ports found")
        return

    click.echo(f"{'ID':<20} {'PATH':<25} {'DESCRIPTION':<30}")
    click.echo("-" * 75)

    for port in ports:
        description = port.metadata.get("description") or "-"
        click.echo(f"{create_device_id(port.path):<20} {port.path:<25} {description:<30}")

    if verbose:
        click.echo(f"\n{len(ports)} port(s) found")


if __name__ == "__main__":
    main()
