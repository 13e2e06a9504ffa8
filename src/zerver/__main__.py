"""zerver command line: resolve configuration and supervise the server."""

import asyncio
from typing import Annotated

from typer import Argument, Exit, Option, Typer

from zerver import __version__
from zerver.cli.config import resolve_config
from zerver.cli.dev.logging import configure_dev_logging
from zerver.models import FlagOverrides
from zerver.utils import console

app = Typer(
    name="zerver",
    help="Run a zerver server, restarting and live-reloading it in debug mode",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"zerver v{__version__}", highlight=False)
        raise Exit()


@app.command()
def run(
    directory: Annotated[
        str | None,
        Argument(
            help="Directory to serve, relative to the current one. Defaults to the current directory",
            show_default=False,
        ),
    ] = None,
    version: Annotated[
        bool,
        Option(
            "--version",
            "-v",
            callback=_version_callback,
            is_eager=True,
            help="Print the version and exit",
        ),
    ] = False,
    debug: Annotated[
        bool, Option("--debug", "-d", help="Restart on crash and on server changes")
    ] = False,
    refresh: Annotated[
        bool, Option("--refresh", "-r", help="Live-reload clients on asset changes")
    ] = False,
    logging: Annotated[
        bool, Option("--logging", "-l", help="Request logging and the command console")
    ] = False,
    verbose: Annotated[
        bool, Option("--verbose", "-b", help="Verbose output")
    ] = False,
    production: Annotated[
        bool,
        Option("--production", "-p", help="Production mode, overrides debug options"),
    ] = False,
    port: Annotated[
        str | None, Option("--port", help="Port to listen on", show_default=False)
    ] = None,
    host: Annotated[
        str | None, Option("--host", help="API host", show_default=False)
    ] = None,
    zerver_dir: Annotated[
        str | None,
        Option("--zerver-dir", help="API directory, relative to the served directory"),
    ] = None,
    manifest: Annotated[
        list[str] | None,
        Option("--manifest", help="Cache manifest to serve (repeatable)"),
    ] = None,
):
    """Supervise the zerver server for a directory."""
    flags = FlagOverrides(
        debug=debug,
        refresh=refresh,
        logging=logging,
        verbose=verbose,
        production=production,
        port=port,
        host=host,
        zerver_dir=zerver_dir,
        manifests=manifest or [],
        directory=directory,
    )
    configure_dev_logging(verbose=verbose)
    config = resolve_config(flags)
    if config.verbose != verbose:
        # verbose may also come from the environment
        configure_dev_logging(verbose=config.verbose)

    if config.debug:
        from zerver.cli.dev.core import missing_debug_dependencies

        missing = missing_debug_dependencies()
        if missing:
            console.print(
                "[red]❌ zerver debug mode requires dev dependencies to be installed "
                f"(missing: {', '.join(missing)})[/red]"
            )
            console.print(
                "[yellow]💡 run this command: pip install 'zerver[debug]'[/yellow]"
            )
            raise Exit(code=1)

    from zerver.cli.dev.core import run_supervisor

    status = asyncio.run(run_supervisor(config))
    raise Exit(code=status)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
