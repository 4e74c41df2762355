"""WellGuard CLI - backup, security and quality tooling for WellFlow."""

import typer

from wellguard.cli_commands import (  # noqa: F401  (register commands)
    backup_command,
    doctor_command,
    quality_command,
    scan_command,
)
from wellguard.cli_commands.shared import app, console
from wellguard.utils.debug import set_debug_enabled
from wellguard.utils.logs import configure_logging


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output"),
) -> None:
    """Backup, security and quality tooling for the WellFlow platform."""
    configure_logging(verbose)
    set_debug_enabled(verbose)


@app.command()
def version() -> None:
    """Show the installed WellGuard version."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as pkg_version

    try:
        current_version = pkg_version("wellguard")
    except PackageNotFoundError:
        current_version = "0.0.0+unknown"

    console.print(f"WellGuard {current_version}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
