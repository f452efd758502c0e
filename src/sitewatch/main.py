"""Console entry points: ``sitewatch`` (CLI) and ``sitewatch-api`` (HTTP server)."""

import sys

import click

from .config import ConfigError
from .utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


def main_cli() -> None:
    from .cli.main import cli

    cli()


def main_api() -> None:
    """Run the API server; configuration problems exit with status 2."""
    from .api.app import main

    try:
        main()
    except KeyboardInterrupt:
        click.echo("API server stopped", err=True)
        sys.exit(0)
    except ConfigError as e:
        logger.error("Invalid configuration", error=str(e))
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)
    except Exception as e:
        logger.exception("API server failed", error=str(e))
        click.echo(f"Error starting API server: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main_cli()
