"""ContentForge CLI entry point."""

import logging

import click


@click.group()
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log at DEBUG level.")
def cli(verbose: bool):
    """ContentForge, schema-driven content API CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# Register subcommand groups
from contentforge.cli.db_cmd import db  # noqa: E402
from contentforge.cli.schema_cmd import schema  # noqa: E402

cli.add_command(schema)
cli.add_command(db)
