"""Database CLI commands."""

from pathlib import Path

import click

from contentforge.config import Settings
from contentforge.errors import StoreError
from contentforge.persistence.config import create_engine_from_config
from contentforge.persistence.store import Store
from contentforge.schema.loader import SchemaRegistry


@click.group()
def db():
    """Database commands."""
    pass


@db.command("init")
@click.option(
    "--base-path",
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Project root holding schema/ and data/ (default: cwd).",
)
def init(base_path: Path | None):
    """Create missing tables for every collection."""
    settings = Settings.from_env(base_path or Path.cwd())
    registry = SchemaRegistry(settings.schema_path)
    registry.load_all()

    store = Store(create_engine_from_config(settings.database), registry)
    try:
        created = store.create_all()
    except StoreError as e:
        click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
        raise SystemExit(1)
    finally:
        store.engine.dispose()

    click.echo(f"Initialized {len(created)} collections:")
    for name in sorted(created):
        click.echo(f"  ✓ {name}")
