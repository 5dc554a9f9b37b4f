"""Schema CLI commands: validate and show."""

import json
from pathlib import Path

import click
import yaml

from contentforge.errors import CollectionNotFoundError
from contentforge.schema.loader import SchemaRegistry
from contentforge.schema.validator import validate_schema_dir, validate_yaml_file


def _resolve_schema_path() -> Path:
    """Resolve the schema directory from cwd."""
    cwd = Path.cwd()
    base_path = cwd.parent if cwd.name == "backend" else cwd
    return base_path / "schema"


@click.group()
def schema():
    """Schema commands."""
    pass


@schema.command()
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Treat warnings as errors.",
)
@click.option(
    "--path",
    "target_path",
    default=None,
    type=click.Path(exists=True, path_type=Path),
    help="Validate a single YAML file instead of the whole schema directory.",
)
@click.option(
    "--schema-dir",
    default=None,
    type=click.Path(path_type=Path),
    help="Schema directory (default: ./schema).",
)
def validate(strict: bool, target_path: Path | None, schema_dir: Path | None):
    """Validate collection YAML files against the JSON Schema."""
    schema_path = schema_dir or _resolve_schema_path()

    if target_path is not None:
        issues = validate_yaml_file(target_path)
        if strict:
            for issue in issues:
                issue.severity = "error"
    else:
        if not schema_path.exists():
            click.echo(f"Error: Schema directory not found at {schema_path}", err=True)
            raise SystemExit(1)
        issues = validate_schema_dir(schema_path, strict=strict)

    errors = [i for i in issues if i.severity == "error"]
    warnings = [i for i in issues if i.severity == "warning"]

    for issue in issues:
        colour = "red" if issue.severity == "error" else "yellow"
        click.echo(click.style(str(issue), fg=colour))

    if errors:
        click.echo(
            click.style(
                f"\n{len(errors)} schema error(s) found"
                + (f", {len(warnings)} warning(s)" if warnings else ""),
                fg="red",
                bold=True,
            )
        )
        raise SystemExit(1)

    if warnings:
        click.echo(click.style(f"{len(warnings)} warning(s) found.", fg="yellow"))

    # Loading only runs for the full directory
    if target_path is None:
        registry = SchemaRegistry(schema_path)
        try:
            registry.load_all()
        except (yaml.YAMLError, KeyError, ValueError) as e:
            click.echo(click.style(f"\nLoading failed: {e}", fg="red"), err=True)
            raise SystemExit(1)

        names = [n for n in registry.list_collections() if not registry.is_system_collection(n)]
        click.echo(f"\nLoaded {len(names)} collections:")
        for name in sorted(names):
            collection = registry.get_collection(name)
            click.echo(f"  ✓ {name} ({len(collection.fields)} fields)")

    click.echo(click.style("\nAll schema files are valid.", fg="green", bold=True))


@schema.command("show")
@click.argument("name")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "yaml"]),
    default="json",
    show_default=True,
)
@click.option(
    "--schema-dir",
    default=None,
    type=click.Path(path_type=Path),
    help="Schema directory (default: ./schema).",
)
def show(name: str, output_format: str, schema_dir: Path | None):
    """Print the resolved description of a collection."""
    registry = SchemaRegistry(schema_dir or _resolve_schema_path())
    registry.load_all()

    try:
        description = registry.describe(name)
    except CollectionNotFoundError as e:
        click.echo(click.style(str(e), fg="red"), err=True)
        raise SystemExit(1)

    if output_format == "yaml":
        click.echo(yaml.safe_dump(description, sort_keys=False))
    else:
        click.echo(json.dumps(description, indent=2))
