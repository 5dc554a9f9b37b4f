"""
schema/validator.py: JSON Schema validation for collection YAML files.

Usage:
    from contentforge.schema.validator import validate_schema_dir, validate_yaml_file

    issues = validate_schema_dir(Path("schema"))
    for issue in issues:
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError as SchemaValidationError

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"
COLLECTION_SCHEMA = "collection.schema.json"


@dataclass
class ValidationIssue:
    """A single validation finding for a collection YAML file."""

    file: Path
    message: str
    path: str = ""          # path within the document, e.g. "fields[0]/relation"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


def _load_schema(name: str) -> dict[str, Any]:
    schema_path = _SCHEMAS_DIR / name
    with schema_path.open() as fh:
        return json.load(fh)


def _json_path(error: SchemaValidationError) -> str:
    """Convert a jsonschema error path to a readable string."""
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def _semantic_issues(yaml_path: Path, doc: dict[str, Any]) -> list[ValidationIssue]:
    """Checks JSON Schema cannot express."""
    issues: list[ValidationIssue] = []
    names = [f.get("name") for f in doc.get("fields", []) if isinstance(f, dict)]

    seen: set[str] = set()
    for name in names:
        if name in seen:
            issues.append(ValidationIssue(file=yaml_path, message=f"Duplicate field '{name}'"))
        seen.add(name)

    for key in ("statusField", "dateCreated", "dateModified", "userCreated", "userModified"):
        bound = doc.get(key)
        if bound and bound not in seen:
            issues.append(
                ValidationIssue(
                    file=yaml_path,
                    message=f"{key} refers to unknown field '{bound}'",
                    path=key,
                )
            )

    primary_keys = [f for f in doc.get("fields", []) if isinstance(f, dict) and f.get("primaryKey")]
    if not primary_keys and "id" not in seen and not doc.get("primaryKey"):
        issues.append(
            ValidationIssue(
                file=yaml_path,
                message="No primary key declared and no 'id' field present",
                severity="warning",
            )
        )
    return issues


def validate_yaml_file(yaml_path: Path) -> list[ValidationIssue]:
    """
    Validate a single collection YAML file.

    Returns:
        A list of :class:`ValidationIssue` objects (empty on success).
    """
    try:
        with yaml_path.open() as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if raw is None:
        return [
            ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    validator = Draft202012Validator(_load_schema(COLLECTION_SCHEMA))
    issues = [
        ValidationIssue(file=yaml_path, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(raw), key=lambda e: list(e.path))
    ]
    if issues or not isinstance(raw, dict):
        return issues

    return _semantic_issues(yaml_path, raw)


def validate_schema_dir(schema_dir: Path, *, strict: bool = False) -> list[ValidationIssue]:
    """
    Validate every ``collections/*.yaml`` file under *schema_dir*.

    Args:
        schema_dir: Root schema directory (contains ``collections/``).
        strict:     If ``True``, warnings are escalated to errors.

    Returns:
        A flat list of issues across all files. Empty means all files are valid.
    """
    if not schema_dir.is_dir():
        return [
            ValidationIssue(
                file=schema_dir,
                message=f"Schema directory does not exist: {schema_dir}",
            )
        ]

    all_issues: list[ValidationIssue] = []
    target = schema_dir / "collections"
    if not target.is_dir():
        logger.warning("No collections directory under %s", schema_dir)
        return all_issues

    for yaml_file in sorted(target.glob("*.yaml")):
        file_issues = validate_yaml_file(yaml_file)
        if strict:
            for issue in file_issues:
                if issue.severity == "warning":
                    issue.severity = "error"
        all_issues.extend(file_issues)

    return all_issues
