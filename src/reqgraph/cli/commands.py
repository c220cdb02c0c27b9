"""CLI commands for reqgraph."""

from __future__ import annotations

import datetime
import functools
import io
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import click
import yaml

from reqgraph.config.loader import ReqGraphConfig, load_config
from reqgraph.core.errors import ReqGraphError, SchemaLoadError
from reqgraph.schema.registry import SchemaRegistry, load_schema
from reqgraph.service.elements import ABSENT, ElementService
from reqgraph.service.traceability import RELATION_TYPES, TraceabilityService
from reqgraph.storage.documents import dump_yaml
from reqgraph.storage.store import ElementStore

F = TypeVar("F", bound=Callable[..., Any])


def _cli_error_handler(f: F) -> F:
    """Decorator that catches common CLI errors and exits cleanly."""

    @functools.wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return f(*args, **kwargs)
        except click.Abort:
            # User aborted (e.g., answered "n" to confirmation)
            click.echo("Aborted.")
            sys.exit(1)
        except (ReqGraphError, ValueError, OSError, yaml.YAMLError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        except Exception as e:
            # Catch-all for unexpected errors with type info for debugging
            click.echo(f"Unexpected error: {type(e).__name__}: {e}", err=True)
            sys.exit(1)

    return wrapper  # type: ignore[return-value]


@dataclass
class AppContext:
    """Objects shared by all commands of one invocation."""

    config: ReqGraphConfig
    registry: SchemaRegistry
    store: ElementStore
    elements: ElementService
    traceability: TraceabilityService


def _to_yaml(data: Any) -> str:
    stream = io.StringIO()
    dump_yaml(data, stream)
    return stream.getvalue()


def _parse_value(raw: str) -> Any:
    """Interpret a command-line value as YAML, keeping dates as text."""
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    if isinstance(value, (datetime.date, datetime.datetime)) or value is None and raw.strip() != "null":
        return raw
    return value


def _parse_assignments(assignments: tuple[str, ...]) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    for assignment in assignments:
        key, sep, raw = assignment.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=value, got {assignment!r}", param_hint="--set")
        properties[key.strip()] = _parse_value(raw)
    return properties


@click.group()
@click.version_option(package_name="reqgraph")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="pyproject.toml to read [tool.reqgraph] from (default: ./pyproject.toml)",
)
@click.option(
    "--data-root",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory holding the projects (overrides the configuration)",
)
@click.option(
    "--schema",
    "schema_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Schema file to load instead of the bundled SysML subset",
)
@click.option("--verbose", "-v", count=True, help="Enable verbose logging (can be repeated)")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    data_root: Path | None,
    schema_path: Path | None,
    verbose: int,
) -> None:
    """reqgraph - schema-driven requirements element store."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )

    config = load_config(config_path)
    if data_root is not None:
        config.data_root = str(data_root)
    if schema_path is not None:
        config.schema_path = str(schema_path)
    for message in config.validate():
        click.echo(f"Warning: {message}", err=True)

    try:
        registry = load_schema(config.schema_path, min_classes=config.min_schema_classes)
    except SchemaLoadError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    store = ElementStore(config.data_root)
    elements = ElementService(registry, store)
    ctx.obj = AppContext(
        config=config,
        registry=registry,
        store=store,
        elements=elements,
        traceability=TraceabilityService(elements, business_key=config.business_key),
    )


pass_app = click.make_pass_decorator(AppContext)


# =============================================================================
# Projects and elements
# =============================================================================


@cli.command("projects")
@pass_app
@_cli_error_handler
def projects(app: AppContext) -> None:
    """List the projects in the data root."""
    names = app.store.list_projects()
    if not names:
        click.echo("No projects found")
        return
    for name in names:
        click.echo(name)


@cli.command("create")
@click.argument("project")
@click.argument("type_name", metavar="TYPE")
@click.option("--set", "-s", "assignments", multiple=True, help="Property as key=value (repeatable)")
@pass_app
@_cli_error_handler
def create(app: AppContext, project: str, type_name: str, assignments: tuple[str, ...]) -> None:
    """Create an element of TYPE in PROJECT.

    \b
    Examples:
        reqgraph create demo RequirementDefinition -s reqId=REQ-1 -s declaredName=Battery
        reqgraph create demo RequirementUsage -s requirementDefinition=<definition id>
    """
    element = app.elements.create(project, type_name, _parse_assignments(assignments))
    location = f" under {element.parent_id}" if element.parent_id else ""
    click.echo(f"Created {element.type} {element.id}{location}")


@cli.command("get")
@click.argument("project")
@click.argument("element_id")
@pass_app
@_cli_error_handler
def get(app: AppContext, project: str, element_id: str) -> None:
    """Show one element as YAML."""
    element = app.elements.get(project, element_id)
    click.echo(_to_yaml(element.to_dict()), nl=False)


@cli.command("query")
@click.argument("project")
@click.option("--type", "-t", "type_name", default=None, help="Only list elements of this type")
@click.option("--include-subtypes", is_flag=True, help="With --type, also list elements of subtypes")
@pass_app
@_cli_error_handler
def query(app: AppContext, project: str, type_name: str | None, include_subtypes: bool) -> None:
    """List every element of PROJECT, contained ones included."""
    found = app.elements.query(project, type_name, include_subtypes=include_subtypes)
    for element in found:
        click.echo(f"{element.id}\t{element.type}\t{element.name or ''}")
    click.echo(f"\n{len(found)} elements")


@cli.command("patch")
@click.argument("project")
@click.argument("element_id")
@click.option("--set", "-s", "assignments", multiple=True, help="Property as key=value (repeatable)")
@click.option("--unset", "-u", "removals", multiple=True, help="Property to remove (repeatable)")
@pass_app
@_cli_error_handler
def patch(
    app: AppContext, project: str, element_id: str, assignments: tuple[str, ...], removals: tuple[str, ...]
) -> None:
    """Change properties of an element; other properties stay as they are."""
    changes = _parse_assignments(assignments)
    for key in removals:
        changes[key] = ABSENT
    if not changes:
        click.echo("Error: nothing to change (use --set or --unset)", err=True)
        sys.exit(1)
    element = app.elements.patch(project, element_id, changes)
    click.echo(f"Updated {element.id}")


@cli.command("delete")
@click.argument("project")
@click.argument("element_id")
@click.option("--cascade", is_flag=True, help="Also delete contained elements")
@click.option("--force", is_flag=True, default=False, help="Skip the confirmation prompt")
@pass_app
@_cli_error_handler
def delete(app: AppContext, project: str, element_id: str, cascade: bool, force: bool) -> None:
    """Delete an element.

    Elements that still reference it are listed as a warning; their
    references are left dangling and reported by ``reqgraph validate``.
    """
    referrers = app.elements.referrers(project, element_id)
    if referrers:
        click.echo(
            f"Warning: {len(referrers)} element(s) reference {element_id}: "
            f"{', '.join(sorted(e.id for e in referrers))}",
            err=True,
        )
        if not force and not click.confirm("Proceed with deletion?", default=False):
            raise click.Abort()
    app.elements.delete(project, element_id, cascade=cascade)
    click.echo(f"Deleted {element_id}")


@cli.command("link")
@click.argument("project")
@click.argument("kind", type=click.Choice(sorted(RELATION_TYPES), case_sensitive=False))
@click.argument("source")
@click.argument("target")
@pass_app
@_cli_error_handler
def link(app: AppContext, project: str, kind: str, source: str, target: str) -> None:
    """Create a KIND relation from SOURCE to TARGET."""
    relation = app.traceability.create_relation(project, kind, source, target)
    click.echo(f"Created {relation.type} {relation.id}: {source} -> {target}")


# =============================================================================
# Validation and queries
# =============================================================================


@cli.command("validate")
@click.argument("project")
@click.option("--no-duplicates", "-D", is_flag=True, help="Do not check business key duplicates")
@click.option("--no-cycles", "-C", is_flag=True, help="Do not check derive/refine cycles")
@click.option("--no-references", "-R", is_flag=True, help="Do not check broken references")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "yaml"]),
    default="text",
    help="Output format",
)
@pass_app
@_cli_error_handler
def validate(
    app: AppContext,
    project: str,
    no_duplicates: bool,
    no_cycles: bool,
    no_references: bool,
    output_format: str,
) -> None:
    """Run the integrity checks over PROJECT.

    Exits with status 1 when any violation is found.
    """
    from reqgraph.validation import validate_static

    result = validate_static(
        app.elements.all_elements(project),
        business_key=app.config.business_key,
        relation_fields=app.config.relation_fields,
        check_duplicates=not no_duplicates,
        check_cycles=not no_cycles,
        check_references=not no_references,
    )

    if output_format == "yaml":
        click.echo(_to_yaml(result.to_dict()), nl=False)
        if not result.ok:
            sys.exit(1)
        return

    for violation in result.violations:
        click.echo(str(violation))

    if result.ok:
        click.echo(f"Validation passed - {result.element_count} elements, no violations")
    else:
        click.echo(f"\nValidation failed with {len(result.violations)} violations")
        sys.exit(1)


@cli.command("search")
@click.argument("project")
@click.option("--page", "-p", default=0, type=int, help="Zero-based page number")
@click.option("--size", "-n", default=None, type=int, help="Page size (default from configuration)")
@click.option("--sort", "sort_terms", multiple=True, help="Sort key as field[,asc|desc] (repeatable)")
@click.option("--filter", "-f", "filter_terms", multiple=True, help="Filter as field:value (repeatable)")
@click.option("--search", "-q", "text", default=None, help="Case-insensitive text to search for")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "yaml"]),
    default="text",
    help="Output format",
)
@pass_app
@_cli_error_handler
def search(
    app: AppContext,
    project: str,
    page: int,
    size: int | None,
    sort_terms: tuple[str, ...],
    filter_terms: tuple[str, ...],
    text: str | None,
    output_format: str,
) -> None:
    """Filter, search, sort and page through the elements of PROJECT.

    \b
    Examples:
        reqgraph search demo --filter type:RequirementUsage --search battery
        reqgraph search demo --sort status,desc --sort name --size 20 --page 1
    """
    from reqgraph.query import QuerySpec, apply

    spec = QuerySpec.parse(
        page=page,
        size=size if size is not None else app.config.default_page_size,
        sort=sort_terms,
        filter=filter_terms,
        search=text,
    )
    result = apply(app.elements.all_elements(project), spec)

    if output_format == "yaml":
        click.echo(_to_yaml(result.to_dict()), nl=False)
        return

    for element in result.content:
        click.echo(f"{element.id}\t{element.type}\t{element.name or ''}")
    click.echo(
        f"\nPage {result.page + 1} of {max(result.total_pages, 1)} "
        f"({len(result.content)} shown, {result.total_elements} total)"
    )


@cli.command("schema")
@click.argument("type_name", metavar="[TYPE]", required=False)
@pass_app
@_cli_error_handler
def schema(app: AppContext, type_name: str | None) -> None:
    """Describe the loaded schema, or one TYPE of it."""
    registry = app.registry
    if type_name is None:
        click.echo(f"Schema '{registry.name}' with {len(registry)} classes")
        for name in registry.class_names:
            marker = " (abstract)" if registry.is_abstract(name) else ""
            click.echo(f"  {name}{marker}")
        return

    if not registry.is_valid_type(type_name):
        click.echo(f"Error: Unknown type: {type_name}", err=True)
        sys.exit(1)

    click.echo(f"{type_name}{' (abstract)' if registry.is_abstract(type_name) else ''}")
    click.echo(f"  Supertypes: {', '.join(registry.supertypes_of(type_name)) or '(none)'}")
    containments = sorted(registry.containments_of(type_name))
    click.echo(f"  Containments: {', '.join(containments) or '(none)'}")
    click.echo("  Attributes:")
    for attribute in sorted(registry.attributes_of(type_name), key=lambda a: a.name):
        extra = f" -> {attribute.containment}" if attribute.containment else ""
        many = "[]" if attribute.many else ""
        click.echo(f"    {attribute.name}: {attribute.kind}{many}{extra} ({attribute.declared_by})")


# =============================================================================
# Import/Export Commands
# =============================================================================


@cli.command("export")
@click.argument("project")
@click.argument("output", type=click.Path(path_type=Path))
@pass_app
@_cli_error_handler
def export_yaml(app: AppContext, project: str, output: Path) -> None:
    """Export PROJECT to a YAML file at OUTPUT.

    Contained elements are nested under their owner, so the file can be
    imported into another project as it is.
    """
    from reqgraph.yaml_io import export_project

    count = export_project(app.elements, project, output)
    click.echo(f"Exported {count} elements to {output}")


@cli.command("import")
@click.argument("project")
@click.argument("file", type=click.Path(exists=True, path_type=Path))
@pass_app
@_cli_error_handler
def import_yaml_cmd(app: AppContext, project: str, file: Path) -> None:
    """Import elements from FILE into PROJECT.

    Entries that cannot be created are skipped and listed; the others
    are imported.

    \b
    Expected YAML schema::

        elements:
          - eClass: RequirementDefinition
            data:
              elementId: REQ-1
              reqId: R-001
              declaredName: Battery capacity
            ownedFeature:           # contained elements, nested
              - eClass: RequirementUsage
                data: {elementId: USE-1}
          - type: Satisfy           # flat entries work too
            source: PART-1
            target: REQ-1
    """
    from reqgraph.yaml_io import import_project

    result = import_project(app.elements, project, file, echo=click.echo)
    for failure in result.failures:
        label = failure.element_id or f"entry {failure.index}"
        click.echo(f"  Skipped {label}: {failure.error}", err=True)
    click.echo(f"Imported {result.created} elements ({len(result.failures)} failed)")
    if result.failures and not result.created:
        sys.exit(1)
