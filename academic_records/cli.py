import click
from flask.cli import AppGroup

from .engine import BulkImporter, CascadeDeleter, DeleteMode, EngineError, import_order

records_cli = AppGroup("records", help="Bulk import and cascading delete.")


@records_cli.command("order")
def show_order():
    """Print the tables in parent-before-child import order."""
    for position, table in enumerate(import_order(), start=1):
        click.echo(f"{position:2d}. {table}")


@records_cli.command("import")
@click.argument("table")
@click.argument("csv_file", type=click.File("rb"))
def import_command(table, csv_file):
    """Import CSV_FILE into TABLE, one committed row at a time."""
    result = BulkImporter().import_csv(table, csv_file)
    click.echo(result.message)
    for warning in result.warnings:
        click.echo(f"warning: {warning}")
    for error in result.errors:
        click.echo(f"error: {error}", err=True)
    if result.errors:
        raise SystemExit(1)


@records_cli.command("delete")
@click.argument("root")
@click.argument("root_id", type=int)
@click.option("--force", is_flag=True, help="Delete every dependent row as well.")
def delete_command(root, root_id, force):
    """Delete ROOT (colleges, departments, courses, users) with id ROOT_ID."""
    mode = DeleteMode.FORCED if force else DeleteMode.SAFE
    try:
        result = CascadeDeleter().delete(root, root_id, mode)
    except EngineError as exc:
        raise click.ClickException(exc.message) from exc
    for table, count in result.deleted.items():
        click.echo(f"deleted {count} {table}")
    for column, count in result.detached.items():
        click.echo(f"detached {count} {column}")
