"""Command line entry point: ``account-service migrate`` and ``account-service serve``."""

from __future__ import annotations

import asyncio

import click

from account_service import __version__
from account_service.config import Settings, load_settings
from account_service.database import open_connection
from account_service.errors import ConfigurationError, MigrationError, StorageError
from account_service.logging_config import configure_logging
from account_service.migrations import build_migrator


def _load(ctx: click.Context) -> Settings:
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        click.echo(f"Failed to load config: {exc}", err=True)
        ctx.exit(1)
    configure_logging(settings.logging.level, settings.logging.format, settings.logging.output)
    return settings


async def _migrate(settings: Settings, check: bool, dry_run: bool) -> None:
    connection = await open_connection(settings.database)
    try:
        migrator = build_migrator(connection)

        if check or dry_run:
            plan = await migrator.plan(settings.env)
            for version, description in plan.pending:
                click.echo(f"Pending: {version} - {description}")
            if plan.pending:
                click.echo(f"Found {len(plan.pending)} pending migration(s)")
            else:
                click.echo("No pending migrations")
            if dry_run:
                click.echo("Seeders:")
                for name in plan.seeders_to_run:
                    click.echo(f"  would run: {name}")
                for name in plan.seeders_skipped:
                    click.echo(f"  would skip: {name} (not for {plan.env} environment)")
            return

        applied = await migrator.migrate()
        await migrator.seed(settings.env)
        click.echo(f"Migrations completed successfully ({len(applied)} applied)")
    finally:
        await connection.close()


@click.group()
@click.version_option(version=__version__, prog_name="account-service")
def cli():
    pass


@cli.command()
@click.option("--check", is_flag=True, help="Report pending migrations without running them")
@click.option("--dry-run", is_flag=True, help="Report pending migrations and seeders for the current environment")
@click.pass_context
def migrate(ctx, check, dry_run):
    """Apply pending migrations, then the seeders for APP_ENV."""
    settings = _load(ctx)
    try:
        asyncio.run(_migrate(settings, check, dry_run))
    except MigrationError as exc:
        click.echo(f"Migration failed: {exc}", err=True)
        ctx.exit(1)
    except (ConfigurationError, StorageError) as exc:
        click.echo(f"Failed to connect to database: {exc}", err=True)
        ctx.exit(1)


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to APP_HOST)")
@click.option("--port", default=None, type=int, help="Bind port (defaults to APP_PORT)")
@click.pass_context
def serve(ctx, host, port):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from account_service.app import create_app

    settings = _load(ctx)
    app = create_app(settings)
    uvicorn.run(
        app,
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    cli()
