"""Event Catalog - operator command line."""

import asyncio
import json
import subprocess
import sys
from pathlib import Path

import click
from sqlmodel import select

from catalog.config import get_settings
from catalog.database import get_engine, get_session_factory, init_db
from catalog.errors import CatalogError
from catalog.logging_setup import setup_logging
from catalog.models import Source
from catalog.services import city_admin
from catalog.services.geo import aggregate_stats_by_cluster
from catalog.services.ingestion import IngestionCoordinator
from catalog.services.stats import city_event_counts
from catalog.services.text import slugify


def run(coro):
    """Run ``coro`` and dispose of the engine afterwards."""

    async def wrapper():
        try:
            return await coro
        finally:
            await get_engine().dispose()

    return asyncio.run(wrapper())


def session_scope():
    return get_session_factory(writer=True)()


@click.group()
def cli():
    """Event Catalog - operator commands"""
    setup_logging(get_settings())


@cli.command("init-db")
def init_db_command():
    """Create all tables (local setups; use db-upgrade for migrations)."""
    run(init_db())
    click.echo("✅ Database initialized")


@cli.command()
@click.argument("name")
@click.option("--slug", help="Defaults to the slugified name")
@click.option("--priority", type=int, default=50, show_default=True)
@click.option("--website-url")
def add_source(name, slug, priority, website_url):
    """Register a scraper source."""

    async def _add():
        async with session_scope() as session:
            source = Source(name=name, slug=slug or slugify(name), priority=priority, website_url=website_url)
            session.add(source)
            await session.commit()
            await session.refresh(source)
            return source

    source = run(_add())
    click.echo(f"✅ Source {source.slug} created with id {source.id}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--source", "source_slug", required=True, help="Slug of the source that produced the file")
@click.option("--priority", type=int, help="Override the source priority")
def ingest_file(path, source_slug, priority):
    """Ingest scraped events from a JSON-lines file."""

    async def _ingest():
        async with session_scope() as session:
            source = (await session.exec(select(Source).where(Source.slug == source_slug))).first()
        if source is None:
            raise click.ClickException(f"Unknown source {source_slug!r}")

        coordinator = IngestionCoordinator.from_engine(get_engine(), get_settings())
        counts = {"created": 0, "merged": 0, "unchanged": 0, "failed": 0}
        with path.open(encoding="utf-8") as fh:
            for line_no, line in enumerate(fh, 1):
                if not line.strip():
                    continue
                try:
                    event = await coordinator.process_event(json.loads(line), source.id, priority)
                except CatalogError as exc:
                    counts["failed"] += 1
                    click.echo(f"✗ line {line_no}: [{exc.kind.value}] {exc.message}", err=True)
                    continue
                counts[event.outcome.value] += 1
        return counts

    counts = run(_ingest())
    click.echo(
        f"✅ Ingestion complete: {counts['created']} created, {counts['merged']} merged, "
        f"{counts['unchanged']} unchanged, {counts['failed']} failed"
    )


@cli.command()
@click.option("--radius-km", type=float, help="Clustering radius (defaults to CLUSTER_RADIUS_KM)")
@click.option("--limit", type=int, default=20, show_default=True)
def city_stats(radius_km, limit):
    """Show event counts per metro area."""
    radius = radius_km or get_settings().cluster_radius_km

    async def _stats():
        async with session_scope() as session:
            return aggregate_stats_by_cluster(await city_event_counts(session), radius)

    clusters = run(_stats())
    if not clusters:
        click.echo("No events found.")
        return

    click.echo(f"Events per metro area (radius {radius:g} km)")
    click.echo("=" * 60)
    for cluster in clusters[:limit]:
        click.echo(f"{cluster.count:>7}  {cluster.city_name} ({cluster.city_id})")
        for sub in cluster.subcities:
            click.echo(f"{'':>9}{sub.count:>5}  {sub.city_name} ({sub.city_id})")


@cli.command()
@click.option("--fix", is_flag=True, help="Merge each invalid city into the city its venue addresses name")
def invalid_cities(fix):
    """List stored cities whose names fail validation."""

    async def _find():
        async with session_scope() as session:
            rows = []
            for city, reason in await city_admin.find_invalid_cities(session):
                city_id, name, note = city.id, city.name, None
                if fix:
                    try:
                        replacement = await city_admin.suggest_replacement_city(session, city)
                        await city_admin.merge_cities(session, replacement.id, [city_id])
                        note = f"merged into {replacement.name} ({replacement.id})"
                    except city_admin.CityAdminError as exc:
                        note = f"not fixed: {exc.code}"
                rows.append((city_id, name, reason, note))
            return rows

    rows = run(_find())
    if not rows:
        click.echo("✅ No invalid cities found")
        return

    click.echo(f"Found {len(rows)} invalid cities:")
    for city_id, name, reason, note in rows:
        line = f"  [{city_id}] {name!r}: {reason}"
        if note:
            line += f" -> {note}"
        click.echo(line)


def _city_action(func, city_id, *args):
    async def _run():
        async with session_scope() as session:
            city = await city_admin.get_city(session, city_id)
            return await func(session, city, *args)

    try:
        return run(_run())
    except city_admin.CityAdminError as exc:
        raise click.ClickException(f"{exc.code}: {exc}") from exc


@cli.command()
@click.argument("city_id", type=int)
@click.argument("name")
def add_alternate_name(city_id, name):
    """Add an alternate name to a city."""
    city = _city_action(city_admin.add_alternate_name, city_id, name)
    click.echo(f"✅ {city.name}: {', '.join(city.alternate_names)}")


@cli.command()
@click.argument("city_id", type=int)
@click.argument("name")
def remove_alternate_name(city_id, name):
    """Remove an alternate name from a city."""
    city = _city_action(city_admin.remove_alternate_name, city_id, name)
    click.echo(f"✅ {city.name}: {', '.join(city.alternate_names) or '(no alternate names)'}")


@cli.command()
@click.argument("city_id", type=int)
@click.argument("slug")
def set_city_slug(city_id, slug):
    """Change a city's slug."""
    city = _city_action(city_admin.update_city_slug, city_id, slug)
    click.echo(f"✅ {city.name} is now /{city.slug}")


@cli.command()
@click.argument("city_id", type=int)
def delete_city(city_id):
    """Delete a city without venues."""

    async def _delete():
        async with session_scope() as session:
            return await city_admin.delete_city(session, city_id)

    try:
        city = run(_delete())
    except city_admin.CityAdminError as exc:
        raise click.ClickException(f"{exc.code}: {exc}") from exc
    click.echo(f"✅ Deleted city {city.name!r} ({city_id})")


@cli.command()
@click.argument("target_id", type=int)
@click.argument("source_ids", type=int, nargs=-1, required=True)
@click.option("--no-alternates", is_flag=True, help="Do not keep source names as alternate names")
def merge_cities(target_id, source_ids, no_alternates):
    """Merge SOURCE_IDS into TARGET_ID."""

    async def _merge():
        async with session_scope() as session:
            return await city_admin.merge_cities(
                session, target_id, list(source_ids), add_as_alternates=not no_alternates
            )

    try:
        result = run(_merge())
    except city_admin.CityAdminError as exc:
        raise click.ClickException(f"{exc.code}: {exc}") from exc
    click.echo(
        f"✅ Merged {len(result['merged_city_ids'])} cities into {target_id}: "
        f"{result['venues_moved']} venues moved, {result['venues_merged']} merged"
    )


def _alembic(*args):
    sys.exit(subprocess.call(["alembic", *args]))


@cli.command()
@click.argument("message")
def db_revision(message):
    """Create a new database migration revision."""
    _alembic("revision", "--autogenerate", "-m", message)


@cli.command()
def db_upgrade():
    """Upgrade database to the latest revision."""
    _alembic("upgrade", "head")


@cli.command()
@click.argument("revision", default="-1")
def db_downgrade(revision):
    """Downgrade database to a previous revision."""
    _alembic("downgrade", revision)


if __name__ == "__main__":
    cli()
