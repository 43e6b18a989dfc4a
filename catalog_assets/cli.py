"""CLI commands for catalog-assets."""

import asyncio
import io
import logging
import sys
from functools import wraps
from pathlib import Path

import click

from catalog_assets.config import get_settings, set_config_path
from catalog_assets.lib import observability
from catalog_assets.lib.exceptions import AssetStorageError, UploadTooLargeError
from catalog_assets.lib.storage.manager import AssetManager
from catalog_assets.lib.storage.models import Asset, ContentCategory, SizeVariant, guess_content_type

CATEGORY = click.Choice([c.value for c in ContentCategory], case_sensitive=False)
VARIANT = click.Choice([v.value for v in SizeVariant], case_sensitive=False)


def _storage_errors(func):
    """Report storage failures as CLI errors instead of tracebacks."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except AssetStorageError as exc:
            raise click.ClickException(f"{exc.kind}: {exc}") from exc

    return wrapper


def _manager() -> AssetManager:
    return AssetManager.from_config(get_settings().storage)


def _check_upload_size(path: Path) -> None:
    limit = get_settings().storage.max_upload_size
    size = path.stat().st_size
    if size > limit:
        raise UploadTooLargeError(f"File size {size} exceeds limit {limit}")


def _rendered_variants(path: Path) -> dict[SizeVariant, io.BytesIO]:
    from catalog_assets.lib.imaging import render_variants

    rendered = render_variants(path.read_bytes())
    return {variant: io.BytesIO(data) for variant, (data, _) in rendered.items()}


@click.group()
@click.version_option(package_name="catalog-assets")
@click.option(
    "-f",
    "--config-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file to load instead of app.yaml",
)
@click.option(
    "--log-level",
    default="warning",
    type=click.Choice(["debug", "info", "warning", "error"]),
    help="Logging level",
)
def cli(config_file, log_level):
    """catalog-assets - product image and download storage."""
    if config_file is not None:
        set_config_path(config_file)
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    observability.configure(get_settings())


@cli.command()
@click.argument("tenant")
@click.argument("category", type=CATEGORY)
@click.argument("owner")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", default=None, help="Stored file name (defaults to the file's name)")
@click.option("--variant", default=SizeVariant.ORIGINAL.value, type=VARIANT, help="Size variant to store as")
@click.option("--content-type", default=None, help="MIME type (guessed from the name by default)")
@click.option("--with-variants", is_flag=True, help="Also render and store LARGE and SMALL variants")
@_storage_errors
def put(tenant, category, owner, path, name, variant, content_type, with_variants):
    """Upload a file for an owner."""
    _check_upload_size(path)
    file_name = name or path.name
    asset = Asset(
        tenant_code=tenant,
        content_category=ContentCategory(category.upper()),
        owner_id=owner,
        file_name=file_name,
        size_variant=SizeVariant(variant.upper()),
        content_type=content_type or guess_content_type(file_name),
    )
    variants = _rendered_variants(path) if with_variants else None

    async def _put():
        manager = _manager()
        try:
            return await manager.put_asset(asset, open(path, "rb"), variants=variants)
        finally:
            await manager.close()

    stored = asyncio.run(_put())
    click.echo(f"Stored {stored.file_name} ({stored.size_variant.value}, {stored.byte_length} bytes)")


@cli.command()
@click.argument("tenant")
@click.argument("category", type=CATEGORY)
@click.argument("owner")
@click.argument("name")
@click.option("--variant", default=SizeVariant.ORIGINAL.value, type=VARIANT)
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path), default=None)
@_storage_errors
def get(tenant, category, owner, name, variant, output):
    """Download a stored file to --output or stdout."""

    async def _get():
        manager = _manager()
        try:
            stream = await manager.get_asset(
                tenant, ContentCategory(category.upper()), owner, name, SizeVariant(variant.upper())
            )
            with stream:
                return stream.read()
        finally:
            await manager.close()

    data = asyncio.run(_get())
    if output is None:
        click.get_binary_stream("stdout").write(data)
    else:
        output.write_bytes(data)


@cli.command("ls")
@click.argument("tenant")
@click.argument("category", type=CATEGORY)
@click.argument("owner")
@_storage_errors
def list_command(tenant, category, owner):
    """List the files stored for an owner."""

    async def _list():
        manager = _manager()
        try:
            return await manager.list_assets(tenant, ContentCategory(category.upper()), owner).collect()
        finally:
            await manager.close()

    for asset in asyncio.run(_list()):
        click.echo(f"{asset.file_name}\t{asset.size_variant.value}\t{asset.content_type}")


@cli.command()
@click.argument("tenant")
@click.argument("category", type=CATEGORY)
@click.argument("owner")
@click.argument("name")
@_storage_errors
def rm(tenant, category, owner, name):
    """Delete every size variant of one file."""

    async def _rm():
        manager = _manager()
        try:
            await manager.delete_asset(tenant, ContentCategory(category.upper()), owner, name)
        finally:
            await manager.close()

    asyncio.run(_rm())
    click.echo(f"Deleted {name}")


@cli.command()
@click.argument("tenant")
@click.argument("category", type=CATEGORY)
@click.argument("owner")
@click.confirmation_option(prompt="Delete every file stored for this owner?")
@_storage_errors
def purge(tenant, category, owner):
    """Delete every file stored for an owner."""

    async def _purge():
        manager = _manager()
        try:
            return await manager.delete_all_for_owner(tenant, ContentCategory(category.upper()), owner)
        finally:
            await manager.close()

    removed = asyncio.run(_purge())
    click.echo(f"Removed {removed} object(s)")


@cli.command()
@click.argument("tenant")
@click.argument("category", type=CATEGORY)
@click.argument("owner")
@click.argument("paths", nargs=-1, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--keep", multiple=True, help="File name to keep unchanged (repeatable)")
@click.option("--with-variants", is_flag=True, help="Also render LARGE and SMALL variants")
@_storage_errors
def sync(tenant, category, owner, paths, keep, with_variants):
    """Make an owner's stored files exactly PATHS plus --keep names.

    Anything else stored for the owner is deleted.
    """
    from catalog_assets.db.services.asset_service import SqlAssetRepository
    from catalog_assets.db.session import create_engine, create_session_maker, create_tables
    from catalog_assets.lib.reconcile import DesiredImage, ImageSetReconciler

    for path in paths:
        _check_upload_size(path)

    rendered = {path: _rendered_variants(path) for path in paths} if with_variants else {}

    async def _sync():
        settings = get_settings()
        engine = create_engine(settings.db)
        manager = AssetManager.from_config(settings.storage)
        try:
            await create_tables(engine)
            reconciler = ImageSetReconciler(manager, SqlAssetRepository(create_session_maker(engine)))

            desired = [DesiredImage(file_name=name) for name in keep]
            for path in paths:
                desired.append(DesiredImage(file_name=path.name, content=open(path, "rb")))
                for variant, stream in rendered.get(path, {}).items():
                    desired.append(
                        DesiredImage(file_name=path.name, content=stream, size_variant=variant)
                    )
            return await reconciler.reconcile(tenant, ContentCategory(category.upper()), owner, desired)
        finally:
            await manager.close()
            await engine.dispose()

    result = asyncio.run(_sync())
    click.echo(
        f"created={result.created} updated={result.updated} deleted={result.deleted} "
        f"unchanged={result.unchanged} failed={result.failed}"
    )
    for failure in result.failures:
        click.echo(
            f"warning: {failure.file_name} ({failure.size_variant.value}) "
            f"{failure.error_kind}: {failure.message}",
            err=True,
        )


@cli.command("init-db")
def init_db():
    """Create the asset metadata tables."""
    from catalog_assets.db.session import create_engine, create_tables

    async def _init():
        engine = create_engine(get_settings().db)
        try:
            await create_tables(engine)
        finally:
            await engine.dispose()

    asyncio.run(_init())
    click.echo("Metadata tables ready")


def main() -> None:
    cli(prog_name="catalog-assets")


if __name__ == "__main__":
    sys.exit(main())
