# cli.py
import click
import asyncio
import logging

from database.local import init_db
from file_alloc.dependencies import build_file_manager
from file_alloc.settings import get_settings

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


async def _run(operation, *args):
    """Run one manager operation and release the store client afterwards."""
    manager = build_file_manager(get_settings())
    try:
        return await getattr(manager, operation)(*args)
    finally:
        await manager.file_store.close()
        manager.alloc_table.database.close()


@click.group()
def cli():
    """Maintenance commands for the file alloc table and its object store"""
    _configure_logging(get_settings().log_level)


@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    print("Current Configuration:")
    print(f"  Deployment Mode: {settings.deployment_mode}")
    print(f"  AWS Region: {settings.aws_region}")
    print(f"  AWS Endpoint: {settings.aws_endpoint_url}")
    print(f"  S3 Bucket: {settings.s3_bucket_name}")
    print(f"  SQS Queue Name: {settings.sqs_queue_name}")
    print(f"  SQS Queue URL: {settings.sqs_queue_url}")
    print(f"  Database: {settings.db_path}")
    print(f"  File Bucket: {settings.file_bucket}")
    print(f"  URL Expiration: {settings.url_expiration_seconds}s")
    print(f"  Max File Size: {settings.max_file_size or 'unlimited'}")


@cli.command("init-db")
def init_database():
    """Create the files table if it does not exist"""
    settings = get_settings()
    init_db(settings.db_path)
    print(f"Files table ready in {settings.db_path}")


@cli.command()
def clean_store():
    """Delete objects from the store that have no entry"""
    removed = asyncio.run(_run("clean_file_store"))
    if removed is None:
        raise click.ClickException("Unable to clean file store, listing or deletion failed")
    print(f"Removed {len(removed)} file(s) from file store")


@cli.command()
def clean_database():
    """Delete entries whose object is missing from the store"""
    removed = asyncio.run(_run("clean_database"))
    if removed is None:
        raise click.ClickException("Unable to list files from file store, nothing removed")
    print(f"Removed {removed} entr{'y' if removed == 1 else 'ies'} from database")


@cli.command()
@click.option("--days", type=int, default=None, help="Minimum age in days (defaults to EXPIRY_DAYS)")
def clean_old_files(days):
    """Delete entries whose upload never completed"""
    days = get_settings().expiry_days if days is None else days
    removed = asyncio.run(_run("clean_old_files", days))
    print(f"Removed {removed} abandoned entr{'y' if removed == 1 else 'ies'} older than {days} day(s)")


@cli.command()
@click.option("--days", type=int, default=None, help="Minimum age in days (defaults to REPROCESS_DAYS)")
def process_missed(days):
    """Process uploads that never reached a final status"""
    days = get_settings().reprocess_days if days is None else days
    report = asyncio.run(_run("process_missed_new_files", days))
    print(f"Processed {report.total} file(s):")
    print(f"  Accepted: {len(report.accepted)}")
    print(f"  Rejected: {len(report.rejected)}")
    print(f"  Not found: {len(report.not_found)}")
    print(f"  Failed: {len(report.failed)}")


@cli.command()
@click.argument("bucketname")
def process_file(bucketname):
    """Validate and process a single file"""
    result = asyncio.run(_run("process_file", bucketname))
    print(f"{bucketname}: {result.status.value}")
    if result.entry is not None:
        print(f"  Status: {result.entry.status.value}")
        print(f"  Size: {result.entry.size}")
        print(f"  Hash: {result.entry.hash}")


if __name__ == "__main__":
    cli()
