#!/usr/bin/env python3
"""
Spreadsheet Import CLI

Runs the contacts or transactions import wizard against the import API:
loads the field catalog, decodes the file, maps columns (auto-mapping plus
``--map`` overrides), lets rows be excluded, submits and follows progress.

Usage:
    python scripts/import_cli.py contacts people.xlsx --map displayName="Full Name"
    python scripts/import_cli.py transactions statement.csv --account-id acc-1 \\
        --column-mode double --date-format dd/mm/yyyy --exclude 3
    python scripts/import_cli.py sample transactions --column-mode double --output .
"""

import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import click
from dotenv import load_dotenv

from services.exceptions import JobFailure
from services.field_catalog import COLUMN_MODES, CONTACT_TYPES, CONTACTS, TRANSACTIONS
from services.import_client import DEFAULT_API_URL, ImportApiClient
from services.mapping_service import CatalogStatus
from services.submission_service import DEFAULT_POLL_INTERVAL
from services.wizard_service import ImportPipeline, contacts_pipeline, transactions_pipeline
from services.workbook_service import UploadedFile

# Load environment variables
load_dotenv()

# Configure logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'WARNING')
LOG_FILE = os.getenv('LOG_FILE', 'cli.log')

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOG_FILE),
        logging.StreamHandler(sys.stderr)
    ]
)

logger = logging.getLogger('import_cli')


class ClickNotifier:
    """Prints wizard notifications to the terminal."""

    def success(self, message: str) -> None:
        click.echo(f"✓ {message}")

    def error(self, message: str) -> None:
        click.echo(f"✗ {message}", err=True)


def show_progress(payload: Dict[str, Any]):
    percent = float(payload.get('progress') or 0)
    bar_length = 40
    filled = int(bar_length * percent / 100)
    bar = '█' * filled + '░' * (bar_length - filled)
    click.echo(f"\r[{bar}] {percent:.1f}% - {payload.get('status', 'pending')}", nl=False)


def parse_mappings(values: Tuple[str, ...]) -> Dict[str, str]:
    """``key=Column`` pairs -> {key: Column}."""
    mappings = {}
    for value in values:
        key, sep, column = value.partition('=')
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=Column, got '{value}'", param_hint='--map')
        mappings[key.strip()] = column.strip()
    return mappings


@click.group()
@click.option('--api-url', envvar='API_URL', default=DEFAULT_API_URL, show_default=True,
              help='Import API backend URL')
@click.option('--api-key', envvar='API_KEY', help='API key sent as X-API-Key')
@click.option('--poll-interval', type=float, default=DEFAULT_POLL_INTERVAL, show_default=True,
              help='Seconds between progress polls')
@click.pass_context
def cli(ctx, api_url: str, api_key: Optional[str], poll_interval: float):
    """Import contacts or bank transactions from a spreadsheet."""
    ctx.ensure_object(dict)
    ctx.obj.update(api_url=api_url, api_key=api_key, poll_interval=poll_interval)


def _pipeline(ctx, entity: str) -> ImportPipeline:
    gateway = ImportApiClient(entity, base_url=ctx.obj['api_url'], api_key=ctx.obj['api_key'])
    factory = contacts_pipeline if entity == CONTACTS else transactions_pipeline
    return factory(gateway, notifier=ClickNotifier(), poll_interval=ctx.obj['poll_interval'],
                   on_progress=show_progress)


_file_argument = click.argument('file', type=click.Path(exists=True, dir_okay=False))
_map_option = click.option('--map', 'mappings', multiple=True, metavar='KEY=COLUMN',
                           help='Map a field to a column header (repeatable)')
_exclude_option = click.option('--exclude', 'excludes', multiple=True, type=int, metavar='N',
                               help='Leave out data row N, 1-based (repeatable)')
_header_option = click.option('--no-header', is_flag=True, help='The first row holds data')


@cli.command('contacts')
@_file_argument
@_map_option
@_exclude_option
@_header_option
@click.option('--type', 'contact_type', type=click.Choice(CONTACT_TYPES), default='supplier',
              show_default=True, help='Type for rows without a valid Type column')
@click.option('--date-format', default='MM/dd/yyyy', show_default=True)
@click.pass_context
def contacts_cmd(ctx, file, mappings, excludes, no_header, contact_type, date_format):
    """Import contacts."""
    pipeline = _pipeline(ctx, CONTACTS)
    options = {'contact_type': contact_type, 'date_format': date_format}
    _run(pipeline, file, parse_mappings(mappings), excludes, not no_header, options)


@cli.command('transactions')
@_file_argument
@_map_option
@_exclude_option
@_header_option
@click.option('--account-id', required=True, help='Bank account to import into')
@click.option('--column-mode', type=click.Choice(COLUMN_MODES), default='single', show_default=True,
              help='single: one amount column; double: credit and debit columns')
@click.option('--date-format', default='ddmmyyyy', show_default=True)
@click.option('--reverse', is_flag=True, help='Negate every amount')
@click.pass_context
def transactions_cmd(ctx, file, mappings, excludes, no_header, account_id, column_mode,
                     date_format, reverse):
    """Import bank transactions."""
    pipeline = _pipeline(ctx, TRANSACTIONS)
    options = {
        'account_id': account_id,
        'column_mode': column_mode,
        'date_format': date_format,
        'reverse': reverse,
    }
    _run(pipeline, file, parse_mappings(mappings), excludes, not no_header, options)


@cli.command('sample')
@click.argument('entity', type=click.Choice([CONTACTS, TRANSACTIONS]))
@click.option('--column-mode', type=click.Choice(COLUMN_MODES), default='single', show_default=True)
@click.option('--output', '-o', type=click.Path(), default='.', show_default=True,
              help='Directory or file to write')
@click.pass_context
def sample_cmd(ctx, entity, column_mode, output):
    """Download a sample import template."""
    pipeline = _pipeline(ctx, entity)

    async def download():
        if entity == TRANSACTIONS:
            pipeline.state.options = pipeline.state.options.model_copy(update={'column_mode': column_mode})
        return await pipeline.download_sample(Path(output))

    path = asyncio.run(download())
    if path is None:
        sys.exit(1)
    click.echo(f"Saved {path}")


def _run(pipeline: ImportPipeline, file: str, mappings: Dict[str, str], excludes: Tuple[int, ...],
         has_header_row: bool, options: Dict[str, Any]):
    try:
        ok = asyncio.run(run_wizard(pipeline, file, mappings, excludes, has_header_row, options))
    except JobFailure as e:
        click.echo(f"\n✗ Import failed: {e}", err=True)
        sys.exit(1)
    if not ok:
        sys.exit(1)


def _fail(message: str) -> bool:
    click.echo(f"✗ {message}", err=True)
    return False


async def run_wizard(pipeline: ImportPipeline, file: str, mappings: Dict[str, str],
                     excludes: Tuple[int, ...], has_header_row: bool,
                     options: Dict[str, Any]) -> bool:
    """
    Drive one wizard from upload to results.

    Returns:
        False if the wizard could not get past a step

    Raises:
        JobFailure: If the backend job finished as failed
    """
    config = pipeline.config

    await pipeline.set_options(**options)
    await pipeline.load_fields()
    if pipeline.mapping.status == CatalogStatus.ERROR:
        return _fail(f"There was an error retrieving fields: {pipeline.mapping.catalog_error}")

    pipeline.set_has_header_row(has_header_row)
    if not await pipeline.select_file(UploadedFile.from_path(file)):
        return False

    while pipeline.step != config.mapping_step:
        if not pipeline.can_proceed():
            return _fail(f"Cannot continue past '{pipeline.step.title}'")
        await pipeline.advance()

    # Entering the mapping step auto-maps matching headers
    for key, column in mappings.items():
        if column and column not in pipeline.state.headers:
            return _fail(f"Column '{column}' not found; headers are {pipeline.state.headers}")
        pipeline.update_mapping(key, column)

    click.echo("\nField mapping:")
    for f in pipeline.fields:
        marker = '*' if f.required else ' '
        click.echo(f"  {marker} {f.label:<20} <- {pipeline.mapping.mapping.get(f.key) or '(unmapped)'}")

    if not pipeline.can_proceed():
        missing = ', '.join(f.label for f in pipeline.mapping.required_unmapped())
        return _fail(f"Map the required fields first: {missing or 'check the date format'}")
    await pipeline.advance()

    by_row = {record.row_index: record.id for record in pipeline.state.candidates}
    for row in excludes:
        if row - 1 in by_row:
            pipeline.toggle(by_row[row - 1])
        else:
            click.echo(f"⚠️  No row {row} to exclude", err=True)

    selection = pipeline.state.selection
    click.echo(f"\n{len(selection)} of {selection.total} records selected")
    if not pipeline.can_proceed():
        return _fail('Nothing to import')

    if not await pipeline.advance():
        return False

    results = await pipeline.wait_for_results()
    click.echo()  # New line after progress bar
    if results is None:
        return _fail(pipeline.state.error or 'Import did not finish')

    pipeline.raise_for_failure()

    click.echo("\nImport complete")
    click.echo(f"  Total:   {results.total}")
    click.echo(f"  Created: {results.created}")
    click.echo(f"  Skipped: {results.skipped}")
    click.echo(f"  Failed:  {results.failed}")
    if results.has_warnings:
        click.echo(f"⚠️  {results.failed} row(s) failed: {results.error_message or 'see server log'}", err=True)
    return True


if __name__ == '__main__':
    cli(obj={})
