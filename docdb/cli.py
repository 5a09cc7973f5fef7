"""
docdb Command-Line Interface

Lists databases, runs queries against a collection and serves the in-memory
emulator.

Author: docdb Team
Date: 2025-12-14
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import uvicorn

from docdb import __version__
from docdb.client import DocumentClient
from docdb.core.config_manager import ClientConfig, ConfigManager
from docdb.core.logging_config import setup_logging
from docdb.exceptions import DocumentDBError
from docdb.models import FeedOptions

logger = logging.getLogger("docdb.cli")


@click.group()
@click.version_option(version=__version__, prog_name="docdb")
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file (YAML or JSON)",
)
@click.option("--endpoint", envvar="DOCDB_ENDPOINT", help="Service endpoint URL")
@click.option("--master-key", envvar="DOCDB_MASTER_KEY", help="Account master key")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level (overrides the configuration)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Optional[Path],
    endpoint: Optional[str],
    master_key: Optional[str],
    log_level: Optional[str],
):
    """
    docdb - Document Database Client

    Talk to a document database account, or run a local emulator of one.
    """
    ctx.ensure_object(dict)
    overrides: Dict[str, Any] = {}
    if endpoint:
        overrides["endpoint"] = endpoint
    if master_key:
        overrides["master_key"] = master_key
    if log_level:
        overrides["logging"] = {"level": log_level.upper()}
    ctx.obj["config_file"] = str(config_file) if config_file else None
    ctx.obj["overrides"] = overrides


def _load_config(ctx: click.Context) -> ClientConfig:
    try:
        config = ConfigManager().load(ctx.obj["config_file"], ctx.obj["overrides"])
    except (ValueError, FileNotFoundError) as e:
        click.echo(f"[ERROR] Invalid configuration: {e}", err=True)
        sys.exit(2)
    log = config.logging
    setup_logging(
        level=log.level.value,
        format_type=log.format,
        log_file=log.file,
        rotation_size=log.rotation_size,
        rotation_count=log.rotation_count,
        module_levels=log.module_levels,
    )
    return config


def _run(coro: Any) -> None:
    try:
        asyncio.run(coro)
    except DocumentDBError as e:
        click.echo(f"[ERROR] {e.error_code}: {e.message}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--max-item-count", type=click.IntRange(min=1), help="Page size")
@click.pass_context
def databases(ctx: click.Context, max_item_count: Optional[int]):
    """
    List the databases of the account.

    Example:
        docdb --endpoint http://127.0.0.1:8081/ databases
    """
    config = _load_config(ctx)

    async def list_databases() -> None:
        async with DocumentClient.from_config(config) as client:
            iterator = client.read_databases(FeedOptions(max_item_count=max_item_count))
            count = 0
            async for database in iterator:
                click.echo(f"{database['id']}\t{database['_self']}")
                count += 1
            click.echo(f"{count} database(s)")

    _run(list_databases())


@cli.command()
@click.argument("collection_link")
@click.argument("sql")
@click.option("--max-item-count", type=click.IntRange(min=1), help="Page size")
@click.option(
    "--param",
    "-p",
    multiple=True,
    help="Query parameter in @name=json-value format (can specify multiple times)",
)
@click.pass_context
def query(ctx: click.Context, collection_link: str, sql: str, max_item_count: Optional[int], param: tuple):
    """
    Query the documents of a collection, printing each result as JSON.

    Examples:
        docdb query dbs/db1/colls/c1 "SELECT * FROM root r"
        docdb query dbs/db1/colls/c1 "SELECT * FROM r WHERE r.n = @n" -p @n=3
    """
    config = _load_config(ctx)

    parameters = []
    for item in param:
        if "=" not in item:
            raise click.BadParameter(f"'{item}' is not in @name=value format", param_hint="--param")
        name, raw = item.split("=", 1)
        try:
            value = json.loads(raw)
        except ValueError:
            value = raw
        parameters.append({"name": name, "value": value})

    async def run_query() -> None:
        async with DocumentClient.from_config(config) as client:
            iterator = client.query_documents(
                collection_link,
                {"query": sql, "parameters": parameters},
                FeedOptions(max_item_count=max_item_count),
            )
            async for item in iterator:
                click.echo(json.dumps(item, sort_keys=True))
            logger.debug(f"Query used {iterator.pages_fetched} page(s)")

    _run(run_query())


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to", show_default=True)
@click.option("--port", default=8081, type=int, help="Port to bind to", show_default=True)
@click.option(
    "--failure-rate",
    default=0.0,
    type=click.FloatRange(0.0, 1.0),
    help="Fraction of requests failed with injected 429/503 responses",
    show_default=True,
)
@click.option("--seed", type=int, help="Seed for deterministic fault injection")
@click.pass_context
def emulator(ctx: click.Context, host: str, port: int, failure_rate: float, seed: Optional[int]):
    """
    Serve the in-memory emulator.

    Examples:
        docdb emulator
        docdb emulator --port 9000 --failure-rate 0.1 --seed 42
    """
    from docdb.emulator import EMULATOR_MASTER_KEY, FaultConfig, FaultInjector, create_app

    config = _load_config(ctx)

    faults = FaultInjector(
        FaultConfig(enabled=failure_rate > 0, failure_rate=failure_rate, error_codes=[429, 503])
    )
    if seed is not None:
        faults.set_seed(seed)

    click.echo(f"Starting docdb emulator v{__version__}")
    click.echo(f"Endpoint: http://{host}:{port}/")
    click.echo(f"Master key: {EMULATOR_MASTER_KEY}")
    click.echo()

    try:
        uvicorn.run(
            create_app(faults=faults),
            host=host,
            port=port,
            log_level=config.logging.level.value.lower(),
            access_log=True,
        )
    except KeyboardInterrupt:
        click.echo("\nShutting down the emulator...")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
