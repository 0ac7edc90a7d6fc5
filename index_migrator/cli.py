import logging
import signal
import threading
from contextlib import contextmanager
from typing import Callable, List, Optional

import click
from botocore.exceptions import ClientError

import index_migrator.middleware.clusters as clusters_
import index_migrator.middleware.indices as indices_
import index_migrator.middleware.reconcile as reconcile_
import index_migrator.middleware.reindex as reindex_
import index_migrator.middleware.schema as schema_
import index_migrator.middleware.transfer as transfer_
from index_migrator.db.task_db import TaskStore
from index_migrator.environment import Environment
from index_migrator.exceptions import MigrationError
from index_migrator.models.reconcile import DEFAULT_WATCH_INTERVAL_SECONDS, watch
from index_migrator.models.reindex import DEFAULT_DATE_FIELD, TaskTracker
from index_migrator.models.transfer import TimeWindow, WindowMode, WindowSpec
from index_migrator.models.utils import ExitCode

logger = logging.getLogger(__name__)

# ################### UNIVERSAL ####################


class Context(object):
    def __init__(self, config_file) -> None:
        self.config_file = config_file
        try:
            self.env = Environment(config_file=config_file)
        except Exception as e:
            raise click.ClickException(str(e))
        self.json = False


@click.group()
@click.option("--config-file", default="./migration_services.yaml", help="Path to config file")
@click.option("--json", is_flag=True)
@click.option('-v', '--verbose', count=True, help="Verbosity level. Default is warn, -v is info, -vv is debug.")
@click.pass_context
def cli(ctx, config_file, json, verbose):
    logging.basicConfig(level=logging.WARN - (10 * verbose))
    logger.info(f"Logging set to {logging.getLevelName(logger.getEffectiveLevel())}")
    ctx.obj = Context(config_file)
    ctx.obj.json = json


def _require_clusters(ctx, source=True, target=True):
    if source and ctx.env.source_cluster is None:
        raise click.UsageError("Source cluster is not defined.")
    if target and ctx.env.target_cluster is None:
        raise click.UsageError("Target cluster is not defined.")


def _echo_or_fail(exitcode: ExitCode, message: str):
    if exitcode != ExitCode.SUCCESS:
        raise click.ClickException(message)
    click.echo(message)


def _selected_indices(ctx, names: Optional[List[str]] = None) -> List[str]:
    try:
        indices = indices_.selected_index_names(ctx.env.source_cluster, ctx.env.index_filter, names)
    except MigrationError as e:
        raise click.ClickException(str(e))
    if not indices:
        raise click.ClickException("No business indices found on the source cluster.")
    return indices


@contextmanager
def _on_interrupt(callback: Callable[[], None]):
    """Runs `callback` on SIGINT or SIGTERM for the duration of the block, then restores the previous handlers."""
    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}

    def handler(signum, frame):
        logger.warning(f"Received {signal.Signals(signum).name}")
        callback()

    for sig in previous:
        signal.signal(sig, handler)
    try:
        yield
    finally:
        for sig, prior in previous.items():
            signal.signal(sig, prior)


# ##################### CLUSTERS ###################


@cli.group(name="clusters", help="Commands to interact with source and target clusters")
@click.pass_obj
def cluster_group(ctx):
    if ctx.env.source_cluster is None and ctx.env.target_cluster is None:
        raise click.UsageError("Neither source nor target cluster is defined.")


@cluster_group.command(name="connection-check")
@click.pass_obj
def connection_check_cmd(ctx):
    """Checks if a connection can be established to source and target clusters"""
    click.echo("SOURCE CLUSTER")
    if ctx.env.source_cluster:
        click.echo(clusters_.connection_check(ctx.env.source_cluster))
    else:
        click.echo("No source cluster defined.")
    click.echo("TARGET CLUSTER")
    if ctx.env.target_cluster:
        click.echo(clusters_.connection_check(ctx.env.target_cluster))
    else:
        click.echo("No target cluster defined.")


# ##################### INDICES ###################


@cli.group(name="indices", help="Commands to enumerate the indices to migrate")
@click.pass_obj
def indices_group(ctx):
    _require_clusters(ctx, target=False)


@indices_group.command(name="list")
@click.option("--all", "include_system", is_flag=True, default=False,
              help="Also list system indices, with their classification")
@click.pass_obj
def list_indices_cmd(ctx, include_system):
    """Lists the business indices of the source cluster"""
    _echo_or_fail(*indices_.list_indices(ctx.env.source_cluster, ctx.env.index_filter,
                                         include_system=include_system, as_json=ctx.json))


# ##################### SCHEMA ###################


@cli.group(name="schema", help="Commands to replicate index settings and mappings")
@click.pass_obj
def schema_group(ctx):
    _require_clusters(ctx)


@schema_group.command(name="replicate")
@click.option("--index", "index_names", multiple=True, help="Only replicate these indices")
@click.pass_obj
def replicate_schema_cmd(ctx, index_names):
    """Creates every business index on the target with the settings and mappings it has on the source"""
    indices = _selected_indices(ctx, list(index_names))
    _echo_or_fail(*schema_.replicate(ctx.env.source_cluster, ctx.env.target_cluster, indices, as_json=ctx.json))


# ##################### TRANSFER ###################


@cli.group(name="transfer", help="Commands to copy documents with elasticdump")
@click.pass_obj
def transfer_group(ctx):
    _require_clusters(ctx)


@transfer_group.command(name="run")
@click.option("--concurrency", type=click.IntRange(min=1), default=None,
              help="Number of indices copied at the same time")
@click.option("--date-field", default=None, help="Date field used to split the copy into windows")
@click.option("--date-from", default=None, help="Inclusive lower bound of the window (e.g. 2024-01-01)")
@click.option("--date-to", default=None, help="Exclusive upper bound of the window")
@click.option("--window-mode", type=click.Choice([m.value for m in WindowMode]), default=WindowMode.SINGLE.value)
@click.option("--start-year", type=int, default=None)
@click.option("--end-year", type=int, default=None)
@click.option("--index", "index_names", multiple=True, help="Only copy these indices (e.g. to replay failures)")
@click.option("--log-dir", default=None, help="Directory for progress and per-index logs")
@click.pass_obj
def run_transfer_cmd(ctx, concurrency, date_field, date_from, date_to, window_mode, start_year, end_year,
                     index_names, log_dir):
    """Copies the documents of every business index from source to target"""
    if (date_from or date_to) and not date_field:
        raise click.UsageError("--date-from and --date-to require --date-field")
    try:
        window_spec = WindowSpec(date_field=date_field, start=date_from, end=date_to, mode=WindowMode(window_mode),
                                 start_year=start_year, end_year=end_year)
    except ValueError as e:
        raise click.UsageError(str(e))
    try:
        scheduler = transfer_.create_scheduler(ctx.env.source_cluster, ctx.env.target_cluster, ctx.env.transfer,
                                               concurrency=concurrency, log_dir=log_dir)
    except (FileNotFoundError, NotImplementedError, ValueError, ClientError) as e:
        raise click.ClickException(str(e))
    indices = _selected_indices(ctx, list(index_names))
    if not ctx.json:
        click.echo(f"Migrating {len(indices)} indices, logs in {scheduler.log_dir}")
    with _on_interrupt(scheduler.stop):
        exitcode, message = transfer_.run(scheduler, indices, window_spec, as_json=ctx.json)
    _echo_or_fail(exitcode, message)


# ##################### REINDEX ###################


@cli.group(name="reindex", help="Commands to run and track remote reindex tasks on the target")
@click.pass_obj
def reindex_group(ctx):
    _require_clusters(ctx, source=False)


def _tracker(ctx) -> TaskTracker:
    return TaskTracker(TaskStore(ctx.env.task_file), ctx.env.target_cluster)


@reindex_group.command(name="start")
@click.option("--date-field", default=DEFAULT_DATE_FIELD, show_default=True)
@click.option("--date-from", default=None, help="Only reindex documents dated on or after this")
@click.option("--date-to", default=None, help="Only reindex documents dated before this")
@click.option("--index", "index_names", multiple=True, help="Only reindex these indices")
@click.pass_obj
def start_reindex_cmd(ctx, date_field, date_from, date_to, index_names):
    """Starts an asynchronous remote reindex on the target for every business index"""
    _require_clusters(ctx)
    indices = _selected_indices(ctx, list(index_names))
    window = TimeWindow(date_from, date_to) if (date_from or date_to) else None
    _echo_or_fail(*reindex_.start(ctx.env.source_cluster, ctx.env.target_cluster, indices, _tracker(ctx),
                                  window=window, date_field=date_field, as_json=ctx.json))


@reindex_group.command(name="status")
@click.pass_obj
def reindex_status_cmd(ctx):
    """Polls the target for the state of every recorded reindex task"""
    _echo_or_fail(*reindex_.status(_tracker(ctx), as_json=ctx.json))


@reindex_group.command(name="forget")
@click.argument("index")
@click.pass_obj
def forget_reindex_cmd(ctx, index):
    """Removes the task record of INDEX"""
    _echo_or_fail(*reindex_.forget(_tracker(ctx), index))


# ##################### RECONCILE ###################


@cli.command(name="reconcile")
@click.option("--watch", "watch_mode", is_flag=True, default=False, help="Refresh the report until interrupted")
@click.option("--interval", type=click.FloatRange(min=1), default=DEFAULT_WATCH_INTERVAL_SECONDS,
              show_default=True, help="Seconds between refreshes in watch mode")
@click.pass_obj
def reconcile_cmd(ctx, watch_mode, interval):
    """Compares document counts of every business index between source and target"""
    _require_clusters(ctx)
    source, target = ctx.env.source_cluster, ctx.env.target_cluster
    if not watch_mode:
        _echo_or_fail(*reconcile_.check_once(source, target, _selected_indices(ctx), as_json=ctx.json))
        if not ctx.json:
            click.echo("Tip: Run with --watch to monitor in real-time")
        return

    def on_report(report):
        if not ctx.json:
            click.clear()
        click.echo(reconcile_.render_report(report, source, target, as_json=ctx.json))
        if not ctx.json:
            click.echo(f"Next refresh in {int(interval)} seconds... (Ctrl+C to exit)")

    stop_event = threading.Event()
    if not ctx.json:
        click.echo(f"Watch mode enabled. Refreshing every {int(interval)} seconds. Press Ctrl+C to exit.")
    with _on_interrupt(stop_event.set):
        try:
            watch(source, target, lambda: indices_.selected_index_names(source, ctx.env.index_filter),
                  interval=interval, on_report=on_report, stop_event=stop_event)
        except MigrationError as e:
            raise click.ClickException(str(e))


#################################################

def main():
    cli()


if __name__ == "__main__":
    main()
