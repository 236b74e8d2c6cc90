# cli.py
import importlib
import json
import logging
import time

import click

from config import EngineConfig, parse_config_value
from engine import QueueEngine
from errors import ConfigError, QueueError
from models import Lane
from resource_monitor import ResourceMonitor
from storage import Storage
from worker import ThreadedExecutor


@click.group()
@click.option("--db", "db_path", default="reports.db", show_default=True, help="SQLite file for report records and config")
@click.pass_context
def cli(ctx, db_path):
    """reportq - seller report queue engine"""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path


def _storage(ctx):
    return Storage(ctx.obj["db_path"])


def _load_handler(path):
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise click.BadParameter(f"expected 'module:function', got {path!r}", param_hint="--handler")
    try:
        return getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(f"cannot load {path}: {e}", param_hint="--handler")


# ---------------- Run ----------------
@cli.command()
@click.option("--handler", required=True, help="Report handler as module:function, called once per job")
@click.option("--jobs-file", type=click.Path(exists=True, dir_okay=False), default=None, help="JSON list of jobs to enqueue at startup")
@click.option("--workers", default=8, show_default=True, help="Executor threads")
@click.option("--log-level", default="INFO", show_default=True)
@click.pass_context
def run(ctx, handler, jobs_file, workers, log_level):
    """Start the dispatcher and executor until Ctrl+C"""
    logging.basicConfig(level=log_level.upper(), format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    db = _storage(ctx)
    try:
        config = EngineConfig.from_storage(db)
    except ConfigError as e:
        raise click.ClickException(f"Invalid stored config: {e}")

    engine = QueueEngine(config=config, persistence=db)
    executor = ThreadedExecutor(_load_handler(handler), engine.lifecycle, max_workers=workers)
    engine.set_executor(executor)

    if jobs_file:
        with open(jobs_file, encoding="utf-8") as f:
            payloads = json.load(f)
        for payload in payloads:
            try:
                if payload.get("lane") == Lane.PRIORITY.value:
                    job = engine.enqueue_manual(payload)
                else:
                    job = engine.enqueue_bulk(payload)
                click.echo(f"✅ Job {job.job_id} enqueued (lane={job.lane.value}).")
            except QueueError as e:
                click.echo(f"❌ Failed to enqueue job: {e}")

    engine.start()
    click.echo(f"🚀 Dispatcher running (interval={config.dispatch_interval_ms}ms, workers={workers}, cpu_method={config.cpu_method})")
    click.echo("Press Ctrl+C to stop gracefully.")
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        click.echo("\n🛑 Stopping dispatcher ...")
        engine.stop()
        executor.shutdown(wait=True)
        db.close()
        click.echo("✅ Stopped cleanly.")


# ---------------- Resources ----------------
@cli.command()
@click.pass_context
def resources(ctx):
    """Show the current resource sample and dispatch hints"""
    config = EngineConfig.from_storage(_storage(ctx))
    snap = ResourceMonitor(config).snapshot()
    sample = snap["sample"]
    click.echo(f"🖥️ Load class: {snap['load_class']}{' (degraded)' if sample['degraded'] else ''}")
    click.echo(f"  CPU: {sample['cpu_percent']}% ({config.cpu_method}, {sample['cpu_count']} cores)")
    click.echo(f"  Memory: {sample['memory_percent']}% ({sample['free_memory_mb']}MB free of {sample['total_memory_mb']}MB)")
    click.echo(f"  Load average: {', '.join(f'{v:.2f}' for v in sample['load_average'])}")
    click.echo(f"  Recommended batch size: {snap['recommended_batch_size']}")
    click.echo(f"  Can admit more: {'yes' if snap['can_admit_more'] else 'no'}")


# ---------------- List Reports ----------------
@cli.command(name="list")
@click.option("--status", default=None, help="Filter by status (enqueued, in_progress, completed, failed)")
@click.option("--seller-id", default=None, help="Filter by seller")
@click.pass_context
def list_reports(ctx, status, seller_id):
    """List report records"""
    rows = _storage(ctx).list_reports(status=status, seller_id=seller_id)
    if not rows:
        click.echo("No reports found.")
        return
    for row in rows:
        scheduled = row["scheduled_for"] or "-"
        click.echo(f"{row['job_id']} | {row['report_type']} | {row['operation']} | lane={row['lane']} | "
                   f"status={row['status']} | attempts={row['attempts']} | scheduled_for={scheduled}")


# ---------------- Status ----------------
@cli.command()
@click.pass_context
def status(ctx):
    """Show summary of report states"""
    counts = _storage(ctx).status_counts()
    if not counts:
        click.echo("No reports in the system yet.")
        return
    click.echo("📊 Report Status Summary:")
    for state, count in counts.items():
        click.echo(f"  {state}: {count}")


# ---------------- Metrics ----------------
@cli.command()
@click.pass_context
def metrics(ctx):
    """Show completion and retry metrics"""
    db = _storage(ctx)
    cur = db.conn.cursor()
    counts = db.status_counts()
    cur.execute("SELECT COUNT(*) AS c FROM reports WHERE attempts > 0")
    retried = cur.fetchone()["c"]
    cur.execute("SELECT COUNT(*) AS c FROM reports WHERE operation='download'")
    downloads = cur.fetchone()["c"]

    click.echo("📈 Metrics Summary")
    click.echo(f"  Completed reports: {counts.get('completed', 0)}")
    click.echo(f"  Failed reports: {counts.get('failed', 0)}")
    click.echo(f"  Retried reports: {retried}")
    click.echo(f"  Download jobs scheduled: {downloads}")


@cli.command()
@click.argument("job_id")
@click.pass_context
def show(ctx, job_id):
    """Show details of a single report record"""
    row = _storage(ctx).get_report(job_id)
    if not row:
        click.echo(f"❌ Report {job_id} not found.")
        return

    click.echo(f"🔎 Report {row['job_id']}")
    click.echo(f"  Seller: {row['seller_id']} ({row['identifier']})")
    click.echo(f"  Type: {row['report_type']} / {row['operation']}")
    click.echo(f"  Parent: {row['parent_id'] or '-'}")
    click.echo(f"  Status: {row['status']}")
    click.echo(f"  Attempts: {row['attempts']}")
    click.echo(f"  Range: {row['start_date'] or '-'} .. {row['end_date'] or '-'}")
    click.echo(f"  Scheduled for: {row['scheduled_for'] or '-'}")
    click.echo(f"  Enqueued: {row['enqueued_at'] or '-'}")
    click.echo(f"  Started: {row['started_at'] or '-'}")
    click.echo(f"  Finished: {row['completed_at'] or '-'}")
    click.echo(f"  Error: {row['error'] or '-'}")
    click.echo(f"  Result: {row['result'] or '-'}")


# ---------------- Config management ----------------
@cli.group()
def config():
    """Runtime configuration for the dispatcher"""
    pass


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key, value):
    """Set a config key to a value"""
    try:
        EngineConfig.from_dict({key: parse_config_value(key, value)})
    except ConfigError as e:
        raise click.ClickException(str(e))
    _storage(ctx).set_config(key, value)
    click.echo(f"🛠️ Config '{key}' set to '{value}'.")


@config.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx, key):
    """Get a config key, showing the default when unset"""
    value = _storage(ctx).get_config(key)
    if value is not None:
        click.echo(f"{key}={value}")
        return
    defaults = EngineConfig().to_dict()
    if key not in defaults:
        raise click.ClickException(f"Unknown config key: {key}")
    click.echo(f"{key}={json.dumps(defaults[key])} (default)")


@config.command("list")
@click.pass_context
def config_list(ctx):
    """List all stored config keys"""
    rows = _storage(ctx).list_config()
    if not rows:
        click.echo("No config keys set.")
        return
    for row in rows:
        click.echo(f"{row['key']}={row['value']} (updated_at={row['updated_at']})")


# ---------------- Entrypoint ----------------
if __name__ == "__main__":
    cli()
