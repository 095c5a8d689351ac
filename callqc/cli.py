from typing import Optional

import typer
from alembic import command

from callqc.container import build_services
from callqc.core.config import settings
from callqc.core.logging import configure_logging
from callqc.main import alembic_config
from callqc.services.errors import CallQCError
from callqc.services.replay import replay as replay_call
from callqc.services.replay import requeue_stale

app = typer.Typer(help="Operator commands for the call QC pipeline.")


@app.callback()
def main(ctx: typer.Context) -> None:
    configure_logging(settings.log_level)
    if ctx.obj is None and ctx.invoked_subcommand != "init-db":
        ctx.obj = build_services(settings)
        ctx.call_on_close(ctx.obj.close)


@app.command()
def init_db():
    command.upgrade(alembic_config(settings.database_url), "head")
    typer.echo("Database migrated")


@app.command()
def queue_stats(ctx: typer.Context):
    stats = ctx.obj.queue.stats()
    for name, value in stats.model_dump().items():
        typer.echo(f"{name}: {value}")


@app.command()
def reconcile(ctx: typer.Context, older_than_minutes: Optional[int] = None):
    services = ctx.obj
    minutes = older_than_minutes if older_than_minutes is not None else settings.reconcile_after_minutes
    requeued = requeue_stale(services.store, services.queue, minutes)
    typer.echo(f"Re-enqueued {len(requeued)} record(s)")


@app.command()
def replay(ctx: typer.Context, external_call_id: str):
    services = ctx.obj
    try:
        record_id = replay_call(services.store, services.queue, external_call_id)
    except CallQCError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Record {record_id} queued for reprocessing")


if __name__ == "__main__":
    app()
