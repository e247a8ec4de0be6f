"""FindMe CLI — run the server or poke the asynchronous effects by hand.

Usage:
    findme serve                      # Run the API + hubs under uvicorn
    findme sweep                      # Run one trial-ending reminder sweep now
    findme recommend user PROJECT_ID  # Users recommended for a project
    findme recommend project USER_ID  # Projects recommended for a user
"""

from __future__ import annotations

import asyncio
import sys

import click

from findme.config import settings


def _run(coro):
    """Run an async coroutine from a synchronous Click handler."""
    return asyncio.run(coro)


@click.group()
def cli():
    """FindMe — asynchronous effects core."""


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default: FINDME_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: FINDME_PORT)")
def serve(host: str | None, port: int | None):
    """Run the FastAPI app, chat hub and workers."""
    import uvicorn

    uvicorn.run(
        "findme.main:app",
        host=host or settings.host,
        port=port or settings.port,
    )


# ---------------------------------------------------------------------------
# sweep
# ---------------------------------------------------------------------------


async def _sweep() -> int:
    from findme.db.engine import engine
    from findme.main import build_email_hub, build_reminder_scheduler
    from findme.services.cron import CronScheduler

    email_hub = build_email_hub()
    email_hub.run()
    reminders = build_reminder_scheduler(
        email_hub, CronScheduler(timezone=settings.scheduler.timezone)
    )
    try:
        queued = await reminders.sweep()
        await email_hub.join()
    finally:
        await email_hub.stop()
        await engine.dispose()
    return queued


@cli.command()
def sweep():
    """Send trial-ending reminders now (same logic as the 09:00 job)."""
    queued = _run(_sweep())
    click.secho(f"Queued {queued} reminder(s)", fg="green")


# ---------------------------------------------------------------------------
# recommend
# ---------------------------------------------------------------------------


async def _recommend(kind: str, entity_id: str) -> list[str]:
    from findme.main import build_recommendation_hub
    from findme.services.recommendation_hub import RecommendationJobKind

    hub = build_recommendation_hub()
    job_kind = (
        RecommendationJobKind.USER_REC if kind == "user" else RecommendationJobKind.PROJECT_REC
    )
    return await hub.get_recommendation(entity_id, job_kind)


@cli.command()
@click.argument("kind", type=click.Choice(["user", "project"]))
@click.argument("entity_id")
def recommend(kind: str, entity_id: str):
    """Fetch recommendations directly from the recommendation service."""
    import grpc

    try:
        ids = _run(_recommend(kind, entity_id))
    except grpc.RpcError as e:
        click.secho(f"Error: recommendation service call failed: {e}", fg="red", err=True)
        sys.exit(1)

    if not ids:
        click.echo("No recommendations.")
        return
    for entity in ids:
        click.echo(entity)


def main():
    cli()


if __name__ == "__main__":
    main()
