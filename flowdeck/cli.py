"""Command line interface for the flowdeck monitoring dashboard."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from flowdeck import NO_RESULT, DashboardClient, load_config
from flowdeck.contracts import EventLog
from flowdeck.stream import StreamState

T = TypeVar("T")

app = typer.Typer(help="CLI for the flowdeck monitoring dashboard")

# Command groups
outbox_app = typer.Typer(help="Inspect and retry transactional outbox events")
events_app = typer.Typer(help="Read the event log")
queues_app = typer.Typer(help="Inspect and purge message queues")
worker_app = typer.Typer(help="Send lifecycle commands to workers")
workflow_app = typer.Typer(help="Inspect workflow templates")
instance_app = typer.Typer(help="Inspect and retry workflow instances")

app.add_typer(outbox_app, name="outbox")
app.add_typer(events_app, name="events")
app.add_typer(queues_app, name="queues")
app.add_typer(worker_app, name="worker")
app.add_typer(workflow_app, name="workflow")
app.add_typer(instance_app, name="instance")


def build_client(api_url: Optional[str] = None) -> DashboardClient:
    """Create a client from configuration, optionally overriding the base URL."""
    config = load_config()
    if api_url:
        config.api.base_url = api_url
    return DashboardClient.from_config(config)


@app.callback()
def main(
    ctx: typer.Context,
    api_url: Optional[str] = typer.Option(
        None, "--api-url", help="Dashboard backend origin (overrides config)"
    ),
    log_level: str = typer.Option("WARNING", help="Logging level"),
) -> None:
    """flowdeck CLI entry point."""
    logging.basicConfig(level=log_level.upper())
    ctx.obj = {"api_url": api_url}


def _api_url(ctx: typer.Context) -> Optional[str]:
    return (ctx.obj or {}).get("api_url")


def _run(ctx: typer.Context, operation: Callable[[DashboardClient], Awaitable[T]]) -> T:
    """Run ``operation`` through the client's loading state.

    Exits with code 1 and prints the recorded error when the call fails.
    """

    async def _call() -> tuple[Any, Optional[str]]:
        async with build_client(_api_url(ctx)) as client:
            result = await client.with_loading(lambda: operation(client))
            return result, client.error

    result, error = asyncio.run(_call())
    if result is NO_RESULT:
        typer.secho(f"Error: {error}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return result


def _format_event(event: EventLog) -> str:
    line = f"{event.id}\t{event.created_at}\t{event.direction}\t{event.event_type}\t{event.process_name}"
    if event.payload_summary:
        line += f"\t{event.payload_summary}"
    return line


@app.command("status")
def status(ctx: typer.Context) -> None:
    """
    Show the health of every monitored process.

    Example:
        flowdeck status
        # Output: order-worker    running    2024-01-01T10:00:00Z    errors=0    events=42
    """
    processes = _run(ctx, lambda client: client.get_status())
    if not processes:
        typer.echo("No processes reported")
        return
    for proc in processes:
        typer.echo(
            f"{proc.process_name}\t{proc.status}\t{proc.last_heartbeat}"
            f"\terrors={proc.errors}\tevents={proc.events_count}"
        )


@outbox_app.command("list")
def outbox_list(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, help="Filter by outbox status"),
    limit: int = typer.Option(50, help="Maximum number of events"),
) -> None:
    """List outbox events, newest first as returned by the backend."""
    events = _run(ctx, lambda client: client.get_outbox(status, limit))
    if not events:
        typer.echo("No outbox events found")
        return
    for event in events:
        line = f"{event.event_id}\t{event.event_type}\t{event.status}\tattempts={event.attempts}"
        if event.last_error:
            line += f"\t{event.last_error}"
        typer.echo(line)


@outbox_app.command("stats")
def outbox_stats(ctx: typer.Context) -> None:
    """Show pending, published and failed outbox counters."""
    stats = _run(ctx, lambda client: client.get_outbox_stats())
    typer.echo(f"pending={stats.pending}\tpublished={stats.published}\tfailed={stats.failed}")


@outbox_app.command("retry")
def outbox_retry(ctx: typer.Context, event_id: str) -> None:
    """Queue a failed outbox event for another delivery attempt."""
    _run(ctx, lambda client: client.retry_event(event_id))
    typer.echo(f"Retry requested for event {event_id}")


@events_app.command("list")
def events_list(
    ctx: typer.Context,
    limit: int = typer.Option(50, help="Maximum number of entries"),
    after_id: Optional[int] = typer.Option(None, help="Only entries after this id"),
) -> None:
    """Print a page of the event log."""
    events = _run(ctx, lambda client: client.get_events(limit, after_id))
    if not events:
        typer.echo("No events found")
        return
    for event in events:
        typer.echo(_format_event(event))


@events_app.command("tail")
def events_tail(
    ctx: typer.Context,
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run until disconnected)"
    ),
) -> None:
    """
    Follow the live event stream.

    Prints each event as it arrives. The command ends when the lifespan
    expires or exits with code 1 when the stream disconnects.

    Example:
        flowdeck events tail --lifespan 60
    """

    async def _tail() -> tuple[StreamState, Optional[str]]:
        async with build_client(_api_url(ctx)) as client:
            handle = client.connect_event_stream(
                lambda event: typer.echo(_format_event(event))
            )
            try:
                await handle.wait(timeout=lifespan)
            finally:
                await handle.close()
            return handle.state, client.error

    state, error = asyncio.run(_tail())
    if state is StreamState.FAILED:
        typer.secho(f"Error: {error}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@queues_app.command("list")
def queues_list(ctx: typer.Context) -> None:
    """Show message counts and consumers per queue."""
    queues = _run(ctx, lambda client: client.get_queues())
    if not queues:
        typer.echo("No queues found")
        return
    for queue in queues:
        typer.echo(
            f"{queue.name}\t{queue.state}\tmessages={queue.messages}"
            f"\tready={queue.messages_ready}\tunacked={queue.messages_unacked}"
            f"\tconsumers={queue.consumers}"
        )


@queues_app.command("purge")
def queues_purge(
    ctx: typer.Context,
    name: str,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete every message waiting in a queue."""
    if not yes:
        typer.confirm(f"Purge all messages from queue {name}?", abort=True)
    _run(ctx, lambda client: client.purge_queue(name))
    typer.echo(f"Queue {name} purged")


def _worker(ctx: typer.Context, name: str, command: str) -> None:
    _run(ctx, lambda client: client.worker_command(name, command))
    typer.echo(f"Sent {command} to worker {name}")


@worker_app.command("start")
def worker_start(ctx: typer.Context, name: str) -> None:
    """Start a worker."""
    _worker(ctx, name, "start")


@worker_app.command("stop")
def worker_stop(ctx: typer.Context, name: str) -> None:
    """Stop a worker."""
    _worker(ctx, name, "stop")


@worker_app.command("restart")
def worker_restart(ctx: typer.Context, name: str) -> None:
    """Restart a worker."""
    _worker(ctx, name, "restart")


@workflow_app.command("list")
def workflow_list(ctx: typer.Context) -> None:
    """
    List workflow templates with their run counters.

    Example:
        flowdeck workflow list
        # Output: order_flow    active    running=2 completed=10 failed=1 paused=0
    """
    workflows = _run(ctx, lambda client: client.get_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        stats = wf.stats
        typer.echo(
            f"{wf.name}\t{'active' if wf.is_active else 'inactive'}"
            f"\trunning={stats.running} completed={stats.completed}"
            f" failed={stats.failed} paused={stats.paused}"
        )


@workflow_app.command("show")
def workflow_show(ctx: typer.Context, name: str) -> None:
    """
    Show a workflow template and its step graph.

    Each step is printed with the steps it continues to on success and on
    failure.
    """
    wf = _run(ctx, lambda client: client.get_workflow(name))
    typer.echo(f"Workflow {wf.name}: {'active' if wf.is_active else 'inactive'}")
    if wf.description:
        typer.echo(f"Description: {wf.description}")
    for step in wf.steps or []:
        typer.echo(
            f"- {step.name} ({step.type})"
            + (f" ok -> {step.on_ok}" if step.on_ok else "")
            + (f" nok -> {step.on_nok}" if step.on_nok else "")
        )


@workflow_app.command("instances")
def workflow_instances(
    ctx: typer.Context,
    name: str,
    status: Optional[str] = typer.Option(None, help="Filter by instance status"),
    limit: int = typer.Option(50, help="Maximum number of instances"),
) -> None:
    """List executions of a workflow."""
    instances = _run(
        ctx, lambda client: client.get_workflow_instances(name, status, limit)
    )
    if not instances:
        typer.echo("No instances found")
        return
    for inst in instances:
        typer.echo(f"{inst.id}\t{inst.status}\t{inst.current_step or '-'}\t{inst.started_at}")


@workflow_app.command("stats")
def workflow_stats(ctx: typer.Context) -> None:
    """Show run counters across all workflows."""
    stats = _run(ctx, lambda client: client.get_workflow_stats())
    totals = stats.totals
    typer.echo(
        f"running={totals.running} completed={totals.completed} failed={totals.failed}"
        f" paused={totals.paused} cancelled={totals.cancelled}"
    )
    typer.echo(f"last_24h={stats.last_24h}")
    if stats.avg_duration_ms is not None:
        typer.echo(f"avg_duration_ms={stats.avg_duration_ms}")


@instance_app.command("show")
def instance_show(ctx: typer.Context, instance_id: str) -> None:
    """Show the status and error of a workflow instance."""
    inst = _run(ctx, lambda client: client.get_instance(instance_id))
    typer.echo(f"Instance {inst.id} ({inst.workflow_name}): {inst.status}")
    if inst.current_step:
        typer.echo(f"Current step: {inst.current_step}")
    if inst.error_message:
        typer.echo(f"Error: {inst.error_message}")


@instance_app.command("steps")
def instance_steps(ctx: typer.Context, instance_id: str) -> None:
    """Print the step log of a workflow instance."""
    steps = _run(ctx, lambda client: client.get_instance_steps(instance_id))
    if not steps:
        typer.echo("No steps recorded")
        return
    for step in steps:
        typer.echo(
            f"- {step.step_name}: {step.status} (attempt {step.attempt}/{step.max_retries})"
            + (f" ({step.started_at} -> {step.completed_at})" if step.completed_at else "")
            + (f" error: {step.error_message}" if step.error_message else "")
        )


@instance_app.command("retry")
def instance_retry(
    ctx: typer.Context,
    instance_id: str,
    from_step: Optional[str] = typer.Option(None, help="Resume from this step"),
) -> None:
    """Retry a failed workflow instance."""
    _run(ctx, lambda client: client.retry_instance(instance_id, from_step))
    typer.echo(f"Retry requested for instance {instance_id}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
