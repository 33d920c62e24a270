"""Mealwatch CLI — watch live photo events, publish test events, run the server.

Usage:
    mealwatch watch                          # Every event, all schools
    mealwatch watch school-42 --count 5      # Five events for one school, then exit
    mealwatch publish school-42 photo_added --data '{"id": "p1"}'
    mealwatch status                         # Server health + open stream count
    mealwatch serve --port 5010              # Run the API (uvicorn)
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import sys
from typing import Any, Optional

import click
import httpx

from mealwatch.client.consumer import ConnectionState, ConsumerConfig, StreamConsumer
from mealwatch.client.live import LiveFeed, LiveUpdate
from mealwatch.config import settings
from mealwatch.logging_config import configure_logging
from mealwatch.realtime.relay import RedisRelay, connect_redis

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client() -> httpx.AsyncClient:
    """HTTP client for streaming — no overall read deadline beyond the idle timeout."""
    return httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=60.0))


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _event_color(event_type: str) -> str:
    if event_type.endswith("_deleted"):
        return "red"
    if event_type.endswith("_added"):
        return "green"
    return "cyan"


def _format_update(update: LiveUpdate, as_json: bool) -> str:
    if as_json:
        return json.dumps({
            "type": update.event_type,
            "schoolId": update.topic,
            "receivedAt": update.received_at.isoformat(),
            "data": update.payload,
        }, default=str)
    stamp = update.received_at.strftime("%H:%M:%S")
    kind = click.style(update.event_type, fg=_event_color(update.event_type))
    return f"[{stamp}] {kind} school={update.topic or '—'} {json.dumps(update.payload, default=str)}"


def _parse_data(data: Optional[str]) -> Any:
    if data is None:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--data")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="mealwatch")
def main():
    """Mealwatch — live photo updates for the food-safety portal."""
    configure_logging(settings.log_level, json_logs=settings.log_json)


# ---------------------------------------------------------------------------
# mealwatch watch
# ---------------------------------------------------------------------------


@main.command()
@click.argument("school_id", required=False)
@click.option("--api-url", default=None, help="API base URL (default: MEALWATCH_API_URL)")
@click.option("--count", "-n", type=int, default=0, help="Exit after this many events")
@click.option("--json", "as_json", is_flag=True, help="One JSON object per line")
def watch(school_id: Optional[str], api_url: Optional[str], count: int, as_json: bool):
    """Print photo events as they arrive.

    SCHOOL_ID limits output to one school; omit it to see every event.
    """
    received = _run(_watch_impl(school_id, api_url or settings.api_url, count, as_json))
    if received < 0:
        sys.exit(1)


async def _watch_impl(school_id: Optional[str], api_url: str, count: int, as_json: bool) -> int:
    config = ConsumerConfig.for_api(
        api_url,
        reconnect_delay=settings.reconnect_delay,
        max_reconnect_attempts=settings.max_reconnect_attempts,
    )
    received = 0

    async with _client() as http:
        consumer = StreamConsumer(config, client=http)
        feed = LiveFeed(consumer, school_id)
        try:
            async with feed:
                scope = f"school {school_id}" if school_id else "all schools"
                click.secho(f"Watching {scope} at {config.url}", bold=True, err=True)
                offline_watch = asyncio.create_task(_unmount_when_offline(consumer, feed))
                try:
                    async for update in feed:
                        click.echo(_format_update(update, as_json))
                        received += 1
                        if count and received >= count:
                            break
                finally:
                    offline_watch.cancel()
        finally:
            await consumer.aclose()

        if consumer.state is ConnectionState.GAVE_UP:
            click.secho(
                f"Gave up after {consumer.reconnect_attempts} reconnect attempts",
                fg="red",
                err=True,
            )
            return -1
    return received


async def _unmount_when_offline(consumer: StreamConsumer, feed: LiveFeed, interval: float = 0.5):
    """End the feed once the consumer stops retrying."""
    while feed.mounted:
        await asyncio.sleep(interval)
        if consumer.state is ConnectionState.GAVE_UP:
            feed.unmount()
            return


# ---------------------------------------------------------------------------
# mealwatch publish
# ---------------------------------------------------------------------------


@main.command()
@click.argument("school_id")
@click.argument("event_type")
@click.option("--data", "-d", default=None, help="JSON payload")
@click.option("--redis-url", default=None, help="Redis URL (default: MEALWATCH_REDIS_URL)")
def publish(school_id: str, event_type: str, data: Optional[str], redis_url: Optional[str]):
    """Publish one event through the Redis relay.

    Every server process listening on the relay forwards it to its
    connected clients.
    """
    payload = _parse_data(data)
    url = redis_url or settings.redis_url
    if not url:
        click.secho(
            "Error: --redis-url required (or set MEALWATCH_REDIS_URL)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    _run(_publish_impl(url, school_id, event_type, payload))
    click.secho(f"Published {event_type} for {school_id}", fg="green")


async def _publish_impl(url: str, school_id: str, event_type: str, payload: Any):
    redis = connect_redis(url)
    try:
        await RedisRelay(redis).publish(school_id, event_type, payload)
    finally:
        await redis.aclose()


# ---------------------------------------------------------------------------
# mealwatch status
# ---------------------------------------------------------------------------


@main.command()
@click.option("--api-url", default=None, help="API base URL (default: MEALWATCH_API_URL)")
def status(api_url: Optional[str]):
    """Show server health and the number of open event streams."""
    health = _run(_status_impl(api_url or settings.api_url))
    color = "green" if health.get("status") == "healthy" else "yellow"
    click.secho(f"Status:       {health.get('status')}", fg=color, bold=True)
    click.echo(f"  Version:    {health.get('version')}")
    click.echo(f"  Uptime:     {health.get('uptime')}s")
    click.echo(f"  Streams:    {health.get('sse_connections')}")
    click.echo(f"  Relay:      {health.get('relay')}")


async def _status_impl(api_url: str) -> dict:
    async with _client() as c:
        r = await c.get(f"{api_url.rstrip('/')}/api/health")
        r.raise_for_status()
        return r.json()


# ---------------------------------------------------------------------------
# mealwatch serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: MEALWATCH_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: MEALWATCH_PORT)")
def serve(host: Optional[str], port: Optional[int]):
    """Run the API server with uvicorn."""
    import uvicorn

    uvicorn.run(
        "mealwatch.main:app",
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
