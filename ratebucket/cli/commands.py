"""CLI commands for ratebucket."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ratebucket import __logo__, __version__

app = typer.Typer(
    name="ratebucket",
    help=f"{__logo__} ratebucket - token-bucket rate limiting",
    no_args_is_help=True,
)

console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help="Path to config.json")


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} ratebucket v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """ratebucket - token-bucket rate limiting."""
    pass


def _load(config_path: Path | None):
    from ratebucket.config.loader import load_config
    from ratebucket.core.logger import configure_logger

    config = load_config(config_path)
    configure_logger(config)
    return config


def _open_redis(url: str):
    import redis.asyncio as redis

    return redis.from_url(url)


def _format_ms(value: float) -> str:
    return "never" if value == float("inf") else f"{value:g}ms"


@app.command("config")
def show_config(config_path: Path | None = ConfigOption):
    """Show the effective configuration."""
    from ratebucket.config.loader import get_config_path

    config = _load(config_path)
    path = config_path or get_config_path()
    console.print(f"Config: {path} {'[green]OK[/green]' if path.exists() else '[dim]defaults[/dim]'}")

    table = Table(title="Bucket limits")
    table.add_column("Identifier", style="cyan")
    table.add_column("Capacity", justify="right")
    table.add_column("Refill/s", justify="right")
    default = config.registry.default
    table.add_row("(default)", f"{default.capacity:g}", f"{default.refill_rate:g}")
    for identifier, limits in sorted(config.registry.overrides.items()):
        table.add_row(identifier, f"{limits.capacity:g}", f"{limits.refill_rate:g}")
    console.print(table)

    ttl = config.registry.ttl_ms
    console.print(f"Registry TTL: {f'{ttl:g}ms' if ttl else '[dim]none[/dim]'}")
    if config.redis.enabled:
        console.print(
            f"Redis: [green]{config.redis.url}[/green] prefix={config.redis.prefix} "
            f"ttl={config.redis.ttl_seconds}s"
        )
    else:
        console.print("Redis: [dim]disabled[/dim]")


@app.command()
def simulate(
    capacity: float = typer.Option(10, "--capacity", help="Bucket capacity (burst size)"),
    refill_rate: float = typer.Option(5, "--refill-rate", help="Tokens added per second"),
    requests: int = typer.Option(20, "--requests", "-n", min=1, help="Number of requests"),
    interval_ms: float = typer.Option(100, "--interval-ms", min=0, help="Gap between requests"),
    cost: float = typer.Option(1, "--cost", help="Tokens spent per request"),
):
    """Replay a steady request stream against a local bucket on a simulated clock."""
    from ratebucket.core.bucket import TokenBucket
    from ratebucket.core.clock import ManualClock
    from ratebucket.core.errors import BucketConfigError

    clock = ManualClock()
    try:
        bucket = TokenBucket(capacity, refill_rate, clock=clock)
    except BucketConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"capacity={capacity:g} refill={refill_rate:g}/s cost={cost:g}")
    table.add_column("t (ms)", justify="right")
    table.add_column("Result")
    table.add_column("Tokens", justify="right")
    table.add_column("Retry in", justify="right")

    for i in range(requests):
        clock.set(i * interval_ms)
        allowed = bucket.allow(cost)
        state = bucket.get_state()
        retry = "" if allowed else _format_ms(bucket.time_to_refill(cost))
        result = "[green]allowed[/green]" if allowed else "[red]limited[/red]"
        table.add_row(f"{clock.now:g}", result, f"{state.tokens:g}", retry)

    console.print(table)
    metrics = bucket.get_metrics()
    console.print(
        f"Total: {metrics.total_requests}  Allowed: {metrics.allowed}  Limited: {metrics.limited}"
    )


def _require_redis(config) -> None:
    if not config.redis.enabled:
        console.print("[yellow]Redis is disabled in the configuration (redis.enabled = false).[/yellow]")
        raise typer.Exit(1)


async def _with_remote_bucket(config, key: str, action):
    from ratebucket.registry.builder import build_bucket_factory

    client = _open_redis(config.redis.url)
    try:
        bucket = build_bucket_factory(config, redis=client)(key)
        return await action(bucket)
    finally:
        await client.aclose()


@app.command()
def inspect(
    key: str = typer.Argument(..., help="Bucket identifier"),
    config_path: Path | None = ConfigOption,
):
    """Show the state of a Redis-backed bucket."""
    from redis.exceptions import RedisError

    from ratebucket.core.errors import StoreError

    config = _load(config_path)
    _require_redis(config)

    async def _inspect(bucket):
        # Running the script would write the key, so look before reading.
        try:
            stored = await bucket.redis.exists(bucket.key)
        except RedisError as e:
            raise StoreError(f"Failed to read {bucket.key}: {e}", key=bucket.key) from e
        if not stored:
            return bucket.key, None, None
        return bucket.key, await bucket.get_state(), await bucket.time_to_refill(1)

    try:
        full_key, state, wait = asyncio.run(_with_remote_bucket(config, key, _inspect))
    except StoreError as e:
        console.print(f"[red]Store error: {e}[/red]")
        raise typer.Exit(1)

    if state is None:
        console.print(f"[dim]{full_key} has no stored state; it starts full on first use.[/dim]")
        return

    table = Table(title=full_key)
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("tokens", f"{state.tokens:g}")
    table.add_row("capacity", f"{state.capacity:g}")
    table.add_row("refill_rate", f"{state.refill_rate:g}")
    table.add_row("last_refill", f"{state.last_refill:.0f}")
    table.add_row("next token", _format_ms(wait))
    console.print(table)


@app.command()
def reset(
    key: str = typer.Argument(..., help="Bucket identifier"),
    config_path: Path | None = ConfigOption,
):
    """Delete a Redis-backed bucket so it starts full again."""
    from ratebucket.core.errors import StoreError

    config = _load(config_path)
    _require_redis(config)

    async def _reset(bucket):
        await bucket.reset()
        return bucket.key

    try:
        full_key = asyncio.run(_with_remote_bucket(config, key, _reset))
    except StoreError as e:
        console.print(f"[red]Store error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Reset {full_key}")
