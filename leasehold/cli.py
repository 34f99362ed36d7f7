"""CLI entrypoint for Leasehold."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import click

from leasehold.core.exceptions import ConfigError
from leasehold.core.models import LogLevel, ProgressSnapshot

_LEVEL_COLORS = {
    LogLevel.ACTION: "cyan",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red",
    LogLevel.CRITICAL: "red",
}


def _setup_logging(verbose: bool = False, config_dir: Optional[Path] = None) -> None:
    """Apply logging configuration from config/default.yaml."""
    from leasehold.core.config import load_config

    try:
        config = load_config(config_dir=config_dir)
        level_name = config.logging.level
        fmt = config.logging.format
    except ConfigError:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option(
    "--config-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory holding default.yaml and resources.yaml.",
)
@click.option("--env", default=None, help="Config overlay name, e.g. 'production' loads production.yaml.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: Optional[Path], env: Optional[str]) -> None:
    """Leasehold command line interface."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_dir"] = config_dir
    ctx.obj["env"] = env
    _setup_logging(verbose=verbose, config_dir=config_dir)


@cli.command("run")
@click.option("--target", "target_count", type=click.IntRange(min=1), required=True, help="Units to produce.")
@click.option("--concurrency", type=int, default=None, help="Concurrent workers (clamped to 1..10).")
@click.option("--hidden", is_flag=True, default=False, help="Provision contexts without a visible window.")
@click.option("--stages", "stages_spec", required=True, help="Stage factory as 'package.module:factory'.")
@click.option("--param", "raw_params", multiple=True, help="key=value passed to every stage. Repeatable.")
@click.option(
    "--out",
    "out_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write completed-unit records to this JSON file.",
)
@click.pass_context
def run(
    ctx: click.Context,
    target_count: int,
    concurrency: Optional[int],
    hidden: bool,
    stages_spec: str,
    raw_params: tuple[str, ...],
    out_path: Optional[Path],
) -> None:
    """Run a session until every slot succeeds, fails, or Ctrl+C stops it."""
    from leasehold.core.factory import ComponentFactory

    params = _parse_params(raw_params)
    try:
        bundle = ComponentFactory.create(
            config_dir=ctx.obj["config_dir"],
            env=ctx.obj["env"],
            stages_spec=stages_spec,
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    snapshot = asyncio.run(
        _run_session(bundle, target_count, concurrency, hidden, params)
    )

    click.echo()
    click.echo(click.style("Session summary", bold=True))
    click.echo(f"  Succeeded: {snapshot.success_count}/{snapshot.target_count}")
    click.echo(f"  Failed:    {snapshot.failed_count}")
    click.echo(f"  Rotations: {snapshot.rotation_count}")
    if snapshot.cancel_requested:
        click.echo(click.style("  Stopped before completion.", fg="yellow"))

    if out_path is not None:
        records = [r.model_dump(mode="json") for r in snapshot.completed_units]
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(records, indent=2), encoding="utf-8")
        click.echo(f"Wrote {len(records)} record(s) to {out_path}")

    if snapshot.success_count < snapshot.target_count and not snapshot.cancel_requested:
        ctx.exit(1)


@cli.command("resources")
@click.pass_context
def resources(ctx: click.Context) -> None:
    """List the configured resource pool."""
    from leasehold.core.config import load_resource_pool

    try:
        pool = load_resource_pool(ctx.obj["config_dir"])
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if not pool:
        click.echo("No resources configured - sessions will run with one direct resource.")
        return
    for i, resource in enumerate(pool):
        rotate = "rotatable" if resource.can_rotate else "static"
        click.echo(f"  #{i + 1:<3} {resource.label:<30} {resource.protocol:<6} {rotate}")


@cli.command("config-show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the effective configuration as JSON (API key masked)."""
    from leasehold.core.config import load_config

    try:
        config = load_config(config_dir=ctx.obj["config_dir"], env=ctx.obj["env"])
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    payload = config.model_dump(mode="json")
    if payload["provisioning"].get("api_key"):
        payload["provisioning"]["api_key"] = "***"
    _echo_json(payload)


async def _run_session(
    bundle: Any,
    target_count: int,
    concurrency: Optional[int],
    hidden: bool,
    params: dict[str, Any],
) -> ProgressSnapshot:
    from leasehold.core.factory import ComponentFactory

    controller = bundle.controller
    if concurrency is not None:
        controller.set_concurrency(concurrency)
    controller.set_visible(not hidden)
    unsubscribe = controller.subscribe(_ProgressPrinter())

    loop = asyncio.get_running_loop()
    signal_installed = _install_stop_handler(loop, controller)
    try:
        ack = await controller.start(target_count, params)
        if not ack.accepted:
            raise click.ClickException(ack.message)
        click.echo(ack.message)
        return await controller.wait()
    finally:
        unsubscribe()
        if signal_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await ComponentFactory.close(bundle)


def _install_stop_handler(loop: asyncio.AbstractEventLoop, controller: Any) -> bool:
    """Route Ctrl+C to a cooperative stop. Returns False where signals are unsupported."""
    try:
        loop.add_signal_handler(signal.SIGINT, controller.stop)
    except (NotImplementedError, RuntimeError):
        logging.getLogger("leasehold.cli").debug("SIGINT handler unavailable; Ctrl+C will abort")
        return False
    return True


class _ProgressPrinter:
    """Echo the newest log line of every pushed snapshot."""

    def __init__(self):
        self._last_seen: Optional[tuple] = None

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        if not snapshot.logs:
            return
        entry = snapshot.logs[-1]
        key = (entry.timestamp, entry.message)
        if key == self._last_seen:
            return
        self._last_seen = key
        stamp = entry.timestamp.strftime("%H:%M:%S")
        counts = f"{snapshot.success_count}/{snapshot.target_count}"
        line = f"[{stamp}] ({counts}) {entry.message}"
        click.echo(click.style(line, fg=_LEVEL_COLORS.get(entry.level)))


def _parse_params(raw: tuple[str, ...]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got '{item}'", param_hint="--param")
        params[key] = value.strip()
    return params


def _echo_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


def main() -> None:
    """Entry point used by the `leasehold` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path.cwd() / ".env")
    cli()


if __name__ == "__main__":
    main()
