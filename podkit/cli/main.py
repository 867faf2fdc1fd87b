"""podkit CLI: ``podkit logs`` and ``podkit forward``.

Option defaults come from the PODKIT_* environment (see podkit.config);
flags given on the command line override them.
"""

from __future__ import annotations

import asyncio
import dataclasses
import signal
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import click

from podkit.cluster.base import PodAPI
from podkit.cluster.kubeconfig import connect_pod_api
from podkit.config import load_config
from podkit.errors import ConfigError, PodkitError
from podkit.forward import ForwardHandle, ForwardSession, forward, forward_with_reconnect
from podkit.models.config import PodkitConfig
from podkit.models.forward import PortPair
from podkit.models.logs import LogEntry
from podkit.observability.logging import get_logger, setup_logging
from podkit.stream import PodStreamer


def _run(body: Callable[[asyncio.Event], Awaitable[None]]) -> None:
    """Run *body* on a fresh loop; SIGINT and SIGTERM set its stop event."""

    async def _main() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        signals = (signal.SIGTERM, signal.SIGINT)
        for sig in signals:
            loop.add_signal_handler(sig, stop.set)
        try:
            await body(stop)
        finally:
            for sig in signals:
                loop.remove_signal_handler(sig)

    try:
        asyncio.run(_main())
    except PodkitError as exc:
        raise click.ClickException(str(exc)) from exc


async def _with_api(config: PodkitConfig, fn: Callable[[PodAPI], Awaitable[None]]) -> None:
    api = await connect_pod_api(config.kube)
    try:
        await fn(api)
    finally:
        await api.close()


def _format_entry(entry: LogEntry, timestamps: bool) -> str:
    prefix = f"[{entry.pod}] " if entry.pod else ""
    if timestamps:
        return f"{entry.time.isoformat()} {prefix}{entry.text}"
    return f"{prefix}{entry.text}"


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


@click.group()
@click.option("--kubeconfig", default=None, help="Path to a kubeconfig file.")
@click.option("--context", default=None, help="Kubeconfig context to use.")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Diagnostic log level (written to stderr).",
)
@click.pass_context
def cli(ctx: click.Context, kubeconfig: str | None, context: str | None, log_level: str | None) -> None:
    """Stream pod logs and forward pod ports."""
    try:
        config = load_config()
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc
    config.kube = dataclasses.replace(
        config.kube,
        kubeconfig_path=kubeconfig or config.kube.kubeconfig_path,
        context=context or config.kube.context,
    )
    if log_level:
        config.log = dataclasses.replace(config.log, level=log_level.lower())
    setup_logging(config.log.level)
    ctx.obj = config


# ---------------------------------------------------------------------------
# logs
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--namespace", "-n", default=None, help="Namespace of the pods.")
@click.option("--selector", "-l", default=None, help="Label selector, e.g. app=web.")
@click.option("--container", "-c", default=None, help="Container name for multi-container pods.")
@click.option("--follow", "-f", is_flag=True, help="Keep streaming and pick up new pods.")
@click.option("--keyword", "-k", default=None, help="Only show lines matching this regular expression.")
@click.option("--flush-interval", type=float, default=None, help="Seconds between sorted batches.")
@click.option("--timestamps/--no-timestamps", default=False, help="Prefix each line with its timestamp.")
@click.pass_obj
def logs(
    config: PodkitConfig,
    namespace: str | None,
    selector: str | None,
    container: str | None,
    follow: bool,
    keyword: str | None,
    flush_interval: float | None,
    timestamps: bool,
) -> None:
    """Aggregate the logs of every pod matching a selector, ordered by time."""

    def echo(entries: Sequence[LogEntry]) -> None:
        for entry in entries:
            click.echo(_format_entry(entry, timestamps))

    overrides: dict[str, Any] = {
        "namespace": namespace,
        "label_selector": selector,
        "container": container,
        "follow": follow or None,
        "log_filter_pattern": keyword,
        "flush_interval": flush_interval,
    }
    stream_config = dataclasses.replace(
        config.stream,
        **{key: value for key, value in overrides.items() if value is not None},
        consumers=[*config.stream.consumers, echo],
    )
    try:
        stream_config.validate()
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc

    async def body(stop: asyncio.Event) -> None:
        async def run(api: PodAPI) -> None:
            await PodStreamer(api, stream_config).run(stop)

        await _with_api(config, run)

    _run(body)


# ---------------------------------------------------------------------------
# forward
# ---------------------------------------------------------------------------


def _parse_ports(ctx: click.Context, param: click.Parameter, value: tuple[str, ...]) -> list[PortPair]:
    try:
        return [PortPair.parse(raw) for raw in value]
    except ConfigError as exc:
        raise click.BadParameter(str(exc), ctx=ctx, param=param) from exc


@cli.command(name="forward")
@click.option("--namespace", "-n", default=None, help="Namespace of the pods.")
@click.option("--selector", "-l", default=None, help="Label selector of the target pods.")
@click.option("--service", "-s", default=None, help="Forward to a pod selected by this service.")
@click.option(
    "--port",
    "-p",
    "ports",
    multiple=True,
    required=True,
    callback=_parse_ports,
    help="Port pair [local:]remote; repeatable.",
)
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the tunnel to be ready.")
@click.option("--backoff", type=float, default=None, help="Seconds between reconnect attempts.")
@click.option("--no-reconnect", is_flag=True, help="Exit when the tunnel fails instead of replacing it.")
@click.pass_obj
def forward_cmd(
    config: PodkitConfig,
    namespace: str | None,
    selector: str | None,
    service: str | None,
    ports: list[PortPair],
    timeout: float | None,
    backoff: float | None,
    no_reconnect: bool,
) -> None:
    """Forward local ports to the first ready pod matching a selector."""
    if selector and service:
        raise click.UsageError("--selector and --service are mutually exclusive")
    overrides: dict[str, Any] = {
        "namespace": namespace,
        "label_selector": selector,
        "timeout": timeout,
        "backoff_interval": backoff,
        "reconnect": False if no_reconnect else None,
    }
    forward_config = dataclasses.replace(
        config.forward,
        **{key: value for key, value in overrides.items() if value is not None},
        ports=ports,
    )
    log = get_logger("cli.forward")

    async def body(stop: asyncio.Event) -> None:
        async def run(api: PodAPI) -> None:
            cfg = forward_config
            if service:
                cfg = dataclasses.replace(cfg, label_selector=await api.service_selector(cfg.namespace, service))
            handle: ForwardHandle
            if cfg.reconnect:
                handle = await forward_with_reconnect(api, cfg, logger=log)
            else:
                handle = await forward(api, cfg, logger=log)
            for pair in cfg.ports:
                click.echo(f"Forwarding from 127.0.0.1:{handle.local_port(pair.remote)} -> {pair.remote}")
            if isinstance(handle, ForwardSession):
                click.echo(f"Connected to pod {handle.pod.name}")
            await _serve(handle, stop)

        await _with_api(config, run)

    _run(body)


async def _serve(handle: ForwardHandle, stop: asyncio.Event) -> None:
    stopped = asyncio.ensure_future(stop.wait())
    finished = asyncio.ensure_future(handle.wait())
    try:
        await asyncio.wait({stopped, finished}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopped.cancel()
        await handle.stop()
    err = await finished
    if err is not None:
        raise PodkitError(f"port forward terminated: {err}")
