"""
promptp2p/nodes/common.py

Pieces shared by the service node runners (gateway, auth, processor):
command line options, transport settings and the serve loop.
"""

import logging
from typing import Optional, Sequence

import click
import trio

from promptp2p.config import ServiceConfig, TransportConfig

logger = logging.getLogger("promptp2p.nodes.common")

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def service_options(command):
    """Options every service node accepts."""
    options = [
        click.option("--port", type=int, default=None, help="libp2p listen port"),
        click.option("--bootstrap", multiple=True, help="Bootstrap/rendezvous peer multiaddr (repeatable)"),
        click.option("--rendezvous-server", is_flag=True, default=False, help="Serve rendezvous on this node"),
        click.option("--metrics-port", type=int, default=None, help="Port for GET /metrics"),
        click.option("--no-metrics", is_flag=True, default=False, help="Do not start the metrics server"),
        click.option(
            "--log-level",
            type=click.Choice(LOG_LEVELS, case_sensitive=False),
            default=None,
            help="Overrides PROMPTP2P_LOG_LEVEL",
        ),
    ]
    for option in reversed(options):
        command = option(command)
    return command


def apply_log_level(log_level: Optional[str]) -> None:
    if log_level:
        logging.getLogger().setLevel(log_level.upper())


def transport_config_from_options(
    port: Optional[int],
    bootstrap: Sequence[str],
    rendezvous_server: bool,
) -> TransportConfig:
    """Environment transport settings with command line overrides."""
    config = TransportConfig.from_env()
    if port is not None:
        config.listen_port = port
    if bootstrap:
        config.bootstrap_peers = list(bootstrap)
    if rendezvous_server:
        config.rendezvous_is_server = True
    return config


def apply_metrics_options(config: ServiceConfig, metrics_port: Optional[int], no_metrics: bool) -> None:
    if metrics_port is not None:
        config.metrics_port = metrics_port
    if no_metrics:
        config.enable_metrics_server = False


async def serve_worker(transport, worker) -> None:
    """Run the transport, the metrics server and the worker until cancelled."""
    name = worker.config.service_name

    def on_complete(err):
        if err is not None:
            logger.error(f"Failed to start {name} worker: {type(err).__name__}: {err}")
        else:
            logger.info(f"{name} ready, PeerID: {transport.peer_id}")

    try:
        async with trio.open_nursery() as nursery:
            await nursery.start(transport.run_forever)

            if worker.metrics_server is not None:
                await nursery.start(worker.metrics_server.run)

            if not await worker.start(on_complete=on_complete):
                nursery.cancel_scope.cancel()
    finally:
        with trio.CancelScope(shield=True):
            await worker.stop()
