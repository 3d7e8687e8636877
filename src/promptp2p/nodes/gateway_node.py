"""
promptp2p/nodes/gateway_node.py

Gateway node.
Run with: python -m promptp2p.nodes.gateway_node [--port 24700] [--bootstrap MULTIADDR]

Environment (command line options take precedence):
    PROMPTP2P_LISTEN_PORT, PROMPTP2P_BOOTSTRAP_PEERS, PROMPTP2P_METRICS_PORT,
    JWT_SECRET, MAX_REQUESTS_PER_INTERVAL, RESET_INTERVAL_MINUTE,
    PROMPTP2P_LOG_LEVEL
"""

import logging
import sys

import click
import trio

from promptp2p.config import GatewayConfig, TransportConfig, get_log_level
from promptp2p.nodes.common import (
    apply_log_level,
    apply_metrics_options,
    serve_worker,
    service_options,
    transport_config_from_options,
)

logging.basicConfig(
    level=get_log_level(),
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger("promptp2p.nodes.gateway_node")


async def main(transport_config: TransportConfig, gateway_config: GatewayConfig):
    """Run the gateway until interrupted."""
    from promptp2p.gateway import GatewayWorker
    from promptp2p.transport import Libp2pTransport

    transport = Libp2pTransport(transport_config)
    await serve_worker(transport, GatewayWorker(transport, config=gateway_config))


@click.command()
@service_options
def run(port, bootstrap, rendezvous_server, metrics_port, no_metrics, log_level):
    """Run the promptp2p gateway node."""
    apply_log_level(log_level)

    transport_config = transport_config_from_options(port, bootstrap, rendezvous_server)
    gateway_config = GatewayConfig.from_env()
    apply_metrics_options(gateway_config, metrics_port, no_metrics)

    try:
        trio.run(main, transport_config, gateway_config)
    except trio.TrioInternalError as e:
        # py-libp2p async generator cleanup can surface here on shutdown
        logger.warning(f"Trio cleanup error (non-critical): {e}")
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("Gateway node stopped")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Gateway node error: {type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
