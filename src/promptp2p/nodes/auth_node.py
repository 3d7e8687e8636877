"""
promptp2p/nodes/auth_node.py

Auth service node (register, login).
Run with: python -m promptp2p.nodes.auth_node [--port 24701] [--bootstrap MULTIADDR]

Environment (command line options take precedence):
    PROMPTP2P_LISTEN_PORT, PROMPTP2P_BOOTSTRAP_PEERS, PROMPTP2P_METRICS_PORT,
    JWT_SECRET, PROMPTP2P_TOKEN_TTL, PROMPTP2P_LOG_LEVEL

JWT_SECRET must be the same value the gateway uses.
"""

import logging
import sys

import click
import trio

from promptp2p.config import AuthConfig, TransportConfig, get_log_level
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
logger = logging.getLogger("promptp2p.nodes.auth_node")


async def main(transport_config: TransportConfig, auth_config: AuthConfig):
    from promptp2p.services import AuthWorker
    from promptp2p.transport import Libp2pTransport

    transport = Libp2pTransport(transport_config)
    await serve_worker(transport, AuthWorker(transport, config=auth_config))


@click.command()
@service_options
def run(port, bootstrap, rendezvous_server, metrics_port, no_metrics, log_level):
    """Run the promptp2p auth service node."""
    apply_log_level(log_level)

    transport_config = transport_config_from_options(port, bootstrap, rendezvous_server)
    auth_config = AuthConfig.from_env()
    apply_metrics_options(auth_config, metrics_port, no_metrics)

    try:
        trio.run(main, transport_config, auth_config)
    except trio.TrioInternalError as e:
        logger.warning(f"Trio cleanup error (non-critical): {e}")
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("Auth node stopped")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Auth node error: {type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
