"""
promptp2p/nodes/processor_node.py

Processor service node. Prompts are answered by an Ollama server.
Run with: python -m promptp2p.nodes.processor_node [--ollama-url URL] [--model NAME]

Environment (command line options take precedence):
    PROMPTP2P_LISTEN_PORT, PROMPTP2P_BOOTSTRAP_PEERS, PROMPTP2P_METRICS_PORT,
    OLLAMA_URL, OLLAMA_MODEL, PROMPTP2P_GENERATE_TIMEOUT, PROMPTP2P_LOG_LEVEL
"""

import logging
import sys

import click
import httpx
import trio

from promptp2p.config import ProcessorConfig, TransportConfig, get_log_level
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
logger = logging.getLogger("promptp2p.nodes.processor_node")


async def main(transport_config: TransportConfig, processor_config: ProcessorConfig):
    from promptp2p.services import OllamaGenerator, ProcessorWorker
    from promptp2p.transport import Libp2pTransport

    transport = Libp2pTransport(transport_config)
    async with httpx.AsyncClient() as http_client:
        generator = OllamaGenerator(
            http_client,
            processor_config.ollama_url,
            processor_config.model,
            timeout=processor_config.generate_timeout,
        )
        await serve_worker(transport, ProcessorWorker(transport, generator, config=processor_config))


@click.command()
@service_options
@click.option("--ollama-url", default=None, help="Ollama server URL")
@click.option("--model", default=None, help="Model name passed to Ollama")
def run(port, bootstrap, rendezvous_server, metrics_port, no_metrics, log_level, ollama_url, model):
    """Run the promptp2p processor node."""
    apply_log_level(log_level)

    transport_config = transport_config_from_options(port, bootstrap, rendezvous_server)
    processor_config = ProcessorConfig.from_env()
    apply_metrics_options(processor_config, metrics_port, no_metrics)
    if ollama_url:
        processor_config.ollama_url = ollama_url
    if model:
        processor_config.model = model

    try:
        trio.run(main, transport_config, processor_config)
    except trio.TrioInternalError as e:
        logger.warning(f"Trio cleanup error (non-critical): {e}")
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("Processor node stopped")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Processor node error: {type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
