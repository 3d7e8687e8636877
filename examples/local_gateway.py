"""
promptp2p/examples/local_gateway.py

Runs a gateway, the auth service, a processor and a client in one process
on the in-memory overlay. The processor uses a stand-in generator so no
Ollama server is needed.

This shows how:
1. Services announce their topics and the gateway discovers them
2. A client registers, logs in and sends prompts with its session key
3. A crashed but still announced gateway is skipped by the client
4. Failures are classified into user-facing hints

Usage:
    python examples/local_gateway.py
"""

import logging

import trio

from promptp2p import (
    AuthConfig,
    AuthWorker,
    ClientWorker,
    GatewayConfig,
    GatewayWorker,
    MemoryOverlay,
    MemoryTransport,
    ProcessorConfig,
    ProcessorWorker,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger("local_gateway")

JWT_SECRET = "local-example-secret-that-is-long-enough"


class ShoutingGenerator:
    """Answers every prompt in upper case after a short delay."""

    async def generate(self, prompt: str) -> str:
        await trio.sleep(0.05)
        return prompt.upper()


async def main():
    overlay = MemoryOverlay()

    auth = AuthWorker(
        MemoryTransport(overlay, peer_id="auth-1"),
        config=AuthConfig(jwt_secret=JWT_SECRET, enable_metrics_server=False),
    )
    await auth.start()

    processor = ProcessorWorker(
        MemoryTransport(overlay, peer_id="processor-1"),
        ShoutingGenerator(),
        config=ProcessorConfig(enable_metrics_server=False),
    )
    await processor.start()

    config = GatewayConfig(jwt_secret=JWT_SECRET, enable_metrics_server=False)

    # An announced gateway that is no longer reachable
    stale = GatewayWorker(MemoryTransport(overlay, peer_id="gateway-stale"), config=config)
    await stale.start()
    overlay.drop_peer("gateway-stale")

    gateway = GatewayWorker(MemoryTransport(overlay, peer_id="gateway-1"), config=config)
    await gateway.start(on_complete=lambda err: logger.info(f"Gateway started, error={err}"))

    client = ClientWorker(MemoryTransport(overlay, peer_id="client-1"))
    await client.start()

    print(await client.register_user("alice@example.com", "secret"))
    login = await client.login_user("alice@example.com", "secret")
    print(f"Login success={login['success']} rateLimit={login.get('rateLimitInfo')}")

    for prompt in ("hello overlay", "how stale is my gateway?"):
        result = await client.send_request(prompt)
        print(f"{prompt!r} -> {result.get('response')} (remaining {result['rateLimitInfo']['remainingRequests']})")

    print(await client.verify_session())

    await gateway.stop()
    try:
        await client.send_request("anyone there?")
    except Exception as e:
        print(f"Request failed: {e}")
        print(f"Hint: {client.last_hint}")

    print(gateway.metrics.collect())
    print(auth.metrics.collect())


if __name__ == "__main__":
    trio.run(main)
