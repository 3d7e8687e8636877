"""
promptp2p/nodes/client_node.py

Interactive command line client.
Run with: python -m promptp2p.nodes.client_node [--bootstrap MULTIADDR] [--verbose]

Anything typed that is not a command is sent to the gateway as a prompt.
"""

import logging
import sys
from typing import Callable

import click
import trio

from promptp2p.config import ClientConfig, TransportConfig, get_log_level

logging.basicConfig(
    level=get_log_level("WARNING"),
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger("promptp2p.nodes.client_node")

HELP_TEXT = """Available commands:
  register <email> <password>  - Create a new account
  login <email> <password>     - Login to your account
  logout                       - Logout from current session
  settoken <token>             - Set API token manually
  gettoken                     - Get current API token
  cleartoken                   - Clear current API token
  status                       - Show authentication status
  verify                       - Ask the gateway whether the session is valid
  help                         - Show this help message
  exit                         - Exit the CLI

Anything else is sent to the gateway as a prompt."""


def mask_token(token: str) -> str:
    """Show the first and last 8 characters of a token."""
    hidden = "*" * max(0, len(token) - 16)
    return f"{token[:8]}{hidden}{token[max(8, len(token) - 8):]}"


async def handle_command(worker, line: str, out: Callable[[str], None] = print) -> bool:
    """
    Execute one line of input.

    Returns:
        False when the user asked to exit, True otherwise
    """
    line = line.strip()
    if not line:
        return True

    # A hint belongs to the command that produced it
    worker.last_hint = None

    parts = line.split()
    command = parts[0].lower()

    if command == "exit":
        return False

    if command in ("help", "?"):
        out(HELP_TEXT)

    elif command in ("register", "login"):
        if len(parts) != 3:
            out(f"Usage: {command} <email> <password>")
            return True
        _, email, password = parts
        if command == "register":
            result = await worker.register_user(email, password)
        else:
            result = await worker.login_user(email, password)

        if isinstance(result, dict) and result.get("success"):
            out(f"{command.capitalize()} succeeded: {result.get('message') or result.get('email')}")
        else:
            message = result.get("message") if isinstance(result, dict) else result
            out(f"{command.capitalize()} failed: {message}")

    elif command == "logout":
        out(worker.logout()["message"])

    elif command == "settoken":
        if len(parts) != 2:
            out("Usage: settoken <your-api-token>")
            return True
        result = worker.set_api_token(parts[1])
        out(result["message"])
        if result["success"]:
            out(f"Token: {mask_token(parts[1])}")

    elif command == "gettoken":
        result = worker.get_api_token()
        out(f"Token: {result['token']}" if result["success"] else result["message"])

    elif command == "cleartoken":
        worker.session.clear()
        out("API token cleared")

    elif command == "status":
        if worker.session_key:
            out(f"Authentication status: LOGGED IN (token {mask_token(worker.session_key)})")
        else:
            out("Authentication status: NOT LOGGED IN")

    elif command == "verify":
        result = await worker.verify_session()
        state = "VALID" if result.get("valid") else "INVALID"
        out(f"Session {state}: {result.get('message', '')}")

    else:
        result = await worker.send_request(line)
        if isinstance(result, dict) and result.get("response"):
            out(result["response"])
        elif isinstance(result, dict) and result.get("error"):
            out(f"Error: {result.get('message')}")
        else:
            out(str(result))

    return True


async def command_loop(worker) -> None:
    """Read commands from stdin until exit or EOF."""
    print(HELP_TEXT)
    while True:
        line = await trio.to_thread.run_sync(sys.stdin.readline)
        if not line:
            break
        try:
            if not await handle_command(worker, line):
                break
        except Exception as e:
            logger.error(f"Command failed: {type(e).__name__}: {e}")
            print(f"Request failed: {e}")
            if worker.last_hint:
                print(f"Hint: {worker.last_hint}")


async def main(transport_config: TransportConfig, client_config: ClientConfig):
    from promptp2p.client import ClientWorker
    from promptp2p.transport import Libp2pTransport

    transport = Libp2pTransport(transport_config)
    worker = ClientWorker(transport, config=client_config)

    try:
        async with trio.open_nursery() as nursery:
            await nursery.start(transport.run_forever)
            await worker.start()
            await command_loop(worker)
            nursery.cancel_scope.cancel()
    finally:
        with trio.CancelScope(shield=True):
            await worker.stop()
            await transport.stop()


@click.command()
@click.option("--bootstrap", multiple=True, help="Bootstrap/rendezvous peer multiaddr (repeatable)")
@click.option("--gateway-topic", default=None, help="Topic the gateway announces")
@click.option("--verbose", is_flag=True, default=False, help="Log at INFO level")
def run(bootstrap, gateway_topic, verbose):
    """Interactive promptp2p client."""
    if verbose:
        logging.getLogger().setLevel(logging.INFO)

    transport_config = TransportConfig.from_env()
    # Clients only dial out
    transport_config.listen_port = 0
    if bootstrap:
        transport_config.bootstrap_peers = list(bootstrap)

    client_config = ClientConfig.from_env()
    if gateway_topic:
        client_config.gateway_topic = gateway_topic

    try:
        trio.run(main, transport_config, client_config)
    except trio.TrioInternalError as e:
        logger.warning(f"Trio cleanup error (non-critical): {e}")
        sys.exit(0)
    except KeyboardInterrupt:
        print("Exiting...")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Client node error: {type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
