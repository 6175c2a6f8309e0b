"""CLI for the transport.

Provides the `tls-transport` command with listen/send/gen-cert subcommands.
Received messages go to stdout as JSON lines; logs go to stderr.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

import yaml

from tls_transport.config import ConfigError, load_config
from tls_transport.sender import send
from tls_transport.server import DEFAULT_BIND, ServerController
from tls_transport.tls import (
    DEFAULT_CERT_DAYS,
    DEFAULT_CERT_DIR,
    DEFAULT_KEY_SIZE,
    generate_identity,
    generate_pair,
    mutual_tls_config,
)

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 30.0


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _add_common_args(parser: argparse.ArgumentParser):
    """Add arguments shared between listen and send."""
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="YAML config file (default: $TLS_TRANSPORT_CONFIG)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )


def _print_message(message):
    print(json.dumps({"address": message.address, "content": message.content}), flush=True)


def _handle_listen(argv):
    """Handle 'listen': accept messages until interrupted."""
    parser = argparse.ArgumentParser(
        prog="tls-transport listen",
        description="Listen for messages and print them as JSON lines",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    _add_common_args(parser)
    parser.add_argument("--host", "-b", help=f"Address to bind to (config or {DEFAULT_BIND})")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on (config or OS-assigned)")
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("%s", e.message)
        return 1

    options = dict(config.listen)
    if args.host:
        options["host"] = args.host
    if args.port is not None:
        options["port"] = args.port

    outcome = {}
    controller = ServerController(_print_message)
    controller.listen({
        **options,
        "ok": lambda bound: outcome.update(bound=bound),
        "fail": lambda error: outcome.update(error=error),
    })
    if "error" in outcome:
        logger.error("Failed to listen: %s", outcome["error"].message)
        return 1

    stop = threading.Event()

    def handle_stop(signum, frame):
        """Handle SIGINT/SIGTERM for graceful shutdown."""
        logger.info("Received signal %d", signum)
        stop.set()

    signal.signal(signal.SIGINT, handle_stop)
    signal.signal(signal.SIGTERM, handle_stop)

    bound = outcome["bound"]
    logger.info("Accepting messages on %s:%d (Ctrl+C to stop)", bound["host"], bound["port"])
    while not stop.wait(0.5):
        pass

    closed = threading.Event()
    controller.close(closed.set)
    closed.wait()
    return 0


def _handle_send(argv):
    """Handle 'send': deliver one message."""
    parser = argparse.ArgumentParser(
        prog="tls-transport send",
        description="Send one message to a listener",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    _add_common_args(parser)
    parser.add_argument("address", help="Destination, e.g. tcp://host:8888/#token")
    parser.add_argument("content", help="Message content (single line)")
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_SEND_TIMEOUT,
        help="Seconds to wait for the send to complete",
    )
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("%s", e.message)
        return 1

    outcome = {}
    done = threading.Event()

    def ok():
        outcome["ok"] = True
        done.set()

    def fail(error):
        outcome["error"] = error
        done.set()

    send({
        **config.send,
        "address": args.address,
        "content": args.content,
        "ok": ok,
        "fail": fail,
    })

    if not done.wait(args.timeout):
        logger.error("Timed out after %.1fs sending to %s", args.timeout, args.address)
        return 1
    if "error" in outcome:
        logger.error("Send failed: %s", outcome["error"])
        return 1

    logger.info("Sent to %s", args.address)
    return 0


def _identity_summary(identity) -> dict:
    return {
        "cert": str(identity.cert_path),
        "key": str(identity.key_path),
        "fingerprint": identity.fingerprint,
    }


def _handle_gen_cert(argv):
    """Handle 'gen-cert': create a self-signed identity or a mutual TLS pair."""
    parser = argparse.ArgumentParser(
        prog="tls-transport gen-cert",
        description="Generate self-signed certificates usable by listen and send",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--cert-dir", type=Path, default=DEFAULT_CERT_DIR, help="Output directory")
    parser.add_argument("--name", default="transport", help="Base file name (ignored with --pair)")
    parser.add_argument(
        "--pair",
        action="store_true",
        help="Write server and client identities and print a config trusting each other",
    )
    parser.add_argument("--hostname", help="Certificate CN (default: system hostname)")
    parser.add_argument("--days", type=int, default=DEFAULT_CERT_DAYS, help="Validity in days")
    parser.add_argument("--key-size", type=int, default=DEFAULT_KEY_SIZE, help="RSA key size")
    parser.add_argument("--force", action="store_true", help="Overwrite existing certificates")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    settings = {
        "cert_dir": args.cert_dir,
        "hostname": args.hostname,
        "days": args.days,
        "key_size": args.key_size,
        "force": args.force,
    }
    try:
        if args.pair:
            server_identity, client_identity = generate_pair(**settings)
        else:
            identity = generate_identity(name=args.name, **settings)
    except (OSError, ValueError) as e:
        logger.error("Failed to generate TLS cert: %s", e)
        return 1

    if args.pair:
        config = mutual_tls_config(server_identity, client_identity)
        if args.json:
            print(json.dumps({
                "server": _identity_summary(server_identity),
                "client": _identity_summary(client_identity),
                "config": config,
            }, indent=2))
        else:
            print(f"# server fingerprint (SHA256): {server_identity.fingerprint}")
            print(f"# client fingerprint (SHA256): {client_identity.fingerprint}")
            print(yaml.safe_dump(config, sort_keys=False), end="")
        return 0

    if args.json:
        print(json.dumps(_identity_summary(identity), indent=2))
    else:
        print(f"Certificate: {identity.cert_path}")
        print(f"Key: {identity.key_path}")
        print(f"Fingerprint (SHA256): {identity.fingerprint}")
    return 0


def main(argv=None):
    """CLI entry point.

    Dispatches to listen/send/gen-cert subcommands.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    subcommands = {
        "listen": _handle_listen,
        "send": _handle_send,
        "gen-cert": _handle_gen_cert,
    }

    if not argv or argv[0] in ("-h", "--help"):
        print("Usage: tls-transport <command> [options]")
        print()
        print("Commands:")
        print("  listen     Accept messages and print them as JSON lines")
        print("  send       Send one message")
        print("  gen-cert   Generate a self-signed certificate")
        print()
        print("Run 'tls-transport <command> --help' for command-specific options.")
        return 0

    subcmd = argv[0]
    if subcmd not in subcommands:
        print(f"Error: Unknown command '{subcmd}'")
        print(f"Available commands: {', '.join(subcommands)}")
        return 1

    return subcommands[subcmd](argv[1:])


if __name__ == "__main__":
    sys.exit(main())
