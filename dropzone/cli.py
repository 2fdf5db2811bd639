import argparse
import logging

from .app import create_app
from .config import DEFAULT_PORT, ENV_CERT_KEY_PATH, ENV_CERT_PATH, ServerConfig
from .errors import BindError, CertificateError
from .network import discover_lan_addresses
from .server import bind_server

logger = logging.getLogger("dropzone")


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}") from None
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dropzone",
        description="Receive files and messages from devices on your network.",
    )
    parser.add_argument("port", nargs="?", type=_port, default=DEFAULT_PORT, help=f"Port to listen on (default: {DEFAULT_PORT})")
    parser.add_argument("--no-tls", action="store_true", help="Serve plain HTTP even if a certificate is configured")
    parser.add_argument("--flat", action="store_true", help="Store uploads in the current directory instead of ./dropzone-uploads")
    return parser

def print_banner(config: ServerConfig, port: int, addresses: list[str]) -> None:
    scheme = config.scheme

    print("╔══════════════════════════════════╗")
    print("║             DropZone             ║")
    print("╚══════════════════════════════════╝")

    if not config.tls_enabled:
        print("Running in insecure mode (plain HTTP)")

    print(f"  Local:   {scheme}://localhost:{port}")
    for ip in addresses:
        print(f"  Network: {scheme}://{ip}:{port}")
    print(f"  Uploads: {config.upload_root}")
    print("  Waiting for connections...")
    print()

def _serve(config: ServerConfig, app) -> int:
    try:
        server = bind_server(config, app)
    except CertificateError as e:
        logger.error("%s (set %s and %s, or run with --no-tls)", e, ENV_CERT_PATH, ENV_CERT_KEY_PATH)
        return 1
    except BindError as e:
        logger.error("%s (is another program using port %d?)", e, e.port)
        return 1

    _, port = server.listen_address
    print_banner(config, port, discover_lan_addresses(config.host))
    server.serve_forever()
    return 0

def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = ServerConfig.from_env(port=args.port, no_tls=args.no_tls, flat=args.flat)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    try:
        app = create_app(config)
    except OSError as e:
        logger.error("Cannot prepare upload directory %s: %s", config.upload_root, e)
        return 1

    try:
        return _serve(config, app)
    finally:
        app.extensions["dropzone"]["sink"].close()

if __name__ == "__main__":
    raise SystemExit(main())
