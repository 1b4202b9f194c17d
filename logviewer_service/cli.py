from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from dataclasses import replace

from logviewer_service.authorizer import CallerAuthorizer, find_trusted_invokers
from logviewer_service.client import call
from logviewer_service.config import ServiceConfig, load_config
from logviewer_service.errors import ConfigError
from logviewer_service.server import ThreadingUnixHTTPServer
from logviewer_service.service import OPERATIONS, LogViewerService


logger = logging.getLogger("logviewer_service")

LOG_FORMAT = "logviewer-service: %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT, stream=sys.stderr)


def build_service(config: ServiceConfig) -> LogViewerService:
    trusted = find_trusted_invokers(config.invoker_names, config.invoker_search_paths, config.invoker_paths)
    if not trusted:
        logger.warning("no trusted invoker found; every gated call will be denied")
    return LogViewerService(config, CallerAuthorizer(trusted))


def run_server(config: ServiceConfig) -> int:
    try:
        service = build_service(config)
    except OSError as exc:
        print(f"logviewer-service: cannot create scratch area: {exc}", file=sys.stderr)
        return 2
    try:
        server = ThreadingUnixHTTPServer(config.socket_path, service)
    except OSError as exc:
        service.close()
        print(f"logviewer-service: cannot listen on {config.socket_path}: {exc}", file=sys.stderr)
        return 1

    def _stop(signum, _frame) -> None:
        logger.info("received signal %s, shutting down", signum)
        server.request_shutdown()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    logger.info("listening on %s (scratch %s)", config.socket_path, service.scratch.path)
    try:
        server.serve_forever()
    finally:
        server.server_close()
        service.close()
    logger.info("stopped")
    return 0


def run_call(config: ServiceConfig, operation: str, raw_payload: str | None) -> int:
    try:
        payload = json.loads(raw_payload) if raw_payload else {}
    except json.JSONDecodeError as exc:
        print(f"logviewer-service: invalid JSON payload: {exc}", file=sys.stderr)
        return 2
    try:
        status, body = call(config.socket_path, operation, payload)
    except OSError as exc:
        print(f"logviewer-service: cannot reach {config.socket_path}: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(body, indent=2, sort_keys=True))
    return 0 if status == 200 else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Privileged log viewer helper service")
    parser.add_argument("--config", help="Path to the YAML config (default: LOGVIEWER_SERVICE_CONFIG)")
    parser.add_argument("--socket", dest="socket_path", help="Override the Unix socket path")
    sub = parser.add_subparsers(dest="mode", required=True)
    sub.add_parser("serve", help="Run the service")
    call_parser = sub.add_parser("call", help="Invoke one operation and print the reply")
    call_parser.add_argument("operation", choices=sorted(OPERATIONS))
    call_parser.add_argument("payload", nargs="?", help="JSON object with the operation arguments")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"logviewer-service: {exc}", file=sys.stderr)
        return 2
    if args.socket_path:
        config = replace(config, socket_path=args.socket_path)
    configure_logging(config.log_level)

    if args.mode == "serve":
        return run_server(config)
    return run_call(config, args.operation, args.payload)


if __name__ == "__main__":
    raise SystemExit(main())
