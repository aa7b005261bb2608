from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from pathlib import Path

from shared.protocol import DEFAULT_HOST, DEFAULT_PORT

from signaling.call_coordinator import CallCoordinator
from signaling.gateway import DEFAULT_SEND_QUEUE_SIZE, ConnectionGateway
from signaling.http_api import SignalingServer
from signaling.user_registry import UserRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Phone-number call signaling relay")
    parser.add_argument("--host", default=os.environ.get("HOST", DEFAULT_HOST), help="Host/IP to bind")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", DEFAULT_PORT)),
        help="HTTP/WebSocket port (defaults to $PORT)",
    )
    parser.add_argument(
        "--static-dir",
        type=Path,
        default=Path("public"),
        help="Directory of browser client assets served at /",
    )
    parser.add_argument(
        "--cors-origin",
        action="append",
        dest="cors_origins",
        default=None,
        help="Allowed CORS origin (repeatable, defaults to *)",
    )
    parser.add_argument("--ws-ping-interval", type=float, default=20.0, help="Seconds between WebSocket pings")
    parser.add_argument("--ws-ping-timeout", type=float, default=20.0, help="Seconds to wait for a pong")
    parser.add_argument(
        "--send-queue-size",
        type=int,
        default=DEFAULT_SEND_QUEUE_SIZE,
        help="Outbound messages buffered per connection before dropping",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default="INFO",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"],
        help="Logging verbosity",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Optional path to a rotating log file")
    parser.add_argument("--log-max-bytes", type=int, default=5 * 1024 * 1024, help="Max size of the log file before rotation")
    parser.add_argument("--log-backup-count", type=int, default=5, help="Number of rotated log files to retain")
    return parser.parse_args(argv)


def _configure_logging(args: argparse.Namespace) -> None:
    log_handlers: list[logging.Handler] = [logging.StreamHandler()]
    if args.log_file:
        from logging.handlers import RotatingFileHandler

        args.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            args.log_file,
            maxBytes=max(1024, args.log_max_bytes),
            backupCount=max(1, args.log_backup_count),
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, args.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=log_handlers,
        force=True,
    )


async def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    _configure_logging(args)

    registry = UserRegistry()
    gateway = ConnectionGateway(send_queue_size=args.send_queue_size)
    coordinator = CallCoordinator(registry, gateway)
    server = SignalingServer(
        coordinator,
        gateway,
        host=args.host,
        port=args.port,
        static_root=args.static_dir,
        cors_origins=args.cors_origins or ["*"],
        ws_ping_interval=args.ws_ping_interval,
        ws_ping_timeout=args.ws_ping_timeout,
    )

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        if stop_event.is_set():
            logger.debug("Shutdown already in progress")
            return
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Signals aren't implemented on Windows for ProactorEventLoop; fallback to keyboard interrupt.
            pass

    await server.start()

    await stop_event.wait()

    logger.info("Stopping signaling server")
    try:
        await server.stop()
    except Exception:
        logger.exception("Error stopping signaling server")
    logger.info("Shutdown complete (%d users were registered)", len(registry))


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
