"""Command-line entry point: capture, persist and serve packets."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from aiohttp import web

from .api import create_app
from .capture import READ_TIMEOUT, HandleOpener, open_live
from .capture_queue import OverflowPolicy
from .config import AppConfig
from .errors import ConfigError, StorageError
from .interfaces import find_device, list_devices
from .pipeline import Pipeline
from .service import QueryService
from .store import PacketStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Capture live traffic, store it in SQLite and serve it over HTTP.",
    )
    parser.add_argument(
        "-i",
        "--device",
        dest="device_name",
        help="Interface to capture on (env: DEVICE_NAME).",
    )
    parser.add_argument("--db", dest="db_name", help="SQLite database path (env: DB_NAME).")
    parser.add_argument("--port", type=int, help="HTTP listening port (env: PORT, default: 8080).")
    parser.add_argument(
        "--filter",
        dest="filter_expression",
        metavar="BPF",
        help="Capture filter expression (env: PACKET_FILTER).",
    )
    parser.add_argument(
        "--mirror",
        dest="mirror_path",
        metavar="PCAP",
        help="Also write captured frames to this pcap file (env: MIRROR_FILE).",
    )
    parser.add_argument(
        "--batch-threshold",
        type=int,
        help="Flush once more than this many packets are buffered (default: 100).",
    )
    parser.add_argument(
        "--queue-size",
        type=int,
        help="Capture queue capacity, 0 for unbounded (default: 0).",
    )
    parser.add_argument(
        "--overflow",
        choices=[policy.value for policy in OverflowPolicy],
        help="What a full bounded queue does with new packets (default: block).",
    )
    parser.add_argument("--schema", dest="schema_path", help="Schema file to initialise the database with.")
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List capture-capable interfaces and exit.",
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Run the capture pipeline without the HTTP API until capture ends.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Log level for diagnostic output.",
    )
    return parser


def print_devices() -> int:
    devices = list_devices()
    if not devices:
        logger.warning("No capture devices found")
        return 1
    for device in devices:
        addresses = ", ".join(addr.address for addr in device.addresses) or "-"
        print(f"{device.name}\t{device.hardware_address or '-'}\t{addresses}")
    return 0


async def serve(pipeline: Pipeline, store: PacketStore, port: int) -> None:
    """Serve the read API until SIGTERM or interrupt arrives, or a pipeline loop fails."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    pipeline.on_failure = lambda _exc: loop.call_soon_threadsafe(stop.set)
    if pipeline.error is not None:
        stop.set()
    try:
        loop.add_signal_handler(signal.SIGTERM, stop.set)
        handles_sigterm = True
    except (NotImplementedError, RuntimeError):
        # Not supported on this platform or outside the main thread.
        handles_sigterm = False

    runner = web.AppRunner(create_app(QueryService(store)))
    try:
        await runner.setup()
        site = web.TCPSite(runner, port=port)
        await site.start()
        logger.info("Serving packets on port %d", port)
        await stop.wait()
    finally:
        if handles_sigterm:
            loop.remove_signal_handler(signal.SIGTERM)
        await runner.cleanup()


def run(config: AppConfig, *, serve_api: bool = True, opener: HandleOpener = open_live) -> int:
    try:
        store = PacketStore(config.db_name)
    except StorageError:
        logger.exception("Failed to open storage")
        return 1

    with store:
        try:
            store.init_schema(config.schema_path)
        except StorageError:
            logger.exception("Failed to initialise storage")
            return 1

        device = find_device(config.device_name)
        if device is None:
            logger.warning("Interface %s not reported by the host, capturing anyway", config.device_name)

        pipeline = Pipeline(config, store, device=device, opener=opener)
        pipeline.start()
        try:
            if serve_api:
                asyncio.run(serve(pipeline, store, config.port))
            else:
                pipeline.wait()
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            pipeline.shutdown(timeout=READ_TIMEOUT + 5)

    return 1 if pipeline.error is not None else 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.list_devices:
        return print_devices()

    try:
        config = AppConfig.from_env().with_overrides(
            device_name=args.device_name,
            db_name=args.db_name,
            port=args.port,
            filter_expression=args.filter_expression,
            mirror_path=args.mirror_path,
            batch_threshold=args.batch_threshold,
            queue_size=args.queue_size,
            overflow=args.overflow,
            schema_path=args.schema_path,
        )
    except ConfigError as exc:
        logger.error(str(exc))
        return 1

    if not config.device_name:
        parser.error("A capture device is required (--device or DEVICE_NAME).")

    return run(config, serve_api=not args.no_api)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
