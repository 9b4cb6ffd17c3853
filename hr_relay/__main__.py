"""Entry point for hr-relay."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .adaptors import DEBUG_ADAPTOR_ID
from .catalog import DeviceCatalog, SelectionPolicy, SensorIdentity, is_mac_address, normalize_address
from .config import Config, load_config
from .csv_log import CsvLogger
from .errors import RadioUnavailable
from .hub import Hub
from .log import resolve_level, setup_logging
from .manager import ConnectionManager
from .prompt import StdinLines, choose_candidate
from .server import RelayServer

logger = logging.getLogger(__name__)

# Shutdown event for graceful termination
_shutdown_event: asyncio.Event | None = None


def _signal_handler() -> None:
    """Handle shutdown signals."""
    if _shutdown_event:
        logger.info("Shutdown requested...")
        _shutdown_event.set()


def _mac_address(value: str) -> str:
    if not is_mac_address(value):
        raise argparse.ArgumentTypeError(f"invalid hardware address '{value}'")
    return normalize_address(value)


def _catalog_index(value: str) -> int:
    index = int(value)
    if index < 1:
        raise argparse.ArgumentTypeError(f"index must be 1 or higher, got {index}")
    return index


def _selection_policy(config: Config) -> SelectionPolicy:
    return SelectionPolicy(
        hrm_mac=config.device.hrm_mac or None,
        hrm_index=config.device.hrm_index or None,
        accept_new_device=config.device.accept_new_device,
        pin_device=config.device.pin_device,
        noninteractive_rescan=config.device.noninteractive_rescan,
    )


def validate(config: Config, catalog: DeviceCatalog, debug_device: bool) -> int | None:
    """Check the merged settings; returns an exit code if the program must stop."""
    if debug_device:
        logger.info('Because "debug device" is active, server and logger are disabled.')
        config.server.enable_http_server = False
        config.log.enable_csv_log = False
        return None

    if config.device.hrm_index > len(catalog):
        logger.error("HRM index is out of range (1 - %d)!", len(catalog))
        return 1

    if config.log.enable_csv_log:
        if not config.log.csv_folder:
            logger.warning("Folder for csv logger is not set, disabling it!")
            config.log.enable_csv_log = False
        else:
            folder = Path(config.log.csv_folder)
            if not folder.exists():
                logger.error('Log folder "%s" does not exist!', folder)
                return 1
            if not folder.is_dir():
                logger.error('Log folder "%s" is not a folder!', folder)
                return 1

    if not config.server.enable_http_server and not config.log.enable_csv_log:
        logger.warning("No http server and no csv logger active, exiting!")
        return 0

    return None


async def run(config: Config, catalog: DeviceCatalog, debug_device: bool = False) -> None:
    """Run the relay until a shutdown signal or a fatal radio error."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    csv_logger = CsvLogger(Path(config.log.csv_folder)) if config.log.enable_csv_log else None
    hub = Hub(log_sink=csv_logger, queue_size=config.server.queue_size)
    hub.start()

    # Start server first so clients can connect during scanning
    server = None
    if config.server.enable_http_server:
        server = RelayServer(
            hub,
            host=config.server.host,
            port=config.server.port,
            send_timeout=config.server.send_timeout,
        )
        await server.start()
        logger.info("Serving on http://%s:%d (WebSocket at /ws)", config.server.host, config.server.port)

    lines = StdinLines()
    prompt_task: asyncio.Task | None = None

    def on_candidate(candidates: list[SensorIdentity]) -> None:
        nonlocal prompt_task
        if prompt_task is not None:
            prompt_task.cancel()
        prompt_task = asyncio.create_task(choose_candidate(manager, candidates, lines))

    manager = ConnectionManager(
        hub,
        catalog,
        _selection_policy(config),
        scan_timeout=config.ble.scan_timeout,
        connect_timeout=config.ble.connect_timeout,
        reconnect_min=config.ble.reconnect_min,
        reconnect_max=config.ble.reconnect_max,
        liveness_interval=config.ble.liveness_interval,
        confirm_timeout=config.ble.confirm_timeout,
        on_candidate=on_candidate,
    )
    if debug_device:
        manager.force_adaptor(DEBUG_ADAPTOR_ID)

    try:
        # Run manager and wait for shutdown signal concurrently
        monitor_task = asyncio.create_task(manager.run())
        shutdown_task = asyncio.create_task(_shutdown_event.wait())

        done, pending = await asyncio.wait(
            [monitor_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if monitor_task in done:
            monitor_task.result()
    finally:
        if prompt_task is not None:
            prompt_task.cancel()
        if server:
            await server.stop()
        await hub.stop()
        logger.info("Shutdown complete")


def main() -> None:
    """CLI entry point."""
    config = load_config()

    parser = argparse.ArgumentParser(description="BLE heart rate relay (HTTP, WebSocket and CSV)")
    parser.add_argument("-H", "--host", default=config.server.host, help="Server host")
    parser.add_argument("-p", "--port", type=int, default=config.server.port, help="Server port")
    parser.add_argument("--no-http-server", action="store_true", help="Disable the HTTP/WebSocket server")
    parser.add_argument("--enable-csv-log", action="store_true", help="Log every reading to a csv file")
    parser.add_argument("--csv-folder", default=config.log.csv_folder or None, help="Folder for csv log files")
    parser.add_argument(
        "--accept-new-device",
        action="store_true",
        help="Pair new devices without confirmation instead of only connecting to known ones",
    )
    parser.add_argument(
        "--hrm-mac",
        type=_mac_address,
        default=config.device.hrm_mac or None,
        help='Device address to use or pair (overrides "--hrm-index")',
    )
    parser.add_argument("--hrm-index", type=_catalog_index, default=None, help="Known device to use (first is 1)")
    parser.add_argument("--pin-device", action="store_true", help="Only reconnect to the device chosen first")
    parser.add_argument(
        "--noninteractive-rescan",
        action="store_true",
        help="Rescan automatically after the device is lost",
    )
    parser.add_argument(
        "--debug-device",
        action="store_true",
        help="Dump every characteristic of the connected device (disables server and logger)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    # Setup logging before anything else
    setup_logging(resolve_level(config.server.log_level, args.verbose))

    config.server.host = args.host
    config.server.port = args.port
    config.server.enable_http_server = config.server.enable_http_server and not args.no_http_server
    config.log.enable_csv_log = config.log.enable_csv_log or args.enable_csv_log
    config.log.csv_folder = args.csv_folder or ""
    config.device.hrm_mac = args.hrm_mac or ""
    if args.hrm_index is not None:
        config.device.hrm_index = args.hrm_index
    config.device.accept_new_device = config.device.accept_new_device or args.accept_new_device
    config.device.pin_device = config.device.pin_device or args.pin_device
    config.device.noninteractive_rescan = config.device.noninteractive_rescan or args.noninteractive_rescan

    catalog = DeviceCatalog.load(Path(config.device.catalog_path))

    exit_code = validate(config, catalog, args.debug_device)
    if exit_code is not None:
        sys.exit(exit_code)

    try:
        asyncio.run(run(config, catalog, args.debug_device))
    except RadioUnavailable as e:
        logger.error("Bluetooth is not available: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
