"""
SyncPlayer client - Entry Point

Run with: python -m syncplayer --host 192.168.1.20 --media-root ~/Music
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .app import SyncPlayerApp
from .config import ENGINES, ConfigError, SyncPlayerConfig, load_config


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="syncplayer",
        description="SyncPlayer client - start audio in sync with other devices on server command",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging, including the raw command stream",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="TOML config file with a [syncplayer] table",
    )

    parser.add_argument(
        "--host",
        dest="server_host",
        type=str,
        help="SyncPlayer server address",
    )

    parser.add_argument(
        "-p",
        "--port",
        dest="server_port",
        type=int,
        help="SyncPlayer server port (default: 12345)",
    )

    parser.add_argument(
        "--calibration-ms",
        dest="calibration_ms",
        type=int,
        help="Delay between receiving PLAY and starting audio (default: 0)",
    )

    parser.add_argument(
        "--media-root",
        dest="media_root",
        type=Path,
        help="Folder that PLAY filenames are resolved against",
    )

    parser.add_argument(
        "--engine",
        choices=ENGINES,
        help="Audio engine (default: sounddevice)",
    )

    parser.add_argument(
        "--output-device",
        dest="output_device",
        type=str,
        help="sounddevice output device name or index",
    )

    parser.add_argument(
        "--mpv-audio-device",
        dest="mpv_audio_device",
        type=str,
        help="mpv audio device (e.g. pulse/bluez_output.xxx)",
    )

    parser.add_argument(
        "--volume",
        type=int,
        help="Output volume 0-100 (default: 100)",
    )

    parser.add_argument(
        "--reconnect-delay",
        dest="reconnect_delay",
        type=float,
        help="Seconds before reconnecting after a lost connection, 0 to exit (default: 0)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SyncPlayerConfig:
    """Merge the config file (if any) with command line overrides."""
    config = load_config(args.config) if args.config else SyncPlayerConfig()
    config = config.with_overrides(
        server_host=args.server_host,
        server_port=args.server_port,
        calibration_ms=args.calibration_ms,
        media_root=args.media_root,
        engine=args.engine,
        output_device=args.output_device,
        mpv_audio_device=args.mpv_audio_device,
        volume=args.volume,
        reconnect_delay=args.reconnect_delay,
    )
    if not config.server_host:
        raise ConfigError("No server host configured (use --host or server_host)")
    return config


async def run_client(config: SyncPlayerConfig) -> bool:
    """Run the client until shutdown or connection loss."""
    app = SyncPlayerApp(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        return await app.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    logger.info(
        "Starting SyncPlayer client for %s:%d...",
        config.server_host,
        config.server_port,
    )

    try:
        ok = asyncio.run(run_client(config))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        return 0
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1

    logger.info("Client stopped")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
