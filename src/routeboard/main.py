from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from .config.config_parser import (
    get_queue_size,
    load_config_file,
    parse_seed_providers,
    parse_web_options,
)
from .config.config_schema import validate_config
from .config.logging_config import init_logging
from .ingest import ConfigIngestChannel, ConfigurationAggregator
from .servers.webserver import ListenerBindError, start_webserver
from .snapshot import new_config_store
from .stats import RequestStats

# How often the main thread checks that the REST server thread is alive.
_SUPERVISE_INTERVAL_SECONDS = 1.0


def _install_shutdown_handlers(stop_event: threading.Event) -> None:
    """Route SIGTERM/SIGINT to stop_event (main thread only)."""

    def _handle(signum, _frame):
        logging.getLogger("routeboard.main").info(
            "Received signal %s; shutting down", signum
        )
        stop_event.set()

    if threading.current_thread() is not threading.main_thread():
        return
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, _handle)


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point: load config, start the aggregator and the REST server.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 after a requested shutdown, 1 when the configuration is
        invalid, the listen address cannot be bound, or the server thread dies.

    Example use:
        CLI:
            PYTHONPATH=src python -m routeboard.main --config config.yaml
    """
    parser = argparse.ArgumentParser(
        description="Serve the current routing configuration over a REST API"
    )
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--address", default=None, help="Override web.address (host:port)")
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Reject configuration updates through the REST API",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Expose process variables on /debug/vars",
    )
    args = parser.parse_args(argv)

    try:
        cfg = load_config_file(args.config)
        validate_config(cfg, config_path=args.config)
        options = parse_web_options(
            cfg.get("web"), address=args.address, read_only=args.read_only
        )
        queue_size = get_queue_size(cfg)
        seed = parse_seed_providers(cfg.get("providers"))
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    init_logging(cfg.get("logging"))
    logger = logging.getLogger("routeboard.main")
    logger.info("Loaded config from %s", args.config)

    debug = bool(args.debug or cfg.get("debug", False))

    store = new_config_store(seed)
    if seed.providers:
        logger.info("Seeded snapshot with providers: %s", sorted(seed.providers))

    channel = ConfigIngestChannel(queue_size=queue_size)
    aggregator = ConfigurationAggregator(channel, store)
    aggregator.start()

    try:
        web_handle = start_webserver(
            options, store, channel, debug=debug, stats=RequestStats()
        )
    except ListenerBindError as exc:
        logger.critical("Error creating server: %s", exc)
        aggregator.stop()
        return 1

    stop_event = threading.Event()
    _install_shutdown_handlers(stop_event)

    rc = 0
    try:
        while not stop_event.wait(_SUPERVISE_INTERVAL_SECONDS):
            if not web_handle.is_running():
                logger.critical("REST server thread stopped unexpectedly; exiting")
                rc = 1
                break
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    finally:
        web_handle.stop()
        aggregator.stop()

    return rc


def console_main() -> None:
    sys.exit(main())


if __name__ == "__main__":
    console_main()
