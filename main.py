"""
Main entry point for the page patrol.

Loads the target list, wires renderers, store and notifiers together and
runs the patrol service until interrupted (or for a single round with --once).
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional, TextIO

import structlog
import uvicorn
from pydantic import ValidationError

from api.broadcast import EventBroadcaster
from api.main import create_app
from patrol.alerting import CompositeNotifier, JsonLinesNotifier, LogNotifier
from patrol.config_loader import load_targets
from patrol.engine import PatrolEngine
from patrol.errors import PatrolError
from patrol.fingerprinting import ChangeDetector, ContentNormalizer
from patrol.models import RenderMode
from patrol.patrol_scheduler import PatrolScheduler
from patrol.patrol_service import PatrolService
from renderer import HttpRenderer, SelectiveRenderer, WebDriverRenderer, WebDriverSessionPool
from storage import build_store
from utilities.config import PatrolConfig
from utilities.logger import get_logger, setup_logging

QUIT_COMMAND = "q"


def watch_for_quit_command(service: PatrolService, stream: Optional[TextIO] = None) -> Callable[[], None]:
    """
    Stop the service when "q" is entered on the given stream.

    Returns a callable that stops watching. Event loops without reader
    support (Windows proactor) get a no-op and rely on signals.
    """
    stream = stream or sys.stdin
    loop = asyncio.get_running_loop()
    fd = stream.fileno()

    def on_input() -> None:
        line = stream.readline()
        if not line:
            loop.remove_reader(fd)
        elif line.strip().lower() == QUIT_COMMAND:
            structlog.get_logger(__name__).info("Quit command received")
            service.request_stop()

    try:
        loop.add_reader(fd, on_input)
    except (NotImplementedError, OSError, ValueError):
        return lambda: None
    return lambda: loop.remove_reader(fd)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="page-patrol",
        description="Periodically render web pages and report when their content changes."
    )
    parser.add_argument(
        "-c", "--config-path",
        type=Path,
        default=Path("./config.toml"),
        help="TOML file listing the pages to patrol (default: ./config.toml)"
    )
    parser.add_argument(
        "-d", "--data-path",
        type=Path,
        default=Path("./data.json"),
        help="JSON file holding the stored fingerprints (default: ./data.json)"
    )
    parser.add_argument(
        "-p", "--webdriver-port",
        type=int,
        action="append",
        dest="webdriver_ports",
        help="WebDriver port; repeat for one browser session per port (default: 9515)"
    )
    parser.add_argument(
        "-i", "--interval-minutes",
        type=float,
        help="Patrol interval for targets that do not set their own (default: 1)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Check every target once and exit"
    )
    parser.add_argument(
        "--serve-api",
        action="store_true",
        help="Serve the read-only API and change event WebSocket"
    )
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> PatrolConfig:
    """Environment settings with command line overrides applied."""
    overrides = {}
    if args.webdriver_ports:
        overrides["webdriver_ports"] = args.webdriver_ports
    if args.interval_minutes is not None:
        overrides["default_interval_minutes"] = args.interval_minutes
    if args.serve_api:
        overrides["api_enabled"] = True
    return PatrolConfig(**overrides)


async def main(argv: Optional[List[str]] = None) -> int:
    """Run the patrol. Returns the process exit code."""
    args = parse_args(argv)

    try:
        settings = load_settings(args)
    except ValidationError as e:
        structlog.get_logger(__name__).error("Invalid settings", error=str(e))
        return 1

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.get_log_file_path(),
        debug=settings.debug
    )
    logger = get_logger(__name__)
    logger.info("Starting page patrol", config_path=str(args.config_path), run_once=args.once)

    store = None
    pool = None
    http_renderer = None
    server = None
    server_task = None
    stop_watching = None

    try:
        targets = load_targets(args.config_path, settings.default_interval_minutes)
        detector = ChangeDetector(ContentNormalizer(settings.normalization, settings.ignore_patterns))

        store = build_store(settings, args.data_path)
        await store.open()

        modes = {target.mode for target in targets}
        renderers = {}
        if RenderMode.FULL in modes:
            pool = WebDriverSessionPool.for_ports(
                settings.webdriver_host,
                settings.webdriver_ports,
                page_load_timeout=settings.page_load_timeout,
                element_wait_timeout=settings.element_wait_timeout
            )
            await pool.open()
            renderers[RenderMode.FULL] = WebDriverRenderer(pool, fetch_timeout=settings.fetch_timeout)
        if RenderMode.SIMPLE in modes:
            http_renderer = HttpRenderer(
                timeout=settings.request_timeout,
                rate_limit_per_second=settings.rate_limit_per_second,
                headers=settings.get_headers()
            )
            await http_renderer.open()
            renderers[RenderMode.SIMPLE] = http_renderer

        notifiers = [LogNotifier(max_alerts_per_hour=settings.alerts_per_hour_per_target)]
        if settings.events_file:
            notifiers.append(JsonLinesNotifier(settings.events_file))

        serve_api = settings.api_enabled and not args.once
        broadcaster = EventBroadcaster() if serve_api else None
        if broadcaster is not None:
            notifiers.append(broadcaster)

        engine = PatrolEngine(
            renderer=SelectiveRenderer(renderers),
            store=store,
            notifier=CompositeNotifier(notifiers),
            detector=detector,
            retry_attempts=settings.fetch_retry_attempts,
            retry_delay=settings.retry_delay
        )
        service = PatrolService(
            engine,
            PatrolScheduler(targets),
            max_concurrency=settings.get_concurrency_limit(),
            tick_seconds=settings.tick_seconds,
            shutdown_grace_seconds=settings.shutdown_grace_seconds
        )

        logger.info(
            "Patrol configured",
            targets=len(targets),
            modes=sorted(mode.value for mode in modes),
            webdriver_ports=settings.webdriver_ports if pool else [],
            store_backend=settings.store_backend,
            max_concurrency=settings.get_concurrency_limit()
        )

        if serve_api:
            app = create_app(store, broadcaster=broadcaster, service=service, debug=settings.debug)
            server = uvicorn.Server(uvicorn.Config(
                app,
                host=settings.api_host,
                port=settings.api_port,
                log_config=None
            ))
            server_task = asyncio.create_task(server.serve())
            logger.info("Serving API", host=settings.api_host, port=settings.api_port)
        elif settings.api_enabled:
            logger.warning("API is not served in run-once mode")

        if not args.once and sys.stdin.isatty():
            stop_watching = watch_for_quit_command(service)
            logger.info("Enter q to stop")

        await service.start(run_once=args.once)
        return 0

    except PatrolError as e:
        logger.error("Failed to start page patrol", error=str(e), error_type=type(e).__name__)
        return 1

    finally:
        if stop_watching is not None:
            stop_watching()
        if server_task is not None:
            server.should_exit = True
            await server_task
        if pool is not None:
            await pool.close()
        if http_renderer is not None:
            await http_renderer.close()
        if store is not None:
            await store.close()
        logger.info("Page patrol stopped")


def run() -> None:
    """Console script entry point."""
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        print("Received keyboard interrupt, shutting down...")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
