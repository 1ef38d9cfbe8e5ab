"""ActionsCron entrypoint -- wires all components together and starts the server.

Usage:
    python main.py
    python main.py --config /path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from aiohttp import web

from core.bus import AsyncIOBus
from core.config import load_config
from core.data.store import TaskStore
from engine.dispatch import DispatchGuard
from engine.service import TaskService
from plugins.ci_providers.github import GitHubWorkflowClient
from scheduler.runner import Scheduler
from server import create_app


def setup_logging(level: str) -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    # Quiet down noisy libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ActionsCron: scheduled GitHub Actions dispatcher")
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to config.yaml (default: ~/.actionscron/config.yaml)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file (default: ~/.actionscron/.env)",
    )
    return parser.parse_args()


async def run(config_path: str | None = None, env_path: str | None = None) -> None:
    """Initialize all components and start the server."""
    config = load_config(config_path=config_path, env_path=env_path)
    setup_logging(config.logging.level)
    logger = logging.getLogger("actionscron")
    logger.info("Configuration loaded from %s", config.home_path)

    store = TaskStore(config.db_path)
    bus = AsyncIOBus(events_dir=config.events_dir if config.logging.audit_events else None)
    client = GitHubWorkflowClient(
        token=config.github.token,
        base_url=config.github.base_url,
        timeout=config.github.timeout_seconds,
        user_agent=config.github.user_agent,
    )
    guard = DispatchGuard(enabled=config.scheduler.overlap_guard)

    scheduler = Scheduler(
        store=store,
        client=client,
        bus=bus,
        guard=guard,
        tz=config.scheduler.tzinfo,
        check_interval=config.scheduler.check_interval_seconds,
    )
    service = TaskService(store=store, client=client, bus=bus, guard=guard)

    app = create_app(service=service, scheduler=scheduler)

    await scheduler.start()

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.server.host, config.server.port)
    await site.start()

    logger.info(
        "ActionsCron running at http://%s:%d",
        config.server.host,
        config.server.port,
    )
    logger.info("State directory: %s", config.home_path)

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        logger.info("Shutting down...")
        await scheduler.stop()
        await runner.cleanup()
        await client.close()
        store.close()
        logger.info("Shutdown complete")


def main() -> None:
    args = parse_args()
    setup_logging("INFO")
    try:
        asyncio.run(run(config_path=args.config, env_path=args.env))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
