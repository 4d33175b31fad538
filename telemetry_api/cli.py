"""CLI entry point: API + scheduler, or polling only."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from common.config import get_settings
from common.db import dispose_engine, get_engine

from .devices import DeviceClient
from .main import build_registry, build_scheduler
from .storage import TelemetryStore

logger = logging.getLogger(__name__)


async def _poll(once: bool) -> None:
    settings = get_settings()
    store = TelemetryStore(get_engine(settings))
    store.initialize()

    registry, _ = build_registry(settings)
    client = DeviceClient(settings.device_timeout_seconds)
    scheduler = build_scheduler(settings, registry, store, client)

    try:
        if once:
            attempts = await scheduler.run_once()
            for a in attempts:
                logger.info("device=%s outcome=%s stored=%d rejected=%d",
                            a.device_id, a.outcome.value, a.stored, a.rejected)
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass

        await scheduler.start()
        await stop_event.wait()
        logger.info("Shutdown requested, waiting for in-flight polls...")
        await scheduler.stop()
    finally:
        await client.close()
        dispose_engine()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    p = argparse.ArgumentParser(description="Soil telemetry service (ESP32 polling + REST API)")
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the REST API with the background scheduler")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    poll = sub.add_parser("poll", help="run only the ingestion scheduler")
    poll.add_argument("--once", action="store_true", help="run a single polling pass and exit")

    args = p.parse_args()

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "telemetry_api.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
        )
        return

    asyncio.run(_poll(once=bool(args.once)))


if __name__ == "__main__":
    main()
