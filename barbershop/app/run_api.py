"""Runtime entrypoint for the scheduling API."""
import argparse
import asyncio
import logging
import os
from contextlib import suppress

import uvicorn

from barbershop.app.core.constants import RUN_BOOTSTRAP_ENABLED
from barbershop.app.core.db import get_engine, init_db
from barbershop.app.core.logger import configure_logging

logger = logging.getLogger("barbershop")


async def maybe_bootstrap(force: bool = False) -> bool:
    """Create missing tables when RUN_BOOTSTRAP is set (or ``force``)."""
    if not (force or RUN_BOOTSTRAP_ENABLED):
        return False
    logger.info("[bootstrap] Creating schema…")
    try:
        await init_db()
    finally:
        await get_engine().dispose()
    logger.info("[bootstrap] Completed")
    return True


def serve(host: str, port: int) -> None:
    from barbershop.api.app import get_app

    with suppress(KeyboardInterrupt):
        asyncio.run(maybe_bootstrap())
    logger.info("Starting API on %s:%s", host, port)
    uvicorn.run(get_app(), host=host, port=port, log_config=None)


if __name__ == "__main__":
    configure_logging()

    parser = argparse.ArgumentParser(prog="run_api.py")
    parser.add_argument("--host", default=os.getenv("API_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("API_PORT", "8000")))
    sub = parser.add_subparsers(dest="cmd")
    sub.add_parser("init-db", help="create tables without running migrations")

    args = parser.parse_args()

    if args.cmd == "init-db":
        asyncio.run(maybe_bootstrap(force=True))
        raise SystemExit(0)

    serve(args.host, args.port)
