"""Review-window sweeper process.

Runs sweep_expired_reviews on a fixed interval. Each pass is independent:
a failing pass is logged and the loop carries on with the next one.
Start with `python -m worker.run` (backend/api must be importable).
"""

from __future__ import annotations

import logging
import signal
import threading

from app.config import configure_logging, get_settings
from app.context import build_context
from app.db import get_engine
from app.sweeper import sweep_expired_reviews
from app.users import ensure_system_user

logger = logging.getLogger("worker.run")


def run_forever(stop: threading.Event) -> None:
    settings = get_settings()
    ctx = build_context(get_engine(), settings)
    system_actor_id = ensure_system_user(ctx.engine, settings.system_wallet, ctx.clock)

    logger.info("Sweeper started; interval=%ss", settings.sweep_interval_seconds)
    try:
        while not stop.is_set():
            try:
                report = sweep_expired_reviews(ctx, system_actor_id)
                if report.transitioned or report.failed:
                    logger.info(
                        "Sweep pass: transitioned=%s skipped=%d failed=%d",
                        {k: v.value for k, v in report.transitioned.items()},
                        len(report.skipped),
                        len(report.failed),
                    )
            except Exception:
                logger.exception("Sweep pass failed")
            stop.wait(settings.sweep_interval_seconds)
    finally:
        ctx.close()

    logger.info("Sweeper stopped")


def main() -> None:
    configure_logging()
    stop = threading.Event()

    def _shutdown(signum, frame):
        logger.info("Received signal %s, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    run_forever(stop)


if __name__ == "__main__":
    main()
