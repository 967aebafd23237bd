import asyncio
import logging
import sys

from gateway.config.logging import setup_logging
from gateway.config.settings import Settings
from gateway.api import create_app
from gateway.factories import (
    close_components,
    create_background_worker,
    create_payment_ledger,
    create_store,
)

# Setup logging first
setup_logging()

logger = logging.getLogger(__name__)

settings = Settings.from_env()

store = create_store(settings)
payment_ledger = create_payment_ledger(settings, store)

# The API process drains the queue too unless WORKER_ENABLED=false
background_worker = (
    create_background_worker(settings, store, payment_ledger)
    if settings.worker_enabled
    else None
)

app = create_app(payment_ledger, background_worker)


async def run_worker() -> None:
    """Run a standalone stream consumer until interrupted."""
    worker_settings = Settings.from_env()
    worker_store = create_store(worker_settings)
    ledger = create_payment_ledger(worker_settings, worker_store)
    worker = create_background_worker(worker_settings, worker_store, ledger)
    try:
        await worker.run_forever()
    finally:
        await close_components(ledger, worker)


def main():
    if len(sys.argv) > 1 and sys.argv[1] == "worker":
        logger.info("Starting standalone payment stream consumer")
        try:
            asyncio.run(run_worker())
        except KeyboardInterrupt:
            logger.info("Payment stream consumer interrupted")
        return

    import uvicorn
    from gateway.config.logging import get_uvicorn_log_level

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.app_port,
        log_level=get_uvicorn_log_level()
    )


if __name__ == "__main__":
    main()
