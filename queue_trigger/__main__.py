import asyncio
import logging
import os
import signal

from queue_trigger.client import TriggerClient
from queue_trigger.runner import TriggerRunner


async def main():
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

    client = TriggerClient(
        base_url=os.getenv("TRIGGER_BASE_URL", "http://localhost:8000"),
        admin_token=os.getenv("ADMIN_TOKEN"),
    )
    runner = TriggerRunner(client, interval=float(os.getenv("TRIGGER_INTERVAL_SECONDS", "60")))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.stop)
        except NotImplementedError:
            # Windows support
            pass

    try:
        await runner.run()
    finally:
        await client.close()


if __name__ == "__main__":
    asyncio.run(main())
