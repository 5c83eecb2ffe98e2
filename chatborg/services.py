"""
Process supervision: run a group of long-lived services until a stop is
requested or one of them fails, then shut everything down.
"""

import asyncio
import logging

from chatborg.errors import BotError

logger = logging.getLogger(__name__)


class ServiceExitedError(BotError):
    pass


class TelegramBotService:
    name = "telegram-bot"

    def __init__(self, borg):
        self.borg = borg

    async def run(self):
        await self.borg.run_until_disconnected()

    async def stop(self):
        await self.borg.cancel_active_tasks()
        await self.borg.disconnect()


class ServiceGroup:
    def __init__(self, services):
        self.services = list(services)

    async def run(self, stop_event: asyncio.Event):
        """
        Blocks until `stop_event` is set or a service ends.

        A service that ends on its own, with or without an exception, is a
        failure; it is re-raised after the remaining services are stopped.
        """
        tasks = {
            asyncio.create_task(service.run(), name=service.name): service
            for service in self.services
        }
        stopper = asyncio.create_task(stop_event.wait(), name="stop-event")

        failure = None
        try:
            done, _ = await asyncio.wait(
                [*tasks, stopper], return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                if task is stopper:
                    logger.info("Stop requested, shutting down services")
                    continue
                service = tasks[task]
                failure = task.exception() or ServiceExitedError(
                    f"service {service.name} exited unexpectedly"
                )
                logger.error(f"Service {service.name} stopped: {failure}")
                break
        finally:
            for service in reversed(self.services):
                try:
                    await service.stop()
                except Exception:
                    logger.exception(f"Failed to stop service {service.name}")
            for task in [*tasks, stopper]:
                task.cancel()
            await asyncio.gather(*tasks, stopper, return_exceptions=True)

        if failure is not None:
            raise failure
