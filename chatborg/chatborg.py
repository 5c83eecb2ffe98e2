# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
import asyncio
import logging

from telethon import TelegramClient, events
import telethon.utils

from chatborg.middleware import chain


class Chatborg(TelegramClient):
    """
    The bot client. Every incoming message and callback query is routed by
    `self.router` and run through `self.middlewares`; Telethon gives each
    update its own task, which is tracked until the handler finishes.
    """

    @classmethod
    async def create(
        cls,
        session,
        *,
        router,
        middlewares=(),
        bot_token=None,
        **kwargs,
    ):
        kwargs = {"api_id": 6, "api_hash": "eb06d4abfb49dc3eeb1aeb98ae0f581e", **kwargs}
        self = cls(session, router=router, middlewares=middlewares, **kwargs)
        await self._async_init(bot_token=bot_token)
        return self

    def __init__(self, session, *, router, middlewares=(), **kwargs):
        super().__init__(session, **kwargs)
        self._name = session
        self._logger = logging.getLogger("chatborg")
        self.router = router
        self.middlewares = list(middlewares)
        self.active_tasks = set()

        self.add_event_handler(self._on_message, events.NewMessage(incoming=True))
        self.add_event_handler(self._on_callback, events.CallbackQuery())

    async def _async_init(self, **kwargs):
        await self.start(**kwargs)

        self.me = await self.get_me()
        self.uid = telethon.utils.get_peer_id(self.me)
        self.router.bot_username = self.me.username
        self._logger.info(f"Logged in as @{self.me.username or 'NA'} ({self.uid})")

    async def _run(self, handler, event):
        task = asyncio.current_task()
        self.active_tasks.add(task)
        try:
            await chain(handler, self.middlewares)(event)
        finally:
            self.active_tasks.discard(task)

    async def _on_message(self, event):
        handler = self.router.resolve_message(event)
        if handler is not None:
            await self._run(handler, event)

    async def _on_callback(self, event):
        handler = self.router.resolve_callback(event)
        if handler is None:
            self._logger.warning(f"No handler for callback data {event.data!r}")
            await event.answer()
            return
        await self._run(handler, event)

    async def cancel_active_tasks(self):
        tasks = [t for t in self.active_tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            self._logger.info(f"Cancelling {len(tasks)} in-flight handler(s)")
            await asyncio.gather(*tasks, return_exceptions=True)
